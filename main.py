import asyncio
import logging
import signal

from dotenv import load_dotenv

from kai.agent import Agent
from kai.config import Settings
from kai.transport import Transport

log = logging.getLogger(__name__)


def build_transport(settings: Settings) -> Transport:
    if settings.transport == "discord":
        from transports.discord_bot import DiscordTransport

        return DiscordTransport(settings.token)
    from transports.telegram_bot import TelegramTransport

    return TelegramTransport(settings.token)


async def main():
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )

    transport = build_transport(settings)
    agent = Agent(transport, settings)
    agent.start_dispatch()

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    log.info("starting %s transport", transport.platform)
    transport_task = asyncio.create_task(transport.start())
    stop_task = asyncio.create_task(stop_event.wait())
    await asyncio.wait({transport_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

    await transport.stop()
    stop_task.cancel()
    try:
        await transport_task
    except asyncio.CancelledError:
        pass
    except Exception:
        log.exception("transport stopped with an error")
    await agent.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
