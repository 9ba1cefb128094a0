"""
In-chat command handlers.

Every handler is ``async (event, args) -> None`` and talks to the chat only
through the transport primitives. Handlers that change policy persist it
before returning; handlers that broadcast to a group resolve participant ids
through the identity cache before rendering them.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from .events import (
    ContentKind,
    InboundEvent,
    MediaContent,
    OutboundMessage,
    QuotedContent,
    TextContent,
)
from .identity import number_part
from .policy import Mode
from .registry import CommandRegistry
from .sysinfo import disk_label, format_uptime, memory_label, platform_label, process_uptime

if TYPE_CHECKING:  # pragma: no cover
    from .agent import Agent

log = logging.getLogger(__name__)

VERSION = "1.0.0"

GROUP_ONLY_REPLY = "❌ This command can only be used in a group."


class CommandHandlers:
    def __init__(self, agent: "Agent") -> None:
        self.agent = agent

    # ----- plumbing -----
    @property
    def transport(self):
        return self.agent.transport

    @property
    def prefix(self) -> str:
        return self.agent.policy.state.command_prefix

    @property
    def owner(self) -> Optional[str]:
        return self.agent.policy.state.owner_identity

    def asset(self, name: str) -> Optional[Path]:
        path = self.agent.settings.assets_dir / name
        return path if path.exists() else None

    async def send(self, conversation_id: str, message: OutboundMessage) -> None:
        await self.transport.send_message(conversation_id, message)

    async def reply(self, event: InboundEvent, text: str, *, mentions: Optional[List[str]] = None) -> None:
        try:
            await self.send(event.conversation_id, OutboundMessage.plain(text, mentions=mentions))
        except Exception as exc:
            log.warning("error sending message to %s: %s", event.conversation_id, exc)

    async def send_card(self, event: InboundEvent, text: str, image: str = "welcome.jpg") -> None:
        mentions = [event.sender_hint]
        path = self.asset(image)
        try:
            if path is not None:
                await self.send(
                    event.conversation_id,
                    OutboundMessage.with_media(
                        ContentKind.IMAGE,
                        path.read_bytes(),
                        caption=text,
                        mimetype="image/jpeg",
                        mentions=mentions,
                    ),
                )
            else:
                await self.send(event.conversation_id, OutboundMessage.plain(text, mentions=mentions))
        except Exception as exc:
            log.warning("card with image failed, falling back to text: %s", exc)
            await self.reply(event, text)

    async def download(self, media: MediaContent) -> bytes:
        return await self.transport.download_media(media)

    # ----- informational -----
    async def menu(self, event: InboundEvent, args: List[str]) -> None:
        state = self.agent.policy.state
        lines = [
            "*--[ KAI BOT SYSTEM INTERFACE ]--*",
            "",
            "*>> SYSTEM STATUS <<*",
            f"├── Platform: {platform_label()}",
            f"├── Memory: {memory_label()}",
            f"├── Storage: {disk_label()}",
            f"├── Process Uptime: {format_uptime(process_uptime())}",
            f"├── Bot Uptime: {format_uptime(self.agent.uptime())}",
            f"├── Access Mode: *{state.mode.value.upper()}*",
            f"└── Command Prefix: *{state.command_prefix}*",
            "",
            "*>> CURRENT TIMESTAMP <<*",
            f"└── {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "*>> COMMAND MODULES <<*",
        ]
        for title, names in self.agent.reactions.categories:
            lines.append("")
            lines.append(f"*--[ {title} ]--*")
            for name in names:
                command = self.agent.registry.lookup(name)
                if command is None:
                    continue
                lines.append(f"├── *{self.prefix}{command.name}* - {command.description}")
                if command.usage:
                    lines.append(f"│   └── Usage: {self.prefix}{command.name} {command.usage}")
        lines.append("")
        lines.append("*--[ INTERFACE END ]--*")
        await self.send_card(event, "\n".join(lines))

    async def info(self, event: InboundEvent, args: List[str]) -> None:
        text = (
            "*--[ KAI BOT INFORMATION ]--*\n\n"
            f"├── *Version*: {VERSION}\n"
            f"├── *Platform*: {self.transport.platform}\n"
            f"└── *Mode*: {self.agent.policy.state.mode.value}\n\n"
            f"Type {self.prefix}menu for all commands"
        )
        await self.send_card(event, text)

    async def ping(self, event: InboundEvent, args: List[str]) -> None:
        started = time.monotonic()
        await self.reply(event, "*--[ NETWORK DIAGNOSTIC ]--*\n*>> Pinging remote node... <<*")
        latency = int((time.monotonic() - started) * 1000)
        await self.reply(event, f"*--[ NETWORK RESPONSE ]--*\n*>> Pong! Latency: {latency}ms <<*")

    async def echo(self, event: InboundEvent, args: List[str]) -> None:
        if not args:
            await self.reply(event, f"Usage: {self.prefix}echo <message>")
            return
        await self.reply(
            event,
            f"*--[ ECHO PROTOCOL ]--*\n*>> {' '.join(args)} <<*",
            mentions=[event.sender_hint],
        )

    async def uptime(self, event: InboundEvent, args: List[str]) -> None:
        await self.reply(
            event,
            "*--[ SYSTEM UPTIME ]--*\n"
            f"├── Bot Uptime: {format_uptime(self.agent.uptime())}\n"
            f"└── Process Uptime: {format_uptime(process_uptime())}",
            mentions=[event.sender_hint],
        )

    # ----- settings -----
    async def autostatusview(self, event: InboundEvent, args: List[str]) -> None:
        choice = args[0].lower() if args else ""
        if choice == "on":
            self.agent.policy.set_auto_status_view(True)
            await self.reply(event, "*--[ STATUS UPDATE ]--*\n*>> Auto status viewing: [ENABLED] <<*")
        elif choice == "off":
            self.agent.policy.set_auto_status_view(False)
            await self.reply(event, "*--[ STATUS UPDATE ]--*\n*>> Auto status viewing: [DISABLED] <<*")
        else:
            active = "ACTIVE" if self.agent.policy.state.auto_status_view else "INACTIVE"
            await self.reply(
                event,
                f"*--[ STATUS QUERY ]--*\n*>> Auto status viewing is currently: [{active}] <<*",
            )

    async def mode(self, event: InboundEvent, args: List[str]) -> None:
        state = self.agent.policy.state
        if not args:
            await self.reply(
                event,
                f"*--[ CURRENT MODE ]--*\n*>> {state.mode.value.upper()} <<*\n"
                "In private mode, only you can use commands.\n"
                f"Usage: {self.prefix}mode public/private",
            )
            return
        choice = args[0].lower()
        if choice not in (Mode.PUBLIC.value, Mode.PRIVATE.value):
            await self.reply(event, f"Invalid mode. Usage: {self.prefix}mode public/private")
            return
        self.agent.policy.set_mode(choice)
        await self.reply(event, f"*--[ MODE UPDATE ]--*\n*>> Bot mode set to: [{choice.upper()}] <<*")

    async def clean(self, event: InboundEvent, args: List[str]) -> None:
        self.agent.clean_auth()
        await self.reply(
            event,
            "*--[ SYSTEM ALERT ]--*\n"
            "*>> Authorization data purged successfully. Please restart the bot and re-pair. <<*",
        )

    # ----- media forwarding -----
    async def view_once(self, event: InboundEvent, args: List[str]) -> None:
        await self._forward_view_once(event, event.conversation_id)

    async def view_once_to_owner(self, event: InboundEvent, args: List[str]) -> None:
        await self._forward_view_once(event, self.owner)

    async def _forward_view_once(self, event: InboundEvent, target: Optional[str]) -> None:
        quoted = event.quoted
        inner = quoted.quoted if quoted else None
        if not isinstance(inner, MediaContent) or not inner.view_once:
            await self.reply(event, "❌ Please reply to a view-once message to use this command.")
            return
        if not target:
            await self.reply(event, "❌ Could not determine where to send the message.")
            return
        try:
            message = await self._media_copy(inner, header=_VIEW_ONCE_HEADERS.get(inner.kind))
            await self.send(target, message)
            await self.reply(event, "✅ View-once message forwarded.")
        except Exception:
            log.exception("failed to forward view-once message")
            await self.reply(
                event,
                "❌ Failed to process the view-once message. "
                "It might be expired, invalid, or an unsupported type.",
            )

    async def _media_copy(self, media: MediaContent, *, header: Optional[str]) -> OutboundMessage:
        if media.kind not in (ContentKind.IMAGE, ContentKind.VIDEO, ContentKind.AUDIO):
            raise ValueError(f"unsupported media kind: {media.kind.value}")
        data = await self.download(media)
        caption = ""
        if media.kind is not ContentKind.AUDIO:
            caption = f"{header}\n{media.caption}".strip() if header else media.caption
        return OutboundMessage.with_media(
            media.kind,
            data,
            caption=caption,
            mimetype=media.mimetype,
            ptt=media.ptt,
            gif_playback=media.gif_playback,
        )

    async def save(self, event: InboundEvent, args: List[str]) -> None:
        quoted = event.quoted
        if quoted is None:
            await self.reply(event, "❌ Please reply to a status or message to save it.")
            return
        owner = self.owner
        if not owner:
            await self.reply(event, "❌ Owner identity not configured. Cannot save message.")
            return
        try:
            header = f"*--[ ARCHIVED DATA ]--*\n*Source: {await self._source_name(quoted)}*"
            inner = quoted.quoted
            if isinstance(inner, (TextContent, QuotedContent)):
                await self.send(owner, OutboundMessage.plain(f"{header}\n\n{inner.text}"))
            elif isinstance(inner, MediaContent) and inner.kind is ContentKind.STICKER:
                data = await self.download(inner)
                await self.send(owner, OutboundMessage.with_media(ContentKind.STICKER, data))
                await self.send(owner, OutboundMessage.plain(header))
            elif isinstance(inner, MediaContent):
                message = await self._media_copy(inner, header=None)
                message.text = f"{header}\n\n{inner.caption}".strip()
                await self.send(owner, message)
            else:
                await self.reply(
                    event,
                    f"❌ Saving this type of message ({getattr(inner, 'type_name', inner.kind.value)}) "
                    "is not yet supported.",
                )
                return
            await self.reply(event, "✅ Saved to your DMs!")
        except Exception:
            log.exception("failed to save message")
            await self.reply(event, "❌ Failed to save the message. An error occurred.")

    async def _source_name(self, quoted: QuotedContent) -> str:
        participant = quoted.quoted_participant
        if not participant:
            return "Unknown"
        resolved = self.agent.identities.resolve(participant)
        try:
            name = await self.transport.display_name(resolved)
        except Exception as exc:
            log.debug("display name lookup failed for %s: %s", resolved, exc)
            name = ""
        return name or number_part(resolved) or resolved

    # ----- group broadcast -----
    async def _resolved_participants(self, group_id: str) -> List[str]:
        metadata = await self.transport.query_group_metadata(group_id)
        return self.agent.identities.resolve_all(p.id for p in metadata.participants)

    async def tagall(self, event: InboundEvent, args: List[str]) -> None:
        if not event.is_group:
            await self.reply(event, GROUP_ONLY_REPLY)
            return
        try:
            mentions = await self._resolved_participants(event.conversation_id)
            message = " ".join(args) or "Attention everyone!"
            tagged = " ".join(f"@{number_part(identity) or identity}" for identity in mentions)
            await self.send(
                event.conversation_id,
                OutboundMessage.plain(
                    f"*--[ BROADCAST ALERT ]--*\n*Message: {message}*\n\n{tagged}",
                    mentions=mentions,
                ),
            )
        except Exception:
            log.exception("error during tagall")
            await self.reply(event, "❌ Failed to tag all members. Make sure the bot is an admin.")

    async def hidetag(self, event: InboundEvent, args: List[str]) -> None:
        if not event.is_group:
            await self.reply(event, GROUP_ONLY_REPLY)
            return
        try:
            mentions = await self._resolved_participants(event.conversation_id)
            text = f"*--[ STEALTH BROADCAST ]--*\n*Message: {' '.join(args) or '🤫 Secret message for the group!'}*"
            image = self.asset("hidetag.jpg")
            if image is not None:
                message = OutboundMessage.with_media(
                    ContentKind.IMAGE, image.read_bytes(), caption=text, mentions=mentions
                )
            else:
                message = OutboundMessage.plain(text, mentions=mentions)
            await self.send(event.conversation_id, message)
            await self.reply(event, "✅ Hidden tag message sent.")
        except Exception:
            log.exception("error during hidetag")
            await self.reply(
                event, "❌ Failed to send hidden tag message. Make sure the bot is an admin."
            )


_VIEW_ONCE_HEADERS = {
    ContentKind.IMAGE: "*--[ DECRYPTED IMAGE ]--*",
    ContentKind.VIDEO: "*--[ DECRYPTED VIDEO ]--*",
}


def register_commands(registry: CommandRegistry, handlers: CommandHandlers) -> CommandRegistry:
    registry.register("menu", handlers.menu, "Show this menu")
    registry.register("help", handlers.menu, "Show this menu")
    registry.register("autostatusview", handlers.autostatusview, "Toggle automatic status viewing", "on/off")
    registry.register("info", handlers.info, "Show bot information")
    registry.register("clean", handlers.clean, "Clean auth data", owner_only=True)
    registry.register("ping", handlers.ping, "Check if bot is alive")
    registry.register("echo", handlers.echo, "Repeat your message", "<message>")
    registry.register("uptime", handlers.uptime, "Show bot uptime")
    registry.register("mode", handlers.mode, "Set bot mode", "public/private", owner_only=True)
    registry.register("vv", handlers.view_once, "Forward a view-once message", owner_only=True)
    registry.register("vv2", handlers.view_once_to_owner, "Forward a view-once message to the owner", owner_only=True)
    registry.register("save", handlers.save, "Save a replied-to status/message to your DMs", owner_only=True)
    registry.register("tagall", handlers.tagall, "Tag all group members", owner_only=True)
    registry.register("hidetag", handlers.hidetag, "Send a message to tag all group members secretly", "[message]", owner_only=True)
    return registry
