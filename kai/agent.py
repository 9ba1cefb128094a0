"""
Top-level agent.

Owns the policy store and the identity cache, wires the dispatcher to the
transport and runs the side flows: identity refresh from group metadata,
status auto-viewing and the presence heartbeat.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from typing import Optional, Set

from .auth import AuthorizationGate
from .config import Settings
from .dispatcher import Dispatcher
from .events import ContentKind, InboundEvent, OutboundMessage
from .handlers import CommandHandlers, register_commands
from .identity import IdentityCache, normalize_identity, observations_from_metadata, qualify_identity
from .policy import PolicyState, PolicyStore
from .registry import CommandRegistry, ReactionTable
from .tasks import TaskSupervisor, best_effort
from .transport import Transport

log = logging.getLogger(__name__)


class Agent:
    def __init__(
        self,
        transport: Transport,
        settings: Settings,
        *,
        identities: Optional[IdentityCache] = None,
        policy: Optional[PolicyStore] = None,
        reactions: Optional[ReactionTable] = None,
    ) -> None:
        self.settings = settings
        self.transport = transport
        self.identities = identities or IdentityCache()
        self.policy = policy or PolicyStore(
            settings.settings_path,
            command_prefix=settings.command_prefix,
            owner_identity=qualify_identity(settings.owner, transport.identity_domain),
        )
        self.reactions = reactions or ReactionTable.load(override_path=settings.reactions_path)
        self.registry = CommandRegistry()
        self.handlers = CommandHandlers(self)
        register_commands(self.registry, self.handlers)
        self.gate = AuthorizationGate(self.identities, self.policy)
        self.supervisor = TaskSupervisor()
        self.dispatcher = Dispatcher(
            transport=transport,
            registry=self.registry,
            gate=self.gate,
            policy=self.policy,
            reactions=self.reactions,
            supervisor=self.supervisor,
        )
        self._started = time.monotonic()
        self._dispatching = False
        self._viewed_statuses: Set[str] = set()
        self._presence_task: Optional[asyncio.Task] = None
        transport.bind(self)
        if not self.policy.state.owner_identity and transport.bot_account:
            log.warning(
                "KAI_OWNER is not set; owner-only commands are unavailable on %s",
                transport.platform,
            )

    def uptime(self) -> float:
        return time.monotonic() - self._started

    # ----- surface for the bootstrap / tests -----
    def start_dispatch(self) -> None:
        self._dispatching = True

    def set_owner_identity(self, identity: Optional[str]) -> None:
        owner = qualify_identity(identity, self.transport.identity_domain)
        self.policy.set_owner(normalize_identity(owner) if owner else None)
        log.info("owner identity set to %s", self.policy.state.owner_identity)

    def get_policy_state(self) -> PolicyState:
        return self.policy.state

    def set_policy_state(self, **changes) -> PolicyState:
        return self.policy.update(**changes)

    def purge_identity_cache(self) -> None:
        self.identities.purge()

    def clean_auth(self) -> None:
        auth_dir = self.settings.auth_dir
        if auth_dir.exists():
            shutil.rmtree(auth_dir)
            log.info("cleaned auth directory %s", auth_dir)

    # ----- transport callbacks -----
    async def on_inbound_message(self, event: InboundEvent) -> Optional[asyncio.Task]:
        if not self._dispatching:
            return None
        task = self.dispatcher.submit(event)
        if event.is_broadcast and self.policy.state.auto_status_view:
            await self.view_status(event)
        return task

    async def on_connection_open(self, own_identity: Optional[str] = None) -> None:
        if own_identity and not self.policy.state.owner_identity and not self.transport.bot_account:
            self.set_owner_identity(own_identity)
        owner = self.policy.state.owner_identity
        if owner:
            await best_effort(self.send_welcome(owner), "welcome message")
        self.start_presence()
        self.supervisor.spawn(self.refresh_all_groups(), name="group-metadata")

    async def on_group_metadata_changed(self, group_id: str) -> asyncio.Task:
        return self.supervisor.spawn(self.refresh_group(group_id), name=f"group-metadata:{group_id}")

    # ----- identity refresh -----
    async def refresh_group(self, group_id: str) -> int:
        try:
            metadata = await self.transport.query_group_metadata(group_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("failed to fetch metadata for group %s: %s", group_id, exc)
            return 0
        return self.identities.ingest(observations_from_metadata(metadata))

    async def refresh_all_groups(self) -> int:
        try:
            groups = await self.transport.list_groups()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("could not fetch participating groups: %s", exc)
            return 0
        written = 0
        for group_id in groups:
            written += await self.refresh_group(group_id)
        log.info("identity refresh done: %d groups, %d aliases", len(groups), len(self.identities))
        return written

    # ----- status viewer -----
    async def view_status(self, event: InboundEvent) -> bool:
        key = f"{event.conversation_id}_{event.message_id}"
        if key in self._viewed_statuses:
            return False
        try:
            await self.transport.read_messages([event.ref])
        except Exception as exc:
            log.warning("view error for %s: %s", key, exc)
            return False
        self._viewed_statuses.add(key)
        return True

    # ----- presence -----
    def start_presence(self) -> None:
        if self._presence_task is None or self._presence_task.done():
            self._presence_task = asyncio.create_task(self._presence_loop())

    async def _presence_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.presence_interval)
                await self.transport.send_presence()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                log.warning("presence error: %s", exc)

    async def send_welcome(self, owner: str) -> None:
        state = self.policy.state
        text = (
            "Hey there,\n\n"
            "✅ Kai is now connected and ready to go!\n\n"
            f"Type {state.command_prefix}menu to see all commands\n"
            f"🔒 Current mode: {state.mode.value.upper()}"
        )
        image = self.handlers.asset("welcome.jpg")
        if image is not None:
            message = OutboundMessage.with_media(
                ContentKind.IMAGE, image.read_bytes(), caption=text, mimetype="image/jpeg"
            )
        else:
            message = OutboundMessage.plain(text)
        await self.transport.send_message(owner, message)

    async def stop(self, timeout: float = 5.0) -> None:
        if self._presence_task is not None:
            self._presence_task.cancel()
            await asyncio.gather(self._presence_task, return_exceptions=True)
            self._presence_task = None
        self._dispatching = False
        await self.supervisor.drain(timeout=timeout)
        await self.supervisor.cancel_all()
