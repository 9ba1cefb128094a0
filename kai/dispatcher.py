"""
Command dispatch.

One inbound event walks a short state machine:

    RECEIVED -> PREFIX_MISMATCH                      (no-op)
             -> UNKNOWN_COMMAND                      (no-op)
             -> NO_TARGET                            (no-op)
             -> OWNER_REJECTED                       (one reply)
             -> PRIVATE_DROPPED                      (silent)
             -> react -> run handler -> SUCCESS | HANDLER_ERROR (one reply)

Nothing raised inside a dispatch escapes handle().
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from enum import Enum
from typing import List, Optional, Tuple

from .auth import AuthorizationGate
from .events import InboundEvent, OutboundMessage
from .policy import PolicyStore
from .registry import CommandRegistry, ReactionTable
from .tasks import TaskSupervisor, best_effort
from .transport import Transport

log = logging.getLogger(__name__)

OWNER_ONLY_REPLY = "❌ This command is for the owner only."
ERROR_REPLY = "❌ An error occurred while processing your command"


class DispatchOutcome(str, Enum):
    PREFIX_MISMATCH = "prefix_mismatch"
    UNKNOWN_COMMAND = "unknown_command"
    NO_TARGET = "no_target"
    OWNER_REJECTED = "owner_rejected"
    PRIVATE_DROPPED = "private_dropped"
    SUCCESS = "success"
    HANDLER_ERROR = "handler_error"


def parse_command(text: str, prefix: str) -> Optional[Tuple[str, List[str]]]:
    """Split ``<prefix><name> <args...>``; ``None`` when the prefix does not match."""
    if not prefix or not text or not text.startswith(prefix):
        return None
    tokens = text[len(prefix):].split()
    if not tokens:
        return "", []
    return tokens[0].lower(), tokens[1:]


class Dispatcher:
    def __init__(
        self,
        *,
        transport: Transport,
        registry: CommandRegistry,
        gate: AuthorizationGate,
        policy: PolicyStore,
        reactions: Optional[ReactionTable] = None,
        supervisor: Optional[TaskSupervisor] = None,
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.gate = gate
        self.policy = policy
        self.reactions = reactions or ReactionTable()
        self.supervisor = supervisor or TaskSupervisor()
        self.outcomes: Counter = Counter()
        self.lookups = 0
        self.authorizations = 0

    def submit(self, event: InboundEvent) -> asyncio.Task:
        return self.supervisor.spawn(self.handle(event), name=f"dispatch:{event.message_id}")

    async def handle(self, event: InboundEvent) -> DispatchOutcome:
        try:
            outcome = await self._dispatch(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("dispatch failed for %s", event.conversation_id)
            await self._reply(event, ERROR_REPLY)
            outcome = DispatchOutcome.HANDLER_ERROR
        self.outcomes[outcome] += 1
        return outcome

    async def _dispatch(self, event: InboundEvent) -> DispatchOutcome:
        parsed = parse_command(event.body, self.policy.state.command_prefix)
        if parsed is None:
            return DispatchOutcome.PREFIX_MISMATCH
        name, args = parsed

        self.lookups += 1
        command = self.registry.lookup(name)
        if command is None:
            return DispatchOutcome.UNKNOWN_COMMAND

        self.authorizations += 1
        auth = self.gate.authorize(event)
        if auth is None:
            log.debug("dropping %s: no sender to answer", name)
            return DispatchOutcome.NO_TARGET

        if command.owner_only and not auth.is_owner:
            log.info("owner-only command %s refused for %s", name, auth.resolved_identity)
            await self._reply(event, OWNER_ONLY_REPLY)
            return DispatchOutcome.OWNER_REJECTED

        if self.policy.state.is_private and not auth.is_owner:
            return DispatchOutcome.PRIVATE_DROPPED

        glyph = self.reactions.glyph_for(name)
        if glyph:
            await best_effort(self.transport.send_reaction(event.ref, glyph), f"reaction {name}")

        log.info("running %s for %s", name, auth.resolved_identity)
        try:
            await command.handler(event, args)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("command %s failed", name)
            await self._reply(event, ERROR_REPLY)
            return DispatchOutcome.HANDLER_ERROR
        return DispatchOutcome.SUCCESS

    async def _reply(self, event: InboundEvent, text: str) -> None:
        attempt = await best_effort(
            self.transport.send_message(event.conversation_id, OutboundMessage.plain(text)),
            "reply",
        )
        if not attempt.ok:
            log.warning("could not reply in %s: %s", event.conversation_id, attempt.error)
