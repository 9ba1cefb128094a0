from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .events import InboundEvent
from .identity import IdentityCache, same_number
from .policy import PolicyStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Authorization:
    resolved_identity: str
    is_owner: bool


class AuthorizationGate:
    def __init__(self, identities: IdentityCache, policy: PolicyStore) -> None:
        self.identities = identities
        self.policy = policy

    @staticmethod
    def raw_sender(event: InboundEvent) -> Optional[str]:
        if event.is_group:
            return event.participant_id or event.conversation_id or None
        return event.conversation_id or None

    def is_owner(self, identity: Optional[str]) -> bool:
        owner = self.policy.state.owner_identity
        if not identity or not owner:
            return False
        try:
            return same_number(identity, owner)
        except Exception as exc:
            log.warning("owner comparison failed for %r: %s", identity, exc)
            return False

    def authorize(self, event: InboundEvent) -> Optional[Authorization]:
        """Resolve the sender and decide privilege; ``None`` means there is nobody to answer."""
        raw = self.raw_sender(event)
        if not raw:
            return None
        resolved = self.identities.resolve(raw)
        return Authorization(
            resolved_identity=resolved,
            is_owner=bool(event.is_self) or self.is_owner(resolved),
        )
