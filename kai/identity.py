"""Identifier helpers and the anonymous-identity alias cache."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

log = logging.getLogger(__name__)

ANONYMOUS_DOMAINS = ("lid", "anon")

Observation = Tuple[Optional[str], Optional[str]]


def split_identity(identity: Optional[str]) -> Tuple[str, str]:
    """Split ``user[:device]@domain`` into ``(user, domain)``; device suffix dropped."""
    if not isinstance(identity, str):
        return "", ""
    user, _, domain = identity.strip().partition("@")
    user = user.split(":", 1)[0]
    return user, domain.lower()


def normalize_identity(identity: Optional[str]) -> str:
    user, domain = split_identity(identity)
    if not user:
        return ""
    return f"{user}@{domain}" if domain else user


def number_part(identity: Optional[str]) -> Optional[str]:
    user, _ = split_identity(identity)
    return user or None


def is_anonymous(identity: Optional[str], domains: Iterable[str] = ANONYMOUS_DOMAINS) -> bool:
    user, domain = split_identity(identity)
    return bool(user) and domain in set(domains)


def same_number(left: Optional[str], right: Optional[str]) -> bool:
    a = number_part(left)
    b = number_part(right)
    return a is not None and a == b


class IdentityCache:
    """Maps anonymous participant ids to the real identities observed in group metadata.

    Lookups never block on ingestion: an id that has not been observed yet
    resolves to itself. Conflicting observations overwrite the previous value.
    """

    def __init__(self, anonymous_domains: Iterable[str] = ANONYMOUS_DOMAINS) -> None:
        self.anonymous_domains = tuple(d.lower() for d in anonymous_domains)
        self._aliases: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._aliases)

    def __contains__(self, identity: object) -> bool:
        return identity in self._aliases

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._aliases))

    def resolve(self, identity: str) -> str:
        if not identity:
            return identity
        return self._aliases.get(identity, identity)

    def resolve_all(self, identities: Iterable[str]) -> List[str]:
        return [self.resolve(i) for i in identities]

    def ingest(self, observations: Iterable[Observation]) -> int:
        written = 0
        for anonymous_id, real_id in observations:
            if not anonymous_id or not real_id:
                continue
            if not is_anonymous(anonymous_id, self.anonymous_domains):
                continue
            previous = self._aliases.get(anonymous_id)
            if previous == real_id:
                continue
            if previous is not None:
                log.info("alias changed for %s: %s -> %s", anonymous_id, previous, real_id)
            self._aliases[anonymous_id] = real_id
            written += 1
        if written:
            log.debug("identity cache: %d entries written, %d total", written, len(self._aliases))
        return written

    def purge(self) -> None:
        self._aliases.clear()


def qualify_identity(identity: Optional[str], domain: str) -> Optional[str]:
    """Attach ``domain`` to a bare number such as an owner taken from the environment."""
    if not identity:
        return None
    identity = identity.strip()
    if "@" in identity or not domain:
        return identity or None
    return f"{identity}@{domain}"


def observations_from_metadata(metadata) -> List[Observation]:
    """``(participant id, real id)`` pairs from a group metadata snapshot."""
    return [(p.id, p.real_id) for p in metadata.participants]
