from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)


class Mode(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class PolicyState:
    mode: Mode = Mode.PUBLIC
    command_prefix: str = "."
    auto_status_view: bool = True
    owner_identity: Optional[str] = None

    @property
    def is_private(self) -> bool:
        return self.mode is Mode.PRIVATE


PERSISTED_FIELDS = ("mode", "auto_status_view")


class PolicyStore:
    """Process-wide policy state, flushed to a small JSON file on every persisted change."""

    def __init__(
        self,
        path: Path,
        *,
        command_prefix: str = ".",
        owner_identity: Optional[str] = None,
    ) -> None:
        self.path = Path(path)
        self._state = PolicyState(command_prefix=command_prefix, owner_identity=owner_identity)
        self._load()

    @property
    def state(self) -> PolicyState:
        return self._state

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except Exception as exc:
            log.warning("failed to load settings %s: %s", self.path, exc)
            return
        if not isinstance(payload, dict):
            return
        changes = {}
        mode = str(payload.get("mode") or "").strip().lower()
        if mode in (Mode.PUBLIC.value, Mode.PRIVATE.value):
            changes["mode"] = Mode(mode)
        if isinstance(payload.get("autoViewStatus"), bool):
            changes["auto_status_view"] = payload["autoViewStatus"]
        if changes:
            self._state = replace(self._state, **changes)
        log.info(
            "settings loaded: mode=%s auto_status_view=%s",
            self._state.mode.value,
            self._state.auto_status_view,
        )

    def save(self) -> None:
        record = {
            "mode": self._state.mode.value,
            "autoViewStatus": self._state.auto_status_view,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            tmp.write_text(json.dumps(record, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except Exception as exc:
            log.warning("failed to save settings %s: %s", self.path, exc)

    def update(self, **changes) -> PolicyState:
        mode = changes.get("mode")
        if mode is not None and not isinstance(mode, Mode):
            changes["mode"] = Mode(str(mode).strip().lower())
        self._state = replace(self._state, **changes)
        if any(name in changes for name in PERSISTED_FIELDS):
            self.save()
        return self._state

    def set_mode(self, mode: str) -> PolicyState:
        return self.update(mode=mode)

    def set_auto_status_view(self, enabled: bool) -> PolicyState:
        return self.update(auto_status_view=bool(enabled))

    def set_owner(self, identity: Optional[str]) -> PolicyState:
        return self.update(owner_identity=identity or None)
