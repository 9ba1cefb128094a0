from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Tuple

import yaml

from .events import InboundEvent

log = logging.getLogger(__name__)

Handler = Callable[[InboundEvent, List[str]], Awaitable[None]]

DEFAULT_CATALOG_PATH = Path(__file__).with_name("data").joinpath("commands.yaml")


@dataclass(frozen=True)
class CommandDefinition:
    name: str
    handler: Handler
    description: str = ""
    usage: str = ""
    owner_only: bool = False


class CommandRegistry:
    """Command name -> definition; names are matched case-insensitively."""

    def __init__(self) -> None:
        self._commands: Dict[str, CommandDefinition] = {}

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._commands

    def __iter__(self) -> Iterator[CommandDefinition]:
        return iter(list(self._commands.values()))

    def register(
        self,
        name: str,
        handler: Handler,
        description: str = "",
        usage: str = "",
        owner_only: bool = False,
    ) -> CommandDefinition:
        key = name.strip().lower()
        if not key:
            raise ValueError("command name must not be empty")
        if key in self._commands:
            log.debug("command %s re-registered", key)
        definition = CommandDefinition(
            name=key,
            handler=handler,
            description=description,
            usage=usage,
            owner_only=owner_only,
        )
        self._commands[key] = definition
        return definition

    def lookup(self, name: str) -> Optional[CommandDefinition]:
        if not name:
            return None
        return self._commands.get(name.lower())

    def names(self) -> List[str]:
        return list(self._commands)


def _read_catalog(path: Optional[Path]) -> Dict[str, Any]:
    if path is None or not path.exists():
        return {}
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except Exception as exc:
        log.warning("failed to read command catalog %s: %s", path, exc)
        return {}
    return raw if isinstance(raw, dict) else {}


class ReactionTable:
    """Glyphs sent as an acknowledgement when a command runs; lookups are best effort."""

    def __init__(
        self,
        reactions: Optional[Dict[str, str]] = None,
        categories: Optional[List[Tuple[str, List[str]]]] = None,
    ) -> None:
        self._reactions = {
            str(k).strip().lower(): str(v) for k, v in (reactions or {}).items() if v
        }
        self.categories: List[Tuple[str, List[str]]] = list(categories or [])

    def __len__(self) -> int:
        return len(self._reactions)

    def glyph_for(self, name: str) -> Optional[str]:
        if not name:
            return None
        return self._reactions.get(name.lower())

    @classmethod
    def load(
        cls,
        default_path: Path = DEFAULT_CATALOG_PATH,
        override_path: Optional[Path] = None,
    ) -> "ReactionTable":
        base = _read_catalog(default_path)
        override = _read_catalog(override_path)

        reactions: Dict[str, str] = {}
        for source in (base, override):
            section = source.get("reactions")
            if isinstance(section, dict):
                reactions.update({str(k): str(v) for k, v in section.items() if v})

        categories_raw = override.get("categories") or base.get("categories") or {}
        categories: List[Tuple[str, List[str]]] = []
        if isinstance(categories_raw, dict):
            for title, names in categories_raw.items():
                if isinstance(names, (list, tuple)):
                    categories.append((str(title), [str(n).lower() for n in names if n]))
        return cls(reactions, categories)
