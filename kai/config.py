from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

TRANSPORTS = ("telegram", "discord")


def _float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value not in (None, "") else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    transport: str = "telegram"
    token: str = ""
    owner: Optional[str] = None
    command_prefix: str = "."
    settings_path: Path = Path("settings.json")
    auth_dir: Path = Path("auth_info")
    assets_dir: Path = Path("assets")
    reactions_path: Optional[Path] = None
    presence_interval: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        transport = (env.get("KAI_TRANSPORT") or "telegram").strip().lower()
        if transport not in TRANSPORTS:
            raise SystemExit(f"Unsupported transport {transport!r}; expected one of {', '.join(TRANSPORTS)}.")
        token_var = "TELEGRAM_TOKEN" if transport == "telegram" else "DISCORD_TOKEN"
        token = (env.get(token_var) or "").strip()
        if not token:
            raise SystemExit(f"Missing required environment variable {token_var}.")
        reactions = (env.get("KAI_REACTIONS_PATH") or "").strip()
        return cls(
            transport=transport,
            token=token,
            owner=(env.get("KAI_OWNER") or "").strip() or None,
            command_prefix=env.get("KAI_PREFIX") or ".",
            settings_path=Path(env.get("KAI_SETTINGS_PATH") or "settings.json"),
            auth_dir=Path(env.get("KAI_AUTH_DIR") or "auth_info"),
            assets_dir=Path(env.get("KAI_ASSETS_DIR") or "assets"),
            reactions_path=Path(reactions) if reactions else None,
            presence_interval=_float(env.get("KAI_PRESENCE_INTERVAL"), 30.0),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
