from __future__ import annotations

import os
import platform
import shutil
import time
from typing import Optional

_PROCESS_STARTED = time.monotonic()

GB = 1024 ** 3


def format_uptime(seconds: float) -> str:
    seconds = max(0, int(seconds))
    days, seconds = divmod(seconds, 24 * 3600)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    return f"{days}d {hours}h {minutes}m {seconds}s"


def process_uptime() -> float:
    return time.monotonic() - _PROCESS_STARTED


def platform_label() -> str:
    return f"{platform.system().lower() or 'unknown'} ({platform.machine() or '?'})"


def memory_label() -> str:
    total = _sysconf_bytes("SC_PHYS_PAGES")
    free = _sysconf_bytes("SC_AVPHYS_PAGES")
    if total is None:
        return "N/A"
    free_gb = f"{free / GB:.2f}GB" if free is not None else "?"
    return f"{free_gb} / {total / GB:.2f}GB"


def _sysconf_bytes(name: str) -> Optional[int]:
    try:
        return os.sysconf(name) * os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return None


def disk_label(path: str = "/") -> str:
    try:
        usage = shutil.disk_usage(path)
    except OSError:
        return "N/A"
    return f"{path}: {usage.free / GB:.2f}GB / {usage.total / GB:.2f}GB"
