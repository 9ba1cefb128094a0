"""Supervised background work and explicit best-effort side effects."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

log = logging.getLogger(__name__)

ErrorSink = Callable[[BaseException, str], None]


@dataclass(frozen=True)
class Attempt:
    """Outcome of a best-effort call. Callers inspect or drop it; it never raises."""

    ok: bool
    error: Optional[BaseException] = None


async def best_effort(awaitable: Awaitable, what: str) -> Attempt:
    try:
        await awaitable
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        log.debug("%s failed: %s", what, exc)
        return Attempt(ok=False, error=exc)
    return Attempt(ok=True)


def log_error(exc: BaseException, name: str) -> None:
    log.error("task %s failed", name, exc_info=(type(exc), exc, exc.__traceback__))


class TaskSupervisor:
    """Tracks fire-and-forget tasks and funnels their uncaught failures to one sink."""

    def __init__(self, error_sink: Optional[ErrorSink] = None) -> None:
        self.error_sink: ErrorSink = error_sink or log_error
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, *, name: str = "task") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, name))
        return task

    def _on_done(self, task: asyncio.Task, name: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            try:
                self.error_sink(exc, name)
            except Exception:
                log.exception("error sink failed for task %s", name)

    async def drain(self, timeout: Optional[float] = None) -> None:
        if not self._tasks:
            return
        await asyncio.wait(list(self._tasks), timeout=timeout)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
