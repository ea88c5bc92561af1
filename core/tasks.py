from __future__ import annotations

import asyncio
from typing import Any, Coroutine

import structlog


log = structlog.get_logger(__name__)

# strong references; the event loop only keeps weak ones
_background: set[asyncio.Task] = set()


def spawn_best_effort(coro: Coroutine[Any, Any, Any], *, event: str, **fields: Any) -> asyncio.Task:
    """Run ``coro`` detached from the caller.

    The caller never awaits the task. A failure is logged under ``event``
    and discarded.
    """
    task = asyncio.create_task(coro, name=event)
    _background.add(task)

    def _done(t: asyncio.Task) -> None:
        _background.discard(t)
        if t.cancelled():
            log.warning(event, status="cancelled", **fields)
            return
        exc = t.exception()
        if exc is not None:
            log.warning(event, status="failed", error=repr(exc), **fields)

    task.add_done_callback(_done)
    return task


async def drain_background_tasks(timeout: float | None = None) -> None:
    """Wait for detached tasks spawned so far (shutdown and tests)."""
    pending = list(_background)
    if not pending:
        return
    await asyncio.wait(pending, timeout=timeout)
