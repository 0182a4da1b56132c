"""Detached background tasks for best-effort side calls.

Read receipts and typing indicators must not hold up webhook processing,
but an un-awaited coroutine silently loses its exceptions. DetachedTasks
keeps a strong reference to every spawned task, logs whatever it raises,
and can be drained on shutdown.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from wacloud.observability.logging import get_logger
from wacloud.observability.redaction import safe_log_context

logger = get_logger(__name__)


class DetachedTasks:
    """Tracks fire-and-forget tasks spawned on the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        """Schedule coro without awaiting it.

        Must be called from within a running event loop.
        """
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(
                "detached task cancelled",
                extra={"extra_fields": safe_log_context(task=task.get_name())},
            )
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(
                "detached task failed",
                extra={
                    "extra_fields": safe_log_context(
                        task=task.get_name(),
                        error_type=type(exc).__name__,
                    )
                },
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for pending tasks; cancel whatever is left after timeout."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
