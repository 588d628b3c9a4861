"""Supervised background tasks for fire-and-forget refreshes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from pricewatch.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class BackgroundTaskPool:
    """Tracks every submitted task until it finishes.

    Tasks run independently of the caller that submitted them. An exception
    that escapes a task is logged, never re-raised into the event loop.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    @property
    def pending(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda finished: self._on_done(name, finished))
        return task

    def _on_done(self, name: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            logger.warning("Background task %s was cancelled", name)
            return
        exc = task.exception()
        if exc is not None:
            emit_structured_error(
                logger,
                code=ErrorCode.BACKGROUND_TASK_FAILED,
                message=f"{type(exc).__name__}: {exc}",
                suppressed=True,
                job_id=name,
            )

    async def drain(self) -> None:
        """Wait until every submitted task, including ones submitted meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
            # Let done callbacks run before checking again.
            await asyncio.sleep(0)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await self.drain()
