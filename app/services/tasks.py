"""
Background side effects

Fire-and-forget tasks spawned after the primary write has committed.
Failures are logged here and never reach the caller.
"""

import asyncio
from typing import Any, Coroutine, Set

from app.core.logging import get_logger

logger = get_logger(__name__)


class TaskSpawner:
    def __init__(self):
        # Strong references so running tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task '{task.get_name()}' failed: {exc!r}", exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for everything spawned so far, including tasks spawned meanwhile"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


spawner = TaskSpawner()
