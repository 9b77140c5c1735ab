"""
Pipeline Runner

Runs validation pipelines as background asyncio tasks so webhook intake can
acknowledge immediately. Task references are held until completion and
cancelled on shutdown.
"""

import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class PipelineRunner:
    """Owns the set of in-flight pipeline tasks."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        """Schedule a pipeline run on the running loop."""
        if self._closed:
            coro.close()
            raise RuntimeError("Pipeline runner is shut down")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info(f"Pipeline task submitted: {task.get_name()} ({len(self._tasks)} in flight)")
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            logger.warning(f"Pipeline task cancelled: {task.get_name()}")
            return

        error = task.exception()
        if error is not None:
            logger.error(f"Pipeline task {task.get_name()} failed: {error}", exc_info=error)

    async def drain(self) -> None:
        """Wait for every in-flight task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight tasks and wait for their cancellation handlers."""
        self._closed = True
        tasks = list(self._tasks)
        if not tasks:
            return

        logger.info(f"Cancelling {len(tasks)} in-flight pipeline task(s)...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
