"""
Debounced scheduling for live suggestions

A job waits out a quiet period before running. Scheduling a new job cancels a
job that is still waiting; a job that has already started runs to completion
but its result is discarded when a newer job was scheduled in the meantime.
"""

import asyncio
import inspect
from typing import Any, Callable, Optional

from loguru import logger


class DebouncedScheduler:
    """Runs only the latest submitted job after `delay_ms` of quiet"""

    def __init__(self, delay_ms: int = 150):
        self.delay_ms = delay_ms
        self._waiting: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._waiting is not None and not self._waiting.done()

    def schedule(self, job: Callable[[], Any], on_result: Optional[Callable[[Any], None]] = None,
                 delay_ms: Optional[int] = None) -> asyncio.Task:
        """
        Schedule job; must be called from a running event loop.

        Args:
            job: Callable returning a value or an awaitable
            on_result: Called with the job's result unless superseded
            delay_ms: Override of the default quiet period

        Returns:
            The task; its result is None when superseded after starting
        """
        self.cancel_pending()
        self._generation += 1
        delay = self.delay_ms if delay_ms is None else delay_ms
        task = asyncio.get_running_loop().create_task(self._run(job, on_result, delay, self._generation))
        self._waiting = task
        return task

    def cancel_pending(self) -> bool:
        """Cancel a job that has not started yet"""
        cancelled = False
        if self._waiting is not None and not self._waiting.done():
            self._waiting.cancel()
            cancelled = True
            logger.debug("Cancelled pending debounced job")
        self._waiting = None
        return cancelled

    async def _run(self, job, on_result, delay_ms: int, generation: int):
        await asyncio.sleep(delay_ms / 1000)
        if self._waiting is asyncio.current_task():
            self._waiting = None
        result = job()
        if inspect.isawaitable(result):
            result = await result
        if generation != self._generation:
            logger.debug("Discarding superseded debounced result")
            return None
        if on_result is not None:
            on_result(result)
        return result
