"""
paysync/tasks.py

Fire-and-forget work detached from the request that triggered it. Tasks are
tracked so they are not garbage collected mid-flight, and their failures go
to the log instead of the caller.
"""

import asyncio
from typing import Awaitable, Callable, Set

from loguru import logger


class BackgroundWorker:
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self.completed = 0
        self.failures = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, factory: Callable[[], Awaitable]) -> asyncio.Task:
        task = asyncio.create_task(self._run(name, factory), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, factory: Callable[[], Awaitable]):
        try:
            result = await factory()
        except asyncio.CancelledError:
            logger.warning("Background task {} cancelled", name)
            raise
        except Exception as e:
            self.failures += 1
            logger.opt(exception=e).warning("Background task {} failed: {}", name, e)
            return None
        self.completed += 1
        logger.debug("Background task {} finished", name)
        return result

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        if not self._tasks:
            return
        logger.info("Waiting for {} background task(s)", len(self._tasks))
        try:
            await asyncio.wait_for(self.drain(), timeout)
        except asyncio.TimeoutError:
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            logger.warning("Background tasks cancelled on shutdown")
