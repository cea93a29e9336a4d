"""Queue-draining background task base class."""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

from context_coach.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class BackgroundConsumer(Generic[T]):
    """Own an unbounded queue and process its items one at a time.

    Subclasses implement :meth:`handle`. An exception raised while handling
    one item is logged and the loop moves on to the next item.
    """

    name = "consumer"

    def __init__(self) -> None:
        self._queue: asyncio.Queue[T] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, item: T) -> None:
        """Hand an item to the consumer without waiting."""
        self._queue.put_nowait(item)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("Started %s", self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Stopped %s", self.name)

    async def join(self) -> None:
        """Wait until every enqueued item has been handled by the running loop."""
        await self._queue.join()

    async def drain(self) -> None:
        """Handle queued items inline; used when no loop task is running."""
        while not self._queue.empty():
            item = self._queue.get_nowait()
            try:
                await self._handle_safely(item)
            finally:
                self._queue.task_done()

    async def handle(self, item: T) -> None:
        raise NotImplementedError

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._handle_safely(item)
            finally:
                self._queue.task_done()

    async def _handle_safely(self, item: T) -> None:
        try:
            await self.handle(item)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s failed to handle %r", self.name, item)


__all__ = ["BackgroundConsumer"]
