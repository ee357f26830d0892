"""
Progress snapshots for status polling and live streams.

Each stream subscriber gets its own bounded queue fed by its own ticker
task. A slow consumer only ever loses its own oldest snapshots; a
disconnected consumer cancels its ticker when the generator is closed.
"""
import asyncio
import contextlib
from typing import AsyncIterator, Optional

from amzsync.config import config
from amzsync.models import SyncState
from amzsync.observability import get_logger
from amzsync.state import SyncStateStore

logger = get_logger(__name__)

_CLOSED = object()


class ProgressPublisher:
    """
    Read-only view over a SyncStateStore.

    Usage:
        publisher = ProgressPublisher(state)
        async for snapshot in publisher.subscribe():
            send(snapshot.to_dict())
    """

    def __init__(self, state: SyncStateStore, queue_size: int = None):
        self.state = state
        self.queue_size = max(2, queue_size or config.sync.stream_queue_size)
        self._subscribers = 0

    @property
    def subscriber_count(self) -> int:
        return self._subscribers

    def snapshot(self) -> SyncState:
        return self.state.snapshot()

    async def subscribe(
        self,
        interval: Optional[float] = None,
        max_lifetime: Optional[float] = None,
    ) -> AsyncIterator[SyncState]:
        """
        Yield the current snapshot, then one per ``interval`` seconds.

        Ends after the first snapshot showing a finished run
        (``not is_running and current_batch > 0``) or once ``max_lifetime``
        seconds have passed.
        """
        interval = interval if interval is not None else config.sync.stream_interval_seconds
        max_lifetime = max_lifetime if max_lifetime is not None else config.sync.stream_max_lifetime_seconds

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        ticker = asyncio.create_task(self._tick(queue, interval, max_lifetime))
        self._subscribers += 1
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._subscribers -= 1
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker

    async def _tick(self, queue: asyncio.Queue, interval: float, max_lifetime: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_lifetime

        while True:
            snapshot = self.state.snapshot()
            self._offer(queue, snapshot)
            if snapshot.is_idle:
                break
            if loop.time() >= deadline:
                logger.info("Progress stream reached its maximum lifetime")
                break
            await asyncio.sleep(interval)

        self._offer(queue, _CLOSED)

    @staticmethod
    def _offer(queue: asyncio.Queue, item) -> None:
        """Enqueue without blocking, dropping the oldest entry when full."""
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(item)
