"""
Rate-limit backoff and cancellable waits for the report lifecycle.

Provides:
- BackoffPolicy: escalating create-report waits, min(step * attempt, cap) minutes
- StopSignal / CancellableWait: timed waits that end early when a run is stopped
"""
import asyncio
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from amzsync.observability import get_logger

logger = get_logger(__name__)

# Called with remaining seconds once per tick, e.g. to update the phase text
CountdownCallback = Callable[[float], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class BackoffPolicy:
    """Configuration for create-report backoff on 429."""
    step_minutes: float = 2.0
    cap_minutes: float = 10.0
    max_attempts: int = 5
    seconds_per_minute: float = 60.0

    def wait_minutes(self, attempt: int) -> float:
        """Wait after the ``attempt``-th (1-based) rate-limited call: 2, 4, 6, 8, 10, 10, ..."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return min(self.step_minutes * attempt, self.cap_minutes)

    def wait_seconds(self, attempt: int) -> float:
        return self.wait_minutes(attempt) * self.seconds_per_minute

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


class StopSignal:
    """
    Cooperative cancellation flag shared by a run and its waits.

    ``stop()`` only flips the flag and wakes sleepers; in-flight HTTP calls
    finish or time out on their own.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def stop(self) -> None:
        self._event.set()

    @property
    def stopped(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds. Returns True if stopped meanwhile."""
        if self._event.is_set():
            return True
        if timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False


class CancellableWait:
    """
    Timed waits that a StopSignal can interrupt.

    Long waits run in ``tick`` slices so callers can show a live countdown.
    """

    def __init__(self, signal: StopSignal, tick: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.signal = signal
        self.tick = tick
        self._clock = clock

    async def sleep(self, seconds: float, on_tick: Optional[CountdownCallback] = None) -> bool:
        """
        Wait ``seconds``. Returns True if the wait completed, False if stopped.
        """
        if self.signal.stopped:
            return False

        deadline = self._clock() + seconds
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return not self.signal.stopped

            if on_tick is not None:
                result = on_tick(remaining)
                if asyncio.iscoroutine(result):
                    await result

            slice_seconds = min(self.tick, remaining) if self.tick > 0 else remaining
            if await self.signal.wait(slice_seconds):
                return False


def minutes_left(remaining_seconds: float, seconds_per_minute: float = 60.0) -> int:
    """Countdown display value, rounded up so the last minute shows as 1."""
    return max(1, math.ceil(remaining_seconds / seconds_per_minute))
