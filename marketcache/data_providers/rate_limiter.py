"""
Rate Governor

Process-wide request-permit limiter gating every outbound provider call.
A fixed-window token bucket: ``permits`` tokens, refilled to full at each
``window_seconds`` boundary. Interactive reads and the bulk backfill share
one instance, created by the service container and injected explicitly.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional
from loguru import logger

from marketcache.utils.clock import cancellable_sleep
from marketcache.utils.exceptions import OperationCancelledError


@dataclass
class RateGovernorConfig:
    """Configuration for the rate governor."""
    permits: int = 1000
    window_seconds: float = 60.0

    def __post_init__(self):
        if self.permits <= 0:
            raise ValueError("permits must be positive")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


class RateGovernor:
    """
    Shared permit pool for provider requests.

    ``acquire`` waits until a permit is available; it never fails because the
    pool is exhausted, only because the caller's cancel event fires. Waiters
    are served in arrival order.

    Usage:
        governor = RateGovernor(RateGovernorConfig(permits=1000, window_seconds=60))
        await governor.acquire(cancel_event)
    """

    def __init__(
        self,
        config: Optional[RateGovernorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateGovernorConfig()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._tokens = self.config.permits
        self._window_start = clock()

        # Monitoring
        self._total_acquired = 0
        self._total_waits = 0
        self._total_wait_seconds = 0.0

    def _refill(self) -> None:
        """Reset the bucket when one or more window boundaries have passed."""
        now = self._clock()
        elapsed = now - self._window_start
        if elapsed >= self.config.window_seconds:
            windows = int(elapsed // self.config.window_seconds)
            self._window_start += windows * self.config.window_seconds
            self._tokens = self.config.permits

    def remaining(self) -> int:
        """Permits left in the current window."""
        self._refill()
        return self._tokens

    def time_until_available(self) -> float:
        """Seconds until a permit can be handed out."""
        self._refill()
        if self._tokens > 0:
            return 0.0
        wait_until = self._window_start + self.config.window_seconds
        return max(0.0, wait_until - self._clock())

    async def _lock_or_cancel(self, cancel_event: Optional[asyncio.Event]) -> bool:
        """
        Queue for the bucket lock unless ``cancel_event`` fires first.

        Returns:
            True when the caller now holds the lock
        """
        if cancel_event is None:
            await self._lock.acquire()
            return True

        lock_task = asyncio.ensure_future(self._lock.acquire())
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({lock_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            cancel_task.cancel()
            if lock_task.done() and not lock_task.cancelled():
                self._lock.release()
            else:
                lock_task.cancel()
            raise

        cancel_task.cancel()
        if lock_task.done():
            return True
        # A cancelled Lock.acquire never takes the lock
        lock_task.cancel()
        return False

    async def acquire(self, cancel_event: Optional[asyncio.Event] = None) -> float:
        """
        Wait for a permit.

        Args:
            cancel_event: Optional cooperative cancellation signal, honoured
                both while queued behind other waiters and while waiting for
                the next window

        Returns:
            Seconds spent waiting

        Raises:
            OperationCancelledError: if cancel_event is set before a permit is granted
        """
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("Cancelled before acquiring a rate permit")

        started = self._clock()
        if not await self._lock_or_cancel(cancel_event):
            raise OperationCancelledError("Cancelled while waiting for a rate permit")
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise OperationCancelledError("Cancelled while waiting for a rate permit")

                self._refill()
                if self._tokens > 0:
                    self._tokens -= 1
                    break

                wait_time = self.time_until_available()
                logger.debug(f"Rate governor exhausted, waiting {wait_time:.2f}s for next window")
                if await cancellable_sleep(wait_time, cancel_event):
                    raise OperationCancelledError("Cancelled while waiting for a rate permit")
        finally:
            self._lock.release()

        waited = max(0.0, self._clock() - started)
        self._total_acquired += 1
        if waited > 0:
            self._total_waits += 1
            self._total_wait_seconds += waited
        return waited

    def get_stats(self) -> dict:
        """Get rate governor statistics."""
        return {
            "permits": self.config.permits,
            "window_seconds": self.config.window_seconds,
            "remaining": self.remaining(),
            "time_until_available": round(self.time_until_available(), 3),
            "total_acquired": self._total_acquired,
            "total_waits": self._total_waits,
            "total_wait_seconds": round(self._total_wait_seconds, 3),
        }
