"""
Unit Tests - Rate Governor
Permit accounting, window refill, waiting and cancellation.
"""
import asyncio
import time
import pytest

from marketcache.data_providers.rate_limiter import RateGovernor, RateGovernorConfig
from marketcache.utils.exceptions import OperationCancelledError


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRateGovernorConfig:
    """Tests for RateGovernorConfig validation."""

    def test_defaults(self):
        config = RateGovernorConfig()
        assert config.permits == 1000
        assert config.window_seconds == 60.0

    @pytest.mark.parametrize("permits,window", [(0, 60), (-1, 60), (10, 0), (10, -5)])
    def test_rejects_non_positive_values(self, permits, window):
        with pytest.raises(ValueError):
            RateGovernorConfig(permits=permits, window_seconds=window)


class TestRateGovernor:
    """Tests for RateGovernor."""

    @pytest.fixture
    def manual_clock(self):
        return ManualClock()

    @pytest.fixture
    def governor(self, manual_clock):
        return RateGovernor(RateGovernorConfig(permits=3, window_seconds=10), clock=manual_clock)

    # =====================
    # Accounting
    # =====================

    @pytest.mark.asyncio
    async def test_acquire_within_budget_does_not_wait(self, governor):
        for _ in range(3):
            waited = await governor.acquire()
            assert waited == 0.0
        assert governor.remaining() == 0

    @pytest.mark.asyncio
    async def test_window_boundary_refills_bucket(self, governor, manual_clock):
        for _ in range(3):
            await governor.acquire()
        assert governor.time_until_available() == pytest.approx(10.0)

        manual_clock.now += 4
        assert governor.time_until_available() == pytest.approx(6.0)

        manual_clock.now += 6
        assert governor.remaining() == 3
        assert governor.time_until_available() == 0.0

    @pytest.mark.asyncio
    async def test_several_elapsed_windows_refill_once(self, governor, manual_clock):
        await governor.acquire()
        manual_clock.now += 35
        assert governor.remaining() == 3
        # Window start aligned to the last boundary
        assert governor.time_until_available() == 0.0
        for _ in range(3):
            await governor.acquire()
        assert governor.time_until_available() == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_stats(self, governor):
        await governor.acquire()
        stats = governor.get_stats()
        assert stats["permits"] == 3
        assert stats["remaining"] == 2
        assert stats["total_acquired"] == 1
        assert stats["total_waits"] == 0

    # =====================
    # Waiting
    # =====================

    @pytest.mark.asyncio
    async def test_request_beyond_budget_waits_for_next_window(self):
        governor = RateGovernor(RateGovernorConfig(permits=2, window_seconds=0.2))
        await governor.acquire()
        await governor.acquire()

        started = time.monotonic()
        waited = await governor.acquire()
        elapsed = time.monotonic() - started

        assert elapsed >= 0.1
        assert waited > 0
        assert governor.get_stats()["total_waits"] == 1

    @pytest.mark.asyncio
    async def test_never_more_than_budget_in_one_window(self):
        governor = RateGovernor(RateGovernorConfig(permits=5, window_seconds=0.3))
        stamps = []

        async def take():
            await governor.acquire()
            stamps.append(time.monotonic())

        start = time.monotonic()
        await asyncio.gather(*(take() for _ in range(7)))

        first_window = [s for s in stamps if s - start < 0.25]
        assert len(stamps) == 7
        assert len(first_window) == 5

    # =====================
    # Cancellation
    # =====================

    @pytest.mark.asyncio
    async def test_cancel_before_acquire(self, governor):
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            await governor.acquire(cancel)
        assert governor.remaining() == 3

    @pytest.mark.asyncio
    async def test_cancel_while_waiting(self):
        governor = RateGovernor(RateGovernorConfig(permits=1, window_seconds=30))
        await governor.acquire()
        cancel = asyncio.Event()

        task = asyncio.create_task(governor.acquire(cancel))
        await asyncio.sleep(0.05)
        assert not task.done()

        cancel.set()
        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(task, timeout=1)
        assert governor.get_stats()["total_acquired"] == 1

    @pytest.mark.asyncio
    async def test_cancel_while_queued_behind_sleeping_waiter(self):
        """Should cancel a queued waiter at once, not after the holder's window sleep."""
        governor = RateGovernor(RateGovernorConfig(permits=1, window_seconds=5))
        await governor.acquire()

        holder = asyncio.create_task(governor.acquire())
        await asyncio.sleep(0.05)
        cancel = asyncio.Event()
        queued = asyncio.create_task(governor.acquire(cancel))
        await asyncio.sleep(0.05)
        assert not queued.done()

        started = time.monotonic()
        cancel.set()
        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(queued, timeout=1)
        assert time.monotonic() - started < 0.5

        holder.cancel()
        with pytest.raises(asyncio.CancelledError):
            await holder
        assert not governor._lock.locked()

    @pytest.mark.asyncio
    async def test_queued_waiter_with_cancel_event_still_gets_permit(self):
        governor = RateGovernor(RateGovernorConfig(permits=1, window_seconds=0.2))
        await governor.acquire()
        cancel = asyncio.Event()

        holder = asyncio.create_task(governor.acquire())
        await asyncio.sleep(0)
        queued = asyncio.create_task(governor.acquire(cancel))

        await asyncio.wait_for(asyncio.gather(holder, queued), timeout=2)

        assert governor.get_stats()["total_acquired"] == 3
        assert not governor._lock.locked()
