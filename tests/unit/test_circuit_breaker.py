"""
Unit Tests - Circuit Breaker
"""
import pytest

from marketcache.data_providers.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


class ManualClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaker:
    """Tests for CircuitBreaker state transitions."""

    @pytest.fixture
    def manual_clock(self):
        return ManualClock()

    @pytest.fixture
    def breaker(self, manual_clock):
        return CircuitBreaker(
            "eodhd",
            CircuitBreakerConfig(failure_threshold=3, cooldown_seconds=30),
            clock=manual_clock,
        )

    def _fail(self, breaker, times):
        for _ in range(times):
            breaker.record_failure("boom")

    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.can_request() is True

    def test_opens_after_threshold(self, breaker):
        self._fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

        self._fail(breaker, 1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.can_request() is False
        assert breaker.total_rejections == 1

    def test_success_resets_consecutive_failures(self, breaker):
        self._fail(breaker, 2)
        breaker.record_success()
        self._fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 2

    def test_half_open_after_cooldown(self, breaker, manual_clock):
        self._fail(breaker, 3)
        manual_clock.now += 29
        assert breaker.can_request() is False
        assert breaker.retry_in() == pytest.approx(1.0)

        manual_clock.now += 1
        assert breaker.can_request() is True
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self, breaker, manual_clock):
        self._fail(breaker, 3)
        manual_clock.now += 30
        breaker.can_request()

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.retry_in() == 0.0

    def test_half_open_failure_reopens(self, breaker, manual_clock):
        self._fail(breaker, 3)
        manual_clock.now += 30
        breaker.can_request()

        breaker.record_failure("still down")
        assert breaker.state == CircuitState.OPEN
        assert breaker.retry_in() == pytest.approx(30.0)

    def test_stats(self, breaker):
        self._fail(breaker, 3)
        stats = breaker.get_stats()
        assert stats["state"] == "open"
        assert stats["total_failures"] == 3
        assert stats["failure_threshold"] == 3

    def test_half_open_admits_single_trial_call(self, breaker, manual_clock):
        """Should reject other callers while the half-open trial call is in flight."""
        self._fail(breaker, 3)
        manual_clock.now += 30

        assert breaker.can_request() is True
        assert breaker.can_request() is False
        assert breaker.can_request() is False
        assert breaker.total_rejections == 2
        assert breaker.get_stats()["trial_in_flight"] is True

        breaker.record_success()
        assert breaker.can_request() is True
        assert breaker.can_request() is True

    def test_released_trial_lets_next_caller_in(self, breaker, manual_clock):
        self._fail(breaker, 3)
        manual_clock.now += 30
        assert breaker.can_request() is True

        breaker.release_trial()

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_request() is True
        assert breaker.can_request() is False
