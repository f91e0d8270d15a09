"""
Circuit Breaker

Stops calling the provider after a run of consecutive transient failures.
The circuit stays open for a cool-down window, then lets a single trial call
through (half-open). One success closes it again, one failure re-opens it.
Other callers are rejected while the trial call is in flight.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
from loguru import logger


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation, requests allowed
    OPEN = "open"          # Failures exceeded threshold, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker settings."""
    failure_threshold: int = 5        # Consecutive failures before opening
    cooldown_seconds: float = 30.0    # Time before trying half-open


class CircuitBreaker:
    """Consecutive-failure circuit breaker for a single provider."""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.opened_at: Optional[float] = None
        self.trial_in_flight = False
        self.total_failures = 0
        self.total_rejections = 0

    def can_request(self) -> bool:
        """
        Check if a request can be made to the provider.

        Returns False while the circuit is open and the cool-down has not
        elapsed, and in half-open while another caller holds the trial call. A True
        answer in half-open makes this the trial call; it must end with
        record_success, record_failure or release_trial.
        """
        if self.state == CircuitState.OPEN:
            elapsed = self._clock() - (self.opened_at or 0.0)
            if elapsed < self.config.cooldown_seconds:
                self.total_rejections += 1
                return False
            self.state = CircuitState.HALF_OPEN
            logger.info(f"Circuit for {self.name} transitioning to half-open")

        if self.state == CircuitState.HALF_OPEN:
            if self.trial_in_flight:
                self.total_rejections += 1
                return False
            self.trial_in_flight = True
        return True

    def release_trial(self) -> None:
        """End a half-open trial call that produced no verdict (rate limited, cancelled)."""
        self.trial_in_flight = False

    def record_success(self) -> None:
        """Record a successful request."""
        self.consecutive_failures = 0
        self.trial_in_flight = False
        if self.state != CircuitState.CLOSED:
            self.state = CircuitState.CLOSED
            self.opened_at = None
            logger.info(f"Circuit breaker CLOSED for {self.name} - recovered")

    def record_failure(self, error: Optional[str] = None) -> None:
        """Record a transient failure."""
        self.consecutive_failures += 1
        self.total_failures += 1
        self.trial_in_flight = False
        logger.warning(f"Request failed for {self.name}: {error}")

        if self.state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
        elif self.state == CircuitState.CLOSED and self.consecutive_failures >= self.config.failure_threshold:
            self._open()

    def retry_in(self) -> float:
        """Seconds until an open circuit will accept a trial call."""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        return max(0.0, self.config.cooldown_seconds - (self._clock() - self.opened_at))

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = self._clock()
        logger.error(
            f"Circuit breaker OPENED for {self.name} after "
            f"{self.consecutive_failures} consecutive failures"
        )

    def get_stats(self) -> dict:
        return {
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "trial_in_flight": self.trial_in_flight,
            "failure_threshold": self.config.failure_threshold,
            "cooldown_seconds": self.config.cooldown_seconds,
            "retry_in": round(self.retry_in(), 3),
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
        }
