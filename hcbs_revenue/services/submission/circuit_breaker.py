"""
Circuit Breaker and Breaker Registry.

Provides:
- CircuitBreaker (CLOSED / OPEN / HALF_OPEN) with single-probe half-open
- BreakerRegistry owning one breaker per integration id
- Snapshots for health reporting

Source: Provider health tracking (consecutive failures, circuit_open_until)
Verified: 2026-10-19

Breaker state sits behind a threading.Lock that is never held across an
await, so updates are atomic for concurrent tasks and threads alike. Every
IntegrationError from the guarded call counts toward the threshold, 4xx
answers included; ``retryable`` only decides whether the caller retries.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, Optional, TypeVar

from hcbs_revenue.core.config import BillingSettings
from hcbs_revenue.core.enums import CircuitState
from hcbs_revenue.utils.errors import IntegrationError, ServiceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds shared by every breaker in a registry."""

    failure_threshold: int = 5
    reset_timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: BillingSettings) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            reset_timeout_seconds=settings.CIRCUIT_RESET_TIMEOUT_SECONDS,
        )


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of one breaker."""

    integration_id: str
    state: CircuitState
    consecutive_failures: int
    last_failure_at: Optional[float]
    opened_at: Optional[float]
    failure_threshold: int
    reset_timeout_seconds: float

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreaker:
    """Guards one integration endpoint."""

    def __init__(
        self,
        integration_id: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Clock = time.monotonic,
    ):
        self.integration_id = integration_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: Optional[float] = None
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failures

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            return BreakerSnapshot(
                integration_id=self.integration_id,
                state=self._state,
                consecutive_failures=self._failures,
                last_failure_at=self._last_failure_at,
                opened_at=self._opened_at,
                failure_threshold=self.config.failure_threshold,
                reset_timeout_seconds=self.config.reset_timeout_seconds,
            )

    # =========================================================================
    # State Changes (all under self._lock)
    # =========================================================================

    def _set_state(self, state: CircuitState) -> None:
        if state != self._state:
            logger.warning(
                f"Circuit breaker {self.integration_id}: "
                f"{self._state.value} -> {state.value} (failures: {self._failures})"
            )
            self._state = state

    def _admit(self) -> None:
        """Let a call through or raise ServiceUnavailableError."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return

            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - (self._opened_at or 0.0)
                if elapsed < self.config.reset_timeout_seconds:
                    raise ServiceUnavailableError(
                        self.integration_id,
                        retry_after_seconds=self.config.reset_timeout_seconds - elapsed,
                    )
                self._set_state(CircuitState.HALF_OPEN)

            # HALF_OPEN: exactly one probe at a time
            if self._probe_in_flight:
                raise ServiceUnavailableError(self.integration_id)
            self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._probe_in_flight = False
            self._set_state(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            now = self._clock()
            self._last_failure_at = now
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._opened_at = now
                self._set_state(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._failures >= self.config.failure_threshold
            ):
                self._opened_at = now
                self._set_state(CircuitState.OPEN)

    def _release_probe(self) -> None:
        """End a probe without a verdict; the next call probes again."""
        with self._lock:
            self._probe_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._last_failure_at = None
            self._opened_at = None
            self._probe_in_flight = False
            self._set_state(CircuitState.CLOSED)

    # =========================================================================
    # Guarded Call
    # =========================================================================

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Invoke ``func`` if the breaker admits it.

        Raises:
            ServiceUnavailableError: breaker OPEN, or a half-open probe is already in flight
        """
        self._admit()
        try:
            result = await func()
        except (IntegrationError, asyncio.CancelledError):
            self.record_failure()
            raise
        except Exception:
            self._release_probe()
            raise
        self.record_success()
        return result


class BreakerRegistry:
    """
    Process-wide breakers keyed by integration id.

    Created at service start and closed at shutdown; breakers are created
    lazily on first use.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Clock = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: BillingSettings, clock: Clock = time.monotonic) -> "BreakerRegistry":
        return cls(CircuitBreakerConfig.from_settings(settings), clock)

    def get(self, integration_id: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(integration_id)
            if breaker is None:
                breaker = CircuitBreaker(integration_id, self.config, self._clock)
                self._breakers[integration_id] = breaker
            return breaker

    def snapshot(self) -> dict[str, BreakerSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.integration_id: b.snapshot() for b in breakers}

    def reset(self, integration_id: str) -> None:
        self.get(integration_id).reset()

    def close(self) -> None:
        with self._lock:
            count = len(self._breakers)
            self._breakers.clear()
        logger.info(f"Breaker registry closed ({count} breaker(s))")
