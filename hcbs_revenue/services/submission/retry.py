"""
Retry Policy.
Source: Gateway retry with exponential backoff
Verified: 2026-10-19

Value object composed around an adapter call. Retryable IntegrationErrors
are retried with capped exponential backoff plus jitter; anything else
(non-retryable integration errors included) surfaces on the first attempt.
Sleep and randomness are injectable so tests run on a fake clock.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from hcbs_revenue.core.config import BillingSettings
from hcbs_revenue.utils.errors import IntegrationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for retryable integration failures."""

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.2
    sleep: Callable[[float], Awaitable[None]] = field(
        default=asyncio.sleep, compare=False, repr=False
    )
    rand: Callable[[], float] = field(default=random.random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

    @classmethod
    def from_settings(cls, settings: BillingSettings, **overrides) -> "RetryPolicy":
        values = dict(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            multiplier=settings.RETRY_MULTIPLIER,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            jitter=settings.RETRY_JITTER,
        )
        values.update(overrides)
        return cls(**values)

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1``; ``attempt`` starts at 1."""
        raw = min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))
        spread = raw * self.jitter * (2 * self.rand() - 1)
        return max(0.0, raw + spread)

    async def run(self, func: Callable[[], Awaitable[T]], label: str = "call") -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func()
            except IntegrationError as e:
                if not e.retryable:
                    raise
                if attempt == self.max_attempts:
                    logger.error(f"{label}: all {self.max_attempts} attempts failed: {e.message}")
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{label}: attempt {attempt}/{self.max_attempts} failed "
                    f"({e.failure_type.value}). Retrying in {delay:.2f}s..."
                )
                await self.sleep(delay)
        raise AssertionError("unreachable")
