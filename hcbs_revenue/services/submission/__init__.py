"""Resilient claim submission."""

from hcbs_revenue.services.submission.circuit_breaker import (
    BreakerRegistry,
    BreakerSnapshot,
    CircuitBreaker,
    CircuitBreakerConfig,
)
from hcbs_revenue.services.submission.orchestrator import (
    IntegrationHealth,
    SubmissionOrchestrator,
    SubmissionResult,
)
from hcbs_revenue.services.submission.retry import RetryPolicy

__all__ = [
    "BreakerRegistry",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "IntegrationHealth",
    "RetryPolicy",
    "SubmissionOrchestrator",
    "SubmissionResult",
]
