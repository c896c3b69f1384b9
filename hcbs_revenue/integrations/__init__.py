"""Payer integrations."""

from hcbs_revenue.integrations.base import (
    ClaimSubmission,
    HealthStatus,
    PayerAdapter,
    StatusResponse,
    SubmissionReceipt,
)
from hcbs_revenue.integrations.clearinghouse import ClearinghouseAdapter
from hcbs_revenue.integrations.demo import DemoPayerAdapter
from hcbs_revenue.integrations.registry import DEMO_INTEGRATION_ID, AdapterRegistry

__all__ = [
    "AdapterRegistry",
    "ClaimSubmission",
    "ClearinghouseAdapter",
    "DEMO_INTEGRATION_ID",
    "DemoPayerAdapter",
    "HealthStatus",
    "PayerAdapter",
    "StatusResponse",
    "SubmissionReceipt",
]
