"""
Demo Payer Adapter.
Source: Demo-mode adapters (in-memory mock providers)
Verified: 2026-10-19

In-memory payer used in demo mode and in tests. Every submitted claim is
acknowledged with a DEMO-xxxxxxxx tracking id. Failures can be queued to
exercise retry and circuit breaker behavior, and payer-side statuses can be
set by hand to simulate adjudication.
"""

import asyncio
import logging
from collections import deque
from datetime import date
from typing import Optional
from uuid import uuid4

from hcbs_revenue.core.enums import HealthState, IntegrationType
from hcbs_revenue.integrations.base import (
    ClaimSubmission,
    HealthStatus,
    PayerAdapter,
    StatusResponse,
    SubmissionReceipt,
)
from hcbs_revenue.utils.errors import IntegrationError, NotFoundError

logger = logging.getLogger(__name__)


class DemoPayerAdapter(PayerAdapter):
    """Payer that accepts everything unless told otherwise."""

    integration_type = IntegrationType.DEMO

    def __init__(self, integration_id: str = "demo", latency_seconds: float = 0.0):
        super().__init__(integration_id)
        self._latency_seconds = latency_seconds
        self._failures: deque[IntegrationError] = deque()
        self._statuses: dict[str, StatusResponse] = {}
        self.submissions: list[ClaimSubmission] = []
        self.call_count = 0

    def queue_failure(self, error: IntegrationError, times: int = 1) -> None:
        """Make the next ``times`` calls raise ``error``."""
        for _ in range(times):
            self._failures.append(error)

    def set_status(
        self,
        tracking_id: str,
        status: str,
        denial_reason: Optional[str] = None,
        denial_code: Optional[str] = None,
        adjudication_date: Optional[date] = None,
    ) -> None:
        self._statuses[tracking_id] = StatusResponse(
            tracking_id=tracking_id,
            status=status,
            denial_reason=denial_reason,
            denial_code=denial_code,
            adjudication_date=adjudication_date,
        )

    async def _call(self) -> None:
        self.call_count += 1
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        if self._failures:
            raise self._failures.popleft()

    async def submit_claim(self, submission: ClaimSubmission) -> SubmissionReceipt:
        await self._call()
        tracking_id = f"DEMO-{uuid4().hex[:8].upper()}"
        self.submissions.append(submission)
        self.set_status(tracking_id, "acknowledged")
        logger.debug(f"Demo payer accepted {submission.claim.claim_number} as {tracking_id}")
        return SubmissionReceipt(
            tracking_id=tracking_id,
            acknowledged=True,
            message="Accepted by demo payer",
        )

    async def check_status(self, tracking_id: str) -> StatusResponse:
        await self._call()
        response = self._statuses.get(tracking_id)
        if response is None:
            raise NotFoundError("Tracking id", tracking_id)
        return response

    async def check_health(self) -> HealthStatus:
        return HealthStatus(
            status=HealthState.HEALTHY,
            response_time_ms=self._latency_seconds * 1000,
            message="Demo payer",
        )
