"""
Payer Adapter Contract.
Source: Provider abstraction layer (gateway base) and demo/live adapters
Verified: 2026-10-19

Every external payer integration (clearinghouse, state Medicaid portal, ...)
implements PayerAdapter. The submission orchestrator depends only on this
interface; adapters translate the claim into their own wire format and map
transport failures onto IntegrationError with a retryable classification.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from hcbs_revenue.core.enums import HealthState, IntegrationType
from hcbs_revenue.schemas import Claim, Payer, Service


@dataclass
class ClaimSubmission:
    """Everything an adapter needs to transmit one claim."""

    claim: Claim
    services: list[Service]
    payer: Optional[Payer] = None
    original_claim: Optional[Claim] = None


@dataclass
class SubmissionReceipt:
    """Payer acknowledgement of a transmitted claim."""

    tracking_id: str
    acknowledged: bool = False
    message: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResponse:
    """Payer-side status of a previously submitted claim."""

    tracking_id: str
    status: str
    denial_reason: Optional[str] = None
    denial_code: Optional[str] = None
    adjudication_date: Optional[date] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthStatus:
    """Result of an adapter health probe."""

    status: HealthState
    response_time_ms: float
    message: Optional[str] = None


class PayerAdapter(ABC):
    """Abstract base class for payer integrations."""

    integration_type: IntegrationType = IntegrationType.CLEARINGHOUSE

    def __init__(self, integration_id: str):
        self._integration_id = integration_id

    @property
    def integration_id(self) -> str:
        """Registry key; also the circuit breaker key."""
        return self._integration_id

    async def connect(self) -> None:
        """Open connections. Default adapters need none."""

    @abstractmethod
    async def submit_claim(self, submission: ClaimSubmission) -> SubmissionReceipt:
        """Transmit one claim and return the payer's tracking id."""

    @abstractmethod
    async def check_status(self, tracking_id: str) -> StatusResponse:
        """Poll the payer for a claim's adjudication status."""

    async def submit_batch(self, submissions: list[ClaimSubmission]) -> list[SubmissionReceipt]:
        """Transmit several claims. Adapters with a native batch endpoint override this."""
        return [await self.submit_claim(s) for s in submissions]

    @abstractmethod
    async def check_health(self) -> HealthStatus:
        """Probe the endpoint."""

    async def close(self) -> None:
        """Release connections."""
