"""
Pydantic Schemas for Claims.

Provides:
- Claim entity with relationship invariant for adjustment/replacement/void
- ClaimStatusHistory append-only log entry

Source: Claim lifecycle design, data model
Verified: 2026-10-19
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hcbs_revenue.core.enums import ClaimStatus, ClaimType, SubmissionMethod
from hcbs_revenue.utils.money import ZERO, to_money


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Claim
# =============================================================================


class Claim(BaseModel):
    """
    Billing submission to a payer covering one or more services.

    Claims are never deleted; VOID is a terminal status. ``version`` is the
    optimistic concurrency token checked by the repository on every status
    write.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    claim_number: str = Field(..., min_length=1, max_length=50)
    claim_type: ClaimType = Field(default=ClaimType.ORIGINAL)
    original_claim_id: Optional[UUID] = None
    status: ClaimStatus = Field(default=ClaimStatus.DRAFT)

    client_id: Optional[UUID] = None
    payer_id: Optional[UUID] = None
    service_ids: list[UUID] = Field(default_factory=list)
    service_start_date: Optional[date] = None
    service_end_date: Optional[date] = None

    total_amount: Decimal = Field(default=ZERO, ge=0)
    paid_amount: Decimal = Field(default=ZERO)
    adjustment_amount: Decimal = Field(default=ZERO)
    billed_amount_locked: bool = False

    submission_method: Optional[SubmissionMethod] = None
    submission_date: Optional[date] = None
    adjudication_date: Optional[date] = None
    denial_reason: Optional[str] = None
    denial_code: Optional[str] = None
    void_reason: Optional[str] = None
    appeal_justification: Optional[str] = None
    appeal_artifacts: list[str] = Field(default_factory=list)

    integration_id: Optional[str] = None
    external_claim_id: Optional[str] = None
    notes: Optional[str] = None

    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_original_reference(self) -> "Claim":
        """Derived claims must reference an original; originals must not."""
        if self.claim_type == ClaimType.ORIGINAL and self.original_claim_id is not None:
            raise ValueError("original claims must not reference an original_claim_id")
        if self.claim_type != ClaimType.ORIGINAL and self.original_claim_id is None:
            raise ValueError(f"{self.claim_type.value} claims require an original_claim_id")
        return self

    @property
    def balance(self) -> Decimal:
        """Amount still expected from the payer."""
        return to_money(self.total_amount - self.paid_amount - self.adjustment_amount)

    @property
    def holds_authorized_units(self) -> bool:
        """Whether this claim's service units are counted in authorization usage."""
        return self.claim_type == ClaimType.ORIGINAL and self.status not in (
            ClaimStatus.DRAFT,
            ClaimStatus.VOID,
        )


# =============================================================================
# Status History
# =============================================================================


class ClaimStatusHistory(BaseModel):
    """Immutable record of one claim status change."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID = Field(default_factory=uuid4)
    claim_id: UUID
    from_status: Optional[ClaimStatus] = None
    to_status: ClaimStatus
    actor_id: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    payment_id: Optional[UUID] = None
    reconciliation_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)
