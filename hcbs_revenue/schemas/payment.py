"""
Pydantic Schemas for Payments and Allocations.

Provides:
- Adjustment (categorized CARC adjustment)
- RemittanceDetail (per-claim line from a remittance file)
- Payment and ClaimPayment allocation records

Source: Payment reconciliation design, data model
Verified: 2026-10-19
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from hcbs_revenue.core.enums import AdjustmentType, PaymentMethod, ReconciliationStatus
from hcbs_revenue.schemas.claim import utc_now
from hcbs_revenue.utils.money import ZERO, money_sum


class Adjustment(BaseModel):
    """Single adjustment applied to a claim or to a whole payment."""

    model_config = ConfigDict(from_attributes=True)

    adjustment_type: AdjustmentType = Field(default=AdjustmentType.OTHER)
    group_code: Optional[str] = Field(default=None, max_length=2)
    code: str = Field(..., min_length=1, max_length=10)
    amount: Decimal
    description: Optional[str] = None


class RemittanceDetail(BaseModel):
    """Claim-level line reported by the payer on a remittance."""

    model_config = ConfigDict(from_attributes=True)

    claim_number: str
    payer_claim_number: Optional[str] = None
    status_code: Optional[str] = None
    billed_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    patient_responsibility: Decimal = ZERO
    service_date: Optional[date] = None
    adjustments: list[Adjustment] = Field(default_factory=list)


class Payment(BaseModel):
    """Funds received from a payer, allocated across claims on reconciliation."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    payer_id: UUID
    payment_date: date
    total_amount: Decimal = Field(..., ge=0)
    method: PaymentMethod = Field(default=PaymentMethod.EFT)
    reference_number: Optional[str] = Field(default=None, max_length=50)
    reconciliation_status: ReconciliationStatus = Field(
        default=ReconciliationStatus.UNRECONCILED
    )
    reconciliation_id: Optional[UUID] = None
    allocated_amount: Decimal = ZERO
    difference: Optional[Decimal] = None
    adjustments: list[Adjustment] = Field(
        default_factory=list, description="Payment-level (non-claim) adjustments"
    )
    prior_adjustments: Optional[list[Adjustment]] = Field(
        default=None, description="Payment-level adjustments replaced by the current reconciliation"
    )
    remittance_details: list[RemittanceDetail] = Field(default_factory=list)
    client_id: Optional[UUID] = Field(default=None, description="Client hint for matching")
    service_date: Optional[date] = Field(default=None, description="Service date hint")
    notes: Optional[str] = None
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def adjustment_total(self) -> Decimal:
        return money_sum(a.amount for a in self.adjustments)


class ClaimPayment(BaseModel):
    """Allocation of part of a payment to one claim."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    payment_id: UUID
    claim_id: UUID
    reconciliation_id: UUID
    amount: Decimal
    adjustments: list[Adjustment] = Field(default_factory=list)
    prior_adjudication_date: Optional[date] = Field(
        default=None, description="Claim adjudication date before this allocation"
    )
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def adjustment_total(self) -> Decimal:
        return money_sum(a.amount for a in self.adjustments)
