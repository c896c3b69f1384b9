"""
Claim Models for the Revenue Cycle.
Source: Claim lifecycle design, data model
Verified: 2026-10-19
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from hcbs_revenue.core.enums import ClaimStatus, ClaimType, SubmissionMethod
from hcbs_revenue.models.base import Base, TimeStampedModel, UUIDModel


class ClaimModel(Base, UUIDModel, TimeStampedModel):
    """
    Claim row.

    ``version`` is the optimistic concurrency token; status writes are
    conditional on it.
    """

    __tablename__ = "claims"

    claim_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Human-readable claim number (e.g., CLM-2026-000001)",
    )
    claim_type: Mapped[ClaimType] = mapped_column(
        Enum(ClaimType), default=ClaimType.ORIGINAL, nullable=False
    )
    original_claim_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="RESTRICT"),
        nullable=True,
        comment="Original claim for adjustment/replacement/void claims",
    )
    status: Mapped[ClaimStatus] = mapped_column(
        Enum(ClaimStatus), default=ClaimStatus.DRAFT, nullable=False, index=True
    )

    client_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    payer_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payers.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    service_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    service_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    service_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    adjustment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    billed_amount_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    submission_method: Mapped[Optional[SubmissionMethod]] = mapped_column(
        Enum(SubmissionMethod), nullable=True
    )
    submission_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    adjudication_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    denial_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    denial_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    appeal_justification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    appeal_artifacts: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    integration_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    external_claim_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, index=True, comment="Payer/clearinghouse tracking id"
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (Index("ix_claims_payer_status", "payer_id", "status"),)


class ClaimStatusHistoryModel(Base, UUIDModel):
    """Append-only status change log."""

    __tablename__ = "claim_status_history"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[Optional[ClaimStatus]] = mapped_column(Enum(ClaimStatus), nullable=True)
    to_status: Mapped[ClaimStatus] = mapped_column(Enum(ClaimStatus), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    reconciliation_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
