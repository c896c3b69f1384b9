"""
Payment Models for Reconciliation.
Source: Payment reconciliation design, data model
Verified: 2026-10-19
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from hcbs_revenue.core.enums import PaymentMethod, ReconciliationStatus
from hcbs_revenue.models.base import Base, UUIDModel


class PaymentModel(Base, UUIDModel):
    """Payment received from a payer."""

    __tablename__ = "payments"

    payer_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod), nullable=False)
    reference_number: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, comment="Check or EFT trace number"
    )
    reconciliation_status: Mapped[ReconciliationStatus] = mapped_column(
        Enum(ReconciliationStatus),
        default=ReconciliationStatus.UNRECONCILED,
        nullable=False,
        index=True,
    )
    reconciliation_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    difference: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    adjustments: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    prior_adjustments: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    remittance_details: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    client_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    service_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("payer_id", "reference_number", name="uq_payments_payer_reference"),
    )


class ClaimPaymentModel(Base, UUIDModel):
    """Allocation of a payment to a claim."""

    __tablename__ = "claim_payments"

    payment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    reconciliation_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    adjustments: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    prior_adjudication_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
