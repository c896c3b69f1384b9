"""
Service, Authorization and Payer Models.
Source: Claim lifecycle design, data model
Verified: 2026-10-19
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, Date, Enum, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from hcbs_revenue.core.enums import (
    AuthorizationStatus,
    BillingStatus,
    DocumentationStatus,
    IntegrationType,
    SubmissionMethod,
)
from hcbs_revenue.models.base import Base, TimeStampedModel, UUIDModel


class PayerModel(Base, UUIDModel, TimeStampedModel):
    """Payer configuration."""

    __tablename__ = "payers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    payer_code: Mapped[Optional[str]] = mapped_column(
        String(50), unique=True, nullable=True, comment="Identifier used on remittance files"
    )
    timely_filing_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    requires_authorization: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    integration_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    integration_type: Mapped[IntegrationType] = mapped_column(
        Enum(IntegrationType), default=IntegrationType.CLEARINGHOUSE, nullable=False
    )
    submission_method: Mapped[SubmissionMethod] = mapped_column(
        Enum(SubmissionMethod), default=SubmissionMethod.ELECTRONIC, nullable=False
    )


class ServiceModel(Base, UUIDModel, TimeStampedModel):
    """Delivered service (billing unit)."""

    __tablename__ = "services"

    client_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    service_code: Mapped[str] = mapped_column(String(20), nullable=False)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    units: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, comment="units * rate, stored for reporting"
    )
    billing_status: Mapped[BillingStatus] = mapped_column(
        Enum(BillingStatus), default=BillingStatus.UNBILLED, nullable=False, index=True
    )
    documentation_status: Mapped[DocumentationStatus] = mapped_column(
        Enum(DocumentationStatus), default=DocumentationStatus.INCOMPLETE, nullable=False
    )
    claim_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    authorization_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    program: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class AuthorizationModel(Base, UUIDModel, TimeStampedModel):
    """Authorized units for a client and service type over a window."""

    __tablename__ = "authorizations"

    client_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    authorization_number: Mapped[str] = mapped_column(String(50), nullable=False)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    authorized_units: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    used_units: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    status: Mapped[AuthorizationStatus] = mapped_column(
        Enum(AuthorizationStatus), default=AuthorizationStatus.ACTIVE, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
