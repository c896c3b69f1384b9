"""
Pydantic Schemas for Services, Authorizations and Payers.
Source: Claim lifecycle design, data model
Verified: 2026-10-19
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from hcbs_revenue.core.enums import (
    AuthorizationStatus,
    BillingStatus,
    DocumentationStatus,
    IntegrationType,
    SubmissionMethod,
)
from hcbs_revenue.utils.money import to_money


class Service(BaseModel):
    """Delivered billing unit. Belongs to at most one non-void claim."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    client_id: Optional[UUID] = None
    service_code: str = Field(..., min_length=1, max_length=20)
    service_type: str = Field(..., min_length=1, max_length=50)
    service_date: date
    units: Decimal = Field(..., ge=0)
    rate: Decimal = Field(..., ge=0)
    billing_status: BillingStatus = Field(default=BillingStatus.UNBILLED)
    documentation_status: DocumentationStatus = Field(default=DocumentationStatus.INCOMPLETE)
    claim_id: Optional[UUID] = None
    authorization_id: Optional[UUID] = None
    program: Optional[str] = None
    version: int = Field(default=1, ge=1)

    @property
    def amount(self) -> Decimal:
        return to_money(self.units * self.rate)


class Authorization(BaseModel):
    """Payer approval of a number of service units over a date window."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    client_id: UUID
    authorization_number: str = Field(..., min_length=1)
    service_type: str
    start_date: date
    end_date: date
    authorized_units: Decimal = Field(..., ge=0)
    used_units: Decimal = Field(default=Decimal("0"), ge=0)
    status: AuthorizationStatus = Field(default=AuthorizationStatus.ACTIVE)
    version: int = Field(default=1, ge=1)

    @property
    def remaining_units(self) -> Decimal:
        return self.authorized_units - self.used_units

    def covers(self, service: Service) -> bool:
        """Same client and service type, service date inside the window."""
        return (
            self.client_id == service.client_id
            and self.service_type == service.service_type
            and self.start_date <= service.service_date <= self.end_date
        )


def select_authorization(
    service: Service, authorizations: Sequence[Authorization]
) -> Optional[Authorization]:
    """
    Authorization a service draws its units from.

    An explicit ``authorization_id`` wins; otherwise the first active
    authorization covering the service, then any covering one.
    """
    if service.authorization_id is not None:
        return next((a for a in authorizations if a.id == service.authorization_id), None)
    covering = [a for a in authorizations if a.covers(service)]
    active = [a for a in covering if a.status == AuthorizationStatus.ACTIVE]
    return (active or covering or [None])[0]


class Payer(BaseModel):
    """Payer configuration relevant to billing."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1)
    payer_code: Optional[str] = Field(
        default=None, description="External identifier used on remittance files"
    )
    timely_filing_days: Optional[int] = Field(default=None, ge=1)
    requires_authorization: bool = True
    integration_id: Optional[str] = None
    integration_type: IntegrationType = Field(default=IntegrationType.CLEARINGHOUSE)
    submission_method: SubmissionMethod = Field(default=SubmissionMethod.ELECTRONIC)
