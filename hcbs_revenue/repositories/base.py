"""
Billing Repository Contract.
Source: Persistence contract consumed by the revenue cycle core
Verified: 2026-10-19

Abstract base class for the storage the core depends on. Two implementations
ship with the package: an in-memory store for demo mode and tests, and a
SQLAlchemy async store for live mode.

Every method is atomic at the single-entity level. Multi-entity writes are
grouped with ``transaction()``, which yields a repository bound to one unit
of work; calling ``transaction()`` on that bound repository joins it.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import Optional
from uuid import UUID

from hcbs_revenue.core.enums import BillingStatus, ClaimStatus
from hcbs_revenue.schemas import (
    Authorization,
    Claim,
    ClaimPayment,
    ClaimStatusHistory,
    Payer,
    Payment,
    Service,
)


# Claims still expecting money from the payer
OUTSTANDING_CLAIM_STATUSES = frozenset(
    {ClaimStatus.SUBMITTED, ClaimStatus.PENDING, ClaimStatus.PARTIAL_PAID}
)


class BillingRepository(ABC):
    """Abstract persistence for claims, services, payers and payments."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager["BillingRepository"]:
        """Open (or join) a unit of work. Rolls back if the block raises."""

    # =========================================================================
    # Claims
    # =========================================================================

    @abstractmethod
    async def find_claim_by_id(self, claim_id: UUID) -> Optional[Claim]:
        pass

    @abstractmethod
    async def find_claim_by_number(self, claim_number: str) -> Optional[Claim]:
        pass

    @abstractmethod
    async def find_claims_by_ids(self, claim_ids: list[UUID]) -> list[Claim]:
        pass

    @abstractmethod
    async def create_claim(self, claim: Claim) -> Claim:
        """Insert a claim. Duplicate claim numbers raise DatabaseError(duplicate_key=True)."""

    @abstractmethod
    async def update_claim_status(self, claim: Claim, expected_version: int) -> Claim:
        """
        Persist a claim's status and lifecycle fields.

        Raises ConcurrencyConflictError when the stored version differs from
        ``expected_version``. Returns the claim with its version incremented.
        """

    @abstractmethod
    async def find_outstanding_claims_by_payer(self, payer_id: UUID) -> list[Claim]:
        """Claims awaiting payment (SUBMITTED, PENDING, PARTIAL_PAID)."""

    @abstractmethod
    async def next_claim_sequence(self, year: int) -> int:
        """Next sequence number for claim numbers issued in ``year``."""

    # =========================================================================
    # Status history
    # =========================================================================

    @abstractmethod
    async def append_status_history(self, entry: ClaimStatusHistory) -> ClaimStatusHistory:
        pass

    @abstractmethod
    async def get_status_history(self, claim_id: UUID) -> list[ClaimStatusHistory]:
        """Entries for a claim, oldest first."""

    # =========================================================================
    # Services, authorizations, payers
    # =========================================================================

    @abstractmethod
    async def create_service(self, service: Service) -> Service:
        pass

    @abstractmethod
    async def find_services_by_ids(self, service_ids: list[UUID]) -> list[Service]:
        pass

    @abstractmethod
    async def update_service_billing_status(
        self,
        service_id: UUID,
        billing_status: BillingStatus,
        claim_id: Optional[UUID],
        expected_status: Optional[BillingStatus] = None,
    ) -> Service:
        """
        Set a service's billing status and claim link.

        When ``expected_status`` is given the write is compare-and-set: a
        service in any other status raises ConcurrencyConflictError.
        """

    @abstractmethod
    async def create_authorization(self, authorization: Authorization) -> Authorization:
        pass

    @abstractmethod
    async def find_authorizations_for_client(self, client_id: UUID) -> list[Authorization]:
        pass

    @abstractmethod
    async def update_authorization_usage(
        self, authorization_id: UUID, used_units: Decimal, expected_version: int
    ) -> Authorization:
        """
        Set the units consumed from an authorization.

        Raises ConcurrencyConflictError when the stored version differs from
        ``expected_version``.
        """

    @abstractmethod
    async def create_payer(self, payer: Payer) -> Payer:
        pass

    @abstractmethod
    async def find_payer_by_id(self, payer_id: UUID) -> Optional[Payer]:
        pass

    @abstractmethod
    async def find_payer_by_code(self, payer_code: str) -> Optional[Payer]:
        pass

    # =========================================================================
    # Payments
    # =========================================================================

    @abstractmethod
    async def create_payment(self, payment: Payment) -> Payment:
        """Insert a payment. A repeated (payer, reference) pair is a duplicate key."""

    @abstractmethod
    async def find_payment_by_id(self, payment_id: UUID) -> Optional[Payment]:
        pass

    @abstractmethod
    async def find_payment_by_reference(
        self, payer_id: UUID, reference_number: str
    ) -> Optional[Payment]:
        pass

    @abstractmethod
    async def update_payment(self, payment: Payment, expected_version: int) -> Payment:
        """Persist reconciliation fields with an optimistic version check."""

    @abstractmethod
    async def add_claim_payment(self, allocation: ClaimPayment) -> ClaimPayment:
        pass

    @abstractmethod
    async def find_claim_payments(self, payment_id: UUID) -> list[ClaimPayment]:
        pass

    @abstractmethod
    async def delete_claim_payments(self, payment_id: UUID) -> int:
        """Remove a payment's allocations, returning how many were removed."""
