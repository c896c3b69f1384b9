"""
In-Memory Billing Repository.
Source: Demo-mode adapters (dict-backed entity stores)
Verified: 2026-10-19

Backs demo mode and the test suite. Reads return deep copies so callers can
only change stored state through the repository. A transaction holds the
store lock, snapshots every table and restores the snapshot if the block
raises; single writes outside a transaction take the same lock so they never
interleave with an open unit of work.
"""

import asyncio
import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional
from uuid import UUID

from hcbs_revenue.core.enums import BillingStatus
from hcbs_revenue.repositories.base import OUTSTANDING_CLAIM_STATUSES, BillingRepository
from hcbs_revenue.schemas import (
    Authorization,
    Claim,
    ClaimPayment,
    ClaimStatusHistory,
    Payer,
    Payment,
    Service,
)
from hcbs_revenue.schemas.claim import utc_now
from hcbs_revenue.utils.errors import ConcurrencyConflictError, DatabaseError, NotFoundError

_TABLES = (
    "claims",
    "history",
    "services",
    "authorizations",
    "payers",
    "payments",
    "claim_payments",
    "sequences",
)


class _MemoryStore:
    """Shared tables behind every view of one in-memory repository."""

    def __init__(self) -> None:
        self.claims: dict[UUID, Claim] = {}
        self.history: list[ClaimStatusHistory] = []
        self.services: dict[UUID, Service] = {}
        self.authorizations: dict[UUID, Authorization] = {}
        self.payers: dict[UUID, Payer] = {}
        self.payments: dict[UUID, Payment] = {}
        self.claim_payments: dict[UUID, ClaimPayment] = {}
        self.sequences: dict[int, int] = {}
        self.lock = asyncio.Lock()

    def snapshot(self) -> dict:
        return {name: copy.deepcopy(getattr(self, name)) for name in _TABLES}

    def restore(self, snapshot: dict) -> None:
        for name, table in snapshot.items():
            setattr(self, name, table)


def _copy(entity):  # type: ignore[no-untyped-def]
    return entity.model_copy(deep=True) if entity is not None else None


class InMemoryBillingRepository(BillingRepository):
    """Dict-backed repository for demo mode and tests."""

    def __init__(self, store: Optional[_MemoryStore] = None, joined: bool = False):
        self._store = store or _MemoryStore()
        self._joined = joined

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["InMemoryBillingRepository"]:
        if self._joined:
            yield self
            return
        async with self._store.lock:
            snapshot = self._store.snapshot()
            try:
                yield InMemoryBillingRepository(self._store, joined=True)
            except BaseException:
                self._store.restore(snapshot)
                raise

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[None]:
        if self._joined:
            yield
            return
        async with self._store.lock:
            yield

    # =========================================================================
    # Claims
    # =========================================================================

    async def find_claim_by_id(self, claim_id: UUID) -> Optional[Claim]:
        return _copy(self._store.claims.get(claim_id))

    async def find_claim_by_number(self, claim_number: str) -> Optional[Claim]:
        for claim in self._store.claims.values():
            if claim.claim_number == claim_number:
                return _copy(claim)
        return None

    async def find_claims_by_ids(self, claim_ids: list[UUID]) -> list[Claim]:
        return [_copy(self._store.claims[i]) for i in claim_ids if i in self._store.claims]

    async def create_claim(self, claim: Claim) -> Claim:
        async with self._write():
            if claim.id in self._store.claims:
                raise DatabaseError(f"Claim {claim.id} already exists", duplicate_key=True)
            if any(c.claim_number == claim.claim_number for c in self._store.claims.values()):
                raise DatabaseError(
                    f"Claim number {claim.claim_number} already exists", duplicate_key=True
                )
            self._store.claims[claim.id] = _copy(claim)
        return _copy(claim)

    async def update_claim_status(self, claim: Claim, expected_version: int) -> Claim:
        async with self._write():
            stored = self._store.claims.get(claim.id)
            if stored is None:
                raise NotFoundError("Claim", claim.id)
            if stored.version != expected_version:
                raise ConcurrencyConflictError("Claim", claim.id, expected_version)
            updated = claim.model_copy(
                deep=True, update={"version": expected_version + 1, "updated_at": utc_now()}
            )
            self._store.claims[claim.id] = updated
        return _copy(updated)

    async def find_outstanding_claims_by_payer(self, payer_id: UUID) -> list[Claim]:
        return [
            _copy(c)
            for c in self._store.claims.values()
            if c.payer_id == payer_id and c.status in OUTSTANDING_CLAIM_STATUSES
        ]

    async def next_claim_sequence(self, year: int) -> int:
        async with self._write():
            value = self._store.sequences.get(year, 0) + 1
            self._store.sequences[year] = value
        return value

    # =========================================================================
    # Status history
    # =========================================================================

    async def append_status_history(self, entry: ClaimStatusHistory) -> ClaimStatusHistory:
        async with self._write():
            self._store.history.append(entry)
        return entry

    async def get_status_history(self, claim_id: UUID) -> list[ClaimStatusHistory]:
        return [h for h in self._store.history if h.claim_id == claim_id]

    # =========================================================================
    # Services, authorizations, payers
    # =========================================================================

    async def create_service(self, service: Service) -> Service:
        async with self._write():
            self._store.services[service.id] = _copy(service)
        return _copy(service)

    async def find_services_by_ids(self, service_ids: list[UUID]) -> list[Service]:
        return [_copy(self._store.services[i]) for i in service_ids if i in self._store.services]

    async def update_service_billing_status(
        self,
        service_id: UUID,
        billing_status: BillingStatus,
        claim_id: Optional[UUID],
        expected_status: Optional[BillingStatus] = None,
    ) -> Service:
        async with self._write():
            stored = self._store.services.get(service_id)
            if stored is None:
                raise NotFoundError("Service", service_id)
            if expected_status is not None and stored.billing_status != expected_status:
                raise ConcurrencyConflictError("Service", service_id, stored.version)
            updated = stored.model_copy(
                update={
                    "billing_status": billing_status,
                    "claim_id": claim_id,
                    "version": stored.version + 1,
                }
            )
            self._store.services[service_id] = updated
        return _copy(updated)

    async def create_authorization(self, authorization: Authorization) -> Authorization:
        async with self._write():
            self._store.authorizations[authorization.id] = _copy(authorization)
        return _copy(authorization)

    async def find_authorizations_for_client(self, client_id: UUID) -> list[Authorization]:
        return [
            _copy(a) for a in self._store.authorizations.values() if a.client_id == client_id
        ]

    async def update_authorization_usage(
        self, authorization_id: UUID, used_units: Decimal, expected_version: int
    ) -> Authorization:
        async with self._write():
            stored = self._store.authorizations.get(authorization_id)
            if stored is None:
                raise NotFoundError("Authorization", authorization_id)
            if stored.version != expected_version:
                raise ConcurrencyConflictError("Authorization", authorization_id, stored.version)
            updated = stored.model_copy(
                update={"used_units": used_units, "version": stored.version + 1}
            )
            self._store.authorizations[authorization_id] = updated
        return _copy(updated)

    async def create_payer(self, payer: Payer) -> Payer:
        async with self._write():
            self._store.payers[payer.id] = _copy(payer)
        return _copy(payer)

    async def find_payer_by_id(self, payer_id: UUID) -> Optional[Payer]:
        return _copy(self._store.payers.get(payer_id))

    async def find_payer_by_code(self, payer_code: str) -> Optional[Payer]:
        for payer in self._store.payers.values():
            if payer.payer_code == payer_code:
                return _copy(payer)
        return None

    # =========================================================================
    # Payments
    # =========================================================================

    async def create_payment(self, payment: Payment) -> Payment:
        async with self._write():
            if payment.reference_number and any(
                p.payer_id == payment.payer_id and p.reference_number == payment.reference_number
                for p in self._store.payments.values()
            ):
                raise DatabaseError(
                    f"Payment {payment.reference_number} already recorded", duplicate_key=True
                )
            self._store.payments[payment.id] = _copy(payment)
        return _copy(payment)

    async def find_payment_by_id(self, payment_id: UUID) -> Optional[Payment]:
        return _copy(self._store.payments.get(payment_id))

    async def find_payment_by_reference(
        self, payer_id: UUID, reference_number: str
    ) -> Optional[Payment]:
        for payment in self._store.payments.values():
            if payment.payer_id == payer_id and payment.reference_number == reference_number:
                return _copy(payment)
        return None

    async def update_payment(self, payment: Payment, expected_version: int) -> Payment:
        async with self._write():
            stored = self._store.payments.get(payment.id)
            if stored is None:
                raise NotFoundError("Payment", payment.id)
            if stored.version != expected_version:
                raise ConcurrencyConflictError("Payment", payment.id, expected_version)
            updated = payment.model_copy(deep=True, update={"version": expected_version + 1})
            self._store.payments[payment.id] = updated
        return _copy(updated)

    async def add_claim_payment(self, allocation: ClaimPayment) -> ClaimPayment:
        async with self._write():
            self._store.claim_payments[allocation.id] = _copy(allocation)
        return _copy(allocation)

    async def find_claim_payments(self, payment_id: UUID) -> list[ClaimPayment]:
        return [
            _copy(cp) for cp in self._store.claim_payments.values() if cp.payment_id == payment_id
        ]

    async def delete_claim_payments(self, payment_id: UUID) -> int:
        async with self._write():
            doomed = [
                cp_id
                for cp_id, cp in self._store.claim_payments.items()
                if cp.payment_id == payment_id
            ]
            for cp_id in doomed:
                del self._store.claim_payments[cp_id]
        return len(doomed)
