"""
SQLAlchemy Billing Repository.
Source: https://docs.sqlalchemy.org/en/20/orm/extensions/asyncio.html
Verified: 2026-10-19

Live-mode persistence. Each call outside a transaction runs in its own
short session; ``transaction()`` binds a session to a new repository view so
every write in the block commits or rolls back together. Driver errors are
translated into DatabaseError, with IntegrityError marked as duplicate key.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hcbs_revenue.core.enums import BillingStatus
from hcbs_revenue.models import (
    AuthorizationModel,
    ClaimModel,
    ClaimPaymentModel,
    ClaimStatusHistoryModel,
    PayerModel,
    PaymentModel,
    ServiceModel,
)
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
from hcbs_revenue.utils.errors import ConcurrencyConflictError, DatabaseError, NotFoundError

logger = logging.getLogger(__name__)


# =============================================================================
# Row mapping
# =============================================================================


def _claim_values(claim: Claim) -> dict[str, Any]:
    values = claim.model_dump()
    values["service_ids"] = [str(i) for i in claim.service_ids]
    return values


def _service_values(service: Service) -> dict[str, Any]:
    values = service.model_dump()
    values["amount"] = service.amount
    return values


def _payment_values(payment: Payment) -> dict[str, Any]:
    values = payment.model_dump()
    values["adjustments"] = [a.model_dump(mode="json") for a in payment.adjustments]
    if payment.prior_adjustments is not None:
        values["prior_adjustments"] = [a.model_dump(mode="json") for a in payment.prior_adjustments]
    values["remittance_details"] = [d.model_dump(mode="json") for d in payment.remittance_details]
    return values


def _claim_payment_values(allocation: ClaimPayment) -> dict[str, Any]:
    values = allocation.model_dump()
    values["adjustments"] = [a.model_dump(mode="json") for a in allocation.adjustments]
    return values


def _translate(error: SQLAlchemyError) -> DatabaseError:
    if isinstance(error, IntegrityError):
        return DatabaseError(f"Duplicate or conflicting row: {error.orig}", True, error)
    return DatabaseError(f"Database operation failed: {error}", False, error)


class SqlAlchemyBillingRepository(BillingRepository):
    """Async SQLAlchemy implementation of the billing repository."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        session: Optional[AsyncSession] = None,
    ):
        self._session_maker = session_maker
        self._session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SqlAlchemyBillingRepository"]:
        if self._session is not None:
            yield self
            return
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield SqlAlchemyBillingRepository(self._session_maker, session)
        except SQLAlchemyError as e:
            logger.error(f"Transaction rolled back: {e}")
            raise _translate(e) from e

    @asynccontextmanager
    async def _scope(self) -> AsyncIterator[AsyncSession]:
        """Yield the bound session, or a fresh auto-committing one."""
        try:
            if self._session is not None:
                yield self._session
                return
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            raise _translate(e) from e

    # =========================================================================
    # Claims
    # =========================================================================

    async def find_claim_by_id(self, claim_id: UUID) -> Optional[Claim]:
        async with self._scope() as session:
            row = await session.get(ClaimModel, claim_id, populate_existing=True)
            return Claim.model_validate(row) if row else None

    async def find_claim_by_number(self, claim_number: str) -> Optional[Claim]:
        async with self._scope() as session:
            result = await session.execute(
                select(ClaimModel).where(ClaimModel.claim_number == claim_number)
            )
            row = result.scalar_one_or_none()
            return Claim.model_validate(row) if row else None

    async def find_claims_by_ids(self, claim_ids: list[UUID]) -> list[Claim]:
        if not claim_ids:
            return []
        async with self._scope() as session:
            result = await session.execute(select(ClaimModel).where(ClaimModel.id.in_(claim_ids)))
            return [Claim.model_validate(row) for row in result.scalars()]

    async def create_claim(self, claim: Claim) -> Claim:
        async with self._scope() as session:
            session.add(ClaimModel(**_claim_values(claim)))
            await session.flush()
        return claim

    async def update_claim_status(self, claim: Claim, expected_version: int) -> Claim:
        now = datetime.now(timezone.utc)
        values = _claim_values(claim)
        for key in ("id", "created_at", "claim_number"):
            values.pop(key)
        values.update(version=expected_version + 1, updated_at=now)

        async with self._scope() as session:
            result = await session.execute(
                update(ClaimModel)
                .where(ClaimModel.id == claim.id, ClaimModel.version == expected_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                exists = await session.scalar(
                    select(func.count()).select_from(ClaimModel).where(ClaimModel.id == claim.id)
                )
                if not exists:
                    raise NotFoundError("Claim", claim.id)
                raise ConcurrencyConflictError("Claim", claim.id, expected_version)
        return claim.model_copy(update={"version": expected_version + 1, "updated_at": now})

    async def find_outstanding_claims_by_payer(self, payer_id: UUID) -> list[Claim]:
        async with self._scope() as session:
            result = await session.execute(
                select(ClaimModel).where(
                    ClaimModel.payer_id == payer_id,
                    ClaimModel.status.in_(list(OUTSTANDING_CLAIM_STATUSES)),
                )
            )
            return [Claim.model_validate(row) for row in result.scalars()]

    async def next_claim_sequence(self, year: int) -> int:
        async with self._scope() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(ClaimModel)
                .where(ClaimModel.claim_number.like(f"CLM-{year}-%"))
            )
            return (count or 0) + 1

    # =========================================================================
    # Status history
    # =========================================================================

    async def append_status_history(self, entry: ClaimStatusHistory) -> ClaimStatusHistory:
        async with self._scope() as session:
            session.add(ClaimStatusHistoryModel(**entry.model_dump()))
            await session.flush()
        return entry

    async def get_status_history(self, claim_id: UUID) -> list[ClaimStatusHistory]:
        async with self._scope() as session:
            result = await session.execute(
                select(ClaimStatusHistoryModel)
                .where(ClaimStatusHistoryModel.claim_id == claim_id)
                .order_by(ClaimStatusHistoryModel.created_at)
            )
            return [ClaimStatusHistory.model_validate(row) for row in result.scalars()]

    # =========================================================================
    # Services, authorizations, payers
    # =========================================================================

    async def create_service(self, service: Service) -> Service:
        async with self._scope() as session:
            session.add(ServiceModel(**_service_values(service)))
            await session.flush()
        return service

    async def find_services_by_ids(self, service_ids: list[UUID]) -> list[Service]:
        if not service_ids:
            return []
        async with self._scope() as session:
            result = await session.execute(
                select(ServiceModel)
                .where(ServiceModel.id.in_(service_ids))
                .execution_options(populate_existing=True)
            )
            return [Service.model_validate(row) for row in result.scalars()]

    async def update_service_billing_status(
        self,
        service_id: UUID,
        billing_status: BillingStatus,
        claim_id: Optional[UUID],
        expected_status: Optional[BillingStatus] = None,
    ) -> Service:
        async with self._scope() as session:
            stmt = update(ServiceModel).where(ServiceModel.id == service_id)
            if expected_status is not None:
                stmt = stmt.where(ServiceModel.billing_status == expected_status)
            result = await session.execute(
                stmt.values(
                    billing_status=billing_status,
                    claim_id=claim_id,
                    version=ServiceModel.version + 1,
                ).execution_options(synchronize_session=False)
            )
            row = await session.get(ServiceModel, service_id, populate_existing=True)
            if row is None:
                raise NotFoundError("Service", service_id)
            if result.rowcount == 0:
                raise ConcurrencyConflictError("Service", service_id, row.version)
            return Service.model_validate(row)

    async def create_authorization(self, authorization: Authorization) -> Authorization:
        async with self._scope() as session:
            session.add(AuthorizationModel(**authorization.model_dump()))
            await session.flush()
        return authorization

    async def find_authorizations_for_client(self, client_id: UUID) -> list[Authorization]:
        async with self._scope() as session:
            result = await session.execute(
                select(AuthorizationModel)
                .where(AuthorizationModel.client_id == client_id)
                .execution_options(populate_existing=True)
            )
            return [Authorization.model_validate(row) for row in result.scalars()]

    async def update_authorization_usage(
        self, authorization_id: UUID, used_units: Decimal, expected_version: int
    ) -> Authorization:
        async with self._scope() as session:
            result = await session.execute(
                update(AuthorizationModel)
                .where(
                    AuthorizationModel.id == authorization_id,
                    AuthorizationModel.version == expected_version,
                )
                .values(used_units=used_units, version=AuthorizationModel.version + 1)
                .execution_options(synchronize_session=False)
            )
            row = await session.get(AuthorizationModel, authorization_id, populate_existing=True)
            if row is None:
                raise NotFoundError("Authorization", authorization_id)
            if result.rowcount == 0:
                raise ConcurrencyConflictError("Authorization", authorization_id, row.version)
            return Authorization.model_validate(row)

    async def create_payer(self, payer: Payer) -> Payer:
        async with self._scope() as session:
            session.add(PayerModel(**payer.model_dump()))
            await session.flush()
        return payer

    async def find_payer_by_id(self, payer_id: UUID) -> Optional[Payer]:
        async with self._scope() as session:
            row = await session.get(PayerModel, payer_id)
            return Payer.model_validate(row) if row else None

    async def find_payer_by_code(self, payer_code: str) -> Optional[Payer]:
        async with self._scope() as session:
            result = await session.execute(
                select(PayerModel).where(PayerModel.payer_code == payer_code)
            )
            row = result.scalar_one_or_none()
            return Payer.model_validate(row) if row else None

    # =========================================================================
    # Payments
    # =========================================================================

    async def create_payment(self, payment: Payment) -> Payment:
        async with self._scope() as session:
            session.add(PaymentModel(**_payment_values(payment)))
            await session.flush()
        return payment

    async def find_payment_by_id(self, payment_id: UUID) -> Optional[Payment]:
        async with self._scope() as session:
            row = await session.get(PaymentModel, payment_id, populate_existing=True)
            return Payment.model_validate(row) if row else None

    async def find_payment_by_reference(
        self, payer_id: UUID, reference_number: str
    ) -> Optional[Payment]:
        async with self._scope() as session:
            result = await session.execute(
                select(PaymentModel).where(
                    PaymentModel.payer_id == payer_id,
                    PaymentModel.reference_number == reference_number,
                )
            )
            row = result.scalar_one_or_none()
            return Payment.model_validate(row) if row else None

    async def update_payment(self, payment: Payment, expected_version: int) -> Payment:
        values = _payment_values(payment)
        for key in ("id", "created_at"):
            values.pop(key)
        values["version"] = expected_version + 1

        async with self._scope() as session:
            result = await session.execute(
                update(PaymentModel)
                .where(PaymentModel.id == payment.id, PaymentModel.version == expected_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConcurrencyConflictError("Payment", payment.id, expected_version)
        return payment.model_copy(update={"version": expected_version + 1})

    async def add_claim_payment(self, allocation: ClaimPayment) -> ClaimPayment:
        async with self._scope() as session:
            session.add(ClaimPaymentModel(**_claim_payment_values(allocation)))
            await session.flush()
        return allocation

    async def find_claim_payments(self, payment_id: UUID) -> list[ClaimPayment]:
        async with self._scope() as session:
            result = await session.execute(
                select(ClaimPaymentModel)
                .where(ClaimPaymentModel.payment_id == payment_id)
                .order_by(ClaimPaymentModel.created_at)
            )
            return [ClaimPayment.model_validate(row) for row in result.scalars()]

    async def delete_claim_payments(self, payment_id: UUID) -> int:
        async with self._scope() as session:
            result = await session.execute(
                delete(ClaimPaymentModel)
                .where(ClaimPaymentModel.payment_id == payment_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0
