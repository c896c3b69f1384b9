"""
Service-to-Claim Conversion.
Source: Claims service (claim creation and numbering)
Verified: 2026-10-19

Turns READY services into a DRAFT claim. All-or-nothing: the claim is
created and every service flips to IN_CLAIM inside one transaction, with a
compare-and-set on each service's billing status so a service claimed by a
concurrent conversion aborts this one.
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from hcbs_revenue.core.config import BillingSettings, get_settings
from hcbs_revenue.core.enums import BillingStatus, ClaimStatus
from hcbs_revenue.core.result import Result
from hcbs_revenue.repositories.base import BillingRepository
from hcbs_revenue.schemas import Claim, ClaimStatusHistory, Service
from hcbs_revenue.utils.errors import (
    BusinessError,
    ConcurrencyConflictError,
    DatabaseError,
    FieldError,
    NotFoundError,
    ValidationError,
)
from hcbs_revenue.utils.money import money_sum

logger = logging.getLogger(__name__)


def format_claim_number(year: int, sequence: int) -> str:
    return f"CLM-{year}-{sequence:06d}"


class ServiceToClaimConverter:
    """Creates DRAFT claims from ready services."""

    def __init__(self, repository: BillingRepository, settings: Optional[BillingSettings] = None):
        self.repository = repository
        self.settings = settings or get_settings()

    async def convert_services_to_claim(
        self,
        service_ids: list[UUID],
        payer_id: Optional[UUID],
        actor_id: str,
        notes: Optional[str] = None,
    ) -> Result[Claim]:
        """
        Create a DRAFT claim covering ``service_ids``.

        Args:
            service_ids: Services to bill; must all be READY and share a client
            payer_id: Payer the claim is billed to
            actor_id: User performing the conversion

        Returns:
            Result with the new claim, or the rule that blocked the conversion
        """
        if not service_ids:
            return Result.failure(ValidationError(
                "At least one service is required",
                [FieldError("service_ids", "EMPTY_SERVICE_IDS", "At least one service is required")],
            ))
        if payer_id is None:
            return Result.failure(ValidationError(
                "Payer is required",
                [FieldError("payer_id", "MISSING_PAYER_ID", "Payer is required")],
            ))

        payer = await self.repository.find_payer_by_id(payer_id)
        if payer is None:
            return Result.failure(NotFoundError("Payer", payer_id))

        unique_ids = list(dict.fromkeys(service_ids))
        for attempt in range(1, self.settings.TRANSITION_CONFLICT_RETRIES + 1):
            try:
                async with self.repository.transaction() as repo:
                    claim = await self._convert(repo, unique_ids, payer_id, actor_id, notes)
                logger.info(
                    f"Created claim {claim.claim_number} from {len(unique_ids)} service(s) "
                    f"(actor: {actor_id})"
                )
                return Result.success(claim)
            except BusinessError as e:
                return Result.failure(e)
            except ConcurrencyConflictError:
                return Result.failure(BusinessError(
                    "A service was claimed by another request during conversion",
                    rule="invalid-service-status",
                    context={"service_ids": [str(i) for i in unique_ids]},
                ))
            except DatabaseError as e:
                # Two conversions drew the same claim number; draw again
                if not e.duplicate_key or attempt == self.settings.TRANSITION_CONFLICT_RETRIES:
                    raise
                logger.warning(f"Claim number collision (attempt {attempt}), retrying")
        raise AssertionError("unreachable")

    async def _convert(
        self,
        repo: BillingRepository,
        service_ids: list[UUID],
        payer_id: UUID,
        actor_id: str,
        notes: Optional[str],
    ) -> Claim:
        services = await repo.find_services_by_ids(service_ids)
        self._check_services(service_ids, services)

        today = date.today()
        sequence = await repo.next_claim_sequence(today.year)
        claim = Claim(
            claim_number=format_claim_number(today.year, sequence),
            status=ClaimStatus.DRAFT,
            client_id=services[0].client_id,
            payer_id=payer_id,
            service_ids=[s.id for s in services],
            service_start_date=min(s.service_date for s in services),
            service_end_date=max(s.service_date for s in services),
            total_amount=money_sum(s.amount for s in services),
            notes=notes,
        )
        claim = await repo.create_claim(claim)

        for service in services:
            await repo.update_service_billing_status(
                service.id,
                BillingStatus.IN_CLAIM,
                claim.id,
                expected_status=BillingStatus.READY,
            )

        await repo.append_status_history(
            ClaimStatusHistory(
                claim_id=claim.id,
                from_status=None,
                to_status=ClaimStatus.DRAFT,
                actor_id=actor_id,
                reason=f"Created from {len(services)} service(s)",
            )
        )
        return claim

    def _check_services(self, requested: list[UUID], services: list[Service]) -> None:
        found = {s.id for s in services}
        missing = [str(i) for i in requested if i not in found]
        if missing:
            raise BusinessError(
                f"{len(missing)} service(s) not found",
                rule="service-not-found",
                context={"service_ids": missing},
            )

        not_ready = [
            {"service_id": str(s.id), "billing_status": s.billing_status.value}
            for s in services
            if s.billing_status != BillingStatus.READY or s.claim_id is not None
        ]
        if not_ready:
            raise BusinessError(
                "Only services in ready status can be added to a claim",
                rule="invalid-service-status",
                context={"services": not_ready},
            )

        clients = {s.client_id for s in services}
        if len(clients) > 1:
            raise BusinessError(
                "All services on a claim must belong to the same client",
                rule="different-clients",
                context={"client_ids": sorted(str(c) for c in clients)},
            )
