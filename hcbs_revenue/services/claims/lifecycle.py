"""
Claim Lifecycle Service.

Provides:
- validate_claim / batch_validate_claims
- deny, adjudicate, void, appeal and reopen
- Adjustment and replacement claims
- Claim history

Source: Claims service (workflow operations over the state machine)
Verified: 2026-10-19
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from hcbs_revenue.core.config import BillingSettings, get_settings
from hcbs_revenue.core.enums import ClaimStatus, ClaimType
from hcbs_revenue.core.result import Result
from hcbs_revenue.repositories.base import BillingRepository
from hcbs_revenue.schemas import Claim, ClaimStatusHistory
from hcbs_revenue.services.batch import BatchResult, run_batch
from hcbs_revenue.services.claims.conversion import format_claim_number
from hcbs_revenue.services.claims.state_machine import (
    ClaimStateMachine,
    TransitionRequest,
    invalid_transition,
)
from hcbs_revenue.services.validation import ValidationEngine, ValidationResult
from hcbs_revenue.utils.errors import (
    BusinessError,
    DatabaseError,
    NotFoundError,
    ValidationError,
)
from hcbs_revenue.utils.money import TOLERANCE, ZERO, to_money

logger = logging.getLogger(__name__)

# Statuses a correction (adjustment/replacement) claim may be created from
CORRECTABLE_STATUSES = frozenset({ClaimStatus.PAID, ClaimStatus.PARTIAL_PAID, ClaimStatus.DENIED})


@dataclass
class ClaimValidation:
    """Outcome of validating one claim."""

    claim: Claim
    validation: ValidationResult

    def to_dict(self) -> dict:
        return {
            "claim_id": str(self.claim.id),
            "status": self.claim.status.value,
            **self.validation.to_dict(),
        }


class ClaimLifecycleService:
    """Workflow operations on claims, each attributed to an actor."""

    def __init__(
        self,
        repository: BillingRepository,
        state_machine: ClaimStateMachine,
        validation_engine: ValidationEngine,
        settings: Optional[BillingSettings] = None,
    ):
        self.repository = repository
        self.state_machine = state_machine
        self.validation_engine = validation_engine
        self.settings = settings or get_settings()

    async def _load(self, claim_id: UUID) -> Claim:
        claim = await self.repository.find_claim_by_id(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        return claim

    # =========================================================================
    # Validation
    # =========================================================================

    async def run_validation(self, claim: Claim, today: Optional[date] = None) -> ValidationResult:
        """Load everything the engine needs for ``claim`` and run it."""
        services = await self.repository.find_services_by_ids(claim.service_ids)
        payer = await self.repository.find_payer_by_id(claim.payer_id) if claim.payer_id else None
        authorizations = (
            await self.repository.find_authorizations_for_client(claim.client_id)
            if claim.client_id
            else []
        )
        return self.validation_engine.validate(claim, services, payer, authorizations, today)

    async def validate_claim(
        self, claim_id: UUID, actor_id: str, today: Optional[date] = None
    ) -> Result[ClaimValidation]:
        """
        Validate a DRAFT claim and move it to VALIDATED when nothing blocks it.

        Blocking errors come back as a ValidationError carrying field detail;
        warnings travel with the successful result.
        """
        try:
            claim = await self._load(claim_id)
        except NotFoundError as e:
            return Result.failure(e)

        if claim.status != ClaimStatus.DRAFT:
            return Result.failure(invalid_transition(claim, ClaimStatus.VALIDATED))

        validation = await self.run_validation(claim, today)
        if not validation.is_valid:
            logger.info(f"Claim {claim.claim_number} failed validation: {validation.error_codes}")
            return Result.failure(ValidationError(
                f"Claim {claim.claim_number} failed validation",
                errors=validation.field_errors(),
                context={
                    "claim_id": str(claim.id),
                    "issues": [e.to_dict() for e in validation.errors],
                    "warnings": [w.to_dict() for w in validation.warnings],
                },
            ))

        outcome = await self.state_machine.transition(
            TransitionRequest(
                claim_id=claim.id,
                target_status=ClaimStatus.VALIDATED,
                actor_id=actor_id,
                validation=validation,
                reason="Validation passed"
                + (f" with {len(validation.warnings)} warning(s)" if validation.warnings else ""),
            )
        )
        if not outcome.ok:
            return Result.failure(outcome.error)  # type: ignore[arg-type]
        return Result.success(ClaimValidation(claim=outcome.value, validation=validation))  # type: ignore[arg-type]

    async def batch_validate_claims(
        self, claim_ids: list[UUID], actor_id: str
    ) -> BatchResult[ClaimValidation]:
        return await run_batch(
            claim_ids,
            lambda claim_id: self.validate_claim(claim_id, actor_id),
            concurrency=self.settings.BATCH_CONCURRENCY,
            label="batch-validate",
        )

    # =========================================================================
    # Adjudication Outcomes
    # =========================================================================

    async def deny_claim(
        self,
        claim_id: UUID,
        actor_id: str,
        denial_reason: str,
        denial_code: Optional[str] = None,
        adjudication_date: Optional[date] = None,
    ) -> Result[Claim]:
        return await self._transition(TransitionRequest(
            claim_id=claim_id,
            target_status=ClaimStatus.DENIED,
            actor_id=actor_id,
            denial_reason=denial_reason,
            denial_code=denial_code,
            adjudication_date=adjudication_date,
        ))

    async def adjudicate_claim(
        self,
        claim_id: UUID,
        actor_id: str,
        paid_amount: Decimal,
        adjudication_date: date,
        adjustment_amount: Decimal = ZERO,
        notes: Optional[str] = None,
    ) -> Result[Claim]:
        """Record the payer's decision: PAID when the total is covered, otherwise PARTIAL_PAID."""
        try:
            claim = await self._load(claim_id)
        except NotFoundError as e:
            return Result.failure(e)

        paid = to_money(paid_amount)
        adjusted = to_money(adjustment_amount)
        covered = paid + adjusted >= claim.total_amount - TOLERANCE
        target = ClaimStatus.PAID if covered else ClaimStatus.PARTIAL_PAID

        return await self._transition(TransitionRequest(
            claim_id=claim_id,
            target_status=target,
            actor_id=actor_id,
            adjudication_date=adjudication_date,
            paid_amount=paid,
            adjustment_amount=adjusted,
            notes=notes,
        ))

    async def void_claim(self, claim_id: UUID, actor_id: str, void_reason: str) -> Result[Claim]:
        return await self._transition(TransitionRequest(
            claim_id=claim_id,
            target_status=ClaimStatus.VOID,
            actor_id=actor_id,
            void_reason=void_reason,
        ))

    async def appeal_claim(
        self,
        claim_id: UUID,
        actor_id: str,
        justification: str,
        artifacts: list[str],
    ) -> Result[Claim]:
        return await self._transition(TransitionRequest(
            claim_id=claim_id,
            target_status=ClaimStatus.APPEALED,
            actor_id=actor_id,
            appeal_justification=justification,
            appeal_artifacts=artifacts,
        ))

    async def reopen_claim(
        self, claim_id: UUID, actor_id: str, reason: Optional[str] = None
    ) -> Result[Claim]:
        """APPEALED -> PENDING when the payer reopens the claim."""
        return await self._transition(TransitionRequest(
            claim_id=claim_id,
            target_status=ClaimStatus.PENDING,
            actor_id=actor_id,
            reason=reason or "Reopened by payer",
        ))

    async def _transition(self, request: TransitionRequest) -> Result[Claim]:
        try:
            return await self.state_machine.transition(request)
        except NotFoundError as e:
            return Result.failure(e)

    # =========================================================================
    # Corrections
    # =========================================================================

    async def create_adjustment_claim(
        self,
        original_claim_id: UUID,
        actor_id: str,
        reason: str,
        total_amount: Optional[Decimal] = None,
    ) -> Result[Claim]:
        return await self._create_correction(
            original_claim_id, ClaimType.ADJUSTMENT, actor_id, reason, total_amount
        )

    async def create_replacement_claim(
        self,
        original_claim_id: UUID,
        actor_id: str,
        reason: str,
        total_amount: Optional[Decimal] = None,
    ) -> Result[Claim]:
        return await self._create_correction(
            original_claim_id, ClaimType.REPLACEMENT, actor_id, reason, total_amount
        )

    async def _create_correction(
        self,
        original_claim_id: UUID,
        claim_type: ClaimType,
        actor_id: str,
        reason: str,
        total_amount: Optional[Decimal],
    ) -> Result[Claim]:
        """
        Create a new DRAFT claim pointing back at ``original_claim_id``.

        The original is not transitioned; corrections are separate claims
        that carry the original's service lines.
        """
        try:
            original = await self._load(original_claim_id)
        except NotFoundError as e:
            return Result.failure(e)

        if original.status not in CORRECTABLE_STATUSES:
            return Result.failure(BusinessError(
                f"Cannot create a {claim_type.value} claim from a "
                f"{original.status.value} claim",
                rule="invalid-original-status",
                context={
                    "claim_id": str(original.id),
                    "current": original.status.value,
                    "allowed": sorted(s.value for s in CORRECTABLE_STATUSES),
                },
            ))

        for attempt in range(1, self.settings.TRANSITION_CONFLICT_RETRIES + 1):
            try:
                async with self.repository.transaction() as repo:
                    today = date.today()
                    sequence = await repo.next_claim_sequence(today.year)
                    correction = await repo.create_claim(Claim(
                        claim_number=format_claim_number(today.year, sequence),
                        claim_type=claim_type,
                        original_claim_id=original.id,
                        status=ClaimStatus.DRAFT,
                        client_id=original.client_id,
                        payer_id=original.payer_id,
                        service_ids=list(original.service_ids),
                        service_start_date=original.service_start_date,
                        service_end_date=original.service_end_date,
                        total_amount=(
                            to_money(total_amount)
                            if total_amount is not None
                            else original.total_amount
                        ),
                        integration_id=original.integration_id,
                        notes=reason,
                    ))
                    await repo.append_status_history(ClaimStatusHistory(
                        claim_id=correction.id,
                        from_status=None,
                        to_status=ClaimStatus.DRAFT,
                        actor_id=actor_id,
                        reason=f"{claim_type.value.capitalize()} of {original.claim_number}: {reason}",
                    ))
                break
            except DatabaseError as e:
                if not e.duplicate_key or attempt == self.settings.TRANSITION_CONFLICT_RETRIES:
                    raise

        logger.info(
            f"Created {claim_type.value} claim {correction.claim_number} "
            f"for {original.claim_number} (actor: {actor_id})"
        )
        return Result.success(correction)

    # =========================================================================
    # History
    # =========================================================================

    async def get_claim_history(self, claim_id: UUID) -> Result[list[ClaimStatusHistory]]:
        try:
            await self._load(claim_id)
        except NotFoundError as e:
            return Result.failure(e)
        return Result.success(await self.state_machine.get_history(claim_id))
