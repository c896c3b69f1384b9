"""
Claim Status State Machine.

Provides:
- Valid status transitions with per-transition required fields
- Guard evaluation returning BusinessError for illegal requests
- Linearized status writes (per-claim lock + optimistic version)
- Service billing status cascade and append-only history
- Authorization unit usage taken on validation, released on void

Source: Claim lifecycle state machine (transition table, lookup maps)
Verified: 2026-10-19

State Diagram:
    DRAFT -> VALIDATED -> SUBMITTED -> PENDING
    PENDING -> PAID | PARTIAL_PAID | DENIED
    PARTIAL_PAID -> PAID
    DENIED | PAID | PARTIAL_PAID -> APPEALED
    APPEALED -> PENDING
    any status except VOID -> VOID
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID

from hcbs_revenue.core.config import BillingSettings, get_settings
from hcbs_revenue.core.enums import (
    BillingStatus,
    ClaimStatus,
    ClaimType,
    DocumentationStatus,
    SubmissionMethod,
)
from hcbs_revenue.core.result import Result
from hcbs_revenue.repositories.base import BillingRepository
from hcbs_revenue.schemas import Authorization, Claim, ClaimStatusHistory, select_authorization
from hcbs_revenue.services.claims.locks import ClaimLockManager
from hcbs_revenue.utils.errors import BusinessError, ConcurrencyConflictError, NotFoundError

if TYPE_CHECKING:
    from hcbs_revenue.services.validation import ValidationResult

logger = logging.getLogger(__name__)

INVALID_TRANSITION_RULE = "invalid-status-transition"
MISSING_FIELD_RULE = "missing-required-field"
VALIDATION_FAILED_RULE = "validation-failed"
AUTHORIZATION_UNITS_RULE = "authorization-units-exceeded"


@dataclass(frozen=True)
class Transition:
    """Represents a valid state transition."""

    from_status: ClaimStatus
    to_status: ClaimStatus
    required_fields: tuple[str, ...] = ()
    description: str = ""


@dataclass
class TransitionRequest:
    """Requested status change and the data its guard needs."""

    claim_id: UUID
    target_status: ClaimStatus
    actor_id: str
    reason: Optional[str] = None
    notes: Optional[str] = None
    validation: Optional["ValidationResult"] = None
    submission_method: Optional[SubmissionMethod] = None
    submission_date: Optional[date] = None
    adjudication_date: Optional[date] = None
    denial_reason: Optional[str] = None
    denial_code: Optional[str] = None
    void_reason: Optional[str] = None
    appeal_justification: Optional[str] = None
    appeal_artifacts: list[str] = field(default_factory=list)
    integration_id: Optional[str] = None
    external_claim_id: Optional[str] = None
    paid_amount: Optional[Decimal] = None
    adjustment_amount: Optional[Decimal] = None
    payment_id: Optional[UUID] = None
    reconciliation_id: Optional[UUID] = None


# =============================================================================
# Valid Transitions Definition
# =============================================================================


_APPEAL_FIELDS = ("appeal_justification", "appeal_artifacts")

VALID_TRANSITIONS: list[Transition] = [
    Transition(ClaimStatus.DRAFT, ClaimStatus.VALIDATED, ("validation",), "Validation passed"),
    Transition(
        ClaimStatus.VALIDATED,
        ClaimStatus.SUBMITTED,
        ("submission_method", "submission_date"),
        "Submitted to payer",
    ),
    Transition(ClaimStatus.SUBMITTED, ClaimStatus.PENDING, (), "Acknowledged by payer"),
    Transition(ClaimStatus.PENDING, ClaimStatus.DENIED, ("denial_reason",), "Denied by payer"),
    Transition(ClaimStatus.PENDING, ClaimStatus.PAID, ("adjudication_date",), "Paid in full"),
    Transition(
        ClaimStatus.PENDING, ClaimStatus.PARTIAL_PAID, ("adjudication_date",), "Partially paid"
    ),
    Transition(
        ClaimStatus.PARTIAL_PAID, ClaimStatus.PAID, ("adjudication_date",), "Remainder paid"
    ),
    Transition(ClaimStatus.DENIED, ClaimStatus.APPEALED, _APPEAL_FIELDS, "Denial appealed"),
    Transition(ClaimStatus.PAID, ClaimStatus.APPEALED, _APPEAL_FIELDS, "Payment appealed"),
    Transition(ClaimStatus.PARTIAL_PAID, ClaimStatus.APPEALED, _APPEAL_FIELDS, "Payment appealed"),
    Transition(ClaimStatus.APPEALED, ClaimStatus.PENDING, (), "Reopened by payer"),
] + [
    Transition(status, ClaimStatus.VOID, ("void_reason",), "Voided")
    for status in ClaimStatus
    if status != ClaimStatus.VOID
]

# Billing status each claim status puts its services in; VOID releases them
SERVICE_STATUS_FOR_CLAIM: dict[ClaimStatus, BillingStatus] = {
    ClaimStatus.DRAFT: BillingStatus.IN_CLAIM,
    ClaimStatus.VALIDATED: BillingStatus.IN_CLAIM,
    ClaimStatus.SUBMITTED: BillingStatus.BILLED,
    ClaimStatus.PENDING: BillingStatus.BILLED,
    ClaimStatus.PARTIAL_PAID: BillingStatus.BILLED,
    ClaimStatus.APPEALED: BillingStatus.BILLED,
    ClaimStatus.PAID: BillingStatus.PAID,
    ClaimStatus.DENIED: BillingStatus.DENIED,
}


def invalid_transition(claim: Claim, requested: ClaimStatus) -> BusinessError:
    return BusinessError(
        f"Cannot transition claim {claim.claim_number} from "
        f"{claim.status.value} to {requested.value}",
        rule=INVALID_TRANSITION_RULE,
        context={
            "claim_id": str(claim.id),
            "current": claim.status.value,
            "requested": requested.value,
        },
    )


# =============================================================================
# State Machine
# =============================================================================


class ClaimStateMachine:
    """
    State machine for claim status transitions.

    Owns the claim's status and its history log. ``transition`` is the
    public entry point; ``apply`` and ``restore`` run inside a transaction
    the caller already holds (used by reconciliation, which locks several
    claims at once).
    """

    def __init__(
        self,
        repository: BillingRepository,
        lock_manager: Optional[ClaimLockManager] = None,
        settings: Optional[BillingSettings] = None,
    ):
        self.repository = repository
        self.locks = lock_manager or ClaimLockManager()
        self.settings = settings or get_settings()
        self._transitions: dict[tuple[ClaimStatus, ClaimStatus], Transition] = {}
        self._from_status_map: dict[ClaimStatus, list[Transition]] = {}

        for transition in VALID_TRANSITIONS:
            self._transitions[(transition.from_status, transition.to_status)] = transition
            self._from_status_map.setdefault(transition.from_status, []).append(transition)

    def get_next_statuses(self, status: ClaimStatus) -> list[ClaimStatus]:
        return [t.to_status for t in self._from_status_map.get(status, [])]

    def can_transition(self, from_status: ClaimStatus, to_status: ClaimStatus) -> bool:
        return (from_status, to_status) in self._transitions

    def get_transition(
        self, from_status: ClaimStatus, to_status: ClaimStatus
    ) -> Optional[Transition]:
        return self._transitions.get((from_status, to_status))

    def check_guard(self, claim: Claim, request: TransitionRequest) -> Optional[BusinessError]:
        """Return the error blocking ``request``, or None when it may proceed."""
        transition = self.get_transition(claim.status, request.target_status)
        if transition is None:
            return invalid_transition(claim, request.target_status)

        for name in transition.required_fields:
            if not getattr(request, name):
                return BusinessError(
                    f"{name} is required to move claim {claim.claim_number} "
                    f"to {request.target_status.value}",
                    rule=MISSING_FIELD_RULE,
                    context={
                        "claim_id": str(claim.id),
                        "field": name,
                        "current": claim.status.value,
                        "requested": request.target_status.value,
                    },
                )

        if request.validation is not None and not request.validation.is_valid:
            return BusinessError(
                f"Claim {claim.claim_number} has {len(request.validation.errors)} blocking validation error(s)",
                rule=VALIDATION_FAILED_RULE,
                context={
                    "claim_id": str(claim.id),
                    "errors": [e.to_dict() for e in request.validation.errors],
                },
            )
        return None

    # =========================================================================
    # Public Entry Point
    # =========================================================================

    async def transition(self, request: TransitionRequest) -> Result[Claim]:
        """
        Move one claim to ``request.target_status``.

        Expected rule violations come back as a failed Result and leave the
        claim and its history untouched. Missing claims raise NotFoundError.
        """
        async with self.locks.hold([request.claim_id]):
            for attempt in range(1, self.settings.TRANSITION_CONFLICT_RETRIES + 1):
                claim = await self.repository.find_claim_by_id(request.claim_id)
                if claim is None:
                    raise NotFoundError("Claim", request.claim_id)
                try:
                    async with self.repository.transaction() as repo:
                        updated = await self.apply(repo, claim, request)
                    return Result.success(updated)
                except BusinessError as e:
                    logger.info(f"Transition rejected for claim {claim.claim_number}: {e.message}")
                    return Result.failure(e)
                except ConcurrencyConflictError:
                    if attempt == self.settings.TRANSITION_CONFLICT_RETRIES:
                        raise
                    logger.warning(
                        f"Version conflict on claim {claim.claim_number} "
                        f"(attempt {attempt}), re-reading"
                    )
        raise AssertionError("unreachable")

    # =========================================================================
    # In-Transaction Operations
    # =========================================================================

    async def apply(
        self, repo: BillingRepository, claim: Claim, request: TransitionRequest
    ) -> Claim:
        """Guard, write and log one transition. Raises BusinessError on a guard failure."""
        error = self.check_guard(claim, request)
        if error is not None:
            raise error

        target = request.target_status
        changes: dict = {"status": target}

        if request.external_claim_id:
            changes["external_claim_id"] = request.external_claim_id
        if request.integration_id:
            changes["integration_id"] = request.integration_id
        if request.paid_amount is not None:
            changes["paid_amount"] = request.paid_amount
        if request.adjustment_amount is not None:
            changes["adjustment_amount"] = request.adjustment_amount
        if request.adjudication_date:
            changes["adjudication_date"] = request.adjudication_date

        if target == ClaimStatus.SUBMITTED:
            changes.update(
                submission_method=request.submission_method,
                submission_date=request.submission_date,
                billed_amount_locked=True,
            )
        elif target == ClaimStatus.DENIED:
            changes.update(denial_reason=request.denial_reason, denial_code=request.denial_code)
        elif target == ClaimStatus.APPEALED:
            changes.update(
                appeal_justification=request.appeal_justification,
                appeal_artifacts=list(request.appeal_artifacts),
            )
        elif target == ClaimStatus.VOID:
            changes["void_reason"] = request.void_reason

        reason = (
            request.reason
            or request.denial_reason
            or request.void_reason
            or request.appeal_justification
        )
        updated = await self._write(
            repo,
            claim,
            claim.model_copy(update=changes),
            actor_id=request.actor_id,
            reason=reason,
            notes=request.notes,
            payment_id=request.payment_id,
            reconciliation_id=request.reconciliation_id,
        )
        logger.info(
            f"Claim {claim.claim_number} transitioned: "
            f"{claim.status.value} -> {target.value} (actor: {request.actor_id})"
        )
        return updated

    async def record_payment_update(
        self,
        repo: BillingRepository,
        claim: Claim,
        paid_amount: Decimal,
        adjustment_amount: Decimal,
        actor_id: str,
        reason: str,
        payment_id: Optional[UUID] = None,
        reconciliation_id: Optional[UUID] = None,
    ) -> Claim:
        """Record more money on a claim that stays in its current status."""
        return await self._write(
            repo,
            claim,
            claim.model_copy(update={"paid_amount": paid_amount, "adjustment_amount": adjustment_amount}),
            actor_id=actor_id,
            reason=reason,
            payment_id=payment_id,
            reconciliation_id=reconciliation_id,
        )

    async def restore(
        self,
        repo: BillingRepository,
        claim: Claim,
        status: ClaimStatus,
        actor_id: str,
        reason: str,
        paid_amount: Decimal,
        adjustment_amount: Decimal,
        adjudication_date: Optional[date],
        reconciliation_id: Optional[UUID] = None,
    ) -> Claim:
        """
        Compensating write that puts a claim back into a status read from history.

        Not a table transition: reversal targets come from the log, never from
        the transition rules.
        """
        updated = await self._write(
            repo,
            claim,
            claim.model_copy(
                update={
                    "status": status,
                    "paid_amount": paid_amount,
                    "adjustment_amount": adjustment_amount,
                    "adjudication_date": adjudication_date,
                }
            ),
            actor_id=actor_id,
            reason=reason,
            reconciliation_id=reconciliation_id,
        )
        logger.info(
            f"Claim {claim.claim_number} restored: "
            f"{claim.status.value} -> {status.value} (actor: {actor_id})"
        )
        return updated

    async def _write(
        self,
        repo: BillingRepository,
        claim: Claim,
        updated: Claim,
        actor_id: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        payment_id: Optional[UUID] = None,
        reconciliation_id: Optional[UUID] = None,
    ) -> Claim:
        saved = await repo.update_claim_status(updated, expected_version=claim.version)
        await repo.append_status_history(
            ClaimStatusHistory(
                claim_id=claim.id,
                from_status=claim.status,
                to_status=saved.status,
                actor_id=actor_id,
                reason=reason,
                notes=notes,
                payment_id=payment_id,
                reconciliation_id=reconciliation_id,
            )
        )
        if saved.status != claim.status:
            await self._cascade_services(repo, saved)
        if saved.holds_authorized_units != claim.holds_authorized_units:
            await self._track_authorization_usage(repo, saved, consume=saved.holds_authorized_units)
        return saved

    async def _cascade_services(self, repo: BillingRepository, claim: Claim) -> None:
        # Services stay attached to the original claim of a correction chain
        if claim.claim_type != ClaimType.ORIGINAL:
            return
        services = await repo.find_services_by_ids(claim.service_ids)
        for service in services:
            if claim.status == ClaimStatus.VOID:
                target = (
                    BillingStatus.READY
                    if service.documentation_status == DocumentationStatus.COMPLETE
                    else BillingStatus.UNBILLED
                )
                claim_id = None
            else:
                target = SERVICE_STATUS_FOR_CLAIM[claim.status]
                claim_id = claim.id
            if service.billing_status != target or service.claim_id != claim_id:
                await repo.update_service_billing_status(service.id, target, claim_id)

    async def _track_authorization_usage(
        self, repo: BillingRepository, claim: Claim, consume: bool
    ) -> None:
        """
        Add the claim's service units to its authorizations on validation and
        give them back when the claim is voided.

        Consuming past the authorized total raises BusinessError, which rolls
        the whole transition back.
        """
        if claim.client_id is None:
            return
        payer = await repo.find_payer_by_id(claim.payer_id) if claim.payer_id else None
        if payer is not None and not payer.requires_authorization:
            return

        services = await repo.find_services_by_ids(claim.service_ids)
        authorizations = await repo.find_authorizations_for_client(claim.client_id)
        units_by_auth: dict[UUID, Decimal] = defaultdict(Decimal)
        selected: dict[UUID, Authorization] = {}
        for service in services:
            authorization = select_authorization(service, authorizations)
            if authorization is not None:
                units_by_auth[authorization.id] += service.units
                selected[authorization.id] = authorization

        for auth_id, units in units_by_auth.items():
            authorization = selected[auth_id]
            if consume:
                used_units = authorization.used_units + units
                if used_units > authorization.authorized_units:
                    raise BusinessError(
                        f"Claim {claim.claim_number} needs {units} units but authorization "
                        f"{authorization.authorization_number} has {authorization.remaining_units} left",
                        rule=AUTHORIZATION_UNITS_RULE,
                        context={
                            "claim_id": str(claim.id),
                            "authorization_number": authorization.authorization_number,
                            "billed_units": str(units),
                            "remaining_units": str(authorization.remaining_units),
                        },
                    )
            else:
                used_units = max(Decimal("0"), authorization.used_units - units)
            await repo.update_authorization_usage(
                auth_id, used_units, expected_version=authorization.version
            )
            logger.info(
                f"Authorization {authorization.authorization_number} usage "
                f"{authorization.used_units} -> {used_units} (claim {claim.claim_number})"
            )

    # =========================================================================
    # History
    # =========================================================================

    async def get_history(self, claim_id: UUID) -> list[ClaimStatusHistory]:
        return await self.repository.get_status_history(claim_id)
