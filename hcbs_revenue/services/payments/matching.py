"""
Payment Matching and Reconciliation Engine.

Provides:
- Ranked claim suggestions for a payment (reference, exact amount, tolerance)
- Manual reconciliation across one or more claims
- Greedy auto-reconciliation from confident suggestions
- Undo that restores claim statuses from the history log

Source: Payment matching / reconciliation services, claim history model
Verified: 2026-10-19

Sign convention:
    difference = payment total - sum(allocations) - sum(payment-level adjustments)
    |difference| < 0.01 -> RECONCILED
    difference > 0      -> PARTIALLY_RECONCILED (money left over)
    difference < 0      -> OVERPAID
    no allocations      -> UNRECONCILED

Writes for one reconciliation (claim statuses, history, allocations and the
payment itself) share one transaction and commit together or not at all.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from hcbs_revenue.core.config import BillingSettings, get_settings
from hcbs_revenue.core.enums import ClaimStatus, MatchReason, ReconciliationStatus
from hcbs_revenue.core.result import Result
from hcbs_revenue.repositories.base import OUTSTANDING_CLAIM_STATUSES, BillingRepository
from hcbs_revenue.schemas import Adjustment, Claim, ClaimPayment, Payment, RemittanceDetail
from hcbs_revenue.services.claims.state_machine import ClaimStateMachine, TransitionRequest
from hcbs_revenue.utils.errors import (
    BusinessError,
    FieldError,
    NotFoundError,
    ValidationError,
)
from hcbs_revenue.utils.money import TOLERANCE, ZERO, amounts_equal, money_sum, to_money

logger = logging.getLogger(__name__)

REFERENCE_CONFIDENCE = 1.0
UNIQUE_AMOUNT_CONFIDENCE = 0.9
AMBIGUOUS_AMOUNT_CONFIDENCE = 0.6
TOLERANCE_BASE_CONFIDENCE = 0.5
CLIENT_MATCH_BONUS = 0.2
SERVICE_DATE_BONUS = 0.1


@dataclass(frozen=True)
class Allocation:
    """Part of a payment applied to one claim."""

    claim_id: UUID
    amount: Decimal
    adjustments: tuple[Adjustment, ...] = ()

    @property
    def adjustment_total(self) -> Decimal:
        return money_sum(a.amount for a in self.adjustments)


@dataclass(frozen=True)
class MatchSuggestion:
    """A candidate claim for a payment."""

    claim: Claim
    confidence: float
    reason: MatchReason
    suggested_amount: Decimal
    adjustments: tuple[Adjustment, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "claim_id": str(self.claim.id),
            "claim_number": self.claim.claim_number,
            "balance": str(self.claim.balance),
            "confidence": round(self.confidence, 2),
            "reason": self.reason.value,
            "suggested_amount": str(self.suggested_amount),
        }


@dataclass
class ReconciliationResult:
    """Payment state after reconcile / auto-reconcile."""

    payment: Payment
    reconciliation_id: Optional[UUID] = None
    allocations: list[ClaimPayment] = field(default_factory=list)
    claims: list[Claim] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return bool(self.allocations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": str(self.payment.id),
            "reconciliation_id": str(self.reconciliation_id) if self.reconciliation_id else None,
            "status": self.payment.reconciliation_status.value,
            "total_amount": str(self.payment.total_amount),
            "allocated_amount": str(self.payment.allocated_amount),
            "adjustment_total": str(self.payment.adjustment_total),
            "difference": str(self.payment.difference) if self.payment.difference is not None else None,
            "allocations": [
                {"claim_id": str(a.claim_id), "amount": str(a.amount)} for a in self.allocations
            ],
            "claims": [
                {"claim_id": str(c.id), "claim_number": c.claim_number, "status": c.status.value}
                for c in self.claims
            ],
        }


@dataclass
class UndoResult:
    """Claims put back by undo_reconciliation."""

    payment: Payment
    reconciliation_id: UUID
    restored_claims: list[Claim] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_id": str(self.payment.id),
            "reconciliation_id": str(self.reconciliation_id),
            "status": self.payment.reconciliation_status.value,
            "claims": [
                {"claim_id": str(c.id), "claim_number": c.claim_number, "status": c.status.value}
                for c in self.restored_claims
            ],
        }


def reconciliation_status(difference: Decimal, has_allocations: bool) -> ReconciliationStatus:
    if not has_allocations:
        return ReconciliationStatus.UNRECONCILED
    if abs(difference) < TOLERANCE:
        return ReconciliationStatus.RECONCILED
    if difference > 0:
        return ReconciliationStatus.PARTIALLY_RECONCILED
    return ReconciliationStatus.OVERPAID


class PaymentMatchingEngine:
    """Suggests, applies and reverses payment-to-claim allocations."""

    def __init__(
        self,
        repository: BillingRepository,
        state_machine: ClaimStateMachine,
        settings: Optional[BillingSettings] = None,
    ):
        self.repository = repository
        self.state_machine = state_machine
        self.settings = settings or get_settings()

    async def _load_payment(self, payment_id: UUID) -> Payment:
        payment = await self.repository.find_payment_by_id(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    # =========================================================================
    # Suggestions
    # =========================================================================

    async def suggest_matches(self, payment_id: UUID) -> Result[list[MatchSuggestion]]:
        try:
            payment = await self._load_payment(payment_id)
        except NotFoundError as e:
            return Result.failure(e)
        claims = await self.repository.find_outstanding_claims_by_payer(payment.payer_id)
        return Result.success(self.rank_claims(payment, claims))

    def rank_claims(self, payment: Payment, claims: list[Claim]) -> list[MatchSuggestion]:
        """
        Score outstanding claims against a payment. Pure; no I/O.

        Ranked by confidence, then oldest submission date, then claim number.
        """
        candidates = [
            c
            for c in claims
            if c.payer_id == payment.payer_id
            and c.status in OUTSTANDING_CLAIM_STATUSES
            and c.balance > ZERO
        ]
        details = {d.claim_number: d for d in payment.remittance_details}
        payer_numbers = {
            d.payer_claim_number: d for d in payment.remittance_details if d.payer_claim_number
        }
        same_amount = [c for c in candidates if amounts_equal(c.balance, payment.total_amount)]

        suggestions = []
        for claim in candidates:
            suggestion = self._score(payment, claim, details, payer_numbers, len(same_amount))
            if suggestion is not None and suggestion.confidence >= self.settings.MATCH_MIN_CONFIDENCE:
                suggestions.append(suggestion)

        suggestions.sort(
            key=lambda s: (
                -s.confidence,
                s.claim.submission_date or date.max,
                s.claim.claim_number,
            )
        )
        return suggestions

    def _score(
        self,
        payment: Payment,
        claim: Claim,
        details: dict[str, RemittanceDetail],
        payer_numbers: dict[str, RemittanceDetail],
        same_amount_count: int,
    ) -> Optional[MatchSuggestion]:
        detail = details.get(claim.claim_number) or (
            payer_numbers.get(claim.external_claim_id) if claim.external_claim_id else None
        )
        if detail is not None:
            return MatchSuggestion(
                claim=claim,
                confidence=REFERENCE_CONFIDENCE,
                reason=MatchReason.EXACT_REFERENCE,
                suggested_amount=detail.paid_amount,
                adjustments=tuple(detail.adjustments),
            )
        if payment.reference_number and payment.reference_number in (
            claim.claim_number,
            claim.external_claim_id,
        ):
            return MatchSuggestion(
                claim=claim,
                confidence=REFERENCE_CONFIDENCE,
                reason=MatchReason.EXACT_REFERENCE,
                suggested_amount=min(claim.balance, payment.total_amount),
            )

        if amounts_equal(claim.balance, payment.total_amount):
            return MatchSuggestion(
                claim=claim,
                confidence=(
                    UNIQUE_AMOUNT_CONFIDENCE if same_amount_count == 1 else AMBIGUOUS_AMOUNT_CONFIDENCE
                ),
                reason=MatchReason.EXACT_AMOUNT,
                suggested_amount=claim.balance,
            )

        tolerance = claim.balance * Decimal(str(self.settings.AMOUNT_MATCH_TOLERANCE))
        if abs(claim.balance - payment.total_amount) > tolerance:
            return None

        confidence = TOLERANCE_BASE_CONFIDENCE
        if payment.client_id and payment.client_id == claim.client_id:
            confidence += CLIENT_MATCH_BONUS
        if payment.service_date and self._near_service_dates(payment.service_date, claim):
            confidence += SERVICE_DATE_BONUS
        return MatchSuggestion(
            claim=claim,
            confidence=confidence,
            reason=MatchReason.AMOUNT_TOLERANCE,
            suggested_amount=min(claim.balance, payment.total_amount),
        )

    def _near_service_dates(self, service_date: date, claim: Claim) -> bool:
        start = claim.service_start_date or claim.service_end_date
        end = claim.service_end_date or claim.service_start_date
        if start is None or end is None:
            return False
        window = self.settings.SERVICE_DATE_PROXIMITY_DAYS
        if start <= service_date <= end:
            return True
        gap = (start - service_date).days if service_date < start else (service_date - end).days
        return gap <= window

    # =========================================================================
    # Reconcile
    # =========================================================================

    async def reconcile(
        self,
        payment_id: UUID,
        allocations: list[Allocation],
        actor_id: str,
        adjustments: Optional[list[Adjustment]] = None,
        notes: Optional[str] = None,
    ) -> Result[ReconciliationResult]:
        """
        Apply allocations and explicit payment-level adjustments to a payment.

        Each claim moves to PAID when paid + adjusted covers its total,
        otherwise PARTIAL_PAID (a SUBMITTED claim passes through PENDING).
        ``adjustments`` replaces the payment's stored payment-level
        adjustments when given.
        """
        problems = self._check_allocations(allocations)
        if problems:
            return Result.failure(ValidationError("Invalid allocations", errors=problems))

        try:
            payment = await self._load_payment(payment_id)
            claim_ids = [a.claim_id for a in allocations]
            # The payment id joins the lock set so reconcile/undo of one payment serialize
            async with self.state_machine.locks.hold([payment.id, *claim_ids]):
                async with self.repository.transaction() as repo:
                    result = await self._apply(repo, payment.id, allocations, actor_id, adjustments, notes)
        except (BusinessError, NotFoundError) as e:
            logger.info(f"Reconciliation of payment {payment_id} rejected: {e.message}")
            return Result.failure(e)

        logger.info(
            f"Payment {payment.reference_number or payment.id} reconciled: "
            f"{result.payment.reconciliation_status.value}, "
            f"allocated {result.payment.allocated_amount} of {result.payment.total_amount}, "
            f"difference {result.payment.difference} (actor: {actor_id})"
        )
        return Result.success(result)

    @staticmethod
    def _check_allocations(allocations: list[Allocation]) -> list[FieldError]:
        problems = []
        seen: set[UUID] = set()
        for index, allocation in enumerate(allocations):
            if allocation.amount <= ZERO:
                problems.append(FieldError(
                    field=f"allocations[{index}].amount",
                    code="INVALID_AMOUNT",
                    message="Allocation amount must be greater than zero",
                ))
            if allocation.claim_id in seen:
                problems.append(FieldError(
                    field=f"allocations[{index}].claim_id",
                    code="DUPLICATE_CLAIM",
                    message=f"Claim {allocation.claim_id} is allocated more than once",
                ))
            seen.add(allocation.claim_id)
        return problems

    async def _apply(
        self,
        repo: BillingRepository,
        payment_id: UUID,
        allocations: list[Allocation],
        actor_id: str,
        adjustments: Optional[list[Adjustment]],
        notes: Optional[str],
    ) -> ReconciliationResult:
        payment = await repo.find_payment_by_id(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        if await repo.find_claim_payments(payment.id):
            raise BusinessError(
                f"Payment {payment.reference_number or payment.id} is already reconciled",
                rule="payment-already-reconciled",
                context={"payment_id": str(payment.id)},
            )

        claims = {c.id: c for c in await repo.find_claims_by_ids([a.claim_id for a in allocations])}
        for allocation in allocations:
            claim = claims.get(allocation.claim_id)
            if claim is None:
                raise NotFoundError("Claim", allocation.claim_id)
            self._check_claim(payment, claim)

        reconciliation_id = uuid4() if allocations else None
        applied: list[ClaimPayment] = []
        updated_claims: list[Claim] = []
        for allocation in allocations:
            claim = await self._apply_to_claim(
                repo, payment, claims[allocation.claim_id], allocation, actor_id, reconciliation_id
            )
            updated_claims.append(claim)
            applied.append(await repo.add_claim_payment(ClaimPayment(
                payment_id=payment.id,
                claim_id=claim.id,
                reconciliation_id=reconciliation_id,
                amount=to_money(allocation.amount),
                adjustments=list(allocation.adjustments),
                prior_adjudication_date=claims[allocation.claim_id].adjudication_date,
            )))

        payment_adjustments = list(adjustments) if adjustments is not None else payment.adjustments
        # First override keeps the adjustments the payment arrived with
        prior_adjustments = payment.prior_adjustments
        if adjustments is not None and prior_adjustments is None:
            prior_adjustments = payment.adjustments
        allocated = money_sum(a.amount for a in applied)
        difference = to_money(
            payment.total_amount - allocated - money_sum(a.amount for a in payment_adjustments)
        )
        status = reconciliation_status(difference, bool(applied))
        if not applied and payment.reconciliation_status == ReconciliationStatus.UNDERPAID:
            status = ReconciliationStatus.UNDERPAID

        saved = await repo.update_payment(
            payment.model_copy(update={
                "reconciliation_status": status,
                "reconciliation_id": reconciliation_id,
                "allocated_amount": allocated,
                "difference": difference,
                "adjustments": payment_adjustments,
                "prior_adjustments": prior_adjustments,
                "notes": notes or payment.notes,
            }),
            expected_version=payment.version,
        )
        return ReconciliationResult(
            payment=saved,
            reconciliation_id=reconciliation_id,
            allocations=applied,
            claims=updated_claims,
        )

    @staticmethod
    def _check_claim(payment: Payment, claim: Claim) -> None:
        if claim.payer_id != payment.payer_id:
            raise BusinessError(
                f"Claim {claim.claim_number} belongs to a different payer",
                rule="payer-mismatch",
                context={
                    "claim_id": str(claim.id),
                    "claim_payer_id": str(claim.payer_id),
                    "payment_payer_id": str(payment.payer_id),
                },
            )
        if claim.status not in OUTSTANDING_CLAIM_STATUSES:
            raise BusinessError(
                f"Claim {claim.claim_number} is {claim.status.value} and not awaiting payment",
                rule="claim-not-outstanding",
                context={"claim_id": str(claim.id), "current": claim.status.value},
            )

    async def _apply_to_claim(
        self,
        repo: BillingRepository,
        payment: Payment,
        claim: Claim,
        allocation: Allocation,
        actor_id: str,
        reconciliation_id: Optional[UUID],
    ) -> Claim:
        paid = to_money(claim.paid_amount + allocation.amount)
        adjusted = to_money(claim.adjustment_amount + allocation.adjustment_total)
        covered = paid + adjusted >= claim.total_amount - TOLERANCE
        target = ClaimStatus.PAID if covered else ClaimStatus.PARTIAL_PAID
        reason = f"Payment {payment.reference_number or payment.id}"
        if paid + adjusted > claim.total_amount + TOLERANCE:
            logger.warning(
                f"Allocation of {allocation.amount} exceeds the balance of claim {claim.claim_number}"
            )

        if claim.status == ClaimStatus.SUBMITTED:
            claim = await self.state_machine.apply(repo, claim, TransitionRequest(
                claim_id=claim.id,
                target_status=ClaimStatus.PENDING,
                actor_id=actor_id,
                reason=f"{reason} received",
                payment_id=payment.id,
                reconciliation_id=reconciliation_id,
            ))

        if claim.status == ClaimStatus.PARTIAL_PAID and target == ClaimStatus.PARTIAL_PAID:
            return await self.state_machine.record_payment_update(
                repo,
                claim,
                paid_amount=paid,
                adjustment_amount=adjusted,
                actor_id=actor_id,
                reason=f"{reason} applied",
                payment_id=payment.id,
                reconciliation_id=reconciliation_id,
            )
        return await self.state_machine.apply(repo, claim, TransitionRequest(
            claim_id=claim.id,
            target_status=target,
            actor_id=actor_id,
            reason=f"{reason} applied",
            adjudication_date=payment.payment_date,
            paid_amount=paid,
            adjustment_amount=adjusted,
            payment_id=payment.id,
            reconciliation_id=reconciliation_id,
        ))

    # =========================================================================
    # Auto-Reconcile
    # =========================================================================

    async def auto_reconcile(self, payment_id: UUID, actor_id: str) -> Result[ReconciliationResult]:
        """
        Allocate a payment greedily across confident suggestions.

        Suggestions below AUTO_RECONCILE_MIN_CONFIDENCE are never used; when
        none qualify the payment is returned untouched.
        """
        try:
            payment = await self._load_payment(payment_id)
        except NotFoundError as e:
            return Result.failure(e)

        claims = await self.repository.find_outstanding_claims_by_payer(payment.payer_id)
        confident = [
            s
            for s in self.rank_claims(payment, claims)
            if s.confidence >= self.settings.AUTO_RECONCILE_MIN_CONFIDENCE
        ]

        remaining = to_money(payment.total_amount - payment.adjustment_total)
        allocations: list[Allocation] = []
        for suggestion in confident:
            if remaining <= ZERO:
                break
            amount = min(suggestion.suggested_amount, remaining)
            if amount <= ZERO:
                continue
            allocations.append(Allocation(
                claim_id=suggestion.claim.id,
                amount=amount,
                adjustments=suggestion.adjustments,
            ))
            remaining = to_money(remaining - amount)

        if not allocations:
            logger.info(
                f"No confident match for payment {payment.reference_number or payment.id}; "
                f"left {payment.reconciliation_status.value}"
            )
            return Result.success(ReconciliationResult(payment=payment))

        return await self.reconcile(
            payment.id, allocations, actor_id, notes=payment.notes or "Auto-reconciled"
        )

    # =========================================================================
    # Undo
    # =========================================================================

    async def undo_reconciliation(
        self, payment_id: UUID, actor_id: str, reason: Optional[str] = None
    ) -> Result[UndoResult]:
        """
        Reverse every allocation of a payment atomically.

        Each claim goes back to the status recorded before this
        reconciliation's first history entry for it.
        """
        try:
            payment = await self._load_payment(payment_id)
            allocations = await self.repository.find_claim_payments(payment.id)
            if not allocations:
                raise BusinessError(
                    f"Payment {payment.reference_number or payment.id} has no allocations to undo",
                    rule="nothing-to-undo",
                    context={"payment_id": str(payment.id)},
                )
            claim_ids = [a.claim_id for a in allocations]
            async with self.state_machine.locks.hold([payment.id, *claim_ids]):
                async with self.repository.transaction() as repo:
                    result = await self._undo(repo, payment.id, actor_id, reason)
        except (BusinessError, NotFoundError) as e:
            logger.info(f"Undo of payment {payment_id} rejected: {e.message}")
            return Result.failure(e)

        logger.info(
            f"Reconciliation {result.reconciliation_id} undone for payment "
            f"{payment.reference_number or payment.id}: {len(result.restored_claims)} claim(s) "
            f"restored (actor: {actor_id})"
        )
        return Result.success(result)

    async def _undo(
        self, repo: BillingRepository, payment_id: UUID, actor_id: str, reason: Optional[str]
    ) -> UndoResult:
        payment = await repo.find_payment_by_id(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        allocations = await repo.find_claim_payments(payment.id)
        if not allocations:
            raise BusinessError(
                f"Payment {payment.reference_number or payment.id} has no allocations to undo",
                rule="nothing-to-undo",
                context={"payment_id": str(payment.id)},
            )

        reconciliation_id = allocations[0].reconciliation_id
        restored = []
        for allocation in allocations:
            claim = await repo.find_claim_by_id(allocation.claim_id)
            if claim is None:
                raise NotFoundError("Claim", allocation.claim_id)
            history = await repo.get_status_history(claim.id)
            entries = [h for h in history if h.reconciliation_id == allocation.reconciliation_id]
            if not entries or history[-1].reconciliation_id != allocation.reconciliation_id:
                raise BusinessError(
                    f"Claim {claim.claim_number} changed after this reconciliation",
                    rule="claim-changed-since-reconciliation",
                    context={"claim_id": str(claim.id), "current": claim.status.value},
                )

            prior_status = entries[0].from_status or claim.status
            restored.append(await self.state_machine.restore(
                repo,
                claim,
                status=prior_status,
                actor_id=actor_id,
                reason=reason or f"Undo of payment {payment.reference_number or payment.id}",
                paid_amount=to_money(claim.paid_amount - allocation.amount),
                adjustment_amount=to_money(claim.adjustment_amount - allocation.adjustment_total),
                adjudication_date=allocation.prior_adjudication_date,
            ))

        await repo.delete_claim_payments(payment.id)
        saved = await repo.update_payment(
            payment.model_copy(update={
                "reconciliation_status": ReconciliationStatus.UNRECONCILED,
                "reconciliation_id": None,
                "allocated_amount": ZERO,
                "difference": None,
                "adjustments": (
                    payment.prior_adjustments
                    if payment.prior_adjustments is not None
                    else payment.adjustments
                ),
                "prior_adjustments": None,
            }),
            expected_version=payment.version,
        )
        return UndoResult(payment=saved, reconciliation_id=reconciliation_id, restored_claims=restored)
