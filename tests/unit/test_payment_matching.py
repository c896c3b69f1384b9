"""
Payment Matching and Reconciliation Tests.

Tests:
- Suggestion scoring and ranking
- Manual reconciliation outcomes (paid, partial, overpaid)
- Auto-reconciliation from remittance lines
- Undo and re-apply
- Rejection rules
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from hcbs_revenue.core.enums import ClaimStatus, MatchReason, ReconciliationStatus
from hcbs_revenue.schemas import Adjustment, Payer, Payment, RemittanceDetail
from hcbs_revenue.services.payments import Allocation, reconciliation_status
from hcbs_revenue.utils.errors import NotFoundError, ValidationError

ACTOR = "billing.clerk"


async def receive(world, amount: str, reference: str = "EFT-1", **fields) -> Payment:
    await world.seed()
    return await world.repository.create_payment(Payment(
        payer_id=fields.pop("payer_id", world.payer.id),
        payment_date=world.today,
        total_amount=Decimal(amount),
        reference_number=reference,
        **fields,
    ))


def pay(claim, amount: str, *adjustments: Adjustment) -> Allocation:
    return Allocation(claim_id=claim.id, amount=Decimal(amount), adjustments=tuple(adjustments))


@pytest.mark.unit
class TestReconciliationStatus:
    """Difference sign to status."""

    @pytest.mark.parametrize(
        "difference, has_allocations, expected",
        [
            ("0.00", True, ReconciliationStatus.RECONCILED),
            ("0.004", True, ReconciliationStatus.RECONCILED),
            ("400.00", True, ReconciliationStatus.PARTIALLY_RECONCILED),
            ("-50.00", True, ReconciliationStatus.OVERPAID),
            ("1000.00", False, ReconciliationStatus.UNRECONCILED),
        ],
    )
    def test_status(self, difference, has_allocations, expected):
        assert reconciliation_status(Decimal(difference), has_allocations) == expected


@pytest.mark.unit
class TestSuggestions:
    """suggest_matches / rank_claims."""

    @pytest.mark.asyncio
    async def test_unique_exact_amount(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        await world.claim_in(ClaimStatus.PENDING, units="20")
        payment = await receive(world, "1000.00")

        suggestions = (await world.container.matching.suggest_matches(payment.id)).unwrap()

        assert [s.claim.id for s in suggestions] == [claim.id]
        assert suggestions[0].confidence == pytest.approx(0.9)
        assert suggestions[0].reason == MatchReason.EXACT_AMOUNT
        assert suggestions[0].suggested_amount == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_ambiguous_amount_scores_lower(self, world):
        first = await world.claim_in(ClaimStatus.PENDING)
        second = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")

        suggestions = (await world.container.matching.suggest_matches(payment.id)).unwrap()

        assert [s.claim.id for s in suggestions] == [first.id, second.id]
        assert all(s.confidence == pytest.approx(0.6) for s in suggestions)

    @pytest.mark.asyncio
    async def test_remittance_line_is_a_reference_match(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        other = await world.claim_in(ClaimStatus.PENDING, units="16")
        payment = await receive(
            world,
            "400.00",
            remittance_details=[RemittanceDetail(claim_number=claim.claim_number, paid_amount=Decimal("400.00"))],
        )

        suggestions = (await world.container.matching.suggest_matches(payment.id)).unwrap()

        assert suggestions[0].claim.id == claim.id
        assert suggestions[0].confidence == pytest.approx(1.0)
        assert suggestions[0].reason == MatchReason.EXACT_REFERENCE
        assert suggestions[0].suggested_amount == Decimal("400.00")
        assert suggestions[1].claim.id == other.id
        assert suggestions[1].reason == MatchReason.EXACT_AMOUNT

    @pytest.mark.asyncio
    async def test_payer_claim_number_matches_external_id(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(
            world,
            "10.00",
            remittance_details=[RemittanceDetail(
                claim_number="UNKNOWN",
                payer_claim_number=claim.external_claim_id,
                paid_amount=Decimal("10.00"),
            )],
        )
        suggestions = (await world.container.matching.suggest_matches(payment.id)).unwrap()
        assert suggestions[0].claim.id == claim.id
        assert suggestions[0].confidence == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_payment_reference_equal_to_claim_number(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "300.00", reference=claim.claim_number)
        suggestions = (await world.container.matching.suggest_matches(payment.id)).unwrap()
        assert suggestions[0].reason == MatchReason.EXACT_REFERENCE
        assert suggestions[0].suggested_amount == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_tolerance_match_with_client_and_date_hints(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        plain = await receive(world, "950.00", reference="EFT-2")
        hinted = await receive(
            world,
            "950.00",
            reference="EFT-3",
            client_id=world.client_id,
            service_date=world.today - timedelta(days=5),
        )
        matching = world.container.matching

        low = (await matching.suggest_matches(plain.id)).unwrap()
        high = (await matching.suggest_matches(hinted.id)).unwrap()

        assert low[0].claim.id == claim.id
        assert low[0].reason == MatchReason.AMOUNT_TOLERANCE
        assert low[0].confidence == pytest.approx(0.5)
        assert low[0].suggested_amount == Decimal("950.00")
        assert high[0].confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_only_outstanding_claims_of_the_payer(self, world):
        await world.claim_in(ClaimStatus.VALIDATED)
        await world.claim_in(ClaimStatus.PAID)
        payment = await receive(world, "1000.00")
        assert (await world.container.matching.suggest_matches(payment.id)).unwrap() == []

        far_off = await receive(world, "5000.00", reference="EFT-4")
        await world.claim_in(ClaimStatus.PENDING)
        assert (await world.container.matching.suggest_matches(far_off.id)).unwrap() == []

    @pytest.mark.asyncio
    async def test_unknown_payment(self, world):
        result = await world.container.matching.suggest_matches(uuid4())
        assert isinstance(result.error, NotFoundError)


@pytest.mark.unit
class TestReconcile:
    """Manual reconciliation."""

    @pytest.mark.asyncio
    async def test_full_payment(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")

        result = (await world.container.matching.reconcile(
            payment.id, [pay(claim, "1000.00")], ACTOR
        )).unwrap()

        assert result.payment.reconciliation_status == ReconciliationStatus.RECONCILED
        assert result.payment.difference == Decimal("0.00")
        assert result.payment.allocated_amount == Decimal("1000.00")
        assert result.claims[0].status == ClaimStatus.PAID
        assert result.claims[0].adjudication_date == payment.payment_date

        history = await world.repository.get_status_history(claim.id)
        assert history[-1].payment_id == payment.id
        assert history[-1].reconciliation_id == result.reconciliation_id
        allocations = await world.repository.find_claim_payments(payment.id)
        assert [a.amount for a in allocations] == [Decimal("1000.00")]

    @pytest.mark.asyncio
    async def test_partial_allocation(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")

        result = (await world.container.matching.reconcile(
            payment.id, [pay(claim, "600.00")], ACTOR
        )).unwrap()

        assert result.claims[0].status == ClaimStatus.PARTIAL_PAID
        assert result.claims[0].balance == Decimal("400.00")
        assert result.payment.reconciliation_status == ReconciliationStatus.PARTIALLY_RECONCILED
        assert result.payment.difference == Decimal("400.00")

    @pytest.mark.asyncio
    async def test_payment_level_adjustment_can_overdraw(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")
        recoupment = Adjustment(code="WO", amount=Decimal("50.00"), description="Overpayment recovery")

        result = (await world.container.matching.reconcile(
            payment.id, [pay(claim, "1000.00")], ACTOR, adjustments=[recoupment]
        )).unwrap()

        assert result.payment.reconciliation_status == ReconciliationStatus.OVERPAID
        assert result.payment.difference == Decimal("-50.00")
        assert result.to_dict()["adjustment_total"] == "50.00"

    @pytest.mark.asyncio
    async def test_claim_adjustments_close_the_balance(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "950.00")
        contractual = Adjustment(group_code="CO", code="45", amount=Decimal("50.00"))

        result = (await world.container.matching.reconcile(
            payment.id, [pay(claim, "950.00", contractual)], ACTOR
        )).unwrap()

        assert result.claims[0].status == ClaimStatus.PAID
        assert result.claims[0].adjustment_amount == Decimal("50.00")
        assert result.claims[0].balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_submitted_claim_passes_through_pending(self, world):
        claim = await world.claim_in(ClaimStatus.SUBMITTED)
        payment = await receive(world, "1000.00")

        (await world.container.matching.reconcile(payment.id, [pay(claim, "1000.00")], ACTOR)).unwrap()

        history = await world.repository.get_status_history(claim.id)
        assert [h.to_status for h in history[-2:]] == [ClaimStatus.PENDING, ClaimStatus.PAID]

    @pytest.mark.asyncio
    async def test_several_payments_settle_one_claim(self, world):
        claim = await world.claim_in(ClaimStatus.PARTIAL_PAID)
        matching = world.container.matching
        first = await receive(world, "200.00", reference="EFT-5")
        second = await receive(world, "300.00", reference="EFT-6")

        still_partial = (await matching.reconcile(first.id, [pay(claim, "200.00")], ACTOR)).unwrap()
        assert still_partial.claims[0].status == ClaimStatus.PARTIAL_PAID
        assert still_partial.claims[0].paid_amount == Decimal("700.00")

        settled = (await matching.reconcile(second.id, [pay(claim, "300.00")], ACTOR)).unwrap()
        assert settled.claims[0].status == ClaimStatus.PAID

    @pytest.mark.asyncio
    async def test_one_payment_across_two_claims(self, world):
        first = await world.claim_in(ClaimStatus.PENDING)
        second = await world.claim_in(ClaimStatus.PENDING, units="20")
        payment = await receive(world, "1500.00")

        result = (await world.container.matching.reconcile(
            payment.id, [pay(first, "1000.00"), pay(second, "500.00")], ACTOR
        )).unwrap()

        assert result.payment.reconciliation_status == ReconciliationStatus.RECONCILED
        assert {c.status for c in result.claims} == {ClaimStatus.PAID}
        assert len({a.reconciliation_id for a in result.allocations}) == 1


@pytest.mark.unit
class TestReconcileRules:
    """Rejected reconciliations change nothing."""

    @pytest.mark.asyncio
    async def test_invalid_allocations(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")

        result = await world.container.matching.reconcile(
            payment.id, [pay(claim, "0"), pay(claim, "10.00")], ACTOR
        )

        assert isinstance(result.error, ValidationError)
        assert [e.code for e in result.error.errors] == ["INVALID_AMOUNT", "DUPLICATE_CLAIM"]

    @pytest.mark.asyncio
    async def test_already_reconciled(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        other = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")
        matching = world.container.matching

        (await matching.reconcile(payment.id, [pay(claim, "500.00")], ACTOR)).unwrap()
        again = await matching.reconcile(payment.id, [pay(other, "500.00")], ACTOR)

        assert again.error.rule == "payment-already-reconciled"
        assert (await world.reload(other.id)).status == ClaimStatus.PENDING

    @pytest.mark.asyncio
    async def test_payer_mismatch(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        other_payer = await world.repository.create_payer(Payer(name="Managed Care Plan", payer_code="MCO02"))
        payment = await receive(world, "1000.00", payer_id=other_payer.id)

        result = await world.container.matching.reconcile(payment.id, [pay(claim, "1000.00")], ACTOR)

        assert result.error.rule == "payer-mismatch"

    @pytest.mark.asyncio
    async def test_claim_not_outstanding_blocks_whole_payment(self, world):
        pending = await world.claim_in(ClaimStatus.PENDING)
        draft = await world.draft_claim()
        payment = await receive(world, "2000.00")

        result = await world.container.matching.reconcile(
            payment.id, [pay(pending, "1000.00"), pay(draft, "1000.00")], ACTOR
        )

        assert result.error.rule == "claim-not-outstanding"
        assert (await world.reload(pending.id)).status == ClaimStatus.PENDING
        stored = await world.repository.find_payment_by_id(payment.id)
        assert stored.reconciliation_status == ReconciliationStatus.UNRECONCILED
        assert await world.repository.find_claim_payments(payment.id) == []

    @pytest.mark.asyncio
    async def test_unknown_claim_or_payment(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")
        matching = world.container.matching

        missing_claim = await matching.reconcile(
            payment.id, [Allocation(claim_id=uuid4(), amount=Decimal("10.00"))], ACTOR
        )
        missing_payment = await matching.reconcile(uuid4(), [pay(claim, "10.00")], ACTOR)

        assert isinstance(missing_claim.error, NotFoundError)
        assert isinstance(missing_payment.error, NotFoundError)


@pytest.mark.unit
class TestAutoReconcile:
    """Greedy allocation from confident suggestions."""

    @pytest.mark.asyncio
    async def test_remittance_lines_settle_claims(self, world):
        first = await world.claim_in(ClaimStatus.PENDING)
        second = await world.claim_in(ClaimStatus.PENDING, units="20")
        payment = await receive(
            world,
            "1450.00",
            remittance_details=[
                RemittanceDetail(
                    claim_number=first.claim_number,
                    paid_amount=Decimal("950.00"),
                    adjustments=[Adjustment(group_code="CO", code="45", amount=Decimal("50.00"))],
                ),
                RemittanceDetail(claim_number=second.claim_number, paid_amount=Decimal("500.00")),
            ],
        )

        result = (await world.container.matching.auto_reconcile(payment.id, ACTOR)).unwrap()

        assert result.applied
        assert result.payment.reconciliation_status == ReconciliationStatus.RECONCILED
        assert (await world.reload(first.id)).status == ClaimStatus.PAID
        assert (await world.reload(second.id)).status == ClaimStatus.PAID

    @pytest.mark.asyncio
    async def test_low_confidence_leaves_payment_alone(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "950.00")

        result = (await world.container.matching.auto_reconcile(payment.id, ACTOR)).unwrap()

        assert not result.applied
        assert result.payment.reconciliation_status == ReconciliationStatus.UNRECONCILED
        assert (await world.reload(claim.id)).status == ClaimStatus.PENDING

    @pytest.mark.asyncio
    async def test_unique_amount_is_confident_enough(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")

        result = (await world.container.matching.auto_reconcile(payment.id, ACTOR)).unwrap()

        assert result.claims[0].id == claim.id
        assert result.claims[0].status == ClaimStatus.PAID


@pytest.mark.unit
class TestUndoReconciliation:
    """Undo puts claims and payment back exactly."""

    @pytest.mark.asyncio
    async def test_undo_then_reapply(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")
        matching = world.container.matching

        (await matching.reconcile(payment.id, [pay(claim, "1000.00")], ACTOR)).unwrap()
        undone = (await matching.undo_reconciliation(payment.id, ACTOR, "Posted to wrong claim")).unwrap()

        assert undone.payment.reconciliation_status == ReconciliationStatus.UNRECONCILED
        assert undone.payment.difference is None
        restored = await world.reload(claim.id)
        assert restored.status == ClaimStatus.PENDING
        assert restored.paid_amount == Decimal("0.00")
        assert restored.adjudication_date is None
        assert await world.repository.find_claim_payments(payment.id) == []
        assert (await world.repository.get_status_history(claim.id))[-1].reason == "Posted to wrong claim"

        again = (await matching.reconcile(payment.id, [pay(claim, "1000.00")], ACTOR)).unwrap()
        assert again.claims[0].status == ClaimStatus.PAID
        assert again.payment.reconciliation_status == ReconciliationStatus.RECONCILED

    @pytest.mark.asyncio
    async def test_undo_restores_partial_paid_and_submitted(self, world):
        partial = await world.claim_in(ClaimStatus.PARTIAL_PAID)
        submitted = await world.claim_in(ClaimStatus.SUBMITTED)
        payment = await receive(world, "1500.00")
        matching = world.container.matching

        (await matching.reconcile(
            payment.id, [pay(partial, "500.00"), pay(submitted, "1000.00")], ACTOR
        )).unwrap()
        (await matching.undo_reconciliation(payment.id, ACTOR)).unwrap()

        restored_partial = await world.reload(partial.id)
        assert restored_partial.status == ClaimStatus.PARTIAL_PAID
        assert restored_partial.paid_amount == Decimal("500.00")
        assert restored_partial.adjudication_date == world.today
        assert (await world.reload(submitted.id)).status == ClaimStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_undo_restores_earlier_adjudication_date(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        first_paid_on = world.today - timedelta(days=20)
        (await world.container.lifecycle.adjudicate_claim(
            claim.id, ACTOR, paid_amount=Decimal("500.00"), adjudication_date=first_paid_on
        )).unwrap()
        payment = await receive(world, "500.00")
        matching = world.container.matching

        settled = (await matching.reconcile(payment.id, [pay(claim, "500.00")], ACTOR)).unwrap()
        assert settled.claims[0].adjudication_date == world.today
        (await matching.undo_reconciliation(payment.id, ACTOR)).unwrap()

        restored = await world.reload(claim.id)
        assert restored.status == ClaimStatus.PARTIAL_PAID
        assert restored.adjudication_date == first_paid_on

    @pytest.mark.asyncio
    async def test_undo_restores_remittance_adjustments(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        withholding = Adjustment(code="WO", amount=Decimal("-50.00"), description="Overpayment recovery")
        payment = await receive(world, "950.00", adjustments=[withholding])
        manual = Adjustment(code="72", amount=Decimal("25.00"), description="Interest")
        matching = world.container.matching

        reconciled = (await matching.reconcile(
            payment.id, [pay(claim, "925.00")], ACTOR, adjustments=[manual]
        )).unwrap()
        assert reconciled.payment.adjustments == [manual]

        undone = (await matching.undo_reconciliation(payment.id, ACTOR)).unwrap()

        stored = await world.repository.find_payment_by_id(payment.id)
        assert undone.payment.adjustments == [withholding]
        assert stored.adjustments == [withholding]
        assert stored.prior_adjustments is None

    @pytest.mark.asyncio
    async def test_nothing_to_undo(self, world):
        payment = await receive(world, "1000.00")
        result = await world.container.matching.undo_reconciliation(payment.id, ACTOR)
        assert result.error.rule == "nothing-to-undo"

    @pytest.mark.asyncio
    async def test_claim_changed_after_reconciliation(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        payment = await receive(world, "1000.00")
        matching = world.container.matching
        (await matching.reconcile(payment.id, [pay(claim, "600.00")], ACTOR)).unwrap()
        (await world.container.lifecycle.adjudicate_claim(
            claim.id, ACTOR, paid_amount=Decimal("1000.00"), adjudication_date=world.today
        )).unwrap()

        result = await matching.undo_reconciliation(payment.id, ACTOR)

        assert result.error.rule == "claim-changed-since-reconciliation"
        assert (await world.reload(claim.id)).status == ClaimStatus.PAID
        assert len(await world.repository.find_claim_payments(payment.id)) == 1
