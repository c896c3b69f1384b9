"""
Claim Lifecycle Service Tests.
Validation, adjudication outcomes, appeals, corrections and history.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from hcbs_revenue.core.enums import ClaimStatus, ClaimType, DocumentationStatus
from hcbs_revenue.services.claims import TransitionRequest
from hcbs_revenue.utils.errors import NotFoundError, ValidationError

ACTOR = "billing.clerk"


@pytest.mark.unit
class TestValidateClaim:
    """validate_claim and batch_validate_claims."""

    @pytest.mark.asyncio
    async def test_valid_claim_moves_to_validated(self, world):
        claim = await world.draft_claim()
        outcome = (await world.container.lifecycle.validate_claim(claim.id, ACTOR)).unwrap()

        assert outcome.claim.status == ClaimStatus.VALIDATED
        assert outcome.validation.is_valid
        assert outcome.to_dict()["status"] == "validated"

    @pytest.mark.asyncio
    async def test_invalid_claim_stays_draft(self, world):
        service = await world.add_service(documentation=DocumentationStatus.INCOMPLETE)
        claim = (await world.container.converter.convert_services_to_claim(
            [service.id], world.payer.id, ACTOR
        )).unwrap()

        result = await world.container.lifecycle.validate_claim(claim.id, ACTOR)

        assert isinstance(result.error, ValidationError)
        assert [e.code for e in result.error.errors] == ["DOCUMENTATION_INCOMPLETE"]
        assert result.error.context["issues"][0]["code"] == "DOCUMENTATION_INCOMPLETE"
        assert (await world.reload(claim.id)).status == ClaimStatus.DRAFT
        assert len(await world.repository.get_status_history(claim.id)) == 1

    @pytest.mark.asyncio
    async def test_only_draft_claims_validate(self, world):
        claim = await world.claim_in(ClaimStatus.VALIDATED)
        result = await world.container.lifecycle.validate_claim(claim.id, ACTOR)
        assert result.error.rule == "invalid-status-transition"

    @pytest.mark.asyncio
    async def test_unknown_claim(self, world):
        result = await world.container.lifecycle.validate_claim(uuid4(), ACTOR)
        assert isinstance(result.error, NotFoundError)

    @pytest.mark.asyncio
    async def test_batch_validate_reports_each_claim(self, world):
        good = await world.draft_claim()
        bad_service = await world.add_service(documentation=DocumentationStatus.INCOMPLETE)
        bad = (await world.container.converter.convert_services_to_claim(
            [bad_service.id], world.payer.id, ACTOR
        )).unwrap()
        missing = uuid4()

        result = await world.container.lifecycle.batch_validate_claims(
            [good.id, bad.id, missing], ACTOR
        )

        assert result.total_processed == 3
        assert result.success_count == 1
        assert result.error_count == 2
        assert good.id in result.results
        assert {e.claim_id for e in result.errors} == {bad.id, missing}
        payload = result.to_dict(lambda item: item.to_dict())
        assert payload["success_count"] == 1
        assert len(payload["errors"]) == 2


@pytest.mark.unit
class TestAdjudicationOutcomes:
    """deny, adjudicate, void, appeal and reopen."""

    @pytest.mark.asyncio
    async def test_full_payment(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        paid = (await world.container.lifecycle.adjudicate_claim(
            claim.id, ACTOR, paid_amount=Decimal("950.00"),
            adjustment_amount=Decimal("50.00"), adjudication_date=world.today,
        )).unwrap()

        assert paid.status == ClaimStatus.PAID
        assert paid.paid_amount == Decimal("950.00")
        assert paid.adjustment_amount == Decimal("50.00")
        assert paid.balance == Decimal("0.00")
        assert paid.adjudication_date == world.today

    @pytest.mark.asyncio
    async def test_partial_payment_then_remainder(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        lifecycle = world.container.lifecycle

        partial = (await lifecycle.adjudicate_claim(
            claim.id, ACTOR, paid_amount=Decimal("600.00"), adjudication_date=world.today
        )).unwrap()
        assert partial.status == ClaimStatus.PARTIAL_PAID
        assert partial.balance == Decimal("400.00")

        paid = (await lifecycle.adjudicate_claim(
            claim.id, ACTOR, paid_amount=Decimal("1000.00"), adjudication_date=world.today
        )).unwrap()
        assert paid.status == ClaimStatus.PAID

    @pytest.mark.asyncio
    async def test_cannot_adjudicate_draft(self, world):
        claim = await world.draft_claim()
        result = await world.container.lifecycle.adjudicate_claim(
            claim.id, ACTOR, paid_amount=Decimal("1000.00"), adjudication_date=world.today
        )
        assert result.error.rule == "invalid-status-transition"

    @pytest.mark.asyncio
    async def test_deny_records_reason(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        denied = (await world.container.lifecycle.deny_claim(
            claim.id, ACTOR, "Authorization absent", "197", world.today
        )).unwrap()

        assert denied.status == ClaimStatus.DENIED
        assert denied.denial_reason == "Authorization absent"
        assert denied.denial_code == "197"
        history = await world.repository.get_status_history(claim.id)
        assert history[-1].reason == "Authorization absent"

    @pytest.mark.asyncio
    async def test_appeal_and_reopen(self, world):
        claim = await world.claim_in(ClaimStatus.DENIED)
        lifecycle = world.container.lifecycle

        appealed = (await lifecycle.appeal_claim(
            claim.id, ACTOR, "Authorization was on file", ["auth-letter.pdf"]
        )).unwrap()
        assert appealed.status == ClaimStatus.APPEALED
        assert appealed.appeal_artifacts == ["auth-letter.pdf"]

        reopened = (await lifecycle.reopen_claim(claim.id, ACTOR)).unwrap()
        assert reopened.status == ClaimStatus.PENDING

    @pytest.mark.asyncio
    async def test_appeal_requires_artifacts(self, world):
        claim = await world.claim_in(ClaimStatus.DENIED)
        result = await world.container.lifecycle.appeal_claim(claim.id, ACTOR, "Please review", [])
        assert result.error.rule == "missing-required-field"
        assert result.error.context["field"] == "appeal_artifacts"

    @pytest.mark.asyncio
    async def test_void_is_final(self, world):
        claim = await world.claim_in(ClaimStatus.PENDING)
        lifecycle = world.container.lifecycle

        voided = (await lifecycle.void_claim(claim.id, ACTOR, "Billed to wrong payer")).unwrap()
        assert voided.status == ClaimStatus.VOID

        again = await lifecycle.void_claim(claim.id, ACTOR, "again")
        assert again.error.rule == "invalid-status-transition"

    @pytest.mark.asyncio
    async def test_unknown_claim_is_a_failure(self, world):
        result = await world.container.lifecycle.void_claim(uuid4(), ACTOR, "x")
        assert isinstance(result.error, NotFoundError)


@pytest.mark.unit
class TestCorrections:
    """Adjustment and replacement claims."""

    @pytest.mark.asyncio
    async def test_replacement_claim(self, world):
        original = await world.claim_in(ClaimStatus.PAID)
        replacement = (await world.container.lifecycle.create_replacement_claim(
            original.id, ACTOR, "Corrected units", Decimal("900.00")
        )).unwrap()

        assert replacement.claim_type == ClaimType.REPLACEMENT
        assert replacement.original_claim_id == original.id
        assert replacement.status == ClaimStatus.DRAFT
        assert replacement.total_amount == Decimal("900.00")
        assert replacement.service_ids == original.service_ids
        assert replacement.claim_number != original.claim_number

        stored_original = await world.reload(original.id)
        assert stored_original.status == ClaimStatus.PAID

    @pytest.mark.asyncio
    async def test_adjustment_claim_defaults_to_original_total(self, world):
        original = await world.claim_in(ClaimStatus.DENIED)
        adjustment = (await world.container.lifecycle.create_adjustment_claim(
            original.id, ACTOR, "Resubmit with modifier"
        )).unwrap()
        assert adjustment.claim_type == ClaimType.ADJUSTMENT
        assert adjustment.total_amount == original.total_amount

    @pytest.mark.asyncio
    async def test_correction_requires_adjudicated_original(self, world):
        original = await world.claim_in(ClaimStatus.PENDING)
        result = await world.container.lifecycle.create_replacement_claim(original.id, ACTOR, "early")
        assert result.error.rule == "invalid-original-status"

    @pytest.mark.asyncio
    async def test_voiding_a_correction_leaves_services_on_original(self, world):
        original = await world.claim_in(ClaimStatus.PAID)
        lifecycle = world.container.lifecycle
        replacement = (await lifecycle.create_replacement_claim(original.id, ACTOR, "fix")).unwrap()

        await lifecycle.void_claim(replacement.id, ACTOR, "Not needed")

        services = await world.repository.find_services_by_ids(original.service_ids)
        assert all(s.claim_id == original.id for s in services)

    @pytest.mark.asyncio
    async def test_history(self, world):
        claim = await world.claim_in(ClaimStatus.VALIDATED)
        history = (await world.container.lifecycle.get_claim_history(claim.id)).unwrap()
        assert [h.to_status for h in history] == [ClaimStatus.DRAFT, ClaimStatus.VALIDATED]

        missing = await world.container.lifecycle.get_claim_history(uuid4())
        assert isinstance(missing.error, NotFoundError)


async def used_units(world) -> Decimal:
    authorizations = await world.repository.find_authorizations_for_client(world.client_id)
    return authorizations[0].used_units


@pytest.mark.unit
class TestAuthorizationUsage:
    """Units are taken from the authorization on validation and returned on void."""

    @pytest.fixture
    def world(self, world):
        world.authorization = world.authorization.model_copy(update={"authorized_units": Decimal("50")})
        return world

    @pytest.mark.asyncio
    async def test_second_claim_cannot_reuse_units(self, world):
        await world.claim_in(ClaimStatus.PENDING)
        assert await used_units(world) == Decimal("40")

        second = await world.draft_claim()
        result = await world.container.lifecycle.validate_claim(second.id, ACTOR)

        assert isinstance(result.error, ValidationError)
        assert [e.code for e in result.error.errors] == ["AUTHORIZATION_UNITS_EXCEEDED"]
        assert (await world.reload(second.id)).status == ClaimStatus.DRAFT
        assert await used_units(world) == Decimal("40")

    @pytest.mark.asyncio
    async def test_void_releases_units(self, world):
        first = await world.claim_in(ClaimStatus.PENDING)
        lifecycle = world.container.lifecycle

        (await lifecycle.void_claim(first.id, ACTOR, "Billed in error")).unwrap()
        assert await used_units(world) == Decimal("0")

        second = await world.draft_claim()
        (await lifecycle.validate_claim(second.id, ACTOR)).unwrap()
        assert await used_units(world) == Decimal("40")

    @pytest.mark.asyncio
    async def test_voiding_a_draft_returns_nothing(self, world):
        await world.claim_in(ClaimStatus.VALIDATED)
        draft = await world.draft_claim()

        (await world.container.lifecycle.void_claim(draft.id, ACTOR, "Duplicate")).unwrap()
        assert await used_units(world) == Decimal("40")

    @pytest.mark.asyncio
    async def test_units_are_rechecked_when_validation_is_applied(self, world):
        lifecycle = world.container.lifecycle
        first = await world.draft_claim()
        second = await world.draft_claim()
        # Both pass the engine before either has taken units
        checks = [await lifecycle.run_validation(c) for c in (first, second)]
        assert all(v.is_valid for v in checks)

        outcomes = [
            await world.container.state_machine.transition(TransitionRequest(
                claim_id=claim.id,
                target_status=ClaimStatus.VALIDATED,
                actor_id=ACTOR,
                validation=validation,
            ))
            for claim, validation in zip((first, second), checks)
        ]

        assert outcomes[0].ok
        assert outcomes[1].error.rule == "authorization-units-exceeded"
        assert (await world.reload(second.id)).status == ClaimStatus.DRAFT
        assert len(await world.repository.get_status_history(second.id)) == 1
        assert await used_units(world) == Decimal("40")

    @pytest.mark.asyncio
    async def test_correction_does_not_count_units_twice(self, world):
        original = await world.claim_in(ClaimStatus.PAID)
        lifecycle = world.container.lifecycle
        replacement = (await lifecycle.create_replacement_claim(original.id, ACTOR, "Fix rate")).unwrap()

        outcome = (await lifecycle.validate_claim(replacement.id, ACTOR)).unwrap()

        assert outcome.claim.status == ClaimStatus.VALIDATED
        assert await used_units(world) == Decimal("40")
