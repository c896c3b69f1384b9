"""
Service-to-Claim Conversion Tests.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from hcbs_revenue.core.enums import BillingStatus, ClaimStatus, ClaimType
from hcbs_revenue.services.claims import format_claim_number
from hcbs_revenue.utils.errors import BusinessError, NotFoundError, ValidationError

ACTOR = "billing.clerk"


@pytest.mark.unit
class TestServiceToClaimConverter:
    """Conversion is all-or-nothing."""

    def test_claim_number_format(self):
        assert format_claim_number(2026, 42) == "CLM-2026-000042"

    @pytest.mark.asyncio
    async def test_converts_ready_services(self, world):
        first = await world.add_service(units="4", rate="25.00")
        second = await world.add_service(units="2", rate="12.50", service_date=world.today)

        result = await world.container.converter.convert_services_to_claim(
            [first.id, second.id], world.payer.id, ACTOR, notes="March visits"
        )

        claim = result.unwrap()
        assert claim.status == ClaimStatus.DRAFT
        assert claim.claim_type == ClaimType.ORIGINAL
        assert claim.claim_number == f"CLM-{date.today().year}-000001"
        assert claim.client_id == world.client_id
        assert claim.total_amount == Decimal("125.00")
        assert claim.service_start_date == first.service_date
        assert claim.service_end_date == world.today
        assert claim.notes == "March visits"

        services = await world.repository.find_services_by_ids([first.id, second.id])
        assert all(s.billing_status == BillingStatus.IN_CLAIM for s in services)
        assert all(s.claim_id == claim.id for s in services)

        history = await world.repository.get_status_history(claim.id)
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == ClaimStatus.DRAFT

    @pytest.mark.asyncio
    async def test_claim_numbers_are_sequential(self, world):
        first = await world.draft_claim()
        second = await world.draft_claim()
        assert first.claim_number.endswith("000001")
        assert second.claim_number.endswith("000002")

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_billed_once(self, world):
        service = await world.add_service()
        claim = (await world.container.converter.convert_services_to_claim(
            [service.id, service.id], world.payer.id, ACTOR
        )).unwrap()
        assert claim.service_ids == [service.id]
        assert claim.total_amount == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_empty_service_list(self, world):
        result = await world.container.converter.convert_services_to_claim([], world.payer.id, ACTOR)
        assert isinstance(result.error, ValidationError)
        assert result.error.errors[0].code == "EMPTY_SERVICE_IDS"

    @pytest.mark.asyncio
    async def test_missing_payer(self, world):
        service = await world.add_service()
        result = await world.container.converter.convert_services_to_claim([service.id], None, ACTOR)
        assert result.error.errors[0].code == "MISSING_PAYER_ID"

        result = await world.container.converter.convert_services_to_claim([service.id], uuid4(), ACTOR)
        assert isinstance(result.error, NotFoundError)

    @pytest.mark.asyncio
    async def test_unknown_service(self, world):
        await world.seed()
        result = await world.container.converter.convert_services_to_claim(
            [uuid4()], world.payer.id, ACTOR
        )
        assert isinstance(result.error, BusinessError)
        assert result.error.rule == "service-not-found"

    @pytest.mark.asyncio
    async def test_services_of_different_clients(self, world):
        first = await world.add_service()
        second = await world.add_service(client_id=uuid4())
        result = await world.container.converter.convert_services_to_claim(
            [first.id, second.id], world.payer.id, ACTOR
        )
        assert result.error.rule == "different-clients"

    @pytest.mark.asyncio
    async def test_one_service_already_in_claim_blocks_all(self, world):
        ready = await world.add_service()
        taken = await world.add_service(billing_status=BillingStatus.IN_CLAIM)

        result = await world.container.converter.convert_services_to_claim(
            [ready.id, taken.id], world.payer.id, ACTOR
        )

        assert result.error.rule == "invalid-service-status"
        stored = (await world.repository.find_services_by_ids([ready.id]))[0]
        assert stored.billing_status == BillingStatus.READY
        assert stored.claim_id is None
        assert await world.repository.find_claim_by_number(
            f"CLM-{date.today().year}-000001"
        ) is None

    @pytest.mark.asyncio
    async def test_unbilled_service_rejected(self, world):
        service = await world.add_service(billing_status=BillingStatus.UNBILLED)
        result = await world.container.converter.convert_services_to_claim(
            [service.id], world.payer.id, ACTOR
        )
        assert result.error.rule == "invalid-service-status"
        assert result.error.context["services"][0]["billing_status"] == "unbilled"

    @pytest.mark.asyncio
    async def test_service_cannot_join_two_claims(self, world):
        service = await world.add_service()
        converter = world.container.converter

        first = await converter.convert_services_to_claim([service.id], world.payer.id, ACTOR)
        second = await converter.convert_services_to_claim([service.id], world.payer.id, ACTOR)

        assert first.ok
        assert second.error.rule == "invalid-service-status"
