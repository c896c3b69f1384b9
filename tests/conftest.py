"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest

from hcbs_revenue.core.config import BillingSettings
from hcbs_revenue.core.enums import (
    BillingStatus,
    ClaimStatus,
    DocumentationStatus,
    IntegrationMode,
    SubmissionMethod,
)
from hcbs_revenue.integrations import AdapterRegistry, DemoPayerAdapter
from hcbs_revenue.repositories import InMemoryBillingRepository
from hcbs_revenue.schemas import Authorization, Claim, Payer, Service
from hcbs_revenue.services.claims import TransitionRequest
from hcbs_revenue.services.container import BillingContainer
from hcbs_revenue.services.submission import BreakerRegistry, RetryPolicy

ACTOR = "billing.clerk"
SERVICE_TYPE = "personal_care"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BillingWorld:
    """
    A container over an in-memory repository seeded with one payer, one
    client and an authorization covering the last 60 and next 180 days.

    The payer and authorization objects exist immediately; they are written
    to the repository by ``seed()``, which every helper calls first.
    """

    def __init__(self, settings: BillingSettings):
        self.settings = settings
        self.today = date.today()
        self.repository = InMemoryBillingRepository()
        self.clock = FakeClock()
        self.sleeps: list[float] = []

        self.demo = DemoPayerAdapter()
        self.adapters = AdapterRegistry()
        self.adapters.register(self.demo)
        self.breakers = BreakerRegistry.from_settings(settings, clock=self.clock)
        self.retry_policy = RetryPolicy.from_settings(settings, sleep=self._sleep, rand=lambda: 0.5)
        self.container = BillingContainer(
            settings, self.repository, self.adapters, self.breakers, retry_policy=self.retry_policy
        )

        self.client_id = uuid4()
        self.payer = Payer(name="State Medicaid", payer_code="MCD01", timely_filing_days=365)
        self.authorization = Authorization(
            client_id=self.client_id,
            authorization_number="AUTH-0001",
            service_type=SERVICE_TYPE,
            start_date=self.today - timedelta(days=60),
            end_date=self.today + timedelta(days=180),
            authorized_units=Decimal("1000"),
        )
        self._seeded = False

    async def _sleep(self, delay: float) -> None:
        self.sleeps.append(delay)

    async def seed(self) -> None:
        if self._seeded:
            return
        await self.repository.create_payer(self.payer)
        await self.repository.create_authorization(self.authorization)
        self._seeded = True

    async def add_service(
        self,
        units: str = "4",
        rate: str = "25.00",
        service_date: Optional[date] = None,
        client_id: Optional[UUID] = None,
        documentation: DocumentationStatus = DocumentationStatus.COMPLETE,
        billing_status: BillingStatus = BillingStatus.READY,
        service_code: str = "T1019",
    ) -> Service:
        await self.seed()
        return await self.repository.create_service(Service(
            client_id=client_id or self.client_id,
            service_code=service_code,
            service_type=SERVICE_TYPE,
            service_date=service_date or self.today - timedelta(days=10),
            units=Decimal(units),
            rate=Decimal(rate),
            billing_status=billing_status,
            documentation_status=documentation,
        ))

    async def draft_claim(self, units: str = "40", rate: str = "25.00") -> Claim:
        """DRAFT claim over one ready service (40 x 25.00 = 1000.00 by default)."""
        service = await self.add_service(units=units, rate=rate)
        result = await self.container.converter.convert_services_to_claim(
            [service.id], self.payer.id, ACTOR
        )
        return result.unwrap()

    async def claim_in(self, status: ClaimStatus, units: str = "40", rate: str = "25.00") -> Claim:
        """Drive a fresh claim through the lifecycle to ``status``."""
        claim = await self.draft_claim(units=units, rate=rate)
        if status == ClaimStatus.DRAFT:
            return claim

        container = self.container
        (await container.lifecycle.validate_claim(claim.id, ACTOR)).unwrap()
        if status == ClaimStatus.VALIDATED:
            return await self.reload(claim.id)

        if status == ClaimStatus.SUBMITTED:
            return (await container.state_machine.transition(TransitionRequest(
                claim_id=claim.id,
                target_status=ClaimStatus.SUBMITTED,
                actor_id=ACTOR,
                submission_method=SubmissionMethod.ELECTRONIC,
                submission_date=self.today,
            ))).unwrap()

        (await container.orchestrator.submit(claim.id, ACTOR)).unwrap()
        if status == ClaimStatus.PENDING:
            return await self.reload(claim.id)

        if status == ClaimStatus.DENIED:
            return (await container.lifecycle.deny_claim(claim.id, ACTOR, "Not covered", "96")).unwrap()

        if status in (ClaimStatus.PAID, ClaimStatus.PARTIAL_PAID):
            total = claim.total_amount
            paid = total if status == ClaimStatus.PAID else total / 2
            return (await container.lifecycle.adjudicate_claim(
                claim.id, ACTOR, paid_amount=paid, adjudication_date=self.today
            )).unwrap()

        raise ValueError(f"No test path to {status.value}")

    async def reload(self, claim_id: UUID) -> Claim:
        claim = await self.repository.find_claim_by_id(claim_id)
        assert claim is not None
        return claim


# =============================================================================
# X12 835 Builders
# =============================================================================

ISA_HEADER = (
    "ISA*00*          *00*          *ZZ*STATEMEDICAID  *ZZ*HOMECARE       "
    "*261001*1200*^*00501*000000123*0*P*:"
)
GROUP_CONTROL = "77"


def x12_transaction(control: str, body: list[str], se_count: Optional[int] = None) -> list[str]:
    """ST..SE around ``body``; SE01 is computed unless given."""
    count = se_count if se_count is not None else len(body) + 2
    return [f"ST*835*{control}", *body, f"SE*{count}*{control}"]


def x12_interchange(*transactions: list[str], ge_count: Optional[int] = None) -> str:
    """ISA/GS envelope around the transactions, one segment per line."""
    segments = [ISA_HEADER, f"GS*HP*STATEMEDICAID*HOMECARE*20261001*1200*{GROUP_CONTROL}*X*005010X221A1"]
    for transaction in transactions:
        segments.extend(transaction)
    segments.append(f"GE*{ge_count if ge_count is not None else len(transactions)}*{GROUP_CONTROL}")
    segments.append("IEA*1*000000123")
    return "~\n".join(segments) + "~\n"


def x12_payment_header(total: str, trace: str, payer_code: str = "MCD01", paid_on: str = "20261001") -> list[str]:
    return [
        f"BPR*I*{total}*C*ACH*CCP*01*999999999*DA*123456*1512345678**01*888888888*DA*654321*{paid_on}",
        f"TRN*1*{trace}*1512345678",
        "DTM*405*20260930",
        f"N1*PR*STATE MEDICAID*XV*{payer_code}",
        "N1*PE*HOME CARE AGENCY*XX*1234567893",
    ]


@pytest.fixture
def edi():
    """Namespace of the 835 builders for test modules."""

    class Builders:
        transaction = staticmethod(x12_transaction)
        interchange = staticmethod(x12_interchange)
        payment_header = staticmethod(x12_payment_header)

    return Builders


@pytest.fixture
def settings():
    """Demo-mode settings with instant retries."""
    return BillingSettings(
        ENVIRONMENT="testing",
        INTEGRATION_MODE=IntegrationMode.DEMO,
        RETRY_MAX_ATTEMPTS=3,
        RETRY_BASE_DELAY_SECONDS=1.0,
        RETRY_JITTER=0.0,
        CIRCUIT_FAILURE_THRESHOLD=3,
        CIRCUIT_RESET_TIMEOUT_SECONDS=30.0,
        _env_file=None,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def world(settings):
    """Seeded in-memory billing world."""
    return BillingWorld(settings)


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "api: mark test as an API test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
