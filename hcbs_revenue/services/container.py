"""
Service Container.

Builds the revenue cycle components once per process and owns their
lifecycle: the repository (in-memory in demo mode, SQLAlchemy in live
mode), payer adapters and the breaker registry are created at start and
released at close.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from hcbs_revenue.core.config import BillingSettings, get_settings
from hcbs_revenue.db.connection import (
    check_db_connection,
    create_engine_from_settings,
    create_session_maker,
    init_models,
)
from hcbs_revenue.integrations import AdapterRegistry
from hcbs_revenue.repositories import (
    BillingRepository,
    InMemoryBillingRepository,
    SqlAlchemyBillingRepository,
)
from hcbs_revenue.services.claims import (
    ClaimLifecycleService,
    ClaimLockManager,
    ClaimStateMachine,
    ServiceToClaimConverter,
)
from hcbs_revenue.services.payments import PaymentMatchingEngine
from hcbs_revenue.services.remittance import RemittanceProcessor
from hcbs_revenue.services.submission import BreakerRegistry, RetryPolicy, SubmissionOrchestrator
from hcbs_revenue.services.validation import ValidationEngine

logger = logging.getLogger(__name__)


class BillingContainer:
    """Wires every component around one repository."""

    def __init__(
        self,
        settings: BillingSettings,
        repository: BillingRepository,
        adapters: AdapterRegistry,
        breakers: BreakerRegistry,
        retry_policy: Optional[RetryPolicy] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings
        self.repository = repository
        self.adapters = adapters
        self.breakers = breakers
        self._engine = engine

        self.lock_manager = ClaimLockManager()
        self.state_machine = ClaimStateMachine(repository, self.lock_manager, settings)
        self.validation_engine = ValidationEngine(settings)
        self.converter = ServiceToClaimConverter(repository, settings)
        self.lifecycle = ClaimLifecycleService(
            repository, self.state_machine, self.validation_engine, settings
        )
        self.orchestrator = SubmissionOrchestrator(
            repository,
            self.state_machine,
            adapters,
            breakers,
            retry_policy or RetryPolicy.from_settings(settings),
            settings,
        )
        self.matching = PaymentMatchingEngine(repository, self.state_machine, settings)
        self.remittance = RemittanceProcessor(repository, self.matching)

    @classmethod
    async def start(cls, settings: Optional[BillingSettings] = None) -> "BillingContainer":
        settings = settings or get_settings()
        engine: Optional[AsyncEngine] = None
        repository: BillingRepository
        if settings.is_demo_mode:
            repository = InMemoryBillingRepository()
        else:
            engine = create_engine_from_settings(settings)
            await init_models(engine)
            repository = SqlAlchemyBillingRepository(create_session_maker(engine))

        adapters = AdapterRegistry.from_settings(settings)
        await adapters.connect_all()
        breakers = BreakerRegistry.from_settings(settings)

        logger.info(
            f"Billing container started ({settings.INTEGRATION_MODE.value} mode, "
            f"{len(adapters)} integration(s))"
        )
        return cls(settings, repository, adapters, breakers, engine=engine)

    async def database_healthy(self) -> Optional[bool]:
        """None in demo mode, where no database is used."""
        if self._engine is None:
            return None
        return await check_db_connection(self._engine)

    async def close(self) -> None:
        await self.adapters.close_all()
        self.breakers.close()
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
        logger.info("Billing container closed")
