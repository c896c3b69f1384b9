"""
Payer Adapter Registry.
Source: Provider gateway initialization and lookup
Verified: 2026-10-19

Adapters are selected by integration id rather than by switching on an
integration type tag. ``from_settings`` builds the registry once at startup
using a factory per IntegrationType.
"""

import logging
from collections.abc import Callable, Iterator

from hcbs_revenue.core.config import BillingSettings, IntegrationConfig
from hcbs_revenue.core.enums import IntegrationType
from hcbs_revenue.integrations.base import PayerAdapter
from hcbs_revenue.integrations.clearinghouse import ClearinghouseAdapter
from hcbs_revenue.integrations.demo import DemoPayerAdapter
from hcbs_revenue.utils.errors import NotFoundError

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[IntegrationConfig, BillingSettings], PayerAdapter]

DEMO_INTEGRATION_ID = "demo"

ADAPTER_FACTORIES: dict[IntegrationType, AdapterFactory] = {
    IntegrationType.CLEARINGHOUSE: ClearinghouseAdapter.from_config,
    IntegrationType.MEDICAID: ClearinghouseAdapter.from_config,
    IntegrationType.DEMO: lambda config, settings: DemoPayerAdapter(config.id),
}


class AdapterRegistry:
    """Integration id -> PayerAdapter."""

    def __init__(self) -> None:
        self._adapters: dict[str, PayerAdapter] = {}

    def register(self, adapter: PayerAdapter) -> None:
        if adapter.integration_id in self._adapters:
            logger.warning(f"Replacing adapter for integration {adapter.integration_id}")
        self._adapters[adapter.integration_id] = adapter

    def get(self, integration_id: str) -> PayerAdapter:
        adapter = self._adapters.get(integration_id)
        if adapter is None:
            raise NotFoundError("Integration", integration_id)
        return adapter

    def __contains__(self, integration_id: str) -> bool:
        return integration_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    def items(self) -> Iterator[tuple[str, PayerAdapter]]:
        return iter(list(self._adapters.items()))

    async def connect_all(self) -> None:
        for integration_id, adapter in self.items():
            await adapter.connect()
            logger.info(f"Integration {integration_id} ready ({adapter.integration_type.value})")

    async def close_all(self) -> None:
        for _, adapter in self.items():
            await adapter.close()

    @classmethod
    def from_settings(cls, settings: BillingSettings) -> "AdapterRegistry":
        """
        Build adapters for every configured integration.

        Demo mode always registers a DemoPayerAdapter under ``demo`` so payers
        without an integration id still have somewhere to submit.
        """
        registry = cls()
        for config in settings.INTEGRATIONS:
            factory = ADAPTER_FACTORIES.get(config.type)
            if factory is None:
                raise ValueError(f"No adapter available for integration type {config.type.value}")
            registry.register(factory(config, settings))

        if settings.is_demo_mode and DEMO_INTEGRATION_ID not in registry:
            registry.register(DemoPayerAdapter(DEMO_INTEGRATION_ID))
        return registry
