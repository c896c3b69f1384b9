"""
Health Check Routes
Service and payer integration health endpoints
Source: https://microservices.io/patterns/observability/health-check-api.html
Verified: 2026-10-19
"""

from typing import Any

from fastapi import APIRouter, Depends

from hcbs_revenue.api.deps import get_container
from hcbs_revenue.core.enums import HealthState
from hcbs_revenue.services.container import BillingContainer
from hcbs_revenue.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Liveness probe for load balancers."""
    return {
        "status": "healthy",
        "service": "hcbs-revenue-api",
    }


@router.get("/health/integrations")
async def integration_health_check(
    container: BillingContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Probe every payer integration and report breaker state next to it.

    Probes go straight to the adapters, so an open breaker does not hide a
    recovered endpoint.
    """
    integrations = await container.orchestrator.check_integration_health()
    db_healthy = await container.database_healthy()

    degraded = any(i.status != HealthState.HEALTHY for i in integrations) or db_healthy is False
    if degraded:
        logger.warning(
            "Degraded health: "
            + ", ".join(f"{i.integration_id}={i.status.value}" for i in integrations)
            + f", database={db_healthy}"
        )

    return {
        "status": "degraded" if degraded else "healthy",
        "service": "hcbs-revenue-api",
        "checks": {
            "database": (
                "not_used" if db_healthy is None else "healthy" if db_healthy else "unhealthy"
            ),
            "integrations": [i.to_dict() for i in integrations],
        },
    }
