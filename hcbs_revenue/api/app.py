"""
FastAPI Application
Thin HTTP surface over the revenue cycle operations.
Source: https://fastapi.tiangolo.com/
Verified: 2026-10-19
"""

import math
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hcbs_revenue import __version__
from hcbs_revenue.api.routes import claims, health, payments
from hcbs_revenue.core.config import BillingSettings, get_settings
from hcbs_revenue.services.container import BillingContainer
from hcbs_revenue.utils.errors import ClaimError, IntegrationError, ServiceUnavailableError
from hcbs_revenue.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Render ClaimErrors as structured JSON.

    Integration failures get the generic public body; status code, endpoint
    and response body go to the logs only.
    """

    @app.exception_handler(IntegrationError)
    async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
        logger.error(
            f"Integration failure on {request.method} {request.url.path}: "
            f"service={exc.service} failure={exc.failure_type.value} endpoint={exc.endpoint} "
            f"status={exc.status_code} body={exc.response_body!r} message={exc.message}"
        )
        headers = None
        if isinstance(exc, ServiceUnavailableError) and exc.retry_after_seconds:
            headers = {"Retry-After": str(math.ceil(exc.retry_after_seconds))}
        return JSONResponse(status_code=exc.http_status, content=exc.public_dict(), headers=headers)

    @app.exception_handler(ClaimError)
    async def claim_error_handler(request: Request, exc: ClaimError) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path} -> {exc.http_status}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app(
    settings: Optional[BillingSettings] = None,
    container: Optional[BillingContainer] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the application.

    A container passed in (tests) is used as-is and left open at shutdown;
    otherwise one is started from settings and closed with the app.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(
            level=settings.LOG_LEVEL,
            log_file=settings.LOG_FILE,
            json_logs=settings.LOG_JSON or settings.is_production,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # type: ignore[no-untyped-def]
        logger.info(f"Starting revenue cycle API in {settings.ENVIRONMENT} mode")
        owned = container is None
        app.state.container = container or await BillingContainer.start(settings)

        yield

        logger.info("Shutting down revenue cycle API")
        if owned:
            await app.state.container.close()

    app = FastAPI(
        title="HCBS Revenue Cycle API",
        description="Claim lifecycle, payer submission and payment reconciliation",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(claims.router)
    app.include_router(payments.router)

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "name": "HCBS Revenue Cycle API",
            "version": __version__,
            "environment": settings.ENVIRONMENT,
            "mode": settings.INTEGRATION_MODE.value,
        }

    return app
