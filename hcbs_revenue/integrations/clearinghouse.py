"""
Clearinghouse Payer Adapter.

Provides:
- JSON-over-HTTPS claim submission via httpx
- Status polling and batch submission
- Failure classification (network/timeout/5xx/429 retryable; 401/403/4xx not)

Source: https://www.python-httpx.org/async/
Verified: 2026-10-19
"""

import logging
import time
from datetime import date
from typing import Any, Optional

import httpx

from hcbs_revenue.core.config import BillingSettings, IntegrationConfig
from hcbs_revenue.core.enums import FailureType, HealthState, IntegrationType
from hcbs_revenue.integrations.base import (
    ClaimSubmission,
    HealthStatus,
    PayerAdapter,
    StatusResponse,
    SubmissionReceipt,
)
from hcbs_revenue.utils.errors import IntegrationError

logger = logging.getLogger(__name__)

# Response bodies kept for operators are truncated to this many characters
MAX_DIAGNOSTIC_BODY = 2000

# Claim frequency codes (CLM05-3)
_FREQUENCY_CODES = {
    "original": "1",
    "replacement": "7",
    "void": "8",
    "adjustment": "7",
}


def _parse_date(value: Any) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def classify_status_code(status_code: int) -> tuple[FailureType, bool]:
    """Map an HTTP status to (failure type, retryable)."""
    if status_code == 429:
        return FailureType.RATE_LIMITED, True
    if status_code >= 500:
        return FailureType.SERVER, True
    if status_code in (401, 403):
        return FailureType.AUTH, False
    return FailureType.VALIDATION, False


class ClearinghouseAdapter(PayerAdapter):
    """HTTP adapter for a JSON clearinghouse API."""

    integration_type = IntegrationType.CLEARINGHOUSE

    def __init__(
        self,
        integration_id: str,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(integration_id)
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(
        cls, config: IntegrationConfig, settings: BillingSettings
    ) -> "ClearinghouseAdapter":
        if not config.base_url:
            raise ValueError(f"Integration {config.id} requires base_url")
        return cls(
            integration_id=config.id,
            base_url=config.base_url,
            api_key=config.api_key,
            timeout_seconds=config.timeout_seconds or settings.SUBMISSION_TIMEOUT_SECONDS,
        )

    async def connect(self) -> None:
        if self._http_client is not None:
            return
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        self._http_client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        logger.info(f"Clearinghouse adapter {self.integration_id} connected to {self._base_url}")

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # =========================================================================
    # Contract
    # =========================================================================

    async def submit_claim(self, submission: ClaimSubmission) -> SubmissionReceipt:
        data = await self._request("POST", "/claims", json=self._build_claim_payload(submission))
        return self._parse_receipt(data)

    async def submit_batch(self, submissions: list[ClaimSubmission]) -> list[SubmissionReceipt]:
        payload = {"claims": [self._build_claim_payload(s) for s in submissions]}
        data = await self._request("POST", "/claims/batch", json=payload)
        return [self._parse_receipt(item) for item in data.get("results", [])]

    async def check_status(self, tracking_id: str) -> StatusResponse:
        data = await self._request("GET", f"/claims/{tracking_id}/status")
        return StatusResponse(
            tracking_id=tracking_id,
            status=str(data.get("status", "unknown")).lower(),
            denial_reason=data.get("denialReason"),
            denial_code=data.get("denialCode"),
            adjudication_date=_parse_date(data.get("adjudicationDate")),
            raw=data,
        )

    async def check_health(self) -> HealthStatus:
        started = time.perf_counter()
        try:
            await self._request("GET", "/health")
        except IntegrationError as e:
            return HealthStatus(
                status=HealthState.UNHEALTHY,
                response_time_ms=(time.perf_counter() - started) * 1000,
                message=e.message,
            )
        elapsed_ms = (time.perf_counter() - started) * 1000
        state = HealthState.DEGRADED if elapsed_ms > 2000 else HealthState.HEALTHY
        return HealthStatus(status=state, response_time_ms=elapsed_ms)

    # =========================================================================
    # Wire mapping
    # =========================================================================

    def _build_claim_payload(self, submission: ClaimSubmission) -> dict[str, Any]:
        claim = submission.claim
        return {
            "claimNumber": claim.claim_number,
            "claimType": claim.claim_type.value,
            "frequencyCode": _FREQUENCY_CODES[claim.claim_type.value],
            "originalClaimReference": (
                submission.original_claim.external_claim_id or submission.original_claim.claim_number
                if submission.original_claim
                else None
            ),
            "payerCode": submission.payer.payer_code if submission.payer else None,
            "clientId": str(claim.client_id) if claim.client_id else None,
            "serviceStartDate": claim.service_start_date.isoformat()
            if claim.service_start_date
            else None,
            "serviceEndDate": claim.service_end_date.isoformat()
            if claim.service_end_date
            else None,
            "totalAmount": str(claim.total_amount),
            "serviceLines": [
                {
                    "lineNumber": index,
                    "serviceCode": service.service_code,
                    "serviceDate": service.service_date.isoformat(),
                    "units": str(service.units),
                    "rate": str(service.rate),
                    "amount": str(service.amount),
                }
                for index, service in enumerate(submission.services, start=1)
            ],
        }

    def _parse_receipt(self, data: dict[str, Any]) -> SubmissionReceipt:
        tracking_id = data.get("trackingId") or data.get("tracking_id")
        if not tracking_id:
            raise IntegrationError(
                "Clearinghouse response did not include a tracking id",
                service=self.integration_id,
                retryable=False,
                failure_type=FailureType.UNKNOWN,
                response_body=str(data)[:MAX_DIAGNOSTIC_BODY],
            )
        status = str(data.get("status", "")).lower()
        return SubmissionReceipt(
            tracking_id=str(tracking_id),
            acknowledged=status in ("accepted", "acknowledged"),
            message=data.get("message"),
            raw=data,
        )

    async def _request(
        self, method: str, path: str, json: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """Send a request and translate every failure into IntegrationError."""
        await self.connect()
        assert self._http_client is not None
        endpoint = f"{self._base_url}{path}"

        try:
            response = await self._http_client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise IntegrationError(
                f"Request to {self.integration_id} timed out",
                service=self.integration_id,
                retryable=True,
                failure_type=FailureType.TIMEOUT,
                endpoint=endpoint,
                original_error=e,
            ) from e
        except httpx.TransportError as e:
            raise IntegrationError(
                f"Could not reach {self.integration_id}: {e}",
                service=self.integration_id,
                retryable=True,
                failure_type=FailureType.NETWORK,
                endpoint=endpoint,
                original_error=e,
            ) from e

        if response.is_success:
            try:
                return response.json()
            except ValueError as e:
                raise IntegrationError(
                    f"Invalid JSON from {self.integration_id}",
                    service=self.integration_id,
                    retryable=False,
                    failure_type=FailureType.UNKNOWN,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    response_body=response.text[:MAX_DIAGNOSTIC_BODY],
                    original_error=e,
                ) from e

        failure_type, retryable = classify_status_code(response.status_code)
        logger.warning(
            f"{self.integration_id} {method} {path} failed with {response.status_code} "
            f"({failure_type.value}, retryable={retryable})"
        )
        raise IntegrationError(
            f"{self.integration_id} returned HTTP {response.status_code}",
            service=self.integration_id,
            retryable=retryable,
            failure_type=failure_type,
            endpoint=endpoint,
            status_code=response.status_code,
            response_body=response.text[:MAX_DIAGNOSTIC_BODY],
        )
