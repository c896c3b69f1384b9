"""
Payer Adapter Tests.
Clearinghouse HTTP adapter against httpx.MockTransport, and the adapter registry.
"""

import json
from datetime import date
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from hcbs_revenue.core.config import BillingSettings, IntegrationConfig
from hcbs_revenue.core.enums import (
    ClaimType,
    FailureType,
    HealthState,
    IntegrationMode,
    IntegrationType,
)
from hcbs_revenue.integrations import (
    AdapterRegistry,
    ClaimSubmission,
    ClearinghouseAdapter,
    DemoPayerAdapter,
)
from hcbs_revenue.integrations.clearinghouse import classify_status_code
from hcbs_revenue.schemas import Claim, Payer, Service
from hcbs_revenue.utils.errors import IntegrationError, NotFoundError


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code=200, payload=None, text=None, raises=None):
        self.status_code = status_code
        self.payload = payload if payload is not None else {}
        self.text = text
        self.raises = raises
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raises is not None:
            raise self.raises(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.payload)


def adapter_for(handler, api_key="secret-key") -> ClearinghouseAdapter:
    return ClearinghouseAdapter(
        "clearinghouse",
        "https://clearinghouse.test/api/",
        api_key=api_key,
        timeout_seconds=5.0,
        transport=httpx.MockTransport(handler),
    )


def submission(claim_type=ClaimType.ORIGINAL) -> ClaimSubmission:
    client_id = uuid4()
    service = Service(
        client_id=client_id,
        service_code="T1019",
        service_type="personal_care",
        service_date=date(2026, 9, 15),
        units=Decimal("4"),
        rate=Decimal("25.00"),
    )
    original = Claim(claim_number="CLM-2026-000001", external_claim_id="CH-0001")
    claim = Claim(
        claim_number="CLM-2026-000002" if claim_type != ClaimType.ORIGINAL else "CLM-2026-000001",
        claim_type=claim_type,
        original_claim_id=original.id if claim_type != ClaimType.ORIGINAL else None,
        client_id=client_id,
        service_ids=[service.id],
        service_start_date=service.service_date,
        service_end_date=service.service_date,
        total_amount=Decimal("100.00"),
    )
    return ClaimSubmission(
        claim=claim,
        services=[service],
        payer=Payer(name="State Medicaid", payer_code="MCD01"),
        original_claim=original if claim_type != ClaimType.ORIGINAL else None,
    )


@pytest.mark.unit
class TestClassifyStatusCode:
    """HTTP status to failure classification."""

    @pytest.mark.parametrize(
        "status_code, failure_type, retryable",
        [
            (429, FailureType.RATE_LIMITED, True),
            (500, FailureType.SERVER, True),
            (503, FailureType.SERVER, True),
            (401, FailureType.AUTH, False),
            (403, FailureType.AUTH, False),
            (400, FailureType.VALIDATION, False),
            (422, FailureType.VALIDATION, False),
        ],
    )
    def test_classification(self, status_code, failure_type, retryable):
        assert classify_status_code(status_code) == (failure_type, retryable)


@pytest.mark.unit
class TestClearinghouseAdapter:
    """Wire mapping and failure translation."""

    @pytest.mark.asyncio
    async def test_submit_claim(self):
        handler = Recorder(payload={"trackingId": "CH-1001", "status": "Accepted", "message": "queued"})
        adapter = adapter_for(handler)

        receipt = await adapter.submit_claim(submission())
        await adapter.close()

        assert receipt.tracking_id == "CH-1001"
        assert receipt.acknowledged
        assert receipt.message == "queued"

        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url == "https://clearinghouse.test/api/claims"
        assert request.headers["Authorization"] == "Bearer secret-key"
        body = json.loads(request.content)
        assert body["claimNumber"] == "CLM-2026-000001"
        assert body["frequencyCode"] == "1"
        assert body["payerCode"] == "MCD01"
        assert body["totalAmount"] == "100.00"
        assert body["serviceLines"][0] == {
            "lineNumber": 1,
            "serviceCode": "T1019",
            "serviceDate": "2026-09-15",
            "units": "4",
            "rate": "25.00",
            "amount": "100.00",
        }

    @pytest.mark.asyncio
    async def test_replacement_references_original(self):
        handler = Recorder(payload={"trackingId": "CH-1002", "status": "received"})
        adapter = adapter_for(handler, api_key=None)

        receipt = await adapter.submit_claim(submission(ClaimType.REPLACEMENT))
        await adapter.close()

        assert not receipt.acknowledged
        body = json.loads(handler.requests[0].content)
        assert body["frequencyCode"] == "7"
        assert body["originalClaimReference"] == "CH-0001"
        assert "Authorization" not in handler.requests[0].headers

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, failure_type, retryable",
        [
            (503, FailureType.SERVER, True),
            (429, FailureType.RATE_LIMITED, True),
            (401, FailureType.AUTH, False),
            (400, FailureType.VALIDATION, False),
        ],
    )
    async def test_http_errors(self, status_code, failure_type, retryable):
        adapter = adapter_for(Recorder(status_code=status_code, payload={"error": "nope"}))

        with pytest.raises(IntegrationError) as exc_info:
            await adapter.submit_claim(submission())
        await adapter.close()

        error = exc_info.value
        assert error.status_code == status_code
        assert error.failure_type == failure_type
        assert error.retryable is retryable
        assert error.endpoint == "https://clearinghouse.test/api/claims"
        assert "nope" in error.response_body

    @pytest.mark.asyncio
    async def test_missing_tracking_id(self):
        adapter = adapter_for(Recorder(payload={"status": "accepted"}))
        with pytest.raises(IntegrationError) as exc_info:
            await adapter.submit_claim(submission())
        await adapter.close()
        assert exc_info.value.failure_type == FailureType.UNKNOWN
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        adapter = adapter_for(Recorder(text="<html>maintenance</html>"))
        with pytest.raises(IntegrationError) as exc_info:
            await adapter.submit_claim(submission())
        await adapter.close()
        assert not exc_info.value.retryable
        assert exc_info.value.response_body == "<html>maintenance</html>"

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self):
        adapter = adapter_for(Recorder(raises=lambda request: httpx.ReadTimeout("slow", request=request)))
        with pytest.raises(IntegrationError) as exc_info:
            await adapter.submit_claim(submission())
        await adapter.close()
        assert exc_info.value.failure_type == FailureType.TIMEOUT
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connection_failure_is_retryable(self):
        adapter = adapter_for(Recorder(raises=lambda request: httpx.ConnectError("refused", request=request)))
        with pytest.raises(IntegrationError) as exc_info:
            await adapter.check_status("CH-1")
        await adapter.close()
        assert exc_info.value.failure_type == FailureType.NETWORK
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_check_status(self):
        handler = Recorder(payload={
            "status": "DENIED",
            "denialReason": "Authorization absent",
            "denialCode": "197",
            "adjudicationDate": "2026-10-05",
        })
        adapter = adapter_for(handler)

        status = await adapter.check_status("CH-1001")
        await adapter.close()

        assert handler.requests[0].url.path == "/api/claims/CH-1001/status"
        assert status.status == "denied"
        assert status.denial_code == "197"
        assert status.adjudication_date == date(2026, 10, 5)

    @pytest.mark.asyncio
    async def test_submit_batch(self):
        handler = Recorder(payload={"results": [
            {"trackingId": "CH-1", "status": "accepted"},
            {"trackingId": "CH-2", "status": "accepted"},
        ]})
        adapter = adapter_for(handler)

        receipts = await adapter.submit_batch([submission(), submission()])
        await adapter.close()

        assert [r.tracking_id for r in receipts] == ["CH-1", "CH-2"]
        assert handler.requests[0].url.path == "/api/claims/batch"
        assert len(json.loads(handler.requests[0].content)["claims"]) == 2

    @pytest.mark.asyncio
    async def test_health(self):
        healthy = adapter_for(Recorder(payload={"status": "ok"}))
        down = adapter_for(Recorder(status_code=500))

        up_status = await healthy.check_health()
        down_status = await down.check_health()
        await healthy.close()
        await down.close()

        assert up_status.status == HealthState.HEALTHY
        assert down_status.status == HealthState.UNHEALTHY
        assert "HTTP 500" in down_status.message


@pytest.mark.unit
class TestAdapterRegistry:
    """Registry lookup and construction from settings."""

    def test_register_and_get(self):
        registry = AdapterRegistry()
        demo = DemoPayerAdapter("demo")
        registry.register(demo)

        assert registry.get("demo") is demo
        assert "demo" in registry
        assert len(registry) == 1
        with pytest.raises(NotFoundError):
            registry.get("medicaid")

    def test_register_replaces(self):
        registry = AdapterRegistry()
        registry.register(DemoPayerAdapter("demo"))
        replacement = DemoPayerAdapter("demo", latency_seconds=0.5)
        registry.register(replacement)
        assert registry.get("demo") is replacement
        assert len(registry) == 1

    def test_demo_mode_always_has_demo_adapter(self):
        settings = BillingSettings(INTEGRATION_MODE=IntegrationMode.DEMO, _env_file=None)
        registry = AdapterRegistry.from_settings(settings)
        assert isinstance(registry.get("demo"), DemoPayerAdapter)

    def test_live_mode_builds_configured_adapters(self):
        settings = BillingSettings(
            INTEGRATION_MODE=IntegrationMode.LIVE,
            INTEGRATIONS=[
                IntegrationConfig(
                    id="state-medicaid",
                    type=IntegrationType.MEDICAID,
                    base_url="https://medicaid.test",
                ),
                IntegrationConfig(id="sandbox", type=IntegrationType.DEMO),
            ],
            _env_file=None,
        )
        registry = AdapterRegistry.from_settings(settings)

        assert isinstance(registry.get("state-medicaid"), ClearinghouseAdapter)
        assert isinstance(registry.get("sandbox"), DemoPayerAdapter)
        assert "demo" not in registry

    def test_clearinghouse_requires_base_url(self):
        settings = BillingSettings(
            INTEGRATION_MODE=IntegrationMode.LIVE,
            INTEGRATIONS=[IntegrationConfig(id="clearinghouse")],
            _env_file=None,
        )
        with pytest.raises(ValueError):
            AdapterRegistry.from_settings(settings)

    def test_unsupported_integration_type(self):
        settings = BillingSettings(
            INTEGRATIONS=[IntegrationConfig(id="books", type=IntegrationType.ACCOUNTING)],
            _env_file=None,
        )
        with pytest.raises(ValueError):
            AdapterRegistry.from_settings(settings)

    @pytest.mark.asyncio
    async def test_connect_and_close_all(self):
        registry = AdapterRegistry()
        handler = Recorder(payload={"status": "ok"})
        registry.register(adapter_for(handler))
        await registry.connect_all()
        await registry.close_all()
        assert handler.requests == []
