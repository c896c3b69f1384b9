"""
Claim Submission Orchestrator.

Provides:
- submit: filing deadline check, breaker + retry guarded adapter call,
  VALIDATED -> SUBMITTED -> PENDING
- batch_submit with a shared breaker per integration
- refresh_status polling
- check_integration_health

Source: Provider gateway execution path (health, retry, fallback)
Verified: 2026-10-19

Adapter calls are the only awaits on external I/O and each one is bounded
by SUBMISSION_TIMEOUT_SECONDS. A timeout is reported as a retryable
IntegrationError, the same as a network failure.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, TypeVar
from uuid import UUID

from hcbs_revenue.core.config import BillingSettings, get_settings
from hcbs_revenue.core.enums import (
    ClaimStatus,
    ClaimType,
    FailureType,
    HealthState,
    SubmissionMethod,
)
from hcbs_revenue.core.result import Result
from hcbs_revenue.integrations import (
    DEMO_INTEGRATION_ID,
    AdapterRegistry,
    ClaimSubmission,
    PayerAdapter,
    StatusResponse,
)
from hcbs_revenue.repositories.base import BillingRepository
from hcbs_revenue.schemas import Claim, Payer
from hcbs_revenue.services.batch import BatchResult, run_batch
from hcbs_revenue.services.claims.state_machine import (
    ClaimStateMachine,
    TransitionRequest,
    invalid_transition,
)
from hcbs_revenue.services.submission.circuit_breaker import BreakerRegistry, BreakerSnapshot
from hcbs_revenue.services.submission.retry import RetryPolicy
from hcbs_revenue.services.validation import filing_deadline
from hcbs_revenue.utils.errors import BusinessError, IntegrationError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Payer statuses meaning "received, not yet decided"
ACKNOWLEDGED_STATUSES = frozenset({"acknowledged", "accepted", "pending", "in_process"})
DENIED_STATUSES = frozenset({"denied", "rejected"})


@dataclass
class SubmissionResult:
    """Outcome of one successful submission."""

    claim: Claim
    tracking_id: str
    acknowledged: bool
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "claim_id": str(self.claim.id),
            "claim_number": self.claim.claim_number,
            "status": self.claim.status.value,
            "tracking_id": self.tracking_id,
            "acknowledged": self.acknowledged,
            "message": self.message,
        }


@dataclass
class IntegrationHealth:
    """Adapter health next to its breaker state."""

    integration_id: str
    integration_type: str
    status: HealthState
    response_time_ms: float
    message: Optional[str]
    breaker: Optional[BreakerSnapshot]

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "integration_type": self.integration_type,
            "status": self.status.value,
            "response_time_ms": round(self.response_time_ms, 1),
            "message": self.message,
            "breaker": self.breaker.to_dict() if self.breaker else None,
        }


class SubmissionOrchestrator:
    """Drives validated claims to payers through the adapter registry."""

    def __init__(
        self,
        repository: BillingRepository,
        state_machine: ClaimStateMachine,
        adapters: AdapterRegistry,
        breakers: BreakerRegistry,
        retry_policy: Optional[RetryPolicy] = None,
        settings: Optional[BillingSettings] = None,
        today: Callable[[], date] = date.today,
    ):
        self.repository = repository
        self.state_machine = state_machine
        self.adapters = adapters
        self.breakers = breakers
        self.settings = settings or get_settings()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self._today = today

    # =========================================================================
    # Adapter Calls
    # =========================================================================

    def _resolve_integration(self, claim: Claim, payer: Optional[Payer]) -> str:
        integration_id = claim.integration_id or (payer.integration_id if payer else None)
        if integration_id is None and self.settings.is_demo_mode:
            integration_id = DEMO_INTEGRATION_ID
        if integration_id is None or integration_id not in self.adapters:
            raise BusinessError(
                f"No payer integration configured for claim {claim.claim_number}",
                rule="integration-not-configured",
                context={"claim_id": str(claim.id), "integration_id": integration_id},
            )
        return integration_id

    async def _guarded(
        self,
        integration_id: str,
        label: str,
        operation: Callable[[PayerAdapter], Awaitable[T]],
    ) -> T:
        """Retry policy around the breaker around one bounded adapter call."""
        adapter = self.adapters.get(integration_id)
        breaker = self.breakers.get(integration_id)
        timeout = self.settings.SUBMISSION_TIMEOUT_SECONDS

        async def bounded() -> T:
            try:
                return await asyncio.wait_for(operation(adapter), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise IntegrationError(
                    f"{integration_id} did not answer within {timeout}s",
                    service=integration_id,
                    retryable=True,
                    failure_type=FailureType.TIMEOUT,
                    original_error=e,
                ) from e

        try:
            return await self.retry_policy.run(lambda: breaker.call(bounded), label=label)
        except IntegrationError as e:
            logger.error(
                f"{label} failed: {e.message} "
                f"[type={e.failure_type.value} retryable={e.retryable} "
                f"status={e.status_code} endpoint={e.endpoint} body={e.response_body!r}]"
            )
            raise

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(
        self,
        claim_id: UUID,
        actor_id: str,
        submission_method: Optional[SubmissionMethod] = None,
    ) -> Result[SubmissionResult]:
        """
        Submit one VALIDATED claim.

        The claim lock is held for the whole call so a claim is never sent
        twice concurrently. On any failure the claim stays VALIDATED.

        Returns:
            Result with the submission outcome, or the error that stopped it
        """
        try:
            async with self.state_machine.locks.hold([claim_id]):
                return Result.success(
                    await self._submit_locked(claim_id, actor_id, submission_method)
                )
        except (BusinessError, IntegrationError, NotFoundError) as e:
            return Result.failure(e)

    async def _submit_locked(
        self,
        claim_id: UUID,
        actor_id: str,
        submission_method: Optional[SubmissionMethod],
    ) -> SubmissionResult:
        claim = await self.repository.find_claim_by_id(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        if claim.status != ClaimStatus.VALIDATED:
            raise invalid_transition(claim, ClaimStatus.SUBMITTED)

        payer = await self.repository.find_payer_by_id(claim.payer_id) if claim.payer_id else None
        today = self._today()
        self._check_filing_deadline(claim, payer, today)
        integration_id = self._resolve_integration(claim, payer)

        services = await self.repository.find_services_by_ids(claim.service_ids)
        original = (
            await self.repository.find_claim_by_id(claim.original_claim_id)
            if claim.claim_type != ClaimType.ORIGINAL and claim.original_claim_id
            else None
        )
        submission = ClaimSubmission(claim=claim, services=services, payer=payer, original_claim=original)

        receipt = await self._guarded(
            integration_id,
            f"submit {claim.claim_number} to {integration_id}",
            lambda adapter: adapter.submit_claim(submission),
        )

        method = submission_method or (payer.submission_method if payer else SubmissionMethod.ELECTRONIC)
        async with self.repository.transaction() as repo:
            claim = await self.state_machine.apply(repo, claim, TransitionRequest(
                claim_id=claim.id,
                target_status=ClaimStatus.SUBMITTED,
                actor_id=actor_id,
                submission_method=method,
                submission_date=today,
                integration_id=integration_id,
                external_claim_id=receipt.tracking_id,
                reason=f"Submitted to {integration_id}",
            ))
            if receipt.acknowledged:
                claim = await self.state_machine.apply(repo, claim, TransitionRequest(
                    claim_id=claim.id,
                    target_status=ClaimStatus.PENDING,
                    actor_id=actor_id,
                    reason=receipt.message or "Acknowledged by payer",
                ))

        return SubmissionResult(
            claim=claim,
            tracking_id=receipt.tracking_id,
            acknowledged=receipt.acknowledged,
            message=receipt.message,
        )

    def _check_filing_deadline(self, claim: Claim, payer: Optional[Payer], today: date) -> None:
        if claim.service_start_date is None:
            return
        deadline = filing_deadline(
            claim.service_start_date, payer, self.settings.DEFAULT_TIMELY_FILING_DAYS
        )
        if today > deadline:
            raise BusinessError(
                f"Claim {claim.claim_number} is past the timely filing deadline ({deadline.isoformat()})",
                rule="timely-filing-expired",
                context={
                    "claim_id": str(claim.id),
                    "deadline": deadline.isoformat(),
                    "service_start_date": claim.service_start_date.isoformat(),
                },
            )

    async def batch_submit(
        self,
        claim_ids: list[UUID],
        actor_id: str,
        submission_method: Optional[SubmissionMethod] = None,
    ) -> BatchResult[SubmissionResult]:
        """Submit several claims; one failing item never stops the others."""
        return await run_batch(
            claim_ids,
            lambda claim_id: self.submit(claim_id, actor_id, submission_method),
            concurrency=self.settings.BATCH_CONCURRENCY,
            label="batch-submit",
        )

    # =========================================================================
    # Status Refresh
    # =========================================================================

    async def refresh_status(self, claim_id: UUID, actor_id: str) -> Result[Claim]:
        """Poll the payer and apply SUBMITTED -> PENDING or PENDING -> DENIED."""
        try:
            async with self.state_machine.locks.hold([claim_id]):
                return Result.success(await self._refresh_locked(claim_id, actor_id))
        except (BusinessError, IntegrationError, NotFoundError) as e:
            return Result.failure(e)

    async def _refresh_locked(self, claim_id: UUID, actor_id: str) -> Claim:
        claim = await self.repository.find_claim_by_id(claim_id)
        if claim is None:
            raise NotFoundError("Claim", claim_id)
        if not claim.external_claim_id or not claim.integration_id:
            raise BusinessError(
                f"Claim {claim.claim_number} has not been submitted",
                rule="claim-not-submitted",
                context={"claim_id": str(claim.id), "current": claim.status.value},
            )

        tracking_id = claim.external_claim_id
        response: StatusResponse = await self._guarded(
            claim.integration_id,
            f"status {claim.claim_number} from {claim.integration_id}",
            lambda adapter: adapter.check_status(tracking_id),
        )
        payer_status = response.status.lower()
        logger.info(f"Payer status for {claim.claim_number}: {payer_status}")

        requests: list[TransitionRequest] = []
        if payer_status in ACKNOWLEDGED_STATUSES | DENIED_STATUSES and claim.status == ClaimStatus.SUBMITTED:
            requests.append(TransitionRequest(
                claim_id=claim.id,
                target_status=ClaimStatus.PENDING,
                actor_id=actor_id,
                reason=f"Payer status: {payer_status}",
            ))
        if payer_status in DENIED_STATUSES and claim.status in (ClaimStatus.SUBMITTED, ClaimStatus.PENDING):
            requests.append(TransitionRequest(
                claim_id=claim.id,
                target_status=ClaimStatus.DENIED,
                actor_id=actor_id,
                denial_reason=response.denial_reason or f"Payer status: {payer_status}",
                denial_code=response.denial_code,
                adjudication_date=response.adjudication_date,
            ))

        if requests:
            async with self.repository.transaction() as repo:
                for request in requests:
                    claim = await self.state_machine.apply(repo, claim, request)
        return claim

    # =========================================================================
    # Health
    # =========================================================================

    async def check_integration_health(self) -> list[IntegrationHealth]:
        """Probe every registered adapter directly, bypassing the breakers."""
        snapshots = self.breakers.snapshot()
        report: list[IntegrationHealth] = []

        for integration_id, adapter in self.adapters.items():
            try:
                health = await asyncio.wait_for(
                    adapter.check_health(), timeout=self.settings.SUBMISSION_TIMEOUT_SECONDS
                )
                status, elapsed, message = health.status, health.response_time_ms, health.message
            except asyncio.TimeoutError:
                status, elapsed, message = (
                    HealthState.UNHEALTHY,
                    self.settings.SUBMISSION_TIMEOUT_SECONDS * 1000,
                    "Health check timed out",
                )
            except IntegrationError as e:
                status, elapsed, message = HealthState.UNHEALTHY, 0.0, e.message

            report.append(IntegrationHealth(
                integration_id=integration_id,
                integration_type=adapter.integration_type.value,
                status=status,
                response_time_ms=elapsed,
                message=message,
                breaker=snapshots.get(integration_id),
            ))
        return report
