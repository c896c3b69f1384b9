"""
Claims API Endpoints.

Provides:
- Claim creation from ready services
- Validation and submission (single and batch)
- Adjudication outcomes: deny, adjudicate, void, appeal, reopen
- Adjustment and replacement claims
- Status history

Source: Claim lifecycle design, API surface
Verified: 2026-10-19
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from hcbs_revenue.api.deps import get_actor_id, get_container
from hcbs_revenue.core.enums import SubmissionMethod
from hcbs_revenue.services.container import BillingContainer
from hcbs_revenue.utils.errors import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/claims",
    tags=["claims"],
)


# =============================================================================
# Request Schemas
# =============================================================================


class ClaimFromServicesRequest(BaseModel):
    service_ids: list[UUID] = Field(..., description="Ready services to bill")
    payer_id: Optional[UUID] = None
    notes: Optional[str] = Field(None, max_length=1000)


class ClaimBatchRequest(BaseModel):
    claim_ids: list[UUID] = Field(..., min_length=1, max_length=500)
    submission_method: Optional[SubmissionMethod] = None


class SubmitRequest(BaseModel):
    submission_method: Optional[SubmissionMethod] = None


class DenyRequest(BaseModel):
    denial_reason: str = Field(..., min_length=1, max_length=500)
    denial_code: Optional[str] = Field(None, max_length=20)
    adjudication_date: Optional[date] = None


class AdjudicateRequest(BaseModel):
    paid_amount: Decimal = Field(..., ge=0)
    adjustment_amount: Decimal = Field(default=Decimal("0"), ge=0)
    adjudication_date: date
    notes: Optional[str] = Field(None, max_length=1000)


class VoidRequest(BaseModel):
    void_reason: str = Field(..., min_length=1, max_length=500)


class AppealRequest(BaseModel):
    justification: str = Field(..., min_length=1, max_length=2000)
    artifacts: list[str] = Field(..., min_length=1, description="Supporting document references")


class ReopenRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CorrectionRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    total_amount: Optional[Decimal] = Field(None, ge=0)


def claim_response(claim: Any) -> dict[str, Any]:
    return claim.model_dump(mode="json")


# =============================================================================
# Creation and Lookup
# =============================================================================


@router.post("/from-services", status_code=status.HTTP_201_CREATED)
async def create_claim_from_services(
    body: ClaimFromServicesRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    """Create a DRAFT claim covering ready services."""
    result = await container.converter.convert_services_to_claim(
        body.service_ids, body.payer_id, actor_id, body.notes
    )
    return claim_response(result.unwrap())


# =============================================================================
# Batch Operations
# =============================================================================
# Registered before the /{claim_id} routes so "batch" is never read as an id


@router.post("/batch/validate")
async def batch_validate_claims(
    body: ClaimBatchRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.batch_validate_claims(body.claim_ids, actor_id)
    return result.to_dict(lambda item: item.to_dict())


@router.post("/batch/submit")
async def batch_submit_claims(
    body: ClaimBatchRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    """Submit several claims; per-claim failures are reported, not raised."""
    result = await container.orchestrator.batch_submit(
        body.claim_ids, actor_id, body.submission_method
    )
    return result.to_dict(lambda item: item.to_dict())


@router.get("/{claim_id}")
async def get_claim(
    claim_id: UUID,
    container: BillingContainer = Depends(get_container),
) -> dict[str, Any]:
    claim = await container.repository.find_claim_by_id(claim_id)
    if claim is None:
        raise NotFoundError("Claim", claim_id)
    return {
        **claim_response(claim),
        "balance": str(claim.balance),
        "next_statuses": [s.value for s in container.state_machine.get_next_statuses(claim.status)],
    }


@router.get("/{claim_id}/history")
async def get_claim_history(
    claim_id: UUID,
    container: BillingContainer = Depends(get_container),
) -> list[dict[str, Any]]:
    history = (await container.lifecycle.get_claim_history(claim_id)).unwrap()
    return [entry.model_dump(mode="json") for entry in history]


# =============================================================================
# Validation
# =============================================================================


@router.post("/{claim_id}/validate")
async def validate_claim(
    claim_id: UUID,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.validate_claim(claim_id, actor_id)
    return result.unwrap().to_dict()


# =============================================================================
# Submission
# =============================================================================


@router.post("/{claim_id}/submit")
async def submit_claim(
    claim_id: UUID,
    body: Optional[SubmitRequest] = None,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    method = body.submission_method if body else None
    result = await container.orchestrator.submit(claim_id, actor_id, method)
    return result.unwrap().to_dict()


@router.post("/{claim_id}/refresh-status")
async def refresh_claim_status(
    claim_id: UUID,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.orchestrator.refresh_status(claim_id, actor_id)
    return claim_response(result.unwrap())


# =============================================================================
# Adjudication Outcomes
# =============================================================================


@router.post("/{claim_id}/deny")
async def deny_claim(
    claim_id: UUID,
    body: DenyRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.deny_claim(
        claim_id, actor_id, body.denial_reason, body.denial_code, body.adjudication_date
    )
    return claim_response(result.unwrap())


@router.post("/{claim_id}/adjudicate")
async def adjudicate_claim(
    claim_id: UUID,
    body: AdjudicateRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.adjudicate_claim(
        claim_id,
        actor_id,
        paid_amount=body.paid_amount,
        adjudication_date=body.adjudication_date,
        adjustment_amount=body.adjustment_amount,
        notes=body.notes,
    )
    return claim_response(result.unwrap())


@router.post("/{claim_id}/void")
async def void_claim(
    claim_id: UUID,
    body: VoidRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.void_claim(claim_id, actor_id, body.void_reason)
    return claim_response(result.unwrap())


@router.post("/{claim_id}/appeal")
async def appeal_claim(
    claim_id: UUID,
    body: AppealRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.appeal_claim(
        claim_id, actor_id, body.justification, body.artifacts
    )
    return claim_response(result.unwrap())


@router.post("/{claim_id}/reopen")
async def reopen_claim(
    claim_id: UUID,
    body: Optional[ReopenRequest] = None,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.reopen_claim(claim_id, actor_id, body.reason if body else None)
    return claim_response(result.unwrap())


# =============================================================================
# Corrections
# =============================================================================


@router.post("/{claim_id}/adjustment", status_code=status.HTTP_201_CREATED)
async def create_adjustment_claim(
    claim_id: UUID,
    body: CorrectionRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.create_adjustment_claim(
        claim_id, actor_id, body.reason, body.total_amount
    )
    return claim_response(result.unwrap())


@router.post("/{claim_id}/replacement", status_code=status.HTTP_201_CREATED)
async def create_replacement_claim(
    claim_id: UUID,
    body: CorrectionRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.lifecycle.create_replacement_claim(
        claim_id, actor_id, body.reason, body.total_amount
    )
    return claim_response(result.unwrap())
