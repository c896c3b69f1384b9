"""
Payments API Endpoints.

Provides:
- Manual payment entry and remittance file upload
- Match suggestions
- Manual, automatic and undo reconciliation

Source: Payment reconciliation design, API surface
Verified: 2026-10-19
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from hcbs_revenue.api.deps import get_actor_id, get_container
from hcbs_revenue.core.enums import PaymentMethod, RemittanceFileType
from hcbs_revenue.schemas import Adjustment
from hcbs_revenue.services.container import BillingContainer
from hcbs_revenue.services.payments import Allocation
from hcbs_revenue.utils.errors import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/payments",
    tags=["payments"],
)


# =============================================================================
# Request Schemas
# =============================================================================


class PaymentCreate(BaseModel):
    payer_id: UUID
    total_amount: Decimal = Field(..., description="Amount received")
    payment_date: date
    method: PaymentMethod = PaymentMethod.EFT
    reference_number: Optional[str] = Field(None, max_length=50, description="Check or trace number")
    client_id: Optional[UUID] = Field(None, description="Client hint for matching")
    service_date: Optional[date] = Field(None, description="Service date hint for matching")
    adjustments: list[Adjustment] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=1000)


class AllocationItem(BaseModel):
    claim_id: UUID
    amount: Decimal
    adjustments: list[Adjustment] = Field(default_factory=list)


class ReconcileRequest(BaseModel):
    allocations: list[AllocationItem] = Field(..., min_length=1)
    adjustments: Optional[list[Adjustment]] = Field(
        None, description="Replaces the payment-level adjustments when given"
    )
    notes: Optional[str] = Field(None, max_length=1000)


class UndoRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# =============================================================================
# Payment Entry
# =============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_payment(
    body: PaymentCreate,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.remittance.record_payment(
        payer_id=body.payer_id,
        total_amount=body.total_amount,
        payment_date=body.payment_date,
        actor_id=actor_id,
        method=body.method,
        reference_number=body.reference_number,
        client_id=body.client_id,
        service_date=body.service_date,
        adjustments=body.adjustments,
        notes=body.notes,
    )
    return result.unwrap().model_dump(mode="json")


@router.post("/remittance", status_code=status.HTTP_201_CREATED)
async def upload_remittance(
    request: Request,
    file_type: RemittanceFileType = Query(RemittanceFileType.EDI_835),
    auto_reconcile: bool = Query(False, description="Apply high-confidence matches"),
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    """
    Ingest a remittance file sent as the raw request body.

    Segment-level problems are reported in ``parse_errors``; only an
    unreadable file or a broken envelope rejects the whole upload.
    """
    raw = await request.body()
    logger.info(f"Remittance upload: {len(raw)} bytes as {file_type.value} (actor: {actor_id})")
    result = await container.remittance.ingest(raw, file_type, actor_id, auto_reconcile=auto_reconcile)
    return result.unwrap().to_dict()


@router.get("/{payment_id}")
async def get_payment(
    payment_id: UUID,
    container: BillingContainer = Depends(get_container),
) -> dict[str, Any]:
    payment = await container.repository.find_payment_by_id(payment_id)
    if payment is None:
        raise NotFoundError("Payment", payment_id)
    allocations = await container.repository.find_claim_payments(payment_id)
    return {
        **payment.model_dump(mode="json"),
        "allocations": [a.model_dump(mode="json") for a in allocations],
    }


# =============================================================================
# Reconciliation
# =============================================================================


@router.get("/{payment_id}/suggestions")
async def suggest_matches(
    payment_id: UUID,
    container: BillingContainer = Depends(get_container),
) -> list[dict[str, Any]]:
    result = await container.matching.suggest_matches(payment_id)
    return [suggestion.to_dict() for suggestion in result.unwrap()]


@router.post("/{payment_id}/reconcile")
async def reconcile_payment(
    payment_id: UUID,
    body: ReconcileRequest,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    allocations = [
        Allocation(claim_id=item.claim_id, amount=item.amount, adjustments=tuple(item.adjustments))
        for item in body.allocations
    ]
    result = await container.matching.reconcile(
        payment_id, allocations, actor_id, adjustments=body.adjustments, notes=body.notes
    )
    return result.unwrap().to_dict()


@router.post("/{payment_id}/auto-reconcile")
async def auto_reconcile_payment(
    payment_id: UUID,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.matching.auto_reconcile(payment_id, actor_id)
    return result.unwrap().to_dict()


@router.post("/{payment_id}/undo")
async def undo_reconciliation(
    payment_id: UUID,
    body: Optional[UndoRequest] = None,
    container: BillingContainer = Depends(get_container),
    actor_id: str = Depends(get_actor_id),
) -> dict[str, Any]:
    result = await container.matching.undo_reconciliation(
        payment_id, actor_id, body.reason if body else None
    )
    return result.unwrap().to_dict()
