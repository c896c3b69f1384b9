"""
Remittance Processor.

Provides:
- parse(): raw bytes + declared file type -> ParseResult (pure)
- ingest(): persist parsed payments, skip duplicates, flag underpayment,
  optionally auto-reconcile
- record_payment(): manual payment entry with duplicate-trace detection

Source: Remittance processing service, X12 835 parser
Verified: 2026-10-19
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional, Union
from uuid import UUID

from hcbs_revenue.core.enums import PaymentMethod, ReconciliationStatus, RemittanceFileType
from hcbs_revenue.core.result import Result
from hcbs_revenue.repositories.base import BillingRepository
from hcbs_revenue.schemas import Adjustment, Payment
from hcbs_revenue.services.remittance.csv_parser import RemittanceCsvParser
from hcbs_revenue.services.remittance.edi_835 import Remittance835Parser
from hcbs_revenue.services.remittance.models import ParseResult, SegmentError
from hcbs_revenue.utils.errors import (
    BusinessError,
    DatabaseError,
    FieldError,
    NotFoundError,
    ValidationError,
)
from hcbs_revenue.utils.money import ZERO, to_money

if TYPE_CHECKING:
    from hcbs_revenue.services.payments import PaymentMatchingEngine, ReconciliationResult

logger = logging.getLogger(__name__)

PARSERS = {
    RemittanceFileType.EDI_835: Remittance835Parser,
    RemittanceFileType.CSV: RemittanceCsvParser,
}

DUPLICATE_PAYMENT_RULE = "duplicate-payment-reference"


@dataclass
class IngestResult:
    """What ingest() stored and what it skipped."""

    payments: list[Payment] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)
    parse_errors: list[SegmentError] = field(default_factory=list)
    adjustment_codes: dict[str, str] = field(default_factory=dict)
    reconciliations: list["ReconciliationResult"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payments": [
                {
                    "payment_id": str(p.id),
                    "reference_number": p.reference_number,
                    "total_amount": str(p.total_amount),
                    "reconciliation_status": p.reconciliation_status.value,
                    "claim_count": len(p.remittance_details),
                }
                for p in self.payments
            ],
            "duplicates": self.duplicates,
            "parse_errors": [e.to_dict() for e in self.parse_errors],
            "adjustment_codes": self.adjustment_codes,
            "reconciliations": [r.to_dict() for r in self.reconciliations],
        }


class RemittanceProcessor:
    """Turns remittance files into stored payments."""

    def __init__(
        self,
        repository: BillingRepository,
        matching_engine: Optional["PaymentMatchingEngine"] = None,
    ):
        self.repository = repository
        self.matching_engine = matching_engine

    # =========================================================================
    # Parse
    # =========================================================================

    def parse(self, raw: Union[bytes, str], file_type: Union[RemittanceFileType, str]) -> ParseResult:
        """
        Parse a remittance file.

        Raises:
            ValidationError: unsupported file type, undecodable bytes or a malformed envelope
        """
        try:
            declared = RemittanceFileType(file_type)
        except ValueError:
            declared = None
        parser_cls = PARSERS.get(declared) if declared else None
        if parser_cls is None:
            raise ValidationError(
                f"Unsupported remittance file type {file_type!r}",
                errors=[FieldError(
                    field="file_type",
                    code="UNSUPPORTED_FILE_TYPE",
                    message=f"Supported types: {', '.join(t.value for t in PARSERS)}",
                )],
            )

        if isinstance(raw, bytes):
            try:
                content = raw.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise ValidationError(
                    "Remittance file is not UTF-8 text",
                    errors=[FieldError(field="file", code="INVALID_ENCODING", message=str(e))],
                ) from e
        else:
            content = raw

        return parser_cls().parse(content)

    # =========================================================================
    # Ingest
    # =========================================================================

    async def ingest(
        self,
        raw: Union[bytes, str],
        file_type: Union[RemittanceFileType, str],
        actor_id: str,
        auto_reconcile: bool = False,
    ) -> Result[IngestResult]:
        try:
            parsed = self.parse(raw, file_type)
        except ValidationError as e:
            logger.warning(f"Remittance file rejected: {e.message}")
            return Result.failure(e)

        result = IngestResult(
            parse_errors=list(parsed.parse_errors),
            adjustment_codes=dict(parsed.adjustment_codes),
        )
        for item in parsed.payments:
            payer = (
                await self.repository.find_payer_by_code(item.payer_code) if item.payer_code else None
            )
            if payer is None:
                result.parse_errors.append(SegmentError(
                    item.segment_id,
                    item.position,
                    f"Unknown payer {item.payer_code!r} on payment {item.trace_number}",
                ))
                continue

            duplicate = SegmentError(
                item.segment_id,
                item.position,
                f"Payment {item.trace_number} already recorded for payer {payer.name}",
            )
            if await self.repository.find_payment_by_reference(payer.id, item.trace_number):
                result.duplicates.append(item.trace_number)
                result.parse_errors.append(duplicate)
                continue
            try:
                payment = await self.repository.create_payment(item.to_payment(payer.id))
            except DatabaseError as e:
                if not e.duplicate_key:
                    raise
                result.duplicates.append(item.trace_number)
                result.parse_errors.append(duplicate)
                continue

            if payment.reconciliation_status == ReconciliationStatus.UNDERPAID:
                logger.warning(
                    f"Payment {payment.reference_number} underpaid: received {payment.total_amount}, "
                    f"remittance lines expect {item.expected_total}"
                )
            result.payments.append(payment)

        logger.info(
            f"Ingested remittance: {len(result.payments)} payment(s) stored, "
            f"{len(result.duplicates)} duplicate(s), {len(result.parse_errors)} error(s) "
            f"(actor: {actor_id})"
        )

        if auto_reconcile and self.matching_engine is not None:
            await self._auto_reconcile(result, actor_id)
        return Result.success(result)

    async def _auto_reconcile(self, result: IngestResult, actor_id: str) -> None:
        for index, payment in enumerate(result.payments):
            if payment.reconciliation_status == ReconciliationStatus.UNDERPAID:
                logger.info(f"Payment {payment.reference_number} left for manual review (underpaid)")
                continue
            outcome = await self.matching_engine.auto_reconcile(payment.id, actor_id)  # type: ignore[union-attr]
            if not outcome.ok:
                logger.info(
                    f"Auto-reconcile skipped payment {payment.reference_number}: {outcome.error.message}"  # type: ignore[union-attr]
                )
                continue
            reconciliation = outcome.value
            if reconciliation.applied:  # type: ignore[union-attr]
                result.payments[index] = reconciliation.payment  # type: ignore[union-attr]
                result.reconciliations.append(reconciliation)  # type: ignore[arg-type]

    # =========================================================================
    # Manual Entry
    # =========================================================================

    async def record_payment(
        self,
        payer_id: UUID,
        total_amount: Decimal,
        payment_date: date,
        actor_id: str,
        method: PaymentMethod = PaymentMethod.EFT,
        reference_number: Optional[str] = None,
        client_id: Optional[UUID] = None,
        service_date: Optional[date] = None,
        adjustments: Optional[list[Adjustment]] = None,
        notes: Optional[str] = None,
    ) -> Result[Payment]:
        """Record a payment received outside a remittance file (check, portal deposit)."""
        amount = to_money(total_amount)
        if amount < ZERO:
            return Result.failure(ValidationError(
                "Payment amount cannot be negative",
                errors=[FieldError(
                    field="total_amount", code="NEGATIVE_AMOUNT", message="Must be zero or more"
                )],
            ))

        payer = await self.repository.find_payer_by_id(payer_id)
        if payer is None:
            return Result.failure(NotFoundError("Payer", payer_id))

        duplicate = BusinessError(
            f"Payment reference {reference_number} already recorded for payer {payer.name}",
            rule=DUPLICATE_PAYMENT_RULE,
            context={"payer_id": str(payer_id), "reference_number": reference_number},
        )
        if reference_number and await self.repository.find_payment_by_reference(payer_id, reference_number):
            return Result.failure(duplicate)

        try:
            payment = await self.repository.create_payment(Payment(
                payer_id=payer_id,
                payment_date=payment_date,
                total_amount=amount,
                method=method,
                reference_number=reference_number,
                client_id=client_id,
                service_date=service_date,
                adjustments=adjustments or [],
                notes=notes,
            ))
        except DatabaseError as e:
            if not e.duplicate_key:
                raise
            return Result.failure(duplicate)

        logger.info(
            f"Recorded payment {reference_number or payment.id} of {amount} "
            f"from {payer.name} (actor: {actor_id})"
        )
        return Result.success(payment)
