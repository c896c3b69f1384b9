"""Normalized output shared by the remittance parsers."""

from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from hcbs_revenue.core.enums import AdjustmentType, PaymentMethod, ReconciliationStatus
from hcbs_revenue.schemas import Adjustment, Payment, RemittanceDetail
from hcbs_revenue.services.remittance.carc import AdjustmentTotals, categorize_adjustments
from hcbs_revenue.utils.money import TOLERANCE, money_sum


@dataclass(frozen=True)
class SegmentError:
    """A segment (or CSV row) that could not be turned into payment data."""

    segment_id: str
    position: int
    message: str
    claim_number: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ParsedPayment:
    """One payment read from a remittance file, not yet tied to a stored payer."""

    trace_number: str
    payment_date: date
    total_amount: Decimal
    method: PaymentMethod = PaymentMethod.EFT
    payer_code: Optional[str] = None
    payer_name: Optional[str] = None
    details: list[RemittanceDetail] = field(default_factory=list)
    provider_adjustments: list[Adjustment] = field(default_factory=list)
    segment_id: str = "ST"
    position: int = 0

    @property
    def claim_paid_total(self) -> Decimal:
        return money_sum(d.paid_amount for d in self.details)

    @property
    def expected_total(self) -> Decimal:
        """What the payer should have sent: claim payments net of provider-level adjustments."""
        return money_sum([self.claim_paid_total, *(a.amount for a in self.provider_adjustments)])

    @property
    def is_underpaid(self) -> bool:
        return self.expected_total - self.total_amount >= TOLERANCE

    @property
    def claim_adjustments(self) -> list[Adjustment]:
        return [a for d in self.details for a in d.adjustments]

    def to_payment(self, payer_id: UUID) -> Payment:
        service_dates = [d.service_date for d in self.details if d.service_date]
        return Payment(
            payer_id=payer_id,
            payment_date=self.payment_date,
            total_amount=self.total_amount,
            method=self.method,
            reference_number=self.trace_number,
            reconciliation_status=(
                ReconciliationStatus.UNDERPAID
                if self.is_underpaid
                else ReconciliationStatus.UNRECONCILED
            ),
            adjustments=list(self.provider_adjustments),
            remittance_details=list(self.details),
            service_date=min(service_dates) if service_dates else None,
        )


@dataclass
class ParseResult:
    """Payments, the adjustment codes they use, and per-segment errors."""

    payments: list[ParsedPayment] = field(default_factory=list)
    adjustment_codes: dict[str, str] = field(default_factory=dict)
    parse_errors: list[SegmentError] = field(default_factory=list)

    def adjustment_summary(self) -> dict[AdjustmentType, AdjustmentTotals]:
        return categorize_adjustments(a for p in self.payments for a in p.claim_adjustments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "payment_count": len(self.payments),
            "payments": [
                {
                    "trace_number": p.trace_number,
                    "payer_code": p.payer_code,
                    "payment_date": p.payment_date.isoformat(),
                    "total_amount": str(p.total_amount),
                    "claim_count": len(p.details),
                    "underpaid": p.is_underpaid,
                }
                for p in self.payments
            ],
            "adjustment_codes": self.adjustment_codes,
            "adjustment_summary": {
                t.value: totals.to_dict() for t, totals in self.adjustment_summary().items()
            },
            "parse_errors": [e.to_dict() for e in self.parse_errors],
        }
