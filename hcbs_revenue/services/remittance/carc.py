"""
Claim Adjustment Reason Codes (CARC).

Provides:
- Description table for the reason codes HCBS remittances commonly carry
- Group/reason code categorization into AdjustmentType
- Per-type count and amount totals

Source: X12 835 CAS segment, CARC code list (x12.org)
Verified: 2026-10-19
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from hcbs_revenue.core.enums import AdjustmentGroup, AdjustmentType
from hcbs_revenue.schemas import Adjustment
from hcbs_revenue.utils.money import ZERO, to_money

CARC_DESCRIPTIONS: dict[str, str] = {
    "1": "Deductible amount",
    "2": "Coinsurance amount",
    "3": "Co-payment amount",
    "4": "Procedure code is inconsistent with the modifier used",
    "16": "Claim/service lacks information needed for adjudication",
    "18": "Exact duplicate claim/service",
    "22": "Care may be covered by another payer per coordination of benefits",
    "23": "Impact of prior payer(s) adjudication including payments and/or adjustments",
    "27": "Expenses incurred after coverage terminated",
    "29": "The time limit for filing has expired",
    "45": "Charge exceeds fee schedule/maximum allowable",
    "50": "Non-covered: not deemed a medical necessity by the payer",
    "96": "Non-covered charge(s)",
    "97": "Benefit included in the payment for another service",
    "109": "Claim/service not covered by this payer/contractor",
    "119": "Benefit maximum for this time period has been reached",
    "151": "Information submitted does not support this many/frequency of services",
    "197": "Precertification/authorization/notification absent",
    "204": "Service not covered under the patient's current benefit plan",
    "242": "Services not provided by network/primary care providers",
    "253": "Sequestration - reduction in federal payment",
}

# Provider-level (PLB) adjustment reason codes
PLB_DESCRIPTIONS: dict[str, str] = {
    "WO": "Overpayment recovery",
    "L6": "Interest owed",
    "FB": "Forwarding balance",
    "72": "Authorized return",
    "CS": "Adjustment",
    "J1": "Nonreimbursable",
}

UNKNOWN_CODE_DESCRIPTION = "Unknown adjustment reason code"

_PATIENT_RESPONSIBILITY_TYPES = {
    "1": AdjustmentType.DEDUCTIBLE,
    "2": AdjustmentType.COINSURANCE,
    "3": AdjustmentType.COPAY,
}
_NONCOVERED_CODES = frozenset({"96", "204"})


def describe_code(code: str) -> str:
    return CARC_DESCRIPTIONS.get(code, UNKNOWN_CODE_DESCRIPTION)


def categorize_adjustment(group_code: Optional[str], reason_code: str) -> AdjustmentType:
    """Map a CAS group / reason code pair to an adjustment type."""
    group = (group_code or "").upper()
    if group == AdjustmentGroup.PATIENT_RESPONSIBILITY.value and reason_code in _PATIENT_RESPONSIBILITY_TYPES:
        return _PATIENT_RESPONSIBILITY_TYPES[reason_code]
    if reason_code in _NONCOVERED_CODES:
        return AdjustmentType.NONCOVERED
    if group == AdjustmentGroup.CONTRACTUAL.value:
        return AdjustmentType.CONTRACTUAL
    if group == AdjustmentGroup.OTHER.value and reason_code == "23":
        return AdjustmentType.TRANSFER
    return AdjustmentType.OTHER


def build_adjustment(group_code: Optional[str], reason_code: str, amount: Decimal) -> Adjustment:
    return Adjustment(
        adjustment_type=categorize_adjustment(group_code, reason_code),
        group_code=group_code or None,
        code=reason_code,
        amount=to_money(amount),
        description=describe_code(reason_code),
    )


@dataclass
class AdjustmentTotals:
    """Count and amount of adjustments of one type."""

    count: int = 0
    amount: Decimal = ZERO

    def to_dict(self) -> dict:
        return {"count": self.count, "amount": str(self.amount)}


def categorize_adjustments(
    adjustments: Iterable[Adjustment],
) -> dict[AdjustmentType, AdjustmentTotals]:
    """Sum count and amount per adjustment type."""
    totals: dict[AdjustmentType, AdjustmentTotals] = {}
    for adjustment in adjustments:
        entry = totals.setdefault(adjustment.adjustment_type, AdjustmentTotals())
        entry.count += 1
        entry.amount = to_money(entry.amount + adjustment.amount)
    return totals
