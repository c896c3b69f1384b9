"""Billing-readiness validation."""

from hcbs_revenue.services.validation.engine import ValidationEngine, filing_deadline
from hcbs_revenue.services.validation.issues import (
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)
from hcbs_revenue.services.validation.payer_rules import (
    MaxDailyUnitsRule,
    MaxServiceLinesRule,
    PayerRule,
    PayerRuleRegistry,
    ServiceCodeFormatRule,
    SingleCalendarMonthRule,
)

__all__ = [
    "MaxDailyUnitsRule",
    "MaxServiceLinesRule",
    "PayerRule",
    "PayerRuleRegistry",
    "ServiceCodeFormatRule",
    "SingleCalendarMonthRule",
    "ValidationEngine",
    "ValidationIssue",
    "ValidationResult",
    "ValidationSeverity",
    "filing_deadline",
]
