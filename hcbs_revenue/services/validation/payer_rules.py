"""
Payer-Specific Structural Rules.

Provides:
- PayerRule base class
- Built-in rules (line count, service code format, calendar month span, daily units)
- PayerRuleRegistry keyed by payer id

Source: Claim validation rules (configurable per payer)
Verified: 2026-10-19
"""

import re
from abc import ABC, abstractmethod
from collections import defaultdict
from decimal import Decimal
from typing import Optional
from uuid import UUID

from hcbs_revenue.schemas import Claim, Payer, Service
from hcbs_revenue.services.validation.issues import ValidationIssue, ValidationSeverity


class PayerRule(ABC):
    """One structural rule a payer applies to incoming claims."""

    code: str = "PAYER_RULE"

    @abstractmethod
    def check(
        self, claim: Optional[Claim], services: list[Service], payer: Payer
    ) -> list[ValidationIssue]:
        """Return the issues found; an empty list means the rule passed."""


class MaxServiceLinesRule(PayerRule):
    """Payer accepts at most ``max_lines`` service lines per claim."""

    code = "TOO_MANY_SERVICE_LINES"

    def __init__(self, max_lines: int = 50):
        self.max_lines = max_lines

    def check(self, claim, services, payer):
        if len(services) <= self.max_lines:
            return []
        return [
            ValidationIssue(
                code=self.code,
                field="service_ids",
                message=f"{payer.name} accepts at most {self.max_lines} service lines per claim",
                context={"lines": len(services), "max_lines": self.max_lines},
            )
        ]


class ServiceCodeFormatRule(PayerRule):
    """Service codes must match the payer's procedure code format (HCPCS by default)."""

    code = "INVALID_SERVICE_CODE"

    def __init__(self, pattern: str = r"^[A-Z]\d{4}$"):
        self.pattern = re.compile(pattern)

    def check(self, claim, services, payer):
        return [
            ValidationIssue(
                code=self.code,
                field=f"services[{index}].service_code",
                message=f"Service code {service.service_code} is not accepted by {payer.name}",
                context={"service_id": str(service.id), "service_code": service.service_code},
            )
            for index, service in enumerate(services)
            if not self.pattern.match(service.service_code)
        ]


class SingleCalendarMonthRule(PayerRule):
    """Claim dates of service must fall in one calendar month."""

    code = "CLAIM_SPANS_MONTHS"

    def check(self, claim, services, payer):
        months = {(s.service_date.year, s.service_date.month) for s in services}
        if len(months) <= 1:
            return []
        return [
            ValidationIssue(
                code=self.code,
                field="service_ids",
                message=f"{payer.name} requires all services on a claim to be in one calendar month",
                context={"months": sorted(f"{y}-{m:02d}" for y, m in months)},
            )
        ]


class MaxDailyUnitsRule(PayerRule):
    """Total units per service code per day must not exceed ``max_units``."""

    code = "DAILY_UNITS_EXCEEDED"

    def __init__(self, max_units: Decimal = Decimal("96"), severity=ValidationSeverity.ERROR):
        self.max_units = max_units
        self.severity = severity

    def check(self, claim, services, payer):
        totals: dict[tuple, Decimal] = defaultdict(Decimal)
        for service in services:
            totals[(service.service_code, service.service_date)] += service.units

        return [
            ValidationIssue(
                code=self.code,
                field="services",
                message=(
                    f"{units} units of {service_code} on {service_date.isoformat()} "
                    f"exceeds the daily limit of {self.max_units}"
                ),
                context={
                    "service_code": service_code,
                    "service_date": service_date.isoformat(),
                    "units": str(units),
                },
                severity=self.severity,
            )
            for (service_code, service_date), units in sorted(totals.items())
            if units > self.max_units
        ]


# =============================================================================
# Registry
# =============================================================================


class PayerRuleRegistry:
    """
    Rule sets per payer.

    Default rules apply to every payer; payer-specific rules are added on top.
    """

    def __init__(self, default_rules: Optional[list[PayerRule]] = None):
        self._default_rules = list(default_rules) if default_rules is not None else [
            MaxServiceLinesRule(),
            MaxDailyUnitsRule(),
        ]
        self._payer_rules: dict[UUID, list[PayerRule]] = defaultdict(list)

    def register(self, payer_id: UUID, rule: PayerRule) -> None:
        self._payer_rules[payer_id].append(rule)

    def rules_for(self, payer: Payer) -> list[PayerRule]:
        return self._default_rules + self._payer_rules.get(payer.id, [])
