"""
Claim Validation Engine.

Provides:
- Required field checks (client, payer, services)
- Authorization coverage and remaining units
- Documentation completeness
- Timely filing and authorization expiry warnings
- Payer-specific structural rules

Source: Claim validation service (completeness, dates, custom rules)
Verified: 2026-10-19

The engine is synchronous and performs no I/O: callers load the claim, its
services, the payer and the client's authorizations and pass them in.
Checks run in a fixed order and only a structurally fatal problem (no
client, no services) stops the run early.
"""

import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from hcbs_revenue.core.config import BillingSettings, get_settings
from hcbs_revenue.core.enums import AuthorizationStatus, ClaimType, DocumentationStatus
from hcbs_revenue.schemas import Authorization, Claim, Payer, Service, select_authorization
from hcbs_revenue.services.validation.issues import (
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)
from hcbs_revenue.services.validation.payer_rules import PayerRuleRegistry
from hcbs_revenue.utils.money import money_sum

logger = logging.getLogger(__name__)


def filing_deadline(first_service_date: date, payer: Optional[Payer], default_days: int) -> date:
    """Last day a claim for services starting on ``first_service_date`` may be filed."""
    days = payer.timely_filing_days if payer and payer.timely_filing_days else default_days
    return first_service_date + timedelta(days=days)


class ValidationEngine:
    """Billing-readiness checks for a claim or a set of services."""

    def __init__(
        self,
        settings: Optional[BillingSettings] = None,
        rule_registry: Optional[PayerRuleRegistry] = None,
    ):
        self.settings = settings or get_settings()
        self.rule_registry = rule_registry or PayerRuleRegistry()

    def validate(
        self,
        claim: Optional[Claim],
        services: list[Service],
        payer: Optional[Payer] = None,
        authorizations: Sequence[Authorization] = (),
        today: Optional[date] = None,
    ) -> ValidationResult:
        """
        Validate a claim (or, with ``claim=None``, a candidate set of services).

        Args:
            claim: Claim being validated, if one exists yet
            services: Services on the claim
            payer: Payer the claim is billed to
            authorizations: The client's authorizations
            today: Reference date for filing and expiry checks

        Returns:
            ValidationResult; only ``errors`` block a status transition
        """
        today = today or date.today()
        result = ValidationResult()

        if not self._check_required(claim, services, payer, result):
            logger.debug(f"Validation stopped early: {result.error_codes}")
            return result

        if claim is not None:
            self._check_claim_services(claim, services, result)

        if payer is None or payer.requires_authorization:
            # Units of a submitted claim or a correction are already in used_units
            counted = claim is not None and (
                claim.claim_type != ClaimType.ORIGINAL or claim.holds_authorized_units
            )
            self._check_authorizations(services, authorizations, today, result, counted)

        self._check_documentation(services, result)
        self._check_timely_filing(services, payer, today, result)

        if payer is not None:
            for rule in self.rule_registry.rules_for(payer):
                result.extend(rule.check(claim, services, payer))

        return result

    # =========================================================================
    # Required Fields
    # =========================================================================

    def _check_required(
        self,
        claim: Optional[Claim],
        services: list[Service],
        payer: Optional[Payer],
        result: ValidationResult,
    ) -> bool:
        """Return False when the remaining checks cannot run."""
        fatal = False

        if not services:
            result.add_issue(ValidationIssue(
                code="NO_SERVICES",
                field="service_ids",
                message="At least one service is required",
            ))
            fatal = True

        client_id = claim.client_id if claim else None
        if client_id is None and services:
            client_id = services[0].client_id
        if client_id is None:
            result.add_issue(ValidationIssue(
                code="MISSING_CLIENT",
                field="client_id",
                message="Client is required",
            ))
            fatal = True

        if payer is None:
            result.add_issue(ValidationIssue(
                code="MISSING_PAYER",
                field="payer_id",
                message="Payer is required",
            ))

        mismatched = [str(s.id) for s in services if client_id and s.client_id != client_id]
        if mismatched:
            result.add_issue(ValidationIssue(
                code="SERVICE_CLIENT_MISMATCH",
                field="service_ids",
                message="All services must belong to the claim's client",
                context={"service_ids": mismatched},
            ))

        return not fatal

    def _check_claim_services(
        self, claim: Claim, services: list[Service], result: ValidationResult
    ) -> None:
        found = {s.id for s in services}
        missing = [str(i) for i in claim.service_ids if i not in found]
        if missing:
            result.add_issue(ValidationIssue(
                code="SERVICE_NOT_FOUND",
                field="service_ids",
                message=f"{len(missing)} service(s) on the claim no longer exist",
                context={"service_ids": missing},
            ))

        # Adjustment and replacement claims may bill a corrected total
        expected = money_sum(s.amount for s in services)
        if claim.claim_type == ClaimType.ORIGINAL and expected != claim.total_amount:
            result.add_issue(ValidationIssue(
                code="CLAIM_TOTAL_MISMATCH",
                field="total_amount",
                message="Claim total does not equal the sum of its service amounts",
                context={"total_amount": str(claim.total_amount), "services_total": str(expected)},
            ))

    # =========================================================================
    # Authorization Coverage
    # =========================================================================

    def _check_authorizations(
        self,
        services: list[Service],
        authorizations: Sequence[Authorization],
        today: date,
        result: ValidationResult,
        units_counted: bool = False,
    ) -> None:
        units_by_auth: dict[UUID, Decimal] = defaultdict(Decimal)
        used: dict[UUID, Authorization] = {}

        for index, service in enumerate(services):
            field = f"services[{index}].authorization_id"
            authorization = select_authorization(service, authorizations)
            if authorization is None:
                result.add_issue(ValidationIssue(
                    code="AUTHORIZATION_MISSING",
                    field=field,
                    message=f"No authorization covers service on {service.service_date.isoformat()}",
                    context={"service_id": str(service.id), "service_type": service.service_type},
                ))
                continue

            context = {
                "service_id": str(service.id),
                "authorization_number": authorization.authorization_number,
            }
            if authorization.status != AuthorizationStatus.ACTIVE:
                result.add_issue(ValidationIssue(
                    code="AUTHORIZATION_INACTIVE",
                    field=field,
                    message=f"Authorization {authorization.authorization_number} is {authorization.status.value}",
                    context=context,
                ))
            if not authorization.covers(service):
                result.add_issue(ValidationIssue(
                    code="AUTHORIZATION_NOT_COVERING",
                    field=field,
                    message=(
                        f"Authorization {authorization.authorization_number} does not cover "
                        f"{service.service_type} on {service.service_date.isoformat()}"
                    ),
                    context=context,
                ))

            if not units_counted:
                units_by_auth[authorization.id] += service.units
            used[authorization.id] = authorization

        for auth_id, authorization in used.items():
            units = units_by_auth[auth_id]
            if units > authorization.remaining_units:
                result.add_issue(ValidationIssue(
                    code="AUTHORIZATION_UNITS_EXCEEDED",
                    field="services",
                    message=(
                        f"Billed units ({units}) exceed remaining authorized units "
                        f"({authorization.remaining_units}) on {authorization.authorization_number}"
                    ),
                    context={
                        "authorization_number": authorization.authorization_number,
                        "billed_units": str(units),
                        "remaining_units": str(authorization.remaining_units),
                    },
                ))

            days_left = (authorization.end_date - today).days
            if 0 <= days_left <= self.settings.AUTHORIZATION_EXPIRY_WARNING_DAYS:
                result.add_issue(ValidationIssue(
                    code="AUTHORIZATION_EXPIRING",
                    field="services",
                    message=f"Authorization {authorization.authorization_number} ends in {days_left} day(s)",
                    context={
                        "authorization_number": authorization.authorization_number,
                        "end_date": authorization.end_date.isoformat(),
                    },
                    severity=ValidationSeverity.WARNING,
                ))

    # =========================================================================
    # Documentation & Filing
    # =========================================================================

    def _check_documentation(self, services: list[Service], result: ValidationResult) -> None:
        for index, service in enumerate(services):
            if service.documentation_status != DocumentationStatus.COMPLETE:
                result.add_issue(ValidationIssue(
                    code="DOCUMENTATION_INCOMPLETE",
                    field=f"services[{index}].documentation_status",
                    message=f"Documentation for service on {service.service_date.isoformat()} is not complete",
                    context={
                        "service_id": str(service.id),
                        "documentation_status": service.documentation_status.value,
                    },
                ))

    def _check_timely_filing(
        self,
        services: list[Service],
        payer: Optional[Payer],
        today: date,
        result: ValidationResult,
    ) -> None:
        first = min(s.service_date for s in services)
        deadline = filing_deadline(first, payer, self.settings.DEFAULT_TIMELY_FILING_DAYS)
        days_left = (deadline - today).days
        context = {"deadline": deadline.isoformat(), "days_remaining": days_left}

        if days_left < 0:
            result.add_issue(ValidationIssue(
                code="TIMELY_FILING_EXPIRED",
                field="service_start_date",
                message=f"Timely filing deadline passed on {deadline.isoformat()}",
                context=context,
            ))
        elif days_left <= self.settings.TIMELY_FILING_WARNING_DAYS:
            result.add_issue(ValidationIssue(
                code="TIMELY_FILING_APPROACHING",
                field="service_start_date",
                message=f"Timely filing deadline is in {days_left} day(s)",
                context=context,
                severity=ValidationSeverity.WARNING,
            ))
