"""
CSV Remittance Parser.

Each row is one paid claim; rows sharing a payer code and trace number
form one payment. Column headers are matched against an alias table, so
exports that say "Check Number" or "Payer ID" load without remapping.

Adjustments go in one column as ``GROUP-CODE:AMOUNT`` entries separated
by semicolons, e.g. ``CO-45:20.00;PR-2:15.00``.
"""

import csv
import io
import logging
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from hcbs_revenue.core.enums import PaymentMethod
from hcbs_revenue.schemas import Adjustment, RemittanceDetail
from hcbs_revenue.services.remittance.carc import build_adjustment, describe_code
from hcbs_revenue.services.remittance.models import ParsedPayment, ParseResult, SegmentError
from hcbs_revenue.utils.errors import FieldError, ValidationError
from hcbs_revenue.utils.money import ZERO, money_sum, to_money

logger = logging.getLogger(__name__)

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "claim_number": ("claim_number", "claim_no", "claim_id", "patient_control_number"),
    "payer_claim_number": ("payer_claim_number", "payer_claim_id", "icn"),
    "payer_code": ("payer_code", "payer_id", "payer_identifier", "payor_id"),
    "payer_name": ("payer_name", "payor_name"),
    "trace_number": (
        "trace_number",
        "check_number",
        "eft_number",
        "remittance_number",
        "reference_number",
    ),
    "payment_date": ("payment_date", "check_date", "remittance_date"),
    "payment_method": ("payment_method", "method"),
    "payment_total": ("payment_total", "check_amount", "total_payment"),
    "billed_amount": ("billed_amount", "charge_amount", "billed"),
    "paid_amount": ("paid_amount", "payment_amount", "paid"),
    "patient_responsibility": ("patient_responsibility", "patient_resp"),
    "service_date": ("service_date", "date_of_service", "dos"),
    "status_code": ("status_code", "claim_status"),
    "adjustment_codes": ("adjustment_codes", "adjustments", "adj_codes"),
}

REQUIRED_COLUMNS = ("claim_number", "payer_code", "trace_number", "paid_amount")

_METHODS = {
    "eft": PaymentMethod.EFT,
    "ach": PaymentMethod.EFT,
    "check": PaymentMethod.CHECK,
    "chk": PaymentMethod.CHECK,
    "credit_card": PaymentMethod.CREDIT_CARD,
    "non_payment": PaymentMethod.NON_PAYMENT,
}

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y%m%d")


class RowError(ValueError):
    """A CSV cell that cannot be read."""


def normalize_header(header: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", header.strip().lower()).strip("_")


def parse_csv_date(value: str) -> date:
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise RowError(f"Invalid date {value!r}")


def parse_adjustment_codes(value: str) -> list[Adjustment]:
    adjustments = []
    for entry in filter(None, (part.strip() for part in value.split(";"))):
        code_part, sep, amount_part = entry.partition(":")
        group, dash, reason = code_part.partition("-")
        if not sep or not dash or not reason:
            raise RowError(f"Invalid adjustment {entry!r}, expected GROUP-CODE:AMOUNT")
        try:
            amount = to_money(amount_part.strip())
        except ValueError as e:
            raise RowError(f"Invalid adjustment amount in {entry!r}") from e
        adjustments.append(build_adjustment(group.strip().upper(), reason.strip(), amount))
    return adjustments


class RemittanceCsvParser:
    """Parses CSV remittance exports into ParsedPayment records."""

    def parse(self, content: str) -> ParseResult:
        reader = csv.DictReader(io.StringIO(content))
        if not reader.fieldnames:
            raise ValidationError(
                "Remittance file is empty",
                errors=[FieldError(field="file", code="EMPTY_FILE", message="No header row")],
            )
        columns = self._map_columns(reader.fieldnames)

        result = ParseResult()
        groups: dict[tuple[str, str], list[tuple[int, dict[str, str]]]] = {}
        row_count = 0
        for row in reader:
            row_count += 1
            values = {
                name: (row.get(column) or "").strip() for name, column in columns.items()
            }
            key = (values["payer_code"], values["trace_number"])
            if not all(key):
                result.parse_errors.append(
                    SegmentError(
                        "ROW",
                        reader.line_num,
                        "Row has no payer code or trace number",
                        claim_number=values["claim_number"] or None,
                    )
                )
                continue
            groups.setdefault(key, []).append((reader.line_num, values))

        if row_count == 0:
            raise ValidationError(
                "Remittance file contains no rows",
                errors=[FieldError(field="file", code="EMPTY_FILE", message="Header only")],
            )

        for (payer_code, trace_number), rows in groups.items():
            payment = self._build_payment(payer_code, trace_number, rows, result.parse_errors)
            if payment is None:
                continue
            result.payments.append(payment)
            for adjustment in payment.claim_adjustments:
                result.adjustment_codes[f"{adjustment.group_code}-{adjustment.code}"] = describe_code(
                    adjustment.code
                )

        logger.info(
            f"Parsed CSV remittance: {len(result.payments)} payment(s) from {row_count} row(s), "
            f"{len(result.parse_errors)} error(s)"
        )
        return result

    @staticmethod
    def _map_columns(fieldnames: list[str]) -> dict[str, str]:
        by_normalized = {normalize_header(name): name for name in fieldnames if name}
        columns: dict[str, str] = {}
        for name, aliases in COLUMN_ALIASES.items():
            for alias in aliases:
                if alias in by_normalized:
                    columns[name] = by_normalized[alias]
                    break

        missing = [name for name in REQUIRED_COLUMNS if name not in columns]
        if missing:
            raise ValidationError(
                "Remittance file is missing required columns",
                errors=[
                    FieldError(field=name, code="MISSING_COLUMN", message=f"No column for {name}")
                    for name in missing
                ],
            )
        # Optional columns read as empty strings
        for name in COLUMN_ALIASES:
            columns.setdefault(name, "")
        return columns

    def _build_payment(
        self,
        payer_code: str,
        trace_number: str,
        rows: list[tuple[int, dict[str, str]]],
        errors: list[SegmentError],
    ) -> Optional[ParsedPayment]:
        first_line, first = rows[0]
        try:
            payment_date = parse_csv_date(first["payment_date"]) if first["payment_date"] else None
            payment_total = to_money(first["payment_total"]) if first["payment_total"] else None
        except ValueError as e:
            errors.append(SegmentError("ROW", first_line, f"Payment {trace_number}: {e}"))
            return None
        if payment_date is None:
            errors.append(SegmentError("ROW", first_line, f"Payment {trace_number} has no payment date"))
            return None

        details = []
        for line, values in rows:
            try:
                details.append(self._parse_row(values))
            except ValueError as e:
                errors.append(
                    SegmentError("ROW", line, str(e), claim_number=values["claim_number"] or None)
                )
        if not details:
            return None

        total = payment_total if payment_total is not None else money_sum(d.paid_amount for d in details)
        return ParsedPayment(
            trace_number=trace_number,
            payment_date=payment_date,
            total_amount=total,
            method=_METHODS.get(normalize_header(first["payment_method"]), PaymentMethod.EFT),
            payer_code=payer_code,
            payer_name=first["payer_name"] or None,
            details=details,
            segment_id="ROW",
            position=first_line,
        )

    @staticmethod
    def _parse_row(values: dict[str, str]) -> RemittanceDetail:
        if not values["claim_number"]:
            raise RowError("Row has no claim number")

        def amount(name: str, default: Decimal = ZERO) -> Decimal:
            if not values[name]:
                return default
            try:
                return to_money(values[name])
            except ValueError as e:
                raise RowError(f"Invalid {name} {values[name]!r}") from e

        if not values["paid_amount"]:
            raise RowError("Row has no paid amount")
        return RemittanceDetail(
            claim_number=values["claim_number"],
            payer_claim_number=values["payer_claim_number"] or None,
            status_code=values["status_code"] or None,
            billed_amount=amount("billed_amount"),
            paid_amount=amount("paid_amount"),
            patient_responsibility=amount("patient_responsibility"),
            service_date=parse_csv_date(values["service_date"]) if values["service_date"] else None,
            adjustments=parse_adjustment_codes(values["adjustment_codes"]),
        )
