"""
X12 835 Remittance Parser.

Provides:
- Envelope checks (ISA/IEA, GS/GE, ST/SE counts and control numbers)
- Payment extraction per ST transaction (BPR, TRN, N1*PR, DTM)
- Claim detail extraction (CLP, CAS, DTM*232/472) and PLB provider adjustments
- Per-segment error collection so one bad claim does not discard the file

Source: X12 835 Health Care Claim Payment/Advice (005010X221A1)
Verified: 2026-10-19

Envelope problems fail the whole file with a structural ValidationError.
A malformed CLP is reported once and its CAS/DTM segments are skipped; a
malformed BPR (or a transaction without TRN or payment date) drops that
one payment.
"""

import logging
from typing import Optional

from hcbs_revenue.core.enums import AdjustmentGroup, AdjustmentType, PaymentMethod
from hcbs_revenue.schemas import Adjustment, RemittanceDetail
from hcbs_revenue.services.remittance.carc import (
    PLB_DESCRIPTIONS,
    build_adjustment,
    describe_code,
)
from hcbs_revenue.services.remittance.models import ParsedPayment, ParseResult, SegmentError
from hcbs_revenue.services.remittance.x12 import (
    X12ParseError,
    X12Segment,
    X12Tokenizer,
    parse_x12_date,
)
from hcbs_revenue.utils.errors import FieldError, ValidationError

logger = logging.getLogger(__name__)

REMITTANCE_TRANSACTION_CODE = "835"

# BPR04 payment format / BPR01 handling code
_PAYMENT_FORMATS = {
    "ACH": PaymentMethod.EFT,
    "BOP": PaymentMethod.EFT,
    "FWT": PaymentMethod.EFT,
    "CHK": PaymentMethod.CHECK,
    "NON": PaymentMethod.NON_PAYMENT,
}
_NOTIFICATION_ONLY = "H"

_ADJUSTMENT_GROUPS = frozenset(g.value for g in AdjustmentGroup)


def _segment_error(error: X12ParseError, claim_number: Optional[str] = None) -> SegmentError:
    return SegmentError(
        segment_id=error.segment_id or "",
        position=error.segment_position or 0,
        message=error.message,
        claim_number=claim_number,
    )


def _as_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


class Remittance835Parser:
    """Parses X12 835 files into ParsedPayment records."""

    def __init__(self, tokenizer: Optional[X12Tokenizer] = None):
        self.tokenizer = tokenizer or X12Tokenizer()

    def parse(self, content: str) -> ParseResult:
        try:
            segments = self.tokenizer.tokenize(content)
        except X12ParseError as e:
            raise ValidationError(
                "Remittance file is not a readable X12 interchange",
                errors=[FieldError(field="ISA", code="MALFORMED_ENVELOPE", message=e.message)],
            ) from e

        transactions = self._check_envelope(segments)

        result = ParseResult()
        for transaction in transactions:
            payment = self._parse_transaction(transaction, result.parse_errors)
            if payment is None:
                continue
            result.payments.append(payment)
            for adjustment in payment.claim_adjustments:
                result.adjustment_codes[f"{adjustment.group_code}-{adjustment.code}"] = describe_code(
                    adjustment.code
                )
            for adjustment in payment.provider_adjustments:
                result.adjustment_codes[adjustment.code] = adjustment.description or ""

        for error in result.parse_errors:
            logger.warning(f"835 parse error at segment {error.position} ({error.segment_id}): {error.message}")
        logger.info(
            f"Parsed 835: {len(result.payments)} payment(s) from {len(transactions)} "
            f"transaction(s), {len(result.parse_errors)} error(s)"
        )
        return result

    # =========================================================================
    # Envelope
    # =========================================================================

    def _check_envelope(self, segments: list[X12Segment]) -> list[list[X12Segment]]:
        """Validate ISA/GS/ST nesting and trailer counts; return ST..SE slices."""
        problems: list[FieldError] = []

        def problem(segment_id: str, code: str, message: str) -> None:
            problems.append(FieldError(field=segment_id, code=code, message=message))

        isa = segments[0]
        iea = segments[-1] if segments[-1].segment_id == "IEA" else None
        if iea is None:
            problem("IEA", "MISSING_TRAILER", "Interchange has no IEA trailer")

        transactions: list[list[X12Segment]] = []
        gs: Optional[X12Segment] = None
        current: Optional[list[X12Segment]] = None
        group_count = 0
        transaction_count = 0

        body = segments[1:-1] if iea is not None else segments[1:]
        for segment in body:
            sid = segment.segment_id
            if sid == "GS":
                if gs is not None:
                    problem("GS", "UNEXPECTED_SEGMENT", f"GS at {segment.position} inside an open group")
                gs = segment
                transaction_count = 0
            elif sid == "GE":
                if gs is None:
                    problem("GE", "UNEXPECTED_SEGMENT", f"GE at {segment.position} without GS")
                    continue
                if current is not None:
                    problem("SE", "MISSING_TRAILER", f"Transaction {current[0].get_element(1)} has no SE")
                    current = None
                if _as_int(segment.get_element(0)) != transaction_count:
                    problem(
                        "GE",
                        "COUNT_MISMATCH",
                        f"GE01 reports {segment.get_element(0)} transaction(s), found {transaction_count}",
                    )
                if segment.get_element(1) != gs.get_element(5):
                    problem("GE", "CONTROL_MISMATCH", "GE02 does not match GS06")
                group_count += 1
                gs = None
            elif sid == "ST":
                if gs is None:
                    problem("ST", "UNEXPECTED_SEGMENT", f"ST at {segment.position} outside a functional group")
                if current is not None:
                    problem("SE", "MISSING_TRAILER", f"Transaction {current[0].get_element(1)} has no SE")
                if segment.get_element(0) != REMITTANCE_TRANSACTION_CODE:
                    problem(
                        "ST",
                        "UNSUPPORTED_TRANSACTION",
                        f"Transaction set {segment.get_element(0)!r} is not an 835",
                    )
                current = [segment]
            elif sid == "SE":
                if current is None:
                    problem("SE", "UNEXPECTED_SEGMENT", f"SE at {segment.position} without ST")
                    continue
                current.append(segment)
                if _as_int(segment.get_element(0)) != len(current):
                    problem(
                        "SE",
                        "COUNT_MISMATCH",
                        f"SE01 reports {segment.get_element(0)} segment(s), "
                        f"transaction {current[0].get_element(1)} has {len(current)}",
                    )
                if segment.get_element(1) != current[0].get_element(1):
                    problem("SE", "CONTROL_MISMATCH", "SE02 does not match ST02")
                transactions.append(current)
                transaction_count += 1
                current = None
            elif current is None:
                problem(sid, "UNEXPECTED_SEGMENT", f"{sid} at {segment.position} outside a transaction")
            else:
                current.append(segment)

        if current is not None:
            problem("SE", "MISSING_TRAILER", f"Transaction {current[0].get_element(1)} has no SE")
        if gs is not None:
            problem("GE", "MISSING_TRAILER", f"Group {gs.get_element(5)} has no GE")
        if iea is not None:
            if _as_int(iea.get_element(0)) != group_count:
                problem(
                    "IEA",
                    "COUNT_MISMATCH",
                    f"IEA01 reports {iea.get_element(0)} group(s), found {group_count}",
                )
            if iea.get_element(1) != isa.get_element(12):
                problem("IEA", "CONTROL_MISMATCH", "IEA02 does not match ISA13")

        if problems:
            raise ValidationError(
                f"Remittance envelope is malformed ({len(problems)} problem(s))",
                errors=problems,
            )
        return transactions

    # =========================================================================
    # Transaction Body
    # =========================================================================

    def _parse_transaction(
        self, transaction: list[X12Segment], errors: list[SegmentError]
    ) -> Optional[ParsedPayment]:
        st = transaction[0]
        bpr: Optional[X12Segment] = None
        trace_number: Optional[str] = None
        payer_code: Optional[str] = None
        payer_name: Optional[str] = None
        production_date = None
        details: list[RemittanceDetail] = []
        provider_adjustments: list[Adjustment] = []
        current: Optional[RemittanceDetail] = None
        skipping_claim = False

        for segment in transaction[1:-1]:
            sid = segment.segment_id
            if sid == "BPR":
                bpr = segment
            elif sid == "TRN":
                trace_number = segment.get_element(1) or None
            elif sid == "N1" and segment.get_element(0) == "PR":
                payer_name = segment.get_element(1) or None
                payer_code = segment.get_element(3) or None
            elif sid == "CLP":
                current = None
                try:
                    current = self._parse_clp(segment)
                except X12ParseError as e:
                    errors.append(_segment_error(e, segment.get_element(0) or None))
                    skipping_claim = True
                    continue
                skipping_claim = False
                details.append(current)
            elif sid == "CAS":
                if skipping_claim:
                    continue
                if current is None:
                    errors.append(
                        SegmentError("CAS", segment.position, "CAS segment outside a claim")
                    )
                    continue
                try:
                    current.adjustments.extend(self._parse_cas(segment))
                except X12ParseError as e:
                    errors.append(_segment_error(e, current.claim_number))
            elif sid == "DTM":
                qualifier = segment.get_element(0)
                if qualifier == "405" and current is None:
                    production_date = parse_x12_date(segment.get_element(1))
                elif qualifier in ("232", "472") and current is not None and not skipping_claim:
                    if current.service_date is None:
                        current.service_date = parse_x12_date(segment.get_element(1))
            elif sid == "PLB":
                current = None
                skipping_claim = False
                try:
                    provider_adjustments.extend(self._parse_plb(segment))
                except X12ParseError as e:
                    errors.append(_segment_error(e))

        if bpr is None:
            errors.append(SegmentError("ST", st.position, f"Transaction {st.get_element(1)} has no BPR"))
            return None
        try:
            total_amount = bpr.get_amount(1)
        except X12ParseError as e:
            errors.append(_segment_error(e))
            return None
        if trace_number is None:
            errors.append(SegmentError("TRN", st.position, f"Transaction {st.get_element(1)} has no trace number"))
            return None
        payment_date = parse_x12_date(bpr.get_element(15)) or production_date
        if payment_date is None:
            errors.append(SegmentError("BPR", bpr.position, "Payment has no effective date"))
            return None

        return ParsedPayment(
            trace_number=trace_number,
            payment_date=payment_date,
            total_amount=total_amount,
            method=self._payment_method(bpr),
            payer_code=payer_code,
            payer_name=payer_name,
            details=details,
            provider_adjustments=provider_adjustments,
            segment_id="ST",
            position=st.position,
        )

    @staticmethod
    def _payment_method(bpr: X12Segment) -> PaymentMethod:
        if bpr.get_element(0) == _NOTIFICATION_ONLY:
            return PaymentMethod.NON_PAYMENT
        return _PAYMENT_FORMATS.get(bpr.get_element(3), PaymentMethod.OTHER)

    @staticmethod
    def _parse_clp(segment: X12Segment) -> RemittanceDetail:
        claim_number = segment.get_element(0)
        if not claim_number:
            raise X12ParseError(
                "CLP has no claim number",
                segment_id="CLP",
                segment_position=segment.position,
                element_position=1,
            )
        return RemittanceDetail(
            claim_number=claim_number,
            status_code=segment.get_element(1) or None,
            billed_amount=segment.get_amount(2),
            paid_amount=segment.get_amount(3),
            patient_responsibility=segment.get_amount(4, required=False),
            payer_claim_number=segment.get_element(6) or None,
        )

    @staticmethod
    def _parse_cas(segment: X12Segment) -> list[Adjustment]:
        group = segment.get_element(0).upper()
        if group not in _ADJUSTMENT_GROUPS:
            raise X12ParseError(
                f"Unknown adjustment group {group!r}",
                segment_id="CAS",
                segment_position=segment.position,
                element_position=1,
            )
        adjustments = []
        # reason / amount / quantity triples from CAS02
        for index in range(1, len(segment.elements), 3):
            reason = segment.get_element(index)
            if not reason:
                continue
            adjustments.append(build_adjustment(group, reason, segment.get_amount(index + 1)))
        if not adjustments:
            raise X12ParseError(
                "CAS carries no adjustment reason",
                segment_id="CAS",
                segment_position=segment.position,
            )
        return adjustments

    def _parse_plb(self, segment: X12Segment) -> list[Adjustment]:
        adjustments = []
        # identifier / amount pairs from PLB03
        for index in range(2, len(segment.elements), 2):
            identifier = segment.get_composite(index, self.tokenizer.component_separator)
            if not identifier or not identifier[0]:
                continue
            reason = identifier[0]
            amount = segment.get_amount(index + 1)
            # A positive PLB amount is money the payer withheld from this payment
            adjustments.append(
                Adjustment(
                    adjustment_type=AdjustmentType.OTHER,
                    code=reason,
                    amount=-amount,
                    description=PLB_DESCRIPTIONS.get(reason, "Provider-level adjustment"),
                )
            )
        return adjustments
