"""Remittance file parsing and ingestion."""

from hcbs_revenue.services.remittance.carc import (
    CARC_DESCRIPTIONS,
    AdjustmentTotals,
    categorize_adjustment,
    categorize_adjustments,
)
from hcbs_revenue.services.remittance.csv_parser import RemittanceCsvParser
from hcbs_revenue.services.remittance.edi_835 import Remittance835Parser
from hcbs_revenue.services.remittance.models import ParsedPayment, ParseResult, SegmentError
from hcbs_revenue.services.remittance.processor import IngestResult, RemittanceProcessor
from hcbs_revenue.services.remittance.x12 import X12ParseError, X12Segment, X12Tokenizer

__all__ = [
    "AdjustmentTotals",
    "CARC_DESCRIPTIONS",
    "IngestResult",
    "ParsedPayment",
    "ParseResult",
    "Remittance835Parser",
    "RemittanceCsvParser",
    "RemittanceProcessor",
    "SegmentError",
    "X12ParseError",
    "X12Segment",
    "X12Tokenizer",
    "categorize_adjustment",
    "categorize_adjustments",
]
