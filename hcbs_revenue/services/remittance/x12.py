"""
X12 EDI Tokenizer.

Source: X12 base parser (tokenizer, segment model, date/amount helpers)
Verified: 2026-10-19

Provides core X12 parsing functionality:
- Segment model with element and composite access
- Tokenizer with delimiter detection from the ISA header
- Date and amount helpers returning date / Decimal
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from hcbs_revenue.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

# ISA carries 16 data elements; the component separator is ISA16 itself
ISA_ELEMENT_COUNT = 16


class X12ParseError(Exception):
    """Error during X12 parsing."""

    def __init__(
        self,
        message: str,
        segment_id: Optional[str] = None,
        segment_position: Optional[int] = None,
        element_position: Optional[int] = None,
    ):
        self.message = message
        self.segment_id = segment_id
        self.segment_position = segment_position
        self.element_position = element_position
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.segment_id:
            parts.append(f"Segment: {self.segment_id}")
        if self.segment_position is not None:
            parts.append(f"Position: {self.segment_position}")
        if self.element_position is not None:
            parts.append(f"Element: {self.element_position}")
        return " | ".join(parts)


@dataclass
class X12Segment:
    """
    Represents a single X12 segment.

    Example: CLP*CLM-2026-000001*1*1000*600**MC*PCN123~
    - segment_id: CLP
    - elements: ['CLM-2026-000001', '1', '1000', '600', '', 'MC', 'PCN123']
    """

    segment_id: str
    elements: List[str]
    position: int = 0

    def get_element(self, index: int, default: str = "") -> str:
        """Get element at index (0-based after segment ID)."""
        if 0 <= index < len(self.elements):
            return self.elements[index].strip()
        return default

    def get_composite(self, index: int, separator: str = ":") -> List[str]:
        """Get composite element as list of sub-elements."""
        value = self.get_element(index)
        if value:
            return value.split(separator)
        return []

    def get_amount(self, index: int, required: bool = True) -> Decimal:
        """Element as money; raises X12ParseError when missing (if required) or malformed."""
        value = self.get_element(index)
        if not value:
            if required:
                raise X12ParseError(
                    "Missing amount",
                    segment_id=self.segment_id,
                    segment_position=self.position,
                    element_position=index + 1,
                )
            return ZERO
        try:
            return parse_x12_amount(value)
        except ValueError as e:
            raise X12ParseError(
                f"Invalid amount {value!r}",
                segment_id=self.segment_id,
                segment_position=self.position,
                element_position=index + 1,
            ) from e

    def __str__(self) -> str:
        return f"{self.segment_id}*{'*'.join(self.elements)}"


class X12Tokenizer:
    """
    X12 EDI tokenizer.

    Handles parsing of raw X12 content into segments and elements.
    Automatically detects delimiters from the ISA segment.
    """

    DEFAULT_ELEMENT_SEPARATOR = "*"
    DEFAULT_SEGMENT_TERMINATOR = "~"
    DEFAULT_COMPONENT_SEPARATOR = ":"

    def __init__(
        self,
        element_separator: Optional[str] = None,
        segment_terminator: Optional[str] = None,
        component_separator: Optional[str] = None,
    ):
        self.element_separator = element_separator or self.DEFAULT_ELEMENT_SEPARATOR
        self.segment_terminator = segment_terminator or self.DEFAULT_SEGMENT_TERMINATOR
        self.component_separator = component_separator or self.DEFAULT_COMPONENT_SEPARATOR

    def detect_delimiters(self, content: str) -> Tuple[str, str, str]:
        """
        Detect delimiters from the ISA segment.

        The element separator is the character after "ISA". The component
        separator is ISA16 and the segment terminator follows it. Counting
        separators instead of using fixed offsets tolerates senders that do
        not pad ISA fields to their fixed widths.
        """
        if not content.startswith("ISA"):
            raise X12ParseError("Content must start with ISA segment")
        if len(content) < 4:
            raise X12ParseError("ISA segment is truncated", segment_id="ISA")

        element_sep = content[3]
        index = 3
        for _ in range(ISA_ELEMENT_COUNT - 1):
            index = content.find(element_sep, index + 1)
            if index == -1:
                raise X12ParseError("ISA segment has too few elements", segment_id="ISA")

        # index now points at the separator before ISA16
        if len(content) < index + 3:
            raise X12ParseError("ISA segment is truncated", segment_id="ISA")
        component_sep = content[index + 1]
        segment_term = content[index + 2]
        return element_sep, segment_term, component_sep

    def tokenize(self, content: str) -> List[X12Segment]:
        """
        Tokenize X12 content into segments.

        Args:
            content: Raw X12 EDI content starting with ISA

        Returns:
            List of X12Segment objects, positions counted from 1
        """
        content = content.strip()
        if not content:
            raise X12ParseError("No content provided to tokenize")

        (
            self.element_separator,
            self.segment_terminator,
            self.component_separator,
        ) = self.detect_delimiters(content)

        segments = []
        for raw in content.split(self.segment_terminator):
            raw = raw.replace("\n", "").replace("\r", "").strip()
            if not raw:
                continue
            elements = raw.split(self.element_separator)
            segments.append(
                X12Segment(
                    segment_id=elements[0].strip().upper(),
                    elements=elements[1:],
                    position=len(segments) + 1,
                )
            )

        logger.debug(f"Tokenized {len(segments)} X12 segments")
        return segments


# =============================================================================
# Utility Functions
# =============================================================================


def parse_x12_date(date_str: str) -> Optional[date]:
    """
    Parse X12 date format (CCYYMMDD or YYMMDD).

    Returns None when the value is empty or not a valid date.
    """
    if not date_str:
        return None

    try:
        if len(date_str) == 8:
            return date(int(date_str[:4]), int(date_str[4:6]), int(date_str[6:8]))
        if len(date_str) == 6:
            year = int(date_str[:2])
            year += 2000 if year < 50 else 1900
            return date(year, int(date_str[2:4]), int(date_str[4:6]))
    except ValueError:
        pass

    return None


def parse_x12_amount(amount_str: str) -> Decimal:
    """Parse X12 monetary amount. Raises ValueError when malformed."""
    amount = to_money(amount_str)
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary amount: {amount_str!r}")
    return amount
