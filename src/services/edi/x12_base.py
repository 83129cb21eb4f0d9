"""
X12 EDI Base Parser and Models.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Provides core X12 parsing functionality shared by the 270 generator,
the 271 parser and the 999 parser:
- Tokenizer for segment/element parsing
- Loop span collection (LS/LE)
- Date and NPI utilities
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from enum import Enum
from datetime import date
import logging

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class TransactionType(str, Enum):
    """X12 transaction set types handled by the eligibility codec."""

    ELIG_270 = "270"  # Eligibility Request
    ELIG_271 = "271"  # Eligibility Response
    ACK_999 = "999"  # Implementation Acknowledgment
    ACK_TA1 = "TA1"  # Interchange Acknowledgment


# =============================================================================
# Exceptions
# =============================================================================


class X12ValidationError(Exception):
    """X12 validation error with detailed context."""

    def __init__(
        self,
        message: str,
        segment_id: Optional[str] = None,
        segment_position: Optional[int] = None,
        element_position: Optional[int] = None,
        raw_segment: Optional[str] = None,
    ):
        self.message = message
        self.segment_id = segment_id
        self.segment_position = segment_position
        self.element_position = element_position
        self.raw_segment = raw_segment
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


class X12ParseError(X12ValidationError):
    """Error during X12 parsing."""

    pass


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class X12Segment:
    """
    Represents a single X12 segment.

    Example: NM1*IL*1*DOE*JOHN****MI*12345~
    - segment_id: NM1
    - elements: ['IL', '1', 'DOE', 'JOHN', '', '', '', 'MI', '12345']
    """

    segment_id: str
    elements: List[str]
    position: int = 0

    def get_element(self, index: int, default: str = "") -> str:
        """Get element at index (0-based after segment ID)."""
        if 0 <= index < len(self.elements):
            return self.elements[index]
        return default

    def get_element_float(self, index: int, default: Optional[float] = None) -> Optional[float]:
        """Get element as float."""
        value = self.get_element(index)
        if value:
            try:
                return float(value)
            except ValueError:
                return default
        return default

    def __str__(self) -> str:
        if not self.elements:
            return self.segment_id
        return f"{self.segment_id}*{'*'.join(self.elements)}"


@dataclass
class X12Loop:
    """
    Segments enclosed by an LS/LE pair.

    The header and trailer segments are not part of ``segments``.
    ``preceding`` is the segment immediately before the LS, which in a 271
    is the EB row the loop describes.
    """

    loop_id: str
    segments: List[X12Segment] = field(default_factory=list)
    start_position: int = 0
    end_position: int = 0
    preceding: Optional[X12Segment] = None

    def find_segment(self, segment_id: str) -> Optional[X12Segment]:
        """Find first segment with given ID."""
        for segment in self.segments:
            if segment.segment_id == segment_id:
                return segment
        return None

    def find_segments(self, segment_id: str) -> List[X12Segment]:
        """Find all segments with given ID."""
        return [s for s in self.segments if s.segment_id == segment_id]

    def contains(self, position: int) -> bool:
        """Whether a tokenizer position falls inside this loop (LS/LE inclusive)."""
        return self.start_position <= position <= self.end_position


# =============================================================================
# Tokenizer
# =============================================================================


class X12Tokenizer:
    """
    X12 EDI tokenizer.

    Splits raw X12 content into segments and elements.
    Detects delimiters from the ISA segment when it is well formed and
    falls back to the standard delimiters otherwise.
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
        Detect delimiters from ISA segment.

        The element separator is the character right after "ISA". ISA16 is
        the single component separator character and the character after it
        terminates the segment. Counting elements instead of using the fixed
        106-character offsets tolerates senders that do not pad ISA06/ISA08.
        """
        if not content.startswith("ISA") or len(content) < 4:
            raise X12ParseError("Content must start with ISA segment")

        element_sep = content[3]
        parts = content.split(element_sep, 16)
        if len(parts) < 17 or len(parts[16]) < 2:
            raise X12ParseError("ISA segment is truncated", segment_id="ISA")

        component_sep = parts[16][0]
        segment_term = parts[16][1]
        if segment_term.isalnum() or segment_term == element_sep:
            raise X12ParseError("ISA segment terminator is invalid", segment_id="ISA")

        return element_sep, segment_term, component_sep

    def tokenize(self, content: str) -> List[X12Segment]:
        """
        Tokenize X12 content into segments.

        Args:
            content: Raw X12 EDI content

        Returns:
            List of X12Segment objects; ``position`` is the segment index
        """
        if content is None:
            raise X12ParseError("No content provided to tokenize")

        content = content.strip()

        if content.startswith("ISA"):
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
                    segment_id=elements[0].strip(),
                    elements=elements[1:],
                    position=len(segments),
                )
            )

        return segments

    def get_transaction_type(self, segments: List[X12Segment]) -> Tuple[TransactionType, str]:
        """
        Determine transaction type from ST segment.

        Returns:
            Tuple of (TransactionType, control_number)
        """
        for segment in segments:
            if segment.segment_id == "ST":
                code = segment.get_element(0)
                control = segment.get_element(1)
                try:
                    return TransactionType(code), control
                except ValueError:
                    raise X12ParseError(
                        f"Unsupported transaction set: {code}",
                        segment_id="ST",
                        segment_position=segment.position,
                    )
            if segment.segment_id == "TA1":
                return TransactionType.ACK_TA1, segment.get_element(0)

        raise X12ParseError("Unable to determine transaction type")


def collect_loops(segments: List[X12Segment], loop_id: str) -> List[X12Loop]:
    """
    Collect every LS/LE span carrying ``loop_id``.

    An LS without a matching LE closes at the next LS or at the end of the
    transaction set (SE), so a truncated loop never swallows the trailer.
    """
    loops: List[X12Loop] = []
    current: Optional[X12Loop] = None

    for index, segment in enumerate(segments):
        if segment.segment_id == "LS" and segment.get_element(0) == loop_id:
            if current is not None:
                current.end_position = segment.position - 1
                loops.append(current)
            current = X12Loop(
                loop_id=loop_id,
                start_position=segment.position,
                preceding=segments[index - 1] if index > 0 else None,
            )
        elif current is not None and segment.segment_id == "LE" and segment.get_element(0) == loop_id:
            current.end_position = segment.position
            loops.append(current)
            current = None
        elif current is not None and segment.segment_id in ("SE", "GE", "IEA"):
            current.end_position = segment.position - 1
            loops.append(current)
            current = None
        elif current is not None:
            current.segments.append(segment)

    if current is not None:
        current.end_position = segments[-1].position if segments else current.start_position
        loops.append(current)

    return loops


# =============================================================================
# Utility Functions
# =============================================================================


def format_x12_date(d: date) -> str:
    """Format date as X12 CCYYMMDD."""
    return d.strftime("%Y%m%d")


def x12_date_to_iso(date_str: str) -> Optional[str]:
    """
    Convert CCYYMMDD to a YYYY-MM-DD string.

    Coverage comparisons are done on these strings, so malformed input
    returns None rather than a partial value.
    """
    if not date_str or len(date_str) != 8 or not date_str.isdigit():
        return None
    return f"{date_str[:4]}-{date_str[4:6]}-{date_str[6:8]}"


def split_date_range(value: str) -> Tuple[Optional[str], Optional[str]]:
    """Split an RD8 value (CCYYMMDD-CCYYMMDD) into ISO start/end strings."""
    parts = value.split("-")
    if len(parts) != 2:
        return None, None
    return x12_date_to_iso(parts[0]), x12_date_to_iso(parts[1])


def validate_npi(npi: str) -> bool:
    """
    Validate NPI using Luhn algorithm.

    NPI is a 10-digit identifier for healthcare providers.
    """
    if not npi or len(npi) != 10:
        return False

    if not npi.isdigit():
        return False

    # Apply Luhn algorithm with healthcare prefix (80840)
    prefix = "80840"
    full_number = prefix + npi

    total = 0
    for i, digit in enumerate(reversed(full_number)):
        d = int(digit)
        if i % 2 == 0:
            total += d
        else:
            doubled = d * 2
            total += doubled if doubled < 10 else doubled - 9

    return total % 10 == 0
