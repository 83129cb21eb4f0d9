"""
X12 999 Implementation Acknowledgment Parser.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

A clearinghouse answers a malformed 270 with a 999 instead of a 271.
This module turns the acknowledgment into readable format-error
descriptors. Older 997-style AK3/AK4/AK5 segments are accepted as well.
"""

from dataclasses import dataclass
from typing import List, Optional, Union
from enum import Enum
import logging

from src.services.edi.x12_base import X12Segment, X12Tokenizer

logger = logging.getLogger(__name__)


# =============================================================================
# Enums and Code Tables
# =============================================================================


class FormatErrorKind(str, Enum):
    """Category of a 999 descriptor."""

    SEGMENT_ERROR = "SEGMENT ERROR"
    ELEMENT_ERROR = "ELEMENT ERROR"
    TRANSACTION_SET_ACK = "TRANSACTION SET ACK"
    FUNCTIONAL_GROUP_ACK = "FUNCTIONAL GROUP ACK"
    APPLICATION_ERROR = "APPLICATION ERROR"


SEGMENT_KINDS = {
    "IK3": FormatErrorKind.SEGMENT_ERROR,
    "AK3": FormatErrorKind.SEGMENT_ERROR,
    "IK4": FormatErrorKind.ELEMENT_ERROR,
    "AK4": FormatErrorKind.ELEMENT_ERROR,
    "IK5": FormatErrorKind.TRANSACTION_SET_ACK,
    "AK5": FormatErrorKind.TRANSACTION_SET_ACK,
    "AK9": FormatErrorKind.FUNCTIONAL_GROUP_ACK,
    "AAA": FormatErrorKind.APPLICATION_ERROR,
}

# IK304 segment syntax error codes
SEGMENT_ERROR_CODES = {
    "1": "Unrecognized segment ID",
    "2": "Unexpected segment",
    "3": "Required segment missing",
    "4": "Loop occurs over maximum times",
    "5": "Segment exceeds maximum use",
    "6": "Segment not in defined transaction set",
    "7": "Segment not in proper sequence",
    "8": "Segment has data element errors",
    "I4": "Implementation 'Not Used' segment present",
    "I6": "Implementation dependent segment missing",
    "I7": "Implementation loop occurs under minimum times",
    "I8": "Implementation segment below minimum use",
    "I9": "Implementation dependent 'Not Used' segment present",
}

# IK403 element syntax error codes
ELEMENT_ERROR_CODES = {
    "1": "Required data element missing",
    "2": "Conditional required data element missing",
    "3": "Too many data elements",
    "4": "Data element too short",
    "5": "Data element too long",
    "6": "Invalid character in data element",
    "7": "Invalid code value",
    "8": "Invalid date",
    "9": "Invalid time",
    "10": "Exclusion condition violated",
    "12": "Too many repetitions",
    "13": "Too many components",
    "I6": "Code value not used in implementation",
    "I9": "Implementation dependent data element missing",
    "I10": "Implementation 'Not Used' data element present",
    "I11": "Implementation too few repetitions",
    "I12": "Implementation pattern match failure",
    "I13": "Implementation dependent 'Not Used' data element present",
}

# IK501 / AK901 acknowledgment codes
ACK_CODES = {
    "A": "Accepted",
    "E": "Accepted but errors were noted",
    "M": "Rejected, message authentication code failed",
    "P": "Partially accepted",
    "R": "Rejected",
    "W": "Rejected, assurance failed validity tests",
    "X": "Rejected, content after decryption could not be analyzed",
}

REJECTING_ACK_CODES = {"R", "M", "W", "X"}


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class FormatErrorDescriptor:
    """One readable line of a 999 acknowledgment."""

    kind: FormatErrorKind
    segment: str
    description: str
    code: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.segment}"


# =============================================================================
# Parser
# =============================================================================


def is_999(segments: List[X12Segment]) -> bool:
    """Whether a tokenized interchange carries a 999 acknowledgment."""
    for segment in segments:
        if segment.segment_id == "ST" and segment.get_element(0) == "999":
            return True
        if segment.segment_id == "GS" and segment.get_element(0) == "FA":
            return True
    return False


class X12999Parser:
    """
    999 acknowledgment parser.

    Usage:
        parser = X12999Parser()
        for error in parser.parse(content):
            print(error.kind, error.description)
    """

    def __init__(self):
        self.tokenizer = X12Tokenizer()

    def parse(self, content: Union[str, List[X12Segment]]) -> List[FormatErrorDescriptor]:
        """
        Parse a 999 into descriptors.

        Args:
            content: Raw X12 text or already tokenized segments

        Returns:
            Descriptors in segment order
        """
        segments = self.tokenizer.tokenize(content) if isinstance(content, str) else content
        descriptors: List[FormatErrorDescriptor] = []
        current_segment_id = ""

        for segment in segments:
            kind = SEGMENT_KINDS.get(segment.segment_id)
            if kind is None:
                continue

            if kind == FormatErrorKind.SEGMENT_ERROR:
                current_segment_id = segment.get_element(0)
                descriptors.append(self._segment_error(segment, kind))
            elif kind == FormatErrorKind.ELEMENT_ERROR:
                descriptors.append(self._element_error(segment, kind, current_segment_id))
            elif kind in (FormatErrorKind.TRANSACTION_SET_ACK, FormatErrorKind.FUNCTIONAL_GROUP_ACK):
                descriptors.append(self._ack(segment, kind))
            else:
                code = segment.get_element(2)
                descriptors.append(
                    FormatErrorDescriptor(
                        kind=kind,
                        segment=str(segment),
                        description=f"Application error {code}".strip(),
                        code=code or None,
                    )
                )

        if descriptors:
            logger.debug(f"999 acknowledgment with {len(descriptors)} descriptor(s)")
        return descriptors

    def is_rejected(self, descriptors: List[FormatErrorDescriptor]) -> bool:
        """Whether the acknowledgment rejects the transaction."""
        for descriptor in descriptors:
            if descriptor.kind in (FormatErrorKind.SEGMENT_ERROR, FormatErrorKind.ELEMENT_ERROR):
                return True
            if descriptor.code in REJECTING_ACK_CODES:
                return True
        return False

    def _segment_error(self, segment: X12Segment, kind: FormatErrorKind) -> FormatErrorDescriptor:
        # IK3*<segment id>*<position>*<loop id>*<error code>
        segment_id = segment.get_element(0)
        position = segment.get_element(1)
        loop_id = segment.get_element(2)
        code = segment.get_element(3)
        description = f"Segment {segment_id} at position {position}"
        if loop_id:
            description += f" in loop {loop_id}"
        if code:
            description += f": {SEGMENT_ERROR_CODES.get(code, f'error code {code}')}"
        return FormatErrorDescriptor(kind=kind, segment=str(segment), description=description, code=code or None)

    def _element_error(
        self,
        segment: X12Segment,
        kind: FormatErrorKind,
        parent_segment_id: str,
    ) -> FormatErrorDescriptor:
        # IK4*<position[:component]>*<element ref>*<error code>*<bad value>
        position = segment.get_element(0).split(":")[0]
        element_ref = segment.get_element(1)
        code = segment.get_element(2)
        bad_value = segment.get_element(3)

        label = f"{parent_segment_id}{position.zfill(2)}" if parent_segment_id and position.isdigit() else position
        description = f"Element {label}"
        if element_ref:
            description += f" (ref {element_ref})"
        description += f": {ELEMENT_ERROR_CODES.get(code, f'error code {code}')}"
        if bad_value:
            description += f" [{bad_value}]"
        return FormatErrorDescriptor(kind=kind, segment=str(segment), description=description, code=code or None)

    def _ack(self, segment: X12Segment, kind: FormatErrorKind) -> FormatErrorDescriptor:
        code = segment.get_element(0)
        scope = "Transaction set" if kind == FormatErrorKind.TRANSACTION_SET_ACK else "Functional group"
        return FormatErrorDescriptor(
            kind=kind,
            segment=str(segment),
            description=f"{scope} {ACK_CODES.get(code, f'acknowledgment code {code}').lower()}",
            code=code or None,
        )
