"""
X12 270 Segment Builder.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Builds one syntactically well-formed segment string per call. Segments are
returned WITHOUT a terminator; the assembler joins them once. Business rules
(which segments a payer accepts) live in the assembler.
"""

from datetime import date, datetime
from typing import Optional, Sequence

from src.core.enums import EntityType, ServiceDateFormat
from src.services.edi.x12_base import format_x12_date


IMPLEMENTATION_REFERENCE = "005010X279A1"
ISA_ID_WIDTH = 15
VALID_DMG_GENDERS = ("M", "F")


class X12SegmentBuilder:
    """
    Segment builder for HIPAA 5010 270 transactions.

    Usage:
        builder = X12SegmentBuilder()
        builder.hl("1", "", "20", True)   # 'HL*1**20*1'
    """

    def __init__(
        self,
        element_separator: str = "*",
        sub_element_separator: str = ":",
        repetition_separator: str = "^",
    ):
        self.element_sep = element_separator
        self.sub_element_sep = sub_element_separator
        self.repetition_sep = repetition_separator

    def segment(self, *elements: str) -> str:
        """Build a segment from elements."""
        return self.element_sep.join(elements)

    def segment_trimmed(self, *elements: str) -> str:
        """Build a segment, dropping trailing empty elements."""
        values = list(elements)
        while len(values) > 1 and values[-1] == "":
            values.pop()
        return self.segment(*values)

    # -------------------------------------------------------------------------
    # Envelope
    # -------------------------------------------------------------------------

    def isa(
        self,
        sender_id: str,
        receiver_id: str,
        control_number: str,
        now: datetime,
        sender_qualifier: str = "ZZ",
        receiver_qualifier: str = "01",
        usage_indicator: str = "P",
    ) -> str:
        """
        Build ISA segment.

        ISA06/ISA08 are exactly 15 characters, space padded on the right.
        Date and time come from ``now``, which callers pass as local time.
        """
        return self.segment(
            "ISA",
            "00",  # Authorization Info Qualifier
            " " * 10,  # Authorization Info
            "00",  # Security Info Qualifier
            " " * 10,  # Security Info
            sender_qualifier,  # Sender ID Qualifier
            pad_isa_id(sender_id),  # Sender ID
            receiver_qualifier,  # Receiver ID Qualifier
            pad_isa_id(receiver_id),  # Receiver ID
            now.strftime("%y%m%d"),  # Date (YYMMDD)
            now.strftime("%H%M"),  # Time (HHMM)
            self.repetition_sep,  # Repetition Separator
            "00501",  # Version
            format_control_number(control_number),  # Control Number
            "0",  # Acknowledgment Requested
            usage_indicator,  # Usage Indicator (P=Production, T=Test)
            self.sub_element_sep,  # Sub-element Separator
        )

    def gs(self, sender_id: str, receiver_id: str, control_number: str, now: datetime) -> str:
        """Build GS segment."""
        return self.segment(
            "GS",
            "HS",  # Functional ID Code (HS=270)
            sender_id.strip(),
            receiver_id.strip(),
            now.strftime("%Y%m%d"),
            now.strftime("%H%M"),
            format_control_number(control_number),
            "X",  # Responsible Agency Code
            IMPLEMENTATION_REFERENCE,
        )

    def st(self, transaction_control: str = "0001") -> str:
        """Build ST segment."""
        return self.segment("ST", "270", transaction_control, IMPLEMENTATION_REFERENCE)

    def bht(self, reference: str, now: datetime) -> str:
        """Build BHT segment (0022 structure, 13 = request)."""
        return self.segment(
            "BHT",
            "0022",
            "13",
            reference,
            now.strftime("%Y%m%d"),
            now.strftime("%H%M"),
        )

    def se(self, segment_count: int, transaction_control: str = "0001") -> str:
        """Build SE segment."""
        return self.segment("SE", str(segment_count), transaction_control)

    def ge(self, control_number: str, transaction_count: int = 1) -> str:
        """Build GE segment."""
        return self.segment("GE", str(transaction_count), format_control_number(control_number))

    def iea(self, control_number: str, group_count: int = 1) -> str:
        """Build IEA segment."""
        return self.segment("IEA", str(group_count), format_control_number(control_number))

    # -------------------------------------------------------------------------
    # Hierarchy and names
    # -------------------------------------------------------------------------

    def hl(self, hl_id: str, parent_id: str, level_code: str, has_children: bool) -> str:
        """Build HL segment."""
        return self.segment("HL", hl_id, parent_id, level_code, "1" if has_children else "0")

    def trn(self, reference: str, originator_id: str, supplemental: str = "ELIGIBILITY") -> str:
        """Build TRN segment (trace type 1 = current transaction)."""
        return self.segment_trimmed("TRN", "1", reference, originator_id, supplemental)

    def nm1(
        self,
        entity_code: str,
        entity_type: EntityType,
        last_or_org_name: str,
        first_name: str = "",
        middle_name: str = "",
        id_qualifier: str = "",
        id_code: str = "",
    ) -> str:
        """
        Build NM1 segment.

        Person (1) carries last/first/middle; organization (2) carries only
        the organization name in NM103. NM108/NM109 are emitted only with a
        value.
        """
        if entity_type == EntityType.ORGANIZATION:
            first_name = ""
            middle_name = ""

        if not id_code:
            id_qualifier = ""

        return self.segment_trimmed(
            "NM1",
            entity_code,
            entity_type.value,
            clean_name(last_or_org_name)[:60],
            clean_name(first_name)[:35],
            clean_name(middle_name)[:25],
            "",  # Prefix
            "",  # Suffix
            id_qualifier,
            id_code.strip(),
        )

    # -------------------------------------------------------------------------
    # Subscriber detail
    # -------------------------------------------------------------------------

    def dmg(self, date_of_birth: date, gender: Optional[str] = None) -> str:
        """
        Build DMG segment.

        Gender is only sent when it is M or F; anything else is omitted
        rather than sent as U.
        """
        gender_code = normalize_gender(gender)
        if gender_code:
            return self.segment("DMG", "D8", format_x12_date(date_of_birth), gender_code)
        return self.segment("DMG", "D8", format_x12_date(date_of_birth))

    def dtp_service_date(
        self,
        service_date: date,
        date_format: ServiceDateFormat = ServiceDateFormat.SINGLE_DATE,
        end_date: Optional[date] = None,
    ) -> str:
        """Build DTP*291 segment in D8 or RD8 form."""
        if date_format == ServiceDateFormat.DATE_RANGE:
            value = f"{format_x12_date(service_date)}-{format_x12_date(end_date or service_date)}"
        else:
            value = format_x12_date(service_date)
        return self.segment("DTP", "291", date_format.value, value)

    def eq(self, service_type_code: str) -> str:
        """Build EQ segment."""
        return self.segment("EQ", service_type_code)

    def eq_all(self, service_type_codes: Sequence[str]) -> list[str]:
        """Build one EQ segment per service type code."""
        return [self.eq(code) for code in service_type_codes]


# =============================================================================
# Helpers
# =============================================================================


def pad_isa_id(value: str) -> str:
    """Right-pad (or truncate) an ISA06/ISA08 identifier to 15 characters."""
    return (value or "").strip()[:ISA_ID_WIDTH].ljust(ISA_ID_WIDTH)


def format_control_number(control_number: str) -> str:
    """Control numbers are 9-digit numeric strings."""
    return str(control_number).strip().zfill(9)[-9:]


def normalize_gender(gender: Optional[str]) -> Optional[str]:
    """Return M or F, or None for anything else."""
    if not gender:
        return None
    code = gender.strip().upper()[:1]
    return code if code in VALID_DMG_GENDERS else None


def clean_name(value: str) -> str:
    """Upper-case a name and strip X12 delimiter characters from it."""
    if not value:
        return ""
    for ch in ("*", "~", ":", "^"):
        value = value.replace(ch, " ")
    return " ".join(value.upper().split())
