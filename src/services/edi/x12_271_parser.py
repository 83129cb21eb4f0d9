"""
X12 271 Eligibility Response Parser.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Parses HIPAA 5010 compliant X12 271 eligibility response transactions.
Extracts eligibility status, coverage period, payer and patient
demographics, reference numbers, managed care (Loop 2120), primary care
provider, coordination of benefits and member ID validation.

A 999 acknowledgment returned in place of a 271 is detected and turned
into a format-error response; benefits are never extracted from it.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional
from enum import Enum
import logging

from src.core.enums import Severity
from src.services.edi.x12_base import (
    TransactionType,
    X12Loop,
    X12ParseError,
    X12Segment,
    X12Tokenizer,
    collect_loops,
    split_date_range,
    x12_date_to_iso,
)
from src.services.edi.x12_999_parser import FormatErrorDescriptor, X12999Parser, is_999

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class EligibilityStatus(str, Enum):
    """Eligibility or benefit information codes from EB01."""
    ACTIVE = "1"  # Active Coverage
    ACTIVE_FULL_RISK = "2"  # Active - Full Risk Capitation
    ACTIVE_SERVICES = "3"  # Active - Services Capitated
    ACTIVE_SERVICES_PRIMARY = "4"  # Active - Services Capitated Primary Care
    ACTIVE_PENDING = "5"  # Active - Pending Investigation
    INACTIVE = "6"  # Inactive
    INACTIVE_PENDING = "7"  # Inactive - Pending Eligibility Update
    INACTIVE_PENDING_INVESTIGATION = "8"  # Inactive - Pending Investigation
    COINSURANCE = "A"
    COPAYMENT = "B"
    DEDUCTIBLE = "C"
    BENEFIT_DESCRIPTION = "CB"
    COVERAGE_BASIS = "D"
    EXCLUSIONS = "E"
    LIMITATIONS = "F"
    OUT_OF_POCKET_STOP_LOSS = "G"
    UNLIMITED = "H"
    NON_COVERED = "I"
    COST_CONTAINMENT = "J"
    RESERVE = "K"
    PRIMARY_CARE_PROVIDER = "L"
    PRE_EXISTING_CONDITION = "M"
    SERVICES_RESTRICTED = "MC"
    MANAGED_CARE_COORDINATOR = "N"
    NOT_DEEMED_MEDICAL_NECESSITY = "O"
    BENEFIT_DISCLAIMER = "P"
    SECOND_SURGICAL_OPINION = "Q"
    OTHER_OR_ADDITIONAL_PAYOR = "R"
    PRIOR_YEAR_HISTORY = "S"
    CARD_REPORTED_LOST = "T"
    CONTACT_PAYER = "U"
    CANNOT_PROCESS = "V"
    RESERVED_NATIONAL = "W"
    HEALTH_CARE_FACILITY = "X"
    SPEND_DOWN = "Y"


class TimePeriod(str, Enum):
    """Time period qualifier from EB06."""
    HOUR = "1"
    DAY = "6"
    WEEK = "7"
    MONTH = "21"
    SERVICE_YEAR = "22"
    CALENDAR_YEAR = "23"
    YEAR_TO_DATE = "24"
    CONTRACT = "25"
    EPISODE = "26"
    VISIT = "27"
    OUTLIER = "28"
    REMAINING = "29"
    EXCEEDED = "30"
    NOT_EXCEEDED = "31"
    LIFETIME = "32"
    LIFETIME_REMAINING = "33"
    MONTH_TO_DATE = "34"
    ADMISSION = "36"


# Codes that mean the member has coverage. EB*V (cannot process) never does.
ACTIVE_COVERAGE_CODES = {"1", "2", "3", "A"}

MENTAL_HEALTH_SERVICE_TYPES = {"MH", "A4", "A5", "A6", "A7", "A8", "AI", "AJ", "AK"}
BEHAVIORAL_NAME_MARKERS = ("BEHAVIORAL", "MENTAL", "BHN")

LOOP_2120 = "2120"

REFERENCE_QUALIFIERS = {
    "3H": "case_number",
    "18": "account_number",
    "1L": "group_number",
    "Q4": "alternate_id",
    "6P": "policy_number",
    "SY": "ssn",
}

DATE_QUALIFIERS = {
    "346": "eligibility_begin",
    "356": "effective",
    "290": "termination",
    "295": "last_seen",
    "472": "inquiry",
}

RELATIONSHIP_CODES = {
    "01": "Spouse",
    "18": "Self",
    "19": "Child",
    "20": "Employee",
    "21": "Unknown",
    "39": "Organ Donor",
    "40": "Cadaver Donor",
    "53": "Life Partner",
    "G8": "Other Relationship",
}

AAA_REJECT_REASONS = {
    "42": "Unable to Respond at Current Time",
    "43": "Invalid or Missing Provider Identification",
    "44": "Invalid or Missing Provider Name",
    "45": "Invalid or Missing Provider Specialty",
    "46": "Invalid or Missing Provider Phone Number",
    "47": "Invalid or Missing Department of Transportation Number",
    "48": "Invalid or Missing Reference Identification",
    "51": "Additional Patient Information Required",
    "52": "Special Program Information Required",
    "53": "Requested Information Not Received",
    "54": "Primary Care Provider Not On File",
    "56": "Inappropriate Product/Service ID Qualifier",
    "57": "Inappropriate Diagnosis Code Qualifier",
    "58": "Invalid or Missing Diagnosis Code Qualifier",
    "60": "Date of Birth Follows Date of Service",
    "61": "Date of Death Precedes Date of Service",
    "62": "Date of Service Not Within Provider Plan Enrollment",
    "63": "Provider Not Primary",
    "64": "Concurrent Care Not Allowed",
    "65": "Inconsistent with Patient Gender",
    "71": "Patient Birth Date Mismatch",
    "72": "Invalid/Missing Subscriber/Insured ID",
    "73": "Invalid/Missing Subscriber/Insured Name",
    "74": "Invalid/Missing Subscriber/Insured Gender",
    "75": "Subscriber/Insured Not Found",
    "76": "Duplicate Subscriber/Insured ID Number",
    "77": "Subscriber/Insured Not in Group/Plan Identified",
    "78": "Patient Not Eligible",
    "79": "Invalid Participant Identification",
    "T4": "Payer Name or Identifier Missing",
    "T5": "Certification Information Missing",
    "T6": "Claim Does Not Match Prior Authorization",
}

AAA_FOLLOW_UP_ACTIONS = {
    "C": "Please Correct and Resubmit",
    "N": "Resubmission Not Allowed",
    "P": "Please Resubmit Original Transaction",
    "R": "Resubmission Allowed",
    "S": "Do Not Resubmit; Inquiry Initiated to a Third Party",
    "W": "Please Wait 30 Days and Resubmit",
    "X": "Please Wait 10 Days and Resubmit",
    "Y": "Do Not Resubmit; We Will Hand Deliver Our Response",
}


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class Address:
    """Street address from an N3/N4 pair."""
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None

    def __str__(self) -> str:
        locality = " ".join(p for p in (self.state, self.zip_code) if p)
        return ", ".join(p for p in (self.street, self.city, locality) if p)


@dataclass
class PatientName:
    """Subscriber name from NM1*IL."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    middle_name: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        parts = [p for p in (self.first_name, self.middle_name, self.last_name) if p]
        return " ".join(parts) or None


@dataclass
class PayerInfo:
    """Information source (Loop 2100A)."""
    name: Optional[str] = None
    payer_id: Optional[str] = None
    contact_phone: Optional[str] = None
    alternate_phone: Optional[str] = None


@dataclass
class CoveragePeriod:
    """Plan period from DTP*291; expiry is relative to the parse date."""
    start_date: Optional[str] = None  # YYYY-MM-DD
    end_date: Optional[str] = None  # YYYY-MM-DD
    is_active: Optional[bool] = None
    is_expired: Optional[bool] = None


@dataclass
class CoverageDates:
    """Other DTP dates of interest."""
    eligibility_begin: Optional[str] = None  # 346
    effective: Optional[str] = None  # 356
    termination: Optional[str] = None  # 290
    last_seen: Optional[str] = None  # 295
    inquiry: Optional[str] = None  # 472


@dataclass
class References:
    """REF identifiers for the subscriber."""
    case_number: Optional[str] = None
    account_number: Optional[str] = None
    group_number: Optional[str] = None
    policy_number: Optional[str] = None
    alternate_id: Optional[str] = None
    ssn: Optional[str] = None


@dataclass
class InsuredInfo:
    """INS relationship of the patient to the subscriber."""
    is_subscriber: Optional[bool] = None
    relationship_code: Optional[str] = None
    relationship: Optional[str] = None


@dataclass
class RelatedEntity:
    """One Loop 2120 benefit related entity (MCO, other payer, etc.)."""
    name: Optional[str] = None
    payer_id: Optional[str] = None
    entity_code: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    service_types: List[str] = field(default_factory=list)
    benefit_code: Optional[str] = None  # EB01 of the row the loop hangs off
    type: Optional[str] = None

    @property
    def is_other_payer(self) -> bool:
        return self.benefit_code == EligibilityStatus.OTHER_OR_ADDITIONAL_PAYOR.value


@dataclass
class PrimaryCareProvider:
    """NM1*P3 with its following N3/N4/PER."""
    last_name: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    npi: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None

    @property
    def name(self) -> str:
        return " ".join(p for p in (self.first_name, self.middle_name, self.last_name) if p)


@dataclass
class BenefitInfo:
    """Individual benefit/eligibility information from an EB segment."""
    code: str
    coverage_level: Optional[str] = None
    service_types: List[str] = field(default_factory=list)
    insurance_type: Optional[str] = None
    plan_description: Optional[str] = None
    time_period: Optional[str] = None
    monetary_amount: Optional[float] = None
    percent: Optional[float] = None
    quantity_qualifier: Optional[str] = None
    quantity: Optional[float] = None
    authorization_required: Optional[bool] = None
    in_plan_network: Optional[bool] = None
    messages: List[str] = field(default_factory=list)

    @property
    def is_active_coverage(self) -> bool:
        return self.code in ACTIVE_COVERAGE_CODES


@dataclass
class Rejection:
    """AAA request validation."""
    valid: bool
    code: Optional[str] = None
    description: Optional[str] = None
    follow_up_code: Optional[str] = None
    follow_up: Optional[str] = None


@dataclass
class ParseWarning:
    """A finding the caller must see before billing."""
    severity: Severity
    type: str
    message: str
    details: Optional[str] = None


@dataclass
class MemberIdValidation:
    """Comparison of the member ID sent with the one returned."""
    sent: Optional[str] = None
    returned: Optional[str] = None
    matches: Optional[bool] = None
    warnings: List[ParseWarning] = field(default_factory=list)


@dataclass
class OtherInsurance:
    """Coordination of benefits (EB*R)."""
    has_other_insurance: bool = False
    other_payers: List[RelatedEntity] = field(default_factory=list)


@dataclass
class FinancialInfo:
    """Patient cost-share figures derived from EB rows."""
    deductible_total: Optional[float] = None
    deductible_remaining: Optional[float] = None
    deductible_met: Optional[float] = None
    out_of_pocket_total: Optional[float] = None
    out_of_pocket_remaining: Optional[float] = None
    out_of_pocket_met: Optional[float] = None
    copays: Dict[str, float] = field(default_factory=dict)
    coinsurance: Dict[str, float] = field(default_factory=dict)
    in_network: bool = True  # Optimistic until an EB12 says N
    overrides_applied: List[str] = field(default_factory=list)


@dataclass
class EligibilityResponse:
    """Complete parsed 271 (or 999) response for one check."""
    transaction_type: str = TransactionType.ELIG_271.value
    control_number: Optional[str] = None
    trace_number: Optional[str] = None

    # Status
    enrolled: bool = False
    error: Optional[str] = None
    rejections: List[Rejection] = field(default_factory=list)
    format_errors: List[FormatErrorDescriptor] = field(default_factory=list)

    # Coverage
    coverage_period: CoveragePeriod = field(default_factory=CoveragePeriod)
    coverage_dates: CoverageDates = field(default_factory=CoverageDates)

    # Parties
    payer_info: PayerInfo = field(default_factory=PayerInfo)
    patient_name: PatientName = field(default_factory=PatientName)
    date_of_birth: Optional[str] = None  # YYYY-MM-DD
    gender: Optional[str] = None
    address: Optional[Address] = None
    phone: Optional[str] = None
    references: References = field(default_factory=References)
    insured: InsuredInfo = field(default_factory=InsuredInfo)

    # Managed care and COB
    related_entities: List[RelatedEntity] = field(default_factory=list)
    managed_care_org: Optional[RelatedEntity] = None
    primary_care_provider: Optional[PrimaryCareProvider] = None
    other_insurance: OtherInsurance = field(default_factory=OtherInsurance)

    # Benefits
    benefits: List[BenefitInfo] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    financial_info: FinancialInfo = field(default_factory=FinancialInfo)

    # Validation
    member_id_validation: MemberIdValidation = field(default_factory=MemberIdValidation)
    warnings: List[ParseWarning] = field(default_factory=list)

    # Classification (filled by the benefit interpreter)
    plan_type: Optional[str] = None
    program: Optional[str] = None
    is_managed_care: bool = False
    requires_network_check: bool = False

    raw_x12: str = ""

    @property
    def is_format_error(self) -> bool:
        return self.transaction_type == TransactionType.ACK_999.value

    @property
    def is_rejected(self) -> bool:
        return any(not r.valid for r in self.rejections)

    @property
    def critical_warnings(self) -> List[ParseWarning]:
        return [w for w in self.warnings if w.severity == Severity.CRITICAL]


# =============================================================================
# Parser
# =============================================================================


@dataclass
class _ParseState:
    """Per-parse cursor: which entity owns the next N3/N4/PER."""
    context: Optional[str] = None
    pending_street: Optional[str] = None
    last_benefit: Optional[BenefitInfo] = None
    payer_phones: List[str] = field(default_factory=list)
    coverage_seen: bool = False


class X12271Parser:
    """
    X12 271 Eligibility Response Parser.

    The parser is stateless between calls; ``today`` pins the date used
    for coverage expiry (local date when omitted).

    Usage:
        parser = X12271Parser()
        response = parser.parse(x12_content, sent_member_id="0123456789")
        if response.enrolled:
            print(response.coverage_period.end_date)
    """

    def __init__(self, today: Optional[date] = None):
        self.today = today
        self._handlers: Dict[str, Callable[[X12Segment, EligibilityResponse, _ParseState], None]] = {
            "ISA": self._parse_isa,
            "TRN": self._parse_trn,
            "HL": self._parse_hl,
            "NM1": self._parse_nm1,
            "N3": self._parse_n3,
            "N4": self._parse_n4,
            "PER": self._parse_per,
            "REF": self._parse_ref,
            "DMG": self._parse_dmg,
            "INS": self._parse_ins,
            "DTP": self._parse_dtp,
            "EB": self._parse_eb,
            "MSG": self._parse_msg,
            "AAA": self._parse_aaa,
        }

    def parse(self, content: str, sent_member_id: Optional[str] = None) -> EligibilityResponse:
        """
        Parse X12 271 eligibility response.

        Args:
            content: Raw X12 271 (or 999) content
            sent_member_id: Member ID sent in the 270, if any

        Returns:
            EligibilityResponse

        Raises:
            X12ParseError: Content is empty, not X12, or not a 271/999
        """
        if not content or not content.strip():
            raise X12ParseError("Empty content provided")

        content = content.strip()
        if not content.startswith("ISA"):
            raise X12ParseError("Invalid X12 content: must start with ISA segment")

        tokenizer = X12Tokenizer()
        segments = tokenizer.tokenize(content)
        if not segments:
            raise X12ParseError("Invalid X12 content: no segments parsed")

        response = EligibilityResponse(raw_x12=content)
        response.member_id_validation.sent = (sent_member_id or "").strip() or None

        if is_999(segments):
            return self._format_error_response(segments, response)

        transaction_type, _ = tokenizer.get_transaction_type(segments)
        if transaction_type != TransactionType.ELIG_271:
            raise X12ParseError(
                f"Expected a 271 response, got {transaction_type.value}",
                segment_id="ST",
            )

        loops = collect_loops(segments, LOOP_2120)
        state = _ParseState()

        for segment in segments:
            if segment.segment_id == "LS":
                state.context = None
                continue
            if any(loop.contains(segment.position) for loop in loops):
                continue  # Loop 2120 content is read per loop below
            handler = self._handlers.get(segment.segment_id)
            if handler:
                handler(segment, response, state)

        if state.payer_phones:
            response.payer_info.contact_phone = state.payer_phones[0]
            if len(state.payer_phones) > 1:
                response.payer_info.alternate_phone = state.payer_phones[1]

        for loop in loops:
            nm1 = loop.find_segment("NM1")
            if nm1 is not None and nm1.get_element(0) == "P3":
                if response.primary_care_provider is None:
                    response.primary_care_provider = self._primary_care_provider(loop)
            else:
                response.related_entities.append(self._related_entity(loop))
        response.managed_care_org = select_managed_care_org(response.related_entities)
        self._apply_other_insurance(response)
        self._apply_coverage_expiry(response)
        self._validate_member_id(response)
        self._determine_enrollment(response)

        logger.debug(
            f"Parsed 271 control={response.control_number} enrolled={response.enrolled} "
            f"benefits={len(response.benefits)} loops={len(loops)}"
        )
        return response

    # -------------------------------------------------------------------------
    # 999
    # -------------------------------------------------------------------------

    def _format_error_response(
        self, segments: List[X12Segment], response: EligibilityResponse
    ) -> EligibilityResponse:
        response.transaction_type = TransactionType.ACK_999.value
        for segment in segments:
            if segment.segment_id == "ISA":
                self._parse_isa(segment, response, _ParseState())
                break
        response.format_errors = X12999Parser().parse(segments)
        response.enrolled = False
        response.error = "Request rejected with 999 acknowledgment (X12 format error)"
        logger.info(f"999 received with {len(response.format_errors)} descriptor(s)")
        return response

    # -------------------------------------------------------------------------
    # Segment handlers
    # -------------------------------------------------------------------------

    def _parse_isa(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        response.control_number = seg.get_element(12).strip() or None  # ISA13

    def _parse_trn(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        if response.trace_number is None:
            response.trace_number = seg.get_element(1) or None  # TRN02

    def _parse_hl(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        state.context = None
        state.pending_street = None

    def _parse_nm1(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        """Parse NM1; the entity code becomes the owner of following N3/N4/PER."""
        entity_code = seg.get_element(0)  # NM101
        state.context = entity_code
        state.pending_street = None

        if entity_code == "IL":
            response.patient_name = PatientName(
                last_name=seg.get_element(2) or None,  # NM103
                first_name=seg.get_element(3) or None,  # NM104
                middle_name=seg.get_element(4) or None,  # NM105
            )
            member_id = seg.get_element(8).strip()  # NM109
            if member_id:
                response.member_id_validation.returned = member_id
        elif entity_code == "PR":
            if response.payer_info.name is None:
                response.payer_info.name = seg.get_element(2) or None
                response.payer_info.payer_id = seg.get_element(8) or None
        elif entity_code == "P3":
            response.primary_care_provider = PrimaryCareProvider(
                last_name=seg.get_element(2) or None,
                first_name=seg.get_element(3) or None,
                middle_name=seg.get_element(4) or None,
                npi=seg.get_element(8) or None,
            )

    def _parse_n3(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        state.pending_street = street_lines(seg)

    def _parse_n4(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        address = Address(
            street=state.pending_street,
            city=seg.get_element(0) or None,
            state=seg.get_element(1) or None,
            zip_code=seg.get_element(2) or None,
        )
        state.pending_street = None

        if state.context == "IL" and response.address is None:
            response.address = address
        elif state.context == "P3" and response.primary_care_provider:
            response.primary_care_provider.address = str(address) or None

    def _parse_per(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        phone = extract_phone(seg)
        if not phone:
            return
        if state.context == "P3" and response.primary_care_provider:
            if response.primary_care_provider.phone is None:
                response.primary_care_provider.phone = phone
        elif state.context == "IL":
            response.phone = response.phone or phone
        else:
            state.payer_phones.append(phone)

    def _parse_ref(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        attr = REFERENCE_QUALIFIERS.get(seg.get_element(0))  # REF01
        value = seg.get_element(1).strip()  # REF02
        if attr and value and getattr(response.references, attr) is None:
            setattr(response.references, attr, value)

    def _parse_dmg(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        if seg.get_element(0) == "D8":
            response.date_of_birth = x12_date_to_iso(seg.get_element(1))
        gender = seg.get_element(2).upper()
        if gender in ("M", "F", "U"):
            response.gender = gender

    def _parse_ins(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        indicator = seg.get_element(0)  # INS01 Y=subscriber
        code = seg.get_element(1)  # INS02
        response.insured = InsuredInfo(
            is_subscriber=indicator == "Y" if indicator in ("Y", "N") else None,
            relationship_code=code or None,
            relationship=RELATIONSHIP_CODES.get(code, "Unknown" if code else None),
        )

    def _parse_dtp(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        qualifier = seg.get_element(0)  # DTP01
        format_code = seg.get_element(1)  # DTP02
        value = seg.get_element(2)  # DTP03

        if qualifier == "291":
            if state.coverage_seen:
                return
            if format_code == "RD8":
                start, end = split_date_range(value)
            elif format_code == "D8":
                start, end = x12_date_to_iso(value), None
            else:
                return
            response.coverage_period.start_date = start
            response.coverage_period.end_date = end
            state.coverage_seen = True
            return

        attr = DATE_QUALIFIERS.get(qualifier)
        if attr is None:
            return
        if format_code == "RD8":
            iso, _ = split_date_range(value)
        else:
            iso = x12_date_to_iso(value)
        if iso and getattr(response.coverage_dates, attr) is None:
            setattr(response.coverage_dates, attr, iso)

    def _parse_eb(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        """Parse EB segment (EB01 code, EB03 repeatable service types)."""
        in_network = seg.get_element(11)  # EB12
        authorization = seg.get_element(10)  # EB11
        benefit = BenefitInfo(
            code=seg.get_element(0),
            coverage_level=seg.get_element(1) or None,
            service_types=[s for s in seg.get_element(2).split("^") if s],
            insurance_type=seg.get_element(3) or None,
            plan_description=seg.get_element(4) or None,
            time_period=seg.get_element(5) or None,
            monetary_amount=seg.get_element_float(6),
            percent=seg.get_element_float(7),
            quantity_qualifier=seg.get_element(8) or None,
            quantity=seg.get_element_float(9),
            authorization_required=authorization == "Y" if authorization in ("Y", "N") else None,
            in_plan_network=in_network == "Y" if in_network in ("Y", "N") else None,
        )
        response.benefits.append(benefit)
        state.last_benefit = benefit
        state.context = None
        state.pending_street = None

    def _parse_msg(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        message = seg.get_element(0)
        if not message:
            return
        response.messages.append(message)
        if state.last_benefit is not None:
            state.last_benefit.messages.append(message)

    def _parse_aaa(self, seg: X12Segment, response: EligibilityResponse, state: _ParseState) -> None:
        valid = seg.get_element(0) != "N"  # AAA01
        code = seg.get_element(2)  # AAA03
        follow_up = seg.get_element(3)  # AAA04
        response.rejections.append(
            Rejection(
                valid=valid,
                code=code or None,
                description=AAA_REJECT_REASONS.get(code, f"Reject reason {code}" if code else None),
                follow_up_code=follow_up or None,
                follow_up=AAA_FOLLOW_UP_ACTIONS.get(follow_up),
            )
        )

    # -------------------------------------------------------------------------
    # Loop 2120
    # -------------------------------------------------------------------------

    def _related_entity(self, loop: X12Loop) -> RelatedEntity:
        entity = RelatedEntity()
        nm1 = loop.find_segment("NM1")
        if nm1:
            entity.entity_code = nm1.get_element(0) or None
            entity.name = nm1.get_element(2) or None
            entity.payer_id = nm1.get_element(8) or None

        entity.address = str(loop_address(loop)) or None

        for per in loop.find_segments("PER"):
            entity.phone = extract_phone(per)
            if entity.phone:
                break

        if loop.preceding is not None and loop.preceding.segment_id == "EB":
            entity.benefit_code = loop.preceding.get_element(0) or None
            entity.service_types = [s for s in loop.preceding.get_element(2).split("^") if s]

        if entity.name:
            entity.type = classify_entity_type(entity.name)
        return entity

    def _primary_care_provider(self, loop: X12Loop) -> PrimaryCareProvider:
        """PCP reported as its own Loop 2120 (NM1*P3)."""
        nm1 = loop.find_segment("NM1")
        pcp = PrimaryCareProvider(
            last_name=nm1.get_element(2) or None,
            first_name=nm1.get_element(3) or None,
            middle_name=nm1.get_element(4) or None,
            npi=nm1.get_element(8) or None,
        )
        pcp.address = str(loop_address(loop)) or None
        for per in loop.find_segments("PER"):
            pcp.phone = extract_phone(per)
            if pcp.phone:
                break
        return pcp

    # -------------------------------------------------------------------------
    # Derived fields
    # -------------------------------------------------------------------------

    def _apply_other_insurance(self, response: EligibilityResponse) -> None:
        if not any(b.code == EligibilityStatus.OTHER_OR_ADDITIONAL_PAYOR.value for b in response.benefits):
            return
        response.other_insurance.has_other_insurance = True
        named = [e for e in response.related_entities if e.name]
        attached = [e for e in named if e.is_other_payer]
        response.other_insurance.other_payers = attached or [
            e for e in named if e is not response.managed_care_org
        ]

    def _apply_coverage_expiry(self, response: EligibilityResponse) -> None:
        period = response.coverage_period
        if period.start_date is None:
            period.start_date = response.coverage_dates.effective
        if not period.end_date:
            return

        today = self.today or date.today()
        today_iso = today.isoformat()
        period.is_expired = period.end_date < today_iso
        period.is_active = not period.is_expired

        if period.is_expired:
            try:
                duration = describe_elapsed(date.fromisoformat(period.end_date), today)
            except ValueError:
                duration = "an unknown period"
            response.warnings.append(
                ParseWarning(
                    severity=Severity.CRITICAL,
                    type="COVERAGE_EXPIRED",
                    message=f"Coverage has EXPIRED. Last active date was {period.end_date}",
                    details=(
                        f"This coverage ended {duration} ago "
                        f"({period.start_date or 'unknown'} to {period.end_date}). "
                        "The payer returned historical eligibility, not current coverage."
                    ),
                )
            )

    def _validate_member_id(self, response: EligibilityResponse) -> None:
        validation = response.member_id_validation
        if not validation.sent:
            return

        if validation.returned:
            sent = validation.sent.strip().upper()
            returned = validation.returned.strip().upper()
            validation.matches = sent == returned
            if not validation.matches:
                validation.warnings.append(
                    ParseWarning(
                        severity=Severity.CRITICAL,
                        type="MEMBER_ID_MISMATCH",
                        message=f"Member ID mismatch: sent {sent}, payer returned {returned}",
                        details=(
                            "The patient may have coverage under a different member ID, "
                            "the wrong payer may be selected, or the payer cross-referenced "
                            "another record."
                        ),
                    )
                )
        else:
            validation.warnings.append(
                ParseWarning(
                    severity=Severity.WARNING,
                    type="NO_MEMBER_ID_RETURNED",
                    message="Payer did not return a member ID in the response",
                    details=f"Sent member ID {validation.sent} could not be confirmed.",
                )
            )
        response.warnings.extend(validation.warnings)

    def _determine_enrollment(self, response: EligibilityResponse) -> None:
        """
        Rejection first, then active coverage.

        A rejecting AAA makes the patient not enrolled whatever EB rows came
        with it. Otherwise EB*V rows are ignored and any remaining row with
        an active coverage code means enrolled.
        """
        rejected = [r for r in response.rejections if not r.valid]
        if rejected:
            response.enrolled = False
            response.error = (
                " ".join(response.messages)
                or rejected[0].description
                or "Eligibility request rejected by payer"
            )
            return

        considered = [b for b in response.benefits if b.code != EligibilityStatus.CANNOT_PROCESS.value]
        response.enrolled = any(b.is_active_coverage for b in considered)
        if not response.enrolled and response.benefits and not considered:
            response.error = " ".join(response.messages) or "Payer could not process the request"


# =============================================================================
# Helpers
# =============================================================================


def street_lines(n3: X12Segment) -> Optional[str]:
    """N301 and N302 joined with a space."""
    return " ".join(p for p in (n3.get_element(0), n3.get_element(1)) if p) or None


def loop_address(loop: X12Loop) -> Address:
    """Address from the first N3/N4 inside a Loop 2120."""
    address = Address()
    n3 = loop.find_segment("N3")
    if n3:
        address.street = street_lines(n3)
    n4 = loop.find_segment("N4")
    if n4:
        address.city = n4.get_element(0) or None
        address.state = n4.get_element(1) or None
        address.zip_code = n4.get_element(2) or None
    return address


def extract_phone(seg: X12Segment) -> Optional[str]:
    """First 10-digit TE number in any PER qualifier/value pair."""
    for index in (2, 4, 6):
        if seg.get_element(index) == "TE":
            digits = "".join(ch for ch in seg.get_element(index + 1) if ch.isdigit())
            if len(digits) == 10:
                return digits
    return None


def classify_entity_type(name: str) -> str:
    """Kind of managed-care entity, by name."""
    lowered = name.lower()
    if "behavioral" in lowered or "mental" in lowered or "bhn" in lowered:
        return "Behavioral Health"
    if "dental" in lowered:
        return "Dental"
    if "vision" in lowered:
        return "Vision"
    if "transport" in lowered or "modivcare" in lowered:
        return "Transportation"
    return "Medical"


def select_managed_care_org(entities: List[RelatedEntity]) -> Optional[RelatedEntity]:
    """
    Pick the MCO among the Loop 2120 entities.

    Prefers an entity attached to a mental-health EB row or with a
    behavioral name; otherwise the first named entity. Entities hanging
    off an EB*R row are other payers, never the MCO.
    """
    named = [e for e in entities if e.name and not e.is_other_payer]
    for entity in named:
        if MENTAL_HEALTH_SERVICE_TYPES.intersection(entity.service_types):
            return entity
        if any(marker in entity.name.upper() for marker in BEHAVIORAL_NAME_MARKERS):
            return entity
    return named[0] if named else None


def describe_elapsed(since: date, today: date) -> str:
    """Human-readable span, e.g. '1 year and 2 months', '3 months', '5 days'."""
    days = (today - since).days
    months = days // 30
    years = days // 365

    def plural(n: int, unit: str) -> str:
        return f"{n} {unit}{'' if n == 1 else 's'}"

    if years > 0:
        return f"{plural(years, 'year')} and {plural(months % 12, 'month')}"
    if months > 0:
        return plural(months, "month")
    return plural(days, "day")
