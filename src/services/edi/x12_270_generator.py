"""
X12 270 Eligibility Inquiry Generator.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Assembles HIPAA 5010 compliant X12 270 eligibility inquiry transactions
from a patient query, a payer profile and a provider identity.
The HL hierarchy is fixed (payer -> provider -> subscriber); payer
capabilities decide member ID placement, DMG gender, DTP and EQ codes.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple
from enum import Enum
from uuid import uuid4
import logging

from src.services.edi.payer_profiles import (
    PayerProfile,
    PayerProfileLookup,
    ProviderIdentity,
    ProviderLookup,
    split_person_name,
)
from src.services.edi.segment_builder import (
    X12SegmentBuilder,
    format_control_number,
)
from src.services.edi.x12_base import validate_npi
from src.core.enums import EntityType
from src.utils.errors import InputValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class ServiceTypeCode(str, Enum):
    """X12 service type codes used in EQ/EB segments."""
    MEDICAL_CARE = "1"
    HEALTH_BENEFIT_PLAN_COVERAGE = "30"
    DENTAL = "35"
    HOSPITAL_INPATIENT = "48"
    HOSPITAL_OUTPATIENT = "50"
    EMERGENCY_SERVICES = "86"
    PHARMACY = "88"
    PROFESSIONAL_OFFICE_VISIT = "98"
    PSYCHIATRIC = "A4"
    PSYCHOTHERAPY = "A6"
    PSYCHIATRIC_OUTPATIENT = "A8"
    SUBSTANCE_ABUSE = "AI"
    MENTAL_HEALTH = "MH"
    URGENT_CARE = "UC"


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class PatientQuery:
    """Patient identity used to build one eligibility inquiry."""
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None  # M, F, U
    ssn: Optional[str] = None
    member_id: Optional[str] = None
    medicaid_id: Optional[str] = None
    group_number: Optional[str] = None
    service_date: Optional[date] = None  # Defaults to today (local)

    @property
    def subscriber_id(self) -> Optional[str]:
        """Member ID if present, else Medicaid ID."""
        for value in (self.member_id, self.medicaid_id):
            if value and value.strip():
                return value.strip()
        return None

    @property
    def ssn_digits(self) -> Optional[str]:
        """SSN with formatting removed, if it has 9 digits."""
        if not self.ssn:
            return None
        digits = "".join(ch for ch in self.ssn if ch.isdigit())
        return digits if len(digits) == 9 else None


@dataclass(frozen=True)
class EligibilityRequest:
    """
    One assembled X12 270 transaction.

    ``segments`` are unterminated; ``to_x12`` joins them with the segment
    terminator exactly once and appends a single trailing terminator.
    """
    control_number: str
    payer_id: str
    segments: Tuple[str, ...]
    sent_member_id: Optional[str] = None
    segment_terminator: str = "~"

    def to_x12(self) -> str:
        """Serialize the transaction."""
        return self.segment_terminator.join(self.segments) + self.segment_terminator

    @property
    def transaction_segment_count(self) -> int:
        """Number of segments from ST through SE inclusive."""
        ids = [s.split("*", 1)[0] for s in self.segments]
        return ids.index("SE") - ids.index("ST") + 1


# =============================================================================
# Generator
# =============================================================================


class X12270Generator:
    """
    X12 270 Eligibility Inquiry Generator.

    Usage:
        generator = X12270Generator(
            payer_lookup=InMemoryPayerProfileStore(),
            provider_lookup=InMemoryProviderStore(),
            sender_id="1161680",
            receiver_id="OFFALLY",
        )
        request = generator.generate_for(
            PatientQuery(first_name="Jeremy", last_name="Montoya",
                         date_of_birth=date(1984, 7, 17)),
            payer_id="UTMCD",
        )
        content = request.to_x12()
    """

    def __init__(
        self,
        payer_lookup: Optional[PayerProfileLookup] = None,
        provider_lookup: Optional[ProviderLookup] = None,
        sender_id: str = "1161680",
        receiver_id: str = "OFFALLY",
        sender_qualifier: str = "ZZ",
        receiver_qualifier: str = "01",
        usage_indicator: str = "P",
        builder: Optional[X12SegmentBuilder] = None,
        clock: Callable[[], datetime] = datetime.now,
        control_number_factory: Optional[Callable[[], str]] = None,
        segment_terminator: str = "~",
    ):
        self.payer_lookup = payer_lookup
        self.provider_lookup = provider_lookup
        self.sender_id = sender_id
        self.receiver_id = receiver_id
        self.sender_qualifier = sender_qualifier
        self.receiver_qualifier = receiver_qualifier
        self.usage_indicator = usage_indicator
        self.builder = builder or X12SegmentBuilder()
        self.clock = clock  # Local time, never UTC
        self.control_number_factory = control_number_factory or generate_control_number
        self.segment_term = segment_terminator

    def generate_for(self, query: PatientQuery, payer_id: str) -> EligibilityRequest:
        """
        Generate a 270 resolving payer and provider through the lookups.

        Raises:
            PayerProfileNotFoundError, ProviderNotFoundError
            InputValidationError: Resolved provider NPI fails the check digit
        """
        if self.payer_lookup is None or self.provider_lookup is None:
            raise ValueError("generate_for requires payer and provider lookups")
        payer = self.payer_lookup.get_payer(payer_id)
        provider = self.provider_lookup.get_provider_for_payer(payer)
        if not validate_npi(provider.npi):
            raise InputValidationError([f"Provider NPI {provider.npi!r} fails the Luhn check digit"])
        return self.generate(query, payer, provider)

    def generate(
        self,
        query: PatientQuery,
        payer: PayerProfile,
        provider: ProviderIdentity,
    ) -> EligibilityRequest:
        """
        Generate X12 270 eligibility inquiry.

        Args:
            query: Patient identity (validated by the caller)
            payer: Payer profile with X12 capabilities
            provider: Requesting provider

        Returns:
            EligibilityRequest with a single control number in ISA/GS/GE/IEA
        """
        b = self.builder
        now = self.clock()
        control = format_control_number(self.control_number_factory())
        service_date = query.service_date or now.date()

        segments: List[str] = []

        segments.append(b.isa(
            self.sender_id,
            self.receiver_id,
            control,
            now,
            sender_qualifier=self.sender_qualifier,
            receiver_qualifier=self.receiver_qualifier,
            usage_indicator=self.usage_indicator,
        ))
        segments.append(b.gs(self.sender_id, self.receiver_id, control, now))
        st_index = len(segments)
        segments.append(b.st())
        segments.append(b.bht(self._reference(provider, control), now))

        # Loop 2000A/2100A - Information Source (Payer)
        segments.append(b.hl("1", "", "20", True))
        segments.append(b.nm1("PR", EntityType.ORGANIZATION, payer.payer_name, id_qualifier="PI", id_code=payer.payer_id))

        # Loop 2000B/2100B - Information Receiver (Provider)
        segments.append(b.hl("2", "1", "21", True))
        segments.append(self._build_provider_nm1(provider))

        # Loop 2000C/2100C - Subscriber
        segments.append(b.hl("3", "2", "22", False))
        segments.append(b.trn(control, provider.npi))
        sent_member_id = self._subscriber_id(query, payer)
        segments.append(self._build_subscriber_nm1(query, payer))

        if query.date_of_birth:
            gender = query.gender if payer.requires_gender_in_demographics else None
            segments.append(b.dmg(query.date_of_birth, gender))

        if not payer.omits_service_date:
            segments.append(b.dtp_service_date(service_date, payer.service_date_format))

        # Loop 2110C - one EQ per requested service type
        segments.extend(b.eq_all(payer.service_type_codes or ("30",)))

        segment_count = len(segments) - st_index + 1  # ST..SE inclusive
        segments.append(b.se(segment_count))
        segments.append(b.ge(control))
        segments.append(b.iea(control))

        logger.debug(
            f"Generated 270 control={control} payer={payer.payer_id} segments={len(segments)}"
        )

        return EligibilityRequest(
            control_number=control,
            payer_id=payer.payer_id,
            segments=tuple(segments),
            sent_member_id=sent_member_id,
            segment_terminator=self.segment_term,
        )

    def _reference(self, provider: ProviderIdentity, control: str) -> str:
        """BHT03 reference: compact provider name plus control number."""
        prefix = "".join(ch for ch in provider.name.upper() if ch.isalnum())[:20]
        return f"{prefix}-{control}" if prefix else control

    def _build_provider_nm1(self, provider: ProviderIdentity) -> str:
        """Build the information receiver NM1."""
        entity_type = provider.resolved_entity_type
        if entity_type == EntityType.PERSON:
            last_name, first_name = split_person_name(provider.name)
            return self.builder.nm1("1P", entity_type, last_name, first_name, id_qualifier="XX", id_code=provider.npi)
        return self.builder.nm1("1P", entity_type, provider.name, id_qualifier="XX", id_code=provider.npi)

    def _subscriber_id(self, query: PatientQuery, payer: PayerProfile) -> Optional[str]:
        """Member ID actually sent in NM109, if any."""
        if not payer.supports_member_id_in_subscriber_segment:
            return None
        return query.subscriber_id

    def _build_subscriber_nm1(self, query: PatientQuery, payer: PayerProfile) -> str:
        """Build the subscriber NM1 honoring the payer's member ID capability."""
        id_qualifier, id_code = "", ""
        if payer.supports_member_id_in_subscriber_segment:
            if query.subscriber_id:
                id_qualifier, id_code = "MI", query.subscriber_id
            elif query.ssn_digits:
                id_qualifier, id_code = "SY", query.ssn_digits
        return self.builder.nm1(
            "IL",
            EntityType.PERSON,
            query.last_name,
            query.first_name,
            id_qualifier=id_qualifier,
            id_code=id_code,
        )


def generate_control_number() -> str:
    """
    Generate a 9-digit control number.

    Derived from uuid4; unique across concurrent checks.
    """
    return str(uuid4().int)[:9]
