"""
Unit Tests for X12 271 and 999 Parsing.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Tests:
- Enrollment precedence (AAA, EB*V, active EB codes)
- Demographics, references and dates
- Coverage expiry relative to a pinned date
- Loop 2120 managed care, PCP and coordination of benefits
- Member ID validation
- 999 acknowledgments
"""

from datetime import date

import pytest

from src.core.enums import Severity
from src.services.edi.x12_999_parser import (
    FormatErrorKind,
    X12999Parser,
    is_999,
)
from src.services.edi.x12_271_parser import (
    RelatedEntity,
    X12271Parser,
    classify_entity_type,
    describe_elapsed,
    extract_phone,
    select_managed_care_org,
    street_lines,
)
from src.services.edi.x12_base import X12ParseError, X12Segment


TODAY = date(2026, 10, 19)

ISA_271 = "ISA*00*          *00*          *01*OFFALLY        *ZZ*1161680        *261019*0930*^*00501*123456789*0*P*:~"
GS_271 = "GS*HB*OFFALLY*1161680*20261019*0930*123456789*X*005010X279A1~"
TRAILER = "GE*1*123456789~IEA*1*123456789~"


def build_271(*body: str) -> str:
    """Wrap body segments (without terminators) in a 271 envelope."""
    segments = ["ST*271*0001*005010X279A1", "BHT*0022*11*MOONLITPLLC-123456789*20261019*0930"]
    segments.extend(body)
    segments.append(f"SE*{len(segments) + 1}*0001")
    return ISA_271 + GS_271 + "~".join(segments) + "~" + TRAILER


PAYER_AND_PROVIDER = (
    "HL*1**20*1",
    "NM1*PR*2*UTAH MEDICAID*****PI*UTMCD",
    "PER*IC**TE*8015386155*UR*MEDICAID.UTAH.GOV",
    "HL*2*1*21*1",
    "NM1*1P*2*MOONLIT PLLC*****XX*1275348807",
    "HL*3*2*22*0",
    "TRN*2*123456789*1275348807",
)


SAMPLE_271_MEDICAID_FFS = build_271(
    *PAYER_AND_PROVIDER,
    "NM1*IL*1*MONTOYA*JEREMY*A***MI*0900412827",
    "REF*3H*7788990",
    "REF*SY*123456789",
    "N3*123 MAIN STREET*APT 4",
    "N4*SALT LAKE CITY*UT*84101",
    "PER*IC**TE*8015550100",
    "DMG*D8*19840717*M",
    "INS*Y*18*001*25",
    "DTP*291*RD8*20260101-20261231",
    "DTP*346*D8*20240101",
    "EB*1*IND*30*MC*TARGETED ADULT MEDICAID",
    "MSG*TARGETED ADULT MEDICAID",
    "EB*1*IND*MH*MC*MENTAL HEALTH",
)

SAMPLE_271_MANAGED_CARE_WITH_PCP = build_271(
    *PAYER_AND_PROVIDER,
    "NM1*IL*1*SILVER*TELLA****MI*7654321098",
    "N3*456 STATE ST",
    "N4*PROVO*UT*84601",
    "DMG*D8*20010603*F",
    "DTP*291*RD8*20260101-20261231",
    "EB*1*IND*30**MEDICAID UTAH",
    "EB*1*IND*MH*HM*BEHAVIORAL HEALTH",
    "LS*2120",
    "NM1*PR*2*UUHP HMHI BEHAVIORAL HEALTH*****PI*HMHI-BHN",
    "N3*1275 PEACHTREE ST NE STE 600",
    "N4*ATLANTA*GA*30309",
    "PER*IC**TE*8004867647",
    "LE*2120",
    "LS*2120",
    "NM1*P3*1*COY*ALLIE*ELIZABETH***XX*1548754971",
    "N3*555 FOOTHILL DRIVE",
    "N4*SALT LAKE CITY*UT*84112",
    "PER*IC**TE*8015812121",
    "LE*2120",
)

SAMPLE_271_EXPIRED = build_271(
    *PAYER_AND_PROVIDER,
    "NM1*IL*1*DOE*JANE****MI*0900000001",
    "DMG*D8*19900520*F",
    "DTP*291*RD8*20250101-20250630",
    "EB*1*IND*30*MC*MEDICAID",
)

SAMPLE_271_AAA_WITH_ACTIVE_EB = build_271(
    *PAYER_AND_PROVIDER,
    "NM1*IL*1*DOE*JOHN",
    "AAA*N**75*C",
    "EB*1*IND*30",
    "MSG*SUBSCRIBER NOT FOUND",
)

SAMPLE_271_CANNOT_PROCESS = build_271(
    *PAYER_AND_PROVIDER,
    "NM1*IL*1*DOE*JOHN",
    "EB*V*IND*30",
    "MSG*UNABLE TO PROCESS INQUIRY",
)

SAMPLE_271_V_THEN_ACTIVE = build_271(
    *PAYER_AND_PROVIDER,
    "NM1*IL*1*DOE*JOHN****MI*ABC123",
    "EB*V*IND*30",
    "EB*1*IND*30*HM*COMMERCIAL HMO",
)

SAMPLE_271_INACTIVE = build_271(
    *PAYER_AND_PROVIDER,
    "NM1*IL*1*SMITH*JANE****MI*MEM789",
    "EB*6*IND*30**COVERAGE TERMINATED",
)

SAMPLE_271_COB = build_271(
    "HL*1**20*1",
    "NM1*PR*2*AETNA HEALTHCARE*****PI*60054",
    "HL*2*1*21*1",
    "NM1*1P*1*NORSETH*TRAVIS****XX*1124778121",
    "HL*3*2*22*0",
    "TRN*2*555*1124778121",
    "NM1*IL*1*HOPKINS*ELEANOR****MI*W99999999",
    "DMG*D8*19830515*F",
    "DTP*291*RD8*20260101-20261231",
    "EB*1*IND*30**AETNA SELECT",
    "EB*R*IND*30*MA*MEDICARE PART A",
    "LS*2120",
    "NM1*PR*2*MEDICARE*****PI*CMS",
    "LE*2120",
)

SAMPLE_999_REJECTED = (
    "ISA*00*          *00*          *01*OFFALLY        *ZZ*1161680        *261019*0930*^*00501*000000777*0*P*:~"
    "GS*FA*OFFALLY*1161680*20261019*0930*777*X*005010X231A1~"
    "ST*999*0001*005010X231A1~"
    "AK1*HS*123456789*005010X279A1~"
    "AK2*270*0001*005010X279A1~"
    "IK3*DTP*12*2100C*8~"
    "IK4*3*1251*8*20261399~"
    "IK5*R*5~"
    "AK9*R*1*1*0~"
    "SE*8*0001~"
    "GE*1*777~"
    "IEA*1*000000777~"
)

SAMPLE_999_ACCEPTED = (
    "ISA*00*          *00*          *01*OFFALLY        *ZZ*1161680        *261019*0930*^*00501*000000778*0*P*:~"
    "GS*FA*OFFALLY*1161680*20261019*0930*778*X*005010X231A1~"
    "ST*999*0001*005010X231A1~"
    "AK1*HS*1*005010X279A1~"
    "AK2*270*0001*005010X279A1~"
    "IK5*A~"
    "AK9*A*1*1*1~"
    "SE*6*0001~"
    "GE*1*778~"
    "IEA*1*000000778~"
)


@pytest.fixture
def parser() -> X12271Parser:
    return X12271Parser(today=TODAY)


# =============================================================================
# Input Handling
# =============================================================================


class TestParserInput:
    """Test rejected inputs."""

    @pytest.mark.parametrize("content", ["", "   ", "GS*HB*X~"])
    def test_invalid_content_raises(self, parser, content):
        with pytest.raises(X12ParseError):
            parser.parse(content)

    def test_non_271_transaction_raises(self, parser):
        content = ISA_271 + GS_271 + "ST*270*0001*005010X279A1~SE*2*0001~" + TRAILER
        with pytest.raises(X12ParseError):
            parser.parse(content)


# =============================================================================
# Enrollment
# =============================================================================


class TestEnrollment:
    """Test enrollment determination."""

    def test_active_medicaid(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)
        assert response.enrolled is True
        assert response.error is None
        assert response.transaction_type == "271"

    def test_aaa_rejection_overrides_active_eb(self, parser):
        """A rejecting AAA wins even when an active EB row is present."""
        response = parser.parse(SAMPLE_271_AAA_WITH_ACTIVE_EB)

        assert response.enrolled is False
        assert response.is_rejected is True
        rejection = response.rejections[0]
        assert rejection.code == "75"
        assert rejection.description == "Subscriber/Insured Not Found"
        assert rejection.follow_up == "Please Correct and Resubmit"
        assert response.error == "SUBSCRIBER NOT FOUND"

    def test_cannot_process_is_not_enrollment(self, parser):
        response = parser.parse(SAMPLE_271_CANNOT_PROCESS)
        assert response.enrolled is False
        assert response.error == "UNABLE TO PROCESS INQUIRY"

    def test_cannot_process_rows_excluded_not_fatal(self, parser):
        """EB*V rows are ignored; another active row still means enrolled."""
        response = parser.parse(SAMPLE_271_V_THEN_ACTIVE)
        assert response.enrolled is True

    def test_inactive_code(self, parser):
        response = parser.parse(SAMPLE_271_INACTIVE)
        assert response.enrolled is False
        assert response.benefits[0].code == "6"

    def test_parse_is_idempotent(self, parser):
        first = parser.parse(SAMPLE_271_MANAGED_CARE_WITH_PCP)
        second = parser.parse(SAMPLE_271_MANAGED_CARE_WITH_PCP)
        assert first == second


# =============================================================================
# Demographics and References
# =============================================================================


class TestDemographics:
    """Test patient, payer and reference extraction."""

    def test_patient_fields(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)

        assert response.patient_name.first_name == "JEREMY"
        assert response.patient_name.last_name == "MONTOYA"
        assert response.patient_name.full_name == "JEREMY A MONTOYA"
        assert response.date_of_birth == "1984-07-17"
        assert response.gender == "M"
        assert response.phone == "8015550100"
        assert str(response.address) == "123 MAIN STREET APT 4, SALT LAKE CITY, UT 84101"

    def test_payer_fields(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)
        assert response.payer_info.name == "UTAH MEDICAID"
        assert response.payer_info.payer_id == "UTMCD"
        assert response.payer_info.contact_phone == "8015386155"

    def test_references_and_relationship(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)
        assert response.references.case_number == "7788990"
        assert response.references.ssn == "123456789"
        assert response.insured.is_subscriber is True
        assert response.insured.relationship == "Self"

    def test_envelope_identifiers(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)
        assert response.control_number == "123456789"
        assert response.trace_number == "123456789"

    def test_dates(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)
        assert response.coverage_period.start_date == "2026-01-01"
        assert response.coverage_period.end_date == "2026-12-31"
        assert response.coverage_dates.eligibility_begin == "2024-01-01"

    def test_benefits_and_messages(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)
        assert [b.service_types for b in response.benefits] == [["30"], ["MH"]]
        assert response.benefits[0].insurance_type == "MC"
        assert response.benefits[0].plan_description == "TARGETED ADULT MEDICAID"
        assert response.benefits[0].messages == ["TARGETED ADULT MEDICAID"]
        assert response.messages == ["TARGETED ADULT MEDICAID"]


# =============================================================================
# Coverage Expiry
# =============================================================================


class TestCoverageExpiry:
    """Test expiry relative to the pinned date."""

    def test_active_period(self, parser):
        period = parser.parse(SAMPLE_271_MEDICAID_FFS).coverage_period
        assert period.is_active is True
        assert period.is_expired is False

    def test_expired_period_adds_critical_warning(self, parser):
        response = parser.parse(SAMPLE_271_EXPIRED)

        assert response.coverage_period.is_expired is True
        warning = next(w for w in response.warnings if w.type == "COVERAGE_EXPIRED")
        assert warning.severity == Severity.CRITICAL
        assert "2025-06-30" in warning.message
        assert "3 months" in warning.details

    def test_expiry_boundary(self):
        """Coverage ending today is still active; ending yesterday is expired."""
        on_last_day = X12271Parser(today=date(2025, 6, 30)).parse(SAMPLE_271_EXPIRED)
        assert on_last_day.coverage_period.is_expired is False

        day_after = X12271Parser(today=date(2025, 7, 1)).parse(SAMPLE_271_EXPIRED)
        assert day_after.coverage_period.is_expired is True

    def test_effective_date_is_fallback_start(self, parser):
        content = build_271(
            *PAYER_AND_PROVIDER,
            "NM1*IL*1*DOE*JANE",
            "DTP*356*D8*20260301",
            "EB*1*IND*30",
        )
        period = parser.parse(content).coverage_period
        assert period.start_date == "2026-03-01"
        assert period.end_date is None

    def test_no_period_leaves_flags_unset(self, parser):
        period = parser.parse(SAMPLE_271_INACTIVE).coverage_period
        assert period.is_expired is None
        assert period.is_active is None


# =============================================================================
# Managed Care, PCP and COB
# =============================================================================


class TestManagedCare:
    """Test Loop 2120 entities."""

    def test_related_entity_extracted(self, parser):
        response = parser.parse(SAMPLE_271_MANAGED_CARE_WITH_PCP)

        assert len(response.related_entities) == 1
        entity = response.related_entities[0]
        assert entity.name == "UUHP HMHI BEHAVIORAL HEALTH"
        assert entity.payer_id == "HMHI-BHN"
        assert entity.phone == "8004867647"
        assert entity.address == "1275 PEACHTREE ST NE STE 600, ATLANTA, GA 30309"
        assert entity.service_types == ["MH"]
        assert entity.type == "Behavioral Health"

    def test_managed_care_org_selected(self, parser):
        response = parser.parse(SAMPLE_271_MANAGED_CARE_WITH_PCP)
        assert response.managed_care_org is not None
        assert response.managed_care_org.name == "UUHP HMHI BEHAVIORAL HEALTH"

    def test_pcp_loop_becomes_primary_care_provider(self, parser):
        response = parser.parse(SAMPLE_271_MANAGED_CARE_WITH_PCP)

        pcp = response.primary_care_provider
        assert pcp is not None
        assert pcp.name == "ALLIE ELIZABETH COY"
        assert pcp.npi == "1548754971"
        assert pcp.phone == "8015812121"
        assert pcp.address == "555 FOOTHILL DRIVE, SALT LAKE CITY, UT 84112"

    def test_loop_address_joins_both_street_lines(self, parser):
        content = build_271(
            *PAYER_AND_PROVIDER,
            "NM1*IL*1*SILVER*TELLA****MI*7654321098",
            "EB*1*IND*30**MEDICAID UTAH",
            "LS*2120",
            "NM1*PR*2*MOLINA HEALTHCARE OF UTAH*****PI*SX109",
            "N3*7050 UNION PARK CENTER*SUITE 200",
            "N4*MIDVALE*UT*84047",
            "LE*2120",
            "LS*2120",
            "NM1*P3*1*COY*ALLIE****XX*1548754971",
            "N3*555 FOOTHILL DRIVE*BLDG 2",
            "N4*SALT LAKE CITY*UT*84112",
            "LE*2120",
        )

        response = parser.parse(content)

        assert response.related_entities[0].address == "7050 UNION PARK CENTER SUITE 200, MIDVALE, UT 84047"
        assert response.primary_care_provider.address == "555 FOOTHILL DRIVE BLDG 2, SALT LAKE CITY, UT 84112"

    def test_loop_segments_do_not_leak_into_patient(self, parser):
        """N3/N4 inside Loop 2120 never overwrite the subscriber address."""
        response = parser.parse(SAMPLE_271_MANAGED_CARE_WITH_PCP)
        assert response.address.street == "456 STATE ST"
        assert response.payer_info.name == "UTAH MEDICAID"

    def test_other_insurance(self, parser):
        response = parser.parse(SAMPLE_271_COB)

        assert response.other_insurance.has_other_insurance is True
        assert [p.name for p in response.other_insurance.other_payers] == ["MEDICARE"]
        assert response.related_entities[0].is_other_payer is True
        assert response.managed_care_org is None

    def test_no_other_insurance(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)
        assert response.other_insurance.has_other_insurance is False


class TestManagedCareHelpers:
    """Test entity helper functions."""

    @pytest.mark.parametrize("name,expected", [
        ("HMHI BEHAVIORAL HEALTH", "Behavioral Health"),
        ("DELTA DENTAL", "Dental"),
        ("EYEMED VISION", "Vision"),
        ("MODIVCARE", "Transportation"),
        ("HEALTH CHOICE UTAH", "Medical"),
    ])
    def test_classify_entity_type(self, name, expected):
        assert classify_entity_type(name) == expected

    def test_select_prefers_mental_health_entity(self):
        medical = RelatedEntity(name="HEALTH CHOICE UTAH", service_types=["30"])
        behavioral = RelatedEntity(name="OPTUM", service_types=["MH"])
        assert select_managed_care_org([medical, behavioral]) is behavioral

    def test_select_falls_back_to_first_named(self):
        unnamed = RelatedEntity()
        medical = RelatedEntity(name="HEALTH CHOICE UTAH")
        assert select_managed_care_org([unnamed, medical]) is medical
        assert select_managed_care_org([]) is None

    def test_extract_phone_any_qualifier_position(self):
        seg = X12Segment("PER", ["IC", "", "UR", "WWW.EXAMPLE.COM", "TE", "(801) 555-0199"])
        assert extract_phone(seg) == "8015550199"
        assert extract_phone(X12Segment("PER", ["IC", "", "EM", "A@B.COM"])) is None

    def test_street_lines(self):
        assert street_lines(X12Segment("N3", ["123 MAIN STREET", "APT 4"])) == "123 MAIN STREET APT 4"
        assert street_lines(X12Segment("N3", ["123 MAIN STREET"])) == "123 MAIN STREET"
        assert street_lines(X12Segment("N3", [""])) is None

    def test_describe_elapsed(self):
        assert describe_elapsed(date(2026, 10, 14), TODAY) == "5 days"
        assert describe_elapsed(date(2026, 7, 1), TODAY) == "3 months"
        assert describe_elapsed(date(2025, 6, 30), TODAY) == "1 year and 3 months"


# =============================================================================
# Member ID Validation
# =============================================================================


class TestMemberIdValidation:
    """Test sent vs. returned member ID comparison."""

    def test_match_is_case_insensitive(self, parser):
        response = parser.parse(SAMPLE_271_V_THEN_ACTIVE, sent_member_id="abc123")
        assert response.member_id_validation.matches is True
        assert response.warnings == []

    def test_mismatch_is_critical(self, parser):
        response = parser.parse(SAMPLE_271_COB, sent_member_id="W12345678")

        validation = response.member_id_validation
        assert validation.sent == "W12345678"
        assert validation.returned == "W99999999"
        assert validation.matches is False
        warning = response.critical_warnings[0]
        assert warning.type == "MEMBER_ID_MISMATCH"
        assert "W12345678" in warning.message and "W99999999" in warning.message

    def test_no_member_id_returned_is_warning(self, parser):
        response = parser.parse(SAMPLE_271_CANNOT_PROCESS, sent_member_id="0900412827")

        assert response.member_id_validation.matches is None
        assert [w.type for w in response.warnings] == ["NO_MEMBER_ID_RETURNED"]
        assert response.warnings[0].severity == Severity.WARNING

    def test_nothing_sent_nothing_checked(self, parser):
        response = parser.parse(SAMPLE_271_MEDICAID_FFS)
        assert response.member_id_validation.returned == "0900412827"
        assert response.member_id_validation.matches is None


# =============================================================================
# 999 Acknowledgments
# =============================================================================


class TestFormatErrors:
    """Test 999 handling in the 271 parser."""

    def test_999_becomes_format_error_response(self, parser):
        response = parser.parse(SAMPLE_999_REJECTED)

        assert response.is_format_error is True
        assert response.transaction_type == "999"
        assert response.enrolled is False
        assert response.benefits == []
        assert "999" in response.error
        assert response.control_number == "000000777"

    def test_descriptors(self, parser):
        errors = parser.parse(SAMPLE_999_REJECTED).format_errors
        assert [e.kind for e in errors] == [
            FormatErrorKind.SEGMENT_ERROR,
            FormatErrorKind.ELEMENT_ERROR,
            FormatErrorKind.TRANSACTION_SET_ACK,
            FormatErrorKind.FUNCTIONAL_GROUP_ACK,
        ]
        assert str(errors[0]) == "SEGMENT ERROR: IK3*DTP*12*2100C*8"


class TestX12999Parser:
    """Test the standalone 999 parser."""

    def test_segment_error_description(self):
        errors = X12999Parser().parse(SAMPLE_999_REJECTED)
        assert errors[0].description == (
            "Segment DTP at position 12 in loop 2100C: Segment has data element errors"
        )

    def test_element_error_description(self):
        errors = X12999Parser().parse(SAMPLE_999_REJECTED)
        assert errors[1].description == "Element DTP03 (ref 1251): Invalid date [20261399]"

    def test_ack_descriptions(self):
        errors = X12999Parser().parse(SAMPLE_999_REJECTED)
        assert errors[2].description == "Transaction set rejected"
        assert errors[3].description == "Functional group rejected"

    def test_rejected_vs_accepted(self):
        parser = X12999Parser()
        assert parser.is_rejected(parser.parse(SAMPLE_999_REJECTED)) is True
        assert parser.is_rejected(parser.parse(SAMPLE_999_ACCEPTED)) is False

    def test_is_999(self):
        from src.services.edi.x12_base import X12Tokenizer

        assert is_999(X12Tokenizer().tokenize(SAMPLE_999_ACCEPTED)) is True
        assert is_999(X12Tokenizer().tokenize(SAMPLE_271_INACTIVE)) is False
