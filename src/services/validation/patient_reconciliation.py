"""
Patient Record Reconciliation.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Compares a practice's stored patient record with the payer-verified data in
a parsed 271 and reports per-field discrepancies, a severity summary and
prioritized recommendations.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from src.core.enums import Severity
from src.services.edi.x12_271_parser import Address, EligibilityResponse

logger = logging.getLogger(__name__)

NAME_SIMILARITY_THRESHOLD = 0.8
ADDRESS_SIMILARITY_THRESHOLD = 0.7
INSURANCE_SIMILARITY_THRESHOLD = 0.6

ADDRESS_ABBREVIATIONS = (
    ("street", "st"),
    ("avenue", "ave"),
    ("drive", "dr"),
    ("road", "rd"),
    ("lane", "ln"),
    ("apartment", "apt"),
    ("suite", "ste"),
)


class DiscrepancyType(str, Enum):
    """Kinds of record/payer differences."""

    DOB_MISMATCH = "dob_mismatch"
    DOB_MISSING = "dob_missing"
    GENDER_MISMATCH = "gender_mismatch"
    GENDER_MISSING = "gender_missing"
    NAME_MISMATCH = "name_mismatch"
    PHONE_MISMATCH = "phone_mismatch"
    PHONE_MISSING = "phone_missing"
    ADDRESS_MISMATCH = "address_mismatch"
    ADDRESS_MISSING = "address_missing"
    MEMBER_ID_MISMATCH = "member_id_mismatch"
    MEMBER_ID_MISSING = "member_id_missing"
    INSURANCE_NAME_MISMATCH = "insurance_name_mismatch"
    PCP_AVAILABLE = "pcp_available"
    MCO_AVAILABLE = "mco_available"
    COVERAGE_EXPIRED = "coverage_expired"
    OTHER_INSURANCE_FOUND = "other_insurance_found"


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class ExternalPatientRecord:
    """Patient data as stored by the practice."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[str] = None  # YYYY-MM-DD or MM/DD/YYYY
    gender: Optional[str] = None
    phone: Optional[str] = None
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_zip: Optional[str] = None
    member_id: Optional[str] = None
    insurance_name: Optional[str] = None
    has_other_insurance_on_file: bool = False
    primary_care_provider_npi: Optional[str] = None
    managed_care_org: Optional[str] = None

    @property
    def full_address(self) -> Optional[str]:
        if not self.address_street:
            return None
        return str(
            Address(
                street=self.address_street,
                city=self.address_city,
                state=self.address_state,
                zip_code=self.address_zip,
            )
        )


@dataclass
class Discrepancy:
    """One field-level difference between the record and the payer."""

    field: str
    severity: Severity
    type: DiscrepancyType
    message: str
    action: str
    external_value: Optional[Any] = None
    payer_value: Optional[Any] = None
    similarity: Optional[float] = None


@dataclass
class Recommendation:
    """Next step for staff; priority 1 is most urgent."""

    priority: int
    action: str
    reason: str
    details: str


@dataclass
class ReconciliationResult:
    """Complete reconciliation of one patient record."""

    discrepancies: list[Discrepancy] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    summary: str = ""

    @property
    def has_issues(self) -> bool:
        return len(self.discrepancies) > 0

    @property
    def critical_count(self) -> int:
        return self._count(Severity.CRITICAL)

    @property
    def warning_count(self) -> int:
        return self._count(Severity.WARNING)

    @property
    def info_count(self) -> int:
        return self._count(Severity.INFO)

    def _count(self, severity: Severity) -> int:
        return sum(1 for d in self.discrepancies if d.severity == severity)

    def get(self, discrepancy_type: DiscrepancyType) -> Optional[Discrepancy]:
        """First discrepancy of a given type, if any."""
        for discrepancy in self.discrepancies:
            if discrepancy.type == discrepancy_type:
                return discrepancy
        return None

    def to_evidence_dict(self) -> dict[str, Any]:
        """Convert to a serializable summary."""
        return {
            "has_issues": self.has_issues,
            "summary": self.summary,
            "critical_count": self.critical_count,
            "warning_count": self.warning_count,
            "info_count": self.info_count,
            "discrepancies": [
                {
                    "field": d.field,
                    "severity": d.severity.value,
                    "type": d.type.value,
                    "message": d.message,
                    "external_value": d.external_value,
                    "payer_value": d.payer_value,
                }
                for d in self.discrepancies
            ],
            "recommendations": [
                {"priority": r.priority, "action": r.action, "reason": r.reason, "details": r.details}
                for r in self.recommendations
            ],
        }


# =============================================================================
# Normalization Helpers
# =============================================================================


def normalize_string(value: Optional[str]) -> str:
    """Lowercase and keep only letters and digits."""
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]", "", str(value).lower().strip())


def normalize_date(value: Optional[str]) -> Optional[str]:
    """Normalize YYYY-MM-DD, MM/DD/YYYY or YYYYMMDD to YYYY-MM-DD."""
    if not value:
        return None
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%Y%m%d"):
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return text


def normalize_gender(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    upper = str(value).strip().upper()
    for code in ("M", "F", "U"):
        if upper.startswith(code):
            return code
    return upper


def normalize_phone(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def normalize_address(value: Optional[str]) -> str:
    """Lowercase, drop punctuation and abbreviate common street words."""
    if not value:
        return ""
    text = str(value).lower().replace(".", "").replace(",", "")
    text = re.sub(r"\s+", " ", text)
    for word, abbreviation in ADDRESS_ABBREVIATIONS:
        text = re.sub(rf"\b{word}\b", abbreviation, text)
    return text.strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit insert, delete and substitute costs."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j - 1] + cost, current[j - 1] + 1, previous[j] + 1))
        previous = current
    return previous[-1]


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Levenshtein ratio of two normalized strings.

    Returns 0.0 when either side is empty and 1.0 for identical strings.
    """
    if not a or not b:
        return 0.0
    s1, s2 = normalize_string(a), normalize_string(b)
    if s1 == s2:
        return 1.0
    longer = max(len(s1), len(s2))
    if longer == 0:
        return 1.0
    return (longer - levenshtein_distance(s1, s2)) / longer


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count > 1 else ''}"


# =============================================================================
# Reconciler
# =============================================================================


class PatientReconciler:
    """
    Compares stored patient data with payer-verified 271 data.

    Usage:
        reconciler = PatientReconciler()
        result = reconciler.reconcile(record, response)
        if result.critical_count:
            ...
    """

    def reconcile(
        self,
        external: ExternalPatientRecord,
        response: EligibilityResponse,
    ) -> ReconciliationResult:
        """
        Reconcile one record against one parsed 271.

        Args:
            external: Patient data as stored by the practice
            response: Parsed (and optionally interpreted) 271

        Returns:
            ReconciliationResult with discrepancies, summary and recommendations
        """
        discrepancies: list[Discrepancy] = []

        for check in (
            self._check_dob,
            self._check_gender,
            self._check_name,
            self._check_phone,
            self._check_address,
            self._check_member_id,
            self._check_insurance_name,
            self._check_new_payer_data,
            self._check_coverage,
            self._check_other_insurance,
        ):
            discrepancies.extend(check(external, response))

        result = ReconciliationResult(discrepancies=discrepancies)
        result.summary = self.summarize(discrepancies)
        result.recommendations = self.recommend(result)

        logger.debug(
            f"Reconciliation: {result.critical_count} critical, "
            f"{result.warning_count} warning, {result.info_count} info"
        )
        return result

    # -------------------------------------------------------------------------
    # Field checks
    # -------------------------------------------------------------------------

    def _check_dob(self, external: ExternalPatientRecord, response: EligibilityResponse) -> list[Discrepancy]:
        if not response.date_of_birth:
            return []
        if not external.date_of_birth:
            return [
                Discrepancy(
                    field="date_of_birth",
                    severity=Severity.WARNING,
                    type=DiscrepancyType.DOB_MISSING,
                    message="Date of birth missing in practice records, available from payer",
                    action="Update records with payer-verified DOB",
                    payer_value=response.date_of_birth,
                )
            ]
        if normalize_date(external.date_of_birth) != normalize_date(response.date_of_birth):
            return [
                Discrepancy(
                    field="date_of_birth",
                    severity=Severity.CRITICAL,
                    type=DiscrepancyType.DOB_MISMATCH,
                    message="Date of birth does not match payer records",
                    action="Verify patient identity and update records",
                    external_value=external.date_of_birth,
                    payer_value=response.date_of_birth,
                )
            ]
        return []

    def _check_gender(self, external: ExternalPatientRecord, response: EligibilityResponse) -> list[Discrepancy]:
        if not response.gender:
            return []
        if not external.gender:
            return [
                Discrepancy(
                    field="gender",
                    severity=Severity.INFO,
                    type=DiscrepancyType.GENDER_MISSING,
                    message="Gender missing in practice records, available from payer",
                    action="Update records with payer-verified gender",
                    payer_value=response.gender,
                )
            ]
        if normalize_gender(external.gender) != normalize_gender(response.gender):
            return [
                Discrepancy(
                    field="gender",
                    severity=Severity.WARNING,
                    type=DiscrepancyType.GENDER_MISMATCH,
                    message="Gender does not match payer records",
                    action="Verify and update gender information",
                    external_value=external.gender,
                    payer_value=response.gender,
                )
            ]
        return []

    def _check_name(self, external: ExternalPatientRecord, response: EligibilityResponse) -> list[Discrepancy]:
        payer_first = response.patient_name.first_name
        payer_last = response.patient_name.last_name
        if not (payer_first and payer_last):
            return []

        first_matches = normalize_string(external.first_name) == normalize_string(payer_first)
        last_matches = normalize_string(external.last_name) == normalize_string(payer_last)
        if first_matches and last_matches:
            return []

        first_similarity = similarity(external.first_name, payer_first)
        last_similarity = similarity(external.last_name, payer_last)
        critical = min(first_similarity, last_similarity) < NAME_SIMILARITY_THRESHOLD

        return [
            Discrepancy(
                field="name",
                severity=Severity.CRITICAL if critical else Severity.WARNING,
                type=DiscrepancyType.NAME_MISMATCH,
                message="Patient name does not match payer records",
                action="Verify patient identity immediately" if critical else "Check for spelling variations",
                external_value=f"{external.first_name or ''} {external.last_name or ''}".strip(),
                payer_value=f"{payer_first} {payer_last}",
                similarity=min(first_similarity, last_similarity),
            )
        ]

    def _check_phone(self, external: ExternalPatientRecord, response: EligibilityResponse) -> list[Discrepancy]:
        if not response.phone:
            return []
        if not external.phone:
            return [
                Discrepancy(
                    field="phone",
                    severity=Severity.INFO,
                    type=DiscrepancyType.PHONE_MISSING,
                    message="Phone missing in practice records, available from payer",
                    action="Add phone number from payer records",
                    payer_value=response.phone,
                )
            ]
        ours, theirs = normalize_phone(external.phone), normalize_phone(response.phone)
        # Compare the last ten digits so a leading country code is ignored
        if ours != theirs and ours[-10:] != theirs[-10:]:
            return [
                Discrepancy(
                    field="phone",
                    severity=Severity.INFO,
                    type=DiscrepancyType.PHONE_MISMATCH,
                    message="Phone number does not match payer records",
                    action="Consider updating to payer-verified phone number",
                    external_value=external.phone,
                    payer_value=response.phone,
                )
            ]
        return []

    def _check_address(self, external: ExternalPatientRecord, response: EligibilityResponse) -> list[Discrepancy]:
        if response.address is None or not response.address.street:
            return []
        if not external.address_street:
            return [
                Discrepancy(
                    field="address",
                    severity=Severity.INFO,
                    type=DiscrepancyType.ADDRESS_MISSING,
                    message="Address missing in practice records, available from payer",
                    action="Add address from payer records",
                    payer_value=str(response.address),
                )
            ]

        ours = normalize_address(external.address_street)
        theirs = normalize_address(response.address.street)
        if ours == theirs:
            return []

        score = similarity(ours, theirs)
        return [
            Discrepancy(
                field="address",
                severity=Severity.WARNING if score < ADDRESS_SIMILARITY_THRESHOLD else Severity.INFO,
                type=DiscrepancyType.ADDRESS_MISMATCH,
                message="Address does not match payer records",
                action="Verify current address with patient",
                external_value=external.full_address,
                payer_value=str(response.address),
                similarity=score,
            )
        ]

    def _check_member_id(self, external: ExternalPatientRecord, response: EligibilityResponse) -> list[Discrepancy]:
        payer_member_id = response.member_id_validation.returned
        if not payer_member_id:
            return []
        if not external.member_id:
            return [
                Discrepancy(
                    field="member_id",
                    severity=Severity.WARNING,
                    type=DiscrepancyType.MEMBER_ID_MISSING,
                    message="Member ID missing in practice records, available from payer",
                    action="Add member ID from payer records",
                    payer_value=payer_member_id,
                )
            ]
        if normalize_string(external.member_id) != normalize_string(payer_member_id):
            return [
                Discrepancy(
                    field="member_id",
                    severity=Severity.CRITICAL,
                    type=DiscrepancyType.MEMBER_ID_MISMATCH,
                    message="Member ID does not match payer records",
                    action="Update to correct member ID from payer",
                    external_value=external.member_id,
                    payer_value=payer_member_id,
                )
            ]
        return []

    def _check_insurance_name(
        self, external: ExternalPatientRecord, response: EligibilityResponse
    ) -> list[Discrepancy]:
        payer_name = response.payer_info.name
        if not (external.insurance_name and payer_name):
            return []
        score = similarity(external.insurance_name, payer_name)
        if score >= INSURANCE_SIMILARITY_THRESHOLD:
            return []
        return [
            Discrepancy(
                field="insurance_name",
                severity=Severity.WARNING,
                type=DiscrepancyType.INSURANCE_NAME_MISMATCH,
                message="Insurance name differs from payer records",
                action="Verify correct insurance information",
                external_value=external.insurance_name,
                payer_value=payer_name,
                similarity=score,
            )
        ]

    def _check_new_payer_data(
        self, external: ExternalPatientRecord, response: EligibilityResponse
    ) -> list[Discrepancy]:
        found: list[Discrepancy] = []
        pcp = response.primary_care_provider
        if pcp is not None and not external.primary_care_provider_npi:
            found.append(
                Discrepancy(
                    field="primary_care_provider",
                    severity=Severity.INFO,
                    type=DiscrepancyType.PCP_AVAILABLE,
                    message="Primary care provider information available from payer",
                    action="Consider storing PCP information for care coordination",
                    payer_value=pcp.name or pcp.npi,
                )
            )
        mco = response.managed_care_org
        if mco is not None and not external.managed_care_org:
            found.append(
                Discrepancy(
                    field="managed_care_org",
                    severity=Severity.INFO,
                    type=DiscrepancyType.MCO_AVAILABLE,
                    message="Managed care organization information available",
                    action="Store MCO information for billing purposes",
                    payer_value=mco.name,
                )
            )
        return found

    def _check_coverage(self, external: ExternalPatientRecord, response: EligibilityResponse) -> list[Discrepancy]:
        period = response.coverage_period
        if not period.is_expired:
            return []
        return [
            Discrepancy(
                field="coverage",
                severity=Severity.CRITICAL,
                type=DiscrepancyType.COVERAGE_EXPIRED,
                message="Patient coverage has expired",
                action="Do not submit claims - verify current coverage",
                external_value="Unknown",
                payer_value=f"Expired {period.end_date}",
            )
        ]

    def _check_other_insurance(
        self, external: ExternalPatientRecord, response: EligibilityResponse
    ) -> list[Discrepancy]:
        other = response.other_insurance
        if not other.has_other_insurance or external.has_other_insurance_on_file:
            return []
        return [
            Discrepancy(
                field="other_insurance",
                severity=Severity.WARNING,
                type=DiscrepancyType.OTHER_INSURANCE_FOUND,
                message="Patient has other insurance coverage not recorded in practice records",
                action="Update secondary insurance information for COB",
                external_value="No secondary insurance recorded",
                payer_value=[p.name for p in other.other_payers if p.name],
            )
        ]

    # -------------------------------------------------------------------------
    # Summary and recommendations
    # -------------------------------------------------------------------------

    @staticmethod
    def summarize(discrepancies: list[Discrepancy]) -> str:
        """One sentence counting findings per severity."""
        if not discrepancies:
            return "All patient data matches payer records."

        critical = sum(1 for d in discrepancies if d.severity == Severity.CRITICAL)
        warning = sum(1 for d in discrepancies if d.severity == Severity.WARNING)
        info = sum(1 for d in discrepancies if d.severity == Severity.INFO)

        parts = []
        if critical:
            parts.append(f"{_plural(critical, 'critical issue')} requiring immediate attention")
        if warning:
            parts.append(f"{_plural(warning, 'warning')} to review")
        if info:
            parts.append(f"{_plural(info, 'informational item')} available")
        return ", ".join(parts) + "."

    @staticmethod
    def recommend(result: ReconciliationResult) -> list[Recommendation]:
        """Actionable next steps, most urgent first."""
        recommendations: list[Recommendation] = []

        if result.get(DiscrepancyType.COVERAGE_EXPIRED):
            recommendations.append(
                Recommendation(1, "STOP - Do not submit claims", "Coverage has expired",
                               "Verify current insurance before proceeding")
            )
        if result.get(DiscrepancyType.DOB_MISMATCH):
            recommendations.append(
                Recommendation(1, "Verify patient identity", "Date of birth mismatch",
                               "Confirm DOB with patient and update records")
            )
        member_id = result.get(DiscrepancyType.MEMBER_ID_MISMATCH)
        if member_id:
            recommendations.append(
                Recommendation(1, "Update member ID", "Member ID does not match payer records",
                               f"Change from {member_id.external_value} to {member_id.payer_value}")
            )

        name = result.get(DiscrepancyType.NAME_MISMATCH)
        if name and name.severity == Severity.CRITICAL:
            recommendations.append(
                Recommendation(2, "Verify patient name", "Significant name discrepancy",
                               "Ensure correct patient is being treated")
            )
        if result.get(DiscrepancyType.OTHER_INSURANCE_FOUND):
            recommendations.append(
                Recommendation(2, "Update secondary insurance", "Other insurance coverage detected",
                               "Add secondary payer for coordination of benefits")
            )

        phone = result.get(DiscrepancyType.PHONE_MISSING) or result.get(DiscrepancyType.PHONE_MISMATCH)
        if phone:
            recommendations.append(
                Recommendation(3, "Update phone number", "Phone number needs updating",
                               f"Use payer-verified number: {phone.payer_value}")
            )
        if result.get(DiscrepancyType.ADDRESS_MISSING) or result.get(DiscrepancyType.ADDRESS_MISMATCH):
            recommendations.append(
                Recommendation(3, "Update address", "Address needs verification",
                               "Use payer-verified address for claims")
            )

        return sorted(recommendations, key=lambda r: r.priority)
