"""
Benefit Interpreter for Parsed 271 Responses.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Turns the EB rows of a parsed 271 into a normalized financial model
(deductible, out-of-pocket, copay and coinsurance by service type,
network status) and classifies coverage by payer category:
- Medicaid: traditional fee-for-service vs. managed care
- Commercial: HMO / PPO / POS
- Medicaid Managed Care: always managed care

Payer-specific deductible overrides run last, as an explicit
post-processing step over the extracted figures.
"""

import copy
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from src.core.enums import PayerCategory, Severity
from src.services.edi.payer_profiles import PayerProfile
from src.services.edi.x12_271_parser import (
    BenefitInfo,
    EligibilityResponse,
    EligibilityStatus,
    FinancialInfo,
    ParseWarning,
    RelatedEntity,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Reference Data
# =============================================================================


@dataclass(frozen=True)
class KnownManagedCareOrg:
    """Utah Medicaid managed care entity as reported in Loop 2120."""
    payer_id: str
    name: str
    display_name: str
    phone: str
    type: str
    name_markers: Tuple[str, ...]


UTAH_MANAGED_CARE_ORGS: Dict[str, KnownManagedCareOrg] = {
    "2000002": KnownManagedCareOrg(
        payer_id="2000002",
        name="Health Choice Utah",
        display_name="Health Choice Utah (Integrated Medicaid Managed Care)",
        phone="877-358-8797",
        type="ACO",
        name_markers=("HEALTH CHOICE",),
    ),
    "2000001": KnownManagedCareOrg(
        payer_id="2000001",
        name="Molina Healthcare",
        display_name="Molina Healthcare of Utah (Medicaid Managed Care)",
        phone="800-424-5891",
        type="MCO",
        name_markers=("MOLINA",),
    ),
    "2000000": KnownManagedCareOrg(
        payer_id="2000000",
        name="SelectHealth",
        display_name="SelectHealth Community Care (Medicaid Managed Care)",
        phone="800-538-5038",
        type="MCO",
        name_markers=("SELECTHEALTH", "SELECT HEALTH"),
    ),
}

# Marker text -> program name, checked in order
FEE_FOR_SERVICE_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("TARGETED ADULT MEDICAID", "Targeted Adult Medicaid"),
    ("TRADITIONAL ADULT", "Traditional Adult Medicaid"),
    ("FEE FOR SERVICE", "Medicaid Fee-for-Service"),
)
MANAGED_CARE_MARKERS = ("*HM*", "MC INTEGRATED")
MENTAL_HEALTH_MARKER = "MENTAL HEALTH"
COMMERCIAL_PLAN_TYPES = ("HMO", "PPO", "POS")
INSURANCE_TYPE_PLANS = {"HM": "HMO", "PR": "PPO", "PS": "POS"}

FEE_FOR_SERVICE_PLAN = "Traditional Fee-for-Service"
MANAGED_CARE_PLAN = "Managed Care"
UNKNOWN_MCO_NAME = "Unknown Managed Care Organization"

# EB01 codes as read by the financial model
DEDUCTIBLE_CODE = "C"
OUT_OF_POCKET_CODE = "G"
COPAY_CODE = "A"
COINSURANCE_CODE = "B"

# EB06 time period qualifiers
TOTAL_PERIOD = "23"
REMAINING_PERIOD = "29"

# EB03 key for rows that name no service type
PLAN_LEVEL_SERVICE_TYPE = "30"


# =============================================================================
# Overrides
# =============================================================================


@dataclass(frozen=True)
class DeductibleOverride:
    """
    Contractual rule that zeroes the deductible for a carve-out network.

    Applied when the managed care organization (or payer) name contains one
    of ``name_patterns``. This is domain knowledge, not X12 data.
    """
    name: str
    name_patterns: Tuple[str, ...]
    reason: str
    needs_confirmation: bool = True

    def matches(self, names: Iterable[Optional[str]]) -> bool:
        for candidate in names:
            if not candidate:
                continue
            upper = candidate.upper()
            if any(pattern.upper() in upper for pattern in self.name_patterns):
                return True
        return False


HMHI_CARVE_OUT = DeductibleOverride(
    name="HMHI-BHN behavioral health carve-out",
    name_patterns=("HMHI", "HUNTSMAN MENTAL HEALTH", "UUHP HMHI BEHAVIORAL HEALTH"),
    reason=(
        "Behavioral health visits through the HMHI Behavioral Health Network "
        "do not accumulate toward the deductible."
    ),
)

DEFAULT_DEDUCTIBLE_OVERRIDES: Tuple[DeductibleOverride, ...] = (HMHI_CARVE_OUT,)


# =============================================================================
# Interpreter
# =============================================================================


class BenefitInterpreter:
    """
    Classifies coverage and extracts financial responsibility.

    Usage:
        interpreter = BenefitInterpreter()
        interpreted = interpreter.interpret(response, payer_profile)
        interpreted.financial_info.copays.get("98")
    """

    def __init__(self, overrides: Optional[Sequence[DeductibleOverride]] = None):
        self.overrides: Tuple[DeductibleOverride, ...] = (
            DEFAULT_DEDUCTIBLE_OVERRIDES if overrides is None else tuple(overrides)
        )

    @classmethod
    def from_patterns(cls, patterns: Sequence[str]) -> "BenefitInterpreter":
        """Build an interpreter whose carve-out rule uses configured name patterns."""
        if not patterns:
            return cls(overrides=())
        return cls(overrides=(
            DeductibleOverride(
                name=HMHI_CARVE_OUT.name,
                name_patterns=tuple(patterns),
                reason=HMHI_CARVE_OUT.reason,
                needs_confirmation=HMHI_CARVE_OUT.needs_confirmation,
            ),
        ))

    def interpret(self, response: EligibilityResponse, payer: PayerProfile) -> EligibilityResponse:
        """
        Interpret a parsed response for a payer.

        The input response is not modified; a copy with classification and
        financial_info filled is returned. 999 responses are returned as-is
        (copied).
        """
        result = copy.deepcopy(response)
        if result.is_format_error:
            return result

        if payer.category == PayerCategory.MEDICAID:
            self._classify_medicaid(result, payer)
        elif payer.category == PayerCategory.MEDICAID_MANAGED_CARE:
            self._mark_managed_care(result, payer.display_name)
            result.program = payer.display_name
        elif payer.category == PayerCategory.COMMERCIAL:
            self._classify_commercial(result, payer)
        else:
            result.plan_type = payer.display_name
            result.program = payer.display_name

        result.financial_info = extract_financial_info(result.benefits)
        self._apply_overrides(result, payer)

        logger.debug(
            f"Interpreted payer={payer.payer_id} plan_type={result.plan_type} "
            f"managed_care={result.is_managed_care}"
        )
        return result

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    def _classify_medicaid(self, result: EligibilityResponse, payer: PayerProfile) -> None:
        text = self._benefit_text(result)

        for marker, program in FEE_FOR_SERVICE_MARKERS:
            if marker in text:
                result.plan_type = FEE_FOR_SERVICE_PLAN
                result.program = program
                break
        else:
            mco_name = self._managed_care_name(result, text)
            if mco_name:
                self._mark_managed_care(result, mco_name)
                result.program = mco_name
            else:
                result.plan_type = "Medicaid"
                result.program = payer.display_name

        if MENTAL_HEALTH_MARKER in text and result.program:
            result.program = f"{result.program} - Mental Health Carve-Out"

    def _classify_commercial(self, result: EligibilityResponse, payer: PayerProfile) -> None:
        text = self._benefit_text(result)
        plan_type = None
        for benefit in result.benefits:
            plan_type = INSURANCE_TYPE_PLANS.get(benefit.insurance_type or "")
            if plan_type:
                break
        if plan_type is None:
            plan_type = next((p for p in COMMERCIAL_PLAN_TYPES if p in text), None)
        result.plan_type = plan_type or "Commercial"
        result.program = payer.display_name

    def _managed_care_name(self, result: EligibilityResponse, text: str) -> Optional[str]:
        """Name of the managed care organization, or None for FFS."""
        for entity in result.related_entities:
            known = match_known_mco(entity)
            if known:
                return known.name

        if result.managed_care_org and result.managed_care_org.name:
            return result.managed_care_org.name

        if any(marker in text for marker in MANAGED_CARE_MARKERS):
            return UNKNOWN_MCO_NAME
        return None

    def _mark_managed_care(self, result: EligibilityResponse, mco_name: str) -> None:
        result.plan_type = MANAGED_CARE_PLAN
        result.is_managed_care = True
        result.requires_network_check = True
        result.warnings.append(
            ParseWarning(
                severity=Severity.WARNING,
                type="MANAGED_CARE",
                message=f"Patient is enrolled in {mco_name}. Verify network status before scheduling.",
            )
        )

    def _benefit_text(self, result: EligibilityResponse) -> str:
        """Upper-cased text searched for program markers."""
        if result.raw_x12:
            return result.raw_x12.upper()
        parts: List[str] = []
        for benefit in result.benefits:
            parts.append(f"EB*{benefit.code}*{benefit.coverage_level or ''}*{'^'.join(benefit.service_types)}*{benefit.insurance_type or ''}*{benefit.plan_description or ''}")
            parts.extend(benefit.messages)
        parts.extend(result.messages)
        return "~".join(parts).upper()

    # -------------------------------------------------------------------------
    # Overrides
    # -------------------------------------------------------------------------

    def _apply_overrides(self, result: EligibilityResponse, payer: PayerProfile) -> None:
        names = [payer.payer_name, payer.display_name, result.payer_info.name]
        if result.managed_care_org:
            names.append(result.managed_care_org.name)
        names.extend(e.name for e in result.related_entities)

        info = result.financial_info
        for override in self.overrides:
            if not override.matches(names):
                continue
            info.deductible_total = 0.0
            info.deductible_remaining = 0.0
            info.deductible_met = 0.0
            info.overrides_applied.append(override.name)
            if override.needs_confirmation:
                result.warnings.append(
                    ParseWarning(
                        severity=Severity.INFO,
                        type="DEDUCTIBLE_OVERRIDE",
                        message=f"Deductible set to $0 by rule: {override.name}",
                        details=f"{override.reason} Confirm with the payer before quoting cost share.",
                    )
                )
            logger.info(f"Deductible override applied: {override.name}")


# =============================================================================
# Financial Extraction
# =============================================================================


def extract_financial_info(benefits: Sequence[BenefitInfo]) -> FinancialInfo:
    """
    Extract deductible, out-of-pocket, copay and coinsurance figures.

    First-seen values win. Network status starts in-network and flips to
    out-of-network on any financial row with EB12 = N.
    """
    info = FinancialInfo()

    for benefit in benefits:
        if benefit.code == EligibilityStatus.CANNOT_PROCESS.value:
            continue

        if benefit.code in (DEDUCTIBLE_CODE, OUT_OF_POCKET_CODE, COPAY_CODE, COINSURANCE_CODE):
            if benefit.in_plan_network is False:
                info.in_network = False
        else:
            continue

        if benefit.code == DEDUCTIBLE_CODE:
            if benefit.time_period == TOTAL_PERIOD and info.deductible_total is None:
                info.deductible_total = benefit.monetary_amount
            elif benefit.time_period == REMAINING_PERIOD and info.deductible_remaining is None:
                info.deductible_remaining = benefit.monetary_amount

        elif benefit.code == OUT_OF_POCKET_CODE:
            if benefit.time_period == TOTAL_PERIOD and info.out_of_pocket_total is None:
                info.out_of_pocket_total = benefit.monetary_amount
            elif benefit.time_period == REMAINING_PERIOD and info.out_of_pocket_remaining is None:
                info.out_of_pocket_remaining = benefit.monetary_amount

        elif benefit.code == COPAY_CODE:
            if benefit.monetary_amount is not None:
                for service_type in benefit.service_types or [PLAN_LEVEL_SERVICE_TYPE]:
                    info.copays.setdefault(service_type, benefit.monetary_amount)

        elif benefit.code == COINSURANCE_CODE:
            if benefit.percent is not None:
                percent = benefit.percent * 100 if benefit.percent <= 1 else benefit.percent
                for service_type in benefit.service_types or [PLAN_LEVEL_SERVICE_TYPE]:
                    info.coinsurance.setdefault(service_type, percent)

    if info.deductible_total is not None and info.deductible_remaining is not None:
        info.deductible_met = info.deductible_total - info.deductible_remaining
    if info.out_of_pocket_total is not None and info.out_of_pocket_remaining is not None:
        info.out_of_pocket_met = info.out_of_pocket_total - info.out_of_pocket_remaining

    return info


def match_known_mco(entity: RelatedEntity) -> Optional[KnownManagedCareOrg]:
    """Known Utah managed care organization for a Loop 2120 entity."""
    if entity.payer_id and entity.payer_id.strip() in UTAH_MANAGED_CARE_ORGS:
        return UTAH_MANAGED_CARE_ORGS[entity.payer_id.strip()]
    name = (entity.name or "").upper()
    for known in UTAH_MANAGED_CARE_ORGS.values():
        if any(marker in name for marker in known.name_markers):
            return known
    return None
