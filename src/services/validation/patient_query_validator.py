"""
Patient Query Validator.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Caller-side checks on a PatientQuery before any X12 is built:
- Identity completeness (names plus DOB, SSN or member ID)
- Payer-specific rules (name-only searches, gender requirement)
- Field formats (DOB range, SSN, Medicaid ID, gender code)
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from src.services.edi.payer_profiles import PayerProfile
from src.services.edi.x12_270_generator import PatientQuery
from src.utils.errors import InputValidationError

logger = logging.getLogger(__name__)

MAX_AGE_YEARS = 120
VALID_GENDERS = {"M", "F", "U"}
MEDICAID_ID_PATTERN = re.compile(r"^\d{8,12}$")


@dataclass
class ValidationResult:
    """Outcome of validating one patient query."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": list(self.errors)}


def _years_ago(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return today.replace(year=today.year - years, day=28)


def validate_patient_query(
    query: PatientQuery,
    payer: Optional[PayerProfile] = None,
    today: Optional[date] = None,
) -> ValidationResult:
    """
    Validate a patient query against general and payer-specific rules.

    Args:
        query: Patient identity for the inquiry
        payer: Target payer profile, enables payer-specific rules
        today: Reference date for DOB checks (defaults to today)

    Returns:
        ValidationResult with every failed rule listed
    """
    today = today or date.today()
    errors: list[str] = []

    if not (query.first_name or "").strip():
        errors.append("First name is required")
    if not (query.last_name or "").strip():
        errors.append("Last name is required")

    has_ssn = bool((query.ssn or "").strip())
    has_member_id = query.subscriber_id is not None
    has_dob = query.date_of_birth is not None

    if not (has_dob or has_ssn or has_member_id):
        errors.append("At least one of date of birth, SSN or member ID is required")
    elif payer is not None and not payer.allows_name_only and not (has_dob or has_member_id):
        errors.append(f"{payer.display_name} requires date of birth or member ID")

    if has_dob:
        if query.date_of_birth > today:
            errors.append("Date of birth cannot be in the future")
        elif query.date_of_birth < _years_ago(today, MAX_AGE_YEARS):
            errors.append(f"Date of birth is more than {MAX_AGE_YEARS} years ago")

    if has_ssn:
        digits = re.sub(r"\D", "", query.ssn)
        if len(digits) != 9:
            errors.append("SSN must have 9 digits")
        elif digits == "000000000":
            errors.append("SSN cannot be all zeros")

    if query.medicaid_id and query.medicaid_id.strip():
        if not MEDICAID_ID_PATTERN.match(query.medicaid_id.strip()):
            errors.append("Medicaid ID must be 8 to 12 digits")

    gender = (query.gender or "").strip().upper()
    if gender and gender not in VALID_GENDERS:
        errors.append(f"Gender must be one of M, F or U (got {query.gender!r})")
    elif payer is not None and payer.requires_gender_in_demographics and gender not in ("M", "F"):
        errors.append(f"{payer.display_name} requires gender M or F")

    if errors:
        logger.debug(f"Patient query failed {len(errors)} validation rule(s)")

    return ValidationResult(is_valid=not errors, errors=errors)


def ensure_valid_patient_query(
    query: PatientQuery,
    payer: Optional[PayerProfile] = None,
    today: Optional[date] = None,
) -> None:
    """Validate a patient query; raises InputValidationError listing every failure."""
    result = validate_patient_query(query, payer=payer, today=today)
    if not result.is_valid:
        raise InputValidationError(result.errors)
