"""
Core Enumerations for the Eligibility Verification System.
Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19
"""

from enum import Enum


# =============================================================================
# Clearinghouse Configuration Enums
# =============================================================================


class Clearinghouse(str, Enum):
    """Clearinghouses that accept real-time 270 submissions."""

    OFFICE_ALLY = "office_ally"  # Primary: direct CORE integration
    UHIN = "uhin"  # Alternative: Utah Health Information Network


class EnvelopeDialect(str, Enum):
    """SOAP envelope flavors accepted by the clearinghouses."""

    OFFICE_ALLY = "office_ally"  # soapenv prefix, CDATA payload
    UHIN = "uhin"  # soap/cor prefixes, wsu:Id token, bare payload


# =============================================================================
# Payer Enums
# =============================================================================


class PayerCategory(str, Enum):
    """Payer categories driving benefit classification."""

    MEDICAID = "Medicaid"
    MEDICAID_MANAGED_CARE = "Medicaid Managed Care"
    COMMERCIAL = "Commercial"
    OTHER = "Other"


class ServiceDateFormat(str, Enum):
    """DTP*291 date format qualifiers."""

    SINGLE_DATE = "D8"
    DATE_RANGE = "RD8"


class EntityType(str, Enum):
    """NM102 entity type qualifier."""

    PERSON = "1"
    ORGANIZATION = "2"


# =============================================================================
# Result Enums
# =============================================================================


class Severity(str, Enum):
    """Severity attached to parse warnings and reconciliation findings."""

    CRITICAL = "CRITICAL"  # Identity or coverage problem, act before billing
    WARNING = "WARNING"  # Needs review
    INFO = "INFO"  # Cosmetic or informational


class ProviderStatus(str, Enum):
    """Health status of a clearinghouse endpoint."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"
