"""
Payer and Provider Profiles for Eligibility Inquiries.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Payer profiles carry the per-payer X12 capabilities that shape a 270
(member ID placement, gender in DMG, DTP format, EQ codes). Profiles are
owned by an external configuration store; the generator only reads them
through the lookup protocols defined here.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Protocol, Tuple

from src.core.enums import EntityType, PayerCategory, ServiceDateFormat
from src.utils.errors import PayerProfileNotFoundError, ProviderNotFoundError


# =============================================================================
# Data Models
# =============================================================================


@dataclass(frozen=True)
class PayerProfile:
    """EDI identity and X12 capabilities of a payer."""

    payer_id: str  # Clearinghouse payer ID, sent in NM1*PR NM109
    payer_name: str  # Name sent in NM1*PR NM103
    display_name: str
    category: PayerCategory = PayerCategory.OTHER

    # X12 capabilities
    allows_name_only: bool = False
    supports_member_id_in_subscriber_segment: bool = True
    requires_gender_in_demographics: bool = False
    service_date_format: Optional[ServiceDateFormat] = ServiceDateFormat.SINGLE_DATE  # None omits DTP
    service_type_codes: Tuple[str, ...] = ("30",)

    preferred_provider: Optional[str] = None
    notes: str = ""

    @property
    def omits_service_date(self) -> bool:
        """Payer rejects any DTP segment in the request."""
        return self.service_date_format is None


@dataclass(frozen=True)
class ProviderIdentity:
    """
    Requesting provider or organization.

    ``entity_type`` overrides the name heuristic when the caller knows the
    correct NM102 value.
    """

    npi: str
    name: str
    entity_type: Optional[EntityType] = None
    tax_id: Optional[str] = None

    @property
    def resolved_entity_type(self) -> EntityType:
        """Explicit entity type, or the heuristic guess from the name."""
        return self.entity_type or infer_entity_type(self.name)


# =============================================================================
# Entity Type Heuristic
# =============================================================================


# Legal-entity suffixes that mark a billing provider as an organization.
ORGANIZATION_NAME_PATTERN = re.compile(
    r"\b(PLLC|LLC|INC|INCORPORATED|CORP|CORPORATION|LTD|LLP|PC|PA|GROUP|CLINIC)\b",
    re.IGNORECASE,
)


def infer_entity_type(name: str) -> EntityType:
    """
    Guess NM102 for a provider from its name.

    This is a heuristic: a name containing a legal-entity suffix such as
    "PLLC", "LLC" or "INC" is treated as an organization (2), anything else
    as a person (1). Callers that know better set
    ``ProviderIdentity.entity_type``.
    """
    if name and ORGANIZATION_NAME_PATTERN.search(name):
        return EntityType.ORGANIZATION
    return EntityType.PERSON


def split_person_name(name: str) -> Tuple[str, str]:
    """
    Split a person name into (last, first).

    Accepts "LAST, FIRST" or "FIRST LAST".
    """
    name = " ".join(name.split())
    if "," in name:
        last, _, first = name.partition(",")
        return last.strip(), first.strip()
    parts = name.rsplit(" ", 1)
    if len(parts) == 1:
        return parts[0], ""
    return parts[1], parts[0]


# =============================================================================
# Lookup Interfaces
# =============================================================================


class PayerProfileLookup(Protocol):
    """Resolves payer profiles by clearinghouse payer ID."""

    def get_payer(self, payer_id: str) -> PayerProfile:  # pragma: no cover - Protocol definition
        ...


class ProviderLookup(Protocol):
    """Resolves provider identities by key or by payer preference."""

    def get_provider(self, key: str) -> ProviderIdentity:  # pragma: no cover - Protocol definition
        ...

    def get_provider_for_payer(self, payer: PayerProfile) -> ProviderIdentity:  # pragma: no cover - Protocol definition
        ...


class InMemoryPayerProfileStore:
    """Dictionary-backed payer profile lookup."""

    def __init__(self, profiles: Optional[Iterable[PayerProfile]] = None):
        source = DEFAULT_PAYER_PROFILES if profiles is None else profiles
        self._profiles: Dict[str, PayerProfile] = {p.payer_id.upper(): p for p in source}

    def get_payer(self, payer_id: str) -> PayerProfile:
        """Get a payer profile; raises PayerProfileNotFoundError."""
        profile = self._profiles.get((payer_id or "").strip().upper())
        if profile is None:
            raise PayerProfileNotFoundError(payer_id)
        return profile


class InMemoryProviderStore:
    """Dictionary-backed provider lookup with a default provider."""

    def __init__(
        self,
        providers: Optional[Dict[str, ProviderIdentity]] = None,
        default_key: str = "MOONLIT_PLLC",
    ):
        self._providers: Dict[str, ProviderIdentity] = dict(
            DEFAULT_PROVIDERS if providers is None else providers
        )
        self.default_key = default_key

    def get_provider(self, key: str) -> ProviderIdentity:
        """Get a provider by key; raises ProviderNotFoundError."""
        provider = self._providers.get(key)
        if provider is None:
            raise ProviderNotFoundError(key)
        return provider

    def get_provider_for_payer(self, payer: PayerProfile) -> ProviderIdentity:
        """The payer's preferred provider, else the default provider."""
        return self.get_provider(payer.preferred_provider or self.default_key)


# =============================================================================
# Fixtures
# =============================================================================


DEFAULT_PROVIDERS: Dict[str, ProviderIdentity] = {
    "MOONLIT_PLLC": ProviderIdentity(npi="1275348807", name="MOONLIT PLLC"),
    "TRAVIS_NORSETH": ProviderIdentity(npi="1124778121", name="TRAVIS NORSETH"),
}


DEFAULT_PAYER_PROFILES: Tuple[PayerProfile, ...] = (
    PayerProfile(
        payer_id="UTMCD",
        payer_name="UTAH MEDICAID",
        display_name="Utah Medicaid (Traditional FFS)",
        category=PayerCategory.MEDICAID,
        allows_name_only=True,
        supports_member_id_in_subscriber_segment=False,
        requires_gender_in_demographics=False,
        service_date_format=None,
        service_type_codes=("30",),
        preferred_provider="MOONLIT_PLLC",
        notes="Subscriber ID and DTP in the request produce 999 rejections.",
    ),
    PayerProfile(
        payer_id="60054",
        payer_name="AETNA",
        display_name="Aetna Healthcare",
        category=PayerCategory.COMMERCIAL,
        requires_gender_in_demographics=True,
        service_type_codes=("30", "98", "A8"),
        preferred_provider="TRAVIS_NORSETH",
        notes="Provider must be enrolled with Aetna.",
    ),
    PayerProfile(
        payer_id="ABH12",
        payer_name="AETNA BETTER HEALTH",
        display_name="Aetna Better Health - Illinois",
        category=PayerCategory.MEDICAID_MANAGED_CARE,
        requires_gender_in_demographics=True,
        preferred_provider="TRAVIS_NORSETH",
    ),
    PayerProfile(
        payer_id="UNIV-UTHP",
        payer_name="UNIVERSITY OF UTAH HEALTH PLANS",
        display_name="University of Utah Health Plans (UUHP)",
        category=PayerCategory.COMMERCIAL,
        requires_gender_in_demographics=True,
        service_type_codes=("30", "98", "A8", "MH"),
        preferred_provider="MOONLIT_PLLC",
    ),
    PayerProfile(
        payer_id="REGENCE",
        payer_name="REGENCE BLUECROSS BLUESHIELD",
        display_name="Regence BlueCross BlueShield",
        category=PayerCategory.COMMERCIAL,
        requires_gender_in_demographics=True,
        preferred_provider="MOONLIT_PLLC",
    ),
    PayerProfile(
        payer_id="SELH",
        payer_name="SELECTHEALTH",
        display_name="SelectHealth",
        category=PayerCategory.COMMERCIAL,
        requires_gender_in_demographics=True,
        preferred_provider="MOONLIT_PLLC",
    ),
    PayerProfile(
        payer_id="MOL",
        payer_name="MOLINA HEALTHCARE",
        display_name="Molina Healthcare of Utah",
        category=PayerCategory.MEDICAID_MANAGED_CARE,
        requires_gender_in_demographics=True,
        preferred_provider="MOONLIT_PLLC",
    ),
)
