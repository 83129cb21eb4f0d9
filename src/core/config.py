"""
Eligibility Verification Configuration
Settings for clearinghouse connectivity and X12 envelope identifiers.
Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.core.enums import Clearinghouse


class EligibilitySettings(BaseSettings):
    """
    Eligibility verification configuration settings.

    Source: https://docs.pydantic.dev/latest/concepts/pydantic_settings/
    Verified: 2026-10-19
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="ELIGIBILITY_",  # All eligibility settings prefixed with ELIGIBILITY_
    )

    # =========================================================================
    # Clearinghouse Selection
    # =========================================================================
    CLEARINGHOUSE: Clearinghouse = Field(
        default=Clearinghouse.OFFICE_ALLY,
        description="Clearinghouse used for real-time 270 submissions",
    )

    # =========================================================================
    # Office Ally Configuration
    # =========================================================================
    OFFICE_ALLY_ENDPOINT: str = Field(
        default="https://wsd.officeally.com/TransactionService/rtx.svc",
        description="Office Ally real-time transaction endpoint",
    )
    OFFICE_ALLY_USERNAME: Optional[str] = Field(
        default=None,
        description="Office Ally WS-Security username",
    )
    OFFICE_ALLY_PASSWORD: Optional[str] = Field(
        default=None,
        description="Office Ally WS-Security password",
    )
    OFFICE_ALLY_SENDER_ID: str = Field(
        default="1161680",
        description="Sender ID assigned by Office Ally (ISA06/GS02/SenderID)",
    )
    OFFICE_ALLY_RECEIVER_ID: str = Field(
        default="OFFALLY",
        description="Office Ally receiver ID (ISA08/GS03/ReceiverID)",
    )

    # =========================================================================
    # UHIN Configuration
    # =========================================================================
    UHIN_ENDPOINT: str = Field(
        default="https://ws.uhin.org/webservices/core/soaptype4.asmx",
        description="UHIN CORE SOAP endpoint",
    )
    UHIN_USERNAME: Optional[str] = Field(
        default=None,
        description="UHIN WS-Security username",
    )
    UHIN_PASSWORD: Optional[str] = Field(
        default=None,
        description="UHIN WS-Security password",
    )
    UHIN_TRADING_PARTNER: str = Field(
        default="HT009582-001",
        description="Trading partner number used as sender ID",
    )
    UHIN_RECEIVER_ID: str = Field(
        default="HT000004-001",
        description="UHIN receiver ID (Utah Medicaid production)",
    )

    # =========================================================================
    # X12 Interchange Settings
    # =========================================================================
    ISA_SENDER_QUALIFIER: str = Field(
        default="ZZ",
        description="ISA05 interchange sender ID qualifier",
    )
    ISA_RECEIVER_QUALIFIER: str = Field(
        default="01",
        description="ISA07 interchange receiver ID qualifier",
    )
    ISA_USAGE_INDICATOR: str = Field(
        default="P",
        description="ISA15 usage indicator: P=Production, T=Test",
    )

    # =========================================================================
    # Transport Settings
    # =========================================================================
    REQUEST_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        gt=0,
        description="Default timeout for one clearinghouse round-trip",
    )
    BATCH_CONCURRENCY: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum concurrent checks in a batch",
    )

    # =========================================================================
    # Logging
    # =========================================================================
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    LOG_FILE: Optional[str] = Field(
        default=None,
        description="Optional log file path",
    )
    LOG_JSON: bool = Field(
        default=False,
        description="Emit JSON log records",
    )

    # =========================================================================
    # Benefit Overrides
    # =========================================================================
    DEDUCTIBLE_CARVE_OUT_PATTERNS: list[str] = Field(
        default=["HMHI", "HUNTSMAN MENTAL HEALTH"],
        description=(
            "Managed-care names whose behavioral health services bypass the "
            "deductible. Pending domain-expert confirmation."
        ),
    )

    @field_validator("ISA_USAGE_INDICATOR")
    @classmethod
    def validate_usage_indicator(cls, v: str) -> str:
        """ISA15 accepts only P or T."""
        v = v.strip().upper()
        if v not in ("P", "T"):
            raise ValueError("ISA_USAGE_INDICATOR must be 'P' or 'T'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        v = v.upper()
        if v not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return v

    @property
    def sender_id(self) -> str:
        """Sender ID for the active clearinghouse."""
        if self.CLEARINGHOUSE == Clearinghouse.UHIN:
            return self.UHIN_TRADING_PARTNER
        return self.OFFICE_ALLY_SENDER_ID

    @property
    def receiver_id(self) -> str:
        """Receiver ID for the active clearinghouse."""
        if self.CLEARINGHOUSE == Clearinghouse.UHIN:
            return self.UHIN_RECEIVER_ID
        return self.OFFICE_ALLY_RECEIVER_ID

    @property
    def endpoint(self) -> str:
        """Endpoint URL for the active clearinghouse."""
        if self.CLEARINGHOUSE == Clearinghouse.UHIN:
            return self.UHIN_ENDPOINT
        return self.OFFICE_ALLY_ENDPOINT


# Singleton instance
_eligibility_settings: Optional[EligibilitySettings] = None


def get_eligibility_settings() -> EligibilitySettings:
    """
    Get cached eligibility settings instance.

    Returns:
        EligibilitySettings instance
    """
    global _eligibility_settings
    if _eligibility_settings is None:
        _eligibility_settings = EligibilitySettings()
    return _eligibility_settings
