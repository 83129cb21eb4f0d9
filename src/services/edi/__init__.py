"""
X12 EDI Services for Eligibility Verification.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Provides X12 eligibility integration:
- 270 inquiry generation (outbound)
- CORE SOAP envelope wrap/unwrap
- 271 response and 999 acknowledgment parsing (inbound)
- Benefit interpretation and orchestration
"""

from src.services.edi.x12_base import (
    X12Segment,
    X12Loop,
    X12Tokenizer,
    TransactionType,
    X12ValidationError,
    X12ParseError,
)
from src.services.edi.segment_builder import X12SegmentBuilder
from src.services.edi.payer_profiles import (
    PayerProfile,
    ProviderIdentity,
    InMemoryPayerProfileStore,
    InMemoryProviderStore,
)
from src.services.edi.x12_270_generator import (
    X12270Generator,
    PatientQuery,
    EligibilityRequest,
    ServiceTypeCode,
)
from src.services.edi.soap_envelope import (
    SoapCredentials,
    SoapRequest,
    wrap,
    unwrap,
)
from src.services.edi.x12_999_parser import (
    X12999Parser,
    FormatErrorDescriptor,
    FormatErrorKind,
)
from src.services.edi.x12_271_parser import (
    X12271Parser,
    EligibilityResponse,
    EligibilityStatus,
    BenefitInfo,
)
from src.services.edi.benefit_interpreter import (
    BenefitInterpreter,
    DeductibleOverride,
    extract_financial_info,
)
from src.services.edi.eligibility_service import (
    EligibilityService,
    EligibilityCheckResult,
    EligibilityCheckStatus,
    EligibilityResultType,
    get_eligibility_service,
    reset_eligibility_service,
)

__all__ = [
    # Base
    "X12Segment",
    "X12Loop",
    "X12Tokenizer",
    "TransactionType",
    "X12ValidationError",
    "X12ParseError",
    # 270 Generation
    "X12SegmentBuilder",
    "PayerProfile",
    "ProviderIdentity",
    "InMemoryPayerProfileStore",
    "InMemoryProviderStore",
    "X12270Generator",
    "PatientQuery",
    "EligibilityRequest",
    "ServiceTypeCode",
    # Envelope
    "SoapCredentials",
    "SoapRequest",
    "wrap",
    "unwrap",
    # 271 / 999 Parsing
    "X12999Parser",
    "FormatErrorDescriptor",
    "FormatErrorKind",
    "X12271Parser",
    "EligibilityResponse",
    "EligibilityStatus",
    "BenefitInfo",
    # Interpretation
    "BenefitInterpreter",
    "DeductibleOverride",
    "extract_financial_info",
    # Service
    "EligibilityService",
    "EligibilityCheckResult",
    "EligibilityCheckStatus",
    "EligibilityResultType",
    "get_eligibility_service",
    "reset_eligibility_service",
]
