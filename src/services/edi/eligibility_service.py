"""
Eligibility Verification Service.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Orchestrates one real-time X12 270/271 eligibility check:
- Validate the patient query
- Generate the 270 and wrap it in a CORE SOAP envelope
- Send it through the clearinghouse transport
- Unwrap and parse the 271 (or 999), then interpret benefits
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple
from uuid import uuid4
import asyncio
import time

from src.core.config import EligibilitySettings, get_eligibility_settings
from src.core.enums import Clearinghouse, EnvelopeDialect
from src.gateways.base import ClearinghouseTransport
from src.services.edi.benefit_interpreter import BenefitInterpreter
from src.services.edi.payer_profiles import (
    InMemoryPayerProfileStore,
    InMemoryProviderStore,
    PayerProfileLookup,
    ProviderLookup,
)
from src.services.edi.soap_envelope import SoapCredentials, unwrap, wrap
from src.services.edi.x12_270_generator import PatientQuery, X12270Generator
from src.services.edi.x12_271_parser import EligibilityResponse, X12271Parser
from src.services.edi.x12_base import X12ParseError
from src.utils.errors import (
    EligibilityError,
    EnvelopeError,
    InputValidationError,
    InvalidPayloadError,
    TransportError,
    TransportTimeoutError,
)
from src.utils.logging import get_logger

logger = get_logger(__name__)

PAYLOAD_SNIPPET_LENGTH = 1000


# =============================================================================
# Enums and Models
# =============================================================================


class EligibilityCheckStatus(str, Enum):
    """Status of eligibility check."""
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class EligibilityResultType(str, Enum):
    """Type of eligibility result."""
    ELIGIBLE = "eligible"
    NOT_ELIGIBLE = "not_eligible"
    COVERAGE_EXPIRED = "coverage_expired"
    FORMAT_ERROR = "format_error"
    TRANSPORT_ERROR = "transport_error"
    ENVELOPE_ERROR = "envelope_error"
    INVALID_INPUT = "invalid_input"


@dataclass
class EligibilityCheckResult:
    """Result of one eligibility check."""
    check_id: str
    payer_id: str
    status: EligibilityCheckStatus
    result_type: EligibilityResultType

    response: Optional[EligibilityResponse] = None
    x12_270: Optional[str] = None
    x12_271: Optional[str] = None

    errors: List[str] = field(default_factory=list)
    processing_time_ms: int = 0

    @property
    def is_eligible(self) -> bool:
        return self.result_type == EligibilityResultType.ELIGIBLE


# =============================================================================
# Service
# =============================================================================


class EligibilityService:
    """
    Eligibility Verification Service.

    Usage:
        service = EligibilityService(transport=get_clearinghouse_gateway())
        result = await service.check_eligibility(
            PatientQuery(first_name="Jeremy", last_name="Montoya",
                         date_of_birth=date(1984, 7, 17)),
            payer_id="UTMCD",
        )
        if result.is_eligible:
            ...

    AAA rejections and 999 acknowledgments come back as results. Input,
    transport and envelope failures raise; ``check_eligibility_batch``
    captures them per item instead.
    """

    def __init__(
        self,
        transport: ClearinghouseTransport,
        payer_lookup: Optional[PayerProfileLookup] = None,
        provider_lookup: Optional[ProviderLookup] = None,
        settings: Optional[EligibilitySettings] = None,
        interpreter: Optional[BenefitInterpreter] = None,
        parser_factory: Callable[[], X12271Parser] = X12271Parser,
    ):
        """
        Initialize eligibility service.

        Args:
            transport: Anything with ``async send(request, timeout) -> str``
            payer_lookup: Payer profile lookup (defaults to built-in profiles)
            provider_lookup: Provider lookup (defaults to built-in providers)
            settings: Clearinghouse settings
            interpreter: Benefit interpreter (defaults to configured carve-outs)
            parser_factory: Builds a fresh 271 parser per check
        """
        self.transport = transport
        self.settings = settings or get_eligibility_settings()
        self.payer_lookup = payer_lookup or InMemoryPayerProfileStore()
        self.provider_lookup = provider_lookup or InMemoryProviderStore()
        self.interpreter = interpreter or BenefitInterpreter.from_patterns(
            self.settings.DEDUCTIBLE_CARVE_OUT_PATTERNS
        )
        self.parser_factory = parser_factory
        self.generator_270 = X12270Generator(
            payer_lookup=self.payer_lookup,
            provider_lookup=self.provider_lookup,
            sender_id=self.settings.sender_id,
            receiver_id=self.settings.receiver_id,
            sender_qualifier=self.settings.ISA_SENDER_QUALIFIER,
            receiver_qualifier=self.settings.ISA_RECEIVER_QUALIFIER,
            usage_indicator=self.settings.ISA_USAGE_INDICATOR,
        )

    @property
    def dialect(self) -> EnvelopeDialect:
        if self.settings.CLEARINGHOUSE == Clearinghouse.UHIN:
            return EnvelopeDialect.UHIN
        return EnvelopeDialect.OFFICE_ALLY

    def _credentials(self) -> SoapCredentials:
        if self.settings.CLEARINGHOUSE == Clearinghouse.UHIN:
            username, password = self.settings.UHIN_USERNAME, self.settings.UHIN_PASSWORD
        else:
            username, password = self.settings.OFFICE_ALLY_USERNAME, self.settings.OFFICE_ALLY_PASSWORD
        if not username or not password:
            raise EnvelopeError(
                f"Credentials not configured for {self.settings.CLEARINGHOUSE.value}",
                details={"clearinghouse": self.settings.CLEARINGHOUSE.value},
            )
        return SoapCredentials(username=username, password=password)

    async def check_eligibility(
        self,
        query: PatientQuery,
        payer_id: str,
        timeout: Optional[float] = None,
    ) -> EligibilityCheckResult:
        """
        Check eligibility for one patient.

        Args:
            query: Patient identity
            payer_id: Clearinghouse payer ID
            timeout: Transport timeout in seconds (defaults to settings)

        Returns:
            EligibilityCheckResult with the interpreted response

        Raises:
            InputValidationError: Query fails validation
            PayerProfileNotFoundError: Unknown payer ID
            TransportTimeoutError: No response in time (never retried)
            TransportError: Connection failure or non-2xx status
            NoPayloadFoundError: Response has no X12 payload
            InvalidPayloadError: Payload is not parseable X12
        """
        from src.services.validation.patient_query_validator import ensure_valid_patient_query

        start_time = time.perf_counter()
        check_id = str(uuid4())

        payer = self.payer_lookup.get_payer(payer_id)
        ensure_valid_patient_query(query, payer=payer)

        logger.info(f"Eligibility check {check_id}: starting for payer {payer.payer_id}")

        request = self.generator_270.generate_for(query, payer.payer_id)
        x12_270 = request.to_x12()
        soap_request = wrap(
            x12_270,
            self.dialect,
            self._credentials(),
            sender_id=self.settings.sender_id,
            receiver_id=self.settings.receiver_id,
        )

        response_text = await self.transport.send(
            soap_request,
            timeout=timeout or self.settings.REQUEST_TIMEOUT_SECONDS,
        )
        x12_271 = unwrap(response_text)

        try:
            parsed = self.parser_factory().parse(x12_271, sent_member_id=query.subscriber_id)
        except X12ParseError as e:
            raise InvalidPayloadError(x12_271[:PAYLOAD_SNIPPET_LENGTH], reason=e.message) from e
        response = self.interpreter.interpret(parsed, payer)

        result = EligibilityCheckResult(
            check_id=check_id,
            payer_id=payer.payer_id,
            status=EligibilityCheckStatus.COMPLETED,
            result_type=self._classify(response),
            response=response,
            x12_270=x12_270,
            x12_271=x12_271,
            errors=self._response_errors(response),
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )

        logger.info(
            f"Eligibility check {check_id}: completed result={result.result_type.value} "
            f"control={request.control_number} in {result.processing_time_ms}ms"
        )
        return result

    async def check_eligibility_batch(
        self,
        items: Sequence[Tuple[PatientQuery, str]],
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[EligibilityCheckResult]:
        """
        Check eligibility for several patients.

        Args:
            items: (query, payer_id) pairs
            concurrency: Max concurrent checks (defaults to settings)
            timeout: Per-check transport timeout

        Returns:
            One result per item, in input order; failures are captured as
            FAILED or TIMEOUT results
        """
        semaphore = asyncio.Semaphore(concurrency or self.settings.BATCH_CONCURRENCY)

        async def check_with_semaphore(query: PatientQuery, payer_id: str) -> EligibilityCheckResult:
            async with semaphore:
                start_time = time.perf_counter()
                try:
                    return await self.check_eligibility(query, payer_id, timeout=timeout)
                except EligibilityError as e:
                    result = self._failed_result(payer_id, e)
                    result.processing_time_ms = int((time.perf_counter() - start_time) * 1000)
                    return result

        logger.info(f"Eligibility batch: {len(items)} check(s)")
        tasks = [check_with_semaphore(query, payer_id) for query, payer_id in items]
        return list(await asyncio.gather(*tasks))

    # -------------------------------------------------------------------------
    # Result helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _classify(response: EligibilityResponse) -> EligibilityResultType:
        if response.is_format_error:
            return EligibilityResultType.FORMAT_ERROR
        if response.coverage_period.is_expired:
            return EligibilityResultType.COVERAGE_EXPIRED
        if response.enrolled:
            return EligibilityResultType.ELIGIBLE
        return EligibilityResultType.NOT_ELIGIBLE

    @staticmethod
    def _response_errors(response: EligibilityResponse) -> List[str]:
        errors = [str(d) for d in response.format_errors]
        errors.extend(r.description for r in response.rejections if not r.valid and r.description)
        if response.error and response.error not in errors:
            errors.append(response.error)
        return errors

    @staticmethod
    def _failed_result(payer_id: str, error: EligibilityError) -> EligibilityCheckResult:
        status = EligibilityCheckStatus.FAILED
        if isinstance(error, TransportTimeoutError):
            status = EligibilityCheckStatus.TIMEOUT
            result_type = EligibilityResultType.TRANSPORT_ERROR
        elif isinstance(error, TransportError):
            result_type = EligibilityResultType.TRANSPORT_ERROR
        elif isinstance(error, EnvelopeError):
            result_type = EligibilityResultType.ENVELOPE_ERROR
        else:
            result_type = EligibilityResultType.INVALID_INPUT

        logger.warning(f"Eligibility check for payer {payer_id} failed: {error.message}")
        errors = error.errors if isinstance(error, InputValidationError) else [error.message]
        return EligibilityCheckResult(
            check_id=str(uuid4()),
            payer_id=payer_id,
            status=status,
            result_type=result_type,
            errors=list(errors),
        )


# =============================================================================
# Factory Function
# =============================================================================


_eligibility_service: Optional[EligibilityService] = None


def get_eligibility_service(transport: Optional[ClearinghouseTransport] = None) -> EligibilityService:
    """
    Get or create eligibility service instance.

    Args:
        transport: Transport for the first call (defaults to the clearinghouse gateway)
    """
    global _eligibility_service

    if _eligibility_service is None:
        if transport is None:
            from src.gateways.clearinghouse_gateway import get_clearinghouse_gateway

            transport = get_clearinghouse_gateway()
        _eligibility_service = EligibilityService(transport=transport)

    return _eligibility_service


def reset_eligibility_service() -> None:
    """Reset the eligibility service (for testing)."""
    global _eligibility_service
    _eligibility_service = None
