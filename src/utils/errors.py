"""
Custom Exceptions
Error taxonomy for the eligibility pipeline.

Transport and envelope failures propagate as exceptions. Payer rejections
(AAA) and format rejections (999) are normal results and never raised.
"""

from typing import Any, Optional


class EligibilityError(Exception):
    """Base exception for eligibility pipeline errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InputValidationError(EligibilityError):
    """Raised when a patient query fails caller-side validation."""

    def __init__(self, errors: list[str]):
        super().__init__(
            f"Invalid patient query: {'; '.join(errors)}",
            details={"errors": errors},
        )
        self.errors = errors


class PayerProfileNotFoundError(EligibilityError):
    """Raised when no payer profile is configured for an ID."""

    def __init__(self, payer_id: str):
        super().__init__(f"Payer profile not found: {payer_id}", details={"payer_id": payer_id})
        self.payer_id = payer_id


class ProviderNotFoundError(EligibilityError):
    """Raised when no provider identity is configured for a key."""

    def __init__(self, provider_key: str):
        super().__init__(
            f"Provider identity not found: {provider_key}",
            details={"provider_key": provider_key},
        )
        self.provider_key = provider_key


class TransportError(EligibilityError):
    """Raised when the clearinghouse round-trip fails."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, details={"provider": provider, "status_code": status_code})
        self.provider = provider
        self.status_code = status_code
        self.original_error = original_error


class TransportTimeoutError(TransportError):
    """Raised when the clearinghouse does not answer within the timeout."""

    def __init__(
        self,
        timeout_seconds: float,
        provider: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            f"Clearinghouse request timed out after {timeout_seconds}s",
            provider=provider,
            original_error=original_error,
        )
        self.timeout_seconds = timeout_seconds


class EnvelopeError(EligibilityError):
    """Raised when a SOAP response cannot be decoded."""

    pass


class NoPayloadFoundError(EnvelopeError):
    """Raised when no known Payload element is present in a SOAP response."""

    def __init__(self, snippet: str, fault: Optional[str] = None):
        message = "No payload found in SOAP response"
        if fault:
            message = f"{message} (SOAP fault: {fault})"
        super().__init__(message, details={"snippet": snippet, "fault": fault})
        self.snippet = snippet
        self.fault = fault


class InvalidPayloadError(EnvelopeError):
    """Raised when the Payload element holds something other than X12."""

    def __init__(self, snippet: str, reason: Optional[str] = None):
        message = "Payload is not valid X12"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details={"snippet": snippet, "reason": reason})
        self.snippet = snippet
        self.reason = reason
