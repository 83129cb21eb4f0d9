"""
Base Gateway Definitions for the Clearinghouse Transport Layer.

The transport is an external collaborator of the eligibility pipeline:
anything with ``async send(request, timeout) -> str`` can stand in for a
clearinghouse (tests use AsyncMock or httpx.MockTransport).

Provides:
- Transport protocol
- Gateway configuration
- Health tracking per endpoint
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Protocol
import logging

from src.core.enums import ProviderStatus

if TYPE_CHECKING:
    from src.services.edi.soap_envelope import SoapRequest

logger = logging.getLogger(__name__)


class ClearinghouseTransport(Protocol):
    """Sends one wrapped request and returns the raw response text."""

    async def send(self, request: "SoapRequest", timeout: Optional[float] = None) -> str:  # pragma: no cover - Protocol definition
        ...


@dataclass
class GatewayConfig:
    """Configuration for a clearinghouse gateway instance."""

    provider: str
    endpoint: str
    timeout_seconds: float = 30.0
    degraded_threshold: int = 2
    unhealthy_threshold: int = 5


@dataclass
class ProviderHealth:
    """Health status for a clearinghouse endpoint."""

    status: ProviderStatus = ProviderStatus.UNKNOWN
    last_check: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    last_status_code: Optional[int] = None
    avg_latency_ms: float = 0.0
    request_count: int = 0
    error_count: int = 0

    def record_success(self, latency_ms: float) -> None:
        """Record a successful round-trip."""
        self.consecutive_failures = 0
        self.request_count += 1
        self.last_check = datetime.now(timezone.utc)
        # Rolling average latency, seeded by the first success
        if self.request_count - self.error_count == 1:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = self.avg_latency_ms * 0.9 + latency_ms * 0.1
        self.status = ProviderStatus.HEALTHY

    def record_failure(
        self,
        error: str,
        degraded_threshold: int,
        unhealthy_threshold: int,
        status_code: Optional[int] = None,
    ) -> None:
        """Record a failed round-trip."""
        self.consecutive_failures += 1
        self.error_count += 1
        self.request_count += 1
        self.last_error = error
        self.last_status_code = status_code
        self.last_check = datetime.now(timezone.utc)

        if self.consecutive_failures >= unhealthy_threshold:
            self.status = ProviderStatus.UNHEALTHY
        elif self.consecutive_failures >= degraded_threshold:
            self.status = ProviderStatus.DEGRADED
