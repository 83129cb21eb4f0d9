"""
Clearinghouse Gateway for CORE Real-Time Eligibility.

Posts wrapped 270 requests to Office Ally or UHIN over HTTPS and returns
the raw SOAP response text.

Features:
- httpx.AsyncClient with a caller-specified timeout per request
- Non-2xx, timeout and connection failures mapped to TransportError
- Per-endpoint health tracking
- No retry; a timed out check is reported, never resent
"""

import time
import logging
from typing import TYPE_CHECKING, Optional

import httpx

from src.core.config import EligibilitySettings, get_eligibility_settings
from src.gateways.base import GatewayConfig, ProviderHealth
from src.utils.errors import TransportError, TransportTimeoutError

if TYPE_CHECKING:
    from src.services.edi.soap_envelope import SoapRequest

logger = logging.getLogger(__name__)

ERROR_BODY_PREVIEW = 500


class ClearinghouseGateway:
    """
    HTTP transport for CORE real-time SOAP requests.

    Usage:
        gateway = ClearinghouseGateway()
        response_text = await gateway.send(soap_request, timeout=15.0)
        await gateway.close()
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        settings: Optional[EligibilitySettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if config is None:
            settings = settings or get_eligibility_settings()
            config = GatewayConfig(
                provider=settings.CLEARINGHOUSE.value,
                endpoint=settings.endpoint,
                timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS,
            )

        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None
        self._health = ProviderHealth()

    @property
    def gateway_name(self) -> str:
        return "Clearinghouse"

    def _get_client(self) -> httpx.AsyncClient:
        """Create the HTTP client on first use."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
            self._owns_client = True
            logger.info(f"{self.gateway_name} client initialized for {self.config.provider}")
        return self._http_client

    async def send(self, request: "SoapRequest", timeout: Optional[float] = None) -> str:
        """
        Post a wrapped request and return the response body.

        Args:
            request: Wrapped SOAP request with transport headers
            timeout: Seconds for this round-trip; defaults to the configured timeout

        Raises:
            TransportTimeoutError: No response within the timeout
            TransportError: Connection failure or non-2xx status
        """
        timeout = timeout or self.config.timeout_seconds
        client = self._get_client()
        start_time = time.perf_counter()

        try:
            response = await client.post(
                self.config.endpoint,
                content=request.body.encode("utf-8"),
                headers=request.headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            self._record_failure(f"Timeout after {timeout}s")
            logger.warning(
                f"{self.gateway_name}: {self.config.provider} timed out "
                f"(payload {request.payload_id})"
            )
            raise TransportTimeoutError(timeout, provider=self.config.provider, original_error=e)
        except httpx.TransportError as e:
            self._record_failure(str(e))
            logger.warning(f"{self.gateway_name}: {self.config.provider} failed: {e}")
            raise TransportError(
                f"Could not reach {self.config.provider}: {e}",
                provider=self.config.provider,
                original_error=e,
            )

        latency = (time.perf_counter() - start_time) * 1000

        if not response.is_success:
            self._record_failure(f"HTTP {response.status_code}", response.status_code)
            logger.warning(
                f"{self.gateway_name}: {self.config.provider} returned {response.status_code}"
            )
            logger.debug(f"Error body: {response.text[:ERROR_BODY_PREVIEW]}")
            raise TransportError(
                f"{self.config.provider} returned HTTP {response.status_code}",
                provider=self.config.provider,
                status_code=response.status_code,
            )

        self._health.record_success(latency)
        logger.debug(
            f"{self.gateway_name}: {self.config.provider} answered in {latency:.1f}ms "
            f"(payload {request.payload_id})"
        )
        return response.text

    def _record_failure(self, error: str, status_code: Optional[int] = None) -> None:
        self._health.record_failure(
            error,
            self.config.degraded_threshold,
            self.config.unhealthy_threshold,
            status_code=status_code,
        )

    def get_health(self) -> ProviderHealth:
        """Current health status of the endpoint."""
        return self._health

    async def close(self) -> None:
        """Clean up gateway resources."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None
        logger.info(f"{self.gateway_name} gateway closed")


# Singleton instance
_clearinghouse_gateway: Optional[ClearinghouseGateway] = None


def get_clearinghouse_gateway() -> ClearinghouseGateway:
    """Get or create the singleton clearinghouse gateway instance."""
    global _clearinghouse_gateway
    if _clearinghouse_gateway is None:
        _clearinghouse_gateway = ClearinghouseGateway()
    return _clearinghouse_gateway


async def reset_clearinghouse_gateway() -> None:
    """Reset the clearinghouse gateway (for testing)."""
    global _clearinghouse_gateway
    if _clearinghouse_gateway:
        await _clearinghouse_gateway.close()
    _clearinghouse_gateway = None
