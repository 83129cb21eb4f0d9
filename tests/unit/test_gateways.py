"""
Unit Tests for the Clearinghouse Gateway.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Tests:
- Request posting (body, headers, endpoint)
- Timeout, connection and HTTP status mapping
- Health tracking
"""

import httpx
import pytest

from src.core.enums import EnvelopeDialect, ProviderStatus
from src.gateways.base import GatewayConfig, ProviderHealth
from src.gateways.clearinghouse_gateway import (
    ClearinghouseGateway,
    get_clearinghouse_gateway,
    reset_clearinghouse_gateway,
)
from src.services.edi.soap_envelope import SoapCredentials, wrap
from src.utils.errors import TransportError, TransportTimeoutError


ENDPOINT = "https://clearinghouse.test/rtx.svc"
SOAP_RESPONSE = "<soapenv:Envelope><Payload><![CDATA[ISA*...~]]></Payload></soapenv:Envelope>"


def make_request():
    return wrap(
        "ISA*00*TEST~",
        EnvelopeDialect.OFFICE_ALLY,
        SoapCredentials(username="user", password="pass"),
        sender_id="1161680",
        receiver_id="OFFALLY",
    )


def make_gateway(handler, **config_kwargs) -> ClearinghouseGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    config = GatewayConfig(provider="office_ally", endpoint=ENDPOINT, **config_kwargs)
    return ClearinghouseGateway(config=config, http_client=client)


# =============================================================================
# Send Tests
# =============================================================================


class TestClearinghouseGatewaySend:
    """Test posting wrapped requests."""

    @pytest.mark.asyncio
    async def test_posts_body_and_headers(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["method"] = request.method
            captured["body"] = request.content.decode("utf-8")
            captured["headers"] = request.headers
            return httpx.Response(200, text=SOAP_RESPONSE)

        gateway = make_gateway(handler)
        soap_request = make_request()
        text = await gateway.send(soap_request, timeout=5.0)

        assert text == SOAP_RESPONSE
        assert captured["url"] == ENDPOINT
        assert captured["method"] == "POST"
        assert captured["body"] == soap_request.body
        assert captured["headers"]["action"] == "RealTimeTransaction"
        assert captured["headers"]["content-type"].startswith("application/soap+xml")

    @pytest.mark.asyncio
    async def test_timeout_maps_to_transport_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        gateway = make_gateway(handler)
        with pytest.raises(TransportTimeoutError) as exc_info:
            await gateway.send(make_request(), timeout=2.5)

        assert exc_info.value.timeout_seconds == 2.5
        assert exc_info.value.provider == "office_ally"
        assert isinstance(exc_info.value.original_error, httpx.ReadTimeout)

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectTimeout("connect timed out", request=request)

        gateway = make_gateway(handler)
        with pytest.raises(TransportTimeoutError):
            await gateway.send(make_request())
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(handler)
        with pytest.raises(TransportError) as exc_info:
            await gateway.send(make_request())

        assert not isinstance(exc_info.value, TransportTimeoutError)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 500, 503])
    async def test_non_2xx_maps_to_transport_error(self, status):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="<error/>")

        gateway = make_gateway(handler)
        with pytest.raises(TransportError) as exc_info:
            await gateway.send(make_request())

        assert exc_info.value.status_code == status
        assert exc_info.value.details["status_code"] == status

    @pytest.mark.asyncio
    async def test_default_timeout_from_config(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["timeout"] = request.extensions.get("timeout")
            return httpx.Response(200, text=SOAP_RESPONSE)

        gateway = make_gateway(handler, timeout_seconds=12.0)
        await gateway.send(make_request())
        assert seen["timeout"]["read"] == 12.0


# =============================================================================
# Health Tests
# =============================================================================


class TestProviderHealth:
    """Test endpoint health tracking."""

    def test_initial_state(self):
        health = ProviderHealth()
        assert health.status == ProviderStatus.UNKNOWN
        assert health.request_count == 0

    def test_degrades_then_unhealthy(self):
        health = ProviderHealth()
        health.record_failure("timeout", degraded_threshold=2, unhealthy_threshold=3)
        assert health.status == ProviderStatus.UNKNOWN
        health.record_failure("timeout", degraded_threshold=2, unhealthy_threshold=3)
        assert health.status == ProviderStatus.DEGRADED
        health.record_failure("timeout", degraded_threshold=2, unhealthy_threshold=3)
        assert health.status == ProviderStatus.UNHEALTHY
        assert health.error_count == 3

    def test_success_resets_failures(self):
        health = ProviderHealth()
        health.record_failure("HTTP 500", 2, 5, status_code=500)
        health.record_success(120.0)
        assert health.consecutive_failures == 0
        assert health.status == ProviderStatus.HEALTHY
        assert health.avg_latency_ms == 120.0

    def test_latency_rolls_after_first_success(self):
        health = ProviderHealth()
        health.record_failure("HTTP 500", 2, 5, status_code=500)
        health.record_success(100.0)
        health.record_success(200.0)
        assert health.avg_latency_ms == pytest.approx(110.0)
        assert health.request_count == 3

    @pytest.mark.asyncio
    async def test_gateway_records_failures(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        gateway = make_gateway(handler, degraded_threshold=1)
        with pytest.raises(TransportError):
            await gateway.send(make_request())

        health = gateway.get_health()
        assert health.status == ProviderStatus.DEGRADED
        assert health.last_status_code == 502

    @pytest.mark.asyncio
    async def test_gateway_records_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=SOAP_RESPONSE)

        gateway = make_gateway(handler)
        await gateway.send(make_request())
        assert gateway.get_health().status == ProviderStatus.HEALTHY


# =============================================================================
# Factory Tests
# =============================================================================


class TestGatewayFactory:
    """Test singleton management."""

    @pytest.mark.asyncio
    async def test_singleton_and_reset(self, monkeypatch):
        monkeypatch.setenv("ELIGIBILITY_CLEARINGHOUSE", "uhin")
        import src.core.config as config_module

        monkeypatch.setattr(config_module, "_eligibility_settings", None)
        await reset_clearinghouse_gateway()

        gateway = get_clearinghouse_gateway()
        assert gateway is get_clearinghouse_gateway()
        assert gateway.config.provider == "uhin"
        assert gateway.config.endpoint.startswith("https://ws.uhin.org")

        await reset_clearinghouse_gateway()
        assert get_clearinghouse_gateway() is not gateway
        await reset_clearinghouse_gateway()

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        gateway = ClearinghouseGateway(
            config=GatewayConfig(provider="office_ally", endpoint=ENDPOINT),
            http_client=client,
        )
        await gateway.close()
        assert not client.is_closed
        await client.aclose()
