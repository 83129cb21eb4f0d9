"""
Gateway Module for the Eligibility Verification System.

Clearinghouse transport behind a small protocol so the pipeline can be
driven by any ``send(request, timeout) -> str`` implementation.
"""

from src.gateways.base import (
    ClearinghouseTransport,
    GatewayConfig,
    ProviderHealth,
)
from src.gateways.clearinghouse_gateway import (
    ClearinghouseGateway,
    get_clearinghouse_gateway,
    reset_clearinghouse_gateway,
)

__all__ = [
    # Base
    "ClearinghouseTransport",
    "GatewayConfig",
    "ProviderHealth",
    # Clearinghouse
    "ClearinghouseGateway",
    "get_clearinghouse_gateway",
    "reset_clearinghouse_gateway",
]
