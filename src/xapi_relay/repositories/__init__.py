"""Repository layer for external communication."""

from xapi_relay.repositories.http import HttpRepository, RawResponse
from xapi_relay.repositories.ngrok import (
    Connection,
    NgrokTunnelProvider,
    TunnelListener,
    TunnelProvider,
    TunnelSession,
)

__all__ = [
    "Connection",
    "HttpRepository",
    "NgrokTunnelProvider",
    "RawResponse",
    "TunnelListener",
    "TunnelProvider",
    "TunnelSession",
]
