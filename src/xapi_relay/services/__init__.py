"""Service layer for business logic."""

from xapi_relay.services.bridge import HostBridge
from xapi_relay.services.executor import RequestExecutor
from xapi_relay.services.formatter import FormatterService
from xapi_relay.services.publisher import CallbackPublisher, NullPublisher, Publisher
from xapi_relay.services.status import SessionHandle, TunnelStatusStore
from xapi_relay.services.tunnel import TunnelSessionManager, TunnelState
from xapi_relay.services.webhook import WebhookRequestHandler, compute_response_token

__all__ = [
    "CallbackPublisher",
    "FormatterService",
    "HostBridge",
    "NullPublisher",
    "Publisher",
    "RequestExecutor",
    "SessionHandle",
    "TunnelSessionManager",
    "TunnelState",
    "TunnelStatusStore",
    "WebhookRequestHandler",
    "compute_response_token",
]
