"""Pydantic models for xapi-relay."""

from xapi_relay.models.output import FormatOptions
from xapi_relay.models.requests import (
    BODY_METHODS,
    HttpMethod,
    RequestFailure,
    RequestResult,
    RequestSpec,
    RequestSuccess,
)
from xapi_relay.models.tunnel import (
    CrcResponse,
    NotificationChannel,
    TunnelStatus,
    WebhookDelivery,
)

__all__ = [
    "BODY_METHODS",
    "CrcResponse",
    "FormatOptions",
    "HttpMethod",
    "NotificationChannel",
    "RequestFailure",
    "RequestResult",
    "RequestSpec",
    "RequestSuccess",
    "TunnelStatus",
    "WebhookDelivery",
]
