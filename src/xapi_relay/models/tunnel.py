"""Pydantic models for tunnel state, webhook deliveries and notifications."""

import base64
from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class NotificationChannel(StrEnum):
    """Event channels the desktop UI subscribes to."""

    PROGRESS = "ngrok://progress"
    URL_OBTAINED = "ngrok://url-obtained"
    ERROR = "ngrok://error"
    WEBHOOK_RECEIVED = "ngrok://webhook-received"


class TunnelStatus(BaseModel):
    """Snapshot of the current tunnel session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_active: bool = False
    public_url: str | None = None
    log: list[str] = []


class WebhookDelivery(BaseModel):
    """One inbound webhook request, published once and never stored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    method: str
    uri: str
    headers: dict[str, str]
    body_base64: str

    @classmethod
    def from_body(
        cls,
        method: str,
        uri: str,
        headers: dict[str, str],
        body: bytes,
    ) -> "WebhookDelivery":
        """Build a delivery, base64-encoding the raw body verbatim."""
        return cls(
            method=method,
            uri=uri,
            headers=headers,
            body_base64=base64.b64encode(body).decode("ascii"),
        )

    def decoded_body(self) -> bytes:
        """Return the original request body bytes."""
        return base64.b64decode(self.body_base64)


class CrcResponse(BaseModel):
    """Body returned to the provider's challenge-response check."""

    response_token: str

