"""Notification publishing toward the host UI.

Publishing is fire-and-forget: a failing host callback is logged and never
surfaces in the task that published.
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import BaseModel

from xapi_relay.models.tunnel import NotificationChannel, WebhookDelivery

logger = logging.getLogger(__name__)

EmitFn = Callable[[str, Any], None]


class Publisher(Protocol):
    """Anything that can hand a notification to the host."""

    def publish(self, channel: NotificationChannel, payload: Any) -> None: ...


def to_payload(payload: Any) -> Any:
    """Convert models to JSON-compatible dicts using their wire aliases."""
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    return payload


class CallbackPublisher:
    """Publishes through a host-provided ``emit(channel, payload)`` function."""

    def __init__(self, emit: EmitFn):
        self._emit = emit

    def publish(self, channel: NotificationChannel, payload: Any) -> None:
        try:
            self._emit(channel.value, to_payload(payload))
        except Exception as e:
            logger.warning("Failed to publish %s notification: %s", channel.value, e)


class NullPublisher:
    """Discards every notification."""

    def publish(self, channel: NotificationChannel, payload: Any) -> None:
        logger.debug("Dropped %s notification", channel.value)


def publish_progress(publisher: Publisher, message: str) -> None:
    publisher.publish(NotificationChannel.PROGRESS, message)


def publish_url_obtained(publisher: Publisher, url: str) -> None:
    publisher.publish(NotificationChannel.URL_OBTAINED, url)


def publish_error(publisher: Publisher, message: str) -> None:
    publisher.publish(NotificationChannel.ERROR, message)


def publish_webhook(publisher: Publisher, delivery: WebhookDelivery) -> None:
    publisher.publish(NotificationChannel.WEBHOOK_RECEIVED, delivery)
