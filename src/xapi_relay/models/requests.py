"""Pydantic models for outbound requests and their normalized results."""

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator


class HttpMethod(StrEnum):
    """HTTP verbs the executor is willing to send."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    @classmethod
    def parse(cls, value: str) -> "HttpMethod | None":
        """Return the matching verb (case-insensitive), or None if unsupported."""
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


# Only these verbs carry a JSON body; the rest drop it silently.
BODY_METHODS = frozenset({HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH})


class RequestSpec(BaseModel):
    """A request submitted by the UI. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    headers: dict[str, str] = {}
    body: JsonValue | None = None

    @field_validator("headers")
    @classmethod
    def collapse_headers(cls, v: dict[str, str]) -> dict[str, str]:
        """Collapse keys that differ only by case; the last one wins."""
        collapsed: dict[str, tuple[str, str]] = {}
        for name, value in v.items():
            collapsed[name.lower()] = (name, value)
        return dict(collapsed.values())

    def header(self, name: str) -> str | None:
        """Look up a request header case-insensitively."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class RequestSuccess(BaseModel):
    """A response with a 2xx status."""

    kind: Literal["success"] = "success"
    status: int = Field(ge=200, lt=300)
    body: str
    headers: dict[str, str]

    @property
    def ok(self) -> bool:
        return True


class RequestFailure(BaseModel):
    """Anything else: validation, transport, status or body-read failures.

    ``status`` is 0 when no HTTP response was ever received.
    """

    kind: Literal["failure"] = "failure"
    status: int = Field(ge=0)
    message: str
    body: str | None = None
    headers: dict[str, str] | None = None

    @property
    def ok(self) -> bool:
        return False


RequestResult = Annotated[RequestSuccess | RequestFailure, Field(discriminator="kind")]
