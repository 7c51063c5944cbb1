"""Outbound HTTP repository."""

import logging
from typing import Any

import httpx
from pydantic import BaseModel

from xapi_relay.errors import BodyReadError, TransportError

logger = logging.getLogger(__name__)


class RawResponse(BaseModel):
    """Status, headers and decoded body of a completed exchange."""

    status: int
    headers: dict[str, str]
    text: str


def collect_headers(headers: httpx.Headers) -> dict[str, str]:
    """Flatten response headers into a plain dict.

    Names are lower-cased; repeated headers are joined with ", ".
    """
    result: dict[str, str] = {}
    for name, value in headers.multi_items():
        if name in result:
            result[name] = f"{result[name]}, {value}"
        else:
            result[name] = value
    return result


class HttpRepository:
    """Sends one request per call over a shared httpx client."""

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpRepository":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        json_body: Any = None,
    ) -> RawResponse:
        """Send a request and read the full response body as text.

        Args:
            method: HTTP verb, already validated
            url: Absolute target URL
            headers: Headers to attach verbatim
            json_body: JSON-serializable body, or None for no body

        Returns:
            The raw response

        Raises:
            TransportError: The request never produced a response
            BodyReadError: Headers arrived but the body stream failed
        """
        kwargs: dict[str, Any] = {"headers": headers}
        if json_body is not None:
            kwargs["json"] = json_body

        try:
            request = self._client.build_request(method, url, **kwargs)
            response = await self._client.send(request, stream=True)
        except (httpx.RequestError, httpx.InvalidURL, UnicodeEncodeError) as e:
            logger.debug("%s %s failed before a response: %r", method, url, e)
            raise TransportError(url, e) from e

        captured = collect_headers(response.headers)
        try:
            await response.aread()
            text = response.text
        except httpx.HTTPError as e:
            logger.debug("%s %s: body read failed after status %d: %r", method, url,
                         response.status_code, e)
            raise BodyReadError(
                "failed to read response body",
                status=response.status_code,
                headers=captured,
            ) from e
        finally:
            await response.aclose()

        return RawResponse(status=response.status_code, headers=captured, text=text)
