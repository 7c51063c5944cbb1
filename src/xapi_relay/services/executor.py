"""Request executor: proxies one ad-hoc request and normalizes the outcome."""

import logging

from xapi_relay.errors import BodyReadError, HttpStatusError, TransportError, ValidationError
from xapi_relay.models.requests import (
    BODY_METHODS,
    HttpMethod,
    RequestFailure,
    RequestResult,
    RequestSpec,
    RequestSuccess,
)
from xapi_relay.repositories.http import HttpRepository
from xapi_relay.settings import settings

logger = logging.getLogger(__name__)

TRACE_ENABLED_VALUE = "1"


class RequestExecutor:
    """Executes request specs submitted by the UI.

    Request-level problems never escape ``execute``; they come back as a
    ``RequestFailure``.
    """

    def __init__(
        self,
        repository: HttpRepository,
        trace_header: str | None = None,
        redacted_header: str | None = None,
    ):
        self.repository = repository
        self.trace_header = trace_header or settings.trace_header
        self.redacted_header = (redacted_header or settings.redacted_header).lower()

    async def execute(self, spec: RequestSpec) -> RequestResult:
        """Perform one outbound call.

        Args:
            spec: The request to send

        Returns:
            ``RequestSuccess`` for a 2xx status, otherwise ``RequestFailure``
        """
        try:
            return await self._execute(spec)
        except ValidationError as e:
            logger.info("Rejected request: %s", e)
            return RequestFailure(status=0, message=str(e))
        except TransportError as e:
            logger.info("%s %s failed: %s", spec.method, spec.url, e)
            return RequestFailure(status=0, message=f"Request failed: {e}")
        except BodyReadError as e:
            logger.info("%s %s: %s", spec.method, spec.url, e)
            return RequestFailure(
                status=e.status,
                message=str(e),
                headers=self._redact(spec, e.headers or {}),
            )
        except HttpStatusError as e:
            return RequestFailure(
                status=e.status,
                message=str(e),
                body=e.body,
                headers=e.headers,
            )

    async def _execute(self, spec: RequestSpec) -> RequestSuccess:
        method = HttpMethod.parse(spec.method)
        if method is None:
            raise ValidationError(spec.method)

        json_body = spec.body if method in BODY_METHODS else None
        if spec.body is not None and json_body is None:
            logger.debug("Dropping body for %s request to %s", method, spec.url)

        response = await self.repository.send(method.value, spec.url, spec.headers, json_body)
        headers = self._redact(spec, response.headers)

        if not 200 <= response.status < 300:
            raise HttpStatusError(response.status, response.text, headers)

        return RequestSuccess(status=response.status, body=response.text, headers=headers)

    def _redact(self, spec: RequestSpec, headers: dict[str, str]) -> dict[str, str]:
        """Strip the internal transaction header unless tracing was requested."""
        if spec.header(self.trace_header) == TRACE_ENABLED_VALUE:
            return headers
        return {k: v for k, v in headers.items() if k.lower() != self.redacted_header}
