"""Webhook request handler.

Answers the provider's CRC challenge and relays deliveries to the host.
``respond()`` holds the request logic and is transport-free;
``serve_connection()`` speaks HTTP/1.1 (via h11) over one tunnel connection
and calls it once per request, in arrival order.
"""

import asyncio
import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from http import HTTPStatus
from urllib.parse import parse_qs, urlsplit

import h11

from xapi_relay.errors import BodyReadError, ConnectionServeError
from xapi_relay.models.tunnel import CrcResponse, WebhookDelivery
from xapi_relay.repositories.ngrok import Connection
from xapi_relay.services.publisher import Publisher, publish_error, publish_webhook
from xapi_relay.services.status import SessionHandle
from xapi_relay.settings import settings

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
ALLOWED_METHODS = "GET, POST"


def compute_response_token(consumer_secret: str, crc_token: str) -> str:
    """Sign a CRC token: ``sha256=`` + base64(HMAC-SHA256(secret, token))."""
    digest = hmac.new(
        consumer_secret.encode("utf-8"),
        crc_token.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return "sha256=" + base64.b64encode(digest).decode("ascii")


def crc_response_body(consumer_secret: str, crc_token: str) -> bytes:
    """JSON body answering a CRC challenge."""
    response = CrcResponse(response_token=compute_response_token(consumer_secret, crc_token))
    return response.model_dump_json().encode("utf-8")


@dataclass(frozen=True)
class InboundRequest:
    """One HTTP request received through the tunnel."""

    method: str
    target: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def query_param(self, name: str) -> str | None:
        values = parse_qs(urlsplit(self.target).query, keep_blank_values=True).get(name)
        return values[0] if values else None


@dataclass(frozen=True)
class WebhookResponse:
    """Status, headers and body sent back to the provider."""

    status: int
    body: bytes = b""
    headers: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def text(cls, status: int, message: str) -> "WebhookResponse":
        return cls(
            status=status,
            body=message.encode("utf-8"),
            headers=[("Content-Type", "text/plain; charset=utf-8")],
        )


def _decode_headers(raw_headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for raw_name, raw_value in raw_headers:
        name = raw_name.decode("latin-1")
        value = raw_value.decode("latin-1")
        headers[name] = f"{headers[name]}, {value}" if name in headers else value
    return headers


class WebhookRequestHandler:
    """Handles requests arriving on the tunnel for one session."""

    def __init__(
        self,
        consumer_secret: str,
        publisher: Publisher,
        session: SessionHandle | None = None,
        crc_token_param: str | None = None,
    ):
        self.consumer_secret = consumer_secret
        self.publisher = publisher
        self.session = session
        self.crc_token_param = crc_token_param or settings.crc_token_param

    def respond(
        self,
        request: InboundRequest,
        read_error: BodyReadError | None = None,
    ) -> WebhookResponse:
        """Produce the response for one request.

        Args:
            request: The received request
            read_error: Set when the request body could not be read

        Returns:
            The response to send
        """
        method = request.method.upper()

        if method == "GET":
            token = request.query_param(self.crc_token_param)
            if token is None:
                self._log(f"Rejected GET {request.target}: no {self.crc_token_param}")
                return WebhookResponse.text(
                    400,
                    f"Missing '{self.crc_token_param}' query parameter for CRC check",
                )
            self._log("Answered CRC challenge")
            return WebhookResponse(
                status=200,
                body=crc_response_body(self.consumer_secret, token),
                headers=[("Content-Type", "application/json")],
            )

        if method == "POST":
            if read_error is not None:
                self._log(f"Failed to read webhook body: {read_error}")
                return WebhookResponse.text(400, f"Failed to read request body: {read_error}")
            delivery = WebhookDelivery.from_body(method, request.target, request.headers,
                                                 request.body)
            self._log(f"Received webhook POST {request.target} ({len(request.body)} bytes)")
            publish_webhook(self.publisher, delivery)
            return WebhookResponse(status=200)

        self._log(f"Rejected {method} {request.target}: method not allowed")
        return WebhookResponse(status=405, headers=[("Allow", ALLOWED_METHODS)])

    async def serve_connection(self, connection: Connection) -> None:
        """Serve every request on one connection, then close it.

        Serving errors are reported and never raised.
        """
        conn = h11.Connection(h11.SERVER)
        try:
            while True:
                event = await self._next_event(conn, connection.reader)
                if isinstance(event, h11.ConnectionClosed):
                    break
                if not isinstance(event, h11.Request):
                    raise ConnectionServeError(f"unexpected event {type(event).__name__}",
                                               connection.peer)

                request, read_error = await self._read_request(conn, connection.reader, event)
                response = self.respond(request, read_error)
                await self._send_response(conn, connection.writer, response)

                if conn.our_state is h11.DONE and conn.their_state is h11.DONE:
                    conn.start_next_cycle()
                else:
                    break
        except h11.RemoteProtocolError as e:
            await self._send_bad_request(conn, connection.writer, e)
            self._report(ConnectionServeError(f"malformed request: {e}", connection.peer))
        except (OSError, h11.LocalProtocolError) as e:
            self._report(ConnectionServeError(str(e) or type(e).__name__, connection.peer))
        except ConnectionServeError as e:
            self._report(e)
        finally:
            await connection.close()

    async def _next_event(self, conn: h11.Connection, reader: asyncio.StreamReader) -> object:
        while True:
            event = conn.next_event()
            if event is h11.NEED_DATA:
                conn.receive_data(await reader.read(READ_CHUNK_SIZE))
                continue
            return event

    async def _read_request(
        self,
        conn: h11.Connection,
        reader: asyncio.StreamReader,
        head: h11.Request,
    ) -> tuple[InboundRequest, BodyReadError | None]:
        body = bytearray()
        read_error = None
        try:
            while True:
                event = await self._next_event(conn, reader)
                if isinstance(event, h11.Data):
                    body += event.data
                elif isinstance(event, h11.EndOfMessage):
                    break
                else:
                    raise BodyReadError("connection closed before the body was complete")
        except (h11.RemoteProtocolError, OSError) as e:
            read_error = BodyReadError(str(e) or type(e).__name__)
        except BodyReadError as e:
            read_error = e

        request = InboundRequest(
            method=head.method.decode("ascii"),
            target=head.target.decode("latin-1"),
            headers=_decode_headers(list(head.headers)),
            body=bytes(body),
        )
        return request, read_error

    async def _send_response(
        self,
        conn: h11.Connection,
        writer: asyncio.StreamWriter,
        response: WebhookResponse,
    ) -> None:
        headers = [("Content-Length", str(len(response.body))), *response.headers]
        data = conn.send(
            h11.Response(
                status_code=response.status,
                headers=headers,
                reason=HTTPStatus(response.status).phrase,
            )
        ) or b""
        if response.body:
            data += conn.send(h11.Data(data=response.body)) or b""
        data += conn.send(h11.EndOfMessage()) or b""
        writer.write(data)
        await writer.drain()

    async def _send_bad_request(
        self,
        conn: h11.Connection,
        writer: asyncio.StreamWriter,
        error: h11.RemoteProtocolError,
    ) -> None:
        if conn.our_state not in (h11.IDLE, h11.SEND_RESPONSE):
            return
        try:
            response = WebhookResponse.text(error.error_status_hint, str(error))
            await self._send_response(conn, writer, response)
        except (OSError, h11.LocalProtocolError) as e:
            logger.debug("Could not send 400 response: %s", e)

    def _log(self, message: str) -> None:
        logger.info(message)
        if self.session is not None:
            self.session.append_log(message)

    def _report(self, error: ConnectionServeError) -> None:
        message = f"Connection error ({error.peer or 'unknown peer'}): {error}"
        logger.warning(message)
        if self.session is not None and not self.session.append_log(message):
            return
        publish_error(self.publisher, message)
