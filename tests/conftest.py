"""Shared test fixtures."""

import asyncio
import socket
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest

from xapi_relay.errors import ListenerError, TunnelConnectError
from xapi_relay.models.requests import RequestSpec
from xapi_relay.models.tunnel import NotificationChannel, WebhookDelivery
from xapi_relay.repositories.ngrok import Connection
from xapi_relay.services.status import TunnelStatusStore


class RecordingPublisher:
    """Publisher double that keeps every notification."""

    def __init__(self) -> None:
        self.notifications: list[tuple[NotificationChannel, Any]] = []

    def publish(self, channel: NotificationChannel, payload: Any) -> None:
        self.notifications.append((channel, payload))

    def of(self, channel: NotificationChannel) -> list[Any]:
        return [payload for ch, payload in self.notifications if ch is channel]


class FakeListener:
    """In-memory listener; tests push connections or failures into it."""

    def __init__(self, url: str = "https://abc123.ngrok.app"):
        self._url = url
        self._queue: asyncio.Queue[Connection | Exception | None] = asyncio.Queue()
        self.closed = False
        self.accept_calls = 0

    @property
    def url(self) -> str:
        return self._url

    def push(self, connection: Connection) -> None:
        self._queue.put_nowait(connection)

    def fail(self, message: str = "session closed by remote") -> None:
        self._queue.put_nowait(ListenerError(message))

    def finish(self) -> None:
        self._queue.put_nowait(None)

    async def accept(self) -> Connection | None:
        self.accept_calls += 1
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class FakeSession:
    def __init__(self, listener: FakeListener, listen_error: str | None = None):
        self.listener = listener
        self.listen_error = listen_error
        self.closed = False

    async def listen(self) -> FakeListener:
        if self.listen_error is not None:
            raise TunnelConnectError(self.listen_error)
        return self.listener

    async def close(self) -> None:
        self.closed = True


class FakeProvider:
    """Tunnel provider double handing out a fresh listener per session."""

    def __init__(self, connect_error: str | None = None, listen_error: str | None = None):
        self.connect_error = connect_error
        self.listen_error = listen_error
        self.tokens: list[str] = []
        self.sessions: list[FakeSession] = []

    @property
    def listener(self) -> FakeListener:
        return self.sessions[-1].listener

    async def connect(self, auth_token: str) -> FakeSession:
        self.tokens.append(auth_token)
        if self.connect_error is not None:
            raise TunnelConnectError(self.connect_error)
        listener = FakeListener(f"https://session{len(self.sessions) + 1}.ngrok.app")
        session = FakeSession(listener, self.listen_error)
        self.sessions.append(session)
        return session


ClientStreams = tuple[asyncio.StreamReader, asyncio.StreamWriter]
ConnectionFactory = Callable[[], Awaitable[tuple[Connection, ClientStreams]]]


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def store() -> TunnelStatusStore:
    return TunnelStatusStore()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def connection_pair() -> AsyncIterator[ConnectionFactory]:
    """Factory for connected (server Connection, client streams) pairs over a socketpair."""
    writers: list[asyncio.StreamWriter] = []

    async def make() -> tuple[Connection, ClientStreams]:
        server_sock, client_sock = socket.socketpair()
        server_reader, server_writer = await asyncio.open_connection(sock=server_sock)
        client_reader, client_writer = await asyncio.open_connection(sock=client_sock)
        writers.extend([server_writer, client_writer])
        return Connection(server_reader, server_writer, "203.0.113.7:443"), (
            client_reader,
            client_writer,
        )

    yield make

    for writer in writers:
        if not writer.is_closing():
            writer.close()


async def read_response(reader: asyncio.StreamReader) -> tuple[int, dict[str, str], bytes]:
    """Read one HTTP/1.1 response with a Content-Length body."""
    head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), timeout=5)
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if line:
            name, _, value = line.partition(":")
            headers[name.strip().lower()] = value.strip()
    length = int(headers.get("content-length", "0"))
    body = await asyncio.wait_for(reader.readexactly(length), timeout=5) if length else b""
    return status, headers, body


def http_request(
    method: str,
    target: str,
    body: bytes = b"",
    headers: dict[str, str] | None = None,
) -> bytes:
    """Serialize a simple HTTP/1.1 request."""
    lines = [f"{method} {target} HTTP/1.1", "Host: abc123.ngrok.app"]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    if body or method in ("POST", "PUT", "PATCH"):
        lines.append(f"Content-Length: {len(body)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


@pytest.fixture(name="read_response")
def read_response_fixture() -> Callable[..., Awaitable[tuple[int, dict[str, str], bytes]]]:
    return read_response


@pytest.fixture(name="http_request")
def http_request_fixture() -> Callable[..., bytes]:
    return http_request


@pytest.fixture
def provider_factory() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture
def sample_spec() -> RequestSpec:
    return RequestSpec(
        method="get",
        url="https://api.x.com/2/users/me",
        headers={"Authorization": "Bearer token123", "Accept": "application/json"},
    )


@pytest.fixture
def sample_delivery() -> WebhookDelivery:
    return WebhookDelivery.from_body(
        "POST",
        "/webhook",
        {"content-type": "application/json", "x-twitter-webhooks-signature": "sha256=abc"},
        b'{"for_user_id": "2244994945", "tweet_create_events": []}',
    )
