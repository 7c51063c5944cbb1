"""ngrok tunnel repository.

The session manager only depends on the small capability protocols defined
here. ``NgrokTunnelProvider`` implements them with the ngrok SDK: the SDK
forwards inbound tunnel connections to a private loopback server, and each
stream accepted there is handed out by ``NgrokListener.accept()``.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import ngrok

from xapi_relay.errors import ListenerError, TunnelConnectError

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"


@dataclass
class Connection:
    """One inbound connection delivered through the tunnel."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    peer: str | None = field(default=None)

    async def close(self) -> None:
        """Close the write side and wait for the transport to go away."""
        if self.writer.is_closing():
            return
        self.writer.close()
        with contextlib.suppress(ConnectionError):
            await self.writer.wait_closed()


class TunnelListener(Protocol):
    """Yields inbound connections bound to a public URL."""

    @property
    def url(self) -> str: ...

    async def accept(self) -> Connection | None:
        """Wait for the next connection; None once no more will arrive.

        Raises:
            ListenerError: The listener failed and cannot accept again
        """
        ...

    async def close(self) -> None: ...


class TunnelSession(Protocol):
    """An authenticated session with the tunnel provider."""

    async def listen(self) -> TunnelListener: ...

    async def close(self) -> None: ...


class TunnelProvider(Protocol):
    """Opens tunnel sessions."""

    async def connect(self, auth_token: str) -> TunnelSession: ...


def _format_peer(peername: Any) -> str | None:
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return None


class NgrokListener:
    """Adapts an ngrok HTTP endpoint to the ``TunnelListener`` protocol."""

    def __init__(self, endpoint: Any):
        self._endpoint = endpoint
        self._queue: asyncio.Queue[Connection | BaseException | None] = asyncio.Queue()
        self._server: asyncio.Server | None = None
        self._forward_task: asyncio.Future[Any] | None = None
        self._closed = False

    @property
    def url(self) -> str:
        return self._endpoint.url()

    @property
    def local_address(self) -> str | None:
        """Loopback address the endpoint forwards to, once started."""
        if self._server is None or not self._server.sockets:
            return None
        host, port = self._server.sockets[0].getsockname()[:2]
        return f"{host}:{port}"

    async def start(self) -> None:
        """Bind the loopback server and start forwarding into it."""
        self._server = await asyncio.start_server(self._on_connection, host=LOOPBACK_HOST, port=0)
        address = self.local_address
        logger.debug("Forwarding %s to %s", self.url, address)
        # TODO: switch to listen_and_forward(); Listener.forward is deprecated since ngrok 0.10.
        self._forward_task = asyncio.ensure_future(self._endpoint.forward(address))
        self._forward_task.add_done_callback(self._on_forward_done)

    async def _on_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        connection = Connection(reader, writer, _format_peer(writer.get_extra_info("peername")))
        if self._closed:
            await connection.close()
            return
        self._queue.put_nowait(connection)
        # Keep the stream's callback alive until the handler is done with it.
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()

    def _on_forward_done(self, task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("ngrok forwarding for %s failed: %r", self.url, exc)
            self._queue.put_nowait(exc)
        elif not self._closed:
            # Forwarding ends normally when the remote side closes the endpoint.
            logger.debug("ngrok forwarding for %s ended", self.url)
            self._queue.put_nowait(None)

    async def accept(self) -> Connection | None:
        item = await self._queue.get()
        if item is None:
            # Leave the marker for any later caller.
            self._queue.put_nowait(None)
            return None
        if isinstance(item, BaseException):
            raise ListenerError(f"ngrok forwarding failed: {item}") from item
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._server is not None:
            self._server.close()
        if self._forward_task is not None and not self._forward_task.done():
            self._forward_task.cancel()
        try:
            await self._endpoint.close()
        except Exception as e:
            logger.warning("Failed to close ngrok endpoint %s: %s", self.url, e)
        self._queue.put_nowait(None)


class NgrokSession:
    """Adapts an ngrok session to the ``TunnelSession`` protocol."""

    def __init__(self, session: Any):
        self._session = session

    async def listen(self) -> NgrokListener:
        try:
            endpoint = await self._session.http_endpoint().listen()
        except Exception as e:
            raise TunnelConnectError(f"Failed to open ngrok HTTP endpoint: {e}") from e
        listener = NgrokListener(endpoint)
        try:
            await listener.start()
        except OSError as e:
            await listener.close()
            raise TunnelConnectError(f"Failed to start local forwarding: {e}") from e
        return listener

    async def close(self) -> None:
        try:
            await self._session.close()
        except Exception as e:
            logger.warning("Failed to close ngrok session: %s", e)


class NgrokTunnelProvider:
    """Opens ngrok sessions authenticated with the user's auth token."""

    async def connect(self, auth_token: str) -> NgrokSession:
        try:
            session = await ngrok.SessionBuilder().authtoken(auth_token).connect()
        except Exception as e:
            raise TunnelConnectError(f"Failed to connect ngrok session: {e}") from e
        return NgrokSession(session)
