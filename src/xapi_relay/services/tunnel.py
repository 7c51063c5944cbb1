"""Tunnel session manager.

Owns the lifecycle of one tunnel at a time::

    Idle -> Starting -> Active -> {Stopped | Failed}

``start_tunnel`` returns as soon as the public URL is known; the accept loop
then runs as a background task, serving each connection in its own task.
"""

import asyncio
import logging
from collections.abc import Awaitable
from enum import StrEnum
from typing import TypeVar

from xapi_relay.errors import ListenerError, TunnelConnectError
from xapi_relay.models.tunnel import TunnelStatus
from xapi_relay.repositories.ngrok import Connection, TunnelListener, TunnelProvider, TunnelSession
from xapi_relay.services.publisher import (
    Publisher,
    publish_error,
    publish_progress,
    publish_url_obtained,
)
from xapi_relay.services.status import SessionHandle, TunnelStatusStore
from xapi_relay.services.webhook import WebhookRequestHandler
from xapi_relay.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TunnelState(StrEnum):
    """Lifecycle of the managed tunnel."""

    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPED = "stopped"
    FAILED = "failed"


class TunnelSessionManager:
    """Starts, tracks and stops the webhook tunnel."""

    def __init__(
        self,
        provider: TunnelProvider,
        publisher: Publisher,
        store: TunnelStatusStore | None = None,
        max_connections: int | None = None,
        tunnel_timeout: float | None = None,
        crc_token_param: str | None = None,
    ):
        self.provider = provider
        self.publisher = publisher
        self.store = store or TunnelStatusStore()
        self.max_connections = max_connections or settings.max_connections
        self.tunnel_timeout = (
            tunnel_timeout if tunnel_timeout is not None else settings.tunnel_timeout
        )
        self.crc_token_param = crc_token_param
        self.state = TunnelState.IDLE

        self._lock = asyncio.Lock()
        self._handle: SessionHandle | None = None
        self._session: TunnelSession | None = None
        self._listener: TunnelListener | None = None
        self._accept_task: asyncio.Task[None] | None = None
        self._connection_tasks: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._accept_task is not None and not self._accept_task.done()

    @property
    def public_url(self) -> str | None:
        return self._listener.url if self._listener is not None else None

    @property
    def active_connections(self) -> int:
        return sum(1 for task in self._connection_tasks if not task.done())

    def get_status(self) -> TunnelStatus | None:
        """Snapshot of the current session, or None if no start was attempted."""
        return self.store.snapshot()

    async def start_tunnel(self, auth_token: str, consumer_secret: str) -> str:
        """Open a tunnel and start accepting webhook connections.

        Any previous session is torn down first.

        Args:
            auth_token: ngrok auth token
            consumer_secret: App consumer secret used to sign CRC tokens

        Returns:
            The public URL of the tunnel

        Raises:
            TunnelConnectError: The session or its listener could not be opened
        """
        async with self._lock:
            await self._teardown()

            handle = self.store.begin_session()
            self._handle = handle
            self.state = TunnelState.STARTING
            self._progress(handle, "Starting ngrok tunnel...")

            try:
                if not auth_token.strip():
                    raise TunnelConnectError("ngrok auth token is required")
                if not consumer_secret:
                    raise TunnelConnectError("consumer secret is required")

                self._session = await self._establish(
                    self.provider.connect(auth_token), "connecting to ngrok"
                )
                self._progress(handle, "ngrok session established")
                self._listener = await self._establish(
                    self._session.listen(), "opening the HTTP endpoint"
                )
            except TunnelConnectError as e:
                await self._close_resources()
                self._fail(handle, f"Failed to start tunnel: {e}")
                raise

            url = self._listener.url
            handle.set_public_url(url)
            publish_url_obtained(self.publisher, url)
            self._progress(handle, f"Tunnel is live at {url}")

            handler = WebhookRequestHandler(
                consumer_secret,
                self.publisher,
                session=handle,
                crc_token_param=self.crc_token_param,
            )
            self._accept_task = asyncio.create_task(
                self._accept_loop(handle, self._listener, handler),
                name=f"tunnel-accept-{handle.session_id}",
            )
            self.state = TunnelState.ACTIVE
            return url

    async def stop_tunnel(self) -> None:
        """Stop accepting, cancel in-flight connections and close the tunnel."""
        async with self._lock:
            handle = self._handle
            was_running = self.is_running
            await self._teardown()
            if handle is not None and was_running:
                if handle.deactivate("Tunnel stopped"):
                    publish_progress(self.publisher, "Tunnel stopped")
                self.state = TunnelState.STOPPED

    async def wait_closed(self) -> None:
        """Wait until the accept loop ends."""
        if self._accept_task is not None:
            await asyncio.wait({self._accept_task})

    async def _establish(self, step: Awaitable[T], action: str) -> T:
        try:
            return await asyncio.wait_for(step, self.tunnel_timeout)
        except TimeoutError as e:
            raise TunnelConnectError(f"timed out {action}") from e
        except TunnelConnectError:
            raise
        except Exception as e:
            logger.debug("Unexpected error %s: %r", action, e)
            raise TunnelConnectError(f"failed {action}: {e}") from e

    async def _accept_loop(
        self,
        handle: SessionHandle,
        listener: TunnelListener,
        handler: WebhookRequestHandler,
    ) -> None:
        slots = asyncio.Semaphore(self.max_connections)
        while True:
            try:
                connection = await listener.accept()
            except ListenerError as e:
                self._fail(handle, f"Tunnel listener error: {e}")
                await self._release(handle)
                return

            if connection is None:
                if handle.deactivate("Tunnel listener finished"):
                    publish_progress(self.publisher, "Tunnel listener finished")
                    self.state = TunnelState.STOPPED
                await self._release(handle)
                return

            await slots.acquire()
            logger.debug("Accepted connection from %s", connection.peer)
            task = asyncio.create_task(self._serve(handler, connection, slots))
            self._connection_tasks.add(task)
            task.add_done_callback(self._connection_tasks.discard)

    async def _serve(
        self,
        handler: WebhookRequestHandler,
        connection: Connection,
        slots: asyncio.Semaphore,
    ) -> None:
        try:
            await handler.serve_connection(connection)
        finally:
            slots.release()

    def _progress(self, handle: SessionHandle, message: str) -> None:
        logger.info(message)
        if handle.append_log(message):
            publish_progress(self.publisher, message)

    def _fail(self, handle: SessionHandle, message: str) -> None:
        logger.error(message)
        if handle.deactivate(message):
            publish_error(self.publisher, message)
            self.state = TunnelState.FAILED

    async def _release(self, handle: SessionHandle) -> None:
        """Close the provider resources if they still belong to ``handle``."""
        if handle is self._handle:
            await self._close_resources()

    async def _teardown(self) -> None:
        tasks = [
            task
            for task in (self._accept_task, *self._connection_tasks)
            if task is not None and not task.done() and task is not asyncio.current_task()
        ]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._accept_task = None
        self._connection_tasks.clear()
        await self._close_resources()

    async def _close_resources(self) -> None:
        listener, session = self._listener, self._session
        self._listener = None
        self._session = None
        try:
            if listener is not None:
                await listener.close()
        finally:
            if session is not None:
                await session.close()
