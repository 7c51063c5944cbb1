"""Tests for the tunnel session manager."""

import asyncio
import json
from collections.abc import Callable

import pytest

from xapi_relay.errors import TunnelConnectError
from xapi_relay.models.tunnel import NotificationChannel
from xapi_relay.services.tunnel import TunnelSessionManager, TunnelState
from xapi_relay.services.webhook import compute_response_token

SECRET = "consumer-secret"


async def wait_until(predicate: Callable[[], bool], timeout: float = 5) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class HangingProvider:
    """Provider whose connect never completes."""

    async def connect(self, auth_token: str) -> None:
        await asyncio.Event().wait()


@pytest.fixture
async def manager(provider, publisher, store):
    manager = TunnelSessionManager(provider, publisher, store=store)
    yield manager
    await manager.stop_tunnel()


class TestStartTunnel:
    """Tests for starting a tunnel."""

    async def test_status_before_start(self, manager: TunnelSessionManager) -> None:
        """Test there is no status until a start is attempted."""
        assert manager.get_status() is None
        assert manager.state is TunnelState.IDLE

    async def test_start_publishes_url(self, manager, provider, publisher) -> None:
        """Test a successful start records and publishes the public URL."""
        url = await manager.start_tunnel("tok", SECRET)

        assert url == "https://session1.ngrok.app"
        assert provider.tokens == ["tok"]
        assert manager.state is TunnelState.ACTIVE
        assert manager.is_running
        assert manager.public_url == url

        status = manager.get_status()
        assert status is not None
        assert status.is_active is True
        assert status.public_url == url
        assert status.log[0] == "Starting ngrok tunnel..."
        assert status.log[-1] == f"Tunnel is live at {url}"

        assert publisher.of(NotificationChannel.URL_OBTAINED) == [url]
        assert "Starting ngrok tunnel..." in publisher.of(NotificationChannel.PROGRESS)
        assert publisher.of(NotificationChannel.ERROR) == []

    async def test_connect_failure(self, provider_factory, publisher, store) -> None:
        """Test a failed connect marks the session failed."""
        manager = TunnelSessionManager(
            provider_factory(connect_error="authentication failed"), publisher, store=store
        )

        with pytest.raises(TunnelConnectError):
            await manager.start_tunnel("bad", SECRET)

        status = manager.get_status()
        assert status is not None
        assert status.is_active is False
        assert status.public_url is None
        assert status.log[-1] == "Failed to start tunnel: authentication failed"
        assert publisher.of(NotificationChannel.ERROR) == [
            "Failed to start tunnel: authentication failed"
        ]
        assert publisher.of(NotificationChannel.URL_OBTAINED) == []
        assert manager.state is TunnelState.FAILED
        assert not manager.is_running

    async def test_listen_failure_closes_session(
        self, provider_factory, publisher, store
    ) -> None:
        """Test a failed listen releases the already-open session."""
        provider = provider_factory(listen_error="endpoint limit reached")
        manager = TunnelSessionManager(provider, publisher, store=store)

        with pytest.raises(TunnelConnectError):
            await manager.start_tunnel("tok", SECRET)

        assert provider.sessions[0].closed is True
        status = manager.get_status()
        assert status is not None
        assert status.is_active is False
        assert "endpoint limit reached" in status.log[-1]

    @pytest.mark.parametrize(
        ("auth_token", "consumer_secret"),
        [("", SECRET), ("   ", SECRET), ("tok", "")],
    )
    async def test_missing_credentials(
        self, manager, provider, auth_token: str, consumer_secret: str
    ) -> None:
        """Test empty credentials fail before contacting ngrok."""
        with pytest.raises(TunnelConnectError):
            await manager.start_tunnel(auth_token, consumer_secret)

        assert provider.tokens == []
        assert manager.state is TunnelState.FAILED

    async def test_connect_timeout(self, publisher, store) -> None:
        """Test a hung connect is abandoned after the configured timeout."""
        manager = TunnelSessionManager(
            HangingProvider(), publisher, store=store, tunnel_timeout=0.05
        )

        with pytest.raises(TunnelConnectError) as exc_info:
            await manager.start_tunnel("tok", SECRET)

        assert "timed out connecting to ngrok" in str(exc_info.value)
        status = manager.get_status()
        assert status is not None
        assert status.is_active is False

    async def test_restart_replaces_previous_session(self, manager, provider, publisher) -> None:
        """Test a second start tears down the first session completely."""
        await manager.start_tunnel("tok", SECRET)
        first = provider.sessions[0]

        url = await manager.start_tunnel("tok2", SECRET)

        assert url == "https://session2.ngrok.app"
        assert first.closed is True
        assert first.listener.closed is True

        status = manager.get_status()
        assert status is not None
        assert status.is_active is True
        assert status.public_url == url
        assert all("session1" not in entry for entry in status.log)
        assert publisher.of(NotificationChannel.URL_OBTAINED) == [
            "https://session1.ngrok.app",
            url,
        ]


    async def test_unexpected_listen_error(self, provider_factory, publisher, store) -> None:
        """Test a non-tunnel exception while listening fails the session cleanly."""

        class BrokenListenProvider(provider_factory):
            async def connect(self, auth_token: str):
                session = await super().connect(auth_token)

                async def listen():
                    raise OSError("address already in use")

                session.listen = listen
                return session

        provider = BrokenListenProvider()
        manager = TunnelSessionManager(provider, publisher, store=store)

        with pytest.raises(TunnelConnectError) as exc_info:
            await manager.start_tunnel("tok", SECRET)

        assert "address already in use" in str(exc_info.value)
        assert provider.sessions[0].closed is True
        assert manager.state is TunnelState.FAILED
        status = manager.get_status()
        assert status is not None
        assert status.is_active is False
        [error] = publisher.of(NotificationChannel.ERROR)
        assert "address already in use" in error


class TestAcceptLoop:
    """Tests for serving connections through the tunnel."""

    async def test_crc_through_tunnel(
        self, manager, provider, connection_pair, http_request, read_response
    ) -> None:
        """Test a CRC challenge arriving on the tunnel is answered."""
        await manager.start_tunnel("tok", SECRET)
        connection, (reader, writer) = await connection_pair()
        provider.listener.push(connection)

        writer.write(http_request("GET", "/webhook?crc_token=abc123"))
        await writer.drain()
        status, _, body = await read_response(reader)

        assert status == 200
        assert json.loads(body) == {
            "response_token": compute_response_token(SECRET, "abc123")
        }

    async def test_delivery_then_listener_failure(
        self, manager, provider, publisher, connection_pair, http_request, read_response
    ) -> None:
        """Test a fatal listener error ends the session after earlier deliveries."""
        await manager.start_tunnel("tok", SECRET)
        listener = provider.listener
        connection, (reader, writer) = await connection_pair()
        listener.push(connection)

        writer.write(http_request("POST", "/webhook", b'{"event": 1}'))
        await writer.drain()
        status, _, _ = await read_response(reader)
        assert status == 200

        listener.fail("session closed by remote")
        await asyncio.wait_for(manager.wait_closed(), timeout=5)

        [delivery] = publisher.of(NotificationChannel.WEBHOOK_RECEIVED)
        assert delivery.decoded_body() == b'{"event": 1}'

        tunnel_status = manager.get_status()
        assert tunnel_status is not None
        assert tunnel_status.is_active is False
        assert tunnel_status.log[-1] == "Tunnel listener error: session closed by remote"
        assert publisher.of(NotificationChannel.ERROR) == [
            "Tunnel listener error: session closed by remote"
        ]
        assert manager.state is TunnelState.FAILED
        assert listener.closed is True
        assert provider.sessions[0].closed is True
        assert manager.public_url is None

    async def test_listener_exhaustion(self, manager, provider, publisher) -> None:
        """Test the session ends quietly when the listener runs out."""
        await manager.start_tunnel("tok", SECRET)

        provider.listener.finish()
        await asyncio.wait_for(manager.wait_closed(), timeout=5)

        status = manager.get_status()
        assert status is not None
        assert status.is_active is False
        assert status.log[-1] == "Tunnel listener finished"
        assert "Tunnel listener finished" in publisher.of(NotificationChannel.PROGRESS)
        assert publisher.of(NotificationChannel.ERROR) == []
        assert manager.state is TunnelState.STOPPED

    async def test_connections_are_bounded(
        self, provider, publisher, store, connection_pair, http_request, read_response
    ) -> None:
        """Test no more than max_connections are served at once."""
        manager = TunnelSessionManager(provider, publisher, store=store, max_connections=1)
        await manager.start_tunnel("tok", SECRET)
        first, (_, first_writer) = await connection_pair()
        second, (second_reader, second_writer) = await connection_pair()
        provider.listener.push(first)
        provider.listener.push(second)

        await wait_until(lambda: provider.listener.accept_calls >= 2)
        second_writer.write(http_request("GET", "/?crc_token=t"))
        await second_writer.drain()
        await asyncio.sleep(0.05)
        assert manager.active_connections == 1

        first_writer.close()
        status, _, _ = await read_response(second_reader)

        assert status == 200
        await manager.stop_tunnel()

    async def test_connection_errors_are_isolated(
        self, manager, provider, publisher, connection_pair, http_request, read_response
    ) -> None:
        """Test a broken connection does not stop the tunnel."""
        await manager.start_tunnel("tok", SECRET)
        bad, (bad_reader, bad_writer) = await connection_pair()
        good, (good_reader, good_writer) = await connection_pair()

        provider.listener.push(bad)
        bad_writer.write(b"NOT HTTP AT ALL\r\n\r\n")
        await bad_writer.drain()
        await read_response(bad_reader)

        provider.listener.push(good)
        good_writer.write(http_request("GET", "/?crc_token=t"))
        await good_writer.drain()
        status, _, _ = await read_response(good_reader)

        assert status == 200
        assert manager.is_running
        assert len(publisher.of(NotificationChannel.ERROR)) == 1
        tunnel_status = manager.get_status()
        assert tunnel_status is not None
        assert tunnel_status.is_active is True


class TestStopTunnel:
    """Tests for stopping a tunnel."""

    async def test_stop_cancels_connections(
        self, manager, provider, publisher, connection_pair
    ) -> None:
        """Test stopping cancels in-flight connections and closes the tunnel."""
        await manager.start_tunnel("tok", SECRET)
        connection, _ = await connection_pair()
        provider.listener.push(connection)
        await wait_until(lambda: manager.active_connections == 1)

        await manager.stop_tunnel()

        assert manager.active_connections == 0
        assert not manager.is_running
        assert manager.state is TunnelState.STOPPED
        assert provider.listener.closed is True
        assert provider.sessions[0].closed is True
        assert connection.writer.is_closing()

        status = manager.get_status()
        assert status is not None
        assert status.is_active is False
        assert status.log[-1] == "Tunnel stopped"
        assert "Tunnel stopped" in publisher.of(NotificationChannel.PROGRESS)

    async def test_stop_when_idle(self, manager, publisher) -> None:
        """Test stopping without a tunnel does nothing."""
        await manager.stop_tunnel()

        assert manager.get_status() is None
        assert manager.state is TunnelState.IDLE
        assert publisher.notifications == []

    async def test_stop_after_failure_keeps_failed_state(self, manager, provider) -> None:
        """Test a stop after the listener failed leaves the failure in place."""
        await manager.start_tunnel("tok", SECRET)
        provider.listener.fail("gone")
        await asyncio.wait_for(manager.wait_closed(), timeout=5)

        await manager.stop_tunnel()

        status = manager.get_status()
        assert status is not None
        assert status.log[-1] == "Tunnel listener error: gone"
        assert manager.state is TunnelState.FAILED

    async def test_stop_during_listener_close_still_closes_session(
        self, manager, provider
    ) -> None:
        """Test cancelling a slow listener close still releases the ngrok session."""
        await manager.start_tunnel("tok", SECRET)
        listener = provider.listener
        closing = asyncio.Event()

        async def slow_close() -> None:
            closing.set()
            await asyncio.sleep(0.2)
            listener.closed = True

        listener.close = slow_close
        listener.fail("gone")
        await asyncio.wait_for(closing.wait(), timeout=5)

        await manager.stop_tunnel()

        assert provider.sessions[0].closed is True
        assert not manager.is_running
