"""Host-facing command surface.

Exposes the operations the desktop host invokes, with host-shaped inputs and
outputs: plain mappings in, JSON-compatible dicts out, and error strings
instead of exceptions.
"""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as ModelValidationError

from xapi_relay.errors import TunnelError
from xapi_relay.models.requests import RequestFailure, RequestSpec
from xapi_relay.services.executor import RequestExecutor
from xapi_relay.services.tunnel import TunnelSessionManager

logger = logging.getLogger(__name__)


class HostBridge:
    """Adapter between the host's command bus and the services."""

    def __init__(self, executor: RequestExecutor, tunnels: TunnelSessionManager):
        self.executor = executor
        self.tunnels = tunnels

    async def execute_request(self, args: Mapping[str, Any]) -> dict[str, Any]:
        """Run ``executeRequest``; malformed arguments come back as a failure."""
        try:
            spec = RequestSpec.model_validate(args)
        except ModelValidationError as e:
            logger.info("Rejected malformed request arguments: %s", e)
            result = RequestFailure(status=0, message=f"Invalid request: {e.errors()[0]['msg']}")
        else:
            result = await self.executor.execute(spec)
        return result.model_dump(mode="json")

    async def start_tunnel(self, auth_token: str, consumer_secret: str) -> str | None:
        """Run ``startTunnel``; returns None on success, else the error string."""
        try:
            await self.tunnels.start_tunnel(auth_token, consumer_secret)
        except TunnelError as e:
            return str(e)
        return None

    async def stop_tunnel(self) -> None:
        await self.tunnels.stop_tunnel()

    def get_tunnel_status(self) -> dict[str, Any] | None:
        status = self.tunnels.get_status()
        if status is None:
            return None
        return status.model_dump(mode="json", by_alias=True)
