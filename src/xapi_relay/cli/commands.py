"""CLI command definitions."""

import asyncio
import json
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.text import Text

from xapi_relay.cli.help import get_help
from xapi_relay.cli.options import (
    AuthTokenOption,
    BodyOption,
    ConsumerSecretOption,
    DebugOption,
    HeaderOption,
    HeadersFilterOption,
    MaxConnectionsOption,
    NoHeadersOption,
    PrettyOption,
    TimeoutOption,
    TraceOption,
    TruncateOption,
)
from xapi_relay.errors import TunnelError
from xapi_relay.logging_config import setup_logging
from xapi_relay.models.output import FormatOptions
from xapi_relay.models.requests import RequestResult, RequestSpec
from xapi_relay.models.tunnel import NotificationChannel, TunnelStatus, WebhookDelivery
from xapi_relay.repositories.http import HttpRepository
from xapi_relay.repositories.ngrok import NgrokTunnelProvider
from xapi_relay.services.executor import TRACE_ENABLED_VALUE, RequestExecutor
from xapi_relay.services.formatter import FormatterService
from xapi_relay.services.publisher import CallbackPublisher
from xapi_relay.services.tunnel import TunnelSessionManager, TunnelState
from xapi_relay.services.webhook import crc_response_body
from xapi_relay.settings import settings

console = Console()
err_console = Console(stderr=True)


def _parse_headers(values: list[str] | None) -> dict[str, str]:
    """Parse repeated 'Name: value' options into a dict."""
    headers: dict[str, str] = {}
    for raw in values or []:
        name, sep, value = raw.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"Invalid header: {raw!r}. Use 'Name: value'")
        headers[name.strip()] = value.strip()
    return headers


def _parse_body(body: str | None) -> Any:
    if body is None:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise ValueError(f"Body is not valid JSON: {e}") from None


def _build_format_options(
    pretty: bool = False,
    truncate: int | None = None,
    no_headers: bool = False,
    headers: str | None = None,
) -> FormatOptions:
    """Build FormatOptions from CLI options."""
    headers_filter = None
    if headers:
        headers_filter = [h.strip() for h in headers.split(",") if h.strip()]
    return FormatOptions(
        pretty_print=pretty,
        truncate=truncate,
        show_headers=not no_headers,
        headers_filter=headers_filter,
    )


async def _execute(spec: RequestSpec, timeout: float | None) -> RequestResult:
    async with HttpRepository(timeout=timeout) as repo:
        return await RequestExecutor(repo).execute(spec)


def send_request(
    method: Annotated[str, typer.Argument(help="HTTP method (GET, POST, ...)")],
    url: Annotated[str, typer.Argument(help="Target URL")],
    header: HeaderOption = None,
    body: BodyOption = None,
    trace: TraceOption = False,
    timeout: TimeoutOption = None,
    pretty: PrettyOption = False,
    truncate: TruncateOption = None,
    no_headers: NoHeadersOption = False,
    headers_filter: HeadersFilterOption = None,
    debug: DebugOption = False,
) -> None:
    """Send one HTTP request and show the response."""
    setup_logging(settings.log_level, debug)
    try:
        headers = _parse_headers(header)
        if trace:
            headers[settings.trace_header] = TRACE_ENABLED_VALUE
        spec = RequestSpec(method=method, url=url, headers=headers, body=_parse_body(body))
    except ValueError as e:
        err_console.print(f"Error: {e}", markup=False)
        raise typer.Exit(1) from None

    if timeout is None:
        timeout = settings.request_timeout
    result = asyncio.run(_execute(spec, timeout))

    formatter = FormatterService()
    options = _build_format_options(pretty, truncate, no_headers, headers_filter)
    output = formatter.format_result(spec, result, options)
    console.print(output, markup=False, highlight=False)

    if not result.ok:
        raise typer.Exit(1)


class ConsoleEmitter:
    """Prints tunnel notifications to the terminal."""

    def __init__(self, formatter: FormatterService, options: FormatOptions):
        self.formatter = formatter
        self.options = options

    def __call__(self, channel: str, payload: Any) -> None:
        match channel:
            case NotificationChannel.PROGRESS:
                console.print(Text(str(payload), style="dim"))
            case NotificationChannel.URL_OBTAINED:
                console.print(Text(f"Webhook URL: {payload}", style="bold green"))
            case NotificationChannel.ERROR:
                err_console.print(Text(str(payload), style="red"))
            case NotificationChannel.WEBHOOK_RECEIVED:
                delivery = WebhookDelivery.model_validate(payload)
                label = f"{delivery.method} {delivery.uri}"
                console.print(self.formatter.build_separator(label), markup=False)
                console.print("")
                console.print(
                    self.formatter.format_delivery(delivery, self.options),
                    markup=False,
                    highlight=False,
                )


async def _run_tunnel(
    manager: TunnelSessionManager,
    auth_token: str,
    consumer_secret: str,
) -> TunnelStatus | None:
    await manager.start_tunnel(auth_token, consumer_secret)
    console.print("Waiting for webhooks... (Ctrl+C to stop)\n")
    try:
        await manager.wait_closed()
    finally:
        await manager.stop_tunnel()
    return manager.get_status()


def run_tunnel(
    auth_token: AuthTokenOption,
    consumer_secret: ConsumerSecretOption,
    max_connections: MaxConnectionsOption = None,
    pretty: PrettyOption = False,
    truncate: TruncateOption = None,
    no_headers: NoHeadersOption = False,
    headers_filter: HeadersFilterOption = None,
    debug: DebugOption = False,
) -> None:
    """Open an ngrok tunnel and relay webhook deliveries."""
    setup_logging(settings.log_level, debug)
    formatter = FormatterService()
    options = _build_format_options(pretty, truncate, no_headers, headers_filter)
    publisher = CallbackPublisher(ConsoleEmitter(formatter, options))
    manager = TunnelSessionManager(
        NgrokTunnelProvider(),
        publisher,
        max_connections=max_connections,
    )

    try:
        status = asyncio.run(_run_tunnel(manager, auth_token, consumer_secret))
    except TunnelError as e:
        err_console.print(f"Error: {e}", markup=False)
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("\nTunnel stopped.")
        return

    console.print(formatter.format_status(status), markup=False)
    if manager.state is TunnelState.FAILED:
        raise typer.Exit(1)


def crc(
    token: Annotated[str, typer.Argument(help="The crc_token sent by the provider")],
    consumer_secret: ConsumerSecretOption,
) -> None:
    """Compute the CRC response for a challenge token."""
    console.print(crc_response_body(consumer_secret, token).decode("utf-8"),
                  markup=False, highlight=False)


def show_help(
    command: Annotated[
        str | None,
        typer.Argument(help="Command to get help for"),
    ] = None,
) -> None:
    """Show detailed help and examples."""
    help_text = get_help(command)
    console.print(help_text, markup=False)
