"""Reusable CLI option definitions."""

from typing import Annotated

import typer

# Request command options
HeaderOption = Annotated[
    list[str] | None,
    typer.Option(
        "--header",
        "-H",
        help="Request header as 'Name: value' (repeatable)",
    ),
]

BodyOption = Annotated[
    str | None,
    typer.Option(
        "--body",
        "-d",
        help="JSON body (sent for POST, PUT and PATCH only)",
    ),
]

TraceOption = Annotated[
    bool,
    typer.Option(
        "--trace",
        help="Send X-B3-Flags: 1 and keep the transaction id header in the output",
    ),
]

TimeoutOption = Annotated[
    float | None,
    typer.Option(
        "--timeout",
        help="Request deadline in seconds (default: none)",
        envvar="XAPI_RELAY_REQUEST_TIMEOUT",
    ),
]

# Tunnel command options
AuthTokenOption = Annotated[
    str,
    typer.Option(
        "--auth-token",
        help="ngrok auth token",
        envvar="NGROK_AUTHTOKEN",
    ),
]

ConsumerSecretOption = Annotated[
    str,
    typer.Option(
        "--consumer-secret",
        help="App consumer secret used to answer CRC checks",
        envvar="XAPI_RELAY_CONSUMER_SECRET",
    ),
]

MaxConnectionsOption = Annotated[
    int | None,
    typer.Option(
        "--max-connections",
        min=1,
        help="Maximum inbound connections served at once",
    ),
]

# Output options
PrettyOption = Annotated[
    bool,
    typer.Option(
        "--pretty",
        help="Pretty-print JSON bodies",
    ),
]

TruncateOption = Annotated[
    int | None,
    typer.Option(
        "--truncate",
        help="Truncate bodies to N characters",
    ),
]

NoHeadersOption = Annotated[
    bool,
    typer.Option(
        "--no-headers",
        help="Hide headers in the output",
    ),
]

HeadersFilterOption = Annotated[
    str | None,
    typer.Option(
        "--headers",
        help="Only show these headers (comma-separated, case-insensitive)",
    ),
]

DebugOption = Annotated[
    bool,
    typer.Option(
        "--debug",
        help="Enable debug logging to stderr",
    ),
]
