"""Main Typer application."""

import typer

from xapi_relay.cli.commands import crc, run_tunnel, send_request, show_help

app = typer.Typer(
    name="xapi-relay",
    help="Send ad-hoc API requests and relay X API webhooks through an ngrok tunnel.",
    no_args_is_help=True,
)

# Register commands
app.command("request", help="Send one HTTP request and show the response")(send_request)
app.command("tunnel", help="Open an ngrok tunnel and relay webhook deliveries")(run_tunnel)
app.command("crc", help="Compute the CRC response for a challenge token")(crc)
app.command("help", help="Show detailed help and examples")(show_help)


if __name__ == "__main__":
    app()
