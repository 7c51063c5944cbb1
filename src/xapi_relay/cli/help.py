"""Help content for xapi-relay CLI."""

OVERVIEW = """
xapi-relay - X API request runner and webhook tunnel

Send ad-hoc requests to any HTTP API, or expose a temporary public webhook
endpoint through ngrok that answers X API CRC checks and prints deliveries.

COMMANDS:
  request   Send one HTTP request and show the response
  tunnel    Open an ngrok tunnel and relay webhook deliveries
  crc       Compute the CRC response for a challenge token
  help      Show detailed help and examples

QUICK START:
  # Call an endpoint
  xapi-relay request GET https://api.x.com/2/users/me -H "Authorization: Bearer $TOKEN"

  # Receive webhooks
  export NGROK_AUTHTOKEN=...
  export XAPI_RELAY_CONSUMER_SECRET=...
  xapi-relay tunnel

For more help on a specific command, use: xapi-relay help <command>
"""

REQUEST_HELP = """
REQUEST COMMAND

Send one HTTP request and print status, headers and body as markdown.

USAGE:
  xapi-relay request METHOD URL [OPTIONS]

OPTIONS:
  -H, --header TEXT   Header as 'Name: value' (repeatable)
  -d, --body JSON     JSON body, only sent for POST, PUT and PATCH
  --trace             Send X-B3-Flags: 1; keeps x-transaction-id in the output
  --timeout SECONDS   Request deadline (default: none)
  --pretty            Pretty-print JSON bodies
  --truncate N        Truncate bodies to N characters
  --no-headers        Hide request and response headers
  --headers LIST      Only show these headers (comma-separated)
  --debug             Enable debug logging

EXIT CODES:
  0   2xx response
  1   Any other status, or the request never reached the server

EXAMPLES:
  xapi-relay request GET https://api.x.com/2/tweets/20 -H "Authorization: Bearer $TOKEN"
  xapi-relay request POST https://api.x.com/2/tweets -d '{"text": "hello"}' --pretty
"""

TUNNEL_HELP = """
TUNNEL COMMAND

Open an ngrok tunnel, answer CRC checks signed with your consumer secret, and
print every webhook delivery as it arrives. Press Ctrl+C to stop.

USAGE:
  xapi-relay tunnel [OPTIONS]

OPTIONS:
  --auth-token TEXT        ngrok auth token (env: NGROK_AUTHTOKEN)
  --consumer-secret TEXT   Consumer secret (env: XAPI_RELAY_CONSUMER_SECRET)
  --max-connections N      Inbound connections served at once (default: 64)
  --pretty                 Pretty-print JSON bodies
  --truncate N             Truncate bodies to N characters
  --no-headers             Hide delivery headers
  --headers LIST           Only show these headers (comma-separated)
  --debug                  Enable debug logging

EXAMPLES:
  xapi-relay tunnel --auth-token $NGROK_AUTHTOKEN --consumer-secret $SECRET
  xapi-relay tunnel --pretty --truncate 2000
"""

CRC_HELP = """
CRC COMMAND

Print the JSON body the tunnel would return for a CRC challenge token.

USAGE:
  xapi-relay crc TOKEN --consumer-secret TEXT

EXAMPLES:
  xapi-relay crc abc123 --consumer-secret $SECRET
"""

HELP_TOPICS = {
    "request": REQUEST_HELP,
    "tunnel": TUNNEL_HELP,
    "crc": CRC_HELP,
}


def get_help(command: str | None = None) -> str:
    """Return help text for a command, or the overview."""
    if command is None:
        return OVERVIEW
    help_text = HELP_TOPICS.get(command.lower())
    if help_text is None:
        return f"Unknown command: {command}\n{OVERVIEW}"
    return help_text
