"""Exception hierarchy shared by the executor and the tunnel layer."""


class RelayError(Exception):
    """Base class for all xapi-relay errors."""


class ValidationError(RelayError):
    """Raised when a request spec names an HTTP verb that is not supported."""

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"unsupported method: {method}")


class TransportError(RelayError):
    """Raised when a request never produced an HTTP response.

    Covers connection refused, DNS, TLS, timeouts and malformed URLs.
    """

    def __init__(self, url: str, original_error: Exception | None = None):
        self.url = url
        self.original_error = original_error
        detail = str(original_error) if original_error is not None else "unknown error"
        super().__init__(detail or type(original_error).__name__)


class HttpStatusError(RelayError):
    """Raised for a non-2xx response; the body stays attached for diagnostics."""

    def __init__(self, status: int, body: str, headers: dict[str, str]):
        self.status = status
        self.body = body
        self.headers = headers
        super().__init__(f"API request failed with status {status}")


class BodyReadError(RelayError):
    """Raised when the response headers arrived but the body stream failed."""

    def __init__(
        self,
        message: str,
        status: int = 0,
        headers: dict[str, str] | None = None,
    ):
        self.status = status
        self.headers = headers
        super().__init__(message)


class TunnelError(RelayError):
    """Base class for tunnel lifecycle errors."""


class TunnelConnectError(TunnelError):
    """Raised when the tunnel session or its listener cannot be established."""


class ListenerError(TunnelError):
    """Raised by a listener when it can no longer accept connections."""


class ConnectionServeError(TunnelError):
    """Raised when serving a single inbound connection fails."""

    def __init__(self, message: str, peer: str | None = None):
        self.peer = peer
        super().__init__(message)
