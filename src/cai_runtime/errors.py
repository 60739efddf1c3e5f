"""Error taxonomy for the session runtime.

Transport-level problems (unexpected closes, reconnect exhaustion) are
handled inside the transport channel and only logged. Correlation-level
problems surface to the caller of the suspended operation as one of the
exceptions below.
"""

from __future__ import annotations

from typing import Any


class CaiError(Exception):
    """Base class for all runtime errors."""


class ConfigurationError(CaiError):
    """Raised when connection options or settings are missing or invalid."""


class NotConnectedError(CaiError, ConnectionError):
    """Raised when a frame is sent on a channel with no live connection."""


class TransportClosedError(CaiError, ConnectionError):
    """Raised when a connection attempt fails or the client is torn down."""


class RequestTimeoutError(CaiError, TimeoutError):
    """Raised when no matching reply arrives before the deadline."""

    def __init__(self, token: str, timeout: float) -> None:
        super().__init__(f"Timeout waiting for response to {token} after {timeout:g}s")
        self.token = token
        self.timeout = timeout


class NotAuthenticatedError(CaiError):
    """Raised when the session identity is read before authentication."""


class AuthenticationError(CaiError):
    """Raised when the service rejects the session token."""


class RemoteCommandError(CaiError):
    """Raised when the service answers a command with an error frame."""

    def __init__(self, frame: dict[str, Any]) -> None:
        self.comment = frame.get("comment") or "Unknown error"
        self.error_code = frame.get("error_code")
        self.sub_code = frame.get("sub_code")
        self.retry_after_seconds = frame.get("retry_after_seconds")
        self.request_id = frame.get("request_id")
        super().__init__(f"{self.comment} (code={self.error_code})")
