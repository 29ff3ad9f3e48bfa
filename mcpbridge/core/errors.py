"""Typed exception hierarchy for the MCP bridge."""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base class for all bridge errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(BridgeError):
    """Raised for configuration issues (missing file, invalid JSON, validation failure)."""


class StartupError(BridgeError):
    """Raised when the child entry point is missing or the child cannot be started."""


class TransportParseError(BridgeError):
    """Raised when a message from either side of the bridge cannot be parsed."""


class ProcessUnavailableError(BridgeError):
    """Raised when a write is attempted with no live child process."""


class CorrelationTimeoutError(BridgeError):
    """Raised when no response for a pending request arrives in time.

    Attributes:
        request_id: The bridge-assigned id of the request that timed out.
        timeout: The window that elapsed, in seconds.
    """

    def __init__(self, request_id: int, timeout: float) -> None:
        self.request_id = request_id
        self.timeout = timeout
        super().__init__("Request timeout")


class RemoteError(BridgeError):
    """The child process answered a request with a JSON-RPC error object.

    Attributes:
        code: JSON-RPC error code reported by the child.
        data: Optional additional error data reported by the child.
    """

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class SessionError(BridgeError):
    """Raised for a missing or unknown session id."""


class OriginRejectedError(BridgeError):
    """Raised when a request carries an Origin outside the allow-list."""
