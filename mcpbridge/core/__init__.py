"""Core errors and process helpers."""

from mcpbridge.core.errors import (
    BridgeError,
    ConfigError,
    CorrelationTimeoutError,
    OriginRejectedError,
    ProcessUnavailableError,
    RemoteError,
    SessionError,
    StartupError,
    TransportParseError,
)
from mcpbridge.core.process import GRACEFUL_TIMEOUT, terminate_process_tree

__all__ = [
    "BridgeError",
    "ConfigError",
    "StartupError",
    "TransportParseError",
    "ProcessUnavailableError",
    "CorrelationTimeoutError",
    "RemoteError",
    "SessionError",
    "OriginRejectedError",
    # Process termination
    "GRACEFUL_TIMEOUT",
    "terminate_process_tree",
]
