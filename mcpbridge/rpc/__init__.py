"""JSON-RPC protocol helpers and the HTTP gateway."""

from mcpbridge.rpc.health import HealthResult, check_health, wait_for_healthy
from mcpbridge.rpc.http import (
    DEFAULT_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    HttpParseError,
    HttpRequest,
    HttpResponse,
    dispatch_request,
    handle_connection,
    run_http_server,
    start_http_server,
)
from mcpbridge.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SERVER_ERROR,
    SESSION_NOT_FOUND,
    encode_message,
    make_error_response,
    make_success_response,
    parse_message,
    serialize_response,
)
from mcpbridge.rpc.types import Request, Response

__all__ = [
    "DEFAULT_PROTOCOL_VERSION",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "SERVER_ERROR",
    "SESSION_NOT_FOUND",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "HealthResult",
    "HttpParseError",
    "HttpRequest",
    "HttpResponse",
    "Request",
    "Response",
    "check_health",
    "dispatch_request",
    "encode_message",
    "handle_connection",
    "make_error_response",
    "make_success_response",
    "parse_message",
    "run_http_server",
    "serialize_response",
    "start_http_server",
    "wait_for_healthy",
]
