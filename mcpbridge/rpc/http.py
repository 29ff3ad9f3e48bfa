"""Pure asyncio HTTP gateway in front of the bridged MCP server.

This module implements the Streamable HTTP side of the bridge. It uses only
asyncio streams, with no web framework.

Request pipeline (any failure short-circuits):
    1. Read request line and headers
    2. Origin check (only if an Origin header is present) -> 403
    3. OPTIONS preflight -> 200 with CORS headers only
    4. MCP-Protocol-Version check -> 400
    5. Path normalization (reverse-proxy prefixes are ignored)
    6. Route:
        - GET /mcp, GET /sse -> event stream (body is never read)
        - everything else    -> read body, dispatch, single response

Routes:
    - GET    /health       -> liveness and readiness
    - GET    /capabilities -> stored initialize result (503 until ready)
    - POST   /mcp          -> JSON-RPC request, notification or response
    - GET    /mcp, /sse    -> Server-Sent Events stream
    - DELETE /mcp          -> terminate a session
    - OPTIONS any          -> CORS preflight

Example usage:
    bridge = Bridge(config)
    await bridge.start()
    await run_http_server(bridge, shutdown_event=stop)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from mcpbridge import __version__
from mcpbridge.core.errors import (
    BridgeError,
    CorrelationTimeoutError,
    OriginRejectedError,
    ProcessUnavailableError,
    RemoteError,
    SessionError,
    TransportParseError,
)
from mcpbridge.rpc.protocol import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    SESSION_NOT_FOUND,
    make_error_response,
    make_success_response,
    parse_message,
    serialize_response,
)

if TYPE_CHECKING:
    from mcpbridge.bridge.runtime import Bridge

logger = logging.getLogger(__name__)

# Constants
DEFAULT_PORT = 8080
MAX_BODY_SIZE = 10 * 1024 * 1024  # 10MB
SERVICE_NAME = "mcp-universal-runtime"

# HTTP header limits (DoS protection)
MAX_HEADERS_COUNT = 128  # Max number of headers
MAX_HEADER_NAME_LEN = 1024  # Max header name length (bytes)
MAX_HEADER_VALUE_LEN = 8192  # Max header value length (bytes)
MAX_TOTAL_HEADERS_SIZE = 32 * 1024  # 32KB total header size limit
MAX_REQUEST_LINE_LEN = 8192  # Max request line length
READ_TIMEOUT = 30.0

# MCP protocol negotiation
SUPPORTED_PROTOCOL_VERSIONS: tuple[str, ...] = ("2025-06-18", "2025-03-26")
DEFAULT_PROTOCOL_VERSION = "2025-03-26"

SESSION_HEADER = "Mcp-Session-Id"
PROTOCOL_VERSION_HEADER = "MCP-Protocol-Version"

KNOWN_ROUTES: frozenset[str] = frozenset({"health", "mcp", "sse", "capabilities"})

CORS_ALLOW_METHODS = "GET, POST, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Accept, MCP-Protocol-Version, Mcp-Session-Id, Last-Event-ID"

STATUS_MESSAGES: dict[int, str] = {
    200: "OK",
    202: "Accepted",
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


@dataclass
class HttpRequest:
    """Parsed HTTP request.

    Attributes:
        method: HTTP method (GET, POST, etc.)
        path: Request target as sent, including any query string
        headers: Dict of lowercase header names to values
        body: Request body as string
    """

    method: str
    path: str
    headers: dict[str, str]
    body: str = ""


@dataclass
class HttpResponse:
    """Response produced by a route handler.

    Attributes:
        status: HTTP status code.
        body: Response body; empty for 202 and preflight responses.
        headers: Extra headers (e.g. Mcp-Session-Id).
    """

    status: int
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)


class HttpParseError(TransportParseError):
    """Raised when HTTP request parsing fails."""


# =============================================================================
# HTTP wire helpers
# =============================================================================


async def _read_line(reader: asyncio.StreamReader, what: str) -> bytes:
    try:
        return await asyncio.wait_for(reader.readline(), timeout=READ_TIMEOUT)
    except TimeoutError:
        raise HttpParseError(f"{what} timeout") from None
    except ValueError as e:
        # StreamReader limit exceeded
        raise HttpParseError(f"{what} too long") from e


async def read_http_request_headers(
    reader: asyncio.StreamReader,
) -> tuple[str, str, dict[str, str]]:
    """Read only request line and headers (not body).

    Streaming GET requests never read a body, so the body is read separately
    by read_http_body() once the route is known.

    Args:
        reader: The asyncio StreamReader to read from.

    Returns:
        Tuple of (method, path, headers).

    Raises:
        HttpParseError: If the request line or headers are malformed.
    """
    request_line = await _read_line(reader, "Request")
    if not request_line:
        raise HttpParseError("Empty request")

    if len(request_line) > MAX_REQUEST_LINE_LEN:
        raise HttpParseError(f"Request line too long: {len(request_line)} > {MAX_REQUEST_LINE_LEN}")

    # Parse request line: "POST /mcp HTTP/1.1\r\n"
    try:
        request_line_str = request_line.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise HttpParseError(f"Invalid request encoding: {e}") from e
    parts = request_line_str.split(" ")
    if len(parts) != 3:
        raise HttpParseError(f"Invalid request line: {request_line_str}")
    method, path, _version = parts

    headers: dict[str, str] = {}
    total_headers_size = 0

    while True:
        header_line = await _read_line(reader, "Header read")
        if not header_line or header_line in (b"\r\n", b"\n"):
            break  # End of headers

        total_headers_size += len(header_line)
        if total_headers_size > MAX_TOTAL_HEADERS_SIZE:
            raise HttpParseError(
                f"Total headers size exceeds limit: {total_headers_size} > {MAX_TOTAL_HEADERS_SIZE}"
            )

        try:
            header_str = header_line.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise HttpParseError(f"Invalid header encoding: {e}") from e

        if ":" not in header_str:
            continue  # Skip malformed headers

        name, value = header_str.split(":", 1)
        name = name.strip()
        value = value.strip()

        if len(name) > MAX_HEADER_NAME_LEN:
            raise HttpParseError(f"Header name too long: {len(name)} > {MAX_HEADER_NAME_LEN}")
        if len(value) > MAX_HEADER_VALUE_LEN:
            raise HttpParseError(f"Header value too long: {len(value)} > {MAX_HEADER_VALUE_LEN}")
        if len(headers) >= MAX_HEADERS_COUNT:
            raise HttpParseError(f"Too many headers: exceeds limit of {MAX_HEADERS_COUNT}")

        headers[name.lower()] = value

    return method.upper(), path, headers


async def read_http_body(
    reader: asyncio.StreamReader,
    headers: dict[str, str],
) -> str:
    """Read request body based on Content-Length header.

    Raises:
        HttpParseError: If the body is too large, incomplete, or malformed.
    """
    content_length_str = headers.get("content-length", "0")
    try:
        content_length = int(content_length_str)
    except ValueError as e:
        raise HttpParseError(f"Invalid Content-Length: {content_length_str}") from e

    if content_length < 0:
        raise HttpParseError(f"Invalid Content-Length: {content_length_str}")
    if content_length > MAX_BODY_SIZE:
        raise HttpParseError(f"Request body too large: {content_length} > {MAX_BODY_SIZE}")
    if content_length == 0:
        return ""

    try:
        body_bytes = await asyncio.wait_for(
            reader.readexactly(content_length),
            timeout=READ_TIMEOUT,
        )
        return body_bytes.decode("utf-8")
    except TimeoutError:
        raise HttpParseError("Body read timeout") from None
    except asyncio.IncompleteReadError as e:
        raise HttpParseError(
            f"Incomplete body: expected {content_length}, got {len(e.partial)}"
        ) from e
    except UnicodeDecodeError as e:
        raise HttpParseError(f"Invalid body encoding: {e}") from e


async def send_http_response(
    writer: asyncio.StreamWriter,
    status: int,
    body: str = "",
    headers: dict[str, str] | None = None,
    content_type: str = "application/json",
) -> None:
    """Send an HTTP response and ask the client to close the connection.

    Args:
        writer: The asyncio StreamWriter to write to.
        status: HTTP status code (e.g., 200, 400, 500).
        body: Response body as string. Content-Type is omitted when empty.
        headers: Extra response headers.
        content_type: Content-Type header value for a non-empty body.
    """
    status_message = STATUS_MESSAGES.get(status, "Unknown")
    body_bytes = body.encode("utf-8")

    lines = [f"HTTP/1.1 {status} {status_message}"]
    if body_bytes:
        lines.append(f"Content-Type: {content_type}; charset=utf-8")
    lines.append(f"Content-Length: {len(body_bytes)}")
    lines.append("Connection: close")
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    lines.append("")
    lines.append("")

    writer.write("\r\n".join(lines).encode("utf-8") + body_bytes)
    await writer.drain()


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    try:
        if not writer.is_closing():
            writer.close()
        await writer.wait_closed()
    except Exception as close_err:
        logger.debug("Connection close failed (already closed?): %s", close_err)


def _json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"))


def _rpc_error(request_id: Any, code: int, message: str, data: Any = None) -> str:
    return serialize_response(make_error_response(request_id, code, message, data))


# =============================================================================
# Validation layers
# =============================================================================


def compile_origin_patterns(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    return [re.compile(p) for p in patterns]


def is_allowed_origin(origin: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    """Check an Origin header value against the allow-list."""
    return any(pattern.fullmatch(origin) for pattern in patterns)


def check_origin(headers: dict[str, str], patterns: list[re.Pattern[str]]) -> None:
    """Reject requests from browser origins outside the allow-list.

    Protects a loopback-bound bridge against DNS rebinding. Requests without
    an Origin header (non-browser clients) pass.

    Raises:
        OriginRejectedError: If the Origin matches no pattern.
    """
    origin = headers.get("origin")
    if origin is not None and not is_allowed_origin(origin, patterns):
        raise OriginRejectedError(f"Origin not allowed: {origin}")


def check_session(headers: dict[str, str], bridge: Bridge) -> str | None:
    """Validate a supplied Mcp-Session-Id. Requests without one pass.

    Returns:
        The session id, or None if the header is absent.

    Raises:
        SessionError: If the header names an unknown session.
    """
    session_id = headers.get(SESSION_HEADER.lower())
    if session_id and not bridge.sessions.exists(session_id):
        raise SessionError("Session not found")
    return session_id or None


def negotiate_protocol_version(headers: dict[str, str]) -> str | None:
    """Return the protocol version a request speaks.

    Returns:
        The requested version if supported, the default when the header is
        absent, or None for an explicit unsupported version.
    """
    requested = headers.get(PROTOCOL_VERSION_HEADER.lower())
    if not requested:
        return DEFAULT_PROTOCOL_VERSION
    return requested if requested in SUPPORTED_PROTOCOL_VERSIONS else None


def accepts(accept_header: str | None, required: Iterable[str]) -> bool:
    """Check that every required media type is listed in an Accept header.

    Media type parameters (";q=0.9") are ignored.
    """
    if not accept_header:
        return False
    listed = {part.split(";", 1)[0].strip().lower() for part in accept_header.split(",")}
    return all(media_type in listed for media_type in required)


def normalize_path(path: str) -> str:
    """Map a request target to a route.

    The query string is dropped. If the final path segment names a known
    route, any prefix a reverse proxy mounted the bridge under is ignored:
    "/tenants/42/mcp" routes like "/mcp".
    """
    path = path.split("?", 1)[0].split("#", 1)[0]
    segments = [s for s in path.split("/") if s]
    if segments and segments[-1] in KNOWN_ROUTES:
        return "/" + segments[-1]
    return path or "/"


def _cors_headers(origin: str | None) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin or "*",
        "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
        "Access-Control-Expose-Headers": SESSION_HEADER,
    }


# =============================================================================
# Route handlers
# =============================================================================


def handle_health(bridge: Bridge) -> HttpResponse:
    """Liveness, readiness and last-known child identity. Never fails."""
    state = bridge.state
    return HttpResponse(
        200,
        _json({
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": __version__,
            "timestamp": datetime.now(UTC).isoformat(),
            "mcp_initialized": state.ready,
            "mcp_server": state.server_info,
            "sessions": bridge.sessions.count,
            "streams": bridge.hub.count,
            "pending_requests": bridge.correlator.pending_count,
        }),
    )


def handle_capabilities(bridge: Bridge) -> HttpResponse:
    """The child's full initialize result."""
    handshake = bridge.state.handshake
    if not bridge.state.ready or handshake is None:
        return HttpResponse(503, _json({"error": "MCP server not initialized"}))
    return HttpResponse(200, _json(handshake.raw))


async def handle_mcp_post(request: HttpRequest, bridge: Bridge) -> HttpResponse:
    """Dispatch one JSON-RPC message posted to /mcp."""
    if not accepts(request.headers.get("accept"), ("application/json", "text/event-stream")):
        return HttpResponse(
            400,
            _rpc_error(
                None,
                INVALID_REQUEST,
                "Accept header must include application/json and text/event-stream",
            ),
        )

    try:
        message = parse_message(request.body)
    except TransportParseError as e:
        logger.debug("Unparseable POST body: %s", e.message)
        return HttpResponse(400, _rpc_error(None, PARSE_ERROR, "Parse error"))

    message_id = message.get("id")
    method = message.get("method")

    if method == "initialize":
        return await _handle_initialize(message, bridge)

    try:
        check_session(request.headers, bridge)
    except SessionError as e:
        return HttpResponse(404, _rpc_error(message_id, SESSION_NOT_FOUND, e.message))

    if message_id is not None and isinstance(method, str):
        try:
            result = await bridge.request(method, message.get("params"))
        except RemoteError as e:
            code = e.code if isinstance(e.code, int) else INTERNAL_ERROR
            return HttpResponse(200, _rpc_error(message_id, code, e.message, e.data))
        except (CorrelationTimeoutError, ProcessUnavailableError) as e:
            return HttpResponse(500, _rpc_error(message_id, INTERNAL_ERROR, e.message))
        return HttpResponse(200, serialize_response(make_success_response(message_id, result)))

    if method is None and message_id is None:
        return HttpResponse(
            400, _rpc_error(None, INVALID_REQUEST, "Message must have a method or an id")
        )

    # Notification, or a client response to a request the child made
    try:
        await bridge.correlator.forward(message)
    except ProcessUnavailableError as e:
        return HttpResponse(500, _rpc_error(None, INTERNAL_ERROR, e.message))
    return HttpResponse(202)


async def _handle_initialize(message: dict[str, Any], bridge: Bridge) -> HttpResponse:
    """Round-trip a client's initialize and open a session for it."""
    params = message.get("params")
    try:
        result = await bridge.correlator.call("initialize", params)
    except BridgeError as e:
        return HttpResponse(500, _rpc_error(message.get("id"), INTERNAL_ERROR, e.message))

    client_info = params.get("clientInfo") if isinstance(params, dict) else None
    session_id = bridge.sessions.create(client_info)
    return HttpResponse(
        200,
        serialize_response(make_success_response(message.get("id"), result)),
        headers={SESSION_HEADER: session_id},
    )


def handle_mcp_delete(request: HttpRequest, bridge: Bridge) -> HttpResponse:
    """Terminate the session named in the Mcp-Session-Id header."""
    session_id = request.headers.get(SESSION_HEADER.lower())
    if not session_id:
        return HttpResponse(400, _json({"error": "Session ID required"}))
    if bridge.sessions.terminate(session_id):
        return HttpResponse(200, _json({"message": "Session terminated"}))
    return HttpResponse(404, _json({"error": "Session not found"}))


async def dispatch_request(request: HttpRequest, bridge: Bridge) -> HttpResponse:
    """Route a fully read, validated, non-streaming request."""
    route = normalize_path(request.path)

    if route in ("/health", "/capabilities") and request.method != "GET":
        return HttpResponse(405, _json({"error": "Method not allowed"}))

    if route == "/health":
        return handle_health(bridge)

    if route == "/capabilities":
        return handle_capabilities(bridge)

    if route == "/mcp":
        if request.method == "POST":
            return await handle_mcp_post(request, bridge)
        if request.method == "DELETE":
            return handle_mcp_delete(request, bridge)
        return HttpResponse(405, _json({"error": "Method not allowed"}))

    if route == "/sse":
        return HttpResponse(405, _json({"error": "Method not allowed"}))

    return HttpResponse(404, _json({"error": "Not Found"}))


# =============================================================================
# SSE (Server-Sent Events)
# =============================================================================


def _is_stream_request(method: str, route: str) -> bool:
    return method == "GET" and route in ("/mcp", "/sse")


async def _watch_disconnect(reader: asyncio.StreamReader, bridge: Bridge, connection_id: str) -> None:
    """Close a stream as soon as its client hangs up."""
    try:
        while await reader.read(1024):
            pass
    except (ConnectionResetError, OSError):
        pass
    bridge.hub.close(connection_id)


async def handle_stream(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    headers: dict[str, str],
    bridge: Bridge,
    response_headers: dict[str, str],
) -> None:
    """Open an event stream and keep it until the client disconnects.

    Args:
        reader: Request stream, watched for EOF.
        writer: Response stream the hub writes frames to.
        headers: Request headers (lowercase keys).
        bridge: The bridge whose hub owns the stream.
        response_headers: CORS and protocol headers to include.
    """
    if not accepts(headers.get("accept"), ("text/event-stream",)):
        await send_http_response(
            writer,
            400,
            _json({"error": "Accept header must include text/event-stream"}),
            response_headers,
        )
        return

    try:
        check_session(headers, bridge)
    except SessionError as e:
        await send_http_response(writer, 404, _json({"error": e.message}), response_headers)
        return

    sse_headers = [
        "HTTP/1.1 200 OK",
        "Content-Type: text/event-stream",
        "Cache-Control: no-cache",
        "Connection: keep-alive",
        "X-Accel-Buffering: no",  # Disable proxy buffering
        *(f"{name}: {value}" for name, value in response_headers.items()),
        "",
        "",
    ]
    # Registered before the headers go out so the stream is live by the time
    # the client sees 200
    connection = bridge.hub.open(writer, last_event_id=headers.get("last-event-id"))
    watcher = asyncio.create_task(_watch_disconnect(reader, bridge, connection.id))
    try:
        writer.write("\r\n".join(sse_headers).encode("utf-8"))
        await writer.drain()
        await bridge.hub.serve(connection)
    finally:
        bridge.hub.close(connection.id)
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass


# =============================================================================
# Connection handling
# =============================================================================


async def handle_connection(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    bridge: Bridge,
    origin_patterns: list[re.Pattern[str]],
) -> None:
    """Handle a single HTTP connection.

    Args:
        reader: The asyncio StreamReader for the connection.
        writer: The asyncio StreamWriter for the connection.
        bridge: The bridge serving the request.
        origin_patterns: Compiled Origin allow-list.
    """
    try:
        # Layer 1: Request line and headers
        try:
            method, path, headers = await read_http_request_headers(reader)
        except HttpParseError as e:
            await send_http_response(writer, 400, _rpc_error(None, PARSE_ERROR, str(e)))
            return

        origin = headers.get("origin")
        response_headers = _cors_headers(origin)

        # Layer 2: Origin
        try:
            check_origin(headers, origin_patterns)
        except OriginRejectedError as e:
            logger.warning("Rejected request: %s", e.message)
            await send_http_response(writer, 403, _json({"error": "Forbidden origin"}))
            return

        # Layer 3: Preflight
        if method == "OPTIONS":
            await send_http_response(writer, 200, "", response_headers)
            return

        # Layer 4: Protocol version
        protocol_version = negotiate_protocol_version(headers)
        if protocol_version is None:
            await send_http_response(
                writer,
                400,
                _json({"error": "Invalid or unsupported MCP-Protocol-Version"}),
                response_headers,
            )
            return
        response_headers[PROTOCOL_VERSION_HEADER] = protocol_version

        # Layer 5: Streams never read a body
        route = normalize_path(path)
        if _is_stream_request(method, route):
            await handle_stream(reader, writer, headers, bridge, response_headers)
            return

        # Layer 6: Body, dispatch, respond
        try:
            body = await read_http_body(reader, headers)
        except HttpParseError as e:
            await send_http_response(
                writer, 400, _rpc_error(None, PARSE_ERROR, str(e)), response_headers
            )
            return

        request = HttpRequest(method=method, path=path, headers=headers, body=body)
        response = await dispatch_request(request, bridge)
        await send_http_response(
            writer,
            response.status,
            response.body,
            {**response_headers, **response.headers},
        )

    except (ConnectionResetError, BrokenPipeError):
        logger.debug("Client disconnected before the response was sent")

    except Exception as e:
        logger.error("Unexpected error handling connection: %s", e, exc_info=True)
        try:
            await send_http_response(
                writer, 500, _rpc_error(None, INTERNAL_ERROR, f"Server error: {type(e).__name__}")
            )
        except Exception as send_err:
            logger.debug("Failed to send error response (client disconnected?): %s", send_err)

    finally:
        await _close_writer(writer)


async def start_http_server(
    bridge: Bridge,
    host: str | None = None,
    port: int | None = None,
) -> asyncio.Server:
    """Bind the gateway and start accepting connections.

    Args:
        bridge: The bridge to serve.
        host: Bind address. Defaults to bridge.config.host.
        port: Port. Defaults to bridge.config.port; 0 picks an ephemeral port.

    Returns:
        The listening asyncio.Server.
    """
    origin_patterns = compile_origin_patterns(bridge.config.allowed_origins)

    async def client_handler(
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        await handle_connection(reader, writer, bridge, origin_patterns)

    server = await asyncio.start_server(
        client_handler,
        host=host if host is not None else bridge.config.host,
        port=port if port is not None else bridge.config.port,
    )
    addr = server.sockets[0].getsockname() if server.sockets else (host, port)
    logger.info("MCP bridge listening on http://%s:%s/", addr[0], addr[1])
    return server


async def run_http_server(
    bridge: Bridge,
    shutdown_event: asyncio.Event,
    started_event: asyncio.Event | None = None,
) -> None:
    """Serve HTTP until shutdown_event is set, then stop the bridge.

    Args:
        bridge: A started bridge.
        shutdown_event: Set (e.g. by a signal handler) to begin shutdown.
        started_event: Set once the server is bound and listening.
    """
    server = await start_http_server(bridge)
    if started_event is not None:
        started_event.set()

    try:
        await shutdown_event.wait()
    finally:
        # Stop accepting, then release streams and pending requests so open
        # connections can finish before wait_closed()
        server.close()
        await bridge.stop()
        try:
            await asyncio.wait_for(server.wait_closed(), timeout=bridge.config.shutdown_grace)
        except TimeoutError:
            logger.warning("Some HTTP connections did not close in time")
        logger.info("HTTP server stopped")
