"""JSON-RPC 2.0 parsing and serialization for both sides of the bridge."""

import json
from typing import Any

from mcpbridge.core.errors import TransportParseError
from mcpbridge.rpc.types import Request, Response

# JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000  # Server error range: -32000 to -32099
SESSION_NOT_FOUND = -32001


def parse_message(text: str | bytes) -> dict[str, Any]:
    """Parse one JSON-RPC message (request, notification or response).

    The bridge is payload-agnostic: beyond being a JSON object, the message
    is forwarded as-is.

    Args:
        text: JSON text of a single message.

    Returns:
        The decoded message object.

    Raises:
        TransportParseError: If the text is not valid JSON or not an object.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise TransportParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise TransportParseError(f"Message must be a JSON object, got {type(data).__name__}")

    return data


def encode_message(message: dict[str, Any]) -> bytes:
    """Encode a message as a single newline-terminated line of compact JSON."""
    return (json.dumps(message, separators=(",", ":")) + "\n").encode("utf-8")


def request_to_dict(request: Request) -> dict[str, Any]:
    """Convert a Request to its wire form, omitting absent params and id."""
    data: dict[str, Any] = {
        "jsonrpc": request.jsonrpc,
        "method": request.method,
    }

    if request.params is not None:
        data["params"] = request.params

    if request.id is not None:
        data["id"] = request.id

    return data


def serialize_response(response: Response) -> str:
    """Serialize a Response to a JSON string.

    Args:
        response: The Response object to serialize.

    Returns:
        A single line of JSON text (no trailing newline).
    """
    data: dict[str, Any] = {
        "jsonrpc": response.jsonrpc,
        "id": response.id,
    }

    if response.error is not None:
        data["error"] = response.error
    else:
        data["result"] = response.result

    return json.dumps(data, separators=(",", ":"))


def make_error_response(
    request_id: str | int | None,
    code: int,
    message: str,
    data: Any = None,
) -> Response:
    """Create an error response.

    Args:
        request_id: The id from the original request.
        code: JSON-RPC error code.
        message: Human-readable error message.
        data: Optional additional error data.

    Returns:
        A Response with the error field populated.
    """
    error: dict[str, Any] = {
        "code": code,
        "message": message,
    }
    if data is not None:
        error["data"] = data

    return Response(
        jsonrpc="2.0",
        id=request_id,
        error=error,
    )


def make_success_response(request_id: str | int | None, result: Any) -> Response:
    """Create a success response."""
    return Response(
        jsonrpc="2.0",
        id=request_id,
        result=result,
    )


def is_response(message: dict[str, Any]) -> bool:
    """Whether a message is a response (has an id and no method)."""
    return "id" in message and "method" not in message
