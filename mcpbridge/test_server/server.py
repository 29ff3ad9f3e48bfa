"""Minimal newline-delimited MCP server over stdio.

Used by the integration tests and for smoke-testing a deployment:

    mcpbridge --user-code-path mcpbridge/test_server --entry-point server.py

Only the standard library is used so the file runs as a plain script, with
no package on sys.path.

Methods:
    initialize, ping, tools/list, tools/call, test/silent (never answers)

Tools:
    echo, add, sleep, notify (emits notifications/message first),
    crash (exits without answering), received (notifications and client
    responses seen so far)

Set MCPBRIDGE_TEST_SERVER_MODE=silent to ignore every message, including
initialize.
"""

import asyncio
import json
import os
import sys
from typing import Any

SERVER_INFO = {"name": "mcpbridge-test-server", "version": "1.0.0"}
DEFAULT_PROTOCOL_VERSION = "2025-06-18"
MODE_ENV = "MCPBRIDGE_TEST_SERVER_MODE"

TOOLS: list[dict[str, Any]] = [
    {
        "name": "echo",
        "description": "Return the given text",
        "inputSchema": {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    },
    {
        "name": "add",
        "description": "Add two numbers",
        "inputSchema": {
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
    },
    {
        "name": "sleep",
        "description": "Wait before answering",
        "inputSchema": {
            "type": "object",
            "properties": {"seconds": {"type": "number"}},
            "required": ["seconds"],
        },
    },
    {
        "name": "notify",
        "description": "Send a notifications/message, then answer",
        "inputSchema": {
            "type": "object",
            "properties": {"message": {"type": "string"}},
        },
    },
    {
        "name": "crash",
        "description": "Exit immediately without answering",
        "inputSchema": {
            "type": "object",
            "properties": {"code": {"type": "integer"}},
        },
    },
    {
        "name": "received",
        "description": "Notifications and client responses received so far",
        "inputSchema": {"type": "object", "properties": {}},
    },
]


class ToolError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class ExampleServer:
    def __init__(self, silent: bool = False) -> None:
        self.silent = silent
        self.notifications: list[str] = []
        self.responses: list[Any] = []

    def write(self, message: dict[str, Any]) -> None:
        sys.stdout.write(json.dumps(message, separators=(",", ":")) + "\n")
        sys.stdout.flush()

    def log(self, text: str) -> None:
        sys.stderr.write(text + "\n")
        sys.stderr.flush()

    async def handle(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        request_id = message.get("id")

        if self.silent:
            return

        if method is None:
            self.responses.append(request_id)
            return

        if request_id is None:
            self.notifications.append(method)
            return

        if method == "test/silent":
            return

        try:
            result = await self.dispatch(method, message.get("params") or {})
        except ToolError as e:
            self.write({"jsonrpc": "2.0", "id": request_id, "error": {"code": e.code, "message": e.message}})
            return
        self.write({"jsonrpc": "2.0", "id": request_id, "result": result})

    async def dispatch(self, method: str, params: dict[str, Any]) -> Any:
        if method == "initialize":
            self.log(f"initialize from {params.get('clientInfo', {}).get('name', 'unknown')}")
            return {
                "protocolVersion": params.get("protocolVersion", DEFAULT_PROTOCOL_VERSION),
                "capabilities": {"tools": {"listChanged": False}, "logging": {}},
                "serverInfo": SERVER_INFO,
            }
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": TOOLS}
        if method == "tools/call":
            return await self.call_tool(params.get("name"), params.get("arguments") or {})
        raise ToolError(-32601, f"Method not found: {method}")

    async def call_tool(self, name: Any, arguments: dict[str, Any]) -> dict[str, Any]:
        if name == "echo":
            return _text(str(arguments.get("text", "")))
        if name == "add":
            return _text(str(arguments.get("a", 0) + arguments.get("b", 0)))
        if name == "sleep":
            await asyncio.sleep(float(arguments.get("seconds", 0)))
            return _text("slept")
        if name == "notify":
            self.write({
                "jsonrpc": "2.0",
                "method": "notifications/message",
                "params": {"level": "info", "data": arguments.get("message", "hello")},
            })
            return _text("notified")
        if name == "crash":
            self.log("crashing on request")
            os._exit(int(arguments.get("code", 1)))
        if name == "received":
            return {
                "content": [],
                "structuredContent": {
                    "notifications": self.notifications,
                    "responses": self.responses,
                },
            }
        raise ToolError(-32602, f"Unknown tool: {name}")


def _text(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}


async def serve(server: ExampleServer) -> None:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=16 * 1024 * 1024)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    tasks: set[asyncio.Task[None]] = set()
    while True:
        line = await reader.readline()
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except ValueError:
            server.log(f"ignoring malformed line: {line[:80]!r}")
            continue
        if not isinstance(message, dict):
            continue
        # Concurrent handling; a slow tool must not block other requests
        task = asyncio.create_task(server.handle(message))
        tasks.add(task)
        task.add_done_callback(tasks.discard)


def main() -> None:
    server = ExampleServer(silent=os.environ.get(MODE_ENV) == "silent")
    server.log("test server started")
    try:
        asyncio.run(serve(server))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
