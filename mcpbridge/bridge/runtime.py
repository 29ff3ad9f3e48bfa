"""The Bridge: single owner of all mutable bridge state.

One Bridge holds the child process state and the four components that act
on it. Everything runs on one event loop, so state changes between await
points need no locking.

Startup:
    1. Spawn the child (ProcessSupervisor.start)
    2. Perform the initialize handshake with a short timeout
    3. Send notifications/initialized

Message flow from the child:
    - Responses go to the RequestCorrelator
    - Anything carrying a method (notifications, server requests) is
      published to every open stream through the StreamingHub
    - Responses with unknown ids are discarded

Shutdown:
    Close all streams, clear sessions, fail pending requests, then
    terminate the child (kill after the grace window).
"""

from __future__ import annotations

import logging
from typing import Any

from mcpbridge import __version__
from mcpbridge.bridge.correlator import RequestCorrelator
from mcpbridge.bridge.hub import StreamingHub
from mcpbridge.bridge.sessions import SessionManager
from mcpbridge.bridge.state import ChildProcessState
from mcpbridge.bridge.supervisor import ProcessSupervisor
from mcpbridge.config.schema import BridgeConfig
from mcpbridge.core.errors import BridgeError, StartupError

logger = logging.getLogger(__name__)

CLIENT_NAME = "mcp-universal-runtime"
HANDSHAKE_PROTOCOL_VERSION = "2025-06-18"


class Bridge:
    """Owns the child process and the correlator, sessions and streams around it.

    Attributes:
        config: Validated bridge configuration.
        state: Readiness of the child process.
        supervisor: Owns the child process and its pipes.
        correlator: Matches child responses to waiting callers.
        sessions: Live HTTP client sessions.
        hub: Open event streams.
    """

    def __init__(self, config: BridgeConfig) -> None:
        self.config = config
        self.state = ChildProcessState()
        self.supervisor = ProcessSupervisor(
            self.state,
            on_message=self._on_child_message,
            command=config.command,
        )
        self.correlator = RequestCorrelator(
            self.supervisor.send,
            self.state,
            default_timeout=config.request_timeout,
        )
        self.sessions = SessionManager()
        self.hub = StreamingHub(self.state, keepalive_interval=config.keepalive_interval)
        self._stopped = False

    async def start(self) -> None:
        """Spawn the child and complete the startup handshake.

        Raises:
            StartupError: If the child cannot be started or does not complete
                the handshake within handshake_timeout.
        """
        logger.info("MCP entry point: %s", self.config.entry_point)
        logger.info("User code path: %s", self.config.user_code_path)
        await self.supervisor.start(self.config.entry_path)

        try:
            await self.correlator.call(
                "initialize",
                {
                    "protocolVersion": HANDSHAKE_PROTOCOL_VERSION,
                    "capabilities": {"experimental": {}, "sampling": {}},
                    "clientInfo": {"name": CLIENT_NAME, "version": __version__},
                },
                timeout=self.config.handshake_timeout,
            )
            await self.correlator.notify("notifications/initialized")
        except BridgeError as e:
            await self.supervisor.stop(self.config.shutdown_grace)
            raise StartupError(f"MCP initialization failed: {e.message}") from e

        if not self.state.ready:
            logger.warning("MCP server answered initialize without capabilities")

    async def request(self, method: str, params: Any = None) -> Any:
        """Round-trip one request through the child with the default timeout."""
        return await self.correlator.call(method, params)

    async def stop(self) -> None:
        """Tear everything down. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down MCP bridge...")
        self.hub.close_all()
        self.sessions.clear()
        self.correlator.clear()
        await self.supervisor.stop(self.config.shutdown_grace)

    def _on_child_message(self, message: dict[str, Any]) -> None:
        if self.correlator.handle_message(message):
            return
        if "method" in message:
            delivered = self.hub.publish(message)
            logger.debug(
                "Child message %s pushed to %d stream(s)", message.get("method"), delivered
            )
