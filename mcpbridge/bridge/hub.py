"""Streaming hub for Server-Sent Events.

Tracks every open event stream and fans out messages the child sends on
its own initiative (notifications, server-to-client requests).

Architecture:
    - Each stream has a bounded frame queue; publish() never blocks
    - serve() drains a stream's queue to its socket
    - A keep-alive comment is written whenever a stream has been idle for
      keepalive_interval seconds
    - A stream whose queue overflows or whose socket write fails is dropped

Example:
    hub = StreamingHub(state)
    connection = hub.open(writer)
    hub.publish({"jsonrpc": "2.0", "method": "notifications/message", "params": {}})
    await hub.serve(connection)   # returns when the stream is closed
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from mcpbridge.bridge.state import ChildProcessState

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_INTERVAL: float = 30.0
KEEPALIVE_FRAME: bytes = b": keepalive\n\n"
CAPABILITIES_METHOD = "notification/capabilities"


def format_sse_event(data: dict[str, Any], event_id: str | None = None) -> bytes:
    """Format a message as one SSE frame.

    The payload is compact JSON, so it never contains a raw newline and always
    fits on a single data line.
    """
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"data: {json.dumps(data, separators=(',', ':'))}")
    lines.append("")
    lines.append("")
    return "\n".join(lines).encode("utf-8")


@dataclass
class StreamConnection:
    """An open event stream.

    Attributes:
        id: Random connection id, also the prefix of every event id.
        sink: Socket writer the frames go to.
        last_event_id: Last-Event-ID the client reconnected with, if any.
        queue: Frames waiting to be written. None is the close sentinel.
        events_sent: Count of event frames queued so far (keep-alives excluded).
    """

    id: str
    sink: asyncio.StreamWriter
    last_event_id: str | None = None
    queue: asyncio.Queue[bytes | None] = field(default_factory=asyncio.Queue)
    events_sent: int = 0
    closed: bool = False

    def next_event_id(self) -> str:
        self.events_sent += 1
        return f"{self.id}-{self.events_sent}"


class StreamingHub:
    """Registry and fan-out for open event streams."""

    def __init__(
        self,
        state: ChildProcessState,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        max_queue_size: int = 100,
    ) -> None:
        self._state = state
        self._keepalive_interval = keepalive_interval
        self._max_queue_size = max_queue_size
        self._connections: dict[str, StreamConnection] = {}

    @property
    def count(self) -> int:
        return len(self._connections)

    def get(self, connection_id: str) -> StreamConnection | None:
        return self._connections.get(connection_id)

    def open(
        self,
        sink: asyncio.StreamWriter,
        last_event_id: str | None = None,
    ) -> StreamConnection:
        """Register a stream.

        If the child is ready, the stream's first frame carries the current
        capabilities so a new listener sees current state without polling.
        """
        connection = StreamConnection(
            id=str(uuid.uuid4()),
            sink=sink,
            last_event_id=last_event_id,
            queue=asyncio.Queue(maxsize=self._max_queue_size),
        )
        self._connections[connection.id] = connection
        logger.debug("Stream opened: %s (%d open)", connection.id, self.count)

        handshake = self._state.handshake
        if self._state.ready and handshake is not None:
            self._enqueue(
                connection,
                {
                    "jsonrpc": "2.0",
                    "method": CAPABILITIES_METHOD,
                    "params": {
                        "capabilities": handshake.capabilities,
                        "serverInfo": handshake.server_info,
                        "protocolVersion": handshake.protocol_version,
                    },
                },
            )
        return connection

    def publish(self, message: dict[str, Any]) -> int:
        """Queue a message on every open stream.

        Returns:
            Number of streams the message was queued on.
        """
        delivered = 0
        for connection in list(self._connections.values()):
            if self._enqueue(connection, message):
                delivered += 1
        return delivered

    async def serve(self, connection: StreamConnection) -> None:
        """Write a stream's frames until it is closed or its socket fails."""
        try:
            while not connection.closed:
                try:
                    frame = await asyncio.wait_for(
                        connection.queue.get(), timeout=self._keepalive_interval
                    )
                except TimeoutError:
                    await self.keep_alive(connection)
                    continue
                if frame is None:
                    break
                connection.sink.write(frame)
                await connection.sink.drain()
        except (ConnectionResetError, BrokenPipeError, OSError) as e:
            logger.debug("Stream %s write failed: %s", connection.id, e)
        finally:
            self.close(connection.id)

    async def keep_alive(self, connection: StreamConnection) -> None:
        """Write a comment frame so proxies and clients keep the stream open."""
        connection.sink.write(KEEPALIVE_FRAME)
        await connection.sink.drain()

    def close(self, connection_id: str) -> bool:
        """Remove a stream and stop its serve() loop.

        Returns:
            True if the stream was open.
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return False
        connection.closed = True
        # Make room for the sentinel; undelivered frames are dropped anyway
        while True:
            try:
                connection.queue.put_nowait(None)
                break
            except asyncio.QueueFull:
                connection.queue.get_nowait()
        logger.debug("Stream closed: %s (%d open)", connection_id, self.count)
        return True

    def close_all(self) -> None:
        for connection_id in list(self._connections):
            self.close(connection_id)

    def _enqueue(self, connection: StreamConnection, message: dict[str, Any]) -> bool:
        frame = format_sse_event(message, connection.next_event_id())
        try:
            connection.queue.put_nowait(frame)
            return True
        except asyncio.QueueFull:
            logger.warning("Stream %s is not keeping up, dropping it", connection.id)
            self.close(connection.id)
            return False
