"""Request/response correlation over the child's single stdio channel.

Many HTTP requests may be in flight against the one child process at the
same time. Each outgoing request gets a fresh integer id from a per-process
counter; the correlator keeps an asyncio.Future per id and is the only code
that resolves it, either with the child's matching response or with a
timeout error when the entry's timer fires first.

Example:
    correlator = RequestCorrelator(supervisor.send, state)
    result = await correlator.call("tools/list", {}, timeout=30.0)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from mcpbridge.bridge.state import ChildProcessState, HandshakeInfo
from mcpbridge.core.errors import (
    CorrelationTimeoutError,
    ProcessUnavailableError,
    RemoteError,
)
from mcpbridge.rpc.protocol import is_response, request_to_dict
from mcpbridge.rpc.types import Request

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: float = 30.0

Sender = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class PendingRequest:
    """An outgoing request awaiting the child's response.

    Attributes:
        id: Bridge-assigned JSON-RPC id.
        method: Method name, kept to recognize the initialize handshake.
        created_at: Monotonic time the request was registered.
        future: Resolved with the result or failed with an error.
        timer: Fires the timeout; cancelled on resolution.
    """

    id: int
    method: str
    created_at: float
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle | None = None


class RequestCorrelator:
    """Match child responses to waiting callers by JSON-RPC id."""

    def __init__(
        self,
        send: Sender,
        state: ChildProcessState,
        default_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._send = send
        self._state = state
        self._default_timeout = default_timeout
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: int) -> bool:
        return request_id in self._pending

    async def call(
        self,
        method: str,
        params: dict[str, Any] | list[Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request to the child and wait for its result.

        Args:
            method: JSON-RPC method name.
            params: Parameters forwarded untouched.
            timeout: Seconds to wait. Defaults to the correlator's default.

        Returns:
            The `result` member of the child's response.

        Raises:
            RemoteError: If the child answered with an error object.
            CorrelationTimeoutError: If no response arrived in time.
            ProcessUnavailableError: If the request could not be written.
        """
        window = self._default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        entry = PendingRequest(
            id=request_id,
            method=method,
            created_at=time.monotonic(),
            future=loop.create_future(),
        )
        entry.timer = loop.call_later(window, self._expire, request_id, window)
        self._pending[request_id] = entry

        request = Request(jsonrpc="2.0", method=method, params=params, id=request_id)
        try:
            await self._send(request_to_dict(request))
            return await entry.future
        finally:
            # Covers send failure and caller cancellation; no-op once resolved
            self._discard(request_id)

    async def notify(
        self,
        method: str,
        params: dict[str, Any] | list[Any] | None = None,
    ) -> None:
        """Send a notification. No response is expected."""
        request = Request(jsonrpc="2.0", method=method, params=params)
        await self._send(request_to_dict(request))

    async def forward(self, message: dict[str, Any]) -> None:
        """Send a client-built message without an id mapping.

        Used for client notifications and client responses to requests the
        child initiated; neither expects anything back.
        """
        await self._send(message)

    def handle_message(self, message: dict[str, Any]) -> bool:
        """Resolve the pending request a child response belongs to.

        Args:
            message: A message framed from the child's stdout.

        Returns:
            True if the message was a response to a pending request. False for
            anything else, including responses with unknown ids, which are
            discarded.
        """
        if not is_response(message):
            return False

        request_id = message.get("id")
        # bool is an int subclass and True == 1, so JSON true must not match id 1
        is_int_id = isinstance(request_id, int) and not isinstance(request_id, bool)
        entry = self._pending.pop(request_id, None) if is_int_id else None
        if entry is None:
            logger.debug("Discarding response with unknown id: %r", request_id)
            return False

        if entry.timer is not None:
            entry.timer.cancel()
        if entry.future.done():
            return True

        error = message.get("error")
        if error is not None:
            if isinstance(error, dict):
                entry.future.set_exception(
                    RemoteError(
                        str(error.get("message") or "MCP Error"),
                        code=error.get("code"),
                        data=error.get("data"),
                    )
                )
            else:
                entry.future.set_exception(RemoteError(str(error)))
            return True

        result = message.get("result")
        if entry.method == "initialize":
            handshake = HandshakeInfo.from_result(result)
            if handshake is not None:
                self._state.mark_ready(handshake)
                logger.info("MCP server initialized: %s", handshake.server_info)
        entry.future.set_result(result)
        return True

    def clear(self, reason: str = "Bridge shutting down") -> None:
        """Fail every pending request and cancel its timer."""
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(ProcessUnavailableError(reason))
        if entries:
            logger.info("Cleared %d pending request(s): %s", len(entries), reason)

    def _expire(self, request_id: int, window: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        logger.warning(
            "Request %d (%s) timed out after %.1fs", request_id, entry.method, window
        )
        entry.future.set_exception(CorrelationTimeoutError(request_id, window))

    def _discard(self, request_id: int) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
