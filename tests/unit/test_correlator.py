"""Unit tests for mcpbridge.bridge.correlator.

Tests for:
- Concurrent requests resolved by id, in any order
- Timeout rejection and late-response discard
- Child error objects surfaced as RemoteError
- Write failures surfaced as ProcessUnavailableError
- Readiness flipped by an initialize result
"""

import asyncio
from typing import Any

import pytest

from mcpbridge.bridge.correlator import RequestCorrelator
from mcpbridge.bridge.state import ChildProcessState
from mcpbridge.core.errors import (
    CorrelationTimeoutError,
    ProcessUnavailableError,
    RemoteError,
)


class FakeChild:
    """Records what the correlator writes to the child."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.arrived = asyncio.Event()
        self.fail_with: Exception | None = None

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)
        self.arrived.set()

    async def wait_for(self, count: int) -> None:
        while len(self.sent) < count:
            self.arrived.clear()
            await self.arrived.wait()


def make_correlator(timeout: float = 5.0) -> tuple[RequestCorrelator, FakeChild, ChildProcessState]:
    child = FakeChild()
    state = ChildProcessState()
    return RequestCorrelator(child.send, state, default_timeout=timeout), child, state


class TestCall:
    """Tests for RequestCorrelator.call()."""

    @pytest.mark.asyncio
    async def test_writes_request_with_fresh_id(self) -> None:
        """call() writes a request carrying a bridge-assigned id."""
        correlator, child, _ = make_correlator()

        task = asyncio.create_task(correlator.call("tools/list", {"cursor": None}))
        await child.wait_for(1)

        sent = child.sent[0]
        assert sent["jsonrpc"] == "2.0"
        assert sent["method"] == "tools/list"
        assert sent["params"] == {"cursor": None}
        assert isinstance(sent["id"], int)
        assert correlator.is_pending(sent["id"])

        correlator.handle_message({"jsonrpc": "2.0", "id": sent["id"], "result": {"tools": []}})
        assert await task == {"tools": []}
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_params_omitted_when_none(self) -> None:
        """No params key is written when params is None."""
        correlator, child, _ = make_correlator()
        task = asyncio.create_task(correlator.call("ping"))
        await child.wait_for(1)
        assert "params" not in child.sent[0]
        correlator.handle_message({"jsonrpc": "2.0", "id": child.sent[0]["id"], "result": {}})
        await task

    @pytest.mark.asyncio
    async def test_concurrent_requests_resolved_by_id(self) -> None:
        """Responses arriving in reverse order reach the right callers."""
        correlator, child, _ = make_correlator()

        tasks = [
            asyncio.create_task(correlator.call("tools/call", {"n": n}))
            for n in range(5)
        ]
        await child.wait_for(5)

        ids = [m["id"] for m in child.sent]
        assert len(set(ids)) == 5

        for message in reversed(child.sent):
            correlator.handle_message({
                "jsonrpc": "2.0",
                "id": message["id"],
                "result": {"n": message["params"]["n"]},
            })

        results = await asyncio.gather(*tasks)
        assert results == [{"n": n} for n in range(5)]

    @pytest.mark.asyncio
    async def test_ids_are_never_reused(self) -> None:
        """Ids increase monotonically across calls."""
        correlator, child, _ = make_correlator()
        for _ in range(3):
            task = asyncio.create_task(correlator.call("ping"))
            await child.wait_for(len(child.sent) + 1)
            correlator.handle_message({"jsonrpc": "2.0", "id": child.sent[-1]["id"], "result": {}})
            await task
        ids = [m["id"] for m in child.sent]
        assert ids == sorted(set(ids))

    @pytest.mark.asyncio
    async def test_timeout_rejects_and_removes_entry(self) -> None:
        """An unanswered request times out and leaves no entry."""
        correlator, child, _ = make_correlator(timeout=0.05)

        with pytest.raises(CorrelationTimeoutError) as exc_info:
            await correlator.call("test/silent")

        assert exc_info.value.message == "Request timeout"
        assert exc_info.value.request_id == child.sent[0]["id"]
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_late_response_is_discarded(self) -> None:
        """A response after the timeout matches nothing."""
        correlator, child, _ = make_correlator(timeout=0.05)

        with pytest.raises(CorrelationTimeoutError):
            await correlator.call("test/silent")

        handled = correlator.handle_message(
            {"jsonrpc": "2.0", "id": child.sent[0]["id"], "result": "late"}
        )
        assert handled is False

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_default(self) -> None:
        """A per-call timeout replaces the default window."""
        correlator, _, _ = make_correlator(timeout=30.0)
        with pytest.raises(CorrelationTimeoutError) as exc_info:
            await correlator.call("initialize", {}, timeout=0.05)
        assert exc_info.value.timeout == 0.05

    @pytest.mark.asyncio
    async def test_child_error_raises_remote_error(self) -> None:
        """A child error object surfaces as RemoteError."""
        correlator, child, _ = make_correlator()

        task = asyncio.create_task(correlator.call("tools/call", {"name": "nope"}))
        await child.wait_for(1)
        correlator.handle_message({
            "jsonrpc": "2.0",
            "id": child.sent[0]["id"],
            "error": {"code": -32602, "message": "Unknown tool: nope", "data": {"x": 1}},
        })

        with pytest.raises(RemoteError) as exc_info:
            await task
        assert exc_info.value.code == -32602
        assert exc_info.value.message == "Unknown tool: nope"
        assert exc_info.value.data == {"x": 1}

    @pytest.mark.asyncio
    async def test_send_failure_raises_and_cleans_up(self) -> None:
        """A failed write raises and removes the pending entry."""
        correlator, child, _ = make_correlator()
        child.fail_with = ProcessUnavailableError("MCP process not available")

        with pytest.raises(ProcessUnavailableError):
            await correlator.call("ping")
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_caller_is_removed(self) -> None:
        """Cancelling the caller drops its pending entry."""
        correlator, child, _ = make_correlator()
        task = asyncio.create_task(correlator.call("test/silent"))
        await child.wait_for(1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert correlator.pending_count == 0


class TestHandleMessage:
    """Tests for routing child messages."""

    def test_notification_is_not_a_response(self) -> None:
        """A notification from the child is not matched."""
        correlator, _, _ = make_correlator()
        assert correlator.handle_message(
            {"jsonrpc": "2.0", "method": "notifications/message", "params": {}}
        ) is False

    def test_server_request_is_not_a_response(self) -> None:
        """A message with both id and method is a request from the child."""
        correlator, _, _ = make_correlator()
        assert correlator.handle_message(
            {"jsonrpc": "2.0", "id": 1, "method": "sampling/createMessage"}
        ) is False

    def test_unknown_id_is_discarded(self) -> None:
        """A response with an unknown id is discarded."""
        correlator, _, _ = make_correlator()
        assert correlator.handle_message({"jsonrpc": "2.0", "id": 999, "result": {}}) is False

    def test_non_integer_id_is_discarded(self) -> None:
        """A string id never matches a bridge-assigned id."""
        correlator, _, _ = make_correlator()
        assert correlator.handle_message({"jsonrpc": "2.0", "id": "abc", "result": {}}) is False

    @pytest.mark.asyncio
    async def test_boolean_id_does_not_match_integer_id(self) -> None:
        """JSON true compares equal to 1 but is not request id 1."""
        correlator, child, _ = make_correlator()
        task = asyncio.create_task(correlator.call("ping"))
        await child.wait_for(1)
        assert child.sent[0]["id"] == 1

        matched = correlator.handle_message({"jsonrpc": "2.0", "id": True, "result": "wrong"})

        assert matched is False
        assert correlator.is_pending(1)
        assert not task.done()

        correlator.handle_message({"jsonrpc": "2.0", "id": 1, "result": "right"})
        assert await task == "right"


class TestReadiness:
    """An initialize result with capabilities makes the child ready."""

    @pytest.mark.asyncio
    async def test_initialize_result_marks_ready(self) -> None:
        """Capabilities in an initialize result mark the child ready."""
        correlator, child, state = make_correlator()
        assert not state.ready

        task = asyncio.create_task(correlator.call("initialize", {}))
        await child.wait_for(1)
        correlator.handle_message({
            "jsonrpc": "2.0",
            "id": child.sent[0]["id"],
            "result": {
                "protocolVersion": "2025-06-18",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "demo", "version": "1"},
            },
        })
        await task

        assert state.ready
        assert state.capabilities == {"tools": {}}
        assert state.server_info == {"name": "demo", "version": "1"}
        assert state.handshake is not None
        assert state.handshake.protocol_version == "2025-06-18"

    @pytest.mark.asyncio
    async def test_initialize_without_capabilities_stays_unready(self) -> None:
        """An initialize result without capabilities is not a handshake."""
        correlator, child, state = make_correlator()
        task = asyncio.create_task(correlator.call("initialize", {}))
        await child.wait_for(1)
        correlator.handle_message({"jsonrpc": "2.0", "id": child.sent[0]["id"], "result": {}})
        await task
        assert not state.ready

    @pytest.mark.asyncio
    @pytest.mark.parametrize("capabilities", [None, False, "tools", ["tools"]])
    async def test_initialize_with_non_object_capabilities_stays_unready(
        self, capabilities: object
    ) -> None:
        """A null or non-object capabilities value is not a completed handshake."""
        correlator, child, state = make_correlator()
        task = asyncio.create_task(correlator.call("initialize", {}))
        await child.wait_for(1)
        correlator.handle_message({
            "jsonrpc": "2.0",
            "id": child.sent[0]["id"],
            "result": {"capabilities": capabilities},
        })
        await task
        assert not state.ready
        assert state.handshake is None

    @pytest.mark.asyncio
    async def test_initialize_with_empty_capabilities_marks_ready(self) -> None:
        """An empty capabilities object still counts as a handshake."""
        correlator, child, state = make_correlator()
        task = asyncio.create_task(correlator.call("initialize", {}))
        await child.wait_for(1)
        correlator.handle_message({
            "jsonrpc": "2.0",
            "id": child.sent[0]["id"],
            "result": {"capabilities": {}},
        })
        await task
        assert state.ready
        assert state.capabilities == {}

    @pytest.mark.asyncio
    async def test_other_results_with_capabilities_do_not_mark_ready(self) -> None:
        """Only initialize results are inspected."""
        correlator, child, state = make_correlator()
        task = asyncio.create_task(correlator.call("tools/list"))
        await child.wait_for(1)
        correlator.handle_message({
            "jsonrpc": "2.0",
            "id": child.sent[0]["id"],
            "result": {"capabilities": {"tools": {}}},
        })
        await task
        assert not state.ready


class TestNotifyAndClear:
    """Tests for notify(), forward() and clear()."""

    @pytest.mark.asyncio
    async def test_notify_has_no_id(self) -> None:
        """Notifications are written without an id."""
        correlator, child, _ = make_correlator()
        await correlator.notify("notifications/initialized")
        assert child.sent == [{"jsonrpc": "2.0", "method": "notifications/initialized"}]
        assert correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_forward_sends_verbatim(self) -> None:
        """forward() writes the client message unchanged."""
        correlator, child, _ = make_correlator()
        message = {"jsonrpc": "2.0", "id": "client-7", "result": {"ok": True}}
        await correlator.forward(message)
        assert child.sent == [message]

    @pytest.mark.asyncio
    async def test_clear_fails_pending_requests(self) -> None:
        """clear() fails every pending request."""
        correlator, child, _ = make_correlator()
        task = asyncio.create_task(correlator.call("test/silent"))
        await child.wait_for(1)

        correlator.clear("shutting down")

        with pytest.raises(ProcessUnavailableError, match="shutting down"):
            await task
        assert correlator.pending_count == 0
