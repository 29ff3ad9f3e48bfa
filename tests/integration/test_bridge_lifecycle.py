"""Integration tests for bridge startup failures and graceful shutdown."""

import asyncio
import socket
from pathlib import Path

import httpx
import pytest

from mcpbridge.bridge.runtime import Bridge
from mcpbridge.config.schema import BridgeConfig
from mcpbridge.core.errors import StartupError
from mcpbridge.rpc.health import HealthResult, check_health
from mcpbridge.rpc.http import run_http_server
from mcpbridge.test_server import ENTRY_POINT, SERVER_DIR
from mcpbridge.test_server.server import MODE_ENV

pytestmark = pytest.mark.unix_only


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestStartupFailures:
    """Tests for fatal startup errors."""

    @pytest.mark.asyncio
    async def test_missing_entry_point(self, tmp_path: Path) -> None:
        """A missing entry point aborts startup."""
        bridge = Bridge(BridgeConfig(user_code_path=str(tmp_path), entry_point="server.js"))
        with pytest.raises(StartupError, match="not found"):
            await bridge.start()
        assert not bridge.state.ready

    @pytest.mark.asyncio
    async def test_handshake_timeout_is_fatal(self, monkeypatch) -> None:
        """A child that never answers initialize is stopped."""
        monkeypatch.setenv(MODE_ENV, "silent")
        bridge = Bridge(BridgeConfig(
            user_code_path=str(SERVER_DIR),
            entry_point=ENTRY_POINT,
            handshake_timeout=0.5,
            shutdown_grace=1.0,
        ))

        with pytest.raises(StartupError, match="initialization failed"):
            await bridge.start()

        assert not bridge.supervisor.is_running
        assert bridge.correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_child_that_exits_immediately(self, tmp_path: Path) -> None:
        """A child that exits before the handshake aborts startup."""
        (tmp_path / "server.py").write_text("import sys\nsys.exit(1)\n")
        bridge = Bridge(BridgeConfig(
            user_code_path=str(tmp_path),
            entry_point="server.py",
            handshake_timeout=1.0,
        ))
        with pytest.raises(StartupError):
            await bridge.start()


class TestShutdown:
    """Tests for graceful shutdown."""

    @pytest.mark.asyncio
    async def test_run_http_server_stops_everything(self) -> None:
        """Shutdown closes streams, the listener and the child."""
        port = free_port()
        bridge = Bridge(BridgeConfig(
            user_code_path=str(SERVER_DIR),
            entry_point=ENTRY_POINT,
            port=port,
            keepalive_interval=0.2,
            shutdown_grace=2.0,
        ))
        await bridge.start()

        shutdown = asyncio.Event()
        started = asyncio.Event()
        server_task = asyncio.create_task(run_http_server(bridge, shutdown, started))
        await asyncio.wait_for(started.wait(), timeout=5.0)

        result, body = await check_health(port)
        assert result == HealthResult.HEALTHY
        assert body is not None and body["mcp_initialized"] is True

        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
            async with client.stream("GET", "/sse", headers={"Accept": "text/event-stream"}):
                assert bridge.hub.count == 1
                shutdown.set()
                await asyncio.wait_for(server_task, timeout=10.0)

        assert bridge.hub.count == 0
        assert not bridge.supervisor.is_running
        assert not bridge.state.ready

        result, _ = await check_health(port, timeout=1.0)
        assert result == HealthResult.NO_SERVER

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self) -> None:
        """Calling stop() twice is safe."""
        bridge = Bridge(BridgeConfig(user_code_path=str(SERVER_DIR), entry_point=ENTRY_POINT))
        await bridge.start()
        await bridge.stop()
        await bridge.stop()
        assert not bridge.supervisor.is_running
