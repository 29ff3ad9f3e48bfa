"""HTTP server mode for mcpbridge.

Runs a stdio MCP server as a child process and exposes it over Streamable
HTTP until SIGTERM or SIGINT.

Example:
    USER_CODE_PATH=./my-server MCP_ENTRY_POINT=server.py mcpbridge

    curl -X POST http://localhost:8080/mcp \\
        -H "Content-Type: application/json" \\
        -H "Accept: application/json, text/event-stream" \\
        -d '{"jsonrpc":"2.0","method":"tools/list","id":1}'
"""

import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from mcpbridge.bridge.runtime import Bridge
from mcpbridge.config.loader import load_config
from mcpbridge.config.schema import BridgeConfig
from mcpbridge.core.errors import ConfigError, StartupError
from mcpbridge.rpc.bootstrap import configure_logging
from mcpbridge.rpc.health import HealthResult, check_health
from mcpbridge.rpc.http import run_http_server

# Load .env file if present
load_dotenv()

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    shutdown_event: asyncio.Event,
) -> list[signal.Signals]:
    """Route SIGTERM/SIGINT to shutdown_event. Returns the signals installed."""
    installed = []
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig, shutdown_event)
        except NotImplementedError:
            # Windows event loops: Ctrl+C still arrives as KeyboardInterrupt
            continue
        installed.append(sig)
    return installed


def _request_shutdown(sig: signal.Signals, shutdown_event: asyncio.Event) -> None:
    logger.info("Received %s, shutting down gracefully...", sig.name)
    shutdown_event.set()


async def run_serve(config: BridgeConfig) -> int:
    """Run the bridge until a shutdown signal arrives.

    Args:
        config: Validated configuration.

    Returns:
        Exit code: 0 after a clean shutdown, 1 if startup failed.
    """
    bridge = Bridge(config)
    try:
        await bridge.start()
    except StartupError as e:
        logger.error("Failed to start MCP server: %s", e.message)
        return 1

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()
    installed = _install_signal_handlers(loop, shutdown_event)

    try:
        await run_http_server(bridge, shutdown_event)
    except OSError as e:
        logger.error("Failed to bind %s:%s: %s", config.host, config.port, e)
        await bridge.stop()
        return 1
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    logger.info("MCP bridge stopped")
    return 0


def serve_main(
    port: int | None = None,
    host: str | None = None,
    entry_point: str | None = None,
    user_code_path: str | None = None,
    child_command: str | None = None,
    config_path: Path | None = None,
    log_dir: Path | None = None,
    verbose: bool = False,
) -> int:
    """Load configuration, set up logging and run the bridge.

    Command-line values override the config file and environment.

    Returns:
        Process exit code.
    """
    try:
        config = load_config(
            config_path,
            overrides={
                "port": port,
                "host": host,
                "entry_point": entry_point,
                "user_code_path": user_code_path,
                "command": child_command,
                "log_level": "DEBUG" if verbose else None,
            },
        )
    except ConfigError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1

    configure_logging(config.log_level, log_dir)
    return asyncio.run(run_serve(config))


async def cmd_health(
    port: int | None = None,
    host: str = "127.0.0.1",
    timeout: float = 5.0,
) -> int:
    """Probe a running bridge.

    Args:
        port: Bridge port. Defaults to $PORT, then 8080.
        host: Bridge host.
        timeout: Probe timeout in seconds.

    Returns:
        Exit code: 0 if the bridge is healthy, 1 otherwise.
    """
    if port is None:
        try:
            port = int(os.environ.get("PORT") or 8080)
        except ValueError:
            print(f"Invalid PORT: {os.environ.get('PORT')!r}", file=sys.stderr)
            return 1

    result, body = await check_health(port, host, timeout)
    status = {
        "port": port,
        "result": result.value,
        "healthy": result == HealthResult.HEALTHY,
    }
    if body is not None:
        status["mcp_initialized"] = body.get("mcp_initialized")
    print(json.dumps(status, indent=2))

    return 0 if result == HealthResult.HEALTHY else 1
