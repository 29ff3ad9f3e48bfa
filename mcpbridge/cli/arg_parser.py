"""Argument parsing for the mcpbridge CLI."""

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from mcpbridge import __version__

COMMANDS = ("serve", "health")


def add_port_arg(parser: argparse.ArgumentParser, default: int | None) -> None:
    """Add --port argument to a parser."""
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=default,
        help="Server port" + (f" (default: {default})" if default is not None else ""),
    )


def add_host_arg(parser: argparse.ArgumentParser, default: str | None) -> None:
    """Add --host argument to a parser."""
    parser.add_argument(
        "--host",
        default=default,
        help="Server host" + (f" (default: {default})" if default is not None else ""),
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    `serve` is the default command, so `mcpbridge --port 9000` is the same as
    `mcpbridge serve --port 9000`.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or (args[0] not in COMMANDS and args[0] not in ("-h", "--help", "--version")):
        args.insert(0, "serve")

    parser = argparse.ArgumentParser(
        prog="mcpbridge",
        description="Expose a stdio MCP server over Streamable HTTP",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command")

    # serve - run the bridge
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the MCP server and serve it over HTTP (default)",
        description="Spawn the MCP server and proxy JSON-RPC between HTTP clients and it. "
        "Flags override $PORT, $HOST, $MCP_ENTRY_POINT and $USER_CODE_PATH.",
    )
    add_port_arg(serve_parser, None)
    add_host_arg(serve_parser, None)
    serve_parser.add_argument(
        "--entry-point",
        dest="entry_point",
        help="MCP server entry point, relative to the user code path",
    )
    serve_parser.add_argument(
        "--user-code-path",
        dest="user_code_path",
        help="Directory containing the MCP server",
    )
    serve_parser.add_argument(
        "--command",
        dest="child_command",
        help="Interpreter used to run the entry point (e.g. 'node --no-warnings')",
    )
    serve_parser.add_argument(
        "--config",
        type=Path,
        help="JSON config file (default: $MCP_BRIDGE_CONFIG)",
    )
    serve_parser.add_argument(
        "--log-dir",
        dest="log_dir",
        type=Path,
        help="Also write logs to LOG_DIR/bridge.log",
    )
    serve_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    # health - probe a running bridge
    health_parser = subparsers.add_parser(
        "health",
        help="Check that a running bridge is healthy",
        description="Exit 0 if GET /health answers 200 with status 'healthy', else 1.",
    )
    add_port_arg(health_parser, None)  # falls back to $PORT, then 8080
    add_host_arg(health_parser, "127.0.0.1")
    health_parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Probe timeout in seconds (default: 5)",
    )

    return parser.parse_args(args)
