"""Example stdio MCP server for tests and smoke checks."""

from pathlib import Path

SERVER_DIR = Path(__file__).parent
ENTRY_POINT = "server.py"
