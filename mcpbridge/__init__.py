"""Expose a stdio MCP server over Streamable HTTP and SSE."""

__version__ = "1.0.0"
