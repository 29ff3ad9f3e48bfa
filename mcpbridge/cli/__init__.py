"""Command-line interface for mcpbridge."""

from mcpbridge.cli.main import main

__all__ = ["main"]
