"""Shared pytest fixtures and configuration for pytest."""

import logging
import sys
from collections.abc import Iterator

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for platform-specific tests."""
    config.addinivalue_line("markers", "unix_only: mark test to run only on Unix")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Auto-skip tests based on platform markers."""
    skip_unix = pytest.mark.skip(reason="Unix-only test")

    for item in items:
        if "unix_only" in item.keywords and sys.platform == "win32":
            item.add_marker(skip_unix)


@pytest.fixture(autouse=True)
def reset_bridge_logger() -> Iterator[None]:
    """Undo configure_logging() so caplog keeps seeing mcpbridge records."""
    yield
    bridge_logger = logging.getLogger("mcpbridge")
    for handler in list(bridge_logger.handlers):
        bridge_logger.removeHandler(handler)
        handler.close()
    bridge_logger.setLevel(logging.NOTSET)
    bridge_logger.propagate = True
