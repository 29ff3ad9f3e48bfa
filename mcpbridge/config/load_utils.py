"""JSON loading utility for bridge config files.

Use load_json_file() for an explicitly named config file; it raises
ConfigError if the file is missing or malformed.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from mcpbridge.core.errors import ConfigError

logger = logging.getLogger(__name__)


def load_json_file(path: Path, error_context: str = "") -> dict[str, Any]:
    """Load and parse a JSON file with consistent error handling.

    Args:
        path: Path to the JSON file to load.
        error_context: Optional context string for error messages (e.g., "config").

    Returns:
        Parsed JSON as a dict. Returns empty dict if file is empty.

    Raises:
        ConfigError: If the file doesn't exist, can't be read, contains invalid JSON,
            or contains non-dict JSON (e.g., array or scalar).
    """
    context_prefix = f"{error_context}: " if error_context else ""

    resolved = path.resolve()

    if not resolved.exists():
        raise ConfigError(f"{context_prefix}File not found: {path}")

    try:
        content = resolved.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise ConfigError(f"{context_prefix}Failed to read file {path}: {e}") from e

    # Empty file is valid - return empty dict
    content = content.strip()
    if not content:
        return {}

    try:
        result = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{context_prefix}Invalid JSON in {path}: {e}") from e

    if not isinstance(result, dict):
        raise ConfigError(
            f"{context_prefix}Expected object in {path}, got {type(result).__name__}"
        )

    logger.debug("Loaded config file: %s", resolved)
    return result
