"""Configuration loading with fail-fast behavior.

Configuration is layered:
1. Pydantic defaults
2. An optional JSON file (explicit path, or $MCP_BRIDGE_CONFIG)
3. Environment variables (PORT, MCP_ENTRY_POINT, USER_CODE_PATH, ...)
4. Explicit overrides (command-line flags)

Later layers override earlier ones.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mcpbridge.config.load_utils import load_json_file
from mcpbridge.config.schema import BridgeConfig
from mcpbridge.core.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "MCP_BRIDGE_CONFIG"

# Environment variable -> config field
ENV_FIELDS: dict[str, str] = {
    "PORT": "port",
    "HOST": "host",
    "MCP_ENTRY_POINT": "entry_point",
    "USER_CODE_PATH": "user_code_path",
    "MCP_COMMAND": "command",
    "MCP_REQUEST_TIMEOUT": "request_timeout",
    "MCP_HANDSHAKE_TIMEOUT": "handshake_timeout",
    "MCP_KEEPALIVE_INTERVAL": "keepalive_interval",
    "MCP_SHUTDOWN_GRACE": "shutdown_grace",
    "LOG_LEVEL": "log_level",
}

ORIGINS_ENV = "MCP_ALLOWED_ORIGINS"


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> BridgeConfig:
    """Load configuration from an optional file and the environment.

    Args:
        path: Explicit config file path. Falls back to $MCP_BRIDGE_CONFIG.
        environ: Environment mapping. Defaults to os.environ.
        overrides: Field values that win over every other layer. None values
            are skipped.

    Returns:
        Validated BridgeConfig object.

    Raises:
        ConfigError: If the config file is missing or invalid, or the merged
            values fail validation.
    """
    env = os.environ if environ is None else environ
    merged: dict[str, Any] = {}
    source = "defaults"

    if path is None and env.get(CONFIG_PATH_ENV):
        path = Path(env[CONFIG_PATH_ENV])

    if path is not None:
        merged.update(load_json_file(path, error_context="config"))
        source = str(path)
        logger.info("Config loaded from: %s", path)

    env_values = _env_overrides(env)
    if env_values:
        logger.debug("Environment overrides: %s", sorted(env_values))
        merged.update(env_values)

    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return BridgeConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed ({source} + environment): {e}") from e


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect config values set through environment variables.

    Empty values are ignored so that `PORT=` behaves like an unset variable.
    """
    overrides: dict[str, Any] = {}
    for name, field in ENV_FIELDS.items():
        value = env.get(name)
        if value is not None and value.strip():
            overrides[field] = value.strip()

    origins = env.get(ORIGINS_ENV)
    if origins is not None and origins.strip():
        overrides["allowed_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

    return overrides
