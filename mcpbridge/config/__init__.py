"""Configuration loading and validation."""

from mcpbridge.config.loader import load_config
from mcpbridge.config.schema import DEFAULT_ALLOWED_ORIGINS, BridgeConfig

__all__ = [
    "BridgeConfig",
    "DEFAULT_ALLOWED_ORIGINS",
    "load_config",
]
