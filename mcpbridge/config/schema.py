"""Pydantic models for bridge configuration validation."""

import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Origins a browser may call the bridge from. Loopback at any port plus claude.ai.
DEFAULT_ALLOWED_ORIGINS: list[str] = [
    r"^https?://localhost(:\d+)?$",
    r"^https?://127\.0\.0\.1(:\d+)?$",
    r"^https://.*\.claude\.ai$",
    r"^https://claude\.ai$",
]


class BridgeConfig(BaseModel):
    """Configuration for the MCP bridge.

    Example config.json:
        {
            "port": 8080,
            "entry_point": "server.py",
            "user_code_path": "/srv/mcp",
            "request_timeout": 60
        }
    """

    model_config = ConfigDict(extra="forbid")

    host: str = "127.0.0.1"
    """Host address to bind to (use 0.0.0.0 for all interfaces)."""

    port: int = Field(default=8080, ge=0, le=65535)
    """Port number for the HTTP server. 0 picks an ephemeral port."""

    entry_point: str = "server.js"
    """Child entry point, relative to user_code_path."""

    user_code_path: str = "/app/user-code"
    """Directory containing the entry point. Also the child's working directory."""

    command: str | None = None
    """Interpreter used to run the entry point. Inferred from the file suffix when unset."""

    request_timeout: float = Field(default=30.0, gt=0)
    """Seconds to wait for the child to answer a proxied request."""

    handshake_timeout: float = Field(default=10.0, gt=0)
    """Seconds to wait for the child to answer the startup initialize request."""

    keepalive_interval: float = Field(default=30.0, gt=0)
    """Maximum seconds between frames on an open event stream."""

    shutdown_grace: float = Field(default=5.0, ge=0)
    """Seconds the child gets to exit after SIGTERM before it is killed."""

    allowed_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    """Regular expressions an Origin header must fully match."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    """Logging level for bridge operations."""

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("entry_point")
    @classmethod
    def _non_empty_entry_point(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("entry_point must not be empty")
        return v

    @field_validator("allowed_origins")
    @classmethod
    def _valid_origin_patterns(cls, v: list[str]) -> list[str]:
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid origin pattern {pattern!r}: {e}") from e
        return v

    @property
    def entry_path(self) -> Path:
        """Full path of the child entry point."""
        return Path(self.user_code_path) / self.entry_point
