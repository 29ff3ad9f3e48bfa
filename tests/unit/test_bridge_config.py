"""Unit tests for mcpbridge.config loading and validation."""

import json
from pathlib import Path

import pytest

from mcpbridge.config import DEFAULT_ALLOWED_ORIGINS, BridgeConfig, load_config
from mcpbridge.config.load_utils import load_json_file
from mcpbridge.core.errors import ConfigError


class TestBridgeConfig:
    """Tests for the BridgeConfig model."""

    def test_defaults(self) -> None:
        """Defaults match the container layout and documented timeouts."""
        config = BridgeConfig()
        assert config.host == "127.0.0.1"
        assert config.port == 8080
        assert config.entry_point == "server.js"
        assert config.user_code_path == "/app/user-code"
        assert config.request_timeout == 30.0
        assert config.handshake_timeout == 10.0
        assert config.keepalive_interval == 30.0
        assert config.shutdown_grace == 5.0
        assert config.allowed_origins == DEFAULT_ALLOWED_ORIGINS
        assert config.entry_path == Path("/app/user-code/server.js")

    def test_unknown_field_rejected(self) -> None:
        """Unknown keys are rejected (extra=forbid)."""
        with pytest.raises(ValueError):
            BridgeConfig.model_validate({"prot": 1})

    def test_log_level_is_case_insensitive(self) -> None:
        """Log level is normalized to upper case."""
        assert BridgeConfig(log_level="debug").log_level == "DEBUG"

    def test_invalid_origin_pattern_rejected(self) -> None:
        """An origin pattern that is not a valid regex fails validation."""
        with pytest.raises(ValueError, match="Invalid origin pattern"):
            BridgeConfig(allowed_origins=["(unclosed"])


class TestLoadConfig:
    """Tests for layered load_config()."""

    def test_environment_overrides(self) -> None:
        """Environment variables override defaults."""
        config = load_config(environ={
            "PORT": "9001",
            "MCP_ENTRY_POINT": "main.py",
            "USER_CODE_PATH": "/srv/mcp",
            "MCP_REQUEST_TIMEOUT": "2.5",
            "LOG_LEVEL": "warning",
        })
        assert config.port == 9001
        assert config.entry_path == Path("/srv/mcp/main.py")
        assert config.request_timeout == 2.5
        assert config.log_level == "WARNING"

    def test_empty_environment_values_ignored(self) -> None:
        """Empty environment values fall back to defaults."""
        config = load_config(environ={"PORT": "", "MCP_ENTRY_POINT": "  "})
        assert config.port == 8080
        assert config.entry_point == "server.js"

    def test_allowed_origins_from_environment(self) -> None:
        """MCP_ALLOWED_ORIGINS is split on commas."""
        config = load_config(environ={"MCP_ALLOWED_ORIGINS": r"^https://a\.example$, ^https://b$"})
        assert config.allowed_origins == [r"^https://a\.example$", "^https://b$"]

    def test_file_then_environment_then_overrides(self, tmp_path: Path) -> None:
        """Later layers win: file, then env, then explicit overrides."""
        config_file = tmp_path / "bridge.json"
        config_file.write_text(json.dumps({"port": 7000, "host": "0.0.0.0", "entry_point": "a.js"}))

        config = load_config(
            config_file,
            environ={"PORT": "7001"},
            overrides={"entry_point": "b.js", "host": None},
        )
        assert config.port == 7001
        assert config.host == "0.0.0.0"
        assert config.entry_point == "b.js"

    def test_config_path_from_environment(self, tmp_path: Path) -> None:
        """MCP_BRIDGE_CONFIG names the config file."""
        config_file = tmp_path / "bridge.json"
        config_file.write_text('{"keepalive_interval": 5}')
        config = load_config(environ={"MCP_BRIDGE_CONFIG": str(config_file)})
        assert config.keepalive_interval == 5

    def test_invalid_port_raises_config_error(self) -> None:
        """A non-numeric port becomes ConfigError."""
        with pytest.raises(ConfigError, match="validation failed"):
            load_config(environ={"PORT": "not-a-port"})

    def test_out_of_range_port_raises_config_error(self) -> None:
        """A port above 65535 becomes ConfigError."""
        with pytest.raises(ConfigError):
            load_config(environ={"PORT": "70000"})


class TestLoadJsonFile:
    """Tests for load_json_file()."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises ConfigError."""
        with pytest.raises(ConfigError, match="File not found"):
            load_json_file(tmp_path / "missing.json", error_context="config")

    def test_invalid_json(self, tmp_path: Path) -> None:
        """Malformed JSON raises ConfigError."""
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        with pytest.raises(ConfigError, match="Invalid JSON"):
            load_json_file(path)

    def test_non_object(self, tmp_path: Path) -> None:
        """A top-level array raises ConfigError."""
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigError, match="Expected object"):
            load_json_file(path)

    def test_empty_file_is_empty_dict(self, tmp_path: Path) -> None:
        """An empty file loads as an empty dict."""
        path = tmp_path / "empty.json"
        path.write_text("  \n")
        assert load_json_file(path) == {}
