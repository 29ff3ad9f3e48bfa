"""Logging setup for the bridge process."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

logger = logging.getLogger(__name__)

ROOT_LOGGER_NAME = "mcpbridge"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(
    level: int | str = logging.INFO,
    log_dir: Path | None = None,
) -> Path | None:
    """Configure the mcpbridge namespace logger.

    Console output goes to stderr so that nothing the bridge logs can be
    confused with protocol traffic. When log_dir is given, the same records
    are also written to `{log_dir}/bridge.log` with automatic rotation
    (max 5MB per file, 3 backup files).

    Args:
        level: Logging level, as an int or a name such as "DEBUG".
        log_dir: Directory for bridge.log. Created if it doesn't exist.

    Returns:
        Path to the log file, or None if file logging is disabled.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    bridge_logger = logging.getLogger(ROOT_LOGGER_NAME)
    bridge_logger.setLevel(level)

    # Remove any existing handlers to avoid duplicates on reconfigure
    for handler in list(bridge_logger.handlers):
        bridge_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    bridge_logger.addHandler(console_handler)

    log_file: Path | None = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "bridge.log"
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        bridge_logger.addHandler(file_handler)

    # Don't propagate to root logger
    bridge_logger.propagate = False

    if log_file is not None:
        logger.info("Logging to %s", log_file)
    return log_file
