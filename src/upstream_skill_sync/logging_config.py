"""Logging configuration utilities for upstream-skill-sync.

This module provides utilities for configuring loguru logging. The CLI calls `configure_logger` on startup; library
users can call it (or `disable_logging`) to control output themselves.
"""

import sys
from typing import Literal, TextIO

from loguru import logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]

CLI_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{message}</level>"
"""The compact format used for command line progress output."""


def configure_logger(
    level: LogLevel = "WARNING",
    *,
    format_string: str | None = None,
    colorize: bool = True,
    sink: TextIO | None = None,
) -> None:
    """Configure the upstream-skill-sync logger.

    Args:
        level: The minimum log level to display. One of:
              "TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"
        format_string: Custom format string for log messages. If None, uses default format.
        colorize: Whether to use colored output (default: True)
        sink: Where to write log messages (default: stderr)

    Examples:
        ```python
        from upstream_skill_sync.logging_config import configure_logger

        # Enable debug logging for troubleshooting
        configure_logger("DEBUG")

        # Progress output on stdout, as the CLI does
        configure_logger("INFO", format_string=CLI_FORMAT, sink=sys.stdout)
        ```
    """
    logger.remove()

    if format_string is None:
        format_string = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )

    logger.add(
        sink if sink is not None else sys.stderr,
        level=level,
        format=format_string,
        colorize=colorize,
    )


def disable_logging() -> None:
    """Completely disable all logging from upstream-skill-sync."""
    logger.remove()


__all__ = [
    "CLI_FORMAT",
    "LogLevel",
    "configure_logger",
    "disable_logging",
]
