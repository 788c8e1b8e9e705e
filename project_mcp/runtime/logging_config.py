"""Logging configuration for the project tools server.

Logs go to stderr: stdout carries the MCP stdio transport.
"""

import logging
import sys
from typing import TYPE_CHECKING, Optional

from .config import LoggingConfig

if TYPE_CHECKING:
    from ..tools.registry import RegistryDiff


class ProjectMCPFormatter(logging.Formatter):
    """Custom formatter for project-mcp logs."""

    def __init__(self, format_string: str):
        """Initialize the formatter.

        Args:
            format_string: Format string for log messages
        """
        super().__init__(format_string)


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """Set up logging configuration for project-mcp.

    Args:
        config: Logging configuration object. If None, uses default configuration.
    """
    if config is None:
        config = LoggingConfig()

    numeric_level = getattr(logging, config.level.upper(), logging.INFO)

    root_logger = logging.getLogger("project_mcp")
    root_logger.setLevel(numeric_level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = ProjectMCPFormatter(config.format_string)

    if config.console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if config.file_path:
        try:
            file_handler = logging.FileHandler(config.file_path, encoding="utf-8")
        except OSError as e:
            root_logger.warning(f"Cannot open debug log {config.file_path}: {e}")
        else:
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    # Prevent propagation to root logger
    root_logger.propagate = False

    root_logger.info(f"Logging initialized - Level: {config.level}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific component.

    Args:
        name: Logger name (will be prefixed with 'project_mcp.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"project_mcp.{name}")


def log_mcp_operation(logger: logging.Logger, operation: str, success: bool) -> None:
    """Log MCP request handling.

    Args:
        logger: Logger instance
        operation: Operation being performed
        success: Whether operation was successful
    """
    status = "✅" if success else "❌"
    logger.info(f"{status} MCP {operation}")


def log_registry_diff(logger: logging.Logger, diff: "RegistryDiff") -> None:
    """Log which tools a registry update added, removed or changed."""
    if diff.added:
        logger.info(f"Added tools: {', '.join(diff.added)}")
    if diff.removed:
        logger.info(f"Removed tools: {', '.join(diff.removed)}")
    if diff.changed:
        logger.info(f"Updated tools: {', '.join(diff.changed)}")
