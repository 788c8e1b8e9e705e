"""Error classification and reporting for the project tools server."""

import logging
import traceback
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors that can occur."""

    CONFIGURATION = "configuration"
    TOOL_EXECUTION = "tool_execution"
    MCP_PROTOCOL = "mcp_protocol"
    FILE_OPERATION = "file_operation"


@dataclass
class ErrorInfo:
    """Information about an error occurrence."""

    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    details: Optional[str] = None
    traceback: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    recovery_suggestions: List[str] = field(default_factory=list)


class ErrorHandler:
    """Records and logs errors that are degraded instead of raised.

    Configuration-stage failures never stop the server, so the handler keeps
    a bounded history of them for diagnostics.
    """

    def __init__(self, history_size: int = 100):
        """Initialize error handler.

        Args:
            history_size: Maximum number of errors kept in history
        """
        self.logger = logging.getLogger("project_mcp.error_handler")
        self.error_history: Deque[ErrorInfo] = deque(maxlen=history_size)

    def handle_error(
        self,
        exception: Exception,
        category: Optional[ErrorCategory] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorInfo:
        """Classify, record and log an error.

        Args:
            exception: The exception that occurred
            category: Category override. Defaults to the exception's own
                category, or MCP_PROTOCOL for foreign exceptions.
            context: Additional context about the error

        Returns:
            ErrorInfo describing the error
        """
        merged_context = dict(getattr(exception, "context", None) or {})
        merged_context.update(context or {})

        error_info = ErrorInfo(
            category=category
            or getattr(exception, "category", ErrorCategory.MCP_PROTOCOL),
            severity=getattr(exception, "severity", ErrorSeverity.HIGH),
            message=str(exception),
            details=getattr(exception, "details", None),
            traceback=_format_traceback(exception),
            context=merged_context,
            recovery_suggestions=list(
                getattr(exception, "recovery_suggestions", None) or []
            ),
        )

        self.error_history.append(error_info)
        self._log_error(error_info)
        return error_info

    def recent_errors(self, limit: int = 10) -> List[ErrorInfo]:
        """Return the most recent errors, newest last."""
        return list(self.error_history)[-limit:]

    def _log_error(self, error_info: ErrorInfo) -> None:
        level_map = {
            ErrorSeverity.LOW: logging.WARNING,
            ErrorSeverity.MEDIUM: logging.ERROR,
            ErrorSeverity.HIGH: logging.ERROR,
            ErrorSeverity.CRITICAL: logging.CRITICAL,
        }

        level = level_map[error_info.severity]

        self.logger.log(
            level, f"[{error_info.category.value.upper()}] {error_info.message}"
        )

        if error_info.details:
            self.logger.log(level, f"Details: {error_info.details}")

        if error_info.context:
            self.logger.log(level, f"Context: {error_info.context}")

        if error_info.recovery_suggestions:
            self.logger.info(
                f"Recovery suggestions: {', '.join(error_info.recovery_suggestions)}"
            )


def _format_traceback(exception: Exception) -> Optional[str]:
    if exception.__traceback__ is None:
        return None
    return "".join(
        traceback.format_exception(
            type(exception), exception, exception.__traceback__
        )
    )
