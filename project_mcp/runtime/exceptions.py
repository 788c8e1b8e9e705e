"""Custom exceptions for the project tools server."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .error_handling import ErrorCategory, ErrorSeverity


class ProjectMCPError(Exception):
    """Base exception for all project tools server errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        recovery_suggestions: Optional[List[str]] = None,
    ):
        """Initialize the error.

        Args:
            message: Error message
            category: Error category
            severity: Error severity level
            details: Additional error details
            context: Error context information
            recovery_suggestions: Suggestions for error recovery
        """
        super().__init__(message)
        self.category = category
        self.severity = severity
        self.details = details
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []


class ConfigurationError(ProjectMCPError):
    """Exception for invalid server settings (TOML file, CLI, environment)."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        details: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            details=details,
            context=context,
            recovery_suggestions=[
                "Review configuration file syntax",
                "Check environment variable values",
                "Use default configuration values",
            ],
        )


# tools.json loading


class ToolsConfigError(ProjectMCPError):
    """Base exception for tools.json loading failures.

    These never stop the server: the last good configuration stays active.
    """

    def __init__(
        self,
        message: str,
        path: Union[str, Path],
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[str] = None,
        recovery_suggestions: Optional[List[str]] = None,
    ):
        self.path = Path(path)
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=severity,
            details=details,
            context={"path": str(path)},
            recovery_suggestions=recovery_suggestions,
        )

    @property
    def errors(self) -> List[str]:
        """Human-readable error strings for this failure."""
        return [str(self)]


class ConfigNotFoundError(ToolsConfigError):
    """The tools.json file does not exist."""

    def __init__(self, path: Union[str, Path]):
        super().__init__(
            f"File not found: {path}",
            path,
            severity=ErrorSeverity.LOW,
            recovery_suggestions=[
                "Call the bootstrap_tools tool to create the schema file",
                "Create tools.json in the MCP directory",
            ],
        )


class ConfigReadError(ToolsConfigError):
    """The tools.json file exists but could not be read."""

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(
            f"Failed to read file: {reason}",
            path,
            recovery_suggestions=["Check file permissions"],
        )


class ConfigParseError(ToolsConfigError):
    """The tools.json file is not valid JSON."""

    def __init__(self, path: Union[str, Path], reason: str):
        super().__init__(
            f"Invalid JSON: {reason}",
            path,
            recovery_suggestions=["Fix the JSON syntax error and save again"],
        )


class ConfigValidationError(ToolsConfigError):
    """The tools.json document does not match the tools schema."""

    def __init__(self, path: Union[str, Path], errors: List[str]):
        self.validation_errors = list(errors)
        super().__init__(
            f"Failed to parse tools.json: {', '.join(self.validation_errors)}",
            path,
            recovery_suggestions=["Compare tools.json against tools.schema.json"],
        )

    @property
    def errors(self) -> List[str]:
        return list(self.validation_errors)


# Tool execution


class ToolExecutionError(ProjectMCPError):
    """Base exception for failures while running a tool."""

    def __init__(
        self,
        message: str,
        tool_name: Optional[str] = None,
        details: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = context or {}
        if tool_name:
            context["tool_name"] = tool_name

        super().__init__(
            message=message,
            category=ErrorCategory.TOOL_EXECUTION,
            severity=ErrorSeverity.MEDIUM,
            details=details,
            context=context,
        )


class ScriptNotFoundError(ToolExecutionError):
    """An executor's script file does not exist."""

    def __init__(self, script_path: Union[str, Path], tool_name: Optional[str] = None):
        self.script_path = Path(script_path)
        super().__init__(
            f"Script file not found: {script_path}",
            tool_name=tool_name,
            context={"script_path": str(script_path)},
        )


class MissingSourceError(ToolExecutionError):
    """An executor defines neither inline code nor a script file."""

    def __init__(self, tool_name: Optional[str] = None):
        super().__init__(
            'Executor must have either "code" or "file" property',
            tool_name=tool_name,
        )


class UnknownExecutorError(ToolExecutionError):
    """An executor names an interpreter that is not supported."""

    def __init__(self, executor_type: Any, tool_name: Optional[str] = None):
        self.executor_type = executor_type
        super().__init__(
            f"Unknown executor type: {executor_type}",
            tool_name=tool_name,
            context={"executor_type": str(executor_type)},
        )


class SpawnError(ToolExecutionError):
    """The interpreter process could not be started."""

    def __init__(
        self, interpreter: str, reason: str, tool_name: Optional[str] = None
    ):
        self.interpreter = interpreter
        super().__init__(
            f"Failed to spawn {interpreter}: {reason}",
            tool_name=tool_name,
            context={"interpreter": interpreter},
        )


class ExecutionTimeoutError(ToolExecutionError):
    """A tool ran past its timeout and was terminated."""

    def __init__(self, timeout_ms: int, tool_name: Optional[str] = None):
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Execution timed out after {timeout_ms}ms",
            tool_name=tool_name,
            context={"timeout_ms": timeout_ms},
        )


# MCP requests


class UnknownToolError(ProjectMCPError):
    """A client asked for a tool that is not registered."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(
            f'Unknown tool "{tool_name}"',
            category=ErrorCategory.MCP_PROTOCOL,
            severity=ErrorSeverity.LOW,
            context={"tool_name": tool_name},
        )


class ToolCallError(ProjectMCPError):
    """A tool call finished with an error payload for the client.

    The message is the full text returned to the client.
    """

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.TOOL_EXECUTION,
            severity=ErrorSeverity.LOW,
            context={"tool_name": tool_name} if tool_name else None,
        )
