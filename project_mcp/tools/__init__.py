"""tools.json loading, registry, change detection and execution."""

from .executor import ExecutionResult, execute_command
from .loader import LoadResult, load_tools_config, parse_tools_config
from .models import ToolDefinition, ToolExecutor, ToolParameters, ToolsConfig
from .registry import RegistryDiff, ToolRegistry
from .watcher import ToolsWatcher, WatcherEvent, WatcherEventKind, WatcherState

__all__ = [
    "ExecutionResult",
    "execute_command",
    "LoadResult",
    "load_tools_config",
    "parse_tools_config",
    "ToolDefinition",
    "ToolExecutor",
    "ToolParameters",
    "ToolsConfig",
    "RegistryDiff",
    "ToolRegistry",
    "ToolsWatcher",
    "WatcherEvent",
    "WatcherEventKind",
    "WatcherState",
]
