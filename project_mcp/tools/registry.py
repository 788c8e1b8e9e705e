"""Registry of the tools currently loaded from tools.json."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Tuple

from ..runtime.logging_config import get_logger, log_registry_diff
from .models import ToolDefinition, ToolsConfig

logger = get_logger("registry")

RegistryHandler = Callable[["RegistryDiff", List[ToolDefinition]], None]


@dataclass(frozen=True)
class RegistryDiff:
    """Names added, removed and changed by a registry update."""

    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    changed: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.changed)


class ToolRegistry:
    """Holds the tool set of exactly one tools.json snapshot.

    The mapping is never modified in place. Every update builds a new
    read-only mapping and swaps the reference, so readers always see one
    complete snapshot.
    """

    def __init__(self):
        self._tools: Mapping[str, ToolDefinition] = MappingProxyType({})
        self._handlers: List[RegistryHandler] = []

    def get(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool by name."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> List[ToolDefinition]:
        """Get all registered tools in declaration order."""
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def replace_all(self, config: ToolsConfig) -> RegistryDiff:
        """Replace every tool with the tools of a new configuration.

        Args:
            config: Validated tools.json configuration

        Returns:
            The diff against the previous tool set
        """
        new_tools = MappingProxyType({tool.name: tool for tool in config.tools})
        return self._swap(new_tools)

    def clear(self) -> RegistryDiff:
        """Remove all tools. Does nothing if the registry is already empty."""
        if not self._tools:
            return RegistryDiff()
        logger.info("Cleared all tools")
        return self._swap(MappingProxyType({}))

    def subscribe(self, handler: RegistryHandler) -> Callable[[], None]:
        """Register a handler called with (diff, tools) after each real change.

        Returns:
            A callable that removes the handler
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _swap(self, new_tools: Mapping[str, ToolDefinition]) -> RegistryDiff:
        old_tools = self._tools
        self._tools = new_tools

        diff = RegistryDiff(
            added=tuple(name for name in new_tools if name not in old_tools),
            removed=tuple(name for name in old_tools if name not in new_tools),
            changed=tuple(
                name
                for name, tool in new_tools.items()
                if name in old_tools and old_tools[name] != tool
            ),
        )

        if diff:
            log_registry_diff(logger, diff)
            self._notify(diff)
        return diff

    def _notify(self, diff: RegistryDiff) -> None:
        tools = self.list()
        for handler in list(self._handlers):
            try:
                handler(diff, tools)
            except Exception:
                logger.exception(f"Registry handler {handler!r} failed")
