#!/usr/bin/env python3
"""Project Tools MCP Server with stdio transport.

Serves the tools declared in <project>/.mcp/tools.json and keeps them in
sync with the file while running.
"""

import asyncio
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional, Set, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.session import ServerSession
from mcp.server.stdio import stdio_server
from mcp.types import (
    ClientCapabilities,
    RootsCapability,
    RootsListChangedNotification,
    TextContent,
    Tool,
)

from ... import __version__
from ...runtime.config import ServerConfig
from ...runtime.error_handling import ErrorHandler
from ...runtime.exceptions import ProjectMCPError, ToolCallError, UnknownToolError
from ...runtime.logging_config import get_logger, log_mcp_operation
from ...tools.executor import ExecutionResult, execute_command
from ...tools.loader import get_tools_json_path
from ...tools.registry import RegistryDiff, ToolRegistry
from ...tools.watcher import ToolsWatcher, WatcherEvent, WatcherEventKind
from ...tools.models import ToolDefinition
from .builtin_tools import BUILTIN_TOOLS, get_builtin_tool

logger = get_logger("server")

SERVER_NAME = "project-mcp"
NO_OUTPUT = "(no output)"
NOT_INITIALIZED = (
    "Error: Project root not initialized. The MCP client must provide roots."
)


class ProjectToolsMCPServer:
    """MCP Server for the dynamic, project-scoped tools of one project."""

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        """Initialize the Project Tools MCP Server.

        Args:
            config: Server configuration. Defaults are used if None.
            registry: Registry shared with the watcher. A new one if None.
        """
        self.config = config or ServerConfig()
        self.registry = registry if registry is not None else ToolRegistry()
        self.error_handler = ErrorHandler()

        self.project_root: Optional[Path] = None
        self.mcp_dir: Optional[Path] = None
        self.watcher: Optional[ToolsWatcher] = None
        self._unsubscribe_watcher = None

        self._ready = asyncio.Event()
        self._roots_lock = asyncio.Lock()
        self._roots_negotiated = False
        self._session: Optional[ServerSession] = None
        self._background_tasks: Set[asyncio.Task] = set()

        # Initialize MCP server
        self.server = Server(SERVER_NAME)

        # Register tools
        self._register_tools()
        self.registry.subscribe(self._on_registry_update)

    def _register_tools(self) -> None:
        """Register MCP request and notification handlers."""

        @self.server.list_tools()
        async def handle_list_tools() -> list[Tool]:
            """List available tools."""
            await self._prepare_request()
            tools = self._list_tools()
            logger.info(f"Returning {len(tools)} tools")
            return tools

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: dict) -> list[TextContent]:
            """Handle tool calls."""
            await self._prepare_request()
            try:
                return await self._call_tool(name, arguments or {})
            except ProjectMCPError:
                raise
            except Exception as e:
                self.error_handler.handle_error(e, context={"tool_name": name})
                raise ToolCallError(f"Execution error: {e}", tool_name=name) from e

        self.server.notification_handlers[RootsListChangedNotification] = (
            self._handle_roots_list_changed
        )

    # Request handling

    def _list_tools(self) -> List[Tool]:
        tools = [builtin.to_tool() for builtin in BUILTIN_TOOLS]
        for definition in self.registry.list():
            if get_builtin_tool(definition.name) is not None:
                logger.warning(
                    f"Tool {definition.name} is shadowed by a built-in tool"
                )
                continue
            tools.append(self._to_mcp_tool(definition))
        return tools

    @staticmethod
    def _to_mcp_tool(definition: ToolDefinition) -> Tool:
        return Tool(
            name=definition.name,
            description=definition.description,
            inputSchema=definition.input_schema(),
        )

    async def _call_tool(
        self, name: str, arguments: Dict[str, Any]
    ) -> List[TextContent]:
        """Run a built-in or registered tool.

        Raises:
            ToolCallError: The call failed; the message is the client payload
        """
        builtin = get_builtin_tool(name)
        if builtin is not None:
            if self.mcp_dir is None:
                raise ToolCallError(NOT_INITIALIZED, tool_name=name)
            result = await builtin.handler(arguments, self.mcp_dir)
            log_mcp_operation(logger, f"tools/call {name}", True)
            return result

        if self.project_root is None or self.mcp_dir is None:
            raise ToolCallError(NOT_INITIALIZED, tool_name=name)

        definition = self.registry.get(name)
        if definition is None:
            error = UnknownToolError(name)
            log_mcp_operation(logger, f"tools/call {name}", False)
            raise ToolCallError(f"Error: {error}", tool_name=name) from error

        logger.info(f"Executing tool: {name}")
        result = await execute_command(
            definition.executor,
            arguments,
            self.project_root,
            self.mcp_dir,
            name,
            default_timeout_ms=self.config.execution.default_timeout_ms,
            kill_grace_ms=self.config.execution.kill_grace_ms,
        )
        log_mcp_operation(logger, f"tools/call {name}", result.succeeded)

        if not result.succeeded:
            raise ToolCallError(format_failure(result), tool_name=name)

        return [TextContent(type="text", text=format_output(result))]

    async def _prepare_request(self) -> None:
        """Capture the session, wait for startup and negotiate roots once."""
        self._capture_session()
        await self._wait_until_ready()
        await self._negotiate_roots()

    def _capture_session(self) -> None:
        try:
            self._session = self.server.request_context.session
        except LookupError:
            pass  # called outside of a request

    async def _wait_until_ready(self) -> None:
        if self._ready.is_set():
            return
        logger.info("Waiting for initialization...")
        try:
            await asyncio.wait_for(
                self._ready.wait(), self.config.init_wait_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Timeout waiting for tools initialization")

    # Project root negotiation

    async def _negotiate_roots(self) -> None:
        """Ask the client for its roots once and follow the first file root."""
        async with self._roots_lock:
            if self._roots_negotiated or self._session is None:
                return
            self._roots_negotiated = True

            client_root = await self._request_client_root(self._session)
            if client_root is None:
                logger.info(f"Using fallback root: {self.project_root}")
                return
            if client_root == self.project_root:
                return

            logger.info(f"Client provided different root: {client_root}")
            logger.info("Reloading tools from client root...")
            await self.start_watcher(client_root)

    async def _request_client_root(self, session: ServerSession) -> Optional[Path]:
        if not session.check_client_capability(
            ClientCapabilities(roots=RootsCapability())
        ):
            logger.info("Client does not support roots")
            return None

        logger.info("Requesting roots from client...")
        try:
            result = await asyncio.wait_for(
                session.list_roots(), self.config.roots_timeout
            )
        except Exception as e:
            logger.info(f"Could not get roots from client: {e!r}")
            return None

        for root in result.roots:
            uri = str(root.uri)
            if uri.startswith("file://"):
                root_path = Path(url2pathname(urlparse(uri).path)).resolve()
                logger.info(f"Got root from client: {root_path}")
                return root_path
        return None

    async def _handle_roots_list_changed(
        self, notification: RootsListChangedNotification
    ) -> None:
        logger.info("Client roots changed")
        async with self._roots_lock:
            self._roots_negotiated = False
        self._spawn(self._negotiate_roots())

    # Watcher and registry

    async def start_watcher(self, project_root: Union[str, Path]) -> None:
        """Watch <project_root>/<mcp_dir_name>/tools.json, replacing any watcher.

        Returns after the initial tool set is in the registry.
        """
        await self.stop_watcher()

        project_root = Path(project_root).resolve()
        if self.project_root is not None and project_root != self.project_root:
            self.registry.clear()

        self.project_root = project_root
        self.mcp_dir = project_root / self.config.mcp_dir_name

        watcher_config = self.config.watcher
        self.watcher = ToolsWatcher(
            get_tools_json_path(project_root, self.config.mcp_dir_name),
            poll_interval=watcher_config.poll_interval_ms / 1000,
            debounce_delay=watcher_config.debounce_ms / 1000,
        )
        self._unsubscribe_watcher = self.watcher.subscribe(self._on_watcher_event)
        await self.watcher.start()

    async def stop_watcher(self) -> None:
        if self._unsubscribe_watcher is not None:
            self._unsubscribe_watcher()
            self._unsubscribe_watcher = None
        if self.watcher is not None:
            await self.watcher.stop()
            self.watcher = None

    def _on_watcher_event(self, event: WatcherEvent) -> None:
        if event.kind is WatcherEventKind.CHANGED:
            self.registry.replace_all(event.config)
        elif event.kind is WatcherEventKind.DELETED:
            self.registry.clear()
        elif event.error is not None:
            self.error_handler.handle_error(event.error)

    def _on_registry_update(
        self, diff: RegistryDiff, tools: List[ToolDefinition]
    ) -> None:
        logger.info(f"Tools updated ({len(tools)} tools available)")
        if self._session is not None:
            self._spawn(self._notify_tools_changed(self._session))

    async def _notify_tools_changed(self, session: ServerSession) -> None:
        try:
            await session.send_tool_list_changed()
        except Exception as e:
            logger.warning(f"Could not send tools/list_changed: {e!r}")

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # Lifecycle

    async def run(self) -> None:
        """Run the MCP server with stdio transport."""
        if self.config.project_root:
            initial_root = Path(self.config.project_root).resolve()
        else:
            initial_root = Path.cwd().resolve()
        logger.info(f"Initial project root: {initial_root}")

        # Tools are loaded before connecting so the first tools/list sees them.
        await self.start_watcher(initial_root)
        self._ready.set()
        logger.info("Tools loaded, now connecting to transport...")

        try:
            async with stdio_server() as (read_stream, write_stream):
                logger.info("Server connected via stdio")
                await self.server.run(
                    read_stream,
                    write_stream,
                    InitializationOptions(
                        server_name=SERVER_NAME,
                        server_version=__version__,
                        capabilities=self.server.get_capabilities(
                            notification_options=NotificationOptions(
                                tools_changed=True
                            ),
                            experimental_capabilities={},
                        ),
                    ),
                )
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the watcher and any background notifications."""
        await self.stop_watcher()
        for task in list(self._background_tasks):
            task.cancel()
        self._background_tasks.clear()


def format_output(result: ExecutionResult) -> str:
    """Text returned for a successful call: stdout, else stderr."""
    return result.stdout or result.stderr or NO_OUTPUT


def format_failure(result: ExecutionResult) -> str:
    """Text returned for a failed call."""
    if result.diagnostic:
        return f"Error: {result.diagnostic}\n\nStderr:\n{result.stderr}"
    return f"Command failed with exit code {result.exit_code}\n\nStderr:\n{result.stderr}"
