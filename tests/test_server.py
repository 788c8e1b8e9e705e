#!/usr/bin/env python3
"""Tests for the Project Tools MCP Server."""

import asyncio
import contextlib
import json
from unittest.mock import AsyncMock, Mock

import pytest
from mcp.types import (
    CallToolRequest,
    ListRootsResult,
    ListToolsRequest,
    Root,
    RootsListChangedNotification,
)

from project_mcp.mcp_servers.project_tools.server import (
    NOT_INITIALIZED,
    ProjectToolsMCPServer,
)
from project_mcp.runtime.config import ServerConfig, WatcherConfig
from project_mcp.runtime.exceptions import ToolCallError

from .conftest import make_tool, write_tools


def make_config(**kwargs):
    return ServerConfig(
        watcher=WatcherConfig(poll_interval_ms=100, debounce_ms=50), **kwargs
    )


@contextlib.asynccontextmanager
async def started_server(project_root, **kwargs):
    server = ProjectToolsMCPServer(make_config(**kwargs))
    await server.start_watcher(project_root)
    try:
        yield server
    finally:
        await server.stop()


def mock_session(roots=None, supports_roots=True):
    session = Mock()
    session.check_client_capability = Mock(return_value=supports_roots)
    session.list_roots = AsyncMock(
        return_value=ListRootsResult(
            roots=[Root(uri=root.as_uri()) for root in roots or []]
        )
    )
    session.send_tool_list_changed = AsyncMock()
    return session


async def drain_background(server):
    while server._background_tasks:
        await asyncio.gather(*list(server._background_tasks))


class TestServerSetup:
    def test_handlers_registered(self):
        """Test the list, call and roots handlers are wired on the MCP server."""
        server = ProjectToolsMCPServer(make_config())

        assert ListToolsRequest in server.server.request_handlers
        assert CallToolRequest in server.server.request_handlers
        assert RootsListChangedNotification in server.server.notification_handlers


class TestListTools:
    """Test tools/list results."""

    @pytest.mark.asyncio
    async def test_builtin_tool_always_listed(self, project_root):
        async with started_server(project_root) as server:
            tools = server._list_tools()

            assert [tool.name for tool in tools] == ["bootstrap_tools"]

    @pytest.mark.asyncio
    async def test_declared_tools_in_order(self, project_root, sample_tools_json):
        """Test declared tools follow the built-in ones in file order."""
        async with started_server(project_root) as server:
            tools = server._list_tools()

            assert [tool.name for tool in tools] == [
                "bootstrap_tools",
                "greet",
                "list_files",
            ]
            greet = tools[1]
            assert greet.description == "The greet tool"
            assert greet.inputSchema["required"] == ["name"]

    @pytest.mark.asyncio
    async def test_default_input_schema(self, project_root, sample_tools_json):
        async with started_server(project_root) as server:
            list_files = server._list_tools()[2]

            assert list_files.inputSchema == {"type": "object", "properties": {}}

    @pytest.mark.asyncio
    async def test_builtin_name_not_duplicated(self, project_root, tools_json):
        write_tools(tools_json, make_tool("bootstrap_tools"))

        async with started_server(project_root) as server:
            names = [tool.name for tool in server._list_tools()]

            assert names == ["bootstrap_tools"]

    @pytest.mark.asyncio
    async def test_list_follows_file_changes(self, project_root, sample_tools_json):
        async with started_server(project_root) as server:
            write_tools(sample_tools_json, make_tool("only_one"))

            for _ in range(150):
                if server.registry.names() == ["only_one"]:
                    break
                await asyncio.sleep(0.02)

            assert [tool.name for tool in server._list_tools()] == [
                "bootstrap_tools",
                "only_one",
            ]


class TestCallTool:
    """Test tools/call results."""

    @pytest.mark.asyncio
    async def test_call_returns_stdout(self, project_root, sample_tools_json):
        async with started_server(project_root) as server:
            result = await server._call_tool("greet", {"name": "Ada"})

            assert len(result) == 1
            assert result[0].type == "text"
            assert result[0].text == "Hello, Ada\n"

    @pytest.mark.asyncio
    async def test_call_falls_back_to_stderr(self, project_root, tools_json):
        write_tools(tools_json, make_tool("warn", code="echo careful >&2"))

        async with started_server(project_root) as server:
            result = await server._call_tool("warn", {})

            assert result[0].text == "careful\n"

    @pytest.mark.asyncio
    async def test_call_without_output(self, project_root, tools_json):
        write_tools(tools_json, make_tool("quiet", code="true"))

        async with started_server(project_root) as server:
            result = await server._call_tool("quiet", {})

            assert result[0].text == "(no output)"

    @pytest.mark.asyncio
    async def test_call_nonzero_exit(self, project_root, tools_json):
        """Test a failing command returns exit code and stderr."""
        write_tools(tools_json, make_tool("fail", code="echo bad >&2; exit 2"))

        async with started_server(project_root) as server:
            with pytest.raises(ToolCallError) as exc_info:
                await server._call_tool("fail", {})

            assert str(exc_info.value) == (
                "Command failed with exit code 2\n\nStderr:\nbad\n"
            )

    @pytest.mark.asyncio
    async def test_call_timeout(self, project_root, tools_json):
        tool = make_tool("slow", code="sleep 10")
        tool["executor"]["timeout"] = 100
        write_tools(tools_json, tool)

        async with started_server(project_root) as server:
            with pytest.raises(ToolCallError) as exc_info:
                await server._call_tool("slow", {})

            assert str(exc_info.value) == (
                "Error: Execution timed out after 100ms\n\nStderr:\n"
            )

    @pytest.mark.asyncio
    async def test_unknown_tool(self, project_root, sample_tools_json):
        async with started_server(project_root) as server:
            with pytest.raises(ToolCallError) as exc_info:
                await server._call_tool("does_not_exist", {})

            assert str(exc_info.value) == 'Error: Unknown tool "does_not_exist"'

    @pytest.mark.asyncio
    async def test_call_before_initialization(self):
        server = ProjectToolsMCPServer(make_config())

        with pytest.raises(ToolCallError) as exc_info:
            await server._call_tool("greet", {})

        assert str(exc_info.value) == NOT_INITIALIZED

    @pytest.mark.asyncio
    async def test_bootstrap_tools(self, tmp_path):
        """Test bootstrap_tools writes the schema file and explains tools.json."""
        project_root = tmp_path / "fresh"
        project_root.mkdir()

        async with started_server(project_root) as server:
            result = await server._call_tool("bootstrap_tools", {})

        schema_path = project_root / ".mcp" / "tools.schema.json"
        assert schema_path.exists()
        schema = json.loads(schema_path.read_text())
        assert schema["title"] == "Project MCP Tools Configuration"
        text = result[0].text
        assert "tools.schema.json" in text
        assert "PARAM_<NAME>" in text
        assert "MCP_TOOLS_DIR" in text


class TestRootsNegotiation:
    """Test following the client's roots."""

    @pytest.mark.asyncio
    async def test_switches_to_client_root(self, tmp_path, project_root, sample_tools_json):
        """Test a different client root replaces the fallback root's tools."""
        client_root = tmp_path / "client"
        (client_root / ".mcp").mkdir(parents=True)
        write_tools(client_root / ".mcp" / "tools.json", make_tool("client_tool"))
        session = mock_session(roots=[client_root])

        async with started_server(project_root) as server:
            server._session = session
            await server._negotiate_roots()
            await drain_background(server)

            assert server.project_root == client_root.resolve()
            assert server.registry.names() == ["client_tool"]
            assert session.send_tool_list_changed.await_count >= 1

    @pytest.mark.asyncio
    async def test_negotiates_once(self, tmp_path, project_root):
        session = mock_session(roots=[project_root])

        async with started_server(project_root) as server:
            server._session = session
            await server._negotiate_roots()
            await server._negotiate_roots()

            assert session.list_roots.await_count == 1
            assert server.project_root == project_root

    @pytest.mark.asyncio
    async def test_client_without_roots(self, project_root, sample_tools_json):
        session = mock_session(supports_roots=False)

        async with started_server(project_root) as server:
            server._session = session
            await server._negotiate_roots()

            session.list_roots.assert_not_called()
            assert server.project_root == project_root
            assert "greet" in server.registry

    @pytest.mark.asyncio
    async def test_roots_request_failure(self, project_root, sample_tools_json):
        """Test a failing roots/list keeps the fallback root."""
        session = mock_session()
        session.list_roots = AsyncMock(side_effect=RuntimeError("no roots"))

        async with started_server(project_root) as server:
            server._session = session
            await server._negotiate_roots()

            assert server.project_root == project_root
            assert "greet" in server.registry

    @pytest.mark.asyncio
    async def test_roots_list_changed(self, tmp_path, project_root, sample_tools_json):
        """Test a roots change notification triggers a new negotiation."""
        other_root = tmp_path / "other"
        (other_root / ".mcp").mkdir(parents=True)
        session = mock_session(roots=[project_root])

        async with started_server(project_root) as server:
            server._session = session
            await server._negotiate_roots()

            session.list_roots.return_value = ListRootsResult(
                roots=[Root(uri=other_root.as_uri())]
            )
            await server._handle_roots_list_changed(Mock())
            await drain_background(server)

            assert server.project_root == other_root.resolve()
            assert len(server.registry) == 0


class TestToolListNotifications:
    """Test tools/list_changed notifications."""

    @pytest.mark.asyncio
    async def test_notification_on_change(self, project_root, tools_json):
        session = mock_session()

        async with started_server(project_root) as server:
            server._session = session
            write_tools(tools_json, make_tool("new_tool"))

            for _ in range(150):
                if session.send_tool_list_changed.await_count:
                    break
                await asyncio.sleep(0.02)

            session.send_tool_list_changed.assert_awaited()

    @pytest.mark.asyncio
    async def test_notification_failure_ignored(self, project_root, tools_json):
        session = mock_session()
        session.send_tool_list_changed = AsyncMock(side_effect=RuntimeError("closed"))

        async with started_server(project_root) as server:
            server._session = session
            write_tools(tools_json, make_tool("new_tool"))

            for _ in range(150):
                if "new_tool" in server.registry:
                    break
                await asyncio.sleep(0.02)
            await drain_background(server)

            assert "new_tool" in server.registry

    @pytest.mark.asyncio
    async def test_no_notification_without_session(self, project_root, tools_json):
        async with started_server(project_root) as server:
            write_tools(tools_json, make_tool("new_tool"))

            for _ in range(150):
                if "new_tool" in server.registry:
                    break
                await asyncio.sleep(0.02)

            assert server._background_tasks == set()


class TestRegistryFollowsFile:
    """Test what the served tool set does when tools.json breaks or vanishes."""

    @pytest.mark.asyncio
    async def test_invalid_file_keeps_last_good_tools(
        self, project_root, sample_tools_json
    ):
        async with started_server(project_root) as server:
            diffs = []
            server.registry.subscribe(lambda diff, tools: diffs.append(diff))

            sample_tools_json.write_text("{ not json")

            for _ in range(150):
                if server.error_handler.error_history:
                    break
                await asyncio.sleep(0.02)
            await asyncio.sleep(0.3)

            assert server.registry.names() == ["greet", "list_files"]
            assert diffs == []
            assert server.error_handler.error_history
            assert all(
                info.message.startswith("Invalid JSON")
                for info in server.error_handler.error_history
            )

    @pytest.mark.asyncio
    async def test_deleted_file_empties_registry_once(
        self, project_root, sample_tools_json
    ):
        """Test deleting tools.json clears the tools with exactly one change."""
        async with started_server(project_root) as server:
            diffs = []
            server.registry.subscribe(lambda diff, tools: diffs.append(diff))

            sample_tools_json.unlink()

            for _ in range(150):
                if len(server.registry) == 0:
                    break
                await asyncio.sleep(0.02)
            # several poll intervals
            await asyncio.sleep(0.5)

            assert server.registry.names() == []
            assert len(diffs) == 1
            assert diffs[0].removed == ("greet", "list_files")
