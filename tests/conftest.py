"""Global test configuration and fixtures."""

import json
from pathlib import Path

import pytest

ENV_VARS = (
    "PROJECT_ROOT",
    "MCP_DIR_NAME",
    "POLL_INTERVAL_MS",
    "DEBUG_LOG",
    "PROJECT_MCP_LOG_LEVEL",
    "PROJECT_MCP_DEBOUNCE_MS",
    "PROJECT_MCP_DEFAULT_TIMEOUT_MS",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove server environment overrides so tests see the defaults."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def project_root(tmp_path):
    """Create a temporary project root with an empty .mcp directory."""
    root = tmp_path / "project"
    (root / ".mcp").mkdir(parents=True)
    return root.resolve()


@pytest.fixture
def mcp_dir(project_root):
    return project_root / ".mcp"


@pytest.fixture
def tools_json(mcp_dir):
    return mcp_dir / "tools.json"


def make_tool(name, code="echo hello", **extra):
    tool = {
        "name": name,
        "description": f"The {name} tool",
        "executor": {"type": "bash", "code": code},
    }
    tool.update(extra)
    return tool


def write_tools(path: Path, *tools, version="1.0"):
    """Write a tools.json document with the given tool entries."""
    path.write_text(json.dumps({"version": version, "tools": list(tools)}))
    return path


@pytest.fixture
def sample_tools_json(tools_json):
    """A tools.json with two tools: greet (with parameters) and list_files."""
    return write_tools(
        tools_json,
        make_tool(
            "greet",
            code='echo "Hello, $PARAM_NAME"',
            parameters={
                "type": "object",
                "properties": {"name": {"type": "string", "description": "Who"}},
                "required": ["name"],
            },
        ),
        make_tool("list_files", code="ls"),
    )

