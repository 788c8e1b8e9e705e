"""Built-in tools that are always available, regardless of tools.json."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.types import TextContent, Tool

from ...runtime.exceptions import ToolCallError
from ...tools.loader import TOOLS_JSON_NAME, TOOLS_SCHEMA_NAME
from ...tools.models import tools_json_schema

BuiltinHandler = Callable[[Dict[str, Any], Path], Awaitable[List[TextContent]]]


@dataclass(frozen=True)
class BuiltinTool:
    """A tool implemented by the server itself."""

    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: BuiltinHandler

    def to_tool(self) -> Tool:
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema,
        )


BOOTSTRAP_INSTRUCTIONS = """Successfully created {schema_name} in {mcp_dir}

## What is {tools_name}?

The {tools_name} file allows you to define custom tools that become available through this MCP server. Each tool you define can execute bash scripts or Python code, enabling project-specific automation and functionality.

## How to Create Tools

1. Create a file named "{tools_name}" in the {mcp_dir} directory

2. Reference the schema file ({schema_name}) to understand the structure:
   - "version": Must be "1.0"
   - "tools": Array of tool definitions

3. Each tool requires:
   - "name": Unique identifier (alphanumeric + underscores)
   - "description": Human-readable description for the LLM
   - "executor": How to run the tool (bash or python, with inline code or file reference)
   - "parameters": (optional) JSON Schema defining input parameters

4. Tools receive parameters as environment variables:
   - PROJECT_ROOT: The project directory
   - MCP_TOOLS_DIR: The MCP directory path
   - TOOL_NAME: The executing tool's name
   - PARAM_<NAME>: Each parameter value

## Example {tools_name}

{example}

Read {schema_name} for the complete schema definition."""

EXAMPLE_TOOLS_JSON = {
    "version": "1.0",
    "tools": [
        {
            "name": "list_files",
            "description": "List files in the project directory",
            "executor": {"type": "bash", "code": "ls -la $PROJECT_ROOT"},
        }
    ],
}


async def bootstrap_tools(arguments: Dict[str, Any], mcp_dir: Path) -> List[TextContent]:
    """Write tools.schema.json into the MCP directory and explain tools.json."""
    schema_path = mcp_dir / TOOLS_SCHEMA_NAME

    try:
        mcp_dir.mkdir(parents=True, exist_ok=True)
        # Always overwritten so the file matches the running server.
        schema_path.write_text(
            json.dumps(tools_json_schema(), indent=4), encoding="utf-8"
        )
    except OSError as e:
        raise ToolCallError(
            f"Error creating schema file: {e}", tool_name="bootstrap_tools"
        ) from e

    instructions = BOOTSTRAP_INSTRUCTIONS.format(
        schema_name=TOOLS_SCHEMA_NAME,
        tools_name=TOOLS_JSON_NAME,
        mcp_dir=mcp_dir,
        example=json.dumps(EXAMPLE_TOOLS_JSON, indent=4),
    )
    return [TextContent(type="text", text=instructions)]


BUILTIN_TOOLS: List[BuiltinTool] = [
    BuiltinTool(
        name="bootstrap_tools",
        description=(
            "Creates the tools.schema.json file in the MCP directory with the "
            "current schema. Use this to get started with creating custom tools "
            "for this project."
        ),
        input_schema={"type": "object", "properties": {}},
        handler=bootstrap_tools,
    ),
]


def get_builtin_tool(name: str) -> Optional[BuiltinTool]:
    """Get a built-in tool by name."""
    for tool in BUILTIN_TOOLS:
        if tool.name == name:
            return tool
    return None
