"""Models for the tools.json configuration file.

The models double as the validation schema: they are built once at import
time and reused for every load.
"""

from typing import Any, Dict, List, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)

TOOL_NAME_PATTERN = r"^[a-zA-Z_][a-zA-Z0-9_]*$"
MIN_TIMEOUT_MS = -1
MAX_TIMEOUT_MS = 300000
NO_TIMEOUT = -1

ExecutorType = Literal["bash", "python"]


class ToolExecutor(BaseModel):
    """How a tool runs: an interpreter plus inline code or a script file."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        json_schema_extra={
            "oneOf": [
                {"required": ["code"], "not": {"required": ["file"]}},
                {"required": ["file"], "not": {"required": ["code"]}},
            ]
        },
    )

    type: ExecutorType = Field(description="Executor type")
    # Not Optional: an explicit null is rejected, an omitted key stays None.
    code: StrictStr = Field(default=None, description="Inline code to execute")
    file: StrictStr = Field(
        default=None, description="Path to script file (relative to .mcp/)"
    )
    # None means "not given" and is distinct from NO_TIMEOUT.
    timeout: StrictInt = Field(
        default=None,
        ge=MIN_TIMEOUT_MS,
        le=MAX_TIMEOUT_MS,
        description="Execution timeout in milliseconds (-1 for infinite)",
    )

    @model_validator(mode="after")
    def _check_single_source(self) -> "ToolExecutor":
        if (self.code is None) == (self.file is None):
            raise ValueError("executor must define exactly one of 'code' or 'file'")
        return self


class ParameterProperty(BaseModel):
    """A single tool input parameter. Unknown keys are kept verbatim."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: StrictStr
    description: StrictStr = None
    default: Any = None
    enum: List[Any] = None


class ToolParameters(BaseModel):
    """JSON Schema for a tool's input parameters."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: Literal["object"] = "object"
    properties: Dict[str, ParameterProperty] = None
    required: List[StrictStr] = None

    def to_input_schema(self) -> Dict[str, Any]:
        """Return the schema as written in tools.json, with type "object"."""
        schema = self.model_dump(mode="json", exclude_unset=True)
        schema.setdefault("type", "object")
        return schema


class ToolDefinition(BaseModel):
    """A single tool definition from tools.json."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: StrictStr = Field(
        pattern=TOOL_NAME_PATTERN,
        description=(
            "Tool identifier (alphanumeric + underscores, "
            "must start with letter or underscore)"
        ),
    )
    description: StrictStr = Field(
        description="Human-readable description shown to LLM"
    )
    parameters: ToolParameters = Field(
        default=None, description="JSON Schema for tool input parameters"
    )
    executor: ToolExecutor

    def input_schema(self) -> Dict[str, Any]:
        if self.parameters is None:
            return {"type": "object", "properties": {}}
        return self.parameters.to_input_schema()


class ToolsConfig(BaseModel):
    """Root structure of tools.json. One instance per successful load."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        title="Project MCP Tools Configuration",
        json_schema_extra={
            "$schema": "http://json-schema.org/draft-07/schema#",
            "description": "Schema for .mcp/tools.json configuration file",
        },
    )

    version: Literal["1.0"] = Field(
        description="Schema version for forward compatibility"
    )
    tools: List[ToolDefinition] = Field(description="Array of tool definitions")

    @field_validator("tools")
    @classmethod
    def _check_unique_names(
        cls, tools: List[ToolDefinition]
    ) -> List[ToolDefinition]:
        seen = set()
        for tool in tools:
            if tool.name in seen:
                raise ValueError(f"duplicate tool name '{tool.name}'")
            seen.add(tool.name)
        return tools

    @property
    def tool_names(self) -> List[str]:
        return [tool.name for tool in self.tools]


def tools_json_schema() -> Dict[str, Any]:
    """JSON Schema document describing tools.json."""
    return ToolsConfig.model_json_schema()
