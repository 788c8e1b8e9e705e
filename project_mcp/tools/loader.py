"""Loading and validation of tools.json files."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..runtime.exceptions import (
    ConfigNotFoundError,
    ConfigParseError,
    ConfigReadError,
    ConfigValidationError,
    ToolsConfigError,
)
from .models import ToolsConfig

DEFAULT_MCP_DIR_NAME = ".mcp"
TOOLS_JSON_NAME = "tools.json"
TOOLS_SCHEMA_NAME = "tools.schema.json"


@dataclass
class LoadResult:
    """Outcome of loading tools.json: a config or a list of error strings."""

    success: bool
    config: Optional[ToolsConfig] = None
    errors: List[str] = field(default_factory=list)
    error: Optional[ToolsConfigError] = None


def parse_tools_config(tools_json_path: Union[str, Path]) -> ToolsConfig:
    """Read, parse and validate a tools.json file.

    Args:
        tools_json_path: Path to tools.json

    Returns:
        A new validated configuration

    Raises:
        ConfigNotFoundError: The file does not exist
        ConfigReadError: The file could not be read
        ConfigParseError: The file is not valid JSON
        ConfigValidationError: The document does not match the schema
    """
    path = Path(tools_json_path)

    if not path.exists():
        raise ConfigNotFoundError(path)

    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigNotFoundError(path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigReadError(path, str(e)) from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigParseError(path, str(e)) from e

    try:
        return ToolsConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigValidationError(path, format_validation_errors(e)) from e


def load_tools_config(tools_json_path: Union[str, Path]) -> LoadResult:
    """Load tools.json without raising.

    Args:
        tools_json_path: Path to tools.json

    Returns:
        LoadResult with either the config or the error strings
    """
    try:
        config = parse_tools_config(tools_json_path)
    except ToolsConfigError as e:
        return LoadResult(success=False, errors=e.errors, error=e)
    return LoadResult(success=True, config=config)


def format_validation_errors(error: ValidationError) -> List[str]:
    """Turn pydantic errors into "<json pointer>: <message>" strings."""
    messages = []
    for item in error.errors(include_url=False):
        loc = item.get("loc") or ()
        pointer = "/" + "/".join(str(part) for part in loc)
        message = item.get("msg", "invalid value")
        if item.get("type") == "value_error" and "error" in item.get("ctx", {}):
            message = str(item["ctx"]["error"])
        messages.append(f"{pointer}: {message}")
    return messages or ["/: Unknown validation error"]


def config_to_dict(config: ToolsConfig) -> Dict[str, Any]:
    """Return the config as plain JSON data, keeping only keys that were set."""
    return config.model_dump(mode="json", exclude_unset=True)


def dump_tools_config(config: ToolsConfig) -> str:
    """Serialize a config back to tools.json text."""
    return json.dumps(config_to_dict(config), indent=4) + "\n"


def get_tools_json_path(
    project_root: Union[str, Path], mcp_dir_name: str = DEFAULT_MCP_DIR_NAME
) -> Path:
    """Get the path to tools.json for a given project root."""
    return Path(project_root) / mcp_dir_name / TOOLS_JSON_NAME


def tools_json_exists(
    project_root: Union[str, Path], mcp_dir_name: str = DEFAULT_MCP_DIR_NAME
) -> bool:
    """Check if tools.json exists for a project."""
    return get_tools_json_path(project_root, mcp_dir_name).exists()
