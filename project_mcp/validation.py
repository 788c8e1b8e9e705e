from pathlib import Path, PurePath
from typing import List, Optional, Tuple, Union


def validate_project_root(project_root: Union[str, Path]) -> Tuple[bool, List[str]]:
    errors = []

    path = Path(project_root).expanduser()
    if not path.exists():
        errors.append(f"Project root does not exist: {path}")
    elif not path.is_dir():
        errors.append(f"Project root is not a directory: {path}")

    return len(errors) == 0, errors


def validate_mcp_dir_name(name: str) -> Tuple[bool, List[str]]:
    errors = []

    if not name or not name.strip():
        errors.append("MCP directory name cannot be empty")
        return False, errors

    pure = PurePath(name)
    if pure.is_absolute():
        errors.append(f"MCP directory name must be relative to the project root: {name}")
    if ".." in pure.parts:
        errors.append(f"MCP directory name cannot leave the project root: {name}")

    return len(errors) == 0, errors


def resolve_project_root_override(
    project_root: Optional[Union[str, Path]],
) -> Tuple[Optional[Path], List[str]]:
    """Return the resolved override, or None with the reasons it was rejected."""
    if not project_root:
        return None, []

    is_valid, errors = validate_project_root(project_root)
    if not is_valid:
        return None, errors

    return Path(project_root).expanduser().resolve(), []
