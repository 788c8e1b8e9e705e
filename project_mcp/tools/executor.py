"""Runs tool executors as child processes.

Every failure is returned as an ExecutionResult; execute_command never
raises to its caller.
"""

import asyncio
import json
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple, Union

from ..runtime.exceptions import (
    ExecutionTimeoutError,
    MissingSourceError,
    ScriptNotFoundError,
    SpawnError,
    ToolExecutionError,
    UnknownExecutorError,
)
from ..runtime.logging_config import get_logger
from .models import NO_TIMEOUT, ToolExecutor

logger = get_logger("executor")

DEFAULT_TIMEOUT_MS = 30000
KILL_GRACE_MS = 1000
SPAWN_FAILURE_EXIT_CODE = 1
READ_CHUNK_SIZE = 65536

# executor type -> interpreter argv prefix; the code is appended last
INTERPRETERS: Dict[str, Tuple[str, ...]] = {
    "bash": ("bash", "-c"),
    "python": ("python3", "-c"),
}


@dataclass
class ExecutionResult:
    """Result of one tool execution."""

    succeeded: bool
    stdout: str
    stderr: str
    exit_code: int
    diagnostic: Optional[str] = None


async def execute_command(
    executor: ToolExecutor,
    params: Optional[Mapping[str, Any]],
    project_root: Union[str, Path],
    mcp_dir: Union[str, Path],
    tool_name: str,
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    kill_grace_ms: int = KILL_GRACE_MS,
) -> ExecutionResult:
    """Execute a tool with the given parameters.

    Args:
        executor: Executor configuration from the tool definition
        params: Parameters passed to the tool
        project_root: Project root, used as the working directory
        mcp_dir: The MCP directory; script files are relative to it
        tool_name: Name of the tool being executed
        default_timeout_ms: Timeout used when the executor has none
        kill_grace_ms: Delay between SIGTERM and SIGKILL on timeout

    Returns:
        The normalized execution result
    """
    timeout_ms = executor.timeout if executor.timeout is not None else default_timeout_ms
    env = build_environment(params or {}, project_root, mcp_dir, tool_name)

    try:
        code = resolve_source(executor, mcp_dir, tool_name)
        argv = interpreter_command(executor.type, code, tool_name)
        return await _run_process(
            argv, env, str(project_root), timeout_ms, kill_grace_ms, tool_name
        )
    except ToolExecutionError as e:
        logger.warning(f"Tool {tool_name} failed: {e}")
        return ExecutionResult(
            succeeded=False,
            stdout="",
            stderr="",
            exit_code=SPAWN_FAILURE_EXIT_CODE,
            diagnostic=str(e),
        )
    except Exception as e:
        logger.exception(f"Unexpected error while executing tool {tool_name}")
        return ExecutionResult(
            succeeded=False,
            stdout="",
            stderr="",
            exit_code=SPAWN_FAILURE_EXIT_CODE,
            diagnostic=f"Execution error: {e}",
        )


def build_environment(
    params: Mapping[str, Any],
    project_root: Union[str, Path],
    mcp_dir: Union[str, Path],
    tool_name: str,
    base_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Build the child environment.

    The parent environment is overlaid with PROJECT_ROOT, MCP_TOOLS_DIR,
    TOOL_NAME, then PARAM_<KEY> and <key> for every parameter. Later
    entries win.
    """
    env = dict(os.environ if base_env is None else base_env)
    env["PROJECT_ROOT"] = str(project_root)
    env["MCP_TOOLS_DIR"] = str(mcp_dir)
    env["TOOL_NAME"] = tool_name

    for key, value in params.items():
        text = _env_value(value)
        env[f"PARAM_{key.upper()}"] = text
        env[key] = text

    return env


def _env_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def resolve_source(
    executor: ToolExecutor, mcp_dir: Union[str, Path], tool_name: Optional[str] = None
) -> str:
    """Return the code to run: inline code, or the script file's contents.

    Raises:
        ScriptNotFoundError: The script file does not exist
        MissingSourceError: Neither code nor file is set
    """
    if executor.code is not None:
        return executor.code

    if executor.file is not None:
        # Always under mcp_dir, even for an absolute reference.
        script_path = Path(mcp_dir, executor.file.lstrip("/"))
        if not script_path.is_file():
            raise ScriptNotFoundError(script_path, tool_name=tool_name)
        return script_path.read_text(encoding="utf-8")

    raise MissingSourceError(tool_name=tool_name)


def interpreter_command(
    executor_type: str, code: str, tool_name: Optional[str] = None
) -> Tuple[str, ...]:
    """Build the interpreter argv for an executor type.

    Raises:
        UnknownExecutorError: The executor type has no interpreter
    """
    prefix = INTERPRETERS.get(executor_type)
    if prefix is None:
        raise UnknownExecutorError(executor_type, tool_name=tool_name)
    return (*prefix, code)


async def _run_process(
    argv: Sequence[str],
    env: Mapping[str, str],
    cwd: str,
    timeout_ms: int,
    kill_grace_ms: int,
    tool_name: str,
) -> ExecutionResult:
    """Spawn the interpreter, drain its output and enforce the timeout."""
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env),
            cwd=cwd,
            start_new_session=True,
        )
    except (OSError, ValueError) as e:
        raise SpawnError(argv[0], str(e), tool_name=tool_name) from e

    logger.debug(f"Started {argv[0]} for tool {tool_name} (pid {process.pid})")

    stdout = bytearray()
    stderr = bytearray()
    completion = asyncio.ensure_future(
        asyncio.gather(
            _drain(process.stdout, stdout),
            _drain(process.stderr, stderr),
            process.wait(),
        )
    )
    timer = (
        asyncio.ensure_future(asyncio.sleep(timeout_ms / 1000))
        if timeout_ms > NO_TIMEOUT
        else None
    )
    timed_out = False

    try:
        waiters = {completion} if timer is None else {completion, timer}
        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        if completion not in done:
            timed_out = True
            logger.warning(f"Tool {tool_name} timed out after {timeout_ms}ms")
            await _terminate(process, kill_grace_ms)
            await completion
    finally:
        if timer is not None:
            timer.cancel()
        if process.returncode is None:
            # Cancelled from outside: do not leave the child behind.
            _signal_group(process, signal.SIGKILL)
        if not completion.done():
            completion.cancel()

    exit_code = process.returncode
    stdout_text = stdout.decode("utf-8", errors="replace")
    stderr_text = stderr.decode("utf-8", errors="replace")

    if timed_out:
        return ExecutionResult(
            succeeded=False,
            stdout=stdout_text,
            stderr=stderr_text,
            exit_code=exit_code if exit_code is not None else 1,
            diagnostic=str(ExecutionTimeoutError(timeout_ms, tool_name=tool_name)),
        )

    return ExecutionResult(
        succeeded=exit_code == 0,
        stdout=stdout_text,
        stderr=stderr_text,
        exit_code=exit_code if exit_code is not None else 0,
    )


async def _drain(stream: Optional[asyncio.StreamReader], sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        sink.extend(chunk)


async def _terminate(process: asyncio.subprocess.Process, kill_grace_ms: int) -> None:
    """Send SIGTERM, then SIGKILL if the process outlives the grace period."""
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), kill_grace_ms / 1000)
    except asyncio.TimeoutError:
        logger.warning(f"Process {process.pid} ignored SIGTERM, sending SIGKILL")
        _signal_group(process, signal.SIGKILL)
    else:
        # Descendants may outlive the leader and keep the pipes open.
        _signal_group(process, signal.SIGKILL)


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, sig)
        else:
            process.send_signal(sig)
    except ProcessLookupError:
        pass  # already exited
