import argparse
import asyncio
import signal
import sys
from typing import Optional

from .mcp_servers.project_tools.server import ProjectToolsMCPServer
from .runtime.config import ConfigManager, ServerConfig
from .runtime.exceptions import ConfigurationError
from .runtime.logging_config import get_logger, setup_logging
from .tools.registry import ToolRegistry
from .validation import resolve_project_root_override, validate_mcp_dir_name

logger = get_logger("cli")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="project-mcp",
        description="MCP server exposing the project-specific tools declared "
        "in <project>/.mcp/tools.json.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  project-mcp
  project-mcp --project-root ~/myproject
  project-mcp --config project-mcp.toml --log-level DEBUG
  project-mcp --create-config project-mcp.toml
        """,
    )

    parser.add_argument(
        "--project-root",
        type=str,
        help="Fallback project root used until the client provides roots "
        "(default: PROJECT_ROOT or the current directory)",
    )

    parser.add_argument(
        "--mcp-dir",
        type=str,
        help="Name of the configuration directory inside the project (default: .mcp)",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=str,
        help="Path to a TOML configuration file",
    )

    parser.add_argument(
        "--create-config",
        type=str,
        help="Create a default configuration file at the specified path and exit",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging level (default: INFO)",
    )

    parser.add_argument("--log-file", type=str, help="Append logs to this file")

    return parser


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Load the configuration and apply command line overrides.

    Raises:
        ConfigurationError: If the configuration file or an option is invalid
    """
    config = ConfigManager(args.config).load_config()

    if args.log_level:
        config.logging.level = args.log_level
    if args.log_file:
        config.logging.file_path = args.log_file
    if args.mcp_dir:
        config.mcp_dir_name = args.mcp_dir
    if args.project_root:
        config.project_root = args.project_root

    is_valid, errors = validate_mcp_dir_name(config.mcp_dir_name)
    if not is_valid:
        raise ConfigurationError("; ".join(errors), config_key="mcp_dir_name")

    return config


def apply_project_root_override(config: ServerConfig) -> None:
    """Drop a project root override that does not point to a directory."""
    project_root, errors = resolve_project_root_override(config.project_root)
    for error in errors:
        logger.warning(f"{error}, ignoring the override")
    config.project_root = str(project_root) if project_root else None


async def serve(server: ProjectToolsMCPServer) -> None:
    """Run the server until the transport closes or SIGINT/SIGTERM arrives."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def _on_signal(signum: int) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, shutting down...")
        task.cancel()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _on_signal, signum)
        except (NotImplementedError, RuntimeError):
            pass  # not supported on this platform

    try:
        await server.run()
    except asyncio.CancelledError:
        logger.info("Server stopped")
    finally:
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                pass


def main(argv: Optional[list] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    # Handle config file creation
    if args.create_config:
        try:
            config_manager = ConfigManager(args.create_config)
            config_manager.save_config_template(args.create_config)
            print(
                f"✅ Configuration template created: {args.create_config}",
                file=sys.stderr,
            )
            return 0
        except Exception as e:
            print(f"❌ Failed to create config file: {e}", file=sys.stderr)
            return 1

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)
    apply_project_root_override(config)

    server = ProjectToolsMCPServer(config, registry=ToolRegistry())
    try:
        asyncio.run(serve(server))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception:
        logger.exception("Server error")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
