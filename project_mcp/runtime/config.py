"""Configuration management for the project tools server."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

from .exceptions import ConfigurationError

logger = logging.getLogger("project_mcp.config")


@dataclass
class LoggingConfig:
    """Logging configuration settings."""

    level: str = "INFO"
    console: bool = True
    file_path: Optional[str] = None  # DEBUG_LOG
    format_string: str = "%(asctime)s | %(levelname)-8s | %(name)-25s | %(message)s"


@dataclass
class WatcherConfig:
    """tools.json change detection settings."""

    poll_interval_ms: int = 5000
    debounce_ms: int = 300


@dataclass
class ExecutionConfig:
    """Tool execution settings."""

    default_timeout_ms: int = 30000  # used when an executor omits "timeout"
    kill_grace_ms: int = 1000  # SIGTERM -> SIGKILL delay


@dataclass
class ServerConfig:
    """Complete configuration for the project tools server."""

    project_root: Optional[str] = None
    mcp_dir_name: str = ".mcp"
    roots_timeout: float = 2.0  # seconds to wait for roots/list
    init_wait_timeout: float = 5.0  # seconds tools/list waits for startup
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)


class ConfigManager:
    """Manages configuration loading and environment variable overrides."""

    ENV_MAPPINGS = {
        "PROJECT_ROOT": (None, "project_root"),
        "MCP_DIR_NAME": (None, "mcp_dir_name"),
        "POLL_INTERVAL_MS": ("watcher", "poll_interval_ms"),
        "DEBUG_LOG": ("logging", "file_path"),
        "PROJECT_MCP_LOG_LEVEL": ("logging", "level"),
        "PROJECT_MCP_DEBOUNCE_MS": ("watcher", "debounce_ms"),
        "PROJECT_MCP_DEFAULT_TIMEOUT_MS": ("execution", "default_timeout_ms"),
    }

    INT_KEYS = {"poll_interval_ms", "debounce_ms", "default_timeout_ms", "kill_grace_ms"}
    FLOAT_KEYS = {"roots_timeout", "init_wait_timeout"}
    BOOL_KEYS = {"console"}
    POSITIVE_KEYS = {"poll_interval_ms"}

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional path to a TOML configuration file
        """
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[ServerConfig] = None

    def load_config(self) -> ServerConfig:
        """Load configuration from file and environment variables.

        Returns:
            Complete configuration object

        Raises:
            ConfigurationError: If an explicitly given file is missing or invalid
        """
        if self._config is not None:
            return self._config

        config_data: Dict = {}
        if self.config_path is not None:
            if not self.config_path.exists():
                raise ConfigurationError(
                    f"Configuration file not found: {self.config_path}\n"
                    f"Create a config file using: project-mcp --create-config {self.config_path}"
                )
            config_data = self._load_toml_config()

        config_data = self._apply_env_overrides(config_data)
        self._config = self._create_config_from_dict(config_data)
        return self._config

    def reload_config(self) -> ServerConfig:
        """Reload configuration from file and environment."""
        self._config = None
        return self.load_config()

    def _load_toml_config(self) -> Dict:
        try:
            with open(self.config_path, "rb") as f:
                return tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(
                f"Failed to load config file {self.config_path}: {e}"
            ) from e

    def _apply_env_overrides(self, config_data: Dict) -> Dict:
        """Apply environment variable overrides to configuration.

        Values that cannot be converted are logged and ignored.
        """
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is None or value == "":
                continue

            try:
                converted_value = self._convert_value(value, key)
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_var}: {value!r}")
                continue

            if section is None:
                config_data[key] = converted_value
            else:
                config_data.setdefault(section, {})[key] = converted_value

        return config_data

    def _convert_value(self, value: str, key: str) -> Union[str, int, float, bool]:
        if key in self.BOOL_KEYS:
            return value.lower() in ("true", "1", "yes", "on")
        if key in self.INT_KEYS:
            converted = int(value)
            if key in self.POSITIVE_KEYS and converted <= 0:
                raise ValueError(f"{key} must be positive")
            return converted
        if key in self.FLOAT_KEYS:
            return float(value)
        return value

    def _create_config_from_dict(self, config_data: Dict) -> ServerConfig:
        """Create configuration object from dictionary, ignoring unknown keys."""
        logging_data = config_data.get("logging", {})
        watcher_data = config_data.get("watcher", {})
        execution_data = config_data.get("execution", {})

        logging_config = LoggingConfig(
            **{
                k: v
                for k, v in logging_data.items()
                if k in LoggingConfig.__dataclass_fields__
            }
        )
        watcher_config = WatcherConfig(
            **{
                k: v
                for k, v in watcher_data.items()
                if k in WatcherConfig.__dataclass_fields__
            }
        )
        if watcher_config.poll_interval_ms <= 0:
            logger.warning(
                f"Ignoring non-positive poll_interval_ms: {watcher_config.poll_interval_ms}"
            )
            watcher_config.poll_interval_ms = WatcherConfig.poll_interval_ms
        execution_config = ExecutionConfig(
            **{
                k: v
                for k, v in execution_data.items()
                if k in ExecutionConfig.__dataclass_fields__
            }
        )

        top_level_data = {
            k: v
            for k, v in config_data.items()
            if k in ServerConfig.__dataclass_fields__
            and k not in ("logging", "watcher", "execution")
        }

        return ServerConfig(
            logging=logging_config,
            watcher=watcher_config,
            execution=execution_config,
            **top_level_data,
        )

    def save_config_template(self, output_path: Union[str, Path]) -> None:
        """Save a template configuration file.

        Args:
            output_path: Path to save template file
        """
        template_content = """# project-mcp configuration template

# Fallback project root when the client does not provide roots
# project_root = "/path/to/project"
mcp_dir_name = ".mcp"
roots_timeout = 2.0
init_wait_timeout = 5.0

[logging]
level = "INFO"
console = true
# Append logs to this file as well (same as DEBUG_LOG)
# file_path = "/tmp/project-mcp.log"

[watcher]
poll_interval_ms = 5000
debounce_ms = 300

[execution]
# Used when a tool's executor has no "timeout"; -1 in tools.json disables it
default_timeout_ms = 30000
kill_grace_ms = 1000
"""

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w") as f:
            f.write(template_content)
