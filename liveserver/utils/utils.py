"""Utility functions for the live-reload server."""

import logging
import os
from pathlib import Path
from typing import Any

from liveserver.exceptions import ConfigurationError
from liveserver.watchers.file_watcher import DEFAULT_SLEEPTIME, MIN_SLEEPTIME, WatchConfig

MIN_PORT = 8000
MAX_PORT = 9000


def parse_boolean_env(env_var: str, default: str = "false") -> bool:
    """
    Parse a boolean environment variable with consistent behavior.

    Args:
        env_var: Environment variable name
        default: Default value if env var is not set

    Returns:
        Boolean value
    """
    value = os.getenv(env_var, default).lower()
    return value in ("true", "1", "yes", "on")


def validate_port(port: int) -> int:
    """
    Check that a port is in the range the server accepts.

    Args:
        port: Port number to check

    Returns:
        The port, unchanged

    Raises:
        ConfigurationError: If the port is outside 8000-9000
    """
    if not MIN_PORT <= port <= MAX_PORT:
        raise ConfigurationError(f"The port must be between {MIN_PORT} and {MAX_PORT}, got {port}.")
    return port


def validate_content_dir(content_dir: Path) -> Path:
    """
    Check that the directory to serve exists.

    Raises:
        ConfigurationError: If the path is not a directory
    """
    if not content_dir.is_dir():
        raise ConfigurationError(f"The specified dir '{content_dir}' is not recognised.")
    return content_dir


def get_server_config() -> dict[str, Any]:
    """
    Get server configuration values from the environment.

    Returns:
        Dictionary of server configuration values
    """
    raw_port = os.getenv("PORT", str(MIN_PORT))
    try:
        port = int(raw_port)
    except ValueError as e:
        raise ConfigurationError(f"Invalid PORT value '{raw_port}'. PORT must be an integer.") from e

    return {
        "host": os.getenv("HOST", "127.0.0.1"),
        "port": port,
        "log_level": os.getenv("LOG_LEVEL", "info").lower(),
        "content_dir": Path(os.getenv("CONTENT_DIR", ".")),
        "verbose": parse_boolean_env("LIVESERVER_VERBOSE"),
        "open_browser": parse_boolean_env("LIVESERVER_OPEN_BROWSER"),
    }


def get_watch_config() -> WatchConfig:
    """
    Get the file watcher configuration from the environment.

    Returns:
        WatchConfig built from WATCH_SLEEPTIME and WATCH_LOG_LEVEL
    """
    raw_sleeptime = os.getenv("WATCH_SLEEPTIME", str(DEFAULT_SLEEPTIME))
    try:
        sleeptime = float(raw_sleeptime)
    except ValueError as e:
        raise ConfigurationError(f"Invalid WATCH_SLEEPTIME value '{raw_sleeptime}'.") from e

    return WatchConfig(sleeptime=sleeptime, log_level=os.getenv("WATCH_LOG_LEVEL", "INFO"))


def configure_logging(log_level: str, verbose: bool = False) -> None:
    """
    Configure root logging for the server process.

    Args:
        log_level: Level name such as "info" or "warning"
        verbose: Force DEBUG level to report file changes and connections
    """
    level = logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def print_startup_info(content_dir: Path, server_config: dict[str, Any], watch_config: WatchConfig) -> None:
    """
    Print startup information including configuration.

    Args:
        content_dir: Directory being served
        server_config: Server configuration
        watch_config: Watcher configuration
    """
    print(f"✓ LiveServer listening on http://{server_config['host']}:{server_config['port']}/ ...")
    print("  (use CTRL+C to shut down)")
    print()
    print("Configuration:")
    print(f"  CONTENT_DIR={content_dir.resolve()}")
    print(f"  HOST={server_config['host']}")
    print(f"  PORT={server_config['port']}")
    print(f"  LOG_LEVEL={server_config['log_level']}")
    print(f"  WATCH_SLEEPTIME={max(watch_config.sleeptime, MIN_SLEEPTIME)}")
    print(f"  VERBOSE={server_config['verbose']}")
    print()
