"""Configuration and logging setup for hostdb."""

import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import click

from hostdb.exceptions import ConfigurationError

SUCCESS = 25
logging.addLevelName(SUCCESS, "OK")

# Environment variable names
ENV_LOG_LEVEL = "HOSTDB_LOG_LEVEL"
ENV_DOWNLOAD_TIMEOUT = "HOSTDB_DOWNLOAD_TIMEOUT"
ENV_HTTP_RETRIES = "HOSTDB_HTTP_RETRIES"
ENV_CONFIG_DIR = "HOSTDB_CONFIG_DIR"
ENV_BUILDS_DIR = "HOSTDB_BUILDS_DIR"
ENV_SOURCE_DATE_EPOCH = "SOURCE_DATE_EPOCH"

LEVEL_COLORS = {
    logging.DEBUG: "cyan",
    logging.INFO: "blue",
    SUCCESS: "green",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}


class ColorFormatter(logging.Formatter):
    """Prefixes each message with a coloured ``[LEVEL]`` tag."""

    def __init__(self, use_color: bool = True):
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        tag = "WARN" if record.levelno == logging.WARNING else record.levelname
        prefix = f"[{tag}]"
        if self.use_color:
            prefix = click.style(prefix, fg=LEVEL_COLORS.get(record.levelno))
        return f"{prefix} {message}"


def setup_logging(level: str | None = None) -> None:
    """Set up leveled, coloured console logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to INFO.
    """
    log_level = level or os.getenv(ENV_LOG_LEVEL, "INFO")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter(use_color=sys.stdout.isatty()))

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )

    # Keep HTTP connection chatter out of the console
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def log_success(logger: logging.Logger, msg: str, *args) -> None:
    """Log at the SUCCESS level (rendered as ``[OK]``)."""
    logger.log(SUCCESS, msg, *args)


def get_env_var(name: str, default: str | None = None, required: bool = False) -> str:
    """Get environment variable with optional default and validation.

    Args:
        name: Environment variable name
        default: Default value if not set
        required: Whether the variable is required

    Returns:
        Environment variable value

    Raises:
        ValueError: If required variable is not set
    """
    value = os.getenv(name, default)

    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")

    return value or ""


@dataclass(frozen=True)
class Settings:
    """Settings for one invocation, resolved from the environment.

    Attributes:
        output_dir: Directory receiving archives and the downloads/ cache
        config_dir: Directory holding config/databases/*.yaml
        builds_dir: Directory holding builds/<db>/sources.json and build scripts
        download_timeout: Deadline for one whole download, in seconds
        http_retries: urllib3 retries for connection setup
        source_date_epoch: Fixed repackage timestamp for reproducible archives
    """

    output_dir: Path = Path("dist")
    config_dir: Path = Path("config/databases")
    builds_dir: Path = Path("builds")
    download_timeout: float = 300.0
    http_retries: int = 0
    source_date_epoch: int | None = None

    @classmethod
    def from_env(cls, output_dir: str | Path | None = None) -> "Settings":
        epoch = get_env_var(ENV_SOURCE_DATE_EPOCH)
        try:
            return cls(
                output_dir=Path(output_dir) if output_dir else cls.output_dir,
                config_dir=Path(get_env_var(ENV_CONFIG_DIR, "config/databases")),
                builds_dir=Path(get_env_var(ENV_BUILDS_DIR, "builds")),
                download_timeout=float(get_env_var(ENV_DOWNLOAD_TIMEOUT, "300")),
                http_retries=int(get_env_var(ENV_HTTP_RETRIES, "0")),
                source_date_epoch=int(epoch) if epoch else None,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid hostdb environment setting: {e}") from e

    @property
    def downloads_dir(self) -> Path:
        return self.output_dir / "downloads"

    def now(self) -> datetime:
        """Repackage timestamp, pinned when SOURCE_DATE_EPOCH is set."""
        if self.source_date_epoch is not None:
            return datetime.fromtimestamp(self.source_date_epoch, UTC)
        return datetime.now(UTC)


@dataclass
class RunContext:
    """Settings and logger handed explicitly to each pipeline component."""

    settings: Settings
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("hostdb"))

    def child(self, name: str) -> logging.Logger:
        return self.logger.getChild(name)
