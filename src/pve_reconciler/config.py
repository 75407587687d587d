"""Configuration management with validation.

Settings are read from the environment once at startup and validated at
construction time, so a bad value stops the tool before any guest is touched.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class LogFormat(str, Enum):
    """Supported log output formats."""

    TEXT = "text"
    JSON = "json"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_CONFIG_DIR = "/etc/pve/qemu-server"
DEFAULT_QM_BINARY = "qm"

DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 120
MIN_SHUTDOWN_TIMEOUT_SECONDS = 1
MAX_SHUTDOWN_TIMEOUT_SECONDS = 3600

DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_COMMAND_TIMEOUT_SECONDS = 300

# Plan files are small hand-written YAML documents
MAX_PLAN_FILE_SIZE_BYTES = 64 * 1024

# Display memory bounds in MB
MIN_DISPLAY_MEMORY_MB = 1
MAX_DISPLAY_MEMORY_MB = 512

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Tool configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-batch.
    """

    # Paths
    config_dir: Path = field(default_factory=lambda: Path(DEFAULT_CONFIG_DIR))
    qm_binary: str = DEFAULT_QM_BINARY

    # Timing
    shutdown_timeout_seconds: int = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    command_timeout_seconds: int = DEFAULT_COMMAND_TIMEOUT_SECONDS

    # Logging
    log_format: LogFormat = LogFormat.TEXT
    log_level: str = "INFO"
    log_file: Path | None = None

    # Privilege check before any guest is processed
    require_root: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.qm_binary:
            errors.append("QM_BINARY must not be empty")

        if not (
            MIN_SHUTDOWN_TIMEOUT_SECONDS
            <= self.shutdown_timeout_seconds
            <= MAX_SHUTDOWN_TIMEOUT_SECONDS
        ):
            errors.append(
                f"SHUTDOWN_TIMEOUT must be between {MIN_SHUTDOWN_TIMEOUT_SECONDS} "
                f"and {MAX_SHUTDOWN_TIMEOUT_SECONDS} seconds"
            )

        if self.poll_interval_seconds <= 0:
            errors.append("SHUTDOWN_POLL_INTERVAL must be positive")
        elif self.poll_interval_seconds > self.shutdown_timeout_seconds:
            errors.append("SHUTDOWN_POLL_INTERVAL cannot exceed SHUTDOWN_TIMEOUT")

        if self.command_timeout_seconds < 1:
            errors.append("QM_COMMAND_TIMEOUT must be at least 1 second")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if self.log_file is not None and not self.log_file.parent.exists():
            errors.append(f"Log file directory does not exist: {self.log_file.parent}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            PVE_CONFIG_DIR: Guest config directory (default: /etc/pve/qemu-server)
            QM_BINARY: Management tool to invoke (default: qm)
            SHUTDOWN_TIMEOUT: Seconds to wait for a graceful stop (default: 120)
            SHUTDOWN_POLL_INTERVAL: Seconds between status polls (default: 1)
            QM_COMMAND_TIMEOUT: Timeout for a single qm call in seconds (default: 300)
            LOG_FORMAT: "text" or "json" (default: text)
            LOG_LEVEL: Root log level (default: INFO)
            LOG_FILE: Optional path of a log file to append to
            REQUIRE_ROOT: If "false", skip the root check (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_log_format(value: str | None) -> LogFormat:
            if not value:
                return LogFormat.TEXT
            try:
                return LogFormat(value.lower())
            except ValueError as e:
                valid = [f.value for f in LogFormat]
                raise ConfigurationError(f"LOG_FORMAT must be one of {valid}: {value}") from e

        log_file = os.environ.get("LOG_FILE")

        return cls(
            config_dir=Path(os.environ.get("PVE_CONFIG_DIR", DEFAULT_CONFIG_DIR)),
            qm_binary=os.environ.get("QM_BINARY", DEFAULT_QM_BINARY),
            shutdown_timeout_seconds=get_int("SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT_SECONDS),
            poll_interval_seconds=get_float(
                "SHUTDOWN_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
            ),
            command_timeout_seconds=get_int("QM_COMMAND_TIMEOUT", DEFAULT_COMMAND_TIMEOUT_SECONDS),
            log_format=get_log_format(os.environ.get("LOG_FORMAT")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file) if log_file else None,
            require_root=get_bool("REQUIRE_ROOT", True),
        )
