"""Logging setup and the top-level batch runner.

Exit codes:
    0: batch finished without failures (including "everything already correct")
    1: configuration error, plan error, or per-guest failures recorded
    2: insufficient privileges
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterable
from datetime import UTC, datetime

from .config import Config, LogFormat
from .inventory import ResourceInventory
from .orchestrator import BatchOptions, BatchOrchestrator, BatchResult, ConfirmCallback
from .qm import QmClient, QmCommandError
from .security import PrivilegeError, check_privileges
from .vmconfig import VmConfigStore

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PRIVILEGE = 2

# LogRecord attributes that are not user supplied extra fields
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


# Handlers added by setup_logging, replaced on the next call
_installed_handlers: list[logging.Handler] = []


def _extra_fields(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_KEYS
    }


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        log_data.update(_extra_fields(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human readable lines with extra fields appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s - [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extra_fields(record)
        extras.pop("asctime", None)
        if extras:
            line += " (" + ", ".join(f"{k}={v}" for k, v in extras.items()) + ")"
        return line


def setup_logging(config: Config) -> None:
    """Configure the root logger from the tool configuration.

    Logs go to stderr so they do not mix with command output; an optional log
    file receives the same records.
    """
    formatter: logging.Formatter
    if config.log_format == LogFormat.JSON:
        formatter = JsonFormatter()
    else:
        formatter = TextFormatter()

    root_logger = logging.getLogger()
    for handler in list(_installed_handlers):
        root_logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    stream_handler = logging.StreamHandler(sys.stderr)
    _installed_handlers.append(stream_handler)

    if config.log_file is not None:
        _installed_handlers.append(logging.FileHandler(config.log_file, encoding="utf-8"))

    for handler in _installed_handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    root_logger.setLevel(config.log_level)


def preflight(config: Config, qm: QmClient) -> int:
    """Run the one-time privilege check. Returns an exit code."""
    logger = logging.getLogger(__name__)
    try:
        check_privileges(qm, require_root=config.require_root)
    except PrivilegeError as e:
        logger.critical("Insufficient privileges", extra={"error": str(e).strip()})
        return EXIT_PRIVILEGE
    return EXIT_OK


def execute_batch(
    config: Config,
    qm: QmClient,
    options: BatchOptions,
    vmids: Iterable[str | int] | None = None,
    *,
    confirm: ConfirmCallback | None = None,
) -> tuple[int, BatchResult | None]:
    """Select guests and run a batch.

    Returns:
        Exit code and the batch result (None if nothing was processed).
    """
    logger = logging.getLogger(__name__)

    inventory = ResourceInventory(qm, VmConfigStore(config.config_dir))
    try:
        vms = inventory.select(vmids)
    except QmCommandError as e:
        logger.error("Failed to list guests", extra={"error": str(e)})
        return EXIT_FAILURE, None

    if not vms:
        logger.error("No valid VMs selected to process")
        return EXIT_FAILURE, None

    orchestrator = BatchOrchestrator(config, qm, options, confirm=confirm)
    result = orchestrator.run(vms)
    return (EXIT_OK if result.success else EXIT_FAILURE), result
