"""Thin wrapper around the ``qm`` management tool.

Every call returns a QmResult with the exit code and captured output; callers
decide what a failure means for them. Timeouts are enforced on every call so a
hung ``qm`` process cannot stall the batch indefinitely.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from .config import DEFAULT_COMMAND_TIMEOUT_SECONDS, DEFAULT_QM_BINARY, Config
from .parsing import VmListEntry, is_running, parse_status, parse_vm_list

logger = logging.getLogger(__name__)

# Exit code reported for a call that hit its timeout
TIMEOUT_RETURNCODE = -1


@dataclass(frozen=True)
class QmResult:
    """Outcome of a single qm invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """True if the command exited with status 0."""
        return self.returncode == 0

    @property
    def diagnostic(self) -> str:
        """Raw error text suitable for a failure summary."""
        text = (self.stderr or self.stdout).strip()
        return text or f"exit code {self.returncode}"


class PowerState(str, Enum):
    """Running state of a guest as far as qm can tell."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


def power_state(result: QmResult) -> PowerState:
    """Classify a ``qm status`` result.

    A failed call or unreadable output is UNKNOWN, never STOPPED. Any state
    other than running (stopped, paused, ...) counts as STOPPED.
    """
    if not result.ok:
        return PowerState.UNKNOWN
    state = parse_status(result.stdout)
    if not state:
        return PowerState.UNKNOWN
    if is_running(result.stdout):
        return PowerState.RUNNING
    return PowerState.STOPPED


class QmCommandError(Exception):
    """Raised when a qm call needed to continue at all has failed."""

    def __init__(self, message: str, result: QmResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class QmNotFoundError(QmCommandError):
    """Raised when the qm binary cannot be executed."""

    pass


Runner = Callable[[Sequence[str], float], QmResult]


def subprocess_runner(args: Sequence[str], timeout: float) -> QmResult:
    """Run a command with captured output.

    Raises:
        QmNotFoundError: If the executable does not exist.
    """
    try:
        completed = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return QmResult(
            args=tuple(args),
            returncode=TIMEOUT_RETURNCODE,
            stderr=f"Command timed out after {timeout}s: {' '.join(args)}",
        )
    except FileNotFoundError as e:
        raise QmNotFoundError(
            f"Command not found: {args[0]}. Make sure you're running this on a Proxmox VE host."
        ) from e
    return QmResult(
        args=tuple(args),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


class QmClient:
    """Issues qm commands for the rest of the tool.

    The runner is injectable so tests can substitute an in-memory host.
    """

    def __init__(
        self,
        binary: str = DEFAULT_QM_BINARY,
        timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        runner: Runner | None = None,
    ) -> None:
        self._binary = binary
        self._timeout = timeout_seconds
        self._runner = runner or subprocess_runner

    @classmethod
    def from_config(cls, config: Config, runner: Runner | None = None) -> QmClient:
        """Build a client from the tool configuration."""
        return cls(
            binary=config.qm_binary,
            timeout_seconds=config.command_timeout_seconds,
            runner=runner,
        )

    def run(self, *args: str) -> QmResult:
        """Run ``qm <args>`` and return its result."""
        command = (self._binary, *args)
        result = self._runner(command, self._timeout)
        logger.debug(
            "qm call finished",
            extra={"command": " ".join(command), "returncode": result.returncode},
        )
        return result

    def list_vms(self) -> list[VmListEntry]:
        """List all guests on this host.

        Raises:
            QmCommandError: If ``qm list`` fails.
        """
        result = self.run("list")
        if not result.ok:
            raise QmCommandError(f"Cannot execute 'qm list': {result.diagnostic}", result)
        return parse_vm_list(result.stdout)

    def status(self, vmid: int) -> QmResult:
        return self.run("status", str(vmid))

    def power_state(self, vmid: int) -> PowerState:
        """Live running state of a guest."""
        return power_state(self.status(vmid))

    def set_option(self, vmid: int, key: str, value: str) -> QmResult:
        return self.run("set", str(vmid), f"--{key}", value)

    def shutdown(self, vmid: int) -> QmResult:
        return self.run("shutdown", str(vmid))

    def stop(self, vmid: int) -> QmResult:
        return self.run("stop", str(vmid))

    def start(self, vmid: int) -> QmResult:
        return self.run("start", str(vmid))

    def list_snapshots(self, vmid: int) -> QmResult:
        return self.run("listsnapshot", str(vmid))

    def create_snapshot(self, vmid: int, name: str, description: str | None = None) -> QmResult:
        args = ["snapshot", str(vmid), name]
        if description:
            args.extend(["--description", description])
        return self.run(*args)

    def delete_snapshot(self, vmid: int, name: str) -> QmResult:
        return self.run("delsnapshot", str(vmid), name)
