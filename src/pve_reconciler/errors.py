"""Per-guest failure taxonomy.

Every failure here is local to one guest: the orchestrator records it in the
batch summary and moves on to the next guest. Only the privilege check in
security.py is fatal to the whole run.
"""

from __future__ import annotations

from enum import Enum


class Step(str, Enum):
    """Pipeline step a failure occurred in."""

    INSPECT = "inspect"
    SHUTDOWN = "shutdown"
    MUTATE = "mutate"
    SNAPSHOT = "snapshot"
    START = "start"


class EntityError(Exception):
    """Base class for failures scoped to a single guest."""

    step: Step = Step.INSPECT

    def __init__(self, vmid: int, message: str, detail: str = "") -> None:
        super().__init__(message)
        self.vmid = vmid
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}\n  Error: {self.detail}"
        return self.message


class ConfigUnavailable(EntityError):
    """The guest has no readable persisted configuration."""

    step = Step.INSPECT


class ShutdownFailure(EntityError):
    """The guest could not be confirmed stopped; it is abandoned."""

    step = Step.SHUTDOWN


class MutationFailure(EntityError):
    """qm set or the config text edit failed."""

    step = Step.MUTATE


class SnapshotFailure(EntityError):
    """Snapshot create, delete or recreate failed. The mutation stays applied."""

    step = Step.SNAPSHOT


class StartFailure(EntityError):
    """Restarting a previously running guest failed; it is left stopped."""

    step = Step.START
