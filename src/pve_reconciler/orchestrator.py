"""Batch orchestration of the per-guest reconciliation pipeline.

For each selected guest, strictly one at a time and in ascending id order:
1. Inspect the persisted configuration
2. Decide whether the operation is needed (skip if not)
3. Stop the guest if it is running
4. Optional per-guest confirmation
5. Apply the change
6. Handle snapshots (only after a successful change)
7. Restart the guest if it was running

Every failure is recorded against its guest and the batch continues. Nothing
is retried. Interrupting the process between guests may leave the guest that
was being processed stopped; there is no resume-on-abort.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .config import Config
from .decision import Operation, is_needed
from .errors import (
    ConfigUnavailable,
    EntityError,
    MutationFailure,
    ShutdownFailure,
    SnapshotFailure,
    StartFailure,
)
from .inspector import ConfigInspector
from .inventory import VirtualMachine
from .lifecycle import LifecycleController
from .mutation import MutationApplier
from .qm import QmClient
from .snapshots import SnapshotCoordinator, SnapshotPolicy
from .vmconfig import VmConfigStore

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[VirtualMachine], bool]


@dataclass(frozen=True)
class BatchOptions:
    """Immutable, fully resolved settings for one batch run."""

    operation: Operation
    snapshot_policy: SnapshotPolicy = SnapshotPolicy.DO_NOTHING
    dry_run: bool = False
    confirm_each: bool = False

    @property
    def effective_snapshot_policy(self) -> SnapshotPolicy:
        """Display memory edits never touch snapshots."""
        if not self.operation.allows_snapshot:
            return SnapshotPolicy.DO_NOTHING
        return self.snapshot_policy

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.describe(),
            "snapshot_policy": self.effective_snapshot_policy.value,
            "dry_run": self.dry_run,
            "confirm_each": self.confirm_each,
        }


class EntityStatus(str, Enum):
    """Final state of one guest in a batch."""

    SKIPPED_NO_OP = "skipped-no-op"
    SKIPPED_DECLINED = "skipped-declined"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class EntityOutcome:
    """What happened to one guest."""

    vm: VirtualMachine
    status: EntityStatus = EntityStatus.SUCCEEDED
    was_running: bool = False
    errors: list[EntityError] = field(default_factory=list)

    def fail(self, error: EntityError) -> None:
        self.errors.append(error)
        self.status = EntityStatus.FAILED


@dataclass
class BatchResult:
    """Result of a batch run."""

    options: BatchOptions
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    outcomes: list[EntityOutcome] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def failures(self) -> list[EntityError]:
        """All recorded failures in processing order."""
        return [error for outcome in self.outcomes for error in outcome.errors]

    @property
    def success(self) -> bool:
        """A batch without failures succeeded, even if every guest was skipped."""
        return not self.failures

    def count(self, status: EntityStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def outcome_for(self, vmid: int) -> EntityOutcome | None:
        for outcome in self.outcomes:
            if outcome.vm.vmid == vmid:
                return outcome
        return None

    def summary_lines(self) -> list[str]:
        """Failure summary, one entry per failure."""
        return [f"[{error.step.value}] {error}" for error in self.failures]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            **self.options.to_dict(),
            "processed": len(self.outcomes),
            "succeeded": self.count(EntityStatus.SUCCEEDED),
            "skipped_no_op": self.count(EntityStatus.SKIPPED_NO_OP),
            "skipped_declined": self.count(EntityStatus.SKIPPED_DECLINED),
            "failed": self.count(EntityStatus.FAILED),
            "duration_seconds": self.duration_seconds,
        }


class BatchOrchestrator:
    """Drives inspection, decision, lifecycle, mutation and snapshots per guest."""

    def __init__(
        self,
        config: Config,
        qm: QmClient,
        options: BatchOptions,
        *,
        confirm: ConfirmCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._options = options
        self._confirm = confirm
        store = VmConfigStore(config.config_dir)
        self._inspector = ConfigInspector(store)
        self._lifecycle = LifecycleController(
            qm,
            dry_run=options.dry_run,
            shutdown_timeout_seconds=config.shutdown_timeout_seconds,
            poll_interval_seconds=config.poll_interval_seconds,
            sleep=sleep,
        )
        self._applier = MutationApplier(qm, store, dry_run=options.dry_run)
        self._snapshots = SnapshotCoordinator(qm, dry_run=options.dry_run, clock=clock)

    @property
    def options(self) -> BatchOptions:
        return self._options

    def run(self, vms: Iterable[VirtualMachine]) -> BatchResult:
        """Process every guest once, in ascending id order."""
        ordered = sorted(vms, key=lambda vm: vm.vmid)
        result = BatchResult(options=self._options)

        logger.info(
            "Starting batch",
            extra={**self._options.to_dict(), "vm_count": len(ordered)},
        )

        for index, vm in enumerate(ordered, start=1):
            logger.info(
                "[%d/%d] Processing %s", index, len(ordered), vm.label, extra={"vmid": vm.vmid}
            )
            outcome = self.process(vm)
            result.outcomes.append(outcome)
            logger.info(
                "Finished %s",
                vm.label,
                extra={"vmid": vm.vmid, "status": outcome.status.value},
            )

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    def process(self, vm: VirtualMachine) -> EntityOutcome:
        """Run the full pipeline for one guest."""
        outcome = EntityOutcome(vm=vm)
        operation = self._options.operation

        try:
            attributes = self._inspector.inspect(vm.vmid)
        except ConfigUnavailable as e:
            self._record(outcome, e)
            return outcome

        if not is_needed(operation, attributes):
            logger.info(
                "Configuration is already correct, skipping all operations for %s",
                vm.label,
                extra={"vmid": vm.vmid, "operation": operation.kind.value},
            )
            outcome.status = EntityStatus.SKIPPED_NO_OP
            return outcome

        try:
            outcome.was_running = self._lifecycle.ensure_stopped(vm)
        except ShutdownFailure as e:
            logger.error(
                "Cannot proceed with %s due to shutdown failure", vm.label, extra={"vmid": vm.vmid}
            )
            self._record(outcome, e)
            return outcome

        if self._should_ask() and self._confirm is not None and not self._confirm(vm):
            logger.info("Skipping change for %s as requested", vm.label, extra={"vmid": vm.vmid})
            outcome.status = EntityStatus.SKIPPED_DECLINED
        else:
            self._mutate_and_snapshot(vm, outcome)

        try:
            self._lifecycle.restore_if_was_running(vm, outcome.was_running)
        except StartFailure as e:
            self._record(outcome, e)

        return outcome

    def _should_ask(self) -> bool:
        return self._options.confirm_each and not self._options.dry_run

    def _mutate_and_snapshot(self, vm: VirtualMachine, outcome: EntityOutcome) -> None:
        try:
            self._applier.apply(vm, self._options.operation)
        except MutationFailure as e:
            self._record(outcome, e)
            return

        if not self._options.operation.allows_snapshot:
            return
        logger.info("Processing snapshots for %s", vm.label, extra={"vmid": vm.vmid})
        try:
            self._snapshots.handle(vm, self._options.effective_snapshot_policy)
        except SnapshotFailure as e:
            self._record(outcome, e)

    def _record(self, outcome: EntityOutcome, error: EntityError) -> None:
        logger.error(
            error.message,
            extra={"vmid": error.vmid, "step": error.step.value, "error": error.detail},
        )
        outcome.fail(error)

    def _log_result(self, result: BatchResult) -> None:
        if result.success:
            logger.info("Batch completed", extra=result.to_dict())
            return
        logger.error("Batch completed with failures", extra=result.to_dict())
        for line in result.summary_lines():
            logger.error("FAILURE: %s", line)
