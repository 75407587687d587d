"""Snapshot handling after a successful change.

REPLACE_LAST deletes the most recent snapshot and recreates it under the same
name. If the delete succeeds and the recreate fails, the guest is left without
a snapshot of that name; this is reported as a failure and not compensated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from .errors import SnapshotFailure
from .inventory import VirtualMachine
from .parsing import SnapshotEntry, parse_snapshot_list
from .qm import QmClient

logger = logging.getLogger(__name__)

SNAPSHOT_NAME_FORMAT = "after_op_%Y%m%d_%H%M%S"
SNAPSHOT_DESCRIPTION = "New snapshot created by pve-vm-reconciler"


class SnapshotPolicy(str, Enum):
    """What to do with the snapshot history after a change."""

    CREATE_NEW = "create"
    REPLACE_LAST = "replace"
    DO_NOTHING = "none"


class SnapshotCoordinator:
    """Applies a snapshot policy to one guest."""

    def __init__(
        self,
        qm: QmClient,
        *,
        dry_run: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._qm = qm
        self._dry_run = dry_run
        self._clock = clock

    def new_snapshot_name(self) -> str:
        return self._clock().strftime(SNAPSHOT_NAME_FORMAT)

    def list_snapshots(self, vm: VirtualMachine) -> list[SnapshotEntry]:
        """Real snapshots of the guest in listing order.

        Raises:
            SnapshotFailure: If the listing cannot be read.
        """
        result = self._qm.list_snapshots(vm.vmid)
        if not result.ok:
            raise SnapshotFailure(
                vm.vmid, f"Failed to list snapshots for {vm.label}.", result.diagnostic
            )
        return parse_snapshot_list(result.stdout)

    def handle(self, vm: VirtualMachine, policy: SnapshotPolicy) -> None:
        """Apply ``policy`` to the guest's snapshot history.

        Raises:
            SnapshotFailure: If a list, create, delete or recreate call failed.
        """
        if policy == SnapshotPolicy.DO_NOTHING:
            logger.info("Skipping snapshot operation as requested", extra={"vmid": vm.vmid})
            return

        if self._dry_run:
            if policy == SnapshotPolicy.CREATE_NEW:
                logger.info(
                    "[DRY RUN] Would create new snapshot '%s' for %s",
                    self.new_snapshot_name(),
                    vm.label,
                    extra={"vmid": vm.vmid},
                )
            else:
                logger.info(
                    "[DRY RUN] Would delete and recreate the most recent snapshot of %s",
                    vm.label,
                    extra={"vmid": vm.vmid},
                )
            return

        snapshots = self.list_snapshots(vm)
        if not snapshots:
            logger.info(
                "No actual snapshots found for %s, nothing to %s",
                vm.label,
                "replace" if policy == SnapshotPolicy.REPLACE_LAST else "follow up",
                extra={"vmid": vm.vmid, "policy": policy.value},
            )
            return

        match policy:
            case SnapshotPolicy.CREATE_NEW:
                self._create_new(vm)
            case SnapshotPolicy.REPLACE_LAST:
                self._replace_last(vm, snapshots[-1])

    def _create_new(self, vm: VirtualMachine) -> None:
        name = self.new_snapshot_name()
        logger.info("Creating new snapshot '%s'", name, extra={"vmid": vm.vmid})
        result = self._qm.create_snapshot(vm.vmid, name, SNAPSHOT_DESCRIPTION)
        if not result.ok:
            raise SnapshotFailure(
                vm.vmid, f"Failed to create new snapshot for {vm.label}.", result.diagnostic
            )

    def _replace_last(self, vm: VirtualMachine, latest: SnapshotEntry) -> None:
        logger.info(
            "Found most recent snapshot '%s'",
            latest.name,
            extra={"vmid": vm.vmid, "description": latest.description},
        )

        result = self._qm.delete_snapshot(vm.vmid, latest.name)
        if not result.ok:
            raise SnapshotFailure(
                vm.vmid,
                f"Failed to delete snapshot '{latest.name}' for {vm.label}.",
                result.diagnostic,
            )

        logger.info("Recreating snapshot '%s'", latest.name, extra={"vmid": vm.vmid})
        description = latest.description if latest.has_description else None
        result = self._qm.create_snapshot(vm.vmid, latest.name, description)
        if not result.ok:
            raise SnapshotFailure(
                vm.vmid,
                f"Failed to recreate snapshot '{latest.name}' for {vm.label}; "
                "the original snapshot has already been deleted.",
                result.diagnostic,
            )
