"""Apply one operation to one guest.

Machine type and CPU model changes go through ``qm set``. Display memory and
the return to the default machine type are direct edits of the config file,
because qm offers no way to express them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .decision import CPU_V2, CPU_V3, Q35_MACHINE, Operation, OperationKind
from .errors import ConfigUnavailable, MutationFailure
from .inspector import CPU_KEY, MACHINE_KEY
from .inventory import VirtualMachine
from .qm import QmClient
from .vmconfig import (
    VmConfigStore,
    delete_declaration,
    revert_display_memory,
    set_display_memory,
)

logger = logging.getLogger(__name__)


class MutationApplier:
    """Executes the concrete attribute change for an operation kind.

    Side effects are confined to the one guest passed to apply().
    """

    def __init__(self, qm: QmClient, store: VmConfigStore, *, dry_run: bool = False) -> None:
        self._qm = qm
        self._store = store
        self._dry_run = dry_run

    def apply(self, vm: VirtualMachine, operation: Operation) -> None:
        """Apply ``operation`` to ``vm``.

        Raises:
            MutationFailure: With the raw qm or file error as detail.
        """
        match operation.kind:
            case OperationKind.I440FX_TO_Q35:
                self._set_option(vm, MACHINE_KEY, operation.machine_version or Q35_MACHINE)
            case OperationKind.Q35_TO_I440FX:
                if operation.machine_version:
                    self._set_option(vm, MACHINE_KEY, operation.machine_version)
                else:
                    logger.info(
                        "Removing 'machine:' line to revert %s to the latest i440fx",
                        vm.label,
                        extra={"vmid": vm.vmid},
                    )
                    self._edit_config(vm, lambda text: delete_declaration(text, MACHINE_KEY))
            case OperationKind.CPU_V2_TO_V3:
                self._set_option(vm, CPU_KEY, CPU_V3)
            case OperationKind.CPU_V3_TO_V2:
                self._set_option(vm, CPU_KEY, CPU_V2)
            case OperationKind.SET_DISPLAY_MEMORY:
                memory_mb = operation.memory_mb
                if memory_mb is None:
                    raise MutationFailure(vm.vmid, "No display memory value given.")
                logger.info(
                    "Setting VGA/SPICE memory of %s to %s MB",
                    vm.label,
                    memory_mb,
                    extra={"vmid": vm.vmid},
                )
                self._edit_config(vm, lambda text: set_display_memory(text, memory_mb))
            case OperationKind.REVERT_DISPLAY_MEMORY:
                logger.info(
                    "Reverting VGA/SPICE memory of %s to default",
                    vm.label,
                    extra={"vmid": vm.vmid},
                )
                self._edit_config(vm, revert_display_memory)
            case OperationKind.SNAPSHOT_ONLY:
                logger.debug("Snapshot-only operation, nothing to change", extra={"vmid": vm.vmid})

    def _set_option(self, vm: VirtualMachine, key: str, value: str) -> None:
        logger.info(
            "Changing %s of %s to '%s'", key, vm.label, value, extra={"vmid": vm.vmid}
        )
        if self._dry_run:
            logger.info("[DRY RUN] Would run qm set %s --%s %s", vm.vmid, key, value)
            return
        result = self._qm.set_option(vm.vmid, key, value)
        if not result.ok:
            raise MutationFailure(
                vm.vmid, f"Failed to change {key} for {vm.label}.", result.diagnostic
            )

    def _edit_config(self, vm: VirtualMachine, edit: Callable[[str], str]) -> None:
        try:
            original = self._store.read(vm.vmid)
        except ConfigUnavailable as e:
            raise MutationFailure(
                vm.vmid, f"Failed to edit config file for {vm.label}.", str(e)
            ) from e

        updated = edit(original)
        if self._dry_run:
            logger.info(
                "[DRY RUN] Would rewrite %s",
                self._store.path(vm.vmid),
                extra={"vmid": vm.vmid, "changed": updated != original},
            )
            return
        if updated == original:
            logger.info("Config file already in the requested state", extra={"vmid": vm.vmid})
            return
        try:
            self._store.write(vm.vmid, updated)
        except OSError as e:
            raise MutationFailure(
                vm.vmid, f"Failed to edit config file for {vm.label}.", str(e)
            ) from e
