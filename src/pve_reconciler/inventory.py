"""Discovery of manageable guests and validation of a selection."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .qm import QmClient
from .vmconfig import VmConfigStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VirtualMachine:
    """A guest discovered on the host.

    Running state and configuration are deliberately not cached here; both
    are read live right before they are needed.
    """

    vmid: int
    name: str

    @property
    def label(self) -> str:
        return f"VM {self.vmid} ({self.name})"


class ResourceInventory:
    """Enumerates guests via ``qm list``."""

    def __init__(self, qm: QmClient, store: VmConfigStore) -> None:
        self._qm = qm
        self._store = store

    def discover(self) -> list[VirtualMachine]:
        """All guests on the host in ascending id order.

        Raises:
            QmCommandError: If the guest list cannot be read.
        """
        entries = self._qm.list_vms()
        vms = {entry.vmid: VirtualMachine(vmid=entry.vmid, name=entry.name) for entry in entries}
        return [vms[vmid] for vmid in sorted(vms)]

    def select(self, requested: Iterable[str | int] | None = None) -> list[VirtualMachine]:
        """Validate a selection of guest ids.

        A missing selection (None) means every guest; an empty one selects
        nothing. Ids that are unknown or have no config file are logged and
        dropped. The result is sorted by id and free of duplicates.
        """
        known = {vm.vmid: vm for vm in self.discover()}
        if requested is None:
            return [known[vmid] for vmid in sorted(known)]

        selected: dict[int, VirtualMachine] = {}
        for raw in requested:
            try:
                vmid = int(raw)
            except (TypeError, ValueError):
                logger.warning("VM ID '%s' is not a number and will be skipped", raw)
                continue
            if vmid not in known or not self._store.exists(vmid):
                logger.warning(
                    "VM ID '%s' is not valid or its config file is missing, it will be skipped",
                    vmid,
                )
                continue
            selected[vmid] = known[vmid]
        return [selected[vmid] for vmid in sorted(selected)]
