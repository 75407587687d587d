"""Resolve the effective values of the tracked guest attributes."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .parsing import active_lines, cpu_model, last_declaration
from .vmconfig import DISPLAY_KEY, VmConfigStore

logger = logging.getLogger(__name__)

MACHINE_KEY = "machine"
CPU_KEY = "cpu"

# Values Proxmox VE uses when the declaration is absent
DEFAULT_MACHINE = "i440fx"
DEFAULT_CPU = "x86-64-v2-AES"
DEFAULT_DISPLAY = "default"


@dataclass(frozen=True)
class AttributeMap:
    """Effective attribute values of one guest, defaults already applied.

    The ``*_declared`` flags record whether the value came from the file.
    """

    machine: str = DEFAULT_MACHINE
    cpu: str = DEFAULT_CPU
    display: str = DEFAULT_DISPLAY
    machine_declared: bool = False
    cpu_declared: bool = False
    display_declared: bool = False

    @property
    def cpu_model(self) -> str:
        return cpu_model(self.cpu)

    def describe(self) -> str:
        """One-line summary for listings."""
        machine = self.machine if self.machine_declared else f"{self.machine} (default)"
        cpu = self.cpu if self.cpu_declared else f"{self.cpu} (default)"
        return f"Machine: {machine}, CPU: {cpu}, VGA: {self.display}"


def attributes_from_text(text: str) -> AttributeMap:
    """Build an AttributeMap from config text.

    Only the last top-level declaration counts; bracketed sections are ignored.
    """
    lines = active_lines(text)
    machine = last_declaration(lines, MACHINE_KEY)
    cpu = last_declaration(lines, CPU_KEY)
    display = last_declaration(lines, DISPLAY_KEY)
    return AttributeMap(
        machine=machine or DEFAULT_MACHINE,
        cpu=cpu or DEFAULT_CPU,
        display=display or DEFAULT_DISPLAY,
        machine_declared=machine is not None,
        cpu_declared=cpu is not None,
        display_declared=display is not None,
    )


class ConfigInspector:
    """Reads a guest's persisted configuration. Never mutates state."""

    def __init__(self, store: VmConfigStore) -> None:
        self._store = store

    def inspect(self, vmid: int) -> AttributeMap:
        """Return the effective attributes of a guest.

        Raises:
            ConfigUnavailable: If the config file cannot be read.
        """
        attributes = attributes_from_text(self._store.read(vmid))
        logger.debug(
            "Inspected VM configuration",
            extra={
                "vmid": vmid,
                "machine": attributes.machine,
                "cpu": attributes.cpu,
                "vga": attributes.display,
            },
        )
        return attributes
