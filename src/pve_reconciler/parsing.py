"""Parsers for qm output and guest config text.

Every fixed-format assumption about the management tool lives here so that a
change in its output touches a single module:

- ``qm list``: one header line, then whitespace separated columns
  ``VMID NAME STATUS MEM(MB) BOOTDISK(GB) PID``.
- ``qm status <id>``: ``status: <state>``; the guest is running iff the
  second field is ``running``.
- ``qm listsnapshot <id>``: one snapshot per line, a tree marker in field 1,
  the name in field 2, date and time in fields 3-4 and the description from
  field 5 onward. The current-state line carries ``You are here!``.
- Guest config files: ``key: value`` lines, followed by optional bracketed
  sections (``[snapshot-name]``, ``[special:cloudinit]``) that hold
  non-current declarations.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

SECTION_HEADER_PATTERN = re.compile(r"^\s*\[.*\]")
CURRENT_STATE_MARKER = "you are here"
NO_DESCRIPTION_SENTINEL = "no-description"

# Zero-based field positions in a qm listsnapshot line
SNAPSHOT_NAME_FIELD = 1
SNAPSHOT_DESCRIPTION_FIELD = 4

RUNNING_STATE = "running"


@dataclass(frozen=True)
class VmListEntry:
    """A guest as reported by ``qm list``."""

    vmid: int
    name: str


@dataclass(frozen=True)
class SnapshotEntry:
    """A snapshot line from ``qm listsnapshot``."""

    name: str
    description: str = ""

    @property
    def has_description(self) -> bool:
        """True when the description is worth carrying over on recreate."""
        return bool(self.description) and self.description != NO_DESCRIPTION_SENTINEL


def parse_vm_list(output: str) -> list[VmListEntry]:
    """Parse ``qm list`` output, skipping the header and malformed lines."""
    entries: list[VmListEntry] = []
    for line in output.splitlines()[1:]:
        parts = line.split()
        if not parts:
            continue
        try:
            vmid = int(parts[0])
        except ValueError:
            continue
        name = parts[1] if len(parts) > 1 else ""
        entries.append(VmListEntry(vmid=vmid, name=name))
    return entries


def parse_status(output: str) -> str:
    """Return the state word from ``qm status`` output, or an empty string."""
    parts = output.split()
    if len(parts) < 2:
        return ""
    return parts[1].strip()


def is_running(output: str) -> bool:
    """True if ``qm status`` output reports a running guest."""
    return parse_status(output) == RUNNING_STATE


def parse_snapshot_list(output: str) -> list[SnapshotEntry]:
    """Parse ``qm listsnapshot`` output in listing (chronological) order.

    The current-state marker line is dropped; it is not a real snapshot.
    """
    snapshots: list[SnapshotEntry] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        if CURRENT_STATE_MARKER in line.lower():
            continue
        fields = line.split()
        if len(fields) <= SNAPSHOT_NAME_FIELD:
            continue
        snapshots.append(
            SnapshotEntry(
                name=fields[SNAPSHOT_NAME_FIELD],
                description=" ".join(fields[SNAPSHOT_DESCRIPTION_FIELD:]),
            )
        )
    return snapshots


def section_start(lines: list[str]) -> int:
    """Index of the first bracketed section header, or len(lines)."""
    for index, line in enumerate(lines):
        if SECTION_HEADER_PATTERN.match(line):
            return index
    return len(lines)


def active_lines(text: str) -> list[str]:
    """Lines of the current configuration, without any bracketed sections."""
    lines = text.splitlines()
    return lines[: section_start(lines)]


def declaration_pattern(key: str) -> re.Pattern[str]:
    """Pattern matching a top-level ``key:`` declaration."""
    return re.compile(rf"^{re.escape(key)}:\s*(.*?)\s*$")


def last_declaration(lines: list[str], key: str) -> str | None:
    """Value of the last declaration of ``key``, or None if absent or empty."""
    pattern = declaration_pattern(key)
    value: str | None = None
    for line in lines:
        match = pattern.match(line)
        if match:
            value = match.group(1) or None
    return value


def split_qualifiers(value: str) -> list[str]:
    """Split a comma separated property string, dropping empty items."""
    return [item.strip() for item in value.split(",") if item.strip()]


def cpu_model(value: str) -> str:
    """Model part of a ``cpu:`` value (``x86-64-v3,flags=+aes`` -> ``x86-64-v3``)."""
    qualifiers = split_qualifiers(value)
    if not qualifiers:
        return ""
    model = qualifiers[0]
    if model.startswith("cputype="):
        model = model[len("cputype=") :]
    return model
