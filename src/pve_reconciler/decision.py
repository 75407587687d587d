"""Operations and the table deciding whether one is needed for a guest.

The decision is a pure function of one guest's attributes and the requested
operation. Conversions only apply when the guest is in the documented source
state; everything else is a no-op that skips shutdown, mutation and snapshot.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .config import MAX_DISPLAY_MEMORY_MB, MIN_DISPLAY_MEMORY_MB
from .inspector import DEFAULT_CPU, AttributeMap

Q35_MACHINE = "q35"
I440FX_MACHINE = "i440fx"
CPU_V3 = "x86-64-v3"
CPU_V2 = DEFAULT_CPU


class OperationKind(str, Enum):
    """Supported batch operations."""

    I440FX_TO_Q35 = "i440fx-to-q35"
    Q35_TO_I440FX = "q35-to-i440fx"
    CPU_V2_TO_V3 = "cpu-v2-to-v3"
    CPU_V3_TO_V2 = "cpu-v3-to-v2"
    SET_DISPLAY_MEMORY = "set-display-memory"
    REVERT_DISPLAY_MEMORY = "revert-display-memory"
    SNAPSHOT_ONLY = "snapshot-only"


MACHINE_CONVERSIONS = frozenset({OperationKind.I440FX_TO_Q35, OperationKind.Q35_TO_I440FX})
DISPLAY_MEMORY_OPERATIONS = frozenset(
    {OperationKind.SET_DISPLAY_MEMORY, OperationKind.REVERT_DISPLAY_MEMORY}
)


@dataclass(frozen=True)
class Operation:
    """A requested transition, resolved once per batch.

    ``machine_version`` selects an explicit machine type string (for example
    ``pc-q35-8.1``) instead of the latest version; it is only valid for
    machine conversions. ``memory_mb`` is required for SET_DISPLAY_MEMORY.
    """

    kind: OperationKind
    machine_version: str | None = None
    memory_mb: int | None = None

    def __post_init__(self) -> None:
        if self.machine_version is not None:
            if self.kind not in MACHINE_CONVERSIONS:
                raise ValueError(
                    f"machine_version is only valid for machine conversions: {self.kind.value}"
                )
            if not self.machine_version.strip() or any(c.isspace() for c in self.machine_version):
                raise ValueError(f"Invalid machine version: {self.machine_version!r}")

        if self.kind == OperationKind.SET_DISPLAY_MEMORY:
            if self.memory_mb is None:
                raise ValueError("memory_mb is required for set-display-memory")
            if not (MIN_DISPLAY_MEMORY_MB <= self.memory_mb <= MAX_DISPLAY_MEMORY_MB):
                raise ValueError(
                    f"memory_mb must be between {MIN_DISPLAY_MEMORY_MB} and {MAX_DISPLAY_MEMORY_MB}"
                )
        elif self.memory_mb is not None:
            raise ValueError(f"memory_mb is only valid for set-display-memory: {self.kind.value}")

    @property
    def is_display_memory(self) -> bool:
        return self.kind in DISPLAY_MEMORY_OPERATIONS

    @property
    def allows_snapshot(self) -> bool:
        """Display memory edits never touch the snapshot history."""
        return not self.is_display_memory

    def describe(self) -> str:
        match self.kind:
            case OperationKind.SET_DISPLAY_MEMORY:
                return f"{self.kind.value} ({self.memory_mb} MB)"
            case OperationKind.I440FX_TO_Q35 | OperationKind.Q35_TO_I440FX:
                return f"{self.kind.value} ({self.machine_version or 'latest'})"
            case _:
                return self.kind.value


@dataclass(frozen=True)
class DecisionRule:
    """When an operation applies.

    ``read`` extracts the inspected value; ``applies`` is tested against it.
    Rules with no ``read`` are always applicable.
    """

    read: Callable[[AttributeMap], str] | None
    applies: Callable[[str], bool] | None
    source: str
    target: str


DECISION_TABLE: dict[OperationKind, DecisionRule] = {
    OperationKind.I440FX_TO_Q35: DecisionRule(
        read=lambda attrs: attrs.machine,
        applies=lambda value: I440FX_MACHINE in value,
        source="machine contains i440fx (default when unset)",
        target="q35 or explicit version",
    ),
    OperationKind.Q35_TO_I440FX: DecisionRule(
        read=lambda attrs: attrs.machine,
        applies=lambda value: Q35_MACHINE in value,
        source="machine contains q35",
        target="latest i440fx (machine line removed) or explicit version",
    ),
    OperationKind.CPU_V2_TO_V3: DecisionRule(
        read=lambda attrs: attrs.cpu_model,
        applies=lambda value: value == CPU_V2,
        source=f"cpu is {CPU_V2} (default when unset)",
        target=CPU_V3,
    ),
    OperationKind.CPU_V3_TO_V2: DecisionRule(
        read=lambda attrs: attrs.cpu_model,
        applies=lambda value: value == CPU_V3,
        source=f"cpu is {CPU_V3}",
        target=CPU_V2,
    ),
    OperationKind.SET_DISPLAY_MEMORY: DecisionRule(
        read=None, applies=None, source="always", target="vga memory=<MB>"
    ),
    OperationKind.REVERT_DISPLAY_MEMORY: DecisionRule(
        read=None, applies=None, source="always", target="vga without memory qualifier"
    ),
    OperationKind.SNAPSHOT_ONLY: DecisionRule(
        read=None, applies=None, source="always", target="unchanged"
    ),
}


def is_needed(operation: Operation, attributes: AttributeMap) -> bool:
    """Decide whether ``operation`` would change this guest."""
    rule = DECISION_TABLE[operation.kind]
    if rule.read is None or rule.applies is None:
        return True
    return rule.applies(rule.read(attributes))
