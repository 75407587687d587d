"""Interactive setup as an explicit state machine.

The prompts themselves live in the CLI. This module only holds the states and
pure transition functions: each takes the current SetupState plus the user's
answer and returns the next SetupState. "Back" always returns to the
operation menu with previous operation details cleared.

    SELECT_ENTITIES -> CHOOSE_OPERATION -> CONFIGURE_DETAILS
        -> CHOOSE_SNAPSHOT_POLICY -> CONFIRM_AND_RUN -> DONE
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from .config import MAX_DISPLAY_MEMORY_MB, MIN_DISPLAY_MEMORY_MB
from .decision import MACHINE_CONVERSIONS, Operation, OperationKind
from .orchestrator import BatchOptions
from .snapshots import SnapshotPolicy


class SetupStage(str, Enum):
    """Stages of the interactive setup."""

    SELECT_ENTITIES = "select_entities"
    CHOOSE_OPERATION = "choose_operation"
    CONFIGURE_DETAILS = "configure_details"
    CHOOSE_SNAPSHOT_POLICY = "choose_snapshot_policy"
    CONFIRM_AND_RUN = "confirm_and_run"
    DONE = "done"
    EXIT = "exit"


OPERATION_MENU: dict[str, tuple[str, OperationKind | None]] = {
    "1": ("Convert Machine: i440fx -> q35", OperationKind.I440FX_TO_Q35),
    "2": ("Convert Machine: q35 -> i440fx", OperationKind.Q35_TO_I440FX),
    "3": ("Convert CPU: x86-64-v2-AES -> x86-64-v3", OperationKind.CPU_V2_TO_V3),
    "4": ("Convert CPU: x86-64-v3 -> x86-64-v2-AES", OperationKind.CPU_V3_TO_V2),
    "5": ("Set custom SPICE/VGA memory", OperationKind.SET_DISPLAY_MEMORY),
    "6": ("Revert SPICE/VGA memory to default", OperationKind.REVERT_DISPLAY_MEMORY),
    "7": ("Manage snapshots only", OperationKind.SNAPSHOT_ONLY),
    "8": ("Exit", None),
}

VERSION_MENU: dict[str, str] = {
    "1": "Use latest version (default)",
    "2": "Specify a version manually",
    "3": "Back to main menu",
}

SNAPSHOT_MENU: dict[str, tuple[str, SnapshotPolicy | None]] = {
    "1": ("Create New", SnapshotPolicy.CREATE_NEW),
    "2": ("Replace Last", SnapshotPolicy.REPLACE_LAST),
    "3": ("Do Nothing", SnapshotPolicy.DO_NOTHING),
    "4": ("Back to main menu", None),
}

BACK_CHOICES = ("b", "back")


@dataclass(frozen=True)
class SetupState:
    """Answers collected so far and the stage to ask next."""

    stage: SetupStage = SetupStage.SELECT_ENTITIES
    vmids: tuple[int, ...] = ()
    operation: OperationKind | None = None
    machine_version: str | None = None
    memory_mb: int | None = None
    snapshot_policy: SnapshotPolicy | None = None
    dry_run: bool = False
    confirm_each: bool = False
    error: str | None = None

    @property
    def needs_snapshot_policy(self) -> bool:
        return self.operation is not None and self.operation not in (
            OperationKind.SET_DISPLAY_MEMORY,
            OperationKind.REVERT_DISPLAY_MEMORY,
        )


def _invalid(state: SetupState, message: str) -> SetupState:
    return replace(state, error=message)


def back_to_operations(state: SetupState) -> SetupState:
    """Return to the operation menu, forgetting operation details."""
    return replace(
        state,
        stage=SetupStage.CHOOSE_OPERATION,
        operation=None,
        machine_version=None,
        memory_mb=None,
        snapshot_policy=None,
        error=None,
    )


def _after_details(state: SetupState) -> SetupState:
    if state.needs_snapshot_policy:
        return replace(state, stage=SetupStage.CHOOSE_SNAPSHOT_POLICY, error=None)
    return replace(state, stage=SetupStage.CONFIRM_AND_RUN, error=None)


def select_entities(state: SetupState, vmids: list[int]) -> SetupState:
    """Record the validated guest selection."""
    if not vmids:
        return replace(state, stage=SetupStage.EXIT, error="No valid VMs selected to process.")
    return replace(
        state, stage=SetupStage.CHOOSE_OPERATION, vmids=tuple(sorted(set(vmids))), error=None
    )


def choose_operation(state: SetupState, choice: str) -> SetupState:
    """Handle a main menu answer."""
    entry = OPERATION_MENU.get(choice.strip())
    if entry is None:
        return _invalid(
            state, f"Invalid selection. Please enter a number from 1 to {len(OPERATION_MENU)}."
        )
    _, kind = entry
    if kind is None:
        return replace(state, stage=SetupStage.EXIT, error=None)

    state = replace(back_to_operations(state), operation=kind)
    if kind in MACHINE_CONVERSIONS or kind == OperationKind.SET_DISPLAY_MEMORY:
        return replace(state, stage=SetupStage.CONFIGURE_DETAILS)
    return _after_details(state)


def configure_machine_version(
    state: SetupState, choice: str, version: str | None = None
) -> SetupState:
    """Handle the machine version menu; ``version`` is used for choice 2."""
    choice = choice.strip() or "1"
    match choice:
        case "1":
            return _after_details(replace(state, machine_version=None))
        case "2":
            version = (version or "").strip()
            if not version or any(c.isspace() for c in version):
                return _invalid(state, "Enter the full machine type string (e.g., pc-q35-8.1).")
            return _after_details(replace(state, machine_version=version))
        case "3":
            return back_to_operations(state)
        case _:
            return _invalid(state, "Invalid selection.")


def configure_memory(state: SetupState, raw: str) -> SetupState:
    """Handle the display memory prompt."""
    raw = raw.strip()
    if raw.lower() in BACK_CHOICES:
        return back_to_operations(state)
    if not raw.isdigit():
        return _invalid(state, "Invalid input. Please enter a number.")
    memory_mb = int(raw)
    if not (MIN_DISPLAY_MEMORY_MB <= memory_mb <= MAX_DISPLAY_MEMORY_MB):
        return _invalid(
            state,
            f"Display memory must be between {MIN_DISPLAY_MEMORY_MB} and "
            f"{MAX_DISPLAY_MEMORY_MB} MB.",
        )
    return _after_details(replace(state, memory_mb=memory_mb))


def choose_snapshot_policy(state: SetupState, choice: str) -> SetupState:
    """Handle the snapshot action menu."""
    entry = SNAPSHOT_MENU.get(choice.strip())
    if entry is None:
        return _invalid(state, "Invalid selection.")
    _, policy = entry
    if policy is None:
        return back_to_operations(state)
    return replace(
        state, stage=SetupStage.CONFIRM_AND_RUN, snapshot_policy=policy, error=None
    )


def confirm_and_run(
    state: SetupState, *, proceed: bool, dry_run: bool, confirm_each: bool
) -> SetupState:
    """Final confirmation; declining exits without touching any guest."""
    if not proceed:
        return replace(state, stage=SetupStage.EXIT, error=None)
    return replace(
        state,
        stage=SetupStage.DONE,
        dry_run=dry_run,
        confirm_each=confirm_each,
        error=None,
    )


def build_options(state: SetupState) -> BatchOptions:
    """Turn a completed setup into immutable batch options.

    Raises:
        ValueError: If the setup has not reached DONE.
    """
    if state.stage != SetupStage.DONE or state.operation is None:
        raise ValueError(f"Setup is not complete (stage: {state.stage.value})")
    return BatchOptions(
        operation=Operation(
            kind=state.operation,
            machine_version=state.machine_version,
            memory_mb=state.memory_mb,
        ),
        snapshot_policy=state.snapshot_policy or SnapshotPolicy.DO_NOTHING,
        dry_run=state.dry_run,
        confirm_each=state.confirm_each,
    )
