"""Tests for the interactive setup state machine."""

import pytest

from pve_reconciler.decision import OperationKind
from pve_reconciler.setup_flow import (
    SetupStage,
    SetupState,
    build_options,
    choose_operation,
    choose_snapshot_policy,
    configure_machine_version,
    configure_memory,
    confirm_and_run,
    select_entities,
)
from pve_reconciler.snapshots import SnapshotPolicy


@pytest.fixture
def selected() -> SetupState:
    return select_entities(SetupState(), [102, 101, 102])


class TestSelection:
    """Tests for the entity selection stage."""

    def test_selection_is_sorted_and_unique(self, selected: SetupState) -> None:
        """Test that the selection moves on to the operation menu."""
        assert selected.stage == SetupStage.CHOOSE_OPERATION
        assert selected.vmids == (101, 102)

    def test_empty_selection_exits(self) -> None:
        """Test that selecting nothing ends the setup with an error."""
        state = select_entities(SetupState(), [])

        assert state.stage == SetupStage.EXIT
        assert state.error is not None


class TestOperationMenu:
    """Tests for the operation menu."""

    def test_invalid_choice_stays(self, selected: SetupState) -> None:
        """Test that an invalid answer keeps the stage and sets an error."""
        state = choose_operation(selected, "42")

        assert state.stage == SetupStage.CHOOSE_OPERATION
        assert state.error is not None and "1 to 8" in state.error

    def test_exit(self, selected: SetupState) -> None:
        """Test the exit entry."""
        state = choose_operation(selected, "8")

        assert state.stage == SetupStage.EXIT
        assert state.error is None

    def test_cpu_conversion_goes_to_snapshot_policy(self, selected: SetupState) -> None:
        """Test that CPU conversions need no further details."""
        state = choose_operation(selected, "3")

        assert state.operation == OperationKind.CPU_V2_TO_V3
        assert state.stage == SetupStage.CHOOSE_SNAPSHOT_POLICY

    def test_machine_conversion_asks_version(self, selected: SetupState) -> None:
        """Test that machine conversions ask for the version."""
        state = choose_operation(selected, "1")

        assert state.stage == SetupStage.CONFIGURE_DETAILS

    def test_revert_display_memory_skips_snapshot_policy(self, selected: SetupState) -> None:
        """Test that display memory operations never ask for a snapshot policy."""
        state = choose_operation(selected, "6")

        assert state.operation == OperationKind.REVERT_DISPLAY_MEMORY
        assert state.stage == SetupStage.CONFIRM_AND_RUN


class TestDetails:
    """Tests for the details stage."""

    def test_latest_version_by_default(self, selected: SetupState) -> None:
        """Test that an empty answer picks the latest version."""
        state = configure_machine_version(choose_operation(selected, "2"), "")

        assert state.machine_version is None
        assert state.stage == SetupStage.CHOOSE_SNAPSHOT_POLICY

    def test_manual_version(self, selected: SetupState) -> None:
        """Test entering an explicit machine type."""
        state = configure_machine_version(choose_operation(selected, "1"), "2", "pc-q35-8.1")

        assert state.machine_version == "pc-q35-8.1"

    def test_manual_version_rejects_blank(self, selected: SetupState) -> None:
        """Test that a blank manual version is rejected."""
        state = configure_machine_version(choose_operation(selected, "1"), "2", "  ")

        assert state.stage == SetupStage.CONFIGURE_DETAILS
        assert state.error is not None

    def test_back_clears_operation(self, selected: SetupState) -> None:
        """Test that going back forgets the chosen operation."""
        state = configure_machine_version(choose_operation(selected, "1"), "3")

        assert state.stage == SetupStage.CHOOSE_OPERATION
        assert state.operation is None

    @pytest.mark.parametrize("raw", ["abc", "0", "513", "-5"])
    def test_memory_invalid(self, selected: SetupState, raw: str) -> None:
        """Test that invalid display memory answers are rejected."""
        state = configure_memory(choose_operation(selected, "5"), raw)

        assert state.stage == SetupStage.CONFIGURE_DETAILS
        assert state.error is not None

    def test_memory_valid(self, selected: SetupState) -> None:
        """Test a valid display memory goes straight to confirmation."""
        state = configure_memory(choose_operation(selected, "5"), " 64 ")

        assert state.memory_mb == 64
        assert state.stage == SetupStage.CONFIRM_AND_RUN

    def test_memory_back(self, selected: SetupState) -> None:
        """Test going back from the memory prompt."""
        state = configure_memory(choose_operation(selected, "5"), "b")

        assert state.stage == SetupStage.CHOOSE_OPERATION


class TestSnapshotAndConfirm:
    """Tests for the last two stages and building options."""

    def test_full_flow(self, selected: SetupState) -> None:
        """Test a complete run to DONE and the resulting options."""
        state = choose_operation(selected, "4")
        state = choose_snapshot_policy(state, "2")
        state = confirm_and_run(state, proceed=True, dry_run=True, confirm_each=False)

        assert state.stage == SetupStage.DONE
        options = build_options(state)
        assert options.operation.kind == OperationKind.CPU_V3_TO_V2
        assert options.snapshot_policy == SnapshotPolicy.REPLACE_LAST
        assert options.dry_run is True

    def test_snapshot_back(self, selected: SetupState) -> None:
        """Test going back from the snapshot menu."""
        state = choose_snapshot_policy(choose_operation(selected, "7"), "4")

        assert state.stage == SetupStage.CHOOSE_OPERATION
        assert state.operation is None

    def test_decline_exits(self, selected: SetupState) -> None:
        """Test that declining the final confirmation exits cleanly."""
        state = choose_snapshot_policy(choose_operation(selected, "7"), "1")
        state = confirm_and_run(state, proceed=False, dry_run=False, confirm_each=False)

        assert state.stage == SetupStage.EXIT
        assert state.error is None

    def test_build_options_requires_done(self, selected: SetupState) -> None:
        """Test that incomplete setups cannot produce options."""
        with pytest.raises(ValueError, match="not complete"):
            build_options(choose_operation(selected, "3"))

    def test_display_memory_options(self, selected: SetupState) -> None:
        """Test that display memory setups carry no snapshot policy."""
        state = configure_memory(choose_operation(selected, "5"), "128")
        state = confirm_and_run(state, proceed=True, dry_run=False, confirm_each=True)

        options = build_options(state)
        assert options.operation.memory_mb == 128
        assert options.effective_snapshot_policy == SnapshotPolicy.DO_NOTHING
        assert options.confirm_each is True
