"""Tests for snapshot policies."""

from datetime import datetime

import pytest

from pve_reconciler.errors import SnapshotFailure, Step
from pve_reconciler.inventory import VirtualMachine
from pve_reconciler.snapshots import (
    SNAPSHOT_DESCRIPTION,
    SnapshotCoordinator,
    SnapshotPolicy,
)
from qm_mock import MockProxmoxHost, MockSnapshot

VM = VirtualMachine(vmid=101, name="web01")
FIXED_NOW = datetime(2024, 3, 5, 14, 30, 9)


def make_coordinator(host: MockProxmoxHost, *, dry_run: bool = False) -> SnapshotCoordinator:
    return SnapshotCoordinator(host.client(), dry_run=dry_run, clock=lambda: FIXED_NOW)


class TestCreateNew:
    """Tests for the CREATE_NEW policy."""

    def test_creates_timestamped_snapshot(self, host: MockProxmoxHost) -> None:
        """Test that a new snapshot is named after the current time."""
        host.add_guest(101, "web01", snapshots=[MockSnapshot("pre-upgrade", "before")])

        make_coordinator(host).handle(VM, SnapshotPolicy.CREATE_NEW)

        assert host.state.snapshot_names(101) == ["pre-upgrade", "after_op_20240305_143009"]
        assert host.runner.mutating_calls == [
            ("snapshot", "101", "after_op_20240305_143009", "--description", SNAPSHOT_DESCRIPTION)
        ]

    def test_no_history_is_a_no_op(self, host: MockProxmoxHost) -> None:
        """Test that a guest without snapshots gets no new snapshot."""
        host.add_guest(101, "web01")

        make_coordinator(host).handle(VM, SnapshotPolicy.CREATE_NEW)

        assert host.runner.mutating_calls == []

    def test_create_failure(self, host: MockProxmoxHost) -> None:
        """Test that a failed create raises SnapshotFailure."""
        host.add_guest(101, "web01", snapshots=[MockSnapshot("pre-upgrade")])
        host.runner.fail("snapshot", 101, "snapshot feature is not available")

        with pytest.raises(SnapshotFailure) as exc_info:
            make_coordinator(host).handle(VM, SnapshotPolicy.CREATE_NEW)

        assert exc_info.value.step == Step.SNAPSHOT
        assert "not available" in str(exc_info.value)


class TestReplaceLast:
    """Tests for the REPLACE_LAST policy."""

    def test_replaces_most_recent_with_description(self, host: MockProxmoxHost) -> None:
        """Test that the newest snapshot is recreated under the same name."""
        host.add_guest(
            101,
            "web01",
            snapshots=[MockSnapshot("base", "install"), MockSnapshot("pre-upgrade", "before it")],
        )

        make_coordinator(host).handle(VM, SnapshotPolicy.REPLACE_LAST)

        assert host.runner.mutating_calls == [
            ("delsnapshot", "101", "pre-upgrade"),
            ("snapshot", "101", "pre-upgrade", "--description", "before it"),
        ]
        assert host.state.snapshot_names(101) == ["base", "pre-upgrade"]

    def test_placeholder_description_is_dropped(self, host: MockProxmoxHost) -> None:
        """Test that a snapshot without description is recreated without one."""
        host.add_guest(101, "web01", snapshots=[MockSnapshot("pre-upgrade")])

        make_coordinator(host).handle(VM, SnapshotPolicy.REPLACE_LAST)

        assert host.runner.calls_for("snapshot", 101) == [("snapshot", "101", "pre-upgrade")]

    def test_no_history_is_a_no_op(self, host: MockProxmoxHost) -> None:
        """Test that there is nothing to replace without snapshots."""
        host.add_guest(101, "web01")

        make_coordinator(host).handle(VM, SnapshotPolicy.REPLACE_LAST)

        assert host.runner.mutating_calls == []

    def test_delete_failure_keeps_snapshot(self, host: MockProxmoxHost) -> None:
        """Test that a failed delete does not attempt the recreate."""
        host.add_guest(101, "web01", snapshots=[MockSnapshot("pre-upgrade")])
        host.runner.fail("delsnapshot", 101, "snapshot is locked")

        with pytest.raises(SnapshotFailure):
            make_coordinator(host).handle(VM, SnapshotPolicy.REPLACE_LAST)

        assert host.runner.calls_for("snapshot", 101) == []
        assert host.state.snapshot_names(101) == ["pre-upgrade"]

    def test_recreate_failure_leaves_gap(self, host: MockProxmoxHost) -> None:
        """Test that a failed recreate is reported and the snapshot stays deleted."""
        host.add_guest(101, "web01", snapshots=[MockSnapshot("pre-upgrade")])
        host.runner.fail("snapshot", 101, "storage full")

        with pytest.raises(SnapshotFailure) as exc_info:
            make_coordinator(host).handle(VM, SnapshotPolicy.REPLACE_LAST)

        assert "already been deleted" in str(exc_info.value)
        assert host.state.snapshot_names(101) == []


class TestPolicyHandling:
    """Tests for DO_NOTHING, dry run and listing failures."""

    def test_do_nothing(self, host: MockProxmoxHost) -> None:
        """Test that DO_NOTHING issues no qm calls at all."""
        host.add_guest(101, "web01", snapshots=[MockSnapshot("pre-upgrade")])

        make_coordinator(host).handle(VM, SnapshotPolicy.DO_NOTHING)

        assert host.runner.calls == []

    @pytest.mark.parametrize("policy", [SnapshotPolicy.CREATE_NEW, SnapshotPolicy.REPLACE_LAST])
    def test_dry_run(self, host: MockProxmoxHost, policy: SnapshotPolicy) -> None:
        """Test that dry run only logs the intended action."""
        host.add_guest(101, "web01", snapshots=[MockSnapshot("pre-upgrade")])

        make_coordinator(host, dry_run=True).handle(VM, policy)

        assert host.runner.calls == []

    def test_list_failure(self, host: MockProxmoxHost) -> None:
        """Test that an unreadable snapshot list raises SnapshotFailure."""
        host.add_guest(101, "web01")
        host.runner.fail("listsnapshot", 101, "got timeout")

        with pytest.raises(SnapshotFailure) as exc_info:
            make_coordinator(host).handle(VM, SnapshotPolicy.REPLACE_LAST)

        assert "got timeout" in str(exc_info.value)
