"""Tests for config file access and text edits."""

from pathlib import Path

import pytest

from pve_reconciler.errors import ConfigUnavailable
from pve_reconciler.vmconfig import (
    VmConfigStore,
    delete_declaration,
    revert_display_memory,
    set_display_memory,
)
from qm_mock.samples import DEFAULTS_CONFIG, I440FX_V2_CONFIG, Q35_V3_CONFIG

SNAPSHOT_SECTION = (
    "[pre-upgrade]\ncpu: kvm64\nmachine: pc-i440fx-7.2\nsnaptime: 1700000000\nvga: std\n"
)


class TestVmConfigStore:
    """Tests for reading and writing config files."""

    def test_read_write(self, tmp_path: Path) -> None:
        """Test a write followed by a read."""
        store = VmConfigStore(tmp_path)
        store.write(101, "cores: 2\n")

        assert store.exists(101)
        assert store.read(101) == "cores: 2\n"
        assert store.path(101) == tmp_path / "101.conf"

    def test_write_leaves_no_temp_files(self, tmp_path: Path) -> None:
        """Test that the temp file is renamed into place."""
        store = VmConfigStore(tmp_path)
        store.write(101, "cores: 2\n")
        store.write(101, "cores: 4\n")

        assert sorted(p.name for p in tmp_path.iterdir()) == ["101.conf"]

    def test_read_missing(self, tmp_path: Path) -> None:
        """Test that a missing file raises ConfigUnavailable."""
        store = VmConfigStore(tmp_path)

        assert not store.exists(5)
        with pytest.raises(ConfigUnavailable):
            store.read(5)

    def test_write_into_missing_directory(self, tmp_path: Path) -> None:
        """Test that write errors propagate as OSError."""
        store = VmConfigStore(tmp_path / "missing")

        with pytest.raises(OSError):
            store.write(101, "cores: 2\n")


class TestDeleteDeclaration:
    """Tests for removing the machine line."""

    def test_removes_top_level_only(self) -> None:
        """Test that snapshot sections keep their declarations."""
        result = delete_declaration(I440FX_V2_CONFIG, "machine")

        top, _, sections = result.partition("[pre-upgrade]")
        assert "machine:" not in top
        assert "machine: pc-i440fx-7.2" in sections
        assert result.endswith(SNAPSHOT_SECTION)

    def test_removes_all_occurrences(self) -> None:
        """Test that repeated declarations are all removed."""
        text = "machine: q35\ncores: 2\nmachine: pc-q35-8.1\n"

        assert delete_declaration(text, "machine") == "cores: 2\n"

    def test_absent_key_is_unchanged(self) -> None:
        """Test that deleting a missing key changes nothing."""
        assert delete_declaration(DEFAULTS_CONFIG, "machine") == DEFAULTS_CONFIG


class TestSetDisplayMemory:
    """Tests for setting the display memory qualifier."""

    def test_appends_to_existing_line(self) -> None:
        """Test that other qualifiers are preserved."""
        result = set_display_memory("vga: qxl,clipboard=vnc\n", 64)

        assert result == "vga: qxl,clipboard=vnc,memory=64\n"

    def test_replaces_existing_memory(self) -> None:
        """Test that a previous memory value is replaced, not duplicated."""
        result = set_display_memory(Q35_V3_CONFIG, 128)

        assert "vga: qxl,memory=128\n" in result
        assert "memory=64" not in result

    def test_inserts_line_when_absent(self) -> None:
        """Test that a default display line is added after the top-level block."""
        result = set_display_memory(DEFAULTS_CONFIG, 32)

        assert result == DEFAULTS_CONFIG + "vga: qxl,memory=32\n"

    def test_inserts_before_sections(self) -> None:
        """Test that the new line lands above the first section."""
        text = "cores: 2\n\n[snap]\nvga: std\n"

        assert set_display_memory(text, 16) == "cores: 2\nvga: qxl,memory=16\n\n[snap]\nvga: std\n"

    def test_sections_untouched(self) -> None:
        """Test that snapshot sections keep their display line."""
        result = set_display_memory(I440FX_V2_CONFIG, 64)

        assert result.endswith(SNAPSHOT_SECTION)
        assert "vga: qxl,memory=64\n" in result

    def test_repeat_is_stable(self) -> None:
        """Test that applying the same edit twice yields the same text."""
        once = set_display_memory(I440FX_V2_CONFIG, 64)

        assert set_display_memory(once, 64) == once


class TestRevertDisplayMemory:
    """Tests for removing the display memory qualifier."""

    def test_strips_memory(self) -> None:
        """Test that only the memory qualifier is removed."""
        assert revert_display_memory("vga: qxl,memory=64\n") == "vga: qxl\n"

    def test_removes_line_left_empty(self) -> None:
        """Test that a display line with only memory is dropped."""
        assert revert_display_memory("cores: 2\nvga: memory=64\n") == "cores: 2\n"

    def test_without_display_line(self) -> None:
        """Test that a config without display line is unchanged."""
        assert revert_display_memory(DEFAULTS_CONFIG) == DEFAULTS_CONFIG

    def test_sections_untouched(self) -> None:
        """Test that section display lines are not reverted."""
        text = "vga: qxl,memory=64\n\n[snap]\nvga: qxl,memory=128\n"

        assert revert_display_memory(text) == "vga: qxl\n\n[snap]\nvga: qxl,memory=128\n"

    def test_round_trip_restores_plain_display(self) -> None:
        """Test that revert after set restores the original display line."""
        result = revert_display_memory(set_display_memory(I440FX_V2_CONFIG, 64))

        assert result == I440FX_V2_CONFIG
