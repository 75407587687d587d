"""Access to guest config files and the text edits applied to them.

Edits only ever touch the current (top-level) configuration. Bracketed
snapshot and special sections are copied through unchanged.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path

from .errors import ConfigUnavailable
from .parsing import declaration_pattern, section_start, split_qualifiers

logger = logging.getLogger(__name__)

DISPLAY_KEY = "vga"
DEFAULT_DISPLAY_DEVICE = "qxl"


class VmConfigStore:
    """Reads and writes ``<config_dir>/<vmid>.conf`` files."""

    def __init__(self, config_dir: Path) -> None:
        self._config_dir = config_dir

    def path(self, vmid: int) -> Path:
        return self._config_dir / f"{vmid}.conf"

    def exists(self, vmid: int) -> bool:
        return self.path(vmid).is_file()

    def read(self, vmid: int) -> str:
        """Return the config text.

        Raises:
            ConfigUnavailable: If the file is missing or unreadable.
        """
        path = self.path(vmid)
        if not path.is_file():
            raise ConfigUnavailable(vmid, f"Config file not found for VM {vmid}: {path}")
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigUnavailable(vmid, f"Failed to read config file {path}", str(e)) from e

    def write(self, vmid: int, text: str) -> None:
        """Replace the config file content via a temp file and rename.

        Raises:
            OSError: If the file cannot be written.
        """
        path = self.path(vmid)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{vmid}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Wrote config file", extra={"vmid": vmid, "path": str(path)})


def _rewrite_active(text: str, edit: Callable[[list[str]], list[str]]) -> str:
    """Apply ``edit`` to the top-level lines and reassemble the file."""
    lines = text.splitlines()
    boundary = section_start(lines)
    new_lines = edit(lines[:boundary]) + lines[boundary:]
    result = "\n".join(new_lines)
    if new_lines and (text.endswith("\n") or not text):
        result += "\n"
    return result


def delete_declaration(text: str, key: str) -> str:
    """Remove every top-level ``key:`` line."""
    pattern = declaration_pattern(key)
    return _rewrite_active(text, lambda lines: [line for line in lines if not pattern.match(line)])


def _without_memory(value: str) -> list[str]:
    return [item for item in split_qualifiers(value) if not item.startswith("memory=")]


def set_display_memory(text: str, memory_mb: int) -> str:
    """Set the ``memory=`` qualifier of the display line.

    Existing memory qualifiers are dropped before the new one is appended.
    Without a display line, ``vga: qxl,memory=<mb>`` is added after the last
    non-blank top-level line.
    """
    pattern = declaration_pattern(DISPLAY_KEY)

    def edit(lines: list[str]) -> list[str]:
        found = False
        result: list[str] = []
        for line in lines:
            match = pattern.match(line)
            if match:
                found = True
                qualifiers = _without_memory(match.group(1))
                qualifiers.append(f"memory={memory_mb}")
                line = f"{DISPLAY_KEY}: {','.join(qualifiers)}"
            result.append(line)
        if not found:
            insert_at = len(result)
            while insert_at > 0 and not result[insert_at - 1].strip():
                insert_at -= 1
            result.insert(insert_at, f"{DISPLAY_KEY}: {DEFAULT_DISPLAY_DEVICE},memory={memory_mb}")
        return result

    return _rewrite_active(text, edit)


def revert_display_memory(text: str) -> str:
    """Strip the ``memory=`` qualifier from the display line.

    Other qualifiers are kept; a display line left empty is removed.
    """
    pattern = declaration_pattern(DISPLAY_KEY)

    def edit(lines: list[str]) -> list[str]:
        result: list[str] = []
        for line in lines:
            match = pattern.match(line)
            if match:
                qualifiers = _without_memory(match.group(1))
                if not qualifiers:
                    continue
                line = f"{DISPLAY_KEY}: {','.join(qualifiers)}"
            result.append(line)
        return result

    return _rewrite_active(text, edit)
