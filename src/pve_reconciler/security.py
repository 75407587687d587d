"""Privilege enforcement before any guest is touched.

Guest config files under /etc/pve are only writable by root, and qm refuses
most operations for other users. Running without privilege would make every
guest fail halfway through the pipeline, so the check runs once, up front,
and is the only process-fatal condition.
"""

from __future__ import annotations

import logging
import os

from .qm import QmClient, QmCommandError

logger = logging.getLogger(__name__)

PRIVILEGE_VIOLATION_MESSAGE = """
╔══════════════════════════════════════════════════════════════════╗
║                   INSUFFICIENT PRIVILEGES                        ║
╠══════════════════════════════════════════════════════════════════╣
║  {reason:<64}║
║                                                                  ║
║  Run this tool as root on a Proxmox VE host, for example:        ║
║      sudo pvr interactive                                        ║
╚══════════════════════════════════════════════════════════════════╝
"""


class PrivilegeError(Exception):
    """Raised when the tool cannot operate on this host at all."""

    pass


def effective_uid() -> int:
    return os.geteuid()


def check_privileges(qm: QmClient, *, require_root: bool = True) -> None:
    """Verify the process may run qm and edit guest configs.

    Raises:
        PrivilegeError: If not root (when required) or qm is unusable.
    """
    if require_root and effective_uid() != 0:
        logger.critical("Refusing to run without root privileges")
        raise PrivilegeError(
            PRIVILEGE_VIOLATION_MESSAGE.format(reason="This tool must be run as root.")
        )

    try:
        qm.list_vms()
    except QmCommandError as e:
        logger.critical("qm is not usable on this host", extra={"error": str(e)})
        raise PrivilegeError(
            PRIVILEGE_VIOLATION_MESSAGE.format(reason="Cannot execute 'qm list'.")
        ) from e
