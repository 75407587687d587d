"""Proxmox VE qm Mock for Integration Testing.

This module provides a mock implementation of the ``qm`` management tool that
enables end-to-end testing of a batch without a Proxmox VE host.

Key Features:
- In-memory guests with running state and snapshot history
- Real config files in a temporary directory
- Graceful shutdown simulation (stops after N polls, or never)
- Error injection per qm verb and guest
- Call recording for asserting on mutating commands

Usage:
    from qm_mock import MockProxmoxHost

    host = MockProxmoxHost(tmp_path / "qemu-server")
    host.add_guest(101, "web01", I440FX_V2_CONFIG, running=True)

    orchestrator = BatchOrchestrator(config, host.client(), options)
    orchestrator.run(vms)

    assert host.runner.calls_for("set", 101)
"""

from .host import MockProxmoxHost, MockQmRunner
from .state import MockGuest, MockHostState, MockSnapshot

__all__ = [
    "MockGuest",
    "MockHostState",
    "MockProxmoxHost",
    "MockQmRunner",
    "MockSnapshot",
]
