"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for qm_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from pve_reconciler.config import Config  # noqa: E402
from pve_reconciler.qm import QmClient  # noqa: E402
from qm_mock import MockProxmoxHost  # noqa: E402


@pytest.fixture
def host(tmp_path: Path) -> MockProxmoxHost:
    """Empty mock host with its config directory under tmp_path."""
    return MockProxmoxHost(tmp_path / "qemu-server")


@pytest.fixture
def qm(host: MockProxmoxHost) -> QmClient:
    return host.client()


@pytest.fixture
def config(host: MockProxmoxHost) -> Config:
    """Configuration pointing at the mock host, with a short shutdown timeout."""
    return Config(
        config_dir=host.config_dir,
        shutdown_timeout_seconds=5,
        poll_interval_seconds=1.0,
        require_root=False,
    )
