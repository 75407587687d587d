"""Stop guests safely before a change and restart them afterwards.

Graceful shutdown is polled at a fixed interval up to a bounded timeout and
escalates to a forced stop. The poll loop is the only place the batch blocks.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from .config import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
from .errors import ShutdownFailure, StartFailure
from .inventory import VirtualMachine
from .qm import PowerState, QmClient, power_state

logger = logging.getLogger(__name__)


class LifecycleController:
    """Ensures a guest is stopped for mutation and restores its prior state."""

    def __init__(
        self,
        qm: QmClient,
        *,
        dry_run: bool = False,
        shutdown_timeout_seconds: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._qm = qm
        self._dry_run = dry_run
        self._timeout = shutdown_timeout_seconds
        self._interval = poll_interval_seconds
        self._sleep = sleep

    def ensure_stopped(self, vm: VirtualMachine) -> bool:
        """Stop the guest if it is running.

        Returns:
            True if the guest was running before the call.

        Raises:
            ShutdownFailure: If the running state cannot be determined before
                the shutdown or after the wait, or if the forced stop failed.
                The guest must be abandoned without mutation or restart.
        """
        if self._dry_run:
            logger.info(
                "[DRY RUN] Would gracefully shut down %s if it is running",
                vm.label,
                extra={"vmid": vm.vmid},
            )
            return False

        if self._query_state(vm) == PowerState.STOPPED:
            logger.info("%s is already stopped", vm.label, extra={"vmid": vm.vmid})
            return False

        logger.info("Attempting to gracefully shut down %s", vm.label, extra={"vmid": vm.vmid})
        result = self._qm.shutdown(vm.vmid)
        if not result.ok:
            logger.warning(
                "Graceful shutdown command returned a non-zero status, "
                "will check status and force stop if needed",
                extra={"vmid": vm.vmid, "error": result.diagnostic},
            )

        logger.info(
            "Waiting for %s to stop",
            vm.label,
            extra={"vmid": vm.vmid, "timeout_seconds": self._timeout},
        )
        waited = 0.0
        while waited < self._timeout and self._qm.power_state(vm.vmid) != PowerState.STOPPED:
            self._sleep(self._interval)
            waited += self._interval

        if self._query_state(vm) == PowerState.RUNNING:
            logger.warning(
                "%s did not shut down gracefully, forcing stop",
                vm.label,
                extra={"vmid": vm.vmid, "waited_seconds": waited},
            )
            result = self._qm.stop(vm.vmid)
            if not result.ok:
                raise ShutdownFailure(
                    vm.vmid, f"Failed to force stop {vm.label}.", result.diagnostic
                )

        logger.info("%s has been shut down", vm.label, extra={"vmid": vm.vmid})
        return True

    def _query_state(self, vm: VirtualMachine) -> PowerState:
        """Running state that must be known before the pipeline continues."""
        result = self._qm.status(vm.vmid)
        state = power_state(result)
        if state == PowerState.UNKNOWN:
            raise ShutdownFailure(
                vm.vmid, f"Cannot determine the running state of {vm.label}.", result.diagnostic
            )
        return state

    def restore_if_was_running(self, vm: VirtualMachine, was_running: bool) -> None:
        """Start the guest again if it was running before ensure_stopped.

        Raises:
            StartFailure: If ``qm start`` fails. Never retried.
        """
        if not was_running:
            return

        if self._dry_run:
            logger.info("[DRY RUN] Would start %s", vm.label, extra={"vmid": vm.vmid})
            return

        logger.info("Restarting %s", vm.label, extra={"vmid": vm.vmid})
        result = self._qm.start(vm.vmid)
        if not result.ok:
            raise StartFailure(vm.vmid, f"Failed to issue start for {vm.label}.", result.diagnostic)
