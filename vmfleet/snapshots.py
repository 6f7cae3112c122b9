"""Point-in-time snapshots of a domain, with shutdown/revert/start ordering."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, List, Optional

from vmfleet.constants import VM_NAME_RE
from vmfleet.exceptions import ControlPlaneError, InputError, SnapshotError
from vmfleet.models import SnapshotDescriptor
from vmfleet.polling import poll
from vmfleet.utils import log

STOPPED_STATES = {"shutoff", "crashed"}


def default_snapshot_name(now: Optional[datetime] = None) -> str:
    return f"snapshot-{(now or datetime.now()).strftime('%Y%m%d-%H%M%S')}"


class SnapshotManager:
    def __init__(
        self,
        control,
        *,
        shutdown_timeout: float = 60.0,
        poll_interval: float = 1.0,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.control = control
        self.shutdown_timeout = shutdown_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._now = now

    @staticmethod
    def _require(vm_name: str) -> None:
        if not vm_name or not VM_NAME_RE.match(vm_name):
            raise InputError("VM name is required")

    def create(
        self,
        vm_name: str,
        snapshot_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> SnapshotDescriptor:
        self._require(vm_name)
        now = self._now()
        snapshot_name = snapshot_name or default_snapshot_name(now)
        description = description or f"Snapshot created on {now:%a %b %d %H:%M:%S %Y}"
        log("INFO", f"Creating snapshot '{snapshot_name}' for VM '{vm_name}'...")
        try:
            self.control.create_snapshot(vm_name, snapshot_name, description)
        except ControlPlaneError as exc:
            raise SnapshotError("snapshot-create", vm_name, exc.message) from exc
        log("SUCCESS", f"Snapshot '{snapshot_name}' created")
        return SnapshotDescriptor(vm_name, snapshot_name, now, description)

    def list(self, vm_name: str) -> List[SnapshotDescriptor]:
        self._require(vm_name)
        try:
            return self.control.list_snapshots(vm_name)
        except ControlPlaneError as exc:
            raise SnapshotError("snapshot-list", vm_name, exc.message) from exc

    def _wait_stopped(self, vm_name: str) -> bool:
        attempts = max(1, int(self.shutdown_timeout / self.poll_interval) + 1)
        outcome = poll(
            lambda: True if self.control.domain_state(vm_name) in STOPPED_STATES else None,
            attempts=attempts,
            interval=self.poll_interval,
            timeout=self.shutdown_timeout,
            sleep=self._sleep,
            clock=self._clock,
        )
        return bool(outcome.value)

    def _stop(self, vm_name: str, force: bool) -> None:
        if self.control.domain_state(vm_name) in STOPPED_STATES:
            log("INFO", f"VM '{vm_name}' is already stopped")
            return
        log("INFO", f"Shutting down '{vm_name}' before revert...")
        self.control.shutdown(vm_name)
        if self._wait_stopped(vm_name):
            return
        if not force:
            raise SnapshotError(
                "snapshot-revert",
                vm_name,
                f"VM did not stop within {self.shutdown_timeout:g}s; refusing to revert a running VM (use --force)",
            )
        log("WARN", f"VM '{vm_name}' did not stop within {self.shutdown_timeout:g}s; forcing it off")
        self.control.destroy(vm_name)
        if not self._wait_stopped(vm_name):
            raise SnapshotError("snapshot-revert", vm_name, "VM is still running after a forced stop")

    def restore(self, vm_name: str, snapshot_name: str, force: bool = False) -> None:
        """Stop the VM, revert it to ``snapshot_name``, then start it again."""
        self._require(vm_name)
        if not snapshot_name:
            raise InputError("VM name and snapshot name are required")
        known = {snap.snapshot_name for snap in self.list(vm_name)}
        if snapshot_name not in known:
            raise SnapshotError("snapshot-revert", vm_name, f"no snapshot named '{snapshot_name}'")

        log("INFO", f"Restoring snapshot '{snapshot_name}' for VM '{vm_name}'...")
        try:
            self._stop(vm_name, force)
            self.control.revert_snapshot(vm_name, snapshot_name)
            if self.control.domain_state(vm_name) not in STOPPED_STATES:
                log("DEBUG", f"'{vm_name}' is already active after revert")
            else:
                self.control.start(vm_name)
        except SnapshotError:
            raise
        except ControlPlaneError as exc:
            raise SnapshotError(exc.operation, vm_name, exc.message) from exc
        log("SUCCESS", f"Snapshot '{snapshot_name}' restored")
