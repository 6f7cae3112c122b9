"""Bulk start/stop/delete across the fleet with per-VM isolation.

Callers must not run two operations against the same VM name at once; the
controller does not lock names and relies on libvirt rejecting conflicting
requests.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence

from vmfleet.cloudinit import SeedBuilder
from vmfleet.config import FleetSettings
from vmfleet.confirm import ConfirmationProvider
from vmfleet.constants import FLEET_OPERATIONS
from vmfleet.exceptions import FleetError, InputError
from vmfleet.models import DomainStatus, FleetResult
from vmfleet.storage import VolumeProvisioner
from vmfleet.utils import log


class FleetController:
    def __init__(
        self,
        settings: FleetSettings,
        control,
        *,
        confirmer: Optional[ConfirmationProvider] = None,
        seeds: Optional[SeedBuilder] = None,
    ) -> None:
        self.settings = settings
        self.control = control
        self.confirmer = confirmer
        self.seeds = seeds or SeedBuilder(settings.cloudinit_dir)
        self._handlers: Dict[str, Callable[..., FleetResult]] = {
            "start": self._start,
            "stop": self._stop,
            "force-stop": self._force_stop,
            "delete": self._delete,
        }

    def is_member(self, name: str) -> bool:
        return name.startswith(self.settings.fleet_prefix)

    def members(self) -> List[str]:
        return [name for name in self.control.list_domains() if self.is_member(name)]

    def status(self) -> List[DomainStatus]:
        result = []
        for name in self.members():
            try:
                result.append(self.control.domain_status(name))
            except FleetError as exc:
                log("WARN", f"Could not read status of {name}: {exc}")
                result.append(DomainStatus(name=name, state="unknown", vcpus=0, memory_mib=0))
        return result

    def _start(self, name: str) -> FleetResult:
        if self.control.is_active(name):
            return FleetResult(name, "start", "skipped", "already running")
        self.control.start(name)
        return FleetResult(name, "start", "ok", "started")

    def _stop(self, name: str) -> FleetResult:
        if not self.control.is_active(name):
            return FleetResult(name, "stop", "skipped", "already stopped")
        self.control.shutdown(name)
        return FleetResult(name, "stop", "ok", "shutdown requested")

    def _force_stop(self, name: str) -> FleetResult:
        if not self.control.is_active(name):
            return FleetResult(name, "force-stop", "skipped", "already stopped")
        self.control.destroy(name)
        return FleetResult(name, "force-stop", "ok", "force stopped")

    def _delete(self, name: str, keep_disk: bool = False) -> FleetResult:
        if self.control.is_active(name):
            self.control.destroy(name)
        self.control.undefine(name)
        if keep_disk:
            return FleetResult(name, "delete", "ok", f"deleted (disk kept at {self.settings.disk_path(name)})")
        VolumeProvisioner.remove(self.settings.disk_path(name))
        self.seeds.remove(name)
        return FleetResult(name, "delete", "ok", "deleted")

    def _run_one(self, operation: str, name: str, **kwargs) -> FleetResult:
        try:
            result = self._handlers[operation](name, **kwargs)
        except FleetError as exc:
            log("ERROR", f"{operation} {name} failed: {exc}")
            return FleetResult(name, operation, "failed", str(exc))
        except Exception as exc:
            log("ERROR", f"{operation} {name} failed unexpectedly: {exc!r}")
            return FleetResult(name, operation, "failed", repr(exc))
        level = "SUCCESS" if result.status == "ok" else "INFO"
        log(level, f"{name}: {result.message}")
        return result

    def apply(
        self,
        operation: str,
        names: Optional[Sequence[str]] = None,
        *,
        keep_disk: bool = False,
    ) -> List[FleetResult]:
        """Run ``operation`` on each VM and report every outcome.

        ``names`` defaults to all fleet members. A failure on one VM is
        reported in its result and never stops the others.
        """
        if operation not in FLEET_OPERATIONS:
            raise InputError(f"Unknown fleet operation '{operation}' (expected one of {', '.join(FLEET_OPERATIONS)})")
        targets = list(names) if names is not None else self.members()
        if not targets:
            log("WARN", f"No VMs matching '{self.settings.fleet_prefix}*'")
            return []

        kwargs = {}
        if operation == "delete":
            kwargs["keep_disk"] = keep_disk
            listing = ", ".join(targets)
            if self.confirmer is None or not self.confirmer.confirm(f"This will delete VM(s): {listing}"):
                log("INFO", "Cancelled")
                return [FleetResult(name, operation, "cancelled", "not confirmed") for name in targets]

        log("INFO", f"Running {operation} on {len(targets)} VM(s)...")
        workers = max(1, min(self.settings.fleet_workers, len(targets)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._run_one, operation, name, **kwargs) for name in targets]
            return [future.result() for future in futures]
