"""Backing disk image allocation in a libvirt storage pool."""

from __future__ import annotations

import os
from pathlib import Path

from vmfleet.constants import DISK_FORMAT
from vmfleet.exceptions import ControlPlaneError, StorageError
from vmfleet.utils import log


class VolumeProvisioner:
    def __init__(self, control) -> None:
        self.control = control

    def ensure(self, pool: str, path: Path, size_gib: int, fmt: str = DISK_FORMAT) -> bool:
        """Allocate a sparse image at ``path`` unless one is already there.

        Returns True when a volume was created, False on the idempotent skip.
        """
        if path.exists():
            log("INFO", f"Disk {path} already exists; leaving it untouched")
            return False

        try:
            pool_dir = self.control.pool_path(pool)
        except ControlPlaneError as exc:
            raise StorageError(f"Storage pool '{pool}' is unavailable: {exc.message}") from exc
        if pool_dir is not None and pool_dir.resolve() != path.parent.resolve():
            raise StorageError(f"Disk path {path} is outside storage pool '{pool}' ({pool_dir})")
        if not path.parent.is_dir():
            raise StorageError(f"Image directory {path.parent} does not exist")
        if not os.access(path.parent, os.W_OK):
            raise StorageError(f"Image directory {path.parent} is not writable")

        try:
            created = self.control.create_volume(pool, path.name, size_gib, fmt)
        except ControlPlaneError as exc:
            raise StorageError(f"Failed to create {path} in pool '{pool}': {exc.message}") from exc
        log("SUCCESS", f"Created disk: {created} ({size_gib}G, {fmt})")
        return True

    @staticmethod
    def remove(path: Path) -> bool:
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise StorageError(f"Failed to remove disk {path}: {exc}") from exc
        log("INFO", f"Removed disk {path}")
        return True
