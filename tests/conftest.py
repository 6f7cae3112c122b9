"""Shared test fixtures: an in-memory control plane and tmp-path settings."""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from vmfleet.config import FleetSettings
from vmfleet.exceptions import ControlPlaneError
from vmfleet.models import DomainStatus, SnapshotDescriptor


class FakeControlPlane:
    """In-memory stand-in for LibvirtControlPlane.

    ``fail`` maps ``(operation, name)`` to an error message; matching calls
    raise ControlPlaneError. ``calls`` records every mutating call in order.
    """

    def __init__(self, pool_dir: Optional[Path] = None) -> None:
        self.domains: Dict[str, Dict[str, object]] = {}
        self.leases: Dict[str, List[Dict[str, object]]] = {}
        self.snapshots: Dict[str, List[SnapshotDescriptor]] = {}
        self.pool_dir = pool_dir
        self.pool_available = True
        self.fail: Dict[tuple, str] = {}
        self.calls: List[tuple] = []
        self.ignore_shutdown = set()
        self.closed = False

    def _check(self, operation: str, name: str) -> None:
        if (operation, name) in self.fail:
            raise ControlPlaneError(operation, name, self.fail[(operation, name)])

    def _get(self, operation: str, name: str) -> Dict[str, object]:
        self._check(operation, name)
        if name not in self.domains:
            raise ControlPlaneError(operation, name, f"Domain not found: no domain with matching name '{name}'")
        return self.domains[name]

    def add_domain(self, name: str, state: str = "shutoff", mac: str = "52:54:00:00:00:01", vcpus: int = 2,
                   memory_mib: int = 2048) -> None:
        self.domains[name] = {"state": state, "macs": [mac], "vcpus": vcpus, "memory_mib": memory_mib, "xml": "",
                              "uuid": f"uuid-{name}"}

    def close(self) -> None:
        self.closed = True

    def domain_exists(self, name: str) -> bool:
        return name in self.domains

    def list_domains(self) -> List[str]:
        self._check("list", "domains")
        return sorted(self.domains)

    def define_domain(self, name: str, xml: str) -> None:
        self._check("define", name)
        self.calls.append(("define", name))
        macs = re.findall(r'<mac address="([^"]+)"', xml)
        uuid = re.search(r"<uuid>([^<]+)</uuid>", xml)
        self.domains[name] = {"state": "shutoff", "macs": macs, "vcpus": 2, "memory_mib": 2048, "xml": xml,
                              "uuid": uuid.group(1) if uuid else f"uuid-{name}"}

    def start(self, name: str) -> None:
        dom = self._get("start", name)
        self.calls.append(("start", name))
        if dom["state"] == "running":
            raise ControlPlaneError("start", name, "Requested operation is not valid: domain is already running")
        dom["state"] = "running"

    def shutdown(self, name: str) -> None:
        dom = self._get("shutdown", name)
        self.calls.append(("shutdown", name))
        if name not in self.ignore_shutdown:
            dom["state"] = "shutoff"

    def destroy(self, name: str) -> None:
        dom = self._get("destroy", name)
        self.calls.append(("destroy", name))
        dom["state"] = "shutoff"

    def undefine(self, name: str) -> None:
        self._get("undefine", name)
        self.calls.append(("undefine", name))
        del self.domains[name]

    def domain_state(self, name: str) -> str:
        return str(self._get("state", name)["state"])

    def is_active(self, name: str) -> bool:
        return self._get("state", name)["state"] == "running"

    def domain_status(self, name: str) -> DomainStatus:
        dom = self._get("info", name)
        return DomainStatus(name, str(dom["state"]), int(dom["vcpus"]), int(dom["memory_mib"]))

    def domain_uuid(self, name: str) -> str:
        return str(self._get("describe", name)["uuid"])

    def domain_macs(self, name: str) -> List[str]:
        return list(self._get("describe", name)["macs"])

    def clone_domain(self, source: str, target: str, disk_path: Path) -> None:
        src = self._get("clone", source)
        self.calls.append(("clone", source, target, str(disk_path)))
        self.domains[target] = dict(src, state="shutoff", macs=["52:54:00:99:99:99"], uuid=f"uuid-{target}")

    def pool_path(self, pool: str) -> Optional[Path]:
        if not self.pool_available:
            raise ControlPlaneError("pool-lookup", pool, "Storage pool not found")
        return self.pool_dir

    def create_volume(self, pool: str, name: str, capacity_gib: int, fmt: str) -> Path:
        self._check("volume-create", name)
        self.calls.append(("volume-create", pool, name, capacity_gib, fmt))
        path = (self.pool_dir or Path(".")) / name
        path.write_bytes(b"")
        return path

    def network_leases(self, network: str) -> List[Dict[str, object]]:
        self._check("dhcp-leases", network)
        return list(self.leases.get(network, []))

    def network_info(self, network: str) -> Dict[str, object]:
        return {"name": network, "uuid": "net-uuid", "active": True, "persistent": True, "autostart": True,
                "bridge": "virbr1"}

    def create_snapshot(self, name: str, snapshot: str, description: str) -> None:
        self._get("snapshot-create", name)
        self.calls.append(("snapshot-create", name, snapshot))
        self.snapshots.setdefault(name, []).append(SnapshotDescriptor(name, snapshot, None, description))

    def revert_snapshot(self, name: str, snapshot: str) -> None:
        dom = self._get("snapshot-revert", name)
        self.calls.append(("snapshot-revert", name, snapshot, dom["state"]))

    def list_snapshots(self, name: str) -> List[SnapshotDescriptor]:
        self._get("snapshot-list", name)
        return list(self.snapshots.get(name, []))


@pytest.fixture
def fake_control(tmp_path) -> FakeControlPlane:
    pool_dir = tmp_path / "images"
    pool_dir.mkdir()
    return FakeControlPlane(pool_dir=pool_dir)


@pytest.fixture
def settings(tmp_path, fake_control) -> FleetSettings:
    return FleetSettings(
        image_dir=fake_control.pool_dir,
        cloudinit_dir=tmp_path / "cloud-init",
        inventory_file=tmp_path / "vm-inventory.txt",
        ssh_key_path=tmp_path / "ssh" / "id_rsa",
        lease_attempts=3,
        lease_interval=0,
        shutdown_timeout=0,
    )


# Every environment variable load_settings() reads.
_SETTINGS_ENV_VARS = [
    "FLEET_CONFIG",
    "LIBVIRT_URI",
    "STORAGE_POOL",
    "NETWORK_NAME",
    "IMAGE_DIR",
    "TEMPLATE_PATH",
    "CLOUDINIT_DIR",
    "INVENTORY_FILE",
    "FLEET_PREFIX",
    "FLEET_WORKERS",
    "LEASE_ATTEMPTS",
    "LEASE_INTERVAL",
    "LEASE_TIMEOUT",
    "SNAPSHOT_SHUTDOWN_TIMEOUT",
    "SSH_PUBKEY",
    "SSH_KEY_PATH",
    "GUEST_USER",
    "GUEST_PASSWORD",
    "GUEST_DOMAIN",
    "DEFAULT_MEMORY",
    "DEFAULT_VCPUS",
    "DEFAULT_DISK",
    "ASSUME_YES",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Clear every variable load_settings() reads and point the config at nothing."""
    for key in _SETTINGS_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("vmfleet.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")


@pytest.fixture
def no_seed_iso(monkeypatch):
    """Make genisoimage a no-op that still produces the output file."""

    def fake_run(cmd, check=True, **kwargs):
        if cmd and cmd[0] == "genisoimage":
            Path(cmd[cmd.index("-output") + 1]).write_bytes(b"iso")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr("vmfleet.cloudinit.run", fake_run)
