"""libvirt control-plane adapter for vmfleet.

This is the only module that talks to libvirt. Every binding failure is
re-raised as :class:`ControlPlaneError` naming the operation and the resource
so callers can report it and retry by hand.
"""

from __future__ import annotations

import contextlib
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional
from xml.etree.ElementTree import Element, ParseError, SubElement, fromstring, tostring

try:
    import libvirt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit(f"libvirt python bindings not available: {exc}")

from vmfleet.exceptions import ControlPlaneError
from vmfleet.models import DomainStatus, SnapshotDescriptor
from vmfleet.utils import log, run

DOMAIN_STATES = {
    libvirt.VIR_DOMAIN_NOSTATE: "nostate",
    libvirt.VIR_DOMAIN_RUNNING: "running",
    libvirt.VIR_DOMAIN_BLOCKED: "blocked",
    libvirt.VIR_DOMAIN_PAUSED: "paused",
    libvirt.VIR_DOMAIN_SHUTDOWN: "shutdown",
    libvirt.VIR_DOMAIN_SHUTOFF: "shutoff",
    libvirt.VIR_DOMAIN_CRASHED: "crashed",
    libvirt.VIR_DOMAIN_PMSUSPENDED: "pmsuspended",
}


def _error_message(exc: Exception) -> str:
    getter = getattr(exc, "get_error_message", None)
    message = getter() if callable(getter) else None
    return message or str(exc)


class LibvirtControlPlane:
    def __init__(self, uri: str, conn=None) -> None:
        self.uri = uri
        self.conn = conn

    def connect(self) -> None:
        if self.conn is not None:
            return
        try:
            self.conn = libvirt.open(self.uri)
        except libvirt.libvirtError as exc:
            raise ControlPlaneError("connect", self.uri, _error_message(exc)) from exc
        if self.conn is None:
            raise ControlPlaneError("connect", self.uri, "failed to open libvirt connection")

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def __enter__(self) -> "LibvirtControlPlane":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextlib.contextmanager
    def _call(self, operation: str, resource: str) -> Iterator[None]:
        if self.conn is None:
            raise ControlPlaneError(operation, resource, "libvirt connection not established")
        try:
            yield
        except libvirt.libvirtError as exc:
            raise ControlPlaneError(operation, resource, _error_message(exc)) from exc

    def _domain(self, name: str):
        with self._call("lookup", name):
            return self.conn.lookupByName(name)

    # Domains

    def domain_exists(self, name: str) -> bool:
        if self.conn is None:
            raise ControlPlaneError("lookup", name, "libvirt connection not established")
        try:
            self.conn.lookupByName(name)
            return True
        except libvirt.libvirtError:
            return False

    def list_domains(self) -> List[str]:
        with self._call("list", "domains"):
            return sorted(dom.name() for dom in self.conn.listAllDomains(0))

    def define_domain(self, name: str, xml: str) -> None:
        with self._call("define", name):
            domain = self.conn.defineXML(xml)
        if domain is None:
            raise ControlPlaneError("define", name, "libvirt returned no domain")

    def start(self, name: str) -> None:
        domain = self._domain(name)
        with self._call("start", name):
            domain.create()

    def shutdown(self, name: str) -> None:
        domain = self._domain(name)
        with self._call("shutdown", name):
            domain.shutdown()

    def destroy(self, name: str) -> None:
        domain = self._domain(name)
        with self._call("destroy", name):
            domain.destroy()

    def undefine(self, name: str) -> None:
        domain = self._domain(name)
        flags = libvirt.VIR_DOMAIN_UNDEFINE_SNAPSHOTS_METADATA | libvirt.VIR_DOMAIN_UNDEFINE_NVRAM
        with self._call("undefine", name):
            domain.undefineFlags(flags)

    def domain_state(self, name: str) -> str:
        domain = self._domain(name)
        with self._call("state", name):
            state, _reason = domain.state()
        return DOMAIN_STATES.get(state, "unknown")

    def is_active(self, name: str) -> bool:
        domain = self._domain(name)
        with self._call("state", name):
            return bool(domain.isActive())

    def domain_status(self, name: str) -> DomainStatus:
        domain = self._domain(name)
        with self._call("info", name):
            state, _max_mem, memory_kib, vcpus, _cpu_time = domain.info()
        return DomainStatus(
            name=name,
            state=DOMAIN_STATES.get(state, "unknown"),
            vcpus=vcpus,
            memory_mib=memory_kib // 1024,
        )

    def domain_uuid(self, name: str) -> str:
        domain = self._domain(name)
        with self._call("describe", name):
            return domain.UUIDString()

    def domain_macs(self, name: str) -> List[str]:
        domain = self._domain(name)
        with self._call("describe", name):
            xml = domain.XMLDesc(0)
        try:
            root = fromstring(xml)
        except ParseError as exc:
            raise ControlPlaneError("describe", name, f"unparseable domain XML: {exc}") from exc
        return [mac.get("address", "").lower() for mac in root.iter("mac") if mac.get("address")]

    def clone_domain(self, source: str, target: str, disk_path: Path) -> None:
        cmd = ["virt-clone", "--connect", self.uri, "--original", source, "--name", target, "--file", str(disk_path)]
        try:
            run(cmd, capture_output=True)
        except FileNotFoundError as exc:
            raise ControlPlaneError("clone", source, "virt-clone is not installed") from exc
        except subprocess.CalledProcessError as exc:
            message = (exc.stderr or "").strip() or f"virt-clone exited with status {exc.returncode}"
            raise ControlPlaneError("clone", source, message) from exc

    # Storage

    def pool_path(self, pool: str) -> Optional[Path]:
        with self._call("pool-lookup", pool):
            pool_obj = self.conn.storagePoolLookupByName(pool)
            if not pool_obj.isActive():
                raise ControlPlaneError("pool-lookup", pool, "storage pool is not active")
            xml = pool_obj.XMLDesc(0)
        target = fromstring(xml).find("./target/path")
        if target is None or not target.text:
            return None
        return Path(target.text)

    def create_volume(self, pool: str, name: str, capacity_gib: int, fmt: str) -> Path:
        volume = Element("volume")
        SubElement(volume, "name").text = name
        SubElement(volume, "allocation", unit="G").text = "0"
        SubElement(volume, "capacity", unit="G").text = str(capacity_gib)
        target = SubElement(volume, "target")
        SubElement(target, "format", type=fmt)
        xml = tostring(volume, encoding="unicode")
        with self._call("volume-create", f"{pool}/{name}"):
            pool_obj = self.conn.storagePoolLookupByName(pool)
            vol = pool_obj.createXML(xml, 0)
            return Path(vol.path())

    # Networks

    def network_leases(self, network: str) -> List[Dict[str, object]]:
        with self._call("dhcp-leases", network):
            net = self.conn.networkLookupByName(network)
            return list(net.DHCPLeases() or [])

    def network_info(self, network: str) -> Dict[str, object]:
        with self._call("net-info", network):
            net = self.conn.networkLookupByName(network)
            return {
                "name": net.name(),
                "uuid": net.UUIDString(),
                "active": bool(net.isActive()),
                "persistent": bool(net.isPersistent()),
                "autostart": bool(net.autostart()),
                "bridge": net.bridgeName(),
            }

    # Snapshots

    def create_snapshot(self, name: str, snapshot: str, description: str) -> None:
        root = Element("domainsnapshot")
        SubElement(root, "name").text = snapshot
        SubElement(root, "description").text = description
        xml = tostring(root, encoding="unicode")
        domain = self._domain(name)
        with self._call("snapshot-create", name):
            domain.snapshotCreateXML(xml, 0)

    def revert_snapshot(self, name: str, snapshot: str) -> None:
        domain = self._domain(name)
        with self._call("snapshot-revert", name):
            snap = domain.snapshotLookupByName(snapshot, 0)
            domain.revertToSnapshot(snap, 0)

    def list_snapshots(self, name: str) -> List[SnapshotDescriptor]:
        domain = self._domain(name)
        with self._call("snapshot-list", name):
            snapshots = domain.listAllSnapshots(0)
            descs = [(snap.getName(), snap.getXMLDesc(0)) for snap in snapshots]
        result = []
        for snap_name, xml in descs:
            created_at = None
            description = ""
            try:
                root = fromstring(xml)
            except ParseError:
                log("WARN", f"Unparseable snapshot XML for {name}/{snap_name}")
            else:
                created = root.findtext("creationTime")
                if created and created.isdigit():
                    created_at = datetime.fromtimestamp(int(created))
                description = root.findtext("description") or ""
            result.append(SnapshotDescriptor(name, snap_name, created_at, description))
        result.sort(key=lambda s: (s.created_at or datetime.min, s.snapshot_name))
        return result
