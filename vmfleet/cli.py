"""CLI entry points for vmfleet."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Callable, Dict, List, Optional

from vmfleet.config import FleetSettings, load_settings, resolve_ssh_pubkey
from vmfleet.confirm import AutoConfirm, ConsoleConfirmation
from vmfleet.constants import FALSY
from vmfleet.exceptions import FleetError, InputError
from vmfleet.fleet import FleetController
from vmfleet.inventory import FileInventory, InventoryRecorder
from vmfleet.leases import LeaseWatcher
from vmfleet.models import CreateRequest, FleetResult
from vmfleet.provisioner import Provisioner, validate_request
from vmfleet.snapshots import SnapshotManager
from vmfleet.utils import get_env_bool, log

Handler = Callable[[argparse.Namespace, "Session"], int]

COMMANDS: Dict[str, Handler] = {}


def command(name: str) -> Callable[[Handler], Handler]:
    def register(func: Handler) -> Handler:
        COMMANDS[name] = func
        return func

    return register


def open_control_plane(settings: FleetSettings):
    from vmfleet.control import LibvirtControlPlane

    control = LibvirtControlPlane(settings.libvirt_uri)
    control.connect()
    return control


class Session:
    """Settings plus a lazily opened control-plane connection."""

    def __init__(self, settings: FleetSettings, assume_yes: bool = False) -> None:
        self.settings = settings
        self.assume_yes = assume_yes
        self._control = None

    @property
    def control(self):
        if self._control is None:
            self._control = open_control_plane(self.settings)
        return self._control

    def close(self) -> None:
        if self._control is not None:
            self._control.close()
            self._control = None

    def recorder(self) -> InventoryRecorder:
        return InventoryRecorder(FileInventory(self.settings.inventory_file))

    def fleet(self) -> FleetController:
        confirmer = AutoConfirm(True) if self.assume_yes else ConsoleConfirmation()
        return FleetController(self.settings, self.control, confirmer=confirmer)

    def snapshots(self) -> SnapshotManager:
        return SnapshotManager(self.control, shutdown_timeout=self.settings.shutdown_timeout)

    def provisioner(self) -> Provisioner:
        return Provisioner(self.settings, self.control, self.recorder())


def print_fleet_results(results: List[FleetResult]) -> int:
    failed = [result for result in results if result.failed]
    if results:
        width = max(len(result.name) for result in results)
        for result in results:
            print(f"  {result.name:<{width}}  {result.status:<9}  {result.message}")
    if failed:
        log("WARN", f"{len(failed)} of {len(results)} VM(s) failed: {', '.join(r.name for r in failed)}")
        return 1
    return 0


def _optional_int(raw: Optional[str], default: int, label: str) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InputError(f"{label} must be an integer (got '{raw}')")


@command("create")
def cmd_create(args: argparse.Namespace, session: Session) -> int:
    settings = session.settings
    if not args.name:
        raise InputError("VM name is required")
    request = CreateRequest(
        name=args.name,
        memory_mib=_optional_int(args.memory, settings.default_memory, "memory"),
        vcpu_count=_optional_int(args.vcpus, settings.default_vcpus, "vcpus"),
        disk_size_gib=_optional_int(args.disk, settings.default_disk, "disk"),
        mac_address=args.mac or None,
    )
    validate_request(request)
    request.ssh_pubkey = resolve_ssh_pubkey(settings)
    result = session.provisioner().create(request, timeout=args.timeout)
    ip = result.lease.ip_address if result.lease and result.lease.ip_address else "unresolved"
    print(f"{result.descriptor.name}: {ip} ({result.descriptor.mac_address})")
    return 0


@command("clone")
def cmd_clone(args: argparse.Namespace, session: Session) -> int:
    session.provisioner().clone(args.source, args.target)
    return 0


def _bulk(operation: str, args: argparse.Namespace, session: Session) -> int:
    fleet = session.fleet()
    names = [args.name] if getattr(args, "name", None) else None
    if names is None:
        log("INFO", f"Applying {operation} to all '{session.settings.fleet_prefix}' VMs...")
    return print_fleet_results(fleet.apply(operation, names))


@command("start")
def cmd_start(args: argparse.Namespace, session: Session) -> int:
    return _bulk("start", args, session)


@command("stop")
def cmd_stop(args: argparse.Namespace, session: Session) -> int:
    return _bulk("stop", args, session)


@command("force-stop")
def cmd_force_stop(args: argparse.Namespace, session: Session) -> int:
    return _bulk("force-stop", args, session)


@command("delete")
def cmd_delete(args: argparse.Namespace, session: Session) -> int:
    keep_disk = bool(args.keep_disk) and args.keep_disk.lower() not in FALSY
    results = session.fleet().apply("delete", [args.name], keep_disk=keep_disk)
    return print_fleet_results(results)


@command("snapshot")
def cmd_snapshot(args: argparse.Namespace, session: Session) -> int:
    session.snapshots().create(args.name, args.snapshot_name, args.description)
    return 0


@command("restore")
def cmd_restore(args: argparse.Namespace, session: Session) -> int:
    session.snapshots().restore(args.name, args.snapshot_name, force=args.force)
    return 0


@command("snapshots")
def cmd_snapshots(args: argparse.Namespace, session: Session) -> int:
    snapshots = session.snapshots().list(args.name)
    if not snapshots:
        log("INFO", f"No snapshots for VM '{args.name}'")
        return 0
    width = max(len(snap.snapshot_name) for snap in snapshots)
    for snap in snapshots:
        created = snap.created_at.strftime("%Y-%m-%d %H:%M:%S") if snap.created_at else "-"
        print(f"  {snap.snapshot_name:<{width}}  {created}  {snap.description}")
    return 0


@command("list")
def cmd_list(args: argparse.Namespace, session: Session) -> int:
    log("INFO", f"Fleet VMs ('{session.settings.fleet_prefix}*'):")
    statuses = session.fleet().status()
    if not statuses:
        log("WARN", "No VMs found")
        return 0
    width = max(len(status.name) for status in statuses)
    for status in statuses:
        resources = f"{status.vcpus} vCPUs, {status.memory_mib} MiB" if status.state == "running" else ""
        print(f"  {status.name:<{width}}  {status.state:<8}  {resources}".rstrip())
    return 0


@command("network")
def cmd_network(args: argparse.Namespace, session: Session) -> int:
    settings = session.settings
    info = session.control.network_info(settings.network_name)
    log("INFO", f"Network: {settings.network_name}")
    for key in ("uuid", "active", "persistent", "autostart", "bridge"):
        print(f"  {key}: {info.get(key)}")
    log("INFO", "DHCP Leases:")
    watcher = LeaseWatcher(session.control, settings.network_name, 1, 0)
    for lease in watcher.leases():
        hostname = lease.get("hostname") or "-"
        print(f"  {lease.get('mac')}  {lease.get('ipaddr')}/{lease.get('prefix', '')}  {hostname}")
    return 0


@command("inventory")
def cmd_inventory(args: argparse.Namespace, session: Session) -> int:
    records = session.recorder().store.records()
    if not records:
        log("INFO", f"Inventory {session.settings.inventory_file} is empty")
        return 0
    for record in records:
        print(f"  {record.name}: {record.ip_address} ({record.mac_address}) {record.created_at:%Y-%m-%d %H:%M:%S}")
    return 0


@command("ssh")
@command("ssh-key")
def cmd_ssh_key(args: argparse.Namespace, session: Session) -> int:
    print(resolve_ssh_pubkey(session.settings))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vmfleet", description="libvirt VM fleet lifecycle manager")
    parser.add_argument("--config", type=Path, default=None, help="Fleet config file (default: $FLEET_CONFIG)")
    parser.add_argument("-y", "--yes", action="store_true", help="Answer yes to confirmation prompts")
    sub = parser.add_subparsers(dest="command", metavar="<command>")

    p = sub.add_parser("create", help="Create new VM")
    p.add_argument("name", nargs="?")
    p.add_argument("memory", nargs="?", help="Memory in MiB")
    p.add_argument("vcpus", nargs="?")
    p.add_argument("disk", nargs="?", help="Disk size in GiB")
    p.add_argument("mac", nargs="?")
    p.add_argument("--timeout", type=float, default=None, help="Give up waiting for an IP after N seconds")

    p = sub.add_parser("clone", help="Clone existing VM")
    p.add_argument("source")
    p.add_argument("target")

    for name, help_text in (("start", "Start VM(s)"), ("stop", "Stop VM(s)")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("name", nargs="?")

    p = sub.add_parser("force-stop", help="Force stop VM")
    p.add_argument("name")

    p = sub.add_parser("delete", help="Delete VM")
    p.add_argument("name")
    p.add_argument("keep_disk", nargs="?", metavar="keep-disk", help="Pass 'keep-disk' (or true) to retain the disk")
    p.add_argument("-y", "--yes", action="store_true", default=argparse.SUPPRESS, help="Skip the confirmation prompt")

    p = sub.add_parser("snapshot", help="Create snapshot")
    p.add_argument("name")
    p.add_argument("snapshot_name", nargs="?")
    p.add_argument("--description", default=None)

    p = sub.add_parser("restore", help="Restore snapshot")
    p.add_argument("name")
    p.add_argument("snapshot_name")
    p.add_argument("--force", action="store_true", help="Force the VM off if it ignores shutdown")

    p = sub.add_parser("snapshots", help="List snapshots")
    p.add_argument("name")

    sub.add_parser("list", help="List fleet VMs")
    sub.add_parser("network", help="Show network info and DHCP leases")
    sub.add_parser("inventory", help="Show recorded VM addresses")
    sub.add_parser("ssh-key", aliases=["ssh"], help="Show (or generate) the guest SSH key")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = load_settings(args.config)
    except FleetError as exc:
        log("ERROR", str(exc))
        return 1

    session = Session(settings, assume_yes=args.yes or get_env_bool("ASSUME_YES", False))
    try:
        return COMMANDS[args.command](args, session)
    except FleetError as exc:
        log("ERROR", str(exc))
        return 1
    except KeyboardInterrupt:
        log("WARN", "Interrupted")
        return 130
    finally:
        session.close()
