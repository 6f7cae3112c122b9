"""VM creation: template, identity, disk, seed media, define, start, address."""

from __future__ import annotations

import threading
from typing import Optional

from vmfleet.cloudinit import SeedBuilder
from vmfleet.config import FleetSettings
from vmfleet.constants import DISK_FORMAT, VM_NAME_RE
from vmfleet.exceptions import ControlPlaneError, InputError, ProvisioningError
from vmfleet.identity import generate_identity
from vmfleet.inventory import InventoryRecorder
from vmfleet.leases import LeaseWatcher
from vmfleet.models import CreateRequest, LeaseResult, ProvisionResult, TemplateDescriptor, VmDescriptor, VmState
from vmfleet.storage import VolumeProvisioner
from vmfleet.template import load_template, render_domain
from vmfleet.utils import log


def validate_request(request: CreateRequest) -> None:
    if not request.name or not request.name.strip():
        raise InputError("VM name is required")
    if not VM_NAME_RE.match(request.name):
        raise InputError(f"Invalid VM name '{request.name}' (letters, digits, '.', '_' and '-' only)")
    for label, value in (
        ("memory", request.memory_mib),
        ("vcpus", request.vcpu_count),
        ("disk", request.disk_size_gib),
    ):
        if value is None or value < 1:
            raise InputError(f"{label} must be a positive integer (got {value})")


class Provisioner:
    """Creates one VM at a time; each step waits for the previous one."""

    def __init__(
        self,
        settings: FleetSettings,
        control,
        recorder: InventoryRecorder,
        *,
        watcher: Optional[LeaseWatcher] = None,
        volumes: Optional[VolumeProvisioner] = None,
        seeds: Optional[SeedBuilder] = None,
        template: Optional[TemplateDescriptor] = None,
    ) -> None:
        self.settings = settings
        self.control = control
        self.recorder = recorder
        self.watcher = watcher or LeaseWatcher(
            control, settings.network_name, settings.lease_attempts, settings.lease_interval
        )
        self.volumes = volumes or VolumeProvisioner(control)
        self.seeds = seeds or SeedBuilder(settings.cloudinit_dir, settings.guest_profile())
        self._template = template
        self.state = VmState.UNDEFINED

    @property
    def template(self) -> TemplateDescriptor:
        if self._template is None:
            self._template = load_template(self.settings.template_path)
        return self._template

    def _taken_macs(self) -> set:
        taken = set(self.recorder.store.macs())
        try:
            taken.update(str(lease.get("mac", "")).lower() for lease in self.watcher.leases())
        except ControlPlaneError as exc:
            log("DEBUG", f"Could not read leases for MAC collision check: {exc.message}")
        return taken

    def describe(self, request: CreateRequest) -> VmDescriptor:
        validate_request(request)
        vm_uuid, mac = generate_identity(request.mac_address, taken=self._taken_macs())
        return VmDescriptor(
            name=request.name,
            uuid=vm_uuid,
            mac_address=mac,
            memory_mib=request.memory_mib,
            vcpu_count=request.vcpu_count,
            disk_size_gib=request.disk_size_gib,
            disk_image_path=self.settings.disk_path(request.name),
            seed_media_path=self.seeds.seed_path(request.name),
        )

    def _fail(self, descriptor: VmDescriptor, stage: str, exc: ControlPlaneError) -> ProvisioningError:
        self.state = VmState.FAILED
        log("ERROR", f"Failed to {stage} '{descriptor.name}': {exc.message}")
        return ProvisioningError(descriptor.name, stage, exc.message)

    def _adopt_existing(self, descriptor: VmDescriptor) -> None:
        """Take UUID and MAC from an already-defined domain so the seed matches it."""
        descriptor.uuid = self.control.domain_uuid(descriptor.name)
        existing = self.control.domain_macs(descriptor.name)
        if existing and descriptor.mac_address not in existing:
            descriptor.mac_address = existing[0]
            log("INFO", f"Using MAC {descriptor.mac_address} from the existing definition")

    def create(
        self,
        request: CreateRequest,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ProvisionResult:
        self.state = VmState.UNDEFINED
        descriptor = self.describe(request)
        defined = self.control.domain_exists(descriptor.name)
        if defined:
            self._adopt_existing(descriptor)
        xml = render_domain(self.template, descriptor, self.settings.network_name)
        result = ProvisionResult(descriptor=descriptor, state=self.state)

        if not self.volumes.ensure(
            self.settings.storage_pool, descriptor.disk_image_path, descriptor.disk_size_gib, DISK_FORMAT
        ):
            result.skipped.append("volume")
        self.seeds.build(descriptor.name, descriptor.uuid, request.ssh_pubkey)

        self.state = VmState.DEFINING
        if defined:
            log("INFO", f"Domain {descriptor.name} already defined")
            result.skipped.append("define")
        else:
            try:
                self.control.define_domain(descriptor.name, xml)
            except ControlPlaneError as exc:
                raise self._fail(descriptor, "define", exc) from exc
            log("SUCCESS", f"Defined domain {descriptor.name}")
        self.state = VmState.DEFINED

        self.state = VmState.STARTING
        try:
            if self.control.is_active(descriptor.name):
                log("INFO", f"Domain {descriptor.name} already running")
                result.skipped.append("start")
            else:
                self.control.start(descriptor.name)
                log("SUCCESS", f"VM '{descriptor.name}' created and started")
        except ControlPlaneError as exc:
            raise self._fail(descriptor, "start", exc) from exc
        self.state = VmState.RUNNING
        result.state = self.state

        log("INFO", f"MAC: {descriptor.mac_address}")
        log("INFO", "Waiting for IP assignment...")
        timeout = timeout if timeout is not None else self.settings.lease_timeout
        try:
            lease = self.watcher.wait(descriptor.mac_address, timeout=timeout, cancel=cancel)
        except KeyboardInterrupt:
            log("WARN", f"Interrupted; '{descriptor.name}' keeps running without a resolved address")
            lease = LeaseResult(mac_address=descriptor.mac_address, cancelled=True)
        result.lease = lease
        result.record = self.recorder.record(descriptor, lease)
        return result

    def clone(self, source: str, target: str) -> None:
        for label, name in (("Source", source), ("Target", target)):
            if not name or not VM_NAME_RE.match(name):
                raise InputError(f"{label} VM name is required")
        if not self.control.domain_exists(source):
            raise InputError(f"Source VM '{source}' does not exist")
        if self.control.domain_exists(target):
            raise InputError(f"Target VM '{target}' already exists")
        log("INFO", f"Cloning {source} to {target}...")
        self.control.clone_domain(source, target, self.settings.disk_path(target))
        log("SUCCESS", f"VM '{target}' cloned from '{source}'")
