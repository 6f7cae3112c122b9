"""Data models for vmfleet."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from vmfleet.constants import UNRESOLVED


class VmState(str, enum.Enum):
    UNDEFINED = "undefined"
    DEFINING = "defining"
    DEFINED = "defined"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"


@dataclass
class CreateRequest:
    name: str
    memory_mib: int
    vcpu_count: int
    disk_size_gib: int
    mac_address: Optional[str] = None
    ssh_pubkey: Optional[str] = None


@dataclass
class VmDescriptor:
    name: str
    uuid: str
    mac_address: str
    memory_mib: int
    vcpu_count: int
    disk_size_gib: int
    disk_image_path: Path
    seed_media_path: Path


@dataclass
class TemplateDescriptor:
    text: str
    source: Optional[Path] = None


@dataclass(frozen=True)
class InventoryRecord:
    name: str
    ip_address: str
    mac_address: str
    created_at: datetime

    @property
    def resolved(self) -> bool:
        return self.ip_address != UNRESOLVED


@dataclass(frozen=True)
class SnapshotDescriptor:
    vm_name: str
    snapshot_name: str
    created_at: Optional[datetime]
    description: str = ""


@dataclass
class LeaseResult:
    mac_address: str
    ip_address: Optional[str] = None
    attempts: int = 0
    cancelled: bool = False

    @property
    def resolved(self) -> bool:
        return self.ip_address is not None


@dataclass
class ProvisionResult:
    descriptor: VmDescriptor
    state: VmState
    lease: Optional[LeaseResult] = None
    record: Optional[InventoryRecord] = None
    skipped: List[str] = field(default_factory=list)


@dataclass
class FleetResult:
    name: str
    operation: str
    status: str  # "ok", "skipped", "failed", "cancelled"
    message: str = ""

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass
class DomainStatus:
    name: str
    state: str
    vcpus: int
    memory_mib: int
