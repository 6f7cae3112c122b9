"""Append-only record of provisioned VMs and their addresses."""

from __future__ import annotations

import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Set

from vmfleet.constants import UNRESOLVED
from vmfleet.exceptions import FleetError
from vmfleet.models import InventoryRecord, LeaseResult, VmDescriptor
from vmfleet.utils import ensure_directory, log

_LINE_RE = re.compile(r"^(?P<name>[^:\s]+): (?P<ip>\S+) \((?P<mac>[0-9A-Fa-f:]+)\)(?: (?P<created>\S+))?$")
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_record(record: InventoryRecord) -> str:
    created = record.created_at.astimezone(timezone.utc).strftime(_TIME_FORMAT)
    return f"{record.name}: {record.ip_address} ({record.mac_address}) {created}"


def parse_record(line: str) -> Optional[InventoryRecord]:
    match = _LINE_RE.match(line.strip())
    if not match:
        return None
    created_raw = match.group("created")
    created_at = datetime.min.replace(tzinfo=timezone.utc)
    if created_raw:
        try:
            created_at = datetime.strptime(created_raw, _TIME_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return InventoryRecord(match.group("name"), match.group("ip"), match.group("mac").lower(), created_at)


class InventoryStore:
    """Storage interface; implementations must never rewrite a record."""

    def append(self, record: InventoryRecord) -> None:
        raise NotImplementedError

    def records(self) -> List[InventoryRecord]:
        raise NotImplementedError

    def macs(self) -> Set[str]:
        return {record.mac_address.lower() for record in self.records()}


class MemoryInventory(InventoryStore):
    def __init__(self) -> None:
        self._records: List[InventoryRecord] = []
        self._lock = threading.Lock()

    def append(self, record: InventoryRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self) -> List[InventoryRecord]:
        with self._lock:
            return list(self._records)


class FileInventory(InventoryStore):
    """Line-oriented ``name: ip (mac) created`` file.

    Each record is written with a single ``write(2)`` on an ``O_APPEND``
    descriptor, so concurrent writers never interleave partial lines.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def append(self, record: InventoryRecord) -> None:
        data = (format_record(record) + "\n").encode("utf-8")
        with self._lock:
            try:
                ensure_directory(self.path.parent)
                fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
                try:
                    os.write(fd, data)
                finally:
                    os.close(fd)
            except OSError as exc:
                raise FleetError(f"Cannot append to inventory {self.path}: {exc}") from exc

    def records(self) -> List[InventoryRecord]:
        if not self.path.exists():
            return []
        try:
            raw = self.path.read_bytes()
        except OSError as exc:
            raise FleetError(f"Cannot read inventory {self.path}: {exc}") from exc
        result = []
        for lineno, raw_line in enumerate(raw.splitlines(), start=1):
            # Undecodable bytes become U+FFFD and the line fails to parse below.
            line = raw_line.decode("utf-8", errors="replace")
            if not line.strip():
                continue
            record = parse_record(line)
            if record is None:
                log("WARN", f"Skipping malformed inventory line {lineno} in {self.path}")
                continue
            result.append(record)
        return result


class InventoryRecorder:
    def __init__(self, store: InventoryStore, clock=None) -> None:
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def record(self, descriptor: VmDescriptor, lease: Optional[LeaseResult]) -> InventoryRecord:
        ip = lease.ip_address if lease is not None and lease.ip_address else UNRESOLVED
        record = InventoryRecord(descriptor.name, ip, descriptor.mac_address, self._clock())
        self.store.append(record)
        log("INFO", f"Recorded {descriptor.name}: {ip} ({descriptor.mac_address})")
        return record
