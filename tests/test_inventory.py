"""Tests for vmfleet.inventory module."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from vmfleet.exceptions import FleetError
from vmfleet.inventory import FileInventory, InventoryRecorder, MemoryInventory, format_record, parse_record
from vmfleet.models import InventoryRecord, LeaseResult, VmDescriptor

CREATED = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)


def _descriptor(name="homelab-web", mac="52:54:00:aa:bb:cc") -> VmDescriptor:
    return VmDescriptor(
        name=name,
        uuid="uuid",
        mac_address=mac,
        memory_mib=2048,
        vcpu_count=2,
        disk_size_gib=20,
        disk_image_path=Path(f"/images/{name}.qcow2"),
        seed_media_path=Path(f"/seeds/{name}/cloud-init.iso"),
    )


class TestFormat:
    def test_line_layout(self):
        record = InventoryRecord("homelab-web", "192.168.100.10", "52:54:00:aa:bb:cc", CREATED)
        assert format_record(record) == "homelab-web: 192.168.100.10 (52:54:00:aa:bb:cc) 2024-05-01T12:30:00Z"

    def test_parse_line_without_timestamp(self):
        record = parse_record("homelab-db: 192.168.100.11 (52:54:00:AA:BB:CD)")
        assert record.name == "homelab-db"
        assert record.mac_address == "52:54:00:aa:bb:cd"
        assert record.created_at.year == 1

    def test_parse_rejects_garbage(self):
        assert parse_record("not an inventory line") is None


class TestFileInventory:
    def test_missing_file_is_empty(self, tmp_path):
        assert FileInventory(tmp_path / "inv.txt").records() == []

    def test_appends_never_rewrite(self, tmp_path):
        path = tmp_path / "inv.txt"
        path.write_text("legacy: 10.0.0.1 (52:54:00:00:00:01)\n")
        store = FileInventory(path)
        store.append(InventoryRecord("homelab-web", "10.0.0.2", "52:54:00:00:00:02", CREATED))
        lines = path.read_text().splitlines()
        assert lines[0] == "legacy: 10.0.0.1 (52:54:00:00:00:01)"
        assert lines[1].startswith("homelab-web: 10.0.0.2")
        assert [r.name for r in store.records()] == ["legacy", "homelab-web"]

    def test_malformed_lines_skipped(self, tmp_path, capsys):
        path = tmp_path / "inv.txt"
        path.write_text("garbage\n\nvm: 10.0.0.1 (52:54:00:00:00:01)\n")
        records = FileInventory(path).records()
        assert [r.name for r in records] == ["vm"]
        assert "malformed inventory line 1" in capsys.readouterr().out

    def test_undecodable_line_skipped(self, tmp_path, capsys):
        path = tmp_path / "inv.txt"
        path.write_bytes(b"\xff\xfe garbage\nvm: 10.0.0.1 (52:54:00:00:00:01)\n")
        records = FileInventory(path).records()
        assert [r.name for r in records] == ["vm"]
        assert "malformed inventory line 1" in capsys.readouterr().out

    def test_concurrent_appends_keep_every_line(self, tmp_path):
        store = FileInventory(tmp_path / "inv.txt")

        def writer(idx):
            for n in range(20):
                store.append(InventoryRecord(f"vm-{idx}-{n}", "unresolved", "52:54:00:00:00:01", CREATED))

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        records = store.records()
        assert len(records) == 100
        assert len({r.name for r in records}) == 100

    def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(FleetError, match="Cannot append"):
            FileInventory(blocker / "inv.txt").append(
                InventoryRecord("vm", "unresolved", "52:54:00:00:00:01", CREATED)
            )

    def test_macs(self, tmp_path):
        path = tmp_path / "inv.txt"
        path.write_text("vm: 10.0.0.1 (52:54:00:AA:00:01)\n")
        assert FileInventory(path).macs() == {"52:54:00:aa:00:01"}


class TestInventoryRecorder:
    def test_records_resolved_address(self):
        store = MemoryInventory()
        recorder = InventoryRecorder(store, clock=lambda: CREATED)
        record = recorder.record(_descriptor(), LeaseResult("52:54:00:aa:bb:cc", "192.168.100.10", 1))
        assert record.resolved
        assert store.records() == [record]

    def test_unresolved_lease_is_still_recorded(self):
        store = MemoryInventory()
        record = InventoryRecorder(store).record(_descriptor(), LeaseResult("52:54:00:aa:bb:cc", None, 30))
        assert record.ip_address == "unresolved"
        assert not record.resolved
        assert len(store.records()) == 1

    def test_recreate_appends_second_record(self):
        store = MemoryInventory()
        recorder = InventoryRecorder(store)
        recorder.record(_descriptor(mac="52:54:00:00:00:01"), None)
        recorder.record(_descriptor(mac="52:54:00:00:00:02"), LeaseResult("52:54:00:00:00:02", "10.0.0.2"))
        records = store.records()
        assert [r.name for r in records] == ["homelab-web", "homelab-web"]
        assert [r.mac_address for r in records] == ["52:54:00:00:00:01", "52:54:00:00:00:02"]
