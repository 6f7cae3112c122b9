"""Tests for vmfleet.identity module."""

from __future__ import annotations

import re
import uuid
from unittest.mock import patch

import pytest

from vmfleet.exceptions import InputError
from vmfleet.identity import MAX_MAC_ATTEMPTS, generate_identity, new_uuid, random_mac, validate_mac


def test_new_uuid_is_v4():
    assert uuid.UUID(new_uuid()).version == 4


def test_random_mac_has_qemu_prefix():
    mac = random_mac()
    assert re.match(r"^52:54:00(:[0-9a-f]{2}){3}$", mac)


class TestValidateMac:
    def test_normalizes_case_and_dashes(self):
        assert validate_mac("52-54-00-AB-CD-EF") == "52:54:00:ab:cd:ef"

    @pytest.mark.parametrize("bad", ["", "52:54:00", "zz:54:00:00:00:00", "52:54:00:00:00:00:00"])
    def test_rejects_malformed(self, bad):
        with pytest.raises(InputError, match="Invalid MAC"):
            validate_mac(bad)


class TestGenerateIdentity:
    def test_supplied_mac_is_kept(self):
        vm_uuid, mac = generate_identity("52:54:00:AA:BB:CC", taken={"52:54:00:aa:bb:cc"})
        assert mac == "52:54:00:aa:bb:cc"
        assert uuid.UUID(vm_uuid)

    def test_fresh_uuid_each_call(self):
        assert generate_identity()[0] != generate_identity()[0]

    def test_collision_is_redrawn(self):
        draws = iter(["52:54:00:00:00:01", "52:54:00:00:00:02"])
        with patch("vmfleet.identity.random_mac", side_effect=lambda: next(draws)):
            _, mac = generate_identity(taken=["52:54:00:00:00:01"])
        assert mac == "52:54:00:00:00:02"

    def test_gives_up_when_every_draw_collides(self):
        with patch("vmfleet.identity.random_mac", return_value="52:54:00:00:00:01") as mock_mac:
            with pytest.raises(InputError, match="unused MAC"):
                generate_identity(taken=["52:54:00:00:00:01"])
        assert mock_mac.call_count == MAX_MAC_ATTEMPTS + 1
