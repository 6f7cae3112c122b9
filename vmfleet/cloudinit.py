"""Cloud-init seed media generation."""

from __future__ import annotations

import shutil
import subprocess
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmfleet.constants import (
    DEFAULT_GUEST_DOMAIN,
    DEFAULT_GUEST_PACKAGES,
    DEFAULT_GUEST_RUNCMD,
    DEFAULT_GUEST_USER,
    SEED_ISO_NAME,
    SEED_VOLUME_ID,
)
from vmfleet.exceptions import SeedBuildError
from vmfleet.utils import ensure_directory, hash_password, log, run


@dataclass
class GuestProfile:
    """What every guest gets on first boot, independent of its name."""

    user: str = DEFAULT_GUEST_USER
    domain: str = DEFAULT_GUEST_DOMAIN
    groups: str = "sudo"
    packages: List[str] = field(default_factory=lambda: list(DEFAULT_GUEST_PACKAGES))
    runcmd: List[str] = field(default_factory=lambda: list(DEFAULT_GUEST_RUNCMD))
    password: Optional[str] = None


def build_user_data(hostname: str, profile: GuestProfile, ssh_pubkey: Optional[str] = None) -> str:
    user: Dict[str, object] = {
        "name": profile.user,
        "groups": profile.groups,
        "shell": "/bin/bash",
        "sudo": ["ALL=(ALL) NOPASSWD:ALL"],
    }
    if ssh_pubkey:
        user["ssh_authorized_keys"] = [ssh_pubkey.strip()]
    if profile.password:
        user["lock_passwd"] = False
        user["passwd"] = hash_password(profile.password)

    cfg: Dict[str, object] = {
        "hostname": hostname,
        "fqdn": f"{hostname}.{profile.domain}",
        "manage_etc_hosts": True,
        "users": ["default", user],
        "ssh_pwauth": bool(profile.password),
        "packages": list(profile.packages),
        "runcmd": [f'echo "127.0.0.1 {hostname}" >> /etc/hosts'] + list(profile.runcmd),
        "final_message": f"Cloud-init setup complete for {hostname}",
        "power_state": {"mode": "reboot", "timeout": 30, "condition": True},
    }
    return "#cloud-config\n" + yaml.safe_dump(cfg, sort_keys=False, default_flow_style=False)


def build_meta_data(hostname: str, instance_id: str) -> str:
    return (
        textwrap.dedent(
            f"""
            instance-id: {instance_id}
            local-hostname: {hostname}
            """
        ).strip()
        + "\n"
    )


class SeedBuilder:
    def __init__(self, cloudinit_dir: Path, profile: Optional[GuestProfile] = None) -> None:
        self.cloudinit_dir = cloudinit_dir
        self.profile = profile or GuestProfile()

    def seed_dir(self, hostname: str) -> Path:
        return self.cloudinit_dir / hostname

    def seed_path(self, hostname: str) -> Path:
        return self.seed_dir(hostname) / SEED_ISO_NAME

    def build(self, hostname: str, instance_id: str, ssh_pubkey: Optional[str] = None) -> Path:
        """Write user-data and meta-data and pack them into a cidata ISO."""
        target_dir = self.seed_dir(hostname)
        iso_path = self.seed_path(hostname)
        user_data = target_dir / "user-data"
        meta_data = target_dir / "meta-data"
        try:
            ensure_directory(target_dir)
            user_data.write_text(build_user_data(hostname, self.profile, ssh_pubkey), encoding="utf-8")
            meta_data.write_text(build_meta_data(hostname, instance_id), encoding="utf-8")
        except OSError as exc:
            raise SeedBuildError(f"Cannot write cloud-init documents for {hostname}: {exc}") from exc

        cmd = [
            "genisoimage",
            "-output",
            str(iso_path),
            "-volid",
            SEED_VOLUME_ID,
            "-joliet",
            "-rock",
            str(user_data),
            str(meta_data),
        ]
        try:
            run(cmd, capture_output=True)
        except FileNotFoundError as exc:
            raise SeedBuildError("genisoimage is not installed") from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
            raise SeedBuildError(f"genisoimage failed for {hostname}: {detail}") from exc
        log("SUCCESS", f"Cloud-init ISO created for {hostname}")
        return iso_path

    def remove(self, hostname: str) -> None:
        target_dir = self.seed_dir(hostname)
        if target_dir.exists():
            shutil.rmtree(target_dir, ignore_errors=True)
            log("INFO", f"Removed seed media {target_dir}")
