"""Global constants and path defaults for vmfleet."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_CONFIG_PATH = Path("/etc/vmfleet/fleet.yaml")
DEFAULT_TEMPLATE_PATH = Path(__file__).resolve().parent / "templates" / "node.xml"

DEFAULT_LIBVIRT_URI = "qemu:///system"
DEFAULT_STORAGE_POOL = "homelab"
DEFAULT_NETWORK_NAME = "homelab"
LIBVIRT_IMAGES_ROOT = Path("/var/lib/libvirt/images")
DEFAULT_CLOUDINIT_DIR = Path("./cloud-init")
DEFAULT_INVENTORY_FILE = Path("vm-inventory.txt")
DEFAULT_SSH_KEY_PATH = Path("~/.ssh/id_rsa")

DEFAULT_MEMORY_MIB = 2048
DEFAULT_VCPUS = 2
DEFAULT_DISK_GIB = 20
DEFAULT_GUEST_USER = "homelab"
DEFAULT_GUEST_DOMAIN = "homelab.local"

DEFAULT_LEASE_ATTEMPTS = 30
DEFAULT_LEASE_INTERVAL = 2
DEFAULT_SHUTDOWN_TIMEOUT = 60
DEFAULT_FLEET_WORKERS = 4

SEED_ISO_NAME = "cloud-init.iso"
SEED_VOLUME_ID = "cidata"
DISK_FORMAT = "qcow2"
UNRESOLVED = "unresolved"

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}
MAC_PREFIX = (0x52, 0x54, 0x00)  # qemu/kvm locally administered OUI
MAC_ADDRESS_RE = re.compile(r"^[0-9a-f]{2}(:[0-9a-f]{2}){5}$")
VM_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
PLACEHOLDER_RE = re.compile(r"\b[A-Z][A-Z_]*_PLACEHOLDER\b")
CONFIRM_RE = re.compile(r"^[Yy]$")

# template key -> placeholder token, as used by the shipped node templates
REQUIRED_PLACEHOLDERS = {
    "hostname": "HOSTNAME_PLACEHOLDER",
    "uuid": "UUID_PLACEHOLDER",
    "memory": "MEMORY_PLACEHOLDER",
    "vcpu": "VCPU_PLACEHOLDER",
    "diskPath": "DISK_PATH_PLACEHOLDER",
    "seedPath": "CLOUDINIT_PATH_PLACEHOLDER",
    "macAddress": "MAC_ADDRESS_PLACEHOLDER",
}

DEFAULT_GUEST_PACKAGES = [
    "curl",
    "wget",
    "git",
    "htop",
    "net-tools",
    "apt-transport-https",
    "ca-certificates",
    "gnupg",
    "lsb-release",
]

DEFAULT_GUEST_RUNCMD = [
    "systemctl enable ssh",
    "systemctl start ssh",
    "timedatectl set-timezone UTC",
]

FLEET_OPERATIONS = ("start", "stop", "force-stop", "delete")

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY
