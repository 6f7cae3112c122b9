"""Configuration loading from the environment and the fleet config file."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vmfleet.cloudinit import GuestProfile
from vmfleet.constants import (
    DEFAULT_CLOUDINIT_DIR,
    DEFAULT_CONFIG_PATH,
    DEFAULT_DISK_GIB,
    DEFAULT_FLEET_WORKERS,
    DEFAULT_GUEST_DOMAIN,
    DEFAULT_GUEST_PACKAGES,
    DEFAULT_GUEST_RUNCMD,
    DEFAULT_GUEST_USER,
    DEFAULT_INVENTORY_FILE,
    DEFAULT_LEASE_ATTEMPTS,
    DEFAULT_LEASE_INTERVAL,
    DEFAULT_LIBVIRT_URI,
    DEFAULT_MEMORY_MIB,
    DEFAULT_NETWORK_NAME,
    DEFAULT_SHUTDOWN_TIMEOUT,
    DEFAULT_SSH_KEY_PATH,
    DEFAULT_STORAGE_POOL,
    DEFAULT_VCPUS,
    LIBVIRT_IMAGES_ROOT,
)
from vmfleet.exceptions import ConfigError
from vmfleet.utils import ensure_directory, get_env, log, parse_int, run


@dataclass
class FleetSettings:
    libvirt_uri: str = DEFAULT_LIBVIRT_URI
    storage_pool: str = DEFAULT_STORAGE_POOL
    network_name: str = DEFAULT_NETWORK_NAME
    image_dir: Path = LIBVIRT_IMAGES_ROOT / DEFAULT_STORAGE_POOL
    template_path: Optional[Path] = None
    cloudinit_dir: Path = DEFAULT_CLOUDINIT_DIR
    inventory_file: Path = DEFAULT_INVENTORY_FILE
    fleet_prefix: str = DEFAULT_STORAGE_POOL
    fleet_workers: int = DEFAULT_FLEET_WORKERS
    lease_attempts: int = DEFAULT_LEASE_ATTEMPTS
    lease_interval: float = DEFAULT_LEASE_INTERVAL
    lease_timeout: Optional[float] = None
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    ssh_pubkey: Optional[str] = None
    ssh_key_path: Path = DEFAULT_SSH_KEY_PATH
    guest_user: str = DEFAULT_GUEST_USER
    guest_password: Optional[str] = None
    guest_domain: str = DEFAULT_GUEST_DOMAIN
    default_memory: int = DEFAULT_MEMORY_MIB
    default_vcpus: int = DEFAULT_VCPUS
    default_disk: int = DEFAULT_DISK_GIB
    packages: List[str] = field(default_factory=lambda: list(DEFAULT_GUEST_PACKAGES))
    runcmd: List[str] = field(default_factory=lambda: list(DEFAULT_GUEST_RUNCMD))

    def guest_profile(self) -> GuestProfile:
        return GuestProfile(
            user=self.guest_user,
            domain=self.guest_domain,
            packages=list(self.packages),
            runcmd=list(self.runcmd),
            password=self.guest_password,
        )

    def disk_path(self, name: str) -> Path:
        return self.image_dir / f"{name}.qcow2"


def load_config_file(config_path: Optional[Path] = None) -> Dict[str, object]:
    """Read the ``fleet:`` mapping from the YAML config file, if present."""
    explicit = config_path is not None
    if config_path is None:
        env_path = get_env("FLEET_CONFIG")
        explicit = bool(env_path)
        config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Fleet config missing: {config_path}")
        return {}
    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{config_path} contains invalid YAML: {exc}")
    except OSError as exc:
        raise ConfigError(f"Cannot read {config_path}: {exc}")
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a YAML mapping")
    fleet = data.get("fleet", {})
    if not isinstance(fleet, dict):
        raise ConfigError(f"'fleet' in {config_path} must be a mapping")
    log("DEBUG", f"Loaded fleet config from {config_path}")
    return fleet


def _string_list(name: str, value: object) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(item, (str, int, float)) for item in value):
        raise ConfigError(f"'{name}' must be a list of strings")
    return [str(item) for item in value]


def _float(name: str, raw: str, min_val: float = 0.0) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got '{raw}')")
    if value < min_val:
        raise ConfigError(f"{name} must be >= {min_val} (got {value})")
    return value


def load_settings(config_path: Optional[Path] = None) -> FleetSettings:
    """Build settings: environment first, then the config file, then defaults."""
    file_cfg = load_config_file(config_path)

    def pick(key: str, default: Optional[object] = None) -> Optional[str]:
        env_value = get_env(key.upper())
        if env_value is not None and env_value.strip():
            return env_value.strip()
        if key in file_cfg and file_cfg[key] is not None:
            return str(file_cfg[key])
        return None if default is None else str(default)

    storage_pool = pick("storage_pool", DEFAULT_STORAGE_POOL)
    settings = FleetSettings(
        libvirt_uri=pick("libvirt_uri", DEFAULT_LIBVIRT_URI),
        storage_pool=storage_pool,
        network_name=pick("network_name", DEFAULT_NETWORK_NAME),
        image_dir=Path(pick("image_dir", LIBVIRT_IMAGES_ROOT / storage_pool)),
        cloudinit_dir=Path(pick("cloudinit_dir", DEFAULT_CLOUDINIT_DIR)),
        inventory_file=Path(pick("inventory_file", DEFAULT_INVENTORY_FILE)),
        fleet_prefix=pick("fleet_prefix", storage_pool),
        fleet_workers=parse_int("FLEET_WORKERS", pick("fleet_workers", DEFAULT_FLEET_WORKERS), max_val=64),
        lease_attempts=parse_int("LEASE_ATTEMPTS", pick("lease_attempts", DEFAULT_LEASE_ATTEMPTS)),
        lease_interval=_float("LEASE_INTERVAL", pick("lease_interval", DEFAULT_LEASE_INTERVAL)),
        shutdown_timeout=_float(
            "SNAPSHOT_SHUTDOWN_TIMEOUT", pick("snapshot_shutdown_timeout", DEFAULT_SHUTDOWN_TIMEOUT)
        ),
        ssh_pubkey=pick("ssh_pubkey"),
        ssh_key_path=Path(pick("ssh_key_path", DEFAULT_SSH_KEY_PATH)).expanduser(),
        guest_user=pick("guest_user", DEFAULT_GUEST_USER),
        guest_password=pick("guest_password"),
        guest_domain=pick("guest_domain", DEFAULT_GUEST_DOMAIN),
        default_memory=parse_int("DEFAULT_MEMORY", pick("default_memory", DEFAULT_MEMORY_MIB), min_val=128),
        default_vcpus=parse_int("DEFAULT_VCPUS", pick("default_vcpus", DEFAULT_VCPUS)),
        default_disk=parse_int("DEFAULT_DISK", pick("default_disk", DEFAULT_DISK_GIB)),
    )

    template = pick("template_path")
    if template:
        settings.template_path = Path(template)
    lease_timeout = pick("lease_timeout")
    if lease_timeout:
        settings.lease_timeout = _float("LEASE_TIMEOUT", lease_timeout)
    if "packages" in file_cfg:
        settings.packages = _string_list("packages", file_cfg["packages"])
    if "runcmd" in file_cfg:
        settings.runcmd = _string_list("runcmd", file_cfg["runcmd"])
    return settings


def resolve_ssh_pubkey(settings: FleetSettings, generate: bool = True) -> Optional[str]:
    """Return the public key injected into guests, creating a key pair if needed."""
    if settings.ssh_pubkey:
        return settings.ssh_pubkey
    private_key = settings.ssh_key_path
    public_key = private_key.with_name(private_key.name + ".pub")
    if not public_key.exists():
        if not generate:
            return None
        log("INFO", f"Generating SSH key {private_key}...")
        ensure_directory(private_key.parent)
        try:
            run(["ssh-keygen", "-t", "rsa", "-b", "4096", "-f", str(private_key), "-N", "", "-q"])
        except (FileNotFoundError, subprocess.CalledProcessError) as exc:
            raise ConfigError(f"Could not generate SSH key {private_key}: {exc}") from exc
    try:
        return public_key.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read SSH public key {public_key}: {exc}") from exc
