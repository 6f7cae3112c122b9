"""vmfleet package."""

__all__ = [
    "cli",
    "cloudinit",
    "config",
    "confirm",
    "constants",
    "control",
    "exceptions",
    "fleet",
    "identity",
    "inventory",
    "leases",
    "models",
    "polling",
    "provisioner",
    "snapshots",
    "storage",
    "template",
    "utils",
]
