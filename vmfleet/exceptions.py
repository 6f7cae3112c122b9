"""Custom exceptions for vmfleet."""


class FleetError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class InputError(FleetError):
    """A required name or parameter is missing or malformed."""


class ConfigError(FleetError):
    """Invalid settings in the environment or the fleet config file."""


class TemplateValidationError(FleetError):
    """A domain template is missing placeholders or renders incompletely."""


class StorageError(FleetError):
    """The storage pool is unavailable or a disk image cannot be written."""


class SeedBuildError(FleetError):
    """Packaging the cloud-init seed media failed."""


class ControlPlaneError(FleetError):
    """A libvirt call was rejected."""

    def __init__(self, operation: str, resource: str, message: str) -> None:
        self.operation = operation
        self.resource = resource
        self.message = message
        super().__init__(f"{operation} {resource}: {message}")


class ProvisioningError(ControlPlaneError):
    """Define or start was rejected while creating a VM."""

    def __init__(self, resource: str, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"provision ({stage})", resource, message)


class SnapshotError(ControlPlaneError):
    """A snapshot could not be created, listed or restored."""
