"""Alpine Linux chroot provisioning package."""

from alpine_rootfs.types import (
    RootfsEnvironment,
    StepContext,
    ArtifactReference,
    MountBinding,
    EmulationHandler,
    EnvironmentSnapshot,
)
from alpine_rootfs.environment import create_environment, destroy_environment, attach_environment
from alpine_rootfs.bridge import enter
from alpine_rootfs.teardown import destroy_rootfs
from alpine_rootfs.errors import (
    RootfsError,
    ValidationError,
    IntegrityError,
    ProvisioningError,
    EmulationError,
    MountError,
    ProcessEvictionError,
    TeardownIncompleteError,
)

__version__ = "0.1.0"

__all__ = [
    # Types
    "RootfsEnvironment",
    "StepContext",
    "ArtifactReference",
    "MountBinding",
    "EmulationHandler",
    "EnvironmentSnapshot",

    # Lifecycle
    "create_environment",
    "destroy_environment",
    "attach_environment",
    "destroy_rootfs",
    "enter",

    # Error types
    "RootfsError",
    "ValidationError",
    "IntegrityError",
    "ProvisioningError",
    "EmulationError",
    "MountError",
    "ProcessEvictionError",
    "TeardownIncompleteError",
]
