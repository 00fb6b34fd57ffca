"""Core type definitions"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog

from alpine_rootfs.constants import GUEST_BIN_DIR, GUEST_SNAPSHOT_PATH
from alpine_rootfs.logging import get_logger

Propagation = Enum("Propagation", ["PRIVATE", "SLAVE", "SHARED"])
RegistrationState = Enum("RegistrationState", ["NOT_NEEDED", "ALREADY_REGISTERED", "REGISTERED"])


@dataclass(frozen=True)
class StepContext:
    """Active phase, threaded explicitly through every core call."""
    phase: str
    logger: structlog.stdlib.BoundLogger

    @classmethod
    def root(cls, phase: str = "main") -> "StepContext":
        return cls(phase=phase, logger=get_logger("alpine_rootfs").bind(phase=phase))

    def step(self, phase: str) -> "StepContext":
        """Enter a sub-phase; errors raised under it are attributed to `phase`."""
        ctx = StepContext(phase=phase, logger=self.logger.bind(phase=phase))
        ctx.logger.info("step_started")
        return ctx


@dataclass(frozen=True)
class ArtifactReference:
    """Self-describing download: URL plus the digest it must hash to."""
    url: str
    algorithm: str
    digest: str
    cache_path: Path

    @property
    def name(self) -> str:
        return self.url.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class MountBinding:
    """A host directory bound into the guest root."""
    source: Path
    guest_target: str
    target: Path
    propagation: Propagation = Propagation.PRIVATE
    fstype: Optional[str] = None

    @property
    def depth(self) -> int:
        return len(self.target.parts)


@dataclass(frozen=True)
class EmulationHandler:
    """Host-wide binfmt registration for one foreign architecture"""
    arch: str
    binary_path: Path
    state: RegistrationState


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """Caller variables and working directory captured at bridge entry"""
    variables: dict[str, str]
    cwd: str


@dataclass
class RootfsEnvironment:
    """A provisioned guest root"""
    id: str
    root: Path
    arch: str
    branch: str
    user: str
    uid: int = 1000
    shell_name: str = "alpine.sh"
    packages: list[str] = field(default_factory=list)
    bindings: list[MountBinding] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def bin_dir(self) -> Path:
        return self.root / GUEST_BIN_DIR

    @property
    def snapshot_path(self) -> Path:
        return self.root / GUEST_SNAPSHOT_PATH

    def guest_path(self, relative: str) -> Path:
        """Host path of a guest-absolute or guest-relative location."""
        return self.root / relative.lstrip("/")
