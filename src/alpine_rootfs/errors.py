"""Error taxonomy for rootfs provisioning and teardown."""
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.types import ErrorData, INTERNAL_ERROR, INVALID_PARAMS

from alpine_rootfs.logging import get_logger

logger = get_logger(__name__)


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an error with context."""
    error_info: Dict[str, Any] = {
        "error_type": error.__class__.__name__,
        "error_message": str(error),
    }
    if context:
        error_info["context"] = context
    if isinstance(error, RootfsError):
        error_info["phase"] = error.phase
        error_info["code"] = error.code
        error_info["details"] = error.details

    logger.error("rootfs_error", **error_info)


class RootfsError(Exception):
    """Base error, carrying the phase it was raised in and its cause details."""

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: int = INTERNAL_ERROR,
    ):
        super().__init__(message)
        self.phase = phase
        self.code = code
        self.details = details or {}

    def to_error_data(self) -> ErrorData:
        """Convert to ErrorData format."""
        return ErrorData(
            code=self.code,
            message=str(self),
            data={"phase": self.phase, **self.details},
        )


class ValidationError(RootfsError):
    """Malformed input, detected before any side effect."""

    def __init__(self, parameter: str, message: str, phase: Optional[str] = None):
        super().__init__(
            f"Invalid input parameter: {parameter}: {message}",
            phase=phase or "validate",
            details={"parameter": parameter},
            code=INVALID_PARAMS,
        )
        self.parameter = parameter


class IntegrityError(RootfsError):
    """A fetched artifact does not match its pinned digest."""

    def __init__(self, url: str, algorithm: str, expected: str, actual: str, phase: Optional[str] = None):
        super().__init__(
            f"Checksum mismatch for {url}: expected {algorithm} {expected}, got {actual}",
            phase=phase,
            details={"url": url, "algorithm": algorithm, "expected": expected, "actual": actual},
        )


class ProvisioningError(RootfsError):
    """Failure while preparing the rootfs directory or package database."""


class EmulationError(ProvisioningError):
    """The foreign-architecture helper could not be fetched or registered."""


class MountError(RootfsError):
    """A bind or unmount operation failed."""

    def __init__(self, message: str, path: Path | str, phase: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, phase=phase, details={"path": str(path), **(details or {})})
        self.path = Path(path)


class ProcessEvictionError(RootfsError):
    """Processes still hold files under the rootfs after escalation."""

    def __init__(self, root: Path, pids: List[int], phase: Optional[str] = None):
        super().__init__(
            f"Processes still holding files under {root}: {', '.join(map(str, pids))}",
            phase=phase,
            details={"root": str(root), "pids": list(pids)},
        )
        self.pids = list(pids)


class TeardownIncompleteError(RootfsError):
    """Robust teardown could not unmount everything; the tree was left in place."""

    def __init__(
        self,
        root: Path,
        failures: List[MountError],
        pids: Optional[List[int]] = None,
        phase: Optional[str] = None,
    ):
        paths = [str(f.path) for f in failures]
        pids = list(pids or [])
        if paths:
            message = f"Failed to unmount {len(paths)} mount point(s) under {root}: {', '.join(paths)}"
        else:
            message = f"Processes still hold files under {root}: {', '.join(map(str, pids))}"
        super().__init__(
            f"{message}; not removing it",
            phase=phase,
            details={"root": str(root), "failed_mounts": paths, "pids": pids},
        )
        self.failures = list(failures)
        self.pids = pids
