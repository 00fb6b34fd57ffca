"""Input validation, performed before any side effect."""
import os
import posixpath
import re
from pathlib import Path
from typing import Iterable, Optional

from alpine_rootfs.constants import SUPPORTED_ARCHES
from alpine_rootfs.errors import ValidationError

BRANCH_RE = re.compile(r"^v(\d+)\.(\d+)$")
NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_.~+@%-]*$")


def validate_arch(arch: str) -> str:
    if arch not in SUPPORTED_ARCHES:
        raise ValidationError(
            "arch", f"Expected one of: {', '.join(SUPPORTED_ARCHES)}, but got: {arch}."
        )
    return arch


def validate_branch(branch: str) -> str:
    if branch in ("edge", "latest-stable") or BRANCH_RE.match(branch):
        return branch
    raise ValidationError(
        "branch",
        f"Expected 'v[0-9].[0-9]+' (e.g. v3.15), edge, or latest-stable, but got: {branch}.",
    )


def branch_version(branch: str) -> Optional[tuple[int, int]]:
    """Return (major, minor) of a versioned branch, None for edge/latest-stable."""
    if match := BRANCH_RE.match(branch):
        return int(match.group(1)), int(match.group(2))
    return None


def validate_name(parameter: str, value: str) -> str:
    """Validate a shell or user name."""
    if not NAME_RE.match(value or ""):
        raise ValidationError(
            parameter, f"Expected value matching regex {NAME_RE.pattern}, but got: {value}."
        )
    return value


def validate_extra_keys(paths: Iterable[str], workspace: Path) -> list[Path]:
    """Resolve key files against the workspace; each must be readable."""
    resolved = []
    for path in paths:
        key = workspace / path
        if not key.is_file() or not os.access(key, os.R_OK):
            raise ValidationError(
                "extra-keys", f"File does not exist in workspace or is not readable: {path}."
            )
        resolved.append(key)
    return resolved


def parse_volumes(volumes: Iterable[str]) -> list[tuple[Path, str]]:
    """Parse `hostPath:guestPath` entries; blank entries are skipped."""
    parsed = []
    for vol in volumes:
        vol = vol.strip()
        if not vol:
            continue
        src, sep, dst = vol.partition(":")
        if not sep or not src or not dst:
            raise ValidationError("volumes", f"Expected 'hostPath:guestPath', but got: {vol}.")
        if not dst.startswith("/"):
            raise ValidationError("volumes", f"Guest path must be absolute, but got: {dst}.")
        if ".." in dst.split("/"):
            raise ValidationError("volumes", f"Guest path must not contain '..', but got: {dst}.")
        dst = posixpath.normpath(dst)
        if not dst.strip("/"):
            raise ValidationError("volumes", "Guest path must not be the guest root.")
        parsed.append((Path(src), dst))
    return parsed
