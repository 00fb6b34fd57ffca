"""Setup inputs."""
import os
import pwd
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from alpine_rootfs.constants import (
    DEFAULT_APK_TOOLS_URL,
    DEFAULT_ARCH,
    DEFAULT_BRANCH,
    DEFAULT_MIRROR_URL,
    DEFAULT_PACKAGES,
    DEFAULT_SHELL_NAME,
    DEFAULT_UID,
    KEYS_DIR,
)
from alpine_rootfs.validation import (
    parse_volumes,
    validate_arch,
    validate_branch,
    validate_extra_keys,
    validate_name,
)


def _split(value: Optional[str]) -> list[str]:
    return (value or "").split()


def invoking_user(environ: Mapping[str, str]) -> tuple[str, int, Path]:
    """The non-privileged user behind sudo, with uid and home directory."""
    name = environ.get("SUDO_USER") or environ.get("USER") or "root"
    uid = int(environ.get("SUDO_UID") or DEFAULT_UID)
    try:
        home = Path(pwd.getpwnam(name).pw_dir)
    except KeyError:
        home = Path("/home") / name
    return name, uid, home


@dataclass(frozen=True)
class Settings:
    """Inputs for setting up one rootfs"""
    user: str
    uid: int
    rootfs_base_dir: Path
    work_dir: Optional[Path]
    arch: str = DEFAULT_ARCH
    branch: str = DEFAULT_BRANCH
    mirror_url: str = DEFAULT_MIRROR_URL
    apk_tools_url: str = DEFAULT_APK_TOOLS_URL
    extra_repositories: list[str] = field(default_factory=list)
    extra_keys: list[str] = field(default_factory=list)
    packages: list[str] = field(default_factory=lambda: list(DEFAULT_PACKAGES))
    volumes: list[str] = field(default_factory=list)
    shell_name: str = DEFAULT_SHELL_NAME
    workspace: Path = field(default_factory=Path.cwd)
    keys_dir: Path = KEYS_DIR

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Read GitHub-action style ``INPUT_*`` variables."""
        environ = os.environ if environ is None else environ
        user, uid, home = invoking_user(environ)

        def get(name: str, default: str) -> str:
            return environ.get(f"INPUT_{name}") or default

        work_dir = home / "work"
        return cls(
            user=user,
            uid=uid,
            rootfs_base_dir=Path(environ.get("ALPINE_ROOTFS_BASE_DIR") or home / "rootfs"),
            work_dir=work_dir if work_dir.is_dir() else None,
            arch=get("ARCH", DEFAULT_ARCH),
            branch=get("BRANCH", DEFAULT_BRANCH),
            mirror_url=get("MIRROR_URL", DEFAULT_MIRROR_URL).rstrip("/"),
            apk_tools_url=get("APK_TOOLS_URL", DEFAULT_APK_TOOLS_URL),
            extra_repositories=_split(environ.get("INPUT_EXTRA_REPOSITORIES")),
            extra_keys=_split(environ.get("INPUT_EXTRA_KEYS")),
            packages=_split(environ["INPUT_PACKAGES"]) if "INPUT_PACKAGES" in environ else list(DEFAULT_PACKAGES),
            volumes=_split(environ.get("INPUT_VOLUMES")),
            shell_name=get("SHELL_NAME", DEFAULT_SHELL_NAME),
            workspace=Path(environ.get("GITHUB_WORKSPACE") or os.getcwd()),
            keys_dir=Path(environ.get("ALPINE_ROOTFS_KEYS_DIR") or KEYS_DIR),
        )

    def validate(self) -> tuple[list[tuple[Path, str]], list[Path]]:
        """Check every input; returns parsed volumes and resolved key files.

        The apk-tools reference is checked when it is parsed for fetching.
        """
        validate_arch(self.arch)
        validate_branch(self.branch)
        validate_name("shell-name", self.shell_name)
        validate_name("user", self.user)
        extra_keys = validate_extra_keys(self.extra_keys, self.workspace)
        return parse_volumes(self.volumes), extra_keys
