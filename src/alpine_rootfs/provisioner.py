"""Creating and populating an Alpine guest root."""
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from alpine_rootfs.apk import ApkTool, unpack_apk
from alpine_rootfs.constants import (
    ALPINE_BASE_PKGS,
    HOST_RESOLV_CONF,
    KEYS_DIR,
    RELEASE_FALLBACK_PKG,
    RELEASE_PKG,
    RELEASE_PKG_MIN_VERSION,
)
from alpine_rootfs.errors import ProvisioningError
from alpine_rootfs.logging import get_logger
from alpine_rootfs.types import RootfsEnvironment, StepContext
from alpine_rootfs.validation import branch_version

logger = get_logger(__name__)


def rootfs_dir_name(branch: str, arch: str) -> str:
    return f"alpine-{branch.removesuffix('-stable')}-{arch}"


def allocate_rootfs_dir(base_dir: Path, branch: str, arch: str) -> Path:
    """Create the canonical rootfs dir, or a fresh sibling if it's taken."""
    base_dir.mkdir(parents=True, exist_ok=True)
    base_dir = base_dir.resolve()
    canonical = base_dir / rootfs_dir_name(branch, arch)
    try:
        canonical.mkdir()
        return canonical
    except FileExistsError:
        path = Path(tempfile.mkdtemp(prefix=f"{canonical.name}-", dir=base_dir))
        path.chmod(0o755)
        return path


def write_repositories(
    root: Path, mirror_url: str, branch: str, extra_repositories: Iterable[str] = ()
) -> Path:
    repos = [
        f"{mirror_url}/{branch}/main",
        f"{mirror_url}/{branch}/community",
        *(r for r in extra_repositories if r.strip()),
    ]
    path = root / "etc" / "apk" / "repositories"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(repos) + "\n")
    logger.info("repositories_written", path=str(path), repositories=repos)
    return path


def install_keys(root: Path, keys_dir: Path = KEYS_DIR, extra_keys: Iterable[Path] = ()) -> Path:
    """Copy bundled and caller-supplied signing keys into /etc/apk/keys."""
    dest = root / "etc" / "apk" / "keys"
    dest.mkdir(parents=True, exist_ok=True)
    for key in sorted(keys_dir.glob("*.pub")):
        shutil.copy2(key, dest / key.name)
    for key in extra_keys:
        shutil.copy2(key, dest / key.name)
    return dest


def copy_resolv_conf(root: Path, source: Path = HOST_RESOLV_CONF) -> None:
    # Contents, not the file: the host's resolv.conf is often a symlink.
    dest = root / "etc" / "resolv.conf"
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(source.read_bytes())


def release_package(branch: str) -> Optional[str]:
    """alpine-release, unless the branch predates it."""
    version = branch_version(branch)
    if version is not None and version < RELEASE_PKG_MIN_VERSION:
        return None
    return RELEASE_PKG


async def install_base(ctx: StepContext, apk: ApkTool, root: Path, arch: str, branch: str) -> list[str]:
    """Initialize the package database and install the base system."""
    release_pkg = release_package(branch)
    packages = ALPINE_BASE_PKGS + ([release_pkg] if release_pkg else [])

    ctx.logger.info("installing_base_packages", root=str(root), packages=packages)
    await apk.add(ctx, root, packages, arch=arch, initdb=True)

    if not release_pkg:
        # alpine-base carries /etc/os-release, /etc/alpine-release and
        # /etc/issue; its dependencies (openrc etc.) are not wanted.
        ctx.logger.info("unpacking_release_files", package=RELEASE_FALLBACK_PKG)
        data = await apk.fetch_stdout(ctx, root, RELEASE_FALLBACK_PKG)
        try:
            unpack_apk(data, root, ["etc"])
        except ProvisioningError as e:
            e.phase = ctx.phase
            raise

    return packages


async def provision(
    ctx: StepContext,
    apk: ApkTool,
    env_id: str,
    base_dir: Path,
    arch: str,
    branch: str,
    mirror_url: str,
    extra_repositories: Iterable[str] = (),
    extra_keys: Iterable[Path] = (),
    keys_dir: Path = KEYS_DIR,
    user: str = "root",
    uid: int = 1000,
    shell_name: str = "alpine.sh",
    resolv_conf: Path = HOST_RESOLV_CONF,
) -> RootfsEnvironment:
    """Allocate a rootfs directory and install a minimal Alpine into it.

    On failure the directory is left in place for inspection or teardown.
    """
    try:
        root = allocate_rootfs_dir(base_dir, branch, arch)
    except OSError as e:
        raise ProvisioningError(
            f"Failed to create rootfs directory under {base_dir}: {e}",
            phase=ctx.phase,
            details={"path": str(base_dir)},
        ) from e
    ctx.logger.info("rootfs_allocated", root=str(root))

    try:
        write_repositories(root, mirror_url, branch, extra_repositories)
        install_keys(root, keys_dir, extra_keys)
        copy_resolv_conf(root, resolv_conf)
    except OSError as e:
        raise ProvisioningError(
            f"Failed to prepare {root}: {e}", phase=ctx.phase, details={"path": str(root)}
        ) from e

    packages = await install_base(ctx, apk, root, arch, branch)

    return RootfsEnvironment(
        id=env_id,
        root=root,
        arch=arch,
        branch=branch,
        user=user,
        uid=uid,
        shell_name=shell_name,
        packages=list(packages),
    )
