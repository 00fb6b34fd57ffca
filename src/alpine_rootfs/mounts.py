"""Bind mounts between the host and a guest root."""
import os
import re
from pathlib import Path
from typing import Iterable, Optional, Protocol

from alpine_rootfs.constants import HOST_RUN_SHM, HOST_SHM, MOUNTINFO_PATH
from alpine_rootfs.errors import MountError
from alpine_rootfs.logging import get_logger
from alpine_rootfs.types import MountBinding, Propagation, RootfsEnvironment, StepContext
from alpine_rootfs.utils.process import describe_failure, run_command

logger = get_logger(__name__)

OCTAL_ESCAPE_RE = re.compile(r"\\([0-7]{3})")


class MountTable(Protocol):
    """The host's mount table, as seen by teardown."""

    def list(self, prefix: Path) -> list[Path]:
        """Mount points strictly under ``prefix``, deepest first."""
        ...

    async def unmount(self, path: Path) -> None:
        """Force-unmount ``path``; raises MountError on failure."""
        ...


def unescape_mount_path(path: str) -> str:
    """Decode the octal escapes (e.g. ``\\040``) used in mountinfo."""
    return OCTAL_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 8)), path)


def is_under(path: Path, prefix: Path) -> bool:
    """True if ``path`` is strictly below ``prefix``, by whole path components."""
    return path != prefix and path.parts[: len(prefix.parts)] == prefix.parts


def sort_for_unmount(paths: Iterable[Path]) -> list[Path]:
    """Deepest mount point first; nested mounts come before their parents."""
    return sorted(paths, key=lambda p: (len(p.parts), str(p)), reverse=True)


class ProcMountTable:
    """Mount table backed by /proc/self/mountinfo and umount(8)."""

    def __init__(self, mountinfo: Path = MOUNTINFO_PATH):
        self.mountinfo = mountinfo

    def mount_points(self) -> list[Path]:
        points = []
        for line in self.mountinfo.read_text(errors="replace").splitlines():
            fields = line.split()
            if len(fields) < 5:
                continue
            points.append(Path(os.path.normpath(unescape_mount_path(fields[4]))))
        return points

    def list(self, prefix: Path) -> list[Path]:
        prefix = Path(prefix).resolve()
        return sort_for_unmount(p for p in self.mount_points() if is_under(p, prefix))

    async def unmount(self, path: Path) -> None:
        argv = ("umount", "-fn", path)
        returncode, _, stderr = await run_command(*argv)
        if returncode != 0:
            raise MountError(describe_failure(argv, returncode, stderr), path)


async def _mount(ctx: StepContext, target: Path, *args: str | Path) -> None:
    argv = ("mount", *args)
    returncode, _, stderr = await run_command(*argv)
    if returncode != 0:
        ctx.logger.error("mount_failed", target=str(target), returncode=returncode)
        raise MountError(describe_failure(argv, returncode, stderr), target, phase=ctx.phase)


async def bind(
    ctx: StepContext,
    env: RootfsEnvironment,
    source: Path,
    guest_target: str,
    propagation: Propagation = Propagation.PRIVATE,
) -> MountBinding:
    """Recursively bind ``source`` at ``guest_target`` inside the guest root."""
    target = env.guest_path(guest_target).resolve()
    if not is_under(target, env.root.resolve()):
        raise MountError(
            f"Bind target {guest_target} is not inside {env.root}", target, phase=ctx.phase
        )
    target.mkdir(parents=True, exist_ok=True)

    await _mount(ctx, target, "--rbind", source, target)
    await _mount(ctx, target, f"--make-r{propagation.name.lower()}", target)

    binding = MountBinding(
        source=Path(source),
        guest_target="/" + guest_target.lstrip("/"),
        target=target,
        propagation=propagation,
    )
    env.bindings.append(binding)
    ctx.logger.info("mount_bound", source=str(source), target=str(target))
    return binding


async def mount_proc(ctx: StepContext, env: RootfsEnvironment) -> MountBinding:
    target = env.guest_path("proc")
    target.mkdir(parents=True, exist_ok=True)
    await _mount(ctx, target, "-t", "proc", "none", target)

    binding = MountBinding(source=Path("none"), guest_target="/proc", target=target, fstype="proc")
    env.bindings.append(binding)
    ctx.logger.info("mount_bound", source="proc", target=str(target))
    return binding


def shm_needs_bind(shm: Path = HOST_SHM, run_shm: Path = HOST_RUN_SHM) -> bool:
    """Some hosts symlink /dev/shm to /run/shm, which /dev alone won't carry."""
    return shm.is_symlink() and run_shm.is_dir()


async def bind_standard(
    ctx: StepContext,
    env: RootfsEnvironment,
    work_dir: Optional[Path] = None,
    bind_run_shm: Optional[bool] = None,
) -> list[MountBinding]:
    """Mount proc, dev, sys, the work directory and, if needed, /run/shm."""
    bindings = [
        await mount_proc(ctx, env),
        await bind(ctx, env, Path("/dev"), "dev"),
        await bind(ctx, env, Path("/sys"), "sys"),
    ]
    if work_dir is not None:
        bindings.append(await bind(ctx, env, work_dir, str(work_dir)))

    if bind_run_shm is None:
        bind_run_shm = shm_needs_bind()
    if bind_run_shm:
        bindings.append(await bind(ctx, env, HOST_RUN_SHM, str(HOST_RUN_SHM)))

    return bindings


async def bind_volumes(
    ctx: StepContext, env: RootfsEnvironment, volumes: Iterable[tuple[Path, str]]
) -> list[MountBinding]:
    """Bind caller-specified ``(host, guest)`` pairs in the order given."""
    return [await bind(ctx, env, src, dst) for src, dst in volumes]
