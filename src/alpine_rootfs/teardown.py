"""Tearing down a guest root: evict, unmount deepest first, remove."""
import asyncio
import os
import stat
from pathlib import Path
from typing import Awaitable, Callable, Optional

from alpine_rootfs.errors import MountError, ProcessEvictionError, TeardownIncompleteError
from alpine_rootfs.eviction import ProcessEvictor, PsutilEvictor, evict_processes
from alpine_rootfs.logging import get_logger
from alpine_rootfs.mounts import MountTable, ProcMountTable
from alpine_rootfs.types import StepContext

logger = get_logger(__name__)


def remove_tree(root: Path, mounted: set[Path]) -> list[Path]:
    """Delete ``root`` without descending into mount points or other filesystems.

    Returns the paths that were left in place because they are (or lead to)
    a mount boundary. An empty list means ``root`` itself is gone.
    """
    root_dev = os.lstat(root).st_dev
    skipped: list[Path] = []

    def _remove(directory: Path) -> bool:
        clean = True
        with os.scandir(directory) as entries:
            for entry in entries:
                path = Path(entry.path)
                st = entry.stat(follow_symlinks=False)
                if stat.S_ISDIR(st.st_mode):
                    if path in mounted or st.st_dev != root_dev:
                        skipped.append(path)
                        clean = False
                    elif _remove(path):
                        os.rmdir(path)
                    else:
                        clean = False
                else:
                    os.unlink(path)
        return clean

    if _remove(root):
        os.rmdir(root)
    return skipped


async def unmount_all(
    ctx: StepContext, table: MountTable, root: Path, keep_going: bool
) -> list[MountError]:
    """Unmount everything under ``root``, deepest first.

    With ``keep_going`` False the first failure is raised; otherwise failures
    are collected and every remaining mount is still attempted.
    """
    failures: list[MountError] = []
    for path in table.list(root):
        ctx.logger.info("unmounting", path=str(path))
        try:
            await table.unmount(path)
        except MountError as e:
            e.phase = ctx.phase
            if not keep_going:
                raise
            ctx.logger.warning("unmount_failed", path=str(path), error=str(e))
            failures.append(e)
    return failures


def _remove(ctx: StepContext, table: MountTable, root: Path) -> None:
    ctx.logger.info("removing_rootfs", root=str(root))
    skipped = remove_tree(root, set(table.list(root)))
    if skipped:
        raise MountError(
            f"Left {root} in place: still mounted below it: {', '.join(map(str, skipped))}",
            root,
            phase=ctx.phase,
            details={"skipped": [str(p) for p in skipped]},
        )


async def destroy_rootfs(
    ctx: StepContext,
    root: Path,
    robust: bool = False,
    table: Optional[MountTable] = None,
    evictor: Optional[ProcessEvictor] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Unmount and delete a guest root.

    Best-effort mode aborts the unmount pass on the first failure but still
    removes whatever is not behind a live mount. Robust mode evicts holder
    processes first, attempts every unmount, and refuses to remove anything
    if any step failed.
    """
    table = table or ProcMountTable()
    root = Path(root).resolve()

    if not root.exists():
        ctx.logger.info("rootfs_already_removed", root=str(root))
        return

    if not robust:
        try:
            await unmount_all(ctx, table, root, keep_going=False)
        except MountError:
            try:
                _remove(ctx, table, root)
            except MountError as e:
                ctx.logger.warning("rootfs_partially_removed", root=str(root), error=str(e))
            raise
        _remove(ctx, table, root)
        return

    eviction_error: Optional[ProcessEvictionError] = None
    try:
        await evict_processes(ctx, evictor or PsutilEvictor(), root, sleep=sleep)
    except ProcessEvictionError as e:
        ctx.logger.warning("eviction_incomplete", root=str(root), pids=e.pids)
        eviction_error = e

    failures = await unmount_all(ctx, table, root, keep_going=True)
    if failures or eviction_error:
        error = TeardownIncompleteError(
            root, failures, pids=eviction_error.pids if eviction_error else None, phase=ctx.phase
        )
        ctx.logger.warning("teardown_incomplete", root=str(root), **error.details)
        raise error from eviction_error

    _remove(ctx, table, root)
