"""Evicting host processes that hold files under a guest root."""
import asyncio
import os
import signal
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Protocol

import psutil

from alpine_rootfs.constants import EVICTION_ESCALATION_WAIT, EVICTION_GRACE_PERIOD
from alpine_rootfs.errors import ProcessEvictionError
from alpine_rootfs.logging import get_logger
from alpine_rootfs.mounts import is_under
from alpine_rootfs.types import StepContext

logger = get_logger(__name__)


class ProcessEvictor(Protocol):
    """Find and signal processes using a directory tree."""

    def holders(self, root: Path) -> list[int]:
        ...

    def terminate(self, pids: Iterable[int]) -> None:
        ...

    def kill(self, pids: Iterable[int]) -> None:
        ...


def _within(path: str | None, root: Path) -> bool:
    if not path:
        return False
    p = Path(path)
    return p == root or is_under(p, root)


class PsutilEvictor:
    """ProcessEvictor for the local host, excluding the calling process."""

    def __init__(self, exclude: Iterable[int] = ()):
        self.exclude = {os.getpid(), *exclude}

    def holders(self, root: Path) -> list[int]:
        pids = []
        for proc in psutil.process_iter(["pid"]):
            if proc.pid in self.exclude:
                continue
            try:
                paths = [f.path for f in proc.open_files()]
                paths += [proc.cwd(), proc.exe()]
            except (psutil.NoSuchProcess, psutil.ZombieProcess, psutil.AccessDenied):
                continue
            if any(_within(p, root) for p in paths):
                pids.append(proc.pid)
        return pids

    def _signal(self, pids: Iterable[int], sig: int) -> None:
        for pid in pids:
            try:
                psutil.Process(pid).send_signal(sig)
                logger.info("process_signalled", pid=pid, signal=signal.Signals(sig).name)
            except psutil.NoSuchProcess:
                pass

    def terminate(self, pids: Iterable[int]) -> None:
        self._signal(pids, signal.SIGTERM)

    def kill(self, pids: Iterable[int]) -> None:
        self._signal(pids, signal.SIGKILL)


async def evict_processes(
    ctx: StepContext,
    evictor: ProcessEvictor,
    root: Path,
    grace: float = EVICTION_GRACE_PERIOD,
    escalation_wait: float = EVICTION_ESCALATION_WAIT,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """SIGTERM holders, wait, re-check, wait longer, SIGKILL the rest.

    Raises ProcessEvictionError if anything still holds files under ``root``.
    """
    pids = evictor.holders(root)
    if not pids:
        ctx.logger.debug("no_processes_to_evict", root=str(root))
        return

    ctx.logger.info("evicting_processes", root=str(root), pids=pids)
    evictor.terminate(pids)
    await sleep(grace)

    if not (pids := evictor.holders(root)):
        return

    await sleep(escalation_wait)
    if not (pids := evictor.holders(root)):
        return

    ctx.logger.warning("killing_processes", root=str(root), pids=pids)
    evictor.kill(pids)
    await sleep(grace)

    if pids := evictor.holders(root):
        raise ProcessEvictionError(root, pids, phase=ctx.phase)
