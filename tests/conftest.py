import pytest
from pathlib import Path

from alpine_rootfs.errors import MountError
from alpine_rootfs.mounts import is_under, sort_for_unmount
from alpine_rootfs.types import RootfsEnvironment, StepContext


class FakeMountTable:
    """In-memory mount table; records unmount order and what was live at each call."""

    def __init__(self, mounts=(), failing=(), fail_once=()):
        self.mounts = [Path(m) for m in mounts]
        self.failing = {Path(p) for p in failing}
        self.fail_once = {Path(p) for p in fail_once}
        self.unmounted = []
        self.live_at_unmount = {}

    def list(self, prefix):
        return sort_for_unmount(p for p in self.mounts if is_under(p, Path(prefix)))

    async def unmount(self, path):
        path = Path(path)
        self.live_at_unmount[path] = list(self.mounts)
        self.unmounted.append(path)
        if path in self.failing:
            raise MountError(f"umount {path}: target is busy", path)
        if path in self.fail_once:
            self.fail_once.discard(path)
            raise MountError(f"umount {path}: target is busy", path)
        self.mounts.remove(path)


class FakeEvictor:
    """Scripted holder lists, one per call to holders()."""

    def __init__(self, *holder_lists):
        self.holder_lists = list(holder_lists)
        self.calls = []

    def holders(self, root):
        self.calls.append("holders")
        if len(self.holder_lists) > 1:
            return self.holder_lists.pop(0)
        return self.holder_lists[0] if self.holder_lists else []

    def terminate(self, pids):
        self.calls.append(("terminate", list(pids)))

    def kill(self, pids):
        self.calls.append(("kill", list(pids)))


@pytest.fixture
def ctx():
    """Root step context for tests"""
    return StepContext.root("test")


@pytest.fixture
def rootfs_env(tmp_path):
    """A guest root with a minimal directory layout"""
    root = tmp_path / "alpine-v3.15-x86_64"
    (root / "etc" / "apk").mkdir(parents=True)
    (root / "tmp").mkdir()
    (root / "etc" / "apk" / "arch").write_text("x86_64\n")
    (root / "etc" / "apk" / "repositories").write_text(
        "http://dl-cdn.alpinelinux.org/alpine/v3.15/main\n"
        "http://dl-cdn.alpinelinux.org/alpine/v3.15/community\n"
    )
    return RootfsEnvironment(id="test-env-1", root=root, arch="x86_64", branch="v3.15", user="runner")
