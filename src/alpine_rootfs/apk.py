"""Thin async wrapper around the static apk-tools binary."""
import io
import tarfile
from pathlib import Path
from typing import Iterable, Optional, Union

from alpine_rootfs.errors import ProvisioningError
from alpine_rootfs.logging import get_logger
from alpine_rootfs.types import StepContext
from alpine_rootfs.utils.process import describe_failure, run_command

logger = get_logger(__name__)


def _matches(name: str, prefixes: Iterable[str]) -> bool:
    name = name.lstrip("./")
    return any(name == p or name.startswith(p.rstrip("/") + "/") for p in prefixes)


def unpack_apk(package: Union[bytes, Path], dest: Path, members: Iterable[str]) -> list[str]:
    """Extract only the listed paths (files or directory prefixes) from an .apk.

    An .apk is a concatenation of gzipped tar segments (signature, control,
    data), hence ``ignore_zeros``.
    """
    members = list(members)
    fileobj = io.BytesIO(package) if isinstance(package, bytes) else open(package, "rb")
    with fileobj, tarfile.open(fileobj=fileobj, mode="r:gz", ignore_zeros=True) as archive:
        selected = [m for m in archive.getmembers() if _matches(m.name, members)]
        if not selected:
            raise ProvisioningError(
                f"None of {', '.join(members)} found in package",
                details={"members": members},
            )
        archive.extractall(dest, members=selected)

    names = [m.name for m in selected]
    logger.debug("apk_unpacked", dest=str(dest), members=names)
    return names


class ApkTool:
    """The fetched ``apk.static`` binary, run on the host."""

    def __init__(self, binary: Path):
        self.binary = binary

    async def _run(self, ctx: StepContext, *args: str | Path, cwd: Optional[Path] = None) -> bytes:
        argv = (self.binary, *args)
        returncode, stdout, stderr = await run_command(*argv, cwd=cwd)
        if returncode != 0:
            ctx.logger.error("apk_failed", args=[str(a) for a in args], returncode=returncode)
            raise ProvisioningError(describe_failure(argv, returncode, stderr), phase=ctx.phase)
        return stdout

    async def add(
        self,
        ctx: StepContext,
        root: Path,
        packages: Iterable[str],
        arch: str,
        initdb: bool = True,
    ) -> None:
        """Install packages into a guest root."""
        args: list[str | Path] = ["add", "--root", root]
        if initdb:
            args.append("--initdb")
        args += ["--no-progress", "--update-cache", "--arch", arch, *packages]
        await self._run(ctx, *args)

    async def fetch(
        self,
        ctx: StepContext,
        package: str,
        dest: Path,
        keys_dir: Optional[Path] = None,
        repository: Optional[str] = None,
    ) -> Path:
        """Download a package file into ``dest`` without installing it."""
        args: list[str | Path] = ["fetch"]
        if keys_dir:
            args += ["--keys-dir", keys_dir]
        if repository:
            args += ["--repository", repository]
        args += ["--no-progress", "--no-cache", "--output", dest, package]
        await self._run(ctx, *args)

        found = sorted(dest.glob(f"{package}-*.apk"))
        if not found:
            raise ProvisioningError(f"apk fetch produced no file for {package}", phase=ctx.phase)
        return found[-1]

    async def fetch_stdout(self, ctx: StepContext, root: Path, package: str) -> bytes:
        """Fetch a package using the guest's repositories and return its bytes."""
        return await self._run(ctx, "fetch", "--root", root, "--no-progress", "--stdout", package)
