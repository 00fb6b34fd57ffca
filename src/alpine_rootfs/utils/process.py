import asyncio
from pathlib import Path
from typing import Mapping, Optional

from alpine_rootfs.logging import get_logger

logger = get_logger(__name__)


async def run_command(
    *args: str | Path,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    capture: bool = True,
) -> tuple[int, bytes, bytes]:
    """
    Run a command asynchronously and return its exit code, stdout, and stderr.

    With ``capture=False`` the child inherits this process's stdio and the
    returned output is empty.

    :param args: Command and arguments to run
    :return: Tuple of (returncode, stdout, stderr)
    """
    argv = [str(a) for a in args]
    logger.debug("cmd_exec", cmd=argv, cwd=str(cwd) if cwd else None)

    pipe = asyncio.subprocess.PIPE if capture else None
    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=pipe,
        stderr=pipe,
    )
    stdout, stderr = await proc.communicate()

    logger.debug("cmd_complete", cmd=argv[0], returncode=proc.returncode)
    return proc.returncode, stdout or b"", stderr or b""


def describe_failure(argv: tuple, returncode: int, stderr: bytes) -> str:
    cmd = " ".join(str(a) for a in argv)
    detail = stderr.decode(errors="replace").strip()
    return f"`{cmd}` failed with code {returncode}" + (f": {detail}" if detail else "")
