"""Running commands inside a guest root with the caller's environment."""
import os
import re
import shlex
from pathlib import Path
from typing import Mapping, Optional, Sequence

from alpine_rootfs.constants import GUEST_SNAPSHOT_PATH
from alpine_rootfs.errors import ProvisioningError
from alpine_rootfs.logging import get_logger
from alpine_rootfs.types import EnvironmentSnapshot, RootfsEnvironment, StepContext
from alpine_rootfs.utils.process import run_command
from alpine_rootfs.validation import validate_name

logger = get_logger(__name__)

ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def capture_snapshot(
    environ: Optional[Mapping[str, str]] = None, cwd: Optional[str] = None
) -> EnvironmentSnapshot:
    return EnvironmentSnapshot(
        variables=dict(os.environ if environ is None else environ),
        cwd=cwd or os.getcwd(),
    )


def render_snapshot(snapshot: EnvironmentSnapshot) -> str:
    """Shell script that re-exports the captured variables."""
    lines = [
        f"export {name}={shlex.quote(value)}"
        for name, value in snapshot.variables.items()
        if ENV_NAME_RE.match(name)
    ]
    return "\n".join(lines) + "\n"


def write_snapshot(env: RootfsEnvironment, snapshot: EnvironmentSnapshot) -> Path:
    path = env.snapshot_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_snapshot(snapshot))
    path.chmod(0o644)
    return path


def guest_working_dir(env: RootfsEnvironment, cwd: str) -> str:
    """The caller's directory as seen from inside the guest.

    Host paths below the rootfs lose the rootfs prefix; any other absolute
    path is kept as-is, since bound directories keep their host path.
    """
    path = Path(os.path.normpath(cwd))
    try:
        return str(Path("/") / path.relative_to(env.root))
    except ValueError:
        return str(path)


def build_command(
    env: RootfsEnvironment, user: str, workdir: str, command: str, args: Sequence[str]
) -> list[str]:
    # Staying at / when workdir doesn't exist in the guest is intended.
    # su -l sources /etc/profile first; the snapshot then overrides it.
    inner = f'. /{GUEST_SNAPSHOT_PATH}; cd {shlex.quote(workdir)} 2>/dev/null; exec "$@"'
    return [
        "chroot", str(env.root),
        "/bin/su", "-l", user, "-c", inner, "sh",
        "/bin/sh", "-eo", "pipefail", command, *args,
    ]


async def enter(
    ctx: StepContext,
    env: RootfsEnvironment,
    command: str,
    args: Sequence[str] = (),
    user: Optional[str] = None,
    root: bool = False,
    environ: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    capture: bool = False,
) -> tuple[int, bytes, bytes]:
    """Run ``/bin/sh -eo pipefail command args`` in the guest as ``user``.

    The command's exit status is returned, never raised.
    """
    user = "root" if root else validate_name("user", user or env.user)
    snapshot = capture_snapshot(environ, cwd)
    workdir = guest_working_dir(env, snapshot.cwd)

    if not env.root.is_dir():
        raise ProvisioningError(f"Rootfs does not exist: {env.root}", phase=ctx.phase, details={"path": str(env.root)})

    write_snapshot(env, snapshot)
    argv = build_command(env, user, workdir, command, args)
    ctx.logger.info("guest_command", user=user, command=command, args=list(args), workdir=workdir)
    try:
        returncode, stdout, stderr = await run_command(*argv, capture=capture)
    finally:
        env.snapshot_path.unlink(missing_ok=True)

    ctx.logger.info("guest_command_complete", command=command, returncode=returncode)
    return returncode, stdout, stderr
