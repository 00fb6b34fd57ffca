"""Environment lifecycle management."""
import shlex
import sys
from pathlib import Path
from typing import Dict, Iterable, Optional

from fuuid import b58_fuuid

from alpine_rootfs.apk import ApkTool
from alpine_rootfs.artifacts.fetcher import fetch_artifact, parse_artifact_reference
from alpine_rootfs.bridge import enter
from alpine_rootfs.config import Settings
from alpine_rootfs.constants import GUEST_SETUP_SCRIPT
from alpine_rootfs.emulation import ensure_emulation
from alpine_rootfs.errors import ProvisioningError, ValidationError
from alpine_rootfs.eviction import ProcessEvictor
from alpine_rootfs.logging import get_logger
from alpine_rootfs.mounts import MountTable, bind_standard, bind_volumes
from alpine_rootfs.provisioner import provision
from alpine_rootfs.teardown import destroy_rootfs
from alpine_rootfs.types import RootfsEnvironment, StepContext

logger = get_logger(__name__)

# In-memory environment store
_ENVIRONMENTS: Dict[str, RootfsEnvironment] = {}

ENTRY_SCRIPT = """\
#!/bin/sh
# Runs a command inside {root}.
user={user}
case "$1" in
	-r | --root) user=root; shift;;
esac
ALPINE_ROOTFS_CALLER_PATH="$PATH"
export ALPINE_ROOTFS_CALLER_PATH
if [ "$(id -u)" -eq 0 ]; then
	exec {python} -m alpine_rootfs run --rootfs {root_q} --user "$user" -- "$@"
fi
exec sudo -E {python} -m alpine_rootfs run --rootfs {root_q} --user "$user" -- "$@"
"""


def install_entry_script(env: RootfsEnvironment) -> Path:
    """Write the host-side launcher for the bridge into ``<root>/abin``."""
    env.bin_dir.mkdir(parents=True, exist_ok=True)
    script = env.bin_dir / env.shell_name
    script.write_text(ENTRY_SCRIPT.format(
        root=env.root,
        root_q=shlex.quote(str(env.root)),
        python=shlex.quote(sys.executable),
        user=shlex.quote(env.user),
    ))
    script.chmod(0o755)
    return script


async def run_setup_script(ctx: StepContext, env: RootfsEnvironment, script: str) -> None:
    """Run a shell snippet inside the guest as root; non-zero exit is fatal."""
    path = env.root / GUEST_SETUP_SCRIPT
    path.write_text(script)
    try:
        returncode, _, stderr = await enter(ctx, env, f"/{GUEST_SETUP_SCRIPT}", root=True, cwd="/")
    finally:
        path.unlink(missing_ok=True)

    if returncode != 0:
        raise ProvisioningError(
            f"Setup script failed with code {returncode}",
            phase=ctx.phase,
            details={"root": str(env.root), "stderr": stderr.decode(errors="replace")},
        )


async def install_packages(ctx: StepContext, env: RootfsEnvironment, packages: Iterable[str]) -> None:
    packages = list(packages)
    pkgs = " ".join(shlex.quote(p) for p in packages)
    await run_setup_script(ctx, env, f"echo ▷ Installing {pkgs}\napk add --update-cache {pkgs}\n")
    env.packages.extend(packages)


async def setup_user(ctx: StepContext, env: RootfsEnvironment) -> None:
    """Create the invoking user in the guest and grant passwordless sudo/doas."""
    if env.user == "root":
        return
    user = shlex.quote(env.user)
    await run_setup_script(ctx, env, f"""\
echo '▷ Creating user {env.user} with uid {env.uid}'
adduser -u {env.uid} -G users -s /bin/sh -D {user}

if [ -d /etc/sudoers.d ]; then
	echo '{env.user} ALL=(ALL) NOPASSWD: ALL' > /etc/sudoers.d/root
fi
if [ -d /etc/doas.d ]; then
	echo 'permit nopass keepenv {env.user}' > /etc/doas.d/root.conf
fi
""")


async def create_environment(settings: Settings, ctx: Optional[StepContext] = None) -> RootfsEnvironment:
    """Provision, bind and prepare a new Alpine rootfs."""
    ctx = ctx or StepContext.root("setup")

    volumes, extra_keys = settings.validate()
    ref = parse_artifact_reference(settings.apk_tools_url, algorithms=("sha256",))

    step = ctx.step("Download static apk-tools")
    apk_path = await fetch_artifact(ref, step)
    apk_path.chmod(0o755)
    apk = ApkTool(apk_path)

    step = ctx.step(f"Set up emulation for {settings.arch}")
    await ensure_emulation(step, settings.arch, apk, settings.mirror_url, keys_dir=settings.keys_dir)

    step = ctx.step(f"Initialize Alpine Linux {settings.branch} ({settings.arch})")
    env = await provision(
        step,
        apk,
        env_id=b58_fuuid(),
        base_dir=settings.rootfs_base_dir,
        arch=settings.arch,
        branch=settings.branch,
        mirror_url=settings.mirror_url,
        extra_repositories=settings.extra_repositories,
        extra_keys=extra_keys,
        keys_dir=settings.keys_dir,
        user=settings.user,
        uid=settings.uid,
        shell_name=settings.shell_name,
    )
    # Registered now so a failure below can still be torn down by id.
    _ENVIRONMENTS[env.id] = env

    step = ctx.step("Bind filesystems into chroot")
    await bind_standard(step, env, settings.work_dir)
    await bind_volumes(step, env, volumes)

    install_entry_script(env)

    if settings.packages:
        await install_packages(ctx.step("Install packages"), env, settings.packages)

    await setup_user(ctx.step(f"Set up user {env.user}"), env)

    ctx.logger.info("environment_ready", env_id=env.id, root=str(env.root), abin=str(env.bin_dir))
    return env


def attach_environment(root: Path, user: Optional[str] = None) -> RootfsEnvironment:
    """Rebuild a RootfsEnvironment from a rootfs created by an earlier process."""
    root = Path(root).resolve()
    if not root.is_dir():
        raise ValidationError("rootfs", f"Not a directory: {root}")

    arch_file = root / "etc" / "apk" / "arch"
    arch = arch_file.read_text().strip() if arch_file.is_file() else "unknown"

    branch = "unknown"
    repos = root / "etc" / "apk" / "repositories"
    if repos.is_file():
        lines = repos.read_text().split()
        if lines and lines[0].count("/") >= 2:
            branch = lines[0].rstrip("/").split("/")[-2]

    env = RootfsEnvironment(id=root.name, root=root, arch=arch, branch=branch, user=user or "root")
    _ENVIRONMENTS.setdefault(env.id, env)
    return _ENVIRONMENTS[env.id]


def get_environment(env_id: str) -> Optional[RootfsEnvironment]:
    """Get environment by ID."""
    return _ENVIRONMENTS.get(env_id)


def list_environments() -> list[RootfsEnvironment]:
    return list(_ENVIRONMENTS.values())


async def destroy_environment(
    env: RootfsEnvironment,
    robust: bool = False,
    ctx: Optional[StepContext] = None,
    table: Optional[MountTable] = None,
    evictor: Optional[ProcessEvictor] = None,
) -> None:
    """Tear down an environment; it stays registered if teardown fails."""
    ctx = ctx or StepContext.root("destroy")
    await destroy_rootfs(ctx.step(f"Destroy {env.root}"), env.root, robust=robust, table=table, evictor=evictor)
    env.bindings.clear()
    _ENVIRONMENTS.pop(env.id, None)
