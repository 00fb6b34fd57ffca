"""QEMU user-mode emulation for foreign guest architectures."""
import platform
import re
import shutil
import tempfile
from pathlib import Path
from typing import NamedTuple, Optional

from alpine_rootfs.apk import ApkTool, unpack_apk
from alpine_rootfs.constants import BINFMT_MISC_DIR, EMULATOR_INSTALL_DIR, KEYS_DIR
from alpine_rootfs.errors import EmulationError, ProvisioningError
from alpine_rootfs.logging import get_logger
from alpine_rootfs.types import EmulationHandler, RegistrationState, StepContext

logger = get_logger(__name__)


class BinfmtDescriptor(NamedTuple):
    """ELF header match rule for binfmt_misc, in kernel escape notation."""
    magic: str
    mask: str


# Keyed by QEMU architecture name.
BINFMT_DESCRIPTORS = {
    "x86_64": BinfmtDescriptor(
        magic=r"\x7fELF\x02\x01\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\x3e\x00",
        mask=r"\xff\xff\xff\xff\xff\xfe\xfe\x00\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff\xff",
    ),
    "i386": BinfmtDescriptor(
        magic=r"\x7fELF\x01\x01\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\x03\x00",
        mask=r"\xff\xff\xff\xff\xff\xfe\xfe\x00\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff\xff",
    ),
    "aarch64": BinfmtDescriptor(
        magic=r"\x7fELF\x02\x01\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\xb7\x00",
        mask=r"\xff\xff\xff\xff\xff\xff\xff\x00\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff\xff",
    ),
    "arm": BinfmtDescriptor(
        magic=r"\x7fELF\x01\x01\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\x28\x00",
        mask=r"\xff\xff\xff\xff\xff\xff\xff\x00\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff\xff",
    ),
    "ppc64le": BinfmtDescriptor(
        magic=r"\x7fELF\x02\x01\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\x15\x00",
        mask=r"\xff\xff\xff\xff\xff\xff\xff\xfc\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff\x00",
    ),
    "riscv64": BinfmtDescriptor(
        magic=r"\x7fELF\x02\x01\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\xf3\x00",
        mask=r"\xff\xff\xff\xff\xff\xff\xff\x00\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff\xff",
    ),
    "s390x": BinfmtDescriptor(
        magic=r"\x7fELF\x02\x02\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x00\x16",
        mask=r"\xff\xff\xff\xff\xff\xff\xff\x00\xff\xff\xff\xff\xff\xff\xff\xff\xff\xfe\xff\xff",
    ),
}


def qemu_arch(arch: str) -> str:
    """Convert an Alpine (or uname) architecture name to the QEMU name."""
    if arch == "x86" or re.fullmatch(r"i[3456]86", arch):
        return "i386"
    if arch == "armhf" or re.fullmatch(r"armv[4-9].*", arch):
        return "arm"
    if arch == "arm64":
        return "aarch64"
    return arch


def host_arch() -> str:
    return platform.machine().lower()


def needs_emulator(target: str, host: Optional[str] = None) -> bool:
    """True if binaries for ``target`` cannot run natively on ``host``."""
    target = qemu_arch(target)
    host = qemu_arch(host or host_arch())

    if target == host:
        return False
    if host == "x86_64" and target == "i386":
        return False
    return True


def registration_line(name: str, interpreter: Path) -> str:
    desc = BINFMT_DESCRIPTORS[name.removeprefix("qemu-")]
    return f":{name}:M::{desc.magic}:{desc.mask}:{interpreter}:F"


def is_registered(name: str, binfmt_dir: Path = BINFMT_MISC_DIR) -> bool:
    return (binfmt_dir / name).exists()


def register_binfmt(name: str, interpreter: Path, binfmt_dir: Path = BINFMT_MISC_DIR) -> None:
    """Install ``interpreter`` into the kernel's binfmt_misc table."""
    register = binfmt_dir / "register"
    if not register.exists():
        raise EmulationError(
            f"binfmt_misc is not mounted at {binfmt_dir}",
            details={"path": str(binfmt_dir)},
        )
    with open(register, "w") as f:
        f.write(registration_line(name, interpreter))


async def install_emulator(
    ctx: StepContext,
    apk: ApkTool,
    name: str,
    mirror_url: str,
    keys_dir: Path = KEYS_DIR,
    install_dir: Path = EMULATOR_INSTALL_DIR,
) -> Path:
    """Fetch a native qemu-user binary from Alpine's repository onto the host."""
    ctx.logger.info("emulator_fetching", emulator=name, repository=f"{mirror_url}/latest-stable/community")

    with tempfile.TemporaryDirectory(prefix="alpine-rootfs-qemu-") as tmpdir:
        tmp = Path(tmpdir)
        package = await apk.fetch(
            ctx,
            name,
            tmp,
            keys_dir=keys_dir,
            repository=f"{mirror_url}/latest-stable/community",
        )
        unpack_apk(package, tmp, [f"usr/bin/{name}"])

        install_dir.mkdir(parents=True, exist_ok=True)
        target = install_dir / name
        shutil.move(str(tmp / "usr" / "bin" / name), str(target))
        target.chmod(0o755)

    ctx.logger.info("emulator_installed", emulator=name, path=str(target))
    return target


async def ensure_emulation(
    ctx: StepContext,
    target_arch: str,
    apk: ApkTool,
    mirror_url: str,
    host: Optional[str] = None,
    keys_dir: Path = KEYS_DIR,
    install_dir: Path = EMULATOR_INSTALL_DIR,
    binfmt_dir: Path = BINFMT_MISC_DIR,
) -> EmulationHandler:
    """Make ``target_arch`` executables runnable on this host. Idempotent."""
    arch = qemu_arch(target_arch)
    name = f"qemu-{arch}"
    binary = install_dir / name

    if not needs_emulator(target_arch, host):
        ctx.logger.debug("emulation_not_needed", arch=target_arch, host=host or host_arch())
        return EmulationHandler(arch=arch, binary_path=binary, state=RegistrationState.NOT_NEEDED)

    if arch not in BINFMT_DESCRIPTORS:
        raise EmulationError(f"No binfmt descriptor for {arch}", phase=ctx.phase, details={"arch": arch})

    if is_registered(name, binfmt_dir):
        ctx.logger.info("emulator_already_registered", emulator=name)
        return EmulationHandler(arch=arch, binary_path=binary, state=RegistrationState.ALREADY_REGISTERED)

    try:
        binary = await install_emulator(ctx, apk, name, mirror_url, keys_dir, install_dir)
        register_binfmt(name, binary, binfmt_dir)
    except EmulationError as e:
        e.phase = ctx.phase
        raise
    except (ProvisioningError, OSError) as e:
        raise EmulationError(
            f"Failed to install {name}: {e}", phase=ctx.phase, details={"emulator": name}
        ) from e

    ctx.logger.info("emulator_registered", emulator=name, interpreter=str(binary))
    return EmulationHandler(arch=arch, binary_path=binary, state=RegistrationState.REGISTERED)
