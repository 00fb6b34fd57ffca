import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from alpine_rootfs.emulation import (
    ensure_emulation,
    is_registered,
    needs_emulator,
    qemu_arch,
    register_binfmt,
    registration_line,
)
from alpine_rootfs.errors import EmulationError, ProvisioningError
from alpine_rootfs.types import RegistrationState


@pytest.mark.parametrize(
    "arch,expected",
    [
        ("x86", "i386"),
        ("i686", "i386"),
        ("armhf", "arm"),
        ("armv7", "arm"),
        ("armv7l", "arm"),
        ("arm64", "aarch64"),
        ("aarch64", "aarch64"),
        ("x86_64", "x86_64"),
        ("ppc64le", "ppc64le"),
    ],
)
def test_qemu_arch(arch, expected):
    assert qemu_arch(arch) == expected


def test_needs_emulator():
    assert not needs_emulator("x86_64", "x86_64")
    assert not needs_emulator("x86", "x86_64")
    assert not needs_emulator("armv7", "armv7l")
    assert needs_emulator("aarch64", "x86_64")
    assert needs_emulator("x86_64", "aarch64")


def test_registration_line():
    line = registration_line("qemu-aarch64", Path("/usr/local/bin/qemu-aarch64"))
    assert line.startswith(r":qemu-aarch64:M::\x7fELF\x02")
    assert line.endswith(":/usr/local/bin/qemu-aarch64:F")


def test_register_binfmt(tmp_path):
    (tmp_path / "register").write_text("")
    register_binfmt("qemu-riscv64", Path("/usr/local/bin/qemu-riscv64"), tmp_path)
    assert (tmp_path / "register").read_text().startswith(":qemu-riscv64:M::")


def test_register_binfmt_not_mounted(tmp_path):
    with pytest.raises(EmulationError):
        register_binfmt("qemu-arm", Path("/usr/local/bin/qemu-arm"), tmp_path)


def test_is_registered(tmp_path):
    assert not is_registered("qemu-arm", tmp_path)
    (tmp_path / "qemu-arm").write_text("enabled\n")
    assert is_registered("qemu-arm", tmp_path)


@pytest.mark.asyncio
async def test_ensure_emulation_native(ctx, tmp_path):
    apk = MagicMock()
    handler = await ensure_emulation(ctx, "x86_64", apk, "http://mirror", host="x86_64", binfmt_dir=tmp_path)
    assert handler.state == RegistrationState.NOT_NEEDED
    apk.fetch.assert_not_called()


@pytest.mark.asyncio
async def test_ensure_emulation_already_registered(ctx, tmp_path):
    """An existing registration is left alone and nothing is fetched"""
    (tmp_path / "qemu-aarch64").write_text("enabled\n")
    apk = MagicMock()
    handler = await ensure_emulation(ctx, "aarch64", apk, "http://mirror", host="x86_64", binfmt_dir=tmp_path)
    assert handler.state == RegistrationState.ALREADY_REGISTERED
    apk.fetch.assert_not_called()


@pytest.mark.asyncio
async def test_ensure_emulation_installs_and_registers(ctx, tmp_path):
    binfmt = tmp_path / "binfmt_misc"
    binfmt.mkdir()
    (binfmt / "register").write_text("")
    install_dir = tmp_path / "bin"

    apk = MagicMock()
    apk.fetch = AsyncMock(return_value=tmp_path / "qemu-aarch64.apk")

    def fake_unpack(package, dest, members):
        target = dest / members[0]
        target.parent.mkdir(parents=True)
        target.write_bytes(b"\x7fELF")
        return members

    with patch("alpine_rootfs.emulation.unpack_apk", side_effect=fake_unpack):
        handler = await ensure_emulation(
            ctx, "aarch64", apk, "http://mirror",
            host="x86_64", install_dir=install_dir, binfmt_dir=binfmt,
        )

    assert handler.state == RegistrationState.REGISTERED
    assert handler.binary_path == install_dir / "qemu-aarch64"
    assert handler.binary_path.stat().st_mode & 0o777 == 0o755
    assert apk.fetch.await_args.kwargs["repository"] == "http://mirror/latest-stable/community"
    assert f":{install_dir}/qemu-aarch64:F" in (binfmt / "register").read_text()


@pytest.mark.asyncio
async def test_ensure_emulation_fetch_failure(ctx, tmp_path):
    apk = MagicMock()
    apk.fetch = AsyncMock(side_effect=ProvisioningError("no such package"))

    with pytest.raises(EmulationError) as exc_info:
        await ensure_emulation(
            ctx.step("Set up emulation for s390x"), "s390x", apk, "http://mirror",
            host="x86_64", install_dir=tmp_path, binfmt_dir=tmp_path,
        )
    assert exc_info.value.phase == "Set up emulation for s390x"
