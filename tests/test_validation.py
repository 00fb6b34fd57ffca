import pytest
from pathlib import Path

from alpine_rootfs.errors import ValidationError
from alpine_rootfs.validation import (
    branch_version,
    parse_volumes,
    validate_arch,
    validate_branch,
    validate_extra_keys,
    validate_name,
)


@pytest.mark.parametrize("arch", ["x86_64", "x86", "aarch64", "armhf", "armv7", "ppc64le", "riscv64", "s390x"])
def test_validate_arch(arch):
    assert validate_arch(arch) == arch


def test_validate_arch_rejects():
    with pytest.raises(ValidationError) as exc_info:
        validate_arch("mips")
    assert exc_info.value.parameter == "arch"
    assert exc_info.value.phase == "validate"


@pytest.mark.parametrize("branch", ["edge", "latest-stable", "v3.15", "v3.9", "v10.12"])
def test_validate_branch(branch):
    assert validate_branch(branch) == branch


@pytest.mark.parametrize("branch", ["3.15", "v3", "v3.x", "stable", "v3.15.1"])
def test_validate_branch_rejects(branch):
    with pytest.raises(ValidationError):
        validate_branch(branch)


def test_branch_version():
    assert branch_version("v3.17") == (3, 17)
    assert branch_version("edge") is None


@pytest.mark.parametrize("name,ok", [("alpine.sh", True), ("runner", True), ("1abc", False), ("a b", False), ("", False)])
def test_validate_name(name, ok):
    if ok:
        assert validate_name("shell-name", name) == name
    else:
        with pytest.raises(ValidationError):
            validate_name("shell-name", name)


def test_validate_extra_keys(tmp_path):
    (tmp_path / "keys").mkdir()
    (tmp_path / "keys" / "custom.rsa.pub").write_text("key")

    assert validate_extra_keys(["keys/custom.rsa.pub"], tmp_path) == [tmp_path / "keys" / "custom.rsa.pub"]
    with pytest.raises(ValidationError) as exc_info:
        validate_extra_keys(["keys/missing.pub"], tmp_path)
    assert exc_info.value.parameter == "extra-keys"


def test_parse_volumes():
    assert parse_volumes(["/src:/mnt/src", "  ", "/data:/data"]) == [
        (Path("/src"), "/mnt/src"),
        (Path("/data"), "/data"),
    ]


@pytest.mark.parametrize(
    "volume",
    ["/src", ":/dst", "/src:", "/src:relative", "/src:/../../../etc", "/src:/mnt/../../etc", "/src:/", "/src://", "/src:/./"],
)
def test_parse_volumes_rejects(volume):
    with pytest.raises(ValidationError):
        parse_volumes([volume])


def test_parse_volumes_normalizes_guest_path():
    assert parse_volumes(["/src:/mnt//data/./"]) == [(Path("/src"), "/mnt/data")]
