from pathlib import Path

from mcp.types import INVALID_PARAMS

from alpine_rootfs.errors import (
    EmulationError,
    MountError,
    ProvisioningError,
    TeardownIncompleteError,
    ValidationError,
)


def test_validation_error_data():
    error = ValidationError("branch", "bad value")
    data = error.to_error_data()

    assert data.code == INVALID_PARAMS
    assert data.message == "Invalid input parameter: branch: bad value"
    assert data.data == {"phase": "validate", "parameter": "branch"}


def test_emulation_error_is_provisioning_error():
    assert isinstance(EmulationError("no binfmt_misc"), ProvisioningError)


def test_teardown_incomplete_names_failed_mounts():
    failures = [MountError("busy", "/r/sys"), MountError("busy", "/r/dev")]
    error = TeardownIncompleteError(Path("/r"), failures, phase="Destroy")

    assert "/r/sys, /r/dev" in str(error)
    assert str(error).endswith("; not removing it")
    assert error.details["failed_mounts"] == ["/r/sys", "/r/dev"]


def test_teardown_incomplete_names_holders():
    error = TeardownIncompleteError(Path("/r"), [], pids=[12, 34])
    assert "12, 34" in str(error)
    assert error.pids == [12, 34]
