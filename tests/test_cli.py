import pytest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from alpine_rootfs import environment
from alpine_rootfs.cli import _main, build_parser, report_error, write_action_outputs
from alpine_rootfs.errors import MountError, ValidationError


@pytest.fixture(autouse=True)
def clear_registry():
    environment._ENVIRONMENTS.clear()
    yield
    environment._ENVIRONMENTS.clear()


def test_parser_run_keeps_command_arguments():
    args = build_parser().parse_args(
        ["run", "--rootfs", "/r", "--user", "runner", "--root", "script.sh", "-x", "--flag"]
    )
    assert args.rootfs == Path("/r")
    assert args.root
    assert args.command == "script.sh"
    assert args.args == ["-x", "--flag"]


def test_report_error_plain(monkeypatch, capsys):
    monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
    report_error(MountError("umount failed", "/r/sys", phase="Destroy"))
    assert capsys.readouterr().err == "error: [Destroy] umount failed (path: /r/sys)\n"


def test_report_error_github_actions(monkeypatch, capsys):
    """Errors become workflow annotations naming the failing step"""
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    report_error(ValidationError("arch", "bad"))
    assert capsys.readouterr().err.startswith("::error title=alpine-rootfs: validate::Invalid input parameter: arch")


def test_write_action_outputs(monkeypatch, tmp_path):
    monkeypatch.setenv("GITHUB_OUTPUT", str(tmp_path / "output"))
    monkeypatch.setenv("GITHUB_PATH", str(tmp_path / "path"))

    write_action_outputs(Path("/r"), Path("/r/abin"))

    assert (tmp_path / "output").read_text() == "root-path=/r\n"
    assert (tmp_path / "path").read_text() == "/r/abin\n"


@pytest.mark.asyncio
async def test_run_restores_caller_path(monkeypatch, rootfs_env):
    monkeypatch.setenv("ALPINE_ROOTFS_CALLER_PATH", "/caller/bin")
    monkeypatch.setenv("PATH", "/sudo/bin")
    args = build_parser().parse_args(["run", "--rootfs", str(rootfs_env.root), "--user", "runner", "script.sh"])

    with patch("alpine_rootfs.cli.enter", new_callable=AsyncMock, return_value=(7, b"", b"")) as enter:
        assert await _main(args) == 7

    environ = enter.await_args.kwargs["environ"]
    assert environ["PATH"] == "/caller/bin"
    assert "ALPINE_ROOTFS_CALLER_PATH" not in environ


@pytest.mark.asyncio
async def test_main_reports_rootfs_errors(tmp_path, capsys):
    args = build_parser().parse_args(["destroy", "--rootfs", str(tmp_path / "missing")])
    assert await _main(args) == 1
    assert "rootfs" in capsys.readouterr().err


def test_parser_run_passes_shell_options_after_separator():
    """The launcher's `-- "$@"` lets sh options such as -c through"""
    args = build_parser().parse_args(
        ["run", "--rootfs", "/r", "--user", "runner", "--", "-c", "cat /etc/alpine-release"]
    )
    assert not args.root
    assert args.command == "-c"
    assert args.args == ["cat /etc/alpine-release"]
