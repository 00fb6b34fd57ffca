import json
import logging
import pytest
import structlog

from alpine_rootfs import logging as rootfs_logging
from alpine_rootfs.logging import (
    CompactJSONRenderer,
    add_timestamp,
    configure_logging,
    get_logger,
    level_filter,
)
from alpine_rootfs.types import StepContext


def test_compact_json_renderer():
    """The phase stays top-level, everything else goes under data"""
    output = CompactJSONRenderer()(None, "info", {
        "timestamp": "2024-01-01T00:00:00+00:00",
        "level": "info",
        "event": "unmounting",
        "path": "/r/proc",
        "phase": "Destroy",
    })
    data = json.loads(output)

    assert data["msg"] == "unmounting"
    assert data["lvl"] == "info"
    assert data["phase"] == "Destroy"
    assert data["data"] == {"path": "/r/proc"}


def test_add_timestamp_keeps_existing():
    assert add_timestamp(None, "info", {"timestamp": "t"}) == {"timestamp": "t"}
    assert "timestamp" in add_timestamp(None, "info", {})


def test_level_filter(monkeypatch):
    monkeypatch.setattr(rootfs_logging, "STDERR_LOG_LEVEL", "WARNING")
    assert level_filter(logging.getLogger("alpine_rootfs"), "error", {"event": "x"}) == {"event": "x"}
    with pytest.raises(structlog.DropEvent):
        level_filter(logging.getLogger("alpine_rootfs"), "info", {"event": "x"})
    with pytest.raises(structlog.DropEvent):
        level_filter(logging.getLogger("aiohttp.client"), "error", {"event": "x"})


def test_configure_logging_sets_level():
    configure_logging("debug")
    assert rootfs_logging.STDERR_LOG_LEVEL == "DEBUG"
    configure_logging()


def test_step_context_binds_phase():
    """Every event logged under a step carries its phase"""
    with structlog.testing.capture_logs() as logs:
        ctx = StepContext.root("setup").step("Bind filesystems into chroot")
        ctx.logger.info("mount_bound", target="/r/dev")

    assert ctx.phase == "Bind filesystems into chroot"
    assert logs[-1]["event"] == "mount_bound"
    assert logs[-1]["phase"] == "Bind filesystems into chroot"
    assert logs[0]["event"] == "step_started"


def test_get_logger():
    assert get_logger("test_module") is not None


def test_compact_json_renderer_without_data():
    data = json.loads(CompactJSONRenderer()(None, "info", {"event": "step_started", "level": "info"}))
    assert "data" not in data
    assert data["phase"] is None
