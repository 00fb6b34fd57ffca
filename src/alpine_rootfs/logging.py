"""Structured logging configuration."""
import datetime
import json
import logging
import sys
from typing import Any, List

import structlog
from structlog.types import EventDict, Processor

STDERR_LOG_LEVEL = "INFO"
# Chatty third-party loggers kept off the JSON stream.
IGNORED_LOGGERS = ["aiohttp", "asyncio"]


def add_timestamp(_, __, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("timestamp", datetime.datetime.now(datetime.timezone.utc).isoformat())
    return event_dict


def level_filter(logger: Any, name: str, event_dict: EventDict) -> EventDict:
    """Drop events below STDERR_LOG_LEVEL or from an ignored logger."""
    logger_name = getattr(logger, "name", "") or ""
    if logger_name.split(".")[0] in IGNORED_LOGGERS:
        raise structlog.DropEvent
    if getattr(logging, name.upper(), logging.NOTSET) < getattr(logging, STDERR_LOG_LEVEL):
        raise structlog.DropEvent
    return event_dict


class CompactJSONRenderer:
    """One JSON object per line: ts, lvl, phase, msg, then the event data."""

    def __call__(self, _: Any, __: str, event_dict: EventDict) -> str:
        items = {
            "ts": event_dict.pop("timestamp", None),
            "lvl": event_dict.pop("level", "???"),
            "phase": event_dict.pop("phase", None),
            "msg": event_dict.pop("event", ""),
        }
        if event_dict:
            items["data"] = event_dict
        return json.dumps(items, separators=(",", ":"), default=str)


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog on top of stdlib logging.

    A TTY stderr gets compact JSON lines; anything else (CI logs, pipes)
    gets plain console output.
    """
    global STDERR_LOG_LEVEL
    STDERR_LOG_LEVEL = level.upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, STDERR_LOG_LEVEL),
    )

    if sys.stderr.isatty():
        processors: List[Processor] = [
            level_filter,
            structlog.stdlib.add_log_level,
            add_timestamp,
            CompactJSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
