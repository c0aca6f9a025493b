"""Structured logging configuration for BibleForge.

Console events go through Rich on stderr at a level set by ``-v``. With
``--log``, every event is also appended to ``{project}/logs/debug.jsonl``
as one JSON object per line. Each line carries the ``run_id`` and
``phase`` it was emitted under (``null`` outside a run or phase), so a
single run can be filtered out of a shared log file.
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from pathlib import Path

    from structlog.typing import Processor

_configured = False
_file_handler: logging.FileHandler | None = None

# Libraries whose DEBUG output drowns out pipeline events
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "langchain",
    "langchain_core",
    "asyncio",
)

# Always present in JSONL entries, taken from structlog contextvars when unset
CORRELATION_KEYS = ("run_id", "phase")


class JSONLFileHandler(logging.FileHandler):
    """File handler that writes one JSON object per log record.

    Entries start with ``timestamp``, ``level``, ``logger``, ``event``,
    ``run_id`` and ``phase``; the remaining event fields follow. An
    attached exception is rendered into ``exception``.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.build_entry(record), default=str) + "\n"
            # None once the handler is closed
            if self.stream:
                self.stream.write(line)
                self.stream.flush()
        except Exception:
            self.handleError(record)

    def build_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        """Shape ``record`` into the JSONL entry written for it."""
        # structlog hands the event dict over via record.msg
        if isinstance(record.msg, dict):
            fields = dict(record.msg)
        else:
            fields = {"event": record.getMessage()}
        fields.pop("level", None)
        exc = fields.pop("exc_info", None)

        entry: dict[str, Any] = {
            "timestamp": fields.pop("timestamp", None) or datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": fields.pop("event", ""),
        }
        bound = structlog.contextvars.get_contextvars()
        for key in CORRELATION_KEYS:
            entry[key] = fields.pop(key, bound.get(key))
        entry.update(fields)

        if exc is True:
            exc = sys.exc_info()[1]
        if exc is None and record.exc_info:
            exc = record.exc_info[1]
        if isinstance(exc, BaseException):
            entry["exception"] = "".join(traceback.format_exception(exc)).rstrip()
        return entry


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    project_path: Path | None = None,
) -> None:
    """Configure logging for BibleForge.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG
        log_to_file: If True, also append every event to {project_path}/logs/debug.jsonl.
        project_path: Project directory for file logging. Required if log_to_file=True.

    Raises:
        ValueError: If log_to_file=True but project_path is not provided.
    """
    global _configured, _file_handler

    if log_to_file and project_path is None:
        raise ValueError("project_path is required when log_to_file=True")

    close_file_logging()

    levels = {0: logging.WARNING, 1: logging.INFO}
    console_handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
        level=levels.get(verbosity, logging.DEBUG),
    )
    handlers: list[logging.Handler] = [console_handler]

    if log_to_file and project_path:
        logs_dir = project_path / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        _file_handler = JSONLFileHandler(str(logs_dir / "debug.jsonl"), mode="a")
        _file_handler.setLevel(logging.DEBUG)
        handlers.append(_file_handler)

    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Return a structlog logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def close_file_logging() -> None:
    """Close the JSONL handler, if one is open."""
    global _file_handler
    if _file_handler:
        _file_handler.close()
        _file_handler = None
