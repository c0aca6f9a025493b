"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest
import structlog
from rich.logging import RichHandler

from bibleforge.observability import logging as log_module
from bibleforge.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
)
from bibleforge.observability.tracing import phase_context, run_context

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Close any file handler a test opened and reconfigure defaults."""
    yield
    close_file_logging()
    configure_logging()


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_default_root_level_is_warning(self) -> None:
        configure_logging()

        assert logging.getLogger().level == logging.WARNING
        assert log_module._configured is True

    @pytest.mark.parametrize("verbosity", [1, 2, 3])
    def test_verbose_root_level_is_debug(self, verbosity: int) -> None:
        configure_logging(verbosity=verbosity)

        assert logging.getLogger().level == logging.DEBUG

    def test_console_handler_level_follows_verbosity(self) -> None:
        configure_logging(verbosity=1)

        handlers = [h for h in logging.getLogger().handlers if isinstance(h, RichHandler)]
        assert [h.level for h in handlers] == [logging.INFO]

    def test_noisy_loggers_suppressed(self) -> None:
        configure_logging(verbosity=2)

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("langchain_core").level == logging.WARNING

    def test_file_logging_requires_project_path(self) -> None:
        with pytest.raises(ValueError, match="project_path is required"):
            configure_logging(log_to_file=True)

    def test_file_logging_creates_logs_dir(self, tmp_path: Path) -> None:
        configure_logging(log_to_file=True, project_path=tmp_path)

        assert (tmp_path / "logs").is_dir()
        assert logging.getLogger().level == logging.DEBUG
        assert log_module._file_handler is not None

    def test_reconfigure_closes_previous_file_handler(self, tmp_path: Path) -> None:
        configure_logging(log_to_file=True, project_path=tmp_path / "one")
        first = log_module._file_handler
        assert first is not None

        configure_logging(log_to_file=True, project_path=tmp_path / "two")

        assert first.stream is None
        assert log_module._file_handler is not first

    def test_close_file_logging(self, tmp_path: Path) -> None:
        configure_logging(log_to_file=True, project_path=tmp_path)

        close_file_logging()

        assert log_module._file_handler is None


def test_get_logger_configures_on_first_use() -> None:
    log_module._configured = False

    logger = get_logger("bibleforge.test")

    assert logger is not None
    assert log_module._configured is True


def test_jsonl_handler_writes_event_and_context(tmp_path: Path) -> None:
    configure_logging(log_to_file=True, project_path=tmp_path)

    with structlog.contextvars.bound_contextvars(run_id="run-1"):
        structlog.get_logger("bibleforge.test.jsonl").info(
            "phase_started", phase="premise", index=0
        )
    close_file_logging()

    lines = (tmp_path / "logs" / "debug.jsonl").read_text().splitlines()
    entry = json.loads(lines[-1])
    assert entry["event"] == "phase_started"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "bibleforge.test.jsonl"
    assert entry["phase"] == "premise"
    assert entry["index"] == 0
    assert entry["run_id"] == "run-1"


def _entries(tmp_path: Path) -> list[dict[str, object]]:
    close_file_logging()
    lines = (tmp_path / "logs" / "debug.jsonl").read_text().splitlines()
    return [json.loads(line) for line in lines]


class TestJSONLCorrelation:
    """Tests for run and phase correlation fields in debug.jsonl."""

    def test_fields_are_null_outside_a_run(self, tmp_path: Path) -> None:
        configure_logging(log_to_file=True, project_path=tmp_path)

        structlog.get_logger("bibleforge.test.jsonl").warning("idle_event")

        entry = _entries(tmp_path)[-1]
        assert entry["event"] == "idle_event"
        assert entry["run_id"] is None
        assert entry["phase"] is None
        assert list(entry)[:6] == ["timestamp", "level", "logger", "event", "run_id", "phase"]

    def test_fields_follow_bound_run_and_phase(self, tmp_path: Path) -> None:
        configure_logging(log_to_file=True, project_path=tmp_path)
        logger = structlog.get_logger("bibleforge.test.jsonl")

        with run_context("run-7"):
            with phase_context("roster"):
                logger.info("roster_ready", count=8)
            logger.info("between_phases")

        roster, between = _entries(tmp_path)[-2:]
        assert (roster["run_id"], roster["phase"], roster["count"]) == ("run-7", "roster", 8)
        assert (between["run_id"], between["phase"]) == ("run-7", None)

    def test_stdlib_records_carry_bound_run(self, tmp_path: Path) -> None:
        configure_logging(log_to_file=True, project_path=tmp_path)

        with run_context("run-8"), phase_context("world"):
            logging.getLogger("bibleforge.test.stdlib").warning("plain %s", "record")

        entry = _entries(tmp_path)[-1]
        assert entry["event"] == "plain record"
        assert entry["run_id"] == "run-8"
        assert entry["phase"] == "world"

    def test_exception_is_rendered(self, tmp_path: Path) -> None:
        configure_logging(log_to_file=True, project_path=tmp_path)

        try:
            raise RuntimeError("model went quiet")
        except RuntimeError as e:
            structlog.get_logger("bibleforge.test.jsonl").error("tier1_failed", exc_info=e)

        entry = _entries(tmp_path)[-1]
        assert "exc_info" not in entry
        assert "RuntimeError: model went quiet" in str(entry["exception"])
