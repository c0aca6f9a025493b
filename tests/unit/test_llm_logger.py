"""Tests for the JSONL generation call logger."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from bibleforge.observability.llm_logger import LLMLogger

if TYPE_CHECKING:
    from pathlib import Path


def test_creates_logs_directory(tmp_path: Path) -> None:
    logger = LLMLogger(tmp_path)

    assert logger.log_path == tmp_path / "logs" / "llm_calls.jsonl"
    assert logger.log_path.parent.is_dir()


def test_disabled_logger_writes_nothing(tmp_path: Path) -> None:
    logger = LLMLogger(tmp_path, enabled=False)
    logger.log(LLMLogger.create_entry("premise", "m", "p", "c", 0.1))

    assert not (tmp_path / "logs").exists()
    assert logger.read_entries() == []


def test_create_entry_defaults() -> None:
    entry = LLMLogger.create_entry(
        phase="premise",
        model="google/gemini-2.5-flash",
        prompt="Write a premise",
        content="{}",
        duration_seconds=0.5,
    )

    assert entry.temperature == 0.7
    assert entry.max_output_tokens == 8192
    assert entry.run_id is None
    assert entry.error is None
    assert entry.metadata == {}
    assert entry.timestamp


def test_create_entry_collects_metadata() -> None:
    entry = LLMLogger.create_entry(
        "characters", "m", "p", "", 1.0, error="quota", attempt=2, batch=1
    )

    assert entry.error == "quota"
    assert entry.metadata == {"attempt": 2, "batch": 1}


def test_log_appends_json_lines(tmp_path: Path) -> None:
    logger = LLMLogger(tmp_path)

    for index in range(3):
        logger.log(
            LLMLogger.create_entry(
                f"phase{index}", "m", f"prompt {index}", "reply", 0.0, run_id="run-1"
            )
        )

    lines = logger.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    data = json.loads(lines[1])
    assert data["phase"] == "phase1"
    assert data["prompt"] == "prompt 1"
    assert data["run_id"] == "run-1"


def test_read_entries_round_trip(tmp_path: Path) -> None:
    logger = LLMLogger(tmp_path)
    logger.log(LLMLogger.create_entry("setting", "m", "p", "c", 2.5, temperature=0.2))

    (entry,) = logger.read_entries()

    assert entry.phase == "setting"
    assert entry.temperature == 0.2
    assert entry.duration_seconds == 2.5
