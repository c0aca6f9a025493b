"""Test CLI commands."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from bibleforge import __version__
from bibleforge.artifacts import ArtifactStore
from bibleforge.cli import TIMEOUT_EXIT_CODE, app
from tests.fixtures.scripted_generator import ScriptedGenerator, unavailable

if TYPE_CHECKING:
    from pathlib import Path

    from bibleforge.providers.base import GenerationOptions

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep Rich from wrapping CLI output at the default 80 columns."""
    monkeypatch.setattr("bibleforge.cli.console", Console(width=200))


SYNOPSIS = "A lighthouse keeper finds a message"

SIMPLIFIED = {
    "synopsis": SYNOPSIS,
    "main_characters": [{"name": "Ada"}, {"name": "Bo"}],
    "episodes": [{"number": 1, "title": "Pilot"}],
}


def _tier2_only(prompt: str) -> str:
    """Fail every full-run request; answer the single-request fallback."""
    if "Create a story bible for this series" in prompt:
        return json.dumps(SIMPLIFIED)
    if "SERIES TITLES" in prompt:
        return '["Harbor Lights"]'
    raise unavailable("premise quota")


class StalledGenerator:
    """Generator whose calls never finish."""

    model_name = "fake/stalled"

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        await asyncio.sleep(3600)
        return ""


def test_version_command() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert f"v{__version__}" in result.stdout


def test_no_args_shows_help() -> None:
    result = runner.invoke(app, [])

    assert result.exit_code == 2
    assert "BibleForge" in result.output


# --- init ---


def test_init_creates_project(tmp_path: Path) -> None:
    result = runner.invoke(app, ["init", "harbor", "--path", str(tmp_path)])

    assert result.exit_code == 0
    assert "Created project" in result.stdout
    assert (tmp_path / "harbor" / "project.yaml").exists()
    assert (tmp_path / "harbor" / "artifacts").is_dir()


def test_init_refuses_existing_directory(tmp_path: Path) -> None:
    (tmp_path / "harbor").mkdir()

    result = runner.invoke(app, ["init", "harbor", "--path", str(tmp_path)])

    assert result.exit_code == 1
    assert "already exists" in result.stdout


def test_phases_lists_run_order() -> None:
    result = runner.invoke(app, ["phases"])

    assert result.exit_code == 0
    assert "premise" in result.stdout
    assert "assembly" in result.stdout
    assert result.stdout.index("premise") < result.stdout.index("assembly")


# --- generate ---


def test_generate_falls_back_and_saves(tmp_path: Path) -> None:
    generator = ScriptedGenerator(default=_tier2_only)

    with patch("bibleforge.cli._create_generator", return_value=generator):
        result = runner.invoke(app, ["generate", SYNOPSIS, "--project", str(tmp_path)])

    assert result.exit_code == 0, result.stdout
    assert "fake/scripted" in result.stdout
    assert "Harbor Lights" in result.stdout
    assert "tier2" in result.stdout
    assert "Saved:" in result.stdout

    store = ArtifactStore(tmp_path / "artifacts")
    (artifact_id,) = store.list_ids("local")
    saved = store.load(artifact_id, "local")
    assert saved["series_title"] == "Harbor Lights"
    assert saved["stats"]["provenance"] == "tier2"
    assert "premise quota" in saved["stats"]["tier1_error"]


def test_generate_no_save(tmp_path: Path) -> None:
    generator = ScriptedGenerator(default=_tier2_only)

    with patch("bibleforge.cli._create_generator", return_value=generator):
        result = runner.invoke(
            app, ["generate", SYNOPSIS, "--project", str(tmp_path), "--no-save"]
        )

    assert result.exit_code == 0, result.stdout
    assert "Saved:" not in result.stdout
    assert not (tmp_path / "artifacts").exists()


def test_generate_both_tiers_fail(tmp_path: Path) -> None:
    generator = ScriptedGenerator(default=unavailable("service down"))

    with patch("bibleforge.cli._create_generator", return_value=generator):
        result = runner.invoke(app, ["generate", SYNOPSIS, "--project", str(tmp_path)])

    assert result.exit_code == 1
    assert "Error:" in result.stdout
    assert "service down" in result.stdout


def test_generate_time_budget(tmp_path: Path) -> None:
    with patch("bibleforge.cli._create_generator", return_value=StalledGenerator()):
        result = runner.invoke(
            app,
            ["generate", SYNOPSIS, "--project", str(tmp_path), "--time-budget", "1"],
        )

    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert "Time budget exhausted" in result.stdout


def test_generate_blank_synopsis(tmp_path: Path) -> None:
    result = runner.invoke(app, ["generate", "   ", "--project", str(tmp_path)])

    assert result.exit_code == 1
    assert "Invalid brief" in result.stdout


def test_generate_negative_count_rejected(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["generate", SYNOPSIS, "--count", "-1", "--project", str(tmp_path)]
    )

    assert result.exit_code == 2


def test_generate_invalid_config(tmp_path: Path) -> None:
    (tmp_path / "project.yaml").write_text("- not\n- a mapping\n", encoding="utf-8")

    result = runner.invoke(app, ["generate", SYNOPSIS, "--project", str(tmp_path)])

    assert result.exit_code == 1
    assert "mapping" in result.stdout


def test_generate_unresolvable_provider(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["generate", SYNOPSIS, "--project", str(tmp_path), "--provider", "ollama"]
    )

    assert result.exit_code == 1
    assert "requires explicit model" in result.stdout


# --- show ---


def test_show_lists_and_prints(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "artifacts")
    artifact_id = store.save({"series_title": "Harbor Lights"}, "local")

    listing = runner.invoke(app, ["show", "--project", str(tmp_path)])
    shown = runner.invoke(app, ["show", artifact_id, "--project", str(tmp_path)])

    assert listing.exit_code == 0
    assert artifact_id in listing.stdout
    assert shown.exit_code == 0
    assert "series_title: Harbor Lights" in shown.stdout


def test_show_empty_and_missing(tmp_path: Path) -> None:
    empty = runner.invoke(app, ["show", "--project", str(tmp_path)])
    missing = runner.invoke(app, ["show", "abc123", "--project", str(tmp_path)])

    assert "No saved story bibles" in empty.stdout
    assert missing.exit_code == 1
    assert "Not found" in missing.stdout


def test_show_rejects_unsafe_owner(tmp_path: Path) -> None:
    (tmp_path / "outside.yaml").write_text("n: 1\n", encoding="utf-8")

    result = runner.invoke(app, ["show", "--project", str(tmp_path), "--owner", "../.."])

    assert result.exit_code == 1
    assert "Invalid owner_id" in result.stdout
    assert "outside" not in result.stdout
