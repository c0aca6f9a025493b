"""Tests for story-type detection and series titles."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from bibleforge.pipeline.titles import (
    DEFAULT_STORY_TYPE,
    detect_story_type,
    generate_series_title,
    heuristic_title,
    sanitize_title,
)
from tests.fixtures.scripted_generator import ScriptedGenerator, unavailable

if TYPE_CHECKING:
    from tests.fixtures.scripted_generator import TaggedCompiler

SYNOPSIS = "A lighthouse keeper finds a message"


@pytest.mark.parametrize(
    ("synopsis", "theme", "expected"),
    [
        ("A detective chases a smuggler", "", "crime drama"),
        ("Robots on Mars", "", "sci-fi drama"),
        ("Two rivals meet again", "magic", "fantasy drama"),
        ("A surgeon at the city hospital", "", "medical drama"),
        ("Siblings share one household", "", "family drama"),
        ("A quiet village story", "", DEFAULT_STORY_TYPE),
    ],
)
def test_detect_story_type(synopsis: str, theme: str, expected: str) -> None:
    assert detect_story_type(synopsis, theme) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('"The Lighthouse Saga: Book One"', "The Lighthouse"),
        ("harbor lights series", "Harbor Lights"),
        ("  'SALT AND STONE'  ", "Salt And Stone"),
        ("Tales", ""),
    ],
)
def test_sanitize_title(raw: str, expected: str) -> None:
    assert sanitize_title(raw) == expected


def test_sanitize_title_truncates() -> None:
    assert len(sanitize_title("word " * 20)) <= 32


def test_heuristic_title() -> None:
    assert heuristic_title(SYNOPSIS) == "Lighthouse Keeper"
    assert heuristic_title("", "") == "Untitled"


class TestGenerateSeriesTitle:
    """Tests for generate_series_title."""

    @pytest.mark.asyncio
    async def test_first_candidate_is_sanitised(self, compiler: TaggedCompiler) -> None:
        generator = ScriptedGenerator(['["Harbor Lights Saga", "Second Choice"]'])

        title = await generate_series_title(
            generator, compiler, SYNOPSIS, "trust", "family drama"
        )

        assert title == "Harbor Lights"
        prompt, _ = generator.calls[0]
        assert "family drama" in prompt
        assert SYNOPSIS in prompt

    @pytest.mark.asyncio
    async def test_plain_text_uses_first_line(self, compiler: TaggedCompiler) -> None:
        generator = ScriptedGenerator(["Salt Road\nAnother Idea"])

        title = await generate_series_title(generator, compiler, SYNOPSIS, "", "drama")

        assert title == "Salt Road"

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_heuristic(self, compiler: TaggedCompiler) -> None:
        generator = ScriptedGenerator([unavailable()])

        title = await generate_series_title(generator, compiler, SYNOPSIS, "", "drama")

        assert title == "Lighthouse Keeper"

    @pytest.mark.asyncio
    async def test_empty_answer_falls_back(self, compiler: TaggedCompiler) -> None:
        generator = ScriptedGenerator(['""'])

        title = await generate_series_title(generator, compiler, SYNOPSIS, "", "drama")

        assert title == "Lighthouse Keeper"
