"""Tests for batched character expansion."""

from __future__ import annotations

import json
from typing import Any

import pytest

from bibleforge.models.bible import RosterEntry
from bibleforge.pipeline.batching import BatchSizing, batch_size_for, partition
from bibleforge.pipeline.config import ExpansionConfig, GenerationConfig
from bibleforge.pipeline.expansion import (
    BatchExpander,
    fallback_character,
    summarize_recent,
    truncate,
)
from tests.fixtures.scripted_generator import ScriptedGenerator, character_reply, unavailable


def _roster(count: int) -> list[RosterEntry]:
    roles = ["protagonist", "antagonist"]
    return [
        RosterEntry(name=f"Member {i}", role=roles[i - 1] if i <= 2 else "supporting")
        for i in range(1, count + 1)
    ]


def _expander(generator: ScriptedGenerator, **kwargs: Any) -> BatchExpander:
    return BatchExpander(generator, inter_batch_delay=0.0, **kwargs)


def _failing_for(*names: str) -> Any:
    def reply(prompt: str) -> str:
        if any(f"CHARACTER NAME: {name}\n" in prompt for name in names):
            raise unavailable()
        return character_reply(prompt)

    return reply


# --- Helpers ---


def test_truncate() -> None:
    assert truncate("short", 10) == "short"
    assert truncate("abcdefghij", 4) == "abcd..."


def test_fallback_character_is_complete() -> None:
    entry = RosterEntry(name="Ada", role="antagonist", archetype="Rival")

    entity = fallback_character(entry, "a harbor town", "trust")

    assert entity["name"] == "Ada"
    assert entity["archetype"] == "Rival"
    assert "trust" in entity["arc"]
    assert "a harbor town" in entity["description"]
    assert set(entity) >= {"physiology", "sociology", "psychology"}
    assert entity["psychology"]["core_value"] == "trust"


def test_summarize_recent_keeps_newest_window() -> None:
    produced = [{"name": f"P{i}", "description": "x" * 50} for i in range(5)]

    summary = summarize_recent(produced, window=2, chars=10)

    assert "P3" in summary
    assert "P4" in summary
    assert "P0" not in summary
    assert "... and 3 earlier characters" in summary
    assert "x" * 11 not in summary


def test_summarize_recent_empty() -> None:
    assert summarize_recent([], window=10, chars=100) == ""


# --- expand ---


class TestExpand:
    """Tests for BatchExpander.expand."""

    @pytest.mark.asyncio
    async def test_one_failure_in_twelve(self) -> None:
        roster = _roster(12)
        generator = ScriptedGenerator(default=_failing_for("Member 7"))
        progress: list[tuple[int, int, str]] = []
        expander = _expander(generator, on_progress=lambda d, t, m: progress.append((d, t, m)))

        entities = await expander.expand(roster, {}, "A harbor town drama", theme="trust")

        assert len(entities) == 12
        assert [e["name"] for e in entities] == [entry.name for entry in roster]
        assert entities[6]["archetype"] == roster[6].archetype
        assert "raw_content" not in entities[6]
        assert all(e["archetype"] == "Generated" for i, e in enumerate(entities) if i != 6)
        assert expander.report.expanded == 11
        assert expander.report.fallbacks == 1
        assert expander.report.fallback_names == ["Member 7"]
        assert len(partition(roster, batch_size_for(12))) == 2
        assert expander.report.unavailable_batches == 0
        assert [p[0] for p in progress] == list(range(1, 13))
        assert progress[6][2].startswith("Used fallback for Member 7")

    @pytest.mark.asyncio
    async def test_total_outage_still_returns_every_entry(self) -> None:
        roster = _roster(12)
        generator = ScriptedGenerator(default=unavailable())

        entities = await _expander(generator).expand(roster, {}, "story")

        assert len(entities) == 12
        assert [e["name"] for e in entities] == [entry.name for entry in roster]
        assert all("physiology" in e for e in entities)

    @pytest.mark.asyncio
    async def test_outage_escalates_each_batch_to_hook(self) -> None:
        hook_calls: list[tuple[int, int, str]] = []

        async def hook(batch_index: int, size: int, error: str) -> bool:
            hook_calls.append((batch_index, size, error))
            return False

        generator = ScriptedGenerator(default=unavailable("quota exhausted"))
        expander = _expander(generator, on_batch_unavailable=hook)

        entities = await expander.expand(_roster(12), {}, "story")

        assert len(entities) == 12
        assert expander.report.unavailable_batches == 2
        assert expander.report.retried_batches == 0
        assert [(i, s) for i, s, _ in hook_calls] == [(0, 6), (1, 6)]
        assert "quota exhausted" in hook_calls[0][2]

    @pytest.mark.asyncio
    async def test_hook_can_retry_a_batch(self) -> None:
        generator = ScriptedGenerator([unavailable()] * 4, default=character_reply)
        out: list[dict[str, Any]] = []

        async def retry(batch_index: int, size: int, error: str) -> bool:
            return True

        expander = _expander(generator, on_batch_unavailable=retry)
        entities = await expander.expand(_roster(4), {}, "story", out=out)

        assert len(generator.calls) == 8
        assert [e["archetype"] for e in entities] == ["Generated"] * 4
        assert out == entities
        assert expander.report.retried_batches == 1
        assert expander.report.fallbacks == 0

    @pytest.mark.asyncio
    async def test_batch_retries_are_bounded(self) -> None:
        generator = ScriptedGenerator(default=unavailable())

        async def always(batch_index: int, size: int, error: str) -> bool:
            return True

        expander = _expander(generator, on_batch_unavailable=always, max_batch_retries=2)
        entities = await expander.expand(_roster(4), {}, "story")

        assert len(entities) == 4
        assert len(generator.calls) == 12
        assert expander.report.retried_batches == 2

    @pytest.mark.asyncio
    async def test_single_entry_outage_is_escalated(self) -> None:
        hook_calls: list[tuple[int, int]] = []

        async def hook(batch_index: int, size: int, error: str) -> bool:
            hook_calls.append((batch_index, size))
            return False

        expander = _expander(ScriptedGenerator(default=unavailable()), on_batch_unavailable=hook)
        entities = await expander.expand(_roster(1), {}, "story")

        assert len(entities) == 1
        assert hook_calls == [(0, 1)]
        assert expander.report.unavailable_batches == 1
        assert expander.report.fallbacks == 1

    @pytest.mark.asyncio
    async def test_trailing_one_entry_batch_is_escalated(self) -> None:
        hook_calls: list[tuple[int, int]] = []

        async def hook(batch_index: int, size: int, error: str) -> bool:
            hook_calls.append((batch_index, size))
            return False

        expander = _expander(ScriptedGenerator(default=unavailable()), on_batch_unavailable=hook)
        entities = await expander.expand(_roster(13), {}, "story")

        assert len(entities) == 13
        assert hook_calls == [(0, 6), (1, 6), (2, 1)]
        assert expander.report.unavailable_batches == 3

    @pytest.mark.asyncio
    async def test_custom_sizing_sets_batch_boundaries(self) -> None:
        hook_calls: list[tuple[int, int]] = []

        async def hook(batch_index: int, size: int, error: str) -> bool:
            hook_calls.append((batch_index, size))
            return False

        sizing = BatchSizing(large_threshold=2, large_size=2)
        generator = ScriptedGenerator(default=unavailable())
        expander = _expander(generator, sizing=sizing, on_batch_unavailable=hook)
        await expander.expand(_roster(5), {}, "story")

        assert hook_calls == [(0, 2), (1, 2), (2, 1)]

    @pytest.mark.asyncio
    async def test_unparseable_reply_keeps_raw_content(self) -> None:
        generator = ScriptedGenerator(["I would rather not.", '{"archetype": "nameless"}'])

        entities = await _expander(generator).expand(_roster(2), {}, "story")

        assert entities[0]["raw_content"] == "I would rather not."
        assert entities[1]["raw_content"] == '{"archetype": "nameless"}'
        assert entities[1]["name"] == "Member 2"

    @pytest.mark.asyncio
    async def test_name_is_overwritten_with_roster_name(self) -> None:
        reply = json.dumps({"name": "Someone Else", "arc": "redemption"})
        entities = await _expander(ScriptedGenerator([reply])).expand(_roster(1), {}, "story")

        assert entities[0] == {"name": "Member 1", "arc": "redemption"}

    @pytest.mark.asyncio
    async def test_prompts_carry_seed_info_and_recent_summary(self) -> None:
        generator = ScriptedGenerator(default=character_reply)
        seeds = {"Member 3": "Runs the night ferry"}

        await _expander(generator).expand(_roster(3), seeds, "story")

        prompts = [prompt for prompt, _ in generator.calls]
        assert "ALREADY GENERATED" not in prompts[0]
        assert "1. Member 1" in prompts[2]
        assert "2. Member 2" in prompts[2]
        assert "Runs the night ferry" in prompts[2]
        assert "Runs the night ferry" not in prompts[1]

    @pytest.mark.asyncio
    async def test_entry_info_used_when_no_seed_mapping(self) -> None:
        generator = ScriptedGenerator(default=character_reply)
        roster = [RosterEntry(name="Ada", role="protagonist", info="Keeps the lighthouse")]

        await _expander(generator).expand(roster, {}, "story")

        assert "Keeps the lighthouse" in generator.calls[0][0]

    @pytest.mark.asyncio
    async def test_empty_roster(self) -> None:
        generator = ScriptedGenerator()

        assert await _expander(generator).expand([], {}, "story") == []
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_large_roster_raises_output_ceiling(self) -> None:
        generator = ScriptedGenerator(default=character_reply)

        await _expander(generator).expand(_roster(11), {}, "story")
        _, options = generator.calls[0]
        assert options.max_output_tokens == 16384

    def test_from_config(self) -> None:
        config = ExpansionConfig(
            sizing=BatchSizing(large_threshold=2, large_size=1), large_roster_tokens=20000
        )
        expander = BatchExpander.from_config(
            ScriptedGenerator(), config, GenerationConfig(temperature=0.2)
        )

        options = expander.options_for(3)
        assert options.temperature == 0.2
        assert options.max_output_tokens == 20000
        assert expander.options_for(2).max_output_tokens == 8192
