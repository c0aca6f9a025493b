"""Batched expansion of roster entries into full character profiles.

Entries are expanded strictly one after another so each request can carry
a summary of the characters expanded just before it. Batches only decide
where the expander pauses and where a whole-batch outage is detected.

Every roster entry yields exactly one output: a generated profile that
passed the shape check, or a templated stand-in built from the entry's
role and archetype.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bibleforge.models.bible import CharacterProfile
from bibleforge.observability.logging import get_logger
from bibleforge.parsing import matches_schema, parse_if_valid
from bibleforge.pipeline.batching import BatchSizing, batch_size_for, partition
from bibleforge.pipeline.fallback import with_fallback
from bibleforge.prompts import PromptCompiler
from bibleforge.providers.base import GenerationError, GenerationOptions

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from bibleforge.models.bible import RosterEntry
    from bibleforge.pipeline.config import ExpansionConfig, GenerationConfig
    from bibleforge.providers.base import TextGenerator

    ProgressCallback = Callable[[int, int, str], None]
    BatchUnavailableHook = Callable[[int, int, str], Awaitable[bool]]

log = get_logger(__name__)

_MAX_BATCH_RETRIES = 3

_is_character = matches_schema(CharacterProfile)


class EntityParseError(Exception):
    """Raised when a response does not hold an acceptable profile."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unusable profile for '{name}'")


@dataclass
class ExpansionReport:
    """Counters for one ``BatchExpander.expand`` call.

    Attributes:
        expanded: Entries produced from generated profiles.
        fallbacks: Entries replaced by templated stand-ins.
        llm_calls: Generator calls made, including batch retries.
        unavailable_batches: Batches where every entry hit a GenerationError.
        retried_batches: Batches re-run at the hook's request.
        fallback_names: Names of entries that used a stand-in.
    """

    expanded: int = 0
    fallbacks: int = 0
    llm_calls: int = 0
    unavailable_batches: int = 0
    retried_batches: int = 0
    fallback_names: list[str] = field(default_factory=list)


@dataclass
class _EntryResult:
    entity: dict[str, Any]
    fell_back: bool
    unavailable_error: str | None = None


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with '...'."""
    return text if len(text) <= limit else f"{text[:limit]}..."


def fallback_character(entry: RosterEntry, context: str, theme: str = "") -> dict[str, Any]:
    """Build a structurally complete stand-in profile for ``entry``."""
    theme_text = theme or "the central theme"
    return {
        "name": entry.name,
        "archetype": entry.archetype,
        "arc": f"Character development arc exploring {theme_text}",
        "description": f"A complex character for the story about {context}",
        "physiology": {
            "age": "Adult",
            "gender": "To be determined",
            "appearance": "Distinctive and memorable appearance",
            "build": "Average build",
            "health": "Good health",
            "physical_traits": ["Expressive eyes", "Confident posture"],
        },
        "sociology": {
            "class": "Middle class",
            "occupation": "Relevant to the story world",
            "education": "Well-educated",
            "home_life": "Complex family dynamics",
            "economic_status": "Stable",
            "community_standing": "Respected",
        },
        "psychology": {
            "core_value": theme or "Integrity",
            "moral_standpoint": "Principled but conflicted",
            "want": "External goal related to the story",
            "need": "Internal growth and understanding",
            "primary_flaw": "Pride or fear",
            "temperament": ["Determined", "Complex"],
            "attitude": "Cautiously optimistic",
            "iq": "Above average",
            "fears": ["Failure", "Loss of control"],
        },
    }


def summarize_recent(produced: Sequence[Mapping[str, Any]], window: int, chars: int) -> str:
    """Describe the most recently expanded entities for the next prompt.

    Lists at most ``window`` entities, newest last, with descriptions cut
    to ``chars`` characters. Returns "" when nothing was produced yet.
    """
    if not produced or window <= 0:
        return ""
    recent = produced[-window:]
    lines = [
        f"{index}. {entity.get('name', '?')} ({entity.get('archetype') or 'Character'}) - "
        f"{truncate(str(entity.get('description') or ''), chars)}"
        for index, entity in enumerate(recent, start=1)
    ]
    if len(produced) > window:
        lines.append(f"... and {len(produced) - window} earlier characters")
    header = "ALREADY GENERATED CHARACTERS (for reference and consistency):"
    return "\n".join([header, *lines]) + "\n"


class BatchExpander:
    """Expand a roster into full profiles, one entry at a time.

    Attributes:
        report: Counters from the most recent ``expand`` call.
    """

    def __init__(
        self,
        generator: TextGenerator,
        compiler: PromptCompiler | None = None,
        *,
        sizing: BatchSizing | None = None,
        inter_batch_delay: float = 0.5,
        summary_window: int = 10,
        summary_chars: int = 100,
        context_chars: int = 300,
        options: GenerationOptions | None = None,
        large_roster_tokens: int = 16384,
        on_progress: ProgressCallback | None = None,
        on_batch_unavailable: BatchUnavailableHook | None = None,
        max_batch_retries: int = _MAX_BATCH_RETRIES,
    ) -> None:
        """Initialize the expander.

        Args:
            generator: AI collaborator.
            compiler: Prompt compiler; a default one is created if omitted.
            sizing: Batch size as a function of roster size.
            inter_batch_delay: Seconds to pause between batches.
            summary_window: Recent entities listed in each request.
            summary_chars: Description characters kept per listed entity.
            context_chars: Domain-context characters included per request.
            options: Base sampling options.
            large_roster_tokens: Output ceiling for rosters above the
                large batch threshold.
            on_progress: Called with ``(done, total, message)`` after each entry.
            on_batch_unavailable: Awaited with ``(batch_index, size, error)``
                when a whole batch hit generation errors; returning True
                re-runs the batch.
            max_batch_retries: Upper bound on hook-requested retries per batch.
        """
        self._generator = generator
        self._compiler = compiler or PromptCompiler()
        self._sizing = sizing or BatchSizing()
        self._inter_batch_delay = inter_batch_delay
        self._summary_window = summary_window
        self._summary_chars = summary_chars
        self._context_chars = context_chars
        self._options = options or GenerationOptions()
        self._large_roster_tokens = large_roster_tokens
        self._on_progress = on_progress
        self._on_batch_unavailable = on_batch_unavailable
        self._max_batch_retries = max_batch_retries
        self.report = ExpansionReport()

    @classmethod
    def from_config(
        cls,
        generator: TextGenerator,
        config: ExpansionConfig,
        generation: GenerationConfig,
        compiler: PromptCompiler | None = None,
        **kwargs: Any,
    ) -> BatchExpander:
        return cls(
            generator,
            compiler,
            sizing=config.sizing,
            inter_batch_delay=config.inter_batch_delay,
            summary_window=config.summary_window,
            summary_chars=config.summary_chars,
            context_chars=config.context_chars,
            options=generation.options(),
            large_roster_tokens=config.large_roster_tokens,
            **kwargs,
        )

    def options_for(self, roster_size: int) -> GenerationOptions:
        """Sampling options for a roster of ``roster_size`` entries."""
        if roster_size > self._sizing.large_threshold:
            return GenerationOptions(
                temperature=self._options.temperature,
                max_output_tokens=max(self._options.max_output_tokens, self._large_roster_tokens),
            )
        return self._options

    async def expand(
        self,
        roster: Sequence[RosterEntry],
        seed_info_by_name: Mapping[str, str],
        domain_context: str,
        *,
        theme: str = "",
        out: list[dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Expand every roster entry, in order.

        Args:
            roster: Entries to expand.
            seed_info_by_name: User-supplied descriptions keyed by entry name.
            domain_context: Story text; truncated into each request.
            theme: Story theme for prompts and stand-ins.
            out: Optional list that receives each entity as it is produced.

        Returns:
            One entity per roster entry, in roster order.
        """
        self.report = ExpansionReport()
        produced: list[dict[str, Any]] = []
        sink = out if out is not None else []
        sink_base = len(sink)
        if not roster:
            return produced

        total = len(roster)
        size = batch_size_for(total, self._sizing)
        batches = partition(roster, size)
        options = self.options_for(total)
        context = truncate(domain_context, self._context_chars)
        log.info("expansion_start", total=total, batches=len(batches), batch_size=size)

        for batch_index, batch in enumerate(batches):
            batch_start = batch_index * size
            retries = 0
            while True:
                results: list[_EntryResult] = []
                for offset, entry in enumerate(batch):
                    position = batch_start + offset
                    result = await self._expand_entry(
                        entry,
                        position,
                        total,
                        produced,
                        seed_info_by_name.get(entry.name) or entry.info,
                        context,
                        theme,
                        options,
                    )
                    results.append(result)
                    produced.append(result.entity)
                    sink.append(result.entity)
                    self._report_progress(position + 1, total, entry, result)

                if not self._batch_unavailable(results):
                    break

                sample = results[0].unavailable_error or ""
                self.report.unavailable_batches += 1
                log.error(
                    "batch_generation_unavailable",
                    batch=batch_index + 1,
                    size=len(batch),
                    error_sample=sample,
                )
                if (
                    self._on_batch_unavailable is None
                    or retries >= self._max_batch_retries
                    or not await self._on_batch_unavailable(batch_index, len(batch), sample)
                ):
                    break

                retries += 1
                self.report.retried_batches += 1
                log.info("batch_retry", batch=batch_index + 1, retry=retries)
                del produced[batch_start:]
                del sink[sink_base + batch_start :]

            for result in results:
                if result.fell_back:
                    self.report.fallbacks += 1
                    self.report.fallback_names.append(str(result.entity["name"]))
                else:
                    self.report.expanded += 1

            if batch_index < len(batches) - 1 and self._inter_batch_delay > 0:
                await asyncio.sleep(self._inter_batch_delay)

        log.info(
            "expansion_complete",
            total=total,
            expanded=self.report.expanded,
            fallbacks=self.report.fallbacks,
        )
        return produced

    async def _expand_entry(
        self,
        entry: RosterEntry,
        position: int,
        total: int,
        produced: list[dict[str, Any]],
        seed_info: str | None,
        context: str,
        theme: str,
        options: GenerationOptions,
    ) -> _EntryResult:
        prompt = self._build_prompt(entry, position, total, produced, seed_info, context, theme)
        raw_text: str | None = None
        unavailable: str | None = None

        async def _generate() -> dict[str, Any]:
            nonlocal raw_text, unavailable
            self.report.llm_calls += 1
            try:
                raw = await self._generator.generate(prompt, options)
            except GenerationError as e:
                unavailable = str(e)
                raise
            outcome = parse_if_valid(raw, _is_character)
            if not outcome.ok:
                raw_text = raw
                raise EntityParseError(entry.name)
            return {**outcome.data, "name": entry.name}

        async def _template() -> dict[str, Any]:
            entity = fallback_character(entry, context, theme)
            if raw_text:
                entity["raw_content"] = raw_text
            return entity

        tier, entity = await with_fallback(
            [("generated", _generate), ("template", _template)], label="entity"
        )
        return _EntryResult(
            entity=entity, fell_back=tier == "template", unavailable_error=unavailable
        )

    def _batch_unavailable(self, results: list[_EntryResult]) -> bool:
        return bool(results) and all(r.unavailable_error is not None for r in results)

    def _report_progress(
        self, done: int, total: int, entry: RosterEntry, result: _EntryResult
    ) -> None:
        if self._on_progress is None:
            return
        verb = "Used fallback for" if result.fell_back else "Expanded"
        self._on_progress(done, total, f"{verb} {entry.name} ({entry.role}) - {done}/{total}")

    def _build_prompt(
        self,
        entry: RosterEntry,
        position: int,
        total: int,
        produced: list[dict[str, Any]],
        seed_info: str | None,
        context: str,
        theme: str,
    ) -> str:
        seed_block = ""
        if seed_info and seed_info.strip():
            seed_block = (
                "Use and expand this user-provided character information; fill gaps "
                f"while staying true to it:\n{seed_info.strip()}\n\n"
            )
        recent = summarize_recent(produced, self._summary_window, self._summary_chars)
        return self._compiler.render(
            "character",
            {
                "seed_block": seed_block,
                "context": context,
                "theme": theme,
                "name": entry.name,
                "role": entry.role,
                "archetype": entry.archetype,
                "position": position + 1,
                "total": total,
                "recent_block": recent,
            },
        )
