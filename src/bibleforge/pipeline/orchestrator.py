"""Story bible pipeline: Tier-1 phases, Tier-2 fallback, persistence.

Tier 1 runs every phase in ``TIER1_PHASES`` under a PhaseScheduler. The
premise phase is required; other phases degrade to raw wrappers or
templated skeletons, and too many failed phases abort the tier. Tier 2 is
a single simplified request. ``FallbackChain`` ties the two together.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bibleforge.artifacts.store import ArtifactStoreError
from bibleforge.models.bible import PipelineResult, PipelineStats
from bibleforge.observability.logging import get_logger
from bibleforge.observability.tracing import (
    generate_run_id,
    get_pipeline_run_id,
    phase_context,
    run_context,
)
from bibleforge.parsing import has_any_key, parse, parse_count, parse_if_valid
from bibleforge.pipeline.config import ProjectConfig
from bibleforge.pipeline.expansion import BatchExpander
from bibleforge.pipeline.fallback import FallbackChain
from bibleforge.pipeline.phases import (
    DEFAULT_ARC_COUNT,
    SECTIONS,
    TIER1_PHASES,
    living_world_provisions,
    narrative_skeleton,
    overview_fallback,
    premise_fallback,
    section_skeleton,
)
from bibleforge.pipeline.roster import RosterAllocator, build_roster
from bibleforge.pipeline.scheduler import PhaseScheduler
from bibleforge.pipeline.titles import detect_story_type, generate_series_title
from bibleforge.prompts import PromptCompiler
from bibleforge.providers.base import GenerationError
from bibleforge.providers.logging_wrapper import LoggingGenerator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from bibleforge.artifacts.store import ArtifactStore
    from bibleforge.models.bible import Brief, RosterEntry
    from bibleforge.pipeline.expansion import BatchUnavailableHook
    from bibleforge.pipeline.phases import SectionSpec
    from bibleforge.pipeline.progress import ProgressSink
    from bibleforge.providers.base import GenerationOptions, TextGenerator

log = get_logger(__name__)

_OVERVIEW_FENCE = re.compile(r"```\w*\n?")


class PipelineError(Exception):
    """Raised when Tier 1 has to be abandoned."""

    def __init__(self, phase: str, message: str) -> None:
        self.phase = phase
        super().__init__(f"Pipeline error in phase '{phase}': {message}")


@dataclass
class PipelineRun:
    """Mutable state of one pipeline run.

    Outputs are attached as each phase finishes, and characters as each
    one is expanded, so a run stopped part-way still exposes its work.

    Attributes:
        run_id: Correlation id bound into every log event of the run.
        scheduler: Phase scheduler; None for a Tier-2 run.
        phase_outputs: Section outputs keyed by bible key.
        roster: Roster once allocated.
        characters: Expanded characters, appended as produced.
        failed_phases: Ids of phases that failed softly.
        story_type: Detected story type.
        character_count: Resolved cast size.
        arc_count: Resolved number of narrative arcs.
        llm_calls: Generator calls made during the run.
    """

    run_id: str
    scheduler: PhaseScheduler | None = None
    phase_outputs: dict[str, Any] = field(default_factory=dict)
    roster: list[RosterEntry] = field(default_factory=list)
    characters: list[dict[str, Any]] = field(default_factory=list)
    failed_phases: list[str] = field(default_factory=list)
    story_type: str = ""
    character_count: int = 0
    arc_count: int = DEFAULT_ARC_COUNT
    llm_calls: int = 0
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started_at

    def snapshot(self) -> dict[str, Any]:
        """Copy of everything produced so far."""
        outputs = dict(self.phase_outputs)
        if self.characters:
            outputs["main_characters"] = list(self.characters)
        return outputs


@dataclass
class GenerationOutcome:
    """What ``generate_story_bible`` hands back.

    Attributes:
        result: The assembled story bible.
        artifact_id: Id in the artifact store, or None if it wasn't saved.
    """

    result: PipelineResult
    artifact_id: str | None = None


class _CountingGenerator:
    """Count calls against the active run and label logged calls by phase."""

    def __init__(self, generator: TextGenerator, run: PipelineRun) -> None:
        self._generator = generator
        self._run = run

    @property
    def model_name(self) -> str:
        return self._generator.model_name

    def label(self, phase: str) -> None:
        if isinstance(self._generator, LoggingGenerator):
            self._generator.phase = phase

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self._run.llm_calls += 1
        return await self._generator.generate(prompt, options)


class StoryBiblePipeline:
    """Build story bibles with a two-tier fallback.

    Attributes:
        config: Project configuration.
        current_run: State of the run in progress (or the last one).
    """

    def __init__(
        self,
        generator: TextGenerator,
        config: ProjectConfig | None = None,
        *,
        sink: ProgressSink | None = None,
        compiler: PromptCompiler | None = None,
        on_batch_unavailable: BatchUnavailableHook | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            generator: AI collaborator.
            config: Project configuration; defaults apply when omitted.
            sink: Receiver of phase update events.
            compiler: Prompt compiler; the packaged templates by default.
            on_batch_unavailable: Hook offered whole-batch expansion outages.
        """
        self._generator = generator
        self.config = config or ProjectConfig(name="bibleforge")
        self._sink = sink
        self._compiler = compiler or PromptCompiler()
        self._on_batch_unavailable = on_batch_unavailable
        self.current_run: PipelineRun | None = None

    async def run(self, brief: Brief) -> PipelineResult:
        """Produce a story bible, falling back to Tier 2 if Tier 1 fails.

        Raises:
            FatalPipelineError: If both tiers failed.
        """
        run_id = get_pipeline_run_id() or generate_run_id()
        with run_context(run_id):
            log.info("pipeline_start", model=self._generator.model_name)
            chain = FallbackChain(self.run_tier1, self.run_tier2)
            result = await chain.run(brief)
            log.info(
                "pipeline_complete",
                provenance=result.provenance,
                llm_calls=result.stats.llm_calls,
                duration=f"{result.stats.duration_seconds:.2f}s",
            )
            return result

    # -- Tier 1 -------------------------------------------------------------

    async def run_tier1(self, brief: Brief) -> PipelineResult:
        """Run the full phase sequence.

        Raises:
            PipelineError: If the premise phase failed or too many phases failed.
        """
        run = PipelineRun(
            run_id=get_pipeline_run_id() or generate_run_id(),
            scheduler=PhaseScheduler(TIER1_PHASES, self._sink),
            story_type=detect_story_type(brief.synopsis, brief.theme),
        )
        self.current_run = run
        generator = _CountingGenerator(self._generator, run)
        log.info("tier1_start", story_type=run.story_type)
        try:
            return await self._tier1_phases(brief, run, generator)
        finally:
            if run.scheduler is not None:
                await run.scheduler.drain()

    async def _tier1_phases(
        self, brief: Brief, run: PipelineRun, generator: _CountingGenerator
    ) -> PipelineResult:
        options = self.config.generation.options()
        context = self._base_context(brief, run)

        async def _premise() -> dict[str, Any]:
            raw = await generator.generate(self._compiler.render("premise", context), options)
            value = parse(raw)
            if isinstance(value, dict):
                return value
            log.warning("premise_unparsed", length=len(raw))
            return premise_fallback(brief.synopsis, brief.theme, run.story_type, raw)

        run.phase_outputs["premise"] = await self._run_phase(
            run, generator, "premise", _premise, required=True
        )

        await self._run_phase(run, generator, "roster", lambda: self._roster(brief, run, generator))
        await self._run_phase(
            run, generator, "characters", lambda: self._characters(brief, run, generator)
        )
        context["character_count"] = run.character_count

        async def _narrative() -> None:
            raw = await generator.generate(self._compiler.render("arc_count", context), options)
            run.arc_count = parse_count(raw, DEFAULT_ARC_COUNT)

        await self._run_phase(run, generator, "narrative", _narrative)
        context["arc_count"] = run.arc_count
        run.phase_outputs["narrative_arcs"] = narrative_skeleton(run.arc_count, brief.theme)
        run.phase_outputs["potential_branching_paths"] = (
            "The narrative offers multiple potential directions, exploring different aspects of "
            f"{brief.theme or 'the theme'} through varied character developments "
            "and story outcomes."
        )

        for spec in SECTIONS:
            await self._section(spec, brief, run, generator, context)

        return await self._run_phase(
            run, generator, "assembly", lambda: self._assemble(brief, run, generator)
        )

    async def _run_phase(
        self,
        run: PipelineRun,
        generator: _CountingGenerator,
        phase_id: str,
        body: Callable[[], Awaitable[Any]],
        *,
        required: bool = False,
        on_failure: Callable[[GenerationError], Any] | None = None,
    ) -> Any:
        scheduler = run.scheduler
        assert scheduler is not None
        scheduler.start(phase_id)
        generator.label(phase_id)
        try:
            with phase_context(phase_id):
                value = await body()
        except GenerationError as e:
            scheduler.fail(phase_id, e)
            run.failed_phases.append(phase_id)
            if required:
                raise PipelineError(phase_id, str(e)) from e
            if len(run.failed_phases) > self.config.max_failed_phases:
                raise PipelineError(
                    phase_id,
                    f"{len(run.failed_phases)} phases failed "
                    f"(limit {self.config.max_failed_phases}): {', '.join(run.failed_phases)}",
                ) from e
            return on_failure(e) if on_failure is not None else None
        except Exception as e:
            scheduler.fail(phase_id, e)
            raise
        scheduler.complete(phase_id)
        return value

    async def _roster(self, brief: Brief, run: PipelineRun, generator: _CountingGenerator) -> None:
        assert run.scheduler is not None
        roster_config = self.config.roster
        target = brief.target_count
        if target is None:
            run.scheduler.update_progress("roster", 10, "Determining cast size")
            prompt = self._compiler.render("character_count", self._base_context(brief, run))
            try:
                raw = await generator.generate(prompt, self.config.generation.options())
            except GenerationError as e:
                log.warning("character_count_failed", error=str(e))
                raw = ""
            target = parse_count(raw, roster_config.default_count)
        if target > roster_config.max_count:
            log.warning(
                "roster_count_clamped", requested=target, limit=roster_config.max_count
            )
            target = roster_config.max_count

        run.scheduler.update_progress("roster", 30, "Generating character roster")
        allocator = RosterAllocator.from_config(
            generator, roster_config, self._compiler, self.config.generation.options()
        )
        run.roster = await build_roster(brief, target, allocator)
        run.character_count = len(run.roster)
        log.info("roster_ready", count=run.character_count)

    async def _characters(
        self, brief: Brief, run: PipelineRun, generator: _CountingGenerator
    ) -> None:
        scheduler = run.scheduler
        assert scheduler is not None

        def _progress(done: int, total: int, message: str) -> None:
            scheduler.update_progress("characters", 5 + done / total * 90, message)

        expander = BatchExpander.from_config(
            generator,
            self.config.expansion,
            self.config.generation,
            self._compiler,
            on_progress=_progress,
            on_batch_unavailable=self._on_batch_unavailable,
        )
        seeds = {entry.name: entry.info for entry in run.roster if entry.info}
        await expander.expand(
            run.roster,
            seeds,
            brief.synopsis,
            theme=brief.theme,
            out=run.characters,
        )
        run.phase_outputs["expansion_report"] = {
            "expanded": expander.report.expanded,
            "fallbacks": expander.report.fallbacks,
            "unavailable_batches": expander.report.unavailable_batches,
            "retried_batches": expander.report.retried_batches,
        }

    async def _section(
        self,
        spec: SectionSpec,
        brief: Brief,
        run: PipelineRun,
        generator: _CountingGenerator,
        context: dict[str, Any],
    ) -> None:
        skeleton = section_skeleton(spec, run.story_type, brief.theme)

        async def _body() -> Any:
            raw = await generator.generate(
                self._compiler.render(spec.template, context), self.config.generation.options()
            )
            outcome = parse_if_valid(raw, has_any_key(*spec.keys))
            if not outcome.ok:
                log.warning("section_unparsed", phase=spec.phase_id, length=len(raw))
            if spec.phase_id == "world":
                return {**skeleton, **outcome.or_raw_wrapper()}
            if not outcome.ok and skeleton:
                return {**skeleton, "raw_content": raw}
            return outcome.or_raw_wrapper()

        def _failed(error: GenerationError) -> dict[str, Any]:
            return {**skeleton, "generation_error": str(error)}

        run.phase_outputs[spec.output_key] = await self._run_phase(
            run, generator, spec.phase_id, _body, on_failure=_failed
        )

    async def _assemble(
        self, brief: Brief, run: PipelineRun, generator: _CountingGenerator
    ) -> PipelineResult:
        assert run.scheduler is not None
        run.scheduler.update_progress("assembly", 20, "Writing series overview")
        overview = await self._overview(brief, run, generator)
        run.scheduler.update_progress("assembly", 60, "Choosing series title")
        title = await generate_series_title(
            generator,
            self._compiler,
            brief.synopsis,
            brief.theme,
            run.story_type,
            self.config.generation.options(),
        )

        sections = run.snapshot()
        sections.setdefault("main_characters", [])
        expansion = sections.pop("expansion_report", {})
        outputs: dict[str, Any] = {
            "series_title": title,
            "series_overview": overview,
            "synopsis": brief.synopsis,
            "theme": brief.theme,
            **sections,
            "living_world_provisions": living_world_provisions(len(run.characters)),
        }
        stats = PipelineStats(
            provenance="tier1",
            run_id=run.run_id,
            story_type=run.story_type,
            llm_calls=run.llm_calls,
            duration_seconds=run.elapsed,
            roster_size=len(run.roster),
            fallback_entities=expansion.get("fallbacks", 0),
            failed_phases=list(run.failed_phases),
        )
        return PipelineResult(phase_outputs=outputs, roster=list(run.roster), stats=stats)

    async def _overview(
        self, brief: Brief, run: PipelineRun, generator: _CountingGenerator
    ) -> str:
        prompt = self._compiler.render("overview", self._base_context(brief, run))
        try:
            raw = await generator.generate(prompt, self.config.generation.options())
        except GenerationError as e:
            log.warning("overview_failed", error=str(e))
            return overview_fallback(run.story_type, brief.theme)
        text = _OVERVIEW_FENCE.sub("", raw.strip().strip("\"'")).strip()
        return text or overview_fallback(run.story_type, brief.theme)

    # -- Tier 2 -------------------------------------------------------------

    async def run_tier2(self, brief: Brief) -> PipelineResult:
        """Produce a reduced story bible from a single request.

        Raises:
            GenerationError: If the request failed.
            PipelineError: If the answer held no JSON object.
        """
        run = PipelineRun(
            run_id=get_pipeline_run_id() or generate_run_id(),
            story_type=detect_story_type(brief.synopsis, brief.theme),
        )
        self.current_run = run
        generator = _CountingGenerator(self._generator, run)
        generator.label("tier2")
        with phase_context("tier2"):
            log.info("tier2_start", story_type=run.story_type)

            options = self.config.generation.options()
            raw = await generator.generate(
                self._compiler.render("simplified_bible", self._base_context(brief, run)), options
            )
            data = parse(raw)
            if not isinstance(data, dict):
                raise PipelineError("tier2", "Simplified response held no JSON object")

            data["series_title"] = await generate_series_title(
                generator, self._compiler, brief.synopsis, brief.theme, run.story_type, options
            )
            data.setdefault("synopsis", brief.synopsis)
            data.setdefault("theme", brief.theme)
            run.phase_outputs.update(data)

        characters = data.get("main_characters")
        stats = PipelineStats(
            provenance="tier2",
            run_id=run.run_id,
            story_type=run.story_type,
            llm_calls=run.llm_calls,
            duration_seconds=run.elapsed,
            roster_size=len(characters) if isinstance(characters, list) else 0,
        )
        return PipelineResult(phase_outputs=data, stats=stats)

    def _base_context(self, brief: Brief, run: PipelineRun) -> dict[str, Any]:
        setting_block = ""
        if brief.setting and brief.setting.strip():
            setting_block = (
                f"User-provided setting: {brief.setting.strip()}\n"
                "Use it as the foundation. Expand and detail it, but preserve its core elements.\n"
            )
        return {
            "synopsis": brief.synopsis,
            "theme": brief.theme,
            "story_type": run.story_type,
            "setting_block": setting_block,
            "character_count": run.character_count,
            "arc_count": run.arc_count,
        }


async def generate_story_bible(
    brief: Brief,
    generator: TextGenerator,
    *,
    config: ProjectConfig | None = None,
    sink: ProgressSink | None = None,
    store: ArtifactStore | None = None,
    owner_id: str = "local",
    on_batch_unavailable: BatchUnavailableHook | None = None,
    pipeline: StoryBiblePipeline | None = None,
) -> GenerationOutcome:
    """Generate a story bible and persist it when a store is given.

    A failed save is logged and leaves ``artifact_id`` as None; the result
    is still returned.

    Args:
        brief: Story premise and seeds.
        generator: AI collaborator.
        config: Project configuration.
        sink: Receiver of phase update events.
        store: Artifact store to save the result to.
        owner_id: Owner the artifact is filed under.
        on_batch_unavailable: Hook offered whole-batch expansion outages.
        pipeline: Pre-built pipeline, e.g. to inspect ``current_run`` later.

    Raises:
        FatalPipelineError: If both tiers failed.
    """
    pipeline = pipeline or StoryBiblePipeline(
        generator, config, sink=sink, on_batch_unavailable=on_batch_unavailable
    )
    result = await pipeline.run(brief)

    artifact_id: str | None = None
    if store is not None:
        try:
            artifact_id = store.save(result.to_artifact(), owner_id)
        except ArtifactStoreError as e:
            log.error("artifact_save_failed", owner=owner_id, error=str(e))
    return GenerationOutcome(result=result, artifact_id=artifact_id)
