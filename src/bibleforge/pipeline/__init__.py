"""Pipeline orchestration for story bible generation."""

from bibleforge.pipeline.batching import BatchSizing, batch_size_for, partition
from bibleforge.pipeline.config import (
    ProjectConfig,
    ProjectConfigError,
    create_default_config,
    load_project_config,
)
from bibleforge.pipeline.expansion import BatchExpander, ExpansionReport, fallback_character
from bibleforge.pipeline.fallback import (
    FallbackChain,
    FallbackExhaustedError,
    FatalPipelineError,
    with_fallback,
)
from bibleforge.pipeline.orchestrator import (
    GenerationOutcome,
    PipelineError,
    PipelineRun,
    StoryBiblePipeline,
    generate_story_bible,
)
from bibleforge.pipeline.progress import (
    CallbackProgressSink,
    FanOutProgressSink,
    HttpProgressSink,
    LoggingProgressSink,
    NullProgressSink,
    ProgressSink,
)
from bibleforge.pipeline.roster import RosterAllocator, build_roster, extract_seed_name
from bibleforge.pipeline.scheduler import PhaseNotFoundError, PhaseScheduler, PhaseTransitionError

__all__ = [
    "BatchExpander",
    "BatchSizing",
    "CallbackProgressSink",
    "ExpansionReport",
    "FanOutProgressSink",
    "FallbackChain",
    "FallbackExhaustedError",
    "FatalPipelineError",
    "GenerationOutcome",
    "HttpProgressSink",
    "LoggingProgressSink",
    "NullProgressSink",
    "PhaseNotFoundError",
    "PhaseScheduler",
    "PhaseTransitionError",
    "PipelineError",
    "PipelineRun",
    "ProgressSink",
    "ProjectConfig",
    "ProjectConfigError",
    "RosterAllocator",
    "StoryBiblePipeline",
    "batch_size_for",
    "build_roster",
    "create_default_config",
    "extract_seed_name",
    "fallback_character",
    "generate_story_bible",
    "load_project_config",
    "partition",
    "with_fallback",
]
