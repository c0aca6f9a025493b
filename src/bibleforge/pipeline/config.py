"""Project configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from bibleforge.pipeline.batching import BatchSizing
from bibleforge.providers.base import GenerationOptions

DEFAULT_PROVIDER = "google/gemini-2.5-flash"
CONFIG_FILENAME = "project.yaml"


@dataclass
class GenerationConfig:
    """Sampling defaults for section phases and the simplified tier."""

    temperature: float = 0.7
    max_output_tokens: int = 8192

    def options(self, max_output_tokens: int | None = None) -> GenerationOptions:
        """Build GenerationOptions, optionally overriding the token ceiling."""
        return GenerationOptions(
            temperature=self.temperature,
            max_output_tokens=max_output_tokens or self.max_output_tokens,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerationConfig:
        return cls(
            temperature=float(data.get("temperature", 0.7)),
            max_output_tokens=int(data.get("max_output_tokens", 8192)),
        )


@dataclass
class RosterConfig:
    """Roster allocation settings.

    Attributes:
        max_attempts: Generator attempts before the emergency roster.
        retry_delay: Seconds between attempts.
        default_count: Cast size when neither brief nor model supplies one.
        max_count: Upper bound on cast size.
    """

    max_attempts: int = 3
    retry_delay: float = 1.0
    default_count: int = 8
    max_count: int = 40

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RosterConfig:
        return cls(
            max_attempts=max(1, int(data.get("max_attempts", 3))),
            retry_delay=float(data.get("retry_delay", 1.0)),
            default_count=int(data.get("default_count", 8)),
            max_count=int(data.get("max_count", 40)),
        )


@dataclass
class ExpansionConfig:
    """Batch expansion settings.

    Attributes:
        sizing: Batch size as a function of roster size.
        inter_batch_delay: Seconds to pause between batches.
        summary_window: How many recent entities the consistency summary lists.
        summary_chars: Description characters kept per summarised entity.
        context_chars: Synopsis characters included in each request.
        large_roster_tokens: Output ceiling once the roster exceeds
            ``sizing.large_threshold``.
    """

    sizing: BatchSizing = field(default_factory=BatchSizing)
    inter_batch_delay: float = 0.5
    summary_window: int = 10
    summary_chars: int = 100
    context_chars: int = 300
    large_roster_tokens: int = 16384

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExpansionConfig:
        sizing_data = data.get("batch_sizing", {})
        return cls(
            sizing=BatchSizing(
                large_threshold=int(sizing_data.get("large_threshold", 10)),
                large_size=int(sizing_data.get("large_size", 6)),
                medium_threshold=int(sizing_data.get("medium_threshold", 5)),
                medium_size=int(sizing_data.get("medium_size", 5)),
            ),
            inter_batch_delay=float(data.get("inter_batch_delay", 0.5)),
            summary_window=int(data.get("summary_window", 10)),
            summary_chars=int(data.get("summary_chars", 100)),
            context_chars=int(data.get("context_chars", 300)),
            large_roster_tokens=int(data.get("large_roster_tokens", 16384)),
        )


@dataclass
class ProgressConfig:
    """Where phase updates are posted. None disables the HTTP sink."""

    url: str | None = None
    timeout: float = 5.0

    def resolved_url(self) -> str | None:
        """Return the sink URL, preferring BF_PROGRESS_URL."""
        return os.getenv("BF_PROGRESS_URL") or self.url

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressConfig:
        return cls(url=data.get("url"), timeout=float(data.get("timeout", 5.0)))


@dataclass
class ProjectConfig:
    """Configuration for a BibleForge project."""

    name: str
    version: int = 1
    provider: str = DEFAULT_PROVIDER
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    roster: RosterConfig = field(default_factory=RosterConfig)
    expansion: ExpansionConfig = field(default_factory=ExpansionConfig)
    progress: ProgressConfig = field(default_factory=ProgressConfig)
    max_failed_phases: int = 3

    def resolved_provider(self, override: str | None = None) -> str:
        """Resolve the provider string.

        Resolution order (highest priority first):
        1. Explicit override (CLI --provider)
        2. BF_PROVIDER environment variable
        3. project.yaml ``provider``
        """
        return override or os.getenv("BF_PROVIDER") or self.provider

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        """Create config from a parsed project.yaml mapping."""
        pipeline_data = data.get("pipeline", {})
        return cls(
            name=data.get("name", "unnamed"),
            version=data.get("version", 1),
            provider=data.get("provider", DEFAULT_PROVIDER),
            generation=GenerationConfig.from_dict(data.get("generation", {})),
            roster=RosterConfig.from_dict(data.get("roster", {})),
            expansion=ExpansionConfig.from_dict(data.get("expansion", {})),
            progress=ProgressConfig.from_dict(data.get("progress", {})),
            max_failed_phases=int(pipeline_data.get("max_failed_phases", 3)),
        )


class ProjectConfigError(Exception):
    """Raised when project configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load project config at {path}: {reason}")


def load_project_config(project_path: Path) -> ProjectConfig:
    """Load project configuration from project.yaml.

    Args:
        project_path: Path to the project root directory.

    Returns:
        ProjectConfig instance.

    Raises:
        ProjectConfigError: If the file is missing, unreadable, or not a mapping.
    """
    config_file = project_path / CONFIG_FILENAME
    if not config_file.exists():
        raise ProjectConfigError(config_file, "File not found")

    yaml = YAML(typ="safe")
    try:
        with config_file.open(encoding="utf-8") as f:
            data = yaml.load(f)
    except (OSError, YAMLError) as e:
        raise ProjectConfigError(config_file, str(e)) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProjectConfigError(config_file, "Expected a mapping at the top level")

    try:
        return ProjectConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ProjectConfigError(config_file, f"Invalid value: {e}") from e


def create_default_config(name: str) -> ProjectConfig:
    """Create a default project configuration."""
    return ProjectConfig(name=name)


def write_default_config(project_path: Path, name: str) -> Path:
    """Write a starter project.yaml and return its path."""
    project_path.mkdir(parents=True, exist_ok=True)
    config_file = project_path / CONFIG_FILENAME
    data = {
        "name": name,
        "version": 1,
        "provider": DEFAULT_PROVIDER,
        "generation": {"temperature": 0.7, "max_output_tokens": 8192},
        "roster": {"max_attempts": 3, "retry_delay": 1.0, "default_count": 8, "max_count": 40},
        "expansion": {
            "inter_batch_delay": 0.5,
            "summary_window": 10,
            "batch_sizing": {
                "large_threshold": 10,
                "large_size": 6,
                "medium_threshold": 5,
                "medium_size": 5,
            },
        },
        "pipeline": {"max_failed_phases": 3},
    }
    yaml = YAML()
    yaml.default_flow_style = False
    with config_file.open("w", encoding="utf-8") as f:
        yaml.dump(data, f)
    return config_file
