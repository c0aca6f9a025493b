"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from bibleforge.pipeline.batching import BatchSizing
from bibleforge.pipeline.config import ExpansionConfig, ProjectConfig, RosterConfig
from tests.fixtures.scripted_generator import TaggedCompiler


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer overrides out of test runs."""
    monkeypatch.delenv("BF_PROVIDER", raising=False)
    monkeypatch.delenv("BF_PROGRESS_URL", raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def compiler() -> TaggedCompiler:
    """Prompt compiler that tags prompts with their template name."""
    return TaggedCompiler()


@pytest.fixture
def fast_config() -> ProjectConfig:
    """Default configuration without retry or batch delays."""
    return ProjectConfig(
        name="test",
        roster=RosterConfig(retry_delay=0.0),
        expansion=ExpansionConfig(sizing=BatchSizing(), inter_batch_delay=0.0),
    )
