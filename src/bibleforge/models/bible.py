"""Pydantic models for story bible inputs and outputs.

The brief is the pipeline input. Roster entries are the uniquely named
stubs produced before expansion; character profiles describe the shape an
expanded entity must have to be accepted. The final PipelineResult is
frozen once assembled.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["protagonist", "antagonist", "supporting"]
Provenance = Literal["tier1", "tier2"]

ROLES: tuple[Role, ...] = ("protagonist", "antagonist", "supporting")


class Brief(BaseModel):
    """Free-text premise plus optional seeds for a story bible.

    Attributes:
        synopsis: Premise of the story.
        theme: Central theme.
        protagonist: Free-form description of the lead, name first if known.
        characters: Free-form descriptions of other characters to include.
        setting: Free-form description of the world to preserve.
        target_count: Requested total cast size; the model decides if None.
    """

    synopsis: str = Field(min_length=1)
    theme: str = ""
    protagonist: str | None = None
    characters: list[str] = Field(default_factory=list)
    setting: str | None = None
    target_count: int | None = Field(default=None, ge=0)

    @field_validator("characters")
    @classmethod
    def drop_blank_characters(cls, value: list[str]) -> list[str]:
        """Ignore empty character descriptions."""
        return [item for item in value if item.strip()]

    @property
    def domain_context(self) -> str:
        """Text used for keyword heuristics and prompt context."""
        return f"{self.synopsis} {self.theme}".strip()


class RosterEntry(BaseModel):
    """A uniquely named stub entity awaiting expansion.

    Attributes:
        name: Canonical name, unique case-insensitively within a roster.
        role: Narrative role.
        archetype: Short archetype label.
        info: User-supplied description this entry was seeded from.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    role: Role = "supporting"
    archetype: str = "Supporting Character"
    info: str | None = None

    @property
    def seeded(self) -> bool:
        """True when the entry came from user-supplied information."""
        return bool(self.info and self.info.strip())


class CharacterProfile(BaseModel):
    """Accepted shape for an expanded character.

    Only ``name`` is mandatory; the three-dimensional sections are kept
    as loose mappings because models vary their inner keys.
    """

    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)
    archetype: str | None = None
    arc: str | None = None
    description: str | None = None
    physiology: dict[str, Any] | None = None
    sociology: dict[str, Any] | None = None
    psychology: dict[str, Any] | None = None


class PipelineStats(BaseModel):
    """Run statistics and provenance for a PipelineResult."""

    model_config = ConfigDict(frozen=True)

    provenance: Provenance
    run_id: str
    story_type: str
    llm_calls: int = 0
    duration_seconds: float = 0.0
    roster_size: int = 0
    fallback_entities: int = 0
    failed_phases: list[str] = Field(default_factory=list)
    tier1_error: str | None = None


class PipelineResult(BaseModel):
    """Assembled story bible. Immutable once built.

    Attributes:
        phase_outputs: Parsed (or raw-wrapped) output keyed by phase name.
        roster: Final roster the characters were expanded from.
        stats: Provenance and counters.
    """

    model_config = ConfigDict(frozen=True)

    phase_outputs: dict[str, Any]
    roster: list[RosterEntry] = Field(default_factory=list)
    stats: PipelineStats

    @property
    def provenance(self) -> Provenance:
        return self.stats.provenance

    def to_artifact(self) -> dict[str, Any]:
        """Flatten into the persisted story bible document."""
        return {
            **self.phase_outputs,
            "roster": [entry.model_dump(exclude_none=True) for entry in self.roster],
            "stats": self.stats.model_dump(),
        }
