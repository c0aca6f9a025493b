"""Pydantic models for BibleForge inputs, outputs, and phase state."""

from bibleforge.models.bible import (
    ROLES,
    Brief,
    CharacterProfile,
    PipelineResult,
    PipelineStats,
    Provenance,
    Role,
    RosterEntry,
)
from bibleforge.models.phase import Phase, PhaseStatus, PhaseUpdateEvent, SchedulerStatus

__all__ = [
    "ROLES",
    "Brief",
    "CharacterProfile",
    "Phase",
    "PhaseStatus",
    "PhaseUpdateEvent",
    "PipelineResult",
    "PipelineStats",
    "Provenance",
    "Role",
    "RosterEntry",
    "SchedulerStatus",
]
