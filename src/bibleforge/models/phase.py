"""Pydantic models for phase scheduling and progress reporting."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PhaseStatus = Literal["pending", "active", "completed", "failed"]


class Phase(BaseModel):
    """One named, ordered unit of pipeline work.

    Instances are owned by a PhaseScheduler and only mutated through it.

    Attributes:
        id: Stable identifier (e.g., "premise", "characters").
        name: Human-readable name.
        status: Lifecycle state.
        progress: Percent complete within the phase, 0-100.
        message: Latest status line.
        start_time: Unix timestamp when the phase became active.
        end_time: Unix timestamp when the phase completed or failed.
    """

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    status: PhaseStatus = "pending"
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""
    start_time: float | None = None
    end_time: float | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Elapsed time for a finished phase, None otherwise."""
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time


class PhaseUpdateEvent(BaseModel):
    """Snapshot posted to a ProgressSink on every phase transition."""

    model_config = ConfigDict(frozen=True)

    type: Literal["phase_started", "phase_progress", "phase_completed", "phase_failed"]
    phase_id: str
    phase_name: str
    phase_index: int
    status: PhaseStatus
    progress: float
    message: str
    overall_progress: float


class SchedulerStatus(BaseModel):
    """Point-in-time view of every phase in a run."""

    phases: list[Phase]
    current_phase: str | None
    overall_progress: float
