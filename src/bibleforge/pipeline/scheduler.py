"""Phase scheduler with progress reporting.

The scheduler owns an ordered list of phases and is the only thing that
mutates them. Every transition recomputes overall progress and posts a
PhaseUpdateEvent to the injected sink without waiting for delivery.

Overall progress is ``finished / total * 100 + active_progress / total``
where a finished phase is one that completed or failed. It never
decreases for the lifetime of the scheduler.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Literal

from bibleforge.models.phase import Phase, PhaseUpdateEvent, SchedulerStatus
from bibleforge.observability.logging import get_logger
from bibleforge.pipeline.progress import NullProgressSink

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from bibleforge.models.phase import PhaseStatus
    from bibleforge.pipeline.progress import ProgressSink

log = get_logger(__name__)

EventType = Literal["phase_started", "phase_progress", "phase_completed", "phase_failed"]


class PhaseNotFoundError(KeyError):
    """Raised when a phase id is not registered with the scheduler."""

    def __init__(self, phase_id: str) -> None:
        self.phase_id = phase_id
        super().__init__(f"Unknown phase '{phase_id}'")

    def __str__(self) -> str:
        return str(self.args[0])


class PhaseTransitionError(Exception):
    """Raised on an illegal phase state transition."""

    def __init__(self, phase_id: str, current: PhaseStatus, requested: PhaseStatus) -> None:
        self.phase_id = phase_id
        self.current = current
        self.requested = requested
        super().__init__(f"Phase '{phase_id}' cannot move from {current} to {requested}")


class PhaseScheduler:
    """Drive a fixed, ordered sequence of phases.

    Methods are synchronous; sink notifications run as background tasks
    on the current event loop. Call ``drain()`` before discarding the
    scheduler to let outstanding notifications finish.

    Attributes:
        current_phase: Id of the most recently started, still active phase.
    """

    def __init__(
        self,
        phases: Iterable[tuple[str, str]],
        sink: ProgressSink | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            phases: ``(id, name)`` pairs in execution order.
            sink: Receiver for update events. Defaults to a null sink.

        Raises:
            ValueError: If phase ids repeat.
        """
        self._phases: dict[str, Phase] = {}
        for phase_id, name in phases:
            if phase_id in self._phases:
                raise ValueError(f"Duplicate phase id '{phase_id}'")
            self._phases[phase_id] = Phase(id=phase_id, name=name)
        self._order = list(self._phases)
        self._sink: ProgressSink = sink or NullProgressSink()
        self._overall = 0.0
        self._pending: set[asyncio.Task[None]] = set()
        self.current_phase: str | None = None

    @property
    def phase_ids(self) -> list[str]:
        return list(self._order)

    @property
    def overall_progress(self) -> float:
        return self._overall

    def get_phase(self, phase_id: str) -> Phase:
        """Return a copy of one phase.

        Raises:
            PhaseNotFoundError: If the id is unknown.
        """
        return self._require(phase_id).model_copy()

    def start(self, phase_id: str) -> None:
        """Move a pending phase to active.

        Raises:
            PhaseNotFoundError: If the id is unknown.
            PhaseTransitionError: If the phase is not pending.
        """
        phase = self._require(phase_id)
        self._transition(phase, "active")
        phase.start_time = time.time()
        phase.progress = 0.0
        self.current_phase = phase_id
        log.debug("phase_started", phase=phase_id)
        self._notify("phase_started", phase)

    def update_progress(self, phase_id: str, percent: float, message: str | None = None) -> None:
        """Record progress within an active phase.

        Updates for phases that are not active are ignored with a warning.
        ``percent`` is clamped to [0, 100] and never lowers stored progress.

        Raises:
            PhaseNotFoundError: If the id is unknown.
        """
        phase = self._require(phase_id)
        if phase.status != "active":
            log.warning("progress_ignored", phase=phase_id, status=phase.status)
            return
        clamped = min(100.0, max(0.0, float(percent)))
        phase.progress = max(phase.progress, clamped)
        if message is not None:
            phase.message = message
        self._notify("phase_progress", phase)

    def complete(self, phase_id: str) -> None:
        """Mark an active phase completed.

        Raises:
            PhaseNotFoundError: If the id is unknown.
            PhaseTransitionError: If the phase is not active.
        """
        phase = self._require(phase_id)
        self._transition(phase, "completed")
        phase.progress = 100.0
        phase.end_time = time.time()
        self._release(phase_id)
        log.debug("phase_completed", phase=phase_id, duration=phase.duration_seconds)
        self._notify("phase_completed", phase)

    def fail(self, phase_id: str, error: BaseException | str) -> None:
        """Mark an active phase failed, keeping its progress.

        Raises:
            PhaseNotFoundError: If the id is unknown.
            PhaseTransitionError: If the phase is not active.
        """
        phase = self._require(phase_id)
        self._transition(phase, "failed")
        phase.message = str(error)
        phase.end_time = time.time()
        self._release(phase_id)
        log.warning("phase_failed", phase=phase_id, error=str(error))
        self._notify("phase_failed", phase)

    @contextmanager
    def track(self, phase_id: str) -> Iterator[Phase]:
        """Start a phase, completing it on exit or failing it on error.

        The exception is re-raised after the phase is marked failed.
        """
        self.start(phase_id)
        try:
            yield self._phases[phase_id]
        except Exception as e:
            self.fail(phase_id, e)
            raise
        self.complete(phase_id)

    def get_status(self) -> SchedulerStatus:
        """Return a snapshot of every phase and overall progress."""
        return SchedulerStatus(
            phases=[self._phases[pid].model_copy() for pid in self._order],
            current_phase=self.current_phase,
            overall_progress=self._overall,
        )

    async def drain(self) -> None:
        """Wait for every outstanding sink notification to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _require(self, phase_id: str) -> Phase:
        phase = self._phases.get(phase_id)
        if phase is None:
            raise PhaseNotFoundError(phase_id)
        return phase

    def _transition(self, phase: Phase, target: PhaseStatus) -> None:
        allowed = phase.status == "pending" if target == "active" else phase.status == "active"
        if not allowed:
            raise PhaseTransitionError(phase.id, phase.status, target)
        phase.status = target

    def _release(self, phase_id: str) -> None:
        if self.current_phase == phase_id:
            self.current_phase = None

    def _recompute_overall(self) -> float:
        total = len(self._order)
        if total == 0:
            return self._overall
        finished = sum(1 for p in self._phases.values() if p.status in ("completed", "failed"))
        active = sum(p.progress for p in self._phases.values() if p.status == "active")
        computed = min(100.0, finished / total * 100 + active / total)
        self._overall = max(self._overall, computed)
        return self._overall

    def _notify(self, event_type: EventType, phase: Phase) -> None:
        event = PhaseUpdateEvent(
            type=event_type,
            phase_id=phase.id,
            phase_name=phase.name,
            phase_index=self._order.index(phase.id),
            status=phase.status,
            progress=phase.progress,
            message=phase.message,
            overall_progress=self._recompute_overall(),
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("progress_event_dropped", phase=phase.id, reason="no running loop")
            return
        task = loop.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: PhaseUpdateEvent) -> None:
        try:
            await self._sink.post(event)
        except Exception as e:
            # Sink delivery is best effort
            log.warning("progress_sink_failed", phase=event.phase_id, error=str(e))
