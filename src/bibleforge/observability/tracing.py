"""Run correlation for pipeline invocations.

Every pipeline run gets a UUID that is stored in a context variable and
bound into structlog's contextvars, so every log event (and every JSONL
LLM log entry) emitted during the run carries the same ``run_id``.
``phase_context`` does the same for the phase being run.
Concurrent runs in separate tasks keep separate ids.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator

_pipeline_run_id: ContextVar[str | None] = ContextVar("pipeline_run_id", default=None)


def generate_run_id() -> str:
    """Generate a unique run ID for a pipeline invocation."""
    return str(uuid.uuid4())


def set_pipeline_run_id(run_id: str | None) -> None:
    """Set the pipeline run ID for the current context."""
    _pipeline_run_id.set(run_id)


def get_pipeline_run_id() -> str | None:
    """Get the current pipeline run ID, or None outside a run."""
    return _pipeline_run_id.get()


@contextmanager
def run_context(run_id: str) -> Iterator[str]:
    """Bind ``run_id`` for the duration of a block.

    Sets the context variable and binds it into structlog contextvars;
    both are restored on exit.

    Args:
        run_id: The run ID to bind.

    Yields:
        The bound run ID.
    """
    token = _pipeline_run_id.set(run_id)
    with structlog.contextvars.bound_contextvars(run_id=run_id):
        try:
            yield run_id
        finally:
            _pipeline_run_id.reset(token)


@contextmanager
def phase_context(phase: str) -> Iterator[str]:
    """Bind ``phase`` into structlog contextvars for the duration of a block."""
    with structlog.contextvars.bound_contextvars(phase=phase):
        yield phase
