"""Observability module for BibleForge.

Provides structured logging, generation call tracking, and run correlation.
"""

from bibleforge.observability.llm_logger import LLMLogEntry, LLMLogger
from bibleforge.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
)
from bibleforge.observability.tracing import (
    generate_run_id,
    get_pipeline_run_id,
    phase_context,
    run_context,
    set_pipeline_run_id,
)

__all__ = [
    "LLMLogEntry",
    "LLMLogger",
    "close_file_logging",
    "configure_logging",
    "generate_run_id",
    "get_logger",
    "get_pipeline_run_id",
    "phase_context",
    "run_context",
    "set_pipeline_run_id",
]
