"""JSONL logger for generation calls.

Writes one structured entry per AI collaborator call to logs/llm_calls.jsonl.
Prompts and responses are stored in full.

Only active when --log flag is passed to CLI.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class LLMLogEntry:
    """Entry for generation call logging."""

    timestamp: str
    phase: str
    model: str

    # Request
    prompt: str
    temperature: float
    max_output_tokens: int

    # Response
    content: str
    duration_seconds: float

    run_id: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class LLMLogger:
    """Logger for generation calls in JSONL format.

    Attributes:
        log_path: Path to the JSONL log file.
        enabled: Whether logging is enabled.
    """

    def __init__(self, project_path: Path, enabled: bool = True) -> None:
        """Initialize the logger.

        Args:
            project_path: Root path of the project.
            enabled: Whether to actually write logs.
        """
        self.enabled = enabled
        self.log_path = project_path / "logs" / "llm_calls.jsonl"
        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: LLMLogEntry) -> None:
        """Append an entry to the JSONL log."""
        if not self.enabled:
            return

        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(entry)) + "\n")

    @staticmethod
    def create_entry(
        phase: str,
        model: str,
        prompt: str,
        content: str,
        duration_seconds: float,
        temperature: float = 0.7,
        max_output_tokens: int = 8192,
        run_id: str | None = None,
        error: str | None = None,
        **metadata: Any,
    ) -> LLMLogEntry:
        """Create a log entry stamped with the current time.

        Args:
            phase: Pipeline phase that issued the call.
            model: Model identifier used.
            prompt: Full prompt text.
            content: Response text ("" for failed calls).
            duration_seconds: Time taken for call.
            temperature: Sampling temperature.
            max_output_tokens: Output token ceiling.
            run_id: Pipeline run correlation id.
            error: Error message if call failed.
            **metadata: Additional metadata.

        Returns:
            LLMLogEntry ready for logging.
        """
        return LLMLogEntry(
            timestamp=datetime.now(UTC).isoformat(),
            phase=phase,
            model=model,
            prompt=prompt,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            content=content,
            duration_seconds=duration_seconds,
            run_id=run_id,
            error=error,
            metadata=dict(metadata),
        )

    def read_entries(self) -> list[LLMLogEntry]:
        """Read all entries back from the log file."""
        if not self.log_path.exists():
            return []

        entries = []
        with self.log_path.open(encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    entries.append(LLMLogEntry(**json.loads(line)))
        return entries
