"""Logging wrapper for text generators."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from bibleforge.observability.tracing import get_pipeline_run_id

if TYPE_CHECKING:
    from bibleforge.observability import LLMLogger
    from bibleforge.providers.base import GenerationOptions, TextGenerator


class LoggingGenerator:
    """Wrapper that records every generation call to the LLMLogger.

    The phase label is mutable so a single wrapper can follow the pipeline
    through its phases.

    Attributes:
        phase: Phase name stamped on subsequent log entries.
    """

    def __init__(
        self,
        generator: TextGenerator,
        logger: LLMLogger,
        phase: str = "",
    ) -> None:
        """Initialize logging wrapper.

        Args:
            generator: Underlying generator to wrap.
            logger: LLMLogger instance for recording calls.
            phase: Initial phase label for log entries.
        """
        self._generator = generator
        self._logger = logger
        self.phase = phase

    @property
    def model_name(self) -> str:
        return self._generator.model_name

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate text and log the call, successful or not."""
        start_time = time.perf_counter()
        try:
            content = await self._generator.generate(prompt, options)
        except Exception as e:
            self._record(prompt, options, "", time.perf_counter() - start_time, error=str(e))
            raise

        self._record(prompt, options, content, time.perf_counter() - start_time)
        return content

    def _record(
        self,
        prompt: str,
        options: GenerationOptions,
        content: str,
        duration: float,
        error: str | None = None,
    ) -> None:
        entry = self._logger.create_entry(
            phase=self.phase,
            model=self.model_name,
            prompt=prompt,
            content=content,
            duration_seconds=duration,
            temperature=options.temperature,
            max_output_tokens=options.max_output_tokens,
            run_id=get_pipeline_run_id(),
            error=error,
        )
        self._logger.log(entry)
