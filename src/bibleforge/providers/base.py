"""Base protocol and types for the AI text-generation collaborator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class GenerationOptions:
    """Sampling options for a single generation call.

    Attributes:
        temperature: Sampling temperature (0.0 to 2.0).
        max_output_tokens: Upper bound on generated tokens.
    """

    temperature: float = 0.7
    max_output_tokens: int = 8192


class TextGenerator(Protocol):
    """Protocol for the AI collaborator.

    A generator turns a prompt into free text. Every call may fail; callers
    never assume a particular shape for the returned text.
    """

    @property
    def model_name(self) -> str:
        """Return the identifier of the underlying model."""
        ...

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate text for ``prompt``.

        Args:
            prompt: Full prompt text.
            options: Sampling options.

        Returns:
            The generated text, unparsed.

        Raises:
            GenerationError: If the call fails for any reason.
        """
        ...


class GenerationError(Exception):
    """Base exception for failed generation calls."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class GenerationQuotaError(GenerationError):
    """Raised when the provider's quota or rate limit is exhausted."""

    pass


class GenerationTimeoutError(GenerationError):
    """Raised when the provider does not answer in time."""

    pass


class GenerationAuthError(GenerationError):
    """Raised when credentials are missing or rejected."""

    pass
