"""LangChain chat model adapter for the TextGenerator protocol."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import httpx

from bibleforge.observability.logging import get_logger
from bibleforge.providers.base import (
    GenerationAuthError,
    GenerationError,
    GenerationOptions,
    GenerationQuotaError,
    GenerationTimeoutError,
)
from bibleforge.providers.factory import create_chat_model

if TYPE_CHECKING:
    from collections.abc import Callable

    from langchain_core.language_models import BaseChatModel

    ChatModelFactory = Callable[..., BaseChatModel]

log = get_logger(__name__)

_QUOTA_MARKERS = ("429", "rate limit", "ratelimit", "quota", "resource_exhausted")
_AUTH_MARKERS = ("401", "403", "api key", "api_key", "unauthorized", "permission denied")


def message_text(content: str | list[Any]) -> str:
    """Flatten chat message content into plain text.

    Gemini returns content as a list of blocks; only ``type == "text"``
    blocks contribute. Anything else is stringified.
    """
    if isinstance(content, str):
        return content

    parts = [
        block["text"]
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    ]
    if parts:
        return "\n".join(parts)
    return str(content)


def classify_failure(provider: str, exc: Exception) -> GenerationError:
    """Map an arbitrary provider exception onto the GenerationError taxonomy."""
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, (httpx.TimeoutException, TimeoutError, asyncio.TimeoutError)):
        return GenerationTimeoutError(provider, f"Request timed out: {exc}")

    text = str(exc).lower()
    if any(marker in text for marker in _QUOTA_MARKERS):
        return GenerationQuotaError(provider, str(exc))
    if any(marker in text for marker in _AUTH_MARKERS):
        return GenerationAuthError(provider, str(exc))
    return GenerationError(provider, str(exc))


class ChatModelGenerator:
    """Generate text through a LangChain chat model.

    A chat model is created lazily per distinct GenerationOptions, since
    temperature and output limits are construction-time settings for most
    LangChain integrations.
    """

    def __init__(
        self,
        provider_name: str,
        model_name: str,
        *,
        chat_model_factory: ChatModelFactory = create_chat_model,
    ) -> None:
        self._provider_name = provider_name
        self._model_name = model_name
        self._factory = chat_model_factory
        self._models: dict[GenerationOptions, BaseChatModel] = {}

    @property
    def model_name(self) -> str:
        return f"{self._provider_name}/{self._model_name}"

    def _model_for(self, options: GenerationOptions) -> BaseChatModel:
        model = self._models.get(options)
        if model is None:
            model = self._factory(
                self._provider_name,
                self._model_name,
                temperature=options.temperature,
                max_tokens=options.max_output_tokens,
            )
            self._models[options] = model
        return model

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Invoke the chat model with a single user prompt.

        Raises:
            GenerationError: On any provider failure, classified into
                quota, timeout or auth subclasses where recognisable.
        """
        try:
            response = await self._model_for(options).ainvoke(prompt)
        except Exception as e:
            error = classify_failure(self._provider_name, e)
            log.warning(
                "generation_failed",
                model=self.model_name,
                error_type=type(error).__name__,
                error=str(e),
            )
            raise error from e

        return message_text(response.content)
