"""AI collaborator integrations using LangChain."""

from bibleforge.providers.base import (
    GenerationAuthError,
    GenerationError,
    GenerationOptions,
    GenerationQuotaError,
    GenerationTimeoutError,
    TextGenerator,
)
from bibleforge.providers.chat_generator import ChatModelGenerator, classify_failure
from bibleforge.providers.factory import (
    create_chat_model,
    get_default_model,
    split_provider_string,
)
from bibleforge.providers.logging_wrapper import LoggingGenerator

__all__ = [
    "ChatModelGenerator",
    "GenerationAuthError",
    "GenerationError",
    "GenerationOptions",
    "GenerationQuotaError",
    "GenerationTimeoutError",
    "LoggingGenerator",
    "TextGenerator",
    "classify_failure",
    "create_chat_model",
    "get_default_model",
    "split_provider_string",
]
