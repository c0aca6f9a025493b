"""Factory for creating chat models behind the generator protocol.

Uses LangChain's init_chat_model abstraction for unified provider
instantiation. Provider-specific credential lookup is applied before the
unified call so misconfiguration fails fast with a GenerationAuthError.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from bibleforge.observability.logging import get_logger
from bibleforge.providers.base import GenerationAuthError, GenerationError

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

# Provider default models - None means model must be explicitly specified
PROVIDER_DEFAULTS: dict[str, str | None] = {
    "ollama": None,
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-20250514",
    "google": "gemini-2.5-flash",
}

_KNOWN_PROVIDERS = frozenset(PROVIDER_DEFAULTS)

# Environment variable holding the API key, per provider
_API_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}

_PACKAGES: dict[str, str] = {
    "ollama": "langchain-ollama",
    "openai": "langchain-openai",
    "anthropic": "langchain-anthropic",
    "google": "langchain-google-genai",
}


def get_default_model(provider_name: str) -> str | None:
    """Get default model for a provider, or None if it must be explicit."""
    return PROVIDER_DEFAULTS.get(normalize_provider(provider_name))


def normalize_provider(provider_name: str) -> str:
    """Normalize provider name, resolving aliases ("gemini" -> "google")."""
    name = provider_name.strip().lower()
    if name == "gemini":
        return "google"
    return name


def split_provider_string(provider_string: str) -> tuple[str, str]:
    """Split ``"provider/model"`` into its parts.

    A bare provider name resolves to that provider's default model.

    Raises:
        GenerationError: If the provider has no default and no model is given.
    """
    if "/" in provider_string:
        provider, model = provider_string.split("/", 1)
        return normalize_provider(provider), model

    provider = normalize_provider(provider_string)
    model = get_default_model(provider)
    if model is None:
        raise GenerationError(
            provider,
            f"Provider '{provider}' requires explicit model. Use {provider}/<model-name>",
        )
    return provider, model


def create_chat_model(provider_name: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain BaseChatModel.

    Args:
        provider_name: Provider identifier (ollama, openai, anthropic, google).
        model: Model name/identifier.
        **kwargs: Additional provider-specific options.

    Returns:
        Configured BaseChatModel.

    Raises:
        GenerationAuthError: If required credentials are missing.
        GenerationError: If the provider is unknown or its package is missing.
    """
    provider = normalize_provider(provider_name)
    if provider not in _KNOWN_PROVIDERS:
        log.error("provider_unknown", provider=provider)
        raise GenerationError(provider, f"Unknown provider: {provider}")

    kwargs = _resolve_credentials(provider, kwargs)

    try:
        from langchain.chat_models import init_chat_model

        chat_model: BaseChatModel = init_chat_model(
            model=model,
            model_provider="google_genai" if provider == "google" else provider,
            **kwargs,
        )
    except ImportError as e:
        package = _PACKAGES[provider]
        log.error("provider_import_error", provider=provider, package=package)
        raise GenerationError(
            provider, f"{package} not installed. Run: pip install {package}"
        ) from e

    log.info("chat_model_created", provider=provider, model=model)
    return chat_model


def _resolve_credentials(provider: str, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Fill in host / API key from the environment; never mutates ``kwargs``."""
    kwargs = dict(kwargs)

    if provider == "ollama":
        host = kwargs.pop("host", None) or os.getenv("OLLAMA_HOST")
        if not host:
            log.error("provider_config_error", provider=provider, missing="OLLAMA_HOST")
            raise GenerationAuthError(
                provider, "OLLAMA_HOST not configured. Set OLLAMA_HOST environment variable."
            )
        kwargs["base_url"] = host
        return kwargs

    env_var = _API_KEY_ENV[provider]
    api_key = kwargs.get("api_key") or os.getenv(env_var)
    if not api_key:
        log.error("provider_config_error", provider=provider, missing=env_var)
        raise GenerationAuthError(
            provider, f"API key required. Set {env_var} environment variable."
        )
    kwargs["api_key"] = api_key
    return kwargs
