"""Completion client factory helpers."""

from __future__ import annotations

from parley.config.settings import Settings
from parley.exceptions.provider import ProviderConfigurationError
from .base import CompletionClient


def create_client(settings: Settings) -> CompletionClient:
    """Instantiate the configured completion client implementation."""
    provider_name = (settings.llm_provider or "openai").lower()
    if provider_name == "openai":
        from parley.providers.openai_compat import OpenAICompletionClient

        return OpenAICompletionClient(settings)

    if provider_name == "ollama":
        from parley.providers.ollama import OllamaCompletionClient

        return OllamaCompletionClient(settings)

    raise ProviderConfigurationError(
        f"Unknown provider: {provider_name}. Available: openai, ollama",
        provider_name=provider_name,
    )
