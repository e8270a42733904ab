"""Factory for creating LLM providers from configuration."""

from __future__ import annotations

from ctxplan.config import LLMConfig
from ctxplan.exceptions import ConfigurationError
from ctxplan.llm.base import LLMProvider

# Local Ollama server, OpenAI-compatible. It accepts any API key.
OLLAMA_BASE_URL = "http://localhost:11434/v1"
OLLAMA_API_KEY = "ollama"


def create_provider(config: LLMConfig) -> LLMProvider:
    """Create an LLM provider from configuration.

    Args:
        config: LLM configuration with provider, model, etc.

    Returns:
        An initialized LLM provider.

    Raises:
        ConfigurationError: If the provider is unknown.
        ProviderNotAvailableError: If the provider's SDK is not installed.
    """
    provider = config.provider.lower()

    if provider in ("openai", "azure-openai", "local", "ollama"):
        from ctxplan.llm.openai_provider import OpenAIProvider

        api_key, base_url = config.api_key, config.base_url
        if provider == "ollama":
            api_key = api_key or OLLAMA_API_KEY
            base_url = base_url or OLLAMA_BASE_URL
        return OpenAIProvider(
            model=config.model,
            api_key=api_key,
            base_url=base_url,
        )
    elif provider == "anthropic":
        from ctxplan.llm.anthropic_provider import AnthropicProvider

        return AnthropicProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
        )
    else:
        raise ConfigurationError(
            f"Unknown LLM provider: '{provider}'. "
            f"Supported providers: openai, azure-openai, anthropic, local, ollama"
        )
