"""LLM provider abstraction layer.

Usage:
    from services.llm_providers import get_llm_provider

    provider = get_llm_provider()  # Primary model from settings
"""

from services.llm_providers.base import BaseLLMProvider


def get_llm_provider(model: str | None = None) -> BaseLLMProvider:
    """Factory: return a provider for the configured endpoint."""
    from services.llm_providers.openai_compat import OpenAICompatibleLLMProvider

    return OpenAICompatibleLLMProvider(model=model)


__all__ = [
    "BaseLLMProvider",
    "get_llm_provider",
]
