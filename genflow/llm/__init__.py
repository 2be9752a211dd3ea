"""LLM adapter layer: OpenAI and Anthropic behind a common protocol."""

from genflow.llm.anthropic_provider import AnthropicClient
from genflow.llm.base import LLMClient
from genflow.llm.openai_provider import OpenAIClient


def get_llm(provider_name: str, **kwargs: object) -> LLMClient:
    """Return the configured LLM client. provider_name: 'openai' | 'anthropic'."""
    if provider_name.lower() == "anthropic":
        return AnthropicClient(**kwargs)
    return OpenAIClient(**kwargs)


__all__ = ["LLMClient", "OpenAIClient", "AnthropicClient", "get_llm"]
