"""Generation providers: HTTP media, LLM text, routing and an offline mock."""

import logging

from genflow.config import Settings
from genflow.llm import get_llm
from genflow.providers.base import GeneratedAsset, GenerationProvider
from genflow.providers.media import MediaProvider
from genflow.providers.mock import MockProvider
from genflow.providers.routing import RoutingProvider
from genflow.providers.text import TextProvider

logger = logging.getLogger(__name__)


def get_provider(settings: Settings) -> GenerationProvider:
    """Build the provider named by GENFLOW_PROVIDER ('mock' | 'http')."""
    if settings.genflow_provider.lower() == "mock":
        logger.info("Using mock generation provider")
        return MockProvider(latency_s=settings.genflow_mock_latency_s)

    if settings.genflow_llm_provider.lower() == "anthropic":
        llm = get_llm("anthropic", api_key=settings.anthropic_api_key, model=settings.genflow_anthropic_model)
    else:
        llm = get_llm("openai", api_key=settings.openai_api_key, model=settings.genflow_openai_model)
    media = MediaProvider(
        settings.genflow_media_base_url,
        settings.genflow_media_api_key,
        settings.genflow_media_models,
        timeout=settings.genflow_unit_timeout_s,
        download_attempts=settings.genflow_download_attempts,
    )
    logger.info("Using HTTP media provider at %s with %s text", settings.genflow_media_base_url, settings.genflow_llm_provider)
    return RoutingProvider(TextProvider(llm), media)


__all__ = [
    "GeneratedAsset",
    "GenerationProvider",
    "MediaProvider",
    "MockProvider",
    "RoutingProvider",
    "TextProvider",
    "get_provider",
]
