"""Anthropic LLM client with structured output via JSON parse."""

from typing import Any

from anthropic import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncAnthropic,
    BadRequestError,
)
from pydantic import BaseModel

from genflow.errors import InvalidInput, ProviderRejected, ProviderTimeout, UnknownGenerationError
from genflow.llm.base import parse_structured, schema_prompt


class AnthropicClient:
    """Anthropic messages API with optional structured (JSON) output."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
    ):
        self._client = AsyncAnthropic(api_key=api_key)
        self._model = model

    async def complete(self, prompt: str, **kwargs: Any) -> str:
        try:
            response = await self._client.messages.create(
                model=kwargs.get("model") or self._model,
                max_tokens=kwargs.get("max_tokens", 4096),
                messages=[{"role": "user", "content": prompt}],
            )
        except APITimeoutError as e:
            raise ProviderTimeout(f"Anthropic request timed out: {e}") from e
        except BadRequestError as e:
            raise InvalidInput(f"Anthropic rejected the prompt: {e.message}") from e
        except APIStatusError as e:
            raise ProviderRejected(f"Anthropic returned {e.status_code}: {e.message}") from e
        except APIConnectionError as e:
            raise UnknownGenerationError(f"Anthropic connection failed: {e}") from e
        return response.content[0].text if response.content else ""

    async def complete_structured(self, prompt: str, schema: type[BaseModel], **kwargs: Any) -> BaseModel:
        raw = await self.complete(schema_prompt(prompt, schema), **kwargs)
        return parse_structured(raw, schema)
