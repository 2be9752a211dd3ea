"""OpenAI LLM client with structured output via JSON in prompt."""

from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    BadRequestError,
)
from pydantic import BaseModel

from genflow.errors import InvalidInput, ProviderRejected, ProviderTimeout, UnknownGenerationError
from genflow.llm.base import parse_structured, schema_prompt


class OpenAIClient:
    """OpenAI chat completion with optional structured (JSON) output."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-5.2",
    ):
        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model

    async def complete(self, prompt: str, **kwargs: Any) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=kwargs.get("model") or self._model,
                messages=[{"role": "user", "content": prompt}],
                **{k: v for k, v in kwargs.items() if k not in ("model",)},
            )
        except APITimeoutError as e:
            raise ProviderTimeout(f"OpenAI request timed out: {e}") from e
        except BadRequestError as e:
            raise InvalidInput(f"OpenAI rejected the prompt: {e.message}") from e
        except APIStatusError as e:
            raise ProviderRejected(f"OpenAI returned {e.status_code}: {e.message}") from e
        except APIConnectionError as e:
            raise UnknownGenerationError(f"OpenAI connection failed: {e}") from e
        msg = response.choices[0].message
        return msg.content or ""

    async def complete_structured(self, prompt: str, schema: type[BaseModel], **kwargs: Any) -> BaseModel:
        raw = await self.complete(schema_prompt(prompt, schema), **kwargs)
        return parse_structured(raw, schema)
