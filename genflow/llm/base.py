"""LLM client protocol and shared JSON-reply parsing."""

import json
import re
from typing import Any, Protocol

from pydantic import BaseModel

from genflow.errors import InvalidInput

JSON_INSTRUCTION = (
    "Respond with a single JSON object that conforms to the schema. "
    "No markdown, no code fence, only raw JSON."
)


class LLMClient(Protocol):
    """Protocol for async LLM backends (OpenAI, Anthropic)."""

    async def complete(self, prompt: str, **kwargs: Any) -> str:
        """Return raw text completion."""
        ...

    async def complete_structured(self, prompt: str, schema: type[BaseModel], **kwargs: Any) -> BaseModel:
        """Return completion parsed into the given Pydantic model (JSON)."""
        ...


def schema_prompt(prompt: str, schema: type[BaseModel]) -> str:
    fields = ", ".join(schema.model_fields)
    return f"{prompt}\n\nJSON fields: {fields}\n{JSON_INSTRUCTION}"


def parse_structured(raw: str, schema: type[BaseModel]) -> BaseModel:
    """Parse a model reply into *schema*; malformed replies are InvalidInput."""
    text = raw.strip()
    # Strip possible markdown code block
    if text.startswith("```"):
        text = re.sub(r"^```\w*\n?", "", text)
        text = re.sub(r"\n?```\s*$", "", text)
    try:
        return schema.model_validate(json.loads(text))
    except ValueError as e:
        raise InvalidInput(f"LLM reply is not a valid {schema.__name__}: {e}") from e
