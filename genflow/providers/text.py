"""Text provider: app concepts and store descriptions from an LLM, returned as JSON bytes."""

from __future__ import annotations

import json
from typing import Any

from genflow.errors import InvalidInput, ProviderRejected
from genflow.jobs.models import ConceptSummary, UnitKind
from genflow.llm.base import LLMClient
from genflow.providers.base import GeneratedAsset


def _json_asset(data: dict) -> GeneratedAsset:
    return GeneratedAsset(data=json.dumps(data).encode("utf-8"), content_type="application/json")


class TextProvider:
    def __init__(self, llm: LLMClient):
        self._llm = llm

    async def generate(
        self,
        kind: UnitKind,
        prompt: str,
        refs: list[str],
        options: dict[str, Any] | None = None,
    ) -> GeneratedAsset:
        kind = UnitKind(kind)
        if kind == UnitKind.CONCEPT:
            concept = await self._llm.complete_structured(prompt, ConceptSummary)
            return _json_asset(concept.model_dump(mode="json"))
        if kind == UnitKind.DESCRIPTION:
            if refs:
                prompt = prompt + "\n\nScreenshots:\n" + "\n".join(refs)
            text = (await self._llm.complete(prompt)).strip()
            if not text:
                raise ProviderRejected("LLM returned an empty description")
            return _json_asset({"description": text})
        raise InvalidInput(f"Text provider cannot produce {kind.value}")
