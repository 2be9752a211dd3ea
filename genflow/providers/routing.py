"""Dispatch text units to the text provider and media units to the media provider."""

from __future__ import annotations

from typing import Any

from genflow.jobs.models import UnitKind
from genflow.providers.base import GeneratedAsset, GenerationProvider

TEXT_KINDS = frozenset({UnitKind.CONCEPT, UnitKind.DESCRIPTION})


class RoutingProvider:
    def __init__(self, text: GenerationProvider, media: GenerationProvider):
        self._text = text
        self._media = media

    async def generate(
        self,
        kind: UnitKind,
        prompt: str,
        refs: list[str],
        options: dict[str, Any] | None = None,
    ) -> GeneratedAsset:
        target = self._text if UnitKind(kind) in TEXT_KINDS else self._media
        return await target.generate(kind, prompt, refs, options)
