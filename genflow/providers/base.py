"""Generation provider protocol and the asset it returns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from genflow.jobs.models import UnitKind


@dataclass
class GeneratedAsset:
    data: bytes
    content_type: str
    width: int | None = None
    height: int | None = None


class GenerationProvider(Protocol):
    """One call produces one asset; failures raise ProviderError subclasses."""

    async def generate(
        self,
        kind: UnitKind,
        prompt: str,
        refs: list[str],
        options: dict[str, Any] | None = None,
    ) -> GeneratedAsset: ...
