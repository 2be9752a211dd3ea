"""Deterministic offline provider with scriptable latency and failures."""

from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from genflow.errors import GenerationError, ProviderRejected
from genflow.jobs.models import ConceptColors, ConceptEffects, ConceptSummary, UnitKind
from genflow.providers.base import GeneratedAsset

DEFAULT_SCREEN_NAMES = [
    "Home", "Search", "Detail", "Profile", "Settings",
    "Onboarding", "Notifications", "Favorites", "Checkout", "Help",
]

_CONTENT_TYPES = {
    UnitKind.ICON: "image/png",
    UnitKind.SCREEN: "image/png",
    UnitKind.COVER_IMAGE: "image/png",
    UnitKind.COVER_VIDEO: "video/mp4",
}


@dataclass
class _FailureRule:
    kind: UnitKind
    match: str | None
    error: GenerationError
    times: int | None

    def applies(self, kind: UnitKind, prompt: str) -> bool:
        if self.kind != kind or self.times == 0:
            return False
        return self.match is None or self.match in prompt


@dataclass
class MockCall:
    kind: UnitKind
    prompt: str
    refs: list[str] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)


class MockProvider:
    """Offline provider used by tests and ``--mock`` runs.

    ``fail(kind, match=..., times=...)`` scripts errors for calls whose prompt
    contains *match*; ``times=None`` fails forever.
    """

    def __init__(self, latency_s: float = 0.0, latency_by_kind: dict[UnitKind, float] | None = None):
        self._latency_s = latency_s
        self._latency_by_kind = dict(latency_by_kind or {})
        self._rules: list[_FailureRule] = []
        self.calls: list[MockCall] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def fail(
        self,
        kind: UnitKind,
        match: str | None = None,
        *,
        error: GenerationError | None = None,
        times: int | None = None,
    ) -> None:
        self._rules.append(_FailureRule(kind, match, error or ProviderRejected("scripted failure"), times))

    def set_latency(self, kind: UnitKind, latency_s: float) -> None:
        self._latency_by_kind[kind] = latency_s

    def calls_for(self, kind: UnitKind) -> list[MockCall]:
        return [c for c in self.calls if c.kind == kind]

    async def generate(
        self,
        kind: UnitKind,
        prompt: str,
        refs: list[str],
        options: dict[str, Any] | None = None,
    ) -> GeneratedAsset:
        kind = UnitKind(kind)
        self.calls.append(MockCall(kind, prompt, list(refs), dict(options or {})))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self._latency_by_kind.get(kind, self._latency_s)
            if delay:
                await asyncio.sleep(delay)
            for rule in self._rules:
                if rule.applies(kind, prompt):
                    if rule.times is not None:
                        rule.times -= 1
                    raise rule.error
            return self._asset(kind, prompt, options or {})
        finally:
            self.in_flight -= 1

    def _asset(self, kind: UnitKind, prompt: str, options: dict[str, Any]) -> GeneratedAsset:
        digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()
        if kind == UnitKind.CONCEPT:
            name = "App " + digest[:6]
            concept = ConceptSummary(
                name=name,
                subtitle="Generated offline",
                description=prompt[:200],
                category="Productivity",
                style_guide="Flat, rounded corners, one accent color",
                icon_prompt=f"Icon for {name}",
                cover_prompt=f"Cover art for {name}",
                screen_names=list(DEFAULT_SCREEN_NAMES),
                colors=ConceptColors(primary="#" + digest[:6], accent="#" + digest[6:12]),
                effects=ConceptEffects(corner_radius="12px", shadow_style="soft"),
            )
            return GeneratedAsset(data=concept.model_dump_json().encode("utf-8"), content_type="application/json")
        if kind == UnitKind.DESCRIPTION:
            text = f"KEY FEATURES\n- Offline rewrite {digest[:6]}\n\nBENEFITS\n- Clear\n\nPERFECT FOR\n- Everyone"
            return GeneratedAsset(data=json.dumps({"description": text}).encode("utf-8"), content_type="application/json")
        data = json.dumps({"kind": kind.value, "digest": digest}).encode("utf-8")
        return GeneratedAsset(
            data=data,
            content_type=_CONTENT_TYPES[kind],
            width=options.get("width"),
            height=options.get("height"),
        )
