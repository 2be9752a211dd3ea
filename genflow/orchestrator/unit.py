"""One generation unit: a provider call with bounded retries and a per-attempt timeout."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from genflow.assets.store import AssetStore
from genflow.errors import Cancelled, GenerationError, ProviderTimeout, UnknownGenerationError, short_message
from genflow.jobs.models import UnitKind
from genflow.providers.base import GeneratedAsset, GenerationProvider

logger = logging.getLogger(__name__)

TEXT_CONTENT_TYPES = frozenset({"application/json"})


@dataclass
class UnitSpec:
    """Input of one unit. ``slot`` is fixed at fan-out and identifies the result."""

    slot: int
    name: str
    kind: UnitKind
    prompt: str
    refs: list[str] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class UnitOutcome:
    slot: int
    name: str
    kind: UnitKind
    asset_ref: str | None = None
    text: Any = None
    error: GenerationError | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> str:
        return short_message(self.error) if self.error is not None else ""


class UnitTask:
    """Runs a UnitSpec against the provider, storing the asset only on success."""

    def __init__(
        self,
        provider: GenerationProvider,
        asset_store: AssetStore,
        *,
        max_retries: int = 2,
        timeout_s: float = 180.0,
        backoff_s: float = 1.0,
        job_id: str = "",
    ):
        self._provider = provider
        self._assets = asset_store
        self.max_retries = max(0, max_retries)
        self.timeout_s = timeout_s
        self.backoff_s = backoff_s
        self.job_id = job_id

    async def run(self, spec: UnitSpec, cancel_event: asyncio.Event | None = None) -> UnitOutcome:
        last_error: GenerationError | None = None
        attempts = 0
        for attempt in range(1, self.max_retries + 2):
            if attempt > 1 and self.backoff_s > 0:
                await asyncio.sleep(self.backoff_s * (attempt - 1))
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Job %s unit %s: cancelled before attempt %d", self.job_id, spec.name, attempt)
                return UnitOutcome(spec.slot, spec.name, spec.kind, error=Cancelled("cancelled"), attempts=attempts)
            attempts = attempt
            try:
                generated = await self._attempt(spec)
                return await self._store(spec, generated, attempts)
            except GenerationError as e:
                last_error = e
            if not last_error.retryable:
                logger.warning(
                    "Job %s unit %s: attempt %d failed (%s, not retryable): %s",
                    self.job_id, spec.name, attempt, last_error.code, last_error,
                )
                break
            logger.warning(
                "Job %s unit %s: attempt %d/%d failed (%s): %s",
                self.job_id, spec.name, attempt, self.max_retries + 1, last_error.code, last_error,
            )
        return UnitOutcome(spec.slot, spec.name, spec.kind, error=last_error, attempts=attempts)

    async def _attempt(self, spec: UnitSpec) -> GeneratedAsset:
        logger.info("Job %s unit %s: generating %s", self.job_id, spec.name, UnitKind(spec.kind).value)
        try:
            return await asyncio.wait_for(
                self._provider.generate(spec.kind, spec.prompt, list(spec.refs), dict(spec.options)),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(f"{spec.name} timed out after {self.timeout_s:g}s") from e
        except GenerationError:
            raise
        except Exception as e:
            raise UnknownGenerationError(f"{type(e).__name__}: {e}") from e

    async def _store(self, spec: UnitSpec, generated: GeneratedAsset, attempts: int) -> UnitOutcome:
        outcome = UnitOutcome(spec.slot, spec.name, spec.kind, attempts=attempts)
        if generated.content_type in TEXT_CONTENT_TYPES:
            try:
                outcome.text = json.loads(generated.data.decode("utf-8"))
            except ValueError as e:
                raise UnknownGenerationError(f"{spec.name}: provider returned malformed JSON: {e}") from e
            return outcome
        try:
            outcome.asset_ref = await self._assets.put(generated.data, generated.content_type)
        except Exception as e:
            raise UnknownGenerationError(f"{spec.name}: asset store write failed: {e}") from e
        logger.info("Job %s unit %s: stored %s after %d attempt(s)", self.job_id, spec.name, outcome.asset_ref, attempts)
        return outcome
