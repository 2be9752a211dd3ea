"""Tests for a single generation unit: retries, timeouts, cancellation and asset storage."""

import asyncio

from genflow.errors import Cancelled, InvalidInput, ProviderRejected, ProviderTimeout, UnknownGenerationError
from genflow.jobs.models import UnitKind
from genflow.orchestrator.unit import UnitSpec, UnitTask
from genflow.providers import MockProvider


def _spec(kind=UnitKind.SCREEN, name="Home", prompt="Screen Home"):
    return UnitSpec(slot=0, name=name, kind=kind, prompt=prompt)


def _task(provider, assets, **kwargs):
    kwargs.setdefault("max_retries", 2)
    kwargs.setdefault("timeout_s", 5.0)
    kwargs.setdefault("backoff_s", 0.0)
    return UnitTask(provider, assets, job_id="job_test", **kwargs)


def test_success_stores_one_asset(provider, assets):
    outcome = asyncio.run(_task(provider, assets).run(_spec()))
    assert outcome.ok
    assert outcome.attempts == 1
    assert outcome.asset_ref in assets
    assert len(assets) == 1
    assert outcome.error_message == ""


def test_retry_then_succeed(provider, assets):
    provider.fail(UnitKind.SCREEN, times=2)
    outcome = asyncio.run(_task(provider, assets).run(_spec()))
    assert outcome.ok
    assert outcome.attempts == 3
    assert len(provider.calls) == 3
    # Only the successful attempt writes an asset
    assert len(assets) == 1


def test_retries_exhausted(provider, assets):
    provider.fail(UnitKind.SCREEN, error=ProviderRejected("quota exceeded"))
    outcome = asyncio.run(_task(provider, assets).run(_spec()))
    assert not outcome.ok
    assert isinstance(outcome.error, ProviderRejected)
    assert outcome.attempts == 3
    assert outcome.asset_ref is None
    assert outcome.error_message == "quota exceeded"
    assert len(assets) == 0


def test_non_retryable_error_stops_immediately(provider, assets):
    provider.fail(UnitKind.SCREEN, error=InvalidInput("prompt rejected"))
    outcome = asyncio.run(_task(provider, assets).run(_spec()))
    assert isinstance(outcome.error, InvalidInput)
    assert outcome.attempts == 1
    assert len(provider.calls) == 1


def test_timeout_becomes_provider_timeout(assets):
    provider = MockProvider(latency_s=0.5)
    outcome = asyncio.run(_task(provider, assets, max_retries=0, timeout_s=0.05).run(_spec()))
    assert isinstance(outcome.error, ProviderTimeout)
    assert "timed out" in outcome.error_message
    assert outcome.attempts == 1
    assert len(assets) == 0


def test_cancelled_before_start(provider, assets):
    async def run():
        cancel = asyncio.Event()
        cancel.set()
        return await _task(provider, assets).run(_spec(), cancel)

    outcome = asyncio.run(run())
    assert isinstance(outcome.error, Cancelled)
    assert outcome.attempts == 0
    assert provider.calls == []


def test_cancel_stops_further_retries(provider, assets):
    provider.fail(UnitKind.SCREEN)

    async def run():
        cancel = asyncio.Event()
        task = _task(provider, assets, backoff_s=0.05)
        pending = asyncio.create_task(task.run(_spec(), cancel))
        await asyncio.sleep(0.01)
        cancel.set()
        return await pending

    outcome = asyncio.run(run())
    assert isinstance(outcome.error, Cancelled)
    assert outcome.attempts == 1
    assert len(provider.calls) == 1


def test_concept_returns_text_without_asset(provider, assets):
    spec = _spec(kind=UnitKind.CONCEPT, name="concept", prompt="A habit tracker")
    outcome = asyncio.run(_task(provider, assets).run(spec))
    assert outcome.ok
    assert outcome.asset_ref is None
    assert outcome.text["screen_names"][0] == "Home"
    assert len(assets) == 0


def test_unexpected_exception_is_unknown_error(assets):
    class BrokenProvider:
        def __init__(self):
            self.calls = 0

        async def generate(self, kind, prompt, refs, options=None):
            self.calls += 1
            raise RuntimeError("socket closed")

    broken = BrokenProvider()
    outcome = asyncio.run(_task(broken, assets).run(_spec()))
    assert isinstance(outcome.error, UnknownGenerationError)
    assert "socket closed" in outcome.error_message
    # Unknown errors are retried
    assert broken.calls == 3
