"""Tests for stage fan-out: concurrency bound, slot stability, cancellation, style anchor."""

import asyncio

from genflow.jobs.models import UnitKind
from genflow.orchestrator.stage import StageController
from genflow.orchestrator.unit import UnitSpec, UnitTask
from genflow.providers import MockProvider

NAMES = ["Home", "Search", "Detail", "Profile", "Settings"]


def _specs(names=NAMES):
    return [UnitSpec(slot=i, name=n, kind=UnitKind.SCREEN, prompt=f"Screen {n}") for i, n in enumerate(names)]


def _controller(provider, assets, concurrency=3):
    task = UnitTask(provider, assets, max_retries=0, timeout_s=5.0, backoff_s=0.0)
    return StageController(concurrency, task, name="screens")


def test_concurrency_bound(assets):
    provider = MockProvider(latency_s=0.02)
    report = asyncio.run(_controller(provider, assets, concurrency=2).run(_specs()))
    assert len(report.succeeded) == 5
    assert provider.max_in_flight == 2


def test_slots_are_stable_regardless_of_completion_order(assets):
    # First slot finishes last
    class SlowHome(MockProvider):
        async def generate(self, kind, prompt, refs, options=None):
            if "Home" in prompt:
                await asyncio.sleep(0.05)
            return await super().generate(kind, prompt, refs, options)

    slow = SlowHome()
    order = []

    async def collect(outcome):
        order.append(outcome.slot)

    report = asyncio.run(_controller(slow, assets, concurrency=5).run(_specs(), collect))
    assert order[-1] == 0
    assert sorted(report.succeeded) == [0, 1, 2, 3, 4]
    assert report.succeeded[0].name == "Home"
    assert report.succeeded[3].name == "Profile"


def test_failed_units_are_reported_with_their_slot(provider, assets):
    provider.fail(UnitKind.SCREEN, "Search")
    report = asyncio.run(_controller(provider, assets).run(_specs()))
    assert sorted(report.succeeded) == [0, 2, 3, 4]
    assert [(o.slot, o.name) for o in report.failed] == [(1, "Search")]
    assert report.total == 5


def test_cancellation_skips_unlaunched_units(assets):
    provider = MockProvider(latency_s=0.02)

    async def run():
        cancel = asyncio.Event()

        async def on_outcome(outcome):
            cancel.set()

        return await _controller(provider, assets, concurrency=1).run(_specs(), on_outcome, cancel)

    report = asyncio.run(run())
    # The unit already waiting on the semaphore may start before the cancel lands
    assert 1 <= len(report.succeeded) <= 2
    assert len(report.skipped) >= 3
    assert report.total == 5
    assert len(provider.calls) == len(report.succeeded)


def test_on_outcome_is_called_one_at_a_time(assets):
    provider = MockProvider(latency_s=0.005)
    active = 0
    peak = 0
    seen = []

    async def on_outcome(outcome):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        seen.append(outcome.slot)
        active -= 1

    asyncio.run(_controller(provider, assets, concurrency=5).run(_specs(), on_outcome))
    assert peak == 1
    assert sorted(seen) == [0, 1, 2, 3, 4]


def test_style_anchor_runs_first_and_is_prepended(provider, assets):
    specs = [
        UnitSpec(slot=i, name=n, kind=UnitKind.SCREEN, prompt=f"Screen {n}", refs=["icon-url"])
        for i, n in enumerate(NAMES[:3])
    ]

    async def anchor_ref(outcome):
        return f"url-of-{outcome.name}"

    report = asyncio.run(_controller(provider, assets).run(specs, anchor_ref=anchor_ref))
    assert len(report.succeeded) == 3
    calls = provider.calls_for(UnitKind.SCREEN)
    assert calls[0].prompt == "Screen Home"
    assert calls[0].refs == ["icon-url"]
    for call in calls[1:]:
        assert call.refs == ["url-of-Home", "icon-url"]


def test_failed_anchor_leaves_refs_untouched(provider, assets):
    provider.fail(UnitKind.SCREEN, "Home")

    async def anchor_ref(outcome):
        return "never"

    report = asyncio.run(_controller(provider, assets).run(_specs(NAMES[:3]), anchor_ref=anchor_ref))
    assert [o.slot for o in report.failed] == [0]
    assert sorted(report.succeeded) == [1, 2]
    assert all(c.refs == [] for c in provider.calls_for(UnitKind.SCREEN)[1:])
