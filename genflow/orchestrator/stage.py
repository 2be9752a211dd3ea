"""Fan-out/fan-in of one stage's units under a concurrency bound."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from genflow.errors import Cancelled
from genflow.orchestrator.unit import UnitOutcome, UnitSpec, UnitTask

logger = logging.getLogger(__name__)

OnOutcome = Callable[[UnitOutcome], Awaitable[None]]
AnchorRef = Callable[[UnitOutcome], Awaitable[str | None]]


@dataclass
class StageReport:
    succeeded: dict[int, UnitOutcome] = field(default_factory=dict)
    failed: list[UnitOutcome] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.skipped)

    def merge(self, other: "StageReport") -> "StageReport":
        self.succeeded.update(other.succeeded)
        self.failed.extend(other.failed)
        self.skipped.extend(other.skipped)
        return self


class StageController:
    """Launches at most ``concurrency`` units at once and reports in completion order.

    ``on_outcome`` is awaited once per launched unit, one at a time, so the
    caller can fold outcomes without its own locking. After ``cancel_event``
    is set no new unit starts; those slots come back as ``skipped``.
    """

    def __init__(self, concurrency: int, unit_task: UnitTask, *, name: str = "stage"):
        self.concurrency = max(1, concurrency)
        self._unit_task = unit_task
        self.name = name

    async def run(
        self,
        specs: Sequence[UnitSpec],
        on_outcome: OnOutcome | None = None,
        cancel_event: asyncio.Event | None = None,
        *,
        anchor_ref: AnchorRef | None = None,
    ) -> StageReport:
        """Run every spec. With *anchor_ref*, slot order's first unit runs alone and
        its reference is prepended to the refs of all remaining units."""
        specs = list(specs)
        if anchor_ref is None or len(specs) < 2:
            return await self._run_batch(specs, on_outcome, cancel_event)

        anchor, rest = specs[0], specs[1:]
        report = await self._run_batch([anchor], on_outcome, cancel_event)
        anchor_outcome = report.succeeded.get(anchor.slot)
        if anchor_outcome is not None:
            ref = await anchor_ref(anchor_outcome)
            if ref:
                rest = [dataclasses.replace(s, refs=[ref, *s.refs]) for s in rest]
        else:
            logger.warning("Stage %s: style anchor %s failed; continuing without it", self.name, anchor.name)
        return report.merge(await self._run_batch(rest, on_outcome, cancel_event))

    async def _run_batch(
        self,
        specs: list[UnitSpec],
        on_outcome: OnOutcome | None,
        cancel_event: asyncio.Event | None,
    ) -> StageReport:
        report = StageReport()
        if not specs:
            return report
        semaphore = asyncio.Semaphore(self.concurrency)

        async def launch(spec: UnitSpec) -> tuple[UnitSpec, UnitOutcome | None]:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return spec, None
                return spec, await self._unit_task.run(spec, cancel_event)

        tasks = [asyncio.create_task(launch(spec), name=f"unit-{spec.name}") for spec in specs]
        try:
            for next_done in asyncio.as_completed(tasks):
                spec, outcome = await next_done
                if outcome is None or (isinstance(outcome.error, Cancelled) and outcome.attempts == 0):
                    report.skipped.append(spec.slot)
                    continue
                if outcome.ok:
                    report.succeeded[spec.slot] = outcome
                else:
                    report.failed.append(outcome)
                if on_outcome is not None:
                    await on_outcome(outcome)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        logger.info(
            "Stage %s: %d succeeded, %d failed, %d skipped",
            self.name, len(report.succeeded), len(report.failed), len(report.skipped),
        )
        return report
