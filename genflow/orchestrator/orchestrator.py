"""Job orchestration: submission, per-job stage execution and single-writer status publication.

Each job is driven by one background task. Every change to a job record goes
through ``_publish``, which holds the job's lock while it folds the change
into the last published record and writes one store patch, so readers only
ever see whole transitions and progress never moves backwards.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from genflow.assets.store import AssetStore, build_asset_store
from genflow.config import Settings, get_settings
from genflow.errors import (
    FatalStageError,
    InvalidTransitionError,
    JobImmutableError,
    JobNotFoundError,
    NotFoundError,
    PartialStageError,
    ValidationError,
    short_message,
)
from genflow.jobs.models import (
    ConceptImages,
    ConceptSummary,
    FailedUnit,
    GenerationJob,
    JobKind,
    JobSnapshot,
    JobStatus,
    UnitKind,
    empty_payload,
    to_snapshot,
)
from genflow.jobs.params import validate_params, parse_kind
from genflow.jobs.store import JobStore, build_job_store, new_job_id
from genflow.orchestrator.pipelines import (
    MAX_DESCRIPTION_SCREENSHOTS,
    StagePlan,
    concept_cover_prompt,
    concept_prompt,
    concept_style,
    cover_image_prompt,
    cover_video_prompt,
    description_prompt,
    icon_prompt,
    plan_for,
    screen_names_for,
    screen_prompt,
    standalone_icon_prompt,
)
from genflow.orchestrator.progress import ProgressEstimator
from genflow.orchestrator.runner import JobRunner
from genflow.orchestrator.stage import StageController
from genflow.orchestrator.unit import UnitOutcome, UnitSpec, UnitTask
from genflow.owners import (
    COVER_IMAGE_SLOT,
    COVER_VIDEO_SLOT,
    ICON_SLOT,
    InMemoryOwnerRegistry,
    OwnerRegistry,
    screen_refs,
    screen_slot,
)
from genflow.providers import GenerationProvider, get_provider

logger = logging.getLogger(__name__)

CANCELLED_ERROR = "cancelled"
SUPERSEDED_ERROR = "Cancelled due to new job creation"

ChangeSet = dict[str, Any] | Callable[[GenerationJob], dict[str, Any]]


class CancelAck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    status: JobStatus
    cancelled: bool


@dataclass
class _JobContext:
    """In-process state of a running job. ``job`` is the last published record."""

    job: GenerationJob
    params: Any
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    concept: ConceptSummary | None = None
    concepts: list[ConceptSummary] = field(default_factory=list)
    icon_ref: str | None = None
    stage_started: float = 0.0

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def owner_id(self) -> str:
        return self.job.owner_id

    @property
    def kind(self) -> JobKind:
        return JobKind(self.job.kind)


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        assets: AssetStore,
        provider: GenerationProvider,
        owners: OwnerRegistry,
        settings: Settings | None = None,
        *,
        estimator: ProgressEstimator | None = None,
        runner: JobRunner | None = None,
    ):
        self._store = store
        self._assets = assets
        self._provider = provider
        self._owners = owners
        self._settings = settings or get_settings()
        self._estimator = estimator or ProgressEstimator.from_settings(self._settings)
        self._runner = runner or JobRunner()
        self._contexts: dict[str, _JobContext] = {}

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def owners(self) -> OwnerRegistry:
        return self._owners

    # -- public API -------------------------------------------------------

    async def submit(self, owner_id: str, kind: JobKind | str, params: dict[str, Any] | None = None) -> str:
        """Validate, create the pending record and start execution in the background."""
        kind = parse_kind(kind)
        typed = validate_params(kind, params)
        if not await self._owners.exists(owner_id):
            raise NotFoundError(f"Owner not found: {owner_id}")
        if kind == JobKind.COVER_VIDEO and not await self._owners.get_attachment(owner_id, COVER_IMAGE_SLOT):
            raise ValidationError("A cover video needs a cover image; generate and save one first")
        if kind == JobKind.IMPROVE_DESCRIPTION:
            profile = await self._owners.get_profile(owner_id)
            if profile is None or not profile.description:
                raise ValidationError("App has no description to improve")

        if self._settings.genflow_supersede_active_jobs:
            await self._supersede(owner_id, kind)

        job = GenerationJob(
            job_id=new_job_id(),
            owner_id=owner_id,
            kind=kind,
            params=typed.model_dump(mode="json"),
            payload=empty_payload(kind),
        )
        await self._store.create(job)
        ctx = _JobContext(job=job, params=typed)
        self._contexts[job.job_id] = ctx
        self._runner.spawn(job.job_id, self._execute(ctx))
        logger.info("Submitted %s job %s for owner %s", kind.value, job.job_id, owner_id)
        return job.job_id

    async def get_job(self, job_id: str) -> JobSnapshot | None:
        job = await self._store.get(job_id)
        return to_snapshot(job) if job else None

    def subscribe(self, job_id: str) -> AsyncIterator[JobSnapshot]:
        return self._store.subscribe(job_id)

    async def list_jobs(
        self,
        owner_id: str,
        kind: JobKind | str | None = None,
        active_only: bool = False,
    ) -> list[JobSnapshot]:
        kind = parse_kind(kind) if kind else None
        jobs = await self._store.list_by_owner(owner_id, kind, active_only)
        return [to_snapshot(j) for j in jobs]

    async def cancel(self, job_id: str) -> CancelAck:
        """Best effort: fail the job with "cancelled" and stop new launches. Idempotent."""
        job = await self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if job.is_terminal:
            return CancelAck(job_id=job_id, status=job.status, cancelled=False)
        landed, latest = await self._terminate(job_id, CANCELLED_ERROR, "Cancelled")
        if landed:
            logger.info("Job %s cancelled", job_id)
        status = latest.status if latest is not None else job.status
        return CancelAck(job_id=job_id, status=status, cancelled=landed)

    def mark_cancelled(self, job_id: str) -> None:
        """Stop launching units for a job that was failed outside this orchestrator."""
        ctx = self._contexts.get(job_id)
        if ctx is not None:
            ctx.cancel.set()

    async def wait(self, job_id: str, timeout: float | None = None) -> JobSnapshot | None:
        await self._runner.wait(job_id, timeout)
        return await self.get_job(job_id)

    async def shutdown(self) -> None:
        await self._runner.shutdown()

    async def asset_url(self, ref: str) -> str:
        return await self._resolve(ref)

    # -- publication ------------------------------------------------------

    async def _publish(
        self,
        ctx: _JobContext,
        changes: ChangeSet,
        *,
        new_refs: Sequence[str] = (),
        attach: Sequence[tuple[str, str]] = (),
    ) -> bool:
        """Fold *changes* into the job and write one patch.

        Returns False when the job is already terminal; *new_refs* are then
        deleted so no asset of a finished job is left behind.
        """
        async with ctx.lock:
            if ctx.job.is_terminal:
                await self._discard(ctx, new_refs)
                return False
            patch = changes(ctx.job) if callable(changes) else dict(changes)
            try:
                ctx.job = await self._store.patch(ctx.job_id, patch)
            except JobImmutableError:
                # Terminated from outside (another instance, stuck-job sweep)
                latest = await self._store.get(ctx.job_id)
                if latest is not None:
                    ctx.job = latest
                ctx.cancel.set()
                await self._discard(ctx, new_refs)
                return False
            except JobNotFoundError:
                ctx.job = ctx.job.model_copy(update={"status": JobStatus.FAILED})
                ctx.cancel.set()
                await self._discard(ctx, new_refs)
                return False
            for slot, ref in attach:
                await self._attach(ctx, slot, ref)
            return True

    async def _attach(self, ctx: _JobContext, slot: str, ref: str) -> None:
        """Point the owner's *slot* at *ref*, then delete what it replaced."""
        try:
            previous = await self._owners.attach(ctx.owner_id, slot, ref)
        except KeyError:
            logger.warning("Job %s: owner %s is gone, dropping %s", ctx.job_id, ctx.owner_id, ref)
            await self._assets.delete(ref)
            return
        if previous and previous != ref:
            await self._assets.delete(previous)
            logger.info("Job %s: %s/%s replaced %s with %s", ctx.job_id, ctx.owner_id, slot, previous, ref)

    async def _discard(self, ctx: _JobContext, refs: Sequence[str]) -> None:
        for ref in refs:
            await self._assets.delete(ref)
            logger.info("Job %s is %s; deleted late asset %s", ctx.job_id, ctx.job.status.value, ref)

    async def _enter(self, ctx: _JobContext, plan: StagePlan, *, step: str | None = None,
                     payload: dict[str, Any] | None = None) -> None:
        ctx.stage_started = time.monotonic()
        changes: dict[str, Any] = {
            "status": plan.status,
            "current_step": step or plan.label,
            "progress_percentage": self._estimator.stage_start(ctx.kind, plan.stage, ctx.job.progress_percentage),
        }
        if payload:
            changes["payload"] = payload
        if await self._publish(ctx, changes):
            logger.info("Job %s -> %s (%s)", ctx.job_id, plan.status.value, changes["current_step"])

    async def _finish(self, ctx: _JobContext, status: JobStatus, step: str, error: str | None = None) -> None:
        def build(job: GenerationJob) -> dict[str, Any]:
            changes: dict[str, Any] = {
                "status": status,
                "current_step": step,
                "progress_percentage": self._estimator.final(status, job.progress_percentage),
            }
            if error is not None:
                changes["error"] = short_message(error)
            return changes

        if await self._publish(ctx, build):
            logger.info("Job %s finished %s: %s", ctx.job_id, status.value, error or step)

    async def _fail(self, ctx: _JobContext, message: str) -> None:
        await self._finish(ctx, JobStatus.FAILED, "Failed", error=message)

    async def _terminate(self, job_id: str, error: str, step: str) -> tuple[bool, GenerationJob | None]:
        changes = {"status": JobStatus.FAILED, "error": error, "current_step": step}
        ctx = self._contexts.get(job_id)
        if ctx is not None:
            ctx.cancel.set()
            return await self._publish(ctx, changes), ctx.job
        try:
            return True, await self._store.patch(job_id, changes)
        except (JobImmutableError, InvalidTransitionError):
            return False, await self._store.get(job_id)

    async def _supersede(self, owner_id: str, kind: JobKind) -> None:
        for job in await self._store.list_by_owner(owner_id, kind, active_only=True):
            try:
                landed, _ = await self._terminate(job.job_id, SUPERSEDED_ERROR, "Superseded")
            except JobNotFoundError:
                continue
            if landed:
                logger.info("Job %s superseded by a new %s job for owner %s", job.job_id, kind.value, owner_id)

    # -- execution --------------------------------------------------------

    async def _execute(self, ctx: _JobContext) -> None:
        logger.info("Job %s (%s) started for owner %s", ctx.job_id, ctx.kind.value, ctx.owner_id)
        stages = {
            "concept": self._concept_stage,
            "icon": self._icon_stage,
            "screens": self._screens_stage,
            "cover_image": self._cover_image_stage,
            "cover_video": self._cover_video_stage,
            "concept_images": self._concept_images_stage,
            "description": self._description_stage,
        }
        try:
            if not await self._owners.exists(ctx.owner_id):
                await self._fail(ctx, f"Owner not found: {ctx.owner_id}")
                return
            for plan in plan_for(ctx.kind, ctx.params):
                if ctx.cancel.is_set() or ctx.job.is_terminal:
                    break
                await stages[plan.stage](ctx, plan)
        except FatalStageError as e:
            logger.warning("Job %s failed in %s stage: %s", ctx.job_id, e.stage, e.message)
            await self._fail(ctx, str(e))
        except asyncio.CancelledError:
            logger.warning("Job %s interrupted before finishing", ctx.job_id)
            raise
        except Exception as e:
            logger.exception("Job %s crashed", ctx.job_id)
            await self._fail(ctx, short_message(e))
        finally:
            self._contexts.pop(ctx.job_id, None)

    def _controller(self, ctx: _JobContext, plan: StagePlan) -> StageController:
        unit_task = UnitTask(
            self._provider,
            self._assets,
            max_retries=self._settings.genflow_max_retries,
            timeout_s=self._settings.genflow_unit_timeout_s,
            backoff_s=self._settings.genflow_retry_backoff_s,
            job_id=ctx.job_id,
        )
        return StageController(
            self._settings.concurrency_for(plan.stage), unit_task, name=f"{ctx.job_id}/{plan.stage}",
        )

    async def _run_single(self, ctx: _JobContext, plan: StagePlan, spec: UnitSpec) -> UnitOutcome | None:
        """Run one long unit with a heartbeat driving time-based progress."""
        ticker = asyncio.create_task(self._heartbeat(ctx, plan), name=f"heartbeat-{ctx.job_id}")
        try:
            report = await self._controller(ctx, plan).run([spec], cancel_event=ctx.cancel)
        finally:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker
        if spec.slot in report.succeeded:
            return report.succeeded[spec.slot]
        return report.failed[0] if report.failed else None

    async def _heartbeat(self, ctx: _JobContext, plan: StagePlan) -> None:
        interval = self._settings.genflow_heartbeat_interval_s
        while not ctx.job.is_terminal:
            await asyncio.sleep(interval)
            elapsed = time.monotonic() - ctx.stage_started
            estimate = self._estimator.estimate(
                ctx.kind, plan.stage,
                previous=ctx.job.progress_percentage,
                elapsed=elapsed,
                unit_kind=plan.unit_kind,
            )
            if estimate.overdue:
                ctx.cancel.set()
                logger.error("Job %s: %s overdue after %.0fs", ctx.job_id, plan.stage, elapsed)
                await self._fail(ctx, f"{plan.label} timed out after {elapsed:.0f}s")
                return
            if estimate.value > ctx.job.progress_percentage:
                await self._publish(ctx, {"progress_percentage": estimate.value})

    async def _resolve(self, ref: str) -> str:
        return await self._assets.get_url(ref) or ref

    async def _anchor_url(self, outcome: UnitOutcome) -> str | None:
        return await self._resolve(outcome.asset_ref) if outcome.asset_ref else None

    def _countable(self, ctx: _JobContext, plan: StagePlan, job: GenerationJob, done: int, total: int) -> int:
        return self._estimator.estimate(
            ctx.kind, plan.stage, previous=job.progress_percentage, done=done, total=total,
        ).value

    async def _settle(self, ctx: _JobContext, plan: StagePlan, succeeded: int, total: int, noun: str) -> None:
        """Terminal status of a multi-unit final stage."""
        if ctx.job.is_terminal:
            return
        if succeeded == total:
            await self._finish(ctx, JobStatus.COMPLETED, f"Generated {total}/{total} {noun}")
        elif succeeded > 0:
            partial = PartialStageError(plan.stage, succeeded, total)
            logger.warning("Job %s partial: %s", ctx.job_id, partial)
            await self._finish(ctx, JobStatus.PARTIAL, f"Generated {succeeded}/{total} {noun}")
        else:
            await self._finish(ctx, JobStatus.FAILED, "Failed", error=f"All {total} {noun} failed")

    async def _settle_alternatives(self, ctx: _JobContext, succeeded: int, total: int, noun: str) -> None:
        """Terminal status of a stage whose units are alternatives: one success completes the job.

        Failed units stay listed in ``failed_units``.
        """
        if ctx.job.is_terminal:
            return
        if succeeded > 0:
            await self._finish(ctx, JobStatus.COMPLETED, f"Generated {succeeded}/{total} {noun}")
        else:
            await self._finish(ctx, JobStatus.FAILED, "Failed", error=f"All {total} {noun} failed")

    async def _record_failure(self, ctx: _JobContext, plan: StagePlan, outcome: UnitOutcome,
                              done: Callable[[GenerationJob], int], total: int, error: str | None = None) -> None:
        """Add *outcome* to ``failed_units`` and count it towards the stage's progress."""
        def build(job: GenerationJob) -> dict[str, Any]:
            failed = [*job.failed_units, FailedUnit(unit_name=outcome.name, error_message=error or outcome.error_message)]
            return {
                "failed_units": failed,
                "progress_percentage": self._countable(ctx, plan, job, done(job) + len(failed), total),
            }

        await self._publish(ctx, build)

    # -- stages -----------------------------------------------------------

    def _parse_concept(self, text: Any, screens_count: int | None) -> ConceptSummary:
        try:
            concept = ConceptSummary.model_validate(text)
        except PydanticValidationError as e:
            raise FatalStageError("concept", f"provider returned an invalid concept ({e.error_count()} errors)")
        if screens_count:
            concept = concept.model_copy(update={"screen_names": screen_names_for(concept, screens_count)})
        return concept

    async def _concept_stage(self, ctx: _JobContext, plan: StagePlan) -> None:
        p = ctx.params
        if not plan.single:
            await self._concept_batch(ctx, plan)
            return
        screens_count = getattr(p, "screens_count", None)
        await self._enter(ctx, plan)
        spec = UnitSpec(
            0, "concept", plan.unit_kind,
            concept_prompt(p.description, p.category_hint, p.ui_style, screens_count),
        )
        outcome = await self._run_single(ctx, plan, spec)
        if outcome is None or ctx.job.is_terminal:
            return
        if not outcome.ok:
            raise FatalStageError("concept", outcome.error_message)
        concept = self._parse_concept(outcome.text, screens_count)
        ctx.concept = concept
        ctx.concepts = [concept]

        payload: dict[str, Any] = {"concept": concept}
        if ctx.kind == JobKind.CONCEPT:
            payload["concepts"] = [concept]
        landed = await self._publish(ctx, lambda job: {
            "payload": payload,
            "current_step": f"Concept ready: {concept.name}",
            "progress_percentage": self._estimator.stage_end(ctx.kind, plan.stage, job.progress_percentage),
        })
        if not landed:
            return
        if ctx.kind == JobKind.FULL_APP:
            await self._adopt_concept(ctx, concept)
        elif not p.include_images:
            await self._finish(ctx, JobStatus.COMPLETED, "Concept generated")

    async def _adopt_concept(self, ctx: _JobContext, concept: ConceptSummary) -> None:
        """Write the concept's store text onto the owner."""
        try:
            await self._owners.update_profile(
                ctx.owner_id,
                name=concept.name,
                description=concept.description,
                category=concept.category,
                style_guide=concept.style_guide,
            )
        except KeyError:
            logger.warning("Job %s: owner %s is gone, concept not saved", ctx.job_id, ctx.owner_id)

    async def _concept_batch(self, ctx: _JobContext, plan: StagePlan) -> None:
        """Several concepts in parallel; the job goes on while at least one succeeds."""
        p = ctx.params
        total = p.num_concepts
        await self._enter(ctx, plan, step=f"Generating {total} concepts")
        specs = [
            UnitSpec(i, f"Concept {i + 1}", plan.unit_kind,
                     concept_prompt(p.description, p.category_hint, p.ui_style, variant=i, total=total))
            for i in range(total)
        ]
        found: dict[int, ConceptSummary] = {}

        async def on_outcome(outcome: UnitOutcome) -> None:
            if not outcome.ok:
                await self._record_failure(ctx, plan, outcome, lambda job: len(found), total)
                return
            try:
                concept = self._parse_concept(outcome.text, None)
            except FatalStageError as e:
                await self._record_failure(ctx, plan, outcome, lambda job: len(found), total, error=e.message)
                return
            found[outcome.slot] = concept
            ordered = [found[k] for k in sorted(found)]
            await self._publish(ctx, lambda job: {
                "payload": {"concept": ordered[0], "concepts": ordered},
                "current_step": f"Generated {len(ordered)}/{total} concepts",
                "progress_percentage": self._countable(ctx, plan, job, len(ordered) + len(job.failed_units), total),
            })

        await self._controller(ctx, plan).run(specs, on_outcome, ctx.cancel)
        if ctx.job.is_terminal:
            return
        if not found:
            raise FatalStageError("concept", f"All {total} concepts failed")
        ctx.concepts = [found[k] for k in sorted(found)]
        ctx.concept = ctx.concepts[0]
        if p.include_images:
            await self._publish(ctx, lambda job: {
                "progress_percentage": self._estimator.stage_end(ctx.kind, plan.stage, job.progress_percentage),
            })
        else:
            await self._settle_alternatives(ctx, len(found), total, "concepts")

    async def _concept_images_stage(self, ctx: _JobContext, plan: StagePlan) -> None:
        """An icon and a cover preview per concept. Image failures are listed but never fail the job."""
        concepts = list(ctx.concepts)
        total = 2 * len(concepts)
        await self._enter(ctx, plan, step=f"Generating images for {len(concepts)} concepts")
        specs = []
        for i, concept in enumerate(concepts):
            specs.append(UnitSpec(2 * i, f"Concept {i + 1} icon", UnitKind.ICON, icon_prompt(concept)))
            specs.append(UnitSpec(
                2 * i + 1, f"Concept {i + 1} cover", UnitKind.COVER_IMAGE, concept_cover_prompt(concept),
                [], {"width": 1920, "height": 1080},
            ))

        def images_done(job: GenerationJob) -> int:
            return sum(bool(v.icon_ref) + bool(v.cover_ref) for v in job.payload.concept_images.values())

        async def on_outcome(outcome: UnitOutcome) -> None:
            if not outcome.ok:
                await self._record_failure(ctx, plan, outcome, images_done, total)
                return
            ref = outcome.asset_ref
            index, is_cover = divmod(outcome.slot, 2)

            def build(job: GenerationJob) -> dict[str, Any]:
                images = dict(job.payload.concept_images)
                current = images.get(index) or ConceptImages()
                images[index] = current.model_copy(update={"cover_ref" if is_cover else "icon_ref": ref})
                done = sum(bool(v.icon_ref) + bool(v.cover_ref) for v in images.values())
                return {
                    "payload": {"concept_images": images},
                    "current_step": f"Generated {done}/{total} concept images",
                    "progress_percentage": self._countable(ctx, plan, job, done + len(job.failed_units), total),
                }

            await self._publish(ctx, build, new_refs=[ref])

        await self._controller(ctx, plan).run(specs, on_outcome, ctx.cancel)
        if ctx.job.is_terminal:
            return
        noun = "concept" if len(concepts) == 1 else "concepts"
        await self._finish(ctx, JobStatus.COMPLETED, f"Generated {len(concepts)} {noun} with images")

    async def _icon_stage(self, ctx: _JobContext, plan: StagePlan) -> None:
        if ctx.concept is not None:
            prompt = icon_prompt(ctx.concept)
        else:
            prompt = standalone_icon_prompt(ctx.params.prompt, ctx.params.style_guide)
        await self._enter(ctx, plan)
        outcome = await self._run_single(ctx, plan, UnitSpec(0, "icon", plan.unit_kind, prompt))
        if outcome is None:
            return
        if ctx.job.is_terminal:
            await self._discard(ctx, [outcome.asset_ref] if outcome.asset_ref else [])
            return
        if not outcome.ok:
            raise FatalStageError("icon", outcome.error_message)

        ref = outcome.asset_ref
        ctx.icon_ref = ref
        landed = await self._publish(
            ctx,
            lambda job: {
                "payload": {"icon_ref": ref},
                "current_step": "Icon ready",
                "progress_percentage": self._estimator.stage_end(ctx.kind, plan.stage, job.progress_percentage),
            },
            new_refs=[ref],
            attach=[(ICON_SLOT, ref)],
        )
        if landed and ctx.kind == JobKind.ICON:
            await self._finish(ctx, JobStatus.COMPLETED, "Icon generated")

    async def _screens_stage(self, ctx: _JobContext, plan: StagePlan) -> None:
        if ctx.concept is not None:
            app_name, style_guide, names = ctx.concept.name, concept_style(ctx.concept), list(ctx.concept.screen_names)
            base_refs = [await self._resolve(ctx.icon_ref)] if ctx.icon_ref else []
        else:
            p = ctx.params
            app_name, style_guide, names = p.app_name, p.style_guide, list(p.screen_names)
            base_refs = [await self._resolve(r) for r in p.reference_refs]
        total = len(names)

        await self._enter(
            ctx, plan,
            step=f"Generating {total} screens",
            payload={"screens_total": total, "screens_generated": 0, "screen_refs": {}},
        )
        specs = [
            UnitSpec(i, f"Screen {i + 1}: {name}", plan.unit_kind,
                     screen_prompt(app_name, style_guide, name, i, total), list(base_refs))
            for i, name in enumerate(names)
        ]

        async def on_outcome(outcome: UnitOutcome) -> None:
            if outcome.ok:
                ref = outcome.asset_ref

                def build(job: GenerationJob) -> dict[str, Any]:
                    generated = job.payload.screens_generated + 1
                    refs = {**job.payload.screen_refs, outcome.slot: ref}
                    return {
                        "payload": {"screens_generated": generated, "screen_refs": refs},
                        "current_step": f"Generated {generated}/{total} screens",
                        "progress_percentage": self._countable(
                            ctx, plan, job, generated + len(job.failed_units), total),
                    }

                await self._publish(ctx, build, new_refs=[ref], attach=[(screen_slot(outcome.slot), ref)])
            else:
                await self._record_failure(ctx, plan, outcome, lambda job: job.payload.screens_generated, total)

        anchor = self._anchor_url if self._settings.genflow_screens_style_anchor else None
        report = await self._controller(ctx, plan).run(specs, on_outcome, ctx.cancel, anchor_ref=anchor)
        await self._settle(ctx, plan, len(report.succeeded), total, "screens")

    async def _cover_image_stage(self, ctx: _JobContext, plan: StagePlan) -> None:
        p = ctx.params
        total = p.variant_count
        await self._enter(ctx, plan, step=f"Generating {total} cover image(s)", payload={"variants_total": total})
        options = {"width": p.width, "height": p.height}
        specs = [
            UnitSpec(i, f"Cover variant {i + 1}", plan.unit_kind,
                     cover_image_prompt(ctx.owner_id, p.description, p.user_feedback, i, total), [], dict(options))
            for i in range(total)
        ]

        async def on_outcome(outcome: UnitOutcome) -> None:
            if outcome.ok:
                ref = outcome.asset_ref

                def build(job: GenerationJob) -> dict[str, Any]:
                    variants = {**job.payload.variants, outcome.slot: ref}
                    payload: dict[str, Any] = {"variants": variants}
                    if p.auto_save:
                        payload["auto_saved_ref"] = ref
                    return {
                        "payload": payload,
                        "current_step": f"Generated {len(variants)}/{total} cover images",
                        "progress_percentage": self._countable(
                            ctx, plan, job, len(variants) + len(job.failed_units), total),
                    }

                attach = [(COVER_IMAGE_SLOT, ref)] if p.auto_save else []
                await self._publish(ctx, build, new_refs=[ref], attach=attach)
            else:
                await self._record_failure(ctx, plan, outcome, lambda job: len(job.payload.variants), total)

        if plan.single:
            outcome = await self._run_single(ctx, plan, specs[0])
            if outcome is None:
                return
            await on_outcome(outcome)
            succeeded = 1 if outcome.ok else 0
        else:
            report = await self._controller(ctx, plan).run(specs, on_outcome, ctx.cancel)
            succeeded = len(report.succeeded)
        await self._settle_alternatives(ctx, succeeded, total, "cover image" if total == 1 else "cover images")

    async def _description_stage(self, ctx: _JobContext, plan: StagePlan) -> None:
        p = ctx.params
        profile = await self._owners.get_profile(ctx.owner_id)
        if profile is None or not profile.description:
            raise FatalStageError("description", "App has no description")
        refs: list[str] = []
        if p.include_screenshots:
            screens = screen_refs(await self._owners.list_attachments(ctx.owner_id))
            refs = [await self._resolve(r) for r in screens[:MAX_DESCRIPTION_SCREENSHOTS]]
        await self._enter(ctx, plan, payload={"original_description": profile.description})
        spec = UnitSpec(
            0, "Description", plan.unit_kind, description_prompt(profile, p.user_feedback, len(refs)), refs,
        )
        outcome = await self._run_single(ctx, plan, spec)
        if outcome is None or ctx.job.is_terminal:
            return
        if not outcome.ok:
            raise FatalStageError("description", outcome.error_message)
        improved = outcome.text.get("description", "") if isinstance(outcome.text, dict) else ""
        if not improved.strip():
            raise FatalStageError("description", "provider returned an empty description")

        landed = await self._publish(ctx, {"payload": {"description": improved}, "current_step": "Description ready"})
        if not landed:
            return
        try:
            await self._owners.update_profile(ctx.owner_id, description=improved)
        except KeyError:
            await self._fail(ctx, f"Owner not found: {ctx.owner_id}")
            return
        await self._finish(ctx, JobStatus.COMPLETED, "Description improved")

    async def _cover_video_stage(self, ctx: _JobContext, plan: StagePlan) -> None:
        cover_ref = await self._owners.get_attachment(ctx.owner_id, COVER_IMAGE_SLOT)
        if not cover_ref:
            raise FatalStageError("cover_video", "owner has no cover image")
        source_url = await self._resolve(cover_ref)
        p = ctx.params
        await self._enter(ctx, plan)
        spec = UnitSpec(
            0, "Cover video", plan.unit_kind,
            cover_video_prompt(ctx.owner_id, p.custom_prompt), [source_url], {"duration_s": p.duration_s},
        )
        outcome = await self._run_single(ctx, plan, spec)
        if outcome is None:
            return
        if ctx.job.is_terminal:
            await self._discard(ctx, [outcome.asset_ref] if outcome.asset_ref else [])
            return
        if not outcome.ok:
            raise FatalStageError("cover_video", outcome.error_message)

        ref = outcome.asset_ref
        landed = await self._publish(
            ctx,
            {"payload": {"video_ref": ref}, "current_step": "Cover video ready"},
            new_refs=[ref],
            attach=[(COVER_VIDEO_SLOT, ref)],
        )
        if landed:
            await self._finish(ctx, JobStatus.COMPLETED, "Cover video generated")


def create_orchestrator(
    settings: Settings | None = None,
    *,
    provider: GenerationProvider | None = None,
    owners: OwnerRegistry | None = None,
    store: JobStore | None = None,
    assets: AssetStore | None = None,
) -> JobOrchestrator:
    """Wire an orchestrator from settings; any collaborator can be passed in instead."""
    settings = settings or get_settings()
    return JobOrchestrator(
        store or build_job_store(settings),
        assets or build_asset_store(settings),
        provider or get_provider(settings),
        owners or InMemoryOwnerRegistry(),
        settings,
    )


__all__ = ["CancelAck", "JobOrchestrator", "create_orchestrator"]
