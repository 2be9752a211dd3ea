"""Tests for job stores: patch semantics, immutability, subscriptions and persistence."""

import asyncio
from datetime import timedelta

import pytest

from genflow.errors import InvalidTransitionError, JobImmutableError, JobNotFoundError
from genflow.jobs.models import ConceptSummary, FailedUnit, GenerationJob, JobKind, JobStatus, empty_payload, utcnow
from genflow.jobs.store import FileJobStore, InMemoryJobStore, build_job_store, new_job_id


def _job(kind=JobKind.FULL_APP, owner_id="app_1", **kwargs):
    return GenerationJob(job_id=new_job_id(), owner_id=owner_id, kind=kind, payload=empty_payload(kind), **kwargs)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryJobStore()
    return FileJobStore(tmp_path)


def test_create_and_get(store):
    async def run():
        job = await store.create(_job())
        return job, await store.get(job.job_id)

    job, loaded = asyncio.run(run())
    assert loaded == job
    assert loaded.status == JobStatus.PENDING
    assert loaded.progress_percentage == 0


def test_get_missing_returns_none(store):
    assert asyncio.run(store.get("job_missing")) is None


def test_patch_applies_whole_change_and_bumps_version(store):
    async def run():
        job = await store.create(_job())
        return await store.patch(job.job_id, {
            "status": JobStatus.GENERATING_CONCEPT,
            "current_step": "Generating concept",
            "progress_percentage": 4,
        })

    updated = asyncio.run(run())
    assert updated.status == JobStatus.GENERATING_CONCEPT
    assert updated.current_step == "Generating concept"
    assert updated.progress_percentage == 4
    assert updated.version == 1
    assert updated.updated_at >= updated.created_at


def test_patch_merges_payload_fields(store):
    async def run():
        job = await store.create(_job())
        await store.patch(job.job_id, {"payload": {"screens_total": 5}})
        return await store.patch(job.job_id, {"payload": {"screens_generated": 2, "screen_refs": {0: "a", 1: "b"}}})

    updated = asyncio.run(run())
    assert updated.payload.screens_total == 5
    assert updated.payload.screens_generated == 2
    assert updated.payload.screen_refs == {0: "a", 1: "b"}


def test_progress_never_decreases(store):
    async def run():
        job = await store.create(_job())
        await store.patch(job.job_id, {"progress_percentage": 40})
        return await store.patch(job.job_id, {"progress_percentage": 10})

    assert asyncio.run(run()).progress_percentage == 40


def test_terminal_job_is_immutable(store):
    async def run():
        job = await store.create(_job(kind=JobKind.ICON))
        await store.patch(job.job_id, {"status": JobStatus.FAILED, "error": "cancelled"})
        with pytest.raises(JobImmutableError):
            await store.patch(job.job_id, {"current_step": "late"})
        return await store.get(job.job_id)

    job = asyncio.run(run())
    assert job.status == JobStatus.FAILED
    assert job.current_step == "Queued"


def test_backward_transition_is_rejected(store):
    async def run():
        job = await store.create(_job())
        await store.patch(job.job_id, {"status": JobStatus.GENERATING_SCREENS})
        with pytest.raises(InvalidTransitionError):
            await store.patch(job.job_id, {"status": JobStatus.GENERATING_CONCEPT})
        return await store.get(job.job_id)

    assert asyncio.run(run()).status == JobStatus.GENERATING_SCREENS


def test_single_stage_job_cannot_end_partial(store):
    async def run():
        job = await store.create(_job(kind=JobKind.COVER_IMAGE))
        await store.patch(job.job_id, {"status": JobStatus.GENERATING})
        with pytest.raises(InvalidTransitionError):
            await store.patch(job.job_id, {"status": JobStatus.PARTIAL})
        await store.patch(job.job_id, {"status": JobStatus.COMPLETED})
        return await store.get(job.job_id)

    assert asyncio.run(run()).status == JobStatus.COMPLETED


def test_invalid_patch_leaves_record_untouched(store):
    async def run():
        job = await store.create(_job())
        with pytest.raises(ValueError):
            # screens_generated may not exceed screens_total
            await store.patch(job.job_id, {"current_step": "x", "payload": {"screens_generated": 3}})
        return await store.get(job.job_id)

    job = asyncio.run(run())
    assert job.current_step == "Queued"
    assert job.version == 0


def test_immutable_identity_fields(store):
    async def run():
        job = await store.create(_job())
        with pytest.raises(ValueError):
            await store.patch(job.job_id, {"owner_id": "someone_else"})

    asyncio.run(run())


def test_patch_missing_job(store):
    with pytest.raises(JobNotFoundError):
        asyncio.run(store.patch("job_missing", {"current_step": "x"}))


def test_concurrent_patches_do_not_lose_updates(store):
    async def run():
        job = await store.create(_job())
        await asyncio.gather(*(
            store.patch(job.job_id, {"failed_units": [FailedUnit(unit_name=f"u{i}", error_message="e")]})
            for i in range(10)
        ))
        return await store.get(job.job_id)

    assert asyncio.run(run()).version == 10


def test_subscribe_yields_current_then_changes_until_terminal(store):
    async def run():
        job = await store.create(_job(kind=JobKind.ICON))
        seen = []

        async def follow():
            async for snap in store.subscribe(job.job_id):
                seen.append(snap)

        follower = asyncio.create_task(follow())
        await asyncio.sleep(0)
        await store.patch(job.job_id, {"status": JobStatus.GENERATING_ICON, "progress_percentage": 10})
        await store.patch(job.job_id, {"progress_percentage": 50})
        await store.patch(job.job_id, {"status": JobStatus.COMPLETED, "progress_percentage": 100})
        await asyncio.wait_for(follower, timeout=2)
        return seen

    seen = asyncio.run(run())
    assert [s.version for s in seen] == [0, 1, 2, 3]
    assert [s.progress_percentage for s in seen] == [0, 10, 50, 100]
    assert seen[-1].status == JobStatus.COMPLETED


def test_subscribe_to_finished_job_yields_once(store):
    async def run():
        job = await store.create(_job(kind=JobKind.ICON))
        await store.patch(job.job_id, {"status": JobStatus.FAILED, "error": "boom"})
        return [snap async for snap in store.subscribe(job.job_id)]

    seen = asyncio.run(run())
    assert len(seen) == 1
    assert seen[0].error == "boom"


def test_subscribe_unknown_job(store):
    async def run():
        async for _ in store.subscribe("job_missing"):
            pass

    with pytest.raises(JobNotFoundError):
        asyncio.run(run())


def test_list_by_owner_filters_and_orders(store):
    async def run():
        first = await store.create(_job(kind=JobKind.ICON, created_at=utcnow() - timedelta(minutes=5)))
        second = await store.create(_job(kind=JobKind.ICON))
        concept = await store.create(_job(kind=JobKind.CONCEPT))
        await store.create(_job(kind=JobKind.ICON, owner_id="app_other"))
        await store.patch(first.job_id, {"status": JobStatus.FAILED})
        return (
            first, second, concept,
            await store.list_by_owner("app_1"),
            await store.list_by_owner("app_1", JobKind.ICON),
            await store.list_by_owner("app_1", JobKind.ICON, active_only=True),
        )

    first, second, concept, everything, icons, active = asyncio.run(run())
    assert len(everything) == 3
    assert [j.job_id for j in icons] == [second.job_id, first.job_id]
    assert [j.job_id for j in active] == [second.job_id]


def test_list_by_status_and_delete(store):
    async def run():
        done = await store.create(_job(kind=JobKind.ICON))
        await store.patch(done.job_id, {"status": JobStatus.FAILED})
        pending = await store.create(_job())
        failed = await store.list_by_status([JobStatus.FAILED])
        await store.delete(done.job_id)
        return done, pending, failed, await store.get(done.job_id), await store.get(pending.job_id)

    done, pending, failed, gone, kept = asyncio.run(run())
    assert [j.job_id for j in failed] == [done.job_id]
    assert gone is None
    assert kept is not None


def test_file_store_survives_restart(tmp_path):
    async def write():
        store = FileJobStore(tmp_path)
        job = await store.create(_job())
        await store.patch(job.job_id, {
            "status": JobStatus.GENERATING_SCREENS,
            "payload": {"screens_total": 2, "screens_generated": 1, "screen_refs": {0: "asset_a"}},
        })
        return job.job_id

    async def read(job_id):
        return await FileJobStore(tmp_path).get(job_id)

    job_id = asyncio.run(write())
    assert (tmp_path / "jobs" / f"{job_id}.json").exists()
    assert not list((tmp_path / "jobs").glob("*.tmp"))
    job = asyncio.run(read(job_id))
    assert job.status == JobStatus.GENERATING_SCREENS
    assert job.payload.screen_refs == {0: "asset_a"}
    assert job.version == 1


def test_file_store_skips_unreadable_files(tmp_path):
    async def run():
        store = FileJobStore(tmp_path)
        await store.create(_job())
        (tmp_path / "jobs" / "job_broken.json").write_text("{not json", encoding="utf-8")
        return await store.list_by_owner("app_1")

    assert len(asyncio.run(run())) == 1


def test_build_job_store_from_settings(settings_factory):
    assert isinstance(build_job_store(settings_factory(genflow_job_store="memory")), InMemoryJobStore)
    assert isinstance(build_job_store(settings_factory(genflow_job_store="file")), FileJobStore)
    # No database URL: Postgres request falls back to the file store
    assert isinstance(build_job_store(settings_factory(genflow_job_store="postgres")), FileJobStore)


def test_concept_fields_default_and_accept_camel_case():
    concept = ConceptSummary.model_validate({
        "name": "Pace",
        "typography": {"headlineFont": "Inter", "bodySize": "15px"},
        "effects": {"cornerRadius": "16px"},
    })
    assert concept.colors.primary == "#000000"
    assert concept.typography.headline_font == "Inter"
    assert concept.typography.body_size == "15px"
    assert concept.typography.body_weight == "normal"
    assert concept.effects.corner_radius == "16px"
    assert concept.effects.design_philosophy == "Clean and simple"
