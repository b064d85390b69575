import asyncio

import pytest

from clipchain.models.generation import GenerationRequest
from clipchain.models.job import GenerationJob, JobStatus
from clipchain.routers import jobs
from clipchain.services.job_queue import JobQueue
from clipchain.services.job_store import JobStore


@pytest.fixture
def store(settings, monkeypatch):
    store = JobStore(settings.database_path)
    monkeypatch.setattr(jobs, "job_store", store)
    monkeypatch.setattr(jobs, "jobs_db", {})
    return store


@pytest.fixture(autouse=True)
def use_pipeline(pipeline, monkeypatch):
    monkeypatch.setattr(jobs, "get_video_pipeline", lambda: pipeline)


def queued_job(**request_fields):
    request = GenerationRequest(**request_fields)
    return GenerationJob(user_id="user-1", request=request.model_dump(mode="json", by_alias=True))


async def test_process_job_completes(store, ledger):
    await ledger.add_credits("user-1", 1000)
    job = queued_job(prompt="a dog running", duration=16)
    await store.upsert(job)

    await jobs.process_job(job.id)

    stored = await store.get(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.progress == 100
    assert stored.video_url.startswith("/output/")
    assert stored.transition == "dissolve"
    assert stored.credits_used == 240
    assert len(stored.operation_names) == 2


async def test_process_job_records_failure(store):
    job = queued_job(prompt="a dog running")
    await store.upsert(job)

    await jobs.process_job(job.id)

    stored = await store.get(job.id)
    assert stored.status == JobStatus.FAILED.value
    assert stored.error_code == "INSUFFICIENT_CREDITS"


async def test_interrupted_jobs_are_failed_on_startup(store):
    running = queued_job(prompt="p")
    running.status = JobStatus.STITCHING.value
    done = queued_job(prompt="p")
    done.status = JobStatus.COMPLETED.value
    await store.upsert(running)
    await store.upsert(done)

    await jobs.initialize_job_state()

    assert (await store.get(running.id)).status == JobStatus.FAILED.value
    assert (await store.get(done.id)).status == JobStatus.COMPLETED.value


async def test_queue_applies_backpressure():
    release = asyncio.Event()
    processed = []

    async def processor(job_id):
        await release.wait()
        processed.append(job_id)

    queue = JobQueue()
    queue.configure(processor, worker_count=1, max_pending=1)
    await queue.start()

    assert queue.enqueue_nowait("a")
    for _ in range(5):
        await asyncio.sleep(0)
    assert queue.enqueue_nowait("b")
    assert not queue.enqueue_nowait("c")
    assert queue.enqueue_nowait("b")

    release.set()
    await queue._queue.join()
    await queue.stop()

    assert processed == ["a", "b"]
