"""Tests for the per-job asyncio dispatcher."""

import asyncio
import threading
import time

import pytest

from synthea_service.jobs.in_process_queue import InProcessDispatcher
from synthea_service.jobs.models import GenerationJob, GenerationResult, JobStatus
from synthea_service.jobs.store import JobStore


def _completing_worker(store, delay=0.0, seen=None):
    def worker(job):
        job.mark_running()
        store.update(job)
        if seen is not None:
            seen.append(job.id)
        time.sleep(delay)
        job.mark_completed(GenerationResult(output_format_used="fhir"))
        store.update(job)
        return job
    return worker


def test_submit_returns_immediately_and_job_is_visible():
    async def scenario():
        store = JobStore()
        release = threading.Event()

        def worker(job):
            release.wait(5)
            job.mark_running()
            job.mark_completed(GenerationResult(output_format_used="fhir"))
            store.update(job)

        dispatcher = InProcessDispatcher(worker, store)
        await dispatcher.start()
        job = GenerationJob()

        started = time.monotonic()
        job_id = await dispatcher.submit(job)
        assert time.monotonic() - started < 1.0

        snapshot = await dispatcher.get_status(job_id)
        assert snapshot.status == JobStatus.PENDING

        release.set()
        await dispatcher.wait_idle()
        assert (await dispatcher.get_status(job_id)).status == JobStatus.COMPLETED
        await dispatcher.stop()

    asyncio.run(scenario())


def test_jobs_run_concurrently():
    async def scenario():
        store = JobStore()
        dispatcher = InProcessDispatcher(_completing_worker(store, delay=0.5), store)
        await dispatcher.start()

        started = time.monotonic()
        ids = [await dispatcher.submit(GenerationJob()) for _ in range(4)]
        await dispatcher.wait_idle()
        elapsed = time.monotonic() - started

        assert all(store.get(i).status == JobStatus.COMPLETED for i in ids)
        assert elapsed < 1.5
        await dispatcher.stop()

    asyncio.run(scenario())


def test_max_concurrent_bounds_running_workers():
    async def scenario():
        store = JobStore()
        active = []
        peak = []
        lock = threading.Lock()

        def worker(job):
            with lock:
                active.append(job.id)
                peak.append(len(active))
            job.mark_running()
            time.sleep(0.2)
            job.mark_completed(GenerationResult(output_format_used="fhir"))
            store.update(job)
            with lock:
                active.remove(job.id)

        dispatcher = InProcessDispatcher(worker, store, max_concurrent=2)
        await dispatcher.start()
        for _ in range(5):
            await dispatcher.submit(GenerationJob())
        await dispatcher.wait_idle()

        assert max(peak) <= 2
        assert all(j.status == JobStatus.COMPLETED for j in store.list_all().values())
        await dispatcher.stop()

    asyncio.run(scenario())


def test_crashing_worker_marks_job_failed():
    async def scenario():
        store = JobStore()

        def worker(job):
            raise RuntimeError("unexpected")

        dispatcher = InProcessDispatcher(worker, store)
        await dispatcher.start()
        job_id = await dispatcher.submit(GenerationJob())
        await dispatcher.wait_idle()

        job = store.get(job_id)
        assert job.status == JobStatus.FAILED
        assert "RuntimeError: unexpected" in job.error
        assert job.result is None
        await dispatcher.stop()

    asyncio.run(scenario())


def test_submit_requires_started_dispatcher():
    async def scenario():
        dispatcher = InProcessDispatcher(lambda job: job, JobStore())
        with pytest.raises(RuntimeError):
            await dispatcher.submit(GenerationJob())

    asyncio.run(scenario())


def test_list_jobs_by_owner():
    async def scenario():
        store = JobStore()
        dispatcher = InProcessDispatcher(_completing_worker(store), store)
        await dispatcher.start()
        await dispatcher.submit(GenerationJob(owner_id="alice"))
        await dispatcher.submit(GenerationJob(owner_id="bob"))
        await dispatcher.wait_idle()

        assert [j.owner_id for j in await dispatcher.list_jobs("alice")] == ["alice"]
        assert len(await dispatcher.list_jobs()) == 2
        await dispatcher.stop()

    asyncio.run(scenario())


class _CreateRecorder:
    def __init__(self, fail=False):
        self.fail = fail
        self.created = []

    def create_job(self, job):
        if self.fail:
            raise RuntimeError("db down")
        self.created.append((job.id, job.status))


def test_submit_persists_jobs_waiting_for_a_slot():
    async def scenario():
        store = JobStore()
        repo = _CreateRecorder()
        release = threading.Event()

        def worker(job):
            release.wait(5)
            job.mark_running()
            job.mark_completed(GenerationResult(output_format_used="fhir"))
            store.update(job)

        dispatcher = InProcessDispatcher(worker, store, max_concurrent=1, repository=repo)
        await dispatcher.start()
        ids = [await dispatcher.submit(GenerationJob()) for _ in range(3)]

        assert repo.created == [(i, JobStatus.PENDING) for i in ids]
        release.set()
        await dispatcher.wait_idle()
        await dispatcher.stop()

    asyncio.run(scenario())


def test_persistence_errors_do_not_block_submit():
    async def scenario():
        store = JobStore()
        dispatcher = InProcessDispatcher(_completing_worker(store), store, repository=_CreateRecorder(fail=True))
        await dispatcher.start()
        job_id = await dispatcher.submit(GenerationJob())
        await dispatcher.wait_idle()
        assert store.get(job_id).status == JobStatus.COMPLETED
        await dispatcher.stop()

    asyncio.run(scenario())


def test_listing_omits_output_content():
    async def scenario():
        store = JobStore()

        def worker(job):
            job.mark_running()
            job.mark_completed(GenerationResult(output_format_used="csv", output_file_content=["a,b"]))
            store.update(job)

        dispatcher = InProcessDispatcher(worker, store)
        await dispatcher.start()
        job_id = await dispatcher.submit(GenerationJob())
        await dispatcher.wait_idle()

        assert (await dispatcher.list_jobs())[0].result.output_file_content is None
        assert (await dispatcher.get_status(job_id)).result.output_file_content == ["a,b"]
        await dispatcher.stop()

    asyncio.run(scenario())
