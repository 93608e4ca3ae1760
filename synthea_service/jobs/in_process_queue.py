"""In-process job dispatch using asyncio.

Each submitted job gets its own background task; the task runs the
synchronous worker function in a thread executor so the event loop is never
blocked by the generator subprocess. No external broker is needed.
"""

import asyncio
import logging
import traceback
from typing import Callable, List, Optional, Set

from synthea_service.db.job_repository import JobRepository
from synthea_service.jobs.dispatcher import JobDispatcher
from synthea_service.jobs.models import GenerationJob, JobStatus
from synthea_service.jobs.store import JobStore

logger = logging.getLogger(__name__)


class InProcessDispatcher(JobDispatcher):
    """One asyncio task per job, optionally bounded by ``max_concurrent``."""

    def __init__(
        self,
        worker_fn: Callable,
        store: JobStore,
        max_concurrent: int = 0,
        repository: Optional[JobRepository] = None,
    ):
        """
        worker_fn: callable(job: GenerationJob) -> GenerationJob
            Synchronous function that owns the job until it reaches a
            terminal state. Called in a thread executor.
        max_concurrent: 0 runs every job immediately; N > 0 lets at most N
            workers run at once while the rest stay pending.
        repository: optional durable mirror; the row is created on submit so
            jobs still waiting for a slot are persisted too.
        """
        self._worker_fn = worker_fn
        self._store = store
        self._max_concurrent = max_concurrent
        self._repository = repository
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()
        self._running = False

    @property
    def store(self) -> JobStore:
        return self._store

    async def start(self) -> None:
        if self._max_concurrent > 0:
            self._semaphore = asyncio.Semaphore(self._max_concurrent)
        self._running = True

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def submit(self, job: GenerationJob) -> str:
        if not self._running:
            raise RuntimeError("Dispatcher is not running")
        self._store.add(job)
        if self._repository is not None:
            await asyncio.get_running_loop().run_in_executor(None, self._persist_create, job)
        task = asyncio.create_task(self._run(job), name=f"generation-job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job.id

    async def get_status(self, job_id: str) -> Optional[GenerationJob]:
        return self._store.get(job_id)

    async def list_jobs(self, owner_id: Optional[str] = None) -> List[GenerationJob]:
        return self._store.list_by_owner(owner_id, include_content=False)

    async def wait_idle(self) -> None:
        """Wait until every scheduled job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _persist_create(self, job: GenerationJob) -> None:
        try:
            self._repository.create_job(job)
        except Exception as e:
            logger.warning("Job %s: Could not persist job record: %s", job.id, e)

    async def _run(self, job: GenerationJob) -> None:
        if self._semaphore is None:
            await self._execute(job)
            return
        async with self._semaphore:
            await self._execute(job)

    async def _execute(self, job: GenerationJob) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._worker_fn, job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Anything escaping the worker still ends the job
            logger.exception("Job %s: Worker crashed", job.id)
            if job.status.is_terminal:
                return
            if job.status == JobStatus.PENDING:
                job.mark_running()
            job.mark_failed(f"{type(e).__name__}: {str(e)}\n{traceback.format_exc()}")
            self._store.update(job)
