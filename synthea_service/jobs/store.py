"""Thread-safe in-memory registry of generation jobs."""

import threading
from typing import Dict, List, Optional

from synthea_service.jobs.models import GenerationJob


class JobStore:
    """Keyed map of jobs guarded by a single lock.

    Records are copied on the way in and out, so callers never share mutable
    state with the store. The lock only covers dict operations.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, GenerationJob] = {}

    def add(self, job: GenerationJob) -> None:
        snapshot = job.model_copy(deep=True)
        with self._lock:
            self._jobs[job.id] = snapshot

    def get(self, job_id: str) -> Optional[GenerationJob]:
        with self._lock:
            job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    def update(self, job: GenerationJob) -> None:
        """Replace a stored job. Unknown ids are ignored."""
        snapshot = job.model_copy(deep=True)
        with self._lock:
            if job.id in self._jobs:
                self._jobs[job.id] = snapshot

    def delete(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def list_all(self) -> Dict[str, GenerationJob]:
        with self._lock:
            jobs = dict(self._jobs)
        return {job_id: job.model_copy(deep=True) for job_id, job in jobs.items()}

    def list_by_owner(self, owner_id: Optional[str], include_content: bool = True) -> List[GenerationJob]:
        """Jobs of one owner, newest first. ``None`` lists every job.

        With ``include_content=False`` the copies leave out the extracted
        output content, which can be large, and keep everything else.
        """
        with self._lock:
            jobs = list(self._jobs.values())
        if owner_id is not None:
            jobs = [j for j in jobs if j.owner_id == owner_id]
        copy = _snapshot if include_content else _summary_snapshot
        return sorted((copy(j) for j in jobs), key=lambda j: j.created_at, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


def _snapshot(job: GenerationJob) -> GenerationJob:
    return job.model_copy(deep=True)


def _summary_snapshot(job: GenerationJob) -> GenerationJob:
    if job.result is None or job.result.output_file_content is None:
        return job.model_copy(deep=True)
    # Shallow copies first so the content is never deep-copied
    result = job.result.model_copy(update={"output_file_content": None})
    return job.model_copy(update={"result": result}).model_copy(deep=True)
