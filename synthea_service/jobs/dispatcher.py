"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import List, Optional

from synthea_service.jobs.models import GenerationJob


class JobDispatcher(ABC):
    """Abstract interface for job dispatching."""

    @abstractmethod
    async def submit(self, job: GenerationJob) -> str:
        """Record a pending job and schedule its worker. Returns job_id."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> Optional[GenerationJob]:
        """Get a snapshot of a job."""
        ...

    @abstractmethod
    async def list_jobs(self, owner_id: Optional[str] = None) -> List[GenerationJob]:
        """Snapshots of an owner's jobs (all jobs for None), newest first.

        Listing snapshots may leave out the extracted output content.
        """
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start accepting jobs."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
