"""Durable job records in the Supabase ``jobs`` table."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from synthea_service.jobs.models import GenerationJob, JobStatus


class JobRepository(ABC):
    """Persistence collaborator for job rows."""

    @abstractmethod
    def create_job(self, job: GenerationJob) -> None:
        ...

    @abstractmethod
    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        output_ref: Optional[str] = None,
        size: Optional[int] = None,
        patient_count: Optional[int] = None,
    ) -> None:
        ...

    @abstractmethod
    def get_job_by_id(self, job_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_jobs_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        ...


class SupabaseJobRepository(JobRepository):
    """Rows of the ``jobs`` table, written with the service-role client."""

    TABLE = "jobs"

    def __init__(self, client):
        self._client = client

    def _table(self):
        return self._client.table(self.TABLE)

    def create_job(self, job: GenerationJob) -> None:
        self._table().insert({
            "id": job.id,
            "user_id": job.owner_id,
            "status": job.status.value,
            "parameters": job.parameters.model_dump(mode="json"),
            "output_format": job.parameters.output_format.value,
            "created_at": job.created_at.isoformat(),
            "updated_at": job.updated_at.isoformat(),
        }).execute()

    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error: Optional[str] = None,
        output_ref: Optional[str] = None,
        size: Optional[int] = None,
        patient_count: Optional[int] = None,
    ) -> None:
        now = datetime.utcnow().isoformat()
        row: Dict[str, Any] = {
            "status": status.value,
            "error_message": error,
            "output_path": output_ref,
            "output_size": size,
            "patient_count": patient_count,
            "updated_at": now,
        }
        if status.is_terminal:
            row["completed_at"] = now
        self._table().update(row).eq("id", job_id).execute()

    def get_job_by_id(self, job_id: str) -> Optional[Dict[str, Any]]:
        response = self._table().select("*").eq("id", job_id).limit(1).execute()
        return response.data[0] if response.data else None

    def list_jobs_by_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        response = (
            self._table()
            .select("*")
            .eq("user_id", owner_id)
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []


def create_repository(settings) -> Optional[JobRepository]:
    if not settings.persistence_enabled:
        return None
    from synthea_service.db.supabase_client import get_supabase
    return SupabaseJobRepository(get_supabase())
