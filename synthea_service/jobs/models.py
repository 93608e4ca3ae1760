"""Job record data model for async generation."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import uuid

from synthea_service.jobs.errors import InvalidTransitionError
from synthea_service.jobs.params import GenerationParameters


NAME_FORMAT_EXPLANATION = (
    "Patient names (e.g., Alicia629) are generated by Synthea. The appended numbers are "
    "part of its synthetic data generation process to help ensure uniqueness or due to "
    "its naming algorithms."
)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OutputReference(_CamelModel):
    """Where a job's output tree was published."""
    prefix: str
    file_count: int = 0
    total_size: int = 0
    files: List[str] = Field(default_factory=list)


class GenerationResult(_CamelModel):
    """Structured payload of a completed job, merged into status responses."""
    patient_summaries: List[str] = Field(default_factory=list)
    output_format_used: str
    output_generated: bool = False
    output_file_content: Any = None
    message: Optional[str] = None
    name_format_explanation: str = NAME_FORMAT_EXPLANATION
    output: Optional[OutputReference] = None

    @property
    def patient_count(self) -> int:
        return len(self.patient_summaries)

    def to_response(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True, exclude_none=True)
        # outputFileContent is always reported, null included
        payload["outputFileContent"] = self.output_file_content
        payload["patientCount"] = self.patient_count
        return payload


def new_job_id() -> str:
    return uuid.uuid4().hex


class GenerationJob(BaseModel):
    """Tracks the lifecycle of one patient generation job."""
    id: str = Field(default_factory=new_job_id)
    owner_id: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    warnings: List[str] = Field(default_factory=list)
    result: Optional[GenerationResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def transition_to(self, status: JobStatus) -> None:
        """Move forward in pending -> running -> completed|failed."""
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Job {self.id}: cannot move from {self.status.value} to {status.value}"
            )
        now = datetime.utcnow()
        self.status = status
        self.updated_at = now
        if status == JobStatus.RUNNING:
            self.started_at = now
        elif status.is_terminal:
            self.completed_at = now

    def mark_running(self) -> None:
        self.transition_to(JobStatus.RUNNING)

    def mark_completed(self, result: GenerationResult) -> None:
        self.transition_to(JobStatus.COMPLETED)
        self.result = result
        self.error = None

    def mark_failed(self, error: str) -> None:
        self.transition_to(JobStatus.FAILED)
        self.result = None
        self.error = error or "Generation failed"
