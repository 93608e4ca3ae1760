"""Generation API: submit jobs, poll status, list and download outputs."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import FileResponse

from synthea_service.auth.supabase_auth import current_owner
from synthea_service.config import settings
from synthea_service.jobs.errors import ParameterValidationError
from synthea_service.jobs.models import GenerationJob, JobStatus
from synthea_service.jobs.params import GenerationRequest, resolve_parameters
from synthea_service.storage.object_store import LocalObjectStorage
from synthea_service.storage.uploader import content_type_for

logger = logging.getLogger(__name__)

router = APIRouter()

# These will be set by main.py during lifespan
_dispatcher = None
_storage = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


def set_storage(storage):
    global _storage
    _storage = storage


def _require_dispatcher():
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")
    return _dispatcher


async def _get_owned_job(job_id: str, owner_id: Optional[str]) -> GenerationJob:
    job = await _require_dispatcher().get_status(job_id)
    if job is None or (owner_id is not None and job.owner_id != owner_id):
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/generate-patients", status_code=202)
async def submit_generation(
    payload: GenerationRequest,
    request: Request,
    owner_id: Optional[str] = Depends(current_owner),
):
    """Accept a generation request and start it in the background."""
    dispatcher = _require_dispatcher()

    try:
        params, warnings = resolve_parameters(payload)
    except ParameterValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    job = GenerationJob(owner_id=owner_id, parameters=params, warnings=warnings)
    for warning in warnings:
        logger.warning("Job %s: %s", job.id, warning)

    job_id = await dispatcher.submit(job)
    logger.info("Job %s created for generation (%s)", job_id, params.summary())
    return {
        "jobID": job_id,
        "status": JobStatus.PENDING.value,
        "message": "Synthea generation request accepted. Check status using the jobID.",
        "statusUrl": str(request.url_for("get_generation_status", job_id=job_id)),
        "warnings": warnings,
    }


@router.get("/generation-status/{job_id}", name="get_generation_status")
async def get_generation_status(
    job_id: str,
    response: Response,
    owner_id: Optional[str] = Depends(current_owner),
):
    """Current status; completed jobs carry their result, failed jobs their error."""
    job = await _get_owned_job(job_id, owner_id)

    body = {
        "jobID": job.id,
        "status": job.status.value,
        "createdAt": job.created_at.isoformat(),
        "updatedAt": job.updated_at.isoformat(),
        "warnings": job.warnings,
    }

    if job.status == JobStatus.COMPLETED and job.result is not None:
        body.update(job.result.to_response())
    elif job.status == JobStatus.FAILED:
        body["error"] = job.error
    else:
        response.headers["Retry-After"] = str(settings.status_retry_after_seconds)

    return body


@router.get("/jobs")
async def list_jobs(owner_id: Optional[str] = Depends(current_owner)):
    """Jobs of the caller, newest first."""
    jobs = await _require_dispatcher().list_jobs(owner_id)
    return {
        "jobs": [
            {
                "jobID": job.id,
                "status": job.status.value,
                "summary": job.parameters.summary(),
                "outputFormat": job.parameters.output_format.value,
                "patientCount": job.result.patient_count if job.result else None,
                "createdAt": job.created_at.isoformat(),
                "updatedAt": job.updated_at.isoformat(),
            }
            for job in jobs
        ],
        "count": len(jobs),
    }


@router.get("/jobs/{job_id}/files")
async def list_job_files(job_id: str, owner_id: Optional[str] = Depends(current_owner)):
    """Uploaded output files of a completed job, with download URLs."""
    if _storage is None:
        raise HTTPException(status_code=503, detail="Output storage not initialized")

    job = await _get_owned_job(job_id, owner_id)
    if job.status != JobStatus.COMPLETED or job.result is None or job.result.output is None:
        raise HTTPException(status_code=404, detail="No output available for this job")

    prefix = job.result.output.prefix
    objects = _storage.list(prefix + "/")
    ttl = settings.presigned_url_ttl_seconds
    return {
        "jobID": job.id,
        "prefix": prefix,
        "files": [
            {
                "key": obj.key,
                "filename": obj.key[len(prefix) + 1:],
                "size": obj.size,
                "url": _storage.presigned_url(obj.key, ttl),
            }
            for obj in objects
        ],
        "expiresIn": ttl,
    }


def _job_id_from_key(key: str) -> Optional[str]:
    root = settings.output_key_root.strip("/")
    if root:
        if not key.startswith(root + "/"):
            return None
        key = key[len(root) + 1:]
    job_id, sep, _ = key.partition("/")
    return job_id if sep and job_id else None


@router.get("/files/{key:path}")
async def download_file(key: str, owner_id: Optional[str] = Depends(current_owner)):
    """Serve a file from the local storage backend.

    The local backend is meant for development: its URLs are not signed and
    do not expire, so access is limited to the owner of the job that
    produced the file.
    """
    if not isinstance(_storage, LocalObjectStorage):
        raise HTTPException(status_code=404, detail="Not found")
    job_id = _job_id_from_key(key)
    if job_id is None:
        raise HTTPException(status_code=404, detail="Output file not found")
    job = await _get_owned_job(job_id, owner_id)
    output = job.result.output if job.result is not None else None
    if output is None or not key.startswith(output.prefix + "/"):
        raise HTTPException(status_code=404, detail="Output file not found")
    if not _storage.exists(key):
        raise HTTPException(status_code=404, detail="Output file not found")
    filename = key.rsplit("/", 1)[-1]
    return FileResponse(_storage.path_for(key), media_type=content_type_for(filename), filename=filename)
