"""Health check endpoint."""

from fastapi import APIRouter
import os
import platform
import sys

from synthea_service.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service health, generator availability, and system info."""
    return {
        "status": "healthy",
        "generator_available": os.path.isfile(settings.generator_jar_path),
        "generator_path": settings.generator_jar_path,
        "storage_backend": settings.storage_backend,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
