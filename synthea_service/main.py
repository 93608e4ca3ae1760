"""Synthetic patient generation service - FastAPI application.

Run locally:  uvicorn synthea_service.main:app --reload --port 8081
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from synthea_service.config import settings
from synthea_service.api.v1.router import v1_router
from synthea_service.api.v1.health import router as health_root_router
from synthea_service.api.v1 import generation as generation_api
from synthea_service.db.job_repository import create_repository
from synthea_service.generator.runner import GeneratorRunner
from synthea_service.jobs.in_process_queue import InProcessDispatcher
from synthea_service.jobs.store import JobStore
from synthea_service.jobs.worker import GenerationWorker
from synthea_service.storage.object_store import LocalObjectStorage, create_storage

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info("Starting generation service on port %d", settings.api_port)
    logger.info("Generator JAR: %s", settings.generator_jar_path)
    logger.info("Storage backend: %s", settings.storage_backend)

    runner = GeneratorRunner.from_settings(settings)
    if not runner.is_available():
        logger.warning("Synthea JAR not found at %s; jobs will fail until it is installed",
                       settings.generator_jar_path)

    store = JobStore()
    storage = create_storage(settings)
    repository = create_repository(settings)
    worker = GenerationWorker.from_settings(settings, store, storage, repository, runner)

    dispatcher = InProcessDispatcher(
        worker_fn=worker,
        store=store,
        max_concurrent=settings.max_concurrent_jobs,
        repository=repository,
    )
    await dispatcher.start()
    logger.info("Job dispatcher started (max concurrent jobs: %s)",
                settings.max_concurrent_jobs or "unbounded")

    # Wire dispatcher and storage into API endpoints
    generation_api.set_dispatcher(dispatcher)
    generation_api.set_storage(storage)

    yield

    # Shutdown
    logger.info("Shutting down generation service")
    await dispatcher.stop()
    if isinstance(storage, LocalObjectStorage):
        storage.cleanup_expired()


app = FastAPI(
    title="Synthetic Patient Generation Service",
    description="Asynchronous Synthea patient generation with published outputs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.api_port)
