"""Worker function: runs one generation job from ``pending`` to a terminal state.

Called by the dispatcher via run_in_executor (runs in a thread). Everything
here is synchronous; the only waits are the generator subprocess and the
uploads. The worker is the single writer of the job it is handed.
"""

import logging
import os
import tempfile
import traceback
from typing import Optional

from synthea_service.db.job_repository import JobRepository
from synthea_service.generator.command import build_generator_args
from synthea_service.generator.keep_module import build_keep_module, write_keep_module
from synthea_service.generator.output import collect_output
from synthea_service.generator.runner import GeneratorRunner
from synthea_service.jobs.errors import EmptyOutputError, GenerationError, WorkDirError
from synthea_service.jobs.models import GenerationJob, GenerationResult
from synthea_service.jobs.store import JobStore
from synthea_service.storage.object_store import ObjectStorage
from synthea_service.storage.uploader import upload_output_tree

logger = logging.getLogger(__name__)

WORK_DIR_PREFIX = "synthea_job_"


class GenerationWorker:
    """Callable ``worker(job) -> job`` wired with its collaborators."""

    def __init__(
        self,
        store: JobStore,
        runner: GeneratorRunner,
        storage: ObjectStorage,
        repository: Optional[JobRepository] = None,
        work_dir_root: Optional[str] = None,
        output_key_root: str = "synthea_output",
        extra_args=(),
        fail_on_empty_output: bool = False,
    ):
        self.store = store
        self.runner = runner
        self.storage = storage
        self.repository = repository
        self.work_dir_root = work_dir_root or None
        self.output_key_root = output_key_root
        self.extra_args = tuple(extra_args)
        self.fail_on_empty_output = fail_on_empty_output

    @classmethod
    def from_settings(cls, settings, store, storage, repository=None, runner=None) -> "GenerationWorker":
        return cls(
            store=store,
            runner=runner or GeneratorRunner.from_settings(settings),
            storage=storage,
            repository=repository,
            work_dir_root=settings.work_dir_root,
            output_key_root=settings.output_key_root,
            extra_args=settings.generator_extra_args,
            fail_on_empty_output=settings.fail_on_empty_output,
        )

    def __call__(self, job: GenerationJob) -> GenerationJob:
        return self.process(job)

    def process(self, job: GenerationJob) -> GenerationJob:
        """Run ``job`` to completion. Never raises for job-level failures."""
        job.mark_running()
        self.store.update(job)
        self._persist_status(job)
        logger.info("Job %s: Status changed to %s (%s)", job.id, job.status.value, job.parameters.summary())

        try:
            result = self.execute(job)
        except GenerationError as e:
            self.fail(job, str(e))
            return job
        except Exception as e:
            logger.exception("Job %s: Unexpected error", job.id)
            self.fail(job, f"{type(e).__name__}: {e}\n{traceback.format_exc()}")
            return job

        job.mark_completed(result)
        self.store.update(job)
        self._persist_status(job)
        logger.info("Job %s: Status changed to %s", job.id, job.status.value)
        return job

    def fail(self, job: GenerationJob, error: str) -> None:
        job.mark_failed(error)
        self.store.update(job)
        self._persist_status(job)
        logger.error("Job %s: Status changed to %s: %s", job.id, job.status.value, error)

    def execute(self, job: GenerationJob) -> GenerationResult:
        """Keep module, generator run, output collection and upload.

        The working directory is removed on every exit path.
        """
        params = job.parameters
        self.runner.ensure_available()

        try:
            work_dir_ctx = tempfile.TemporaryDirectory(
                prefix=f"{WORK_DIR_PREFIX}{job.id}_", dir=self.work_dir_root
            )
        except OSError as e:
            raise WorkDirError(f"Failed to create execution working directory: {e}") from e

        with work_dir_ctx as work_dir:
            logger.info("Job %s: Created working directory %s", job.id, work_dir)

            keep_module_path = None
            module = build_keep_module(params.keep_criteria, params.keep_logic, job.id)
            if module is not None:
                keep_module_path = write_keep_module(module, work_dir)
                logger.info(
                    "Job %s: Generated keep module (%s logic, %d criteria) at %s",
                    job.id, params.keep_logic.value, len(module.block.conditions), keep_module_path,
                )

            args = build_generator_args(params, keep_module_path, self.extra_args)
            run = self.runner.run(args, cwd=work_dir, job_id=job.id)

            result = collect_output(run.stdout, work_dir, params.output_format, job_id=job.id)
            if not result.output_generated and not result.patient_summaries:
                if self.fail_on_empty_output:
                    raise EmptyOutputError(
                        "Synthea produced no output directory and no patient summaries"
                    )
                logger.warning("Job %s: Completing with an empty result", job.id)

            result.output = upload_output_tree(
                self.storage,
                job.id,
                os.path.join(work_dir, "output"),
                self.output_key_root,
            )
        return result

    # Persistence mirror: failures are logged, the in-memory store stays authoritative

    def _persist_status(self, job: GenerationJob) -> None:
        if self.repository is None:
            return
        output_ref = size = patient_count = None
        if job.result is not None:
            patient_count = job.result.patient_count
            if job.result.output is not None:
                output_ref = job.result.output.prefix
                size = job.result.output.total_size
        try:
            self.repository.update_job_status(
                job.id,
                job.status,
                error=job.error,
                output_ref=output_ref,
                size=size,
                patient_count=patient_count,
            )
        except Exception as e:
            logger.warning("Job %s: Could not persist status %s: %s", job.id, job.status.value, e)
