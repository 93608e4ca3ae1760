"""Run the generator as a subprocess under a deadline."""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from synthea_service.jobs.errors import (
    GeneratorExecutionError,
    GeneratorNotFoundError,
    GeneratorTimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass
class GeneratorRun:
    """Captured outcome of one successful generator run."""
    args: List[str]
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float


class GeneratorRunner:
    """Invokes ``command_prefix + args`` inside a working directory.

    ``artifact_path`` is the file that must exist before anything is spawned
    (the Synthea JAR in production).
    """

    def __init__(self, command_prefix: Sequence[str], artifact_path: str, timeout_seconds: float = 1800):
        self.command_prefix = list(command_prefix)
        self.artifact_path = artifact_path
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings) -> "GeneratorRunner":
        return cls(
            command_prefix=settings.generator_command_prefix(),
            artifact_path=settings.generator_jar_path,
            timeout_seconds=settings.generator_timeout_seconds,
        )

    def is_available(self) -> bool:
        return os.path.isfile(self.artifact_path)

    def ensure_available(self) -> None:
        if not self.is_available():
            raise GeneratorNotFoundError(f"Synthea JAR not found at {self.artifact_path}")

    def run(self, args: Sequence[str], cwd: str, job_id: Optional[str] = None) -> GeneratorRun:
        """Run to completion, capturing stdout and stderr in full.

        Raises:
            GeneratorTimeoutError: the deadline passed; the process was killed.
            GeneratorExecutionError: spawn failure or non-zero exit.
        """
        self.ensure_available()
        cmd = self.command_prefix + list(args)
        tag = f"Job {job_id}: " if job_id else ""
        logger.info("%sExecuting generator: %s (in CWD: %s)", tag, " ".join(cmd), cwd)

        start = time.monotonic()
        try:
            completed = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            stderr = _decode(e.stderr)
            logger.error("%sGenerator timed out after %ss", tag, self.timeout_seconds)
            raise GeneratorTimeoutError(
                f"Synthea did not finish within {self.timeout_seconds} seconds and was terminated. "
                f"Stderr: {stderr}",
                stderr=stderr,
            ) from e
        except OSError as e:
            logger.error("%sCould not start generator: %s", tag, e)
            raise GeneratorExecutionError(f"Failed to start Synthea: {e}") from e
        duration = time.monotonic() - start

        if completed.returncode != 0:
            logger.error("%sGenerator stdout: %s", tag, completed.stdout)
            logger.error("%sGenerator stderr: %s", tag, completed.stderr)
            raise GeneratorExecutionError(
                f"Failed to run Synthea: exit status {completed.returncode}. Stderr: {completed.stderr}",
                returncode=completed.returncode,
                stderr=completed.stderr,
            )

        logger.info("%sGenerator finished in %.1fs", tag, duration)
        if completed.stderr:
            logger.info("%sGenerator stderr (run was successful): %s", tag, completed.stderr)
        return GeneratorRun(
            args=cmd,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_seconds=duration,
        )


def _decode(stream) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream
