"""Exceptions raised while processing a generation job.

Every ``GenerationError`` is fatal to the job that raised it: the worker turns
it into the job's ``error`` string and marks the job failed.
"""


class GenerationError(Exception):
    """Base class for fatal job failures."""


class WorkDirError(GenerationError):
    """The job's working directory could not be created."""


class KeepModuleError(GenerationError):
    """The keep module could not be serialized or written."""


class GeneratorNotFoundError(GenerationError):
    """The generator artifact is missing from its configured location."""


class GeneratorExecutionError(GenerationError):
    """The generator could not be started or exited with a non-zero status."""

    def __init__(self, message: str, returncode=None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class GeneratorTimeoutError(GeneratorExecutionError):
    """The generator ran past its deadline and was killed."""


class EmptyOutputError(GenerationError):
    """No output directory and no patient summaries were produced."""


class UploadError(GenerationError):
    """An output file could not be forwarded to object storage."""


class InvalidTransitionError(Exception):
    """A job was asked to move backwards or out of a terminal state."""


class ParameterValidationError(ValueError):
    """A submission was rejected before a job was created."""
