"""Batch driver: chunked, checkpointed and restartable record imports."""

from .driver import BatchDriver, ImportJob, JobHandle
from .execution import JobExecution, canonical_parameters, job_key
from .launcher import EXIT_CODES, LAUNCH_REFUSED_EXIT_CODE, exit_code_for, launch_import
from .repository import InMemoryJobRepository, JobRepository, SqlJobRepository

__all__ = [
    "BatchDriver",
    "ImportJob",
    "JobHandle",
    "JobExecution",
    "canonical_parameters",
    "job_key",
    "JobRepository",
    "InMemoryJobRepository",
    "SqlJobRepository",
    "EXIT_CODES",
    "LAUNCH_REFUSED_EXIT_CODE",
    "exit_code_for",
    "launch_import",
]
