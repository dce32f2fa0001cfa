"""Job execution state and job-parameter identity.

A job instance is identified by ``(job_name, job_key)`` where ``job_key`` is
the sha256 of the canonicalised parameters; every launch of an instance
creates a new JobExecution.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional

from price_importer.core.enums import BatchStatus

STEP_NAME = "import"


def canonical_parameters(parameters: Mapping[str, Any]) -> str:
    """Render parameters as ``key=value`` pairs sorted by key.

    Dates and datetimes use ISO format so equal values always render the
    same way regardless of how the caller built them.
    """
    parts = []
    for key in sorted(parameters):
        value = parameters[key]
        if isinstance(value, (date, datetime)):
            rendered = value.isoformat()
        else:
            rendered = str(value)
        parts.append(f"{key}={rendered}")
    return ";".join(parts)


def job_key(parameters: Mapping[str, Any]) -> str:
    """sha256 hex digest of the canonicalised parameters."""
    return hashlib.sha256(canonical_parameters(parameters).encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobExecution:
    """One launch of a job instance plus its checkpointed progress.

    Attributes:
        execution_id: Id assigned by the job repository.
        job_instance_id: Id of the owning job instance.
        job_name: Name of the job.
        parameters: Identifying parameters as passed to ``launch``.
        status: Current BatchStatus.
        start_offset: Reader position this execution resumed from.
        read_count: Cumulative reader position (records consumed, including
            skipped ones) as of the last committed chunk.
        write_count: Cumulative records written to the warehouse.
        skip_count: Cumulative records skipped for invalid input.
        commit_count: Chunks committed by this execution.
        rollback_count: Chunk attempts rolled back by this execution.
        exit_message: Failure description, empty on success.
    """

    execution_id: int
    job_instance_id: int
    job_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    status: BatchStatus = BatchStatus.CREATED
    start_offset: int = 0
    read_count: int = 0
    write_count: int = 0
    skip_count: int = 0
    commit_count: int = 0
    rollback_count: int = 0
    create_time: datetime = field(default_factory=utcnow)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    exit_message: str = ""

    @property
    def is_running(self) -> bool:
        return self.status.is_running
