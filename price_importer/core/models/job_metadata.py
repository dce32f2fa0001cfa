"""Job-metadata tables backing the SQL job repository.

Four regular tables, namespaced by ``metadata_table_prefix``:
  - job_instance: one row per (job_name, job_key); job_key is the sha256 of
    the canonicalised job parameters. ``version`` is bumped on every launch
    and acts as the optimistic lock for the at-most-one-writer guard.
  - job_execution: one row per launch of an instance.
  - job_execution_params: the identifying parameters of each execution.
  - step_checkpoint: cumulative reader position and counters, rewritten after
    every committed chunk.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

from .base import make_metadata

# SQLite only autoincrements INTEGER PRIMARY KEY columns
_Id = BigInteger().with_variant(Integer, "sqlite")


@dataclass(frozen=True)
class JobMetadataSchema:
    """Tables of the job-metadata store for one prefix."""

    prefix: str
    metadata: MetaData
    job_instance: Table
    job_execution: Table
    job_execution_params: Table
    step_checkpoint: Table


def build_job_metadata_schema(
    prefix: str, metadata: Optional[MetaData] = None
) -> JobMetadataSchema:
    """Define the job-metadata tables for ``prefix`` on ``metadata``."""
    metadata = metadata if metadata is not None else make_metadata()

    job_instance = Table(
        f"{prefix}job_instance",
        metadata,
        Column("id", _Id, primary_key=True, autoincrement=True),
        Column("job_name", String(100), nullable=False),
        Column("job_key", String(64), nullable=False),
        Column("version", Integer, nullable=False, default=0),
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
        UniqueConstraint("job_name", "job_key", name=f"uq_{prefix}job_instance_key"),
    )

    job_execution = Table(
        f"{prefix}job_execution",
        metadata,
        Column("id", _Id, primary_key=True, autoincrement=True),
        Column(
            "job_instance_id", _Id, ForeignKey(job_instance.c.id), nullable=False
        ),
        Column("status", String(20), nullable=False),
        Column("start_offset", BigInteger, nullable=False, default=0),
        Column("create_time", DateTime(timezone=True), nullable=False),
        Column("start_time", DateTime(timezone=True), nullable=True),
        Column("end_time", DateTime(timezone=True), nullable=True),
        Column("exit_message", Text, nullable=True),
        Column("last_updated", DateTime(timezone=True), nullable=True),
    )

    job_execution_params = Table(
        f"{prefix}job_execution_params",
        metadata,
        Column(
            "job_execution_id",
            _Id,
            ForeignKey(job_execution.c.id),
            primary_key=True,
        ),
        Column("key_name", String(100), primary_key=True),
        Column("value", String(500), nullable=False),
    )

    step_checkpoint = Table(
        f"{prefix}step_checkpoint",
        metadata,
        Column(
            "job_execution_id",
            _Id,
            ForeignKey(job_execution.c.id),
            primary_key=True,
        ),
        Column("step_name", String(100), nullable=False),
        Column("status", String(20), nullable=False),
        Column("read_count", BigInteger, nullable=False, default=0),
        Column("write_count", BigInteger, nullable=False, default=0),
        Column("skip_count", BigInteger, nullable=False, default=0),
        Column("commit_count", BigInteger, nullable=False, default=0),
        Column("rollback_count", BigInteger, nullable=False, default=0),
        Column("last_updated", DateTime(timezone=True), nullable=True),
    )

    return JobMetadataSchema(
        prefix=prefix,
        metadata=metadata,
        job_instance=job_instance,
        job_execution=job_execution,
        job_execution_params=job_execution_params,
        step_checkpoint=step_checkpoint,
    )
