"""Job-metadata store: instances, executions, parameters and checkpoints.

Two implementations of the JobRepository interface:
  - SqlJobRepository: the four ``<prefix>job_*`` / ``step_checkpoint``
    tables. A launch locks the instance row (SELECT ... FOR UPDATE where the
    backend supports it) and bumps its ``version`` with a compare-and-set, so
    two launchers racing for the same instance cannot both register an
    execution.
  - InMemoryJobRepository: lock-guarded dicts for embedded use and dry runs.

Launch rules shared by both (``JobRepository._resume_point``):
  - previous execution CREATED/STARTED  -> JobAlreadyRunningError
  - previous execution COMPLETED        -> JobInstanceAlreadyCompleteError
  - job not restartable, any previous   -> JobRestartNotAllowedError
  - previous execution FAILED/STOPPED   -> resume at its checkpoint
"""

from __future__ import annotations

import abc
import itertools
import threading
from dataclasses import replace
from typing import Any, Mapping, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from price_importer.core.enums import BatchStatus
from price_importer.core.exceptions import (
    BackendError,
    JobAlreadyRunningError,
    JobInstanceAlreadyCompleteError,
    JobRestartNotAllowedError,
)
from price_importer.core.models.job_metadata import JobMetadataSchema
from price_importer.core.utils.logging_config import get_logger

from .execution import STEP_NAME, JobExecution, job_key, utcnow

logger = get_logger("batch.repository")


class JobRepository(abc.ABC):
    """Persistence interface used by the BatchDriver."""

    @abc.abstractmethod
    def create_execution(
        self,
        job_name: str,
        parameters: Mapping[str, Any],
        restartable: bool = True,
    ) -> JobExecution:
        """Register a new CREATED execution, or refuse the launch.

        Raises:
            JobAlreadyRunningError, JobInstanceAlreadyCompleteError,
            JobRestartNotAllowedError: When the launch is refused.
        """

    @abc.abstractmethod
    def update_execution(self, execution: JobExecution) -> None:
        """Persist status, timestamps and exit message of ``execution``."""

    @abc.abstractmethod
    def save_checkpoint(self, execution: JobExecution) -> None:
        """Persist the reader position and counters of ``execution``."""

    @abc.abstractmethod
    def get_execution(self, execution_id: int) -> Optional[JobExecution]:
        ...

    @abc.abstractmethod
    def last_execution(
        self, job_name: str, parameters: Mapping[str, Any]
    ) -> Optional[JobExecution]:
        """Most recent execution of the instance, or None."""

    @staticmethod
    def _resume_point(
        job_name: str, last: Optional[JobExecution], restartable: bool
    ) -> dict[str, int]:
        """Counters a new execution starts from, after the launch rules."""
        if last is None:
            return {"start_offset": 0, "read_count": 0, "write_count": 0, "skip_count": 0}
        if last.status.is_running:
            raise JobAlreadyRunningError(
                f"{job_name}: execution {last.execution_id} is {last.status.value}"
            )
        if last.status is BatchStatus.COMPLETED:
            raise JobInstanceAlreadyCompleteError(
                f"{job_name}: instance already completed by execution {last.execution_id}"
            )
        if not restartable:
            raise JobRestartNotAllowedError(
                f"{job_name}: job is not restartable (last execution "
                f"{last.execution_id} ended {last.status.value})"
            )
        return {
            "start_offset": last.read_count,
            "read_count": last.read_count,
            "write_count": last.write_count,
            "skip_count": last.skip_count,
        }


class InMemoryJobRepository(JobRepository):
    """Job repository kept in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._instances: dict[tuple[str, str], int] = {}
        self._executions: dict[int, JobExecution] = {}
        self._by_instance: dict[int, list[int]] = {}

    def create_execution(
        self,
        job_name: str,
        parameters: Mapping[str, Any],
        restartable: bool = True,
    ) -> JobExecution:
        with self._lock:
            key = (job_name, job_key(parameters))
            instance_id = self._instances.setdefault(key, len(self._instances) + 1)
            history = self._by_instance.setdefault(instance_id, [])
            last = self._executions[history[-1]] if history else None
            resume = self._resume_point(job_name, last, restartable)

            execution = JobExecution(
                execution_id=next(self._ids),
                job_instance_id=instance_id,
                job_name=job_name,
                parameters=dict(parameters),
                **resume,
            )
            self._executions[execution.execution_id] = replace(execution)
            history.append(execution.execution_id)
            return execution

    def update_execution(self, execution: JobExecution) -> None:
        with self._lock:
            stored = self._executions[execution.execution_id]
            self._executions[execution.execution_id] = replace(
                stored,
                status=execution.status,
                start_time=execution.start_time,
                end_time=execution.end_time,
                exit_message=execution.exit_message,
            )

    def save_checkpoint(self, execution: JobExecution) -> None:
        with self._lock:
            stored = self._executions[execution.execution_id]
            self._executions[execution.execution_id] = replace(
                stored,
                status=execution.status,
                read_count=execution.read_count,
                write_count=execution.write_count,
                skip_count=execution.skip_count,
                commit_count=execution.commit_count,
                rollback_count=execution.rollback_count,
            )

    def get_execution(self, execution_id: int) -> Optional[JobExecution]:
        with self._lock:
            stored = self._executions.get(execution_id)
            return replace(stored) if stored is not None else None

    def last_execution(
        self, job_name: str, parameters: Mapping[str, Any]
    ) -> Optional[JobExecution]:
        with self._lock:
            instance_id = self._instances.get((job_name, job_key(parameters)))
            history = self._by_instance.get(instance_id, []) if instance_id else []
            return replace(self._executions[history[-1]]) if history else None


class SqlJobRepository(JobRepository):
    """Job repository backed by the job-metadata tables.

    Args:
        session_factory: Sessions for the metadata database (may be the
            warehouse database).
        schema: Job-metadata tables for the configured prefix.
    """

    def __init__(
        self, session_factory: sessionmaker[Session], schema: JobMetadataSchema
    ) -> None:
        self._session_factory = session_factory
        self._schema = schema

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------
    def create_execution(
        self,
        job_name: str,
        parameters: Mapping[str, Any],
        restartable: bool = True,
    ) -> JobExecution:
        s = self._schema
        key = job_key(parameters)
        now = utcnow()

        try:
            with self._session_factory() as session, session.begin():
                instance_id, version = self._lock_instance(session, job_name, key)
                last = self._latest_execution(session, instance_id)
                resume = self._resume_point(job_name, last, restartable)

                bumped = session.execute(
                    update(s.job_instance)
                    .where(
                        s.job_instance.c.id == instance_id,
                        s.job_instance.c.version == version,
                    )
                    .values(version=version + 1)
                )
                if bumped.rowcount != 1:
                    raise JobAlreadyRunningError(
                        f"{job_name}: instance {instance_id} was launched concurrently"
                    )

                execution_id = session.execute(
                    insert(s.job_execution).values(
                        job_instance_id=instance_id,
                        status=BatchStatus.CREATED.value,
                        start_offset=resume["start_offset"],
                        create_time=now,
                        last_updated=now,
                    )
                ).inserted_primary_key[0]

                if parameters:
                    session.execute(
                        insert(s.job_execution_params),
                        [
                            {
                                "job_execution_id": execution_id,
                                "key_name": name,
                                "value": str(value),
                            }
                            for name, value in parameters.items()
                        ],
                    )
                session.execute(
                    insert(s.step_checkpoint).values(
                        job_execution_id=execution_id,
                        step_name=STEP_NAME,
                        status=BatchStatus.CREATED.value,
                        read_count=resume["read_count"],
                        write_count=resume["write_count"],
                        skip_count=resume["skip_count"],
                        commit_count=0,
                        rollback_count=0,
                        last_updated=now,
                    )
                )
        except DBAPIError as exc:
            raise BackendError(f"{job_name}: could not register execution: {exc.orig}") from exc

        logger.info(
            "job_execution_created",
            job_name=job_name,
            execution_id=execution_id,
            start_offset=resume["start_offset"],
        )
        return JobExecution(
            execution_id=execution_id,
            job_instance_id=instance_id,
            job_name=job_name,
            parameters=dict(parameters),
            create_time=now,
            **resume,
        )

    def _lock_instance(
        self, session: Session, job_name: str, key: str
    ) -> tuple[int, int]:
        inst = self._schema.job_instance
        query = (
            select(inst.c.id, inst.c.version)
            .where(inst.c.job_name == job_name, inst.c.job_key == key)
            .with_for_update()
        )
        row = session.execute(query).first()
        if row is not None:
            return row.id, row.version

        try:
            with session.begin_nested():
                instance_id = session.execute(
                    insert(inst).values(job_name=job_name, job_key=key, version=0)
                ).inserted_primary_key[0]
            return instance_id, 0
        except IntegrityError:
            # another launcher created the instance first
            row = session.execute(query).one()
            return row.id, row.version

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def update_execution(self, execution: JobExecution) -> None:
        s = self._schema
        now = utcnow()
        with self._session_factory() as session, session.begin():
            session.execute(
                update(s.job_execution)
                .where(s.job_execution.c.id == execution.execution_id)
                .values(
                    status=execution.status.value,
                    start_time=execution.start_time,
                    end_time=execution.end_time,
                    exit_message=execution.exit_message or None,
                    last_updated=now,
                )
            )
            session.execute(
                update(s.step_checkpoint)
                .where(s.step_checkpoint.c.job_execution_id == execution.execution_id)
                .values(status=execution.status.value, last_updated=now)
            )

    def save_checkpoint(self, execution: JobExecution) -> None:
        s = self._schema
        with self._session_factory() as session, session.begin():
            session.execute(
                update(s.step_checkpoint)
                .where(s.step_checkpoint.c.job_execution_id == execution.execution_id)
                .values(
                    status=execution.status.value,
                    read_count=execution.read_count,
                    write_count=execution.write_count,
                    skip_count=execution.skip_count,
                    commit_count=execution.commit_count,
                    rollback_count=execution.rollback_count,
                    last_updated=utcnow(),
                )
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_execution(self, execution_id: int) -> Optional[JobExecution]:
        with self._session_factory() as session:
            return self._load_execution(session, execution_id)

    def last_execution(
        self, job_name: str, parameters: Mapping[str, Any]
    ) -> Optional[JobExecution]:
        inst = self._schema.job_instance
        with self._session_factory() as session:
            instance_id = session.execute(
                select(inst.c.id).where(
                    inst.c.job_name == job_name,
                    inst.c.job_key == job_key(parameters),
                )
            ).scalar_one_or_none()
            if instance_id is None:
                return None
            return self._latest_execution(session, instance_id)

    def _latest_execution(
        self, session: Session, instance_id: int
    ) -> Optional[JobExecution]:
        ex = self._schema.job_execution
        execution_id = session.execute(
            select(ex.c.id)
            .where(ex.c.job_instance_id == instance_id)
            .order_by(ex.c.id.desc())
            .limit(1)
        ).scalar_one_or_none()
        if execution_id is None:
            return None
        return self._load_execution(session, execution_id)

    def _load_execution(
        self, session: Session, execution_id: int
    ) -> Optional[JobExecution]:
        s = self._schema
        row = session.execute(
            select(
                s.job_execution,
                s.job_instance.c.job_name,
                s.step_checkpoint.c.read_count,
                s.step_checkpoint.c.write_count,
                s.step_checkpoint.c.skip_count,
                s.step_checkpoint.c.commit_count,
                s.step_checkpoint.c.rollback_count,
            )
            .join(s.job_instance, s.job_instance.c.id == s.job_execution.c.job_instance_id)
            .join(
                s.step_checkpoint,
                s.step_checkpoint.c.job_execution_id == s.job_execution.c.id,
            )
            .where(s.job_execution.c.id == execution_id)
        ).first()
        if row is None:
            return None

        params = session.execute(
            select(s.job_execution_params.c.key_name, s.job_execution_params.c.value)
            .where(s.job_execution_params.c.job_execution_id == execution_id)
        ).all()

        return JobExecution(
            execution_id=row.id,
            job_instance_id=row.job_instance_id,
            job_name=row.job_name,
            parameters={name: value for name, value in params},
            status=BatchStatus(row.status),
            start_offset=row.start_offset,
            read_count=row.read_count,
            write_count=row.write_count,
            skip_count=row.skip_count,
            commit_count=row.commit_count,
            rollback_count=row.rollback_count,
            create_time=row.create_time,
            start_time=row.start_time,
            end_time=row.end_time,
            exit_message=row.exit_message or "",
        )
