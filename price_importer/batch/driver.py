"""Chunked, checkpointed, restartable import of a record stream.

BatchDriver drives a potentially large stream of composite records through
the RecordImporter:

    CREATED -> STARTED -> (COMPLETED | FAILED | STOPPED)

- Each chunk of ``chunk_size`` records is one transaction: all-or-nothing.
- After each committed chunk the reader position and counters are written
  to the job repository (the checkpoint).
- A chunk that fails with BackendError (ConcurrentUpdateError included) is
  rolled back and retried with exponential backoff; once ``retry_limit``
  attempts are spent the execution ends FAILED.
- Records rejected with InvalidInputError are skipped (``skip_count``) when
  the job allows it, otherwise they fail the execution.
- A stop request is honoured between chunks (STOPPED).
- Relaunching a FAILED/STOPPED instance resumes at its checkpoint; chunk
  writes are idempotent upserts, so a chunk replayed after a crash between
  commit and checkpoint converges to the same state.
"""

from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from price_importer.core.config import Settings
from price_importer.core.enums import BatchStatus
from price_importer.core.exceptions import BackendError, InvalidInputError
from price_importer.core.models.records import CompositeRecord
from price_importer.core.utils.logging_config import get_logger
from price_importer.warehouse.importer import RecordImporter

from .execution import JobExecution, utcnow
from .repository import JobRepository

logger = get_logger("batch.driver")

DEFAULT_JOB_NAME = "price-demand-import"


@dataclass(frozen=True)
class ImportJob:
    """Static description of an import job.

    Attributes:
        name: Job name; with the parameters it identifies the job instance.
        chunk_size: Records per transaction.
        skip_on_invalid_input: Skip records failing validation instead of
            failing the execution.
        retry_limit: Attempts per chunk before the execution fails.
        retry_backoff_seconds: Multiplier of the exponential backoff.
        restartable: Whether FAILED/STOPPED instances may be relaunched.
    """

    name: str = DEFAULT_JOB_NAME
    chunk_size: int = 100
    skip_on_invalid_input: bool = True
    retry_limit: int = 3
    retry_backoff_seconds: float = 0.5
    restartable: bool = True

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.retry_limit < 1:
            raise ValueError(f"retry_limit must be at least 1, got {self.retry_limit}")

    @classmethod
    def from_settings(cls, config: Settings, name: str = DEFAULT_JOB_NAME) -> ImportJob:
        return cls(
            name=name,
            chunk_size=config.chunk_size,
            skip_on_invalid_input=config.skip_on_invalid_input,
            retry_limit=config.chunk_retry_limit,
            retry_backoff_seconds=config.chunk_retry_backoff_seconds,
        )


@dataclass
class ChunkResult:
    written: int = 0
    skipped: int = 0


class JobHandle:
    """Handle on a launched execution.

    ``execution`` is the live object updated by the running driver; ``wait``
    blocks until the execution has reached a terminal status.
    """

    def __init__(
        self, driver: BatchDriver, execution: JobExecution, future: Future
    ) -> None:
        self._driver = driver
        self.execution = execution
        self._future = future

    def wait(self, timeout: Optional[float] = None) -> JobExecution:
        return self._future.result(timeout=timeout)

    def done(self) -> bool:
        return self._future.done()

    def stop(self) -> None:
        self._driver.request_stop(self.execution.execution_id)


class BatchDriver:
    """Run ImportJob executions against the warehouse.

    Args:
        job: Job description (chunking, skip and retry policy).
        importer: Composite record importer.
        session_factory: Sessions for the warehouse chunk transactions.
        job_repository: Job-metadata store.
        max_workers: Threads available to ``launch(..., wait=False)``.
    """

    def __init__(
        self,
        job: ImportJob,
        importer: RecordImporter,
        session_factory: sessionmaker[Session],
        job_repository: JobRepository,
        max_workers: int = 4,
    ) -> None:
        self.job = job
        self._importer = importer
        self._session_factory = session_factory
        self._repository = job_repository
        self._max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_events: dict[int, threading.Event] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def launch(
        self,
        parameters: Mapping[str, Any],
        records: Iterable[CompositeRecord],
        wait: bool = True,
    ) -> JobHandle:
        """Register an execution and run it.

        Registration happens in the calling thread, so refusals raise here.
        With ``wait=False`` the execution runs on the driver's thread pool
        and the handle is returned as soon as it is registered.

        Raises:
            JobAlreadyRunningError: The instance has an active execution.
            JobInstanceAlreadyCompleteError: The instance already completed.
            JobRestartNotAllowedError: The job is not restartable.
        """
        execution = self._repository.create_execution(
            self.job.name, parameters, restartable=self.job.restartable
        )
        stop_event = threading.Event()
        with self._lock:
            self._stop_events[execution.execution_id] = stop_event

        if wait:
            future: Future = Future()
            future.set_result(self._run(execution, records, stop_event))
        else:
            future = self._get_executor().submit(
                self._run, execution, records, stop_event
            )
        return JobHandle(self, execution, future)

    def request_stop(self, execution_id: int) -> bool:
        """Ask a running execution to stop after its current chunk.

        Returns:
            True if the execution is running in this driver.
        """
        with self._lock:
            event = self._stop_events.get(execution_id)
        if event is None:
            return False
        event.set()
        logger.info("job_stop_requested", execution_id=execution_id)
        return True

    def running_executions(self) -> list[int]:
        with self._lock:
            return sorted(self._stop_events)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="import-job"
                )
            return self._executor

    def _run(
        self,
        execution: JobExecution,
        records: Iterable[CompositeRecord],
        stop_event: threading.Event,
    ) -> JobExecution:
        log = logger.bind(job_name=execution.job_name, execution_id=execution.execution_id)
        try:
            execution.status = BatchStatus.STARTED
            execution.start_time = utcnow()
            self._repository.update_execution(execution)
            log.info("job_started", start_offset=execution.start_offset)

            stream = self._resume(iter(records), execution.start_offset)
            while True:
                if stop_event.is_set():
                    execution.status = BatchStatus.STOPPED
                    break
                chunk = list(itertools.islice(stream, self.job.chunk_size))
                if not chunk:
                    execution.status = BatchStatus.COMPLETED
                    break

                result = self._write_chunk_with_retry(execution, chunk)
                execution.read_count += len(chunk)
                execution.write_count += result.written
                execution.skip_count += result.skipped
                execution.commit_count += 1
                self._repository.save_checkpoint(execution)
                log.info(
                    "chunk_committed",
                    read_count=execution.read_count,
                    written=result.written,
                    skipped=result.skipped,
                )
        except Exception as exc:
            execution.status = BatchStatus.FAILED
            execution.exit_message = f"{type(exc).__name__}: {exc}"
            log.exception("job_failed", read_count=execution.read_count)
        finally:
            execution.end_time = utcnow()
            with self._lock:
                self._stop_events.pop(execution.execution_id, None)
            self._repository.update_execution(execution)

        log.info(
            "job_finished",
            status=execution.status.value,
            read_count=execution.read_count,
            write_count=execution.write_count,
            skip_count=execution.skip_count,
            commit_count=execution.commit_count,
            rollback_count=execution.rollback_count,
        )
        return execution

    @staticmethod
    def _resume(stream: Iterator[CompositeRecord], offset: int) -> Iterator[CompositeRecord]:
        """Discard the records already committed by a previous execution."""
        if offset:
            skipped = sum(1 for _ in itertools.islice(stream, offset))
            if skipped < offset:
                logger.warning("resume_offset_beyond_input", offset=offset, available=skipped)
        return stream

    def _write_chunk_with_retry(
        self, execution: JobExecution, chunk: list[CompositeRecord]
    ) -> ChunkResult:
        """Write one chunk, retrying transient backend failures.

        Uses Retrying so that the job's retry settings are read at runtime
        rather than decoration time.
        """
        for attempt in Retrying(
            retry=retry_if_exception_type(BackendError),
            stop=stop_after_attempt(self.job.retry_limit),
            wait=wait_exponential(multiplier=self.job.retry_backoff_seconds, max=30),
            reraise=True,
        ):
            with attempt:
                try:
                    return self._write_chunk(chunk)
                except BackendError as exc:
                    execution.rollback_count += 1
                    logger.warning(
                        "chunk_rolled_back",
                        execution_id=execution.execution_id,
                        attempt=attempt.retry_state.attempt_number,
                        error=str(exc),
                    )
                    raise

        # Should not be reached, but satisfies type checker
        raise BackendError("chunk write failed after retries")  # pragma: no cover

    def _write_chunk(self, chunk: list[CompositeRecord]) -> ChunkResult:
        result = ChunkResult()
        with self._session_factory() as session:
            try:
                with session.begin():
                    for record in chunk:
                        try:
                            self._importer.apply(session, record)
                        except InvalidInputError as exc:
                            if not self.job.skip_on_invalid_input:
                                raise
                            result.skipped += 1
                            logger.info("record_skipped", reason=str(exc))
                            continue
                        result.written += 1
            except DBAPIError as exc:
                raise BackendError(f"chunk commit failed: {exc.orig}") from exc
        return result
