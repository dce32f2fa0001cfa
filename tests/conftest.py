"""Root pytest configuration and shared fixtures.

Provides an in-memory SQLite warehouse for every test that needs a
database:
- test_settings: Settings pointing at ``sqlite://`` with the counter-table
  dialect and the ``int_test`` prefix
- engine / warehouse_schema / job_schema: freshly created tables per test
- sequence_engine: a second in-memory database holding the counter table
- session_factory, allocator, importer: the record-import core
- job_repository, make_driver: the batch driver and its metadata store
- make_record: builds CompositeRecord values with sensible defaults
"""

from __future__ import annotations

from typing import Any, Callable, Iterator

import pytest
from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from price_importer.batch import BatchDriver, ImportJob, SqlJobRepository
from price_importer.core.config import Settings
from price_importer.core.database import (
    build_engine,
    build_session_factory,
    prepare_database,
)
from price_importer.core.models import (
    CompositeRecord,
    DateTimeKey,
    JobMetadataSchema,
    WarehouseSchema,
    build_job_metadata_schema,
    build_warehouse_schema,
    make_metadata,
)
from price_importer.warehouse import RecordImporter, SequenceAllocator, create_allocator

TEST_PREFIX = "int_test"


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an in-memory SQLite warehouse."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        backend_dialect="counter_table",
        table_prefix=TEST_PREFIX,
        metadata_table_prefix="batch_",
        chunk_size=3,
        chunk_retry_backoff_seconds=0,
    )


@pytest.fixture
def warehouse_schema() -> WarehouseSchema:
    return build_warehouse_schema(TEST_PREFIX, make_metadata(), counter_table=True)


@pytest.fixture
def job_schema(warehouse_schema: WarehouseSchema) -> JobMetadataSchema:
    return build_job_metadata_schema("batch_", warehouse_schema.metadata)


@pytest.fixture
def sequence_engine(test_settings: Settings) -> Iterator[Engine]:
    """Separate in-memory database for the sequence counters."""
    engine = build_engine(test_settings)
    yield engine
    engine.dispose()


@pytest.fixture
def engine(
    test_settings: Settings,
    warehouse_schema: WarehouseSchema,
    job_schema: JobMetadataSchema,
    sequence_engine: Engine,
) -> Iterator[Engine]:
    """Engine with all tables created; disposed after the test."""
    engine = build_engine(test_settings)
    prepare_database(
        engine,
        warehouse_schema,
        job_schema,
        drop_existing=True,
        sequence_engine=sequence_engine,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture
def allocator(
    warehouse_schema: WarehouseSchema, sequence_engine: Engine
) -> SequenceAllocator:
    return create_allocator("counter_table", warehouse_schema, sequence_engine)


@pytest.fixture
def importer(
    session_factory: sessionmaker[Session],
    warehouse_schema: WarehouseSchema,
    allocator: SequenceAllocator,
) -> RecordImporter:
    return RecordImporter(session_factory, warehouse_schema, allocator)


@pytest.fixture
def job_repository(
    session_factory: sessionmaker[Session], job_schema: JobMetadataSchema
) -> SqlJobRepository:
    return SqlJobRepository(session_factory, job_schema)


@pytest.fixture
def make_driver(
    importer: RecordImporter,
    session_factory: sessionmaker[Session],
    job_repository: SqlJobRepository,
) -> Callable[..., BatchDriver]:
    """Return a callable building a BatchDriver with ImportJob overrides.

    Usage::

        def test_something(make_driver):
            driver = make_driver(chunk_size=2, skip_on_invalid_input=False)
    """
    drivers: list[BatchDriver] = []

    def _make(**job_fields: Any) -> BatchDriver:
        job_fields.setdefault("chunk_size", 3)
        job_fields.setdefault("retry_backoff_seconds", 0)
        driver = BatchDriver(
            ImportJob(**job_fields), importer, session_factory, job_repository
        )
        drivers.append(driver)
        return driver

    yield _make
    for driver in drivers:
        driver.shutdown()


@pytest.fixture
def make_record() -> Callable[..., CompositeRecord]:
    """Return a callable building CompositeRecord values.

    Defaults to the NSW / TRADE / 2016-01-01 00:00 record.
    """

    def _make(
        region: Any = "NSW",
        period: Any = "TRADE",
        date_time: Any = DateTimeKey(2016, 1, 1, 0, 0),
        rpr: Any = 23.45,
        total_demand: Any = 567.89,
    ) -> CompositeRecord:
        return CompositeRecord(
            region=region,
            period=period,
            date_time=date_time,
            rpr=rpr,
            total_demand=total_demand,
        )

    return _make


@pytest.fixture
def count_rows(session_factory: sessionmaker[Session]) -> Callable[[Any], int]:
    """Return a callable counting the rows of a table."""

    def _count(table: Any) -> int:
        with session_factory() as session:
            return session.execute(select(func.count()).select_from(table)).scalar_one()

    return _count
