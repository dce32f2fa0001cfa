"""Database engine layer for the Price Importer.

Provides a sync engine factory (psycopg2 for PostgreSQL, pysqlite for local
and test runs), the session factory used by every transaction, and
``prepare_database`` which (re)creates the warehouse and job-metadata tables.
Session factories are configured with autoflush=False and
expire_on_commit=False for explicit transaction control.

Engines are built explicitly and passed to the importer and batch driver;
nothing in this module creates an engine at import time.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import Engine, create_engine, event, insert, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import Settings, settings
from .models.job_metadata import JobMetadataSchema
from .models.warehouse import WarehouseSchema
from .utils.logging_config import get_logger

logger = get_logger("core.database")


def build_engine(config: Settings = settings, url: Optional[str] = None) -> Engine:
    """Create a sync engine for ``url`` (``config.sync_database_url`` by default).

    SQLite URLs get foreign-key enforcement and the pysqlite SAVEPOINT
    recipe; an in-memory SQLite database is pinned to one connection so all
    sessions see the same data.
    """
    engine_url = make_url(url or config.sync_database_url)

    if engine_url.get_backend_name() != "sqlite":
        return create_engine(
            engine_url,
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_pre_ping=config.db_pool_pre_ping,
            echo=config.debug,
        )

    kwargs: dict[str, Any] = {
        "connect_args": {"check_same_thread": False},
        "echo": config.debug,
    }
    if engine_url.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(engine_url, **kwargs)
    _install_sqlite_hooks(engine)
    return engine


def _install_sqlite_hooks(engine: Engine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs work under pysqlite."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa: ANN001
        # disable pysqlite's own BEGIN handling
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN")


def build_sequence_engine(config: Settings = settings) -> Engine:
    """Engine for the counter table of the ``counter_table`` dialect."""
    return build_engine(config, config.sync_sequence_database_url)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory for one transaction per ``with session.begin()``."""
    return sessionmaker(
        engine,
        autoflush=False,
        expire_on_commit=False,
    )


def prepare_database(
    engine: Engine,
    warehouse: WarehouseSchema,
    job_metadata: Optional[JobMetadataSchema] = None,
    drop_existing: bool = False,
    sequence_engine: Optional[Engine] = None,
) -> None:
    """Create the warehouse (and job-metadata) tables, sequences included.

    Args:
        engine: Target engine.
        warehouse: Warehouse tables for the configured prefix.
        job_metadata: Job-metadata tables, when they live in the same database.
        drop_existing: Drop the tables first, resetting every sequence.
        sequence_engine: Where the counter table lives (``engine`` when
            omitted); only used by schemas built with ``counter_table=True``.
    """
    schemas = [warehouse.metadata]
    if job_metadata is not None and job_metadata.metadata is not warehouse.metadata:
        schemas.append(job_metadata.metadata)

    if drop_existing:
        for metadata in reversed(schemas):
            metadata.drop_all(engine)
    for metadata in schemas:
        metadata.create_all(engine)

    counter = warehouse.sequence_counter
    if counter is not None:
        counter_engine = sequence_engine if sequence_engine is not None else engine
        if drop_existing:
            counter.drop(counter_engine, checkfirst=True)
        counter.create(counter_engine, checkfirst=True)
        with counter_engine.begin() as conn:
            existing = set(conn.execute(select(counter.c.name)).scalars())
            missing = [
                {"name": name, "value": 0}
                for name in warehouse.sequence_names
                if name not in existing
            ]
            if missing:
                conn.execute(insert(counter), missing)

    logger.info(
        "database_prepared",
        prefix=warehouse.prefix,
        tables=sorted(warehouse.metadata.tables),
        dropped=drop_existing,
    )
