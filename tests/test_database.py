"""Tests for the engine factory and schema preparation."""

from __future__ import annotations

import pytest
from sqlalchemy import insert, inspect, select, text
from sqlalchemy.exc import IntegrityError

from price_importer.core.config import Settings
from price_importer.core.database import (
    build_engine,
    build_sequence_engine,
    build_session_factory,
    prepare_database,
)
from price_importer.core.models import build_warehouse_schema, make_metadata


class TestSettings:
    def test_database_url_wins(self) -> None:
        config = Settings(_env_file=None, database_url="sqlite:///warehouse.db")
        assert config.sync_database_url == "sqlite:///warehouse.db"

    def test_postgres_url_from_parts(self) -> None:
        config = Settings(
            _env_file=None,
            database_url="",
            postgres_host="db",
            postgres_user="importer",
            postgres_password="secret",
            postgres_db="energy",
            db_sslmode="require",
        )
        assert config.sync_database_url == (
            "postgresql+psycopg2://importer:secret@db:5432/energy?sslmode=require"
        )

    def test_sequence_database_defaults_to_warehouse(self) -> None:
        config = Settings(_env_file=None, database_url="sqlite:///warehouse.db")
        assert config.sync_sequence_database_url == "sqlite:///warehouse.db"

    def test_sequence_database_override(self) -> None:
        config = Settings(
            _env_file=None,
            database_url="sqlite:///warehouse.db",
            sequence_database_url="sqlite:///sequences.db",
        )
        assert config.sync_sequence_database_url == "sqlite:///sequences.db"

    def test_sslmode_disabled(self) -> None:
        config = Settings(_env_file=None, database_url="", db_sslmode="disable")
        assert "sslmode" not in config.sync_database_url

    def test_chunk_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            Settings(_env_file=None, chunk_size=0)

    def test_environment_override(self, monkeypatch) -> None:
        monkeypatch.setenv("TABLE_PREFIX", "prod")
        monkeypatch.setenv("BACKEND_DIALECT", "hana")
        config = Settings(_env_file=None)
        assert config.table_prefix == "prod"
        assert config.backend_dialect.value == "hana"


class TestSqliteEngine:
    def test_foreign_keys_enforced(self, session_factory, warehouse_schema) -> None:
        with pytest.raises(IntegrityError):
            with session_factory() as session, session.begin():
                session.execute(
                    insert(warehouse_schema.fact).values(
                        id=1, total_demand=1.0, rpr=1.0, region_id=1, period_id=1, date_time_id=1
                    )
                )

    def test_savepoint_rollback_keeps_outer_work(self, session_factory, warehouse_schema) -> None:
        region = warehouse_schema.region
        with session_factory() as session, session.begin():
            session.execute(insert(region).values(id=1, region="NSW1"))
            with pytest.raises(IntegrityError):
                with session.begin_nested():
                    session.execute(insert(region).values(id=2, region="NSW1"))
        with session_factory() as session:
            assert session.execute(select(region.c.region)).scalars().all() == ["NSW1"]

    def test_in_memory_database_shared_across_sessions(self, engine) -> None:
        factory = build_session_factory(engine)
        with factory() as session, session.begin():
            session.execute(text("CREATE TABLE scratch (x INTEGER)"))
            session.execute(text("INSERT INTO scratch VALUES (1)"))
        with factory() as session:
            assert session.execute(text("SELECT x FROM scratch")).scalar_one() == 1


class TestPrepareDatabase:
    def test_counter_rows_seeded(self, engine, sequence_engine, warehouse_schema) -> None:
        counter = warehouse_schema.sequence_counter
        with sequence_engine.connect() as conn:
            rows = dict(conn.execute(select(counter.c.name, counter.c.value)).all())
        assert rows == {name: 0 for name in warehouse_schema.sequence_names}

    def test_counter_table_only_on_sequence_engine(self, engine, sequence_engine, warehouse_schema) -> None:
        name = warehouse_schema.sequence_counter.name
        assert not inspect(engine).has_table(name)
        assert inspect(sequence_engine).has_table(name)

    def test_rerun_keeps_counters(self, engine, sequence_engine, session_factory, warehouse_schema, allocator) -> None:
        with session_factory() as session, session.begin():
            allocator.next_id(session, warehouse_schema.region_seq)
        prepare_database(engine, warehouse_schema, sequence_engine=sequence_engine)
        with session_factory() as session, session.begin():
            assert allocator.next_id(session, warehouse_schema.region_seq) == 2

    def test_drop_existing_resets_counters(self, engine, sequence_engine, session_factory, warehouse_schema, allocator) -> None:
        with session_factory() as session, session.begin():
            allocator.next_id(session, warehouse_schema.region_seq)
        prepare_database(engine, warehouse_schema, drop_existing=True, sequence_engine=sequence_engine)
        with session_factory() as session, session.begin():
            assert allocator.next_id(session, warehouse_schema.region_seq) == 1

    def test_file_database(self, tmp_path) -> None:
        config = Settings(
            _env_file=None,
            database_url=f"sqlite:///{tmp_path / 'warehouse.db'}",
            sequence_database_url=f"sqlite:///{tmp_path / 'sequences.db'}",
        )
        engine = build_engine(config)
        sequence_engine = build_sequence_engine(config)
        schema = build_warehouse_schema("file_test", make_metadata(), counter_table=True)
        try:
            prepare_database(engine, schema, sequence_engine=sequence_engine)
            assert (tmp_path / "warehouse.db").exists()
            assert (tmp_path / "sequences.db").exists()
        finally:
            engine.dispose()
            sequence_engine.dispose()
