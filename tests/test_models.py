"""Tests for the warehouse and job-metadata table definitions."""

from __future__ import annotations

from sqlalchemy import Sequence, UniqueConstraint

from price_importer.core.models import (
    build_job_metadata_schema,
    build_warehouse_schema,
    make_metadata,
)


def _unique_columns(table) -> list[tuple[str, ...]]:
    return [
        tuple(c.name for c in constraint.columns)
        for constraint in table.constraints
        if isinstance(constraint, UniqueConstraint)
    ]


class TestWarehouseSchema:
    def test_table_names(self) -> None:
        schema = build_warehouse_schema("int_test")
        assert schema.region.name == "int_test_region"
        assert schema.period.name == "int_test_period"
        assert schema.date_time.name == "int_test_date_time"
        assert schema.fact.name == "int_test_f_energy_price_demand"

    def test_sequence_names(self) -> None:
        schema = build_warehouse_schema("int_test")
        assert schema.sequence_names == [
            "int_test_region_seq",
            "int_test_period_seq",
            "int_test_datetime_seq",
            "int_test_fact_seq",
        ]

    def test_fact_column_order(self) -> None:
        fact = build_warehouse_schema("dev").fact
        assert [c.name for c in fact.columns] == [
            "id",
            "total_demand",
            "rpr",
            "region_id",
            "period_id",
            "date_time_id",
        ]

    def test_natural_keys_are_unique(self) -> None:
        schema = build_warehouse_schema("dev")
        assert _unique_columns(schema.region) == [("region",)]
        assert _unique_columns(schema.period) == [("period",)]
        assert _unique_columns(schema.date_time) == [
            ("year", "month_of_year", "day_of_month", "hour_of_day", "minute_of_hour")
        ]
        assert _unique_columns(schema.fact) == [("region_id", "period_id", "date_time_id")]

    def test_fact_foreign_keys(self) -> None:
        schema = build_warehouse_schema("dev")
        targets = {fk.parent.name: fk.column.table.name for fk in schema.fact.foreign_keys}
        assert targets == {
            "region_id": "dev_region",
            "period_id": "dev_period",
            "date_time_id": "dev_date_time",
        }

    def test_ids_are_not_autoincremented(self) -> None:
        schema = build_warehouse_schema("dev")
        for table in (schema.region, schema.period, schema.date_time, schema.fact):
            assert table.c.id.autoincrement is False

    def test_database_sequences_declared(self) -> None:
        metadata = make_metadata()
        build_warehouse_schema("dev", metadata)
        assert set(metadata._sequences) == {
            "dev_region_seq",
            "dev_period_seq",
            "dev_datetime_seq",
            "dev_fact_seq",
        }
        assert all(isinstance(s, Sequence) for s in metadata._sequences.values())

    def test_counter_table_replaces_sequences(self) -> None:
        metadata = make_metadata()
        schema = build_warehouse_schema("dev", metadata, counter_table=True)
        assert schema.sequence_counter.name == "dev_sequence"
        assert not metadata._sequences
        # created separately, possibly in another database
        assert "dev_sequence" not in metadata.tables

    def test_prefixes_coexist_on_one_metadata(self) -> None:
        metadata = make_metadata()
        build_warehouse_schema("dev", metadata)
        build_warehouse_schema("prod", metadata)
        assert {"dev_region", "prod_region"} <= set(metadata.tables)


class TestJobMetadataSchema:
    def test_table_names(self) -> None:
        schema = build_job_metadata_schema("batch_")
        assert {t for t in schema.metadata.tables} == {
            "batch_job_instance",
            "batch_job_execution",
            "batch_job_execution_params",
            "batch_step_checkpoint",
        }

    def test_instance_identity_is_unique(self) -> None:
        schema = build_job_metadata_schema("batch_")
        assert _unique_columns(schema.job_instance) == [("job_name", "job_key")]

    def test_shares_metadata_with_warehouse(self) -> None:
        metadata = make_metadata()
        warehouse = build_warehouse_schema("dev", metadata)
        jobs = build_job_metadata_schema("batch_", metadata)
        assert jobs.metadata is warehouse.metadata
