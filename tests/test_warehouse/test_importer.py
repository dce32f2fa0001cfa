"""Tests for the composite record importer.

Covers the first-import, overwrite and second-fact scenarios, record
validation, and transactional atomicity of a failed import.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from price_importer.core.exceptions import (
    BackendError,
    InvalidInputError,
    SequenceUnknownError,
)
from price_importer.core.models import DateTimeKey, FactData
from price_importer.warehouse.facts import FactUpserter
from price_importer.warehouse.importer import RecordImporter, validate_record


def _facts(session_factory, schema) -> list[FactData]:
    with session_factory() as session:
        rows = session.execute(select(schema.fact).order_by(schema.fact.c.id)).all()
    return [FactData(**row._mapping) for row in rows]


def _table_counts(count_rows, schema) -> dict[str, int]:
    return {
        "region": count_rows(schema.region),
        "period": count_rows(schema.period),
        "date_time": count_rows(schema.date_time),
        "fact": count_rows(schema.fact),
    }


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------
class TestImportRecord:
    def test_first_import(self, importer, make_record, session_factory, warehouse_schema, count_rows) -> None:
        fact_id = importer.import_record(make_record())

        assert fact_id == 1
        assert _table_counts(count_rows, warehouse_schema) == {
            "region": 1,
            "period": 1,
            "date_time": 1,
            "fact": 1,
        }
        assert _facts(session_factory, warehouse_schema) == [
            FactData(id=1, total_demand=567.89, rpr=23.45, region_id=1, period_id=1, date_time_id=1)
        ]

    def test_measure_overwrite(self, importer, make_record, session_factory, warehouse_schema) -> None:
        importer.import_record(make_record())
        fact_id = importer.import_record(make_record(rpr=17.89, total_demand=1000.56))

        facts = _facts(session_factory, warehouse_schema)
        assert fact_id == 1
        assert len(facts) == 1
        assert facts[0].id == 1
        assert facts[0].rpr == pytest.approx(17.89, abs=1e-4)
        assert facts[0].total_demand == pytest.approx(1000.56, abs=1e-4)

    def test_second_fact_row(self, importer, make_record, session_factory, warehouse_schema, count_rows) -> None:
        importer.import_record(make_record())
        fact_id = importer.import_record(make_record(period="PD", rpr=17.89, total_demand=1000.67))

        assert fact_id == 2
        assert _table_counts(count_rows, warehouse_schema) == {
            "region": 1,
            "period": 2,
            "date_time": 1,
            "fact": 2,
        }
        second = _facts(session_factory, warehouse_schema)[1]
        assert (second.id, second.region_id, second.period_id, second.date_time_id) == (2, 1, 2, 1)

    def test_reimport_creates_no_rows(self, importer, make_record, warehouse_schema, count_rows) -> None:
        for _ in range(3):
            importer.import_record(make_record())
        assert _table_counts(count_rows, warehouse_schema) == {
            "region": 1,
            "period": 1,
            "date_time": 1,
            "fact": 1,
        }

    def test_ids_monotonic_over_new_keys(self, importer, make_record) -> None:
        ids = [
            importer.import_record(make_record(date_time=DateTimeKey(2016, 1, 1, 0, minute)))
            for minute in (0, 30)
        ] + [importer.import_record(make_record(region="VIC"))]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
class TestValidateRecord:
    def test_valid_record(self, make_record) -> None:
        validate_record(make_record())

    @pytest.mark.parametrize("field", ["region", "period", "date_time", "rpr", "total_demand"])
    def test_missing_part(self, make_record, field) -> None:
        with pytest.raises(InvalidInputError, match=field):
            validate_record(make_record(**{field: None}))

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_measure(self, make_record, value) -> None:
        with pytest.raises(InvalidInputError, match="not finite"):
            validate_record(make_record(rpr=value))
        with pytest.raises(InvalidInputError, match="not finite"):
            validate_record(make_record(total_demand=value))

    def test_measure_must_be_numeric(self, make_record) -> None:
        with pytest.raises(InvalidInputError, match="not a number"):
            validate_record(make_record(rpr="23.45"))
        with pytest.raises(InvalidInputError, match="not a number"):
            validate_record(make_record(total_demand=True))

    def test_blank_label(self, make_record) -> None:
        with pytest.raises(InvalidInputError, match="region"):
            validate_record(make_record(region="   "))

    def test_label_too_long(self, make_record) -> None:
        with pytest.raises(InvalidInputError, match="longer than 50"):
            validate_record(make_record(period="X" * 51))
        validate_record(make_record(period="X" * 50))

    def test_label_must_be_string(self, make_record) -> None:
        with pytest.raises(InvalidInputError, match="not a string"):
            validate_record(make_record(region=1))

    @pytest.mark.parametrize(
        "key",
        [
            DateTimeKey(2016, 13, 1, 0, 0),
            DateTimeKey(2016, 2, 30, 0, 0),
            DateTimeKey(2016, 1, 1, 24, 0),
            DateTimeKey(2016, 1, 1, 0, 60),
        ],
    )
    def test_invalid_calendar_instant(self, make_record, key) -> None:
        with pytest.raises(InvalidInputError, match="not a valid instant"):
            validate_record(make_record(date_time=key))

    def test_leap_day_is_valid(self, make_record) -> None:
        validate_record(make_record(date_time=DateTimeKey(2016, 2, 29, 23, 59)))

    def test_invalid_record_opens_no_transaction(self, warehouse_schema, allocator) -> None:
        def _no_sessions():
            raise AssertionError("a session was opened")

        importer = RecordImporter(_no_sessions, warehouse_schema, allocator)
        with pytest.raises(InvalidInputError):
            importer.import_record(None)


# ---------------------------------------------------------------------------
# Atomicity
# ---------------------------------------------------------------------------
class TestAtomicity:
    def test_failed_import_leaves_no_dimension_rows(self, session_factory, warehouse_schema, allocator, make_record, count_rows) -> None:
        importer = RecordImporter(session_factory, warehouse_schema, allocator)
        importer.import_record(make_record())
        before = _table_counts(count_rows, warehouse_schema)

        # region and period are new; the fact sequence is gone, so the
        # fact insert fails after both dimension rows were written
        importer.facts = FactUpserter(allocator, _without_fact_sequence(warehouse_schema))
        with pytest.raises(SequenceUnknownError):
            importer.import_record(make_record(region="VIC", period="PD"))

        assert _table_counts(count_rows, warehouse_schema) == before

    def test_ids_of_failed_import_are_not_reused(self, session_factory, warehouse_schema, allocator, make_record) -> None:
        importer = RecordImporter(session_factory, warehouse_schema, allocator)
        importer.import_record(make_record())

        importer.facts = FactUpserter(allocator, _without_fact_sequence(warehouse_schema))
        with pytest.raises(SequenceUnknownError):
            importer.import_record(make_record(region="VIC"))

        importer.facts = FactUpserter(allocator, warehouse_schema)
        importer.import_record(make_record(region="VIC"))
        region = warehouse_schema.region
        with session_factory() as session:
            rows = dict(session.execute(select(region.c.region, region.c.id)).all())
        # id 2 went to the rolled-back attempt
        assert rows == {"NSW": 1, "VIC": 3}

    def test_commit_failure_surfaces_as_backend_error(self, warehouse_schema, allocator, make_record) -> None:
        session = MagicMock()
        session.__enter__.return_value = session
        session.begin.return_value.__exit__.side_effect = OperationalError(
            "COMMIT", {}, Exception("database is locked")
        )
        importer = RecordImporter(lambda: session, warehouse_schema, allocator)
        importer._write = MagicMock(return_value=1)

        with pytest.raises(BackendError, match="database is locked"):
            importer.import_record(make_record())


def _without_fact_sequence(schema):
    @dataclass(frozen=True)
    class _Schema:
        fact: object
        fact_seq: str

    return _Schema(fact=schema.fact, fact_seq=f"{schema.prefix}_missing_fact_seq")
