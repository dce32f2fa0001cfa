"""Upsert-by-natural-key for dimension tables.

A dimension is a data value -- table, natural-key columns, sequence name and
a row builder -- and ``DimensionResolver.resolve`` is the one operation the
fact path relies on: return the surrogate id of the row whose natural key
matches, inserting the row first when it is missing.

Race handling: the insert runs inside a SAVEPOINT. When a concurrent
importer committed the same natural key in the meantime, the unique index
rejects the insert, the savepoint is rolled back and the lookup is re-run.
No natural-key -> id mapping is cached in process.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy import Table, and_, insert, select
from sqlalchemy.exc import DBAPIError, IntegrityError, MultipleResultsFound
from sqlalchemy.orm import Session

from price_importer.core.exceptions import BackendError, InvalidInputError
from price_importer.core.models.records import DateTimeKey
from price_importer.core.models.warehouse import WarehouseSchema
from price_importer.core.utils.logging_config import get_logger

from .sequence import SequenceAllocator

logger = get_logger("warehouse.dimensions")


@dataclass(frozen=True)
class Dimension:
    """Everything the resolver needs to upsert one kind of dimension row.

    Attributes:
        name: Short name used in logs (``"region"``).
        table: The dimension table; its surrogate key column is ``id``.
        natural_key_columns: Columns forming the unique natural key.
        sequence_name: Sequence feeding ``id``.
        row_builder: Maps a natural-key value to ``{column: value}`` for
            every natural-key column.
    """

    name: str
    table: Table
    natural_key_columns: tuple[str, ...]
    sequence_name: str
    row_builder: Callable[[Any], dict[str, Any]]


@dataclass(frozen=True)
class Dimensions:
    region: Dimension
    period: Dimension
    date_time: Dimension


def _date_time_row(key: DateTimeKey) -> dict[str, Any]:
    return {
        "year": key.year,
        "month_of_year": key.month,
        "day_of_month": key.day_of_month,
        "hour_of_day": key.hour_of_day,
        "minute_of_hour": key.minute_of_hour,
    }


def build_dimensions(schema: WarehouseSchema) -> Dimensions:
    """Describe the region, period and date_time dimensions of ``schema``."""
    return Dimensions(
        region=Dimension(
            name="region",
            table=schema.region,
            natural_key_columns=("region",),
            sequence_name=schema.region_seq,
            row_builder=lambda region: {"region": region},
        ),
        period=Dimension(
            name="period",
            table=schema.period,
            natural_key_columns=("period",),
            sequence_name=schema.period_seq,
            row_builder=lambda period: {"period": period},
        ),
        date_time=Dimension(
            name="date_time",
            table=schema.date_time,
            natural_key_columns=(
                "year",
                "month_of_year",
                "day_of_month",
                "hour_of_day",
                "minute_of_hour",
            ),
            sequence_name=schema.datetime_seq,
            row_builder=_date_time_row,
        ),
    )


class DimensionResolver:
    """Resolve natural keys to surrogate ids, inserting on first sight."""

    def __init__(self, allocator: SequenceAllocator) -> None:
        self._allocator = allocator

    def resolve(self, session: Session, dimension: Dimension, natural_key: Any) -> int:
        """Return the surrogate id for ``natural_key`` in ``dimension``.

        Raises:
            InvalidInputError: If the key or one of its components is None.
            BackendError: If the database fails, or a unique violation is
                not explained by a concurrent insert of the same key.
        """
        if natural_key is None:
            raise InvalidInputError(f"{dimension.name}: natural key is missing")
        values = dimension.row_builder(natural_key)
        missing = [c for c in dimension.natural_key_columns if values.get(c) is None]
        if missing:
            raise InvalidInputError(
                f"{dimension.name}: natural key component(s) {missing} are null"
            )

        existing = self._lookup(session, dimension, values)
        if existing is not None:
            return existing

        new_id = self._allocator.next_id(session, dimension.sequence_name)
        try:
            with session.begin_nested():
                session.execute(insert(dimension.table).values(id=new_id, **values))
        except IntegrityError as exc:
            winner = self._lookup(session, dimension, values)
            if winner is None:
                raise BackendError(
                    f"{dimension.name}: insert of id {new_id} rejected: {exc.orig}"
                ) from exc
            logger.info(
                "dimension_insert_race",
                dimension=dimension.name,
                discarded_id=new_id,
                id=winner,
            )
            return winner
        except DBAPIError as exc:
            raise BackendError(f"{dimension.name}: insert failed: {exc.orig}") from exc

        logger.debug("dimension_inserted", dimension=dimension.name, id=new_id, **values)
        return new_id

    def _lookup(
        self, session: Session, dimension: Dimension, values: dict[str, Any]
    ) -> Optional[int]:
        table = dimension.table
        criteria = [table.c[column] == values[column] for column in dimension.natural_key_columns]
        try:
            return session.execute(
                select(table.c.id).where(and_(*criteria))
            ).scalar_one_or_none()
        except MultipleResultsFound as exc:
            raise BackendError(
                f"{dimension.name}: natural key {values} is not unique"
            ) from exc
        except DBAPIError as exc:
            raise BackendError(f"{dimension.name}: lookup failed: {exc.orig}") from exc
