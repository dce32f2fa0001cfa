"""Star-schema tables for the energy price and demand warehouse.

Three dimension tables (region, period, date_time) and one fact table
(f_energy_price_demand), all namespaced by a configurable prefix. Surrogate
ids are assigned by the allocator, never by column defaults, so every table
has one named sequence:

    <prefix>_region_seq, <prefix>_period_seq,
    <prefix>_datetime_seq, <prefix>_fact_seq

Backends without sequences use the ``<prefix>_sequence`` counter table
instead (see ``BackendDialect.COUNTER_TABLE``), which may sit in a separate
database.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Sequence,
    String,
    Table,
    UniqueConstraint,
)

from .base import make_metadata

LABEL_MAX_LENGTH = 50


@dataclass(frozen=True)
class WarehouseSchema:
    """Tables and sequence names for one warehouse prefix."""

    prefix: str
    metadata: MetaData
    region: Table
    period: Table
    date_time: Table
    fact: Table
    sequence_counter: Optional[Table] = None

    @property
    def region_seq(self) -> str:
        return f"{self.prefix}_region_seq"

    @property
    def period_seq(self) -> str:
        return f"{self.prefix}_period_seq"

    @property
    def datetime_seq(self) -> str:
        return f"{self.prefix}_datetime_seq"

    @property
    def fact_seq(self) -> str:
        return f"{self.prefix}_fact_seq"

    @property
    def sequence_names(self) -> list[str]:
        return [self.region_seq, self.period_seq, self.datetime_seq, self.fact_seq]


def build_warehouse_schema(
    prefix: str,
    metadata: Optional[MetaData] = None,
    counter_table: bool = False,
) -> WarehouseSchema:
    """Define the warehouse tables for ``prefix`` on ``metadata``.

    Args:
        prefix: Table-name namespace, e.g. ``"int_test"``.
        metadata: MetaData to attach to (a new one when omitted).
        counter_table: Also define ``<prefix>_sequence`` for backends that
            emulate sequences with a counter table. It is kept on its own
            MetaData and created by ``prepare_database`` on the sequence
            engine.

    Returns:
        WarehouseSchema holding the Table objects.
    """
    metadata = metadata if metadata is not None else make_metadata()

    region = Table(
        f"{prefix}_region",
        metadata,
        Column("id", BigInteger, primary_key=True, autoincrement=False),
        Column("region", String(LABEL_MAX_LENGTH), nullable=False),
        UniqueConstraint("region", name=f"uq_{prefix}_region_natural_key"),
    )

    period = Table(
        f"{prefix}_period",
        metadata,
        Column("id", BigInteger, primary_key=True, autoincrement=False),
        Column("period", String(LABEL_MAX_LENGTH), nullable=False),
        UniqueConstraint("period", name=f"uq_{prefix}_period_natural_key"),
    )

    date_time = Table(
        f"{prefix}_date_time",
        metadata,
        Column("id", BigInteger, primary_key=True, autoincrement=False),
        Column("year", Integer, nullable=False),
        Column("month_of_year", Integer, nullable=False),
        Column("day_of_month", Integer, nullable=False),
        Column("hour_of_day", Integer, nullable=False),
        Column("minute_of_hour", Integer, nullable=False),
        UniqueConstraint(
            "year",
            "month_of_year",
            "day_of_month",
            "hour_of_day",
            "minute_of_hour",
            name=f"uq_{prefix}_date_time_natural_key",
        ),
    )

    # Column order matters to positional readers: id, total_demand, rpr, FKs
    fact = Table(
        f"{prefix}_f_energy_price_demand",
        metadata,
        Column("id", BigInteger, primary_key=True, autoincrement=False),
        Column("total_demand", Float, nullable=False),
        Column("rpr", Float, nullable=False),
        Column("region_id", BigInteger, ForeignKey(region.c.id), nullable=False),
        Column("period_id", BigInteger, ForeignKey(period.c.id), nullable=False),
        Column("date_time_id", BigInteger, ForeignKey(date_time.c.id), nullable=False),
        UniqueConstraint(
            "region_id",
            "period_id",
            "date_time_id",
            name=f"uq_{prefix}_f_energy_price_demand_natural_key",
        ),
    )

    counter: Optional[Table] = None
    if counter_table:
        # own MetaData: the counters may live in another database
        counter = Table(
            f"{prefix}_sequence",
            make_metadata(),
            Column("name", String(100), primary_key=True),
            Column("value", BigInteger, nullable=False, default=0),
        )

    schema = WarehouseSchema(
        prefix=prefix,
        metadata=metadata,
        region=region,
        period=period,
        date_time=date_time,
        fact=fact,
        sequence_counter=counter,
    )

    if counter is None:
        # Created by metadata.create_all on backends that support sequences
        for name in schema.sequence_names:
            Sequence(name, start=1, increment=1, metadata=metadata)

    return schema
