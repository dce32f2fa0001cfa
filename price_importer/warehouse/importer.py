"""Composite record import: one record in, one fact id out.

``RecordImporter.import_record`` validates the record, then in a single
transaction resolves the region, period and date_time dimension ids and
upserts the fact row. Validation failures raise before a transaction is
opened; any backend failure rolls the whole transaction back so no partial
dimension rows persist.

``RecordImporter.apply`` runs the same steps inside a transaction owned by
the caller -- the batch driver uses it to put a whole chunk in one commit.
"""

from __future__ import annotations

import math
from datetime import datetime
from numbers import Real
from typing import Optional

from sqlalchemy import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from price_importer.core.config import Settings
from price_importer.core.exceptions import BackendError, InvalidInputError
from price_importer.core.models.records import CompositeRecord
from price_importer.core.models.warehouse import LABEL_MAX_LENGTH, WarehouseSchema
from price_importer.core.utils.logging_config import get_logger

from .dimensions import DimensionResolver, Dimensions, build_dimensions
from .facts import FactUpserter
from .sequence import SequenceAllocator, create_allocator

logger = get_logger("warehouse.importer")


def validate_record(record: CompositeRecord) -> None:
    """Reject records that must not reach the database.

    Checks: all four parts present; labels non-blank and at most
    LABEL_MAX_LENGTH characters; measures real and finite; the date fields
    form a valid calendar minute.

    Raises:
        InvalidInputError: Describing the first problem found.
    """
    if record is None:
        raise InvalidInputError("record is missing")

    for field_name in ("region", "period"):
        label = getattr(record, field_name)
        if label is None or not str(label).strip():
            raise InvalidInputError(f"{field_name} is missing")
        if not isinstance(label, str):
            raise InvalidInputError(f"{field_name} is not a string: {label!r}")
        if len(label) > LABEL_MAX_LENGTH:
            raise InvalidInputError(
                f"{field_name} longer than {LABEL_MAX_LENGTH} characters: {label!r}"
            )

    for field_name in ("rpr", "total_demand"):
        value = getattr(record, field_name)
        if value is None:
            raise InvalidInputError(f"{field_name} is missing")
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidInputError(f"{field_name} is not a number: {value!r}")
        if not math.isfinite(value):
            raise InvalidInputError(f"{field_name} is not finite: {value!r}")

    key = record.date_time
    if key is None:
        raise InvalidInputError("date_time is missing")
    try:
        datetime(
            key.year, key.month, key.day_of_month, key.hour_of_day, key.minute_of_hour
        )
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"date_time {key} is not a valid instant: {exc}") from exc


class RecordImporter:
    """Orchestrate dimension resolution and the fact upsert for one record.

    Args:
        session_factory: Source of sessions for ``import_record``.
        schema: Warehouse tables.
        allocator: Surrogate-key allocator for the configured backend.
        overwrite_existing_facts: Passed to the FactUpserter.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        schema: WarehouseSchema,
        allocator: SequenceAllocator,
        overwrite_existing_facts: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self.schema = schema
        self.dimensions: Dimensions = build_dimensions(schema)
        self.resolver = DimensionResolver(allocator)
        self.facts = FactUpserter(allocator, schema, overwrite_existing_facts)

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        session_factory: sessionmaker[Session],
        schema: WarehouseSchema,
        sequence_engine: Optional[Engine] = None,
    ) -> RecordImporter:
        return cls(
            session_factory,
            schema,
            create_allocator(config.backend_dialect, schema, sequence_engine),
            overwrite_existing_facts=config.overwrite_existing_facts,
        )

    def import_record(self, record: CompositeRecord) -> int:
        """Import one record in its own transaction and return the fact id.

        Raises:
            InvalidInputError: Before any transaction is opened.
            SequenceUnknownError: If a sequence is missing (rolled back).
            BackendError: On any database failure (rolled back).
        """
        validate_record(record)
        with self._session_factory() as session:
            try:
                with session.begin():
                    fact_id = self._write(session, record)
            except DBAPIError as exc:
                # commit-time failures surface here, after the rollback
                raise BackendError(f"record import failed: {exc.orig}") from exc
        logger.debug("record_imported", fact_id=fact_id, region=record.region)
        return fact_id

    def apply(self, session: Session, record: CompositeRecord) -> int:
        """Import one record inside the caller's transaction.

        Validation runs before any statement for this record, so an
        InvalidInputError leaves the session usable.
        """
        validate_record(record)
        return self._write(session, record)

    def _write(self, session: Session, record: CompositeRecord) -> int:
        dims = self.dimensions
        region_id = self.resolver.resolve(session, dims.region, record.region)
        period_id = self.resolver.resolve(session, dims.period, record.period)
        date_time_id = self.resolver.resolve(session, dims.date_time, record.date_time)
        return self.facts.upsert(
            session,
            region_id=region_id,
            period_id=period_id,
            date_time_id=date_time_id,
            rpr=float(record.rpr),
            total_demand=float(record.total_demand),
        )
