"""Surrogate-key allocation from named database sequences.

Every backend spells sequence access differently, so the allocator is the
single swap point for backend portability:

    standard       SELECT nextval(:name)                     (PostgreSQL)
    hana           SELECT <name>.NEXTVAL FROM DUMMY
    h2             SELECT NEXT VALUE FOR <name>
    counter_table  UPDATE <prefix>_sequence SET value = value + 1 ...

Allocators are stateless. Native sequences run on the session of the
enclosing transaction; the counter table is bumped in its own committed
transaction. Either way a value is never handed out twice, even when the
caller rolls back. Values are strictly increasing but may be sparse; the
backend, not the allocator, keeps concurrent callers disjoint.
"""

from __future__ import annotations

import abc
import re
from typing import Optional

from sqlalchemy import Engine, select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import TextClause

from price_importer.core.enums import BackendDialect
from price_importer.core.exceptions import BackendError, SequenceUnknownError
from price_importer.core.models.warehouse import WarehouseSchema
from price_importer.core.utils.logging_config import get_logger

logger = get_logger("warehouse.sequence")

# Identifiers that may be interpolated into SQL (optionally schema-qualified)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)?$")


def _check_name(sequence_name: str) -> None:
    # a bad name comes from the table prefix, so no record can get past it
    if not _IDENTIFIER.match(sequence_name or ""):
        raise SequenceUnknownError(f"Invalid sequence name: {sequence_name!r}")


class SequenceAllocator(abc.ABC):
    """Return the next value of a named sequence.

    Subclasses MUST override ``_statement``; they MAY extend
    ``UNKNOWN_SEQUENCE_MARKERS`` with lower-case fragments of the backend's
    "no such sequence" error message.
    """

    DIALECT: BackendDialect
    UNKNOWN_SEQUENCE_MARKERS: tuple[str, ...] = ()

    def next_id(self, session: Session, sequence_name: str) -> int:
        """Allocate the next id from ``sequence_name``.

        Raises:
            SequenceUnknownError: If the sequence does not exist or the name
                is not a plain SQL identifier.
            BackendError: For any other database failure.
        """
        _check_name(sequence_name)
        statement, params = self._statement(sequence_name)
        try:
            value = session.execute(statement, params).scalar_one()
        except DBAPIError as exc:
            if self._is_unknown_sequence(exc):
                raise SequenceUnknownError(
                    f"Sequence {sequence_name} does not exist"
                ) from exc
            raise BackendError(
                f"Could not read next value of {sequence_name}: {exc.orig}"
            ) from exc

        logger.debug("sequence_next_value", sequence=sequence_name, value=value)
        return int(value)

    @abc.abstractmethod
    def _statement(self, sequence_name: str) -> tuple[TextClause, dict]:
        ...

    def _is_unknown_sequence(self, exc: DBAPIError) -> bool:
        message = str(exc.orig).lower()
        return any(marker in message for marker in self.UNKNOWN_SEQUENCE_MARKERS)


class StandardSequenceAllocator(SequenceAllocator):
    """PostgreSQL-style ``nextval(name)``; the name travels as a bind param."""

    DIALECT = BackendDialect.STANDARD
    UNKNOWN_SEQUENCE_MARKERS = ("does not exist",)
    UNDEFINED_TABLE = "42P01"

    def _statement(self, sequence_name: str) -> tuple[TextClause, dict]:
        return text("SELECT nextval(:name)"), {"name": sequence_name}

    def _is_unknown_sequence(self, exc: DBAPIError) -> bool:
        if getattr(exc.orig, "pgcode", None) == self.UNDEFINED_TABLE:
            return True
        return super()._is_unknown_sequence(exc)


class HanaSequenceAllocator(SequenceAllocator):
    DIALECT = BackendDialect.HANA
    UNKNOWN_SEQUENCE_MARKERS = ("invalid sequence",)

    def _statement(self, sequence_name: str) -> tuple[TextClause, dict]:
        return text(f"SELECT {sequence_name}.NEXTVAL FROM DUMMY"), {}


class H2SequenceAllocator(SequenceAllocator):
    DIALECT = BackendDialect.H2
    UNKNOWN_SEQUENCE_MARKERS = ("not found",)

    def _statement(self, sequence_name: str) -> tuple[TextClause, dict]:
        return text(f"SELECT NEXT VALUE FOR {sequence_name}"), {}


class CounterTableSequenceAllocator(SequenceAllocator):
    """Sequence emulation through a ``(name, value)`` counter table.

    Each increment is committed on its own connection from ``engine``,
    independently of the caller's session, so a value taken by a
    transaction that later rolls back is gone for good. The counter row is
    locked only for the duration of that short transaction.

    SQLite allows one writer per database file; its counter table must live
    in a different database from the warehouse tables.
    """

    DIALECT = BackendDialect.COUNTER_TABLE

    def __init__(self, schema: WarehouseSchema, engine: Engine) -> None:
        if schema.sequence_counter is None:
            raise ValueError(
                "counter_table dialect needs a schema built with counter_table=True"
            )
        self._counter = schema.sequence_counter
        self._engine = engine

    def next_id(self, session: Session, sequence_name: str) -> int:
        _check_name(sequence_name)
        counter = self._counter
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(counter)
                    .where(counter.c.name == sequence_name)
                    .values(value=counter.c.value + 1)
                )
                if result.rowcount == 0:
                    raise SequenceUnknownError(
                        f"Sequence {sequence_name} does not exist"
                    )
                value = conn.execute(
                    select(counter.c.value).where(counter.c.name == sequence_name)
                ).scalar_one()
        except DBAPIError as exc:
            raise BackendError(
                f"Could not read next value of {sequence_name}: {exc.orig}"
            ) from exc

        logger.debug("sequence_next_value", sequence=sequence_name, value=value)
        return int(value)

    def _statement(self, sequence_name: str) -> tuple[TextClause, dict]:
        raise NotImplementedError("counter table allocation is not a single statement")


_ALLOCATORS: dict[BackendDialect, type[SequenceAllocator]] = {
    BackendDialect.STANDARD: StandardSequenceAllocator,
    BackendDialect.HANA: HanaSequenceAllocator,
    BackendDialect.H2: H2SequenceAllocator,
}


def create_allocator(
    dialect: BackendDialect | str,
    schema: Optional[WarehouseSchema] = None,
    sequence_engine: Optional[Engine] = None,
) -> SequenceAllocator:
    """Build the allocator for ``dialect``.

    Args:
        dialect: A BackendDialect or its string value.
        schema: Required for ``counter_table`` (provides the counter table).
        sequence_engine: Required for ``counter_table``; the engine of the
            database holding the counter table.
    """
    dialect = BackendDialect(dialect)
    if dialect is BackendDialect.COUNTER_TABLE:
        if schema is None or sequence_engine is None:
            raise ValueError(
                "counter_table dialect requires the warehouse schema and a sequence engine"
            )
        return CounterTableSequenceAllocator(schema, sequence_engine)
    return _ALLOCATORS[dialect]()
