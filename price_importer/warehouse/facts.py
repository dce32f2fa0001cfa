"""Insert-or-update of fact rows keyed by their dimension ids.

The natural key of a fact row is (region_id, period_id, date_time_id). The
steady state is repeated imports of the same interval, so the upserter reads
first and updates in place; it only allocates a new id when the triple has
never been seen.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from price_importer.core.exceptions import BackendError, ConcurrentUpdateError
from price_importer.core.models.records import FactData
from price_importer.core.models.warehouse import WarehouseSchema
from price_importer.core.utils.logging_config import get_logger

from .sequence import SequenceAllocator

logger = get_logger("warehouse.facts")


class FactUpserter:
    """Upsert rows of ``<prefix>_f_energy_price_demand``.

    Args:
        allocator: Source of new fact ids (``<prefix>_fact_seq``).
        schema: Warehouse tables.
        overwrite_existing: When False an existing row keeps its measures
            (first writer wins); the default is last writer wins.
    """

    def __init__(
        self,
        allocator: SequenceAllocator,
        schema: WarehouseSchema,
        overwrite_existing: bool = True,
    ) -> None:
        self._allocator = allocator
        self._schema = schema
        self.overwrite_existing = overwrite_existing

    def upsert(
        self,
        session: Session,
        region_id: int,
        period_id: int,
        date_time_id: int,
        rpr: float,
        total_demand: float,
    ) -> int:
        """Write the measures for the id triple and return the fact id.

        Raises:
            ConcurrentUpdateError: If another writer inserted the same triple
                between the lookup and the insert.
            BackendError: For any other database failure.
        """
        fact = self._schema.fact
        try:
            existing = self._lookup(session, region_id, period_id, date_time_id)
            if existing is not None:
                if self.overwrite_existing:
                    session.execute(
                        update(fact)
                        .where(fact.c.id == existing)
                        .values(rpr=rpr, total_demand=total_demand)
                    )
                    logger.debug("fact_updated", id=existing)
                return existing
        except DBAPIError as exc:
            raise BackendError(f"fact upsert failed: {exc.orig}") from exc

        new_id = self._allocator.next_id(session, self._schema.fact_seq)
        try:
            with session.begin_nested():
                session.execute(
                    insert(fact).values(
                        id=new_id,
                        total_demand=total_demand,
                        rpr=rpr,
                        region_id=region_id,
                        period_id=period_id,
                        date_time_id=date_time_id,
                    )
                )
        except IntegrityError as exc:
            # only a row for the same triple makes this a lost race
            try:
                winner = self._lookup(session, region_id, period_id, date_time_id)
            except DBAPIError as lookup_exc:
                raise BackendError(f"fact lookup failed: {lookup_exc.orig}") from exc
            if winner is None:
                raise BackendError(
                    f"fact ({region_id}, {period_id}, {date_time_id}) rejected: {exc.orig}"
                ) from exc
            raise ConcurrentUpdateError(
                f"fact ({region_id}, {period_id}, {date_time_id}) was inserted "
                f"concurrently as id {winner}: {exc.orig}"
            ) from exc
        except DBAPIError as exc:
            raise BackendError(f"fact insert failed: {exc.orig}") from exc

        logger.debug("fact_inserted", id=new_id)
        return new_id

    def _lookup(
        self, session: Session, region_id: int, period_id: int, date_time_id: int
    ) -> Optional[int]:
        fact = self._schema.fact
        return session.execute(
            select(fact.c.id).where(
                fact.c.region_id == region_id,
                fact.c.period_id == period_id,
                fact.c.date_time_id == date_time_id,
            )
        ).scalar_one_or_none()

    def get(self, session: Session, fact_id: int) -> Optional[FactData]:
        """Read one fact row back, or None."""
        fact = self._schema.fact
        row = session.execute(select(fact).where(fact.c.id == fact_id)).first()
        if row is None:
            return None
        return FactData(**row._mapping)
