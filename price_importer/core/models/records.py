"""Plain record types flowing from the feed reader into the importer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class DateTimeKey:
    """Natural key of the date_time dimension (minute resolution)."""

    year: int
    month: int
    day_of_month: int
    hour_of_day: int
    minute_of_hour: int

    @classmethod
    def from_datetime(cls, value: datetime) -> DateTimeKey:
        """Take the wall-clock fields of ``value``; seconds are dropped."""
        return cls(
            year=value.year,
            month=value.month,
            day_of_month=value.day,
            hour_of_day=value.hour,
            minute_of_hour=value.minute,
        )


@dataclass(frozen=True)
class CompositeRecord:
    """One feed row: three dimension keys plus the two measures.

    Fields are Optional because the feed reader maps unparseable cells to
    None; ``validate_record`` rejects such records before any SQL runs.
    """

    region: Optional[str]
    period: Optional[str]
    date_time: Optional[DateTimeKey]
    rpr: Optional[float]
    total_demand: Optional[float]


@dataclass(frozen=True)
class FactData:
    """A row of the fact table as read back from the warehouse."""

    id: int
    total_demand: float
    rpr: float
    region_id: int
    period_id: int
    date_time_id: int
