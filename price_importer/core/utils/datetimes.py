"""Settlement-date parsing for the AEMO price and demand feed.

SETTLEMENTDATE cells look like ``2016/03/22 04:30:00`` and are expressed in
NEM market time, which is AEST all year round (no daylight saving).

Examples::

    >>> dt = parse_settlement_date("2016/03/22 04:30:00")
    >>> (dt.year, dt.month, dt.day, dt.hour, dt.minute, dt.second)
    (2016, 3, 22, 4, 30, 0)
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

SETTLEMENT_DATE_FORMATS = ("%Y/%m/%d %H:%M:%S", "%Y/%m/%d %H:%M", "%Y-%m-%d %H:%M:%S")
MARKET_TIMEZONE = "Australia/Brisbane"


def parse_settlement_date(raw: str, timezone: str = MARKET_TIMEZONE) -> datetime:
    """Parse a settlement-date cell into a timezone-aware datetime.

    Args:
        raw: Cell text, e.g. ``"2016/03/22 04:30:00"``.
        timezone: IANA zone the wall-clock time is expressed in.

    Returns:
        Aware datetime carrying ``ZoneInfo(timezone)``.

    Raises:
        ValueError: If ``raw`` matches none of the known formats.
    """
    text = raw.strip()
    zone = ZoneInfo(timezone)
    for fmt in SETTLEMENT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=zone)
        except ValueError:
            continue
    raise ValueError(f"Cannot parse '{raw}' as a settlement date")
