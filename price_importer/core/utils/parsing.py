"""Numeric and label parsing for feed cells.

AEMO publishes period-decimal numbers (``"567.89"``), occasionally with
thousands separators, and leaves cells empty when a value is missing.
Placeholders become None so that record validation can reject the row
instead of the reader failing the whole file.

Examples::

    >>> parse_measure("23.45")
    23.45
    >>> parse_measure("1,000.56")
    1000.56
    >>> parse_measure("")  # returns None
    >>> parse_label("  NSW1 ")
    'NSW1'
"""

from __future__ import annotations

import math
from typing import Any

_PLACEHOLDERS = frozenset({"", "-", ".", ",", "n/a", "na", "nan", "null"})


def parse_measure(raw: Any, decimal_sep: str = ".") -> float | None:
    """Parse a measure cell into a float.

    Args:
        raw: Cell value (string, number or None).
        decimal_sep: ``"."`` for ``1,234.56`` or ``","`` for ``1.234,56``.

    Returns:
        The parsed float, or None for empty/placeholder cells.

    Raises:
        ValueError: If the cell holds text that is not a number.

    Examples:
        >>> parse_measure("-12.5")
        -12.5
        >>> parse_measure("1.234,56", ",")
        1234.56
        >>> parse_measure("N/A")  # returns None
    """
    if raw is None:
        return None

    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        value = float(raw)
        return None if math.isnan(value) else value

    stripped = str(raw).strip()
    if stripped.lower() in _PLACEHOLDERS:
        return None

    if decimal_sep == ",":
        cleaned = stripped.replace(".", "").replace(",", ".")
    else:
        cleaned = stripped.replace(",", "")

    try:
        return float(cleaned)
    except ValueError:
        raise ValueError(
            f"Cannot parse '{raw}' as a measure (decimal_sep='{decimal_sep}')"
        )


def parse_label(raw: Any) -> str | None:
    """Strip a categorical cell; empty or missing cells become None."""
    if raw is None:
        return None
    if isinstance(raw, float) and math.isnan(raw):
        return None
    stripped = str(raw).strip()
    return stripped or None
