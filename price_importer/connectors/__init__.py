"""Feed connectors package.

Re-exports the BaseConnector ABC, exception hierarchy, and the AEMO price
and demand connector and CSV reader.
"""

from .aemo import AemoPriceDemandConnector, read_price_demand_csv, row_to_record
from .base import (
    BaseConnector,
    ConnectorError,
    DataParsingError,
    FetchError,
    RateLimitError,
)

__all__ = [
    "BaseConnector",
    "ConnectorError",
    "DataParsingError",
    "FetchError",
    "RateLimitError",
    "AemoPriceDemandConnector",
    "read_price_demand_csv",
    "row_to_record",
]
