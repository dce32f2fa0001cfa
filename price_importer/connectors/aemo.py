"""AEMO aggregated price and demand connector.

AEMO publishes one CSV per NEM region and month::

    REGION,SETTLEMENTDATE,TOTALDEMAND,RRP,PERIODTYPE
    NSW1,2016/01/01 00:30:00,7112.24,26.37,TRADE

``read_price_demand_csv`` turns such a file (path, buffer or text) into a
lazy stream of CompositeRecord, reading it in pandas chunks so a large file
never sits in memory as a whole. Cells that cannot be parsed become None;
the importer rejects those records, which the batch driver then counts as
skipped.

``AemoPriceDemandConnector`` downloads the monthly file over HTTP.
"""

from __future__ import annotations

import io
import os
from typing import IO, Any, Iterator, Optional, Union

import pandas as pd

from price_importer.core.models.records import CompositeRecord, DateTimeKey
from price_importer.core.utils.datetimes import MARKET_TIMEZONE, parse_settlement_date
from price_importer.core.utils.logging_config import get_logger
from price_importer.core.utils.parsing import parse_label, parse_measure

from .base import BaseConnector, DataParsingError

logger = get_logger("connectors.aemo")

REQUIRED_COLUMNS = ("REGION", "SETTLEMENTDATE", "TOTALDEMAND", "RRP", "PERIODTYPE")
DEFAULT_CHUNK_ROWS = 10_000

CsvSource = Union[str, "os.PathLike[str]", IO[str], IO[bytes]]


def _parse_date_time(raw: Any, timezone: str) -> Optional[DateTimeKey]:
    text = parse_label(raw)
    if text is None:
        return None
    try:
        return DateTimeKey.from_datetime(parse_settlement_date(text, timezone))
    except ValueError:
        return None


def _parse_number(raw: Any) -> Optional[float]:
    try:
        return parse_measure(raw)
    except ValueError:
        return None


def row_to_record(row: dict[str, Any], timezone: str = MARKET_TIMEZONE) -> CompositeRecord:
    """Map one CSV row to a CompositeRecord; bad cells become None."""
    return CompositeRecord(
        region=parse_label(row.get("REGION")),
        period=parse_label(row.get("PERIODTYPE")),
        date_time=_parse_date_time(row.get("SETTLEMENTDATE"), timezone),
        rpr=_parse_number(row.get("RRP")),
        total_demand=_parse_number(row.get("TOTALDEMAND")),
    )


def read_price_demand_csv(
    source: CsvSource,
    timezone: str = MARKET_TIMEZONE,
    chunk_rows: int = DEFAULT_CHUNK_ROWS,
) -> Iterator[CompositeRecord]:
    """Lazily yield the records of an AEMO price and demand CSV.

    Args:
        source: File path or open text/binary buffer.
        timezone: Zone SETTLEMENTDATE is expressed in.
        chunk_rows: Rows pandas reads per chunk.

    Raises:
        DataParsingError: If the header lacks a required column.
    """
    reader = pd.read_csv(
        source,
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
        chunksize=chunk_rows,
    )
    with reader:
        for frame in reader:
            frame.columns = [str(c).strip().upper() for c in frame.columns]
            missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
            if missing:
                raise DataParsingError(f"AEMO CSV is missing columns: {missing}")
            for row in frame.to_dict(orient="records"):
                yield row_to_record(row, timezone)


class AemoPriceDemandConnector(BaseConnector):
    """Download AEMO monthly price and demand files.

    Usage::

        with AemoPriceDemandConnector() as conn:
            records = conn.records(region="NSW1", year=2016, month=1)
    """

    SOURCE_NAME: str = "AEMO"
    BASE_URL: str = "https://aemo.com.au"
    TIMEOUT_SECONDS: float = 60.0

    FILE_URL: str = (
        "/aemo/data/nem/priceanddemand/PRICE_AND_DEMAND_{year}{month:02d}_{region}.csv"
    )

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        timezone: str = MARKET_TIMEZONE,
    ) -> None:
        super().__init__(base_url=base_url, timeout_seconds=timeout_seconds)
        self.timezone = timezone

    def file_url(self, region: str, year: int, month: int) -> str:
        return self.FILE_URL.format(year=year, month=month, region=region.upper())

    def fetch_csv(self, region: str, year: int, month: int) -> str:
        """Return the CSV text for one region and month.

        Raises:
            FetchError: On HTTP failure after retries.
            DataParsingError: If the feed answers with something other than CSV.
        """
        url = self.file_url(region, year, month)
        response = self._request("GET", url)
        content_type = response.headers.get("content-type", "")
        text = response.text
        # AEMO serves an HTML error page with status 200 for unknown files
        if "html" in content_type.lower() or text.lstrip().startswith("<"):
            raise DataParsingError(f"{self.SOURCE_NAME}: {url} did not return CSV")
        self.log.info("aemo_file_fetched", url=url, bytes=len(text))
        return text

    def download(
        self, region: str, year: int, month: int, target_dir: Union[str, "os.PathLike[str]"]
    ) -> str:
        """Save the monthly file under ``target_dir`` and return its path."""
        text = self.fetch_csv(region, year, month)
        os.makedirs(target_dir, exist_ok=True)
        path = os.path.join(target_dir, os.path.basename(self.file_url(region, year, month)))
        with open(path, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
        self.log.info("aemo_file_saved", path=path)
        return path

    def records(  # type: ignore[override]
        self, region: str, year: int, month: int
    ) -> Iterator[CompositeRecord]:
        text = self.fetch_csv(region, year, month)
        return read_price_demand_csv(io.StringIO(text), timezone=self.timezone)
