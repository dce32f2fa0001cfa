#!/usr/bin/env python3
"""Import an AEMO price and demand file into the warehouse.

Reads a local CSV (``--file``) or downloads the monthly file for one region
(``--region`` + ``--month``), then runs it through the batch driver with
chunked commits and checkpoints. Relaunching with the same arguments after a
failure resumes at the last checkpoint.

Exit codes: 0 COMPLETED, 1 FAILED, 2 STOPPED, 3 launch refused.

Usage::

    python scripts/import_prices.py --file data/PRICE_AND_DEMAND_201601_NSW1.csv
    python scripts/import_prices.py --region NSW1 --month 2016-01
    python scripts/import_prices.py --region NSW1 --month 2016-01 --init-schema
"""

import argparse
import sys
from pathlib import Path

# Ensure project root is on sys.path so ``price_importer.*`` imports work when
# this script is invoked directly (e.g. ``python scripts/import_prices.py``).
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from datetime import datetime

from price_importer.batch import BatchDriver, ImportJob, SqlJobRepository, launch_import
from price_importer.batch.driver import DEFAULT_JOB_NAME
from price_importer.connectors import (
    AemoPriceDemandConnector,
    ConnectorError,
    read_price_demand_csv,
)
from price_importer.core.config import settings
from price_importer.core.database import (
    build_engine,
    build_sequence_engine,
    build_session_factory,
    prepare_database,
)
from price_importer.core.enums import BackendDialect
from price_importer.core.models import (
    build_job_metadata_schema,
    build_warehouse_schema,
    make_metadata,
)
from price_importer.core.utils.logging_config import configure_logging, get_logger
from price_importer.warehouse import RecordImporter

logger = get_logger("scripts.import_prices")


def _parse_month(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m")
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Parsed namespace.
    """
    parser = argparse.ArgumentParser(
        description="Import an AEMO price and demand file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python scripts/import_prices.py --file PRICE_AND_DEMAND_201601_NSW1.csv\n"
            "  python scripts/import_prices.py --region NSW1 --month 2016-01\n"
            "  python scripts/import_prices.py --region NSW1 --month 2016-01 --init-schema\n"
        ),
    )
    parser.add_argument("--file", type=Path, help="Local AEMO CSV to import")
    parser.add_argument("--region", help="NEM region to download (e.g. NSW1)")
    parser.add_argument(
        "--month",
        type=_parse_month,
        help="Month to download in YYYY-MM format",
    )
    parser.add_argument(
        "--job-name",
        default=DEFAULT_JOB_NAME,
        help=f"Job name (default: {DEFAULT_JOB_NAME})",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help=f"Records per transaction (default: {settings.chunk_size})",
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        default=False,
        help="Create missing warehouse and job-metadata tables before importing",
    )
    args = parser.parse_args(argv)

    if args.file is None and (args.region is None or args.month is None):
        parser.error("either --file or both --region and --month are required")
    if args.file is not None and (args.region is not None or args.month is not None):
        parser.error("--file cannot be combined with --region/--month")
    if args.chunk_size is not None and args.chunk_size <= 0:
        parser.error("--chunk-size must be positive")
    return args


def main(argv: list[str] | None = None) -> int:
    """Entry point for the import CLI.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Exit code of the job execution.
    """
    args = parse_args(argv)
    configure_logging(settings.log_level, settings.log_json)

    engine = build_engine(settings)
    counter_table = settings.backend_dialect is BackendDialect.COUNTER_TABLE
    sequence_engine = build_sequence_engine(settings) if counter_table else None
    metadata = make_metadata()
    warehouse = build_warehouse_schema(
        settings.table_prefix, metadata, counter_table=counter_table
    )
    job_metadata = build_job_metadata_schema(settings.metadata_table_prefix, metadata)
    if args.init_schema:
        prepare_database(
            engine, warehouse, job_metadata, sequence_engine=sequence_engine
        )

    session_factory = build_session_factory(engine)
    job = ImportJob.from_settings(settings, name=args.job_name)
    if args.chunk_size is not None:
        job = ImportJob(
            name=job.name,
            chunk_size=args.chunk_size,
            skip_on_invalid_input=job.skip_on_invalid_input,
            retry_limit=job.retry_limit,
            retry_backoff_seconds=job.retry_backoff_seconds,
        )
    driver = BatchDriver(
        job,
        RecordImporter.from_settings(
            settings, session_factory, warehouse, sequence_engine
        ),
        session_factory,
        SqlJobRepository(session_factory, job_metadata),
    )

    try:
        if args.file is not None:
            parameters = {"file": str(args.file.resolve())}
            return launch_import(
                driver,
                parameters,
                read_price_demand_csv(args.file, timezone=settings.market_timezone),
            )

        parameters = {
            "region": args.region.upper(),
            "month": args.month.strftime("%Y-%m"),
        }
        with AemoPriceDemandConnector(
            base_url=settings.feed_base_url,
            timeout_seconds=settings.feed_timeout_seconds,
            timezone=settings.market_timezone,
        ) as conn:
            records = conn.records(args.region, args.month.year, args.month.month)
            return launch_import(driver, parameters, records)
    except ConnectorError as exc:
        logger.error("feed_unavailable", error=str(exc))
        print(f"\nImport failed: {exc}", file=sys.stderr)
        return 1
    finally:
        driver.shutdown()
        engine.dispose()
        if sequence_engine is not None:
            sequence_engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
