#!/usr/bin/env python3
"""
Command-line entry point for DSA transparency dump ingestion.
"""
import argparse
import sys
from datetime import date, datetime
from typing import Optional

import psycopg2
from tqdm import tqdm

from . import __version__
from .config import FIRST_DUMP_DATE, IngestConfig
from .database import DatabaseManager
from .logger import LogLevel, StructuredLogger, get_logger, set_logger
from .metrics import format_duration
from .persistence import DuplicateHandling
from .pipeline import IngestPipeline, RunContext, UrlResult, iter_days


def parse_date(value: str) -> date:
    """argparse type for YYYY-MM-DD."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD")


def build_config(args) -> IngestConfig:
    """Environment config with CLI flags layered on top."""
    config = IngestConfig.from_env(
        db_host=args.dbhost,
        db_port=args.dbport,
        db_user=args.dbuser,
        db_password=args.dbpassword,
        db_name=args.dbname,
        workers=getattr(args, "workers", None),
    )
    if not args.verbose:
        get_logger().min_level = LogLevel.parse(config.log_level)
    return config


def warn_about_range(start: date, end: date, today: Optional[date] = None):
    """Warn about ranges that will mostly produce 403/404 responses."""
    logger = get_logger()
    today = today or date.today()
    if start < FIRST_DUMP_DATE:
        logger.warning(
            "--from is before the first published dump; expect many missing files",
            first_dump=FIRST_DUMP_DATE
        )
    if end >= today:
        logger.warning("--to is today or in the future; expect missing files", to=end)


def ingest_command(args) -> int:
    """Download and load every daily dump in the range."""
    logger = get_logger()
    logger.section(f"DSACORD {__version__} INGEST")

    if args.to_date < args.from_date:
        logger.error("--to date must not be before --from date")
        return 1

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    duplicates = DuplicateHandling(
        overwrite=args.overwrite_duplicates,
        skip_check=args.skip_checking_duplicates
    )
    if duplicates.skip_check and not duplicates.overwrite:
        logger.warning("--skip-checking-duplicates has no effect without --overwrite-duplicates")
    if duplicates.overwrite:
        logger.warning("Duplicated keys will be silently overwritten")

    warn_about_range(args.from_date, args.to_date)

    try:
        database = DatabaseManager(config)
    except psycopg2.Error:
        return 1

    try:
        database.ensure_schema()
        logger.info("Importing", start=args.from_date, end=args.to_date, workers=config.workers)

        ctx = RunContext(config=config, database=database, duplicates=duplicates)

        # The bar only makes sense when one worker logs at a time
        progress = None
        if config.workers == 1:
            total_days = sum(1 for _ in iter_days(args.from_date, args.to_date))
            progress = tqdm(total=total_days, desc="Ingesting dumps", unit="day")

        def on_result(result: UrlResult):
            if progress is not None:
                progress.update(1)
                progress.set_postfix(rows=ctx.counter.value)

        pipeline = IngestPipeline(ctx, on_result=on_result)
        try:
            summary = pipeline.run(args.from_date, args.to_date)
        finally:
            if progress is not None:
                progress.close()

        print(ctx.metrics.format_summary())
        print(f"Rows inserted: {summary.persisted:,}")
        print(f"URLs processed: {summary.urls} ({len(summary.failures)} failed)")
        for failure in summary.failures:
            print(f"  - {failure.describe()}")
        print(f"Elapsed time: {format_duration(summary.elapsed)}")

        size = database.table_size()
        if size:
            print(f"Table size: {size}")
        return 0

    except KeyboardInterrupt:
        logger.warning("Operation cancelled by user")
        return 130
    except psycopg2.Error as e:
        logger.error("Ingest failed", error=str(e))
        return 1
    finally:
        database.close()


def status_command(args) -> int:
    """Check connectivity and report table contents."""
    logger = get_logger()
    logger.section("SYSTEM STATUS")

    try:
        config = build_config(args)
        database = DatabaseManager(config)
    except (ValueError, psycopg2.Error) as e:
        logger.error("Cannot connect", error=str(e))
        return 1

    try:
        if not database.test_connection():
            return 1
        database.ensure_schema()
        logger.info("Decisions stored", rows=f"{database.count_rows():,}", size=database.table_size())
        return 0
    except psycopg2.Error as e:
        logger.error("Status check failed", error=str(e))
        return 1
    finally:
        database.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dsacord",
        description="Download Discord data from the DSA Transparency Database into PostgreSQL",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    db = argparse.ArgumentParser(add_help=False)
    db.add_argument('--verbose', action='store_true', help='Enable verbose logging')
    db.add_argument('--dbhost', help='Database host (env DB_HOST, default localhost)')
    db.add_argument('--dbport', type=int, help='Database port (env DB_PORT, default 5432)')
    db.add_argument('--dbuser', help='Database user (env DB_USER)')
    db.add_argument('--dbpassword', help='Database password (env DB_PASSWORD)')
    db.add_argument('--dbname', help='Database name (env DB_NAME, default dsacord)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    ingest_parser = subparsers.add_parser('ingest', parents=[db], help='Import daily dumps')
    ingest_parser.add_argument(
        '--from',
        dest='from_date',
        type=parse_date,
        required=True,
        help=f'Start date, YYYY-MM-DD (earliest dump: {FIRST_DUMP_DATE})'
    )
    ingest_parser.add_argument(
        '--to',
        dest='to_date',
        type=parse_date,
        required=True,
        help='End date, YYYY-MM-DD (usually a day or two before today)'
    )
    ingest_parser.add_argument(
        '--workers',
        type=int,
        help='Concurrent dumps (env DSACORD_WORKERS, default 1, up to 5 recommended); '
             'more than one disables the progress bar'
    )
    ingest_parser.add_argument(
        '--overwrite-duplicates',
        action='store_true',
        help='When a dump hits existing keys, retry it once overwriting them'
    )
    ingest_parser.add_argument(
        '--skip-checking-duplicates',
        action='store_true',
        help='With --overwrite-duplicates, always overwrite without a plain insert first'
    )

    subparsers.add_parser('status', parents=[db], help='Check database status')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    verbose = getattr(args, 'verbose', False)
    log_level = LogLevel.DEBUG if verbose else LogLevel.INFO
    set_logger(StructuredLogger(min_level=log_level))

    if args.command == 'ingest':
        return ingest_command(args)
    elif args.command == 'status':
        return status_command(args)
    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())
