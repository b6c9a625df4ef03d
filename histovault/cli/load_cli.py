"""
Command-line interface for the vault.

Usage:
    python -m histovault.cli.load_cli init-db --config <vault.yaml>
    python -m histovault.cli.load_cli load --config <vault.yaml> --input <source>=<path> [options]
    python -m histovault.cli.load_cli ghosts --config <vault.yaml>
    python -m histovault.cli.load_cli pit --config <vault.yaml> [--satellite <name>] [--start <date> --end <date>]
    python -m histovault.cli.load_cli rejections [--cycle-id <id>] [--limit <n>]
"""

import argparse
import json
import os
import sys
from datetime import date, datetime
from pathlib import Path

from dotenv import load_dotenv

from histovault.core.errors import VaultError
from histovault.core.history import daily_snapshot_grid
from histovault.core.schema import VaultConfigLoader
from histovault.observability.logger import get_logger
from histovault.observability.metrics import start_metrics_server
from histovault.utils.validation import ValidationError, validate_limit
from histovault.warehouse.connection import DatabaseConnectionPool
from histovault.warehouse.postgres_backend import PostgresVaultBackend
from histovault.warehouse.schema_mgmt import VaultSchemaManager

logger = get_logger(__name__)

FORMAT_BY_SUFFIX = {".csv": "csv", ".json": "json", ".jsonl": "json", ".parquet": "parquet"}


def create_spark_session(app_name: str = "histovault"):
    """
    Create Spark session for snapshot loading.

    Args:
        app_name: Application name

    Returns:
        SparkSession
    """
    from pyspark.sql import SparkSession

    spark = SparkSession.builder \
        .appName(app_name) \
        .master(os.getenv("SPARK_MASTER", "local[*]")) \
        .config("spark.sql.adaptive.enabled", "true") \
        .config("spark.sql.session.timeZone", "UTC") \
        .getOrCreate()

    return spark


def parse_input(value: str) -> tuple[str, str]:
    """Parse a `<source>=<path>` argument."""
    source, sep, path = value.partition("=")
    if not sep or not source or not path:
        raise argparse.ArgumentTypeError(f"expected <source>=<path>, got '{value}'")
    return source, path


def parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def load_config(args):
    config_path = args.config or os.getenv("HISTOVAULT_CONFIG")
    if not config_path:
        logger.error("No vault definition given (use --config or HISTOVAULT_CONFIG)")
        sys.exit(1)
    return VaultConfigLoader(config_path).load()


def create_pool(args) -> DatabaseConnectionPool:
    pool = DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
        schema=args.db_schema,
    )
    pool.open()
    return pool


def init_db_command(args):
    """Create the tables of a vault definition."""
    config = load_config(args)
    pool = create_pool(args)
    try:
        statements = VaultSchemaManager(pool).create_tables(config)
        print(f"Vault tables ready ({statements} statements executed)")
    finally:
        pool.close()


def load_command(args):
    """Historize snapshot files as one load cycle."""
    from histovault.batch.pipeline import SourceFileSpec, SparkLoadPipeline

    config = load_config(args)

    specs = []
    for source, path in args.input:
        if not Path(path).exists():
            logger.error(f"Input file not found: {path}")
            sys.exit(1)
        file_format = args.format or FORMAT_BY_SUFFIX.get(Path(path).suffix.lower(), "csv")
        options = {"delimiter": args.delimiter} if file_format == "csv" else {}
        specs.append(
            SourceFileSpec(
                entity=source,
                path=path,
                file_format=file_format,
                source_tag=args.source_tag,
                load_time_column=args.load_time_column,
                options=options,
            )
        )

    metrics_port = args.metrics_port or os.getenv("METRICS_PORT")
    if metrics_port:
        start_metrics_server(int(metrics_port))

    spark = create_spark_session(f"histovault-load-{args.source_tag}")
    pool = create_pool(args)
    try:
        pipeline = SparkLoadPipeline(spark, PostgresVaultBackend(pool), config)
        result = pipeline.run(
            specs,
            load_time=args.load_time,
            ensure_sentinels=args.ensure_sentinels,
            rebuild_pit=args.rebuild_pit,
        )

        print("=" * 60)
        print(f"LOAD CYCLE COMPLETE: {result.cycle_id}")
        print("=" * 60)
        for name, value in result.summary().items():
            print(f"{name:>24}: {value}")
        for collision in result.collisions[: args.show]:
            print(
                f"  collision {collision.satellite} {collision.entity_key[:12]}: kept "
                f"{collision.kept_load_time.isoformat()}, dropped {collision.discarded_load_time.isoformat()}"
            )
        print("=" * 60)
    finally:
        pool.close()
        spark.stop()


def ghosts_command(args):
    """Insert sentinel rows into every entity store and satellite."""
    from histovault.vault.sentinel_manager import SentinelManager

    config = load_config(args)
    pool = create_pool(args)
    try:
        inserted = SentinelManager(PostgresVaultBackend(pool), config).ensure_all()
        print(f"Inserted {inserted} sentinel rows")
    finally:
        pool.close()


def pit_command(args):
    """Rebuild PIT projections."""
    from histovault.vault.pit_projector import PitProjector

    config = load_config(args)
    grid = None
    if args.start or args.end:
        if not (args.start and args.end):
            logger.error("--start and --end must be given together")
            sys.exit(1)
        grid = daily_snapshot_grid(args.start, args.end)

    pool = create_pool(args)
    try:
        backend = PostgresVaultBackend(pool)
        for entity, satellite in config.satellites():
            if args.satellite and satellite.name != args.satellite:
                continue
            result = PitProjector(backend, entity.name, satellite.name, config.settings).rebuild(grid)
            print(
                f"{satellite.name}: {result.rows_written} rows over {len(result.snapshot_dates)} dates "
                f"({result.unresolved} unresolved) checksum {result.checksum}"
            )
    finally:
        pool.close()


def rejections_command(args):
    """Show recent rejected rows."""
    limit = validate_limit(args.limit)
    pool = create_pool(args)
    try:
        rows = PostgresVaultBackend(pool).fetch_rejections(cycle_id=args.cycle_id, limit=limit)
        if not rows:
            print("No rejected rows found")
            return
        for row in rows:
            if args.format == "json":
                print(row.model_dump_json())
            else:
                print(
                    f"{row.rejected_at:%Y-%m-%d %H:%M:%S} {row.cycle_id} {row.entity}/{row.target} "
                    f"[{row.reason}] {row.message}"
                )
                print(f"    {json.dumps(row.values, default=str)}")
    finally:
        pool.close()


def add_db_arguments(parser):
    """Database connection arguments (default: DB_* environment variables)."""
    parser.add_argument("--db-host", default=None, help="Database host (env DB_HOST)")
    parser.add_argument("--db-port", type=int, default=None, help="Database port (env DB_PORT)")
    parser.add_argument("--db-name", default=None, help="Database name (env DB_NAME)")
    parser.add_argument("--db-user", default=None, help="Database user (env DB_USER)")
    parser.add_argument("--db-password", default=None, help="Database password (env DB_PASSWORD)")
    parser.add_argument("--db-schema", default=None, help="Schema of the vault tables (env DB_SCHEMA)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="histovault",
        description="Historize periodic snapshots into an append-only vault",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the tables of a vault definition
  histovault init-db --config config/vault.yaml

  # Load one snapshot of two sources
  histovault load --config config/vault.yaml --source-tag werkportal \\
      --input company=data/company.csv --input client=data/client.csv --ensure-sentinels

  # Rebuild PIT tables on a daily grid
  histovault pit --config config/vault.yaml --start 2024-01-01 --end 2024-03-31
        """,
    )
    parser.add_argument("--env-file", default=None, help="Load environment variables from this file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-db", help="Create vault tables")
    init_parser.add_argument("--config", help="Vault definition YAML (env HISTOVAULT_CONFIG)")
    add_db_arguments(init_parser)

    load_parser = subparsers.add_parser("load", help="Historize snapshot files")
    load_parser.add_argument("--config", help="Vault definition YAML (env HISTOVAULT_CONFIG)")
    load_parser.add_argument(
        "--input", required=True, action="append", type=parse_input,
        help="Snapshot file as <source>=<path> (repeatable)",
    )
    load_parser.add_argument("--source-tag", required=True, help="Source tag stamped on every row")
    load_parser.add_argument("--format", choices=["csv", "json", "parquet"], help="Input format (default: by suffix)")
    load_parser.add_argument("--delimiter", default=",", help="CSV delimiter (default: ,)")
    load_parser.add_argument("--load-time", type=parse_datetime, help="Load time, ISO 8601 (default: now)")
    load_parser.add_argument("--load-time-column", help="Column holding per-row load times")
    load_parser.add_argument("--ensure-sentinels", action="store_true", help="Insert ghost rows first")
    load_parser.add_argument("--rebuild-pit", action="store_true", help="Rebuild PIT tables afterwards")
    load_parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics (env METRICS_PORT)")
    load_parser.add_argument("--show", type=int, default=10, help="Collisions to display (default: 10)")
    add_db_arguments(load_parser)

    ghosts_parser = subparsers.add_parser("ghosts", help="Insert sentinel rows")
    ghosts_parser.add_argument("--config", help="Vault definition YAML (env HISTOVAULT_CONFIG)")
    add_db_arguments(ghosts_parser)

    pit_parser = subparsers.add_parser("pit", help="Rebuild PIT tables")
    pit_parser.add_argument("--config", help="Vault definition YAML (env HISTOVAULT_CONFIG)")
    pit_parser.add_argument("--satellite", help="Only this satellite")
    pit_parser.add_argument("--start", type=parse_date, help="First snapshot date of a daily grid")
    pit_parser.add_argument("--end", type=parse_date, help="Last snapshot date of a daily grid")
    add_db_arguments(pit_parser)

    rejections_parser = subparsers.add_parser("rejections", help="Show rejected rows")
    rejections_parser.add_argument("--cycle-id", help="Only this load cycle")
    rejections_parser.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50)")
    rejections_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    add_db_arguments(rejections_parser)

    return parser


COMMANDS = {
    "init-db": init_db_command,
    "load": load_command,
    "ghosts": ghosts_command,
    "pit": pit_command,
    "rejections": rejections_command,
}


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    load_dotenv(args.env_file)

    try:
        COMMANDS[args.command](args)
    except (VaultError, ValidationError, FileNotFoundError) as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Error during {args.command}: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
