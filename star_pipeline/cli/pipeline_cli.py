"""
Command-line interface for the star schema pipeline.

Usage:
    python -m star_pipeline.cli.pipeline_cli init-schema [options]
    python -m star_pipeline.cli.pipeline_cli run [--source postgres|extracts] [options]
    python -m star_pipeline.cli.pipeline_cli validate [options]
    python -m star_pipeline.cli.pipeline_cli audit (--patient-id <id> | --run-id <id>) [options]

Exit codes of run/validate: 0 COMPLETED, 1 WARNING, 2 FAILED, 3 error.
"""

import argparse
import json
import sys

from dotenv import load_dotenv
from psycopg import Error as DatabaseError

from star_pipeline.batch.pipeline import StarSchemaPipeline
from star_pipeline.batch.readers import PostgresSourceReader
from star_pipeline.core.exceptions import PipelineError
from star_pipeline.core.models import ValidationReport, Verdict
from star_pipeline.core.settings import load_settings
from star_pipeline.observability.change_capture import PostgresAuditSink
from star_pipeline.observability.ledger import PostgresLedger
from star_pipeline.observability.logger import get_logger
from star_pipeline.observability.metrics import start_metrics_server
from star_pipeline.warehouse.audit import get_audit_summary, query_changes_by_patient
from star_pipeline.warehouse.connection import DatabaseConnectionPool
from star_pipeline.warehouse.key_allocator import KeyAllocator, PostgresKeyCounterStore
from star_pipeline.warehouse.schema_mgmt import SchemaManager
from star_pipeline.warehouse.upsert import PostgresWarehouse

logger = get_logger(__name__)

EXIT_CODES = {
    Verdict.COMPLETED: 0,
    Verdict.WARNING: 1,
    Verdict.FAILED: 2,
}
EXIT_ERROR = 3


def create_pool(args, database: str | None = None) -> DatabaseConnectionPool:
    pool = DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=database or args.db_name,
        user=args.db_user,
        password=args.db_password,
    )
    pool.open()
    return pool


def create_spark_session(app_name: str = "StarSchemaExtracts"):
    """Local Spark session for reading extract files."""
    from pyspark.sql import SparkSession

    return SparkSession.builder \
        .appName(app_name) \
        .master("local[*]") \
        .config("spark.sql.adaptive.enabled", "true") \
        .getOrCreate()


def print_report(report: ValidationReport) -> None:
    summary = report.summary()
    print(f"\n{'=' * 80}")
    print(f"RUN {report.run_id}: {report.verdict.value}")
    print(f"{'=' * 80}")
    for table_name, counts in report.build_summary.items():
        print(f"  {table_name:32} " + ", ".join(f"{k}={v}" for k, v in counts.items() if v))
    print(f"\nFindings: {len(report.findings)} "
          f"(CRITICAL={summary['CRITICAL']}, HIGH={summary['HIGH']}, "
          f"MEDIUM={summary['MEDIUM']}, LOW={summary['LOW']})")
    for finding in report.findings:
        print(f"  [{finding.severity.value:8}] {finding.check_name}: {finding.description}")
    print()


def init_schema_command(args) -> int:
    pool = create_pool(args)
    try:
        SchemaManager(pool).create_schema()
        print(f"Warehouse schema created in {pool.database}")
        return 0
    finally:
        pool.close()


def _pipeline_command(args, build: bool) -> int:
    warehouse_pool = None
    source_pool = None
    spark = None

    try:
        settings = load_settings(args.config)
        if args.catalog:
            settings = settings.model_copy(update={"catalog_path": args.catalog})
        if args.refresh:
            settings = settings.model_copy(update={"refresh_dimensions": True})

        if args.metrics_port:
            start_metrics_server(args.metrics_port)

        warehouse_pool = create_pool(args)
        if not build:
            reader = None
        elif args.source == "extracts":
            from star_pipeline.batch.readers.spark_reader import SparkExtractReader

            spark = create_spark_session()
            reader = SparkExtractReader(spark, args.extract_dir, file_format=args.format)
        else:
            source_pool = create_pool(args, database=args.source_db_name)
            reader = PostgresSourceReader(source_pool)

        pipeline = StarSchemaPipeline(
            reader=reader,
            warehouse=PostgresWarehouse(warehouse_pool),
            allocator=KeyAllocator(PostgresKeyCounterStore(warehouse_pool)),
            settings=settings,
            ledger=PostgresLedger(warehouse_pool),
            audit_sink=PostgresAuditSink(warehouse_pool),
        )
        report = pipeline.run() if build else pipeline.validate()

        path = report.write_report(args.report or settings.report_path)
        logger.info(f"Validation report written to {path}", extra={"run_id": report.run_id})
        print_report(report)
        return EXIT_CODES[report.verdict]

    except (PipelineError, DatabaseError, OSError, ValueError) as e:
        logger.error(f"Pipeline run failed: {e}", exc_info=True)
        return EXIT_ERROR
    finally:
        if source_pool is not None:
            source_pool.close()
        if warehouse_pool is not None:
            warehouse_pool.close()
        if spark is not None:
            spark.stop()


def run_command(args) -> int:
    return _pipeline_command(args, build=True)


def validate_command(args) -> int:
    return _pipeline_command(args, build=False)


def audit_command(args) -> int:
    pool = create_pool(args)
    try:
        if args.patient_id is not None:
            entries = query_changes_by_patient(pool, args.patient_id, limit=args.limit)
            if not entries:
                print(f"\nNo changes recorded for patient {args.patient_id}")
                return 0
            for entry in entries:
                print(json.dumps(entry.model_dump(mode="json"), indent=2))
        else:
            summary = get_audit_summary(pool, args.run_id)
            print(f"\nChange audit for run {args.run_id}")
            for event_type, count in summary.items():
                print(f"  {event_type:24} {count}")
        return 0
    finally:
        pool.close()


def add_db_arguments(parser: argparse.ArgumentParser) -> None:
    """Connection options; unset values fall back to DB_* environment variables."""
    parser.add_argument("--db-host", default=None, help="Warehouse database host (env DB_HOST)")
    parser.add_argument("--db-port", type=int, default=None, help="Warehouse database port (env DB_PORT)")
    parser.add_argument("--db-name", default=None, help="Warehouse database name (env DB_NAME)")
    parser.add_argument("--db-user", default=None, help="Database user (env DB_USER)")
    parser.add_argument("--db-password", default=None, help="Database password (env DB_PASSWORD)")


def add_pipeline_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default=None, help="Pipeline settings YAML (default: config/pipeline.yaml)")
    parser.add_argument("--catalog", default=None, help="Validation check catalog YAML")
    parser.add_argument("--report", default=None, help="Where to write the JSON validation report")
    parser.add_argument("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Healthcare star schema build and validation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create warehouse tables
  python -m star_pipeline.cli.pipeline_cli init-schema

  # Build from the operational database and validate
  python -m star_pipeline.cli.pipeline_cli run --source-db-name healthcare_oltp

  # Build from CSV extracts (patients.csv, encounters.csv, ...)
  python -m star_pipeline.cli.pipeline_cli run --source extracts --extract-dir data/extracts

  # Re-validate the current warehouse with a custom catalog
  python -m star_pipeline.cli.pipeline_cli validate --catalog config/validation_catalog.yaml
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-schema", help="Create the warehouse schema")
    add_db_arguments(init_parser)

    run_parser = subparsers.add_parser("run", help="Build the star schema and validate it")
    add_db_arguments(run_parser)
    add_pipeline_arguments(run_parser)
    run_parser.add_argument(
        "--source",
        default="postgres",
        choices=["postgres", "extracts"],
        help="Where source records come from (default: postgres)",
    )
    run_parser.add_argument(
        "--source-db-name",
        default="healthcare_oltp",
        help="Operational (source) database name (default: healthcare_oltp)",
    )
    run_parser.add_argument("--extract-dir", default="data/extracts", help="Directory of table extracts")
    run_parser.add_argument(
        "--format",
        default="csv",
        choices=["csv", "json", "parquet"],
        help="Extract file format (default: csv)",
    )
    run_parser.add_argument("--refresh", action="store_true", help="Overwrite descriptive fields of existing dimension rows")

    validate_parser = subparsers.add_parser("validate", help="Validate the current warehouse")
    add_db_arguments(validate_parser)
    add_pipeline_arguments(validate_parser)
    validate_parser.set_defaults(refresh=False)

    audit_parser = subparsers.add_parser("audit", help="Show change audit entries")
    add_db_arguments(audit_parser)
    target = audit_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--patient-id", type=int, help="Changes concerning one patient")
    target.add_argument("--run-id", help="Entry counts for one run")
    audit_parser.add_argument("--limit", type=int, default=100, help="Maximum entries (default: 100)")

    return parser


COMMANDS = {
    "init-schema": init_schema_command,
    "run": run_command,
    "validate": validate_command,
    "audit": audit_command,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_ERROR

    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
