"""
PostgreSQL warehouse repository.

All dimension and fact writes use INSERT ... ON CONFLICT DO UPDATE keyed on
the natural key, so re-running a build never duplicates rows. Bridge sets
are replaced with DELETE + INSERT inside a single transaction.
"""

from typing import Any

import psycopg

from star_pipeline.core.models import (
    DIMENSION_MODELS,
    DimensionRecord,
    FactEncounter,
    ReadmissionAnnotation,
    ValidationFinding,
)
from star_pipeline.observability.logger import get_logger
from star_pipeline.utils.validation import sanitize_sql_identifier

from .connection import DatabaseConnectionPool
from .repository import BridgeRow, WarehouseRepository
from .schema_mgmt import TABLES_BY_NAME, SchemaManager

logger = get_logger(__name__)


def build_upsert_sql(table_name: str, columns: list[str], conflict_column: str, key_column: str) -> str:
    """
    INSERT ... ON CONFLICT statement with named placeholders.

    The surrogate key is never overwritten on conflict.
    """
    column_list = ", ".join(columns)
    placeholders = ", ".join(f"%({col})s" for col in columns)
    updates = ", ".join(
        f"{col} = EXCLUDED.{col}" for col in columns if col not in (conflict_column, key_column)
    )
    return (
        f"INSERT INTO {table_name} ({column_list}) VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_column}) DO UPDATE SET {updates}"
    )


class PostgresWarehouse(WarehouseRepository):
    """Warehouse repository over a psycopg connection pool."""

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Args:
            pool: Open database connection pool
        """
        self.pool = pool
        self.schema_manager = SchemaManager(pool)

    def describe_tables(self) -> dict[str, dict[str, str]]:
        return self.schema_manager.describe_tables()

    def fetch_rows(self, table_name: str) -> list[dict[str, Any]]:
        table_name = sanitize_sql_identifier(table_name, "table_name")
        return self.pool.execute_query(f"SELECT * FROM {table_name}")

    def load_dimension(self, table_name: str) -> dict[Any, DimensionRecord]:
        model = DIMENSION_MODELS[table_name]
        return {row[model.natural_key_column]: model(**row) for row in self.fetch_rows(table_name)}

    def upsert_dimension(self, table_name: str, records: list[DimensionRecord]) -> int:
        model = DIMENSION_MODELS[table_name]
        return self._upsert(
            table_name,
            [record.model_dump() for record in records],
            model.natural_key_column,
            model.key_column,
        )

    def load_facts(self) -> dict[int, FactEncounter]:
        return {row["encounter_id"]: FactEncounter(**row) for row in self.fetch_rows(FactEncounter.table_name)}

    def upsert_facts(self, facts: list[FactEncounter]) -> int:
        return self._upsert(
            FactEncounter.table_name,
            [fact.model_dump() for fact in facts],
            FactEncounter.natural_key_column,
            FactEncounter.key_column,
        )

    def replace_bridge_rows(self, table_name: str, rows_by_fact: dict[int, list[BridgeRow]]) -> tuple[int, int]:
        if not rows_by_fact:
            return 0, 0

        spec = TABLES_BY_NAME[table_name]
        columns = spec.column_names
        insert_sql = (
            f"INSERT INTO {table_name} ({', '.join(columns)}) "
            f"VALUES ({', '.join(f'%({col})s' for col in columns)})"
        )
        params = [row.model_dump() for rows in rows_by_fact.values() for row in rows]

        try:
            with self.pool.transaction() as cur:
                cur.execute(
                    f"DELETE FROM {table_name} WHERE encounter_key = ANY(%s)",
                    (list(rows_by_fact),),
                )
                deleted = cur.rowcount
                if params:
                    cur.executemany(insert_sql, params)
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to replace rows in {table_name}: {e}")
            raise

        return deleted, len(params)

    def apply_readmissions(self, annotations: list[ReadmissionAnnotation]) -> int:
        if not annotations:
            return 0

        update_sql = """
            UPDATE fact_encounters SET
                has_30day_readmission = %(has_30day_readmission)s,
                days_to_readmission = %(days_to_readmission)s,
                readmission_count_30days = %(readmission_count_30days)s,
                is_readmission = %(is_readmission)s
            WHERE encounter_key = %(encounter_key)s
        """
        with self.pool.transaction() as cur:
            cur.executemany(update_sql, [a.model_dump() for a in annotations])
        return len(annotations)

    def append_findings(self, findings: list[ValidationFinding]) -> int:
        if not findings:
            return 0

        insert_sql = """
            INSERT INTO data_quality_log (
                run_id, stage, check_name, table_name, column_name, category,
                issue_type, severity_level, affected_rows, issue_description,
                sample_values, created_at
            ) VALUES (
                %(run_id)s, %(stage)s, %(check_name)s, %(table_name)s, %(column_name)s,
                %(category)s, %(issue_type)s, %(severity)s, %(affected_rows)s,
                %(description)s, %(sample_values)s, %(created_at)s
            )
        """
        params = []
        for finding in findings:
            values = finding.model_dump(mode="json")
            values["created_at"] = finding.created_at
            params.append(values)

        try:
            with self.pool.transaction() as cur:
                cur.executemany(insert_sql, params)
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to append findings: {e}")
            raise
        return len(findings)

    def max_key(self, table_name: str, key_column: str) -> int:
        table_name = sanitize_sql_identifier(table_name, "table_name")
        key_column = sanitize_sql_identifier(key_column, "key_column")
        rows = self.pool.execute_query(f"SELECT COALESCE(MAX({key_column}), 0) AS max_key FROM {table_name}")
        return rows[0]["max_key"]

    def _upsert(self, table_name: str, rows: list[dict[str, Any]], conflict_column: str, key_column: str) -> int:
        if not rows:
            return 0

        sql = build_upsert_sql(table_name, list(rows[0]), conflict_column, key_column)
        try:
            with self.pool.transaction() as cur:
                cur.executemany(sql, rows)
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to upsert into {table_name}: {e}")
            raise

        logger.debug(f"Upserted {len(rows)} rows into {table_name}")
        return len(rows)
