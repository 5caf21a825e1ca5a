"""
Change audit log operations.

Insert and query entries of the `change_audit_log` table for compliance
reporting (who changed which patient-related row, in which run).
"""

from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from star_pipeline.core.models import ChangeAuditEntry
from star_pipeline.observability.logger import get_logger
from star_pipeline.utils.validation import validate_run_id
from star_pipeline.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

INSERT_AUDIT_SQL = """
    INSERT INTO change_audit_log (
        run_id, event_type_code, table_name, operation_type,
        record_id, patient_id, captured_fields, created_at
    ) VALUES (
        %(run_id)s, %(event_type_code)s, %(table_name)s, %(operation_type)s,
        %(record_id)s, %(patient_id)s, %(captured_fields)s, %(created_at)s
    )
"""


def _params(entry: ChangeAuditEntry) -> dict[str, Any]:
    values = entry.model_dump(exclude={"audit_id", "captured_fields"})
    values["captured_fields"] = Jsonb(entry.model_dump(mode="json")["captured_fields"])
    return values


def insert_change_audit_batch(pool: DatabaseConnectionPool, entries: list[ChangeAuditEntry]) -> int:
    """
    Insert change audit entries in one transaction.

    Args:
        pool: Database connection pool
        entries: Entries to persist

    Returns:
        Number of entries inserted

    Raises:
        psycopg.DatabaseError: If the insert fails
    """
    if not entries:
        return 0

    try:
        with pool.transaction() as cur:
            cur.executemany(INSERT_AUDIT_SQL, [_params(entry) for entry in entries])
    except psycopg.DatabaseError as e:
        logger.error(f"Failed to insert change audit entries: {e}")
        raise

    logger.debug(f"Inserted {len(entries)} change audit entries")
    return len(entries)


def query_changes_by_patient(pool: DatabaseConnectionPool, patient_id: int, limit: int = 100) -> list[ChangeAuditEntry]:
    """
    Most recent changes concerning one patient.

    Args:
        pool: Database connection pool
        patient_id: Patient natural key
        limit: Maximum number of entries

    Returns:
        Entries, newest first
    """
    try:
        rows = pool.execute_query(
            """
            SELECT audit_id, run_id::text AS run_id, event_type_code, table_name,
                   operation_type, record_id, patient_id, captured_fields, created_at
            FROM change_audit_log
            WHERE patient_id = %s
            ORDER BY created_at DESC, audit_id DESC
            LIMIT %s
            """,
            (patient_id, limit),
        )
    except psycopg.DatabaseError as e:
        logger.error(f"Failed to query change audit for patient {patient_id}: {e}")
        raise
    return [ChangeAuditEntry(**row) for row in rows]


def get_audit_summary(pool: DatabaseConnectionPool, run_id: str) -> dict[str, int]:
    """
    Entry counts by event type for one run.

    Returns:
        {event_type_code: count}
    """
    run_id = validate_run_id(run_id)
    try:
        rows = pool.execute_query(
            """
            SELECT event_type_code, COUNT(*) AS entry_count
            FROM change_audit_log
            WHERE run_id = %s
            GROUP BY event_type_code
            ORDER BY event_type_code
            """,
            (run_id,),
        )
    except psycopg.DatabaseError as e:
        logger.error(f"Failed to summarize change audit for run {run_id}: {e}")
        raise
    return {row["event_type_code"]: row["entry_count"] for row in rows}
