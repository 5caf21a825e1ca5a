"""
Source reader over the operational PostgreSQL database.
"""

from typing import Any, Iterable

from star_pipeline.observability.logger import get_logger
from star_pipeline.warehouse.connection import DatabaseConnectionPool

from .source_reader import SourceReader

logger = get_logger(__name__)

# Deterministic read order keeps "first occurrence wins" stable across runs
ORDER_BY = {
    "patients": "patient_id",
    "specialties": "specialty_id",
    "departments": "department_id",
    "providers": "provider_id",
    "diagnoses": "diagnosis_id",
    "procedures": "procedure_id",
    "encounters": "encounter_id",
    "encounter_diagnoses": "encounter_diagnosis_id",
    "encounter_procedures": "encounter_procedure_id",
    "billing": "billing_id",
}


class PostgresSourceReader(SourceReader):
    """
    Reads the OLTP tables with psycopg.

    Columns the operational schema lacks (e.g. modifier codes) fall back
    to the source model defaults.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Args:
            pool: Open pool on the operational database
        """
        self.pool = pool

    def _read_rows(self, table_name: str) -> Iterable[dict[str, Any]]:
        rows = self.pool.execute_query(f"SELECT * FROM {table_name} ORDER BY {ORDER_BY[table_name]}")
        logger.debug(f"Read {len(rows)} rows from {table_name}")
        return rows
