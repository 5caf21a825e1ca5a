"""
Schema management for the star-schema warehouse.

The table specifications below are the single description of the warehouse
layout: the PostgreSQL DDL, the in-memory warehouse's declared types and the
schema-derived validation checks are all generated from them.
"""

from typing import NamedTuple

from star_pipeline.observability.logger import get_logger

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)


class ColumnSpec(NamedTuple):
    name: str
    data_type: str
    nullable: bool = True
    unique: bool = False
    references: tuple[str, str] | None = None


class TableSpec(NamedTuple):
    name: str
    columns: tuple[ColumnSpec, ...]
    primary_key: tuple[str, ...]
    unique_together: tuple[tuple[str, ...], ...] = ()
    kind: str = "dimension"  # dimension, fact, bridge

    def column(self, name: str) -> ColumnSpec:
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(f"{self.name} has no column {name}")

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]


def _col(name, data_type, nullable=True, unique=False, references=None) -> ColumnSpec:
    return ColumnSpec(name, data_type, nullable, unique, references)


DIM_DATE = TableSpec(
    "dim_date",
    (
        _col("date_key", "integer", nullable=False, unique=True),
        _col("calendar_date", "date", nullable=False, unique=True),
        _col("year", "integer", nullable=False),
        _col("quarter", "integer", nullable=False),
        _col("month", "integer", nullable=False),
        _col("day_of_month", "integer", nullable=False),
        _col("week_of_year", "integer", nullable=False),
        _col("day_of_week", "varchar(10)", nullable=False),
        _col("is_weekend", "boolean"),
        _col("fiscal_year", "integer"),
        _col("fiscal_quarter", "integer"),
        _col("holiday_flag", "boolean"),
    ),
    primary_key=("date_key",),
)

DIM_PATIENT = TableSpec(
    "dim_patient",
    (
        _col("patient_key", "integer", nullable=False, unique=True),
        _col("patient_id", "integer", nullable=False, unique=True),
        _col("first_name", "varchar(100)"),
        _col("last_name", "varchar(100)"),
        _col("full_name", "varchar(200)"),
        _col("gender", "char(1)"),
        _col("date_of_birth", "date"),
        _col("age_at_first_encounter", "integer"),
        _col("current_age", "integer"),
        _col("age_group", "varchar(20)"),
        _col("mrn", "varchar(20)", unique=True),
    ),
    primary_key=("patient_key",),
)

DIM_SPECIALTY = TableSpec(
    "dim_specialty",
    (
        _col("specialty_key", "integer", nullable=False, unique=True),
        _col("specialty_id", "integer", nullable=False, unique=True),
        _col("specialty_name", "varchar(100)", nullable=False),
        _col("specialty_code", "varchar(10)"),
        _col("specialty_category", "varchar(50)"),
    ),
    primary_key=("specialty_key",),
)

DIM_DEPARTMENT = TableSpec(
    "dim_department",
    (
        _col("department_key", "integer", nullable=False, unique=True),
        _col("department_id", "integer", nullable=False, unique=True),
        _col("department_name", "varchar(100)", nullable=False),
        _col("floor", "integer"),
        _col("capacity", "integer"),
        _col("department_type", "varchar(50)"),
        _col("cost_center_code", "varchar(20)"),
    ),
    primary_key=("department_key",),
)

DIM_PROVIDER = TableSpec(
    "dim_provider",
    (
        _col("provider_key", "integer", nullable=False, unique=True),
        _col("provider_id", "integer", nullable=False, unique=True),
        _col("first_name", "varchar(100)"),
        _col("last_name", "varchar(100)"),
        _col("full_name", "varchar(200)"),
        _col("credential", "varchar(20)"),
        _col("provider_type", "varchar(50)"),
        _col("specialty_key", "integer", nullable=False, references=("dim_specialty", "specialty_key")),
        _col("department_key", "integer", nullable=False, references=("dim_department", "department_key")),
        _col("specialty_name", "varchar(100)"),
        _col("department_name", "varchar(100)"),
    ),
    primary_key=("provider_key",),
)

DIM_ENCOUNTER_TYPE = TableSpec(
    "dim_encounter_type",
    (
        _col("encounter_type_key", "integer", nullable=False, unique=True),
        _col("encounter_type", "varchar(50)", nullable=False, unique=True),
        _col("type_description", "varchar(200)"),
        _col("typical_duration_hours", "integer"),
        _col("requires_admission", "boolean"),
    ),
    primary_key=("encounter_type_key",),
)

DIM_DIAGNOSIS = TableSpec(
    "dim_diagnosis",
    (
        _col("diagnosis_key", "integer", nullable=False, unique=True),
        _col("diagnosis_id", "integer", nullable=False, unique=True),
        _col("icd10_code", "varchar(10)", nullable=False),
        _col("icd10_description", "varchar(200)"),
        _col("diagnosis_category", "varchar(100)"),
        _col("body_system", "varchar(100)"),
        _col("severity_level", "varchar(20)"),
        _col("chronic_flag", "boolean"),
    ),
    primary_key=("diagnosis_key",),
)

DIM_PROCEDURE = TableSpec(
    "dim_procedure",
    (
        _col("procedure_key", "integer", nullable=False, unique=True),
        _col("procedure_id", "integer", nullable=False, unique=True),
        _col("cpt_code", "varchar(10)", nullable=False),
        _col("cpt_description", "varchar(200)"),
        _col("procedure_category", "varchar(100)"),
        _col("procedure_type", "varchar(100)"),
        _col("typical_cost_range", "varchar(50)"),
        _col("duration_minutes", "integer"),
    ),
    primary_key=("procedure_key",),
)

FACT_ENCOUNTERS = TableSpec(
    "fact_encounters",
    (
        _col("encounter_key", "integer", nullable=False, unique=True),
        _col("encounter_id", "integer", nullable=False, unique=True),
        _col("patient_key", "integer", nullable=False, references=("dim_patient", "patient_key")),
        _col("provider_key", "integer", nullable=False, references=("dim_provider", "provider_key")),
        _col("encounter_date_key", "integer", nullable=False, references=("dim_date", "date_key")),
        _col("discharge_date_key", "integer", references=("dim_date", "date_key")),
        _col("encounter_type_key", "integer", nullable=False, references=("dim_encounter_type", "encounter_type_key")),
        _col("specialty_key", "integer", nullable=False, references=("dim_specialty", "specialty_key")),
        _col("department_key", "integer", nullable=False, references=("dim_department", "department_key")),
        _col("primary_diagnosis_key", "integer", references=("dim_diagnosis", "diagnosis_key")),
        _col("diagnosis_count", "integer", nullable=False),
        _col("procedure_count", "integer", nullable=False),
        _col("total_claim_amount", "numeric(12,2)", nullable=False),
        _col("total_allowed_amount", "numeric(12,2)", nullable=False),
        _col("length_of_stay_hours", "integer", nullable=False),
        _col("has_30day_readmission", "boolean", nullable=False),
        _col("days_to_readmission", "integer"),
        _col("is_readmission", "boolean", nullable=False),
        _col("readmission_count_30days", "integer", nullable=False),
        _col("encounter_datetime", "timestamp", nullable=False),
        _col("discharge_datetime", "timestamp"),
    ),
    primary_key=("encounter_key",),
    kind="fact",
)

BRIDGE_ENCOUNTER_DIAGNOSES = TableSpec(
    "bridge_encounter_diagnoses",
    (
        _col("encounter_key", "integer", nullable=False, references=("fact_encounters", "encounter_key")),
        _col("diagnosis_key", "integer", nullable=False, references=("dim_diagnosis", "diagnosis_key")),
        _col("diagnosis_sequence", "integer", nullable=False),
        _col("diagnosis_present_on_admission", "boolean"),
    ),
    primary_key=("encounter_key", "diagnosis_sequence"),
    kind="bridge",
)

BRIDGE_ENCOUNTER_PROCEDURES = TableSpec(
    "bridge_encounter_procedures",
    (
        _col("encounter_key", "integer", nullable=False, references=("fact_encounters", "encounter_key")),
        _col("procedure_key", "integer", nullable=False, references=("dim_procedure", "procedure_key")),
        _col("procedure_date_key", "integer", references=("dim_date", "date_key")),
        _col("procedure_sequence", "integer", nullable=False),
        _col("modifier_codes", "varchar(20)"),
        _col("procedure_status", "varchar(20)"),
    ),
    primary_key=("encounter_key", "procedure_sequence"),
    kind="bridge",
)

# Creation order satisfies the foreign keys
STAR_SCHEMA: tuple[TableSpec, ...] = (
    DIM_DATE,
    DIM_PATIENT,
    DIM_SPECIALTY,
    DIM_DEPARTMENT,
    DIM_PROVIDER,
    DIM_ENCOUNTER_TYPE,
    DIM_DIAGNOSIS,
    DIM_PROCEDURE,
    FACT_ENCOUNTERS,
    BRIDGE_ENCOUNTER_DIAGNOSES,
    BRIDGE_ENCOUNTER_PROCEDURES,
)

TABLES_BY_NAME = {spec.name: spec for spec in STAR_SCHEMA}

# Fact/bridge counts checked against each other
BRIDGE_COUNT_COLUMNS = {
    "diagnosis_count": "bridge_encounter_diagnoses",
    "procedure_count": "bridge_encounter_procedures",
}


def create_table_sql(spec: TableSpec) -> str:
    """Render CREATE TABLE IF NOT EXISTS for a table spec."""
    lines = []
    for col in spec.columns:
        line = f"    {col.name} {col.data_type.upper()}"
        if not col.nullable:
            line += " NOT NULL"
        if col.unique and (col.name,) != spec.primary_key:
            line += " UNIQUE"
        if col.references:
            ref_table, ref_column = col.references
            line += f" REFERENCES {ref_table}({ref_column})"
        lines.append(line)
    lines.append(f"    PRIMARY KEY ({', '.join(spec.primary_key)})")
    for group in spec.unique_together:
        lines.append(f"    UNIQUE ({', '.join(group)})")
    body = ",\n".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {spec.name} (\n{body}\n)"


# Operational tables of the pipeline itself
SUPPORT_DDL = (
    """
    CREATE TABLE IF NOT EXISTS surrogate_key_counters (
        sequence_name VARCHAR(63) PRIMARY KEY,
        last_value BIGINT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS etl_execution_log (
        log_id BIGSERIAL PRIMARY KEY,
        run_id UUID NOT NULL,
        procedure_name VARCHAR(100) NOT NULL,
        step_name VARCHAR(100) NOT NULL,
        step_order INTEGER NOT NULL,
        status VARCHAR(20) NOT NULL,
        rows_processed INTEGER DEFAULT 0,
        rows_inserted INTEGER DEFAULT 0,
        rows_updated INTEGER DEFAULT 0,
        rows_deleted INTEGER DEFAULT 0,
        duration_seconds NUMERIC(10,3),
        error_message TEXT,
        metadata JSONB,
        recorded_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS data_quality_log (
        finding_id BIGSERIAL PRIMARY KEY,
        run_id UUID NOT NULL,
        stage VARCHAR(30) NOT NULL,
        check_name VARCHAR(100) NOT NULL,
        table_name VARCHAR(100) NOT NULL,
        column_name VARCHAR(100),
        category VARCHAR(50) NOT NULL,
        issue_type VARCHAR(50) NOT NULL,
        severity_level VARCHAR(20) NOT NULL,
        affected_rows INTEGER NOT NULL DEFAULT 0,
        issue_description TEXT,
        sample_values TEXT[],
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS change_audit_log (
        audit_id BIGSERIAL PRIMARY KEY,
        run_id UUID,
        event_type_code VARCHAR(50) NOT NULL,
        table_name VARCHAR(100) NOT NULL,
        operation_type VARCHAR(10) NOT NULL,
        record_id VARCHAR(100),
        patient_id INTEGER,
        captured_fields JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_fact_encounters_patient ON fact_encounters(patient_key, encounter_datetime)",
    "CREATE INDEX IF NOT EXISTS idx_etl_execution_log_run ON etl_execution_log(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_data_quality_log_run ON data_quality_log(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_change_audit_log_patient ON change_audit_log(patient_id, created_at)",
)


class SchemaManager:
    """
    Creates the warehouse schema and describes what is actually deployed.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize schema manager.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def create_schema(self) -> None:
        """Create all star-schema and support tables (idempotent)."""
        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                for spec in STAR_SCHEMA:
                    cur.execute(create_table_sql(spec))
                for statement in SUPPORT_DDL:
                    cur.execute(statement)
            conn.commit()
        logger.info(f"Created warehouse schema ({len(STAR_SCHEMA)} star tables)")

    def describe_tables(self, table_names: list[str] | None = None) -> dict[str, dict[str, str]]:
        """
        Declared column types of deployed tables.

        Args:
            table_names: Restrict to these tables (default: all star tables)

        Returns:
            {table: {column: declared_type}} for tables that exist
        """
        names = table_names or [spec.name for spec in STAR_SCHEMA]
        rows = self.pool.execute_query(
            """
            SELECT table_name, column_name, data_type
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = ANY(%s)
            ORDER BY table_name, ordinal_position
            """,
            (names,),
        )
        described: dict[str, dict[str, str]] = {}
        for row in rows:
            described.setdefault(row["table_name"], {})[row["column_name"]] = row["data_type"]
        return described
