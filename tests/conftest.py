"""
Pytest configuration and fixtures for star-pipeline tests

This module provides shared fixtures for unit and integration tests.
"""
import os
import shutil
from datetime import date, datetime
from decimal import Decimal
from typing import Generator

import psycopg
import pytest
from pyspark.sql import SparkSession

from star_pipeline.batch.dimension_builder import DimensionBuilder
from star_pipeline.batch.readers import InMemorySourceReader
from star_pipeline.core.models import ExecutionContext
from star_pipeline.core.settings import PipelineSettings
from star_pipeline.warehouse.connection import DatabaseConnectionPool
from star_pipeline.warehouse.key_allocator import KeyAllocator
from star_pipeline.warehouse.repository import InMemoryWarehouse
from star_pipeline.warehouse.schema_mgmt import STAR_SCHEMA, SchemaManager

REFERENCE_DATE = date(2025, 1, 1)


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# SOURCE DATA FIXTURES
# =======================

def sample_source_tables() -> dict[str, list[dict]]:
    """
    A small operational dataset.

    Patient 1001 is discharged on 2024-06-06 09:00 (encounter 7002) and
    comes back through the ER on 2024-06-20 (encounter 7003), a readmission
    13 days later. Encounter 7005 is still open (no discharge).
    """
    return {
        "specialties": [
            {"specialty_id": 1, "specialty_name": "Cardiology", "specialty_code": "CARD"},
            {"specialty_id": 2, "specialty_name": "Orthopedic Surgery", "specialty_code": "ORTH"},
        ],
        "departments": [
            {"department_id": 1, "department_name": "Cardiology Unit", "floor": 3, "capacity": 40},
            {"department_id": 2, "department_name": "Emergency Department", "floor": 1, "capacity": 30},
        ],
        "providers": [
            {"provider_id": 101, "first_name": "Alice", "last_name": "Smith", "credential": "MD",
             "provider_type": "Physician", "specialty_id": 1, "department_id": 1},
            {"provider_id": 102, "first_name": "Bob", "last_name": "Jones", "credential": "MD",
             "provider_type": "Surgeon", "specialty_id": 2, "department_id": 2},
        ],
        "patients": [
            {"patient_id": 1001, "first_name": "John", "last_name": "Doe",
             "date_of_birth": date(1955, 3, 15), "gender": "M", "mrn": "MRN001"},
            {"patient_id": 1002, "first_name": "Jane", "last_name": "Roe",
             "date_of_birth": date(1990, 7, 20), "gender": "F", "mrn": "MRN002"},
            {"patient_id": 1003, "first_name": "Sam", "last_name": "Poe",
             "date_of_birth": date(2010, 1, 5), "gender": "M", "mrn": "MRN003"},
        ],
        "diagnoses": [
            {"diagnosis_id": 1, "icd10_code": "I10", "icd10_description": "Essential hypertension"},
            {"diagnosis_id": 2, "icd10_code": "E11.9", "icd10_description": "Type 2 diabetes"},
            {"diagnosis_id": 3, "icd10_code": "J18.9", "icd10_description": "Pneumonia"},
        ],
        "procedures": [
            {"procedure_id": 1, "cpt_code": "99213", "cpt_description": "Office visit"},
            {"procedure_id": 2, "cpt_code": "93000", "cpt_description": "Electrocardiogram"},
            {"procedure_id": 3, "cpt_code": "71046", "cpt_description": "Chest X-ray"},
        ],
        "encounters": [
            {"encounter_id": 7001, "patient_id": 1001, "provider_id": 101, "encounter_type": "Outpatient",
             "encounter_date": datetime(2024, 5, 1, 9, 0), "discharge_date": datetime(2024, 5, 1, 10, 30),
             "department_id": None},
            {"encounter_id": 7002, "patient_id": 1001, "provider_id": 101, "encounter_type": "Inpatient",
             "encounter_date": datetime(2024, 6, 2, 14, 0), "discharge_date": datetime(2024, 6, 6, 9, 0),
             "department_id": 1},
            {"encounter_id": 7003, "patient_id": 1001, "provider_id": 102, "encounter_type": "ER",
             "encounter_date": datetime(2024, 6, 20, 8, 0), "discharge_date": datetime(2024, 6, 20, 14, 0),
             "department_id": 2},
            {"encounter_id": 7004, "patient_id": 1002, "provider_id": 102, "encounter_type": "Outpatient",
             "encounter_date": datetime(2024, 3, 10, 10, 0), "discharge_date": datetime(2024, 3, 10, 11, 0),
             "department_id": None},
            {"encounter_id": 7005, "patient_id": 1003, "provider_id": 101, "encounter_type": "ER",
             "encounter_date": datetime(2024, 8, 15, 22, 0), "discharge_date": None,
             "department_id": 2},
        ],
        "encounter_diagnoses": [
            {"encounter_diagnosis_id": 1, "encounter_id": 7001, "diagnosis_id": 1, "diagnosis_sequence": 1},
            {"encounter_diagnosis_id": 2, "encounter_id": 7002, "diagnosis_id": 3, "diagnosis_sequence": 2},
            {"encounter_diagnosis_id": 3, "encounter_id": 7002, "diagnosis_id": 1, "diagnosis_sequence": 1},
            {"encounter_diagnosis_id": 4, "encounter_id": 7003, "diagnosis_id": 3, "diagnosis_sequence": 1},
            {"encounter_diagnosis_id": 5, "encounter_id": 7004, "diagnosis_id": 2, "diagnosis_sequence": 1},
        ],
        "encounter_procedures": [
            {"encounter_procedure_id": 1, "encounter_id": 7001, "procedure_id": 1,
             "procedure_date": date(2024, 5, 1)},
            {"encounter_procedure_id": 2, "encounter_id": 7002, "procedure_id": 3,
             "procedure_date": date(2024, 6, 3)},
            {"encounter_procedure_id": 3, "encounter_id": 7002, "procedure_id": 2,
             "procedure_date": date(2024, 6, 2), "modifier_codes": "26"},
            {"encounter_procedure_id": 4, "encounter_id": 7003, "procedure_id": 2,
             "procedure_date": date(2024, 6, 20)},
        ],
        "billing": [
            {"billing_id": 1, "encounter_id": 7001, "claim_amount": Decimal("150.00"),
             "allowed_amount": Decimal("120.00"), "claim_status": "Paid"},
            {"billing_id": 2, "encounter_id": 7002, "claim_amount": Decimal("12500.00"),
             "allowed_amount": Decimal("10000.00"), "claim_status": "Paid"},
            {"billing_id": 3, "encounter_id": 7002, "claim_amount": Decimal("300.50"),
             "allowed_amount": Decimal("250.25"), "claim_status": "Paid"},
            {"billing_id": 4, "encounter_id": 7003, "claim_amount": Decimal("2200.00"),
             "allowed_amount": Decimal("1800.00"), "claim_status": "Pending"},
            {"billing_id": 5, "encounter_id": 7004, "claim_amount": Decimal("95.00"),
             "allowed_amount": Decimal("80.00"), "claim_status": "Paid"},
        ],
    }


@pytest.fixture
def source_tables() -> dict[str, list[dict]]:
    """Fresh copy of the sample dataset (tests may mutate it)."""
    return sample_source_tables()


@pytest.fixture
def source_reader(source_tables) -> InMemorySourceReader:
    return InMemorySourceReader(source_tables)


@pytest.fixture
def warehouse() -> InMemoryWarehouse:
    return InMemoryWarehouse()


@pytest.fixture
def context() -> ExecutionContext:
    return ExecutionContext(reference_date=REFERENCE_DATE)


@pytest.fixture
def key_allocator() -> KeyAllocator:
    return KeyAllocator()


@pytest.fixture
def dimensions(warehouse, key_allocator, context, source_reader) -> DimensionBuilder:
    """Dimension builder with the 2024 calendar and every dimension built."""
    builder = DimensionBuilder(warehouse, key_allocator, context)
    builder.build_calendar(date(2024, 1, 1), date(2024, 12, 31))
    builder.build_specialties(source_reader.read_specialties())
    builder.build_departments(source_reader.read_departments())
    builder.build_patients(source_reader.read_patients())
    builder.build_providers(source_reader.read_providers())
    builder.build_diagnoses(source_reader.read_diagnoses())
    builder.build_procedures(source_reader.read_procedures())
    builder.build_encounter_types(e.encounter_type for e in source_reader.read_encounters())
    return builder


@pytest.fixture
def settings() -> PipelineSettings:
    """Settings with a one-year calendar to keep runs fast."""
    return PipelineSettings(
        calendar_start=date(2024, 1, 1),
        calendar_end=date(2024, 12, 31),
        reference_date=REFERENCE_DATE,
    )


# =======================
# SPARK FIXTURES
# =======================

@pytest.fixture(scope="session")
def spark_session() -> Generator[SparkSession, None, None]:
    """
    Create a Spark session for testing with local mode

    Skipped when no Java runtime is available.

    Yields:
        SparkSession configured for local testing
    """
    if shutil.which("java") is None and not os.getenv("JAVA_HOME"):
        pytest.skip("Java runtime not available for Spark")

    spark = (
        SparkSession.builder
        .appName("star-pipeline-test")
        .master("local[2]")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.driver.memory", "1g")
        .config("spark.ui.enabled", "false")  # Disable UI for tests
        .getOrCreate()
    )

    # Set log level to WARN to reduce test output noise
    spark.sparkContext.setLogLevel("WARN")

    yield spark

    # Cleanup
    spark.stop()


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Skipped when Docker is not available.

    Yields:
        PostgresContainer instance
    """
    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_warehouse",
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker not available for integration tests: {e}")

    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def warehouse_pool(postgres_container) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Connection pool to the test warehouse with the schema created.

    Yields:
        Open DatabaseConnectionPool
    """
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_warehouse",
        user="test_pipeline",
        password="test_password",
    )
    pool.open()
    SchemaManager(pool).create_schema()

    yield pool

    pool.close()


@pytest.fixture(scope="function")
def clean_warehouse(warehouse_pool) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Provide a clean warehouse by truncating all tables before each test

    Yields:
        DatabaseConnectionPool over empty tables
    """
    tables = [spec.name for spec in reversed(STAR_SCHEMA)] + [
        "surrogate_key_counters",
        "etl_execution_log",
        "data_quality_log",
        "change_audit_log",
    ]
    with psycopg.connect(warehouse_pool.conninfo) as conn:
        with conn.cursor() as cur:
            cur.execute(f"TRUNCATE TABLE {', '.join(tables)} CASCADE")
        conn.commit()

    yield warehouse_pool


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
