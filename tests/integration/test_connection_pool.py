"""
Integration tests for the database connection pool

Tests the PostgreSQL connection pool functionality using testcontainers.
"""
import psycopg
import pytest

from star_pipeline.warehouse.connection import DatabaseConnectionPool


def make_pool(postgres_container, **kwargs) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_warehouse",
        user="test_pipeline",
        password="test_password",
        **kwargs,
    )


def test_password_required(monkeypatch):
    """A pool without a password is refused before connecting"""
    monkeypatch.delenv("DB_PASSWORD", raising=False)

    with pytest.raises(ValueError, match="password"):
        DatabaseConnectionPool(host="localhost", database="healthcare_dw", user="etl")


@pytest.mark.integration
def test_connection_pool_initialization(postgres_container):
    """Test that connection pool initializes correctly"""
    pool = make_pool(postgres_container, min_size=2, max_size=5)

    pool.open()

    assert pool._pool is not None
    assert pool._pool.min_size == 2
    assert pool._pool.max_size == 5

    pool.close()


@pytest.mark.integration
def test_rows_are_dictionaries(postgres_container):
    """Test getting a connection from the pool"""
    with make_pool(postgres_container) as pool:
        with pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 as test")
                assert cur.fetchone()["test"] == 1

        result = pool.execute_query("SELECT 42 as answer")
        assert result == [{"answer": 42}]


@pytest.mark.integration
def test_execute_command(clean_warehouse):
    """Test executing INSERT/UPDATE commands"""
    rowcount = clean_warehouse.execute_command(
        "INSERT INTO surrogate_key_counters (sequence_name, last_value) VALUES (%s, %s)",
        ("dim_patient", 7),
    )

    assert rowcount == 1
    result = clean_warehouse.execute_query(
        "SELECT last_value FROM surrogate_key_counters WHERE sequence_name = %s",
        ("dim_patient",),
    )
    assert result[0]["last_value"] == 7


@pytest.mark.integration
def test_transaction_rolls_back_on_error(clean_warehouse):
    """Statements of a failed transaction leave nothing behind"""
    with pytest.raises(psycopg.errors.UniqueViolation):
        with clean_warehouse.transaction() as cur:
            cur.execute(
                "INSERT INTO surrogate_key_counters (sequence_name, last_value) VALUES (%s, %s)",
                ("dim_provider", 1),
            )
            cur.execute(
                "INSERT INTO surrogate_key_counters (sequence_name, last_value) VALUES (%s, %s)",
                ("dim_provider", 2),
            )

    assert clean_warehouse.execute_query(
        "SELECT * FROM surrogate_key_counters WHERE sequence_name = %s", ("dim_provider",)
    ) == []


@pytest.mark.integration
def test_context_manager(postgres_container):
    """Test using pool as context manager"""
    with make_pool(postgres_container) as pool:
        result = pool.execute_query("SELECT 1 as test")
        assert result[0]["test"] == 1

    # Pool should be closed after context
    with pytest.raises(RuntimeError):
        pool.execute_query("SELECT 1")
