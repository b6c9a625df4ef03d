"""
Unit tests for database connection pool

Tests the PostgreSQL connection pool functionality using testcontainers.
"""
import pytest

from histovault.utils.validation import ValidationError
from histovault.warehouse.connection import DatabaseConnectionPool


def container_pool(postgres_container, **kwargs) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_datawarehouse",
        user="test_pipeline",
        password="test_password",
        **kwargs,
    )


@pytest.mark.unit
def test_password_required(monkeypatch):
    """A pool without a password is refused"""
    monkeypatch.delenv("DB_PASSWORD", raising=False)
    with pytest.raises(ValueError, match="password"):
        DatabaseConnectionPool(host="localhost")


@pytest.mark.unit
def test_settings_from_environment(monkeypatch):
    """Unset arguments fall back to DB_* environment variables"""
    monkeypatch.setenv("DB_HOST", "vault-db")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("DB_NAME", "warehouse")
    monkeypatch.setenv("DB_PASSWORD", "secret")
    monkeypatch.setenv("DB_SCHEMA", "raw_vault")

    pool = DatabaseConnectionPool()

    assert pool.host == "vault-db"
    assert pool.port == 6543
    assert pool.database == "warehouse"
    assert pool.schema == "raw_vault"
    assert "search_path=raw_vault,public" in pool.conninfo


@pytest.mark.unit
def test_settings_from_test_env_file(test_env, monkeypatch):
    """config/test.env supplies the credentials of the test database"""
    monkeypatch.delenv("DB_SCHEMA", raising=False)

    pool = DatabaseConnectionPool()

    assert pool.database == test_env["DB_NAME"]
    assert pool.user == test_env["DB_USER"]
    assert pool.schema is None


@pytest.mark.unit
def test_schema_is_sanitized():
    """Unsafe schema names are refused before reaching the connection options"""
    with pytest.raises(ValidationError):
        DatabaseConnectionPool(password="secret", schema="vault; DROP SCHEMA public")


@pytest.mark.unit
def test_closed_pool_raises():
    """Borrowing from a pool that was never opened fails"""
    pool = DatabaseConnectionPool(password="secret")
    with pytest.raises(RuntimeError):
        pool.execute_query("SELECT 1")


@pytest.mark.integration
def test_connection_pool_initialization(postgres_container):
    """Test that connection pool initializes correctly"""
    pool = container_pool(postgres_container, min_size=2, max_size=5)

    pool.open()

    assert pool._pool is not None
    assert pool._pool.min_size == 2
    assert pool._pool.max_size == 5

    pool.close()
    assert pool._pool is None


@pytest.mark.integration
def test_get_connection(postgres_container):
    """Test getting a connection from the pool"""
    pool = container_pool(postgres_container)
    pool.open()

    with pool.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 as test")
            result = cur.fetchone()
            assert result["test"] == 1

    pool.close()


@pytest.mark.integration
def test_execute_command(db_pool):
    """Commands run on the test schema and are committed"""
    db_pool.execute_command("CREATE TABLE scratch (id integer PRIMARY KEY, name text)")

    rowcount = db_pool.execute_command(
        "INSERT INTO scratch (id, name) VALUES (%s, %s), (%s, %s)",
        (1, "Acme", 2, "Globex"),
    )
    assert rowcount == 2

    result = db_pool.execute_query("SELECT name FROM scratch WHERE id = %s", (2,))
    assert result == [{"name": "Globex"}]

    schema = db_pool.execute_query("SELECT current_schema() AS schema")
    assert schema[0]["schema"] == db_pool.schema


@pytest.mark.integration
def test_context_manager(postgres_container):
    """Test using pool as context manager"""
    with container_pool(postgres_container) as pool:
        result = pool.execute_query("SELECT 1 as test")
        assert result[0]["test"] == 1

    # Pool should be closed after context
    with pytest.raises(RuntimeError):
        pool.execute_query("SELECT 1")
