"""
Pytest configuration and fixtures for histovault tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
from datetime import datetime
from typing import Generator

import pytest
from pyspark.sql import SparkSession
from testcontainers.postgres import PostgresContainer

from histovault.core.schema import VaultConfigLoader
from histovault.warehouse.connection import DatabaseConnectionPool
from histovault.warehouse.memory_backend import MemoryVaultBackend
from histovault.warehouse.postgres_backend import PostgresVaultBackend
from histovault.warehouse.schema_mgmt import VaultSchemaManager

FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")



# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers or a JVM"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# SPARK FIXTURES
# =======================

@pytest.fixture(scope="session")
def spark_session() -> Generator[SparkSession, None, None]:
    """
    Create a Spark session for testing with local mode

    Yields:
        SparkSession configured for local testing
    """
    try:
        spark = (
            SparkSession.builder
            .appName("histovault-test")
            .master("local[2]")
            .config("spark.sql.shuffle.partitions", "2")
            .config("spark.sql.session.timeZone", "UTC")
            .config("spark.driver.memory", "1g")
            .config("spark.ui.enabled", "false")  # Disable UI for tests
            .config("spark.sql.warehouse.dir", "/tmp/spark-warehouse")
            .getOrCreate()
        )
    except Exception as e:
        pytest.skip(f"Spark is not available: {e}")

    # Set log level to WARN to reduce test output noise
    spark.sparkContext.setLogLevel("WARN")

    yield spark

    spark.stop()


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    container = PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_datawarehouse",
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="function")
def db_pool(postgres_container) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Open a connection pool on a fresh schema for a single test

    Yields:
        Open DatabaseConnectionPool whose search path starts with the test schema
    """
    schema = f"vault_{os.getpid()}_{datetime.now().strftime('%H%M%S%f')}"
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_datawarehouse",
        user="test_pipeline",
        password="test_password",
        schema=schema,
    )
    pool.open()
    pool.execute_command(f"CREATE SCHEMA {schema}")

    yield pool

    pool.execute_command(f"DROP SCHEMA {schema} CASCADE")
    pool.close()


@pytest.fixture(scope="function")
def postgres_backend(db_pool, vault_config) -> PostgresVaultBackend:
    """PostgreSQL backend with the sample vault's tables created"""
    VaultSchemaManager(db_pool).create_tables(vault_config)
    return PostgresVaultBackend(db_pool)


# =======================
# VAULT FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_data_dir() -> str:
    """
    Get path to test data fixtures directory

    Returns:
        Path to tests/fixtures directory
    """
    return FIXTURES_DIR


@pytest.fixture(scope="function")
def vault_config():
    """Sample vault definition (tests/fixtures/vault.yaml)"""
    return VaultConfigLoader(os.path.join(FIXTURES_DIR, "vault.yaml")).load()


@pytest.fixture(scope="function")
def memory_backend() -> MemoryVaultBackend:
    """Empty in-process backend"""
    return MemoryVaultBackend()


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="function")
def test_env(monkeypatch) -> dict:
    """
    Set test environment variables

    This fixture reads config/test.env and sets its variables for one test
    """
    from dotenv import dotenv_values

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    values = {key: value for key, value in dotenv_values(env_path).items() if value is not None}
    for key, value in values.items():
        monkeypatch.setenv(key, value)
    return values
