"""
Schema management for the vault tables.

Creates the hub, satellite, link, validity, PIT and rejection tables of a
vault definition. All statements are idempotent (IF NOT EXISTS), so
init-db can run before every load.
"""

import psycopg
from psycopg import sql

from histovault.core.schema import VaultConfig
from histovault.observability.logger import get_logger
from histovault.utils.validation import sanitize_sql_identifier

from .backend import SATELLITE_UNIQUE_COLUMNS
from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

REJECTION_TABLE = "vault_rejection"


def hub_table(entity: str) -> str:
    return sanitize_sql_identifier(f"hub_{entity}", "hub table")


def sat_table(satellite: str) -> str:
    return sanitize_sql_identifier(f"sat_{satellite}", "satellite table")


def link_table(relationship: str) -> str:
    return sanitize_sql_identifier(f"link_{relationship}", "link table")


def eff_table(relationship: str) -> str:
    return sanitize_sql_identifier(f"eff_{relationship}", "validity table")


def pit_table(satellite: str) -> str:
    return sanitize_sql_identifier(f"pit_{satellite}", "PIT table")


HUB_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        entity_key CHAR(64) PRIMARY KEY,
        business_key TEXT[] NOT NULL,
        first_seen TIMESTAMPTZ NOT NULL,
        source_tag TEXT NOT NULL,
        source_table TEXT
    )
"""

SAT_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        load_seq BIGSERIAL PRIMARY KEY,
        entity_key CHAR(64) NOT NULL,
        diff_hash CHAR(64) NOT NULL,
        load_time TIMESTAMPTZ NOT NULL,
        source_tag TEXT NOT NULL,
        is_current BOOLEAN NOT NULL DEFAULT TRUE,
        end_time TIMESTAMPTZ,
        payload JSONB NOT NULL DEFAULT '{{}}'::jsonb,
        schema_version INTEGER NOT NULL DEFAULT 1
    )
"""

LINK_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        relationship_key CHAR(64) PRIMARY KEY,
        participant_keys TEXT[] NOT NULL,
        role TEXT,
        load_time TIMESTAMPTZ NOT NULL,
        source_tag TEXT NOT NULL
    )
"""

EFF_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        load_seq BIGSERIAL PRIMARY KEY,
        relationship_key CHAR(64) NOT NULL,
        driving_key CHAR(64) NOT NULL,
        start_time TIMESTAMPTZ NOT NULL,
        end_time TIMESTAMPTZ,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        source_tag TEXT NOT NULL,
        UNIQUE (driving_key, start_time, relationship_key)
    )
"""

PIT_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        entity_key CHAR(64) NOT NULL,
        snapshot_date DATE NOT NULL,
        applicable_version_key CHAR(64),
        applicable_load_time TIMESTAMPTZ,
        applicable_diff_hash CHAR(64),
        PRIMARY KEY (entity_key, snapshot_date)
    )
"""

REJECTION_DDL = """
    CREATE TABLE IF NOT EXISTS {table} (
        rejection_id BIGSERIAL PRIMARY KEY,
        cycle_id TEXT,
        entity TEXT NOT NULL,
        target TEXT NOT NULL,
        reason TEXT NOT NULL,
        message TEXT NOT NULL,
        source_tag TEXT NOT NULL,
        load_time TIMESTAMPTZ NOT NULL,
        row_values JSONB NOT NULL DEFAULT '{{}}'::jsonb,
        rejected_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
"""


class VaultSchemaManager:
    """
    Creates and inspects the tables of a vault definition.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize schema manager.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def statements(self, config: VaultConfig) -> list[sql.Composed]:
        """DDL statements for every table of the definition, in creation order."""
        statements = []
        for entity in config.entities:
            statements.append(self._create(HUB_DDL, hub_table(entity.name)))

        for _, satellite in config.satellites():
            table = sat_table(satellite.name)
            statements.append(self._create(SAT_DDL, table))
            columns = SATELLITE_UNIQUE_COLUMNS[config.dedup_mode_for(satellite)]
            statements.append(
                sql.SQL("CREATE UNIQUE INDEX IF NOT EXISTS {index} ON {table} ({columns})").format(
                    index=sql.Identifier(f"ux_{table}_version"),
                    table=sql.Identifier(table),
                    columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                )
            )
            statements.append(
                sql.SQL("CREATE INDEX IF NOT EXISTS {index} ON {table} (entity_key, load_time)").format(
                    index=sql.Identifier(f"ix_{table}_timeline"),
                    table=sql.Identifier(table),
                )
            )
            statements.append(self._create(PIT_DDL, pit_table(satellite.name)))

        for relationship in config.relationships:
            statements.append(self._create(LINK_DDL, link_table(relationship.name)))
            if relationship.driving is not None:
                statements.append(self._create(EFF_DDL, eff_table(relationship.name)))

        statements.append(self._create(REJECTION_DDL, REJECTION_TABLE))
        return statements

    def create_tables(self, config: VaultConfig) -> int:
        """
        Create all tables of a vault definition in one transaction.

        Returns:
            Number of statements executed

        Raises:
            psycopg.DatabaseError: If DDL fails
        """
        statements = self.statements(config)
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    for statement in statements:
                        cur.execute(statement)
                conn.commit()
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to create vault tables: {e}")
            raise

        logger.info(f"Vault tables ready ({len(statements)} statements)")
        return len(statements)

    def existing_tables(self) -> list[str]:
        """Vault tables present in the current search path."""
        rows = self.pool.execute_query(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = current_schema()
              AND (table_name LIKE 'hub\\_%%' OR table_name LIKE 'sat\\_%%'
                   OR table_name LIKE 'link\\_%%' OR table_name LIKE 'eff\\_%%'
                   OR table_name LIKE 'pit\\_%%' OR table_name = %s)
            ORDER BY table_name
            """,
            (REJECTION_TABLE,),
        )
        return [row["table_name"] for row in rows]

    def _create(self, template: str, table: str) -> sql.Composed:
        return sql.SQL(template).format(table=sql.Identifier(table))
