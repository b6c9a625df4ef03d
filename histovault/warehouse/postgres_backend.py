"""
PostgreSQL vault backend.

Inserts use INSERT ... ON CONFLICT DO NOTHING so that re-running a load
cycle never duplicates rows; maintenance write sets are conditional
UPDATEs keyed by load_seq. Each call commits in its own transaction.
"""

import json
from datetime import date
from functools import partial
from typing import Iterable

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb

from histovault.core.models import (
    AttributeVersion,
    EntityRecord,
    IntervalUpdate,
    PitRow,
    RejectedRow,
    RelationshipRecord,
    ValidityInterval,
    VersionUpdate,
)
from histovault.observability.logger import get_logger

from .backend import SATELLITE_UNIQUE_COLUMNS, VaultBackend
from .connection import DatabaseConnectionPool
from .schema_mgmt import REJECTION_TABLE, eff_table, hub_table, link_table, pit_table, sat_table

logger = get_logger(__name__)

_json_dumps = partial(json.dumps, default=str, sort_keys=True)


class PostgresVaultBackend(VaultBackend):
    """
    VaultBackend over psycopg 3.

    Tables must exist (see VaultSchemaManager).
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize the backend.

        Args:
            pool: Open database connection pool
        """
        self.pool = pool

    # Helpers

    def _write(self, description: str, statement, params_list: list) -> list[dict]:
        """Execute one statement per parameter set in a single transaction; collect RETURNING rows."""
        if not params_list:
            return []
        returned = []
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    for params in params_list:
                        cur.execute(statement, params)
                        if cur.description is not None:
                            returned.extend(cur.fetchall())
                        elif cur.rowcount > 0:
                            returned.append({"rowcount": cur.rowcount})
                conn.commit()
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to {description}: {e}")
            raise
        logger.debug(f"{description}: {len(returned)} of {len(params_list)} rows written")
        return returned

    def _select(self, table: str, where_column: str | None, keys: Iterable[str] | None, order_by: list[str]):
        query = sql.SQL("SELECT * FROM {table}").format(table=sql.Identifier(table))
        params = None
        if keys is not None:
            keys = sorted(set(keys))
            if not keys:
                return []
            query = query + sql.SQL(" WHERE {column} = ANY(%s)").format(column=sql.Identifier(where_column))
            params = (keys,)
        query = query + sql.SQL(" ORDER BY {order}").format(
            order=sql.SQL(", ").join(sql.Identifier(c) for c in order_by)
        )
        try:
            return self.pool.execute_query(query, params)
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to read {table}: {e}")
            raise

    # Entity stores

    def insert_entities(self, entity, records):
        statement = sql.SQL(
            """
            INSERT INTO {table} (entity_key, business_key, first_seen, source_tag, source_table)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (entity_key) DO NOTHING
            RETURNING entity_key
            """
        ).format(table=sql.Identifier(hub_table(entity)))
        records = list(records)
        params = [
            (r.entity_key, list(r.business_key), r.first_seen, r.source_tag, r.source_table)
            for r in records
        ]
        written = {row["entity_key"] for row in self._write(f"insert into hub {entity}", statement, params)}
        return [r for r in records if r.entity_key in written]

    def fetch_entities(self, entity, keys=None):
        rows = self._select(hub_table(entity), "entity_key", keys, ["entity_key"])
        return [EntityRecord(**row) for row in rows]

    # Attribute history stores

    def insert_versions(self, satellite, versions, unique_columns=SATELLITE_UNIQUE_COLUMNS["all_history"]):
        statement = sql.SQL(
            """
            INSERT INTO {table} (
                entity_key, diff_hash, load_time, source_tag,
                is_current, end_time, payload, schema_version
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT ({conflict}) DO NOTHING
            RETURNING load_seq
            """
        ).format(
            table=sql.Identifier(sat_table(satellite)),
            conflict=sql.SQL(", ").join(sql.Identifier(c) for c in unique_columns),
        )

        inserted = []
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    for version in versions:
                        cur.execute(
                            statement,
                            (
                                version.entity_key,
                                version.diff_hash,
                                version.load_time,
                                version.source_tag,
                                version.is_current,
                                version.end_time,
                                Jsonb(version.payload, dumps=_json_dumps),
                                version.schema_version,
                            ),
                        )
                        row = cur.fetchone()
                        if row is not None:
                            inserted.append(version.model_copy(update={"load_seq": row["load_seq"]}))
                conn.commit()
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to insert into satellite {satellite}: {e}")
            raise
        return inserted

    def fetch_versions(self, satellite, entity_keys=None):
        rows = self._select(sat_table(satellite), "entity_key", entity_keys, ["entity_key", "load_time", "load_seq"])
        return [AttributeVersion(**row) for row in rows]

    def apply_version_updates(self, satellite, updates: Iterable[VersionUpdate]) -> int:
        statement = sql.SQL(
            """
            UPDATE {table}
            SET is_current = %(is_current)s, end_time = %(end_time)s
            WHERE load_seq = %(load_seq)s
              AND (is_current IS DISTINCT FROM %(is_current)s OR end_time IS DISTINCT FROM %(end_time)s)
            """
        ).format(table=sql.Identifier(sat_table(satellite)))
        params = [
            {"load_seq": u.load_seq, "is_current": u.is_current, "end_time": u.end_time}
            for u in updates
        ]
        return len(self._write(f"update current flags of {satellite}", statement, params))

    # Relationship stores

    def insert_relationships(self, relationship, records):
        statement = sql.SQL(
            """
            INSERT INTO {table} (relationship_key, participant_keys, role, load_time, source_tag)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (relationship_key) DO NOTHING
            RETURNING relationship_key
            """
        ).format(table=sql.Identifier(link_table(relationship)))
        records = list(records)
        params = [
            (r.relationship_key, list(r.participant_keys), r.role, r.load_time, r.source_tag)
            for r in records
        ]
        written = {
            row["relationship_key"]
            for row in self._write(f"insert into link {relationship}", statement, params)
        }
        return [r for r in records if r.relationship_key in written]

    def fetch_relationships(self, relationship, keys=None):
        rows = self._select(link_table(relationship), "relationship_key", keys, ["relationship_key"])
        return [RelationshipRecord(**row) for row in rows]

    # Relationship validity

    def insert_intervals(self, relationship, intervals):
        statement = sql.SQL(
            """
            INSERT INTO {table} (relationship_key, driving_key, start_time, end_time, is_active, source_tag)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (driving_key, start_time, relationship_key) DO NOTHING
            RETURNING load_seq
            """
        ).format(table=sql.Identifier(eff_table(relationship)))

        inserted = []
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    for interval in intervals:
                        cur.execute(
                            statement,
                            (
                                interval.relationship_key,
                                interval.driving_key,
                                interval.start_time,
                                interval.end_time,
                                interval.is_active,
                                interval.source_tag,
                            ),
                        )
                        row = cur.fetchone()
                        if row is not None:
                            inserted.append(interval.model_copy(update={"load_seq": row["load_seq"]}))
                conn.commit()
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to insert validity intervals of {relationship}: {e}")
            raise
        return inserted

    def fetch_intervals(self, relationship, driving_keys=None):
        rows = self._select(
            eff_table(relationship), "driving_key", driving_keys, ["driving_key", "start_time", "load_seq"]
        )
        return [ValidityInterval(**row) for row in rows]

    def apply_interval_updates(self, relationship, updates: Iterable[IntervalUpdate]) -> int:
        statement = sql.SQL(
            """
            UPDATE {table}
            SET is_active = %(is_active)s, end_time = %(end_time)s
            WHERE load_seq = %(load_seq)s
              AND (is_active IS DISTINCT FROM %(is_active)s OR end_time IS DISTINCT FROM %(end_time)s)
            """
        ).format(table=sql.Identifier(eff_table(relationship)))
        params = [
            {"load_seq": u.load_seq, "is_active": u.is_active, "end_time": u.end_time}
            for u in updates
        ]
        return len(self._write(f"update validity of {relationship}", statement, params))

    # PIT projections

    def replace_pit(self, satellite, rows):
        table = sql.Identifier(pit_table(satellite))
        insert = sql.SQL(
            """
            INSERT INTO {table} (
                entity_key, snapshot_date, applicable_version_key,
                applicable_load_time, applicable_diff_hash
            )
            VALUES (%s, %s, %s, %s, %s)
            """
        ).format(table=table)
        params = [
            (
                r.entity_key,
                r.snapshot_date,
                r.applicable_version_key,
                r.applicable_load_time,
                r.applicable_diff_hash,
            )
            for r in rows
        ]

        # Delete and insert in one transaction so readers see old or new, never half
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql.SQL("DELETE FROM {table}").format(table=table))
                    if params:
                        cur.executemany(insert, params)
                conn.commit()
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to replace PIT {satellite}: {e}")
            raise
        return len(params)

    def fetch_pit(self, satellite, snapshot_date: date | None = None):
        query = sql.SQL("SELECT * FROM {table}").format(table=sql.Identifier(pit_table(satellite)))
        params = None
        if snapshot_date is not None:
            query = query + sql.SQL(" WHERE snapshot_date = %s")
            params = (snapshot_date,)
        query = query + sql.SQL(" ORDER BY entity_key, snapshot_date")
        rows = self.pool.execute_query(query, params)
        return [PitRow(**row) for row in rows]

    # Rejections

    def insert_rejections(self, rows):
        statement = sql.SQL(
            """
            INSERT INTO {table} (
                cycle_id, entity, target, reason, message,
                source_tag, load_time, row_values, rejected_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """
        ).format(table=sql.Identifier(REJECTION_TABLE))
        params = [
            (
                r.cycle_id,
                r.entity,
                r.target,
                r.reason,
                r.message,
                r.source_tag,
                r.load_time,
                Jsonb(r.values, dumps=_json_dumps),
                r.rejected_at,
            )
            for r in rows
        ]
        return len(self._write("insert rejections", statement, params))

    def fetch_rejections(self, cycle_id=None, limit=100):
        query = sql.SQL("SELECT * FROM {table}").format(table=sql.Identifier(REJECTION_TABLE))
        params: tuple = (limit,)
        if cycle_id is not None:
            query = query + sql.SQL(" WHERE cycle_id = %s")
            params = (cycle_id, limit)
        query = query + sql.SQL(" ORDER BY rejection_id DESC LIMIT %s")
        rejections = []
        for row in self.pool.execute_query(query, params):
            row["values"] = row.pop("row_values")
            rejections.append(RejectedRow(**row))
        return rejections

    def close(self) -> None:
        self.pool.close()
