"""
End-to-end test of the command-line flow.

Creates the vault tables, inserts ghost rows, loads two daily CSV
snapshots with Spark into PostgreSQL, rebuilds PIT tables and reads back
the rejected rows, all through the CLI entry point.
"""

import json
import os

import pytest

from histovault.cli import load_cli
from histovault.cli.load_cli import main


@pytest.fixture
def cli_env(monkeypatch, db_pool, spark_session):
    """Point the CLI at the test schema and the shared Spark session"""
    monkeypatch.setenv("DB_HOST", db_pool.host)
    monkeypatch.setenv("DB_PORT", str(db_pool.port))
    monkeypatch.setenv("DB_NAME", db_pool.database)
    monkeypatch.setenv("DB_USER", db_pool.user)
    monkeypatch.setenv("DB_PASSWORD", db_pool.password)
    monkeypatch.setenv("DB_SCHEMA", db_pool.schema)
    monkeypatch.delenv("METRICS_PORT", raising=False)

    # The session is shared with other tests; the CLI must not stop it
    monkeypatch.setattr(load_cli, "create_spark_session", lambda app_name="histovault": spark_session)
    monkeypatch.setattr(spark_session, "stop", lambda: None)
    return db_pool


def count(pool, table):
    return pool.execute_query(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]


def load_args(config, test_data_dir, load_time, *inputs):
    args = ["load", "--config", config, "--source-tag", "werkportal", "--load-time", load_time]
    for source, filename in inputs:
        args += ["--input", f"{source}={os.path.join(test_data_dir, filename)}"]
    return args


@pytest.mark.e2e
@pytest.mark.integration
@pytest.mark.slow
def test_vault_flow_end_to_end(cli_env, test_data_dir, capsys):
    """
    Two daily snapshots through the CLI.

    Steps:
    1. init-db creates the tables of the vault definition
    2. ghosts inserts the sentinel rows
    3. load day 1 (companies, clients, assignments with one orphan)
    4. load day 2 (one change, one new company, one vanished) and rebuild PIT
    5. pit on a three-day grid
    6. rejections shows the orphan assignment
    """
    pool = cli_env
    config = os.path.join(test_data_dir, "vault.yaml")

    main(["init-db", "--config", config])
    assert "Vault tables ready" in capsys.readouterr().out

    main(["ghosts", "--config", config])
    assert "Inserted 8 sentinel rows" in capsys.readouterr().out

    main(load_args(
        config, test_data_dir, "2024-03-01T00:00:00+00:00",
        ("company", "company_day1.csv"), ("client", "client.csv"), ("assignment", "assignment.csv"),
    ))
    assert "LOAD CYCLE COMPLETE" in capsys.readouterr().out

    main(load_args(config, test_data_dir, "2024-03-02T00:00:00+00:00", ("company", "company_day2.csv"))
         + ["--rebuild-pit"])
    assert "LOAD CYCLE COMPLETE" in capsys.readouterr().out

    # 4 companies plus 2 ghosts; Globex has two versions
    assert count(pool, "hub_company") == 6
    assert count(pool, "sat_company_details") == 2 + 5
    assert count(pool, "link_client_company") == 2
    current = pool.execute_query(
        "SELECT payload->>'city' AS city FROM sat_company_details WHERE is_current"
    )
    assert len(current) == 6
    assert sorted(row["city"] for row in current if row["city"]) == ["Delft", "Haarlem", "Utrecht", "Zwolle"]

    main(["pit", "--config", config, "--satellite", "company_details",
          "--start", "2024-03-01", "--end", "2024-03-03"])
    out = capsys.readouterr().out
    assert "company_details: 18 rows over 3 dates (1 unresolved)" in out
    assert count(pool, "pit_company_details") == 18

    main(["rejections", "--format", "json"])
    records = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    rejections = [r for r in records if "reason" in r]
    assert [r["reason"] for r in rejections] == ["orphan_relationship"]
    assert rejections[0]["values"] == {"client_id": "300", "company_id": "3"}


@pytest.mark.e2e
@pytest.mark.integration
@pytest.mark.slow
def test_reload_is_idempotent(cli_env, test_data_dir, capsys):
    """Loading the same snapshot twice leaves the vault unchanged"""
    pool = cli_env
    config = os.path.join(test_data_dir, "vault.yaml")
    args = load_args(
        config, test_data_dir, "2024-03-01T00:00:00+00:00",
        ("company", "company_day1.csv"), ("client", "client.csv"),
    )

    main(["init-db", "--config", config])
    main(args)
    tables = ["hub_company", "hub_client", "sat_company_details", "sat_client_details"]
    before = {table: count(pool, table) for table in tables}

    main(args)
    out = capsys.readouterr().out

    assert {table: count(pool, table) for table in tables} == before
    assert "versions_appended: 0" in out
