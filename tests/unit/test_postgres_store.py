from __future__ import annotations

import json

import psycopg2
import pytest

import scorecard_import.db.postgres as pg
from scorecard_import.config.loader import DatabaseConfig
from scorecard_import.db.batch_upsert import UpsertResult
from scorecard_import.db.store import StoreError
from scorecard_import.models import Alias, ImportLogRecord, MetricType, ScorecardEntry


@pytest.fixture()
def clean_env(monkeypatch):
    for name in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_resolve_dsn_from_file_values(clean_env):
    cfg = DatabaseConfig(host="db", port=5433, user="app", password="pw", database="scorecards")
    assert pg.resolve_dsn(cfg) == "host=db port=5433 user=app dbname=scorecards password=pw"


def test_resolve_dsn_env_overrides(clean_env):
    clean_env.setenv("PGHOST", "envhost")
    clean_env.setenv("PGPASSWORD", "envpw")
    dsn = pg.resolve_dsn(DatabaseConfig(host="db", user="app", database="x"))
    assert dsn == "host=envhost port=5432 user=app dbname=x password=envpw"


def test_resolve_dsn_url_wins(clean_env):
    clean_env.setenv("DATABASE_URL", "postgresql://u@h/db")
    assert pg.resolve_dsn(DatabaseConfig(dsn="host=ignored")) == "postgresql://u@h/db"


def test_connect_failure_raises_store_error(clean_env):
    def boom(dsn):
        raise psycopg2.OperationalError("could not connect to server")

    clean_env.setattr(pg.psycopg2, "connect", boom)
    with pytest.raises(StoreError):
        with pg.connect(DatabaseConfig()):
            pass


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if self.conn.fail_on and self.conn.fail_on in sql:
            raise psycopg2.ProgrammingError("relation does not exist")
        self.conn.executed.append((sql, params))

    def fetchall(self):
        return self.conn.rows


class FakeConn:
    def __init__(self, rows=None, fail_on=None):
        self.rows = rows or []
        self.fail_on = fail_on
        self.executed: list = []
        self.committed = False
        self.rolled_back = False
        self.closed = False
        self.autocommit = True

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


def test_connect_commits_and_closes(clean_env):
    conn = FakeConn()
    clean_env.setattr(pg.psycopg2, "connect", lambda dsn: conn)
    with pg.connect(DatabaseConfig()) as c:
        assert c is conn
        assert conn.autocommit is False
    assert conn.committed and conn.closed


def test_connect_rolls_back_on_error(clean_env):
    conn = FakeConn()
    clean_env.setattr(pg.psycopg2, "connect", lambda dsn: conn)
    with pytest.raises(RuntimeError):
        with pg.connect(DatabaseConfig()):
            raise RuntimeError("stop")
    assert conn.rolled_back and conn.closed and not conn.committed


def test_fetch_kpis_maps_rows():
    conn = FakeConn(rows=[("K1", "CP ELR", "dollar", "below", 7, 120.5), ("K2", "Total RO's", None, None, None, None)])
    kpis = pg.PgScorecardStore(conn).fetch_kpis("D1")
    assert kpis[0].metric_type == MetricType.DOLLAR
    assert kpis[0].assigned_to == "7"
    assert kpis[0].target_value == 120.5
    assert kpis[1].assigned_to is None
    assert conn.executed[0][1] == ("D1",)


def test_fetch_entry_values_uses_week_column_for_weekly():
    conn = FakeConn(rows=[("K1", 3)])
    values = pg.PgScorecardStore(conn).fetch_entry_values(["K1"], "2025-03-03", "weekly")
    assert values == {"K1": 3.0}
    assert "week_start_date = %s" in conn.executed[0][0]
    assert pg.PgScorecardStore(FakeConn()).fetch_entry_values([], "2025-03", "monthly") == {}


def test_fetch_error_becomes_store_error():
    with pytest.raises(StoreError):
        pg.PgScorecardStore(FakeConn(fail_on="profiles")).fetch_roster("S1")


def test_upsert_aliases_store_normalized_names_and_maps_failures(monkeypatch):
    calls = []

    def fake_upsert(cursor, table, columns, rows, keys):
        calls.append((table, list(rows), keys))
        return UpsertResult(written=1, failures=((1, "duplicate key"),))

    monkeypatch.setattr(pg, "upsert_with_fallback", fake_upsert)
    store = pg.PgScorecardStore(FakeConn())
    failures = store.upsert_aliases([Alias("S1", "Jane  Doe", "U9"), Alias("S1", "Bob", "U3")])
    assert calls[0][1][0] == ("S1", "jane doe", "U9")
    assert calls[0][2] == ("store_id", "alias_name")
    assert [(f.record_type, f.record_key) for f in failures] == [("alias", "S1/bob")]


def test_upsert_entries_splits_monthly_and_weekly(monkeypatch):
    calls = []

    def fake_upsert(cursor, table, columns, rows, keys):
        calls.append((columns, keys))
        return UpsertResult(written=len(rows))

    monkeypatch.setattr(pg, "upsert_with_fallback", fake_upsert)
    store = pg.PgScorecardStore(FakeConn())
    store.upsert_entries(
        [
            ScorecardEntry("K1", "2025-03", "monthly", 1.0),
            ScorecardEntry("K1", "2025-03-03", "weekly", 2.0),
        ]
    )
    assert [keys for _, keys in calls] == [("kpi_id", "month", "entry_type"), ("kpi_id", "week_start_date", "entry_type")]


def test_insert_import_log_serializes_json():
    conn = FakeConn()
    record = ImportLogRecord(
        store_id="S1",
        profile_id="P1",
        department_id="D1",
        file_name="march.xlsx",
        period="2025-03",
        entry_count=4,
        user_mappings={"Kayla Bender": "U1"},
        unmatched_users=("Zed Quinn",),
    )
    pg.PgScorecardStore(conn).insert_import_log(record)
    statements = [sql for sql, _ in conn.executed]
    assert statements[0] == "SAVEPOINT scorecard_log"
    assert statements[-1] == "RELEASE SAVEPOINT scorecard_log"
    params = conn.executed[1][1]
    assert json.loads(params[6]) == {"Kayla Bender": "U1"}
    assert json.loads(params[8]) == ["Zed Quinn"]
    assert params[10] == "success"


def test_insert_import_log_failure_rolls_back_to_savepoint():
    conn = FakeConn(fail_on="INSERT INTO scorecard_import_logs")
    record = ImportLogRecord("S1", "P1", None, "f.xlsx", "2025-03", 0)
    with pytest.raises(StoreError):
        pg.PgScorecardStore(conn).insert_import_log(record)
    assert conn.executed[-1][0] == "ROLLBACK TO SAVEPOINT scorecard_log"
