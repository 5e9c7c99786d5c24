from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2

from ..config.loader import DatabaseConfig
from ..models.entries import ImportLogRecord, ScorecardEntry
from ..models.import_result import RecordFailure
from ..models.kpi import KPIDefinition, MetricType, TargetDirection
from ..models.mapping import AbsoluteMapping, ColumnTemplate, RelativeMapping
from ..models.roster import Alias, RosterUser
from .batch_upsert import BatchUpsertError, upsert_with_fallback
from .store import StoreError, alias_key, entry_key, mapping_key, template_key

"""PostgreSQL store.

Reads the snapshot tables and upserts on the natural keys:

    scorecard_user_aliases       (store_id, alias_name)
    scorecard_entries            (kpi_id, month, entry_type) monthly
                                 (kpi_id, week_start_date, entry_type) weekly
    scorecard_cell_mappings      (import_profile_id, user_id, col_index)
    scorecard_column_templates   (import_profile_id, col_index, kpi_name)

Everything runs on one connection in one transaction; the caller commits.
"""

__all__ = [
    "resolve_dsn",
    "connect",
    "PgScorecardStore",
]

logger = logging.getLogger(__name__)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Connection string: DATABASE_URL / PGDSN, then file dsn, then PG* vars over file values."""
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def connect(db_cfg: DatabaseConfig) -> Iterator[Any]:
    """Yield an open connection; commit on clean exit, roll back on error."""
    try:
        conn = psycopg2.connect(resolve_dsn(db_cfg))
    except psycopg2.Error as e:
        raise StoreError(f"cannot connect: {e}") from e
    conn.autocommit = False
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def _failures(record_type: str, records: Sequence[Any], key, failed: Iterable[tuple[int, str]]) -> list[RecordFailure]:
    return [RecordFailure(record_type, key(records[pos]), message) for pos, message in failed]


class PgScorecardStore:
    """ScorecardStore backed by a psycopg2 connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    def _fetch(self, sql: str, params: Sequence[Any]) -> list[tuple[Any, ...]]:
        try:
            with self._conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()
        except psycopg2.Error as e:
            raise StoreError(str(e).strip()) from e

    def _upsert(self, table: str, columns: Sequence[str], rows: Sequence[Sequence[Any]], keys: Sequence[str]):
        try:
            with self._conn.cursor() as cur:
                return upsert_with_fallback(cur, table, columns, rows, keys)
        except BatchUpsertError as e:
            raise StoreError(str(e)) from e

    def _rollback_to(self, savepoint: str) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
        except psycopg2.Error as e:
            logger.debug("rollback to %s failed: %s", savepoint, e)

    # -- snapshot -----------------------------------------------------------

    def fetch_roster(self, store_id: str) -> list[RosterUser]:
        rows = self._fetch(
            "SELECT id, full_name FROM profiles WHERE store_id = %s ORDER BY full_name, id",
            (store_id,),
        )
        return [RosterUser(id=str(r[0]), display_name=r[1] or "") for r in rows]

    def fetch_aliases(self, store_id: str) -> list[Alias]:
        rows = self._fetch(
            "SELECT store_id, alias_name, user_id FROM scorecard_user_aliases WHERE store_id = %s",
            (store_id,),
        )
        return [Alias(store_id=str(r[0]), alias_name=r[1], user_id=str(r[2])) for r in rows]

    def fetch_absolute_mappings(self, profile_id: str) -> list[AbsoluteMapping]:
        rows = self._fetch(
            "SELECT import_profile_id, col_index, target_kpi_name, pay_type_filter, is_per_user "
            "FROM scorecard_import_mappings WHERE import_profile_id = %s AND col_index IS NOT NULL "
            "ORDER BY display_order, col_index",
            (profile_id,),
        )
        return [
            AbsoluteMapping(
                profile_id=str(r[0]),
                column_index=int(r[1]),
                kpi_name=r[2],
                pay_type_filter=r[3],
                is_per_user=bool(r[4]) if r[4] is not None else True,
            )
            for r in rows
        ]

    def fetch_relative_mappings(self, profile_id: str) -> list[RelativeMapping]:
        rows = self._fetch(
            "SELECT import_profile_id, user_id, col_index, kpi_id, kpi_name "
            "FROM scorecard_cell_mappings WHERE import_profile_id = %s AND is_relative",
            (profile_id,),
        )
        return [
            RelativeMapping(
                profile_id=str(r[0]),
                owner_user_id=str(r[1]),
                column_index=int(r[2]),
                kpi_id=str(r[3]),
                kpi_name=r[4],
            )
            for r in rows
        ]

    def fetch_templates(self, profile_id: str) -> list[ColumnTemplate]:
        rows = self._fetch(
            "SELECT import_profile_id, col_index, kpi_name FROM scorecard_column_templates "
            "WHERE import_profile_id = %s ORDER BY col_index",
            (profile_id,),
        )
        return [ColumnTemplate(profile_id=str(r[0]), column_index=int(r[1]), kpi_name=r[2]) for r in rows]

    def fetch_kpis(self, department_id: str | None) -> list[KPIDefinition]:
        rows = self._fetch(
            "SELECT id, name, metric_type, target_direction, assigned_to, target_value "
            "FROM kpi_definitions WHERE department_id IS NOT DISTINCT FROM %s ORDER BY display_order, name",
            (department_id,),
        )
        return [
            KPIDefinition(
                id=str(r[0]),
                name=r[1],
                metric_type=MetricType(r[2] or "unit"),
                target_direction=TargetDirection(r[3] or "above"),
                assigned_to=str(r[4]) if r[4] is not None else None,
                target_value=float(r[5]) if r[5] is not None else None,
            )
            for r in rows
        ]

    def fetch_entry_values(self, kpi_ids: Iterable[str], period: str, entry_type: str) -> dict[str, float]:
        ids = list(kpi_ids)
        if not ids:
            return {}
        period_column = "week_start_date" if entry_type == "weekly" else "month"
        rows = self._fetch(
            f"SELECT kpi_id, actual_value FROM scorecard_entries "
            f"WHERE kpi_id = ANY(%s) AND {period_column} = %s AND entry_type = %s AND actual_value IS NOT NULL",
            (ids, period, entry_type),
        )
        return {str(r[0]): float(r[1]) for r in rows}

    # -- writes -------------------------------------------------------------

    def upsert_aliases(self, aliases: Sequence[Alias]) -> list[RecordFailure]:
        rows = [(a.store_id, a.normalized_name, a.user_id) for a in aliases]
        result = self._upsert(
            "scorecard_user_aliases", ("store_id", "alias_name", "user_id"), rows, ("store_id", "alias_name")
        )
        return _failures("alias", aliases, alias_key, result.failures)

    def upsert_entries(self, entries: Sequence[ScorecardEntry]) -> list[RecordFailure]:
        failures: list[RecordFailure] = []
        for entry_type, period_column in (("monthly", "month"), ("weekly", "week_start_date")):
            group = [e for e in entries if (e.entry_type == "weekly") == (entry_type == "weekly")]
            if not group:
                continue
            rows = [
                (e.kpi_id, e.period, e.entry_type, e.actual_value, e.variance, e.status.value if e.status else None)
                for e in group
            ]
            result = self._upsert(
                "scorecard_entries",
                ("kpi_id", period_column, "entry_type", "actual_value", "variance", "status"),
                rows,
                ("kpi_id", period_column, "entry_type"),
            )
            failures.extend(_failures("entry", group, entry_key, result.failures))
        return failures

    def upsert_relative_mappings(self, mappings: Sequence[RelativeMapping]) -> list[RecordFailure]:
        rows = [(m.profile_id, m.owner_user_id, m.column_index, m.kpi_id, m.kpi_name, True) for m in mappings]
        result = self._upsert(
            "scorecard_cell_mappings",
            ("import_profile_id", "user_id", "col_index", "kpi_id", "kpi_name", "is_relative"),
            rows,
            ("import_profile_id", "user_id", "col_index"),
        )
        return _failures("relative_mapping", mappings, mapping_key, result.failures)

    def upsert_templates(self, templates: Sequence[ColumnTemplate]) -> list[RecordFailure]:
        rows = [(t.profile_id, t.column_index, t.kpi_name) for t in templates]
        result = self._upsert(
            "scorecard_column_templates",
            ("import_profile_id", "col_index", "kpi_name"),
            rows,
            ("import_profile_id", "col_index", "kpi_name"),
        )
        return _failures("template", templates, template_key, result.failures)

    def insert_import_log(self, record: ImportLogRecord) -> None:
        try:
            with self._conn.cursor() as cur:
                cur.execute("SAVEPOINT scorecard_log")
                cur.execute(
                    "INSERT INTO scorecard_import_logs (store_id, import_profile_id, department_id, file_name, "
                    "month, entries_imported, user_mappings, match_outcomes, unmatched_users, warnings, status, "
                    "import_source) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                    (
                        record.store_id,
                        record.profile_id,
                        record.department_id,
                        record.file_name,
                        record.period,
                        record.entry_count,
                        json.dumps(record.user_mappings, ensure_ascii=False),
                        json.dumps(record.match_outcomes, ensure_ascii=False),
                        json.dumps(list(record.unmatched_users), ensure_ascii=False),
                        json.dumps(list(record.warnings), ensure_ascii=False),
                        record.status.value,
                        record.import_source,
                    ),
                )
                cur.execute("RELEASE SAVEPOINT scorecard_log")
        except psycopg2.Error as e:
            self._rollback_to("scorecard_log")
            raise StoreError(str(e).strip()) from e
