from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import psycopg2
from psycopg2.extras import execute_values

"""Batched upsert on natural keys.

``INSERT ... VALUES %s ON CONFLICT (keys) DO UPDATE`` through
psycopg2.extras.execute_values. The batch runs inside a savepoint; if it
fails, the savepoint is rolled back and the rows are retried one by one, each
in its own savepoint, so the failing rows are identified and the rest are
still written. The surrounding transaction is left to the caller.
"""

__all__ = [
    "BatchUpsertError",
    "BatchMetrics",
    "UpsertResult",
    "build_upsert_sql",
    "batch_upsert",
    "upsert_with_fallback",
]

logger = logging.getLogger(__name__)


class BatchUpsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    table: str
    batch_size: int
    elapsed_seconds: float


@dataclass(frozen=True)
class UpsertResult:
    written: int
    # (row position in the input, error message)
    failures: tuple[tuple[int, str], ...] = ()


def build_upsert_sql(
    table: str,
    columns: Sequence[str],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str] | None = None,
) -> str:
    """SQL for execute_values; ``update_columns`` defaults to every non-key column."""
    cols_sql = ",".join(f'"{c}"' for c in columns)
    keys_sql = ",".join(f'"{c}"' for c in conflict_columns)
    updates = [c for c in (update_columns if update_columns is not None else columns) if c not in conflict_columns]
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s ON CONFLICT ({keys_sql}) "
    if not updates:
        return sql + "DO NOTHING"
    return sql + "DO UPDATE SET " + ",".join(f'"{c}" = EXCLUDED."{c}"' for c in updates)


def batch_upsert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str] | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> int:
    """Upsert ``rows`` in one execute_values call.

    Raises:
        BatchUpsertError: the statement failed (the cursor's transaction is then aborted).
    """
    if not rows:
        return 0
    sql = build_upsert_sql(table, columns, conflict_columns, update_columns)
    start = time.perf_counter()
    try:
        execute_values(cursor, sql, [tuple(r) for r in rows], page_size=page_size)
    except psycopg2.Error as e:
        raise BatchUpsertError(str(e).strip()) from e
    finally:
        if metrics_callback is not None:
            metrics_callback(BatchMetrics(table, len(rows), time.perf_counter() - start))
    return len(rows)


def upsert_with_fallback(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str] | None = None,
    page_size: int = 1000,
) -> UpsertResult:
    """Batch upsert; on failure retry row by row and report the rows that still fail.

    Raises:
        BatchUpsertError: a savepoint statement itself failed (connection-level problem).
    """
    if not rows:
        return UpsertResult(written=0)

    _savepoint(cursor, "SAVEPOINT scorecard_batch")
    try:
        written = batch_upsert(cursor, table, columns, rows, conflict_columns, update_columns, page_size)
    except BatchUpsertError as e:
        logger.debug("batch upsert into %s failed, retrying per row: %s", table, e)
        _savepoint(cursor, "ROLLBACK TO SAVEPOINT scorecard_batch")
    else:
        _savepoint(cursor, "RELEASE SAVEPOINT scorecard_batch")
        return UpsertResult(written=written)

    failures: list[tuple[int, str]] = []
    written = 0
    for position, row in enumerate(rows):
        _savepoint(cursor, "SAVEPOINT scorecard_row")
        try:
            batch_upsert(cursor, table, columns, [row], conflict_columns, update_columns)
        except BatchUpsertError as e:
            _savepoint(cursor, "ROLLBACK TO SAVEPOINT scorecard_row")
            failures.append((position, str(e)))
            continue
        _savepoint(cursor, "RELEASE SAVEPOINT scorecard_row")
        written += 1
    return UpsertResult(written=written, failures=tuple(failures))


def _savepoint(cursor: Any, statement: str) -> None:
    try:
        cursor.execute(statement)
    except psycopg2.Error as e:
        raise BatchUpsertError(f"{statement} failed: {e}") from e
