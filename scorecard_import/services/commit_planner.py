from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import TypeVar

from ..db.store import ScorecardStore, StoreError, alias_key, entry_key, mapping_key, template_key
from ..logging.error_log import ErrorLogBuffer
from ..models.entries import ImportLogRecord, ImportStatus, ResolvedEntry, ScorecardEntry
from ..models.import_result import CommitPlan, CommitResult, RecordFailure
from ..models.mapping import ColumnTemplate, RelativeMapping
from .context import ReconciliationContext
from .entity_matcher import MatchReview
from .status import evaluate

"""Import commit planner.

``plan_commit`` is pure: it turns a finished review into the records to
write. ``execute_commit`` is the only place the store is written to. Each
record group is upserted independently and failures are collected per record,
so one bad entry does not keep the aliases or the other entries out.
"""

__all__ = [
    "to_scorecard_entries",
    "propose_templates",
    "build_import_log",
    "plan_commit",
    "execute_commit",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_scorecard_entries(
    resolved: Iterable[ResolvedEntry],
    context: ReconciliationContext,
) -> tuple[ScorecardEntry, ...]:
    """Attach variance/status and deduplicate on (kpi_id, period, entry_type); last wins."""
    by_key: dict[tuple[str, str, str], ScorecardEntry] = {}
    for entry in resolved:
        kpi = context.kpi(entry.kpi_id)
        variance, status = evaluate(entry.value, kpi) if kpi is not None else (None, None)
        by_key[entry.natural_key] = ScorecardEntry(
            kpi_id=entry.kpi_id,
            period=entry.period,
            entry_type=entry.entry_type,
            actual_value=entry.value,
            variance=variance,
            status=status,
        )
    return tuple(by_key.values())


def propose_templates(
    mappings: Iterable[RelativeMapping],
    context: ReconciliationContext,
) -> tuple[ColumnTemplate, ...]:
    """One template per (column, KPI name) saved under relative addressing, minus known ones."""
    known = {t.natural_key for t in context.templates}
    proposals: dict[tuple[str, int, str], ColumnTemplate] = {}
    for mapping in mappings:
        template = ColumnTemplate(
            profile_id=mapping.profile_id,
            column_index=mapping.column_index,
            kpi_name=mapping.kpi_name,
        )
        if template.natural_key in known:
            continue
        proposals[template.natural_key] = template
    return tuple(proposals.values())


def build_import_log(
    context: ReconciliationContext,
    review: MatchReview,
    file_name: str,
    entry_count: int,
    warnings: Sequence[str] = (),
) -> ImportLogRecord:
    committed = [m for m in review.matches if m.status.is_committable and m.user_id]
    unmatched = tuple(m.display_name for m in review.unmatched())
    return ImportLogRecord(
        store_id=context.store_id,
        profile_id=context.profile_id,
        department_id=context.department_id,
        file_name=file_name,
        period=context.period,
        entry_count=entry_count,
        user_mappings={m.display_name: m.user_id for m in committed},
        match_outcomes={m.display_name: m.status.value for m in review.matches},
        unmatched_users=unmatched,
        warnings=tuple(warnings),
        status=ImportStatus.PARTIAL if unmatched else ImportStatus.SUCCESS,
    )


def plan_commit(
    context: ReconciliationContext,
    review: MatchReview,
    resolved: Sequence[ResolvedEntry],
    file_name: str,
    pending_mappings: Sequence[RelativeMapping] = (),
    warnings: Sequence[str] = (),
    unresolved_columns: int = 0,
    derivations_skipped: int = 0,
) -> CommitPlan:
    entries = to_scorecard_entries(resolved, context)
    mappings: dict[tuple[str, str, int], RelativeMapping] = {m.natural_key: m for m in pending_mappings}
    return CommitPlan(
        aliases=review.alias_proposals(),
        entries=entries,
        relative_mappings=tuple(mappings.values()),
        templates=propose_templates(mappings.values(), context),
        import_log=build_import_log(context, review, file_name, len(entries), warnings),
        unresolved_columns=unresolved_columns,
        derivations_skipped=derivations_skipped,
    )


def _write_group(
    record_type: str,
    records: Sequence[T],
    upsert: Callable[[Sequence[T]], list[RecordFailure]],
    key: Callable[[T], str],
) -> tuple[int, list[RecordFailure]]:
    if not records:
        return 0, []
    try:
        failures = upsert(records)
    except StoreError as e:
        failures = [RecordFailure(record_type, key(r), str(e)) for r in records]
    return len(records) - len(failures), failures


def execute_commit(
    store: ScorecardStore,
    plan: CommitPlan,
    error_log: ErrorLogBuffer | None = None,
) -> CommitResult:
    """Write the plan. Failures are logged and folded into the import log, never raised."""
    start_time = datetime.now(UTC)
    file_name = plan.import_log.file_name if plan.import_log else "-"

    aliases_written, alias_failures = _write_group("alias", plan.aliases, store.upsert_aliases, alias_key)
    entries_written, entry_failures = _write_group("entry", plan.entries, store.upsert_entries, entry_key)
    mappings_written, mapping_failures = _write_group(
        "relative_mapping", plan.relative_mappings, store.upsert_relative_mappings, mapping_key
    )
    templates_written, template_failures = _write_group(
        "template", plan.templates, store.upsert_templates, template_key
    )
    failures = alias_failures + entry_failures + mapping_failures + template_failures

    for failure in failures:
        logger.warning("failed to save %s %s: %s", failure.record_type, failure.record_key, failure.message)
        if error_log is not None:
            error_log.append_failure(file_name, failure)

    import_log_written = False
    if plan.import_log is not None:
        record = plan.import_log
        if failures:
            status = ImportStatus.FAILED if plan.entries and entries_written == 0 else ImportStatus.PARTIAL
            record = replace(
                record,
                entry_count=entries_written,
                status=status,
                warnings=record.warnings + tuple(
                    f"{f.record_type} {f.record_key} not saved: {f.message}" for f in failures
                ),
            )
        try:
            store.insert_import_log(record)
            import_log_written = True
        except StoreError as e:
            failure = RecordFailure("import_log", file_name, str(e))
            failures.append(failure)
            logger.error("failed to write import log for %s: %s", file_name, e)
            if error_log is not None:
                error_log.append_failure(file_name, failure, error_type="IMPORT_LOG_FAILED")

    return CommitResult(
        aliases_written=aliases_written,
        entries_written=entries_written,
        mappings_written=mappings_written,
        templates_written=templates_written,
        import_log_written=import_log_written,
        failures=tuple(failures),
        start_time=start_time,
        end_time=datetime.now(UTC),
    )
