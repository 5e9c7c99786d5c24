from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path

from ..config.loader import ImportConfig
from ..db.store import ScorecardStore, StoreError
from ..excel.reader import (
    ReportReadError,
    extract_report_period,
    extract_report_start_date,
    extract_store_name,
    read_report_grid,
)
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.error_record import FILE_LEVEL_KEY
from ..models.grid import ClassifiedGrid, EntityId, RawGrid
from ..models.import_result import (
    CommitPlan,
    CommitResult,
    FileOutcome,
    FileStatus,
    RunResult,
    TemplateApplicationResult,
)
from ..models.mapping import RelativeMapping
from .classifier import (
    TECHNICIAN_HOURS,
    HeaderNotFound,
    ReportFormat,
    classify_grid,
    find_date_header_row,
    get_report_format,
)
from .column_resolver import ExtractionResult, extract_entries, standard_mappings
from .commit_planner import execute_commit, plan_commit
from .context import ReconciliationContext, build_context
from .derived_kpis import DerivationResult, compute_derived
from .entity_matcher import MatchReview, UnknownEntityError, match_entities
from .name_matcher import NameScorer, fuzzy_name_score
from .progress import ProgressTracker
from .technician_hours import dominant_month, extract_technician_entries, week_start
from .templates import apply_column_templates

"""Reconciliation orchestration.

    analyze_grid   raw grid -> Analysis (classification + entity matching)
    Analysis.*     review operations, each returning a new Analysis
    finalize       Analysis -> Reconciliation (values, derivations, commit plan)
    commit         writes the plan, then applies column templates (best effort)

Nothing is written before ``commit``; dropping an Analysis or Reconciliation
is how a review is cancelled. ``process_all`` runs the whole pipeline over a
directory of reports without human review: entities that need review are left
out of the commit and reported.
"""

__all__ = [
    "ProcessingError",
    "PeriodError",
    "Analysis",
    "Reconciliation",
    "CommitOutcome",
    "analyze_grid",
    "finalize",
    "commit",
    "reconcile_file",
    "process_all",
    "user_message",
    "scan_reports",
    "UnknownEntityError",
]

logger = logging.getLogger(__name__)

REPORT_SUFFIXES = (".xlsx", ".xls")


class ProcessingError(Exception):
    """Base exception for processing errors."""


class PeriodError(ProcessingError):
    """No usable period for one file; that file fails, the run goes on."""


@dataclass(frozen=True)
class Analysis:
    context: ReconciliationContext
    file_name: str
    grid: ClassifiedGrid
    review: MatchReview
    cell_mappings: tuple[RelativeMapping, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def no_entities_detected(self) -> bool:
        return self.grid.no_entities_detected

    def confirm(self, entity_id: EntityId) -> Analysis:
        return replace(self, review=self.review.confirm(entity_id))

    def skip(self, entity_id: EntityId) -> Analysis:
        return replace(self, review=self.review.skip(entity_id))

    def assign(self, entity_id: EntityId, user_id: str) -> Analysis:
        user = self.context.user(user_id)
        if user is None:
            raise ValueError(f"user {user_id} is not on the roster for store {self.context.store_id}")
        return replace(self, review=self.review.assign(entity_id, user_id, user.display_name))

    def map_cell(self, entity_id: EntityId, column_index: int, kpi_id: str) -> Analysis:
        """Save a relative mapping: this entity's owner, this column -> ``kpi_id``."""
        match = self.review.get(entity_id)
        owner = match.resolved_user_id
        if owner is None:
            raise ValueError(f"entity {entity_id} ({match.display_name!r}) has no confirmed user")
        kpi = self.context.kpi(kpi_id)
        if kpi is None:
            raise ValueError(f"unknown KPI: {kpi_id}")
        if kpi.assigned_to not in (owner, None):
            raise ValueError(f"KPI {kpi.name!r} belongs to another user")
        mapping = RelativeMapping(
            profile_id=self.context.profile_id,
            owner_user_id=owner,
            column_index=column_index,
            kpi_id=kpi.id,
            kpi_name=kpi.name,
        )
        kept = tuple(m for m in self.cell_mappings if m.natural_key != mapping.natural_key)
        return replace(self, cell_mappings=kept + (mapping,))


@dataclass(frozen=True)
class Reconciliation:
    analysis: Analysis
    extraction: ExtractionResult
    derivation: DerivationResult
    plan: CommitPlan


@dataclass(frozen=True)
class CommitOutcome:
    result: CommitResult
    templates: TemplateApplicationResult = field(default_factory=TemplateApplicationResult)


def analyze_grid(
    grid: RawGrid,
    context: ReconciliationContext,
    file_name: str,
    report_format: ReportFormat | None = None,
    header_fragments: Sequence[str] | None = None,
    totals_patterns: Sequence[str] | None = None,
    scorer: NameScorer = fuzzy_name_score,
) -> Analysis:
    """Classify ``grid`` and match its entities against the context.

    Raises:
        HeaderNotFound: the grid has no recognizable header row.
    """
    fmt = report_format or get_report_format(None)
    classified = classify_grid(grid, fmt, header_fragments=header_fragments, totals_patterns=totals_patterns)
    warnings: list[str] = []
    if classified.no_entities_detected:
        warnings.append("no advisor or technician rows detected; only department totals can be imported")
        logger.warning("%s: no entity rows detected", file_name)
    review = match_entities(classified.entities, context, scorer)
    return Analysis(
        context=context,
        file_name=file_name,
        grid=classified,
        review=review,
        warnings=tuple(warnings),
    )


def finalize(analysis: Analysis, sold_hours_label: str = "closed_hours") -> Reconciliation:
    """Resolve values for the committable entities and plan the commit.

    Technician reports are bucketed by day column; ``sold_hours_label`` picks
    the KPI their sold hours are written to.
    """
    context = analysis.context
    owners = analysis.review.owners()
    if analysis.grid.report_type == TECHNICIAN_HOURS.name:
        extraction = extract_technician_entries(analysis.grid, owners, context, sold_hours_label)
    else:
        extraction = extract_entries(analysis.grid, owners, context, analysis.cell_mappings)
    derivation = compute_derived(extraction.entries, context)

    warnings = list(analysis.warnings)
    pending = analysis.review.pending()
    if pending:
        warnings.append(f"{len(pending)} entities left unresolved: " + ", ".join(m.display_name for m in pending))
    if extraction.unresolved_columns:
        warnings.append(f"{extraction.unresolved_columns} columns had no mapping")
    if derivation.skipped_count:
        warnings.append(f"{derivation.skipped_count} derived KPIs skipped")

    plan = plan_commit(
        context,
        analysis.review,
        extraction.entries + derivation.entries,
        analysis.file_name,
        pending_mappings=analysis.cell_mappings,
        warnings=warnings,
        unresolved_columns=extraction.unresolved_columns,
        derivations_skipped=derivation.skipped_count,
    )
    return Reconciliation(analysis=analysis, extraction=extraction, derivation=derivation, plan=plan)


def commit(
    store: ScorecardStore,
    reconciliation: Reconciliation,
    error_log: ErrorLogBuffer | None = None,
) -> CommitOutcome:
    result = execute_commit(store, reconciliation.plan, error_log)
    analysis = reconciliation.analysis
    templates = apply_column_templates(
        store,
        analysis.context,
        analysis.review.owners().values(),
        extra_templates=reconciliation.plan.templates,
        skip_owners={m.owner_user_id for m in reconciliation.plan.relative_mappings},
    )
    if error_log is not None:
        for failure in templates.failures:
            error_log.append_failure(analysis.file_name, failure, error_type="TEMPLATE_APPLY_FAILED")
    return CommitOutcome(result=result, templates=templates)


def _current_period() -> str:
    now = datetime.now(UTC)
    return f"{now.year:04d}-{now.month:02d}"


def _resolve_period(
    grid: RawGrid,
    file_name: str,
    config: ImportConfig,
    period: str | None,
    report_format: ReportFormat,
) -> str:
    """Period for one file: ``YYYY-MM`` (monthly) or the ISO Monday of the week (weekly).

    Raises:
        PeriodError: weekly import without a week start date.
        HeaderNotFound: a technician report has no date header row.
    """
    weekly = config.entry_type == "weekly"
    if period:
        if not weekly:
            return period[:7]
        if len(period) != 10:
            raise PeriodError(f"{file_name}: weekly imports need a week start date (YYYY-MM-DD), got {period}")
        return week_start(period)

    if report_format.date_header:
        dates = [iso for _, iso in find_date_header_row(grid).date_columns]
        return week_start(dates[0]) if weekly else dominant_month(dates)

    if weekly:
        start = extract_report_start_date(grid)
        if start is None:
            raise PeriodError(f"{file_name}: no report date range found; pass --period YYYY-MM-DD for weekly imports")
        return week_start(start)

    found = extract_report_period(grid)
    if found:
        return found
    fallback = _current_period()
    logger.warning("%s: no report period found, using current month %s", file_name, fallback)
    return fallback


def _file_error(error_log: ErrorLogBuffer | None, file_name: str, error_type: str, message: str) -> None:
    if error_log is not None:
        error_log.append(ErrorRecord.create(file_name, "file", FILE_LEVEL_KEY, error_type, message))


async def reconcile_file(
    path: Path,
    store: ScorecardStore,
    config: ImportConfig,
    period: str | None = None,
    dry_run: bool = False,
    error_log: ErrorLogBuffer | None = None,
) -> FileOutcome:
    """Run one report through the unattended pipeline.

    Raises:
        ProcessingError: the snapshot could not be fetched from the store.
    """
    report_format = get_report_format(config.report_type)
    try:
        sheet = read_report_grid(path, report_type=report_format.name, sheet_name=config.sheet_name)
    except ReportReadError as e:
        _file_error(error_log, path.name, "FILE_READ_ERROR", str(e))
        return FileOutcome(file_name=path.name, status=FileStatus.FAILED, message=user_message(path.name, error=e))

    try:
        resolved_period = _resolve_period(sheet.grid, path.name, config, period, report_format)
    except PeriodError as e:
        _file_error(error_log, path.name, "PERIOD_NOT_FOUND", str(e))
        return FileOutcome(file_name=path.name, status=FileStatus.FAILED, message=user_message(path.name, error=e))
    except HeaderNotFound as e:
        _file_error(error_log, path.name, "HEADER_NOT_FOUND", str(e))
        return FileOutcome(file_name=path.name, status=FileStatus.FAILED, message=user_message(path.name, error=e))
    store_name = extract_store_name(sheet.grid)
    logger.info("%s: sheet=%r period=%s store=%s", path.name, sheet.sheet_name, resolved_period, store_name or "-")

    try:
        context = await build_context(
            store,
            store_id=config.store_id,
            profile_id=config.profile_id,
            department_id=config.department_id,
            period=resolved_period,
            entry_type=config.entry_type,
        )
    except StoreError as e:
        raise ProcessingError(f"cannot load reconciliation snapshot: {e}") from e

    try:
        analysis = analyze_grid(
            sheet.grid,
            context,
            path.name,
            report_format=report_format,
            header_fragments=config.header_fragments or None,
            totals_patterns=config.totals_patterns or None,
        )
    except HeaderNotFound as e:
        _file_error(error_log, path.name, "HEADER_NOT_FOUND", str(e))
        return FileOutcome(
            file_name=path.name,
            status=FileStatus.FAILED,
            period=resolved_period,
            message=user_message(path.name, error=e),
        )

    if config.use_standard_mappings and not context.absolute_mappings:
        defaults = standard_mappings(context.profile_id, analysis.grid.header)
        logger.debug("%s: using %d standard column mappings", path.name, len(defaults))
        analysis = replace(analysis, context=replace(context, absolute_mappings=defaults))

    reconciliation = finalize(analysis, sold_hours_label=config.technician_sold_hours_label)
    plan = reconciliation.plan
    review = analysis.review
    unmatched = tuple(m.display_name for m in review.unmatched())
    matched = len(review.owners())

    failures = 0
    written = 0
    committed = False
    if dry_run:
        logger.info("%s: dry run, %d entries planned, nothing written", path.name, len(plan.entries))
    else:
        outcome = commit(store, reconciliation, error_log)
        failures = len(outcome.result.failures) + len(outcome.templates.failures)
        written = outcome.result.entries_written
        committed = True

    needs_review = bool(unmatched) or failures > 0
    status = FileStatus.PARTIAL if needs_review else FileStatus.SUCCESS
    return FileOutcome(
        file_name=path.name,
        status=status,
        period=resolved_period,
        entities=len([m for m in review.matches if not m.is_totals_row]),
        matched=matched,
        unmatched=unmatched,
        entries_planned=len(plan.entries),
        entries_written=written,
        unresolved_columns=plan.unresolved_columns,
        derivations_skipped=plan.derivations_skipped,
        record_failures=failures,
        message=user_message(path.name, unmatched=len(unmatched), unresolved_columns=plan.unresolved_columns,
                             record_failures=failures),
        committed=committed,
    )


def user_message(
    file_name: str,
    error: Exception | None = None,
    unmatched: int = 0,
    unresolved_columns: int = 0,
    record_failures: int = 0,
) -> str:
    """Operator-facing message for one file."""
    if isinstance(error, HeaderNotFound):
        return (
            f"Could not read {file_name} at all: no column header row was found. "
            f"Check that this is a productivity report export."
        )
    if error is not None:
        return f"Could not read {file_name} at all: {error}"
    if not unmatched and not record_failures:
        if unresolved_columns:
            return f"Imported {file_name} ({unresolved_columns} columns had no mapping and were skipped)."
        return f"Imported {file_name}."
    problems = []
    if unmatched:
        problems.append(f"{unmatched} people could not be matched")
    if unresolved_columns:
        problems.append(f"{unresolved_columns} columns have no mapping")
    if record_failures:
        problems.append(f"{record_failures} records could not be saved")
    return (
        f"Read {file_name}, but some rows/columns could not be resolved automatically "
        f"({'; '.join(problems)}). Please review."
    )


def scan_reports(directory: Path) -> list[Path]:
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix.lower() in REPORT_SUFFIXES and not p.name.startswith("~$")
    )


async def _process_files(
    files: Sequence[Path],
    store: ScorecardStore,
    config: ImportConfig,
    period: str | None,
    dry_run: bool,
    error_log: ErrorLogBuffer,
) -> list[FileOutcome]:
    outcomes: list[FileOutcome] = []
    with ProgressTracker(len(files)) as progress:
        for path in files:
            progress.start_file(path)
            outcome = await reconcile_file(path, store, config, period=period, dry_run=dry_run, error_log=error_log)
            if outcome.status == FileStatus.FAILED:
                logger.error(outcome.message)
            elif outcome.status == FileStatus.PARTIAL:
                logger.warning(outcome.message)
            else:
                logger.info(outcome.message)
            error_log.flush()
            outcomes.append(outcome)
            progress.finish_file(status=outcome.status.value)
    return outcomes


def process_all(
    config: ImportConfig,
    store: ScorecardStore,
    period: str | None = None,
    dry_run: bool = False,
    files: Sequence[Path] | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> RunResult:
    """Reconcile every report in ``config.source_directory`` (or ``files``).

    Raises:
        ProcessingError: the source directory is missing or the store is unreachable.
    """
    if files is None:
        directory = Path(config.source_directory)
        if not directory.is_dir():
            raise ProcessingError(f"directory not found: {directory}")
        files = scan_reports(directory)
    buffer = error_log if error_log is not None else ErrorLogBuffer()

    start = datetime.now(UTC)
    outcomes = asyncio.run(_process_files(files, store, config, period, dry_run, buffer))
    end = datetime.now(UTC)
    return RunResult(files=tuple(outcomes), start_time=start, end_time=end)

