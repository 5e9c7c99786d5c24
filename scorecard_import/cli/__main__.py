from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path

from dotenv import load_dotenv

from scorecard_import.config.loader import ConfigError, ImportConfig, load_config
from scorecard_import.db.memory import InMemoryScorecardStore
from scorecard_import.db.postgres import PgScorecardStore, connect
from scorecard_import.db.store import StoreError
from scorecard_import.excel.reader import ReportReadError, extract_report_period, read_report_grid
from scorecard_import.logging.error_log import ErrorLogBuffer
from scorecard_import.logging.init import log_summary, setup_logging
from scorecard_import.models.import_result import RunResult
from scorecard_import.services.classifier import HeaderNotFound, classify_grid, get_report_format
from scorecard_import.services.orchestrator import ProcessingError, process_all, scan_reports
from scorecard_import.services.summary import render_summary_line

"""CLI entrypoint.

    python -m scorecard_import.cli [--config PATH] [--file PATH] [--period YYYY-MM]
                                   [--dry-run] [--debug] [--inspect-data]

Exit codes:
    0  every file imported, every entity resolved, every record saved
    2  partial: a file could not be read, entities need review, or records failed
    1  fatal: config error, store unreachable, processing error

``DISABLE_DB_CONNECT=1`` runs against an empty in-memory store (mock mode).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])(-\d{2})?$")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="scorecard_import",
        description="Reconcile dealership productivity reports into scorecard entries",
    )
    p.add_argument("--config", type=Path, default=Path("config/import.yml"), help="YAML config path")
    p.add_argument("--file", type=Path, help="Reconcile a single report instead of the source directory")
    p.add_argument("--period", help="Report period (YYYY-MM, or YYYY-MM-DD week start for weekly)")
    p.add_argument("--dry-run", action="store_true", help="Plan the import without writing anything")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print header row and entities then exit")
    return p.parse_args(argv)


def _report_files(cfg: ImportConfig, single: Path | None) -> list[Path]:
    if single is not None:
        if not single.is_file():
            raise ProcessingError(f"file not found: {single}")
        return [single]
    directory = Path(cfg.source_directory)
    if not directory.is_dir():
        raise ProcessingError(f"directory not found: {directory}")
    return scan_reports(directory)


def _inspect_data(cfg: ImportConfig, files: list[Path]) -> int:
    if not files:
        print("inspect: no report files")
        return EXIT_SUCCESS_ALL
    report_format = get_report_format(cfg.report_type)
    for f in files:
        print(f"FILE: {f.name}")
        try:
            sheet = read_report_grid(f, report_type=report_format.name, sheet_name=cfg.sheet_name)
            classified = classify_grid(
                sheet.grid,
                report_format,
                header_fragments=cfg.header_fragments or None,
                totals_patterns=cfg.totals_patterns or None,
            )
        except (ReportReadError, HeaderNotFound) as e:
            print(f"  error={e}")
            continue
        print(f"  SHEET: {sheet.sheet_name} period={extract_report_period(sheet.grid) or '-'}")
        print(f"  HEADER: row={classified.header.row_index} cols={[c.header for c in classified.header.columns]}")
        for entity in classified.entities:
            flag = " (totals)" if entity.is_totals_row else ""
            segment = classified.segment_for(entity.entity_id)
            rows = len(segment.rows) if segment else 0
            print(f"    {entity.entity_id}: {entity.display_name!r} row={entity.row_index} data_rows={rows}{flag}")
    return EXIT_SUCCESS_ALL


def _exit_code(result: RunResult) -> int:
    if result.failed_files or result.partial_files:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # Only read sys.argv when no list is given; an empty list means "no arguments"
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.period and not PERIOD_RE.match(args.period):
        logger.error(f"invalid --period {args.period!r}; expected YYYY-MM or YYYY-MM-DD")
        return EXIT_FATAL

    try:
        files = _report_files(cfg, args.file)
    except ProcessingError as e:
        logger.error(str(e))
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(cfg, files)

    logger.info(f"Reconciling {len(files)} report(s) for store={cfg.store_id} profile={cfg.profile_id}")
    error_log = ErrorLogBuffer()

    db_mode = "live"
    try:
        if os.getenv("DISABLE_DB_CONNECT") == "1":
            db_mode = "mock"
            logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
            result = process_all(cfg, InMemoryScorecardStore(), period=args.period, dry_run=args.dry_run,
                                 files=files, error_log=error_log)
        else:
            with connect(cfg.database) as conn:
                result = process_all(cfg, PgScorecardStore(conn), period=args.period, dry_run=args.dry_run,
                                     files=files, error_log=error_log)
    except StoreError as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except ProcessingError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL

    if error_log.file_path.exists():
        logger.info(f"error log: {error_log.file_path}")
    logger.info(f"mode={db_mode} dry_run={args.dry_run} entries={result.total_entries}")
    # render_summary_line includes the label; log_summary adds it again
    log_summary(render_summary_line(result).removeprefix("SUMMARY "))
    return _exit_code(result)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
