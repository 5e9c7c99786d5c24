from __future__ import annotations

import json
from pathlib import Path

import pytest

from scorecard_import.config.loader import load_config
from scorecard_import.db.memory import InMemoryScorecardStore
from scorecard_import.db.store import StoreError
from scorecard_import.logging.error_log import ErrorLogBuffer
from scorecard_import.models import FileStatus
from scorecard_import.services.orchestrator import process_all
from tests.helpers import TECH_ROSTER, csr_grid, technician_grid, technician_kpis, write_report

"""Directory runs against the in-memory store, from config file to SUMMARY counts."""


def _run(write_config: Path, store: InMemoryScorecardStore, **kwargs):
    cfg = load_config(write_config)
    return process_all(cfg, store, error_log=ErrorLogBuffer(), **kwargs)


def test_end_to_end_success(write_config, temp_workdir: Path, seeded_store: InMemoryScorecardStore):
    write_report(temp_workdir / "data" / "march.xlsx", csr_grid())
    result = _run(write_config, seeded_store)

    assert [f.status for f in result.files] == [FileStatus.SUCCESS]
    outcome = result.files[0]
    assert outcome.period == "2025-03"
    assert outcome.entities == 2
    assert outcome.matched == 2
    assert outcome.entries_written == 6
    assert result.total_entries == 6

    saved = {e.kpi_id: e.actual_value for e in seeded_store.entries.values()}
    assert saved["U1-cp-ros"] == 45
    assert saved["U1-cp-hours"] == 110
    assert saved["U1-cp-labour-sales"] == 11000
    # derived from the three imported values
    assert saved["U1-cp-elr"] == 100
    assert saved["U1-cp-hours-per-ro"] == 2.4
    assert saved["U1-cp-labour-sales-per-ro"] == pytest.approx(11000 / 45)
    assert not list((temp_workdir / "logs").glob("errors-*.log"))


def test_end_to_end_rerun_is_idempotent(write_config, temp_workdir: Path, seeded_store: InMemoryScorecardStore):
    write_report(temp_workdir / "data" / "march.xlsx", csr_grid())
    _run(write_config, seeded_store)
    first = dict(seeded_store.entries)
    second = _run(write_config, seeded_store)
    assert second.files[0].status == FileStatus.SUCCESS
    assert set(seeded_store.entries) == set(first)
    assert {k: e.actual_value for k, e in seeded_store.entries.items()} == {
        k: e.actual_value for k, e in first.items()
    }


def test_end_to_end_mixed_directory(write_config, temp_workdir: Path, seeded_store: InMemoryScorecardStore):
    write_report(temp_workdir / "data" / "a_march.xlsx", csr_grid())
    write_report(temp_workdir / "data" / "b_memo.xlsx", [["Quarterly memo"], ["nothing to see"]])
    (temp_workdir / "data" / "c_notes.txt").write_text("ignored", encoding="utf-8")

    result = _run(write_config, seeded_store)
    assert [f.file_name for f in result.files] == ["a_march.xlsx", "b_memo.xlsx"]
    assert result.success_files == 1
    assert result.failed_files == 1

    log_files = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(log_files) == 1
    records = [json.loads(line) for line in log_files[0].read_text(encoding="utf-8").splitlines()]
    assert [(r["file"], r["error_type"]) for r in records] == [("b_memo.xlsx", "HEADER_NOT_FOUND")]


def test_end_to_end_per_record_failure(
    write_config, temp_workdir: Path, seeded_store: InMemoryScorecardStore, monkeypatch
):
    write_report(temp_workdir / "data" / "march.xlsx", csr_grid())
    original = seeded_store.upsert_entries

    def failing_upsert(entries):
        # first call fails; nothing else is affected
        monkeypatch.setattr(seeded_store, "upsert_entries", original)
        raise StoreError("deadlock detected")

    monkeypatch.setattr(seeded_store, "upsert_entries", failing_upsert)
    result = _run(write_config, seeded_store)

    outcome = result.files[0]
    assert outcome.status == FileStatus.PARTIAL
    assert outcome.record_failures > 0
    assert "could not be saved" in outcome.message
    log_files = list((temp_workdir / "logs").glob("errors-*.log"))
    assert log_files
    assert "deadlock detected" in log_files[0].read_text(encoding="utf-8")


def test_weekly_run_keeps_going_past_a_file_without_period(
    write_config, temp_workdir: Path, seeded_store: InMemoryScorecardStore
):
    write_config.write_text(
        write_config.read_text(encoding="utf-8").replace("entry_type: monthly", "entry_type: weekly"),
        encoding="utf-8",
    )
    write_report(temp_workdir / "data" / "a_week.xlsx", csr_grid())
    undated = [row for row in csr_grid() if "CSR Productivity" not in str(row[:1])]
    write_report(temp_workdir / "data" / "b_undated.xlsx", undated)
    write_report(temp_workdir / "data" / "c_week.xlsx", csr_grid())

    result = _run(write_config, seeded_store)
    assert [(f.file_name, f.status) for f in result.files] == [
        ("a_week.xlsx", FileStatus.SUCCESS),
        ("b_undated.xlsx", FileStatus.FAILED),
        ("c_week.xlsx", FileStatus.SUCCESS),
    ]
    assert result.files[0].period == result.files[2].period == "2025-02-24"
    assert {k[1:] for k in seeded_store.entries} == {("2025-02-24", "weekly")}

    log_files = list((temp_workdir / "logs").glob("errors-*.log"))
    records = [json.loads(line) for line in log_files[0].read_text(encoding="utf-8").splitlines()]
    assert [(r["file"], r["error_type"]) for r in records] == [("b_undated.xlsx", "PERIOD_NOT_FOUND")]


def test_technician_report_end_to_end(write_config, temp_workdir: Path):
    write_config.write_text(
        write_config.read_text(encoding="utf-8").replace("report_type: csr_productivity", "report_type: technician_hours"),
        encoding="utf-8",
    )
    store = InMemoryScorecardStore()
    store.roster["S1"] = list(TECH_ROSTER)
    store.kpis["D1"] = technician_kpis("T1") + technician_kpis("T2")
    write_report(temp_workdir / "data" / "tech.xlsx", technician_grid(), sheet_name="Tech Hours")

    result = _run(write_config, store)
    assert result.files[0].status == FileStatus.SUCCESS
    assert result.total_entries == 12
    saved = {(e.kpi_id, e.period): e.actual_value for e in store.entries.values()}
    assert saved[("T1-available-hours", "2025-03")] == 24.0
    assert saved[("T1-productive", "2025-03")] == 104.17
    assert saved[("T2-closed-hours", "2025-04")] == 15.0
