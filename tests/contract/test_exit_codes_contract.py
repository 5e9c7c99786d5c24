from __future__ import annotations

from pathlib import Path

from scorecard_import.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS_ALL
from scorecard_import.cli.__main__ import main as cli_main
from tests.helpers import csr_grid, write_report

"""Exit code contract: 0 all imported, 2 partial, 1 fatal."""


def test_exit_code_values():
    assert (EXIT_SUCCESS_ALL, EXIT_PARTIAL_FAILURE, EXIT_FATAL) == (0, 2, 1)


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    # no config/import.yml
    code = cli_main([])
    assert code == EXIT_FATAL
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_partial_when_entities_unmatched(write_config, temp_workdir: Path, capsys, monkeypatch):
    # the mock store has an empty roster, so nobody can be matched
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    write_report(temp_workdir / "data" / "march.xlsx", csr_grid())
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert "SUMMARY files=1/1 success=0 partial=1 failed=0 entities=2 matched=0 unmatched=2" in out


def test_exit_code_partial_when_file_unreadable(write_config, temp_workdir: Path, capsys, monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    (temp_workdir / "data" / "broken.xlsx").write_bytes(b"not a workbook")
    code = cli_main([])
    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert "failed=1" in out
    assert list((temp_workdir / "logs").glob("errors-*.log"))


def test_exit_code_success_dry_run_without_entities(write_config, temp_workdir: Path, capsys, monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    write_report(temp_workdir / "data" / "totals.xlsx", [["Pay Type", "#SO", "Sold Hrs"], ["Grand Total"], ["Total", 4, 9]])
    code = cli_main(["--dry-run", "--period", "2025-03"])
    assert code == EXIT_SUCCESS_ALL
    assert "success=1" in capsys.readouterr().out


def test_exit_code_partial_when_weekly_file_has_no_period(write_config, temp_workdir: Path, capsys, monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    write_config.write_text(
        write_config.read_text(encoding="utf-8").replace("entry_type: monthly", "entry_type: weekly"),
        encoding="utf-8",
    )
    write_report(temp_workdir / "data" / "a_week.xlsx", csr_grid())
    write_report(temp_workdir / "data" / "b_undated.xlsx", [["Pay Type", "#SO", "Sold Hrs"], ["Grand Total"]])
    code = cli_main(["--dry-run"])
    out = capsys.readouterr().out
    assert code == EXIT_PARTIAL_FAILURE
    assert "SUMMARY files=2/2" in out
    assert "failed=1" in out
