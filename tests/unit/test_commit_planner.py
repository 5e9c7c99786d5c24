from __future__ import annotations

from pathlib import Path

import pytest

from scorecard_import.db.memory import InMemoryScorecardStore
from scorecard_import.db.store import StoreError
from scorecard_import.logging.error_log import ErrorLogBuffer
from scorecard_import.models import (
    Alias,
    ColumnTemplate,
    EntityId,
    EntityRow,
    EntryStatus,
    ImportStatus,
    KPIDefinition,
    RelativeMapping,
    ResolvedEntry,
    RosterUser,
)
from scorecard_import.services.commit_planner import (
    build_import_log,
    execute_commit,
    plan_commit,
    propose_templates,
    to_scorecard_entries,
)
from scorecard_import.services.entity_matcher import match_entities
from tests.helpers import make_context


def _review(ctx, names):
    entities = [
        EntityRow(EntityId(f"entity-{i}"), i, name, name, is_totals_row=name.startswith("All "))
        for i, name in enumerate(names, start=1)
    ]
    return match_entities(entities, ctx)


def _plan(ctx=None):
    ctx = ctx or make_context(roster=(RosterUser("U1", "Kayla Bender"), RosterUser("U9", "J. Doe")))
    review = _review(ctx, ["Kayla Bender", "Jane Doe"]).confirm(EntityId("entity-2"))
    resolved = [
        ResolvedEntry("U1-cp-hours", "2025-03", 110.0, owner_user_id="U1"),
        ResolvedEntry("U1-cp-ros", "2025-03", 45.0, owner_user_id="U1"),
    ]
    mappings = [RelativeMapping("P1", "U1", 4, "U1-cp-elr", "CP ELR")]
    return plan_commit(ctx, review, resolved, "march.xlsx", pending_mappings=mappings, warnings=["w1"])


def test_to_scorecard_entries_dedups_last_wins_and_evaluates():
    ctx = make_context(kpis=(KPIDefinition("K1", "CP Hours", target_value=100.0),))
    entries = to_scorecard_entries(
        [
            ResolvedEntry("K1", "2025-03", 80.0),
            ResolvedEntry("K1", "2025-03", 95.0),
            ResolvedEntry("K1", "2025-02", 120.0),
        ],
        ctx,
    )
    assert [(e.period, e.actual_value) for e in entries] == [("2025-03", 95.0), ("2025-02", 120.0)]
    assert entries[0].variance == pytest.approx(-5.0)
    assert entries[0].status == EntryStatus.YELLOW
    assert entries[1].status == EntryStatus.GREEN


def test_to_scorecard_entries_unknown_kpi_has_no_status():
    (entry,) = to_scorecard_entries([ResolvedEntry("missing", "2025-03", 1.0)], make_context())
    assert entry.variance is None
    assert entry.status is None


def test_propose_templates_skips_known():
    ctx = make_context(templates=(ColumnTemplate("P1", 2, "cp hours"),))
    templates = propose_templates(
        [
            RelativeMapping("P1", "U1", 2, "U1-cp-hours", "CP Hours"),
            RelativeMapping("P1", "U2", 3, "U2-cp-labour-sales", "CP Labour Sales"),
            RelativeMapping("P1", "U1", 3, "U1-cp-labour-sales", "CP Labour Sales"),
        ],
        ctx,
    )
    assert templates == (ColumnTemplate("P1", 3, "CP Labour Sales"),)


def test_plan_commit_contents():
    plan = _plan()
    assert [a.normalized_name for a in plan.aliases] == ["jane doe"]
    assert len(plan.entries) == 2
    assert plan.relative_mappings == (RelativeMapping("P1", "U1", 4, "U1-cp-elr", "CP ELR"),)
    assert plan.templates == (ColumnTemplate("P1", 4, "CP ELR"),)
    log = plan.import_log
    assert log.file_name == "march.xlsx"
    assert log.entry_count == 2
    assert log.user_mappings == {"Kayla Bender": "U1", "Jane Doe": "U9"}
    assert log.match_outcomes == {"Kayla Bender": "auto_confirmed", "Jane Doe": "confirmed"}
    assert log.status == ImportStatus.SUCCESS
    assert log.warnings == ("w1",)


def test_import_log_partial_when_entities_unmatched():
    ctx = make_context()
    review = _review(ctx, ["Kayla Bender", "Zed Quinn", "All Repair Orders"])
    log = build_import_log(ctx, review, "f.xlsx", 0)
    assert log.status == ImportStatus.PARTIAL
    assert log.unmatched_users == ("Zed Quinn",)


def test_execute_commit_round_trip_is_idempotent():
    store = InMemoryScorecardStore()
    plan = _plan()
    first = execute_commit(store, plan)
    snapshot = dict(store.entries)
    second = execute_commit(store, plan)

    assert first.entries_written == second.entries_written == 2
    assert first.aliases_written == 1
    assert first.mappings_written == 1
    assert first.templates_written == 1
    assert not first.has_failures
    assert store.entries == snapshot
    assert len(store.aliases) == 1
    assert len(store.relative_mappings) == 1
    assert len(store.import_logs) == 2


def test_execute_commit_record_failure_does_not_block_others(temp_workdir: Path):
    store = InMemoryScorecardStore(reject_keys={"U1-cp-hours/2025-03/monthly"})
    error_log = ErrorLogBuffer(temp_workdir / "logs")
    result = execute_commit(store, _plan(), error_log)

    assert result.entries_written == 1
    assert result.aliases_written == 1
    assert [f.record_type for f in result.failures] == ["entry"]
    assert list(store.entries) == [("U1-cp-ros", "2025-03", "monthly")]

    log = store.import_logs[0]
    assert log.status == ImportStatus.PARTIAL
    assert log.entry_count == 1
    assert any("not saved" in w for w in log.warnings)

    (record,) = error_log.records
    assert record.file == "march.xlsx"
    assert record.record_type == "entry"
    assert record.error_type == "UPSERT_FAILED"


def test_execute_commit_all_entries_failed_marks_log_failed():
    store = InMemoryScorecardStore(
        reject_keys={
            "U1-cp-hours/2025-03/monthly",
            "U1-cp-ros/2025-03/monthly",
        }
    )
    execute_commit(store, _plan())
    assert store.import_logs[0].status == ImportStatus.FAILED


def test_execute_commit_group_error_fails_each_record():
    class BrokenAliases(InMemoryScorecardStore):
        def upsert_aliases(self, aliases):
            raise StoreError("alias table locked")

    store = BrokenAliases()
    result = execute_commit(store, _plan())
    assert result.aliases_written == 0
    assert result.entries_written == 2
    assert [(f.record_type, f.message) for f in result.failures] == [("alias", "alias table locked")]


def test_execute_commit_import_log_failure_is_reported():
    store = InMemoryScorecardStore(fail_import_log=True)
    error_log = ErrorLogBuffer()
    result = execute_commit(store, _plan(), error_log)
    assert not result.import_log_written
    assert result.entries_written == 2
    assert result.failures[-1].record_type == "import_log"
    assert error_log.records[-1].error_type == "IMPORT_LOG_FAILED"


def test_alias_proposal_for_existing_alias_is_not_repeated():
    ctx = make_context(aliases=(Alias("S1", "jane doe", "U9"),), roster=(RosterUser("U9", "J. Doe"),))
    plan = plan_commit(ctx, _review(ctx, ["Jane Doe"]), [], "f.xlsx")
    assert plan.aliases == ()
    assert plan.is_empty
