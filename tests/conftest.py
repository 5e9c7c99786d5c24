# Shared pytest fixtures
from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from scorecard_import.db.memory import InMemoryScorecardStore
from scorecard_import.logging.init import reset_logging
from scorecard_import.models import Alias
from scorecard_import.services.context import ReconciliationContext
from tests.helpers import DEPARTMENT_ID, ROSTER, STORE_ID, all_kpis, make_context, relative_mappings_for


@pytest.fixture(autouse=True)
def _reset_logging():
    # setup_logging binds its handler to the sys.stdout of the moment
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("PGDSN", raising=False)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
store_id: S1
profile_id: P1
department_id: D1
report_type: csr_productivity
entry_type: monthly
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def context() -> ReconciliationContext:
    return make_context()


@pytest.fixture()
def seeded_store() -> InMemoryScorecardStore:
    """Roster and KPIs, an alias for Marcus, relative mappings for Kayla."""
    store = InMemoryScorecardStore()
    store.roster[STORE_ID] = list(ROSTER)
    store.kpis[DEPARTMENT_ID] = list(all_kpis())
    store.add_alias(Alias(STORE_ID, "marcus lee", "U2"))
    for mapping in relative_mappings_for("U1", "U1"):
        store.add_relative_mapping(mapping)
    return store
