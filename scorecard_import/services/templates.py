from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from ..db.store import ScorecardStore, StoreError, mapping_key
from ..models.import_result import RecordFailure, TemplateApplicationResult
from ..models.mapping import ColumnTemplate, RelativeMapping
from .context import ReconciliationContext

"""Column template application for newly linked owners.

Runs after the primary commit. Each mapping is upserted on its own, and a
failure only costs that mapping: nothing already written is rolled back.
"""

__all__ = [
    "mappings_from_templates",
    "apply_column_templates",
]

logger = logging.getLogger(__name__)


def mappings_from_templates(
    owner_user_id: str,
    templates: Iterable[ColumnTemplate],
    context: ReconciliationContext,
) -> list[RelativeMapping]:
    """Relative mappings for ``owner_user_id`` from templates naming one of the owner's KPIs."""
    mappings: dict[int, RelativeMapping] = {}
    for template in templates:
        if template.profile_id != context.profile_id:
            continue
        kpi = context.kpi_by_name(template.kpi_name, owner_user_id)
        if kpi is None:
            continue
        # First template per column wins
        mappings.setdefault(
            template.column_index,
            RelativeMapping(
                profile_id=context.profile_id,
                owner_user_id=owner_user_id,
                column_index=template.column_index,
                kpi_id=kpi.id,
                kpi_name=kpi.name,
            ),
        )
    return list(mappings.values())


def apply_column_templates(
    store: ScorecardStore,
    context: ReconciliationContext,
    owner_ids: Iterable[str],
    extra_templates: Sequence[ColumnTemplate] = (),
    skip_owners: Iterable[str] = (),
) -> TemplateApplicationResult:
    """Seed relative mappings for owners that have none yet.

    ``extra_templates`` are templates proposed by the commit that just ran.
    ``skip_owners`` are owners that received relative mappings in that commit.
    """
    templates = tuple(context.templates) + tuple(extra_templates)
    skip = set(skip_owners)
    linked: list[str] = []
    created: list[RelativeMapping] = []
    failures: list[RecordFailure] = []

    for owner in dict.fromkeys(owner_ids):
        if owner in skip or context.has_relative_mappings(owner):
            continue
        mappings = mappings_from_templates(owner, templates, context)
        if not mappings:
            continue
        linked.append(owner)
        for mapping in mappings:
            try:
                mapping_failures = store.upsert_relative_mappings([mapping])
            except StoreError as e:
                mapping_failures = [RecordFailure("relative_mapping", mapping_key(mapping), str(e))]
            if mapping_failures:
                for failure in mapping_failures:
                    logger.warning("template mapping %s not saved: %s", failure.record_key, failure.message)
                failures.extend(mapping_failures)
                continue
            created.append(mapping)

    if created:
        logger.info("applied column templates: %d mappings for %d owners", len(created), len(linked))
    return TemplateApplicationResult(
        owners_linked=tuple(linked),
        mappings_created=tuple(created),
        failures=tuple(failures),
    )
