from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from ..models.entries import EntrySource, ResolvedEntry
from .context import ReconciliationContext

"""Derived KPI calculator.

A derived KPI is numerator / denominator of two other KPIs owned by the same
user for the same period. Inputs are looked up strictly by owner; an unowned
KPI of the same name is never used in place of the owner's own.

Rules are evaluated once each, in table order. A value computed earlier in the
pass is visible to later rules but is never recomputed. A KPI whose
``depends_on`` names exactly two KPIs (numerator, denominator) adds a rule
after the table unless the table already derives it.
"""

__all__ = [
    "DerivationRule",
    "DerivationSkip",
    "DerivationResult",
    "DERIVATION_RULES",
    "derivation_rules",
    "derive_for_owner",
    "compute_derived",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DerivationRule:
    result: str
    numerator: str
    denominator: str
    decimals: int | None = None  # None = full precision


DERIVATION_RULES: tuple[DerivationRule, ...] = (
    DerivationRule("CP Labour Sales Per RO", "CP Labour Sales", "CP RO's"),
    DerivationRule("CP Hours Per RO", "CP Hours", "CP RO's", decimals=1),
    DerivationRule("CP ELR", "CP Labour Sales", "CP Hours"),
)


def derivation_rules(
    context: ReconciliationContext,
    base: Sequence[DerivationRule] = DERIVATION_RULES,
) -> tuple[DerivationRule, ...]:
    """``base`` plus one rule per two-input ``depends_on`` KPI in the context."""
    known = {" ".join(r.result.lower().split()) for r in base}
    extra: list[DerivationRule] = []
    for kpi in context.kpis:
        if len(kpi.depends_on) != 2 or kpi.normalized_name in known:
            continue
        known.add(kpi.normalized_name)
        extra.append(DerivationRule(kpi.name, kpi.depends_on[0], kpi.depends_on[1]))
    return tuple(base) + tuple(extra)


@dataclass(frozen=True)
class DerivationSkip:
    owner_user_id: str | None
    kpi_name: str
    reason: str  # missing_input | zero_denominator


@dataclass(frozen=True)
class DerivationResult:
    entries: tuple[ResolvedEntry, ...] = ()
    skipped: tuple[DerivationSkip, ...] = ()

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def derive_for_owner(
    owner_user_id: str | None,
    changed: Mapping[str, float],
    context: ReconciliationContext,
    rules: Sequence[DerivationRule] | None = None,
) -> DerivationResult:
    """Derive the owner's dependent KPIs from the values written in this pass.

    ``changed`` maps KPI id -> value for this owner and period. Values not in
    it are read from the context snapshot.
    """
    owned_ids = {k.id for k in context.kpis_for_owner(owner_user_id)}
    values = {kpi_id: v for kpi_id, v in context.existing_values.items() if kpi_id in owned_ids}
    values.update(changed)
    touched = set(changed)
    computed: set[str] = set()

    entries: list[ResolvedEntry] = []
    skipped: list[DerivationSkip] = []

    if rules is None:
        rules = derivation_rules(context)
    for rule in rules:
        result_kpi = context.kpi_by_name(rule.result, owner_user_id)
        if result_kpi is None or result_kpi.id in computed:
            continue
        # A value imported directly for the result KPI stands.
        if result_kpi.id in changed:
            continue
        numerator_kpi = context.kpi_by_name(rule.numerator, owner_user_id)
        denominator_kpi = context.kpi_by_name(rule.denominator, owner_user_id)
        input_ids = {k.id for k in (numerator_kpi, denominator_kpi) if k is not None}
        if not input_ids & touched:
            continue

        numerator = values.get(numerator_kpi.id) if numerator_kpi else None
        denominator = values.get(denominator_kpi.id) if denominator_kpi else None
        if numerator is None or denominator is None:
            skipped.append(DerivationSkip(owner_user_id, rule.result, "missing_input"))
            continue
        if denominator == 0:
            skipped.append(DerivationSkip(owner_user_id, rule.result, "zero_denominator"))
            continue

        value = numerator / denominator
        if rule.decimals is not None:
            value = round(value, rule.decimals)

        values[result_kpi.id] = value
        touched.add(result_kpi.id)
        computed.add(result_kpi.id)
        entries.append(
            ResolvedEntry(
                kpi_id=result_kpi.id,
                period=context.period,
                value=value,
                entry_type=context.entry_type,
                owner_user_id=owner_user_id,
                source=EntrySource.DERIVED,
            )
        )

    return DerivationResult(entries=tuple(entries), skipped=tuple(skipped))


def compute_derived(
    entries: Iterable[ResolvedEntry],
    context: ReconciliationContext,
    rules: Sequence[DerivationRule] | None = None,
) -> DerivationResult:
    """Group column entries by owner and derive each owner's dependent KPIs.

    Only entries for the context period take part; other periods have no
    stored values in the snapshot to complete their inputs.
    """
    if rules is None:
        rules = derivation_rules(context)
    by_owner: dict[str | None, dict[str, float]] = {}
    for entry in entries:
        if entry.period != context.period:
            continue
        by_owner.setdefault(entry.owner_user_id, {})[entry.kpi_id] = entry.value

    derived: list[ResolvedEntry] = []
    skipped: list[DerivationSkip] = []
    for owner, changed in by_owner.items():
        result = derive_for_owner(owner, changed, context, rules)
        derived.extend(result.entries)
        skipped.extend(result.skipped)

    if skipped:
        logger.debug("derivations skipped: %s", ", ".join(f"{s.kpi_name}({s.reason})" for s in skipped))
    return DerivationResult(entries=tuple(derived), skipped=tuple(skipped))
