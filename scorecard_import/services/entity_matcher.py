from __future__ import annotations

import logging
import statistics
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from ..models.grid import EntityId, EntityRow
from ..models.match_result import EntityMatch, MatchStatus, MatchType
from ..models.roster import Alias
from .context import ReconciliationContext
from .name_matcher import MIN_CANDIDATE_SCORE, NameScorer, fuzzy_name_score, normalize_name, rank_candidates

"""Entity matcher: report names -> roster users.

Order of precedence for one entity:
    1. alias for this store (authoritative, CONFIRMED)
    2. exact roster name (AUTO_CONFIRMED)
    3. fuzzy top candidate: >= 0.85 AUTO_CONFIRMED, >= 0.50 NEEDS_REVIEW
    4. nothing -> UNMATCHED
A manual assignment overrides all of the above.

Totals rows ("All Repair Orders", "Grand Total", ...) only match through an
alias or a manual assignment and are left out of confidence statistics until
somebody maps them.
"""

__all__ = [
    "AUTO_CONFIRM_THRESHOLD",
    "SUGGESTION_THRESHOLD",
    "UnknownEntityError",
    "MatchReview",
    "match_entity",
    "match_entities",
]

logger = logging.getLogger(__name__)

AUTO_CONFIRM_THRESHOLD = 0.85
# Minimum score for the top candidate to be pre-selected for the reviewer
SUGGESTION_THRESHOLD = 0.7


class UnknownEntityError(Exception):
    """Raised when a review operation names an entity that is not in the review."""


def match_entity(
    entity: EntityRow,
    context: ReconciliationContext,
    scorer: NameScorer = fuzzy_name_score,
) -> EntityMatch:
    name = entity.display_name
    alias = context.alias_for(name)
    if alias is not None:
        user = context.user(alias.user_id)
        return EntityMatch(
            entity_id=entity.entity_id,
            display_name=name,
            status=MatchStatus.CONFIRMED,
            user_id=alias.user_id,
            matched_name=user.display_name if user else alias.alias_name,
            match_type=MatchType.ALIAS,
            confidence=1.0,
            is_totals_row=entity.is_totals_row,
            alias_exists=True,
        )

    if entity.is_totals_row:
        return EntityMatch(
            entity_id=entity.entity_id,
            display_name=name,
            status=MatchStatus.UNMATCHED,
            is_totals_row=True,
        )

    key = normalize_name(name)
    for user in context.roster:
        if normalize_name(user.display_name) == key:
            return EntityMatch(
                entity_id=entity.entity_id,
                display_name=name,
                status=MatchStatus.AUTO_CONFIRMED,
                user_id=user.id,
                matched_name=user.display_name,
                match_type=MatchType.EXACT,
                confidence=1.0,
            )

    candidates = tuple(rank_candidates(name, context.roster, scorer, MIN_CANDIDATE_SCORE))
    if not candidates:
        return EntityMatch(
            entity_id=entity.entity_id,
            display_name=name,
            status=MatchStatus.UNMATCHED,
        )

    top = candidates[0]
    if top.score >= AUTO_CONFIRM_THRESHOLD:
        status = MatchStatus.AUTO_CONFIRMED
    else:
        status = MatchStatus.NEEDS_REVIEW
    preselect = status == MatchStatus.AUTO_CONFIRMED or top.score >= SUGGESTION_THRESHOLD
    return EntityMatch(
        entity_id=entity.entity_id,
        display_name=name,
        status=status,
        user_id=top.user_id if preselect else None,
        matched_name=top.display_name if preselect else None,
        match_type=MatchType.FUZZY,
        confidence=top.score,
        candidates=candidates,
    )


@dataclass(frozen=True)
class MatchReview:
    """Immutable per-file review state; every operation returns a new review."""
    store_id: str
    matches: tuple[EntityMatch, ...] = ()

    def get(self, entity_id: EntityId) -> EntityMatch:
        for match in self.matches:
            if match.entity_id == entity_id:
                return match
        raise UnknownEntityError(f"unknown entity: {entity_id}")

    def _replace(self, updated: EntityMatch) -> MatchReview:
        return replace(
            self,
            matches=tuple(updated if m.entity_id == updated.entity_id else m for m in self.matches),
        )

    def confirm(self, entity_id: EntityId) -> MatchReview:
        """Accept the pre-selected suggestion of a NEEDS_REVIEW entity."""
        match = self.get(entity_id)
        if match.status.is_committable:
            return self
        if match.user_id is None:
            raise ValueError(f"entity {entity_id} ({match.display_name!r}) has no suggested user; assign one instead")
        return self._replace(replace(match, status=MatchStatus.CONFIRMED))

    def skip(self, entity_id: EntityId) -> MatchReview:
        match = self.get(entity_id)
        return self._replace(replace(match, status=MatchStatus.SKIPPED, user_id=None, matched_name=None))

    def assign(self, entity_id: EntityId, user_id: str, display_name: str | None = None) -> MatchReview:
        """Manually bind an entity to a user. Always wins over any automatic result."""
        match = self.get(entity_id)
        return self._replace(
            replace(
                match,
                status=MatchStatus.MANUALLY_ASSIGNED,
                user_id=user_id,
                matched_name=display_name,
                match_type=MatchType.MANUAL,
                confidence=1.0,
                alias_exists=False,
            )
        )

    def owners(self) -> dict[EntityId, str]:
        """Committable entities -> user id."""
        return {m.entity_id: m.user_id for m in self.matches if m.status.is_committable and m.user_id}

    def unmatched(self) -> tuple[EntityMatch, ...]:
        """Entities that will not be committed (totals rows nobody mapped are not listed)."""
        return tuple(
            m for m in self.matches
            if not m.status.is_committable and not (m.is_totals_row and m.status == MatchStatus.UNMATCHED)
        )

    def pending(self) -> tuple[EntityMatch, ...]:
        """Entities still waiting for a human decision."""
        return tuple(
            m for m in self.matches
            if m.status in (MatchStatus.NEEDS_REVIEW, MatchStatus.UNMATCHED) and not m.is_totals_row
        )

    def alias_proposals(self) -> tuple[Alias, ...]:
        """Aliases for reviewer-confirmed or manually assigned entities without one."""
        proposals: dict[str, Alias] = {}
        for m in self.matches:
            if m.status not in (MatchStatus.CONFIRMED, MatchStatus.MANUALLY_ASSIGNED):
                continue
            if m.alias_exists or not m.user_id:
                continue
            alias = Alias(store_id=self.store_id, alias_name=m.display_name, user_id=m.user_id)
            proposals[alias.normalized_name] = alias
        return tuple(proposals.values())

    def confidence_values(self) -> list[float]:
        """Confidences that count towards statistics; unmapped totals rows excluded."""
        values = []
        for m in self.matches:
            if m.is_totals_row and m.match_type not in (MatchType.MANUAL, MatchType.ALIAS):
                continue
            values.append(m.confidence)
        return values

    def mean_confidence(self) -> float | None:
        values = self.confidence_values()
        return statistics.fmean(values) if values else None

    def status_counts(self) -> dict[MatchStatus, int]:
        counts = {status: 0 for status in MatchStatus}
        for m in self.matches:
            counts[m.status] += 1
        return counts


def match_entities(
    entities: Iterable[EntityRow],
    context: ReconciliationContext,
    scorer: NameScorer = fuzzy_name_score,
) -> MatchReview:
    matches: Sequence[EntityMatch] = tuple(match_entity(e, context, scorer) for e in entities)
    review = MatchReview(store_id=context.store_id, matches=tuple(matches))
    counts = review.status_counts()
    mean = review.mean_confidence()
    logger.debug(
        "matched %d entities: %s mean_confidence=%s",
        len(matches),
        ", ".join(f"{s.value}={n}" for s, n in counts.items() if n),
        "-" if mean is None else f"{mean:.2f}",
    )
    return review
