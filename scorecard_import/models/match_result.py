from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .grid import EntityId

"""Entity match outcome models.

State transitions per entity:
    UNMATCHED -> CONFIRMED           (alias hit, or reviewer confirms a suggestion)
    UNMATCHED -> AUTO_CONFIRMED      (exact roster name, or fuzzy >= 0.85)
    UNMATCHED -> NEEDS_REVIEW        (fuzzy 0.50 - 0.85) -> CONFIRMED | SKIPPED
    UNMATCHED -> MANUALLY_ASSIGNED | SKIPPED
Only CONFIRMED / AUTO_CONFIRMED / MANUALLY_ASSIGNED feed the commit planner.
"""

__all__ = [
    "MatchStatus",
    "MatchTier",
    "MatchType",
    "MatchCandidate",
    "EntityMatch",
]


class MatchStatus(Enum):
    UNMATCHED = "unmatched"
    NEEDS_REVIEW = "needs_review"
    AUTO_CONFIRMED = "auto_confirmed"
    CONFIRMED = "confirmed"
    MANUALLY_ASSIGNED = "manually_assigned"
    SKIPPED = "skipped"

    @property
    def is_committable(self) -> bool:
        return self in (MatchStatus.CONFIRMED, MatchStatus.AUTO_CONFIRMED, MatchStatus.MANUALLY_ASSIGNED)


class MatchTier(Enum):
    EXACT = "exact"      # >= 0.90
    HIGH = "high"        # 0.70 - 0.89
    PARTIAL = "partial"  # 0.50 - 0.69
    NONE = "none"        # < 0.50, discarded

    @classmethod
    def from_score(cls, score: float) -> MatchTier:
        if score >= 0.9:
            return cls.EXACT
        if score >= 0.7:
            return cls.HIGH
        if score >= 0.5:
            return cls.PARTIAL
        return cls.NONE


class MatchType(Enum):
    ALIAS = "alias"
    EXACT = "exact"
    FUZZY = "fuzzy"
    MANUAL = "manual"


@dataclass(frozen=True)
class MatchCandidate:
    user_id: str
    display_name: str
    score: float
    tier: MatchTier


@dataclass(frozen=True)
class EntityMatch:
    entity_id: EntityId
    display_name: str
    status: MatchStatus
    user_id: str | None = None
    matched_name: str | None = None
    match_type: MatchType | None = None
    confidence: float = 0.0
    candidates: tuple[MatchCandidate, ...] = ()
    is_totals_row: bool = False
    alias_exists: bool = False

    @property
    def tier(self) -> MatchTier:
        return MatchTier.from_score(self.confidence)

    @property
    def resolved_user_id(self) -> str | None:
        return self.user_id if self.status.is_committable else None
