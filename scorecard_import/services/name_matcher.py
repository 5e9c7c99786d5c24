from __future__ import annotations

from collections.abc import Callable, Sequence

from rapidfuzz.distance import Levenshtein

from ..models.match_result import MatchCandidate, MatchTier
from ..models.roster import RosterUser

"""Name normalizer and fuzzy matcher.

The scoring function only has to honour the tier contract used by the entity
matcher (>= 0.90 exact, 0.70 - 0.89 high, 0.50 - 0.69 partial, < 0.50
discarded). It is passed around as a plain callable so the string-similarity
algorithm can be replaced without touching tiering.
"""

__all__ = [
    "NameScorer",
    "normalize_name",
    "fuzzy_name_score",
    "rank_candidates",
    "MIN_CANDIDATE_SCORE",
]

NameScorer = Callable[[str, str], float]

MIN_CANDIDATE_SCORE = 0.5


def normalize_name(name: str | None) -> str:
    """Lower-case, trim and collapse internal whitespace."""
    if name is None:
        return ""
    return " ".join(str(name).lower().split())


def fuzzy_name_score(candidate_text: str, roster_name: str) -> float:
    """Similarity between a report name and a roster name in [0, 1].

    Containment scores 0.9, matching first+last words 0.95, last word only
    0.8, first word only 0.7; anything else falls back to a length-normalized
    Levenshtein similarity.
    """
    n1 = normalize_name(candidate_text)
    n2 = normalize_name(roster_name)

    if n1 == n2:
        return 1.0
    if not n1 or not n2:
        return 0.0

    if n1 in n2 or n2 in n1:
        return 0.9

    # 1 文字の語だけ除外 ("j." のようなピリオド付きイニシャルは比較する)
    words1 = [w for w in n1.split(" ") if len(w) > 1]
    words2 = [w for w in n2.split(" ") if len(w) > 1]
    if len(words1) >= 2 and len(words2) >= 2:
        first_match = words1[0] == words2[0]
        last_match = words1[-1] == words2[-1]
        if first_match and last_match:
            return 0.95
        if last_match:
            return 0.8
        if first_match:
            return 0.7

    # 1 - distance / max(len)
    return Levenshtein.normalized_similarity(n1, n2)


def rank_candidates(
    name: str,
    roster: Sequence[RosterUser],
    scorer: NameScorer = fuzzy_name_score,
    min_score: float = MIN_CANDIDATE_SCORE,
) -> list[MatchCandidate]:
    """Score ``name`` against every roster user, best first.

    Candidates below ``min_score`` are dropped. Ties keep roster order
    (``sorted`` is stable).
    """
    scored = []
    for user in roster:
        score = scorer(name, user.display_name)
        if score < min_score:
            continue
        scored.append(
            MatchCandidate(
                user_id=user.id,
                display_name=user.display_name,
                score=score,
                tier=MatchTier.from_score(score),
            )
        )
    return sorted(scored, key=lambda c: -c.score)
