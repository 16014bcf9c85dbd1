"""Match scorer — computes the bidirectional compatibility of two users.

Pure computation. No side effects.

With A = a.teach ∩ b.learn and B = b.teach ∩ a.learn:

    score = 2·|A|·|B| / (|A| + |B|)   if both non-empty (harmonic mean)
          = max(|A|, |B|)             if exactly one is non-empty
          = 0                         otherwise

The harmonic term rewards balanced two-way exchange: a one-directional
offer scores lower than a two-way exchange of equal total overlap.
The score is symmetric in its arguments.
"""

from __future__ import annotations

from typing import Optional

from skillswap.errors import InvalidRequest
from skillswap.models.matching import MatchScore
from skillswap.models.user import User
from skillswap.policy.resolver import PolicyResolver


def _overlap_score(a_teaches_b: int, b_teaches_a: int) -> float:
    if a_teaches_b and b_teaches_a:
        return 2.0 * a_teaches_b * b_teaches_a / (a_teaches_b + b_teaches_a)
    return float(max(a_teaches_b, b_teaches_a))


def score(a: User, b: User) -> MatchScore:
    """Score ``a`` against ``b``.

    Expects users whose skill sets are already normalized (as stored by
    the skill index).

    Raises:
        InvalidRequest: If ``a`` and ``b`` are the same user.
    """
    if a.user_id == b.user_id:
        raise InvalidRequest(f"Cannot match user {a.user_id} against themselves")
    a_teaches_b = a.teach_skills & b.learn_skills
    b_teaches_a = b.teach_skills & a.learn_skills
    return MatchScore(
        match_score=_overlap_score(len(a_teaches_b), len(b_teaches_a)),
        a_teaches_b=frozenset(a_teaches_b),
        b_teaches_a=frozenset(b_teaches_a),
    )


class MatchScorer:
    """Scores user pairs and applies the configured relevance threshold.

    Usage:
        scorer = MatchScorer(resolver)
        result = scorer.score(a, b)
        if scorer.is_match(result): ...
    """

    def __init__(self, resolver: Optional[PolicyResolver] = None) -> None:
        self._resolver = resolver or PolicyResolver.defaults()

    def score(self, a: User, b: User) -> MatchScore:
        return score(a, b)

    def is_match(self, result: MatchScore) -> bool:
        """True if the score clears the minimum (strictly above)."""
        return result.match_score > self._resolver.min_match_score()
