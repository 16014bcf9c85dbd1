"""Match result models — pairwise scores and ranked suggestions.

Both are ephemeral: computed on demand by the scorer and finder, never
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class MatchScore:
    """Compatibility between two users, seen from the first user.

    ``a_teaches_b`` are the skills the first user can teach the second;
    ``b_teaches_a`` the reverse.
    """
    match_score: float
    a_teaches_b: frozenset[str]
    b_teaches_a: frozenset[str]

    def swapped(self) -> MatchScore:
        """The same score seen from the second user."""
        return MatchScore(
            match_score=self.match_score,
            a_teaches_b=self.b_teaches_a,
            b_teaches_a=self.a_teaches_b,
        )

    @property
    def is_bidirectional(self) -> bool:
        return bool(self.a_teaches_b) and bool(self.b_teaches_a)


@dataclass(frozen=True)
class SuggestedMatch:
    """A ranked candidate for the requesting user."""
    user: dict[str, Any]  # public profile projection of the candidate
    matching_teach_skills: tuple[str, ...]  # requester could teach candidate
    matching_learn_skills: tuple[str, ...]  # candidate could teach requester
    match_score: float

    @property
    def user_id(self) -> str:
        return self.user["id"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": dict(self.user),
            "matchingTeachSkills": list(self.matching_teach_skills),
            "matchingLearnSkills": list(self.matching_learn_skills),
            "matchScore": self.match_score,
        }
