"""Skills subsystem — skill index, pairwise scoring, and match ranking."""

from skillswap.skills.finder import MatchFinder
from skillswap.skills.index import SkillIndex
from skillswap.skills.scorer import MatchScorer, score

__all__ = [
    "MatchFinder",
    "MatchScorer",
    "SkillIndex",
    "score",
]
