"""Match finder — ranks candidate partners for a user.

Candidates are drawn from the skill index only: anyone who teaches a
skill the user seeks, or seeks a skill the user teaches. Each candidate
is scored and the list is ordered by score descending, then by candidate
id ascending so equal scores rank deterministically.
"""

from __future__ import annotations

import itertools
import logging
from typing import Iterable, Iterator, Optional, TypeVar

from skillswap.errors import UserNotFound
from skillswap.models.matching import SuggestedMatch
from skillswap.models.user import User
from skillswap.skills.index import SkillIndex
from skillswap.skills.scorer import MatchScorer

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _check_page(limit: Optional[int], offset: int) -> None:
    if limit is not None and limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")


def paginate(items: Iterable[T], limit: Optional[int] = 0, offset: int = 0) -> Iterator[T]:
    """Skip ``offset`` items, then yield at most ``limit`` (0 or None = all).

    Raises:
        ValueError: If limit or offset is negative.
    """
    _check_page(limit, offset)
    stop = offset + limit if limit else None
    return itertools.islice(iter(items), offset, stop)


class MatchFinder:
    """Finds and ranks partners for a user.

    Usage:
        finder = MatchFinder(index, scorer)
        for match in finder.find_matches("alice", limit=10):
            ...
    """

    def __init__(self, index: SkillIndex, scorer: MatchScorer) -> None:
        self._index = index
        self._scorer = scorer

    def find_matches(
        self,
        user_id: str,
        limit: Optional[int] = 0,
        offset: int = 0,
    ) -> Iterator[SuggestedMatch]:
        """Return ranked matches for ``user_id``.

        Args:
            user_id: The requesting user.
            limit: Maximum number of results; 0 or None means all.
            offset: Number of ranked results to skip.

        Returns:
            A finite iterator of SuggestedMatch. It reflects the index at
            call time; call again to observe later index changes.

        Raises:
            UserNotFound: If ``user_id`` is not indexed. Raised here, not
                on first iteration.
            ValueError: If limit or offset is negative.
        """
        _check_page(limit, offset)
        return paginate(self.ranked(user_id), limit, offset)

    def ranked(self, user_id: str) -> list[SuggestedMatch]:
        """Every match for ``user_id`` in rank order.

        Raises:
            UserNotFound: If ``user_id`` is not indexed.
        """
        user = self._index.get(user_id)
        if user is None:
            raise UserNotFound(f"User not found: {user_id}")

        ranked = self._rank(user)
        logger.debug("Found %d candidates for %s", len(ranked), user_id)
        return ranked

    def candidate_ids(self, user: User) -> set[str]:
        """Union of teachers of the user's learn skills and seekers of
        the user's teach skills, excluding the user."""
        candidates: set[str] = set()
        for skill in user.learn_skills:
            candidates |= self._index.teachers_of(skill)
        for skill in user.teach_skills:
            candidates |= self._index.seekers_of(skill)
        candidates.discard(user.user_id)
        return candidates

    def _rank(self, user: User) -> list[SuggestedMatch]:
        matches: list[SuggestedMatch] = []
        for candidate_id in self.candidate_ids(user):
            candidate = self._index.get(candidate_id)
            if candidate is None:
                continue  # removed since the bucket lookup
            result = self._scorer.score(user, candidate)
            if not self._scorer.is_match(result):
                continue
            matches.append(SuggestedMatch(
                user=candidate.public_profile(),
                matching_teach_skills=tuple(sorted(result.a_teaches_b)),
                matching_learn_skills=tuple(sorted(result.b_teaches_a)),
                match_score=result.match_score,
            ))

        matches.sort(key=lambda m: (-m.match_score, m.user_id))
        return matches
