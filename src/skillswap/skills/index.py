"""Skill index — inverse lookup from skill to the users teaching or seeking it.

Holds one normalized User snapshot per user id plus two inverse maps:
    teachers: skill → {user ids teaching it}
    seekers:  skill → {user ids seeking it}

Skill labels are normalized here, on the way in. A malformed label rejects
the whole update and leaves the index untouched.

Thread safety: all reads and writes take the same re-entrant lock, and a
user's entry is replaced in one critical section, so no reader observes a
half-updated user.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Iterator, Optional

from skillswap.models.user import User, normalize_skill, normalize_skills, normalize_user

logger = logging.getLogger(__name__)


class SkillIndex:
    """Queryable inverse index of users' teach and learn skills.

    Usage:
        index = SkillIndex()
        index.index(user)
        index.teachers_of("python")  # frozenset of user ids
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[str, User] = {}
        self._teachers: dict[str, set[str]] = {}
        self._seekers: dict[str, set[str]] = {}

    def index(self, user: User) -> User:
        """Insert or replace a user's entries.

        Idempotent: re-indexing the same user state leaves the index
        content unchanged.

        Returns:
            The normalized snapshot that was stored.

        Raises:
            InvalidSkill: If any skill label is empty or whitespace.
        """
        normalized = normalize_user(user)  # raises before any mutation
        with self._lock:
            previous = self._users.get(normalized.user_id)
            if previous is not None:
                self._unlink(previous)
            self._users[normalized.user_id] = normalized
            for skill in normalized.teach_skills:
                self._teachers.setdefault(skill, set()).add(normalized.user_id)
            for skill in normalized.learn_skills:
                self._seekers.setdefault(skill, set()).add(normalized.user_id)
        logger.debug(
            "Indexed user %s (teach=%d, learn=%d)",
            normalized.user_id,
            len(normalized.teach_skills),
            len(normalized.learn_skills),
        )
        return normalized

    def remove(self, user_id: str) -> bool:
        """Drop a user's memberships. Returns False if the user was absent."""
        with self._lock:
            user = self._users.pop(user_id, None)
            if user is None:
                return False
            self._unlink(user)
        logger.debug("Removed user %s from skill index", user_id)
        return True

    def teachers_of(self, skill: str) -> frozenset[str]:
        """User ids offering to teach ``skill`` (normalized before lookup)."""
        key = normalize_skill(skill)
        with self._lock:
            return frozenset(self._teachers.get(key, ()))

    def seekers_of(self, skill: str) -> frozenset[str]:
        """User ids seeking to learn ``skill`` (normalized before lookup)."""
        key = normalize_skill(skill)
        with self._lock:
            return frozenset(self._seekers.get(key, ()))

    def search(
        self,
        teach_skills: Iterable[str] = (),
        learn_skills: Iterable[str] = (),
        exclude_user_id: Optional[str] = None,
    ) -> list[User]:
        """Users teaching any of ``teach_skills`` and seeking any of
        ``learn_skills``, sorted by id. An empty filter matches everyone.

        Raises:
            InvalidSkill: If a filter label is malformed.
        """
        teach = normalize_skills(teach_skills)
        learn = normalize_skills(learn_skills)
        with self._lock:
            ids = set(self._users)
            if teach:
                ids &= set().union(*(self._teachers.get(s, ()) for s in teach))
            if learn:
                ids &= set().union(*(self._seekers.get(s, ()) for s in learn))
            ids.discard(exclude_user_id)
            return [self._users[uid] for uid in sorted(ids)]

    def get(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def user_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._users)

    def users(self) -> list[User]:
        with self._lock:
            return [self._users[uid] for uid in sorted(self._users)]

    def skills(self) -> set[str]:
        """Every skill with at least one teacher or seeker."""
        with self._lock:
            return set(self._teachers) | set(self._seekers)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._users

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)

    def __iter__(self) -> Iterator[User]:
        return iter(self.users())

    def _unlink(self, user: User) -> None:
        """Remove a user from every bucket; prune emptied buckets.

        Caller must hold the lock.
        """
        for bucket_map, skills in (
            (self._teachers, user.teach_skills),
            (self._seekers, user.learn_skills),
        ):
            for skill in skills:
                bucket = bucket_map.get(skill)
                if bucket is None:
                    continue
                bucket.discard(user.user_id)
                if not bucket:
                    del bucket_map[skill]
