"""User data model — identity, public profile, and skill sets.

A user offers skills to teach and seeks skills to learn. Both sets hold
opaque skill labels. Labels are normalized (case-folded, whitespace
collapsed) at the skill index boundary, not here: a ``User`` built by a
caller may carry raw labels until it is indexed.

User records are owned by the external profile collaborator. The engine
only ever holds immutable snapshots of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable, Optional

from skillswap.errors import InvalidSkill


def normalize_skill(skill: str) -> str:
    """Return the canonical form of a skill label.

    Case-folds and collapses runs of whitespace to a single space.

    Raises:
        InvalidSkill: If the label is not a string or is empty after
            stripping.
    """
    if not isinstance(skill, str):
        raise InvalidSkill(f"Skill must be a string, got {type(skill).__name__}")
    canonical = " ".join(skill.split()).casefold()
    if not canonical:
        raise InvalidSkill(f"Skill must be non-empty, got {skill!r}")
    return canonical


def normalize_skills(skills: Iterable[str]) -> frozenset[str]:
    """Normalize and de-duplicate a collection of skill labels."""
    return frozenset(normalize_skill(s) for s in skills)


@dataclass(frozen=True)
class User:
    """Immutable snapshot of a user's profile and skill sets.

    The same skill may appear in both ``teach_skills`` and ``learn_skills``;
    the two sets are treated independently.
    """
    user_id: str
    fullname: str = ""
    display_name: Optional[str] = None
    bio: str = ""
    avatar: str = ""
    teach_skills: frozenset[str] = field(default_factory=frozenset)
    learn_skills: frozenset[str] = field(default_factory=frozenset)
    created_utc: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.user_id, str) or not self.user_id.strip():
            raise ValueError(f"user_id must be a non-empty string, got {self.user_id!r}")
        # Accept any iterable from callers; store frozensets.
        if not isinstance(self.teach_skills, frozenset):
            object.__setattr__(self, "teach_skills", frozenset(self.teach_skills))
        if not isinstance(self.learn_skills, frozenset):
            object.__setattr__(self, "learn_skills", frozenset(self.learn_skills))

    @property
    def name(self) -> str:
        """Display name, falling back to the full name."""
        return self.display_name or self.fullname

    def public_profile(self) -> dict[str, Any]:
        """Public projection used in match results and listings."""
        return {
            "id": self.user_id,
            "fullname": self.fullname,
            "displayName": self.name,
            "bio": self.bio,
            "avatar": self.avatar,
            "teachSkills": sorted(self.teach_skills),
            "learnSkills": sorted(self.learn_skills),
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.public_profile()
        data["displayName"] = self.display_name
        data["createdAt"] = self.created_utc.isoformat() if self.created_utc else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        created = data.get("createdAt")
        return cls(
            user_id=str(data["id"]),
            fullname=data.get("fullname", ""),
            display_name=data.get("displayName"),
            bio=data.get("bio") or "",
            avatar=data.get("avatar") or "",
            teach_skills=frozenset(data.get("teachSkills") or ()),
            learn_skills=frozenset(data.get("learnSkills") or ()),
            created_utc=datetime.fromisoformat(created) if created else None,
        )


def normalize_user(user: User) -> User:
    """Return a copy of ``user`` with both skill sets normalized.

    Raises:
        InvalidSkill: If any label in either set is malformed.
    """
    return replace(
        user,
        teach_skills=normalize_skills(user.teach_skills),
        learn_skills=normalize_skills(user.learn_skills),
    )
