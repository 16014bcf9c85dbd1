"""Error taxonomy for the exchange engine.

Every guard violation raises one of these. They are recoverable by the
caller and carry a stable ``code`` (the class name) that the service layer
surfaces verbatim in its results. A raised error never leaves partially
applied state behind.
"""

from __future__ import annotations


class SkillSwapError(Exception):
    """Base class for all engine errors."""
    code = "SkillSwapError"

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        cls.code = cls.__name__


class InvalidSkill(SkillSwapError):
    """A skill string is empty or whitespace-only."""


class UserNotFound(SkillSwapError):
    """The user id is not present in the skill index."""


class InvalidRequest(SkillSwapError):
    """A create/schedule call failed validation."""


class InvalidTransition(SkillSwapError):
    """The entity's current status does not allow the requested transition."""


class Forbidden(SkillSwapError):
    """The acting user is not allowed to perform the transition."""


class RequestNotAccepted(SkillSwapError):
    """A session was requested for a pairing request that is not accepted."""


class InvalidRating(SkillSwapError):
    """A rating lies outside the configured closed range."""


class RequestNotFound(SkillSwapError):
    """No pairing request with the given id."""


class SessionNotFound(SkillSwapError):
    """No learning session with the given id."""
