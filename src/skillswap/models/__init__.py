"""Core data models for the skill exchange engine."""

from skillswap.models.exchange import (
    LearningSession,
    PairingRequest,
    RequestStatus,
    SessionParticipant,
    SessionStatus,
)
from skillswap.models.matching import MatchScore, SuggestedMatch
from skillswap.models.user import User, normalize_skill, normalize_skills, normalize_user

__all__ = [
    "LearningSession",
    "PairingRequest",
    "RequestStatus",
    "SessionParticipant",
    "SessionStatus",
    "MatchScore",
    "SuggestedMatch",
    "User",
    "normalize_skill",
    "normalize_skills",
    "normalize_user",
]
