"""Exchange lifecycle models — pairing requests, sessions, and participants.

Pairing request lifecycle: PENDING → ACCEPTED / DECLINED / CANCELLED
Session lifecycle: SCHEDULED → COMPLETED / CANCELLED

Ownership: a PairingRequest owns its LearningSessions; a LearningSession
owns its SessionParticipant rows. Users are referenced by id only.

Status values are the exact strings of the persisted schema.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class RequestStatus(str, enum.Enum):
    """Lifecycle state of a pairing request."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class SessionStatus(str, enum.Enum):
    """Lifecycle state of a learning session."""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class PairingRequest:
    """A proposal from one user to another to exchange specific skills.

    ``teach_skills`` are offered by the requester; ``learn_skills`` are
    sought from the recipient. Mutated only through the request state
    machine.
    """
    request_id: str
    requester_id: str
    recipient_id: str
    teach_skills: frozenset[str] = field(default_factory=frozenset)
    learn_skills: frozenset[str] = field(default_factory=frozenset)
    status: RequestStatus = RequestStatus.PENDING
    message: Optional[str] = None
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.requester_id == self.recipient_id:
            raise ValueError(
                f"requester and recipient must differ, got {self.requester_id!r} twice"
            )

    def involves(self, user_id: str) -> bool:
        return user_id in (self.requester_id, self.recipient_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.request_id,
            "requesterId": self.requester_id,
            "recipientId": self.recipient_id,
            "teachSkills": sorted(self.teach_skills),
            "learnSkills": sorted(self.learn_skills),
            "status": self.status.value,
            "message": self.message,
            "createdAt": _iso(self.created_utc),
            "updatedAt": _iso(self.updated_utc),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PairingRequest:
        return cls(
            request_id=data["id"],
            requester_id=data["requesterId"],
            recipient_id=data["recipientId"],
            teach_skills=frozenset(data.get("teachSkills") or ()),
            learn_skills=frozenset(data.get("learnSkills") or ()),
            status=RequestStatus(data["status"]),
            message=data.get("message"),
            created_utc=_parse(data.get("createdAt")),
            updated_utc=_parse(data.get("updatedAt")),
        )


@dataclass
class SessionParticipant:
    """One user's attendance and feedback record within a session."""
    participant_id: str
    session_id: str
    user_id: str
    attended: bool = False
    feedback: Optional[str] = None
    rating: Optional[int] = None
    recorded_utc: Optional[datetime] = None

    @property
    def has_recorded(self) -> bool:
        return self.recorded_utc is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.participant_id,
            "sessionId": self.session_id,
            "userId": self.user_id,
            "attended": self.attended,
            "feedback": self.feedback,
            "rating": self.rating,
            "recordedAt": _iso(self.recorded_utc),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionParticipant:
        return cls(
            participant_id=data["id"],
            session_id=data["sessionId"],
            user_id=data["userId"],
            attended=bool(data.get("attended", False)),
            feedback=data.get("feedback"),
            rating=data.get("rating"),
            recorded_utc=_parse(data.get("recordedAt")),
        )


@dataclass
class LearningSession:
    """A scheduled meeting fulfilling an accepted pairing request."""
    session_id: str
    request_id: str
    scheduled_date: datetime
    duration: int  # minutes
    location: str = "online"
    status: SessionStatus = SessionStatus.SCHEDULED
    notes: Optional[str] = None
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None
    participants: list[SessionParticipant] = field(default_factory=list)

    @property
    def ends_utc(self) -> datetime:
        return self.scheduled_date + timedelta(minutes=self.duration)

    def participant(self, user_id: str) -> Optional[SessionParticipant]:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None

    def is_participant(self, user_id: str) -> bool:
        return self.participant(user_id) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.session_id,
            "requestId": self.request_id,
            "scheduledDate": self.scheduled_date.isoformat(),
            "duration": self.duration,
            "location": self.location,
            "status": self.status.value,
            "notes": self.notes,
            "createdAt": _iso(self.created_utc),
            "updatedAt": _iso(self.updated_utc),
            "participants": [p.to_dict() for p in self.participants],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LearningSession:
        return cls(
            session_id=data["id"],
            request_id=data["requestId"],
            scheduled_date=datetime.fromisoformat(data["scheduledDate"]),
            duration=int(data["duration"]),
            location=data.get("location") or "online",
            status=SessionStatus(data["status"]),
            notes=data.get("notes"),
            created_utc=_parse(data.get("createdAt")),
            updated_utc=_parse(data.get("updatedAt")),
            participants=[
                SessionParticipant.from_dict(p) for p in data.get("participants", [])
            ],
        )
