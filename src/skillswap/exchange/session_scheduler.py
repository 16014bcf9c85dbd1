"""Session scheduler — learning sessions for accepted pairing requests.

Session lifecycle:
    SCHEDULED → COMPLETED | CANCELLED

- SCHEDULED: created for an accepted request, with one participant row
  each for the requester and the recipient (attended=False).
- COMPLETED: terminal — the meeting took place. The trigger (attendance
  from everyone, or an external time-based sweep) is policy outside the
  scheduler; the scheduler enforces only the state guard.
- CANCELLED: terminal — withdrawn by a participant.

Attendance and feedback are recorded per participant. Whether recording
is allowed before the scheduled start is the ``attendance_policy`` of the
exchange policy ("after_start" or "any_time").

All mutation of one session happens under that session's lock.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from skillswap.errors import (
    Forbidden,
    InvalidRating,
    InvalidRequest,
    InvalidTransition,
    RequestNotAccepted,
    SessionNotFound,
)
from skillswap.exchange.locks import EntityLocks
from skillswap.models.exchange import (
    LearningSession,
    PairingRequest,
    RequestStatus,
    SessionParticipant,
    SessionStatus,
    ensure_utc,
)
from skillswap.policy.resolver import ATTENDANCE_AFTER_START, PolicyResolver

logger = logging.getLogger(__name__)


_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.SCHEDULED: {SessionStatus.COMPLETED, SessionStatus.CANCELLED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.CANCELLED: set(),
}

SessionCallback = Callable[[LearningSession], None]
AttendanceCallback = Callable[[LearningSession, SessionParticipant], None]


def _now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) if now is not None else datetime.now(timezone.utc)


class SessionStateMachine:
    """Validates session transitions. Pure computation."""

    @staticmethod
    def check_transition(session: LearningSession, target: SessionStatus) -> None:
        """Raise InvalidTransition if ``target`` is not reachable."""
        current = session.status
        allowed = _TRANSITIONS.get(current, set())
        if target not in allowed:
            allowed_str = ", ".join(sorted(s.value for s in allowed))
            raise InvalidTransition(
                f"Invalid session transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            )

    @staticmethod
    def is_terminal(status: SessionStatus) -> bool:
        return not _TRANSITIONS.get(status)


class SessionScheduler:
    """Creates and manages learning sessions.

    Usage:
        scheduler = SessionScheduler(resolver)
        session = scheduler.schedule(request, date, 60, "online")
        scheduler.record_attendance(session.session_id, "alice", True, rating=5)
        scheduler.complete(session.session_id)

    Mutators accept an optional callback that runs under the session lock
    after the change; if it raises, the change is rolled back.
    """

    def __init__(self, resolver: Optional[PolicyResolver] = None) -> None:
        self._resolver = resolver or PolicyResolver.defaults()
        self._sessions: dict[str, LearningSession] = {}
        self._by_request: dict[str, list[str]] = {}
        self._registry_lock = threading.Lock()
        self._locks = EntityLocks()

    @classmethod
    def from_records(
        cls,
        resolver: Optional[PolicyResolver],
        sessions: Iterable[LearningSession],
    ) -> SessionScheduler:
        """Restore a scheduler from persisted sessions."""
        scheduler = cls(resolver)
        for session in sessions:
            scheduler._register(session)
        return scheduler

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(
        self,
        request: PairingRequest,
        scheduled_date: datetime,
        duration: int,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
        on_scheduled: Optional[SessionCallback] = None,
    ) -> LearningSession:
        """Create a SCHEDULED session for an accepted request.

        Args:
            request: The owning pairing request.
            scheduled_date: Start time; naive values are taken as UTC.
            duration: Length in minutes (positive integer).
            location: Meeting place; defaults to the policy location.
            acting_user_id: If given, must be one of the request's parties.

        Raises:
            RequestNotAccepted: The request is not ACCEPTED.
            Forbidden: ``acting_user_id`` is not a party to the request.
            InvalidRequest: Bad duration or location.
        """
        now = _now(now)
        if request.status != RequestStatus.ACCEPTED:
            raise RequestNotAccepted(
                f"Cannot schedule a session for request {request.request_id} "
                f"in status {request.status.value}"
            )
        if acting_user_id is not None and not request.involves(acting_user_id):
            raise Forbidden(
                f"{acting_user_id} is not a party to request {request.request_id}"
            )
        self._check_duration(duration)
        location = self._check_location(location)

        session_id = f"sess_{uuid.uuid4().hex[:12]}"
        participants = [
            SessionParticipant(
                participant_id=f"part_{uuid.uuid4().hex[:12]}",
                session_id=session_id,
                user_id=user_id,
            )
            for user_id in (request.requester_id, request.recipient_id)
        ]
        session = LearningSession(
            session_id=session_id,
            request_id=request.request_id,
            scheduled_date=ensure_utc(scheduled_date),
            duration=duration,
            location=location,
            status=SessionStatus.SCHEDULED,
            notes=notes,
            created_utc=now,
            updated_utc=now,
            participants=participants,
        )

        with self._locks.hold(session_id):
            self._register(session)
            if on_scheduled is not None:
                try:
                    on_scheduled(session)
                except BaseException:
                    self._unregister(session)
                    raise

        logger.info(
            "Session %s scheduled for request %s at %s",
            session_id, request.request_id, session.scheduled_date.isoformat(),
        )
        return session

    def discard(self, session_id: str) -> bool:
        """Drop a session created in a step that is being rolled back."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        with self._locks.hold(session_id):
            self._unregister(session)
        return True

    def reschedule(
        self,
        session_id: str,
        acting_user_id: str,
        scheduled_date: Optional[datetime] = None,
        duration: Optional[int] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        on_rescheduled: Optional[SessionCallback] = None,
    ) -> LearningSession:
        """Change date, duration, location or notes of a SCHEDULED session.

        Raises:
            SessionNotFound, Forbidden, InvalidTransition, InvalidRequest.
        """
        now = _now(now)
        session = self.get_or_raise(session_id)
        if duration is not None:
            self._check_duration(duration)
        if location is not None:
            location = self._check_location(location)

        with self._locks.hold(session_id):
            self._check_participant(session, acting_user_id)
            if session.status != SessionStatus.SCHEDULED:
                raise InvalidTransition(
                    f"Cannot reschedule session {session_id} in status {session.status.value}"
                )

            prior = (
                session.scheduled_date, session.duration,
                session.location, session.notes, session.updated_utc,
            )
            if scheduled_date is not None:
                session.scheduled_date = ensure_utc(scheduled_date)
            if duration is not None:
                session.duration = duration
            if location is not None:
                session.location = location
            if notes is not None:
                session.notes = notes
            session.updated_utc = now

            if on_rescheduled is not None:
                try:
                    on_rescheduled(session)
                except BaseException:
                    (session.scheduled_date, session.duration,
                     session.location, session.notes, session.updated_utc) = prior
                    raise

        logger.info("Session %s rescheduled by %s", session_id, acting_user_id)
        return session

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def cancel(
        self,
        session_id: str,
        acting_user_id: str,
        now: Optional[datetime] = None,
        on_cancelled: Optional[SessionCallback] = None,
    ) -> LearningSession:
        """SCHEDULED → CANCELLED. Participants only.

        The state is checked before the actor.
        """
        session = self.get_or_raise(session_id)
        with self._locks.hold(session_id):
            SessionStateMachine.check_transition(session, SessionStatus.CANCELLED)
            self._check_participant(session, acting_user_id)
            self._apply(session, SessionStatus.CANCELLED, _now(now), on_cancelled)
        logger.info("Session %s cancelled by %s", session_id, acting_user_id)
        return session

    def complete(
        self,
        session_id: str,
        now: Optional[datetime] = None,
        on_completed: Optional[SessionCallback] = None,
    ) -> LearningSession:
        """SCHEDULED → COMPLETED."""
        session = self.get_or_raise(session_id)
        with self._locks.hold(session_id):
            SessionStateMachine.check_transition(session, SessionStatus.COMPLETED)
            self._apply(session, SessionStatus.COMPLETED, _now(now), on_completed)
        logger.info("Session %s completed", session_id)
        return session

    def _apply(
        self,
        session: LearningSession,
        target: SessionStatus,
        now: datetime,
        on_applied: Optional[SessionCallback],
    ) -> None:
        """Set status under the held lock; roll back if the callback raises."""
        prior_status = session.status
        prior_updated = session.updated_utc
        session.status = target
        session.updated_utc = now
        if on_applied is not None:
            try:
                on_applied(session)
            except BaseException:
                session.status = prior_status
                session.updated_utc = prior_updated
                raise

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------

    def record_attendance(
        self,
        session_id: str,
        user_id: str,
        attended: bool,
        feedback: Optional[str] = None,
        rating: Optional[int] = None,
        acting_user_id: Optional[str] = None,
        now: Optional[datetime] = None,
        on_recorded: Optional[AttendanceCallback] = None,
    ) -> SessionParticipant:
        """Record attendance, feedback and rating for one participant.

        Re-recording overwrites the previous values. When the policy flag
        ``auto_complete_on_full_attendance`` is set, the session completes
        once every participant has recorded.

        Args:
            user_id: Participant whose row is updated.
            acting_user_id: Who is recording; defaults to ``user_id``. Must
                be a participant.

        Raises:
            SessionNotFound: Unknown session.
            InvalidRating: Rating not an integer in the configured range.
            Forbidden: ``user_id`` or the actor is not a participant.
            InvalidTransition: Session cancelled, or recording before the
                scheduled start under the "after_start" policy.
        """
        now = _now(now)
        session = self.get_or_raise(session_id)
        self._check_rating(rating)
        actor = acting_user_id if acting_user_id is not None else user_id

        with self._locks.hold(session_id):
            participant = self._check_participant(session, user_id)
            self._check_participant(session, actor)
            if session.status == SessionStatus.CANCELLED:
                raise InvalidTransition(
                    f"Cannot record attendance for cancelled session {session_id}"
                )
            if (
                session.status == SessionStatus.SCHEDULED
                and self._resolver.attendance_policy() == ATTENDANCE_AFTER_START
                and now < session.scheduled_date
            ):
                raise InvalidTransition(
                    f"Cannot record attendance for session {session_id} before its "
                    f"scheduled start {session.scheduled_date.isoformat()}"
                )

            prior = (
                participant.attended, participant.feedback,
                participant.rating, participant.recorded_utc,
            )
            prior_status = session.status
            prior_updated = session.updated_utc

            participant.attended = bool(attended)
            participant.feedback = feedback
            participant.rating = rating
            participant.recorded_utc = now
            session.updated_utc = now

            if (
                self._resolver.auto_complete_on_full_attendance()
                and session.status == SessionStatus.SCHEDULED
                and all(p.has_recorded for p in session.participants)
            ):
                session.status = SessionStatus.COMPLETED

            if on_recorded is not None:
                try:
                    on_recorded(session, participant)
                except BaseException:
                    (participant.attended, participant.feedback,
                     participant.rating, participant.recorded_utc) = prior
                    session.status = prior_status
                    session.updated_utc = prior_updated
                    raise

        logger.info(
            "Attendance recorded for %s in session %s (attended=%s)",
            user_id, session_id, participant.attended,
        )
        return participant

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[LearningSession]:
        return self._sessions.get(session_id)

    def get_or_raise(self, session_id: str) -> LearningSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session not found: {session_id}")
        return session

    def sessions_for_request(self, request_id: str) -> list[LearningSession]:
        with self._registry_lock:
            ids = list(self._by_request.get(request_id, []))
        return [self._sessions[sid] for sid in ids]

    def list_for_user(
        self,
        user_id: str,
        status: Optional[SessionStatus] = None,
    ) -> list[LearningSession]:
        """Sessions ``user_id`` participates in, earliest first."""
        results = [
            s for s in self.all()
            if s.is_participant(user_id) and (status is None or s.status == status)
        ]
        results.sort(key=lambda s: (s.scheduled_date, s.session_id))
        return results

    def due_for_completion(self, now: Optional[datetime] = None) -> list[str]:
        """Ids of SCHEDULED sessions whose end time is at or before ``now``.

        Used by the external sweep that decides when to call complete().
        """
        now = _now(now)
        return sorted(
            s.session_id for s in self.all()
            if s.status == SessionStatus.SCHEDULED and s.ends_utc <= now
        )

    def all(self) -> list[LearningSession]:
        with self._registry_lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _register(self, session: LearningSession) -> None:
        with self._registry_lock:
            self._sessions[session.session_id] = session
            self._by_request.setdefault(session.request_id, []).append(session.session_id)

    def _unregister(self, session: LearningSession) -> None:
        with self._registry_lock:
            self._sessions.pop(session.session_id, None)
            ids = self._by_request.get(session.request_id, [])
            if session.session_id in ids:
                ids.remove(session.session_id)
            if not ids:
                self._by_request.pop(session.request_id, None)

    @staticmethod
    def _check_participant(session: LearningSession, user_id: str) -> SessionParticipant:
        participant = session.participant(user_id)
        if participant is None:
            raise Forbidden(
                f"{user_id} is not a participant of session {session.session_id}"
            )
        return participant

    @staticmethod
    def _check_duration(duration: int) -> None:
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            raise InvalidRequest(
                f"duration must be a positive number of minutes, got {duration!r}"
            )

    def _check_location(self, location: Optional[str]) -> str:
        if location is None:
            return self._resolver.session_defaults().location
        if not isinstance(location, str) or not location.strip():
            raise InvalidRequest(f"location must be a non-empty string, got {location!r}")
        return location.strip()

    def _check_rating(self, rating: Optional[int]) -> None:
        if rating is None:
            return
        lo, hi = self._resolver.rating_bounds()
        if isinstance(rating, bool) or not isinstance(rating, int):
            raise InvalidRating(f"rating must be an integer in [{lo}, {hi}], got {rating!r}")
        if not (lo <= rating <= hi):
            raise InvalidRating(f"rating must be in [{lo}, {hi}], got {rating}")
