"""SkillSwap service — unified facade for the exchange engine.

This is the primary interface for programmatic access. It wires:
- Skill index (who teaches / seeks what)
- Match finding (ranked partner suggestions)
- Pairing request negotiation (create, accept, decline, cancel)
- Session scheduling (schedule, reschedule, cancel, attendance, complete)
- Persistence (event log, state store)

All operations return a ServiceResult. Engine errors are reported with
their ``error_code`` (InvalidTransition, Forbidden, ...) and never leave
state changed. Every mutation is recorded in the event log before it is
persisted; if the audit write fails, the mutation is rolled back. Mutations
and state snapshots are serialized by one commit lock, so a snapshot never
captures a change whose audit is still in flight. State store writes
happen after the audit event and never roll back; a failed write marks
persistence as degraded.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from skillswap.errors import SkillSwapError, UserNotFound
from skillswap.exchange.request_state_machine import PairingRequestBook
from skillswap.exchange.session_scheduler import SessionScheduler
from skillswap.models.exchange import (
    LearningSession,
    PairingRequest,
    RequestStatus,
    SessionParticipant,
    SessionStatus,
    ensure_utc,
)
from skillswap.models.user import User
from skillswap.persistence.event_log import EventKind, EventLog, EventRecord
from skillswap.persistence.state_store import StateStore
from skillswap.policy.resolver import PolicyResolver
from skillswap.skills.finder import MatchFinder, paginate
from skillswap.skills.index import SkillIndex
from skillswap.skills.scorer import MatchScorer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None


class AuditTrailError(Exception):
    """Raised when an event cannot be appended to the log."""


def _failure(exc: Exception) -> ServiceResult:
    if isinstance(exc, SkillSwapError):
        code: Optional[str] = exc.code
    elif isinstance(exc, AuditTrailError):
        code = "AuditFailure"
    else:
        code = None
    return ServiceResult(success=False, errors=[str(exc)], error_code=code)


class SkillSwapService:
    """Exchange engine facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = SkillSwapService(resolver)

        service.index_user(User("alice", teach_skills={"french"}, learn_skills={"guitar"}))
        service.index_user(User("bob", teach_skills={"guitar"}, learn_skills={"french"}))

        matches = service.find_matches("alice").data["matches"]
        result = service.create_request("alice", "bob", ["french"], ["guitar"])
        result = service.accept_request(result.data["request"]["id"], "bob")

    Persistence (optional):
        service = SkillSwapService(resolver, event_log=log, state_store=store)
        # State is loaded on construction and saved after each mutation.
    """

    def __init__(
        self,
        resolver: Optional[PolicyResolver] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._resolver = resolver or PolicyResolver.defaults()
        self._event_log = event_log
        self._state_store = state_store

        self._index = SkillIndex()
        self._scorer = MatchScorer(self._resolver)
        self._finder = MatchFinder(self._index, self._scorer)

        if state_store is not None:
            for user in state_store.load_users():
                self._index.index(user)
            self._requests = PairingRequestBook.from_records(
                self._index, state_store.load_requests(),
            )
            self._scheduler = SessionScheduler.from_records(
                self._resolver, state_store.load_sessions(),
            )
        else:
            self._requests = PairingRequestBook(self._index)
            self._scheduler = SessionScheduler(self._resolver)

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0
        self._event_lock = threading.Lock()
        # Held across apply, audit and rollback of every mutation, and while
        # snapshotting, so the state store never sees an uncommitted change.
        self._commit_lock = threading.RLock()

        # Set when a StateStore write fails after the audit event committed.
        self._persistence_degraded: bool = False

    @property
    def resolver(self) -> PolicyResolver:
        return self._resolver

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    # ------------------------------------------------------------------
    # Users and the skill index
    # ------------------------------------------------------------------

    def index_user(self, user: User) -> ServiceResult:
        """Insert or update a user's skill sets in the index."""
        with self._commit_lock:
            previous = self._index.get(user.user_id)
            try:
                stored = self._index.index(user)
            except SkillSwapError as e:
                return _failure(e)

            try:
                self._record_event(
                    EventKind.USER_INDEXED,
                    actor_id=stored.user_id,
                    payload={
                        "user_id": stored.user_id,
                        "teach_skills": sorted(stored.teach_skills),
                        "learn_skills": sorted(stored.learn_skills),
                    },
                )
            except AuditTrailError as e:
                if previous is None:
                    self._index.remove(stored.user_id)
                else:
                    self._index.index(previous)
                return _failure(e)

        return self._committed({"user": stored.public_profile()})

    def remove_user(self, user_id: str) -> ServiceResult:
        """Remove a user from the skill index.

        Existing requests and sessions referencing the user are kept.
        """
        with self._commit_lock:
            previous = self._index.get(user_id)
            if previous is None:
                return _failure(UserNotFound(f"User not found: {user_id}"))
            self._index.remove(user_id)
            try:
                self._record_event(
                    EventKind.USER_REMOVED, actor_id=user_id, payload={"user_id": user_id},
                )
            except AuditTrailError as e:
                self._index.index(previous)
                return _failure(e)

        return self._committed({"user_id": user_id})

    def get_user(self, user_id: str) -> Optional[User]:
        return self._index.get(user_id)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def find_matches(
        self,
        user_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ServiceResult:
        """Ranked partner suggestions for ``user_id``.

        ``limit`` of None uses the policy default; 0 means all. ``total``
        counts every ranked match; ``count`` only the returned page.
        """
        if limit is None:
            limit = self._resolver.default_match_limit()
        try:
            ranked = self._finder.ranked(user_id)
            matches = [m.to_dict() for m in paginate(ranked, limit, offset)]
        except (SkillSwapError, ValueError) as e:
            return _failure(e)
        return ServiceResult(
            success=True,
            data={"matches": matches, "count": len(matches), "total": len(ranked)},
        )

    def search_users(
        self,
        current_user_id: str,
        teach_skills: Iterable[str] = (),
        learn_skills: Iterable[str] = (),
        limit: int = 0,
        offset: int = 0,
    ) -> ServiceResult:
        """Browse other users' public profiles, optionally filtered.

        A user passes the filter if they teach any of ``teach_skills`` and
        seek any of ``learn_skills``; an empty filter matches everyone.
        Results are ordered by user id and exclude ``current_user_id``.
        """
        if current_user_id not in self._index:
            return _failure(UserNotFound(f"User not found: {current_user_id}"))
        try:
            users = self._index.search(
                teach_skills, learn_skills, exclude_user_id=current_user_id,
            )
            page = [u.public_profile() for u in paginate(users, limit, offset)]
        except (SkillSwapError, ValueError) as e:
            return _failure(e)
        return ServiceResult(
            success=True,
            data={"users": page, "count": len(page), "total": len(users)},
        )

    # ------------------------------------------------------------------
    # Pairing requests
    # ------------------------------------------------------------------

    def create_request(
        self,
        requester_id: str,
        recipient_id: str,
        teach_skills: Iterable[str],
        learn_skills: Iterable[str],
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create a pending pairing request from requester to recipient."""
        def _audit(request: PairingRequest) -> None:
            self._record_event(
                EventKind.REQUEST_CREATED,
                actor_id=request.requester_id,
                payload={
                    "request_id": request.request_id,
                    "requester_id": request.requester_id,
                    "recipient_id": request.recipient_id,
                    "teach_skills": sorted(request.teach_skills),
                    "learn_skills": sorted(request.learn_skills),
                },
            )

        try:
            with self._commit_lock:
                request = self._requests.create(
                    requester_id, recipient_id, teach_skills, learn_skills,
                    message=message, now=now, on_created=_audit,
                )
        except (SkillSwapError, AuditTrailError) as e:
            return _failure(e)
        return self._committed({"request": request.to_dict()})

    def accept_request(
        self,
        request_id: str,
        actor_id: str,
        scheduled_date: Optional[datetime] = None,
        duration: Optional[int] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Accept a pending request and schedule its first session.

        Exactly one session is created. Unspecified session fields come
        from the policy defaults (date = now + default lead days).
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        defaults = self._resolver.session_defaults()
        if scheduled_date is None:
            scheduled_date = now + timedelta(days=defaults.lead_days)
        if duration is None:
            duration = defaults.duration_minutes

        created: list[LearningSession] = []

        def _schedule_first(request: PairingRequest) -> None:
            session = self._scheduler.schedule(
                request, scheduled_date, duration, location,
                notes=notes, now=now,
            )
            try:
                self._record_event(
                    EventKind.REQUEST_TRANSITION,
                    actor_id=actor_id,
                    payload={
                        "request_id": request.request_id,
                        "action": f"transition:{request.status.value}",
                        "session_id": session.session_id,
                    },
                )
            except BaseException:
                self._scheduler.discard(session.session_id)
                raise
            created.append(session)

        try:
            with self._commit_lock:
                request = self._requests.accept(
                    request_id, actor_id, now=now, on_accepted=_schedule_first,
                )
        except (SkillSwapError, AuditTrailError) as e:
            return _failure(e)
        return self._committed({
            "request": request.to_dict(),
            "session": created[0].to_dict(),
        })

    def decline_request(
        self, request_id: str, actor_id: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Decline a pending request (recipient only)."""
        return self._transition_request(self._requests.decline, request_id, actor_id, now)

    def cancel_request(
        self, request_id: str, actor_id: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Withdraw a pending request (requester only)."""
        return self._transition_request(self._requests.cancel, request_id, actor_id, now)

    def get_request(self, request_id: str) -> Optional[PairingRequest]:
        return self._requests.get(request_id)

    def list_requests(
        self,
        user_id: str,
        role: str = "all",
        status: Optional[RequestStatus] = None,
    ) -> ServiceResult:
        """Requests sent and/or received by a user, newest first."""
        try:
            requests = self._requests.list_for_user(user_id, role=role, status=status)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])
        items = []
        for r in requests:
            item = r.to_dict()
            item["requester"] = self._profile(r.requester_id)
            item["recipient"] = self._profile(r.recipient_id)
            items.append(item)
        return ServiceResult(success=True, data={"requests": items, "total": len(items)})

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def schedule_session(
        self,
        request_id: str,
        scheduled_date: datetime,
        duration: int,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Schedule a further session for an accepted request."""
        def _audit(session: LearningSession) -> None:
            self._record_event(
                EventKind.SESSION_SCHEDULED,
                actor_id=actor_id or "system",
                payload={
                    "session_id": session.session_id,
                    "request_id": session.request_id,
                    "scheduled_date": session.scheduled_date.isoformat(),
                },
            )

        try:
            with self._commit_lock:
                request = self._requests.get_or_raise(request_id)
                session = self._scheduler.schedule(
                    request, scheduled_date, duration, location,
                    notes=notes, acting_user_id=actor_id, now=now, on_scheduled=_audit,
                )
        except (SkillSwapError, AuditTrailError) as e:
            return _failure(e)
        return self._committed({"session": session.to_dict()})

    def reschedule_session(
        self,
        session_id: str,
        actor_id: str,
        scheduled_date: Optional[datetime] = None,
        duration: Optional[int] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Change the time, length, place or notes of a scheduled session."""
        def _audit(session: LearningSession) -> None:
            self._record_event(
                EventKind.SESSION_RESCHEDULED,
                actor_id=actor_id,
                payload={
                    "session_id": session.session_id,
                    "scheduled_date": session.scheduled_date.isoformat(),
                    "duration": session.duration,
                    "location": session.location,
                },
            )

        try:
            with self._commit_lock:
                session = self._scheduler.reschedule(
                    session_id, actor_id,
                    scheduled_date=scheduled_date, duration=duration,
                    location=location, notes=notes, now=now, on_rescheduled=_audit,
                )
        except (SkillSwapError, AuditTrailError) as e:
            return _failure(e)
        return self._committed({"session": session.to_dict()})

    def cancel_session(
        self, session_id: str, actor_id: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Cancel a scheduled session (participants only)."""
        try:
            with self._commit_lock:
                session = self._scheduler.cancel(
                    session_id, actor_id, now=now,
                    on_cancelled=self._session_auditor(actor_id),
                )
        except (SkillSwapError, AuditTrailError) as e:
            return _failure(e)
        return self._committed({"session": session.to_dict()})

    def complete_session(
        self, session_id: str, now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Mark a scheduled session completed."""
        try:
            with self._commit_lock:
                session = self._scheduler.complete(
                    session_id, now=now, on_completed=self._session_auditor("system"),
                )
        except (SkillSwapError, AuditTrailError) as e:
            return _failure(e)
        return self._committed({"session": session.to_dict()})

    def complete_due_sessions(self, now: Optional[datetime] = None) -> ServiceResult:
        """Complete every scheduled session whose end time has passed.

        Entry point for the external time-based sweep. Sessions that change
        state concurrently are skipped and reported.
        """
        completed: list[str] = []
        skipped: list[str] = []
        for session_id in self._scheduler.due_for_completion(now):
            result = self.complete_session(session_id, now=now)
            if result.success:
                completed.append(session_id)
            else:
                skipped.append(session_id)
        return ServiceResult(
            success=True,
            data={"completed": completed, "skipped": skipped},
        )

    def record_attendance(
        self,
        session_id: str,
        user_id: str,
        attended: bool,
        feedback: Optional[str] = None,
        rating: Optional[int] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Record a participant's attendance, feedback and rating."""
        def _audit(session: LearningSession, participant: SessionParticipant) -> None:
            self._record_event(
                EventKind.ATTENDANCE_RECORDED,
                actor_id=actor_id or user_id,
                payload={
                    "session_id": session.session_id,
                    "user_id": participant.user_id,
                    "attended": participant.attended,
                    "rating": participant.rating,
                    "session_status": session.status.value,
                },
            )

        try:
            with self._commit_lock:
                participant = self._scheduler.record_attendance(
                    session_id, user_id, attended,
                    feedback=feedback, rating=rating, acting_user_id=actor_id,
                    now=now, on_recorded=_audit,
                )
        except (SkillSwapError, AuditTrailError) as e:
            return _failure(e)
        session = self._scheduler.get_or_raise(session_id)
        return self._committed({
            "participant": participant.to_dict(),
            "session_status": session.status.value,
        })

    def get_session(self, session_id: str) -> Optional[LearningSession]:
        return self._scheduler.get(session_id)

    def sessions_for_request(self, request_id: str) -> list[LearningSession]:
        return self._scheduler.sessions_for_request(request_id)

    def list_sessions(
        self,
        user_id: str,
        status: Optional[SessionStatus] = None,
    ) -> ServiceResult:
        """Sessions a user participates in, earliest first."""
        items = []
        for session in self._scheduler.list_for_user(user_id, status=status):
            item = session.to_dict()
            request = self._requests.get(session.request_id)
            if request is not None:
                item["teachSkills"] = sorted(request.teach_skills)
                item["learnSkills"] = sorted(request.learn_skills)
            for participant in item["participants"]:
                participant["user"] = self._profile(participant["userId"])
            items.append(item)
        return ServiceResult(success=True, data={"sessions": items, "total": len(items)})

    # ------------------------------------------------------------------
    # Analytics and status
    # ------------------------------------------------------------------

    def user_stats(self, user_id: str) -> ServiceResult:
        """Pairing and session statistics for one user."""
        requests = self._requests.list_for_user(user_id)
        by_status = Counter(r.status.value for r in requests)
        skill_counts: Counter[str] = Counter()
        for r in requests:
            if r.status == RequestStatus.ACCEPTED:
                skill_counts.update(r.teach_skills)
                skill_counts.update(r.learn_skills)
        most_matched = None
        if skill_counts:
            # Highest count, alphabetical among ties
            most_matched = min(skill_counts, key=lambda s: (-skill_counts[s], s))

        sessions = self._scheduler.list_for_user(user_id)
        attended = 0
        for s in sessions:
            participant = s.participant(user_id)
            if participant is not None and participant.attended:
                attended += 1

        return ServiceResult(
            success=True,
            data={
                "user_id": user_id,
                "sent": sum(1 for r in requests if r.requester_id == user_id),
                "received": sum(1 for r in requests if r.recipient_id == user_id),
                "pending": by_status.get(RequestStatus.PENDING.value, 0),
                "accepted": by_status.get(RequestStatus.ACCEPTED.value, 0),
                "declined": by_status.get(RequestStatus.DECLINED.value, 0),
                "cancelled": by_status.get(RequestStatus.CANCELLED.value, 0),
                "sessions_completed": sum(
                    1 for s in sessions if s.status == SessionStatus.COMPLETED
                ),
                "sessions_attended": attended,
                "most_matched_skill": most_matched,
            },
        )

    def status(self) -> dict[str, Any]:
        """Summary counts for operators."""
        request_counts = Counter(r.status.value for r in self._requests.all())
        session_counts = Counter(s.status.value for s in self._scheduler.all())
        return {
            "users": len(self._index),
            "skills": len(self._index.skills()),
            "requests": dict(sorted(request_counts.items())),
            "sessions": dict(sorted(session_counts.items())),
            "events": self._event_log.count if self._event_log is not None else 0,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition_request(
        self,
        apply: Callable[..., PairingRequest],
        request_id: str,
        actor_id: str,
        now: Optional[datetime],
    ) -> ServiceResult:
        def _audit(request: PairingRequest) -> None:
            self._record_event(
                EventKind.REQUEST_TRANSITION,
                actor_id=actor_id,
                payload={
                    "request_id": request.request_id,
                    "action": f"transition:{request.status.value}",
                },
            )

        try:
            with self._commit_lock:
                request = apply(request_id, actor_id, now, _audit)
        except (SkillSwapError, AuditTrailError) as e:
            return _failure(e)
        return self._committed({"request": request.to_dict()})

    def _session_auditor(self, actor_id: str) -> Callable[[LearningSession], None]:
        def _audit(session: LearningSession) -> None:
            self._record_event(
                EventKind.SESSION_TRANSITION,
                actor_id=actor_id,
                payload={
                    "session_id": session.session_id,
                    "request_id": session.request_id,
                    "action": f"transition:{session.status.value}",
                },
            )
        return _audit

    def _profile(self, user_id: str) -> dict[str, Any]:
        user = self._index.get(user_id)
        return user.public_profile() if user is not None else {"id": user_id}

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID.

        Caller must hold the event lock.
        """
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self, kind: EventKind, actor_id: str, payload: dict[str, Any],
    ) -> None:
        """Append an audit event.

        Raises:
            AuditTrailError: If the log rejects or fails to write the event.
        """
        if self._event_log is None:
            return
        with self._event_lock:
            try:
                event = EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=kind,
                    actor_id=actor_id,
                    payload=payload,
                )
                self._event_log.append(event)
            except (ValueError, OSError) as e:
                raise AuditTrailError(f"Event log failure: {e}") from e

    def _committed(self, data: dict[str, Any]) -> ServiceResult:
        """Build a success result, persisting state first.

        The audit event is already durable, so a failed state write is a
        warning, not a rollback.
        """
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        Can raise OSError.
        """
        if self._state_store is None:
            return
        with self._commit_lock:
            self._state_store.save(
                self._index.users(),
                self._requests.all(),
                self._scheduler.all(),
            )

    def _safe_persist_post_audit(self) -> Optional[str]:
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.warning("State store write failed: %s", e)
            return (
                f"Persistence degraded: {e} — state committed in audit trail "
                f"but StateStore is stale"
            )
