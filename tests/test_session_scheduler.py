"""Tests for the session scheduler — proves lifecycle, attendance and rating rules."""

from datetime import datetime, timedelta, timezone

import pytest

from skillswap.errors import (
    Forbidden,
    InvalidRating,
    InvalidRequest,
    InvalidTransition,
    RequestNotAccepted,
    SessionNotFound,
)
from skillswap.exchange.session_scheduler import SessionScheduler, SessionStateMachine
from skillswap.models.exchange import (
    LearningSession,
    PairingRequest,
    RequestStatus,
    SessionStatus,
)
from skillswap.policy.resolver import PolicyResolver


START = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)
BEFORE = START - timedelta(days=1)
AFTER = START + timedelta(minutes=90)


def _make_request(status: RequestStatus = RequestStatus.ACCEPTED) -> PairingRequest:
    return PairingRequest(
        request_id="req_1",
        requester_id="alice",
        recipient_id="bob",
        teach_skills=frozenset({"french"}),
        learn_skills=frozenset({"guitar"}),
        status=status,
    )


@pytest.fixture
def scheduler() -> SessionScheduler:
    return SessionScheduler()


@pytest.fixture
def session(scheduler: SessionScheduler) -> LearningSession:
    return scheduler.schedule(_make_request(), START, 60, now=BEFORE)


class TestStateMachine:
    def test_scheduled_exits(self) -> None:
        assert not SessionStateMachine.is_terminal(SessionStatus.SCHEDULED)
        assert SessionStateMachine.is_terminal(SessionStatus.COMPLETED)
        assert SessionStateMachine.is_terminal(SessionStatus.CANCELLED)


class TestSchedule:
    def test_creates_two_unattended_participants(self, session: LearningSession) -> None:
        assert session.status == SessionStatus.SCHEDULED
        assert session.location == "online"
        assert session.duration == 60
        assert sorted(p.user_id for p in session.participants) == ["alice", "bob"]
        assert all(p.attended is False for p in session.participants)
        assert all(p.session_id == session.session_id for p in session.participants)

    def test_naive_date_taken_as_utc(self, scheduler: SessionScheduler) -> None:
        s = scheduler.schedule(_make_request(), datetime(2026, 3, 10, 18, 0), 30)
        assert s.scheduled_date == START

    def test_request_must_be_accepted(self, scheduler: SessionScheduler) -> None:
        with pytest.raises(RequestNotAccepted):
            scheduler.schedule(_make_request(RequestStatus.PENDING), START, 60)
        assert len(scheduler) == 0

    def test_actor_must_be_party(self, scheduler: SessionScheduler) -> None:
        with pytest.raises(Forbidden):
            scheduler.schedule(_make_request(), START, 60, acting_user_id="carol")

    @pytest.mark.parametrize("duration", [0, -15, True, 1.5])
    def test_bad_duration(self, scheduler: SessionScheduler, duration) -> None:
        with pytest.raises(InvalidRequest):
            scheduler.schedule(_make_request(), START, duration)

    def test_blank_location_rejected(self, scheduler: SessionScheduler) -> None:
        with pytest.raises(InvalidRequest):
            scheduler.schedule(_make_request(), START, 60, location="   ")

    @pytest.mark.parametrize("location", [42, ["cafe"], b"cafe"])
    def test_non_string_location_rejected(self, scheduler: SessionScheduler, location) -> None:
        with pytest.raises(InvalidRequest, match="location must be a non-empty string"):
            scheduler.schedule(_make_request(), START, 60, location=location)
        assert scheduler.all() == []

    def test_policy_default_location(self) -> None:
        resolver = PolicyResolver({"sessions": {"default_location": "library"}})
        s = SessionScheduler(resolver).schedule(_make_request(), START, 60)
        assert s.location == "library"

    def test_many_sessions_per_request(self, scheduler: SessionScheduler, session) -> None:
        second = scheduler.schedule(_make_request(), START + timedelta(days=7), 60)
        assert [s.session_id for s in scheduler.sessions_for_request("req_1")] == [
            session.session_id, second.session_id,
        ]

    def test_failed_callback_unregisters(self, scheduler: SessionScheduler) -> None:
        def boom(s: LearningSession) -> None:
            raise RuntimeError("audit down")

        with pytest.raises(RuntimeError):
            scheduler.schedule(_make_request(), START, 60, on_scheduled=boom)
        assert len(scheduler) == 0
        assert scheduler.sessions_for_request("req_1") == []

    def test_discard(self, scheduler: SessionScheduler, session: LearningSession) -> None:
        assert scheduler.discard(session.session_id) is True
        assert scheduler.get(session.session_id) is None
        assert scheduler.discard(session.session_id) is False


class TestTransitions:
    def test_participant_cancels(self, scheduler: SessionScheduler, session) -> None:
        scheduler.cancel(session.session_id, "bob")
        assert session.status == SessionStatus.CANCELLED

    def test_outsider_cannot_cancel(self, scheduler: SessionScheduler, session) -> None:
        with pytest.raises(Forbidden):
            scheduler.cancel(session.session_id, "carol")
        assert session.status == SessionStatus.SCHEDULED

    def test_complete(self, scheduler: SessionScheduler, session) -> None:
        scheduler.complete(session.session_id, now=AFTER)
        assert session.status == SessionStatus.COMPLETED
        assert session.updated_utc == AFTER

    def test_terminal_sessions_refuse_transitions(self, scheduler: SessionScheduler, session) -> None:
        scheduler.complete(session.session_id)
        with pytest.raises(InvalidTransition):
            scheduler.cancel(session.session_id, "alice")
        with pytest.raises(InvalidTransition):
            scheduler.complete(session.session_id)

    def test_unknown_session(self, scheduler: SessionScheduler) -> None:
        with pytest.raises(SessionNotFound):
            scheduler.complete("sess_missing")


class TestReschedule:
    def test_participant_moves_session(self, scheduler: SessionScheduler, session) -> None:
        new_date = START + timedelta(days=2)
        scheduler.reschedule(session.session_id, "alice", scheduled_date=new_date, location="cafe")
        assert session.scheduled_date == new_date
        assert session.location == "cafe"
        assert session.duration == 60

    def test_non_string_location_leaves_session(self, scheduler: SessionScheduler, session) -> None:
        with pytest.raises(InvalidRequest):
            scheduler.reschedule(session.session_id, "alice", location=42)
        assert session.location == "online"

    def test_outsider_cannot_reschedule(self, scheduler: SessionScheduler, session) -> None:
        with pytest.raises(Forbidden):
            scheduler.reschedule(session.session_id, "carol", duration=30)

    def test_cannot_reschedule_cancelled(self, scheduler: SessionScheduler, session) -> None:
        scheduler.cancel(session.session_id, "alice")
        with pytest.raises(InvalidTransition):
            scheduler.reschedule(session.session_id, "alice", duration=30)

    def test_failed_callback_restores_fields(self, scheduler: SessionScheduler, session) -> None:
        def boom(s: LearningSession) -> None:
            raise RuntimeError("audit down")

        with pytest.raises(RuntimeError):
            scheduler.reschedule(
                session.session_id, "bob", duration=90, notes="bring guitar",
                on_rescheduled=boom,
            )
        assert session.duration == 60
        assert session.notes is None


class TestAttendance:
    def test_record_with_max_rating(self, scheduler: SessionScheduler, session) -> None:
        p = scheduler.record_attendance(
            session.session_id, "alice", True, feedback="Great", rating=5, now=AFTER,
        )
        assert p.attended is True
        assert p.rating == 5
        assert p.feedback == "Great"
        assert p.recorded_utc == AFTER
        assert session.participant("bob").attended is False

    @pytest.mark.parametrize("rating", [0, 6, True, "5"])
    def test_rating_out_of_range(self, scheduler: SessionScheduler, session, rating) -> None:
        with pytest.raises(InvalidRating):
            scheduler.record_attendance(session.session_id, "alice", True, rating=rating, now=AFTER)
        assert session.participant("alice").rating is None

    def test_non_participant_forbidden(self, scheduler: SessionScheduler, session) -> None:
        with pytest.raises(Forbidden):
            scheduler.record_attendance(session.session_id, "carol", True, now=AFTER)

    def test_actor_must_be_participant(self, scheduler: SessionScheduler, session) -> None:
        with pytest.raises(Forbidden):
            scheduler.record_attendance(
                session.session_id, "alice", True, acting_user_id="carol", now=AFTER,
            )

    def test_partner_may_record_for_other(self, scheduler: SessionScheduler, session) -> None:
        scheduler.record_attendance(
            session.session_id, "bob", False, acting_user_id="alice", now=AFTER,
        )
        assert session.participant("bob").has_recorded

    def test_cancelled_session_refuses(self, scheduler: SessionScheduler, session) -> None:
        scheduler.cancel(session.session_id, "alice")
        with pytest.raises(InvalidTransition):
            scheduler.record_attendance(session.session_id, "alice", True, now=AFTER)

    def test_before_start_refused_by_default(self, scheduler: SessionScheduler, session) -> None:
        with pytest.raises(InvalidTransition):
            scheduler.record_attendance(session.session_id, "alice", True, now=BEFORE)

    def test_any_time_policy_allows_early_recording(self) -> None:
        resolver = PolicyResolver({"sessions": {"attendance_policy": "any_time"}})
        scheduler = SessionScheduler(resolver)
        s = scheduler.schedule(_make_request(), START, 60)
        scheduler.record_attendance(s.session_id, "alice", True, now=BEFORE)
        assert s.participant("alice").attended

    def test_completed_session_still_accepts_feedback(self, scheduler: SessionScheduler, session) -> None:
        scheduler.complete(session.session_id, now=AFTER)
        scheduler.record_attendance(session.session_id, "bob", True, rating=4, now=AFTER)
        assert session.participant("bob").rating == 4

    def test_rerecord_overwrites(self, scheduler: SessionScheduler, session) -> None:
        scheduler.record_attendance(session.session_id, "alice", True, rating=2, now=AFTER)
        scheduler.record_attendance(session.session_id, "alice", False, now=AFTER)
        p = session.participant("alice")
        assert p.attended is False
        assert p.rating is None

    def test_no_auto_complete_by_default(self, scheduler: SessionScheduler, session) -> None:
        scheduler.record_attendance(session.session_id, "alice", True, now=AFTER)
        scheduler.record_attendance(session.session_id, "bob", True, now=AFTER)
        assert session.status == SessionStatus.SCHEDULED

    def test_auto_complete_on_full_attendance(self) -> None:
        resolver = PolicyResolver({"sessions": {"auto_complete_on_full_attendance": True}})
        scheduler = SessionScheduler(resolver)
        s = scheduler.schedule(_make_request(), START, 60)
        scheduler.record_attendance(s.session_id, "alice", True, now=AFTER)
        assert s.status == SessionStatus.SCHEDULED
        scheduler.record_attendance(s.session_id, "bob", True, now=AFTER)
        assert s.status == SessionStatus.COMPLETED

    def test_failed_callback_restores_participant(self, scheduler: SessionScheduler, session) -> None:
        def boom(s, p) -> None:
            raise RuntimeError("audit down")

        with pytest.raises(RuntimeError):
            scheduler.record_attendance(
                session.session_id, "alice", True, rating=5, now=AFTER, on_recorded=boom,
            )
        p = session.participant("alice")
        assert p.attended is False
        assert p.rating is None
        assert not p.has_recorded


class TestQueries:
    def test_list_for_user_earliest_first(self, scheduler: SessionScheduler, session) -> None:
        earlier = scheduler.schedule(_make_request(), START - timedelta(days=3), 60)
        assert scheduler.list_for_user("alice") == [earlier, session]
        assert scheduler.list_for_user("carol") == []

    def test_list_for_user_status_filter(self, scheduler: SessionScheduler, session) -> None:
        scheduler.cancel(session.session_id, "alice")
        assert scheduler.list_for_user("bob", status=SessionStatus.SCHEDULED) == []
        assert scheduler.list_for_user("bob", status=SessionStatus.CANCELLED) == [session]

    def test_due_for_completion(self, scheduler: SessionScheduler, session) -> None:
        assert scheduler.due_for_completion(now=START + timedelta(minutes=59)) == []
        assert scheduler.due_for_completion(now=START + timedelta(minutes=60)) == [session.session_id]

    def test_restore_from_records(self, scheduler: SessionScheduler, session) -> None:
        restored = SessionScheduler.from_records(
            None, [LearningSession.from_dict(session.to_dict())],
        )
        copy = restored.get_or_raise(session.session_id)
        assert copy.scheduled_date == START
        assert [p.user_id for p in copy.participants] == [p.user_id for p in session.participants]
        assert restored.sessions_for_request("req_1") == [copy]
