"""Pairing request state machine — negotiation between two users.

Request lifecycle:
    PENDING → ACCEPTED | DECLINED | CANCELLED

State semantics:
- PENDING: created by the requester, awaiting the recipient's decision.
- ACCEPTED: terminal — the recipient agreed; the first session is created.
- DECLINED: terminal — the recipient refused.
- CANCELLED: terminal — the requester withdrew before a decision.

Actor rules: only the recipient accepts or declines; only the requester
cancels. The state check runs before the actor check, so a terminal
request rejects every actor with InvalidTransition.

Fail-closed: no implicit transitions. Every transition is a
compare-and-set on ``status`` under the request's lock, so concurrent
accept/decline/cancel calls produce exactly one winner.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from skillswap.errors import (
    Forbidden,
    InvalidRequest,
    InvalidTransition,
    RequestNotFound,
    UserNotFound,
)
from skillswap.exchange.locks import EntityLocks
from skillswap.models.exchange import PairingRequest, RequestStatus, ensure_utc
from skillswap.models.user import normalize_skills
from skillswap.skills.index import SkillIndex

logger = logging.getLogger(__name__)


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.PENDING: {
        RequestStatus.ACCEPTED,
        RequestStatus.DECLINED,
        RequestStatus.CANCELLED,
    },
    # Terminal states: no outgoing transitions
    RequestStatus.ACCEPTED: set(),
    RequestStatus.DECLINED: set(),
    RequestStatus.CANCELLED: set(),
}

# Which party may drive each transition
_RECIPIENT = "recipient"
_REQUESTER = "requester"
_ACTOR_ROLE: dict[RequestStatus, str] = {
    RequestStatus.ACCEPTED: _RECIPIENT,
    RequestStatus.DECLINED: _RECIPIENT,
    RequestStatus.CANCELLED: _REQUESTER,
}

RequestCallback = Callable[[PairingRequest], None]


class PairingRequestStateMachine:
    """Validates request transitions.

    Pure computation: checks only. Applying the change is the job of
    PairingRequestBook, which holds the per-request lock.
    """

    @staticmethod
    def check_transition(
        request: PairingRequest,
        target: RequestStatus,
        acting_user_id: str,
    ) -> None:
        """Raise if ``acting_user_id`` may not move ``request`` to ``target``.

        Raises:
            InvalidTransition: Target not reachable from the current status.
            Forbidden: Actor is not the party allowed to drive the transition.
        """
        current = request.status
        allowed = _TRANSITIONS.get(current, set())
        if target not in allowed:
            allowed_str = ", ".join(sorted(s.value for s in allowed))
            raise InvalidTransition(
                f"Invalid request transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            )

        role = _ACTOR_ROLE[target]
        expected = request.recipient_id if role == _RECIPIENT else request.requester_id
        if acting_user_id != expected:
            raise Forbidden(
                f"Only the {role} can move request {request.request_id} "
                f"to {target.value}"
            )

    @staticmethod
    def is_terminal(status: RequestStatus) -> bool:
        return not _TRANSITIONS.get(status)

    @staticmethod
    def valid_transitions(status: RequestStatus) -> set[RequestStatus]:
        return set(_TRANSITIONS.get(status, set()))


class PairingRequestBook:
    """Registry of pairing requests with guarded, serialized transitions.

    Usage:
        book = PairingRequestBook(index)
        request = book.create("alice", "bob", ["french"], ["guitar"])
        book.accept(request.request_id, "bob", on_accepted=schedule_first)

    Every mutator takes an optional callback that runs while the request
    lock is held, after the change is applied. If the callback raises, the
    change is rolled back and the error propagates.
    """

    def __init__(self, index: SkillIndex) -> None:
        self._index = index
        self._requests: dict[str, PairingRequest] = {}
        self._create_lock = threading.Lock()
        self._locks = EntityLocks()

    @classmethod
    def from_records(
        cls,
        index: SkillIndex,
        requests: Iterable[PairingRequest],
    ) -> PairingRequestBook:
        """Restore a book from persisted requests."""
        book = cls(index)
        for request in requests:
            book._requests[request.request_id] = request
        return book

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        requester_id: str,
        recipient_id: str,
        teach_skills: Iterable[str],
        learn_skills: Iterable[str],
        message: Optional[str] = None,
        now: Optional[datetime] = None,
        on_created: Optional[RequestCallback] = None,
    ) -> PairingRequest:
        """Create a PENDING request.

        Skills are validated against the live skill index once, here.
        A teach skill must be one the requester teaches or the recipient
        seeks; a learn skill must be one the recipient teaches or the
        requester seeks.

        Raises:
            InvalidRequest: Self-request, no skills, skill outside both
                parties' sets, or a pending request already exists.
            UserNotFound: Either party is not indexed.
            InvalidSkill: A skill label is malformed.
        """
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

        if requester_id == recipient_id:
            raise InvalidRequest("Cannot send a pairing request to yourself")

        requester = self._index.get(requester_id)
        if requester is None:
            raise UserNotFound(f"Requester not found: {requester_id}")
        recipient = self._index.get(recipient_id)
        if recipient is None:
            raise UserNotFound(f"Recipient not found: {recipient_id}")

        teach = normalize_skills(teach_skills)
        learn = normalize_skills(learn_skills)
        if not teach and not learn:
            raise InvalidRequest("A pairing request must name at least one skill")

        errors: list[str] = []
        teach_ok = requester.teach_skills | recipient.learn_skills
        for skill in sorted(teach - teach_ok):
            errors.append(
                f"'{skill}' is neither taught by {requester_id} nor sought by {recipient_id}"
            )
        learn_ok = recipient.teach_skills | requester.learn_skills
        for skill in sorted(learn - learn_ok):
            errors.append(
                f"'{skill}' is neither taught by {recipient_id} nor sought by {requester_id}"
            )
        if errors:
            raise InvalidRequest("; ".join(errors))

        with self._create_lock:
            for existing in self._requests.values():
                if (
                    existing.requester_id == requester_id
                    and existing.recipient_id == recipient_id
                    and existing.status == RequestStatus.PENDING
                ):
                    raise InvalidRequest(
                        f"A pending request from {requester_id} to {recipient_id} "
                        f"already exists: {existing.request_id}"
                    )

            request = PairingRequest(
                request_id=f"req_{uuid.uuid4().hex[:12]}",
                requester_id=requester_id,
                recipient_id=recipient_id,
                teach_skills=teach,
                learn_skills=learn,
                status=RequestStatus.PENDING,
                message=message.strip() if message and message.strip() else None,
                created_utc=now,
                updated_utc=now,
            )
            self._requests[request.request_id] = request
            if on_created is not None:
                try:
                    on_created(request)
                except BaseException:
                    del self._requests[request.request_id]
                    raise

        logger.info(
            "Pairing request %s created: %s → %s",
            request.request_id, requester_id, recipient_id,
        )
        return request

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def accept(
        self,
        request_id: str,
        acting_user_id: str,
        now: Optional[datetime] = None,
        on_accepted: Optional[RequestCallback] = None,
    ) -> PairingRequest:
        """PENDING → ACCEPTED. Recipient only."""
        return self._transition(
            request_id, RequestStatus.ACCEPTED, acting_user_id, now, on_accepted,
        )

    def decline(
        self,
        request_id: str,
        acting_user_id: str,
        now: Optional[datetime] = None,
        on_declined: Optional[RequestCallback] = None,
    ) -> PairingRequest:
        """PENDING → DECLINED. Recipient only."""
        return self._transition(
            request_id, RequestStatus.DECLINED, acting_user_id, now, on_declined,
        )

    def cancel(
        self,
        request_id: str,
        acting_user_id: str,
        now: Optional[datetime] = None,
        on_cancelled: Optional[RequestCallback] = None,
    ) -> PairingRequest:
        """PENDING → CANCELLED. Requester only."""
        return self._transition(
            request_id, RequestStatus.CANCELLED, acting_user_id, now, on_cancelled,
        )

    def _transition(
        self,
        request_id: str,
        target: RequestStatus,
        acting_user_id: str,
        now: Optional[datetime],
        on_applied: Optional[RequestCallback],
    ) -> PairingRequest:
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        request = self.get_or_raise(request_id)

        with self._locks.hold(request_id):
            PairingRequestStateMachine.check_transition(request, target, acting_user_id)

            prior_status = request.status
            prior_updated = request.updated_utc
            request.status = target
            request.updated_utc = now

            if on_applied is not None:
                try:
                    on_applied(request)
                except BaseException:
                    request.status = prior_status
                    request.updated_utc = prior_updated
                    raise

        logger.info(
            "Pairing request %s %s by %s", request_id, target.value, acting_user_id,
        )
        return request

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> Optional[PairingRequest]:
        return self._requests.get(request_id)

    def get_or_raise(self, request_id: str) -> PairingRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFound(f"Pairing request not found: {request_id}")
        return request

    def list_for_user(
        self,
        user_id: str,
        role: str = "all",
        status: Optional[RequestStatus] = None,
    ) -> list[PairingRequest]:
        """Requests sent and/or received by ``user_id``, newest first.

        Args:
            role: "sent", "received", or "all".
            status: Optional status filter.
        """
        if role not in ("sent", "received", "all"):
            raise ValueError(f"role must be 'sent', 'received' or 'all', got '{role}'")

        results: list[PairingRequest] = []
        for request in list(self._requests.values()):
            if role == "sent" and request.requester_id != user_id:
                continue
            if role == "received" and request.recipient_id != user_id:
                continue
            if role == "all" and not request.involves(user_id):
                continue
            if status is not None and request.status != status:
                continue
            results.append(request)

        _epoch = datetime.min.replace(tzinfo=timezone.utc)
        results.sort(key=lambda r: r.created_utc or _epoch, reverse=True)
        return results

    def all(self) -> list[PairingRequest]:
        return list(self._requests.values())

    def __len__(self) -> int:
        return len(self._requests)
