"""Exchange lifecycle — pairing request negotiation and learning sessions.

Accepted requests spawn sessions: the request book drives the negotiation
state machine and the scheduler owns the sessions that follow.
"""

from skillswap.exchange.request_state_machine import (
    PairingRequestBook,
    PairingRequestStateMachine,
)
from skillswap.exchange.session_scheduler import SessionScheduler, SessionStateMachine

__all__ = [
    "PairingRequestBook",
    "PairingRequestStateMachine",
    "SessionScheduler",
    "SessionStateMachine",
]
