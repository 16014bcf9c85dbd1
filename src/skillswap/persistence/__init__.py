"""Persistence — append-only audit log and state snapshots."""

from skillswap.persistence.event_log import EventKind, EventLog, EventRecord
from skillswap.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
