"""Per-entity mutual exclusion for request and session transitions."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class EntityLocks:
    """Hands out one lock per entity id.

    Two transitions on the same entity serialize; transitions on different
    entities proceed in parallel. Locks are created on first use and kept
    for the life of the registry (entities are never deleted).
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, entity_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(entity_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[entity_id] = lock
            return lock

    @contextmanager
    def hold(self, entity_id: str) -> Iterator[None]:
        with self.lock_for(entity_id):
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
