"""State store — JSON snapshot of users, pairing requests, and sessions.

The event log is the audit trail; the state store is the fast restart
path. A write replaces the whole file atomically (temp file + rename), so
a crash mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterable

from skillswap.models.exchange import LearningSession, PairingRequest
from skillswap.models.user import User

STATE_VERSION = 1


class StateStore:
    """File-backed snapshot of engine state."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = Path(storage_path)
        self._data: dict[str, Any] = {
            "version": STATE_VERSION,
            "users": [],
            "requests": [],
            "sessions": [],
        }
        if self._storage_path.exists():
            with self._storage_path.open("r", encoding="utf-8") as f:
                loaded = json.load(f)
            version = loaded.get("version", STATE_VERSION)
            if version != STATE_VERSION:
                raise ValueError(
                    f"Unsupported state version {version} in {self._storage_path}"
                )
            self._data.update(loaded)

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def load_users(self) -> list[User]:
        return [User.from_dict(d) for d in self._data.get("users", [])]

    def load_requests(self) -> list[PairingRequest]:
        return [PairingRequest.from_dict(d) for d in self._data.get("requests", [])]

    def load_sessions(self) -> list[LearningSession]:
        return [LearningSession.from_dict(d) for d in self._data.get("sessions", [])]

    def save(
        self,
        users: Iterable[User],
        requests: Iterable[PairingRequest],
        sessions: Iterable[LearningSession],
    ) -> None:
        """Replace the snapshot with the given state.

        Raises:
            OSError: If the file cannot be written.
        """
        data = {
            "version": STATE_VERSION,
            "users": [u.to_dict() for u in users],
            "requests": [r.to_dict() for r in requests],
            "sessions": [s.to_dict() for s in sessions],
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False)
        os.replace(tmp_path, self._storage_path)
        self._data = data
