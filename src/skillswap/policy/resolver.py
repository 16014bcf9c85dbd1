"""Policy resolver — loads exchange policy from the config directory.

All tunable behaviour of the engine (match threshold, session defaults,
attendance policy, rating bounds) lives in ``exchange_policy.json``. Every
key has a built-in default so the engine runs with no config file at all.

Usage:
    resolver = PolicyResolver.from_config_dir(config_dir)
    lo, hi = resolver.rating_bounds()
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


POLICY_FILENAME = "exchange_policy.json"

ATTENDANCE_AFTER_START = "after_start"
ATTENDANCE_ANY_TIME = "any_time"
ATTENDANCE_POLICIES = (ATTENDANCE_AFTER_START, ATTENDANCE_ANY_TIME)

_DEFAULTS: dict[str, Any] = {
    "matching": {
        "min_match_score": 0.0,
        "default_limit": 0,
    },
    "sessions": {
        "default_duration_minutes": 60,
        "default_location": "online",
        "default_lead_days": 7,
        "attendance_policy": ATTENDANCE_AFTER_START,
        "auto_complete_on_full_attendance": False,
    },
    "ratings": {
        "min": 1,
        "max": 5,
    },
}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class SessionDefaults:
    """Defaults applied to the session auto-created on acceptance."""
    duration_minutes: int
    location: str
    lead_days: int


class PolicyResolver:
    """Read-only view over the exchange policy configuration."""

    def __init__(self, policy: dict[str, Any], source: Optional[Path] = None) -> None:
        if not isinstance(policy, dict):
            raise ValueError("Invalid exchange policy: top level must be an object")
        merged = copy.deepcopy(_DEFAULTS)
        for section, values in policy.items():
            if isinstance(values, dict) and section in merged:
                merged[section].update(values)
            else:
                merged[section] = values
        self._policy = merged
        self._source = source
        errors = self.validate()
        if errors:
            raise ValueError("Invalid exchange policy: " + "; ".join(errors))

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load policy from ``config_dir/exchange_policy.json``.

        A missing file yields the built-in defaults.
        """
        path = Path(config_dir) / POLICY_FILENAME
        if not path.exists():
            return cls({}, source=None)
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(data, source=path)

    @classmethod
    def defaults(cls) -> PolicyResolver:
        return cls({})

    @property
    def source(self) -> Optional[Path]:
        return self._source

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def min_match_score(self) -> float:
        """Candidates must score strictly above this value."""
        return float(self._policy["matching"]["min_match_score"])

    def default_match_limit(self) -> int:
        return int(self._policy["matching"]["default_limit"])

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def session_defaults(self) -> SessionDefaults:
        s = self._policy["sessions"]
        return SessionDefaults(
            duration_minutes=int(s["default_duration_minutes"]),
            location=str(s["default_location"]),
            lead_days=int(s["default_lead_days"]),
        )

    def attendance_policy(self) -> str:
        return self._policy["sessions"]["attendance_policy"]

    def auto_complete_on_full_attendance(self) -> bool:
        return bool(self._policy["sessions"]["auto_complete_on_full_attendance"])

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    def rating_bounds(self) -> tuple[int, int]:
        """Return the closed (min, max) rating range."""
        r = self._policy["ratings"]
        return (int(r["min"]), int(r["max"]))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        """Check policy types and invariants. Returns errors (empty = OK)."""
        errors: list[str] = []
        for section in _DEFAULTS:
            if not isinstance(self._policy.get(section), dict):
                errors.append(f"{section} must be an object")
        if errors:
            return errors

        matching = self._policy["matching"]
        sessions = self._policy["sessions"]
        ratings = self._policy["ratings"]

        if not _is_number(matching["min_match_score"]) or matching["min_match_score"] < 0:
            errors.append(
                f"matching.min_match_score must be a number >= 0, "
                f"got {matching['min_match_score']!r}"
            )
        if not _is_int(matching["default_limit"]) or matching["default_limit"] < 0:
            errors.append(
                f"matching.default_limit must be an integer >= 0, "
                f"got {matching['default_limit']!r}"
            )
        if (
            not _is_int(sessions["default_duration_minutes"])
            or sessions["default_duration_minutes"] <= 0
        ):
            errors.append(
                "sessions.default_duration_minutes must be an integer > 0, "
                f"got {sessions['default_duration_minutes']!r}"
            )
        if not _is_int(sessions["default_lead_days"]) or sessions["default_lead_days"] < 0:
            errors.append(
                "sessions.default_lead_days must be an integer >= 0, "
                f"got {sessions['default_lead_days']!r}"
            )
        location = sessions["default_location"]
        if not isinstance(location, str) or not location.strip():
            errors.append(
                f"sessions.default_location must be a non-empty string, got {location!r}"
            )
        if sessions["attendance_policy"] not in ATTENDANCE_POLICIES:
            errors.append(
                f"sessions.attendance_policy must be one of {ATTENDANCE_POLICIES}, "
                f"got {sessions['attendance_policy']!r}"
            )
        if not isinstance(sessions["auto_complete_on_full_attendance"], bool):
            errors.append(
                "sessions.auto_complete_on_full_attendance must be true or false, "
                f"got {sessions['auto_complete_on_full_attendance']!r}"
            )
        if not _is_int(ratings["min"]) or not _is_int(ratings["max"]):
            errors.append("ratings.min and ratings.max must be integers")
        elif ratings["min"] > ratings["max"]:
            errors.append(
                f"ratings.min ({ratings['min']}) cannot exceed ratings.max ({ratings['max']})"
            )
        return errors

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._policy)
