#!/usr/bin/env python3
"""SkillSwap policy checks against the shipped exchange policy file."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
POLICY_PATH = ROOT / "config" / "exchange_policy.json"

REQUIRED_KEYS = {
    "matching": ("min_match_score", "default_limit"),
    "sessions": (
        "default_duration_minutes",
        "default_location",
        "default_lead_days",
        "attendance_policy",
        "auto_complete_on_full_attendance",
    ),
    "ratings": ("min", "max"),
}
ATTENDANCE_POLICIES = ("after_start", "any_time")


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_policy(policy: dict) -> list[str]:
    """Return every violation found in ``policy`` (empty = OK)."""
    errors: list[str] = []

    # --- Structure ---
    for section, keys in REQUIRED_KEYS.items():
        values = policy.get(section)
        if not isinstance(values, dict):
            errors.append(f"missing section: {section}")
            continue
        for key in keys:
            if key not in values:
                errors.append(f"{section} missing key: {key}")
        for key in values:
            if key not in keys:
                errors.append(f"{section} has unknown key: {key}")
    if errors:
        return errors

    # --- Matching ---
    matching = policy["matching"]
    if not isinstance(matching["min_match_score"], (int, float)) or matching["min_match_score"] < 0:
        errors.append("matching.min_match_score must be a number >= 0")
    if not _is_int(matching["default_limit"]) or matching["default_limit"] < 0:
        errors.append("matching.default_limit must be an integer >= 0")

    # --- Sessions ---
    sessions = policy["sessions"]
    if not _is_int(sessions["default_duration_minutes"]) or sessions["default_duration_minutes"] <= 0:
        errors.append("sessions.default_duration_minutes must be an integer > 0")
    if not _is_int(sessions["default_lead_days"]) or sessions["default_lead_days"] < 0:
        errors.append("sessions.default_lead_days must be an integer >= 0")
    if not isinstance(sessions["default_location"], str) or not sessions["default_location"].strip():
        errors.append("sessions.default_location must be a non-empty string")
    if sessions["attendance_policy"] not in ATTENDANCE_POLICIES:
        errors.append(f"sessions.attendance_policy must be one of {ATTENDANCE_POLICIES}")
    if not isinstance(sessions["auto_complete_on_full_attendance"], bool):
        errors.append("sessions.auto_complete_on_full_attendance must be a boolean")

    # --- Ratings ---
    ratings = policy["ratings"]
    if not _is_int(ratings["min"]) or not _is_int(ratings["max"]):
        errors.append("ratings.min and ratings.max must be integers")
    elif ratings["min"] > ratings["max"]:
        errors.append("ratings.min cannot exceed ratings.max")
    elif ratings["min"] < 0:
        errors.append("ratings.min must be >= 0")

    return errors


def check(path: Path = POLICY_PATH) -> int:
    errors = check_policy(load_json(path))

    if errors:
        print("Policy check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Policy check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else POLICY_PATH))
