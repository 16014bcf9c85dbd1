"""Tests for the policy resolver — proves it loads and validates exchange policy."""

import json
from pathlib import Path

import pytest

from skillswap.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


class TestShippedPolicy:
    def test_loads_from_config_dir(self, resolver: PolicyResolver) -> None:
        assert resolver.source == CONFIG_DIR / "exchange_policy.json"
        assert resolver.validate() == []

    def test_match_defaults(self, resolver: PolicyResolver) -> None:
        assert resolver.min_match_score() == 0.0
        assert resolver.default_match_limit() == 0

    def test_session_defaults(self, resolver: PolicyResolver) -> None:
        d = resolver.session_defaults()
        assert d.duration_minutes == 60
        assert d.location == "online"
        assert d.lead_days == 7

    def test_attendance_defaults(self, resolver: PolicyResolver) -> None:
        assert resolver.attendance_policy() == "after_start"
        assert resolver.auto_complete_on_full_attendance() is False

    def test_rating_bounds(self, resolver: PolicyResolver) -> None:
        assert resolver.rating_bounds() == (1, 5)


class TestLoading:
    def test_missing_file_uses_defaults(self, tmp_path) -> None:
        resolver = PolicyResolver.from_config_dir(tmp_path)
        assert resolver.source is None
        assert resolver.as_dict() == PolicyResolver.defaults().as_dict()

    def test_partial_override_keeps_other_defaults(self, tmp_path) -> None:
        (tmp_path / "exchange_policy.json").write_text(
            json.dumps({"ratings": {"max": 10}}), encoding="utf-8",
        )
        resolver = PolicyResolver.from_config_dir(tmp_path)
        assert resolver.rating_bounds() == (1, 10)
        assert resolver.session_defaults().location == "online"

    def test_as_dict_is_a_copy(self, resolver: PolicyResolver) -> None:
        data = resolver.as_dict()
        data["ratings"]["max"] = 99
        assert resolver.rating_bounds() == (1, 5)


class TestValidation:
    @pytest.mark.parametrize("policy", [
        {"matching": {"min_match_score": -1}},
        {"matching": {"default_limit": -5}},
        {"sessions": {"default_duration_minutes": 0}},
        {"sessions": {"default_lead_days": -1}},
        {"sessions": {"default_location": "  "}},
        {"sessions": {"attendance_policy": "whenever"}},
        {"ratings": {"min": 6, "max": 5}},
        {"ratings": {"min": 1.5}},
    ])
    def test_invalid_policy_rejected(self, policy: dict) -> None:
        with pytest.raises(ValueError):
            PolicyResolver(policy)

    @pytest.mark.parametrize("policy", [
        {"sessions": {"auto_complete_on_full_attendance": "false"}},
        {"sessions": {"auto_complete_on_full_attendance": 0}},
        {"matching": {"min_match_score": "high"}},
        {"matching": {"default_limit": "10"}},
        {"matching": {"min_match_score": True}},
        {"sessions": {"default_duration_minutes": 45.5}},
        {"sessions": {"default_location": 7}},
        {"ratings": {"max": "5"}},
    ])
    def test_wrong_types_rejected(self, policy: dict) -> None:
        with pytest.raises(ValueError):
            PolicyResolver(policy)

    def test_string_false_is_not_truthy(self) -> None:
        with pytest.raises(ValueError, match="auto_complete_on_full_attendance"):
            PolicyResolver({"sessions": {"auto_complete_on_full_attendance": "false"}})

    def test_non_numeric_score_reports_error(self) -> None:
        with pytest.raises(ValueError, match="min_match_score must be a number"):
            PolicyResolver({"matching": {"min_match_score": "high"}})

    @pytest.mark.parametrize("policy", [
        {"sessions": "x"},
        {"ratings": [1, 5]},
    ])
    def test_section_must_be_object(self, policy: dict) -> None:
        with pytest.raises(ValueError, match="must be an object"):
            PolicyResolver(policy)

    def test_top_level_must_be_object(self) -> None:
        with pytest.raises(ValueError):
            PolicyResolver(["matching"])  # type: ignore[arg-type]

    def test_float_score_accepted(self) -> None:
        assert PolicyResolver({"matching": {"min_match_score": 0.5}}).min_match_score() == 0.5
