"""Tests for the skill index — proves inverse lookups stay consistent."""

import threading

import pytest

from skillswap.errors import InvalidSkill
from skillswap.models.user import User
from skillswap.skills.index import SkillIndex


def _make_user(user_id: str, teach=(), learn=()) -> User:
    return User(user_id, fullname=user_id.title(), teach_skills=teach, learn_skills=learn)


@pytest.fixture
def index() -> SkillIndex:
    idx = SkillIndex()
    idx.index(_make_user("alice", teach={"French"}, learn={"Guitar"}))
    idx.index(_make_user("bob", teach={"guitar"}, learn={"french", "cooking"}))
    return idx


class TestIndexing:
    def test_teachers_and_seekers(self, index: SkillIndex) -> None:
        assert index.teachers_of("french") == frozenset({"alice"})
        assert index.seekers_of("french") == frozenset({"bob"})
        assert index.teachers_of("guitar") == frozenset({"bob"})

    def test_lookup_normalizes_query(self, index: SkillIndex) -> None:
        assert index.teachers_of("  FRENCH ") == frozenset({"alice"})

    def test_stored_snapshot_is_normalized(self, index: SkillIndex) -> None:
        assert index.get("alice").teach_skills == frozenset({"french"})

    def test_unknown_skill_is_empty(self, index: SkillIndex) -> None:
        assert index.teachers_of("juggling") == frozenset()

    def test_reindex_replaces_entries(self, index: SkillIndex) -> None:
        index.index(_make_user("alice", teach={"spanish"}, learn={"guitar"}))
        assert index.teachers_of("french") == frozenset()
        assert index.teachers_of("spanish") == frozenset({"alice"})
        assert "french" in index.skills()  # bob still seeks it

    def test_reindex_is_idempotent(self, index: SkillIndex) -> None:
        before = (index.skills(), index.teachers_of("french"), index.seekers_of("guitar"))
        index.index(_make_user("alice", teach={"French"}, learn={"Guitar"}))
        after = (index.skills(), index.teachers_of("french"), index.seekers_of("guitar"))
        assert before == after
        assert len(index) == 2

    def test_invalid_skill_leaves_index_untouched(self, index: SkillIndex) -> None:
        with pytest.raises(InvalidSkill):
            index.index(_make_user("alice", teach={"german", ""}))
        assert index.get("alice").teach_skills == frozenset({"french"})
        assert index.teachers_of("german") == frozenset()

    def test_membership_and_listing(self, index: SkillIndex) -> None:
        assert "alice" in index
        assert "carol" not in index
        assert index.user_ids() == ["alice", "bob"]
        assert [u.user_id for u in index] == ["alice", "bob"]


class TestSearch:
    @pytest.fixture
    def crowd(self, index: SkillIndex) -> SkillIndex:
        index.index(_make_user("carol", teach={"French", "piano"}, learn={"cooking"}))
        index.index(_make_user("dave", learn={"piano"}))
        return index

    def test_no_filters_lists_everyone(self, crowd: SkillIndex) -> None:
        assert [u.user_id for u in crowd.search()] == ["alice", "bob", "carol", "dave"]

    def test_teach_filter_matches_any(self, crowd: SkillIndex) -> None:
        result = crowd.search(teach_skills=["guitar", "PIANO"])
        assert [u.user_id for u in result] == ["bob", "carol"]

    def test_filters_intersect(self, crowd: SkillIndex) -> None:
        result = crowd.search(teach_skills=[" french "], learn_skills=["cooking"])
        assert [u.user_id for u in result] == ["carol"]

    def test_exclude_user(self, crowd: SkillIndex) -> None:
        result = crowd.search(learn_skills=["piano", "guitar"], exclude_user_id="dave")
        assert [u.user_id for u in result] == ["alice"]

    def test_unknown_skill_matches_nobody(self, crowd: SkillIndex) -> None:
        assert crowd.search(teach_skills=["juggling"]) == []

    def test_invalid_filter_rejected(self, crowd: SkillIndex) -> None:
        with pytest.raises(InvalidSkill):
            crowd.search(teach_skills=[""])


class TestRemoval:
    def test_remove_user(self, index: SkillIndex) -> None:
        assert index.remove("bob") is True
        assert "bob" not in index
        assert index.teachers_of("guitar") == frozenset()
        assert "cooking" not in index.skills()

    def test_remove_absent_user(self, index: SkillIndex) -> None:
        assert index.remove("nobody") is False


class TestConcurrentUpdates:
    def test_readers_never_see_half_updated_user(self) -> None:
        index = SkillIndex()
        index.index(_make_user("alice", teach={"a1", "a2"}))
        stop = threading.Event()
        torn: list[tuple] = []

        def writer() -> None:
            for i in range(300):
                skills = {"a1", "a2"} if i % 2 else {"b1", "b2"}
                index.index(_make_user("alice", teach=skills))
            stop.set()

        def reader() -> None:
            while not stop.is_set():
                user = index.get("alice")
                for skill in user.teach_skills:
                    if "alice" not in index.teachers_of(skill) and index.get("alice") is user:
                        torn.append((skill, user.teach_skills))

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert torn == []
        assert index.teachers_of("a1") | index.teachers_of("b1") == frozenset({"alice"})
