"""
Tests for agentkb.failures — dedup, solution preservation, search, stats.
"""

import time

import pytest

from agentkb.errors import ValidationError
from agentkb.failures import FailureLedger
from agentkb.store import Database


@pytest.fixture
def ledger(tmp_path):
    d = Database(str(tmp_path / "kb.db"))
    yield FailureLedger(d)
    d.close()


class TestRecord:
    def test_first_occurrence(self, ledger):
        f = ledger.record("TypeError: x is undefined", error_message="full trace",
                          skill_name="evolve", project_path="/p")
        assert f.id is not None
        assert f.occurrence_count == 1
        assert f.error_message == "full trace"
        assert f.solution is None

    def test_repeat_increments(self, ledger):
        first = ledger.record("E: timeout")
        time.sleep(0.01)
        second = ledger.record("E: timeout")
        assert second.id == first.id
        assert second.occurrence_count == 2
        assert second.last_seen_at > first.last_seen_at
        assert second.created_at == first.created_at

    def test_solution_preserved_when_absent(self, ledger):
        ledger.record("E: timeout", solution="raise the timeout")
        again = ledger.record("E: timeout")
        assert again.solution == "raise the timeout"
        empty = ledger.record("E: timeout", solution="")
        assert empty.solution == "raise the timeout"
        assert empty.occurrence_count == 3

    def test_solution_replaced_when_given(self, ledger):
        ledger.record("E: timeout", solution="old fix")
        f = ledger.record("E: timeout", solution="new fix")
        assert f.solution == "new fix"

    def test_first_skill_kept(self, ledger):
        ledger.record("E", skill_name="first")
        f = ledger.record("E", skill_name="second")
        assert f.skill_name == "first"

    @pytest.mark.parametrize("pattern", ["", "  "])
    def test_empty_pattern_rejected(self, ledger, pattern):
        with pytest.raises(ValidationError):
            ledger.record(pattern)


class TestSearch:
    def test_frequency_first(self, ledger):
        ledger.record("disk quota exceeded on build")
        for _ in range(3):
            ledger.record("network build timeout")
        results = ledger.search("build")
        assert [f.error_pattern for f in results] == [
            "network build timeout", "disk quota exceeded on build",
        ]

    def test_matches_solution(self, ledger):
        ledger.record("E: lockfile", solution="delete node_modules")
        assert len(ledger.search("node")) == 1

    def test_empty_query(self, ledger):
        with pytest.raises(ValidationError):
            ledger.search("")


class TestGetListUpdateDelete:
    def test_get(self, ledger):
        f = ledger.record("E")
        assert ledger.get(f.id).error_pattern == "E"
        assert ledger.get(9999) is None

    def test_list_by_skill(self, ledger):
        ledger.record("E1", skill_name="a")
        ledger.record("E2", skill_name="b")
        ledger.record("E2", skill_name="b")
        assert [f.error_pattern for f in ledger.list()] == ["E2", "E1"]
        assert [f.error_pattern for f in ledger.list(skill_name="a")] == ["E1"]

    def test_update(self, ledger):
        f = ledger.record("E")
        updated = ledger.update(f.id, "the fix")
        assert updated.solution == "the fix"
        assert updated.occurrence_count == 1

    def test_update_missing(self, ledger):
        assert ledger.update(9999, "fix") is None

    def test_delete(self, ledger):
        f = ledger.record("E")
        assert ledger.delete(f.id)["deleted"] is True
        assert ledger.delete(f.id)["deleted"] is False
        assert ledger.get(f.id) is None


class TestStats:
    def test_stats(self, ledger):
        ledger.record("E1", solution="fix", skill_name="a")
        ledger.record("E2", skill_name="a")
        ledger.record("E2")
        ledger.record("E3", skill_name="b", solution="")
        stats = ledger.stats()
        assert stats["total"] == 3
        assert stats["with_solution"] == 1
        assert stats["most_common"].error_pattern == "E2"
        assert stats["by_skill"] == {"a": 2, "b": 1}

    def test_empty(self, ledger):
        stats = ledger.stats()
        assert stats["total"] == 0
        assert stats["most_common"] is None
        assert stats["by_skill"] == {}
