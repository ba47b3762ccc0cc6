"""
Tests for agentkb.context — JSON round-trip, TTL expiry, clear, share.
"""

import pytest

from agentkb.context import ContextStore
from agentkb.errors import ValidationError
from agentkb.store import Database


@pytest.fixture
def ctx(tmp_path):
    d = Database(str(tmp_path / "kb.db"))
    yield ContextStore(d)
    d.close()


class TestSetGet:
    @pytest.mark.parametrize("value", [
        {"files": ["a.py", "b.py"], "depth": 2, "ok": True},
        [1, 2, 3],
        "plain",
        42,
        None,
    ])
    def test_round_trip(self, ctx, value):
        ctx.set("s1", "k", value)
        assert ctx.get("s1", "k") == {"value": value}

    def test_missing(self, ctx):
        assert ctx.get("s1", "nope") is None

    def test_overwrite(self, ctx):
        ctx.set("s1", "k", 1)
        ctx.set("s1", "k", 2)
        assert ctx.get("s1", "k") == {"value": 2}
        assert len(ctx.list("s1")) == 1

    def test_sessions_isolated(self, ctx):
        ctx.set("s1", "k", "one")
        ctx.set("s2", "k", "two")
        assert ctx.get("s1", "k") == {"value": "one"}
        assert ctx.get("s2", "k") == {"value": "two"}

    def test_not_serializable(self, ctx):
        with pytest.raises(ValidationError):
            ctx.set("s1", "k", object())

    def test_required_ids(self, ctx):
        with pytest.raises(ValidationError):
            ctx.set("", "k", 1)

    @pytest.mark.parametrize("minutes", [
        float("nan"), float("inf"), float("-inf"), 1e12, 10 ** 400, "60", True,
    ])
    def test_unusable_expiry_rejected(self, ctx, minutes):
        with pytest.raises(ValidationError):
            ctx.set("s1", "k", 1, expires_in_minutes=minutes)
        assert ctx.get("s1", "k") is None


class TestExpiry:
    def test_expired_absent_from_get(self, ctx):
        ctx.set("s1", "old", "x", expires_in_minutes=-1)
        assert ctx.get("s1", "old") is None

    def test_expired_absent_from_list(self, ctx):
        ctx.set("s1", "old", "x", expires_in_minutes=-1)
        ctx.set("s1", "live", "y", expires_in_minutes=60)
        ctx.set("s1", "forever", "z")
        assert {e.key for e in ctx.list("s1")} == {"live", "forever"}

    def test_future_expiry_readable(self, ctx):
        ctx.set("s1", "k", "v", expires_in_minutes=5)
        entry = ctx.list("s1")[0]
        assert entry.expires_at is not None
        assert ctx.get("s1", "k") == {"value": "v"}

    def test_purge_expired(self, ctx):
        ctx.set("s1", "a", 1, expires_in_minutes=-1)
        ctx.set("s2", "b", 2, expires_in_minutes=-1)
        ctx.set("s2", "c", 3)
        assert ctx.purge_expired() == 2
        assert ctx.purge_expired() == 0


class TestListClearShare:
    def test_list_entries(self, ctx):
        ctx.set("s1", "a", {"x": 1}, skill_name="evolve")
        entry = ctx.list("s1")[0]
        assert entry.value == {"x": 1}
        assert entry.skill_name == "evolve"
        assert entry.session_id == "s1"

    def test_clear_session(self, ctx):
        ctx.set("s1", "a", 1)
        ctx.set("s1", "b", 2)
        ctx.set("s2", "a", 3)
        assert ctx.clear("s1") == {"success": True, "cleared": 2}
        assert ctx.list("s1") == []
        assert len(ctx.list("s2")) == 1

    def test_clear_all(self, ctx):
        ctx.set("s1", "a", 1)
        ctx.set("s2", "a", 2)
        assert ctx.clear()["cleared"] == 2

    def test_share_all(self, ctx):
        ctx.set("s1", "a", 1)
        ctx.set("s1", "b", {"deep": [1]})
        assert ctx.share("s1", "s2") == {"success": True, "shared": 2}
        assert ctx.get("s2", "b") == {"value": {"deep": [1]}}
        assert len(ctx.list("s1")) == 2

    def test_share_selected_keys(self, ctx):
        ctx.set("s1", "a", 1)
        ctx.set("s1", "b", 2)
        assert ctx.share("s1", "s2", keys=["b", "missing"])["shared"] == 1
        assert ctx.get("s2", "a") is None
        assert ctx.get("s2", "b") == {"value": 2}

    def test_share_overwrites_target(self, ctx):
        ctx.set("s1", "a", "new")
        ctx.set("s2", "a", "old")
        ctx.share("s1", "s2")
        assert ctx.get("s2", "a") == {"value": "new"}

    def test_share_skips_expired(self, ctx):
        ctx.set("s1", "gone", 1, expires_in_minutes=-1)
        assert ctx.share("s1", "s2")["shared"] == 0
