"""
Tests for agentkb.fts — tokenizer handling, trigger sync, rebuild, query errors.
"""

import pytest

from agentkb.errors import ValidationError
from agentkb.failures import FailureLedger
from agentkb.fts import (
    FTS_TOKENIZER_PRESETS,
    check_query,
    fts_schema_sql,
    rebuild,
    resolve_tokenizer,
    validate_tokenizer,
)
from agentkb.memory import MemoryStore
from agentkb.store import Database


@pytest.fixture
def db():
    d = Database(":memory:")
    yield d
    d.close()


class TestTokenizer:
    def test_presets_resolve(self):
        assert resolve_tokenizer("en") == "porter unicode61"
        assert resolve_tokenizer("default") == "unicode61"

    def test_unknown_passes_through(self):
        assert resolve_tokenizer("trigram") == "trigram"

    def test_all_presets_are_safe(self):
        for value in FTS_TOKENIZER_PRESETS.values():
            assert validate_tokenizer(value) == value

    @pytest.mark.parametrize("bad", ["", "   ", "unicode61'", "a;b", "x(y)"])
    def test_unsafe_rejected(self, bad):
        with pytest.raises(ValidationError):
            validate_tokenizer(bad)

    def test_schema_embeds_tokenizer(self):
        sql = fts_schema_sql("porter unicode61")
        assert "tokenize='porter unicode61'" in sql

    def test_porter_stemming(self):
        d = Database(":memory:", fts_tokenizer="porter unicode61")
        try:
            store = MemoryStore(d)
            store.write("k", "running tests every morning")
            assert [e.key for e in store.search("run")] == ["k"]
        finally:
            d.close()


class TestQueryChecks:
    @pytest.mark.parametrize("query", ["", "   ", None])
    def test_empty_query(self, query):
        with pytest.raises(ValidationError):
            check_query(query)

    def test_malformed_match_is_validation_error(self, db):
        MemoryStore(db).write("k", "content")
        with pytest.raises(ValidationError):
            MemoryStore(db).search('"unbalanced')


class TestTriggerSync:
    def test_update_reindexes(self, db):
        store = MemoryStore(db)
        store.write("k", "alpha content")
        store.write("k", "beta content")
        assert store.search("alpha") == []
        assert [e.key for e in store.search("beta")] == ["k"]

    def test_delete_unindexes(self, db):
        store = MemoryStore(db)
        store.write("k", "gamma")
        store.delete("k")
        assert store.search("gamma") == []

    def test_failure_solution_searchable_after_update(self, db):
        ledger = FailureLedger(db)
        f = ledger.record("ImportError: no module")
        ledger.update(f.id, "reinstall the virtualenv")
        assert [x.id for x in ledger.search("virtualenv")] == [f.id]


class TestRebuild:
    def test_rebuild_counts(self, db):
        store = MemoryStore(db)
        store.write("a", "one")
        store.write("b", "two")
        FailureLedger(db).record("E1")
        counts = rebuild(db)
        assert counts == {"memory_fts": 2, "failures_fts": 1}

    def test_search_after_rebuild(self, db):
        store = MemoryStore(db)
        store.write("a", "delta epsilon")
        rebuild(db)
        assert [e.key for e in store.search("epsilon")] == ["a"]
