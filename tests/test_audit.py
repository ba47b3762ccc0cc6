"""
Tests for agentkb.mcp.audit — structured JSONL audit records.

Invariants tested:
- Content never appears beyond a 120-char preview
- Every record carries v, ts, rid, tool, outcome, ms
- rid is unique per call
- Audit write failures never propagate
"""

import hashlib
import io
import json

import pytest

from agentkb.mcp.audit import AUDIT_SCHEMA_VERSION, PREVIEW_MAX_CHARS, AuditLogger


@pytest.fixture
def buf():
    return io.StringIO()


@pytest.fixture
def audit(buf):
    return AuditLogger(output=buf)


def _parse_record(buf: io.StringIO) -> dict:
    buf.seek(0)
    lines = [ln for ln in buf.read().strip().splitlines() if ln]
    assert len(lines) == 1, f"Expected 1 line, got {len(lines)}"
    return json.loads(lines[0])


class TestContentDetail:
    def test_short_content_kept(self):
        detail = AuditLogger.make_content_detail("hello world")
        assert detail["preview"] == "hello world"

    def test_long_content_truncated(self):
        detail = AuditLogger.make_content_detail("A" * 300)
        assert len(detail["preview"]) <= PREVIEW_MAX_CHARS + 1
        assert detail["preview"].endswith("…")

    def test_newlines_removed(self):
        detail = AuditLogger.make_content_detail("one\ntwo\r\nthree")
        assert "\n" not in detail["preview"]
        assert "\r" not in detail["preview"]

    def test_hash_and_bytes(self):
        content = "café crème"
        detail = AuditLogger.make_content_detail(content)
        assert detail["hash"] == hashlib.sha256(content.encode("utf-8")).hexdigest()
        assert detail["bytes"] == len(content.encode("utf-8"))


class TestRecord:
    REQUIRED_KEYS = {"v", "ts", "rid", "tool", "outcome", "ms"}

    def test_required_fields(self, audit, buf):
        audit.log("memory_write", audit.new_rid(), "ok", latency_ms=3.14159)
        record = _parse_record(buf)
        assert self.REQUIRED_KEYS <= set(record)
        assert record["v"] == AUDIT_SCHEMA_VERSION
        assert record["ms"] == 3.1
        assert record["ts"].endswith("Z")

    def test_detail_omitted_when_none(self, audit, buf):
        audit.log("memory_stats", audit.new_rid(), "ok")
        assert "d" not in _parse_record(buf)

    def test_detail_included(self, audit, buf):
        audit.log("failure_get", audit.new_rid(), "not_found", {"id": 7})
        record = _parse_record(buf)
        assert record["d"] == {"id": 7}
        assert record["outcome"] == "not_found"


class TestRequestId:
    def test_rid_is_hex(self, audit):
        rid = audit.new_rid()
        assert len(rid) == 32
        int(rid, 16)

    def test_rids_unique(self, audit):
        assert len({audit.new_rid() for _ in range(500)}) == 500


class TestFireAndForget:
    def test_closed_stream(self):
        closed = io.StringIO()
        closed.close()
        AuditLogger(output=closed).log("memory_write", "rid", "ok")

    def test_unserializable_detail(self, audit, buf):
        audit.log("context_set", "rid", "ok", {"value": object()})
        assert _parse_record(buf)["tool"] == "context_set"
