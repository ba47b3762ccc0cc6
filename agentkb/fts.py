"""
Full-Text Index — FTS5 external-content tables for memory and failures

Two virtual tables mirror their source tables without duplicating data:

    memory_fts    (key, content, tags)                      over memory
    failures_fts  (error_pattern, error_message, solution)  over failures

Three triggers per table keep the index in sync.  Triggers run inside the
mutating statement, so an index entry is never observably stale relative
to its row.  Search results are always joined back to the source table.

Query language is raw FTS5: AND / OR / NOT, "quoted phrases", prefix*.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from typing import Any, Dict, List, Sequence

from agentkb.errors import ValidationError

logger = logging.getLogger(__name__)

# Conservative whitelist for FTS5 tokenizer strings: only alphanumeric, space,
# underscore, dot and hyphen.  Rejects quotes, semicolons, parentheses.
_FTS_TOKENIZER_PATTERN = re.compile(r"^[a-zA-Z0-9_ .\-]+$")

FTS_TOKENIZER_PRESETS = {
    "default": "unicode61",
    "en": "porter unicode61",
    "fold": "unicode61 remove_diacritics 2",
}

FTS_TABLES = ("memory_fts", "failures_fts")

# sqlite3 messages produced by malformed MATCH expressions
_QUERY_ERROR_MARKERS = ("fts5:", "no such column", "unterminated string", "malformed match")


def validate_tokenizer(tokenizer: str) -> str:
    """Validate and return a safe FTS5 tokenizer string."""
    tokenizer = tokenizer.strip()
    if not tokenizer:
        raise ValidationError("FTS5 tokenizer string cannot be empty")
    if not _FTS_TOKENIZER_PATTERN.match(tokenizer):
        raise ValidationError(
            f"Unsafe FTS5 tokenizer string: {tokenizer!r} "
            "(only [a-zA-Z0-9_ .-] characters allowed)"
        )
    return tokenizer


def resolve_tokenizer(value: str) -> str:
    """Preset name to tokenizer string; unknown values pass through."""
    return FTS_TOKENIZER_PRESETS.get(value, value)


def fts_schema_sql(tokenizer: str) -> str:
    """Generate FTS5 tables and sync triggers with a validated tokenizer."""
    safe = validate_tokenizer(tokenizer)
    return f"""
CREATE VIRTUAL TABLE IF NOT EXISTS memory_fts USING fts5(
    key, content, tags,
    content='memory',
    content_rowid='id',
    tokenize='{safe}'
);

CREATE VIRTUAL TABLE IF NOT EXISTS failures_fts USING fts5(
    error_pattern, error_message, solution,
    content='failures',
    content_rowid='id',
    tokenize='{safe}'
);

CREATE TRIGGER IF NOT EXISTS memory_ai AFTER INSERT ON memory BEGIN
    INSERT INTO memory_fts(rowid, key, content, tags)
    VALUES (new.id, new.key, new.content, new.tags);
END;

CREATE TRIGGER IF NOT EXISTS memory_ad AFTER DELETE ON memory BEGIN
    INSERT INTO memory_fts(memory_fts, rowid, key, content, tags)
    VALUES ('delete', old.id, old.key, old.content, old.tags);
END;

CREATE TRIGGER IF NOT EXISTS memory_au AFTER UPDATE ON memory BEGIN
    INSERT INTO memory_fts(memory_fts, rowid, key, content, tags)
    VALUES ('delete', old.id, old.key, old.content, old.tags);
    INSERT INTO memory_fts(rowid, key, content, tags)
    VALUES (new.id, new.key, new.content, new.tags);
END;

CREATE TRIGGER IF NOT EXISTS failures_ai AFTER INSERT ON failures BEGIN
    INSERT INTO failures_fts(rowid, error_pattern, error_message, solution)
    VALUES (new.id, new.error_pattern, new.error_message, new.solution);
END;

CREATE TRIGGER IF NOT EXISTS failures_ad AFTER DELETE ON failures BEGIN
    INSERT INTO failures_fts(failures_fts, rowid, error_pattern, error_message, solution)
    VALUES ('delete', old.id, old.error_pattern, old.error_message, old.solution);
END;

CREATE TRIGGER IF NOT EXISTS failures_au AFTER UPDATE ON failures BEGIN
    INSERT INTO failures_fts(failures_fts, rowid, error_pattern, error_message, solution)
    VALUES ('delete', old.id, old.error_pattern, old.error_message, old.solution);
    INSERT INTO failures_fts(rowid, error_pattern, error_message, solution)
    VALUES (new.id, new.error_pattern, new.error_message, new.solution);
END;
"""


def check_query(query: str) -> str:
    """Reject empty or blank search queries."""
    if query is None or not str(query).strip():
        raise ValidationError("Search query must not be empty")
    return str(query).strip()


def is_query_error(exc: sqlite3.Error) -> bool:
    """True when a sqlite3 error was caused by a malformed MATCH expression."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _QUERY_ERROR_MARKERS)


def run_match(
    conn: sqlite3.Connection,
    sql: str,
    params: Sequence[Any],
    query: str,
) -> List[sqlite3.Row]:
    """Execute a MATCH statement; malformed queries raise ValidationError."""
    try:
        return conn.execute(sql, params).fetchall()
    except sqlite3.OperationalError as exc:
        if is_query_error(exc):
            raise ValidationError(f"Invalid search query {query!r}: {exc}") from exc
        raise


def rebuild(db) -> Dict[str, int]:
    """Re-populate both FTS indexes from their source tables.

    Useful after bulk imports done outside agentkb.  Returns the number of
    rows indexed per FTS table.
    """
    counts: Dict[str, int] = {}
    with db.transaction() as conn:
        for fts_table, source in (("memory_fts", "memory"), ("failures_fts", "failures")):
            conn.execute(f"INSERT INTO {fts_table}({fts_table}) VALUES ('rebuild')")
            counts[fts_table] = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM {source}"
            ).fetchone()["cnt"]
    logger.info(
        "FTS5 indexes rebuilt: memory=%d failures=%d",
        counts["memory_fts"], counts["failures_fts"],
    )
    return counts
