"""
Memory Store — key-addressed knowledge entries

Each entry is addressed by a globally unique ``key``.  Writing an existing
key replaces content/tags/scope/source and refreshes ``updated_at``;
``created_at`` is never touched after the first write.  The FTS5 index
(memory_fts) follows every mutation through triggers.

Scopes are free-form strings: ``global`` or ``project:<name>``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from agentkb.errors import ValidationError, check_limit
from agentkb.fts import check_query, run_match
from agentkb.store import Database
from agentkb.types import DEFAULT_SCOPE, DEFAULT_SOURCE, MemoryEntry, _now_iso

logger = logging.getLogger(__name__)


def _escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``text`` matches literally (ESCAPE '\\')."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MemoryStore:
    """Knowledge entries with scoped visibility and full-text search."""

    def __init__(self, db: Database):
        self._db = db

    # -- Write operations --------------------------------------------------

    def write(
        self,
        key: str,
        content: str,
        tags: Optional[List[str]] = None,
        scope: str = DEFAULT_SCOPE,
        source: str = DEFAULT_SOURCE,
    ) -> Dict[str, Any]:
        """Insert or replace the entry stored under ``key``."""
        if not key or not str(key).strip():
            raise ValidationError("Memory key must not be empty")
        if not isinstance(content, str):
            raise ValidationError("Memory content must be a string")
        if tags is not None and not isinstance(tags, (list, tuple)):
            raise ValidationError("Memory tags must be a list of strings")
        if tags is not None and not all(isinstance(t, str) for t in tags):
            raise ValidationError("Memory tags must be strings")
        tags_json = json.dumps(list(tags)) if tags is not None else None
        now = _now_iso()
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO memory (key, content, tags, scope, source, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       content = excluded.content,
                       tags = excluded.tags,
                       scope = excluded.scope,
                       source = excluded.source,
                       updated_at = excluded.updated_at""",
                (key, content, tags_json, scope or DEFAULT_SCOPE, source, now, now),
            )
        logger.debug("memory write: key=%s scope=%s", key, scope)
        return {"success": True, "key": key}

    def delete(self, key: str) -> Dict[str, Any]:
        """Delete by key. A missing key reports ``deleted=False``."""
        with self._db.transaction() as conn:
            cur = conn.execute("DELETE FROM memory WHERE key = ?", (key,))
            deleted = cur.rowcount > 0
        logger.debug("memory delete: key=%s deleted=%s", key, deleted)
        return {"success": True, "deleted": deleted}

    # -- Query operations --------------------------------------------------

    def read(self, key: str) -> Optional[MemoryEntry]:
        """Read a single entry by key."""
        with self._db.transaction(write=False) as conn:
            row = conn.execute(
                "SELECT * FROM memory WHERE key = ?", (key,)
            ).fetchone()
        return MemoryEntry.from_row(row) if row is not None else None

    def search(
        self,
        query: str,
        scope: Optional[str] = None,
        limit: int = 20,
    ) -> List[MemoryEntry]:
        """Full-text search over key/content/tags, best match first.

        ``query`` uses FTS5 syntax (AND, OR, NOT, "phrase", prefix*).
        """
        query = check_query(query)
        check_limit(limit)
        conditions = ["memory_fts MATCH ?"]
        params: list = [query]
        if scope:
            conditions.append("m.scope = ?")
            params.append(scope)
        sql = (
            "SELECT m.* FROM memory m "
            "JOIN memory_fts fts ON m.id = fts.rowid "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY fts.rank LIMIT ?"
        )
        params.append(limit)
        with self._db.transaction(write=False) as conn:
            rows = run_match(conn, sql, params, query)
        return [MemoryEntry.from_row(row) for row in rows]

    def list(
        self,
        scope: Optional[str] = None,
        prefix: Optional[str] = None,
        limit: int = 100,
    ) -> List[MemoryEntry]:
        """List entries, most recently updated first."""
        check_limit(limit)
        conditions = []
        params: list = []
        if scope:
            conditions.append("scope = ?")
            params.append(scope)
        if prefix:
            conditions.append("key LIKE ? ESCAPE '\\'")
            params.append(_escape_like(prefix) + "%")
        where = " AND ".join(conditions) if conditions else "1=1"
        with self._db.transaction(write=False) as conn:
            rows = conn.execute(
                f"SELECT * FROM memory WHERE {where} "
                "ORDER BY updated_at DESC, id DESC LIMIT ?",
                params + [limit],
            ).fetchall()
        return [MemoryEntry.from_row(row) for row in rows]

    # -- Stats -------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Total entry count plus counts grouped by scope and by source."""
        with self._db.transaction(write=False) as conn:
            total = conn.execute(
                "SELECT COUNT(*) AS cnt FROM memory"
            ).fetchone()["cnt"]
            by_scope: Dict[str, int] = {}
            for row in conn.execute(
                "SELECT scope, COUNT(*) AS cnt FROM memory GROUP BY scope"
            ).fetchall():
                name = row["scope"] or DEFAULT_SCOPE
                by_scope[name] = by_scope.get(name, 0) + row["cnt"]
            by_source: Dict[str, int] = {}
            for row in conn.execute(
                "SELECT source, COUNT(*) AS cnt FROM memory GROUP BY source"
            ).fetchall():
                name = row["source"] or "unknown"
                by_source[name] = by_source.get(name, 0) + row["cnt"]
        return {"total": total, "by_scope": by_scope, "by_source": by_source}
