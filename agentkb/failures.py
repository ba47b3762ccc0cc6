"""
Failure Ledger — deduplicated error patterns and their solutions

``error_pattern`` acts as a natural key even though rows are addressed by a
generated id: recording a known pattern increments ``occurrence_count`` and
refreshes ``last_seen_at`` instead of inserting a duplicate.  On repeat,
``solution`` and ``error_message`` are only replaced by non-empty values
(coalesce semantics); ``skill_name`` and ``project_path`` keep their first
recorded value.

Search goes through failures_fts but orders by occurrence first, relevance
second, so recurring failures surface before merely relevant ones.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from agentkb.errors import ValidationError, check_limit
from agentkb.fts import check_query, run_match
from agentkb.store import Database
from agentkb.types import Failure, _now_iso

logger = logging.getLogger(__name__)


def _non_empty(value: Optional[str]) -> Optional[str]:
    return value if value else None


class FailureLedger:
    """Recurring failures with occurrence counts and accumulated solutions."""

    def __init__(self, db: Database):
        self._db = db

    def record(
        self,
        error_pattern: str,
        error_message: Optional[str] = None,
        solution: Optional[str] = None,
        skill_name: Optional[str] = None,
        project_path: Optional[str] = None,
    ) -> Failure:
        """Record one occurrence of ``error_pattern``; returns the stored row."""
        if not error_pattern or not str(error_pattern).strip():
            raise ValidationError("error_pattern must not be empty")
        now = _now_iso()
        with self._db.transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM failures WHERE error_pattern = ? ORDER BY id LIMIT 1",
                (error_pattern,),
            ).fetchone()
            if existing is not None:
                conn.execute(
                    """UPDATE failures
                       SET occurrence_count = COALESCE(occurrence_count, 0) + 1,
                           last_seen_at = ?,
                           solution = COALESCE(?, solution),
                           error_message = COALESCE(?, error_message)
                       WHERE id = ?""",
                    (now, _non_empty(solution), _non_empty(error_message), existing["id"]),
                )
            else:
                conn.execute(
                    """INSERT INTO failures
                       (error_pattern, error_message, solution, skill_name,
                        project_path, occurrence_count, last_seen_at, created_at)
                       VALUES (?, ?, ?, ?, ?, 1, ?, ?)""",
                    (error_pattern, _non_empty(error_message), _non_empty(solution),
                     _non_empty(skill_name), _non_empty(project_path), now, now),
                )
            row = conn.execute(
                "SELECT * FROM failures WHERE error_pattern = ? ORDER BY id LIMIT 1",
                (error_pattern,),
            ).fetchone()
        failure = Failure.from_row(row)
        logger.debug(
            "failure record: id=%s occurrences=%d", failure.id, failure.occurrence_count,
        )
        return failure

    def search(self, query: str, limit: int = 10) -> List[Failure]:
        """Full-text search; most frequent first, then best match."""
        query = check_query(query)
        check_limit(limit)
        sql = (
            "SELECT f.* FROM failures f "
            "JOIN failures_fts fts ON f.id = fts.rowid "
            "WHERE failures_fts MATCH ? "
            "ORDER BY f.occurrence_count DESC, fts.rank "
            "LIMIT ?"
        )
        with self._db.transaction(write=False) as conn:
            rows = run_match(conn, sql, [query, limit], query)
        return [Failure.from_row(row) for row in rows]

    def get(self, failure_id: int) -> Optional[Failure]:
        with self._db.transaction(write=False) as conn:
            row = conn.execute(
                "SELECT * FROM failures WHERE id = ?", (failure_id,)
            ).fetchone()
        return Failure.from_row(row) if row is not None else None

    def list(self, skill_name: Optional[str] = None, limit: int = 50) -> List[Failure]:
        """List failures by occurrence count, then recency."""
        check_limit(limit)
        with self._db.transaction(write=False) as conn:
            if skill_name:
                rows = conn.execute(
                    """SELECT * FROM failures WHERE skill_name = ?
                       ORDER BY occurrence_count DESC, last_seen_at DESC LIMIT ?""",
                    (skill_name, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    """SELECT * FROM failures
                       ORDER BY occurrence_count DESC, last_seen_at DESC LIMIT ?""",
                    (limit,),
                ).fetchall()
        return [Failure.from_row(row) for row in rows]

    def update(self, failure_id: int, solution: str) -> Optional[Failure]:
        """Set the solution of one row by id. Returns None for an unknown id."""
        if solution is None:
            raise ValidationError("solution is required")
        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE failures SET solution = ? WHERE id = ?",
                (solution, failure_id),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM failures WHERE id = ?", (failure_id,)
            ).fetchone()
        logger.debug("failure update: id=%s", failure_id)
        return Failure.from_row(row)

    def delete(self, failure_id: int) -> Dict[str, Any]:
        with self._db.transaction() as conn:
            cur = conn.execute("DELETE FROM failures WHERE id = ?", (failure_id,))
            deleted = cur.rowcount > 0
        return {"success": True, "deleted": deleted}

    def stats(self) -> Dict[str, Any]:
        """Totals, solved count, most common failure, failures per skill."""
        with self._db.transaction(write=False) as conn:
            total = conn.execute(
                "SELECT COUNT(*) AS cnt FROM failures"
            ).fetchone()["cnt"]
            with_solution = conn.execute(
                "SELECT COUNT(*) AS cnt FROM failures "
                "WHERE solution IS NOT NULL AND solution != ''"
            ).fetchone()["cnt"]
            most_common = conn.execute(
                "SELECT * FROM failures "
                "ORDER BY occurrence_count DESC, last_seen_at DESC LIMIT 1"
            ).fetchone()
            by_skill = {
                row["skill_name"]: row["cnt"]
                for row in conn.execute(
                    """SELECT skill_name, COUNT(*) AS cnt FROM failures
                       WHERE skill_name IS NOT NULL AND skill_name != ''
                       GROUP BY skill_name"""
                ).fetchall()
            }
        return {
            "total": total,
            "with_solution": with_solution,
            "most_common": Failure.from_row(most_common) if most_common is not None else None,
            "by_skill": by_skill,
        }
