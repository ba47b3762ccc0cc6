"""
Context Store — short-lived, session-scoped values

Entries are unique per ``(session_id, key)``.  Values are stored as JSON
text so structured data round-trips; a payload that no longer decodes is
returned as its raw text.

Expiry is lazy: ``expires_at`` is fixed at write time and every read path
(get, list, share) first deletes all expired entries across sessions, then
reads.  There is no background sweep, so expired rows stay on disk until
the next read.
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
from typing import Any, Dict, List, Optional

from agentkb.errors import ValidationError
from agentkb.store import Database
from agentkb.types import ContextEntry, _iso_in_minutes, _now_iso, decode_value

logger = logging.getLogger(__name__)

_UPSERT_SQL = """INSERT INTO context (session_id, key, value, skill_name, expires_at, created_at)
   VALUES (?, ?, ?, ?, ?, ?)
   ON CONFLICT(session_id, key) DO UPDATE SET
       value = excluded.value,
       skill_name = excluded.skill_name,
       expires_at = excluded.expires_at"""


def _purge(conn: sqlite3.Connection) -> int:
    """Delete every expired entry, regardless of session."""
    cur = conn.execute(
        "DELETE FROM context WHERE expires_at IS NOT NULL AND expires_at < ?",
        (_now_iso(),),
    )
    if cur.rowcount:
        logger.debug("context purge: %d expired entries removed", cur.rowcount)
    return cur.rowcount


def _expiry(expires_in_minutes: float) -> str:
    """Absolute expiry timestamp; rejects values that are not finite numbers."""
    if isinstance(expires_in_minutes, bool) or not isinstance(expires_in_minutes, (int, float)):
        raise ValidationError("expires_in_minutes must be a number")
    try:
        finite = math.isfinite(expires_in_minutes)
        moment = _iso_in_minutes(expires_in_minutes) if finite else None
    except (OverflowError, ValueError) as exc:
        raise ValidationError(
            f"expires_in_minutes out of range: {expires_in_minutes!r}"
        ) from exc
    if moment is None:
        raise ValidationError(f"expires_in_minutes must be finite, got {expires_in_minutes!r}")
    return moment


class ContextStore:
    """TTL-bound key/value state shared between skills of a session."""

    def __init__(self, db: Database):
        self._db = db

    def set(
        self,
        session_id: str,
        key: str,
        value: Any,
        skill_name: Optional[str] = None,
        expires_in_minutes: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Insert or replace ``(session_id, key)``.

        ``expires_in_minutes`` is converted to an absolute timestamp now;
        zero or negative values produce an entry that is already expired.
        """
        if not session_id or not key:
            raise ValidationError("session_id and key are required")
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Context value is not JSON-serializable: {exc}") from exc
        expires_at = None
        if expires_in_minutes is not None:
            expires_at = _expiry(expires_in_minutes)
        with self._db.transaction() as conn:
            conn.execute(
                _UPSERT_SQL,
                (session_id, key, payload, skill_name or None, expires_at, _now_iso()),
            )
        logger.debug("context set: session=%s key=%s expires_at=%s",
                     session_id, key, expires_at)
        return {"success": True, "key": key}

    def get(self, session_id: str, key: str) -> Optional[Dict[str, Any]]:
        """Return ``{"value": ...}`` for a live entry, None when absent or expired."""
        with self._db.transaction() as conn:
            _purge(conn)
            row = conn.execute(
                "SELECT value FROM context WHERE session_id = ? AND key = ?",
                (session_id, key),
            ).fetchone()
        if row is None:
            return None
        return {"value": decode_value(row["value"])}

    def list(self, session_id: str) -> List[ContextEntry]:
        """Live entries of a session, most recently created first."""
        with self._db.transaction() as conn:
            _purge(conn)
            rows = conn.execute(
                """SELECT * FROM context WHERE session_id = ?
                   ORDER BY created_at DESC, id DESC""",
                (session_id,),
            ).fetchall()
        return [ContextEntry.from_row(row) for row in rows]

    def clear(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Delete one session's entries, or every entry when no session is given."""
        with self._db.transaction() as conn:
            if session_id:
                cur = conn.execute(
                    "DELETE FROM context WHERE session_id = ?", (session_id,)
                )
            else:
                cur = conn.execute("DELETE FROM context")
            cleared = cur.rowcount
        logger.debug("context clear: session=%s cleared=%d", session_id or "*", cleared)
        return {"success": True, "cleared": cleared}

    def share(
        self,
        from_session: str,
        to_session: str,
        keys: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Copy live entries (all, or only ``keys``) into another session.

        Destination entries are upserted; the source session is untouched.
        """
        if not from_session or not to_session:
            raise ValidationError("from_session and to_session are required")
        with self._db.transaction() as conn:
            _purge(conn)
            if keys:
                placeholders = ",".join("?" for _ in keys)
                rows = conn.execute(
                    f"SELECT * FROM context WHERE session_id = ? AND key IN ({placeholders})",
                    [from_session, *keys],
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM context WHERE session_id = ?", (from_session,)
                ).fetchall()
            now = _now_iso()
            for row in rows:
                conn.execute(
                    _UPSERT_SQL,
                    (to_session, row["key"], row["value"], row["skill_name"],
                     row["expires_at"], now),
                )
        logger.debug("context share: %s -> %s (%d entries)",
                     from_session, to_session, len(rows))
        return {"success": True, "shared": len(rows)}

    def purge_expired(self) -> int:
        """Delete every expired entry now. Returns the number removed."""
        with self._db.transaction() as conn:
            return _purge(conn)
