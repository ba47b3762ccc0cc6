"""
Error Taxonomy

Three error kinds cross the public boundary:

    ValidationError  - missing or malformed caller input (empty query, empty key)
    ConstraintError  - a uniqueness or foreign-key invariant was violated
    StorageError     - I/O failure, corruption, or lock contention

Not-found conditions are never errors: stores return ``None`` or a
``deleted=False`` style result instead.  The core never retries.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict


class AgentKBError(Exception):
    """Base class for all agentkb errors."""

    kind = "error"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize as ``{"error": kind, "message": ...}``."""
        return {"error": self.kind, "message": str(self)}


class ValidationError(AgentKBError, ValueError):
    """Raised when a required field is missing or malformed."""

    kind = "validation"


class ConstraintError(AgentKBError):
    """Raised when a uniqueness or foreign-key invariant is violated."""

    kind = "constraint"


class StorageError(AgentKBError):
    """Raised on I/O failure, corruption, or lock contention.

    ``transient`` is True when the failure came from a locked or busy
    database; callers may retry those.
    """

    kind = "storage"

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["transient"] = self.transient
        return d


_TRANSIENT_MARKERS = ("database is locked", "database table is locked", "busy")


def translate_sqlite_error(exc: sqlite3.Error) -> AgentKBError:
    """Map a sqlite3 exception onto the agentkb taxonomy."""
    message = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintError(message)
    if isinstance(exc, sqlite3.OperationalError):
        lowered = message.lower()
        if any(marker in lowered for marker in _TRANSIENT_MARKERS):
            return StorageError(message, transient=True)
    return StorageError(message)


def check_limit(limit: int) -> int:
    """Reject non-positive result limits (callers clamp; stores only check)."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError(f"limit must be a positive integer, got {limit!r}")
    return limit
