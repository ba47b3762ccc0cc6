"""
Knowledge Store Data Model

Plain dataclasses for the five record kinds persisted by agentkb.
Instances are snapshots of a row: stores never cache them across calls.

Timestamps are ISO-8601 UTC strings with fixed microsecond precision, so
lexical order equals chronological order inside SQLite comparisons.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

DEFAULT_SCOPE = "global"
DEFAULT_SOURCE = "manual"


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string (microsecond precision)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _iso_in_minutes(minutes: float) -> str:
    """Absolute UTC timestamp ``minutes`` from now (may be in the past)."""
    moment = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return moment.isoformat(timespec="microseconds")


def _row_dict(row: sqlite3.Row) -> Dict[str, Any]:
    return {k: row[k] for k in row.keys()}


def _to_bool(value: Any) -> Optional[bool]:
    """SQLite NULL/0/1 to tri-state bool."""
    if value is None:
        return None
    return bool(value)


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------

@dataclass
class MemoryEntry:
    """Key-addressed knowledge entry."""

    key: str
    content: str
    tags: Optional[List[str]] = None
    scope: str = DEFAULT_SCOPE
    source: Optional[str] = DEFAULT_SOURCE
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> MemoryEntry:
        d = _row_dict(row)
        raw_tags = d.get("tags")
        tags = None
        if raw_tags:
            try:
                tags = json.loads(raw_tags)
            except json.JSONDecodeError:
                tags = [raw_tags]
        return cls(
            id=d["id"],
            key=d["key"],
            content=d["content"],
            tags=tags,
            scope=d["scope"],
            source=d["source"],
            created_at=d["created_at"],
            updated_at=d["updated_at"],
        )


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------

@dataclass
class Skill:
    """An installed skill and its aggregate usage counter."""

    name: str
    version: str
    source: str
    project_path: Optional[str] = None
    installed_by: Optional[str] = None
    installed_at: str = field(default_factory=_now_iso)
    last_used_at: Optional[str] = None
    use_count: int = 0
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Skill:
        d = _row_dict(row)
        return cls(
            id=d["id"],
            name=d["name"],
            version=d["version"],
            source=d["source"],
            project_path=d["project_path"],
            installed_by=d["installed_by"],
            installed_at=d["installed_at"],
            last_used_at=d["last_used_at"],
            use_count=d["use_count"] or 0,
        )


@dataclass
class SkillUsage:
    """One tracked invocation of a skill: started, then completed once."""

    skill_name: str
    project_path: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    success: Optional[bool] = None
    outcome: Optional[str] = None
    tokens_used: Optional[int] = None
    notes: Optional[str] = None
    id: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.completed_at is not None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["completed"] = self.completed
        return d

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SkillUsage:
        d = _row_dict(row)
        return cls(
            id=d["id"],
            skill_name=d["skill_name"],
            project_path=d["project_path"],
            started_at=d["started_at"],
            completed_at=d["completed_at"],
            success=_to_bool(d["success"]),
            outcome=d["outcome"],
            tokens_used=d["tokens_used"],
            notes=d["notes"],
        )


@dataclass
class SkillRecommendation:
    """A skill ranked by observed effectiveness."""

    skill: Skill
    success_rate: float
    usage_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill": self.skill.to_dict(),
            "success_rate": self.success_rate,
            "usage_count": self.usage_count,
        }


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

@dataclass
class Failure:
    """A deduplicated error pattern with its accumulated solution."""

    error_pattern: str
    error_message: Optional[str] = None
    solution: Optional[str] = None
    skill_name: Optional[str] = None
    project_path: Optional[str] = None
    occurrence_count: int = 1
    last_seen_at: str = field(default_factory=_now_iso)
    created_at: str = field(default_factory=_now_iso)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Failure:
        d = _row_dict(row)
        return cls(
            id=d["id"],
            error_pattern=d["error_pattern"],
            error_message=d["error_message"],
            solution=d["solution"],
            skill_name=d["skill_name"],
            project_path=d["project_path"],
            occurrence_count=d["occurrence_count"],
            last_seen_at=d["last_seen_at"],
            created_at=d["created_at"],
        )


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass
class ContextEntry:
    """Session-scoped value with an optional absolute expiry."""

    session_id: str
    key: str
    value: Any
    skill_name: Optional[str] = None
    expires_at: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ContextEntry:
        d = _row_dict(row)
        return cls(
            id=d["id"],
            session_id=d["session_id"],
            key=d["key"],
            value=decode_value(d["value"]),
            skill_name=d["skill_name"],
            expires_at=d["expires_at"],
            created_at=d["created_at"],
        )


def decode_value(raw: str) -> Any:
    """Decode a stored context payload; undecodable text is returned as-is."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw
