"""
Skill Registry & Usage Tracker

Skills are registered once by name and re-registered on upgrade.  Every
invocation is tracked as a usage record with a two-state lifecycle:

    usage_start()  ->  started    (completed_at IS NULL, success NULL)
    usage_end()    ->  completed  (terminal; later calls change nothing)

``skills.use_count`` is incremented exactly once per completed usage, in the
same transaction as the started->completed transition.  Skills are not
deletable.

Recommendation scoring:
    success_rate = mean(success) over completed usages (0.0 when none)
    usage_count  = number of usages (started or completed)
    order        = success_rate DESC, usage_count DESC, name ASC
Skills without any counted usage are never recommended.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from agentkb.errors import ValidationError, check_limit
from agentkb.store import Database
from agentkb.types import Skill, SkillRecommendation, SkillUsage, _now_iso

logger = logging.getLogger(__name__)

_SUCCESS_RATE_SQL = (
    "COALESCE(AVG(CASE WHEN u.completed_at IS NOT NULL "
    "THEN (CASE WHEN u.success THEN 1.0 ELSE 0.0 END) END), 0.0)"
)


class SkillRegistry:
    """Installed skills, usage lifecycle, and effectiveness ranking."""

    def __init__(self, db: Database):
        self._db = db

    # -- Registry ----------------------------------------------------------

    def register(
        self,
        name: str,
        version: str,
        source: str,
        project_path: Optional[str] = None,
        installed_by: Optional[str] = None,
    ) -> Skill:
        """Insert or update a skill by name.

        Re-registration replaces version, source and project_path; use_count,
        installed_at, last_used_at and installed_by are preserved.
        """
        for field_name, value in (("name", name), ("version", version), ("source", source)):
            if not value or not str(value).strip():
                raise ValidationError(f"Skill {field_name} must not be empty")
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO skills
                   (name, version, source, project_path, installed_by, installed_at, use_count)
                   VALUES (?, ?, ?, ?, ?, ?, 0)
                   ON CONFLICT(name) DO UPDATE SET
                       version = excluded.version,
                       source = excluded.source,
                       project_path = excluded.project_path""",
                (name, version, source, project_path or None,
                 installed_by or None, _now_iso()),
            )
            row = conn.execute(
                "SELECT * FROM skills WHERE name = ?", (name,)
            ).fetchone()
        logger.debug("skill register: %s@%s", name, version)
        return Skill.from_row(row)

    def get(self, name: str) -> Optional[Skill]:
        """Read one skill by name."""
        with self._db.transaction(write=False) as conn:
            row = conn.execute(
                "SELECT * FROM skills WHERE name = ?", (name,)
            ).fetchone()
        return Skill.from_row(row) if row is not None else None

    def list(self, project_path: Optional[str] = None) -> List[Skill]:
        """List skills, most used first.

        With ``project_path``, only skills installed there or globally
        (no project path) are returned.
        """
        with self._db.transaction(write=False) as conn:
            if project_path:
                rows = conn.execute(
                    """SELECT * FROM skills
                       WHERE project_path = ? OR project_path IS NULL
                       ORDER BY use_count DESC, name""",
                    (project_path,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM skills ORDER BY use_count DESC, name"
                ).fetchall()
        return [Skill.from_row(row) for row in rows]

    # -- Usage lifecycle ---------------------------------------------------

    def usage_start(self, skill_name: str, project_path: Optional[str] = None) -> int:
        """Open a usage record and stamp the skill's last_used_at.

        Returns the usage id.  The skill must be registered (foreign key),
        otherwise ConstraintError is raised.
        """
        if not skill_name or not str(skill_name).strip():
            raise ValidationError("skill_name must not be empty")
        now = _now_iso()
        with self._db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO skill_usage (skill_name, project_path, started_at) VALUES (?, ?, ?)",
                (skill_name, project_path or None, now),
            )
            usage_id = cur.lastrowid
            conn.execute(
                "UPDATE skills SET last_used_at = ? WHERE name = ?",
                (now, skill_name),
            )
        logger.debug("usage start: skill=%s usage_id=%s", skill_name, usage_id)
        return usage_id

    def usage_end(
        self,
        usage_id: int,
        success: bool,
        outcome: Optional[str] = None,
        tokens_used: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Optional[SkillUsage]:
        """Complete a started usage and count it against its skill.

        Only a usage that is still open transitions; the skill counter moves
        with that transition alone, so repeated calls never double-count.
        Returns the usage record as stored, or None for an unknown id.
        """
        if not isinstance(success, bool):
            raise ValidationError("success must be a boolean")
        if tokens_used is not None and (
            isinstance(tokens_used, bool) or not isinstance(tokens_used, int)
        ):
            raise ValidationError("tokens_used must be an integer")
        with self._db.transaction() as conn:
            cur = conn.execute(
                """UPDATE skill_usage
                   SET completed_at = ?, success = ?, outcome = ?,
                       tokens_used = ?, notes = ?
                   WHERE id = ? AND completed_at IS NULL""",
                (_now_iso(), int(success), outcome or None,
                 tokens_used, notes or None, usage_id),
            )
            if cur.rowcount > 0:
                conn.execute(
                    """UPDATE skills SET use_count = COALESCE(use_count, 0) + 1
                       WHERE name = (SELECT skill_name FROM skill_usage WHERE id = ?)""",
                    (usage_id,),
                )
            row = conn.execute(
                "SELECT * FROM skill_usage WHERE id = ?", (usage_id,)
            ).fetchone()
        if row is None:
            logger.debug("usage end: unknown usage_id=%s", usage_id)
            return None
        logger.debug(
            "usage end: usage_id=%s transitioned=%s", usage_id, cur.rowcount > 0,
        )
        return SkillUsage.from_row(row)

    def get_usage(self, usage_id: int) -> Optional[SkillUsage]:
        """Read one usage record by id."""
        with self._db.transaction(write=False) as conn:
            row = conn.execute(
                "SELECT * FROM skill_usage WHERE id = ?", (usage_id,)
            ).fetchone()
        return SkillUsage.from_row(row) if row is not None else None

    # -- Scoring -----------------------------------------------------------

    def recommend(
        self,
        project_type: Optional[str] = None,
        limit: int = 5,
    ) -> List[SkillRecommendation]:
        """Rank skills by observed success rate, then by usage volume.

        With ``project_type``, only usages whose project_path contains that
        substring are counted.
        """
        check_limit(limit)
        params: list = []
        where = ""
        if project_type:
            where = "WHERE instr(u.project_path, ?) > 0"
            params.append(project_type)
        sql = (
            f"SELECT s.*, {_SUCCESS_RATE_SQL} AS success_rate, "
            "COUNT(u.id) AS usage_count "
            "FROM skills s "
            "JOIN skill_usage u ON u.skill_name = s.name "
            f"{where} "
            "GROUP BY s.id "
            "HAVING COUNT(u.id) > 0 "
            "ORDER BY success_rate DESC, usage_count DESC, s.name ASC "
            "LIMIT ?"
        )
        params.append(limit)
        with self._db.transaction(write=False) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            SkillRecommendation(
                skill=Skill.from_row(row),
                success_rate=float(row["success_rate"]),
                usage_count=row["usage_count"],
            )
            for row in rows
        ]

    def stats(self) -> Dict[str, Any]:
        """Totals, overall success rate of completed usages, most used skill."""
        with self._db.transaction(write=False) as conn:
            total_skills = conn.execute(
                "SELECT COUNT(*) AS cnt FROM skills"
            ).fetchone()["cnt"]
            total_usages = conn.execute(
                "SELECT COUNT(*) AS cnt FROM skill_usage"
            ).fetchone()["cnt"]
            completed = conn.execute(
                """SELECT COUNT(*) AS cnt,
                          AVG(CASE WHEN success THEN 1.0 ELSE 0.0 END) AS rate
                   FROM skill_usage WHERE completed_at IS NOT NULL"""
            ).fetchone()
            most_used = conn.execute(
                "SELECT * FROM skills ORDER BY use_count DESC, name LIMIT 1"
            ).fetchone()
        return {
            "total_skills": total_skills,
            "total_usages": total_usages,
            "completed_usages": completed["cnt"],
            "success_rate": float(completed["rate"] or 0.0),
            "most_used": Skill.from_row(most_used) if most_used is not None else None,
        }
