"""
agentkb MCP Tools — 24 knowledge-store tools for MCP integration.

Thin wrappers around KnowledgeBase.  Every tool follows the same order:

    ① Argument shaping  — clamp limits into [1, limits.max_limit]
    ② Tool execution    — store call (all validation lives in the stores)
    ③ Audit log         — always, including on failure (finally block)

Result contract:
    {"status": "ok", ...}                              success
    {"status": "ok", "found": False}                   absent record
    {"status": "error", "error": kind, "message": ...}  typed failure

Tool groups:
    MEMORY:   memory_write, memory_read, memory_search, memory_list,
              memory_delete, memory_stats
    CONTEXT:  context_set, context_get, context_list, context_clear,
              context_share
    SKILLS:   skill_register, skill_get, skill_list, skill_usage_start,
              skill_usage_end, skill_recommend, skill_stats
    FAILURES: failure_record, failure_search, failure_get, failure_list,
              failure_update, failure_stats
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from agentkb.config import KBConfig
from agentkb.errors import AgentKBError
from agentkb.kb import KnowledgeBase
from agentkb.mcp.audit import AuditLogger

logger = logging.getLogger(__name__)


def register_tools(
    mcp,
    kb: KnowledgeBase,
    config: Optional[KBConfig] = None,
    *,
    audit: Optional[AuditLogger] = None,
) -> None:
    """
    Register all 24 knowledge-store tools on a FastMCP server instance.

    Args:
        mcp: FastMCP server instance.
        kb: Open KnowledgeBase.
        config: KBConfig for caller-side limits (defaults when None).
        audit: AuditLogger for structured logging (stderr when None).
    """
    config = config or KBConfig()
    if audit is None:
        audit = AuditLogger()
    max_limit = config.limits.max_limit

    def _clamp(limit: int) -> int:
        try:
            value = int(limit)
        except (TypeError, ValueError):
            value = 1
        return max(1, min(value, max_limit))

    def _run(
        tool: str,
        op: Callable[[], Dict[str, Any]],
        detail: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Execute one tool body with error mapping and auditing."""
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        try:
            result = op()
            if result.get("found") is False:
                outcome = "not_found"
            return {"status": "ok", **result}
        except AgentKBError as e:
            outcome = "error"
            return {"status": "error", **e.to_dict()}
        except Exception as e:
            outcome = "error"
            logger.exception("%s failed", tool)
            return {"status": "error", "error": "internal", "message": f"{tool} failed: {e}"}
        finally:
            audit.log(tool, rid, outcome, detail, (time.monotonic() - t0) * 1000)

    # =====================================================================
    # MEMORY
    # =====================================================================

    @mcp.tool()
    def memory_write(
        key: str,
        content: str,
        tags: Optional[List[str]] = None,
        scope: str = "global",
        source: str = "manual",
    ) -> Dict[str, Any]:
        """Write a memory entry to the knowledge base (upsert by key).

        Args:
            key: Unique key (e.g. "tip:typescript:pattern-matching").
            content: Content of the memory.
            tags: Optional tags for categorization.
            scope: "global" or "project:{name}" (default "global").
            source: Provenance of the memory (e.g. "evolve", "manual").
        """
        detail: Dict[str, Any] = {"key": key}
        if isinstance(content, str):
            detail.update(AuditLogger.make_content_detail(content))
        return _run(
            "memory_write",
            lambda: kb.memory.write(key, content, tags=tags, scope=scope, source=source),
            detail,
        )

    @mcp.tool()
    def memory_read(key: str) -> Dict[str, Any]:
        """Read a specific memory entry by key."""
        def op():
            entry = kb.memory.read(key)
            if entry is None:
                return {"found": False, "key": key}
            return {"found": True, "entry": entry.to_dict()}
        return _run("memory_read", op, {"key": key})

    @mcp.tool()
    def memory_search(
        query: str,
        scope: Optional[str] = None,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Search memories with full-text search.

        Args:
            query: FTS5 query (supports AND, OR, NOT, "phrase", prefix*).
            scope: Optional scope filter.
            limit: Maximum results (default 20).
        """
        def op():
            entries = kb.memory.search(query, scope=scope, limit=_clamp(limit))
            return {"count": len(entries), "entries": [e.to_dict() for e in entries]}
        return _run("memory_search", op, {"query_len": len(query or "")})

    @mcp.tool()
    def memory_list(
        scope: Optional[str] = None,
        prefix: Optional[str] = None,
        limit: int = 100,
    ) -> Dict[str, Any]:
        """List memory entries, most recently updated first.

        Args:
            scope: Filter by scope.
            prefix: Filter by key prefix.
            limit: Maximum results (default 100).
        """
        def op():
            entries = kb.memory.list(scope=scope, prefix=prefix, limit=_clamp(limit))
            return {"count": len(entries), "entries": [e.to_dict() for e in entries]}
        return _run("memory_list", op)

    @mcp.tool()
    def memory_delete(key: str) -> Dict[str, Any]:
        """Delete a memory entry by key."""
        return _run("memory_delete", lambda: kb.memory.delete(key), {"key": key})

    @mcp.tool()
    def memory_stats() -> Dict[str, Any]:
        """Memory statistics: total, counts by scope and by source."""
        return _run("memory_stats", kb.memory.stats)

    # =====================================================================
    # CONTEXT
    # =====================================================================

    @mcp.tool()
    def context_set(
        session_id: str,
        key: str,
        value: Any,
        skill_name: Optional[str] = None,
        expires_in_minutes: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Set a context value for cross-skill state sharing.

        Args:
            session_id: Session identifier.
            key: Context key.
            value: Any JSON-serializable value.
            skill_name: Skill that set this context.
            expires_in_minutes: Optional expiration time in minutes.
        """
        return _run(
            "context_set",
            lambda: kb.context.set(
                session_id, key, value,
                skill_name=skill_name, expires_in_minutes=expires_in_minutes,
            ),
            {"session_id": session_id, "key": key},
        )

    @mcp.tool()
    def context_get(session_id: str, key: str) -> Dict[str, Any]:
        """Get a live context value."""
        def op():
            result = kb.context.get(session_id, key)
            if result is None:
                return {"found": False, "key": key}
            return {"found": True, **result}
        return _run("context_get", op, {"session_id": session_id, "key": key})

    @mcp.tool()
    def context_list(session_id: str) -> Dict[str, Any]:
        """List all live context values for a session."""
        def op():
            entries = kb.context.list(session_id)
            return {"count": len(entries), "entries": [e.to_dict() for e in entries]}
        return _run("context_list", op, {"session_id": session_id})

    @mcp.tool()
    def context_clear(session_id: Optional[str] = None) -> Dict[str, Any]:
        """Clear context values of one session, or of every session."""
        return _run(
            "context_clear", lambda: kb.context.clear(session_id),
            {"session_id": session_id},
        )

    @mcp.tool()
    def context_share(
        from_session: str,
        to_session: str,
        keys: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Copy context from one session to another.

        Args:
            from_session: Source session ID.
            to_session: Target session ID.
            keys: Specific keys to share (all when omitted).
        """
        return _run(
            "context_share",
            lambda: kb.context.share(from_session, to_session, keys=keys),
            {"from": from_session, "to": to_session},
        )

    # =====================================================================
    # SKILLS
    # =====================================================================

    @mcp.tool()
    def skill_register(
        name: str,
        version: str,
        source: str,
        project_path: Optional[str] = None,
        installed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Register a skill installation (upsert by name).

        Args:
            name: Skill name.
            version: Skill version.
            source: Source (e.g. "plugin:evolve@evolve-plugin").
            project_path: Project path where installed.
            installed_by: Who installed it.
        """
        def op():
            skill = kb.skills.register(
                name, version, source,
                project_path=project_path, installed_by=installed_by,
            )
            return {"success": True, "skill": skill.to_dict()}
        return _run("skill_register", op, {"name": name, "version": version})

    @mcp.tool()
    def skill_get(name: str) -> Dict[str, Any]:
        """Get skill information."""
        def op():
            skill = kb.skills.get(name)
            if skill is None:
                return {"found": False, "name": name}
            return {"found": True, "skill": skill.to_dict()}
        return _run("skill_get", op, {"name": name})

    @mcp.tool()
    def skill_list(project_path: Optional[str] = None) -> Dict[str, Any]:
        """List registered skills, most used first."""
        def op():
            skills = kb.skills.list(project_path=project_path)
            return {"count": len(skills), "skills": [s.to_dict() for s in skills]}
        return _run("skill_list", op)

    @mcp.tool()
    def skill_usage_start(
        skill_name: str,
        project_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Start tracking a skill usage. Returns the usage id."""
        def op():
            usage_id = kb.skills.usage_start(skill_name, project_path=project_path)
            return {"success": True, "usage_id": usage_id}
        return _run("skill_usage_start", op, {"skill_name": skill_name})

    @mcp.tool()
    def skill_usage_end(
        usage_id: int,
        success: bool,
        outcome: Optional[str] = None,
        tokens_used: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """End skill usage tracking.

        Args:
            usage_id: Id returned by skill_usage_start.
            success: Whether the skill invocation succeeded.
            outcome: Short outcome description.
            tokens_used: Tokens consumed.
            notes: Free-form notes.
        """
        def op():
            usage = kb.skills.usage_end(
                usage_id, success,
                outcome=outcome, tokens_used=tokens_used, notes=notes,
            )
            if usage is None:
                return {"found": False, "usage_id": usage_id}
            return {"found": True, "success": True, "usage": usage.to_dict()}
        return _run("skill_usage_end", op, {"usage_id": usage_id})

    @mcp.tool()
    def skill_recommend(
        project_type: Optional[str] = None,
        limit: int = 5,
    ) -> Dict[str, Any]:
        """Recommend skills by success rate, then usage count.

        Args:
            project_type: Only count usages whose project path contains this.
            limit: Maximum results (default 5).
        """
        def op():
            recs = kb.skills.recommend(project_type=project_type, limit=_clamp(limit))
            return {"count": len(recs), "recommendations": [r.to_dict() for r in recs]}
        return _run("skill_recommend", op, {"project_type": project_type})

    @mcp.tool()
    def skill_stats() -> Dict[str, Any]:
        """Skill usage statistics."""
        def op():
            stats = kb.skills.stats()
            most_used = stats["most_used"]
            stats["most_used"] = most_used.to_dict() if most_used else None
            return stats
        return _run("skill_stats", op)

    # =====================================================================
    # FAILURES
    # =====================================================================

    @mcp.tool()
    def failure_record(
        error_pattern: str,
        error_message: Optional[str] = None,
        solution: Optional[str] = None,
        skill_name: Optional[str] = None,
        project_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record a failure; repeated patterns increment their occurrence count.

        Args:
            error_pattern: Normalized error pattern (deduplication key).
            error_message: Full error message.
            solution: Solution that worked, if known.
            skill_name: Skill involved.
            project_path: Project where it happened.
        """
        def op():
            failure = kb.failures.record(
                error_pattern,
                error_message=error_message, solution=solution,
                skill_name=skill_name, project_path=project_path,
            )
            return {"success": True, "failure": failure.to_dict()}
        return _run("failure_record", op, {"pattern_len": len(error_pattern or "")})

    @mcp.tool()
    def failure_search(query: str, limit: int = 10) -> Dict[str, Any]:
        """Search failures (FTS5), most frequent first."""
        def op():
            failures = kb.failures.search(query, limit=_clamp(limit))
            return {"count": len(failures), "failures": [f.to_dict() for f in failures]}
        return _run("failure_search", op, {"query_len": len(query or "")})

    @mcp.tool()
    def failure_get(id: int) -> Dict[str, Any]:
        """Get a failure record by id."""
        def op():
            failure = kb.failures.get(id)
            if failure is None:
                return {"found": False, "id": id}
            return {"found": True, "failure": failure.to_dict()}
        return _run("failure_get", op, {"id": id})

    @mcp.tool()
    def failure_list(
        skill_name: Optional[str] = None,
        limit: int = 50,
    ) -> Dict[str, Any]:
        """List failures by occurrence count, then recency."""
        def op():
            failures = kb.failures.list(skill_name=skill_name, limit=_clamp(limit))
            return {"count": len(failures), "failures": [f.to_dict() for f in failures]}
        return _run("failure_list", op)

    @mcp.tool()
    def failure_update(id: int, solution: str) -> Dict[str, Any]:
        """Set the solution of a failure record."""
        def op():
            failure = kb.failures.update(id, solution)
            if failure is None:
                return {"found": False, "id": id}
            return {"found": True, "success": True, "failure": failure.to_dict()}
        return _run("failure_update", op, {"id": id})

    @mcp.tool()
    def failure_stats() -> Dict[str, Any]:
        """Failure statistics: totals, solved count, most common, per skill."""
        def op():
            stats = kb.failures.stats()
            most_common = stats["most_common"]
            stats["most_common"] = most_common.to_dict() if most_common else None
            return stats
        return _run("failure_stats", op)
