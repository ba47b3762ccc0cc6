"""
KnowledgeBase — one Database shared by the four stores

The storage handle is constructed once and injected into every store, so a
test (or a second process role) can run against its own throwaway database.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from agentkb.config import KBConfig
from agentkb.context import ContextStore
from agentkb.failures import FailureLedger
from agentkb.memory import MemoryStore
from agentkb.skills import SkillRegistry
from agentkb.store import Database


class KnowledgeBase:
    """Bundle of MemoryStore, SkillRegistry, FailureLedger and ContextStore."""

    def __init__(self, db: Database):
        self.db = db
        self.memory = MemoryStore(db)
        self.skills = SkillRegistry(db)
        self.failures = FailureLedger(db)
        self.context = ContextStore(db)

    @classmethod
    def open(cls, config: Optional[KBConfig] = None) -> KnowledgeBase:
        """Open a fresh Database from ``config`` (defaults when None)."""
        config = config or KBConfig()
        return cls(Database.from_config(config.store))

    def stats(self) -> Dict[str, Any]:
        """Aggregate statistics across all stores."""
        skill_stats = self.skills.stats()
        failure_stats = self.failures.stats()
        most_used = skill_stats["most_used"]
        most_common = failure_stats["most_common"]
        return {
            "db_path": self.db.path,
            "memory": self.memory.stats(),
            "skills": {**skill_stats, "most_used": most_used.to_dict() if most_used else None},
            "failures": {
                **failure_stats,
                "most_common": most_common.to_dict() if most_common else None,
            },
            "context": {"live_entries": self._live_context_count()},
        }

    def _live_context_count(self) -> int:
        self.context.purge_expired()
        rows = self.db.execute("SELECT COUNT(*) AS cnt FROM context")
        return rows[0]["cnt"]

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> KnowledgeBase:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
