"""
agentkb — A local knowledge store for agent orchestration.

One file, one truth. Memories, skill usage, failures and session context
live in a single SQLite + FTS5 + WAL database.
"""

__version__ = "0.1.0"

from agentkb.errors import (
    AgentKBError,
    ConstraintError,
    StorageError,
    ValidationError,
)
from agentkb.types import (
    ContextEntry,
    Failure,
    MemoryEntry,
    Skill,
    SkillRecommendation,
    SkillUsage,
)
from agentkb.config import KBConfig, StoreConfig, load_config
from agentkb.store import SCHEMA_VERSION, Database, close_database, get_database
from agentkb.memory import MemoryStore
from agentkb.skills import SkillRegistry
from agentkb.failures import FailureLedger
from agentkb.context import ContextStore
from agentkb.kb import KnowledgeBase

__all__ = [
    "__version__",
    "AgentKBError",
    "ConstraintError",
    "StorageError",
    "ValidationError",
    "ContextEntry",
    "Failure",
    "MemoryEntry",
    "Skill",
    "SkillRecommendation",
    "SkillUsage",
    "KBConfig",
    "StoreConfig",
    "load_config",
    "SCHEMA_VERSION",
    "Database",
    "close_database",
    "get_database",
    "MemoryStore",
    "SkillRegistry",
    "FailureLedger",
    "ContextStore",
    "KnowledgeBase",
]
