"""
Storage Engine — SQLite Persistent Backend

Tables:
    memory        - key-addressed knowledge entries (FTS: memory_fts)
    skills        - installed skills with aggregate use counters
    skill_usage   - append-only usage events (FK -> skills.name)
    failures      - deduplicated error patterns (FTS: failures_fts)
    context       - session-scoped values with optional expiry
    schema_meta   - schema version and provenance

Table and column names are the on-disk contract with earlier runs and must
not change.

Durability: WAL journal mode (concurrent readers, one writer), foreign keys
enforced.  Every operation runs inside ``Database.transaction()``; lock
contention past the busy timeout surfaces as a transient StorageError.

Thread safety: one connection (check_same_thread=False) serialized by a lock.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from agentkb.config import StoreConfig
from agentkb.errors import AgentKBError, StorageError, translate_sqlite_error
from agentkb.fts import fts_schema_sql, validate_tokenizer

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS memory (
    id          INTEGER PRIMARY KEY,
    key         TEXT UNIQUE NOT NULL,
    content     TEXT NOT NULL,
    tags        TEXT,                               -- JSON array or NULL
    scope       TEXT DEFAULT 'global',
    source      TEXT,
    created_at  DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at  DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS skills (
    id            INTEGER PRIMARY KEY,
    name          TEXT UNIQUE NOT NULL,
    version       TEXT NOT NULL,
    source        TEXT NOT NULL,
    project_path  TEXT,
    installed_by  TEXT,
    installed_at  DATETIME DEFAULT CURRENT_TIMESTAMP,
    last_used_at  DATETIME,
    use_count     INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS skill_usage (
    id            INTEGER PRIMARY KEY,
    skill_name    TEXT NOT NULL,
    project_path  TEXT,
    started_at    DATETIME,
    completed_at  DATETIME,
    success       BOOLEAN,                          -- NULL until completed
    outcome       TEXT,
    tokens_used   INTEGER,
    notes         TEXT,
    FOREIGN KEY (skill_name) REFERENCES skills(name)
);

CREATE TABLE IF NOT EXISTS failures (
    id                INTEGER PRIMARY KEY,
    error_pattern     TEXT NOT NULL,
    error_message     TEXT,
    solution          TEXT,
    skill_name        TEXT,
    project_path      TEXT,
    occurrence_count  INTEGER DEFAULT 1,
    last_seen_at      DATETIME DEFAULT CURRENT_TIMESTAMP,
    created_at        DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS context (
    id          INTEGER PRIMARY KEY,
    session_id  TEXT NOT NULL,
    key         TEXT NOT NULL,
    value       TEXT NOT NULL,                      -- JSON payload
    skill_name  TEXT,
    expires_at  DATETIME,
    created_at  DATETIME DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(session_id, key)
);

CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memory_scope ON memory(scope);
CREATE INDEX IF NOT EXISTS idx_memory_source ON memory(source);
CREATE INDEX IF NOT EXISTS idx_skills_name ON skills(name);
CREATE INDEX IF NOT EXISTS idx_skill_usage_skill ON skill_usage(skill_name);
CREATE INDEX IF NOT EXISTS idx_failures_pattern ON failures(error_pattern);
CREATE INDEX IF NOT EXISTS idx_context_session ON context(session_id);
CREATE INDEX IF NOT EXISTS idx_context_expires ON context(expires_at);
"""

ENTITY_TABLES = ("memory", "skills", "skill_usage", "failures", "context")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class Database:
    """
    Single SQLite database file holding every agentkb record kind.

    Construct one per process (or one per test) and pass it to each store.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        wal_mode: bool = True,
        busy_timeout: float = 5.0,
        fts_tokenizer: str = "unicode61",
    ):
        """Open the database and create the schema if needed.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            wal_mode: Enable WAL journal mode for concurrent readers.
            busy_timeout: Seconds to wait on a locked database before
                failing with a transient StorageError.
            fts_tokenizer: FTS5 tokenizer string for new indexes.
        """
        self._db_path = db_path
        self._lock = threading.RLock()
        self._fts_tokenizer = validate_tokenizer(fts_tokenizer)
        try:
            # Auto-create parent directory for disk-backed databases.
            if db_path != ":memory:":
                Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
                str(Path(db_path).expanduser()) if db_path != ":memory:" else db_path,
                timeout=busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except OSError as exc:
            raise StorageError(f"Cannot open database {db_path}: {exc}") from exc
        except sqlite3.Error as exc:
            raise translate_sqlite_error(exc) from exc
        self._conn.row_factory = sqlite3.Row
        try:
            if wal_mode and db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute(f"PRAGMA busy_timeout={int(busy_timeout * 1000)}")
            self._create_schema()
        except sqlite3.Error as exc:
            self._conn.close()
            self._conn = None
            if "fts5" in str(exc).lower():
                raise StorageError(
                    f"SQLite build lacks FTS5 support: {exc}"
                ) from exc
            raise translate_sqlite_error(exc) from exc
        logger.info(f"Database opened: {db_path} (tokenizer={fts_tokenizer})")

    @classmethod
    def from_config(cls, config: StoreConfig) -> Database:
        """Open a database from a StoreConfig."""
        return cls(
            db_path=config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout=config.busy_timeout,
            fts_tokenizer=config.fts_tokenizer,
        )

    def _create_schema(self) -> None:
        """Create tables, indexes, FTS tables and triggers (idempotent)."""
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.executescript(fts_schema_sql(self._fts_tokenizer))
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
            (str(SCHEMA_VERSION),),
        )
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_by', 'agentkb')",
        )
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_at', datetime('now'))",
        )
        logger.debug("Schema ready (version %d)", SCHEMA_VERSION)

    # -- Properties --------------------------------------------------------

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"Database is closed: {self._db_path}")
        return self._conn

    # -- Execution ---------------------------------------------------------

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements atomically.

        Write transactions take the SQLite write lock up front
        (``BEGIN IMMEDIATE``) so a conflict-resolving read-then-write cannot
        interleave with another writer.  Any exception rolls back; sqlite3
        errors are translated to the agentkb taxonomy.  Not reentrant.
        """
        with self._lock:
            conn = self._require_open()
            try:
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            except sqlite3.Error as exc:
                raise translate_sqlite_error(exc) from exc
            try:
                yield conn
                conn.execute("COMMIT")
            except AgentKBError:
                self._rollback(conn)
                raise
            except sqlite3.Error as exc:
                self._rollback(conn)
                raise translate_sqlite_error(exc) from exc
            except Exception:
                self._rollback(conn)
                raise

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.warning("Rollback failed: %s", exc)

    def execute(self, statement: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Execute one statement in its own transaction and return its rows."""
        with self.transaction() as conn:
            return conn.execute(statement, params).fetchall()

    def schema_version(self) -> int:
        rows = self.execute("SELECT value FROM schema_meta WHERE key='schema_version'")
        return int(rows[0]["value"]) if rows else 0

    def close(self) -> None:
        """Close the underlying SQLite connection (no-op if already closed)."""
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.debug(f"Database closed: {self._db_path}")


# ---------------------------------------------------------------------------
# Process-wide handle
# ---------------------------------------------------------------------------

_default_db: Optional[Database] = None
_default_lock = threading.Lock()


def get_database(config: Optional[StoreConfig] = None) -> Database:
    """Return the process-wide Database, opening it on first access.

    ``config`` is only consulted on the first call; later calls return the
    already-open handle.
    """
    global _default_db
    with _default_lock:
        if _default_db is None or _default_db.closed:
            _default_db = Database.from_config(config or StoreConfig())
        return _default_db


def close_database() -> None:
    """Close the process-wide Database (no-op if not open)."""
    global _default_db
    with _default_lock:
        if _default_db is not None:
            _default_db.close()
            _default_db = None
