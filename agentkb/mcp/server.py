"""
agentkb MCP Server — local knowledge store for agent orchestration

Standalone MCP server exposing memories, skill tracking, the failure
ledger and session context over the Model Context Protocol (stdio).

Architecture: thin MCP layer delegating to KnowledgeBase.
No business logic in this module; all of it lives in agentkb/*.

Usage:
    python -m agentkb.mcp.server --db ~/.claude/claude.db
    python -m agentkb.mcp.server --fts-tokenizer en --audit-log audit.jsonl
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from typing import Optional, TextIO

logger = logging.getLogger(__name__)

# Instructions embedded in FastMCP, visible to any MCP client.
_MCP_INSTRUCTIONS = (
    "Local knowledge store for agent orchestration (24 tools).\n"
    "\n"
    "MEMORY:   memory_write/read/delete by key, memory_search (FTS5),\n"
    "          memory_list by scope or key prefix, memory_stats.\n"
    "CONTEXT:  context_set/get/list/clear for session state; values are JSON\n"
    "          and may expire (expires_in_minutes). context_share copies\n"
    "          entries between sessions.\n"
    "SKILLS:   skill_register, then skill_usage_start/skill_usage_end around\n"
    "          each invocation. skill_recommend ranks by success rate.\n"
    "FAILURES: failure_record deduplicates by error_pattern and counts\n"
    "          occurrences; failure_search before debugging a known error.\n"
    "\n"
    "Rules:\n"
    "- Scope project memories as 'project:{name}'\n"
    "- Normalize error patterns (strip paths, ids, line numbers)\n"
    "- NEVER store secrets in memories or context\n"
)


def _env_float(name: str, default: float) -> float:
    """Read a float from environment, with fallback."""
    val = os.environ.get(name)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            pass
    return default


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser for the agentkb MCP server."""
    from agentkb.config import default_db_path

    p = argparse.ArgumentParser(
        prog="agentkb-mcp",
        description="agentkb MCP Server — local knowledge store for agents",
    )
    p.add_argument(
        "--db",
        default=default_db_path(),
        help="SQLite database path (default: $AGENTKB_DB or ~/.claude/claude.db)",
    )
    p.add_argument(
        "--fts-tokenizer",
        default=os.environ.get("AGENTKB_FTS", "default"),
        help=(
            "FTS5 tokenizer preset: default (unicode61), en (porter stemming), "
            "fold (diacritics-insensitive), or a custom tokenizer string. "
            "Only applies to a newly created database. "
            "Default: default or $AGENTKB_FTS"
        ),
    )
    p.add_argument(
        "--busy-timeout",
        type=float,
        default=_env_float("AGENTKB_BUSY_TIMEOUT", 5.0),
        help="Seconds to wait on a locked database (default: 5.0)",
    )
    p.add_argument(
        "--audit-log",
        default=None,
        help="Audit log file path (default: stderr)",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return p


# Audit log file opened by create_server(), closed by shutdown().
_audit_file: Optional[TextIO] = None


def shutdown() -> None:
    """Close the audit log file and the process-wide database (idempotent)."""
    global _audit_file
    from agentkb.store import close_database

    if _audit_file is not None:
        _audit_file.close()
        _audit_file = None
    close_database()


def _install_signal_handlers() -> None:
    """Run shutdown() on SIGINT/SIGTERM, then exit 0."""

    def _shutdown(signum, _frame):
        logger.info("Received signal %d, shutting down", signum)
        shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)


def create_server(args=None):
    """
    Create and configure the FastMCP server with knowledge-store tools.

    Args:
        args: Parsed argparse.Namespace, or None to parse from sys.argv.

    Returns:
        (mcp_server, kb) tuple.
    """
    global _audit_file
    from mcp.server.fastmcp import FastMCP

    from agentkb.config import KBConfig, StoreConfig
    from agentkb.fts import resolve_tokenizer
    from agentkb.kb import KnowledgeBase
    from agentkb.mcp.audit import AuditLogger
    from agentkb.mcp.tools import register_tools
    from agentkb.store import get_database

    if args is None:
        args = build_parser().parse_args()

    config = KBConfig(
        store=StoreConfig(
            db_path=args.db,
            busy_timeout=args.busy_timeout,
            fts_tokenizer=resolve_tokenizer(args.fts_tokenizer),
        ),
    )

    kb = KnowledgeBase(get_database(config.store))

    if _audit_file is not None:
        _audit_file.close()
        _audit_file = None
    if args.audit_log:
        _audit_file = open(args.audit_log, "a", encoding="utf-8")
    audit = AuditLogger(output=_audit_file)

    mcp = FastMCP(
        name="agentkb Knowledge Store",
        instructions=_MCP_INSTRUCTIONS,
    )

    register_tools(mcp, kb, config, audit=audit)

    logger.info(
        "agentkb MCP server ready: db=%s, fts=%s, busy_timeout=%.1fs",
        args.db, args.fts_tokenizer, args.busy_timeout,
    )

    return mcp, kb


def main():
    """CLI entry point — parse args, create server, run."""
    parser = build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    mcp, _kb = create_server(args)
    _install_signal_handlers()
    try:
        mcp.run()
    finally:
        shutdown()


if __name__ == "__main__":
    main()
