"""
agentkb CLI — inspect and maintain the knowledge store

Commands:
    agentkb stats                                — counts for all four stores
    agentkb search "query" [--scope S] [-k N]    — FTS5 search over memories
    agentkb failures "query" [-k N]              — FTS5 search over failures
    agentkb recommend [--project-type T] [-k N]  — skill recommendations
    agentkb context-clear [--session ID]         — drop session context
    agentkb reindex                              — rebuild FTS5 indexes
    agentkb serve [--fts-tokenizer P]            — start MCP server (foreground)

Environment variables:
    AGENTKB_DB      Path to SQLite database (default: ~/.claude/claude.db)
    AGENTKB_FTS     FTS5 tokenizer preset: default|en|fold (default: default)

Precedence (invariant):
    CLI --flag  >  AGENTKB_* env var  >  compiled default

Exit codes:
    0  Success (including empty results)
    1  User error (invalid arguments or query)
    2  Internal failure (storage error, unexpected exception)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from agentkb.config import LimitsConfig, default_db_path
from agentkb.errors import ValidationError

logger = logging.getLogger(__name__)

def _env_str(name: str, default: str) -> str:
    """Parse string env var with fallback."""
    return os.environ.get(name, default)


def _resolve_db(args: Optional[argparse.Namespace] = None) -> str:
    """Resolve database path: CLI --db > AGENTKB_DB > ~/.claude/claude.db."""
    if args and getattr(args, "db", None):
        return args.db
    return default_db_path()


def _resolve_fts(value: Optional[str] = None) -> str:
    """Resolve FTS tokenizer: preset name to tokenizer string."""
    from agentkb.fts import resolve_tokenizer
    return resolve_tokenizer(value or _env_str("AGENTKB_FTS", "default"))


def _open_kb(args: argparse.Namespace):
    """Open a KnowledgeBase. Creates the DB and parent dirs if needed."""
    from agentkb.kb import KnowledgeBase
    from agentkb.store import Database
    return KnowledgeBase(Database(
        db_path=_resolve_db(args),
        fts_tokenizer=_resolve_fts(getattr(args, "fts_tokenizer", None)),
    ))


def _clamp_k(k: int) -> int:
    return max(1, min(k, LimitsConfig().max_limit))


def _json_out(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _info(msg: str) -> None:
    print(msg, file=sys.stderr)


# ===========================================================================
# Command: stats
# ===========================================================================


def cmd_stats(args: argparse.Namespace) -> None:
    """Show statistics for every store."""
    with _open_kb(args) as kb:
        stats = kb.stats()

    if getattr(args, "json", False):
        _json_out({"status": "ok", **stats})
        return

    mem, skills, failures = stats["memory"], stats["skills"], stats["failures"]
    print("Knowledge Store Statistics")
    print("=" * 40)
    print(f"  Database: {stats['db_path']}")
    print(f"  Memories: {mem['total']}")
    for scope, count in sorted(mem["by_scope"].items()):
        print(f"    {scope:24s}: {count}")
    print(f"  Skills:   {skills['total_skills']} "
          f"({skills['total_usages']} usages, "
          f"success rate {skills['success_rate']:.0%})")
    if skills["most_used"]:
        print(f"    most used: {skills['most_used']['name']}")
    print(f"  Failures: {failures['total']} ({failures['with_solution']} solved)")
    if failures["most_common"]:
        mc = failures["most_common"]
        print(f"    most common: {mc['error_pattern']} (x{mc['occurrence_count']})")
    print(f"  Context:  {stats['context']['live_entries']} live entries")


# ===========================================================================
# Command: search  (memories, FTS5 → stdout)
# ===========================================================================


def cmd_search(args: argparse.Namespace) -> None:
    """Search memories via FTS5."""
    with _open_kb(args) as kb:
        entries = kb.memory.search(args.query, scope=args.scope, limit=_clamp_k(args.k))

    if getattr(args, "json", False):
        _json_out([e.to_dict() for e in entries])
        return
    if not entries:
        _info("No results found.")
        return

    print(f"Found {len(entries)} memory(ies):\n")
    for e in entries:
        print(f"  {e.key}  [{e.scope}]")
        if e.tags:
            print(f"    tags: {', '.join(e.tags)}")
        preview = e.content[:200].replace("\n", " ")
        print(f"    {preview}")
        print()


# ===========================================================================
# Command: failures  (failure ledger, FTS5 → stdout)
# ===========================================================================


def cmd_failures(args: argparse.Namespace) -> None:
    """Search the failure ledger via FTS5."""
    with _open_kb(args) as kb:
        failures = kb.failures.search(args.query, limit=_clamp_k(args.k))

    if getattr(args, "json", False):
        _json_out([f.to_dict() for f in failures])
        return
    if not failures:
        _info("No matching failures.")
        return

    print(f"Found {len(failures)} failure(s):\n")
    for f in failures:
        print(f"  #{f.id}  x{f.occurrence_count}  {f.error_pattern}")
        if f.skill_name:
            print(f"    skill:    {f.skill_name}")
        print(f"    solution: {f.solution or '(none)'}")
        print()


# ===========================================================================
# Command: recommend
# ===========================================================================


def cmd_recommend(args: argparse.Namespace) -> None:
    """Rank skills by success rate, then usage count."""
    with _open_kb(args) as kb:
        recs = kb.skills.recommend(project_type=args.project_type, limit=_clamp_k(args.k))

    if getattr(args, "json", False):
        _json_out([r.to_dict() for r in recs])
        return
    if not recs:
        _info("No skill usage recorded yet.")
        return

    for r in recs:
        print(f"  {r.skill.name:32s} {r.success_rate:6.1%}  ({r.usage_count} uses)")


# ===========================================================================
# Command: context-clear
# ===========================================================================


def cmd_context_clear(args: argparse.Namespace) -> None:
    """Delete context entries of one session, or of every session."""
    with _open_kb(args) as kb:
        result = kb.context.clear(args.session)

    if getattr(args, "json", False):
        _json_out({"status": "ok", **result})
    else:
        print(f"Cleared {result['cleared']} context entrie(s)"
              f" ({'session ' + args.session if args.session else 'all sessions'}).")


# ===========================================================================
# Command: reindex
# ===========================================================================


def cmd_reindex(args: argparse.Namespace) -> None:
    """Rebuild both FTS5 indexes from their source tables."""
    from agentkb.fts import rebuild

    with _open_kb(args) as kb:
        counts = rebuild(kb.db)

    if getattr(args, "json", False):
        _json_out({"status": "ok", **counts})
    else:
        for table, count in counts.items():
            print(f"  {table}: {count} row(s) indexed")


# ===========================================================================
# Command: serve  (start MCP server)
# ===========================================================================


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the agentkb MCP server in foreground."""
    from agentkb.mcp.server import (
        _install_signal_handlers,
        build_parser as mcp_parser,
        create_server,
        shutdown,
    )

    server_argv = ["--db", _resolve_db(args)]
    fts = getattr(args, "fts_tokenizer", None)
    if fts:
        server_argv.extend(["--fts-tokenizer", fts])
    if getattr(args, "verbose", False):
        server_argv.append("--verbose")

    server_args = mcp_parser().parse_args(server_argv)
    mcp, _ = create_server(server_args)
    _install_signal_handlers()

    _info(f"agentkb MCP server (db={server_args.db})")
    _info("Press Ctrl+C to stop.")
    try:
        mcp.run()
    finally:
        shutdown()


# ===========================================================================
# Entry point
# ===========================================================================


def main() -> None:
    """CLI entry point: agentkb <command> [args]."""
    # Shared parent so both `agentkb --json stats` and `agentkb stats --json`
    # work.  SUPPRESS keeps subparser defaults from overriding main-level values.
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--db", default=argparse.SUPPRESS,
        help=f"Path to SQLite database (default: {default_db_path()})",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="agentkb",
        description="agentkb — local knowledge store for agent orchestration",
        parents=[_common],
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- stats -------------------------------------------------------------
    p_stats = sub.add_parser("stats", parents=[_common], help="Store statistics")
    p_stats.set_defaults(func=cmd_stats)

    # -- search ------------------------------------------------------------
    p_search = sub.add_parser("search", parents=[_common], help="Search memories (FTS5)")
    p_search.add_argument("query", help="FTS5 query")
    p_search.add_argument("--scope", default=None, help="Filter by scope")
    p_search.add_argument("-k", type=int, default=20, help="Max results (default: 20)")
    p_search.set_defaults(func=cmd_search)

    # -- failures ----------------------------------------------------------
    p_fail = sub.add_parser("failures", parents=[_common], help="Search recorded failures (FTS5)")
    p_fail.add_argument("query", help="FTS5 query")
    p_fail.add_argument("-k", type=int, default=10, help="Max results (default: 10)")
    p_fail.set_defaults(func=cmd_failures)

    # -- recommend ---------------------------------------------------------
    p_rec = sub.add_parser("recommend", parents=[_common], help="Recommend skills")
    p_rec.add_argument(
        "--project-type", default=None,
        help="Only count usages whose project path contains this string",
    )
    p_rec.add_argument("-k", type=int, default=5, help="Max results (default: 5)")
    p_rec.set_defaults(func=cmd_recommend)

    # -- context-clear -----------------------------------------------------
    p_ctx = sub.add_parser("context-clear", parents=[_common], help="Clear session context")
    p_ctx.add_argument("--session", default=None, help="Session ID (default: all sessions)")
    p_ctx.set_defaults(func=cmd_context_clear)

    # -- reindex -----------------------------------------------------------
    p_reindex = sub.add_parser("reindex", parents=[_common], help="Rebuild FTS5 indexes")
    p_reindex.set_defaults(func=cmd_reindex)

    # -- serve -------------------------------------------------------------
    p_serve = sub.add_parser("serve", parents=[_common], help="Start MCP server")
    p_serve.add_argument(
        "--fts-tokenizer", default=None,
        help="FTS5 tokenizer preset: default|en|fold (default: AGENTKB_FTS or default)",
    )
    p_serve.set_defaults(func=cmd_serve)

    # -- Parse and dispatch ------------------------------------------------
    args = parser.parse_args()

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BrokenPipeError:
        # e.g. agentkb search foo | head
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Internal error: {e}", file=sys.stderr)
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
