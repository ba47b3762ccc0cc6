"""
Tests for the agentkb CLI via subprocess.

Every test runs the real entry point (`python -m agentkb.cli`) against a
temporary SQLite database so the developer's ~/.claude/claude.db is never
touched.
"""

import json
import os
import subprocess
import sys

import pytest

from agentkb.cli import _clamp_k
from agentkb.config import LimitsConfig
from agentkb.kb import KnowledgeBase
from agentkb.store import Database


PYTHON = sys.executable
CLI = [PYTHON, "-m", "agentkb.cli"]


def run(args, *, env=None):
    """Run an agentkb CLI command and return CompletedProcess."""
    merged_env = {**os.environ, **(env or {})}
    return subprocess.run(
        CLI + args,
        capture_output=True,
        text=True,
        env=merged_env,
        timeout=30,
    )


@pytest.fixture
def db(tmp_path):
    """Path to an empty database file location."""
    return str(tmp_path / "kb" / "claude.db")


@pytest.fixture
def populated_db(db):
    """A database with one record of every kind."""
    with KnowledgeBase(Database(db)) as kb:
        kb.memory.write("tip:sqlite", "enable write ahead logging", scope="global")
        kb.memory.write("note:proj", "project specific note", scope="project:demo")
        kb.skills.register("evolve", "1.0", "plugin:evolve")
        uid = kb.skills.usage_start("evolve", project_path="/work/react-app")
        kb.skills.usage_end(uid, True)
        kb.failures.record("ModuleNotFoundError: yaml", solution="pip install pyyaml")
        kb.context.set("sess", "plan", {"step": 1})
    return db


class TestGeneral:
    def test_no_command_exits_1(self):
        r = run([])
        assert r.returncode == 1

    def test_help(self):
        r = run(["--help"])
        assert r.returncode == 0
        assert "agentkb" in r.stdout


class TestStats:
    def test_stats_json(self, populated_db):
        r = run(["stats", "--db", populated_db, "--json"])
        assert r.returncode == 0, r.stderr
        data = json.loads(r.stdout)
        assert data["status"] == "ok"
        assert data["memory"]["total"] == 2
        assert data["skills"]["total_skills"] == 1
        assert data["failures"]["total"] == 1
        assert data["context"]["live_entries"] == 1

    def test_stats_human(self, populated_db):
        r = run(["stats", "--db", populated_db])
        assert r.returncode == 0, r.stderr
        assert "Memories: 2" in r.stdout

    def test_stats_creates_db(self, db):
        r = run(["--json", "stats", "--db", db])
        assert r.returncode == 0, r.stderr
        assert json.loads(r.stdout)["memory"]["total"] == 0
        assert os.path.exists(db)

    def test_db_from_env(self, populated_db):
        r = run(["stats", "--json"], env={"AGENTKB_DB": populated_db})
        assert r.returncode == 0, r.stderr
        assert json.loads(r.stdout)["memory"]["total"] == 2


class TestSearch:
    def test_search_json(self, populated_db):
        r = run(["search", "logging", "--db", populated_db, "--json"])
        assert r.returncode == 0, r.stderr
        assert [e["key"] for e in json.loads(r.stdout)] == ["tip:sqlite"]

    def test_search_scope(self, populated_db):
        r = run(["search", "note", "--scope", "project:demo", "--db", populated_db, "--json"])
        assert [e["key"] for e in json.loads(r.stdout)] == ["note:proj"]

    def test_search_no_results(self, populated_db):
        r = run(["search", "absent", "--db", populated_db])
        assert r.returncode == 0
        assert "No results" in r.stderr

    def test_malformed_query_exits_1(self, populated_db):
        r = run(["search", '"unbalanced', "--db", populated_db])
        assert r.returncode == 1
        assert "Error" in r.stderr

    def test_blank_query_exits_1(self, populated_db):
        r = run(["search", "   ", "--db", populated_db])
        assert r.returncode == 1

    def test_oversized_k_clamped(self, populated_db):
        r = run(["search", "logging", "-k", "100000", "--db", populated_db, "--json"])
        assert r.returncode == 0, r.stderr
        assert [e["key"] for e in json.loads(r.stdout)] == ["tip:sqlite"]

    @pytest.mark.parametrize("k, expected", [(0, 1), (20, 20), (10 ** 6, LimitsConfig().max_limit)])
    def test_clamp_k_follows_limits_config(self, k, expected):
        assert _clamp_k(k) == expected


class TestFailuresAndRecommend:
    def test_failures(self, populated_db):
        r = run(["failures", "yaml", "--db", populated_db, "--json"])
        assert r.returncode == 0, r.stderr
        data = json.loads(r.stdout)
        assert data[0]["solution"] == "pip install pyyaml"

    def test_recommend(self, populated_db):
        r = run(["recommend", "--project-type", "react", "--db", populated_db, "--json"])
        assert r.returncode == 0, r.stderr
        data = json.loads(r.stdout)
        assert data[0]["skill"]["name"] == "evolve"
        assert data[0]["success_rate"] == 1.0

    def test_recommend_other_project(self, populated_db):
        r = run(["recommend", "--project-type", "django", "--db", populated_db, "--json"])
        assert json.loads(r.stdout) == []


class TestMaintenance:
    def test_context_clear(self, populated_db):
        r = run(["context-clear", "--session", "sess", "--db", populated_db, "--json"])
        assert r.returncode == 0, r.stderr
        assert json.loads(r.stdout)["cleared"] == 1

    def test_reindex(self, populated_db):
        r = run(["reindex", "--db", populated_db, "--json"])
        assert r.returncode == 0, r.stderr
        data = json.loads(r.stdout)
        assert data["memory_fts"] == 2
        assert data["failures_fts"] == 1

    def test_storage_failure_exits_2(self, tmp_path):
        bogus = tmp_path / "not-a-db.db"
        bogus.write_bytes(b"this is definitely not sqlite" * 100)
        r = run(["stats", "--db", str(bogus)])
        assert r.returncode == 2

    def test_unsafe_tokenizer_exits_1(self, db):
        r = run(["stats", "--db", db], env={"AGENTKB_FTS": "unicode61'); DROP TABLE memory; --"})
        assert r.returncode == 1
        assert "Error" in r.stderr
