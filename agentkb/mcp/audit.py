"""
MCP Audit Logger — Structured JSONL logging for MCP tool calls.

One record per tool call, written to a file handle (stderr by default):

    {"v":1,"ts":"...Z","rid":"...","tool":"memory_write","outcome":"ok","d":{...},"ms":1.2}

Privacy rules (v1 contract):
- Never log raw content beyond a 120-char preview
- Include SHA-256 hash for correlation without content storage

The log() method is fire-and-forget: audit failures never disrupt tool
execution.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

logger = logging.getLogger(__name__)

AUDIT_SCHEMA_VERSION = 1
PREVIEW_MAX_CHARS = 120


class AuditLogger:
    """Structured JSONL audit logger for MCP tool calls."""

    def __init__(self, output: Optional[TextIO] = None):
        """
        Args:
            output: File handle for audit output. None → stderr.
        """
        self._output = output if output is not None else sys.stderr

    def new_rid(self) -> str:
        """Generate a new request ID (UUID4 hex string)."""
        return uuid.uuid4().hex

    def log(
        self,
        tool: str,
        rid: str,
        outcome: str,
        detail: Optional[Dict[str, Any]] = None,
        latency_ms: float = 0.0,
    ) -> None:
        """
        Write one JSONL audit record. Fire-and-forget — never raises.

        Args:
            tool: MCP tool name (e.g. "memory_write").
            rid: Request ID (from new_rid()).
            outcome: "ok", "not_found" or "error".
            detail: Tool-specific fields.
            latency_ms: Wall-clock latency in milliseconds.
        """
        try:
            now = datetime.now(timezone.utc)
            record: Dict[str, Any] = {
                "v": AUDIT_SCHEMA_VERSION,
                "ts": now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z",
                "rid": rid,
                "tool": tool,
                "outcome": outcome,
            }
            if detail:
                record["d"] = detail
            record["ms"] = round(latency_ms, 1)

            line = json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str)
            self._output.write(line + "\n")
            self._output.flush()
        except (OSError, ValueError, TypeError) as exc:
            logger.debug("audit write failed for %s: %s", tool, exc)

    @staticmethod
    def make_content_detail(content: str) -> Dict[str, Any]:
        """
        Build safe audit detail fields for content-carrying tools.

        - preview: first 120 chars, newlines → space, truncated with '…'
        - hash: SHA-256 hex digest (correlate without storing content)
        - bytes: total content size
        """
        encoded = content.encode("utf-8")
        preview = content[:PREVIEW_MAX_CHARS].replace("\n", " ").replace("\r", "")
        if len(content) > PREVIEW_MAX_CHARS:
            preview = preview.rstrip() + "…"
        return {
            "bytes": len(encoded),
            "hash": hashlib.sha256(encoded).hexdigest(),
            "preview": preview,
        }
