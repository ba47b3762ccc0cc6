"""
Knowledge Store Configuration

Configuration dataclasses for agentkb and load_config() for reading a JSON
config file with silent fallback to compiled defaults.

Precedence (invariant):
    CLI --flag  >  AGENTKB_* env var  >  config file  >  compiled default
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from agentkb.errors import ValidationError

# Well-known per-user location; kept stable so earlier databases keep opening.
DEFAULT_DB_PATH = Path.home() / ".claude" / "claude.db"


def default_db_path() -> str:
    """Resolve database path: $AGENTKB_DB > ~/.claude/claude.db."""
    return os.environ.get("AGENTKB_DB") or str(DEFAULT_DB_PATH)


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and (isinstance(value, bool) or not isinstance(value, typ)):
        expected = (
            typ.__name__ if isinstance(typ, type)
            else " or ".join(t.__name__ for t in typ)
        )
        errors.append(f"{name}: expected {expected}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


@dataclass
class StoreConfig:
    """SQLite storage engine configuration."""
    db_path: str = field(default_factory=default_db_path)
    wal_mode: bool = True
    busy_timeout: float = 5.0
    fts_tokenizer: str = "unicode61"

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if not self.db_path:
            errors.append("store.db_path: must not be empty")
        _check_range(errors, "store.busy_timeout",
                     self.busy_timeout, 0.0, 600.0, (int, float))
        if not self.fts_tokenizer.strip():
            errors.append("store.fts_tokenizer: must not be empty")
        return errors


@dataclass
class LimitsConfig:
    """Bounds applied by callers (tools, CLI) before reaching the stores."""
    max_limit: int = 500

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "limits.max_limit", self.max_limit, 1, 100000, int)
        return errors


@dataclass
class KBConfig:
    """Top-level agentkb configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> KBConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "store" in d:
            kwargs["store"] = StoreConfig(**d["store"])
        if "limits" in d:
            kwargs["limits"] = LimitsConfig(**d["limits"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.store.validate())
        errors.extend(self.limits.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> KBConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        KBConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = KBConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = KBConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = KBConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
