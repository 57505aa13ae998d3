"""Shared graphflow configuration utilities.

Reads ~/.graphflow/configuration.json, with environment variables taking
precedence:

    GRAPHFLOW_CHECKPOINT_DIR   directory for file-backed checkpoints
    GRAPHFLOW_LOG_LEVEL        log level passed to configure_logging()
    GRAPHFLOW_LOG_FORMAT       "json", "human" or "auto"

Example configuration.json:

    {"checkpoints": {"dir": "~/.graphflow/checkpoints"},
     "logging": {"level": "DEBUG", "format": "human"}}
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from graphflow.storage.checkpoint_store import (
    CheckpointStorage,
    FileCheckpointStorage,
    InMemoryCheckpointStorage,
)

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

GRAPHFLOW_CONFIG_FILE = Path.home() / ".graphflow" / "configuration.json"


def get_graphflow_config() -> dict[str, Any]:
    """Load configuration from ~/.graphflow/configuration.json."""
    if not GRAPHFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(GRAPHFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_checkpoint_dir() -> Path | None:
    """Return the configured checkpoint directory, or None for in-memory storage."""
    raw = os.environ.get("GRAPHFLOW_CHECKPOINT_DIR")
    if not raw:
        raw = get_graphflow_config().get("checkpoints", {}).get("dir")
    return Path(raw).expanduser() if raw else None


def get_log_level() -> str:
    return os.environ.get("GRAPHFLOW_LOG_LEVEL") or get_graphflow_config().get(
        "logging", {}
    ).get("level", "INFO")


def get_log_format() -> str:
    return os.environ.get("GRAPHFLOW_LOG_FORMAT") or get_graphflow_config().get(
        "logging", {}
    ).get("format", "auto")


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from the config file and environment."""

    checkpoint_dir: Path | None = field(default_factory=get_checkpoint_dir)
    log_level: str = field(default_factory=get_log_level)
    log_format: str = field(default_factory=get_log_format)


def create_default_storage(config: EngineConfig | None = None) -> CheckpointStorage:
    """Storage used by ``Graph.compile()`` when none is passed."""
    config = config or EngineConfig()
    if config.checkpoint_dir is not None:
        return FileCheckpointStorage(config.checkpoint_dir)
    return InMemoryCheckpointStorage()
