"""Unified configuration schema for content_sync.

Pydantic models for the YAML config structure, with a ``sync`` section for
the reconciliation core and a ``logging`` section, plus an adapter onto the
runtime ``Config`` dataclass.

Usage:
    from content_sync.config_schema import build_config, to_runtime_config

    unified = build_config(load_hierarchical_config())
    config = to_runtime_config(unified, cli_overrides={"debug": True})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

from .sync.resolver import AUTO_MERGE, LOCAL_WINS, MANUAL_MERGE, REMOTE_WINS

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

BUILTIN_STRATEGIES = (LOCAL_WINS, REMOTE_WINS, MANUAL_MERGE, AUTO_MERGE)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SyncConfig(BaseModel):
    """Reconciliation core settings."""

    state_dir: str = Field(
        default=".content_sync",
        description="Directory holding sync_state.json and conflict_log.json",
    )
    default_strategy: str = Field(
        default=MANUAL_MERGE,
        description="Fallback resolution strategy when nothing can auto-resolve",
    )
    stale_after_seconds: int = Field(
        default=900,
        ge=0,
        description="Age after which a 'syncing' record counts as interrupted",
    )
    max_parallel_operations: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent blocking operations (1-100)",
    )

    model_config = {"frozen": True}

    @field_validator("default_strategy")
    @classmethod
    def _known_strategy(cls, value: str) -> str:
        if value not in BUILTIN_STRATEGIES:
            raise ValueError(
                f"Unknown strategy '{value}'. Valid strategies: {sorted(BUILTIN_STRATEGIES)}"
            )
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


class UnifiedConfig(BaseModel):
    """Top-level configuration; ``UnifiedConfig()`` is always valid."""

    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Validate the merged dict from ``load_hierarchical_config()``.

    Missing sections get defaults.

    Raises:
        pydantic.ValidationError: If a section holds invalid values.
    """
    if not raw_data:
        return UnifiedConfig()
    return UnifiedConfig(**raw_data)


def to_runtime_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Flatten a ``UnifiedConfig`` into the runtime ``Config`` dataclass.

    CLI overrides (keys ``state_dir``, ``default_strategy``, ``debug``,
    ``log_file``) win over config file values.  The result is not
    validated; call ``validate_config()`` on it.
    """
    from .config import Config

    overrides = cli_overrides or {}

    return Config(
        state_dir=overrides.get("state_dir") or unified.sync.state_dir,
        default_strategy=overrides.get("default_strategy")
        or unified.sync.default_strategy,
        stale_after_seconds=unified.sync.stale_after_seconds,
        max_parallel_operations=unified.sync.max_parallel_operations,
        debug=bool(overrides.get("debug", False)),
        log_file=overrides.get("log_file") or unified.logging.file,
    )
