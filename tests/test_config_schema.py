"""Tests for the unified config schema and runtime adapter.

Tests the Pydantic models in config_schema.py (UnifiedConfig, SyncConfig,
LoggingConfig), the build_config() factory and the to_runtime_config()
adapter.
"""

import pytest
from pydantic import ValidationError

from content_sync.config_schema import (
    BUILTIN_STRATEGIES,
    LoggingConfig,
    SyncConfig,
    UnifiedConfig,
    build_config,
    to_runtime_config,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestUnifiedConfig:
    """Tests for the top-level UnifiedConfig model."""

    def test_defaults(self):
        config = UnifiedConfig()

        assert config.sync.state_dir == ".content_sync"
        assert config.sync.default_strategy == "manual_merge"
        assert config.sync.stale_after_seconds == 900
        assert config.sync.max_parallel_operations == 5
        assert config.logging.level == "INFO"
        assert config.logging.file is None

    def test_frozen(self):
        config = UnifiedConfig()
        with pytest.raises(ValidationError):
            config.sync = SyncConfig()


class TestSyncConfig:
    """Tests for SyncConfig field validation."""

    @pytest.mark.parametrize("strategy", BUILTIN_STRATEGIES)
    def test_builtin_strategies_accepted(self, strategy):
        assert SyncConfig(default_strategy=strategy).default_strategy == strategy

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValidationError, match="Unknown strategy 'newest_wins'"):
            SyncConfig(default_strategy="newest_wins")

    def test_negative_stale_after_rejected(self):
        with pytest.raises(ValidationError):
            SyncConfig(stale_after_seconds=-1)

    @pytest.mark.parametrize("value", [0, 101])
    def test_max_parallel_bounds(self, value):
        with pytest.raises(ValidationError):
            SyncConfig(max_parallel_operations=value)


class TestLoggingConfig:
    def test_values(self):
        config = LoggingConfig(level="DEBUG", file="/tmp/sync.log")
        assert config.level == "DEBUG"
        assert config.file == "/tmp/sync.log"


# ---------------------------------------------------------------------------
# build_config()
# ---------------------------------------------------------------------------


class TestBuildConfig:
    """Tests for build_config()."""

    def test_empty_dict_gives_defaults(self):
        assert build_config({}) == UnifiedConfig()

    def test_partial_sections(self):
        config = build_config({"sync": {"default_strategy": "auto_merge"}})

        assert config.sync.default_strategy == "auto_merge"
        assert config.sync.state_dir == ".content_sync"
        assert config.logging == LoggingConfig()

    def test_invalid_section_raises(self):
        with pytest.raises(ValidationError):
            build_config({"sync": {"stale_after_seconds": "later"}})


# ---------------------------------------------------------------------------
# to_runtime_config()
# ---------------------------------------------------------------------------


class TestToRuntimeConfig:
    """Tests for the UnifiedConfig -> Config adapter."""

    def test_flattens_sections(self):
        unified = build_config(
            {
                "sync": {"state_dir": "/srv/sync", "stale_after_seconds": 60},
                "logging": {"file": "/tmp/sync.log"},
            }
        )

        config = to_runtime_config(unified)

        assert config.state_dir == "/srv/sync"
        assert config.stale_after_seconds == 60
        assert config.log_file == "/tmp/sync.log"
        assert config.debug is False

    def test_cli_overrides_win(self):
        unified = build_config({"sync": {"state_dir": "/srv/sync"}})

        config = to_runtime_config(
            unified,
            cli_overrides={
                "state_dir": "/cli",
                "default_strategy": "local_wins",
                "debug": True,
                "log_file": "/tmp/cli.log",
            },
        )

        assert config.state_dir == "/cli"
        assert config.default_strategy == "local_wins"
        assert config.debug is True
        assert config.log_file == "/tmp/cli.log"

    def test_empty_overrides_ignored(self):
        config = to_runtime_config(UnifiedConfig(), cli_overrides={"state_dir": None})
        assert config.state_dir == ".content_sync"
