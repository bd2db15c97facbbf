"""Shared pytest fixtures for content-sync tests."""

from pathlib import Path

import pytest

from content_sync.config import Config
from content_sync.core.context import CollectingWriter, SyncContext
from content_sync.sync.conflict_log import ConflictLog
from content_sync.sync.engine import SyncCoordinator
from content_sync.sync.resolver import create_manager
from content_sync.sync.state import SyncStateStore

_ENV_VARS = (
    "CONTENT_SYNC_CONFIG",
    "CONTENT_SYNC_STATE_DIR",
    "CONTENT_SYNC_DEFAULT_STRATEGY",
    "CONTENT_SYNC_STALE_AFTER",
    "CONTENT_SYNC_MAX_PARALLEL",
    "CONTENT_SYNC_DEBUG",
    "LOG_LEVEL",
    "LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's environment out of config resolution."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / ".content_sync"


@pytest.fixture
def store(state_dir: Path) -> SyncStateStore:
    return SyncStateStore(state_dir)


@pytest.fixture
def conflict_log(state_dir: Path) -> ConflictLog:
    return ConflictLog(state_dir)


@pytest.fixture
def manager():
    return create_manager()


@pytest.fixture
def writer() -> CollectingWriter:
    return CollectingWriter()


@pytest.fixture
def coordinator(store, conflict_log, manager, writer) -> SyncCoordinator:
    return SyncCoordinator(store, conflict_log, manager, writer)


@pytest.fixture
def sync_config(state_dir: Path) -> Config:
    return Config(state_dir=str(state_dir))


@pytest.fixture
def sync_context(sync_config: Config) -> SyncContext:
    return SyncContext.from_config(sync_config)
