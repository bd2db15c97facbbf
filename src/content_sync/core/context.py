"""Runtime context shared by the MCP tool handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import Config
from ..sync.conflict_log import ConflictLog
from ..sync.engine import ContentWriter, SyncCoordinator
from ..sync.resolver import ResolutionStrategyManager, create_manager
from ..sync.state import SyncStateStore

logger = logging.getLogger(__name__)


class CollectingWriter:
    """``ContentWriter`` that records writes instead of performing them.

    The MCP caller is the transport: it receives the collected writes in
    the tool response and applies them to each side.
    """

    def __init__(self) -> None:
        self.writes: list[dict[str, Any]] = []

    def write_local(self, type_key: str, data: dict[str, Any]) -> None:
        self.writes.append({"target": "local", "type_key": type_key, "data": data})

    def write_remote(self, type_key: str, data: dict[str, Any]) -> None:
        self.writes.append({"target": "remote", "type_key": type_key, "data": data})


@dataclass
class SyncContext:
    """Store, conflict log and strategy manager built from one ``Config``."""

    config: Config
    store: SyncStateStore
    conflict_log: ConflictLog
    manager: ResolutionStrategyManager = field(default_factory=create_manager)

    @classmethod
    def from_config(cls, config: Config) -> SyncContext:
        state_dir = Path(config.state_dir)
        logger.info("Using sync state directory %s", state_dir.resolve())
        return cls(
            config=config,
            store=SyncStateStore(state_dir),
            conflict_log=ConflictLog(state_dir),
            manager=create_manager(config.default_strategy),
        )

    def coordinator(self, writer: ContentWriter) -> SyncCoordinator:
        """Build a coordinator over this context that writes through *writer*."""
        return SyncCoordinator(self.store, self.conflict_log, self.manager, writer)
