"""Lifespan management for MCP server startup and shutdown."""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import yaml
from dotenv import load_dotenv

from ..config import load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import UnifiedConfig, build_config
from ..core.async_utils import init_semaphore, reset_semaphore, run_sync
from ..core.context import SyncContext

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def _apply_log_level(unified: UnifiedConfig, debug: bool) -> None:
    """Apply the YAML log level unless LOG_LEVEL or --debug already decided."""
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
        return
    if os.getenv("LOG_LEVEL"):
        return
    level = getattr(logging, unified.logging.level.upper(), None)
    if isinstance(level, int):
        logging.getLogger().setLevel(level)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config files if present
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Build the sync context (state store, conflict log, strategy manager)
    - Fail fast if the state files are unreadable

    On shutdown:
    - Drop the concurrency semaphore

    Args:
        config_overrides: Optional dict with config values from CLI
            (state_dir, default_strategy, debug, log_file)

    Yields:
        Dict with 'context' key containing the initialized SyncContext

    Raises:
        RuntimeError: If configuration is invalid or the state store is unusable.
    """
    logger.info("MCP server starting...")
    _stderr_print("Content Sync MCP Server starting...")

    overrides = config_overrides or {}
    try:
        # .env first, so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        sources = []
        config_files = discover_config_files()
        unified = build_config(load_hierarchical_config())
        if config_files:
            sources.append(f"config file: {config_files[0]}")

        config = load_config(
            state_dir=overrides.get("state_dir"),
            default_strategy=overrides.get("default_strategy"),
            debug=overrides.get("debug", False),
            log_file=overrides.get("log_file"),
            unified=unified,
        )
        _apply_log_level(unified, config.debug)

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
    except (ValueError, OSError, yaml.YAMLError) as e:
        # pydantic.ValidationError is a ValueError subclass
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(f"Configuration error: {e}") from e

    try:
        context = SyncContext.from_config(config)
        states = await run_sync(context.store.get_all_sync_states)
        interrupted = await run_sync(
            context.store.detect_interrupted_sync, config.stale_after
        )
    except Exception as e:
        logger.error("Failed to open sync state: %s", e)
        _stderr_print(f"ERROR: Failed to open sync state in {config.state_dir}.")
        _stderr_print(f"  {e}")
        raise RuntimeError(f"Sync state unavailable: {e}") from e

    logger.info(
        "Sync state: %d tracked type(s), %d interrupted", len(states), len(interrupted)
    )
    _stderr_print(f"  State directory: {config.state_dir}")
    _stderr_print(f"  Default strategy: {config.default_strategy}")
    if interrupted:
        _stderr_print(
            f"  Interrupted syncs: {', '.join(interrupted)} (see sync_state_list)"
        )
    init_semaphore(config.max_parallel_operations)
    _stderr_print(f"  Parallel operations: {config.max_parallel_operations}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"context": context}
    finally:
        reset_semaphore()
        logger.info("MCP server shutting down")
        _stderr_print("Content Sync MCP Server shutting down.")
