"""MCP Server for content sync using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents query deltas, diff and resolve conflicts, and drive reconciliation
of content types between a local store and a remote system.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import ensure_config
from ..config_schema import BUILTIN_STRATEGIES
from ..core.context import SyncContext
from ..logger import setup_logging
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_scopes_file,
)

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("content-sync")

# Global context instance (initialized in main from the lifespan)
_sync_context: SyncContext | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> SyncContext:
    """Get the global SyncContext instance.

    Raises:
        RuntimeError: If the context is not initialized
    """
    if _sync_context is None:
        raise RuntimeError(
            "SyncContext not initialized. Server lifespan not started."
        )
    return _sync_context


def set_context(context: SyncContext | None) -> None:
    """Set the global SyncContext instance, or None to clear."""
    global _sync_context
    _sync_context = context


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance, or None to clear."""
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available sync tools.

    Returns all registered (and scope-permitted) tools from the ToolRegistry.
    """
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch."""
    context = get_context()
    try:
        return await get_registry().call_tool(name, arguments, context)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(scopes_file: str | None = None) -> ToolRegistry:
    """Build the ToolRegistry, filtered by the scopes file when given."""
    allowed_scopes = None
    if scopes_file:
        allowed_scopes = load_scopes_file(scopes_file)
        logger.info(
            "Loaded %d scopes from %s", len(allowed_scopes), scopes_file
        )

    registry = ToolRegistry(ALL_SPECS, allowed_scopes)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(ALL_SPECS),
    )
    if scopes_file:
        print(
            f"Scopes file: {scopes_file} "
            f"({registry.tool_count()} of {len(ALL_SPECS)} tools enabled)",
            file=sys.stderr,
        )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), opens the sync
    state via the lifespan manager, and serves over stdio.

    Args:
        config_overrides: Optional dict with config values to override
            (state_dir, default_strategy, debug, log_file, scopes_file)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout during
    # protocol negotiation
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    try:
        registry = build_registry(overrides.get("scopes_file"))
    except (OSError, ValueError) as e:
        print(f"ERROR: Invalid scopes file: {e}", file=sys.stderr)
        raise RuntimeError(f"Invalid scopes file: {e}") from e
    set_registry(registry)

    # The context is installed here rather than inside the lifespan: under
    # `python -m content_sync.mcp.server` this module runs as __main__, and a
    # relative import from lifespan.py would set a second module's global.
    lifespan_overrides = {k: v for k, v in overrides.items() if k != "scopes_file"}
    async with server_lifespan(config_overrides=lifespan_overrides) as ctx:
        set_context(ctx["context"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="content-sync",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_context(None)
            set_registry(None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="content-sync-mcp",
        description="Content Sync MCP Server - three-way content reconciliation over MCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .content_sync/config.yml)
  content-sync-mcp

  # Keep state somewhere else
  content-sync-mcp --state-dir /var/lib/content-sync

  # Resolve plain field conflicts with the remote side by default
  content-sync-mcp --default-strategy remote_wins

  # Read-only agent
  content-sync-mcp --scopes-file /etc/content-sync/view-only.scopes

  # Create .content_sync/config.yml with commented defaults
  content-sync-mcp --init-config

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--state-dir",
        help="Directory for sync_state.json and conflict_log.json "
        "(takes precedence over CONTENT_SYNC_STATE_DIR and config files)",
    )
    parser.add_argument(
        "--default-strategy",
        choices=BUILTIN_STRATEGIES,
        help="Fallback resolution strategy (default: manual_merge)",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: LOG_FILE env var or /tmp/content-sync.log)",
    )
    parser.add_argument(
        "--scopes-file",
        help="Path to scopes file restricting available tools. "
        "Format: one scope per line (SYNC_VIEW, SYNC_RESOLVE), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a commented starter config file if none exists, then exit",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"content-sync version {__version__}",
    )
    return parser


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args()

    if args.init_config:
        print(f"Config file: {ensure_config()}", file=sys.stderr)
        return

    config_overrides = {}
    if args.state_dir:
        config_overrides["state_dir"] = args.state_dir
    if args.default_strategy:
        config_overrides["default_strategy"] = args.default_strategy
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.scopes_file:
        config_overrides["scopes_file"] = args.scopes_file
    if args.debug:
        config_overrides["debug"] = True

    if config_overrides:
        print(
            f"Config overrides from CLI: {', '.join(config_overrides)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
