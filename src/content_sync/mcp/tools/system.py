"""System tool handlers for MCP server.

This module implements ``ping``: a health check reporting the server
version, the sync state directory and the number of tracked content types.
"""

import logging
from datetime import datetime, timezone

import mcp.types as types

from ... import __version__
from ...core.async_utils import run_sync
from ...core.context import SyncContext
from ...sync.models import ConflictStatus
from .errors import build_json_response
from .registry import ToolSpec

logger = logging.getLogger(__name__)


# Tool definitions for list_tools()
SYSTEM_TOOLS = [
    types.Tool(
        name="ping",
        description="Health check. Returns server version, state directory, default strategy and the number of tracked content types.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    )
]


async def _handle_ping(ctx: SyncContext, args: dict) -> types.CallToolResult:
    """Handle ping tool.

    Reads the state store so a broken state directory shows up as a
    persistence error rather than at the first sync.
    """
    states = await run_sync(ctx.store.get_all_sync_states)
    conflicted = sum(1 for s in states if s.conflict_status is ConflictStatus.DETECTED)
    now = datetime.now(timezone.utc).isoformat()

    text = (
        f"content-sync {__version__}\n"
        f"State directory: {ctx.config.state_dir}\n"
        f"Default strategy: {ctx.manager.default_strategy}\n"
        f"Tracked content types: {len(states)} ({conflicted} conflicted)"
    )

    structured = {
        "version": __version__,
        "state_dir": str(ctx.config.state_dir),
        "default_strategy": ctx.manager.default_strategy,
        "tracked_types": len(states),
        "conflicted_types": conflicted,
        "server_time": now,
    }
    logger.debug("ping: %s", structured)
    return build_json_response(text, structured)


# ToolSpec list for registry-based dispatch
SYSTEM_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYSTEM_TOOLS[0],
        scopes=frozenset(),
        handler=_handle_ping,
    ),
]
