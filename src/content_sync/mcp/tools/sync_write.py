"""Write sync tool handlers for MCP server.

This module implements the tools that change persisted sync state:
reconcile, manual conflict resolution and state reset.

The calling agent is the transport.  Reconciliation records what it would
write to each side with a ``CollectingWriter`` and the handler returns those
writes; the agent applies them to the local store and the remote system.
"""

import logging
from typing import Any

import mcp.types as types

from ...core.async_utils import run_sync_limited
from ...core.context import CollectingWriter, SyncContext
from ...errors import ValidationError
from ...sync.models import ReconcileOutcome
from ...sync.reporter import format_outcome
from .constants import SNAPSHOT_SCHEMA
from .errors import build_json_response, require_string, snapshot_arg
from .registry import SYNC_RESOLVE, ToolSpec

logger = logging.getLogger(__name__)

# Tool definitions for list_tools()
SYNC_WRITE_TOOLS = [
    types.Tool(
        name="sync_reconcile",
        description=(
            "Reconcile one content type: push, pull, or diff and resolve a "
            "conflict, then record the new sync state. Returns the writes the "
            "caller must apply to each side. Conflicts that need a human are "
            "logged and returned with manual_resolution_data."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "type_key": {
                    "type": "string",
                    "description": "Content type identifier",
                },
                "local": SNAPSHOT_SCHEMA,
                "remote": SNAPSHOT_SCHEMA,
                "ancestor": SNAPSHOT_SCHEMA,
                "strategy": {
                    "type": "string",
                    "description": "Force a resolution strategy (see sync_strategies)",
                },
            },
            "required": ["type_key", "local", "remote"],
        },
    ),
    types.Tool(
        name="sync_conflict_resolve",
        description=(
            "Apply a manually merged record to a pending conflict. Marks the "
            "conflict log entry resolved and the content type in sync. Returns "
            "the writes the caller must apply to both sides."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "type_key": {
                    "type": "string",
                    "description": "Content type identifier",
                },
                "entry_id": {
                    "type": "string",
                    "description": "Conflict log entry id (see sync_conflicts)",
                },
                "merged_data": {
                    "type": "object",
                    "description": "The resolved field data",
                },
                "resolved_by": {
                    "type": "string",
                    "default": "user",
                    "description": "Who resolved the conflict",
                },
            },
            "required": ["type_key", "entry_id", "merged_data"],
        },
    ),
    types.Tool(
        name="sync_state_reset",
        description=(
            "Forget the sync state of one content type, or with all=true force "
            "every tracked type back to pending and drop rollback checkpoints."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "type_key": {
                    "type": "string",
                    "description": "Content type identifier",
                },
                "all": {
                    "type": "boolean",
                    "default": False,
                    "description": "Reset every tracked content type",
                },
            },
            "required": [],
        },
    ),
]


def _outcome_response(
    outcome: ReconcileOutcome, writer: CollectingWriter
) -> types.CallToolResult:
    lines = [format_outcome(outcome)]
    for write in writer.writes:
        lines.append(f"  Write {write['target']}: {write['type_key']}")

    structured: dict[str, Any] = outcome.model_dump(mode="json", exclude_none=True)
    structured["requires_manual"] = outcome.requires_manual
    structured["writes"] = writer.writes
    return build_json_response("\n".join(lines), structured)


async def _handle_reconcile(ctx: SyncContext, args: dict) -> types.CallToolResult:
    type_key = require_string(args, "type_key")
    local = snapshot_arg(args, "local")
    remote = snapshot_arg(args, "remote")
    ancestor = snapshot_arg(args, "ancestor", required=False)
    strategy = args.get("strategy") or None
    if strategy is not None:
        # Unknown names surface as not_found instead of a logged conflict.
        ctx.manager.require_strategy(strategy)

    writer = CollectingWriter()
    coordinator = ctx.coordinator(writer)
    outcome = await run_sync_limited(
        coordinator.reconcile, type_key, local, remote, ancestor, strategy
    )
    return _outcome_response(outcome, writer)


async def _handle_conflict_resolve(
    ctx: SyncContext, args: dict
) -> types.CallToolResult:
    type_key = require_string(args, "type_key")
    entry_id = require_string(args, "entry_id")
    merged_data = args.get("merged_data")
    if not isinstance(merged_data, dict):
        raise ValidationError("merged_data must be an object")
    resolved_by = args.get("resolved_by") or "user"

    writer = CollectingWriter()
    coordinator = ctx.coordinator(writer)
    outcome = await run_sync_limited(
        coordinator.apply_manual_resolution,
        type_key,
        entry_id,
        merged_data,
        resolved_by,
    )
    return _outcome_response(outcome, writer)


async def _handle_state_reset(ctx: SyncContext, args: dict) -> types.CallToolResult:
    reset_all = bool(args.get("all", False))
    type_key = args.get("type_key") or None

    if reset_all:
        count = await run_sync_limited(ctx.store.reset_all_sync_states)
        logger.info("Reset %d sync state(s)", count)
        return build_json_response(
            f"Reset {count} content type(s).", {"reset": count, "all": True}
        )
    if type_key is None:
        raise ValidationError("Provide type_key, or all=true to reset every type")

    await run_sync_limited(ctx.store.clear_sync_state, type_key)
    return build_json_response(
        f"Reset sync state for '{type_key}'.",
        {"reset": 1, "all": False, "type_key": type_key},
    )


# ToolSpec list for registry-based dispatch
SYNC_WRITE_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_WRITE_TOOLS[0],
        scopes=frozenset({SYNC_RESOLVE}),
        handler=_handle_reconcile,
    ),
    ToolSpec(
        tool=SYNC_WRITE_TOOLS[1],
        scopes=frozenset({SYNC_RESOLVE}),
        handler=_handle_conflict_resolve,
    ),
    ToolSpec(
        tool=SYNC_WRITE_TOOLS[2],
        scopes=frozenset({SYNC_RESOLVE}),
        handler=_handle_state_reset,
    ),
]
