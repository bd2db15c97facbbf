"""Read-only sync tool handlers for MCP server.

This module implements the inspection tools: delta queries, three-way diffs,
resolution previews, strategy listing, sync state and conflict log queries.
None of them changes persisted state; blocking store reads go through
``run_sync_limited``.
"""

from datetime import datetime
from typing import Any

import mcp.types as types

from ...core.async_utils import run_sync_limited
from ...core.context import CollectingWriter, SyncContext
from ...errors import ValidationError
from ...sync.diff import classify_conflict_category, compare_versions
from ...sync.models import ConflictLogEntry, SyncState
from ...sync.reporter import delta_to_json, format_diff_output, format_diff_summary
from .constants import (
    DEFAULT_CONFLICT_PAGE_SIZE,
    MAX_CONFLICT_PAGE_SIZE,
    SNAPSHOT_SCHEMA,
    STATE_FILTERS,
)
from .errors import (
    build_json_response,
    format_timestamp,
    require_string,
    snapshot_arg,
)
from .registry import SYNC_VIEW, ToolSpec

_READ_ONLY = types.ToolAnnotations(
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
)

# Tool definitions for list_tools()
SYNC_READ_TOOLS = [
    types.Tool(
        name="sync_delta",
        description=(
            "Decide what a content type needs (no_change, push, pull, conflict, "
            "initial_sync) from its current local and remote hashes and the "
            "stored sync state."
        ),
        annotations=_READ_ONLY,
        inputSchema={
            "type": "object",
            "properties": {
                "type_key": {
                    "type": "string",
                    "description": "Content type identifier",
                },
                "local_hash": {
                    "type": "string",
                    "description": "Current local content hash",
                },
                "remote_hash": {
                    "type": "string",
                    "description": "Current remote content hash",
                },
            },
            "required": ["type_key", "local_hash", "remote_hash"],
        },
    ),
    types.Tool(
        name="sync_diff",
        description=(
            "Three-way diff of local and remote snapshots against their common "
            "ancestor. Reports per-side changes, field conflicts with suggested "
            "resolutions, auto-mergeable changes and a divergence score."
        ),
        annotations=_READ_ONLY,
        inputSchema={
            "type": "object",
            "properties": {
                "local": SNAPSHOT_SCHEMA,
                "remote": SNAPSHOT_SCHEMA,
                "ancestor": SNAPSHOT_SCHEMA,
                "show_values": {
                    "type": "boolean",
                    "default": True,
                    "description": "Include unified diffs of conflicting values",
                },
            },
            "required": ["local", "remote"],
        },
    ),
    types.Tool(
        name="sync_resolve",
        description=(
            "Preview how a resolution strategy would resolve a conflict between "
            "local and remote snapshots. Nothing is written. Without a strategy "
            "the best applicable one is selected."
        ),
        annotations=_READ_ONLY,
        inputSchema={
            "type": "object",
            "properties": {
                "type_key": {
                    "type": "string",
                    "description": "Content type identifier (optional, for context)",
                },
                "local": SNAPSHOT_SCHEMA,
                "remote": SNAPSHOT_SCHEMA,
                "ancestor": SNAPSHOT_SCHEMA,
                "strategy": {
                    "type": "string",
                    "description": "Strategy name (see sync_strategies)",
                },
            },
            "required": ["local", "remote"],
        },
    ),
    types.Tool(
        name="sync_strategies",
        description="List registered conflict resolution strategies and the default.",
        annotations=_READ_ONLY,
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="sync_state",
        description="Get the persisted sync state of one content type.",
        annotations=_READ_ONLY,
        inputSchema={
            "type": "object",
            "properties": {
                "type_key": {
                    "type": "string",
                    "description": "Content type identifier",
                },
            },
            "required": ["type_key"],
        },
    ),
    types.Tool(
        name="sync_state_list",
        description=(
            "List tracked content types. Filter 'conflicted' returns types with "
            "an unresolved conflict, 'pending' types awaiting sync, 'interrupted' "
            "types stuck mid-sync (with their resumable progress)."
        ),
        annotations=_READ_ONLY,
        inputSchema={
            "type": "object",
            "properties": {
                "filter": {
                    "type": "string",
                    "enum": list(STATE_FILTERS),
                    "default": "all",
                },
                "since": {
                    "type": "string",
                    "description": "Only types updated after this ISO 8601 timestamp",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="sync_conflicts",
        description="List conflict log entries, newest first.",
        annotations=_READ_ONLY,
        inputSchema={
            "type": "object",
            "properties": {
                "type_key": {
                    "type": "string",
                    "description": "Only entries for this content type",
                },
                "status": {
                    "type": "string",
                    "enum": ["pending", "resolved"],
                },
                "resolved_by": {
                    "type": "string",
                    "description": "Only entries resolved by this actor ('system' for automatic resolutions)",
                },
                "limit": {
                    "type": "integer",
                    "default": DEFAULT_CONFLICT_PAGE_SIZE,
                    "minimum": 1,
                    "maximum": MAX_CONFLICT_PAGE_SIZE,
                },
                "offset": {"type": "integer", "default": 0, "minimum": 0},
            },
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _state_line(state: SyncState) -> str:
    return (
        f"- {state.type_key}: {state.sync_status.value}"
        f" (conflict: {state.conflict_status.value},"
        f" last sync: {format_timestamp(state.last_sync_at)})"
    )


def _entry_line(entry: ConflictLogEntry) -> str:
    line = (
        f"- {entry.id} [{entry.status}] {entry.type_key}: {entry.conflict_type}"
        f" ({format_timestamp(entry.created_at)})"
    )
    if entry.resolution:
        line += f" resolved by {entry.resolved_by} via {entry.resolution}"
    return line


def _int_arg(args: dict[str, Any], key: str, default: int, low: int, high: int | None = None) -> int:
    value = args.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f">= {low}"
        raise ValidationError(f"{key} must be {bound}, got {value}")
    return value


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_delta(ctx: SyncContext, args: dict) -> types.CallToolResult:
    type_key = require_string(args, "type_key")
    local_hash = require_string(args, "local_hash")
    remote_hash = require_string(args, "remote_hash")

    coordinator = ctx.coordinator(CollectingWriter())
    response = await run_sync_limited(
        coordinator.query_delta, type_key, local_hash, remote_hash
    )

    text = (
        f"{type_key}: {response.delta.action.value}\n"
        f"Reason: {response.delta.rationale}\n"
        f"Recommendation: {response.recommendation}"
    )
    return build_json_response(text, delta_to_json(response))


async def _handle_diff(ctx: SyncContext, args: dict) -> types.CallToolResult:
    local = snapshot_arg(args, "local")
    remote = snapshot_arg(args, "remote")
    ancestor = snapshot_arg(args, "ancestor", required=False)
    show_values = bool(args.get("show_values", True))

    diff = compare_versions(local, remote, ancestor)
    structured = format_diff_output(diff)
    structured["category"] = classify_conflict_category(diff).value
    structured["timestamp"] = diff.timestamp

    return build_json_response(format_diff_summary(diff, show_values), structured)


async def _handle_resolve(ctx: SyncContext, args: dict) -> types.CallToolResult:
    local = snapshot_arg(args, "local")
    remote = snapshot_arg(args, "remote")
    ancestor = snapshot_arg(args, "ancestor", required=False)
    strategy = args.get("strategy") or None

    coordinator = ctx.coordinator(CollectingWriter())
    response = coordinator.resolve_request(
        {
            "type_key": args.get("type_key"),
            "local": local,
            "remote": remote,
            "ancestor": ancestor,
        },
        strategy,
    )

    if response["success"]:
        resolution = response["resolution"]
        text = (
            f"Resolved with {resolution['strategy_used']}"
            f" (winner: {resolution['winner']}): {resolution['description']}"
        )
    elif "manual_resolution_data" in response:
        fields = [
            f["field"]
            for f in response["manual_resolution_data"].get("conflicting_fields", [])
        ]
        text = "Manual resolution required"
        if fields:
            text += f" for: {', '.join(fields)}"
    else:
        text = f"Resolution failed: {response['error']}"

    return build_json_response(text, response)


async def _handle_strategies(ctx: SyncContext, args: dict) -> types.CallToolResult:
    strategies = ctx.manager.get_available_strategies()
    default = ctx.manager.default_strategy

    lines = [f"Default strategy: {default}", ""]
    for s in strategies:
        auto = "auto" if s["can_auto_resolve"] else "manual"
        lines.append(f"- {s['name']} ({auto}): {s['description']}")

    return build_json_response(
        "\n".join(lines),
        {"default_strategy": default, "strategies": strategies},
    )


async def _handle_state(ctx: SyncContext, args: dict) -> types.CallToolResult:
    type_key = require_string(args, "type_key")
    state = await run_sync_limited(ctx.store.require_sync_state, type_key)

    lines = [
        f"Sync state for '{type_key}'",
        f"  Status:      {state.sync_status.value}",
        f"  Conflict:    {state.conflict_status.value}",
        f"  Local hash:  {state.local_hash or '-'}",
        f"  Remote hash: {state.remote_hash or '-'}",
        f"  Synced hash: {state.last_synced_hash or '-'}",
        f"  Last sync:   {format_timestamp(state.last_sync_at)}",
        f"  Updated:     {format_timestamp(state.updated_at)}",
    ]
    return build_json_response("\n".join(lines), state.model_dump(mode="json"))


def _list_states(
    ctx: SyncContext, filter_name: str, since: datetime | None
) -> tuple[list[SyncState], dict[str, Any]]:
    store = ctx.store
    match filter_name:
        case "conflicted":
            keys = set(store.get_conflicted_types())
        case "pending":
            keys = set(store.get_pending_sync_types())
        case "interrupted":
            keys = set(store.detect_interrupted_sync(ctx.config.stale_after))
        case _:
            keys = None
    if since is not None:
        recent = set(store.get_content_types_since(since))
        keys = recent if keys is None else keys & recent

    states = [
        s for s in store.get_all_sync_states() if keys is None or s.type_key in keys
    ]
    resumable = {}
    if filter_name == "interrupted":
        resumable = {s.type_key: store.resume_sync(s.type_key) for s in states}
    return states, resumable


async def _handle_state_list(ctx: SyncContext, args: dict) -> types.CallToolResult:
    filter_name = args.get("filter") or "all"
    if filter_name not in STATE_FILTERS:
        raise ValidationError(
            f"Invalid filter '{filter_name}'. Valid filters: {list(STATE_FILTERS)}"
        )

    since = None
    if args.get("since"):
        try:
            since = datetime.fromisoformat(args["since"])
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid since timestamp: {args['since']}") from e

    states, resumable = await run_sync_limited(_list_states, ctx, filter_name, since)

    if not states:
        text = f"No content types match filter '{filter_name}'."
    else:
        lines = [f"{len(states)} content type(s) ({filter_name}):"]
        lines.extend(_state_line(s) for s in states)
        text = "\n".join(lines)

    structured: dict[str, Any] = {
        "filter": filter_name,
        "states": [s.model_dump(mode="json") for s in states],
        "total": len(states),
    }
    if filter_name == "interrupted":
        structured["resumable"] = resumable
    return build_json_response(text, structured)


async def _handle_conflicts(ctx: SyncContext, args: dict) -> types.CallToolResult:
    type_key = args.get("type_key") or None
    status = args.get("status") or None
    resolved_by = args.get("resolved_by") or None
    limit = _int_arg(args, "limit", DEFAULT_CONFLICT_PAGE_SIZE, 1, MAX_CONFLICT_PAGE_SIZE)
    offset = _int_arg(args, "offset", 0, 0)

    def query() -> tuple[list[ConflictLogEntry], int]:
        entries = ctx.conflict_log.list_entries(
            type_key, status, limit, offset, resolved_by
        )
        return entries, ctx.conflict_log.count(type_key, status, resolved_by)

    entries, total = await run_sync_limited(query)

    if not entries:
        text = "No conflict log entries found."
    else:
        lines = [f"Showing {len(entries)} of {total} conflict(s):"]
        lines.extend(_entry_line(e) for e in entries)
        text = "\n".join(lines)

    structured = {
        "entries": [
            {**e.model_dump(mode="json"), "status": e.status} for e in entries
        ],
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(entries) < total,
    }
    return build_json_response(text, structured)


# ToolSpec list for registry-based dispatch
SYNC_READ_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_READ_TOOLS[0],
        scopes=frozenset({SYNC_VIEW}),
        handler=_handle_delta,
    ),
    ToolSpec(
        tool=SYNC_READ_TOOLS[1],
        scopes=frozenset(),
        handler=_handle_diff,
    ),
    ToolSpec(
        tool=SYNC_READ_TOOLS[2],
        scopes=frozenset(),
        handler=_handle_resolve,
    ),
    ToolSpec(
        tool=SYNC_READ_TOOLS[3],
        scopes=frozenset(),
        handler=_handle_strategies,
    ),
    ToolSpec(
        tool=SYNC_READ_TOOLS[4],
        scopes=frozenset({SYNC_VIEW}),
        handler=_handle_state,
    ),
    ToolSpec(
        tool=SYNC_READ_TOOLS[5],
        scopes=frozenset({SYNC_VIEW}),
        handler=_handle_state_list,
    ),
    ToolSpec(
        tool=SYNC_READ_TOOLS[6],
        scopes=frozenset({SYNC_VIEW}),
        handler=_handle_conflicts,
    ),
]
