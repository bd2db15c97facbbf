"""Error response builders and shared utilities for MCP tool handlers.

Structured error responses carry a corrective action so an agent can
recover without human intervention.  ``translate_sync_error`` maps the
``content_sync.errors`` taxonomy onto those responses.
"""

import json
from datetime import datetime
from typing import Any

import mcp.types as types
import pydantic

from ...errors import (
    ConflictRequiresManual,
    ContentSyncError,
    NotFoundError,
    PersistenceError,
    StrategyNotFoundError,
    ValidationError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error,
            manual_resolution_required, persistence_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Sync state 'blog' not found", "Use sync_state_list to see tracked types.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def build_json_response(text: str, payload: dict[str, Any]) -> types.CallToolResult:
    """Build a successful response with a text summary and structured JSON."""
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=json.loads(json.dumps(payload, default=str)),
    )


# ---------------------------------------------------------------------------
# Shared formatting utilities
# ---------------------------------------------------------------------------


def format_timestamp(timestamp: Any) -> str:
    """Format a timestamp for display (YYYY-MM-DD HH:MM, or ``never``)."""
    match timestamp:
        case None:
            return "never"
        case datetime() as dt:
            return dt.strftime("%Y-%m-%d %H:%M")
        case str() as text:
            try:
                return datetime.fromisoformat(text).strftime("%Y-%m-%d %H:%M")
            except ValueError:
                return text
        case _:
            return str(timestamp)


# ---------------------------------------------------------------------------
# Taxonomy translation
# ---------------------------------------------------------------------------

_CORRECTIVE_ACTIONS: dict[str, str] = {
    "Sync state": "Use sync_state_list to see tracked content types.",
    "Conflict": "Use sync_conflicts to list conflict log entries.",
}


def translate_sync_error(error: Exception) -> types.CallToolResult:
    """Translate a content_sync (or validation) exception to an error response."""
    match error:
        case StrategyNotFoundError():
            return build_error_response(
                "not_found",
                str(error),
                "Use sync_strategies to list available strategies.",
            )
        case NotFoundError():
            return build_error_response(
                "not_found",
                str(error),
                _CORRECTIVE_ACTIONS.get(error.kind, "Check the identifier and retry."),
            )
        case ConflictRequiresManual():
            return build_error_response(
                "manual_resolution_required",
                str(error),
                "Pick a value per conflicting field and call sync_conflict_resolve.",
            )
        case ValidationError() | pydantic.ValidationError():
            return build_error_response(
                "validation_error",
                str(error),
                "Check parameter values and retry.",
            )
        case PersistenceError():
            return build_error_response(
                "persistence_error",
                str(error),
                "Check that the sync state directory is readable and writable.",
            )
        case ContentSyncError() | ValueError():
            return build_error_response(
                "validation_error",
                str(error),
                "Check parameter values and retry.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Retry later or check the server log.",
            )


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def require_string(args: dict[str, Any], key: str) -> str:
    """Return a non-empty string argument or raise ``ValidationError``."""
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value.strip()


def snapshot_arg(args: dict[str, Any], key: str, required: bool = True) -> dict | None:
    """Return a snapshot object argument (``{data, hash?, timestamp?, metadata?}``)."""
    value = args.get(key)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object with a 'data' field")
    data = value.get("data", {})
    if not isinstance(data, dict):
        raise ValidationError(f"{key}.data must be an object")
    return value
