"""Shared constants for MCP tool handlers."""

# JSON schema for a content snapshot argument, shared by the diff, resolve
# and reconcile tools.
SNAPSHOT_SCHEMA = {
    "type": "object",
    "properties": {
        "data": {
            "type": "object",
            "description": "Field name to value mapping",
        },
        "hash": {
            "type": "string",
            "description": "Content fingerprint (computed from data when omitted)",
        },
        "timestamp": {"type": "string", "description": "ISO 8601 timestamp"},
        "metadata": {
            "type": "object",
            "description": "Free-form metadata, e.g. {\"deleted\": true}",
        },
    },
    "required": ["data"],
}

DEFAULT_CONFLICT_PAGE_SIZE = 20
MAX_CONFLICT_PAGE_SIZE = 100

STATE_FILTERS = ("all", "conflicted", "pending", "interrupted")
