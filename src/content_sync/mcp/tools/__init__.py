"""MCP tool handlers for content sync operations.

This package contains MCP tool implementations that wrap the sync core
(state store, conflict log, resolution manager, coordinator) with async
handlers and structured error responses.
"""

from .errors import build_error_response, translate_sync_error
from .registry import (
    KNOWN_SCOPES,
    SYNC_RESOLVE,
    SYNC_VIEW,
    ToolRegistry,
    ToolSpec,
    load_scopes_file,
)
from .sync_read import SYNC_READ_SPECS, SYNC_READ_TOOLS
from .sync_write import SYNC_WRITE_SPECS, SYNC_WRITE_TOOLS
from .system import SYSTEM_SPECS, SYSTEM_TOOLS

SYNC_SPECS = SYNC_READ_SPECS + SYNC_WRITE_SPECS

ALL_SPECS: list[ToolSpec] = SYSTEM_SPECS + SYNC_SPECS

__all__ = [
    "build_error_response",
    "translate_sync_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_scopes_file",
    "KNOWN_SCOPES",
    "SYNC_VIEW",
    "SYNC_RESOLVE",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "SYNC_READ_SPECS",
    "SYNC_WRITE_SPECS",
    "SYSTEM_SPECS",
    # Tool lists
    "SYNC_READ_TOOLS",
    "SYNC_WRITE_TOOLS",
    "SYSTEM_TOOLS",
]
