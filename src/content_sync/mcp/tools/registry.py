"""ToolSpec and ToolRegistry for scope-based tool filtering.

Operators can restrict which sync tools are exposed to AI agents by listing
the scopes an agent holds in a scopes file.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, required scopes,
  and an async handler with standardized signature (context, args) -> CallToolResult.
- ToolRegistry: Filters specs by allowed scopes at construction time,
  then provides list_tools() and call_tool() dispatch with error translation.
- load_scopes_file: Reads a simple text file of scope names.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import mcp.types as types

from ...core.context import SyncContext

logger = logging.getLogger(__name__)

SYNC_VIEW = "SYNC_VIEW"
SYNC_RESOLVE = "SYNC_RESOLVE"
KNOWN_SCOPES = frozenset({SYNC_VIEW, SYNC_RESOLVE})


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        scopes: Scopes required to use this tool.  Empty frozenset means
            the tool is always available.
        handler: Async handler with signature (context, args) -> CallToolResult.
    """

    tool: types.Tool
    scopes: frozenset[str]
    handler: Callable[[SyncContext, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Registry of ToolSpecs with optional scope-based filtering.

    If allowed_scopes is None, all specs are included.  Otherwise a spec is
    included only if its scopes are empty or a subset of allowed_scopes.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_scopes: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if (
                allowed_scopes is None
                or not spec.scopes
                or spec.scopes <= allowed_scopes
            ):
                self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return list of types.Tool for all registered (permitted) specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        context: SyncContext,
    ) -> types.CallToolResult:
        """Dispatch a tool call to its registered handler.

        Exceptions raised by handlers are translated into structured
        ``CallToolResult`` errors with corrective actions.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import translate_sync_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        try:
            return await spec.handler(context, arguments or {})
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e, exc_info=True)
            return translate_sync_error(e)


def load_scopes_file(path: str | Path) -> frozenset[str]:
    """Load scopes from a text file.

    Format: one scope per line, ``#`` for comments, blank lines ignored.

    Example file::

        # Read-only agent
        SYNC_VIEW

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file names an unknown scope or is empty.
    """
    path = Path(path)
    scopes: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped not in KNOWN_SCOPES:
            raise ValueError(
                f"Invalid scope '{stripped}' at line {line_num} in {path}. "
                f"Expected one of {sorted(KNOWN_SCOPES)}."
            )
        scopes.add(stripped)
    if not scopes:
        raise ValueError(
            f"No scopes found in {path}. File must contain at least one scope."
        )
    return frozenset(scopes)
