"""Runtime plumbing shared between the sync core and the MCP server."""

from .async_utils import run_sync, run_sync_limited
from .context import CollectingWriter, SyncContext

__all__ = ["CollectingWriter", "SyncContext", "run_sync", "run_sync_limited"]
