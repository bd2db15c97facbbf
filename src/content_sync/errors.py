"""Exception taxonomy for content_sync.

Every error raised by the reconciliation core derives from
``ContentSyncError`` so callers can catch the whole family at one seam:

- ``ValidationError``: a request is missing a required hash or type key,
  or asks for an illegal sync-state transition.
- ``NotFoundError``: no ``SyncState`` / conflict-log entry for the key.
- ``ConflictRequiresManual``: not a failure -- resolution needs a human.
  Carries the ``manual_resolution_data`` to present.
- ``StrategyNotFoundError``: an unknown resolution strategy was requested.
- ``PersistenceError``: the storage layer failed.  Never retried here.

Note that ``ValidationError`` shadows ``pydantic.ValidationError`` by name;
modules that need both import pydantic's under its module path.
"""

from __future__ import annotations

from typing import Any


class ContentSyncError(Exception):
    """Base class for all content_sync errors."""


class ValidationError(ContentSyncError, ValueError):
    """A request or state change is malformed."""


class NotFoundError(ContentSyncError, LookupError):
    """No record exists for the requested key."""

    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")


class StrategyNotFoundError(ContentSyncError, KeyError):
    """An unknown resolution strategy name was requested."""

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        self.name = name
        self.available = sorted(available or [])
        super().__init__(name)

    def __str__(self) -> str:
        msg = f"Strategy {self.name} not found"
        if self.available:
            msg += f". Available strategies: {self.available}"
        return msg


class ConflictRequiresManual(ContentSyncError):
    """Resolution needs a human decision.

    Attributes:
        manual_resolution_data: Per-field options for the human to pick from.
    """

    def __init__(
        self,
        manual_resolution_data: dict[str, Any],
        message: str = "Manual conflict resolution required",
    ) -> None:
        self.manual_resolution_data = manual_resolution_data
        super().__init__(message)


class PersistenceError(ContentSyncError):
    """The storage collaborator failed to read or write."""
