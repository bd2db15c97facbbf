"""Content reconciliation core.

Decides what to do when a local authoring store and a remote target system
have both been edited since their last successful sync.

Architecture
------------
Each side is compared against its own archived content hash (the delta
calculator); when both changed, a field-level three-way diff against the
last agreed snapshot classifies every field, and a resolution strategy
turns the diff into merged data or a request for a human decision.

Modules:

- ``values``       -- value kinds and structural equality of field values.
- ``models``       -- pydantic data contracts.
- ``delta``        -- ``calculate_delta``: hash comparison -> sync action.
- ``diff``         -- ``compare_versions``: three-way field diff.
- ``merger``       -- three-way merge previews via ``merge3``.
- ``resolver``     -- resolution strategies and ``ResolutionStrategyManager``.
- ``state``        -- ``SyncStateStore``: persisted per-type sync state.
- ``conflict_log`` -- ``ConflictLog``: append-only conflict audit trail.
- ``engine``       -- ``SyncCoordinator``: one reconciliation per type.
- ``reporter``     -- text and JSON formatting.

Usage example
-------------
::

    from content_sync.sync import (
        ConflictLog,
        SyncCoordinator,
        SyncStateStore,
        create_manager,
    )

    coordinator = SyncCoordinator(
        store=SyncStateStore(".content_sync"),
        conflict_log=ConflictLog(".content_sync"),
        manager=create_manager("manual_merge"),
        writer=my_writer,            # implements ContentWriter
    )
    outcome = coordinator.reconcile(
        "blog_post",
        local={"data": {"title": "A2"}},
        remote={"data": {"title": "A"}},
        ancestor={"data": {"title": "A"}},
    )
"""

from .conflict_log import ConflictLog
from .delta import calculate_delta, recommendation_for
from .diff import calculate_changes, compare_versions, generate_field_level_diff
from .engine import ContentWriter, SyncCoordinator
from .models import (
    ConflictCase,
    DiffResult,
    ReconcileOutcome,
    Resolution,
    ResolutionResult,
    Snapshot,
    SyncAction,
    SyncState,
    SyncStatus,
)
from .reporter import (
    delta_to_json,
    format_diff_output,
    format_diff_summary,
    format_outcome,
)
from .resolver import ResolutionStrategyManager, create_manager
from .state import SyncStateStore, content_hash

__all__ = [
    "ConflictCase",
    "ConflictLog",
    "ContentWriter",
    "DiffResult",
    "ReconcileOutcome",
    "Resolution",
    "ResolutionResult",
    "ResolutionStrategyManager",
    "Snapshot",
    "SyncAction",
    "SyncCoordinator",
    "SyncState",
    "SyncStateStore",
    "SyncStatus",
    "calculate_changes",
    "calculate_delta",
    "compare_versions",
    "content_hash",
    "create_manager",
    "delta_to_json",
    "format_diff_output",
    "format_diff_summary",
    "format_outcome",
    "generate_field_level_diff",
    "recommendation_for",
]
