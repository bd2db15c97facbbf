"""Pydantic models for the content reconciliation core.

Defines the data contracts shared across the sync modules:

- Enums: ``SyncAction``, ``SyncStatus``, ``ConflictStatus``, ``ChangeType``,
  ``ConflictType``, ``ConflictCategory``, ``ResolutionSuggestion``,
  ``ChangeSource``, ``ChangeAction``, ``MergeAction``, ``Winner``.
- Snapshots and diffs: ``Snapshot``, ``FieldChange``, ``ChangeSummary``,
  ``Changes``, ``FieldConflict``, ``MergeableChange``, ``FieldDiff``,
  ``DiffResult``.
- Persisted records: ``SyncState``, ``ConflictLogEntry``.
- Request/response contracts: ``Delta``, ``DeltaResponse``,
  ``ConflictCase``, ``Resolution``, ``ResolutionResult``,
  ``ReconcileOutcome``.

All models are frozen (immutable); updates go through ``model_copy``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from content_sync.errors import ConflictRequiresManual

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SyncAction(str, Enum):
    """Action decided by comparing current hashes with stored state."""

    INITIAL_SYNC = "INITIAL_SYNC"
    PUSH = "PUSH"
    PULL = "PULL"
    CONFLICT = "CONFLICT"
    NO_CHANGE = "NO_CHANGE"


class SyncStatus(str, Enum):
    """Lifecycle status of a content type's sync state."""

    NEW = "new"
    PENDING = "pending"
    SYNCING = "syncing"
    MODIFIED = "modified"
    IN_SYNC = "in_sync"
    FAILED = "failed"


class ConflictStatus(str, Enum):
    NONE = "none"
    DETECTED = "detected"
    RESOLVED = "resolved"


class ChangeType(str, Enum):
    """How a modified field changed."""

    TYPE_CHANGE = "type_change"
    ARRAY_RESIZE = "array_resize"
    ARRAY_CONTENT = "array_content"
    OBJECT_STRUCTURE = "object_structure"
    OBJECT_CONTENT = "object_content"
    VALUE_CHANGE = "value_change"


class ConflictType(str, Enum):
    """Field-level conflict classification."""

    BOTH_MODIFIED = "both_modified"
    ADD_DELETE = "add_delete_conflict"
    DELETE_ADD = "delete_add_conflict"


class ConflictCategory(str, Enum):
    """Record-level classification used by resolution strategies."""

    FIELD = "field"
    STRUCTURAL = "structural"
    DELETE = "delete"
    ADD_DELETE = "add_delete_conflict"
    DELETE_ADD = "delete_add_conflict"


class ResolutionSuggestion(str, Enum):
    AUTO_RESOLVE_SAME = "auto_resolve_same"
    PREFER_LOCAL = "prefer_local"
    PREFER_REMOTE = "prefer_remote"
    AUTO_MERGE_ARRAYS = "auto_merge_arrays"
    MANUAL_REQUIRED = "manual_required"


class ChangeSource(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class ChangeAction(str, Enum):
    ADD = "add"
    MODIFY = "modify"


class MergeAction(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class Winner(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MERGED = "merged"


# ---------------------------------------------------------------------------
# Snapshots and diffs
# ---------------------------------------------------------------------------


class Snapshot(BaseModel):
    """A normalized content snapshot.

    Attributes:
        data: Field name to value mapping.
        hash: Opaque content fingerprint, if known.
        timestamp: ISO 8601 timestamp of the snapshot, if known.
        metadata: Free-form metadata carried alongside the data.
    """

    data: dict[str, Any] = Field(default_factory=dict)
    hash: str | None = None
    timestamp: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @classmethod
    def normalize(cls, version: Snapshot | Mapping[str, Any] | None) -> Snapshot:
        """Coerce *version* into a ``Snapshot``.

        ``None`` becomes an empty snapshot; a mapping is read for its
        ``data``/``hash``/``timestamp``/``metadata`` keys.
        """
        if version is None:
            return cls()
        if isinstance(version, Snapshot):
            return version
        timestamp = version.get("timestamp")
        if isinstance(timestamp, datetime):
            timestamp = timestamp.isoformat()
        return cls(
            data=dict(version.get("data") or {}),
            hash=version.get("hash"),
            timestamp=timestamp,
            metadata=dict(version.get("metadata") or {}),
        )


class FieldChange(BaseModel):
    """Classification payload for one field in a ``Changes`` map.

    ``value`` is set for added/deleted/unchanged fields; ``old_value`` and
    ``new_value`` (plus ``change_type``) for modified ones.
    """

    value: Any = None
    old_value: Any = None
    new_value: Any = None
    type: str
    change_type: ChangeType | None = None

    model_config = {"frozen": True}


class ChangeSummary(BaseModel):
    added_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    unchanged_count: int = 0

    model_config = {"frozen": True}

    @property
    def total(self) -> int:
        return (
            self.added_count
            + self.modified_count
            + self.deleted_count
            + self.unchanged_count
        )


class Changes(BaseModel):
    """Four disjoint field maps describing one side's edits to the ancestor."""

    added: dict[str, FieldChange] = Field(default_factory=dict)
    modified: dict[str, FieldChange] = Field(default_factory=dict)
    deleted: dict[str, FieldChange] = Field(default_factory=dict)
    unchanged: dict[str, FieldChange] = Field(default_factory=dict)
    summary: ChangeSummary = Field(default_factory=ChangeSummary)

    model_config = {"frozen": True}

    def field_names(self) -> set[str]:
        """All field names across the four maps."""
        return (
            set(self.added)
            | set(self.modified)
            | set(self.deleted)
            | set(self.unchanged)
        )

    def changed_fields(self) -> dict[str, list[str]]:
        """Field names per change kind (unchanged omitted)."""
        return {
            "added": sorted(self.added),
            "modified": sorted(self.modified),
            "deleted": sorted(self.deleted),
        }


class FieldConflict(BaseModel):
    """A conflict on a single field.

    Attributes:
        field: Field name.
        type: Conflict classification.
        local_change: The local ``FieldChange`` (``both_modified`` only).
        remote_change: The remote ``FieldChange`` (``both_modified`` only).
        ancestor_value: Field value in the ancestor snapshot.
        local_action: ``"added"``/``"deleted"`` for add/delete conflicts.
        remote_action: Mirror of ``local_action``.
        resolution: Suggested resolution.
    """

    field: str
    type: ConflictType
    local_change: FieldChange | None = None
    remote_change: FieldChange | None = None
    ancestor_value: Any = None
    local_action: str | None = None
    remote_action: str | None = None
    resolution: ResolutionSuggestion = ResolutionSuggestion.MANUAL_REQUIRED

    model_config = {"frozen": True}


class MergeableChange(BaseModel):
    """A one-sided change that can be applied without human input."""

    field: str
    source: ChangeSource
    action: ChangeAction
    value: Any = None

    model_config = {"frozen": True}


class FieldDiff(BaseModel):
    """Per-field three-way view for display."""

    field: str
    ancestor_value: Any = None
    local_value: Any = None
    remote_value: Any = None
    local_changed: bool
    remote_changed: bool
    conflict: bool = False
    conflict_type: str | None = None

    model_config = {"frozen": True}


class DiffResult(BaseModel):
    """Full three-way comparison of local and remote against an ancestor."""

    local: Snapshot
    remote: Snapshot
    ancestor: Snapshot
    local_changes: Changes
    remote_changes: Changes
    conflicts: list[FieldConflict] = []
    mergeable_changes: list[MergeableChange] = []
    divergence: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: str

    model_config = {"frozen": True}

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def conflicting_fields(self) -> list[str]:
        return [c.field for c in self.conflicts]


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class SyncState(BaseModel):
    """Persisted sync bookkeeping for one content type.

    Attributes:
        type_key: Unique content-type identifier.
        local_hash: Local fingerprint at the last recorded sync step.
        remote_hash: Remote fingerprint at the last recorded sync step.
        last_synced_hash: Fingerprint both sides agreed on last.
        last_sync_at: When the last successful reconciliation finished.
        sync_status: Lifecycle status.
        conflict_status: Conflict status.
        sync_progress: Opaque orchestrator payload, stored verbatim.
        last_conflict_at: When a conflict was last detected.
        created_at: When the record was created.
        updated_at: When the record was last written.
    """

    type_key: str
    local_hash: str | None = None
    remote_hash: str | None = None
    last_synced_hash: str | None = None
    last_sync_at: datetime | None = None
    sync_status: SyncStatus = SyncStatus.NEW
    conflict_status: ConflictStatus = ConflictStatus.NONE
    sync_progress: Any = None
    last_conflict_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"frozen": True}


class ConflictLogEntry(BaseModel):
    """Append-only audit record of a detected conflict.

    ``resolution``, ``resolved_by`` and ``resolved_at`` stay ``None`` until
    a resolution is recorded.
    """

    id: str
    type_key: str
    local_hash: str | None = None
    remote_hash: str | None = None
    ancestor_hash: str | None = None
    conflict_type: str
    conflict_details: dict[str, Any] = Field(default_factory=dict)
    resolution: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime

    model_config = {"frozen": True}

    @property
    def status(self) -> str:
        """``"resolved"`` once a resolution is recorded, else ``"pending"``."""
        return "resolved" if self.resolution is not None else "pending"


# ---------------------------------------------------------------------------
# Request / response contracts
# ---------------------------------------------------------------------------


class Delta(BaseModel):
    action: SyncAction
    rationale: str

    model_config = {"frozen": True}


class DeltaResponse(BaseModel):
    """Response to a delta query for one content type."""

    type_key: str
    delta: Delta
    current_state: SyncState | None = None
    recommendation: str

    model_config = {"frozen": True}


class ConflictCase(BaseModel):
    """Record-level conflict handed to resolution strategies.

    Built from a ``DiffResult``; strategies read the per-side ``Changes``
    to decide what can be merged.
    """

    type_key: str | None = None
    category: ConflictCategory = ConflictCategory.FIELD
    local: Snapshot = Field(default_factory=Snapshot)
    remote: Snapshot = Field(default_factory=Snapshot)
    ancestor: Snapshot = Field(default_factory=Snapshot)
    local_changes: Changes = Field(default_factory=Changes)
    remote_changes: Changes = Field(default_factory=Changes)
    conflicts: list[FieldConflict] = []

    model_config = {"frozen": True}

    @classmethod
    def from_diff(
        cls,
        diff: DiffResult,
        category: ConflictCategory = ConflictCategory.FIELD,
        type_key: str | None = None,
    ) -> ConflictCase:
        return cls(
            type_key=type_key,
            category=category,
            local=diff.local,
            remote=diff.remote,
            ancestor=diff.ancestor,
            local_changes=diff.local_changes,
            remote_changes=diff.remote_changes,
            conflicts=diff.conflicts,
        )

    @property
    def is_empty(self) -> bool:
        """True when neither side changed anything."""
        for changes in (self.local_changes, self.remote_changes):
            if changes.added or changes.modified or changes.deleted:
                return False
        return True

    def conflicting_field_values(self) -> list[dict[str, Any]]:
        """Per-field values of every conflict, for audit and manual review."""
        fields = []
        for conflict in self.conflicts:
            fields.append(
                {
                    "field": conflict.field,
                    "type": conflict.type.value,
                    "local_value": self.local.data.get(conflict.field),
                    "remote_value": self.remote.data.get(conflict.field),
                    "ancestor_value": self.ancestor.data.get(conflict.field),
                    "suggestion": conflict.resolution.value,
                }
            )
        return fields


class Resolution(BaseModel):
    """Outcome of a successful strategy run.

    Attributes:
        winner: Which side's data the merged result is based on.
        merged: The merged field data.
        changes: Changes applied (or kept) to produce ``merged``.
        strategy: Name of the strategy that produced this.
        timestamp: ISO 8601 creation time.
        description: Human-readable summary.
        conflicts: Conflicting fields the strategy overrode or left out.
        discarded: Data dropped from the losing side, kept for audit.
        strategy_used: Set by the manager.
        auto_resolved: Set by the manager.
    """

    winner: Winner
    merged: dict[str, Any]
    changes: list[Any] = []
    strategy: str
    timestamp: str
    description: str
    conflicts: list[Any] | None = None
    discarded: dict[str, Any] | None = None
    strategy_used: str | None = None
    auto_resolved: bool | None = None

    model_config = {"frozen": True}


class ResolutionResult(BaseModel):
    """Tagged result of a resolution attempt.

    Exactly one of three shapes:

    - ``success=True`` with ``resolution``;
    - ``success=False, requires_manual=True`` with ``manual_resolution_data``;
    - ``success=False`` with ``error`` (``requires_manual`` is then ``True``
      when the failure should be escalated to a human).
    """

    success: bool
    resolution: Resolution | None = None
    error: str | None = None
    requires_manual: bool = False
    manual_resolution_data: dict[str, Any] | None = None

    model_config = {"frozen": True}

    def unwrap(self) -> Resolution:
        """Return the resolution or raise ``ConflictRequiresManual``."""
        if self.success and self.resolution is not None:
            return self.resolution
        raise ConflictRequiresManual(
            self.manual_resolution_data or {"error": self.error},
            message=self.error or "Manual conflict resolution required",
        )

    def to_response(self) -> dict[str, Any]:
        """Serialize to the resolution response wire shape."""
        return self.model_dump(mode="json", exclude_none=True)


class ReconcileOutcome(BaseModel):
    """What a single reconcile call did for one content type."""

    type_key: str
    action: SyncAction
    sync_status: SyncStatus
    conflict_status: ConflictStatus = ConflictStatus.NONE
    rationale: str = ""
    skipped: bool = False
    resolution: Resolution | None = None
    manual_resolution_data: dict[str, Any] | None = None
    conflict_entry_id: str | None = None
    divergence: float | None = None
    message: str | None = None

    model_config = {"frozen": True}

    @property
    def requires_manual(self) -> bool:
        return self.manual_resolution_data is not None
