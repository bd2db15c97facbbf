"""Three-way field diff of local and remote snapshots against an ancestor.

``compare_versions`` is the entry point: it classifies every field of both
sides relative to the ancestor, pairs up conflicting edits, lists the
one-sided edits that can be applied unattended and scores how far the two
sides have diverged.

Key design choices:

* Field values are compared structurally (``values.values_equal``), so key
  order inside object values never registers as a change.
* Every function here is pure and never raises for well-formed snapshots;
  a missing snapshot is treated as ``{"data": {}}``.
* ``calculate_changes`` partitions the union of both snapshots' fields into
  exactly one of ``added``/``modified``/``deleted``/``unchanged``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from .models import (
    ChangeAction,
    ChangeSource,
    Changes,
    ChangeSummary,
    ChangeType,
    ConflictCategory,
    ConflictType,
    DiffResult,
    FieldChange,
    FieldConflict,
    FieldDiff,
    MergeableChange,
    ResolutionSuggestion,
    Snapshot,
)
from .values import (
    MISSING,
    array_differences,
    arrays_conflict,
    classify_change,
    kind_of,
    values_equal,
)

SnapshotLike = Snapshot | Mapping[str, Any] | None

# Conflicts weigh more than benign concurrent edits.
CONFLICT_WEIGHT = 0.7
CHANGE_WEIGHT = 0.3


# ---------------------------------------------------------------------------
# Per-side change classification
# ---------------------------------------------------------------------------


def _field_type(value: Any) -> str:
    return kind_of(value).value


def calculate_changes(old: SnapshotLike, new: SnapshotLike) -> Changes:
    """Classify every field of *old* and *new* relative to *old*.

    Args:
        old: The base snapshot (normally the ancestor).
        new: The edited snapshot.

    Returns:
        ``Changes`` whose four maps partition the union of both field sets.
    """
    old_data = Snapshot.normalize(old).data
    new_data = Snapshot.normalize(new).data

    added: dict[str, FieldChange] = {}
    modified: dict[str, FieldChange] = {}
    deleted: dict[str, FieldChange] = {}
    unchanged: dict[str, FieldChange] = {}

    for key, value in new_data.items():
        if key not in old_data:
            added[key] = FieldChange(value=value, type=_field_type(value))
        elif not values_equal(old_data[key], value):
            modified[key] = FieldChange(
                old_value=old_data[key],
                new_value=value,
                type=_field_type(value),
                change_type=classify_change(old_data[key], value),
            )
        else:
            unchanged[key] = FieldChange(value=value, type=_field_type(value))

    for key, value in old_data.items():
        if key not in new_data:
            deleted[key] = FieldChange(value=value, type=_field_type(value))

    return Changes(
        added=added,
        modified=modified,
        deleted=deleted,
        unchanged=unchanged,
        summary=ChangeSummary(
            added_count=len(added),
            modified_count=len(modified),
            deleted_count=len(deleted),
            unchanged_count=len(unchanged),
        ),
    )


# ---------------------------------------------------------------------------
# Conflict analysis
# ---------------------------------------------------------------------------


def suggest_resolution(
    local_change: FieldChange,
    remote_change: FieldChange,
    ancestor_value: Any,
) -> ResolutionSuggestion:
    """Suggest how a field modified on both sides could be resolved."""
    local_value = local_change.new_value
    remote_value = remote_change.new_value

    if values_equal(local_value, remote_value):
        return ResolutionSuggestion.AUTO_RESOLVE_SAME

    # A side whose new value equals the ancestor has reverted.
    if values_equal(local_value, ancestor_value):
        return ResolutionSuggestion.PREFER_REMOTE
    if values_equal(remote_value, ancestor_value):
        return ResolutionSuggestion.PREFER_LOCAL

    if (
        local_change.change_type is ChangeType.ARRAY_CONTENT
        and remote_change.change_type is ChangeType.ARRAY_CONTENT
    ):
        local_diff = array_differences(ancestor_value, local_value)
        remote_diff = array_differences(ancestor_value, remote_value)
        if not arrays_conflict(local_diff, remote_diff):
            return ResolutionSuggestion.AUTO_MERGE_ARRAYS

    return ResolutionSuggestion.MANUAL_REQUIRED


def analyze_conflicts(
    local_changes: Changes,
    remote_changes: Changes,
    ancestor_data: Mapping[str, Any],
) -> list[FieldConflict]:
    """Pair up edits that collide between the two sides.

    Emits ``both_modified`` for fields modified on both sides, and
    ``add_delete_conflict`` / ``delete_add_conflict`` for fields added on
    one side and deleted on the other.  Add/delete conflicts are never
    auto-resolvable.
    """
    conflicts: list[FieldConflict] = []

    for field, local_change in local_changes.modified.items():
        remote_change = remote_changes.modified.get(field)
        if remote_change is None:
            continue
        ancestor_value = ancestor_data.get(field)
        conflicts.append(
            FieldConflict(
                field=field,
                type=ConflictType.BOTH_MODIFIED,
                local_change=local_change,
                remote_change=remote_change,
                ancestor_value=ancestor_value,
                resolution=suggest_resolution(
                    local_change, remote_change, ancestor_value
                ),
            )
        )

    for field in local_changes.added:
        if field in remote_changes.deleted:
            conflicts.append(
                FieldConflict(
                    field=field,
                    type=ConflictType.ADD_DELETE,
                    ancestor_value=ancestor_data.get(field),
                    local_action="added",
                    remote_action="deleted",
                )
            )

    for field in local_changes.deleted:
        if field in remote_changes.added:
            conflicts.append(
                FieldConflict(
                    field=field,
                    type=ConflictType.DELETE_ADD,
                    ancestor_value=ancestor_data.get(field),
                    local_action="deleted",
                    remote_action="added",
                )
            )

    return conflicts


def identify_mergeable_changes(
    local_changes: Changes, remote_changes: Changes
) -> list[MergeableChange]:
    """List one-sided edits that do not collide with the other side."""
    mergeable: list[MergeableChange] = []

    for field, change in local_changes.added.items():
        if field not in remote_changes.deleted and field not in remote_changes.added:
            mergeable.append(
                MergeableChange(
                    field=field,
                    source=ChangeSource.LOCAL,
                    action=ChangeAction.ADD,
                    value=change.value,
                )
            )

    for field, change in remote_changes.added.items():
        if field not in local_changes.deleted and field not in local_changes.added:
            mergeable.append(
                MergeableChange(
                    field=field,
                    source=ChangeSource.REMOTE,
                    action=ChangeAction.ADD,
                    value=change.value,
                )
            )

    for field, change in local_changes.modified.items():
        if field not in remote_changes.modified:
            mergeable.append(
                MergeableChange(
                    field=field,
                    source=ChangeSource.LOCAL,
                    action=ChangeAction.MODIFY,
                    value=change.new_value,
                )
            )

    for field, change in remote_changes.modified.items():
        if field not in local_changes.modified:
            mergeable.append(
                MergeableChange(
                    field=field,
                    source=ChangeSource.REMOTE,
                    action=ChangeAction.MODIFY,
                    value=change.new_value,
                )
            )

    return mergeable


def calculate_divergence(
    local: Snapshot,
    remote: Snapshot,
    ancestor: Snapshot,
    conflict_count: int,
    local_changes: Changes,
    remote_changes: Changes,
) -> float:
    """Score in ``[0, 1]`` of how far local and remote have drifted apart."""
    total_fields = len(set(local.data) | set(remote.data) | set(ancestor.data))
    if total_fields == 0:
        return 0.0

    conflict_score = conflict_count / total_fields
    change_score = (
        local_changes.summary.modified_count
        + remote_changes.summary.modified_count
    ) / (2 * total_fields)

    return min(1.0, CONFLICT_WEIGHT * conflict_score + CHANGE_WEIGHT * change_score)


def compare_versions(
    local: SnapshotLike,
    remote: SnapshotLike,
    ancestor: SnapshotLike,
) -> DiffResult:
    """Compare local and remote snapshots against their common ancestor.

    Args:
        local: Current local snapshot (``Snapshot``, mapping, or ``None``).
        remote: Current remote snapshot.
        ancestor: Last snapshot both sides agreed on.

    Returns:
        A ``DiffResult`` with per-side changes, conflicts, mergeable changes
        and a divergence score.
    """
    local_snapshot = Snapshot.normalize(local)
    remote_snapshot = Snapshot.normalize(remote)
    ancestor_snapshot = Snapshot.normalize(ancestor)

    local_changes = calculate_changes(ancestor_snapshot, local_snapshot)
    remote_changes = calculate_changes(ancestor_snapshot, remote_snapshot)

    conflicts = analyze_conflicts(
        local_changes, remote_changes, ancestor_snapshot.data
    )
    mergeable = identify_mergeable_changes(local_changes, remote_changes)
    divergence = calculate_divergence(
        local_snapshot,
        remote_snapshot,
        ancestor_snapshot,
        len(conflicts),
        local_changes,
        remote_changes,
    )

    return DiffResult(
        local=local_snapshot,
        remote=remote_snapshot,
        ancestor=ancestor_snapshot,
        local_changes=local_changes,
        remote_changes=remote_changes,
        conflicts=conflicts,
        mergeable_changes=mergeable,
        divergence=divergence,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def generate_field_level_diff(
    local: SnapshotLike,
    remote: SnapshotLike,
    ancestor: SnapshotLike,
) -> list[FieldDiff]:
    """Build a per-field three-way view of all fields on any side.

    A field changed on both sides is flagged ``conflict``; its
    ``conflict_type`` is ``both_same`` when both landed on the same value
    and ``different_values`` otherwise.  Absent values are reported as
    ``None``.
    """
    local_data = Snapshot.normalize(local).data
    remote_data = Snapshot.normalize(remote).data
    ancestor_data = Snapshot.normalize(ancestor).data

    fields = dict.fromkeys([*local_data, *remote_data, *ancestor_data])
    diffs: list[FieldDiff] = []

    for field in fields:
        local_value = local_data.get(field, MISSING)
        remote_value = remote_data.get(field, MISSING)
        ancestor_value = ancestor_data.get(field, MISSING)

        local_changed = not values_equal(ancestor_value, local_value)
        remote_changed = not values_equal(ancestor_value, remote_value)

        conflict_type = None
        if local_changed and remote_changed:
            if values_equal(local_value, remote_value):
                conflict_type = "both_same"
            else:
                conflict_type = "different_values"

        diffs.append(
            FieldDiff(
                field=field,
                ancestor_value=ancestor_data.get(field),
                local_value=local_data.get(field),
                remote_value=remote_data.get(field),
                local_changed=local_changed,
                remote_changed=remote_changed,
                conflict=conflict_type is not None,
                conflict_type=conflict_type,
            )
        )

    return diffs


def conflict_description(conflict: FieldConflict) -> str:
    """Human-readable one-liner for a field conflict."""
    match conflict.type:
        case ConflictType.BOTH_MODIFIED:
            return f'Field "{conflict.field}" was modified differently in both versions'
        case ConflictType.ADD_DELETE:
            return f'Field "{conflict.field}" was added locally but deleted remotely'
        case ConflictType.DELETE_ADD:
            return f'Field "{conflict.field}" was deleted locally but added remotely'
        case _:
            return f'Field "{conflict.field}" has a conflict'


# ---------------------------------------------------------------------------
# Record-level classification
# ---------------------------------------------------------------------------


def _structure(data: Mapping[str, Any]) -> dict[str, str]:
    return {key: _field_type(value) for key, value in data.items()}


def classify_conflict_category(diff: DiffResult) -> ConflictCategory:
    """Derive the record-level conflict category from a diff.

    Add/delete field conflicts take precedence; a record flagged deleted
    on either side (``metadata["deleted"]``) is a ``delete`` conflict; when
    both sides changed the field-kind structure relative to the ancestor
    the conflict is ``structural``; anything else is a plain ``field``
    conflict.
    """
    types = {conflict.type for conflict in diff.conflicts}
    if ConflictType.ADD_DELETE in types:
        return ConflictCategory.ADD_DELETE
    if ConflictType.DELETE_ADD in types:
        return ConflictCategory.DELETE_ADD

    if diff.local.metadata.get("deleted") or diff.remote.metadata.get("deleted"):
        return ConflictCategory.DELETE

    ancestor_structure = _structure(diff.ancestor.data)
    if (
        _structure(diff.local.data) != ancestor_structure
        and _structure(diff.remote.data) != ancestor_structure
    ):
        return ConflictCategory.STRUCTURAL

    return ConflictCategory.FIELD
