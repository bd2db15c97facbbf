"""Sync coordinator that runs one reconciliation per content type.

The ``SyncCoordinator`` ties together the delta calculator, diff engine,
resolution manager, state store and conflict log.  For one content type
it:

1. Takes the per-key lock so no other reconciliation of the same key runs.
2. Skips the key if it carries an unresolved conflict.
3. Computes the delta from the current hashes and the stored state.
4. Pushes, pulls, or diffs and resolves.
5. Writes the conflict-log entry (when there is one) before touching the
   sync state, then persists the final state.

Any exception rolls the key back to ``failed`` and propagates unchanged;
the coordinator does not retry.  Transport is delegated to a
``ContentWriter``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from content_sync.errors import ValidationError

from .conflict_log import ConflictLog
from .delta import calculate_delta, recommendation_for
from .diff import classify_conflict_category, compare_versions
from .models import (
    ConflictCase,
    ConflictLogEntry,
    ConflictStatus,
    DeltaResponse,
    DiffResult,
    ReconcileOutcome,
    Snapshot,
    SyncAction,
    SyncStatus,
)
from .resolver import ResolutionStrategyManager
from .state import SyncStateStore, content_hash
from .values import values_equal

logger = logging.getLogger(__name__)

SnapshotLike = Snapshot | Mapping[str, Any] | None
Hasher = Callable[[dict[str, Any]], str]


class ContentWriter(Protocol):
    """Transport collaborator that applies reconciled data to each side."""

    def write_local(self, type_key: str, data: dict[str, Any]) -> None:
        """Replace the local copy of *type_key* with *data*."""
        ...  # pragma: no cover

    def write_remote(self, type_key: str, data: dict[str, Any]) -> None:
        """Replace the remote copy of *type_key* with *data*."""
        ...  # pragma: no cover


class SyncCoordinator:
    """Reconcile content types between a local store and a remote system.

    Args:
        store: Persisted per-type sync state.
        conflict_log: Conflict audit trail.
        manager: Resolution strategy manager.
        writer: Transport used to apply pushes, pulls and merges.
        hasher: Fingerprint function for snapshot data without a hash.
    """

    def __init__(
        self,
        store: SyncStateStore,
        conflict_log: ConflictLog,
        manager: ResolutionStrategyManager,
        writer: ContentWriter,
        hasher: Hasher = content_hash,
    ) -> None:
        self.store = store
        self.conflict_log = conflict_log
        self.manager = manager
        self.writer = writer
        self.hasher = hasher

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query_delta(
        self,
        type_key: str,
        current_local_hash: str,
        current_remote_hash: str,
    ) -> DeltaResponse:
        """Answer a delta query for one content type.

        Raises:
            ValidationError: If any argument is empty.
        """
        if not type_key:
            raise ValidationError("type_key is required")
        if not current_local_hash or not current_remote_hash:
            raise ValidationError(
                "current_local_hash and current_remote_hash are required"
            )

        state = self.store.get_sync_state(type_key)
        delta = calculate_delta(current_local_hash, current_remote_hash, state)
        return DeltaResponse(
            type_key=type_key,
            delta=delta,
            current_state=state,
            recommendation=recommendation_for(delta.action),
        )

    def build_conflict_case(
        self,
        type_key: str | None,
        local: SnapshotLike,
        remote: SnapshotLike,
        ancestor: SnapshotLike,
    ) -> tuple[DiffResult, ConflictCase]:
        """Diff the three snapshots and wrap the result for the resolver."""
        diff = compare_versions(local, remote, ancestor)
        category = classify_conflict_category(diff)
        return diff, ConflictCase.from_diff(diff, category, type_key)

    def resolve_request(
        self,
        case: ConflictCase | Mapping[str, Any],
        strategy_name: str | None = None,
    ) -> dict[str, Any]:
        """Resolve a conflict and return the resolution response shape.

        *case* may be a ``ConflictCase`` or a mapping with ``local``,
        ``remote`` and ``ancestor`` snapshots (and an optional
        ``type_key``), which is diffed first.
        """
        if not isinstance(case, ConflictCase):
            _, case = self.build_conflict_case(
                case.get("type_key"),
                case.get("local"),
                case.get("remote"),
                case.get("ancestor"),
            )
        return self.manager.resolve_conflict(case, strategy_name).to_response()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _hashed(self, snapshot: SnapshotLike) -> Snapshot:
        snapshot = Snapshot.normalize(snapshot)
        if snapshot.hash is None:
            snapshot = snapshot.model_copy(update={"hash": self.hasher(snapshot.data)})
        return snapshot

    def reconcile(
        self,
        type_key: str,
        local: SnapshotLike,
        remote: SnapshotLike,
        ancestor: SnapshotLike = None,
        strategy_name: str | None = None,
    ) -> ReconcileOutcome:
        """Bring one content type back in sync.

        Args:
            type_key: Content type identifier.
            local: Current local snapshot.  Missing hashes are computed with
                the coordinator's hasher.
            remote: Current remote snapshot.
            ancestor: Last agreed snapshot; ``None`` diffs against empty data.
            strategy_name: Force a resolution strategy instead of selecting
                one.

        Returns:
            What was done.  A conflict needing a human is an outcome with
            ``manual_resolution_data``, not an exception.

        Raises:
            ValidationError: If *type_key* is empty.
            PersistenceError: If state or log storage fails.
        """
        if not type_key:
            raise ValidationError("type_key is required")

        local_snapshot = self._hashed(local)
        remote_snapshot = self._hashed(remote)

        with self.store.lock(type_key):
            state = self.store.get_sync_state(type_key)

            if state is not None and state.conflict_status is ConflictStatus.DETECTED:
                logger.info("Skipping %s: unresolved conflict pending", type_key)
                pending = self.conflict_log.latest_open(type_key)
                return ReconcileOutcome(
                    type_key=type_key,
                    action=SyncAction.CONFLICT,
                    sync_status=state.sync_status,
                    conflict_status=state.conflict_status,
                    rationale="unresolved conflict awaiting manual resolution",
                    skipped=True,
                    conflict_entry_id=pending.id if pending is not None else None,
                    message="Resolve the pending conflict before syncing again",
                )

            delta = calculate_delta(local_snapshot.hash, remote_snapshot.hash, state)
            if delta.action is SyncAction.NO_CHANGE:
                if (
                    state.sync_status is not SyncStatus.IN_SYNC
                    and local_snapshot.hash == remote_snapshot.hash
                ):
                    return self._confirm_in_sync(
                        type_key, delta.rationale, local_snapshot.hash
                    )
                return ReconcileOutcome(
                    type_key=type_key,
                    action=delta.action,
                    sync_status=state.sync_status,
                    conflict_status=state.conflict_status,
                    rationale=delta.rationale,
                )

            logger.info("Reconciling %s: %s", type_key, delta.action.value)
            try:
                self.store.begin_sync(type_key)
                match delta.action:
                    case SyncAction.PUSH:
                        self.writer.write_remote(type_key, local_snapshot.data)
                        synced = self.store.mark_as_synced(
                            type_key, local_snapshot.hash, local_snapshot.hash
                        )
                    case SyncAction.PULL:
                        self.writer.write_local(type_key, remote_snapshot.data)
                        synced = self.store.mark_as_synced(
                            type_key, remote_snapshot.hash, remote_snapshot.hash
                        )
                    case SyncAction.INITIAL_SYNC if (
                        local_snapshot.hash == remote_snapshot.hash
                    ):
                        synced = self.store.mark_as_synced(
                            type_key, local_snapshot.hash, remote_snapshot.hash
                        )
                    case _:
                        return self._reconcile_conflict(
                            type_key,
                            delta.action,
                            delta.rationale,
                            local_snapshot,
                            remote_snapshot,
                            ancestor,
                            strategy_name,
                        )
            except Exception:
                logger.exception("Sync of %s failed; rolling back", type_key)
                self.store.rollback_partial_sync(type_key)
                raise

        return ReconcileOutcome(
            type_key=type_key,
            action=delta.action,
            sync_status=synced.sync_status,
            conflict_status=synced.conflict_status,
            rationale=delta.rationale,
        )

    def _confirm_in_sync(
        self, type_key: str, rationale: str, agreed_hash: str
    ) -> ReconcileOutcome:
        # Both sides already agree, e.g. after resolve_conflict or a reset;
        # only the status has to catch up.
        try:
            self.store.begin_sync(type_key)
            synced = self.store.mark_as_synced(type_key, agreed_hash, agreed_hash)
        except Exception:
            logger.exception("Re-sync of %s failed; rolling back", type_key)
            self.store.rollback_partial_sync(type_key)
            raise
        return ReconcileOutcome(
            type_key=type_key,
            action=SyncAction.NO_CHANGE,
            sync_status=synced.sync_status,
            conflict_status=synced.conflict_status,
            rationale=rationale,
        )

    def _log_conflict(
        self,
        type_key: str,
        diff: DiffResult,
        case: ConflictCase,
        ancestor: SnapshotLike,
    ) -> ConflictLogEntry:
        ancestor_hash = None
        if ancestor is not None:
            ancestor_hash = diff.ancestor.hash or self.hasher(diff.ancestor.data)
        return self.conflict_log.append(
            type_key,
            local_hash=diff.local.hash,
            remote_hash=diff.remote.hash,
            ancestor_hash=ancestor_hash,
            conflict_type=case.category.value,
            conflict_details={
                "divergence": diff.divergence,
                "conflicts": case.conflicting_field_values(),
                "local_changes": diff.local_changes.changed_fields(),
                "remote_changes": diff.remote_changes.changed_fields(),
            },
        )

    def _reconcile_conflict(
        self,
        type_key: str,
        action: SyncAction,
        rationale: str,
        local: Snapshot,
        remote: Snapshot,
        ancestor: SnapshotLike,
        strategy_name: str | None,
    ) -> ReconcileOutcome:
        diff, case = self.build_conflict_case(type_key, local, remote, ancestor)

        entry: ConflictLogEntry | None = None
        if diff.has_conflicts:
            entry = self._log_conflict(type_key, diff, case, ancestor)
            self.store.mark_as_conflicted(type_key, local.hash, remote.hash)

        result = self.manager.resolve_conflict(case, strategy_name)

        if not result.success:
            if entry is None:
                entry = self._log_conflict(type_key, diff, case, ancestor)
                self.store.mark_as_conflicted(type_key, local.hash, remote.hash)
            manual_data = result.manual_resolution_data or {
                "requires_manual": True,
                "error": result.error,
                "conflicting_fields": case.conflicting_field_values(),
            }
            logger.warning(
                "Conflict on %s requires manual resolution (entry %s)",
                type_key,
                entry.id,
            )
            return ReconcileOutcome(
                type_key=type_key,
                action=action,
                sync_status=SyncStatus.MODIFIED,
                conflict_status=ConflictStatus.DETECTED,
                rationale=rationale,
                manual_resolution_data=manual_data,
                conflict_entry_id=entry.id,
                divergence=diff.divergence,
                message=result.error,
            )

        resolution = result.resolution
        merged_hash = self.hasher(resolution.merged)
        if not values_equal(resolution.merged, local.data):
            self.writer.write_local(type_key, resolution.merged)
        if not values_equal(resolution.merged, remote.data):
            self.writer.write_remote(type_key, resolution.merged)

        if entry is not None:
            self.conflict_log.record_resolution(
                entry.id,
                resolution=resolution.strategy_used or resolution.strategy,
                resolved_by="system",
            )
            self.store.resolve_conflict(type_key, merged_hash)
            self.store.begin_sync(type_key)
        synced = self.store.mark_as_synced(type_key, merged_hash, merged_hash)

        return ReconcileOutcome(
            type_key=type_key,
            action=action,
            sync_status=synced.sync_status,
            conflict_status=synced.conflict_status,
            rationale=rationale,
            resolution=resolution,
            conflict_entry_id=entry.id if entry is not None else None,
            divergence=diff.divergence,
        )

    def apply_manual_resolution(
        self,
        type_key: str,
        entry_id: str,
        merged_data: dict[str, Any],
        resolved_by: str = "user",
    ) -> ReconcileOutcome:
        """Complete a conflict a human resolved to *merged_data*.

        Writes the merged data to both sides, records the resolution in the
        conflict log, then marks the type in sync.

        Raises:
            NotFoundError: If the entry or sync state does not exist.
            ValidationError: If the entry belongs to another type or is
                already resolved.
        """
        if not isinstance(merged_data, dict):
            raise ValidationError("merged_data must be an object")

        with self.store.lock(type_key):
            entry = self.conflict_log.require(entry_id)
            if entry.type_key != type_key:
                raise ValidationError(
                    f"Conflict {entry_id} belongs to '{entry.type_key}', not '{type_key}'"
                )
            if entry.resolution is not None:
                raise ValidationError(f"Conflict {entry_id} is already resolved")
            self.store.require_sync_state(type_key)

            merged_hash = self.hasher(merged_data)
            try:
                self.writer.write_local(type_key, merged_data)
                self.writer.write_remote(type_key, merged_data)
                self.conflict_log.record_resolution(
                    entry_id, resolution="manual", resolved_by=resolved_by
                )
                self.store.resolve_conflict(type_key, merged_hash)
                self.store.begin_sync(type_key)
                synced = self.store.mark_as_synced(type_key, merged_hash, merged_hash)
            except Exception:
                logger.exception("Manual resolution of %s failed; rolling back", type_key)
                self.store.rollback_partial_sync(type_key)
                raise

        logger.info("Applied manual resolution %s to %s", entry_id, type_key)
        return ReconcileOutcome(
            type_key=type_key,
            action=SyncAction.CONFLICT,
            sync_status=synced.sync_status,
            conflict_status=synced.conflict_status,
            rationale="conflict resolved manually",
            conflict_entry_id=entry_id,
        )
