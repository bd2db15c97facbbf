"""Tests for the sync coordinator."""

from __future__ import annotations

import threading
from typing import Any
from unittest.mock import patch

import pytest

from content_sync.core.context import CollectingWriter
from content_sync.errors import NotFoundError, PersistenceError, ValidationError
from content_sync.sync.engine import SyncCoordinator
from content_sync.sync.models import ConflictStatus, SyncAction, SyncStatus, Winner
from content_sync.sync.resolver import MANUAL_MERGE
from content_sync.sync.state import content_hash

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def snap(data: dict[str, Any]) -> dict[str, Any]:
    return {"data": data}


class FailingWriter(CollectingWriter):
    """Writer whose remote side is unreachable."""

    def write_remote(self, type_key: str, data: dict[str, Any]) -> None:
        raise RuntimeError("remote unreachable")


PRICE = {"price": 10}
POST = {"title": "A", "tags": ["x"]}


def _establish(coordinator: SyncCoordinator, type_key: str, data: dict[str, Any]) -> None:
    """Record an initial sync where both sides already agree on *data*."""
    outcome = coordinator.reconcile(type_key, snap(data), snap(data))
    assert outcome.sync_status is SyncStatus.IN_SYNC


# ---------------------------------------------------------------------------
# Delta queries
# ---------------------------------------------------------------------------


class TestQueryDelta:
    """Tests for SyncCoordinator.query_delta()."""

    def test_unknown_type_is_initial_sync(self, coordinator) -> None:
        response = coordinator.query_delta("blog_post", "a", "b")

        assert response.delta.action is SyncAction.INITIAL_SYNC
        assert response.current_state is None
        assert response.recommendation == "perform initial synchronization of this content type"

    def test_push_after_local_change(self, coordinator) -> None:
        _establish(coordinator, "blog_post", POST)
        stored = content_hash(POST)

        response = coordinator.query_delta("blog_post", "a2", stored)

        assert response.delta.action is SyncAction.PUSH
        assert response.current_state.local_hash == stored

    @pytest.mark.parametrize(
        "type_key, local, remote",
        [("", "a", "b"), ("blog_post", "", "b"), ("blog_post", "a", "")],
    )
    def test_missing_arguments(self, coordinator, type_key, local, remote) -> None:
        with pytest.raises(ValidationError):
            coordinator.query_delta(type_key, local, remote)


# ---------------------------------------------------------------------------
# Straight-line flows
# ---------------------------------------------------------------------------


class TestSimpleFlows:
    """Tests for initial sync, push, pull and no-change reconciles."""

    def test_initial_sync_with_equal_content(self, coordinator, writer, store) -> None:
        outcome = coordinator.reconcile("blog_post", snap(POST), snap(POST))

        assert outcome.action is SyncAction.INITIAL_SYNC
        assert outcome.sync_status is SyncStatus.IN_SYNC
        assert writer.writes == []
        assert store.require_sync_state("blog_post").last_synced_hash == content_hash(POST)

    def test_push(self, coordinator, writer, store) -> None:
        _establish(coordinator, "blog_post", POST)
        edited = {**POST, "title": "A2"}

        outcome = coordinator.reconcile("blog_post", snap(edited), snap(POST))

        assert outcome.action is SyncAction.PUSH
        assert writer.writes == [{"target": "remote", "type_key": "blog_post", "data": edited}]
        state = store.require_sync_state("blog_post")
        assert state.sync_status is SyncStatus.IN_SYNC
        assert state.local_hash == state.remote_hash == content_hash(edited)

    def test_pull(self, coordinator, writer) -> None:
        _establish(coordinator, "blog_post", POST)
        edited = {**POST, "tags": ["x", "y"]}

        outcome = coordinator.reconcile("blog_post", snap(POST), snap(edited))

        assert outcome.action is SyncAction.PULL
        assert writer.writes == [{"target": "local", "type_key": "blog_post", "data": edited}]

    def test_no_change(self, coordinator, writer) -> None:
        _establish(coordinator, "blog_post", POST)

        outcome = coordinator.reconcile("blog_post", snap(POST), snap(POST))

        assert outcome.action is SyncAction.NO_CHANGE
        assert outcome.sync_status is SyncStatus.IN_SYNC
        assert writer.writes == []

    def test_explicit_hashes_are_used(self, coordinator, store) -> None:
        local = {"data": {"a": 1}, "hash": "v1"}
        coordinator.reconcile("blog_post", local, {"data": {"a": 1}, "hash": "v1"})

        assert store.require_sync_state("blog_post").local_hash == "v1"

    def test_empty_type_key(self, coordinator) -> None:
        with pytest.raises(ValidationError):
            coordinator.reconcile("", snap({}), snap({}))


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class TestConflictFlows:
    """Tests for diff-and-resolve reconciles."""

    def test_auto_merge_without_field_conflicts(self, coordinator, writer, conflict_log) -> None:
        _establish(coordinator, "blog_post", POST)
        local = {"title": "A2", "tags": ["x"]}
        remote = {"title": "A", "tags": ["x", "y"]}

        outcome = coordinator.reconcile("blog_post", snap(local), snap(remote), snap(POST))

        merged = {"title": "A2", "tags": ["x", "y"]}
        assert outcome.action is SyncAction.CONFLICT
        assert outcome.resolution.winner is Winner.MERGED
        assert outcome.resolution.merged == merged
        assert outcome.sync_status is SyncStatus.IN_SYNC
        assert outcome.conflict_entry_id is None
        assert {w["target"] for w in writer.writes} == {"local", "remote"}
        assert all(w["data"] == merged for w in writer.writes)
        assert conflict_log.count() == 0

    def test_field_conflict_resolved_and_logged(self, coordinator, writer, conflict_log, store) -> None:
        _establish(coordinator, "product", PRICE)

        outcome = coordinator.reconcile("product", snap({"price": 12}), snap({"price": 15}), snap(PRICE))

        assert outcome.resolution.strategy_used == "local_wins"
        assert writer.writes == [{"target": "remote", "type_key": "product", "data": {"price": 12}}]
        entry = conflict_log.require(outcome.conflict_entry_id)
        assert entry.status == "resolved"
        assert entry.resolution == "local_wins"
        assert entry.resolved_by == "system"
        assert entry.conflict_details["conflicts"][0]["field"] == "price"
        state = store.require_sync_state("product")
        assert state.sync_status is SyncStatus.IN_SYNC
        assert state.conflict_status is ConflictStatus.NONE

    def test_manual_strategy_leaves_conflict_detected(self, coordinator, writer, conflict_log, store) -> None:
        _establish(coordinator, "product", PRICE)

        outcome = coordinator.reconcile(
            "product", snap({"price": 12}), snap({"price": 15}), snap(PRICE), MANUAL_MERGE
        )

        assert outcome.requires_manual
        assert outcome.manual_resolution_data["conflicting_fields"][0]["field"] == "price"
        assert outcome.conflict_status is ConflictStatus.DETECTED
        assert writer.writes == []
        assert conflict_log.require(outcome.conflict_entry_id).status == "pending"
        state = store.require_sync_state("product")
        assert state.sync_status is SyncStatus.MODIFIED
        assert state.conflict_status is ConflictStatus.DETECTED

    def test_initial_sync_with_diverging_content_needs_manual(self, coordinator, conflict_log) -> None:
        outcome = coordinator.reconcile("product", snap({"price": 12}), snap({"price": 15}))

        assert outcome.action is SyncAction.INITIAL_SYNC
        assert outcome.requires_manual
        entry = conflict_log.require(outcome.conflict_entry_id)
        assert entry.conflict_type == "structural"
        assert entry.ancestor_hash is None

    def test_initial_sync_with_disjoint_fields_merges(self, coordinator, writer) -> None:
        outcome = coordinator.reconcile("product", snap({"a": 1}), snap({"b": 2}))

        assert outcome.sync_status is SyncStatus.IN_SYNC
        assert outcome.resolution.merged == {"a": 1, "b": 2}
        assert len(writer.writes) == 2

    def test_detected_conflict_is_skipped(self, coordinator, writer, conflict_log) -> None:
        _establish(coordinator, "product", PRICE)
        coordinator.reconcile(
            "product", snap({"price": 12}), snap({"price": 15}), snap(PRICE), MANUAL_MERGE
        )

        outcome = coordinator.reconcile("product", snap({"price": 20}), snap({"price": 15}))

        assert outcome.skipped
        assert outcome.action is SyncAction.CONFLICT
        assert outcome.conflict_entry_id == conflict_log.latest_open("product").id
        assert writer.writes == []

    def test_log_entry_written_before_state(self, coordinator, conflict_log, store) -> None:
        _establish(coordinator, "product", PRICE)

        with patch.object(conflict_log, "append", side_effect=PersistenceError("disk full")):
            with pytest.raises(PersistenceError):
                coordinator.reconcile(
                    "product", snap({"price": 12}), snap({"price": 15}), snap(PRICE)
                )

        state = store.require_sync_state("product")
        assert state.sync_status is SyncStatus.FAILED
        assert state.conflict_status is ConflictStatus.NONE
        assert state.local_hash == content_hash(PRICE)

    def test_resolve_request_from_mapping(self, coordinator) -> None:
        response = coordinator.resolve_request(
            {
                "type_key": "blog_post",
                "local": snap({"title": "A2", "tags": ["x"]}),
                "remote": snap({"title": "A", "tags": ["x", "y"]}),
                "ancestor": snap(POST),
            }
        )

        assert response["success"] is True
        assert response["resolution"]["merged"] == {"title": "A2", "tags": ["x", "y"]}


# ---------------------------------------------------------------------------
# Manual resolution
# ---------------------------------------------------------------------------


class TestApplyManualResolution:
    """Tests for SyncCoordinator.apply_manual_resolution()."""

    @pytest.fixture
    def pending(self, coordinator) -> str:
        _establish(coordinator, "product", PRICE)
        outcome = coordinator.reconcile(
            "product", snap({"price": 12}), snap({"price": 15}), snap(PRICE), MANUAL_MERGE
        )
        return outcome.conflict_entry_id

    def test_applies_merged_data(self, coordinator, writer, conflict_log, store, pending) -> None:
        outcome = coordinator.apply_manual_resolution("product", pending, {"price": 13}, "alice")

        assert outcome.sync_status is SyncStatus.IN_SYNC
        assert writer.writes == [
            {"target": "local", "type_key": "product", "data": {"price": 13}},
            {"target": "remote", "type_key": "product", "data": {"price": 13}},
        ]
        entry = conflict_log.require(pending)
        assert entry.resolution == "manual"
        assert entry.resolved_by == "alice"
        state = store.require_sync_state("product")
        assert state.last_synced_hash == content_hash({"price": 13})
        assert state.conflict_status is ConflictStatus.NONE

    def test_sync_resumes_after_resolution(self, coordinator, pending) -> None:
        coordinator.apply_manual_resolution("product", pending, {"price": 13})

        outcome = coordinator.reconcile("product", snap({"price": 13}), snap({"price": 13}))

        assert outcome.action is SyncAction.NO_CHANGE

    def test_wrong_type_key(self, coordinator, pending) -> None:
        with pytest.raises(ValidationError, match="belongs to 'product'"):
            coordinator.apply_manual_resolution("other", pending, {"price": 13})

    def test_already_resolved(self, coordinator, pending) -> None:
        coordinator.apply_manual_resolution("product", pending, {"price": 13})
        with pytest.raises(ValidationError, match="already resolved"):
            coordinator.apply_manual_resolution("product", pending, {"price": 14})

    def test_unknown_entry(self, coordinator) -> None:
        with pytest.raises(NotFoundError):
            coordinator.apply_manual_resolution("product", "nope", {})

    def test_merged_data_must_be_object(self, coordinator, pending) -> None:
        with pytest.raises(ValidationError, match="object"):
            coordinator.apply_manual_resolution("product", pending, ["price"])


class TestResync:
    """Re-syncing a type whose sides already agree restores in_sync."""

    def test_after_resolve_conflict(self, coordinator, writer, store) -> None:
        _establish(coordinator, "product", PRICE)
        resolved = {"price": 14}
        store.begin_sync("product")
        store.mark_as_conflicted("product", "l2", "r2")
        store.resolve_conflict("product", content_hash(resolved))

        outcome = coordinator.reconcile("product", snap(resolved), snap(resolved))

        assert outcome.action is SyncAction.NO_CHANGE
        assert outcome.sync_status is SyncStatus.IN_SYNC
        assert writer.writes == []
        state = store.require_sync_state("product")
        assert state.sync_status is SyncStatus.IN_SYNC
        assert state.conflict_status is ConflictStatus.NONE
        assert state.last_synced_hash == content_hash(resolved)
        assert "product" not in store.get_pending_sync_types()

    def test_after_reset_all(self, coordinator, writer, store) -> None:
        _establish(coordinator, "blog_post", POST)
        store.reset_all_sync_states()

        outcome = coordinator.reconcile("blog_post", snap(POST), snap(POST))

        assert outcome.sync_status is SyncStatus.IN_SYNC
        assert writer.writes == []
        state = store.require_sync_state("blog_post")
        assert state.last_synced_hash == content_hash(POST)
        assert store.get_pending_sync_types() == []

    def test_in_sync_no_change_is_untouched(self, coordinator, store) -> None:
        _establish(coordinator, "blog_post", POST)
        before = store.require_sync_state("blog_post")

        coordinator.reconcile("blog_post", snap(POST), snap(POST))

        assert store.require_sync_state("blog_post") == before


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestRollback:
    """Writer failures roll the type back to its last checkpoint."""

    def test_failed_push_rolls_back(self, store, conflict_log, manager) -> None:
        coordinator = SyncCoordinator(store, conflict_log, manager, CollectingWriter())
        _establish(coordinator, "blog_post", POST)
        failing = SyncCoordinator(store, conflict_log, manager, FailingWriter())

        with pytest.raises(RuntimeError, match="remote unreachable"):
            failing.reconcile("blog_post", snap({**POST, "title": "A2"}), snap(POST))

        state = store.require_sync_state("blog_post")
        assert state.sync_status is SyncStatus.FAILED
        assert state.local_hash == content_hash(POST)

    def test_retry_after_failure(self, store, conflict_log, manager) -> None:
        failing = SyncCoordinator(store, conflict_log, manager, FailingWriter())
        working = SyncCoordinator(store, conflict_log, manager, CollectingWriter())
        _establish(working, "blog_post", POST)
        edited = {**POST, "title": "A2"}

        with pytest.raises(RuntimeError):
            failing.reconcile("blog_post", snap(edited), snap(POST))
        outcome = working.reconcile("blog_post", snap(edited), snap(POST))

        assert outcome.action is SyncAction.PUSH
        assert outcome.sync_status is SyncStatus.IN_SYNC


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrentReconcile:
    """Reconciles of one type key from several threads are serialized."""

    def test_same_key_from_many_threads(self, coordinator, conflict_log, store) -> None:
        _establish(coordinator, "product", PRICE)
        locals_ = [{"price": 20 + i} for i in range(8)]
        outcomes = []
        errors: list[BaseException] = []

        def worker(i: int) -> None:
            try:
                outcomes.append(
                    coordinator.reconcile(
                        "product", snap(locals_[i]), snap({"price": 200 + i}), snap(PRICE)
                    )
                )
            except BaseException as exc:  # collected for the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(len(locals_))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(outcomes) == len(locals_)

        state = store.require_sync_state("product")
        assert state.sync_status is SyncStatus.IN_SYNC
        assert state.conflict_status is ConflictStatus.NONE
        assert state.local_hash == state.remote_hash == state.last_synced_hash

        entries = conflict_log.list_entries(limit=100)
        assert len(entries) == len(locals_)
        assert all(e.status == "resolved" and e.resolved_by == "system" for e in entries)
        assert {e.id for e in entries} == {o.conflict_entry_id for o in outcomes}
        assert {e.local_hash for e in entries} == {content_hash(d) for d in locals_}
        assert state.last_synced_hash in {e.local_hash for e in entries}
