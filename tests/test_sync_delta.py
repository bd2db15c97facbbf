"""Tests for the delta calculator.

Covers:
- Every (local changed?, remote changed?) combination plus no stored state
- Recommendation lookup for every action
- Local and remote hashes are never compared with each other
"""

from datetime import datetime, timezone

import pytest

from content_sync.sync.delta import RECOMMENDATIONS, calculate_delta, recommendation_for
from content_sync.sync.models import SyncAction, SyncState, SyncStatus


def _stored(local_hash: str = "a", remote_hash: str = "b") -> SyncState:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return SyncState(
        type_key="blog_post",
        local_hash=local_hash,
        remote_hash=remote_hash,
        sync_status=SyncStatus.IN_SYNC if local_hash == remote_hash else SyncStatus.MODIFIED,
        last_synced_hash=local_hash if local_hash == remote_hash else None,
        created_at=now,
        updated_at=now,
    )


class TestCalculateDelta:
    def test_no_stored_state_is_initial_sync(self):
        delta = calculate_delta("a", "b", None)
        assert delta.action is SyncAction.INITIAL_SYNC
        assert delta.rationale

    @pytest.mark.parametrize(
        "local, remote, expected",
        [
            ("a", "b", SyncAction.NO_CHANGE),
            ("a2", "b", SyncAction.PUSH),
            ("a", "b2", SyncAction.PULL),
            ("a2", "b2", SyncAction.CONFLICT),
        ],
    )
    def test_hash_combinations(self, local, remote, expected):
        assert calculate_delta(local, remote, _stored()).action is expected

    def test_push_example(self):
        """Stored {local: a, remote: b}, current {local: a2, remote: b} pushes."""
        delta = calculate_delta("a2", "b", _stored("a", "b"))
        assert delta.action is SyncAction.PUSH
        assert "local" in delta.rationale

    def test_hashes_not_compared_across_sides(self):
        """Equal current hashes still conflict when both moved off their stored values."""
        delta = calculate_delta("same", "same", _stored("a", "b"))
        assert delta.action is SyncAction.CONFLICT

    def test_is_pure(self):
        state = _stored()
        calculate_delta("x", "y", state)
        assert state.local_hash == "a"
        assert state.remote_hash == "b"


class TestRecommendations:
    def test_every_action_has_recommendation(self):
        assert set(RECOMMENDATIONS) == set(SyncAction)

    def test_push_recommendation(self):
        assert recommendation_for(SyncAction.PUSH) == "push local changes to remote system"

    def test_no_change_recommendation(self):
        assert recommendation_for(SyncAction.NO_CHANGE) == "no action needed, content is in sync"
