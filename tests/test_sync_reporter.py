"""Tests for sync/reporter.py: diff and outcome formatting.

Covers:
- format_diff_output() summary, conflicts and field diffs
- format_diff_summary() sections and value diffs
- format_outcome() for synced, manual and skipped outcomes
- delta_to_json() wire shape
"""

from datetime import datetime, timezone

from content_sync.sync.diff import compare_versions
from content_sync.sync.models import (
    ConflictStatus,
    Delta,
    DeltaResponse,
    ReconcileOutcome,
    SyncAction,
    SyncState,
    SyncStatus,
)
from content_sync.sync.reporter import (
    delta_to_json,
    format_diff_output,
    format_diff_summary,
    format_outcome,
)


def _price_diff():
    return compare_versions(
        {"data": {"price": 12, "sku": "A"}},
        {"data": {"price": 15, "sku": "A", "stock": 3}},
        {"data": {"price": 10, "sku": "A"}},
    )


# ---------------------------------------------------------------------------
# Structured output
# ---------------------------------------------------------------------------


class TestFormatDiffOutput:
    """Tests for format_diff_output()."""

    def test_summary(self):
        output = format_diff_output(_price_diff())
        summary = output["summary"]

        assert summary["total_conflicts"] == 1
        assert summary["auto_mergeable"] == 1
        assert summary["divergence_score"].endswith("%")
        assert summary["remote_changes"]["added_count"] == 1

    def test_conflict_values(self):
        conflict = format_diff_output(_price_diff())["conflicts"][0]

        assert conflict["field"] == "price"
        assert conflict["type"] == "both_modified"
        assert conflict["resolution"] == "manual_required"
        assert conflict["values"] == {"ancestor": 10, "local": 12, "remote": 15}

    def test_field_diffs_cover_every_field(self):
        output = format_diff_output(_price_diff())

        assert {d["field"] for d in output["field_diffs"]} == {"price", "sku", "stock"}
        assert output["mergeable_changes"][0] == {
            "field": "stock",
            "source": "remote",
            "action": "add",
            "value": 3,
        }


# ---------------------------------------------------------------------------
# Text output
# ---------------------------------------------------------------------------


class TestFormatDiffSummary:
    """Tests for format_diff_summary()."""

    def test_sections(self):
        text = format_diff_summary(_price_diff())

        assert text.startswith("Divergence:")
        assert "Local: 0 added, 1 modified, 0 deleted" in text
        assert "Remote: 1 added, 1 modified, 0 deleted" in text
        assert "Conflicts:" in text
        assert "price:" in text
        assert "Mergeable:" in text
        assert "stock: add from remote" in text

    def test_values_shown_as_diff(self):
        text = format_diff_summary(_price_diff())

        assert "--- local/price" in text
        assert "+15" in text

    def test_values_hidden(self):
        text = format_diff_summary(_price_diff(), show_values=False)

        assert "--- local/price" not in text

    def test_no_changes(self):
        v = {"data": {"a": 1}}
        assert format_diff_summary(compare_versions(v, v, v)).endswith("No changes.")


class TestFormatOutcome:
    """Tests for format_outcome()."""

    def test_synced(self):
        outcome = ReconcileOutcome(
            type_key="blog_post",
            action=SyncAction.PUSH,
            sync_status=SyncStatus.IN_SYNC,
            rationale="local content changed since the last sync",
        )

        text = format_outcome(outcome)

        assert text.splitlines()[0] == "blog_post: PUSH"
        assert "Status: in_sync, conflict: none" in text
        assert "Reason: local content changed" in text

    def test_manual(self):
        outcome = ReconcileOutcome(
            type_key="product",
            action=SyncAction.CONFLICT,
            sync_status=SyncStatus.MODIFIED,
            conflict_status=ConflictStatus.DETECTED,
            manual_resolution_data={"conflicting_fields": [{"field": "price"}]},
            conflict_entry_id="abc123",
            divergence=0.5,
        )

        text = format_outcome(outcome)

        assert "Manual resolution required for: price" in text
        assert "Conflict log entry: abc123" in text
        assert "Divergence: 50%" in text

    def test_skipped(self):
        outcome = ReconcileOutcome(
            type_key="product",
            action=SyncAction.CONFLICT,
            sync_status=SyncStatus.MODIFIED,
            skipped=True,
            message="Resolve the pending conflict before syncing again",
        )

        text = format_outcome(outcome)

        assert text.startswith("product: CONFLICT (skipped)")
        assert text.endswith("Resolve the pending conflict before syncing again")


class TestDeltaToJson:
    """Tests for delta_to_json()."""

    def test_without_state(self):
        response = DeltaResponse(
            type_key="blog_post",
            delta=Delta(action=SyncAction.INITIAL_SYNC, rationale="none"),
            recommendation="perform initial synchronization of this content type",
        )

        assert delta_to_json(response) == {
            "type_key": "blog_post",
            "delta": {"action": "INITIAL_SYNC", "rationale": "none"},
            "current_state": None,
            "recommendation": "perform initial synchronization of this content type",
        }

    def test_state_is_json_ready(self):
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        state = SyncState(type_key="blog_post", created_at=now, updated_at=now)
        response = DeltaResponse(
            type_key="blog_post",
            delta=Delta(action=SyncAction.NO_CHANGE, rationale="same"),
            current_state=state,
            recommendation="no action needed, content is in sync",
        )

        current = delta_to_json(response)["current_state"]

        assert current["sync_status"] == "new"
        assert current["created_at"].startswith("2024-05-01T00:00:00")
