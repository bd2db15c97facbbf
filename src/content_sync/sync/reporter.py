"""Diff and reconciliation report formatting functions.

Provides human-readable and machine-readable output:

- ``format_diff_output`` -- structured diff summary for MCP tool output.
- ``format_diff_summary`` -- human-readable diff with per-field diffs.
- ``format_outcome`` -- one reconciliation result as text.
- ``delta_to_json`` -- delta query response as a JSON-ready dict.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .diff import conflict_description, generate_field_level_diff
from .merger import generate_diff

if TYPE_CHECKING:
    from .models import DeltaResponse, DiffResult, ReconcileOutcome


# ------------------------------------------------------------------
# Structured diff
# ------------------------------------------------------------------


def format_diff_output(diff: DiffResult) -> dict[str, Any]:
    """Convert a diff to a structured dict for display.

    Args:
        diff: The three-way diff.

    Returns:
        Dict with a ``summary`` block, conflicts (with descriptions and the
        three competing values), mergeable changes and per-field diffs.
    """
    conflicts = []
    for c in diff.conflicts:
        conflicts.append(
            {
                "field": c.field,
                "type": c.type.value,
                "description": conflict_description(c),
                "resolution": c.resolution.value,
                "values": {
                    "ancestor": c.ancestor_value,
                    "local": c.local_change.new_value if c.local_change else None,
                    "remote": c.remote_change.new_value if c.remote_change else None,
                },
            }
        )

    return {
        "summary": {
            "total_conflicts": len(diff.conflicts),
            "auto_mergeable": len(diff.mergeable_changes),
            "divergence_score": f"{round(diff.divergence * 100)}%",
            "local_changes": diff.local_changes.summary.model_dump(),
            "remote_changes": diff.remote_changes.summary.model_dump(),
        },
        "conflicts": conflicts,
        "mergeable_changes": [
            m.model_dump(mode="json") for m in diff.mergeable_changes
        ],
        "field_diffs": [
            d.model_dump(mode="json")
            for d in generate_field_level_diff(diff.local, diff.remote, diff.ancestor)
        ],
    }


# ------------------------------------------------------------------
# Human-readable diff
# ------------------------------------------------------------------


def format_diff_summary(diff: DiffResult, show_values: bool = True) -> str:
    """Format a diff as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        diff: The three-way diff.
        show_values: Include unified diffs of conflicting values.

    Returns:
        Multi-line formatted string.
    """
    local = diff.local_changes.summary
    remote = diff.remote_changes.summary

    lines: list[str] = []
    lines.append(
        f"Divergence: {round(diff.divergence * 100)}% "
        f"({len(diff.conflicts)} conflicts, "
        f"{len(diff.mergeable_changes)} mergeable changes)"
    )
    lines.append(
        f"Local: {local.added_count} added, {local.modified_count} modified, "
        f"{local.deleted_count} deleted"
    )
    lines.append(
        f"Remote: {remote.added_count} added, {remote.modified_count} modified, "
        f"{remote.deleted_count} deleted"
    )
    lines.append("")

    if diff.conflicts:
        lines.append("Conflicts:")
        for c in diff.conflicts:
            lines.append(f"  {c.field}: {conflict_description(c)} [{c.resolution.value}]")
            if show_values and c.local_change and c.remote_change:
                text = generate_diff(
                    c.local_change.new_value,
                    c.remote_change.new_value,
                    label_old=f"local/{c.field}",
                    label_new=f"remote/{c.field}",
                )
                for diff_line in text.splitlines():
                    lines.append(f"    {diff_line}")
        lines.append("")

    if diff.mergeable_changes:
        lines.append("Mergeable:")
        for m in diff.mergeable_changes:
            lines.append(f"  {m.field}: {m.action.value} from {m.source.value}")
        lines.append("")

    if not diff.conflicts and not diff.mergeable_changes:
        lines.append("No changes.")

    return "\n".join(lines).rstrip()


def format_outcome(outcome: ReconcileOutcome) -> str:
    """Format a single reconciliation outcome as text."""
    header = f"{outcome.type_key}: {outcome.action.value}"
    if outcome.skipped:
        header += " (skipped)"
    lines = [
        header,
        f"  Status: {outcome.sync_status.value}, conflict: {outcome.conflict_status.value}",
    ]
    if outcome.rationale:
        lines.append(f"  Reason: {outcome.rationale}")
    if outcome.divergence is not None:
        lines.append(f"  Divergence: {round(outcome.divergence * 100)}%")
    if outcome.resolution is not None:
        lines.append(
            f"  Resolved by {outcome.resolution.strategy_used or outcome.resolution.strategy}: "
            f"{outcome.resolution.description}"
        )
    if outcome.requires_manual:
        fields = [
            f["field"]
            for f in outcome.manual_resolution_data.get("conflicting_fields", [])
        ]
        lines.append(
            "  Manual resolution required"
            + (f" for: {', '.join(fields)}" if fields else "")
        )
    if outcome.conflict_entry_id:
        lines.append(f"  Conflict log entry: {outcome.conflict_entry_id}")
    if outcome.message:
        lines.append(f"  {outcome.message}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def delta_to_json(response: DeltaResponse) -> dict[str, Any]:
    """Convert a delta response to the delta query wire shape."""
    return {
        "type_key": response.type_key,
        "delta": response.delta.model_dump(mode="json"),
        "current_state": (
            response.current_state.model_dump(mode="json")
            if response.current_state is not None
            else None
        ),
        "recommendation": response.recommendation,
    }
