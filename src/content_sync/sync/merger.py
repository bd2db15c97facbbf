"""Three-way merge and diff utilities for field values.

Uses the ``merge3`` library for three-way merging (the same algorithm used
by Bazaar/Breezy) and ``difflib`` for unified diff generation.

Key design choices:

* String fields merge line by line; array fields merge element by element.
  Array elements are keyed by their canonical JSON text so that unhashable
  elements (objects, nested arrays) can go through the sequence matcher.
* Text conflict markers follow Git convention with custom labels:
  ``<<<<<<< LOCAL``, ``=======``, ``>>>>>>> REMOTE``.
* Nothing here decides a resolution; results are previews attached to
  manual-resolution requests and rendered by the reporter.
"""

from __future__ import annotations

import difflib
import json
from dataclasses import dataclass, field
from typing import Any

from merge3 import Merge3

from .values import ValueKind, kind_of


@dataclass(frozen=True)
class SequenceMerge:
    """Result of a three-way element merge.

    Attributes:
        merged: Merged elements.  Conflicting regions contribute the local
            side's elements.
        conflicts: One ``{"base", "local", "remote"}`` chunk per conflicting
            region.
    """

    merged: list[Any]
    conflicts: list[dict[str, list[Any]]] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.conflicts


def canonical_json(value: Any) -> str:
    """Serialize *value* with sorted keys so equal values share one text."""
    return json.dumps(value, sort_keys=True, default=str)


def render_value(value: Any) -> str:
    """Render a field value as multi-line text for diffing."""
    if isinstance(value, str):
        return value if value.endswith("\n") or not value else value + "\n"
    return json.dumps(value, indent=2, sort_keys=True, default=str) + "\n"


def merge_sequences(
    base: list[Any],
    local: list[Any],
    remote: list[Any],
) -> SequenceMerge:
    """Three-way merge of two element sequences against a common base.

    Args:
        base: The ancestor sequence.
        local: The local sequence.
        remote: The remote sequence.

    Returns:
        A ``SequenceMerge`` with the merged elements and any conflicting
        regions.
    """
    base_keys = [canonical_json(x) for x in base]
    local_keys = [canonical_json(x) for x in local]
    remote_keys = [canonical_json(x) for x in remote]

    m3 = Merge3(base_keys, local_keys, remote_keys)

    merged: list[Any] = []
    conflicts: list[dict[str, list[Any]]] = []

    for region in m3.merge_regions():
        match region:
            case ("unchanged", start, end):
                merged.extend(base[start:end])
            case ("a" | "same", start, end):
                merged.extend(local[start:end])
            case ("b", start, end):
                merged.extend(remote[start:end])
            case ("conflict", z_start, z_end, a_start, a_end, b_start, b_end):
                merged.extend(local[a_start:a_end])
                conflicts.append(
                    {
                        "base": list(base[z_start:z_end]),
                        "local": list(local[a_start:a_end]),
                        "remote": list(remote[b_start:b_end]),
                    }
                )
            case _:
                raise ValueError(f"Unexpected merge region: {region[0]!r}")

    return SequenceMerge(merged=merged, conflicts=conflicts)


def attempt_merge(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> tuple[str, bool]:
    """Perform a line-based three-way merge of text.

    Args:
        base_content: The common ancestor content.
        local_content: The current local content.
        remote_content: The current remote content.

    Returns:
        A tuple of ``(merged_text, has_conflicts)`` where *merged_text* may
        contain conflict markers.
    """
    m3 = Merge3(
        base_content.splitlines(True),
        local_content.splitlines(True),
        remote_content.splitlines(True),
    )

    merged_text = "".join(
        m3.merge_lines(
            name_a="LOCAL",
            name_b="REMOTE",
            start_marker="<<<<<<< LOCAL",
            mid_marker="=======",
            end_marker=">>>>>>> REMOTE",
        )
    )

    return merged_text, "<<<<<<< LOCAL" in merged_text


def merge_preview(ancestor: Any, local: Any, remote: Any) -> dict[str, Any] | None:
    """Try a three-way merge of a conflicting field for human review.

    Only string and array values are mergeable; any other combination
    returns ``None``.  A missing ancestor value merges against an empty
    base of the same kind.
    """
    local_kind = kind_of(local)
    if local_kind is not kind_of(remote):
        return None

    match local_kind:
        case ValueKind.STRING:
            base = ancestor if isinstance(ancestor, str) else ""
            merged, has_conflicts = attempt_merge(base, local, remote)
            return {"merged": merged, "clean": not has_conflicts}
        case ValueKind.ARRAY:
            base = list(ancestor) if kind_of(ancestor) is ValueKind.ARRAY else []
            result = merge_sequences(base, list(local), list(remote))
            return {
                "merged": result.merged,
                "clean": result.clean,
                "conflicts": result.conflicts,
            }
        case _:
            return None


def generate_diff(
    old_content: Any,
    new_content: Any,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two values.

    Non-string values are rendered as indented JSON first.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    diff_lines = difflib.unified_diff(
        render_value(old_content).splitlines(True),
        render_value(new_content).splitlines(True),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)
