"""Conflict resolution strategies and the strategy manager.

Provides four resolution approaches:

- ``LocalWinsStrategy``: Keeps the local data wholesale; the remote side is
  recorded as discarded.
- ``RemoteWinsStrategy``: Mirror of ``LocalWinsStrategy``.
- ``AutoMergeStrategy``: Starts from the ancestor and applies every
  one-sided change; refuses when a field was modified on both sides.
- ``ManualMergeStrategy``: Never resolves; prepares per-field options for a
  human to pick from.

``ResolutionStrategyManager`` holds a name -> strategy map built once at
startup (``default_strategies()``) and picks the best strategy for a
conflict.  ``resolve_conflict`` never raises: a failing strategy degrades to
``{success: False, error, requires_manual: True}``.

Strategies never mutate the ``ConflictCase`` they are given.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from content_sync.errors import StrategyNotFoundError

from .diff import conflict_description
from .merger import merge_preview
from .models import (
    ChangeSource,
    Changes,
    ConflictCase,
    ConflictCategory,
    MergeAction,
    Resolution,
    ResolutionResult,
    Winner,
)
from .values import values_equal

logger = logging.getLogger(__name__)

LOCAL_WINS = "local_wins"
REMOTE_WINS = "remote_wins"
MANUAL_MERGE = "manual_merge"
AUTO_MERGE = "auto_merge"

# Categories a whole-side strategy must not settle unattended.
_WHOLESALE_BLOCKED = frozenset(
    {
        ConflictCategory.STRUCTURAL,
        ConflictCategory.DELETE,
        ConflictCategory.ADD_DELETE,
        ConflictCategory.DELETE_ADD,
    }
)

MANUAL_INSTRUCTIONS = (
    "Manual intervention required. Please review the conflicting changes "
    "and select appropriate values for each field."
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ResolutionStrategy(Protocol):
    """Protocol that all resolution strategies must satisfy.

    Attributes:
        name: Registry key, e.g. ``"auto_merge"``.
        description: Human-readable description for strategy listings.
        auto_resolves: Whether the strategy can ever resolve without a human.
    """

    name: str
    description: str
    auto_resolves: bool

    def can_auto_resolve(self, case: ConflictCase) -> bool:
        """Return ``True`` if ``resolve`` would succeed for *case*."""
        ...  # pragma: no cover

    def resolve(self, case: ConflictCase) -> ResolutionResult:
        """Resolve *case* without mutating it."""
        ...  # pragma: no cover


def validate_resolution(resolution: Resolution | None) -> bool:
    """Return ``True`` if *resolution* names a winner and carries merged data."""
    return (
        resolution is not None
        and resolution.winner is not None
        and isinstance(resolution.merged, dict)
    )


def change_list(changes: Changes) -> list[dict[str, Any]]:
    """Flatten a ``Changes`` object into ``{field, action, value}`` entries."""
    entries: list[dict[str, Any]] = []
    for field, change in changes.added.items():
        entries.append(
            {"field": field, "action": MergeAction.ADDED.value, "value": change.value}
        )
    for field, change in changes.modified.items():
        entries.append(
            {
                "field": field,
                "action": MergeAction.MODIFIED.value,
                "old_value": change.old_value,
                "value": change.new_value,
            }
        )
    for field, change in changes.deleted.items():
        entries.append(
            {"field": field, "action": MergeAction.DELETED.value, "value": change.value}
        )
    return entries


# ---------------------------------------------------------------------------
# Whole-side strategies
# ---------------------------------------------------------------------------


class _SideWinsStrategy:
    """Keep one side's data wholesale and record the other as discarded."""

    name = ""
    description = ""
    auto_resolves = True
    winner = Winner.LOCAL

    def can_auto_resolve(self, case: ConflictCase) -> bool:
        return case.category not in _WHOLESALE_BLOCKED

    def resolve(self, case: ConflictCase) -> ResolutionResult:
        if not self.can_auto_resolve(case):
            return ResolutionResult(
                success=False,
                error=(
                    f"Cannot auto-resolve {case.category.value} conflict "
                    f"with {self.name} strategy"
                ),
                requires_manual=True,
            )

        if self.winner is Winner.LOCAL:
            kept, kept_changes = case.local, case.local_changes
            lost, lost_changes, lost_source = (
                case.remote,
                case.remote_changes,
                ChangeSource.REMOTE,
            )
        else:
            kept, kept_changes = case.remote, case.remote_changes
            lost, lost_changes, lost_source = (
                case.local,
                case.local_changes,
                ChangeSource.LOCAL,
            )

        resolution = Resolution(
            winner=self.winner,
            merged=copy.deepcopy(kept.data),
            changes=change_list(kept_changes),
            strategy=self.name,
            timestamp=_now(),
            description=f"Resolved by keeping all {self.winner.value} changes",
            conflicts=case.conflicting_field_values(),
            discarded={
                "source": lost_source.value,
                "changes": change_list(lost_changes),
                "data": copy.deepcopy(lost.data),
            },
        )
        return ResolutionResult(success=True, resolution=resolution)


class LocalWinsStrategy(_SideWinsStrategy):
    name = LOCAL_WINS
    description = "Always prefer local changes over remote changes"
    winner = Winner.LOCAL


class RemoteWinsStrategy(_SideWinsStrategy):
    name = REMOTE_WINS
    description = "Always prefer remote changes over local changes"
    winner = Winner.REMOTE


# ---------------------------------------------------------------------------
# Auto merge
# ---------------------------------------------------------------------------


class AutoMergeStrategy:
    """Merge every non-overlapping change from both sides onto the ancestor.

    Changes are applied in a fixed order: local additions, remote
    additions, local modifications, remote modifications, local deletions,
    remote deletions.  A field added on both sides with the same value is
    applied once.
    """

    name = AUTO_MERGE
    description = "Automatically merge non-conflicting changes"
    auto_resolves = True

    @staticmethod
    def overlapping_fields(case: ConflictCase) -> list[str]:
        """Fields both sides touched incompatibly.

        That is fields modified on both sides, added on one side and deleted
        on the other, or added on both with different values.
        """
        local, remote = case.local_changes, case.remote_changes
        overlap = [field for field in local.modified if field in remote.modified]
        overlap.extend(field for field in local.added if field in remote.deleted)
        overlap.extend(field for field in remote.added if field in local.deleted)
        overlap.extend(
            field
            for field, change in local.added.items()
            if field in remote.added
            and not values_equal(change.value, remote.added[field].value)
        )
        return overlap

    def has_overlapping_changes(self, case: ConflictCase) -> bool:
        return bool(self.overlapping_fields(case))

    def can_auto_resolve(self, case: ConflictCase) -> bool:
        return not self.has_overlapping_changes(case)

    def resolve(self, case: ConflictCase) -> ResolutionResult:
        overlap = self.overlapping_fields(case)
        if overlap:
            return ResolutionResult(
                success=False,
                error=(
                    "Cannot auto-merge due to overlapping changes: "
                    + ", ".join(overlap)
                ),
                requires_manual=True,
            )

        local, remote = case.local_changes, case.remote_changes
        merged = copy.deepcopy(case.ancestor.data)
        merge_log: list[dict[str, Any]] = []

        def apply(field: str, action: MergeAction, source: ChangeSource, value: Any) -> None:
            merged[field] = copy.deepcopy(value)
            merge_log.append(
                {
                    "field": field,
                    "action": action.value,
                    "source": source.value,
                    "value": value,
                }
            )

        def delete(field: str, source: ChangeSource) -> None:
            merged.pop(field, None)
            merge_log.append(
                {"field": field, "action": MergeAction.DELETED.value, "source": source.value}
            )

        for field, change in local.added.items():
            if field not in remote.deleted:
                apply(field, MergeAction.ADDED, ChangeSource.LOCAL, change.value)

        for field, change in remote.added.items():
            if field not in local.deleted and field not in local.added:
                apply(field, MergeAction.ADDED, ChangeSource.REMOTE, change.value)

        for field, change in local.modified.items():
            if field not in remote.modified:
                apply(field, MergeAction.MODIFIED, ChangeSource.LOCAL, change.new_value)

        for field, change in remote.modified.items():
            if field not in local.modified:
                apply(field, MergeAction.MODIFIED, ChangeSource.REMOTE, change.new_value)

        for field in local.deleted:
            if field not in remote.modified and field not in remote.added:
                delete(field, ChangeSource.LOCAL)

        for field in remote.deleted:
            if field in local.deleted:
                continue
            if field not in local.modified and field not in local.added:
                delete(field, ChangeSource.REMOTE)

        resolution = Resolution(
            winner=Winner.MERGED,
            merged=merged,
            changes=merge_log,
            strategy=self.name,
            timestamp=_now(),
            description="Auto-merged non-conflicting changes from both versions",
        )
        return ResolutionResult(success=True, resolution=resolution)


# ---------------------------------------------------------------------------
# Manual merge
# ---------------------------------------------------------------------------


class ManualMergeStrategy:
    """Never resolve; hand the conflicting fields to a human."""

    name = MANUAL_MERGE
    description = "Require manual intervention to resolve conflicts"
    auto_resolves = False

    def can_auto_resolve(self, case: ConflictCase) -> bool:
        return False

    def resolve(self, case: ConflictCase) -> ResolutionResult:
        conflicting = case.conflicting_field_values()
        manual_resolution_data = {
            "requires_manual": True,
            "strategy": self.name,
            "type_key": case.type_key,
            "conflict_type": case.category.value,
            "conflicting_fields": conflicting,
            "local_data": copy.deepcopy(case.local.data),
            "remote_data": copy.deepcopy(case.remote.data),
            "ancestor_data": copy.deepcopy(case.ancestor.data),
            "suggested_actions": self.suggested_actions(case),
            "instructions": MANUAL_INSTRUCTIONS,
            "timestamp": _now(),
        }
        return ResolutionResult(
            success=False,
            requires_manual=True,
            manual_resolution_data=manual_resolution_data,
        )

    @staticmethod
    def suggested_actions(case: ConflictCase) -> list[dict[str, Any]]:
        """Per-field options, plus a merge preview for text and array fields."""
        actions: list[dict[str, Any]] = []
        for conflict, values in zip(case.conflicts, case.conflicting_field_values()):
            action: dict[str, Any] = {
                "field": values["field"],
                "description": conflict_description(conflict),
                "options": [
                    {
                        "source": "local",
                        "value": values["local_value"],
                        "description": "Use local value",
                    },
                    {
                        "source": "remote",
                        "value": values["remote_value"],
                        "description": "Use remote value",
                    },
                    {
                        "source": "ancestor",
                        "value": values["ancestor_value"],
                        "description": "Revert to original value",
                    },
                    {
                        "source": "custom",
                        "value": None,
                        "description": "Enter custom value",
                    },
                ],
            }
            preview = merge_preview(
                values["ancestor_value"], values["local_value"], values["remote_value"]
            )
            if preview is not None:
                action["merge_preview"] = preview
            actions.append(action)
        return actions


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


def default_strategies() -> dict[str, ResolutionStrategy]:
    """Build the built-in name -> strategy map, in selection order."""
    strategies: list[ResolutionStrategy] = [
        LocalWinsStrategy(),
        RemoteWinsStrategy(),
        ManualMergeStrategy(),
        AutoMergeStrategy(),
    ]
    return {s.name: s for s in strategies}


class ResolutionStrategyManager:
    """Registry of named strategies with best-strategy selection.

    Args:
        strategies: Name -> strategy map.  Defaults to
            ``default_strategies()``.
        default_strategy: Fallback when nothing can auto-resolve.

    Raises:
        StrategyNotFoundError: If *default_strategy* is not registered.
    """

    def __init__(
        self,
        strategies: dict[str, ResolutionStrategy] | None = None,
        default_strategy: str = MANUAL_MERGE,
    ) -> None:
        self._strategies: dict[str, ResolutionStrategy] = dict(
            strategies if strategies is not None else default_strategies()
        )
        self._default_strategy = MANUAL_MERGE
        self.set_default_strategy(default_strategy)

    @property
    def default_strategy(self) -> str:
        return self._default_strategy

    def register_strategy(self, strategy: ResolutionStrategy) -> None:
        """Register *strategy* under its name, replacing any previous one."""
        self._strategies[strategy.name] = strategy
        logger.debug("Registered resolution strategy %s", strategy.name)

    def get_strategy(self, name: str) -> ResolutionStrategy | None:
        return self._strategies.get(name)

    def require_strategy(self, name: str) -> ResolutionStrategy:
        """Return the strategy named *name*.

        Raises:
            StrategyNotFoundError: If no such strategy is registered.
        """
        strategy = self._strategies.get(name)
        if strategy is None:
            raise StrategyNotFoundError(name, list(self._strategies))
        return strategy

    def set_default_strategy(self, name: str) -> None:
        """Make *name* the fallback strategy.

        Raises:
            StrategyNotFoundError: If no such strategy is registered.
        """
        self.require_strategy(name)
        self._default_strategy = name

    def get_available_strategies(self) -> list[dict[str, Any]]:
        """List registered strategies with name, capability and description."""
        return [
            {
                "name": name,
                "can_auto_resolve": bool(getattr(strategy, "auto_resolves", True)),
                "description": getattr(strategy, "description", "")
                or "Custom resolution strategy",
            }
            for name, strategy in self._strategies.items()
        ]

    def select_best_strategy(self, case: ConflictCase) -> str:
        """Pick a strategy name for *case*.

        AutoMerge is tried first, then every other non-manual strategy in
        registration order; if none can auto-resolve the default is used.
        """
        auto_merge = self._strategies.get(AUTO_MERGE)
        if auto_merge is not None and auto_merge.can_auto_resolve(case):
            return AUTO_MERGE

        for name, strategy in self._strategies.items():
            if name != MANUAL_MERGE and strategy.can_auto_resolve(case):
                return name

        return self._default_strategy

    def resolve_conflict(
        self, case: ConflictCase, strategy_name: str | None = None
    ) -> ResolutionResult:
        """Resolve *case* with the named or auto-selected strategy.

        Never raises.  Successful results are annotated with
        ``strategy_used`` and ``auto_resolved``.
        """
        try:
            name = strategy_name or self.select_best_strategy(case)
        except Exception as exc:
            logger.exception("Strategy selection failed for %s", case.type_key)
            return ResolutionResult(
                success=False,
                error=f"Strategy selection failed: {exc}",
                requires_manual=True,
            )

        strategy = self._strategies.get(name)
        if strategy is None:
            logger.warning("Requested unknown resolution strategy %s", name)
            return ResolutionResult(
                success=False,
                error=str(StrategyNotFoundError(name, list(self._strategies))),
                requires_manual=True,
            )

        try:
            result = strategy.resolve(case)
            if result.success and not validate_resolution(result.resolution):
                return ResolutionResult(
                    success=False,
                    error=f"Strategy {name} produced an invalid resolution",
                    requires_manual=True,
                )
            if result.resolution is not None:
                result = result.model_copy(
                    update={
                        "resolution": result.resolution.model_copy(
                            update={
                                "strategy_used": name,
                                "auto_resolved": strategy.can_auto_resolve(case),
                            }
                        )
                    }
                )
        except Exception as exc:
            logger.exception("Strategy %s failed for %s", name, case.type_key)
            return ResolutionResult(
                success=False,
                error=f"Strategy {name} failed: {exc}",
                requires_manual=True,
            )

        logger.info(
            "Resolved %s with %s: success=%s requires_manual=%s",
            case.type_key,
            name,
            result.success,
            result.requires_manual,
        )
        return result


def create_manager(default_strategy: str = MANUAL_MERGE) -> ResolutionStrategyManager:
    """Create a manager with the built-in strategies and *default_strategy*.

    Raises:
        StrategyNotFoundError: If *default_strategy* is not a built-in name.
    """
    return ResolutionStrategyManager(default_strategies(), default_strategy)
