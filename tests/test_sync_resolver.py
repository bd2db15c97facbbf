"""Tests for conflict resolution strategies and the strategy manager."""

from __future__ import annotations

import pytest

from content_sync.errors import ConflictRequiresManual, StrategyNotFoundError
from content_sync.sync.diff import (
    calculate_changes,
    classify_conflict_category,
    compare_versions,
)
from content_sync.sync.models import (
    ConflictCase,
    ConflictCategory,
    ResolutionResult,
    Winner,
)
from content_sync.sync.resolver import (
    AUTO_MERGE,
    LOCAL_WINS,
    MANUAL_MERGE,
    REMOTE_WINS,
    AutoMergeStrategy,
    LocalWinsStrategy,
    ManualMergeStrategy,
    RemoteWinsStrategy,
    ResolutionStrategyManager,
    create_manager,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _case(local: dict, remote: dict, ancestor: dict, type_key: str = "blog_post") -> ConflictCase:
    """Build a ConflictCase the way the coordinator does."""
    diff = compare_versions({"data": local}, {"data": remote}, {"data": ancestor})
    return ConflictCase.from_diff(diff, classify_conflict_category(diff), type_key)


def _price_case() -> ConflictCase:
    return _case({"price": 12}, {"price": 15}, {"price": 10})


def _mergeable_case() -> ConflictCase:
    return _case(
        {"title": "A2", "tags": ["x"]},
        {"title": "A", "tags": ["x", "y"]},
        {"title": "A", "tags": ["x"]},
    )


class _ExplodingStrategy:
    name = "exploding"
    description = "Raises on resolve"
    auto_resolves = True

    def can_auto_resolve(self, case):
        return False

    def resolve(self, case):
        raise RuntimeError("kaboom")


# ---------------------------------------------------------------------------
# AutoMergeStrategy
# ---------------------------------------------------------------------------


class TestAutoMergeStrategy:
    """Tests for AutoMergeStrategy."""

    def test_merges_one_sided_changes(self) -> None:
        result = AutoMergeStrategy().resolve(_mergeable_case())

        assert result.success
        assert result.resolution.winner is Winner.MERGED
        assert result.resolution.merged == {"title": "A2", "tags": ["x", "y"]}
        assert {c["field"] for c in result.resolution.changes} == {"title", "tags"}

    def test_refuses_both_modified(self) -> None:
        strategy = AutoMergeStrategy()
        case = _price_case()

        assert not strategy.can_auto_resolve(case)
        result = strategy.resolve(case)
        assert not result.success
        assert result.requires_manual
        assert "price" in result.error

    def test_add_delete_pair_overlaps(self) -> None:
        case = ConflictCase(
            category=ConflictCategory.ADD_DELETE,
            local_changes=calculate_changes({"data": {}}, {"data": {"x": 1}}),
            remote_changes=calculate_changes({"data": {"x": 0}}, {"data": {}}),
        )
        assert AutoMergeStrategy.overlapping_fields(case) == ["x"]
        assert not AutoMergeStrategy().resolve(case).success

    def test_both_added_with_different_values_overlaps(self) -> None:
        case = _case({"x": 1}, {"x": 2}, {})
        assert AutoMergeStrategy.overlapping_fields(case) == ["x"]

    def test_both_added_same_value_applied_once(self) -> None:
        result = AutoMergeStrategy().resolve(_case({"x": 1}, {"x": 1}, {}))

        assert result.success
        assert result.resolution.merged == {"x": 1}
        assert [c["field"] for c in result.resolution.changes] == ["x"]

    def test_deletion_applied_alongside_remote_edit(self) -> None:
        result = AutoMergeStrategy().resolve(_case({"a": 1}, {"a": 5, "b": 2}, {"a": 1, "b": 2}))

        assert result.resolution.merged == {"a": 5}

    def test_soundness_over_scenarios(self) -> None:
        """Success exactly when no field is modified on both sides."""
        cases = [
            _mergeable_case(),
            _price_case(),
            _case({"p": 1, "n": "x"}, {"p": 1, "n": "y"}, {"p": 1, "n": "w"}),
            _case({"p": 2}, {"q": 1}, {"p": 1}),
            _case({}, {}, {}),
        ]
        strategy = AutoMergeStrategy()
        for case in cases:
            both_modified = set(case.local_changes.modified) & set(case.remote_changes.modified)
            assert strategy.resolve(case).success is (not both_modified)

    def test_does_not_mutate_case(self) -> None:
        case = _mergeable_case()
        before = case.model_dump()

        AutoMergeStrategy().resolve(case)

        assert case.model_dump() == before


# ---------------------------------------------------------------------------
# Whole-side strategies
# ---------------------------------------------------------------------------


class TestSideWinsStrategies:
    """Tests for LocalWinsStrategy and RemoteWinsStrategy."""

    def test_local_wins_keeps_local_data(self) -> None:
        result = LocalWinsStrategy().resolve(_price_case())

        assert result.success
        assert result.resolution.winner is Winner.LOCAL
        assert result.resolution.merged == {"price": 12}
        assert result.resolution.discarded["source"] == "remote"
        assert result.resolution.discarded["data"] == {"price": 15}
        assert result.resolution.conflicts[0]["field"] == "price"

    def test_remote_wins_keeps_remote_data(self) -> None:
        result = RemoteWinsStrategy().resolve(_price_case())

        assert result.resolution.winner is Winner.REMOTE
        assert result.resolution.merged == {"price": 15}
        assert result.resolution.discarded["source"] == "local"

    @pytest.mark.parametrize(
        "category",
        [
            ConflictCategory.STRUCTURAL,
            ConflictCategory.DELETE,
            ConflictCategory.ADD_DELETE,
            ConflictCategory.DELETE_ADD,
        ],
    )
    def test_blocked_categories(self, category) -> None:
        case = _price_case().model_copy(update={"category": category})
        for strategy in (LocalWinsStrategy(), RemoteWinsStrategy()):
            assert not strategy.can_auto_resolve(case)
            result = strategy.resolve(case)
            assert not result.success
            assert result.requires_manual
            assert category.value in result.error


# ---------------------------------------------------------------------------
# ManualMergeStrategy
# ---------------------------------------------------------------------------


class TestManualMergeStrategy:
    """Tests for ManualMergeStrategy."""

    def test_never_resolves(self) -> None:
        strategy = ManualMergeStrategy()
        case = _mergeable_case()

        assert not strategy.can_auto_resolve(case)
        result = strategy.resolve(case)
        assert not result.success
        assert result.requires_manual

    def test_manual_resolution_data(self) -> None:
        data = ManualMergeStrategy().resolve(_price_case()).manual_resolution_data

        assert data["requires_manual"] is True
        assert data["type_key"] == "blog_post"
        assert data["conflict_type"] == "field"
        assert data["local_data"] == {"price": 12}
        assert data["remote_data"] == {"price": 15}
        assert data["ancestor_data"] == {"price": 10}
        assert data["conflicting_fields"] == [
            {
                "field": "price",
                "type": "both_modified",
                "local_value": 12,
                "remote_value": 15,
                "ancestor_value": 10,
                "suggestion": "manual_required",
            }
        ]
        assert data["instructions"].startswith("Manual intervention required")

    def test_suggested_actions_offer_four_options(self) -> None:
        data = ManualMergeStrategy().resolve(_price_case()).manual_resolution_data
        action = data["suggested_actions"][0]

        assert [o["source"] for o in action["options"]] == ["local", "remote", "ancestor", "custom"]
        assert "merge_preview" not in action

    def test_text_fields_get_merge_preview(self) -> None:
        case = _case(
            {"body": "Intro\nmiddle\n"},
            {"body": "intro\nmiddle\nOutro\n"},
            {"body": "intro\nmiddle\n"},
        )
        data = ManualMergeStrategy().resolve(case).manual_resolution_data
        preview = data["suggested_actions"][0]["merge_preview"]

        assert preview["clean"]
        assert preview["merged"] == "Intro\nmiddle\nOutro\n"

    def test_unwrap_raises_conflict_requires_manual(self) -> None:
        result = ManualMergeStrategy().resolve(_price_case())

        with pytest.raises(ConflictRequiresManual) as exc_info:
            result.unwrap()
        assert exc_info.value.manual_resolution_data["strategy"] == MANUAL_MERGE


# ---------------------------------------------------------------------------
# ResolutionStrategyManager
# ---------------------------------------------------------------------------


class TestStrategySelection:
    """Tests for ResolutionStrategyManager.select_best_strategy()."""

    def test_auto_merge_preferred(self, manager) -> None:
        assert manager.select_best_strategy(_mergeable_case()) == AUTO_MERGE

    def test_empty_case_is_auto_merge(self, manager) -> None:
        assert ConflictCase().is_empty
        assert manager.select_best_strategy(ConflictCase()) == AUTO_MERGE

    def test_field_conflict_falls_back_to_local_wins(self, manager) -> None:
        assert manager.select_best_strategy(_price_case()) == LOCAL_WINS

    def test_structural_conflict_uses_default(self, manager) -> None:
        case = _price_case().model_copy(update={"category": ConflictCategory.STRUCTURAL})
        assert manager.select_best_strategy(case) == MANUAL_MERGE

    def test_configured_default_used(self) -> None:
        manager = create_manager(REMOTE_WINS)
        case = _price_case().model_copy(update={"category": ConflictCategory.DELETE})
        assert manager.select_best_strategy(case) == REMOTE_WINS


class TestResolutionStrategyManager:
    """Tests for registry management and resolve_conflict()."""

    def test_lists_builtin_strategies(self, manager) -> None:
        listing = {s["name"]: s for s in manager.get_available_strategies()}

        assert set(listing) == {LOCAL_WINS, REMOTE_WINS, MANUAL_MERGE, AUTO_MERGE}
        assert listing[MANUAL_MERGE]["can_auto_resolve"] is False
        assert listing[AUTO_MERGE]["can_auto_resolve"] is True
        assert listing[AUTO_MERGE]["description"]

    def test_unknown_default_raises(self) -> None:
        with pytest.raises(StrategyNotFoundError, match="Available strategies"):
            create_manager("bogus")

    def test_require_strategy_unknown(self, manager) -> None:
        with pytest.raises(StrategyNotFoundError) as exc_info:
            manager.require_strategy("nope")
        assert str(exc_info.value) == (
            "Strategy nope not found. Available strategies: "
            "['auto_merge', 'local_wins', 'manual_merge', 'remote_wins']"
        )

    def test_set_default_strategy(self, manager) -> None:
        manager.set_default_strategy(LOCAL_WINS)
        assert manager.default_strategy == LOCAL_WINS

    def test_register_custom_strategy(self, manager) -> None:
        manager.register_strategy(_ExplodingStrategy())
        assert manager.get_strategy("exploding") is not None

    def test_resolve_annotates_result(self, manager) -> None:
        result = manager.resolve_conflict(_mergeable_case())

        assert result.success
        assert result.resolution.strategy_used == AUTO_MERGE
        assert result.resolution.auto_resolved is True

    def test_resolve_with_named_strategy(self, manager) -> None:
        result = manager.resolve_conflict(_price_case(), REMOTE_WINS)

        assert result.resolution.merged == {"price": 15}
        assert result.resolution.strategy_used == REMOTE_WINS

    def test_resolve_unknown_strategy_does_not_raise(self, manager) -> None:
        result = manager.resolve_conflict(_price_case(), "nope")

        assert not result.success
        assert result.requires_manual
        assert "Strategy nope not found" in result.error

    def test_resolve_failing_strategy_does_not_raise(self, manager) -> None:
        manager.register_strategy(_ExplodingStrategy())

        result = manager.resolve_conflict(_price_case(), "exploding")

        assert result == ResolutionResult(
            success=False, error="Strategy exploding failed: kaboom", requires_manual=True
        )

    def test_manual_result_wire_shape(self, manager) -> None:
        response = manager.resolve_conflict(_price_case(), MANUAL_MERGE).to_response()

        assert response["success"] is False
        assert response["requires_manual"] is True
        assert "resolution" not in response
        assert response["manual_resolution_data"]["strategy"] == MANUAL_MERGE

    def test_custom_registry(self) -> None:
        manager = ResolutionStrategyManager(
            {AUTO_MERGE: AutoMergeStrategy(), MANUAL_MERGE: ManualMergeStrategy()}
        )
        assert manager.select_best_strategy(_price_case()) == MANUAL_MERGE
