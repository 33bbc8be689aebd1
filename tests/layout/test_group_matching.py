"""Tests for layout/group_matching.py."""

import pytest

from layout_sentinel.layout.group_matching import (
    FlatGroupMatcher,
    flatten_groups,
    group_similarity,
    is_same_layout_structure,
    layout_fingerprint,
    layout_similarity,
    rect_distance,
)
from layout_sentinel.layout.models import Rect, SemanticType


class TestRectDistance:
    """Tests for the weighted rect distance."""

    def test_identical_is_zero(self):
        rect = Rect(100, 100, 300, 200)
        assert rect_distance(rect, rect) == 0.0

    def test_grows_with_offset(self):
        rect = Rect(100, 100, 300, 200)
        near = rect_distance(rect, Rect(110, 100, 300, 200))
        far = rect_distance(rect, Rect(900, 700, 300, 200))
        assert 0 < near < far

    def test_aspect_ratio_component(self):
        """Test that a reshaped rect with the same center is not identical."""
        assert rect_distance(Rect(0, 0, 200, 100), Rect(50, -50, 100, 200)) > 0


class TestGroupSimilarity:
    """Tests for fingerprint group similarity."""

    def test_different_types_never_match(self, group):
        a = group(SemanticType.SECTION)
        b = group(SemanticType.NAVIGATION)
        assert group_similarity(a, b) == 0.0

    def test_identical_groups(self, group, node):
        """Test the component sum for identical childless groups with one element."""
        a = group(elements=[node("section")])
        assert group_similarity(a, a) == pytest.approx(0.8)

    def test_importance_gap_lowers_score(self, group):
        a = group(importance=90)
        b = group(importance=40)
        assert group_similarity(a, b) < group_similarity(a, a)


class TestLayoutSimilarity:
    """Tests for whole-layout similarity from group fingerprints."""

    def test_both_empty(self):
        assert layout_similarity([], []).similarity == 1.0

    def test_identical_layout(self, page_snapshot):
        groups = page_snapshot.semantic_groups
        result = layout_similarity(groups, groups)
        assert len(result.matched_groups) == 3
        assert result.similarity == pytest.approx(0.5 + (0.6 + 0.8 + 0.6) / 3 * 0.5)
        assert result.position_distance == pytest.approx(0.0)
        assert is_same_layout_structure(groups, groups)

    def test_nothing_left(self, page_snapshot):
        result = layout_similarity(page_snapshot.semantic_groups, [])
        assert result.similarity == 0.0
        assert result.matched_groups == []
        assert not is_same_layout_structure(page_snapshot.semantic_groups, [])

    def test_to_dict(self, page_snapshot):
        groups = page_snapshot.semantic_groups
        data = layout_similarity(groups, groups).to_dict()
        assert set(data["metrics"]) == {
            "position_distance",
            "size_distance",
            "aspect_ratio_distance",
            "euclidean_distance",
        }
        assert data["matched_groups"][0]["baseline"] == "group-1"


class TestLayoutFingerprint:
    """Tests for the coarse layout signature."""

    def test_grid_signature(self, group):
        nav = group(SemanticType.NAVIGATION, 0, 80, 1280, 50)
        assert layout_fingerprint([nav]) == "navigation:0,0,12,0:0"

    def test_order_independent(self, page_snapshot):
        groups = list(page_snapshot.semantic_groups)
        assert layout_fingerprint(groups) == layout_fingerprint(list(reversed(groups)))

    def test_small_shift_stays_in_cell(self, group):
        assert layout_fingerprint([group(x=10, y=10)]) == layout_fingerprint([group(x=40, y=60)])


class TestFlattenGroups:
    """Tests for group tree flattening."""

    def test_preorder_with_paths(self, page_snapshot):
        flat = flatten_groups(page_snapshot.semantic_groups)
        assert [g.type for g in flat] == ["navigation", "section", "content", "container"]
        content = flat[2]
        assert content.depth == 1
        assert content.path == ["section:section.hero"]
        assert flat[0].id == "navigation_0_80"


class TestFlatGroupMatcher:
    """Tests for flat nearest-neighbour matching."""

    def test_identical_trees(self, page_snapshot):
        groups = page_snapshot.semantic_groups
        result = FlatGroupMatcher().match(groups, groups)
        assert len(result.matches) == 4
        assert result.total_similarity == pytest.approx(100.0)
        assert result.unmatched_baseline == result.unmatched_current == []

    def test_both_empty(self):
        assert FlatGroupMatcher().match([], []).total_similarity == 100.0

    def test_unmatched_penalty(self, group):
        """Test the 50 point penalty scaled by the unmatched share."""
        nav = group(SemanticType.NAVIGATION, 0, 80, 1280, 50, importance=80)
        footer = group(SemanticType.CONTAINER, 0, 640, 1280, 80, importance=25)
        result = FlatGroupMatcher().match([nav], [nav, footer])
        assert len(result.matches) == 1
        assert [g.type for g in result.unmatched_current] == ["container"]
        assert result.total_similarity == pytest.approx(75.0)
        assert result.statistics["unmatched_groups"] == 1

    def test_type_change_costs_distance(self, group):
        matcher = FlatGroupMatcher()
        [a] = flatten_groups([group(SemanticType.SECTION)])
        [b] = flatten_groups([group(SemanticType.CONTAINER)])
        assert matcher.distance(a, b) == pytest.approx(0.3)
