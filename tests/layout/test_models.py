"""Tests for layout/models.py.

Covers geometry helpers, snapshot validation and the JSON round trip,
including the camelCase keys produced by the browser extractor.
"""

import json
import math

import pytest

from layout_sentinel.layout.exceptions import InvalidSnapshotError
from layout_sentinel.layout.models import (
    ComparisonResult,
    ComparisonSummary,
    DifferenceType,
    LayoutSnapshot,
    PropertyChange,
    Rect,
    SemanticGroup,
    SemanticType,
    VisualDifference,
    VisualNode,
)


class TestRect:
    """Tests for Rect."""

    def test_center_and_area(self):
        """Test center point and area."""
        rect = Rect(x=100, y=100, width=200, height=100)
        assert rect.center == (200, 150)
        assert rect.area == 20000

    def test_union(self):
        """Test the enclosing rectangle of two rects."""
        a = Rect(0, 0, 100, 100)
        b = Rect(50, 150, 100, 50)
        assert a.union(b) == Rect(0, 0, 150, 200)

    def test_distance_to(self):
        """Test center to center distance."""
        a = Rect(0, 0, 100, 100)
        b = Rect(100, 100, 100, 100)
        assert a.distance_to(b) == pytest.approx(math.sqrt(100**2 + 100**2))

    def test_negative_size_rejected(self):
        """Test that negative sizes are an input error."""
        with pytest.raises(InvalidSnapshotError, match="width and height"):
            Rect(0, 0, -1, 10)

    def test_from_dict_missing_keys(self):
        """Test that from_dict names the missing fields."""
        with pytest.raises(InvalidSnapshotError, match="height"):
            Rect.from_dict({"x": 0, "y": 0, "width": 10})


class TestVisualNode:
    """Tests for VisualNode."""

    def test_from_dict_accepts_extractor_keys(self):
        """Test camelCase keys and top-level accessibility fields."""
        node = VisualNode.from_dict({
            "tagName": "BUTTON",
            "className": "btn primary",
            "id": "buy",
            "rect": {"x": 10, "y": 20, "width": 100, "height": 40},
            "text": "Buy",
            "role": "button",
            "ariaLabel": "Buy now",
            "isInteractive": True,
            "computedStyle": {"fontSize": "16px"},
        })
        assert node.tag_name == "button"
        assert node.classes == ["btn", "primary"]
        assert node.role == "button"
        assert node.accessibility.aria_label == "Buy now"
        assert node.is_interactive is True
        assert node.computed_style == {"fontSize": "16px"}

    def test_text_truncated(self):
        """Test that text is cut to 200 characters on load."""
        node = VisualNode.from_dict({
            "tag_name": "p",
            "rect": {"x": 0, "y": 0, "width": 10, "height": 10},
            "text": "x" * 500,
        })
        assert len(node.text) == 200

    def test_missing_rect_rejected(self):
        """Test that an element without geometry is rejected."""
        with pytest.raises(InvalidSnapshotError, match="rect"):
            VisualNode.from_dict({"tag_name": "div"})

    def test_nested_round_trip(self, node):
        """Test that children survive to_dict/from_dict."""
        tree = node("ul", children=[node("li", text="one"), node("li", y=50, text="two")])
        restored = VisualNode.from_dict(tree.to_dict())
        assert restored == tree
        assert [child.text for child in restored.children] == ["one", "two"]

    def test_iter_tree_document_order(self, node):
        """Test depth-first document order."""
        tree = node("div", children=[node("h1", children=[node("span")]), node("p")])
        assert [n.tag_name for n in tree.iter_tree()] == ["div", "h1", "span", "p"]

    def test_deep_tree_does_not_recurse(self, node):
        """Test that very deep trees serialise without hitting the recursion limit."""
        tree = node("span")
        for _ in range(3000):
            tree = node("div", children=[tree])
        data = tree.to_dict()
        restored = VisualNode.from_dict(data)
        assert sum(1 for _ in restored.iter_tree()) == 3001


class TestSemanticGroup:
    """Tests for SemanticGroup."""

    def test_absorb_grows_bounds(self, group, node):
        """Test that absorbing a node extends the bounds to enclose it."""
        g = group(SemanticType.SECTION, 0, 0, 100, 100)
        g.absorb(node("p", 50, 150, 200, 20))
        assert g.bounds == Rect(0, 0, 250, 170)
        assert len(g.elements) == 1

    def test_unknown_type_rejected(self):
        """Test that unknown group types are an input error."""
        with pytest.raises(InvalidSnapshotError, match="unknown semantic group type"):
            SemanticGroup.from_dict({"type": "banner", "bounds": {"x": 0, "y": 0, "width": 1, "height": 1}})

    @pytest.mark.parametrize(
        "entry,message",
        [
            ({"rect": {"x": 0, "y": 0, "width": 10, "height": 10}}, "tag_name"),
            ("div", "must be objects"),
        ],
    )
    def test_malformed_group_elements_rejected(self, entry, message):
        """Test that bad member entries fail instead of being dropped."""
        data = {"type": "section", "bounds": {"x": 0, "y": 0, "width": 10, "height": 10}, "elements": [entry]}
        with pytest.raises(InvalidSnapshotError, match=message):
            SemanticGroup.from_dict(data)

    def test_group_elements_loaded(self):
        data = {
            "type": "section",
            "bounds": {"x": 0, "y": 0, "width": 10, "height": 10},
            "elements": [{"tagName": "p", "rect": {"x": 0, "y": 0, "width": 10, "height": 10}}],
        }
        [element] = SemanticGroup.from_dict(data).elements
        assert element.tag_name == "p"

    def test_iter_groups(self, group):
        """Test that nested groups are yielded depth first."""
        root = group(id="a", children=[group(id="b", children=[group(id="c")]), group(id="d")])
        assert [g.id for g in root.iter_groups()] == ["a", "b", "c", "d"]


class TestLayoutSnapshot:
    """Tests for LayoutSnapshot."""

    def test_viewport_required(self):
        """Test that a missing viewport is rejected."""
        with pytest.raises(InvalidSnapshotError, match="viewport"):
            LayoutSnapshot.from_dict({"url": "https://example.com", "elements": []})

    def test_non_positive_viewport_rejected(self):
        """Test that a zero-sized viewport is rejected."""
        with pytest.raises(InvalidSnapshotError, match="positive viewport"):
            LayoutSnapshot(url="u", viewport={"width": 0, "height": 720})

    def test_json_round_trip(self, page_snapshot):
        """Test that a snapshot survives to_json/from_json."""
        restored = LayoutSnapshot.from_json(page_snapshot.to_json())
        assert restored.elements == page_snapshot.elements
        assert [g.to_dict() for g in restored.semantic_groups] == [
            g.to_dict() for g in page_snapshot.semantic_groups
        ]
        assert restored.timestamp == page_snapshot.timestamp

    def test_invalid_json(self):
        """Test that malformed JSON surfaces as InvalidSnapshotError."""
        with pytest.raises(InvalidSnapshotError, match="not valid JSON"):
            LayoutSnapshot.from_json("{not json")

    def test_camel_case_groups(self):
        """Test that semanticGroups is accepted."""
        data = {
            "url": "https://example.com",
            "viewport": {"width": 1280, "height": 720},
            "elements": [],
            "semanticGroups": [
                {"type": "navigation", "bounds": {"x": 0, "y": 0, "width": 1280, "height": 60}}
            ],
        }
        snapshot = LayoutSnapshot.from_dict(data)
        assert snapshot.semantic_groups[0].type == SemanticType.NAVIGATION

    def test_iter_groups_includes_nested(self, page_snapshot):
        """Test that iter_groups walks into children."""
        assert len(list(page_snapshot.iter_groups())) == 4


class TestComparisonRecords:
    """Tests for comparison output records."""

    def test_summary_from_differences(self):
        """Test counting differences by type."""
        differences = [
            VisualDifference(type=DifferenceType.ADDED, path="element[0]"),
            VisualDifference(type=DifferenceType.ADDED, path="element[1]"),
            VisualDifference(type=DifferenceType.MOVED, path="element[2]"),
        ]
        summary = ComparisonSummary.from_differences(differences)
        assert summary.to_dict() == {"added": 2, "removed": 0, "modified": 0, "moved": 1}
        assert summary.total == 3

    def test_change_for(self):
        """Test looking up a property change."""
        difference = VisualDifference(
            type=DifferenceType.MODIFIED,
            path="element[0]",
            changes=[PropertyChange("height", 500, 600)],
        )
        assert difference.change_for("height") == PropertyChange("height", 500, 600)
        assert difference.change_for("width") is None

    def test_result_is_json_serialisable(self, node):
        """Test that results serialise to plain JSON."""
        result = ComparisonResult(
            similarity=90.0,
            differences=[VisualDifference(type=DifferenceType.ADDED, path="element[0]", element=node("p"))],
        )
        data = json.loads(result.to_json())
        assert data["identical"] is False
        assert data["differences"][0]["element"]["tag_name"] == "p"
