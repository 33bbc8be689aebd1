"""Tests for layout/grouping.py."""

import pytest

from layout_sentinel.layout.grouping import GroupBuilder, flatten_nodes, union_bounds
from layout_sentinel.layout.models import Rect, SemanticType


@pytest.fixture
def builder():
    return GroupBuilder()


class TestGroupType:
    """Tests for grouping kinds."""

    def test_section_tag_and_region_role(self, builder, node):
        assert builder.group_type(node("section"), SemanticType.CONTENT) == SemanticType.SECTION
        assert builder.group_type(node("div", role="region"), SemanticType.STRUCTURAL) == SemanticType.SECTION

    def test_fieldset_is_group(self, builder, node):
        assert builder.group_type(node("fieldset"), SemanticType.STRUCTURAL) == SemanticType.GROUP

    def test_container_tags(self, builder, node):
        """Test header/footer/aside and busy divs become containers."""
        assert builder.group_type(node("footer"), SemanticType.STRUCTURAL) == SemanticType.CONTAINER
        busy = node("div", children=[node("span"), node("span"), node("span")])
        assert builder.group_type(busy, SemanticType.STRUCTURAL) == SemanticType.CONTAINER
        assert builder.group_type(node("div"), SemanticType.STRUCTURAL) == SemanticType.STRUCTURAL

    def test_semantic_type_kept_otherwise(self, builder, node):
        assert builder.group_type(node("h1"), SemanticType.HEADING) == SemanticType.HEADING


class TestBuild:
    """Tests for hierarchical group building."""

    def test_low_importance_node_absorbed_into_ancestor(self, builder, node):
        """Test that a minor node grows its ancestor group instead of opening one."""
        root = node("section", 0, 0, 1280, 500, children=[node("div", 10, 600, 100, 50)])
        groups = builder.build([root])
        assert len(groups) == 1
        section = groups[0]
        assert section.type == SemanticType.SECTION
        assert section.children == []
        assert [element.tag_name for element in section.elements] == ["section", "div"]
        assert section.bounds == Rect(0, 0, 1280, 650)

    def test_nested_groups_have_depth(self, builder, node):
        """Test that nested groups sit under their parent with increasing depth."""
        root = node("section", children=[node("nav", y=10, children=[node("h2", y=20)])])
        groups = builder.build([root])
        assert len(groups) == 1
        nav = groups[0].children[0]
        assert nav.type == SemanticType.NAVIGATION
        assert nav.depth == 1
        assert nav.children[0].type == SemanticType.HEADING
        assert nav.children[0].depth == 2

    def test_invisible_content_dropped_with_subtree(self, builder, node):
        """Test that near-invisible content disappears together with its children."""
        hidden = node("p", 0, 100, 10, 10, text="hidden", is_visible=False, children=[node("h1")])
        root = node("section", children=[hidden])
        groups = builder.build([root])
        assert groups[0].children == []
        assert [element.tag_name for element in groups[0].elements] == ["section"]

    def test_top_level_sorted_by_importance(self, builder, node):
        """Test the descending importance order of top-level groups."""
        footer = node("footer", 0, 640, 1280, 80)
        nav = node("nav", 0, 0, 1280, 60)
        groups = builder.build([footer, nav])
        assert [group.type for group in groups] == [SemanticType.NAVIGATION, SemanticType.CONTAINER]
        assert groups[0].importance >= groups[1].importance
        # Ids follow traversal order, not sort order
        assert [group.id for group in groups] == ["group-1", "group-0"]

    def test_depth_cap_flattens_and_warns(self, node, captured_logs):
        """Test that groups beyond max_depth are absorbed by the last allowed ancestor."""
        builder = GroupBuilder(max_depth=1)
        root = node("section", children=[node("section", children=[node("section")])])
        groups = builder.build([root])
        assert len(groups) == 1
        assert groups[0].children == []
        assert len(groups[0].elements) == 3
        warnings = [log for log in captured_logs if log["log_level"] == "warning"]
        assert warnings[0]["event"] == "Group nesting depth cap reached"
        assert warnings[0]["flattened_nodes"] == 2

    @pytest.mark.slow
    def test_pathologically_deep_tree(self, node):
        """Test that a very deep tree builds without recursion errors."""
        tree = node("span")
        for _ in range(5000):
            tree = node("section", children=[tree])
        groups = GroupBuilder(max_depth=64).build([tree])
        deepest = max(group.depth for group in groups[0].iter_groups())
        assert deepest <= 64


class TestCluster:
    """Tests for proximity clustering."""

    def test_single_link_chain(self, builder, node):
        """Test that clusters chain beyond the distance from the seed."""
        buttons = [node("button", x, 0, 60, 30) for x in (0, 80, 160)]
        image = node("img", 90, 0, 50, 50)
        clusters = builder.cluster(buttons + [image])
        assert len(clusters) == 2
        assert clusters[0].type == SemanticType.INTERACTIVE
        assert len(clusters[0].nodes) == 3
        assert clusters[0].bounds == Rect(0, 0, 220, 30)
        assert clusters[1].type == SemanticType.MEDIA
        assert [c.id for c in clusters] == ["node-group-0", "node-group-1"]

    def test_distant_nodes_split(self, builder, node):
        """Test that far apart same-type nodes form separate clusters."""
        clusters = builder.cluster([node("button", 0, 0), node("button", 500, 500)])
        assert len(clusters) == 2


class TestBuildSnapshot:
    """Tests for snapshot assembly."""

    def test_snapshot_statistics(self, builder, node):
        """Test flattened elements and statistics."""
        tree = node(
            "main",
            0,
            0,
            1280,
            700,
            children=[node("nav", 0, 0, 1280, 60, role="navigation"), node("button", 10, 100, 80, 30, is_interactive=True)],
        )
        snapshot = builder.build_snapshot("https://example.com", {"width": 1280, "height": 720}, [tree])
        assert len(snapshot.elements) == 3
        assert all(element.children == () for element in snapshot.elements)
        stats = snapshot.statistics
        assert stats["total_elements"] == 3
        assert stats["by_type"]["navigation"] == 1
        assert stats["by_role"] == {"navigation": 1}
        assert stats["interactive_elements"] == 1
        assert stats["total_groups"] == sum(1 for _ in snapshot.iter_groups())

    def test_from_settings(self, settings):
        builder = GroupBuilder.from_settings(settings)
        assert builder.max_depth == 64
        assert builder.cluster_distance == 100


class TestHelpers:
    """Tests for module helpers."""

    def test_flatten_nodes(self, node):
        tree = node("ul", children=[node("li"), node("li")])
        flat = flatten_nodes([tree])
        assert [n.tag_name for n in flat] == ["ul", "li", "li"]
        assert flat[0].children == ()

    def test_union_bounds(self):
        assert union_bounds([]) is None
        assert union_bounds([Rect(0, 0, 10, 10), Rect(20, 20, 10, 10)]) == Rect(0, 0, 30, 30)
