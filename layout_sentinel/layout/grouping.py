"""Group building: turns classified visual nodes into comparable structure.

Key Features:
- Hierarchical semantic groups built with an explicit stack (no recursion)
- Depth guard for pathologically nested pages
- Proximity clustering of same-type nodes (single-link, chained)
- Snapshot assembly with per-type and per-role statistics
"""

import dataclasses
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, Sequence

import structlog

from ..config import Settings
from .classifier import SemanticClassifier, derive_label
from .models import LayoutSnapshot, NodeGroup, Rect, SemanticGroup, SemanticType, VisualNode

logger = structlog.get_logger()

GROUPING_TYPES = frozenset({
    SemanticType.SECTION,
    SemanticType.NAVIGATION,
    SemanticType.CONTAINER,
    SemanticType.GROUP,
})
CONTAINER_TAGS = frozenset({"header", "footer", "aside"})
MIN_CHILDREN_FOR_GROUP = 3
GROUP_IMPORTANCE_THRESHOLD = 30
MIN_CONTENT_IMPORTANCE = 10


class GroupBuilder:
    """Builds hierarchical semantic groups from a node tree.

    A node opens its own group when its type is a grouping kind, its
    importance exceeds 30, or it has at least three children. Any other node
    is absorbed by the nearest ancestor group, growing that group's bounds.
    Top-level groups are stable-sorted by importance, highest first.
    """

    def __init__(
        self,
        classifier: SemanticClassifier | None = None,
        max_depth: int = 64,
        cluster_distance: float = 100.0,
    ):
        self.classifier = classifier or SemanticClassifier()
        self.max_depth = max_depth
        self.cluster_distance = cluster_distance

    @classmethod
    def from_settings(cls, settings: Settings) -> "GroupBuilder":
        return cls(
            classifier=SemanticClassifier.from_settings(settings),
            max_depth=settings.max_group_depth,
            cluster_distance=settings.cluster_distance,
        )

    def group_type(self, node: VisualNode, semantic_type: SemanticType) -> SemanticType:
        """Grouping kind of a node, falling back to its semantic type."""
        tag = node.tag_name.lower()
        role = (node.role or "").lower()
        if tag == "section" or role == "region":
            return SemanticType.SECTION
        if tag == "fieldset" or role == "group":
            return SemanticType.GROUP
        if semantic_type == SemanticType.STRUCTURAL and (
            tag in CONTAINER_TAGS
            or (tag == "div" and len(node.children) >= MIN_CHILDREN_FOR_GROUP)
        ):
            return SemanticType.CONTAINER
        return semantic_type

    def build(
        self,
        roots: Sequence[VisualNode],
        viewport: dict[str, int] | None = None,
    ) -> list[SemanticGroup]:
        top_level: list[SemanticGroup] = []
        counter = 0
        depth_capped = 0

        stack: list[tuple[VisualNode, SemanticGroup | None, int]] = [
            (root, None, 0) for root in reversed(roots)
        ]
        while stack:
            node, parent, depth = stack.pop()
            classification = self.classifier.classify(node, viewport)
            group_type = self.group_type(node, classification.semantic_type)

            # Near-invisible content is dropped together with its subtree
            if (
                group_type == SemanticType.CONTENT
                and classification.importance < MIN_CONTENT_IMPORTANCE
            ):
                continue

            opens_group = (
                group_type in GROUPING_TYPES
                or classification.importance > GROUP_IMPORTANCE_THRESHOLD
                or len(node.children) >= MIN_CHILDREN_FOR_GROUP
            )
            if opens_group and depth >= self.max_depth and parent is not None:
                opens_group = False
                depth_capped += 1

            if opens_group:
                group = SemanticGroup(
                    id=f"group-{counter}",
                    type=group_type,
                    bounds=node.rect,
                    importance=classification.importance,
                    depth=parent.depth + 1 if parent is not None else 0,
                    label=derive_label(node),
                    elements=[node],
                )
                counter += 1
                if parent is not None:
                    parent.children.append(group)
                else:
                    top_level.append(group)
                owner = group
            else:
                if parent is not None:
                    parent.absorb(node)
                owner = parent

            for child in reversed(node.children):
                stack.append((child, owner, depth + 1))

        if depth_capped:
            logger.warning(
                "Group nesting depth cap reached",
                max_depth=self.max_depth,
                flattened_nodes=depth_capped,
            )

        top_level.sort(key=lambda g: g.importance, reverse=True)
        logger.debug("Semantic groups built", groups=counter, top_level=len(top_level))
        return top_level

    def cluster(
        self,
        nodes: Sequence[VisualNode],
        viewport: dict[str, int] | None = None,
    ) -> list[NodeGroup]:
        """Single-link proximity clustering of same-type nodes.

        A node joins a cluster when its top-left corner lies closer than
        ``cluster_distance`` to any member already in it, so clusters can
        chain well beyond that distance from the seed.
        """
        classifications = [self.classifier.classify(node, viewport) for node in nodes]
        clustered = [False] * len(nodes)
        clusters: list[NodeGroup] = []

        for seed in range(len(nodes)):
            if clustered[seed]:
                continue
            clustered[seed] = True
            seed_type = classifications[seed].semantic_type
            members = [seed]
            frontier = [seed]
            while frontier:
                current = nodes[frontier.pop()]
                for candidate in range(len(nodes)):
                    if clustered[candidate] or classifications[candidate].semantic_type != seed_type:
                        continue
                    other = nodes[candidate]
                    dx = other.rect.x - current.rect.x
                    dy = other.rect.y - current.rect.y
                    if (dx * dx + dy * dy) ** 0.5 < self.cluster_distance:
                        clustered[candidate] = True
                        members.append(candidate)
                        frontier.append(candidate)

            members.sort()
            bounds = union_bounds(nodes[index].rect for index in members)
            clusters.append(
                NodeGroup(
                    id=f"node-group-{len(clusters)}",
                    type=seed_type,
                    bounds=bounds,
                    nodes=tuple(nodes[index] for index in members),
                    importance=max(classifications[index].importance for index in members),
                )
            )

        return clusters

    def build_snapshot(
        self,
        url: str,
        viewport: dict[str, int],
        roots: Sequence[VisualNode],
        timestamp: str | None = None,
    ) -> LayoutSnapshot:
        """Assemble an immutable snapshot from extracted node trees."""
        elements = tuple(flatten_nodes(roots))
        groups = self.build(roots, viewport)
        statistics = self.statistics(elements, groups)

        logger.info(
            "Snapshot built",
            url=url,
            elements=len(elements),
            groups=statistics["total_groups"],
        )
        return LayoutSnapshot(
            url=url,
            viewport=dict(viewport),
            elements=elements,
            semantic_groups=tuple(groups),
            statistics=statistics,
            timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        )

    def statistics(
        self,
        elements: Iterable[VisualNode],
        groups: Sequence[SemanticGroup],
    ) -> dict:
        by_type: Counter[str] = Counter()
        by_role: Counter[str] = Counter()
        total = 0
        interactive = 0
        for element in elements:
            total += 1
            by_type[self.classifier.semantic_type(element).value] += 1
            if element.role:
                by_role[element.role] += 1
            if element.is_interactive:
                interactive += 1

        return {
            "total_elements": total,
            "by_type": dict(by_type),
            "by_role": dict(by_role),
            "interactive_elements": interactive,
            "total_groups": sum(1 for group in groups for _ in group.iter_groups()),
            "top_level_groups": len(groups),
        }


def flatten_nodes(roots: Iterable[VisualNode]) -> list[VisualNode]:
    """Document-order flat list of nodes with their children stripped."""
    flat: list[VisualNode] = []
    for root in roots:
        for node in root.iter_tree():
            flat.append(dataclasses.replace(node, children=()) if node.children else node)
    return flat


def union_bounds(rects: Iterable[Rect]) -> Rect | None:
    result: Rect | None = None
    for rect in rects:
        result = rect if result is None else result.union(rect)
    return result
