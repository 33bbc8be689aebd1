"""Layout data models for structural visual regression checks.

This module contains the dataclasses and enums shared by the classifier,
group builder, matcher, comparator and flakiness detector: raw visual nodes,
semantic groups, snapshots, and the comparison records derived from them.

All snapshot-level structures are value objects. Snapshots are frozen once
built; comparison outputs are created fresh for every call and serialise to
plain JSON through ``to_dict``.
"""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator

from .exceptions import InvalidSnapshotError

MAX_TEXT_LENGTH = 200


def _pick(data: dict[str, Any], snake: str, camel: str | None = None, default: Any = None) -> Any:
    """Read a key in snake_case, falling back to the extractor's camelCase."""
    if snake in data:
        return data[snake]
    if camel is not None and camel in data:
        return data[camel]
    return default


class SemanticType(str, Enum):
    """Semantic classification of a visual node or group."""

    HEADING = "heading"
    NAVIGATION = "navigation"
    CONTENT = "content"
    INTERACTIVE = "interactive"
    MEDIA = "media"
    LIST = "list"
    TABLE = "table"
    FORM = "form"
    STRUCTURAL = "structural"
    # Grouping kinds assigned by the group builder
    SECTION = "section"
    CONTAINER = "container"
    GROUP = "group"


class MatchType(str, Enum):
    """Outcome of matching one element across two snapshots."""

    EXACT = "exact"
    MOVED = "moved"
    CHANGED = "changed"
    ADDED = "added"
    REMOVED = "removed"


class DifferenceType(str, Enum):
    """Kinds of differences reported by the comparator."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    MOVED = "moved"


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in viewport pixels, top-left origin."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise InvalidSnapshotError(
                f"rect width and height must be >= 0, got {self.width}x{self.height}"
            )

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        """Get center point."""
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        """Get area in pixels."""
        return self.width * self.height

    def union(self, other: "Rect") -> "Rect":
        """Smallest rectangle enclosing both rectangles."""
        x = min(self.x, other.x)
        y = min(self.y, other.y)
        return Rect(
            x=x,
            y=y,
            width=max(self.right, other.right) - x,
            height=max(self.bottom, other.bottom) - y,
        )

    def distance_to(self, other: "Rect") -> float:
        """Calculate distance between centers of two rects."""
        cx1, cy1 = self.center
        cx2, cy2 = other.center
        return math.hypot(cx2 - cx1, cy2 - cy1)

    def to_dict(self) -> dict[str, float]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Rect":
        missing = [key for key in ("x", "y", "width", "height") if key not in data]
        if missing:
            raise InvalidSnapshotError(f"rect is missing required fields: {', '.join(missing)}")
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


@dataclass(frozen=True)
class AccessibilityInfo:
    """Accessibility attributes of a rendered element."""

    role: str | None = None
    aria_label: str | None = None
    aria_attributes: dict[str, str] = field(default_factory=dict)
    focusable: bool = False
    tab_index: int | None = None
    state: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "aria_label": self.aria_label,
            "aria_attributes": dict(self.aria_attributes),
            "focusable": self.focusable,
            "tab_index": self.tab_index,
            "state": dict(self.state),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccessibilityInfo":
        tab_index = _pick(data, "tab_index", "tabIndex")
        return cls(
            role=data.get("role"),
            aria_label=_pick(data, "aria_label", "ariaLabel"),
            aria_attributes=dict(_pick(data, "aria_attributes", "ariaAttributes", {}) or {}),
            focusable=bool(data.get("focusable", False)),
            tab_index=int(tab_index) if tab_index is not None else None,
            state=dict(data.get("state") or {}),
        )


@dataclass(frozen=True)
class VisualNode:
    """One rendered element of a page, as produced by the extractor."""

    tag_name: str
    rect: Rect
    class_name: str = ""
    id: str = ""
    text: str | None = None
    accessibility: AccessibilityInfo = field(default_factory=AccessibilityInfo)
    is_interactive: bool = False
    is_visible: bool = True
    opacity: float = 1.0
    is_scrollable: bool = False
    computed_style: dict[str, str] = field(default_factory=dict)
    children: tuple["VisualNode", ...] = ()

    @property
    def classes(self) -> list[str]:
        return [c for c in self.class_name.split() if c]

    @property
    def role(self) -> str | None:
        return self.accessibility.role

    def iter_tree(self) -> Iterator["VisualNode"]:
        """Yield this node and its descendants in document order."""
        stack: list[VisualNode] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def _shallow_dict(self) -> dict[str, Any]:
        return {
            "tag_name": self.tag_name,
            "class_name": self.class_name,
            "id": self.id,
            "rect": self.rect.to_dict(),
            "text": self.text,
            "accessibility": self.accessibility.to_dict(),
            "is_interactive": self.is_interactive,
            "is_visible": self.is_visible,
            "opacity": self.opacity,
            "is_scrollable": self.is_scrollable,
            "computed_style": dict(self.computed_style),
        }

    def to_dict(self, include_children: bool = True) -> dict[str, Any]:
        if not include_children:
            return self._shallow_dict()
        root = self._shallow_dict()
        stack: list[tuple[VisualNode, dict[str, Any]]] = [(self, root)]
        while stack:
            node, out = stack.pop()
            out["children"] = []
            for child in node.children:
                child_out = child._shallow_dict()
                out["children"].append(child_out)
                stack.append((child, child_out))
        return root

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VisualNode":
        # Post-order build: frozen nodes need their children first
        built: dict[int, VisualNode] = {}
        pending: list[tuple[dict[str, Any], bool]] = [(data, False)]
        while pending:
            raw, expanded = pending.pop()
            children = raw.get("children") or []
            if not expanded:
                pending.append((raw, True))
                pending.extend((child, False) for child in children)
                continue
            built[id(raw)] = cls._from_dict_shallow(
                raw, tuple(built.pop(id(child)) for child in children)
            )
        return built[id(data)]

    @classmethod
    def _from_dict_shallow(cls, data: dict[str, Any], children: tuple["VisualNode", ...]) -> "VisualNode":
        tag_name = _pick(data, "tag_name", "tagName")
        if not tag_name:
            raise InvalidSnapshotError("element is missing required field 'tag_name'")
        if "rect" not in data:
            raise InvalidSnapshotError(f"element <{tag_name}> is missing required field 'rect'")

        accessibility_data = data.get("accessibility")
        if accessibility_data is None:
            # The extractor puts accessibility fields at the top level
            accessibility_data = data
        text = data.get("text")
        if text is not None:
            text = str(text)[:MAX_TEXT_LENGTH]

        return cls(
            tag_name=str(tag_name).lower(),
            rect=Rect.from_dict(data["rect"]),
            class_name=_pick(data, "class_name", "className", "") or "",
            id=data.get("id") or "",
            text=text,
            accessibility=AccessibilityInfo.from_dict(accessibility_data),
            is_interactive=bool(_pick(data, "is_interactive", "isInteractive", False)),
            is_visible=bool(_pick(data, "is_visible", "isVisible", True)),
            opacity=float(data.get("opacity", 1.0)),
            is_scrollable=bool(_pick(data, "is_scrollable", "isScrollable", False)),
            computed_style=dict(_pick(data, "computed_style", "computedStyle", {}) or {}),
            children=children,
        )


@dataclass
class SemanticGroup:
    """A classified, bounded cluster of elements forming one UI region.

    ``id`` is local to the snapshot that produced it and is never used to
    pair groups across snapshots.

    Groups are filled in place by ``GroupBuilder`` and treated as read-only
    once a ``LayoutSnapshot`` holds them.
    """

    id: str
    type: SemanticType
    bounds: Rect
    importance: float
    depth: int = 0
    label: str = ""
    elements: list[VisualNode] = field(default_factory=list)
    children: list["SemanticGroup"] = field(default_factory=list)

    def absorb(self, node: VisualNode) -> None:
        """Add a node to this group and grow the bounds to enclose it."""
        self.elements.append(node)
        self.bounds = self.bounds.union(node.rect)

    def iter_groups(self) -> Iterator["SemanticGroup"]:
        """Yield this group and all nested groups, depth first."""
        stack: list[SemanticGroup] = [self]
        while stack:
            group = stack.pop()
            yield group
            stack.extend(reversed(group.children))

    def to_dict(self) -> dict[str, Any]:
        # Children are serialised bottom-up so deep trees need no recursion
        pending: list[tuple[SemanticGroup, bool]] = [(self, False)]
        built: dict[int, dict[str, Any]] = {}
        while pending:
            group, expanded = pending.pop()
            if not expanded:
                pending.append((group, True))
                pending.extend((child, False) for child in group.children)
                continue
            built[id(group)] = {
                "id": group.id,
                "type": group.type.value,
                "bounds": group.bounds.to_dict(),
                "importance": group.importance,
                "depth": group.depth,
                "label": group.label,
                "elements": [node.to_dict(include_children=False) for node in group.elements],
                "children": [built.pop(id(child)) for child in group.children],
            }
        return built[id(self)]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SemanticGroup":
        root = cls._from_dict_shallow(data)
        stack: list[tuple[SemanticGroup, dict[str, Any]]] = [(root, data)]
        while stack:
            group, raw = stack.pop()
            for child_data in raw.get("children") or []:
                child = cls._from_dict_shallow(child_data)
                group.children.append(child)
                stack.append((child, child_data))
        return root

    @classmethod
    def _from_dict_shallow(cls, data: dict[str, Any]) -> "SemanticGroup":
        if "type" not in data or "bounds" not in data:
            raise InvalidSnapshotError("semantic group requires 'type' and 'bounds'")
        try:
            group_type = SemanticType(data["type"])
        except ValueError as e:
            raise InvalidSnapshotError(f"unknown semantic group type: {data['type']!r}") from e
        return cls(
            id=str(data.get("id", "")),
            type=group_type,
            bounds=Rect.from_dict(data["bounds"]),
            importance=float(data.get("importance", 0)),
            depth=int(data.get("depth", 0)),
            label=data.get("label") or "",
            elements=[_group_element(element) for element in data.get("elements") or []],
        )


def _group_element(data: Any) -> VisualNode:
    if not isinstance(data, dict):
        raise InvalidSnapshotError(f"semantic group elements must be objects, got {type(data).__name__}")
    return VisualNode.from_dict(data)


@dataclass(frozen=True)
class NodeGroup:
    """Proximity cluster of same-type nodes."""

    id: str
    type: SemanticType
    bounds: Rect
    nodes: tuple[VisualNode, ...]
    importance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "bounds": self.bounds.to_dict(),
            "nodes": [node.to_dict(include_children=False) for node in self.nodes],
            "importance": self.importance,
        }


@dataclass(frozen=True)
class LayoutSnapshot:
    """One captured structural description of a page.

    This is the unit of comparison. Elements are the flat list of visible
    nodes; semantic groups are the top-level groups built from them.
    """

    url: str
    viewport: dict[str, int]
    elements: tuple[VisualNode, ...] = ()
    semantic_groups: tuple[SemanticGroup, ...] | None = None
    statistics: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __post_init__(self) -> None:
        width = self.viewport.get("width") if isinstance(self.viewport, dict) else None
        height = self.viewport.get("height") if isinstance(self.viewport, dict) else None
        if not width or not height or width <= 0 or height <= 0:
            raise InvalidSnapshotError(
                f"snapshot for {self.url!r} needs a positive viewport width and height, got {self.viewport!r}"
            )

    @property
    def viewport_size(self) -> tuple[int, int]:
        return (self.viewport["width"], self.viewport["height"])

    def iter_groups(self) -> Iterator[SemanticGroup]:
        """Yield every semantic group, nested ones included."""
        for group in self.semantic_groups or ():
            yield from group.iter_groups()

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "timestamp": self.timestamp,
            "viewport": dict(self.viewport),
            "elements": [element.to_dict() for element in self.elements],
            "semantic_groups": (
                [group.to_dict() for group in self.semantic_groups]
                if self.semantic_groups is not None
                else None
            ),
            "statistics": dict(self.statistics),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LayoutSnapshot":
        if "viewport" not in data:
            raise InvalidSnapshotError("snapshot is missing required field 'viewport'")
        viewport = data["viewport"]
        if not isinstance(viewport, dict) or "width" not in viewport or "height" not in viewport:
            raise InvalidSnapshotError("snapshot viewport must have 'width' and 'height'")

        raw_groups = _pick(data, "semantic_groups", "semanticGroups")
        groups = (
            tuple(SemanticGroup.from_dict(group) for group in raw_groups)
            if raw_groups is not None
            else None
        )
        kwargs: dict[str, Any] = {}
        if data.get("timestamp"):
            kwargs["timestamp"] = str(data["timestamp"])

        return cls(
            url=data.get("url", ""),
            viewport={"width": int(viewport["width"]), "height": int(viewport["height"])},
            elements=tuple(VisualNode.from_dict(element) for element in data.get("elements") or []),
            semantic_groups=groups,
            statistics=dict(data.get("statistics") or {}),
            **kwargs,
        )

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "LayoutSnapshot":
        """Create instance from JSON string."""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise InvalidSnapshotError(f"snapshot is not valid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass(frozen=True)
class PropertyChange:
    """A single property that differs between baseline and current."""

    property: str
    before: Any
    after: Any

    def to_dict(self) -> dict[str, Any]:
        return {"property": self.property, "before": self.before, "after": self.after}


@dataclass
class NodeMatch:
    """Correspondence claimed by the matcher for one element."""

    baseline: VisualNode | None
    current: VisualNode | None
    match_type: MatchType
    similarity: float = 0.0
    position_diff: float | None = None
    size_diff: float | None = None
    changes: list[PropertyChange] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseline": self.baseline.to_dict(include_children=False) if self.baseline else None,
            "current": self.current.to_dict(include_children=False) if self.current else None,
            "match_type": self.match_type.value,
            "similarity": self.similarity,
            "position_diff": self.position_diff,
            "size_diff": self.size_diff,
            "changes": [change.to_dict() for change in self.changes],
        }


def _item_to_dict(item: VisualNode | SemanticGroup | None) -> dict[str, Any] | None:
    if item is None:
        return None
    if isinstance(item, VisualNode):
        return item.to_dict(include_children=False)
    return item.to_dict()


@dataclass
class VisualDifference:
    """One reported difference between two snapshots."""

    type: DifferenceType
    path: str
    element: VisualNode | SemanticGroup | None = None
    previous_element: VisualNode | SemanticGroup | None = None
    changes: list[PropertyChange] = field(default_factory=list)
    position_diff: float | None = None
    size_diff: float | None = None

    def change_for(self, property_name: str) -> PropertyChange | None:
        for change in self.changes:
            if change.property == property_name:
                return change
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "path": self.path,
            "element": _item_to_dict(self.element),
            "previous_element": _item_to_dict(self.previous_element),
            "changes": [change.to_dict() for change in self.changes],
            "position_diff": self.position_diff,
            "size_diff": self.size_diff,
        }


@dataclass
class ComparisonSummary:
    """Difference counts by type."""

    added: int = 0
    removed: int = 0
    modified: int = 0
    moved: int = 0

    @property
    def total(self) -> int:
        return self.added + self.removed + self.modified + self.moved

    def to_dict(self) -> dict[str, int]:
        return {
            "added": self.added,
            "removed": self.removed,
            "modified": self.modified,
            "moved": self.moved,
        }

    @classmethod
    def from_differences(cls, differences: list[VisualDifference]) -> "ComparisonSummary":
        summary = cls()
        for difference in differences:
            setattr(summary, difference.type.value, getattr(summary, difference.type.value) + 1)
        return summary


@dataclass
class ComparisonResult:
    """Aggregate result of one pairwise comparison."""

    similarity: float
    differences: list[VisualDifference] = field(default_factory=list)
    summary: ComparisonSummary = field(default_factory=ComparisonSummary)

    @property
    def identical(self) -> bool:
        return not self.differences

    def to_dict(self) -> dict[str, Any]:
        return {
            "identical": self.identical,
            "similarity": self.similarity,
            "differences": [difference.to_dict() for difference in self.differences],
            "summary": self.summary.to_dict(),
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)
