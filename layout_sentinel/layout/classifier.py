"""Semantic classification and importance scoring of visual nodes.

Classification is a fixed-priority rule cascade; the first matching rule
wins, so specific tags and roles always outrank the generic text-length
heuristic for content. Importance is a sum of independent contributions
clamped to [0, 100]. Both are pure functions of the node and viewport.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import SemanticType, VisualNode

if TYPE_CHECKING:
    from ..config import Settings

HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
NAVIGATION_CLASS_HINTS = ("nav", "menu")
INTERACTIVE_TAGS = frozenset({"a", "button", "input", "textarea", "select"})
INTERACTIVE_ROLES = frozenset({"button", "link", "textbox", "checkbox", "radio"})
MEDIA_TAGS = frozenset({"img", "video", "audio", "picture", "svg", "canvas"})
LIST_TAGS = frozenset({"ul", "ol", "dl"})
CONTENT_TAGS = frozenset({"p", "article", "section", "main", "blockquote", "pre"})
CONTENT_ROLES = frozenset({"article", "main"})
CONTENT_TEXT_LENGTH = 20
EMPHASIS_CLASS_HINTS = ("primary", "main", "hero")

BASE_IMPORTANCE: dict[SemanticType, float] = {
    SemanticType.HEADING: 80,
    SemanticType.NAVIGATION: 70,
    SemanticType.INTERACTIVE: 60,
    SemanticType.CONTENT: 50,
    SemanticType.FORM: 50,
    SemanticType.MEDIA: 40,
    SemanticType.LIST: 30,
    SemanticType.TABLE: 30,
    SemanticType.STRUCTURAL: 20,
    SemanticType.SECTION: 40,
    SemanticType.CONTAINER: 20,
    SemanticType.GROUP: 30,
}


@dataclass(frozen=True)
class Classification:
    """Semantic type and importance of a single node."""

    semantic_type: SemanticType
    importance: float


class SemanticClassifier:
    """Assigns semantic types and importance scores to visual nodes."""

    def __init__(self, viewport_width: int = 1280, viewport_height: int = 720):
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SemanticClassifier":
        return cls(settings.viewport_width, settings.viewport_height)

    def classify(self, node: VisualNode, viewport: dict[str, int] | None = None) -> Classification:
        semantic_type = self.semantic_type(node)
        return Classification(semantic_type, self.importance(node, semantic_type, viewport))

    def semantic_type(self, node: VisualNode) -> SemanticType:
        tag = node.tag_name.lower()
        role = (node.role or "").lower()
        class_name = node.class_name.lower()

        if tag in HEADING_TAGS or role == "heading":
            return SemanticType.HEADING
        if (
            tag == "nav"
            or role == "navigation"
            or any(hint in class_name for hint in NAVIGATION_CLASS_HINTS)
        ):
            return SemanticType.NAVIGATION
        if tag == "form" or role == "form":
            return SemanticType.FORM
        if tag in INTERACTIVE_TAGS or role in INTERACTIVE_ROLES:
            return SemanticType.INTERACTIVE
        if tag in MEDIA_TAGS or role == "img":
            return SemanticType.MEDIA
        if tag in LIST_TAGS or role == "list":
            return SemanticType.LIST
        if tag == "table" or role in ("table", "grid"):
            return SemanticType.TABLE
        if (
            tag in CONTENT_TAGS
            or role in CONTENT_ROLES
            or len((node.text or "").strip()) > CONTENT_TEXT_LENGTH
        ):
            return SemanticType.CONTENT
        return SemanticType.STRUCTURAL

    def importance(
        self,
        node: VisualNode,
        semantic_type: SemanticType | None = None,
        viewport: dict[str, int] | None = None,
    ) -> float:
        if semantic_type is None:
            semantic_type = self.semantic_type(node)
        width = (viewport or {}).get("width") or self.viewport_width
        height = (viewport or {}).get("height") or self.viewport_height

        score = BASE_IMPORTANCE.get(semantic_type, 20)

        # Larger elements matter more, capped at 20 points
        area_ratio = node.rect.area / (width * height)
        score += min(area_ratio * 100, 20)

        # Top of the viewport earns up to 10 points
        score += max(0.0, 10 - (node.rect.y / height) * 10)

        accessibility = node.accessibility
        if accessibility.role:
            score += 5
        if accessibility.aria_label:
            score += 5
        if accessibility.tab_index == 0:
            score += 5
        if node.id:
            score += 5

        class_name = node.class_name.lower()
        if any(hint in class_name for hint in EMPHASIS_CLASS_HINTS):
            score += 10

        if not node.is_visible:
            score *= 0.1
        if node.opacity < 1:
            score *= max(node.opacity, 0.0)

        return round(max(0.0, min(100.0, score)), 2)


def derive_label(node: VisualNode) -> str:
    """Human readable label: tag plus first class, else text, else tag."""
    classes = node.classes
    if classes:
        return f"{node.tag_name}.{classes[0]}"
    text = (node.text or "").strip()
    if text:
        return text[:50]
    return node.tag_name
