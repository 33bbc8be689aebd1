"""Node-level similarity and matching between two snapshots.

Matching is greedy best-first, not an optimal assignment: each baseline
node, in input order, takes the most similar still-unmatched current node
whose score clears the acceptance floor. Ties go to the first candidate
seen, so results are deterministic for a given input order but are not
guaranteed to be globally optimal.

Per-pair similarity is a weighted sum over tag equality, semantic type
equality, class overlap, text similarity, geometry and accessibility,
renormalised by the weights that actually took part.
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Sequence

import structlog

from ..config import Settings
from .classifier import SemanticClassifier
from .models import MatchType, NodeMatch, PropertyChange, VisualNode
from .text_similarity import text_similarity

logger = structlog.get_logger()

EXACT_SIMILARITY = 0.999
EXACT_DELTA = 1.0
MOVE_DISTANCE = 50.0
MOVE_SIMILARITY = 0.6


@dataclass(frozen=True)
class MatchingWeights:
    """Weights of the node similarity components."""

    tag: float = 0.30
    semantic_type: float = 0.20
    class_name: float = 0.15
    text: float = 0.15
    geometry: float = 0.20
    accessibility: float = 0.10


def _jaccard(a: set, b: set) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def class_similarity(a: VisualNode, b: VisualNode) -> float:
    """Jaccard overlap of the class lists."""
    return _jaccard(set(a.classes), set(b.classes))


def geometry_similarity(
    a: VisualNode,
    b: VisualNode,
    position_scale: float = 100.0,
    size_scale: float = 50.0,
) -> float:
    """Average of the position score and the size score."""
    dx = a.rect.x - b.rect.x
    dy = a.rect.y - b.rect.y
    dw = abs(a.rect.width - b.rect.width)
    dh = abs(a.rect.height - b.rect.height)
    position_score = max(0.0, 1 - math.hypot(dx, dy) / position_scale)
    size_score = max(0.0, 1 - (dw + dh) / size_scale)
    return (position_score + size_score) / 2


def accessibility_similarity(a: VisualNode, b: VisualNode) -> float:
    """Mean agreement over role, label, interactivity, focusability and state."""
    acc_a = a.accessibility
    acc_b = b.accessibility
    score = 0.0
    factors = 0

    if acc_a.role == acc_b.role:
        score += 1
    factors += 1

    if acc_a.aria_label and acc_b.aria_label:
        score += text_similarity(acc_a.aria_label, acc_b.aria_label)
        factors += 1

    if a.is_interactive == b.is_interactive:
        score += 1
    factors += 1

    if acc_a.focusable == acc_b.focusable:
        score += 1
    factors += 1

    if acc_a.state and acc_b.state:
        score += _jaccard(set(acc_a.state), set(acc_b.state))
        factors += 1

    return score / factors


@dataclass
class NodeSimilarityReport:
    """Whole-layout similarity derived from a node matching."""

    overall: float
    structural: float
    semantic: float
    accessibility: float
    details: dict[str, int] = field(default_factory=dict)
    matches: list[NodeMatch] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall,
            "structural": self.structural,
            "semantic": self.semantic,
            "accessibility": self.accessibility,
            "details": dict(self.details),
            "matches": [match.to_dict() for match in self.matches],
        }


class NodeMatcher:
    """Greedy best-first matcher over two node collections."""

    def __init__(
        self,
        weights: MatchingWeights | None = None,
        acceptance_floor: float = 0.3,
        position_scale: float = 100.0,
        size_scale: float = 50.0,
        classifier: SemanticClassifier | None = None,
        change_threshold: float = 5.0,
    ):
        self.weights = weights or MatchingWeights()
        self.acceptance_floor = acceptance_floor
        self.position_scale = position_scale
        self.size_scale = size_scale
        self.classifier = classifier or SemanticClassifier()
        self.change_threshold = change_threshold

    @classmethod
    def from_settings(cls, settings: Settings, weights: MatchingWeights | None = None) -> "NodeMatcher":
        return cls(
            weights=weights,
            acceptance_floor=settings.acceptance_floor,
            position_scale=settings.position_scale,
            size_scale=settings.size_scale,
            classifier=SemanticClassifier.from_settings(settings),
        )

    def node_similarity(self, a: VisualNode, b: VisualNode) -> float:
        weights = self.weights
        score = 0.0
        total = 0.0

        if a.tag_name == b.tag_name:
            score += weights.tag
        total += weights.tag

        if self.classifier.semantic_type(a) == self.classifier.semantic_type(b):
            score += weights.semantic_type
        total += weights.semantic_type

        if a.class_name and b.class_name:
            score += class_similarity(a, b) * weights.class_name
            total += weights.class_name

        if a.text and b.text:
            score += text_similarity(a.text, b.text) * weights.text
            total += weights.text

        score += geometry_similarity(a, b, self.position_scale, self.size_scale) * weights.geometry
        total += weights.geometry

        score += accessibility_similarity(a, b) * weights.accessibility
        total += weights.accessibility

        return score / total if total > 0 else 0.0

    def match(self, baseline: Sequence[VisualNode], current: Sequence[VisualNode]) -> list[NodeMatch]:
        """Pair every node of both sides exactly once.

        Matched pairs come first in baseline order, followed by removed
        baseline nodes and then added current nodes.
        """
        matches: list[NodeMatch] = []
        matched_baseline: set[int] = set()
        matched_current: set[int] = set()

        for i, node in enumerate(baseline):
            best_index = -1
            best_similarity = 0.0
            for j, candidate in enumerate(current):
                if j in matched_current:
                    continue
                similarity = self.node_similarity(node, candidate)
                if similarity > best_similarity and similarity > self.acceptance_floor:
                    best_index = j
                    best_similarity = similarity

            if best_index < 0:
                continue
            matched_baseline.add(i)
            matched_current.add(best_index)
            matches.append(self._build_match(node, current[best_index], best_similarity))

        for i, node in enumerate(baseline):
            if i not in matched_baseline:
                matches.append(NodeMatch(baseline=node, current=None, match_type=MatchType.REMOVED))
        for j, node in enumerate(current):
            if j not in matched_current:
                matches.append(NodeMatch(baseline=None, current=node, match_type=MatchType.ADDED))

        logger.debug(
            "Nodes matched",
            baseline=len(baseline),
            current=len(current),
            matched=len(matched_baseline),
        )
        return matches

    def match_type(self, a: VisualNode, b: VisualNode, similarity: float) -> MatchType:
        dx = abs(a.rect.x - b.rect.x)
        dy = abs(a.rect.y - b.rect.y)
        dw = abs(a.rect.width - b.rect.width)
        dh = abs(a.rect.height - b.rect.height)

        if similarity >= EXACT_SIMILARITY and max(dx, dy, dw, dh) < EXACT_DELTA:
            return MatchType.EXACT
        if (dx > MOVE_DISTANCE or dy > MOVE_DISTANCE) and similarity > MOVE_SIMILARITY:
            return MatchType.MOVED
        return MatchType.CHANGED

    def _build_match(self, a: VisualNode, b: VisualNode, similarity: float) -> NodeMatch:
        match_type = self.match_type(a, b, similarity)
        return NodeMatch(
            baseline=a,
            current=b,
            match_type=match_type,
            similarity=similarity,
            position_diff=math.hypot(b.rect.x - a.rect.x, b.rect.y - a.rect.y),
            size_diff=math.hypot(b.rect.width - a.rect.width, b.rect.height - a.rect.height),
            changes=[] if match_type == MatchType.EXACT else self._changes(a, b),
        )

    def _changes(self, a: VisualNode, b: VisualNode) -> list[PropertyChange]:
        changes: list[PropertyChange] = []
        for prop in ("x", "y", "width", "height"):
            before = getattr(a.rect, prop)
            after = getattr(b.rect, prop)
            if abs(after - before) > self.change_threshold:
                changes.append(PropertyChange(prop, before, after))
        if a.text != b.text:
            changes.append(PropertyChange("text", a.text, b.text))
        if a.role != b.role:
            changes.append(PropertyChange("role", a.role, b.role))
        if a.accessibility.aria_label != b.accessibility.aria_label:
            changes.append(PropertyChange("aria_label", a.accessibility.aria_label, b.accessibility.aria_label))
        if a.is_interactive != b.is_interactive:
            changes.append(PropertyChange("is_interactive", a.is_interactive, b.is_interactive))
        state_a = a.accessibility.state
        state_b = b.accessibility.state
        for key in sorted(set(state_a) | set(state_b)):
            if state_a.get(key) != state_b.get(key):
                changes.append(PropertyChange(f"state.{key}", state_a.get(key), state_b.get(key)))
        return changes

    def similarity_report(
        self,
        baseline: Sequence[VisualNode],
        current: Sequence[VisualNode],
    ) -> NodeSimilarityReport:
        """Structural, semantic and accessibility similarity of two node sets.

        Overall similarity weighs structure 0.4, semantics 0.4 and
        accessibility 0.2; all scores are in [0, 1].
        """
        matches = self.match(baseline, current)
        details = Counter(match.match_type.value for match in matches)

        if not baseline and not current:
            count_ratio = 1.0
        else:
            count_ratio = min(len(baseline), len(current)) / max(len(baseline), len(current))
        preservation = details[MatchType.EXACT.value] / len(matches) if matches else 1.0
        structural = (count_ratio + preservation) / 2

        types_a = Counter(self.classifier.semantic_type(node).value for node in baseline)
        types_b = Counter(self.classifier.semantic_type(node).value for node in current)
        all_types = set(types_a) | set(types_b)
        if all_types:
            semantic = sum(
                1 - abs(types_a[t] - types_b[t]) / max(types_a[t], types_b[t])
                for t in all_types
            ) / len(all_types)
        else:
            semantic = 1.0

        paired = [m for m in matches if m.baseline is not None and m.current is not None]
        if paired:
            accessibility = sum(accessibility_similarity(m.baseline, m.current) for m in paired) / len(paired)
        else:
            accessibility = 1.0 if not matches else 0.0

        return NodeSimilarityReport(
            overall=structural * 0.4 + semantic * 0.4 + accessibility * 0.2,
            structural=structural,
            semantic=semantic,
            accessibility=accessibility,
            details={match_type.value: details[match_type.value] for match_type in MatchType},
            matches=matches,
        )
