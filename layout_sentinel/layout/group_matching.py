"""Group-level matching: rect fingerprints and flat nearest-neighbour pairing.

Two complementary strategies work on semantic groups rather than nodes:

- Fingerprint matching scores group pairs from a weighted rect distance
  (center position, normalised size, aspect ratio) plus element count,
  importance and child count, then matches greedily per baseline group.
- Flat matching flattens both group trees, scores every pair with a
  position/size/type/importance distance, and consumes candidate pairs
  globally in order of increasing distance.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Sequence

import structlog

from .models import Rect, SemanticGroup

logger = structlog.get_logger()

REFERENCE_VIEWPORT = {"width": 1920, "height": 1080}
GROUP_MATCH_FLOOR = 0.5
FINGERPRINT_GRID = 100


@dataclass(frozen=True)
class RectDistanceWeights:
    """Weights of the rect distance components."""

    position: float = 0.4
    size: float = 0.4
    aspect_ratio: float = 0.2


@dataclass(frozen=True)
class RectFeatures:
    """Viewport-normalised features of a rectangle."""

    normalized_x: float
    normalized_y: float
    normalized_width: float
    normalized_height: float
    aspect_ratio: float
    center_x: float
    center_y: float

    @classmethod
    def from_rect(cls, rect: Rect, viewport: dict[str, int]) -> "RectFeatures":
        width = viewport["width"]
        height = viewport["height"]
        return cls(
            normalized_x=rect.x / width,
            normalized_y=rect.y / height,
            normalized_width=rect.width / width,
            normalized_height=rect.height / height,
            aspect_ratio=rect.width / max(rect.height, 1),
            center_x=(rect.x + rect.width / 2) / width,
            center_y=(rect.y + rect.height / 2) / height,
        )


def _component_distances(
    a: RectFeatures, b: RectFeatures
) -> tuple[float, float, float]:
    position = math.hypot(a.center_x - b.center_x, a.center_y - b.center_y)
    size = math.hypot(
        a.normalized_width - b.normalized_width,
        a.normalized_height - b.normalized_height,
    )
    largest_aspect = max(a.aspect_ratio, b.aspect_ratio)
    aspect = abs(a.aspect_ratio - b.aspect_ratio) / largest_aspect if largest_aspect > 0 else 0.0
    return position, size, aspect


def rect_distance(
    a: Rect,
    b: Rect,
    viewport: dict[str, int] | None = None,
    weights: RectDistanceWeights | None = None,
) -> float:
    """Weighted distance between two rects; 0 means identical."""
    viewport = viewport or REFERENCE_VIEWPORT
    weights = weights or RectDistanceWeights()
    position, size, aspect = _component_distances(
        RectFeatures.from_rect(a, viewport),
        RectFeatures.from_rect(b, viewport),
    )
    return weights.position * position + weights.size * size + weights.aspect_ratio * aspect


def _count_ratio(a: int, b: int) -> float:
    return min(a, b) / max(a, b, 1)


def group_similarity(
    a: SemanticGroup,
    b: SemanticGroup,
    viewport: dict[str, int] | None = None,
    weights: RectDistanceWeights | None = None,
) -> float:
    """Similarity in [0, 1]; groups of different types never match."""
    if a.type != b.type:
        return 0.0

    distance = rect_distance(a.bounds, b.bounds, viewport, weights)
    similarity = (
        (1 - min(distance, 1.0)) * 0.4
        + _count_ratio(len(a.elements), len(b.elements)) * 0.2
        + (1 - abs(a.importance - b.importance) / 100) * 0.2
        + _count_ratio(len(a.children), len(b.children)) * 0.2
    )
    return max(0.0, min(1.0, similarity))


@dataclass
class GroupPair:
    """A matched pair of semantic groups."""

    baseline: SemanticGroup
    current: SemanticGroup
    similarity: float


@dataclass
class LayoutSimilarity:
    """Whole-layout similarity computed from group fingerprints."""

    similarity: float
    position_distance: float
    size_distance: float
    aspect_ratio_distance: float
    euclidean_distance: float
    matched_groups: list[GroupPair] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "similarity": self.similarity,
            "metrics": {
                "position_distance": self.position_distance,
                "size_distance": self.size_distance,
                "aspect_ratio_distance": self.aspect_ratio_distance,
                "euclidean_distance": self.euclidean_distance,
            },
            "matched_groups": [
                {
                    "baseline": pair.baseline.id,
                    "current": pair.current.id,
                    "similarity": pair.similarity,
                }
                for pair in self.matched_groups
            ],
        }


def layout_similarity(
    baseline: Sequence[SemanticGroup],
    current: Sequence[SemanticGroup],
    viewport: dict[str, int] | None = None,
    weights: RectDistanceWeights | None = None,
) -> LayoutSimilarity:
    """Greedy group pairing and overall layout similarity in [0, 1].

    The overall score averages the matched fraction and the mean pair
    similarity. Distance metrics average every same-type pair.
    """
    viewport = viewport or REFERENCE_VIEWPORT
    pairs: list[GroupPair] = []
    used: set[int] = set()

    for group in baseline:
        best_index = -1
        best_similarity = -1.0
        for index, candidate in enumerate(current):
            if index in used:
                continue
            similarity = group_similarity(group, candidate, viewport, weights)
            if similarity > best_similarity:
                best_index = index
                best_similarity = similarity
        if best_index >= 0 and best_similarity > GROUP_MATCH_FLOOR:
            pairs.append(GroupPair(group, current[best_index], best_similarity))
            used.add(best_index)

    largest = max(len(baseline), len(current))
    if largest == 0:
        overall = 1.0
    else:
        match_ratio = len(pairs) / largest
        average = sum(pair.similarity for pair in pairs) / len(pairs) if pairs else 0.0
        overall = match_ratio * 0.5 + average * 0.5

    totals = [0.0, 0.0, 0.0]
    count = 0
    for a in baseline:
        for b in current:
            if a.type != b.type:
                continue
            components = _component_distances(
                RectFeatures.from_rect(a.bounds, viewport),
                RectFeatures.from_rect(b.bounds, viewport),
            )
            for i, value in enumerate(components):
                totals[i] += value
            count += 1
    averages = [total / count if count else 1.0 for total in totals]

    return LayoutSimilarity(
        similarity=overall,
        position_distance=averages[0],
        size_distance=averages[1],
        aspect_ratio_distance=averages[2],
        euclidean_distance=math.sqrt(sum(value * value for value in averages)),
        matched_groups=pairs,
    )


def layout_fingerprint(groups: Sequence[SemanticGroup]) -> str:
    """Coarse, order-independent signature of a layout on a 100px grid."""
    ordered = sorted(groups, key=lambda g: (g.type.value, g.bounds.y, g.bounds.x))
    return "|".join(
        f"{group.type.value}:"
        f"{math.floor(group.bounds.x / FINGERPRINT_GRID)},"
        f"{math.floor(group.bounds.y / FINGERPRINT_GRID)},"
        f"{math.floor(group.bounds.width / FINGERPRINT_GRID)},"
        f"{math.floor(group.bounds.height / FINGERPRINT_GRID)}:"
        f"{len(group.elements)}"
        for group in ordered
    )


def is_same_layout_structure(
    baseline: Sequence[SemanticGroup],
    current: Sequence[SemanticGroup],
    threshold: float = 0.8,
) -> bool:
    return layout_similarity(baseline, current).similarity >= threshold


# Flat nearest-neighbour matching


@dataclass(frozen=True)
class GroupDistanceWeights:
    """Weights of the flat group distance components."""

    position: float = 0.4
    size: float = 0.2
    type: float = 0.3
    importance: float = 0.1


@dataclass
class FlattenedGroup:
    """A semantic group lifted out of its tree for flat matching."""

    id: str
    type: str
    label: str
    bounds: Rect
    importance: float
    element_count: int
    path: list[str]
    depth: int
    group: SemanticGroup | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "bounds": self.bounds.to_dict(),
            "importance": self.importance,
            "element_count": self.element_count,
            "path": list(self.path),
            "depth": self.depth,
        }


@dataclass
class FlatGroupMatch:
    baseline: FlattenedGroup
    current: FlattenedGroup
    distance: float
    similarity: float


@dataclass
class FlatMatchResult:
    """Outcome of flat nearest-neighbour matching; similarity is 0-100."""

    matches: list[FlatGroupMatch]
    unmatched_baseline: list[FlattenedGroup]
    unmatched_current: list[FlattenedGroup]
    total_similarity: float
    average_distance: float

    @property
    def statistics(self) -> dict[str, float]:
        return {
            "total_baseline_groups": len(self.matches) + len(self.unmatched_baseline),
            "total_current_groups": len(self.matches) + len(self.unmatched_current),
            "matched_groups": len(self.matches),
            "unmatched_groups": len(self.unmatched_baseline) + len(self.unmatched_current),
            "average_distance": self.average_distance,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "matches": [
                {
                    "baseline": match.baseline.to_dict(),
                    "current": match.current.to_dict(),
                    "distance": match.distance,
                    "similarity": match.similarity,
                }
                for match in self.matches
            ],
            "unmatched_baseline": [group.to_dict() for group in self.unmatched_baseline],
            "unmatched_current": [group.to_dict() for group in self.unmatched_current],
            "total_similarity": self.total_similarity,
            "statistics": self.statistics,
        }


def flatten_groups(groups: Sequence[SemanticGroup]) -> list[FlattenedGroup]:
    """Pre-order flattening of group trees, each entry carrying its path."""
    flattened: list[FlattenedGroup] = []
    stack: list[tuple[SemanticGroup, list[str], int]] = [
        (group, [], 0) for group in reversed(groups)
    ]
    while stack:
        group, path, depth = stack.pop()
        flattened.append(
            FlattenedGroup(
                id=f"{group.type.value}_{round(group.bounds.x)}_{round(group.bounds.y)}",
                type=group.type.value,
                label=group.label,
                bounds=group.bounds,
                importance=group.importance,
                element_count=len(group.elements),
                path=path,
                depth=depth,
                group=group,
            )
        )
        child_path = path + [f"{group.type.value}:{group.label}"]
        for child in reversed(group.children):
            stack.append((child, child_path, depth + 1))
    return flattened


class FlatGroupMatcher:
    """Nearest-neighbour matcher over flattened group lists."""

    def __init__(
        self,
        weights: GroupDistanceWeights | None = None,
        max_distance: float = 0.5,
        reference_viewport: dict[str, int] | None = None,
    ):
        self.weights = weights or GroupDistanceWeights()
        self.max_distance = max_distance
        viewport = reference_viewport or REFERENCE_VIEWPORT
        self._diagonal = math.hypot(viewport["width"], viewport["height"])

    def distance(self, a: FlattenedGroup, b: FlattenedGroup) -> float:
        weights = self.weights
        ax, ay = a.bounds.center
        bx, by = b.bounds.center
        distance = math.hypot(bx - ax, by - ay) / self._diagonal * weights.position

        area_a = a.bounds.area
        area_b = b.bounds.area
        largest = max(area_a, area_b)
        size_ratio = min(area_a, area_b) / largest if largest > 0 else 1.0
        distance += (1 - size_ratio) * weights.size

        if a.type != b.type:
            distance += weights.type

        distance += abs(a.importance - b.importance) / 100 * weights.importance
        return distance

    def match(
        self,
        baseline: Sequence[SemanticGroup],
        current: Sequence[SemanticGroup],
    ) -> FlatMatchResult:
        baseline_flat = flatten_groups(baseline)
        current_flat = flatten_groups(current)

        candidates: list[tuple[float, int, int]] = []
        for i, a in enumerate(baseline_flat):
            for j, b in enumerate(current_flat):
                distance = self.distance(a, b)
                if distance <= self.max_distance:
                    candidates.append((distance, i, j))
        # Stable on equal distances: baseline order, then current order
        candidates.sort(key=lambda candidate: candidate[0])

        matches: list[FlatGroupMatch] = []
        used_baseline: set[int] = set()
        used_current: set[int] = set()
        for distance, i, j in candidates:
            if i in used_baseline or j in used_current:
                continue
            matches.append(
                FlatGroupMatch(
                    baseline=baseline_flat[i],
                    current=current_flat[j],
                    distance=distance,
                    similarity=max(0.0, (1 - distance) * 100),
                )
            )
            used_baseline.add(i)
            used_current.add(j)

        unmatched_baseline = [g for i, g in enumerate(baseline_flat) if i not in used_baseline]
        unmatched_current = [g for j, g in enumerate(current_flat) if j not in used_current]

        largest = max(len(baseline_flat), len(current_flat))
        if largest == 0:
            total_similarity = 100.0
        else:
            match_similarity = (
                sum(match.similarity for match in matches) / len(matches) if matches else 0.0
            )
            penalty = (len(unmatched_baseline) + len(unmatched_current)) / largest * 50
            total_similarity = max(0.0, match_similarity - penalty)

        average_distance = sum(m.distance for m in matches) / len(matches) if matches else 0.0
        logger.debug(
            "Flat group matching complete",
            matched=len(matches),
            unmatched=len(unmatched_baseline) + len(unmatched_current),
            similarity=round(total_similarity, 2),
        )
        return FlatMatchResult(
            matches=matches,
            unmatched_baseline=unmatched_baseline,
            unmatched_current=unmatched_current,
            total_similarity=total_similarity,
            average_distance=average_distance,
        )
