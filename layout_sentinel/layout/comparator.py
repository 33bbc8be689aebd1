"""Layout comparison: turns two snapshots into a categorized difference list.

Two comparison strategies share the same change detection and output model:

``LayoutComparator.compare``
    Pairs elements through a generated identity key (``tag-class-id-index``)
    or, with ``matching="similarity"``, through the fuzzy node matcher.
    Similarity is impact-weighted: each added or removed item costs 1.0,
    each changed item costs its capped pixel impact with a 0.05 floor.

``LayoutComparator.compare_layouts``
    Semantic-tree comparison. Elements pair on tag, class and id plus rect
    overlap; groups pair on type plus rect overlap, with a stricter second
    pass that tolerates a type change. Moved items count 0.2 of a change.

Known limitation of identity keys: the index part shifts when a sibling with
the same tag, class and id is inserted or removed before it, which shows up
as a spurious removed/added pair for every later sibling. Keys are only
stable for append-only or structurally unchanged pages; prefer
``matching="similarity"`` when that does not hold.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import Settings, TextCompareMode
from .exceptions import InvalidSelectorError, ViewportMismatchError
from .matching import NodeMatcher
from .models import (
    ComparisonResult,
    ComparisonSummary,
    DifferenceType,
    LayoutSnapshot,
    MatchType,
    PropertyChange,
    Rect,
    SemanticGroup,
    VisualDifference,
    VisualNode,
)
from .text_similarity import normalize_text, normalized_text_similarity

logger = structlog.get_logger()

POSITION_PROPERTIES = frozenset({"x", "y"})
STYLE_PROPERTIES = (("fontSize", "font_size"), ("zIndex", "z_index"))
IMPACT_SCALE = 200.0
IMPACT_CAP = 0.3
IMPACT_FLOOR = 0.05
MOVED_WEIGHT = 0.2
IMPORTANCE_DELTA = 5
RECT_MATCH = 0.7
RECT_MATCH_RETYPED = 0.85

_SELECTOR = re.compile(r"^([\w-]+)?(#[\w-]+)?(\.[\w-]+)?$")


class MatchingStrategy(str, Enum):
    """How elements are paired across snapshots."""

    IDENTITY = "identity"  # Generated tag-class-id-index keys
    SIMILARITY = "similarity"  # Greedy fuzzy matching


class CompareOptions(BaseModel):
    """Options for a single comparison.

    Attributes:
        threshold: Pixel delta at or below which x/y/width/height changes are not reported
        ignore_text: Skip text and label comparison
        ignore_style: Skip computed style comparison
        text_compare_mode: exact, normalized or similarity
        text_similarity_threshold: Minimum fuzzy score (0-1) counted as unchanged text
        case_sensitive: Normalisation option for normalized/similarity modes
        remove_extra_spaces: Normalisation option for normalized/similarity modes
        trim_lines: Normalisation option for normalized/similarity modes
        ignore_selectors: ``#id``, ``.class``, ``tag`` or ``tag#id.class`` selectors
        ignore_types: Semantic group types left out of the comparison
        min_importance: Groups scoring below this importance are left out
        matching: Element pairing strategy for ``LayoutComparator.compare``
        allow_viewport_mismatch: Compare snapshots taken at different viewports
    """

    model_config = ConfigDict(frozen=True)

    threshold: float = Field(2.0, ge=0, description="Pixel change threshold")
    ignore_text: bool = False
    ignore_style: bool = False
    text_compare_mode: TextCompareMode = TextCompareMode.EXACT
    text_similarity_threshold: float = Field(0.8, ge=0.0, le=1.0)
    case_sensitive: bool = True
    remove_extra_spaces: bool = True
    trim_lines: bool = True
    ignore_selectors: tuple[str, ...] = ()
    ignore_types: tuple[str, ...] = ()
    min_importance: float = Field(0.0, ge=0.0, le=100.0)
    matching: MatchingStrategy = MatchingStrategy.IDENTITY
    allow_viewport_mismatch: bool = False

    @field_validator("ignore_selectors")
    @classmethod
    def validate_selectors(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject selectors the matcher cannot interpret."""
        for selector in v:
            parse_selector(selector)
        return v

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "CompareOptions":
        values = {
            "threshold": settings.compare_threshold,
            "text_compare_mode": settings.text_compare_mode,
            "text_similarity_threshold": settings.text_similarity_threshold,
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class Selector:
    """A parsed ignore selector; unset parts match anything."""

    tag: str | None = None
    id: str | None = None
    class_name: str | None = None

    def matches(self, node: VisualNode) -> bool:
        if self.tag is not None and node.tag_name.lower() != self.tag:
            return False
        if self.id is not None and node.id != self.id:
            return False
        if self.class_name is not None and self.class_name not in node.class_name:
            return False
        return True


def parse_selector(selector: str) -> Selector:
    text = selector.strip()
    match = _SELECTOR.match(text)
    if not text or match is None:
        raise InvalidSelectorError(
            f"unsupported ignore selector {selector!r}; use #id, .class, tag or tag#id.class"
        )
    tag, element_id, class_name = match.groups()
    return Selector(
        tag=tag.lower() if tag else None,
        id=element_id[1:] if element_id else None,
        class_name=class_name[1:] if class_name else None,
    )


def matches_selector(node: VisualNode, selector: str) -> bool:
    """Whether a node is matched by an ignore selector."""
    return parse_selector(selector).matches(node)


def rect_similarity(a: Rect, b: Rect) -> float:
    """Overlap-style similarity of two rects in [0, 1]."""
    extent = a.width + a.height + b.width + b.height
    if extent <= 0:
        return 1.0 if (a.x, a.y) == (b.x, b.y) else 0.0
    position = (abs(a.x - b.x) + abs(a.y - b.y)) / extent
    size = (abs(a.width - b.width) + abs(a.height - b.height)) / extent
    return max(0.0, 1 - (position + size))


def identity_key(node: VisualNode, index: int) -> str:
    return f"{node.tag_name}-{node.class_name}-{node.id}-{index}"


def identity_keys(nodes: Sequence[VisualNode]) -> list[str]:
    """Generated keys; the index counts earlier nodes with the same tag, class and id."""
    seen: dict[str, int] = {}
    keys = []
    for node in nodes:
        prefix = f"{node.tag_name}-{node.class_name}-{node.id}"
        index = seen.get(prefix, 0)
        seen[prefix] = index + 1
        keys.append(identity_key(node, index))
    return keys


def _rect_changes(a: Rect, b: Rect, threshold: float) -> list[PropertyChange]:
    changes = []
    for prop in ("x", "y", "width", "height"):
        before = getattr(a, prop)
        after = getattr(b, prop)
        if abs(after - before) > threshold:
            changes.append(PropertyChange(prop, before, after))
    return changes


def _style_value(node: VisualNode, camel: str, snake: str) -> str | None:
    style = node.computed_style
    if camel in style:
        return style[camel]
    return style.get(snake)


def _text_changed(before: str, after: str, options: CompareOptions) -> bool:
    mode = options.text_compare_mode
    if mode == TextCompareMode.EXACT:
        return before != after
    if mode == TextCompareMode.NORMALIZED:
        return normalize_text(
            before, options.case_sensitive, options.remove_extra_spaces, options.trim_lines
        ) != normalize_text(
            after, options.case_sensitive, options.remove_extra_spaces, options.trim_lines
        )
    similarity, _, _ = normalized_text_similarity(
        before,
        after,
        case_sensitive=options.case_sensitive,
        remove_extra_spaces=options.remove_extra_spaces,
        trim_lines=options.trim_lines,
    )
    return similarity < options.text_similarity_threshold


def element_changes(a: VisualNode, b: VisualNode, options: CompareOptions) -> list[PropertyChange]:
    """Property changes between two paired elements."""
    changes = _rect_changes(a.rect, b.rect, options.threshold)

    if not options.ignore_text and a.text is not None and b.text is not None:
        if _text_changed(a.text, b.text, options):
            changes.append(PropertyChange("text", a.text, b.text))

    if not options.ignore_style:
        for camel, snake in STYLE_PROPERTIES:
            before = _style_value(a, camel, snake)
            after = _style_value(b, camel, snake)
            if before != after:
                changes.append(PropertyChange(camel, before, after))

    return changes


def group_changes(a: SemanticGroup, b: SemanticGroup, options: CompareOptions) -> list[PropertyChange]:
    """Property changes between two paired semantic groups."""
    changes = _rect_changes(a.bounds, b.bounds, options.threshold)
    if abs(a.importance - b.importance) > IMPORTANCE_DELTA:
        changes.append(PropertyChange("importance", a.importance, b.importance))
    if not options.ignore_text and a.label != b.label:
        changes.append(PropertyChange("label", a.label, b.label))
    return changes


def _difference_type(changes: Iterable[PropertyChange]) -> DifferenceType:
    if all(change.property in POSITION_PROPERTIES for change in changes):
        return DifferenceType.MOVED
    return DifferenceType.MODIFIED


def _bounds_of(item: VisualNode | SemanticGroup) -> Rect:
    return item.rect if isinstance(item, VisualNode) else item.bounds


def _changed_difference(
    path: str,
    before: VisualNode | SemanticGroup,
    after: VisualNode | SemanticGroup,
    changes: list[PropertyChange],
    difference_type: DifferenceType | None = None,
) -> VisualDifference:
    a = _bounds_of(before)
    b = _bounds_of(after)
    return VisualDifference(
        type=difference_type or _difference_type(changes),
        path=path,
        element=after,
        previous_element=before,
        changes=changes,
        position_diff=math.hypot(b.x - a.x, b.y - a.y),
        size_diff=math.hypot(b.width - a.width, b.height - a.height),
    )


def _change_impact(difference: VisualDifference) -> float:
    position = min(IMPACT_CAP, (difference.position_diff or 0.0) / IMPACT_SCALE)
    size = min(IMPACT_CAP, (difference.size_diff or 0.0) / IMPACT_SCALE)
    return max(position, size, IMPACT_FLOOR)


class LayoutComparator:
    """Compares two layout snapshots.

    Instances are stateless apart from their injected collaborators, so one
    comparator can serve any number of comparisons, concurrently or not.
    """

    def __init__(self, matcher: NodeMatcher | None = None):
        self.matcher = matcher or NodeMatcher()

    @classmethod
    def from_settings(cls, settings: Settings) -> "LayoutComparator":
        return cls(matcher=NodeMatcher.from_settings(settings))

    # Shared input handling

    def _check_viewports(
        self, baseline: LayoutSnapshot, current: LayoutSnapshot, options: CompareOptions
    ) -> None:
        if options.allow_viewport_mismatch:
            return
        if baseline.viewport_size != current.viewport_size:
            raise ViewportMismatchError(baseline.viewport, current.viewport)

    def _visible_elements(self, snapshot: LayoutSnapshot, options: CompareOptions) -> list[VisualNode]:
        if not options.ignore_selectors:
            return list(snapshot.elements)
        selectors = [parse_selector(selector) for selector in options.ignore_selectors]
        return [
            element
            for element in snapshot.elements
            if not any(selector.matches(element) for selector in selectors)
        ]

    def _visible_groups(
        self, groups: Sequence[SemanticGroup], options: CompareOptions
    ) -> list[SemanticGroup]:
        return [
            group
            for group in groups
            if group.type.value not in options.ignore_types and group.importance >= options.min_importance
        ]

    def _group_count(self, groups: Sequence[SemanticGroup], options: CompareOptions) -> int:
        count = 0
        stack = list(self._visible_groups(groups, options))
        while stack:
            group = stack.pop()
            count += 1
            stack.extend(self._visible_groups(group.children, options))
        return count

    # Impact-weighted comparison

    def compare(
        self,
        baseline: LayoutSnapshot,
        current: LayoutSnapshot,
        options: CompareOptions | None = None,
    ) -> ComparisonResult:
        """Compare two snapshots with impact-weighted similarity (0-100)."""
        options = options or CompareOptions()
        self._check_viewports(baseline, current, options)

        baseline_elements = self._visible_elements(baseline, options)
        current_elements = self._visible_elements(current, options)

        if options.matching == MatchingStrategy.SIMILARITY:
            differences = self._diff_elements_by_similarity(baseline_elements, current_elements, options)
        else:
            differences = self._diff_elements_by_identity(baseline_elements, current_elements, options)

        baseline_groups: Sequence[SemanticGroup] = ()
        current_groups: Sequence[SemanticGroup] = ()
        if baseline.semantic_groups is not None and current.semantic_groups is not None:
            baseline_groups = baseline.semantic_groups
            current_groups = current.semantic_groups
            differences.extend(self._diff_groups_by_identity(baseline_groups, current_groups, options))

        max_elements = max(
            len(baseline_elements) + self._group_count(baseline_groups, options),
            len(current_elements) + self._group_count(current_groups, options),
        )
        impact = sum(
            1.0 if difference.type in (DifferenceType.ADDED, DifferenceType.REMOVED)
            else _change_impact(difference)
            for difference in differences
        )
        similarity = 100.0 if max_elements == 0 else 100 * max(0.0, 1 - impact / max_elements)

        result = ComparisonResult(
            similarity=similarity,
            differences=differences,
            summary=ComparisonSummary.from_differences(differences),
        )
        logger.info(
            "Layout comparison complete",
            url=current.url,
            strategy=options.matching.value,
            similarity=round(similarity, 2),
            differences=len(differences),
        )
        return result

    def _diff_elements_by_identity(
        self,
        baseline: Sequence[VisualNode],
        current: Sequence[VisualNode],
        options: CompareOptions,
    ) -> list[VisualDifference]:
        differences: list[VisualDifference] = []
        current_index = {key: i for i, key in enumerate(identity_keys(current))}
        matched: set[int] = set()

        for i, key in enumerate(identity_keys(baseline)):
            j = current_index.get(key)
            if j is None:
                differences.append(
                    VisualDifference(
                        type=DifferenceType.REMOVED,
                        path=f"element[{i}]",
                        previous_element=baseline[i],
                    )
                )
                continue
            matched.add(j)
            changes = element_changes(baseline[i], current[j], options)
            if changes:
                differences.append(_changed_difference(f"element[{j}]", baseline[i], current[j], changes))

        for j, node in enumerate(current):
            if j not in matched:
                differences.append(
                    VisualDifference(type=DifferenceType.ADDED, path=f"element[{j}]", element=node)
                )
        return differences

    def _diff_elements_by_similarity(
        self,
        baseline: Sequence[VisualNode],
        current: Sequence[VisualNode],
        options: CompareOptions,
    ) -> list[VisualDifference]:
        position_in_baseline = {id(node): i for i, node in enumerate(baseline)}
        position_in_current = {id(node): j for j, node in enumerate(current)}
        differences: list[VisualDifference] = []

        for match in self.matcher.match(baseline, current):
            if match.match_type == MatchType.REMOVED:
                differences.append(
                    VisualDifference(
                        type=DifferenceType.REMOVED,
                        path=f"element[{position_in_baseline[id(match.baseline)]}]",
                        previous_element=match.baseline,
                    )
                )
            elif match.match_type == MatchType.ADDED:
                differences.append(
                    VisualDifference(
                        type=DifferenceType.ADDED,
                        path=f"element[{position_in_current[id(match.current)]}]",
                        element=match.current,
                    )
                )
            else:
                changes = element_changes(match.baseline, match.current, options)
                if changes:
                    differences.append(
                        _changed_difference(
                            f"element[{position_in_current[id(match.current)]}]",
                            match.baseline,
                            match.current,
                            changes,
                        )
                    )
        return differences

    def _diff_groups_by_identity(
        self,
        baseline: Sequence[SemanticGroup],
        current: Sequence[SemanticGroup],
        options: CompareOptions,
    ) -> list[VisualDifference]:
        differences: list[VisualDifference] = []
        stack: list[tuple[list[SemanticGroup], list[SemanticGroup], str | None]] = [
            (self._visible_groups(baseline, options), self._visible_groups(current, options), None)
        ]
        while stack:
            baseline_level, current_level, parent_path = stack.pop()

            def path_for(index: int) -> str:
                if parent_path is None:
                    return f"semanticGroup[{index}]"
                return f"{parent_path}/child[{index}]"

            current_index = {key: j for j, key in enumerate(_group_keys(current_level))}
            matched: set[int] = set()
            for i, key in enumerate(_group_keys(baseline_level)):
                j = current_index.get(key)
                if j is None:
                    differences.append(
                        VisualDifference(
                            type=DifferenceType.REMOVED,
                            path=path_for(i),
                            previous_element=baseline_level[i],
                        )
                    )
                    continue
                matched.add(j)
                before, after = baseline_level[i], current_level[j]
                changes = group_changes(before, after, options)
                if changes:
                    differences.append(_changed_difference(path_for(j), before, after, changes))
                stack.append((
                    self._visible_groups(before.children, options),
                    self._visible_groups(after.children, options),
                    path_for(j),
                ))

            for j, group in enumerate(current_level):
                if j not in matched:
                    differences.append(
                        VisualDifference(type=DifferenceType.ADDED, path=path_for(j), element=group)
                    )
        return differences

    # Semantic-tree comparison

    def compare_layouts(
        self,
        baseline: LayoutSnapshot,
        current: LayoutSnapshot,
        options: CompareOptions | None = None,
    ) -> ComparisonResult:
        """Semantic-tree comparison with moved changes discounted to 0.2."""
        options = options or CompareOptions()
        self._check_viewports(baseline, current, options)

        baseline_elements = self._visible_elements(baseline, options)
        current_elements = self._visible_elements(current, options)
        differences = self._diff_elements_by_rect(baseline_elements, current_elements, options)

        baseline_groups = self._visible_groups(baseline.semantic_groups or (), options)
        current_groups = self._visible_groups(current.semantic_groups or (), options)
        if baseline.semantic_groups is not None and current.semantic_groups is not None:
            differences.extend(self._diff_group_trees(baseline_groups, current_groups, options))

        summary = ComparisonSummary.from_differences(differences)
        weighted_changes = summary.added + summary.removed + summary.modified + summary.moved * MOVED_WEIGHT
        total = max(
            len(baseline_groups) + len(baseline_elements),
            len(current_groups) + len(current_elements),
        )
        similarity = 100.0 if total == 0 else max(0.0, 1 - weighted_changes / total) * 100

        logger.info(
            "Semantic layout comparison complete",
            url=current.url,
            similarity=round(similarity, 2),
            **summary.to_dict(),
        )
        return ComparisonResult(similarity=similarity, differences=differences, summary=summary)

    def _diff_elements_by_rect(
        self,
        baseline: Sequence[VisualNode],
        current: Sequence[VisualNode],
        options: CompareOptions,
    ) -> list[VisualDifference]:
        differences: list[VisualDifference] = []
        matched_baseline: set[int] = set()
        matched_current: set[int] = set()

        for j, after in enumerate(current):
            best_index = -1
            best_similarity = RECT_MATCH
            for i, before in enumerate(baseline):
                if i in matched_baseline:
                    continue
                if (before.tag_name, before.class_name, before.id) != (after.tag_name, after.class_name, after.id):
                    continue
                similarity = rect_similarity(before.rect, after.rect)
                if similarity > best_similarity:
                    best_index = i
                    best_similarity = similarity
            if best_index < 0:
                continue
            matched_baseline.add(best_index)
            matched_current.add(j)
            changes = element_changes(baseline[best_index], after, options)
            if changes:
                differences.append(_changed_difference(f"element[{j}]", baseline[best_index], after, changes))

        for i, node in enumerate(baseline):
            if i not in matched_baseline:
                differences.append(
                    VisualDifference(type=DifferenceType.REMOVED, path=f"element[{i}]", previous_element=node)
                )
        for j, node in enumerate(current):
            if j not in matched_current:
                differences.append(
                    VisualDifference(type=DifferenceType.ADDED, path=f"element[{j}]", element=node)
                )
        return differences

    def _diff_group_trees(
        self,
        baseline: list[SemanticGroup],
        current: list[SemanticGroup],
        options: CompareOptions,
    ) -> list[VisualDifference]:
        differences: list[VisualDifference] = []
        stack: list[tuple[list[SemanticGroup], list[SemanticGroup], str | None]] = [
            (baseline, current, None)
        ]
        while stack:
            baseline_level, current_level, parent_path = stack.pop()
            top_level = parent_path is None

            def path_for(index: int) -> str:
                if parent_path is None:
                    return f"semanticGroup[{index}]"
                return f"{parent_path}/child[{index}]"

            matched_baseline: set[int] = set()
            matched_current: set[int] = set()
            nested: list[tuple[list[SemanticGroup], list[SemanticGroup], str]] = []

            passes = [(False, RECT_MATCH)]
            if top_level:
                passes.append((True, RECT_MATCH_RETYPED))
            for retyped, floor in passes:
                for j, after in enumerate(current_level):
                    if j in matched_current:
                        continue
                    best_index = -1
                    best_similarity = floor
                    for i, before in enumerate(baseline_level):
                        if i in matched_baseline:
                            continue
                        if not retyped and before.type != after.type:
                            continue
                        similarity = rect_similarity(before.bounds, after.bounds)
                        if similarity > best_similarity:
                            best_index = i
                            best_similarity = similarity
                    if best_index < 0:
                        continue

                    matched_baseline.add(best_index)
                    matched_current.add(j)
                    before = baseline_level[best_index]
                    changes = group_changes(before, after, options)
                    if retyped:
                        changes.append(PropertyChange("type", before.type.value, after.type.value))
                        differences.append(
                            _changed_difference(path_for(j), before, after, changes, DifferenceType.MODIFIED)
                        )
                    elif changes:
                        differences.append(_changed_difference(path_for(j), before, after, changes))
                    nested.append((
                        self._visible_groups(before.children, options),
                        self._visible_groups(after.children, options),
                        path_for(j),
                    ))

            for i, group in enumerate(baseline_level):
                if i not in matched_baseline:
                    differences.append(
                        VisualDifference(type=DifferenceType.REMOVED, path=path_for(i), previous_element=group)
                    )
            for j, group in enumerate(current_level):
                if j not in matched_current:
                    differences.append(
                        VisualDifference(type=DifferenceType.ADDED, path=path_for(j), element=group)
                    )
            stack.extend(reversed(nested))
        return differences


def _group_keys(groups: Sequence[SemanticGroup]) -> list[str]:
    seen: dict[str, int] = {}
    keys = []
    for group in groups:
        index = seen.get(group.type.value, 0)
        seen[group.type.value] = index + 1
        keys.append(f"{group.type.value}-{index}")
    return keys


def compare(
    baseline: LayoutSnapshot,
    current: LayoutSnapshot,
    options: CompareOptions | None = None,
    **overrides,
) -> ComparisonResult:
    """Impact-weighted comparison with a default comparator."""
    if overrides:
        options = CompareOptions.model_validate({**(options or CompareOptions()).model_dump(), **overrides})
    return LayoutComparator().compare(baseline, current, options)


def compare_layouts(
    baseline: LayoutSnapshot,
    current: LayoutSnapshot,
    options: CompareOptions | None = None,
    **overrides,
) -> ComparisonResult:
    """Semantic-tree comparison with a default comparator."""
    if overrides:
        options = CompareOptions.model_validate({**(options or CompareOptions()).model_dump(), **overrides})
    return LayoutComparator().compare_layouts(baseline, current, options)


def has_layout_changed(
    baseline: LayoutSnapshot,
    current: LayoutSnapshot,
    options: CompareOptions | None = None,
) -> bool:
    return not compare_layouts(baseline, current, options).identical


def is_layout_similar(
    baseline: LayoutSnapshot,
    current: LayoutSnapshot,
    similarity_threshold: float = 95.0,
    options: CompareOptions | None = None,
) -> bool:
    return compare_layouts(baseline, current, options).similarity >= similarity_threshold
