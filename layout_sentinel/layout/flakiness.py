"""Flakiness detection across repeated snapshots of the same page state.

Elements are followed across samples by a fingerprint, never by the
snapshot-local group ids or list positions:

- elements: tag, role and the ordinal among earlier elements sharing both
- groups: type and ordinal among siblings of that type, prefixed by the
  parent group's fingerprint

Each tracked property collects one value per sample. Numeric geometry is
bucketed to the configured threshold before counting, so sub-threshold
jitter is not flakiness.
"""

import json
import math
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

import structlog

from ..config import Settings
from ..utils.logging import snapshot_context
from .comparator import CompareOptions, LayoutComparator
from .exceptions import InsufficientSamplesError
from .models import LayoutSnapshot, SemanticGroup, VisualNode

logger = structlog.get_logger()

POSITION_PROPERTIES = ("x", "y")
SIZE_PROPERTIES = ("width", "height")
CONTENT_PROPERTIES = ("text", "label")
REPORT_TOP_ELEMENTS = 10
TEXT_REPORT_VALUES = 3


class FlakinessType(str, Enum):
    """Kind of instability observed for one element."""

    POSITION = "position"
    SIZE = "size"
    CONTENT = "content"
    EXISTENCE = "existence"
    STYLE = "style"
    MIXED = "mixed"


CATEGORIES = (
    FlakinessType.POSITION,
    FlakinessType.SIZE,
    FlakinessType.CONTENT,
    FlakinessType.EXISTENCE,
    FlakinessType.STYLE,
)


def property_category(property_name: str) -> FlakinessType:
    if property_name == "existence":
        return FlakinessType.EXISTENCE
    if property_name in POSITION_PROPERTIES:
        return FlakinessType.POSITION
    if property_name in SIZE_PROPERTIES:
        return FlakinessType.SIZE
    if property_name in CONTENT_PROPERTIES:
        return FlakinessType.CONTENT
    return FlakinessType.STYLE


@dataclass
class ValueCount:
    """How often one (bucketed) value was observed."""

    value: Any
    count: int
    percentage: float

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "count": self.count, "percentage": self.percentage}


@dataclass
class VariationDetail:
    """Observed value distribution of one unstable property."""

    property: str
    values: list[ValueCount]
    variance: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "property": self.property,
            "values": [value.to_dict() for value in self.values],
            "variance": self.variance,
        }


@dataclass
class FlakyElement:
    """An element whose properties or presence vary between samples."""

    path: str
    fingerprint: str
    identifier: dict[str, Any]
    flakiness_type: FlakinessType
    score: float
    variations: list[VariationDetail] = field(default_factory=list)
    occurrence_count: int = 0
    occurrence_rate: float = 1.0

    @property
    def is_group(self) -> bool:
        return self.path.startswith("semanticGroup")

    def main_category(self) -> FlakinessType:
        """Category with the largest summed variance; the type itself unless mixed."""
        if self.flakiness_type != FlakinessType.MIXED:
            return self.flakiness_type
        scores = {category: 0.0 for category in CATEGORIES}
        for variation in self.variations:
            scores[property_category(variation.property)] += variation.variance
        # max() keeps the first category on ties
        return max(CATEGORIES, key=lambda category: scores[category])

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "fingerprint": self.fingerprint,
            "identifier": dict(self.identifier),
            "flakiness_type": self.flakiness_type.value,
            "score": self.score,
            "variations": [variation.to_dict() for variation in self.variations],
            "occurrence_count": self.occurrence_count,
            "occurrence_rate": self.occurrence_rate,
        }


@dataclass
class FlakinessAnalysis:
    """Result of a flakiness run over several samples.

    ``overall_score`` is the percentage of tracked elements that are
    unstable (0 means fully stable).
    """

    overall_score: float
    flaky_elements: list[FlakyElement]
    stable_count: int
    unstable_count: int
    sample_count: int
    categorized: dict[FlakinessType, list[FlakyElement]]
    reference_similarities: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "flaky_elements": [element.to_dict() for element in self.flaky_elements],
            "stable_count": self.stable_count,
            "unstable_count": self.unstable_count,
            "sample_count": self.sample_count,
            "categorized": {
                category.value: [element.path for element in elements]
                for category, elements in self.categorized.items()
            },
            "reference_similarities": list(self.reference_similarities),
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class _Tracker:
    path: str
    identifier: dict[str, Any]
    occurrences: dict[str, list[Any]] = field(default_factory=dict)
    appearances: int = 0

    def record(self, property_name: str, value: Any) -> None:
        self.occurrences.setdefault(property_name, []).append(value)


class FlakinessDetector:
    """Finds elements whose geometry, content, style or presence varies across samples."""

    def __init__(
        self,
        position_threshold: float = 5.0,
        size_threshold: float = 5.0,
        flakiness_threshold: float = 0.2,
        ignore_text: bool = False,
        ignore_style: bool = False,
        comparator: LayoutComparator | None = None,
    ):
        self.position_threshold = position_threshold
        self.size_threshold = size_threshold
        self.flakiness_threshold = flakiness_threshold
        self.ignore_text = ignore_text
        self.ignore_style = ignore_style
        self.comparator = comparator or LayoutComparator()

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "FlakinessDetector":
        values: dict[str, Any] = {
            "position_threshold": settings.flaky_position_threshold,
            "size_threshold": settings.flaky_size_threshold,
            "flakiness_threshold": settings.flakiness_threshold,
        }
        values.update(overrides)
        return cls(**values)

    def detect(self, samples: Sequence[LayoutSnapshot]) -> FlakinessAnalysis:
        if len(samples) < 2:
            raise InsufficientSamplesError(len(samples), operation="flakiness detection")

        trackers: dict[str, _Tracker] = {}
        for sample in samples:
            self._track_snapshot(sample, trackers)

        reference = samples[0]
        options = CompareOptions(
            threshold=min(self.position_threshold, self.size_threshold),
            ignore_text=self.ignore_text,
            ignore_style=self.ignore_style,
        )
        reference_similarities: list[float] = []
        for index, sample in enumerate(samples[1:], start=1):
            with snapshot_context(sample, sample_index=index):
                reference_similarities.append(self.comparator.compare_layouts(reference, sample, options).similarity)

        flaky_elements: list[FlakyElement] = []
        categorized: dict[FlakinessType, list[FlakyElement]] = {category: [] for category in CATEGORIES}
        for fingerprint, tracker in trackers.items():
            element = self._analyze(fingerprint, tracker, len(samples))
            if element is None:
                continue
            flaky_elements.append(element)
            categorized[element.main_category()].append(element)

        flaky_elements.sort(key=lambda element: element.score, reverse=True)
        unstable = len(flaky_elements)
        total = len(trackers)
        analysis = FlakinessAnalysis(
            overall_score=unstable / total * 100 if total else 0.0,
            flaky_elements=flaky_elements,
            stable_count=total - unstable,
            unstable_count=unstable,
            sample_count=len(samples),
            categorized=categorized,
            reference_similarities=reference_similarities,
        )

        logger.info(
            "Flakiness analysis complete",
            samples=len(samples),
            tracked=total,
            unstable=unstable,
            overall_score=round(analysis.overall_score, 2),
        )
        return analysis

    def _track_snapshot(self, snapshot: LayoutSnapshot, trackers: dict[str, _Tracker]) -> None:
        ordinals: Counter[tuple[str, str]] = Counter()
        for index, element in enumerate(snapshot.elements):
            signature = (element.tag_name, element.role or "")
            fingerprint = f"element:{element.tag_name}:{element.role or ''}:{ordinals[signature]}"
            ordinals[signature] += 1
            tracker = trackers.get(fingerprint)
            if tracker is None:
                tracker = _Tracker(
                    path=f"element[{index}]",
                    identifier={
                        "tag_name": element.tag_name,
                        "id": element.id,
                        "class_name": element.class_name,
                    },
                )
                trackers[fingerprint] = tracker
            self._record_element(tracker, element)

        stack: list[tuple[Sequence[SemanticGroup], str, str]] = [
            (snapshot.semantic_groups or (), "semanticGroup", "")
        ]
        while stack:
            groups, path_prefix, parent_fingerprint = stack.pop()
            group_ordinals: Counter[str] = Counter()
            for index, group in enumerate(groups):
                kind = group.type.value
                fingerprint = f"{parent_fingerprint}/group:{kind}:{group_ordinals[kind]}"
                group_ordinals[kind] += 1
                path = f"semanticGroup[{index}]" if not parent_fingerprint else f"{path_prefix}/child[{index}]"
                tracker = trackers.get(fingerprint)
                if tracker is None:
                    tracker = _Tracker(path=path, identifier={"type": kind, "label": group.label})
                    trackers[fingerprint] = tracker
                self._record_group(tracker, group)
                if group.children:
                    stack.append((group.children, path, fingerprint))

    def _record_element(self, tracker: _Tracker, element: VisualNode) -> None:
        tracker.appearances += 1
        for prop in ("x", "y", "width", "height"):
            tracker.record(prop, getattr(element.rect, prop))
        if not self.ignore_text and element.text is not None:
            tracker.record("text", element.text)
        if not self.ignore_style:
            tracker.record("class_name", element.class_name)
            font_size = element.computed_style.get("fontSize") or element.computed_style.get("font_size")
            if font_size:
                tracker.record("fontSize", font_size)

    def _record_group(self, tracker: _Tracker, group: SemanticGroup) -> None:
        tracker.appearances += 1
        # Built groups enclose their members, whose own drift is already tracked
        if not group.elements:
            for prop in ("x", "y", "width", "height"):
                tracker.record(prop, getattr(group.bounds, prop))
        if not self.ignore_text:
            tracker.record("label", group.label)

    def _bucket(self, value: Any, property_name: str) -> Any:
        if value is None:
            return None
        if isinstance(value, (int, float)) and property_name in POSITION_PROPERTIES + SIZE_PROPERTIES:
            step = self.position_threshold if property_name in POSITION_PROPERTIES else self.size_threshold
            if step <= 0:
                return value
            # Half-up rounding so 2.5 steps land in the upper bucket
            return math.floor(value / step + 0.5) * step
        return value

    def _variation(self, property_name: str, values: list[Any]) -> VariationDetail | None:
        counts = Counter(self._bucket(value, property_name) for value in values)
        if len(counts) <= 1:
            return None
        total = len(values)
        distribution = [
            ValueCount(value=value, count=count, percentage=count / total * 100)
            for value, count in counts.most_common()
        ]
        return VariationDetail(
            property=property_name,
            values=distribution,
            variance=1 - distribution[0].count / total,
        )

    def _analyze(self, fingerprint: str, tracker: _Tracker, sample_count: int) -> FlakyElement | None:
        variations: list[VariationDetail] = []
        for property_name, values in tracker.occurrences.items():
            variation = self._variation(property_name, values)
            if variation is not None and variation.variance > self.flakiness_threshold:
                variations.append(variation)

        occurrence_rate = tracker.appearances / sample_count
        if 0 < occurrence_rate < 1:
            variations.append(
                VariationDetail(
                    property="existence",
                    values=[
                        ValueCount("present", tracker.appearances, occurrence_rate * 100),
                        ValueCount(
                            "absent",
                            sample_count - tracker.appearances,
                            (1 - occurrence_rate) * 100,
                        ),
                    ],
                    variance=1 - occurrence_rate,
                )
            )

        if not variations:
            return None

        categories = {property_category(variation.property) for variation in variations}
        if FlakinessType.EXISTENCE in categories:
            flakiness_type = FlakinessType.EXISTENCE
        elif len(categories) == 1:
            flakiness_type = categories.pop()
        else:
            flakiness_type = FlakinessType.MIXED

        return FlakyElement(
            path=tracker.path,
            fingerprint=fingerprint,
            identifier=tracker.identifier,
            flakiness_type=flakiness_type,
            score=sum(variation.variance * 100 for variation in variations) / len(variations),
            variations=variations,
            occurrence_count=tracker.appearances,
            occurrence_rate=occurrence_rate,
        )


def detect_flakiness(samples: Sequence[LayoutSnapshot], **options) -> FlakinessAnalysis:
    """Run a default-configured detector; keyword options go to ``FlakinessDetector``."""
    return FlakinessDetector(**options).detect(samples)


def _format_value(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def generate_flakiness_report(
    analysis: FlakinessAnalysis,
    verbosity: str = "detailed",
    fmt: str = "text",
) -> str:
    """Render an analysis as text, markdown or JSON.

    Args:
        analysis: Result of ``FlakinessDetector.detect``
        verbosity: ``summary`` (counts only), ``detailed`` (plus categories
            and the top 10 elements) or ``full`` (plus value distributions)
        fmt: ``text``, ``markdown`` or ``json``

    Returns:
        The rendered report
    """
    if verbosity not in ("summary", "detailed", "full"):
        raise ValueError(f"Unknown report verbosity: {verbosity}")
    if fmt not in ("text", "markdown", "json"):
        raise ValueError(f"Unknown report format: {fmt}")

    if fmt == "json":
        return analysis.to_json()

    lines: list[str] = []
    markdown = fmt == "markdown"

    if markdown:
        lines.append("# Flakiness Report")
        lines.append("")
        lines.append("## Summary")
        lines.append(f"- **Overall score**: {analysis.overall_score:.1f}% (0% is fully stable)")
        lines.append(f"- **Samples**: {analysis.sample_count}")
        lines.append(f"- **Stable elements**: {analysis.stable_count}")
        lines.append(f"- **Unstable elements**: {analysis.unstable_count}")
    else:
        lines.append("=== Flakiness Report ===")
        lines.append(f"Overall score: {analysis.overall_score:.1f}% (0% is fully stable)")
        lines.append(f"Samples: {analysis.sample_count}")
        lines.append(f"Stable elements: {analysis.stable_count}")
        lines.append(f"Unstable elements: {analysis.unstable_count}")
    lines.append("")

    if verbosity == "summary":
        return "\n".join(lines)

    lines.append("## By category" if markdown else "By category:")
    for category, elements in analysis.categorized.items():
        if elements:
            if markdown:
                lines.append(f"- **{category.value}**: {len(elements)} elements")
            else:
                lines.append(f"  {category.value}: {len(elements)} elements")
    lines.append("")

    lines.append(
        f"## Unstable elements (top {REPORT_TOP_ELEMENTS})"
        if markdown
        else f"Unstable elements (top {REPORT_TOP_ELEMENTS}):"
    )
    for index, element in enumerate(analysis.flaky_elements[:REPORT_TOP_ELEMENTS], start=1):
        if markdown:
            lines.append(f"### {index}. {element.path}")
            lines.append(f"- **Score**: {element.score:.1f}%")
            lines.append(f"- **Type**: {element.flakiness_type.value}")
            lines.append(f"- **Occurrence rate**: {element.occurrence_rate * 100:.1f}%")
        else:
            lines.append(f"{index}. {element.path}")
            lines.append(f"   Score: {element.score:.1f}%")
            lines.append(f"   Type: {element.flakiness_type.value}")
            lines.append(f"   Occurrence rate: {element.occurrence_rate * 100:.1f}%")

        if verbosity == "full" and element.variations:
            lines.append("- **Variations**:" if markdown else "   Variations:")
            for variation in element.variations:
                values = variation.values if markdown else variation.values[:TEXT_REPORT_VALUES]
                rendered = ", ".join(
                    f"{_format_value(value.value)} ({value.percentage:.1f}%)" for value in values
                )
                if markdown:
                    lines.append(f"  - {variation.property}: {rendered}")
                else:
                    lines.append(f"     {variation.property}: {rendered}")
        lines.append("")

    return "\n".join(lines)
