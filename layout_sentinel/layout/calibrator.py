"""Derives comparison tolerances from repeated samples of a stable page.

Calibration compares every pair of samples, measures how far matched
elements and groups drift and resize, and widens the comparator defaults
just enough to absorb that noise. Flaky elements found by the flakiness
detector become ignore selectors, classes or group types.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from itertools import combinations
from typing import Any, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..config import TextCompareMode
from ..utils.logging import log_operation
from .comparator import CompareOptions, LayoutComparator
from .exceptions import InsufficientSamplesError
from .flakiness import FlakinessDetector, FlakinessType, FlakyElement
from .models import DifferenceType, LayoutSnapshot, Rect, SemanticGroup, VisualDifference, VisualNode
from .text_similarity import text_similarity

logger = structlog.get_logger()

MIN_POSITION_TOLERANCE = 2
MIN_SIZE_TOLERANCE = 5
MIN_TEXT_SIMILARITY = 0.8
DEFAULT_IMPORTANCE_THRESHOLD = 10
VIOLATION_PENALTY = 25

_SELECTOR_TOKEN = re.compile(r"^[\w-]+$")


class Strictness(str, Enum):
    """How tightly calibrated tolerances hug the observed noise."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def multiplier(self) -> float:
        return {"low": 1.5, "medium": 1.0, "high": 0.7}[self.value]


class ComparisonSettings(BaseModel):
    """Calibrated tolerances for comparing future snapshots of a page.

    Attributes:
        position_tolerance: Allowed position drift in pixels
        size_tolerance: Allowed size change in percent
        text_similarity_threshold: Fuzzy text score (0-1) treated as unchanged
        similarity_threshold: Minimum comparison similarity (0-100)
        importance_threshold: Groups below this importance are not checked
        ignore_selectors: Selectors of dynamic elements
        ignore_classes: Classes of elements whose content or presence varies
        ignore_types: Semantic group types whose content or presence varies
    """

    model_config = ConfigDict(frozen=True)

    position_tolerance: int = Field(MIN_POSITION_TOLERANCE, ge=0)
    size_tolerance: int = Field(MIN_SIZE_TOLERANCE, ge=0)
    text_similarity_threshold: float = Field(MIN_TEXT_SIMILARITY, ge=0.0, le=1.0)
    similarity_threshold: float = Field(95.0, ge=0.0, le=100.0)
    importance_threshold: float = Field(DEFAULT_IMPORTANCE_THRESHOLD, ge=0.0, le=100.0)
    ignore_selectors: tuple[str, ...] = ()
    ignore_classes: tuple[str, ...] = ()
    ignore_types: tuple[str, ...] = ()

    def to_compare_options(self, **overrides) -> CompareOptions:
        """Comparator options that apply these tolerances."""
        values: dict[str, Any] = {
            "threshold": self.position_tolerance,
            "text_compare_mode": TextCompareMode.SIMILARITY,
            "text_similarity_threshold": self.text_similarity_threshold,
            "ignore_selectors": self.ignore_selectors + tuple(f".{cls}" for cls in self.ignore_classes),
            "ignore_types": self.ignore_types,
            "min_importance": self.importance_threshold,
        }
        values.update(overrides)
        return CompareOptions(**values)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class SampleStats:
    """Noise statistics measured over all sample pairs."""

    avg_position_variance: float
    avg_size_variance: float  # percent
    avg_text_similarity: float
    stable_element_ratio: float

    def to_dict(self) -> dict[str, float]:
        return {
            "avg_position_variance": self.avg_position_variance,
            "avg_size_variance": self.avg_size_variance,
            "avg_text_similarity": self.avg_text_similarity,
            "stable_element_ratio": self.stable_element_ratio,
        }


@dataclass
class DynamicElementInfo:
    """A flaky element that calibration decided to ignore."""

    path: str
    selector: str | None
    flakiness_score: float
    reason: FlakinessType
    occurrence_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "selector": self.selector,
            "flakiness_score": self.flakiness_score,
            "reason": self.reason.value,
            "occurrence_rate": self.occurrence_rate,
        }


@dataclass
class CalibrationResult:
    """Calibrated settings plus the evidence they were derived from."""

    settings: ComparisonSettings
    confidence: float
    sample_stats: SampleStats
    dynamic_elements: list[DynamicElementInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "settings": self.settings.to_dict(),
            "confidence": self.confidence,
            "sample_stats": self.sample_stats.to_dict(),
            "dynamic_elements": [element.to_dict() for element in self.dynamic_elements],
        }


@dataclass
class Violation:
    """A tolerance exceeded by one difference."""

    path: str
    type: str  # position or size
    expected: float
    actual: float
    severity: str  # medium or high

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "type": self.type,
            "expected": self.expected,
            "actual": self.actual,
            "severity": self.severity,
        }


@dataclass
class ValidationResult:
    """Outcome of checking a layout against calibrated settings."""

    is_valid: bool
    similarity: float
    violations: list[Violation]
    total_elements: int
    changed_elements: int

    @property
    def critical_violations(self) -> int:
        return sum(1 for violation in self.violations if violation.severity == "high")

    @property
    def warnings(self) -> int:
        return sum(1 for violation in self.violations if violation.severity == "medium")

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "similarity": self.similarity,
            "violations": [violation.to_dict() for violation in self.violations],
            "summary": {
                "total_elements": self.total_elements,
                "changed_elements": self.changed_elements,
                "critical_violations": self.critical_violations,
                "warnings": self.warnings,
            },
        }


@dataclass
class _Variances:
    max_position_drift: float = 0.0
    avg_position_drift: float = 0.0
    max_size_variance: float = 0.0
    avg_size_variance: float = 0.0
    avg_text_dissimilarity: float = 0.0
    stable_element_ratio: float = 1.0
    min_similarity: float = 100.0


def _bounds(item: VisualNode | SemanticGroup) -> Rect:
    return item.rect if isinstance(item, VisualNode) else item.bounds


def size_variance(difference: VisualDifference) -> float:
    """Largest relative width or height change of a difference (fraction)."""
    before = _bounds(difference.previous_element)
    after = _bounds(difference.element)
    old_width = before.width or 1
    old_height = before.height or 1
    return max(abs(after.width - before.width) / old_width, abs(after.height - before.height) / old_height)


def selector_for(element: FlakyElement) -> str | None:
    """``tag#id.class`` selector for a flaky element.

    None for groups and for elements with neither an id nor a usable class.
    """
    tag = element.identifier.get("tag_name")
    if not tag or not _SELECTOR_TOKEN.match(tag):
        return None
    selector = tag
    element_id = element.identifier.get("id") or ""
    if element_id and _SELECTOR_TOKEN.match(element_id):
        selector += f"#{element_id}"
    classes = (element.identifier.get("class_name") or "").split()
    if classes and _SELECTOR_TOKEN.match(classes[0]):
        selector += f".{classes[0]}"
    return selector if selector != tag else None


class Calibrator:
    """Calibrates comparison settings from repeated samples."""

    def __init__(
        self,
        comparator: LayoutComparator | None = None,
        detector: FlakinessDetector | None = None,
    ):
        self.comparator = comparator or LayoutComparator()
        self.detector = detector or FlakinessDetector(comparator=self.comparator)

    def calibrate(
        self,
        samples: Sequence[LayoutSnapshot],
        strictness: Strictness | str = Strictness.MEDIUM,
        target_stability: float = 95.0,
        detect_dynamic_elements: bool = True,
        dynamic_threshold: float = 50.0,
    ) -> CalibrationResult:
        """Derive comparison settings from at least two samples.

        Args:
            samples: Snapshots of the same page in the same state
            strictness: low widens tolerances 1.5x, high narrows them to 0.7x
            target_stability: Upper bound for the similarity threshold
            detect_dynamic_elements: Run flakiness detection to find elements to ignore
            dynamic_threshold: Flakiness score at or above which an element is ignored

        Returns:
            CalibrationResult with the settings, a confidence score and sample statistics

        Raises:
            InsufficientSamplesError: If fewer than two samples are given
        """
        if len(samples) < 2:
            raise InsufficientSamplesError(len(samples), operation="calibration")
        strictness = Strictness(strictness)
        multiplier = strictness.multiplier

        with log_operation("calibration", logger, samples=len(samples), strictness=strictness.value) as op:
            variances = self._analyze_variances(samples)

            dynamic_elements: list[DynamicElementInfo] = []
            ignore_selectors: list[str] = []
            ignore_classes: list[str] = []
            ignore_types: list[str] = []
            if detect_dynamic_elements:
                analysis = self.detector.detect(samples)
                for element in analysis.flaky_elements:
                    if element.score < dynamic_threshold:
                        continue
                    selector = selector_for(element)
                    dynamic_elements.append(
                        DynamicElementInfo(
                            path=element.path,
                            selector=selector,
                            flakiness_score=element.score,
                            reason=element.flakiness_type,
                            occurrence_rate=element.occurrence_rate,
                        )
                    )
                    if selector and selector not in ignore_selectors:
                        ignore_selectors.append(selector)
                    if element.flakiness_type in (FlakinessType.CONTENT, FlakinessType.EXISTENCE):
                        self._collect_ignorable(element, ignore_classes, ignore_types)

            settings = ComparisonSettings(
                position_tolerance=max(
                    MIN_POSITION_TOLERANCE, math.ceil(variances.max_position_drift * multiplier)
                ),
                size_tolerance=max(
                    MIN_SIZE_TOLERANCE, math.ceil(variances.max_size_variance * 100 * multiplier)
                ),
                text_similarity_threshold=max(
                    MIN_TEXT_SIMILARITY, 1 - variances.avg_text_dissimilarity * multiplier
                ),
                similarity_threshold=min(target_stability, math.floor(variances.min_similarity)),
                importance_threshold=DEFAULT_IMPORTANCE_THRESHOLD,
                ignore_selectors=tuple(ignore_selectors),
                ignore_classes=tuple(ignore_classes),
                ignore_types=tuple(ignore_types),
            )

            sample_confidence = min(100.0, len(samples) * 10.0)
            variance_stability = 100 - (
                variances.avg_position_drift * 2 + variances.avg_size_variance * 100
            )
            confidence = max(0.0, min(100.0, (sample_confidence + variance_stability) / 2))

            result = CalibrationResult(
                settings=settings,
                confidence=confidence,
                sample_stats=SampleStats(
                    avg_position_variance=variances.avg_position_drift,
                    avg_size_variance=variances.avg_size_variance * 100,
                    avg_text_similarity=1 - variances.avg_text_dissimilarity,
                    stable_element_ratio=variances.stable_element_ratio,
                ),
                dynamic_elements=dynamic_elements,
            )
            op["confidence"] = round(confidence, 1)

        logger.info(
            "Calibrated comparison settings",
            position_tolerance=settings.position_tolerance,
            size_tolerance=settings.size_tolerance,
            similarity_threshold=settings.similarity_threshold,
            dynamic_elements=len(dynamic_elements),
            confidence=round(confidence, 1),
        )
        return result

    @staticmethod
    def _collect_ignorable(element: FlakyElement, classes: list[str], types: list[str]) -> None:
        if element.is_group:
            group_type = element.identifier.get("type")
            if group_type and group_type not in types:
                types.append(group_type)
            return
        for cls in (element.identifier.get("class_name") or "").split():
            if _SELECTOR_TOKEN.match(cls) and cls not in classes:
                classes.append(cls)
            break

    def _analyze_variances(self, samples: Sequence[LayoutSnapshot]) -> _Variances:
        options = CompareOptions(threshold=0)
        drifts: list[float] = []
        size_variances: list[float] = []
        text_dissimilarities: list[float] = []
        similarities: list[float] = []

        for baseline, current in combinations(samples, 2):
            result = self.comparator.compare_layouts(baseline, current, options)
            similarities.append(result.similarity)
            for difference in result.differences:
                if difference.type not in (DifferenceType.MOVED, DifferenceType.MODIFIED):
                    continue
                drifts.append(difference.position_diff or 0.0)
                size_variances.append(size_variance(difference))
                for prop in ("text", "label"):
                    change = difference.change_for(prop)
                    if change is not None:
                        text_dissimilarities.append(
                            1 - text_similarity(str(change.before or ""), str(change.after or ""))
                        )

        logger.debug(
            "Sample variances measured",
            pairs=len(similarities),
            changes=len(drifts),
            text_changes=len(text_dissimilarities),
        )
        return _Variances(
            max_position_drift=max(drifts, default=0.0),
            avg_position_drift=sum(drifts) / len(drifts) if drifts else 0.0,
            max_size_variance=max(size_variances, default=0.0),
            avg_size_variance=sum(size_variances) / len(size_variances) if size_variances else 0.0,
            avg_text_dissimilarity=(
                sum(text_dissimilarities) / len(text_dissimilarities) if text_dissimilarities else 0.0
            ),
            stable_element_ratio=sum(similarities) / len(similarities) / 100,
            min_similarity=min(similarities),
        )


def calibrate(samples: Sequence[LayoutSnapshot], **options) -> CalibrationResult:
    """Calibrate with a default calibrator; keyword options go to ``Calibrator.calibrate``."""
    return Calibrator().calibrate(samples, **options)


def validate_with_settings(
    layout: LayoutSnapshot,
    baseline: LayoutSnapshot,
    settings: ComparisonSettings,
    comparator: LayoutComparator | None = None,
) -> ValidationResult:
    """Check a layout against a baseline using calibrated tolerances.

    Every moved or modified difference starts at 100 and loses 25 per
    exceeded tolerance. A violation above twice its tolerance is high
    severity; the layout is valid while there are none of those.
    """
    comparator = comparator or LayoutComparator()
    comparison = comparator.compare_layouts(baseline, layout, settings.to_compare_options(threshold=0))

    violations: list[Violation] = []
    total_score = 0.0
    checked = 0
    for difference in comparison.differences:
        if difference.type not in (DifferenceType.MOVED, DifferenceType.MODIFIED):
            continue
        checked += 1
        score = 100.0

        drift = difference.position_diff or 0.0
        if drift > settings.position_tolerance:
            violations.append(
                Violation(
                    path=difference.path,
                    type="position",
                    expected=settings.position_tolerance,
                    actual=drift,
                    severity="high" if drift > settings.position_tolerance * 2 else "medium",
                )
            )
            score -= VIOLATION_PENALTY

        size_change = size_variance(difference) * 100
        if size_change > settings.size_tolerance:
            violations.append(
                Violation(
                    path=difference.path,
                    type="size",
                    expected=settings.size_tolerance,
                    actual=size_change,
                    severity="high" if size_change > settings.size_tolerance * 2 else "medium",
                )
            )
            score -= VIOLATION_PENALTY

        total_score += score

    result = ValidationResult(
        is_valid=not any(violation.severity == "high" for violation in violations),
        similarity=total_score / checked if checked else 100.0,
        violations=violations,
        total_elements=max(
            len(baseline.elements) + len(baseline.semantic_groups or ()),
            len(layout.elements) + len(layout.semantic_groups or ()),
        ),
        changed_elements=len(comparison.differences),
    )
    logger.info(
        "Layout validated against calibrated settings",
        url=layout.url,
        is_valid=result.is_valid,
        violations=len(violations),
    )
    return result
