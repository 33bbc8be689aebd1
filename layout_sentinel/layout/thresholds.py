"""Pass/fail evaluation of a comparison against configured thresholds.

Every category is checked independently. Failures block ``passed``;
the lenient (non-strict) position check only produces warnings.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from .models import DifferenceType, LayoutSnapshot, VisualDifference

logger = structlog.get_logger()


class PositionThreshold(BaseModel):
    """Absolute position shift limit in pixels."""

    enabled: bool = True
    value: float = Field(5.0, ge=0, description="Allowed shift in pixels")
    strict: bool = Field(False, description="Fail instead of warn above the limit")


class SizeThreshold(BaseModel):
    """Absolute size change limit in pixels."""

    enabled: bool = True
    value: float = Field(10.0, ge=0, description="Allowed size change in pixels")
    percentage: Optional[float] = Field(5.0, ge=0, description="Allowed size change in percent")


class ElementCountThreshold(BaseModel):
    """Caps on the number of added, removed and modified items."""

    added: Optional[int] = Field(10, ge=0)
    removed: Optional[int] = Field(10, ge=0)
    modified: Optional[int] = Field(20, ge=0)


class ScrollThreshold(BaseModel):
    """Cap on scrollable elements in the current snapshot."""

    enabled: bool = False
    max_scrollable_elements: Optional[int] = Field(5, ge=0)


class ZIndexThreshold(BaseModel):
    """Whether z-index changes are allowed."""

    enabled: bool = False
    allow_changes: bool = True


class ThresholdConfig(BaseModel):
    """All threshold categories; a None category is not checked."""

    similarity_threshold: Optional[float] = Field(95.0, ge=0, le=100)
    position_threshold: Optional[PositionThreshold] = Field(default_factory=PositionThreshold)
    size_threshold: Optional[SizeThreshold] = Field(default_factory=SizeThreshold)
    element_count_threshold: Optional[ElementCountThreshold] = Field(default_factory=ElementCountThreshold)
    scroll_threshold: Optional[ScrollThreshold] = Field(default_factory=ScrollThreshold)
    z_index_threshold: Optional[ZIndexThreshold] = Field(default_factory=ZIndexThreshold)


@dataclass
class ThresholdFailure:
    type: str
    message: str
    measured_value: float
    threshold: float
    severity: str = "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "measured_value": self.measured_value,
            "threshold": self.threshold,
            "severity": self.severity,
        }


@dataclass
class ThresholdWarning:
    type: str
    message: str
    measured_value: float
    threshold: Optional[float] = None
    severity: str = "warning"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "measured_value": self.measured_value,
            "threshold": self.threshold,
            "severity": self.severity,
        }


@dataclass
class ThresholdEvaluation:
    """Outcome of ``evaluate_thresholds``."""

    passed: bool
    failures: list[ThresholdFailure] = field(default_factory=list)
    warnings: list[ThresholdWarning] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failures": [failure.to_dict() for failure in self.failures],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }


def evaluate_thresholds(
    config: ThresholdConfig,
    differences: Sequence[VisualDifference],
    similarity: float,
    current: LayoutSnapshot | None = None,
) -> ThresholdEvaluation:
    """Check a comparison result against every configured category.

    Args:
        config: Threshold configuration
        differences: Differences from a comparison
        similarity: Comparison similarity (0-100)
        current: Current snapshot, needed for the scroll check

    Returns:
        ThresholdEvaluation; ``passed`` is True when there are no failures
    """
    failures: list[ThresholdFailure] = []
    warnings: list[ThresholdWarning] = []

    if config.similarity_threshold is not None and similarity < config.similarity_threshold:
        failures.append(
            ThresholdFailure(
                type="similarity",
                message=(
                    f"Similarity below threshold ({similarity:.1f}% < {config.similarity_threshold}%)"
                ),
                measured_value=similarity,
                threshold=config.similarity_threshold,
            )
        )

    position = config.position_threshold
    if position is not None and position.enabled:
        shifts = [d.position_diff for d in differences if d.position_diff is not None]
        max_shift = max(shifts, default=0.0)
        if position.strict:
            if max_shift > position.value:
                failures.append(
                    ThresholdFailure(
                        type="position",
                        message=f"Position change exceeds threshold ({max_shift:.1f}px > {position.value}px)",
                        measured_value=max_shift,
                        threshold=position.value,
                    )
                )
        else:
            significant = [shift for shift in shifts if shift > position.value]
            if significant:
                warnings.append(
                    ThresholdWarning(
                        type="position",
                        message=(
                            f"Position changes detected on {len(significant)} elements "
                            f"(max: {max_shift:.1f}px)"
                        ),
                        measured_value=max_shift,
                        threshold=position.value,
                    )
                )

    size = config.size_threshold
    if size is not None and size.enabled:
        max_size = max((d.size_diff for d in differences if d.size_diff is not None), default=0.0)
        if max_size > size.value:
            failures.append(
                ThresholdFailure(
                    type="size",
                    message=f"Size change exceeds threshold ({max_size:.1f}px > {size.value}px)",
                    measured_value=max_size,
                    threshold=size.value,
                )
            )

    counts = config.element_count_threshold
    if counts is not None:
        for difference_type, limit in (
            (DifferenceType.ADDED, counts.added),
            (DifferenceType.REMOVED, counts.removed),
            (DifferenceType.MODIFIED, counts.modified),
        ):
            if limit is None:
                continue
            count = sum(1 for d in differences if d.type == difference_type)
            if count > limit:
                failures.append(
                    ThresholdFailure(
                        type="element_count",
                        message=f"Too many {difference_type.value} elements ({count} > {limit})",
                        measured_value=count,
                        threshold=limit,
                    )
                )

    scroll = config.scroll_threshold
    if scroll is not None and scroll.enabled and current is not None and scroll.max_scrollable_elements is not None:
        scrollable = sum(1 for element in current.elements if element.is_scrollable)
        if scrollable > scroll.max_scrollable_elements:
            failures.append(
                ThresholdFailure(
                    type="scroll",
                    message=(
                        f"Too many scrollable elements ({scrollable} > {scroll.max_scrollable_elements})"
                    ),
                    measured_value=scrollable,
                    threshold=scroll.max_scrollable_elements,
                )
            )

    z_index = config.z_index_threshold
    if z_index is not None and z_index.enabled and not z_index.allow_changes:
        changed = sum(1 for d in differences if d.change_for("zIndex") is not None)
        if changed:
            failures.append(
                ThresholdFailure(
                    type="z_index",
                    message=f"z-index changes detected ({changed})",
                    measured_value=changed,
                    threshold=0,
                )
            )

    evaluation = ThresholdEvaluation(passed=not failures, failures=failures, warnings=warnings)
    logger.debug(
        "Thresholds evaluated",
        passed=evaluation.passed,
        failures=[failure.type for failure in failures],
        warnings=len(warnings),
    )
    return evaluation


def default_thresholds() -> ThresholdConfig:
    """Balanced thresholds for most pages."""
    return ThresholdConfig()


def strict_thresholds() -> ThresholdConfig:
    """Thresholds for critical pages where almost nothing may change."""
    return ThresholdConfig(
        similarity_threshold=99.0,
        position_threshold=PositionThreshold(enabled=True, value=1, strict=True),
        size_threshold=SizeThreshold(enabled=True, value=2, percentage=1),
        element_count_threshold=ElementCountThreshold(added=0, removed=0, modified=5),
        scroll_threshold=ScrollThreshold(enabled=True, max_scrollable_elements=0),
        z_index_threshold=ZIndexThreshold(enabled=True, allow_changes=False),
    )


def relaxed_thresholds() -> ThresholdConfig:
    """Thresholds for dynamic pages."""
    return ThresholdConfig(
        similarity_threshold=85.0,
        position_threshold=PositionThreshold(enabled=True, value=20, strict=False),
        size_threshold=SizeThreshold(enabled=True, value=50, percentage=10),
        element_count_threshold=ElementCountThreshold(added=50, removed=50, modified=100),
        scroll_threshold=ScrollThreshold(enabled=False, max_scrollable_elements=None),
        z_index_threshold=ZIndexThreshold(enabled=False, allow_changes=True),
    )


def merge_thresholds(base: ThresholdConfig, overrides: dict[str, Any] | ThresholdConfig) -> ThresholdConfig:
    """Overlay overrides on a base config, merging each category field by field.

    A ThresholdConfig override only contributes the fields that were set
    explicitly on it.
    """
    if isinstance(overrides, ThresholdConfig):
        overrides = overrides.model_dump(exclude_unset=True)

    merged = base.model_dump()
    for key, value in overrides.items():
        if isinstance(value, BaseModel):
            value = value.model_dump(exclude_unset=True)
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return ThresholdConfig.model_validate(merged)
