"""Tests for layout/thresholds.py."""

import pytest

from layout_sentinel.layout.models import DifferenceType, PropertyChange, VisualDifference
from layout_sentinel.layout.thresholds import (
    ElementCountThreshold,
    PositionThreshold,
    ThresholdConfig,
    default_thresholds,
    evaluate_thresholds,
    merge_thresholds,
    relaxed_thresholds,
    strict_thresholds,
)


def moved(position_diff, path="element[0]"):
    return VisualDifference(
        type=DifferenceType.MOVED,
        path=path,
        changes=[PropertyChange("y", 0, position_diff)],
        position_diff=position_diff,
        size_diff=0.0,
    )


def resized(size_diff, path="element[0]"):
    return VisualDifference(
        type=DifferenceType.MODIFIED,
        path=path,
        changes=[PropertyChange("width", 100, 100 + size_diff)],
        position_diff=0.0,
        size_diff=size_diff,
    )


def added(count):
    return [VisualDifference(type=DifferenceType.ADDED, path=f"element[{i}]") for i in range(count)]


class TestEvaluateThresholds:
    """Tests for evaluate_thresholds."""

    def test_clean_comparison_passes(self):
        evaluation = evaluate_thresholds(default_thresholds(), [], 100.0)
        assert evaluation.passed
        assert evaluation.failures == []
        assert evaluation.warnings == []

    def test_similarity_failure(self):
        evaluation = evaluate_thresholds(default_thresholds(), [], 90.0)
        assert not evaluation.passed
        [failure] = evaluation.failures
        assert failure.type == "similarity"
        assert failure.message == "Similarity below threshold (90.0% < 95.0%)"

    def test_lenient_position_only_warns(self):
        evaluation = evaluate_thresholds(default_thresholds(), [moved(3), moved(12)], 99.0)
        assert evaluation.passed
        [warning] = evaluation.warnings
        assert warning.type == "position"
        assert warning.measured_value == 12
        assert "1 elements" in warning.message

    def test_strict_position_fails(self):
        config = ThresholdConfig(position_threshold=PositionThreshold(value=5, strict=True))
        evaluation = evaluate_thresholds(config, [moved(6)], 99.0)
        assert [f.type for f in evaluation.failures] == ["position"]

    def test_size_failure(self):
        evaluation = evaluate_thresholds(default_thresholds(), [resized(15)], 99.0)
        assert [f.type for f in evaluation.failures] == ["size"]

    def test_element_counts(self):
        config = ThresholdConfig(element_count_threshold=ElementCountThreshold(added=2))
        evaluation = evaluate_thresholds(config, added(3), 99.0)
        [failure] = evaluation.failures
        assert failure.type == "element_count"
        assert failure.message == "Too many added elements (3 > 2)"

    def test_scroll_needs_current_snapshot(self, node, snapshot):
        config = ThresholdConfig(scroll_threshold={"enabled": True, "max_scrollable_elements": 1})
        current = snapshot([node("div", is_scrollable=True), node("ul", is_scrollable=True)])
        assert evaluate_thresholds(config, [], 100.0).passed
        evaluation = evaluate_thresholds(config, [], 100.0, current=current)
        assert [f.type for f in evaluation.failures] == ["scroll"]

    def test_z_index_changes(self):
        difference = VisualDifference(
            type=DifferenceType.MODIFIED,
            path="element[0]",
            changes=[PropertyChange("zIndex", "1", "10")],
        )
        assert evaluate_thresholds(default_thresholds(), [difference], 100.0).passed
        evaluation = evaluate_thresholds(strict_thresholds(), [difference], 100.0)
        assert "z_index" in [f.type for f in evaluation.failures]

    def test_disabled_categories(self):
        """Test that None and disabled categories are skipped."""
        config = ThresholdConfig(
            similarity_threshold=None,
            position_threshold=PositionThreshold(enabled=False, strict=True),
            size_threshold=None,
            element_count_threshold=None,
        )
        evaluation = evaluate_thresholds(config, [moved(500), resized(500)] + added(50), 0.0)
        assert evaluation.passed

    def test_every_category_reported(self):
        """Test that one evaluation reports all failing categories together."""
        differences = [moved(50), resized(50)] + added(2)
        evaluation = evaluate_thresholds(strict_thresholds(), differences, 50.0)
        types = {failure.type for failure in evaluation.failures}
        assert types == {"similarity", "position", "size", "element_count"}


class TestPresets:
    """Tests for the preset configurations."""

    def test_presets_order(self):
        strict, default, relaxed = strict_thresholds(), default_thresholds(), relaxed_thresholds()
        assert strict.similarity_threshold > default.similarity_threshold > relaxed.similarity_threshold
        assert strict.position_threshold.strict
        assert not relaxed.scroll_threshold.enabled


class TestMergeThresholds:
    """Tests for merge_thresholds."""

    def test_partial_category_override(self):
        merged = merge_thresholds(default_thresholds(), {"position_threshold": {"value": 2}})
        assert merged.position_threshold.value == 2
        assert merged.position_threshold.enabled is True
        assert merged.size_threshold.value == 10

    def test_config_override_uses_set_fields_only(self):
        override = ThresholdConfig(similarity_threshold=80.0)
        merged = merge_thresholds(strict_thresholds(), override)
        assert merged.similarity_threshold == 80.0
        assert merged.position_threshold.strict is True
        assert merged.element_count_threshold.added == 0

    def test_nested_model_override(self):
        merged = merge_thresholds(strict_thresholds(), {"element_count_threshold": ElementCountThreshold(added=3)})
        assert merged.element_count_threshold.added == 3
        assert merged.element_count_threshold.removed == 0

    def test_category_can_be_disabled(self):
        merged = merge_thresholds(default_thresholds(), {"size_threshold": None})
        assert merged.size_threshold is None

    def test_invalid_value_rejected(self):
        with pytest.raises(ValueError):
            merge_thresholds(default_thresholds(), {"similarity_threshold": 150})
