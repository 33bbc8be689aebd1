"""Structural layout comparison for visual regression testing.

This module compares captured page layouts by meaning rather than by pixels:
elements are classified and grouped into semantic regions, matched across
snapshots, and diffed into added/removed/modified/moved differences. Repeated
samples of the same page feed flakiness detection and tolerance calibration.
"""

# Calibration
from .calibrator import (
    CalibrationResult,
    Calibrator,
    ComparisonSettings,
    DynamicElementInfo,
    SampleStats,
    Strictness,
    ValidationResult,
    Violation,
    calibrate,
    validate_with_settings,
)

# Classification
from .classifier import Classification, SemanticClassifier, derive_label

# Comparison
from .comparator import (
    CompareOptions,
    LayoutComparator,
    MatchingStrategy,
    compare,
    compare_layouts,
    has_layout_changed,
    is_layout_similar,
    matches_selector,
    parse_selector,
    rect_similarity,
)
from .exceptions import (
    InsufficientSamplesError,
    InvalidSelectorError,
    InvalidSnapshotError,
    LayoutError,
    ViewportMismatchError,
)

# Flakiness
from .flakiness import (
    FlakinessAnalysis,
    FlakinessDetector,
    FlakinessType,
    FlakyElement,
    VariationDetail,
    detect_flakiness,
    generate_flakiness_report,
)

# Group matching
from .group_matching import (
    FlatGroupMatcher,
    FlatMatchResult,
    LayoutSimilarity,
    group_similarity,
    is_same_layout_structure,
    layout_fingerprint,
    layout_similarity,
    rect_distance,
)

# Grouping
from .grouping import GroupBuilder, flatten_nodes
from .matching import MatchingWeights, NodeMatcher, NodeSimilarityReport
from .models import (
    AccessibilityInfo,
    ComparisonResult,
    ComparisonSummary,
    DifferenceType,
    LayoutSnapshot,
    MatchType,
    NodeGroup,
    NodeMatch,
    PropertyChange,
    Rect,
    SemanticGroup,
    SemanticType,
    VisualDifference,
    VisualNode,
)
from .text_similarity import normalize_text, normalized_text_similarity, text_similarity

# Thresholds
from .thresholds import (
    ThresholdConfig,
    ThresholdEvaluation,
    default_thresholds,
    evaluate_thresholds,
    merge_thresholds,
    relaxed_thresholds,
    strict_thresholds,
)

__all__ = [
    # Models
    "AccessibilityInfo",
    "ComparisonResult",
    "ComparisonSummary",
    "DifferenceType",
    "LayoutSnapshot",
    "MatchType",
    "NodeGroup",
    "NodeMatch",
    "PropertyChange",
    "Rect",
    "SemanticGroup",
    "SemanticType",
    "VisualDifference",
    "VisualNode",
    # Exceptions
    "InsufficientSamplesError",
    "InvalidSelectorError",
    "InvalidSnapshotError",
    "LayoutError",
    "ViewportMismatchError",
    # Classification and grouping
    "Classification",
    "SemanticClassifier",
    "derive_label",
    "GroupBuilder",
    "flatten_nodes",
    # Matching
    "MatchingWeights",
    "NodeMatcher",
    "NodeSimilarityReport",
    "normalize_text",
    "normalized_text_similarity",
    "text_similarity",
    "FlatGroupMatcher",
    "FlatMatchResult",
    "LayoutSimilarity",
    "group_similarity",
    "is_same_layout_structure",
    "layout_fingerprint",
    "layout_similarity",
    "rect_distance",
    # Comparison
    "CompareOptions",
    "LayoutComparator",
    "MatchingStrategy",
    "compare",
    "compare_layouts",
    "has_layout_changed",
    "is_layout_similar",
    "matches_selector",
    "parse_selector",
    "rect_similarity",
    # Flakiness and calibration
    "FlakinessAnalysis",
    "FlakinessDetector",
    "FlakinessType",
    "FlakyElement",
    "VariationDetail",
    "detect_flakiness",
    "generate_flakiness_report",
    "CalibrationResult",
    "Calibrator",
    "ComparisonSettings",
    "DynamicElementInfo",
    "SampleStats",
    "Strictness",
    "ValidationResult",
    "Violation",
    "calibrate",
    "validate_with_settings",
    # Thresholds
    "ThresholdConfig",
    "ThresholdEvaluation",
    "default_thresholds",
    "evaluate_thresholds",
    "merge_thresholds",
    "relaxed_thresholds",
    "strict_thresholds",
]
