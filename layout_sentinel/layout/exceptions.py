"""Exceptions raised by the layout comparison core."""

from typing import Any


class LayoutError(Exception):
    """Base exception for layout comparison operations."""

    pass


class InvalidSnapshotError(LayoutError):
    """Raised when snapshot data is missing required fields or is malformed."""

    pass


class InsufficientSamplesError(LayoutError):
    """Raised when flakiness detection or calibration gets too few samples."""

    def __init__(self, sample_count: int, required: int = 2, operation: str = "calibration"):
        self.sample_count = sample_count
        self.required = required
        self.operation = operation
        super().__init__(
            f"{operation} requires at least {required} samples, got {sample_count}"
        )


class ViewportMismatchError(LayoutError):
    """Raised when two compared snapshots were captured at different viewports."""

    def __init__(self, baseline: dict[str, Any], current: dict[str, Any]):
        self.baseline = baseline
        self.current = current
        super().__init__(
            "viewport mismatch: baseline "
            f"{baseline.get('width')}x{baseline.get('height')} vs current "
            f"{current.get('width')}x{current.get('height')}"
        )


class InvalidSelectorError(LayoutError):
    """Raised when an ignore selector cannot be parsed."""

    pass
