"""Configuration management for Layout Sentinel."""

from enum import Enum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TextCompareMode(str, Enum):
    """How element text is compared between snapshots."""
    EXACT = "exact"  # Byte equality
    NORMALIZED = "normalized"  # Whitespace/case folding before equality
    SIMILARITY = "similarity"  # Fuzzy score at or above a threshold counts as equal


class Settings(BaseSettings):
    """Library defaults loaded from environment variables.

    Every value here is only a default: entry points take explicit
    configuration objects and never read settings on their own.
    """

    model_config = SettingsConfigDict(
        env_prefix="LAYOUT_SENTINEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Viewport used when a snapshot does not carry one
    viewport_width: int = Field(1280, gt=0, description="Default viewport width in pixels")
    viewport_height: int = Field(720, gt=0, description="Default viewport height in pixels")

    # Node matcher
    acceptance_floor: float = Field(0.3, ge=0.0, le=1.0, description="Minimum similarity to accept a match")
    position_scale: float = Field(100.0, gt=0, description="Pixel distance at which position similarity reaches 0")
    size_scale: float = Field(50.0, gt=0, description="Summed size delta at which size similarity reaches 0")

    # Comparator
    compare_threshold: float = Field(2.0, ge=0, description="Pixel delta below or at which rect changes are ignored")
    text_compare_mode: TextCompareMode = Field(TextCompareMode.EXACT, description="Text comparison mode")
    text_similarity_threshold: float = Field(0.8, ge=0.0, le=1.0, description="Fuzzy text threshold")

    # Flakiness detection
    flaky_position_threshold: float = Field(5.0, gt=0, description="Position bucket size in pixels")
    flaky_size_threshold: float = Field(5.0, gt=0, description="Size bucket size in pixels")
    flakiness_threshold: float = Field(0.2, ge=0.0, le=1.0, description="Variance above which a property is flaky")

    # Group builder
    max_group_depth: int = Field(64, gt=0, description="Nesting depth at which groups stop being created")
    cluster_distance: float = Field(100.0, gt=0, description="Proximity clustering distance in pixels")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field("INFO", description="Log level")
    log_json: bool = Field(False, description="Render logs as JSON")


def get_settings() -> Settings:
    """Get library settings."""
    return Settings()
