"""
Common types and helpers shared across heatlens modules.
"""

from heatlens.common.math_utils import clamp, clamp01, finite_or, is_finite
from heatlens.common.types import (
    CATEGORIES,
    DEVICES,
    VIEWPORTS,
    AccumulationResult,
    CacheEntry,
    DataPoint,
    Detection,
    Hotspot,
    PageContext,
    PageElement,
    PixelPoint,
    RenderKnobs,
    ScreenshotResult,
    Viewport,
)

__all__ = [
    # Math utilities
    "clamp",
    "clamp01",
    "finite_or",
    "is_finite",
    # Data model
    "CATEGORIES",
    "DEVICES",
    "VIEWPORTS",
    "AccumulationResult",
    "CacheEntry",
    "DataPoint",
    "Detection",
    "Hotspot",
    "PageContext",
    "PageElement",
    "PixelPoint",
    "RenderKnobs",
    "ScreenshotResult",
    "Viewport",
]
