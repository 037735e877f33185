"""
heatlens: attention heatmaps over web page screenshots.

Renders either predicted attention (hotspots from a vision model, or a
DOM heuristic when the model is unavailable) or recorded interaction
points as a colorized overlay on a device-sized screenshot.
"""

from heatlens.config import DEFAULT_CONFIG, load_config
from heatlens.engine import HeatmapEngine, RenderResult
from heatlens.errors import (
    DetectionFailed,
    DimensionExtractionFailed,
    HeatlensError,
    InputInvalid,
    ProviderExhausted,
    RasterFailure,
)

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_CONFIG",
    "load_config",
    "HeatmapEngine",
    "RenderResult",
    "DetectionFailed",
    "DimensionExtractionFailed",
    "HeatlensError",
    "InputInvalid",
    "ProviderExhausted",
    "RasterFailure",
]
