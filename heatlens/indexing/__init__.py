"""
Hotspot detection: model-assisted and heuristic detectors, candidate
sanitization, de-overlap and the short-lived result cache.
"""

from heatlens.indexing.cache import CacheConfig, HotspotCache
from heatlens.indexing.detector import Detector, FallbackDetector, build_detector
from heatlens.indexing.heuristic import DEFAULT_HOTSPOTS, HeuristicConfig, HeuristicDetector
from heatlens.indexing.hotspots import SanitizeResult, deoverlap, iou, sanitize
from heatlens.indexing.model_detector import ModelDetector, parse_hotspots, prompt_signature
from heatlens.indexing.ui_parser import propose_elements

__all__ = [
    "CacheConfig",
    "HotspotCache",
    "Detector",
    "FallbackDetector",
    "build_detector",
    "DEFAULT_HOTSPOTS",
    "HeuristicConfig",
    "HeuristicDetector",
    "SanitizeResult",
    "deoverlap",
    "iou",
    "sanitize",
    "ModelDetector",
    "parse_hotspots",
    "prompt_signature",
    "propose_elements",
]
