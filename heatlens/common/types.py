"""
Data model for the heatmap engine.

Values crossing module boundaries are small dataclasses; raster buffers
stay plain NumPy arrays.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import numpy as np


DEVICES = ("desktop", "tablet", "mobile")

CATEGORIES = ("headline", "cta", "logo", "hero", "product", "price", "other")

POINT_KINDS = ("click", "movement")


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int

    def to_dict(self) -> Dict[str, int]:
        return {"width": int(self.width), "height": int(self.height)}


VIEWPORTS: Dict[str, Viewport] = {
    "desktop": Viewport(1920, 1080),
    "tablet": Viewport(1024, 768),
    "mobile": Viewport(414, 896),
}


@dataclass(frozen=True)
class DataPoint:
    """A normalized interaction sample supplied by the caller."""

    x: float
    y: float
    scroll_y: Optional[float] = None
    kind: str = "click"


@dataclass(frozen=True)
class PixelPoint:
    x: int
    y: int
    weight: float = 1.0


@dataclass(frozen=True)
class Hotspot:
    """
    A normalized focal rectangle with a confidence and category.

    Instances built through `from_payload` are typed but not yet range
    checked; run them through `indexing.hotspots.sanitize` before use.
    """

    x: float
    y: float
    width: float
    height: float
    confidence: float
    category: str = "other"
    reason: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Hotspot":
        """
        Parse one loosely-typed candidate (e.g. from a model response).

        Raises:
            ValueError: If the payload is not a mapping or a numeric field
                is missing or not convertible to float.
        """
        if not isinstance(payload, Mapping):
            raise ValueError("hotspot payload must be an object")

        numbers: Dict[str, float] = {}
        for name in ("x", "y", "width", "height", "confidence"):
            if name not in payload:
                raise ValueError(f"hotspot payload missing '{name}'")
            value = payload[name]
            if isinstance(value, bool):
                raise ValueError(f"hotspot field '{name}' must be numeric")
            try:
                numbers[name] = float(value)
            except (TypeError, ValueError):
                raise ValueError(f"hotspot field '{name}' must be numeric") from None

        category = str(payload.get("category") or payload.get("element_type") or "other").strip().lower()
        if category not in CATEGORIES:
            category = "other"

        return cls(
            x=numbers["x"],
            y=numbers["y"],
            width=numbers["width"],
            height=numbers["height"],
            confidence=numbers["confidence"],
            category=category,
            reason=str(payload.get("reason") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x": float(self.x),
            "y": float(self.y),
            "width": float(self.width),
            "height": float(self.height),
            "confidence": float(self.confidence),
            "category": self.category,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RenderKnobs:
    """Per-request rendering controls, already clamped to safe ranges."""

    alpha: float = 0.6
    blend_mode: str = "additive"
    ramp: str = "classic"
    clip_low_percent: float = 0.0
    clip_high_percent: float = 100.0
    kernel_radius_px: int = 40
    kernel_sigma_px: int = 20
    blur_px: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alpha": self.alpha,
            "blend_mode": self.blend_mode,
            "ramp": self.ramp,
            "clip_low_percent": self.clip_low_percent,
            "clip_high_percent": self.clip_high_percent,
            "kernel_radius_px": self.kernel_radius_px,
            "kernel_sigma_px": self.kernel_sigma_px,
            "blur_px": self.blur_px,
        }


@dataclass(frozen=True)
class PageElement:
    """A visible DOM element, in page pixels."""

    tag: str
    x: float
    y: float
    width: float
    height: float
    text: str = ""
    class_name: str = ""
    element_id: str = ""
    font_size: float = 0.0
    font_weight: str = "normal"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PageElement":
        return cls(
            tag=str(payload.get("tag") or "").lower(),
            x=float(payload.get("x") or 0.0),
            y=float(payload.get("y") or 0.0),
            width=float(payload.get("width") or 0.0),
            height=float(payload.get("height") or 0.0),
            text=str(payload.get("text") or ""),
            class_name=str(payload.get("className") or payload.get("class_name") or ""),
            element_id=str(payload.get("id") or payload.get("element_id") or ""),
            font_size=float(payload.get("fontSize") or payload.get("font_size") or 0.0),
            font_weight=str(payload.get("fontWeight") or payload.get("font_weight") or "normal"),
        )


@dataclass
class ScreenshotResult:
    image_bytes: bytes
    provider_id: str
    degraded: bool = False
    elements: List[PageElement] = field(default_factory=list)
    attempts: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class PageContext:
    """Everything a hotspot detector may look at for one page."""

    url: str
    device: str
    viewport: Viewport
    image_bytes: Optional[bytes] = None
    elements: List[PageElement] = field(default_factory=list)


@dataclass
class Detection:
    hotspots: List[Hotspot]
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CacheEntry:
    timestamp: float
    hotspots: List[Hotspot]
    meta: Dict[str, Any]


@dataclass
class AccumulationResult:
    buffer: np.ndarray
    max_value: float
    non_zero_count: int
