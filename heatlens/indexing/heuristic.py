"""
Deterministic hotspot scoring from a page's element summary.

Each element collects points from a fixed rule set (fold position,
horizontal centering, size, tag/keyword role, typography). Elements above
a confidence floor that sit above the fold are ranked, overlap-suppressed
and returned as normalized hotspots.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from heatlens.common.types import Detection, Hotspot, PageContext, PageElement, Viewport
from heatlens.errors import DimensionExtractionFailed
from heatlens.indexing.ui_parser import propose_elements
from heatlens.visualization.compositor import decode_image, image_size


DEFAULT_HOTSPOTS: Tuple[Hotspot, ...] = (
    Hotspot(0.35, 0.15, 0.30, 0.20, 0.65, "hero", "Hero section"),
    Hotspot(0.70, 0.10, 0.20, 0.15, 0.60, "cta", "Primary call-to-action area"),
    Hotspot(0.10, 0.05, 0.25, 0.10, 0.55, "logo", "Logo area"),
    Hotspot(0.20, 0.75, 0.35, 0.15, 0.70, "product", "Above-the-fold content"),
)


@dataclass
class HeuristicConfig:
    """Weights and thresholds for element scoring."""

    # Fold position
    top_third_bonus: float = 0.5
    above_fold_bonus: float = 0.2

    # Layout
    center_bonus: float = 0.2
    center_tolerance_px: float = 250.0
    large_area_bonus: float = 0.4
    large_area_px: float = 50_000.0

    # Roles
    headline_bonus: float = 0.6
    cta_bonus: float = 0.5
    logo_bonus: float = 0.4
    hero_bonus: float = 0.45

    # Typography
    bold_bonus: float = 0.15
    large_font_bonus: float = 0.25
    large_font_px: float = 32.0

    # Selection
    confidence_floor: float = 0.3
    overlap_ratio: float = 0.6
    max_count: int = 8


@dataclass
class _Scored:
    element: PageElement
    confidence: float
    category: str
    reasons: List[str]


class HeuristicDetector:
    """Rule-based detector; never raises for well-formed contexts."""

    name = "heuristic"

    def __init__(self, config: Optional[HeuristicConfig] = None):
        self.config = config or HeuristicConfig()

    def detect(self, ctx: PageContext) -> Detection:
        elements: Sequence[PageElement] = ctx.elements
        source = "dom"
        fold = ctx.viewport
        canvas = ctx.viewport

        # DOM boxes are in page pixels; a full-page screenshot is taller than the viewport.
        if elements and ctx.image_bytes:
            try:
                img_w, img_h = image_size(ctx.image_bytes)
                canvas = Viewport(img_w, img_h)
            except DimensionExtractionFailed as e:
                logger.warning(f"Heuristic detector could not read screenshot size: {e.message}")

        if not elements and ctx.image_bytes:
            try:
                image_rgb = decode_image(ctx.image_bytes)
            except DimensionExtractionFailed as e:
                logger.warning(f"Heuristic detector could not decode screenshot: {e.message}")
                image_rgb = None
            if image_rgb is not None:
                img_h, img_w = image_rgb.shape[:2]
                fold_h = min(img_h, int(round(img_w * ctx.viewport.height / float(ctx.viewport.width))))
                fold = Viewport(img_w, max(1, fold_h))
                canvas = Viewport(img_w, img_h)
                elements = propose_elements(image_rgb)
                source = "pixels"

        scored = self.score_elements(elements, fold)
        selected = self.suppress_overlaps(scored)
        hotspots = [self._to_hotspot(s, canvas) for s in selected]

        if not hotspots:
            source = "default"
            hotspots = list(DEFAULT_HOTSPOTS)

        meta: Dict[str, Any] = {
            "engine": self.name,
            "source": source,
            "elements": len(elements),
            "requested": len(hotspots) if source == "default" else len(scored),
        }
        return Detection(hotspots=hotspots, meta=meta)

    def score_elements(self, elements: Sequence[PageElement], viewport: Viewport) -> List[_Scored]:
        """Score every element and keep those above the floor and the fold."""
        c = self.config
        out: List[_Scored] = []
        for el in elements:
            score = 0.0
            category = "other"
            reasons: List[str] = []

            if el.y < viewport.height / 3.0:
                score += c.top_third_bonus
                reasons.append("top third")
            elif el.y < viewport.height:
                score += c.above_fold_bonus
                reasons.append("above the fold")

            if abs(el.x + el.width / 2.0 - viewport.width / 2.0) < c.center_tolerance_px:
                score += c.center_bonus
                reasons.append("centered")

            if el.width * el.height > c.large_area_px:
                score += c.large_area_bonus
                reasons.append("large")

            tag = el.tag.lower()
            cls = el.class_name.lower()

            if tag == "h1":
                score += c.headline_bonus
                category = "headline"
                reasons.append("main heading")

            if tag == "button" or "btn" in cls or "cta" in cls:
                score += c.cta_bonus
                category = "cta"
                reasons.append("call-to-action")

            if tag in ("img", "svg") and "logo" in cls:
                score += c.logo_bonus
                category = "logo"
                reasons.append("logo")

            if tag in ("img", "video") and el.width > 300 and el.height > 200 and el.y < viewport.height * 0.75:
                score += c.hero_bonus
                category = "hero"
                reasons.append("hero media")

            if _font_weight(el.font_weight) >= 700:
                score += c.bold_bonus
                reasons.append("bold")
            if el.font_size > c.large_font_px:
                score += c.large_font_bonus
                reasons.append("large type")

            confidence = min(score, 1.0)
            if confidence > c.confidence_floor and el.y < viewport.height:
                out.append(_Scored(element=el, confidence=confidence, category=category, reasons=reasons))

        return out

    def suppress_overlaps(self, scored: Sequence[_Scored]) -> List[_Scored]:
        """
        Keep the best-scored elements whose area is not mostly covered.

        A candidate is dropped when more than `overlap_ratio` of its own area
        lies inside an already kept element.
        """
        c = self.config
        ordered = sorted(scored, key=lambda s: s.confidence, reverse=True)
        kept: List[_Scored] = []
        for cand in ordered:
            a = cand.element
            area = a.width * a.height
            covered = False
            for k in kept:
                b = k.element
                ox = max(0.0, min(a.x + a.width, b.x + b.width) - max(a.x, b.x))
                oy = max(0.0, min(a.y + a.height, b.y + b.height) - max(a.y, b.y))
                if area <= 0 or (ox * oy) / area > c.overlap_ratio:
                    covered = True
                    break
            if not covered:
                kept.append(cand)
            if len(kept) >= c.max_count:
                break
        return kept

    @staticmethod
    def _to_hotspot(s: _Scored, canvas: Viewport) -> Hotspot:
        el = s.element
        text = el.text.strip()[:60]
        reason = ", ".join(s.reasons)
        if text:
            reason = f"{reason}: {text}" if reason else text
        return Hotspot(
            x=el.x / float(canvas.width),
            y=el.y / float(canvas.height),
            width=el.width / float(canvas.width),
            height=el.height / float(canvas.height),
            confidence=s.confidence,
            category=s.category,
            reason=reason,
        )


def _font_weight(value: str) -> int:
    v = str(value or "").strip().lower()
    try:
        return int(float(v))
    except ValueError:
        return 700 if "bold" in v else 400
