"""
Hotspot sanitization and greedy de-overlap.

All range checks for hotspot candidates live here, whichever detector
produced them.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, List, Mapping, Union

from heatlens.common.math_utils import clamp01, is_finite
from heatlens.common.types import Hotspot


PARITY_MIN_CONFIDENCE = 0.25


@dataclass
class SanitizeResult:
    kept: List[Hotspot]
    dropped_count: int


def sanitize(
    candidates: Iterable[Union[Hotspot, Mapping[str, Any]]],
    *,
    parity: bool = False,
    parity_min_confidence: float = PARITY_MIN_CONFIDENCE,
) -> SanitizeResult:
    """
    Drop invalid candidates and clamp the rest into [0, 1].

    A candidate is dropped when a numeric field is non-finite, when its
    width or height is not positive, or (with `parity`) when its confidence
    is below `parity_min_confidence`. Raw mappings are parsed with
    `Hotspot.from_payload`; unparsable ones count as dropped.
    """
    kept: List[Hotspot] = []
    dropped = 0

    for item in candidates:
        if not isinstance(item, Hotspot):
            try:
                item = Hotspot.from_payload(item)
            except ValueError:
                dropped += 1
                continue

        if not is_finite(item.x, item.y, item.width, item.height, item.confidence):
            dropped += 1
            continue
        if item.width <= 0 or item.height <= 0:
            dropped += 1
            continue

        clamped = replace(
            item,
            x=clamp01(item.x),
            y=clamp01(item.y),
            width=clamp01(item.width),
            height=clamp01(item.height),
            confidence=clamp01(item.confidence),
            reason=item.reason or "",
        )
        if parity and clamped.confidence < parity_min_confidence:
            dropped += 1
            continue

        kept.append(clamped)

    return SanitizeResult(kept=kept, dropped_count=dropped)


def iou(a: Hotspot, b: Hotspot) -> float:
    """Intersection over union of two normalized rectangles (0 when disjoint)."""
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x + a.width, b.x + b.width)
    y2 = min(a.y + a.height, b.y + b.height)
    if x2 <= x1 or y2 <= y1:
        return 0.0

    inter = (x2 - x1) * (y2 - y1)
    union = a.width * a.height + b.width * b.height - inter
    return float(inter / union) if union > 0 else 0.0


def deoverlap(hotspots: Iterable[Hotspot], max_count: int = 8, iou_threshold: float = 0.4) -> List[Hotspot]:
    """
    Greedy non-maximum suppression by confidence.

    Candidates are visited in descending confidence; one is kept only if its
    IoU with every kept candidate is below `iou_threshold`. Stops once
    `max_count` are kept.
    """
    if max_count <= 0:
        return []

    ordered = sorted(hotspots, key=lambda h: h.confidence, reverse=True)
    kept: List[Hotspot] = []
    for hs in ordered:
        if all(iou(hs, k) < float(iou_threshold) for k in kept):
            kept.append(hs)
            if len(kept) >= int(max_count):
                break
    return kept
