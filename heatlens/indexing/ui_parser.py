from __future__ import annotations

from typing import List, Tuple

import cv2
import numpy as np

from heatlens.common.types import PageElement

Box = Tuple[int, int, int, int]


def propose_elements(image_rgb: np.ndarray, *, max_elements: int = 48) -> List[PageElement]:
    """
    Propose page elements from the screenshot pixels alone.

    Used when no DOM summary is available (e.g. the screenshot came from a
    hosted provider). Edges are closed horizontally so that lines of text
    merge into blocks; each block's bounding box gets a coarse tag guess
    (img, button or div) for the heuristic scorer.
    """
    if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
        raise ValueError("image_rgb must be HxWx3")

    h, w = image_rgb.shape[:2]
    page_area = float(h * w)

    gray = cv2.cvtColor(np.ascontiguousarray(image_rgb, dtype=np.uint8), cv2.COLOR_RGB2GRAY)
    edges = cv2.Canny(cv2.GaussianBlur(gray, (3, 3), 0), 40, 120)
    blocks = cv2.morphologyEx(edges, cv2.MORPH_CLOSE, cv2.getStructuringElement(cv2.MORPH_RECT, (9, 3)))

    found = cv2.findContours(blocks, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    contours = found[-2]

    lo = max(100.0, page_area * 0.001)
    hi = page_area * 0.85
    candidates: List[Box] = []
    for cnt in contours:
        box = tuple(int(v) for v in cv2.boundingRect(cnt))
        bw, bh = box[2], box[3]
        if bw < 10 or bh < 10 or not (lo <= bw * bh <= hi):
            continue
        candidates.append(box)

    kept = _dedupe(sorted(candidates, key=lambda b: b[2] * b[3], reverse=True), max_iou=0.9)[:max_elements]

    out: List[PageElement] = []
    for x, y, bw, bh in kept:
        patch = gray[y : y + bh, x : x + bw]
        spread = float(patch.std()) / 255.0 if patch.size else 0.0
        out.append(
            PageElement(
                tag=_guess_tag(bw, bh, share=(bw * bh) / page_area, spread=spread),
                x=float(x),
                y=float(y),
                width=float(bw),
                height=float(bh),
            )
        )
    return out


def _guess_tag(bw: int, bh: int, *, share: float, spread: float) -> str:
    # Large blocks read as media, short wide contrasted blocks as buttons.
    if bw > 300 and bh > 200 and share >= 0.05:
        return "img"
    ratio = bw / float(bh)
    if 2.0 <= ratio <= 6.0 and 0.002 <= share <= 0.03 and spread >= 0.12:
        return "button"
    return "div"


def _dedupe(boxes: List[Box], *, max_iou: float) -> List[Box]:
    """Drop boxes that nearly coincide with a larger box kept earlier."""
    kept: List[Box] = []
    for box in boxes:
        if all(_box_iou(box, k) <= max_iou for k in kept):
            kept.append(box)
    return kept


def _box_iou(a: Box, b: Box) -> float:
    ix = max(0, min(a[0] + a[2], b[0] + b[2]) - max(a[0], b[0]))
    iy = max(0, min(a[1] + a[3], b[1] + b[3]) - max(a[1], b[1]))
    inter = ix * iy
    union = a[2] * a[3] + b[2] * b[3] - inter
    return inter / float(union) if union > 0 else 0.0
