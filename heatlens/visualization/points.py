from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from heatlens.common.math_utils import clamp01, finite_or
from heatlens.common.types import DataPoint, Hotspot, PixelPoint


def to_pixels(
    points: Iterable[DataPoint],
    width: int,
    height: int,
    *,
    viewport_height: Optional[int] = None,
    kind_weights: Optional[dict] = None,
) -> List[PixelPoint]:
    """
    Map normalized interaction points onto an image of `width` x `height`.

    Points carrying `scroll_y` are placed on the full page when a
    `viewport_height` is known: `y` is relative to the visible viewport and
    `scroll_y` to the scrollable distance below it.

    Args:
        points: Normalized points.
        width: Image width in pixels.
        height: Image height in pixels.
        viewport_height: Height of the viewport the points were recorded in.
        kind_weights: Optional weight per point kind; missing kinds weigh 1.0.

    Returns:
        Pixel points clamped into the image.
    """
    if width <= 0 or height <= 0:
        raise ValueError("width and height must be positive")

    weights = kind_weights or {}
    out: List[PixelPoint] = []
    for p in points:
        x = clamp01(finite_or(p.x))
        y = clamp01(finite_or(p.y))
        x_px = int(round(x * (width - 1)))

        if p.scroll_y is not None and viewport_height:
            sy = clamp01(finite_or(p.scroll_y))
            scrollable = max(0, int(height) - int(viewport_height))
            abs_y = sy * scrollable + y * float(viewport_height)
            y_px = int(round(min(abs_y, float(height - 1))))
        else:
            y_px = int(round(y * (height - 1)))

        out.append(PixelPoint(x=x_px, y=y_px, weight=float(weights.get(p.kind, 1.0))))

    return out


def to_normalized(point: PixelPoint, width: int, height: int) -> Tuple[float, float]:
    """Inverse of `to_pixels` for points without a scroll offset."""
    nx = point.x / float(width - 1) if width > 1 else 0.0
    ny = point.y / float(height - 1) if height > 1 else 0.0
    return nx, ny


def hotspots_to_points(
    hotspots: Sequence[Hotspot],
    width: int,
    height: int,
    *,
    density_per_mp: float = 800.0,
    min_points: int = 20,
    max_points: int = 2000,
    rng: Optional[np.random.Generator] = None,
) -> List[PixelPoint]:
    """
    Expand hotspot rectangles into dense, center-weighted point clouds.

    Each rectangle gets a jittered grid whose size is proportional to its
    pixel area (`density_per_mp` points per megapixel, bounded by
    `min_points` and `max_points`). Point weight is the hotspot confidence
    scaled down by up to 30% toward the rectangle corners.
    """
    if rng is None:
        rng = np.random.default_rng()

    out: List[PixelPoint] = []
    for hs in hotspots:
        rx = int(math.floor(hs.x * width))
        ry = int(math.floor(hs.y * height))
        rw = max(1, int(math.ceil(hs.width * width)))
        rh = max(1, int(math.ceil(hs.height * height)))

        area_px = rw * rh
        count = min(max_points, max(min_points, int(area_px // (1e6 / float(density_per_mp)))))

        cols = max(1, int(math.ceil(math.sqrt(count * (rw / float(rh))))))
        rows = max(1, int(math.ceil(count / float(cols))))

        idx = np.arange(count)
        base_x = rx + ((idx % cols) + 0.5) * (rw / float(cols))
        base_y = ry + ((idx // cols) + 0.5) * (rh / float(rows))
        jitter = rng.uniform(-1.0, 1.0, size=(2, count))

        px = np.rint(np.clip(base_x + jitter[0], rx, rx + rw - 1)).astype(np.int64)
        py = np.rint(np.clip(base_y + jitter[1], ry, ry + rh - 1)).astype(np.int64)

        cx = rx + rw / 2.0
        cy = ry + rh / 2.0
        max_dist = math.hypot(rw / 2.0, rh / 2.0) or 1.0
        dist = np.hypot(px - cx, py - cy)
        w = float(hs.confidence) * (1.0 - (dist / max_dist) * 0.3)

        inside = (px >= 0) & (px < width) & (py >= 0) & (py < height)
        for x, y, wt in zip(px[inside], py[inside], w[inside]):
            out.append(PixelPoint(x=int(x), y=int(y), weight=float(wt)))

    return out
