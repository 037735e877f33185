from __future__ import annotations

import math
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from heatlens.common.types import AccumulationResult, PixelPoint


# Five-stop ramps: (position, (r, g, b)).
RAMPS: Dict[str, Tuple[Tuple[float, Tuple[int, int, int]], ...]] = {
    "classic": (
        (0.00, (0, 0, 255)),
        (0.25, (0, 255, 255)),
        (0.50, (0, 255, 0)),
        (0.75, (255, 255, 0)),
        (1.00, (255, 0, 0)),
    ),
    "soft": (
        (0.00, (74, 111, 196)),
        (0.25, (58, 160, 166)),
        (0.50, (112, 188, 120)),
        (0.75, (188, 212, 96)),
        (1.00, (236, 172, 64)),
    ),
}


def accumulate(
    width: int,
    height: int,
    points: Iterable[PixelPoint],
    radius_px: int,
    intensity_per_point: float = 1.0,
    cap: Optional[float] = None,
) -> AccumulationResult:
    """
    Deposit linear-falloff heat for every point into a float buffer.

    A point adds `intensity_per_point * weight * (1 - d / radius_px)` to each
    cell within Euclidean distance `radius_px` of it. Points with a
    non-positive contribution are skipped, so the buffer never goes negative.

    Args:
        width: Buffer width in pixels.
        height: Buffer height in pixels.
        points: Pixel points; `weight` scales each contribution.
        radius_px: Kernel radius (>= 1).
        intensity_per_point: Peak contribution of a weight-1 point.
        cap: Optional ceiling for every cell's running total.

    Returns:
        AccumulationResult with the (height, width) buffer, its max and
        the number of non-zero cells.
    """
    if width <= 0 or height <= 0:
        raise ValueError("width and height must be positive")
    r = int(radius_px)
    if r < 1:
        raise ValueError("radius_px must be >= 1")

    buf = np.zeros((int(height), int(width)), dtype=np.float64)
    kernel = _falloff_kernel(r)

    for p in points:
        amount = float(intensity_per_point) * float(p.weight)
        if not amount > 0.0:
            continue

        x0 = int(p.x) - r
        y0 = int(p.y) - r
        bx0 = max(0, x0)
        by0 = max(0, y0)
        bx1 = min(int(width), int(p.x) + r + 1)
        by1 = min(int(height), int(p.y) + r + 1)
        if bx0 >= bx1 or by0 >= by1:
            continue

        region = buf[by0:by1, bx0:bx1]
        region += amount * kernel[by0 - y0 : by1 - y0, bx0 - x0 : bx1 - x0]
        if cap is not None:
            np.minimum(region, float(cap), out=region)

    return AccumulationResult(
        buffer=buf,
        max_value=float(buf.max()) if buf.size else 0.0,
        non_zero_count=int(np.count_nonzero(buf)),
    )


def _falloff_kernel(r: int) -> np.ndarray:
    yy, xx = np.mgrid[-r : r + 1, -r : r + 1]
    dist = np.hypot(xx, yy)
    return np.where(dist <= r, np.maximum(0.0, 1.0 - dist / float(r)), 0.0)


def box_blur(buffer: np.ndarray, blur_px: int) -> np.ndarray:
    """
    Separable box blur with edge-shrinking windows.

    Each output cell is the mean of the in-image cells within `blur_px`
    along the row, then along the column. Windows are not zero padded, so
    borders are not darkened.

    Args:
        buffer: 2-D intensity buffer.
        blur_px: Half window size; values <= 0 return a copy.

    Returns:
        New float64 buffer of the same shape.
    """
    src = np.asarray(buffer, dtype=np.float64)
    if src.ndim != 2:
        raise ValueError("buffer must be HxW")

    r = int(blur_px)
    if r <= 0:
        return src.copy()

    return _blur_axis(_blur_axis(src, r, axis=1), r, axis=0)


def _blur_axis(arr: np.ndarray, r: int, *, axis: int) -> np.ndarray:
    moved = np.moveaxis(arr, axis, 0)
    n = moved.shape[0]
    acc = np.zeros_like(moved)
    counts = np.zeros(n, dtype=np.float64)

    for d in range(-r, r + 1):
        if abs(d) >= n:
            continue
        if d >= 0:
            acc[: n - d] += moved[d:]
            counts[: n - d] += 1.0
        else:
            acc[-d:] += moved[: n + d]
            counts[-d:] += 1.0

    acc /= counts.reshape((n,) + (1,) * (moved.ndim - 1))
    return np.moveaxis(acc, 0, axis)


def ramp_position(
    buffer: np.ndarray,
    clip_low_percent: float = 0.0,
    clip_high_percent: float = 100.0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Normalize intensities into ramp positions in [0, 1].

    The normalization range runs from the `clip_low_percent` to the
    `clip_high_percent` percentile of the strictly positive values.

    Returns:
        (t, mask): positions (0 outside the mask) and the `value > 0` mask.
    """
    values = np.asarray(buffer, dtype=np.float64)
    mask = values > 0.0
    t = np.zeros(values.shape, dtype=np.float64)
    if not np.any(mask):
        return t, mask

    positive = np.sort(values[mask])
    n = positive.size
    lo_idx = int(math.floor(float(clip_low_percent) / 100.0 * (n - 1)))
    hi_idx = int(math.ceil(float(clip_high_percent) / 100.0 * (n - 1)))
    lo_idx = min(max(lo_idx, 0), n - 1)
    hi_idx = min(max(hi_idx, lo_idx), n - 1)
    min_v = float(positive[lo_idx])
    max_v = float(positive[hi_idx])

    span = max_v - min_v
    if span > 0.0:
        t[mask] = np.clip((values[mask] - min_v) / span, 0.0, 1.0)
    else:
        t[mask] = 1.0
    return t, mask


def colorize(
    buffer: np.ndarray,
    ramp: str = "classic",
    clip_low_percent: float = 0.0,
    clip_high_percent: float = 100.0,
) -> np.ndarray:
    """
    Map an intensity buffer to an RGBA raster.

    Color follows the ramp position; alpha is a presence mask (255 where
    the intensity is positive, 0 elsewhere) so faint overlaps stay visible.

    Returns:
        uint8 array of shape (H, W, 4).
    """
    if ramp not in RAMPS:
        raise ValueError(f"Unknown ramp '{ramp}'")

    t, mask = ramp_position(buffer, clip_low_percent, clip_high_percent)
    h, w = t.shape
    out = np.zeros((h, w, 4), dtype=np.uint8)
    if not np.any(mask):
        return out

    stops = RAMPS[ramp]
    positions = np.array([s[0] for s in stops], dtype=np.float64)
    colors = np.array([s[1] for s in stops], dtype=np.float64)

    tv = t[mask]
    for ch in range(3):
        out[..., ch][mask] = np.clip(np.rint(np.interp(tv, positions, colors[:, ch])), 0, 255).astype(np.uint8)
    out[..., 3][mask] = 255
    return out
