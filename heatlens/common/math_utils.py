"""
Numeric helpers shared by the raster and hotspot pipelines.

Every clamp applied to caller-supplied numbers goes through these
functions so that NaN and infinity are handled the same way everywhere.
"""

from __future__ import annotations

import math
from typing import Any


def is_finite(*values: Any) -> bool:
    """
    Return True if every value converts to a finite float.

    Args:
        values: Candidate numbers (ints, floats, numeric strings).

    Returns:
        False if any value is None, non-numeric, NaN or infinite.
    """
    for v in values:
        try:
            f = float(v)
        except (TypeError, ValueError):
            return False
        if not math.isfinite(f):
            return False
    return True


def finite_or(x: Any, default: float = 0.0) -> float:
    """
    Coerce a value to float, substituting `default` for non-finite input.

    Args:
        x: Input value.
        default: Replacement for NaN, infinity or non-numeric input.

    Returns:
        A finite float.
    """
    if not is_finite(x):
        return float(default)
    return float(x)


def clamp(x: float, lo: float, hi: float) -> float:
    if x < lo:
        return float(lo)
    if x > hi:
        return float(hi)
    return float(x)


def clamp01(x: float) -> float:
    """
    Clamp a value to the [0, 1] range.

    Non-finite input maps to 0.0.

    Args:
        x: Input value.

    Returns:
        Value clamped between 0.0 and 1.0.
    """
    return clamp(finite_or(x, 0.0), 0.0, 1.0)
