"""
Recorded-session ingestion.

Sessions arrive as JSON Lines, one object per visit:

    {"viewport": {"w": 1920, "h": 1080},
     "clicks": [{"x": 0.5, "y": 0.2, "sy": 0.0}],
     "movements": [...],
     "scrolls": [{"y_percent": 0.4}]}

Coordinates are normalized to the visitor's viewport; `sy` is the scroll
position as a fraction of the scrollable distance.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Union

from loguru import logger

from heatlens.common.math_utils import clamp01
from heatlens.common.types import DEVICES, DataPoint, VIEWPORTS, Viewport


@dataclass
class SessionSegment:
    """All points recorded on one device class, plus the deepest scroll seen."""

    device: str
    viewport: Viewport
    points: List[DataPoint] = field(default_factory=list)
    max_scroll: float = 0.0
    sessions: int = 0


def stream_jsonl(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """
    Yield sessions from a JSON Lines file.

    Blank lines are ignored. Lines that are not JSON objects, or whose
    viewport is missing or non-numeric, are logged and skipped.
    """
    with Path(path).open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                session = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Could not parse line {lineno}, skipping: {e}")
                continue
            if not isinstance(session, dict) or not _valid_viewport(session.get("viewport")):
                logger.warning(f"Skipping session on line {lineno} with invalid viewport data")
                continue
            yield session


def segment_by_viewport(session: Mapping[str, Any]) -> str:
    """Device class from the viewport aspect ratio."""
    vp = session["viewport"]
    ratio = float(vp["w"]) / float(vp["h"])
    if ratio < 1:
        return "mobile" if ratio < 0.6 else "tablet"
    return "desktop" if ratio > 1.5 else "tablet"


def session_points(session: Mapping[str, Any]) -> List[DataPoint]:
    """Clicks followed by movements; entries without both x and y are skipped."""
    out: List[DataPoint] = []
    for key, kind in (("clicks", "click"), ("movements", "movement")):
        for raw in session.get(key) or []:
            if not isinstance(raw, Mapping) or raw.get("x") is None or raw.get("y") is None:
                continue
            sy = raw.get("sy")
            out.append(
                DataPoint(
                    x=clamp01(_as_float(raw["x"])),
                    y=clamp01(_as_float(raw["y"])),
                    scroll_y=None if sy is None else clamp01(_as_float(sy)),
                    kind=kind,
                )
            )
    return out


def max_scroll(session: Mapping[str, Any]) -> float:
    """Deepest `y_percent` reached, clamped to [0, 1]; 0 when nothing was recorded."""
    scrolls = session.get("scrolls") or []
    values = [clamp01(_as_float(s.get("y_percent"))) for s in scrolls if isinstance(s, Mapping)]
    return max(values) if values else 0.0


def segment_sessions(sessions: Iterable[Mapping[str, Any]]) -> Dict[str, SessionSegment]:
    """Fold sessions into one segment per device class."""
    segments = {d: SessionSegment(device=d, viewport=VIEWPORTS[d]) for d in DEVICES}
    for session in sessions:
        seg = segments[segment_by_viewport(session)]
        seg.points.extend(session_points(session))
        seg.max_scroll = max(seg.max_scroll, max_scroll(session))
        seg.sessions += 1

    for seg in segments.values():
        logger.debug(f"{seg.device}: {seg.sessions} sessions, {len(seg.points)} points, max scroll {seg.max_scroll:.2f}")
    return segments


def _valid_viewport(vp: Any) -> bool:
    if not isinstance(vp, Mapping):
        return False
    try:
        w = float(vp.get("w"))
        h = float(vp.get("h"))
    except (TypeError, ValueError):
        return False
    return math.isfinite(w) and math.isfinite(h) and w > 0 and h > 0


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
