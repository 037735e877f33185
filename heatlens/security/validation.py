"""
Input validation for heatmap requests.

Validates caller-supplied values before any work starts:
- URL shape (http/https, no localhost or private literal addresses)
- Device class
- Interaction point lists (bounded size, finite normalized coordinates)
- Render knobs (clamped to safe ranges, defaults filled in)
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Union
from urllib.parse import urlparse

from heatlens.common.math_utils import clamp, finite_or, is_finite
from heatlens.common.types import DEVICES, POINT_KINDS, DataPoint, RenderKnobs
from heatlens.errors import InputInvalid


@dataclass
class ValidationConfig:
    """Limits applied to request inputs."""

    # Points
    max_points: int = 5000

    # URL
    max_url_length: int = 2048

    # Knob ranges
    alpha_range: tuple = (0.0, 1.0)
    kernel_radius_range: tuple = (8, 96)
    kernel_sigma_range: tuple = (2, 48)
    blur_range: tuple = (0, 64)


DEFAULT_CONFIG = ValidationConfig()

_BLEND_ALIASES = {
    "normal": "normal",
    "source-over": "normal",
    "additive": "additive",
    "lighter": "additive",
}

_RAMPS = ("classic", "soft")

_KIND_ALIASES = {"click": "click", "movement": "movement", "move": "movement"}

_BLOCKED_HOSTS = {"localhost", "localhost.localdomain", "ip6-localhost"}


class RequestValidator:
    """Validates and normalizes request parameters."""

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def validate_url(self, url: str) -> str:
        if not isinstance(url, str) or not url.strip():
            raise InputInvalid("URL cannot be empty", "url")

        url = url.strip()
        if len(url) > self.config.max_url_length:
            raise InputInvalid(f"URL too long (max {self.config.max_url_length} chars)", "url")

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise InputInvalid("URL must start with http:// or https://", "url")

        host = (parsed.hostname or "").lower()
        if not host:
            raise InputInvalid("URL has no host", "url")
        if host in _BLOCKED_HOSTS:
            raise InputInvalid("URL host is not public", "url")

        try:
            addr = ipaddress.ip_address(host)
        except ValueError:
            addr = None
        if addr is not None and (addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_reserved):
            raise InputInvalid("URL host is not public", "url")

        return url

    def validate_device(self, device: Optional[str]) -> str:
        d = str(device or "desktop").strip().lower()
        if d not in DEVICES:
            raise InputInvalid(f"Device must be one of {', '.join(DEVICES)}", "device")
        return d

    def validate_points(self, points: Optional[Iterable[Union[DataPoint, Mapping[str, Any]]]]) -> List[DataPoint]:
        """
        Validate interaction points.

        Accepts `DataPoint` instances or mappings with `x`, `y`, optional
        `scrollY`/`scroll_y`/`sy`, and optional `kind`/`type`.

        Raises:
            InputInvalid: If the list is too long or any point is malformed.
        """
        if points is None:
            return []

        items = list(points)
        if len(items) > self.config.max_points:
            raise InputInvalid(f"Too many points (max {self.config.max_points})", "points")

        out: List[DataPoint] = []
        for idx, raw in enumerate(items):
            field = f"points[{idx}]"
            if isinstance(raw, DataPoint):
                x, y, sy, kind = raw.x, raw.y, raw.scroll_y, raw.kind
            elif isinstance(raw, Mapping):
                x = raw.get("x")
                y = raw.get("y")
                sy = raw.get("scrollY", raw.get("scroll_y", raw.get("sy")))
                kind = raw.get("kind", raw.get("type")) or "click"
            else:
                raise InputInvalid("Point must be an object with x and y", field)

            if not is_finite(x, y):
                raise InputInvalid("x and y must be finite numbers", field)
            x = float(x)
            y = float(y)
            if not (0.0 <= x <= 1.0 and 0.0 <= y <= 1.0):
                raise InputInvalid("x and y must be within [0, 1]", field)

            if sy is not None:
                if not is_finite(sy) or not (0.0 <= float(sy) <= 1.0):
                    raise InputInvalid("scrollY must be within [0, 1]", field)
                sy = float(sy)

            k = _KIND_ALIASES.get(str(kind).strip().lower())
            if k not in POINT_KINDS:
                raise InputInvalid("kind must be 'click' or 'movement'", field)

            out.append(DataPoint(x=x, y=y, scroll_y=sy, kind=k))

        return out

    def clamp_knobs(self, knobs: Optional[Union[RenderKnobs, Mapping[str, Any]]] = None) -> RenderKnobs:
        """
        Fill defaults and clamp every knob into its safe range.

        Enum knobs with unknown values raise `InputInvalid`; numeric knobs
        that are non-finite fall back to their defaults.
        """
        defaults = RenderKnobs()
        if knobs is None:
            raw: Mapping[str, Any] = {}
        elif isinstance(knobs, RenderKnobs):
            raw = knobs.to_dict()
        elif isinstance(knobs, Mapping):
            raw = knobs
        else:
            raise InputInvalid("knobs must be an object", "knobs")

        def pick(*names: str) -> Any:
            for n in names:
                if n in raw and raw[n] is not None:
                    return raw[n]
            return None

        blend_raw = pick("blend_mode", "blendMode")
        blend = defaults.blend_mode if blend_raw is None else _BLEND_ALIASES.get(str(blend_raw).strip().lower())
        if blend is None:
            raise InputInvalid("blendMode must be 'normal' or 'additive'", "knobs.blendMode")

        ramp_raw = pick("ramp")
        ramp = defaults.ramp if ramp_raw is None else str(ramp_raw).strip().lower()
        if ramp not in _RAMPS:
            raise InputInvalid("ramp must be 'classic' or 'soft'", "knobs.ramp")

        c = self.config
        alpha = clamp(finite_or(pick("alpha"), defaults.alpha), *c.alpha_range)

        low = clamp(finite_or(pick("clip_low_percent", "clipLowPercent"), defaults.clip_low_percent), 0.0, 100.0)
        high = clamp(finite_or(pick("clip_high_percent", "clipHighPercent"), defaults.clip_high_percent), 0.0, 100.0)
        if low > high:
            low, high = high, low

        radius = int(round(clamp(
            finite_or(pick("kernel_radius_px", "kernelRadiusPx", "radiusPx"), defaults.kernel_radius_px),
            *c.kernel_radius_range,
        )))
        sigma = int(round(clamp(
            finite_or(pick("kernel_sigma_px", "kernelSigmaPx"), defaults.kernel_sigma_px),
            *c.kernel_sigma_range,
        )))

        blur_raw = pick("blur_px", "blurPx")
        blur: Optional[int] = None
        if blur_raw is not None and is_finite(blur_raw):
            blur = int(round(clamp(float(blur_raw), *c.blur_range)))

        return RenderKnobs(
            alpha=alpha,
            blend_mode=blend,
            ramp=ramp,
            clip_low_percent=low,
            clip_high_percent=high,
            kernel_radius_px=radius,
            kernel_sigma_px=sigma,
            blur_px=blur,
        )


def validate_url(url: str) -> str:
    return RequestValidator().validate_url(url)


def validate_device(device: Optional[str]) -> str:
    return RequestValidator().validate_device(device)


def validate_points(points: Optional[Iterable[Union[DataPoint, Mapping[str, Any]]]]) -> List[DataPoint]:
    """
    Convenience function to validate interaction points.

    Returns:
        List of validated `DataPoint`s.
    """
    return RequestValidator().validate_points(points)


def clamp_knobs(knobs: Optional[Union[RenderKnobs, Mapping[str, Any]]] = None) -> RenderKnobs:
    return RequestValidator().clamp_knobs(knobs)
