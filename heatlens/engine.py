"""
Render orchestration.

`HeatmapEngine` runs one sequential pipeline per call:

    validate -> screenshot -> [detect -> sanitize] -> decode -> map
             -> accumulate -> blur -> colorize -> composite -> encode

Screenshot and detection failures are recovered (placeholder image,
heuristic hotspots) and reported in the metadata. Input and raster
failures raise with the phase that failed.
"""

from __future__ import annotations

import base64
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

import numpy as np
from loguru import logger

from heatlens.capture.chain import ProviderChain
from heatlens.common.math_utils import clamp01
from heatlens.common.types import VIEWPORTS, DataPoint, Hotspot, PageContext, RenderKnobs, ScreenshotResult
from heatlens.config import load_config
from heatlens.errors import HeatlensError, RasterFailure
from heatlens.indexing.cache import CacheConfig, HotspotCache
from heatlens.indexing.detector import FallbackDetector, build_detector
from heatlens.indexing.heuristic import HeuristicDetector
from heatlens.indexing.hotspots import deoverlap, sanitize
from heatlens.security.validation import RequestValidator, ValidationConfig
from heatlens.visualization.compositor import composite, decode_image, encode_png, shade_viewed_area
from heatlens.visualization.heatmap import accumulate, box_blur, colorize
from heatlens.visualization.points import hotspots_to_points, to_pixels


KnobsInput = Optional[Union[RenderKnobs, Mapping[str, Any]]]


@dataclass
class RenderResult:
    image_png: bytes
    meta: Dict[str, Any]

    @property
    def data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.image_png).decode("ascii")


@contextmanager
def _timed(timings: Dict[str, float], phase: str) -> Iterator[None]:
    t0 = time.perf_counter()
    try:
        yield
    finally:
        timings[phase] = round(timings.get(phase, 0.0) + (time.perf_counter() - t0) * 1000.0, 2)


@contextmanager
def _raster(timings: Dict[str, float], phase: str) -> Iterator[None]:
    """Time a raster phase and tag anything it raises with the phase name."""
    with _timed(timings, phase):
        try:
            yield
        except HeatlensError:
            raise
        except Exception as e:
            raise RasterFailure(f"{type(e).__name__}: {e}", phase=phase) from e


class HeatmapEngine:
    """
    Renders attention heatmaps over page screenshots.

    Collaborators are injectable so tests and embedding services can swap
    the provider chain, the detector, the cache and the clock-bearing
    pieces. Anything not injected is built from `config`.

    Example:
        >>> engine = HeatmapEngine()
        >>> result = engine.render_ai("https://example.com", "mobile")
        >>> result.meta["engine"], result.meta["fallback"]
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        *,
        chain: Optional[ProviderChain] = None,
        detector: Optional[Any] = None,
        cache: Optional[HotspotCache] = None,
        validator: Optional[RequestValidator] = None,
    ):
        self.config = config if config is not None else load_config()
        self.render_cfg: Dict[str, Any] = self.config.get("render", {})
        self.hotspot_cfg: Dict[str, Any] = self.config.get("hotspots", {})

        self.chain = chain or ProviderChain.from_config(self.config)

        detector = detector or build_detector(self.config)
        if not isinstance(detector, FallbackDetector):
            detector = FallbackDetector(detector, HeuristicDetector())
        self.detector = detector

        cache_cfg = self.config.get("cache", {})
        if cache is None and cache_cfg.get("enabled", True):
            cache = HotspotCache(
                CacheConfig(ttl_s=float(cache_cfg.get("ttl_s", 600.0)), capacity=int(cache_cfg.get("capacity", 100)))
            )
        self.cache = cache

        self.validator = validator or RequestValidator(
            ValidationConfig(max_points=int(self.render_cfg.get("max_points", 5000)))
        )

    def render_ai(
        self,
        url: str,
        device: str = "desktop",
        parity: bool = False,
        knobs: KnobsInput = None,
    ) -> RenderResult:
        """
        Render a predicted-attention heatmap from detected hotspots.

        Args:
            url: Public http(s) page URL.
            device: desktop, tablet or mobile.
            parity: Drop low-confidence hotspots before rendering.
            knobs: Render knobs; missing values take defaults.

        Returns:
            RenderResult with PNG bytes and the metadata record.

        Raises:
            InputInvalid: Bad url, device or knobs.
            DimensionExtractionFailed: Screenshot bytes could not be decoded.
            RasterFailure: A raster phase failed.
        """
        started = time.perf_counter()
        timings: Dict[str, float] = {}
        log = logger.bind(mode="ai", url=url, device=device)

        with _timed(timings, "validate"):
            url = self.validator.validate_url(url)
            device = self.validator.validate_device(device)
            rk = self.validator.clamp_knobs(knobs)
            parity = bool(parity)
        log.info("Render started")

        with _timed(timings, "screenshot"):
            shot = self.chain.acquire_or_placeholder(url, device)
        if shot.degraded:
            log.warning("Screenshot providers exhausted, output is the placeholder")

        hotspots, ai_meta, det_meta, cached = self._hotspots(url, device, parity, shot, timings)
        log.debug(f"{len(hotspots)} hotspots ({'cached' if cached else det_meta.get('engine')})")

        meta = self._base_meta("ai", url, device, shot, rk)
        meta.update(
            {
                "engine": det_meta.get("engine"),
                "fallback": bool(det_meta.get("fallback", False)),
                "cached": cached,
                "hotspot_count": len(hotspots),
                "hotspots": [h.to_dict() for h in hotspots],
                "ai": ai_meta,
            }
        )
        if det_meta.get("fallback_reason"):
            meta["fallback_reason"] = det_meta["fallback_reason"]

        if shot.degraded:
            return self._finish_degraded(shot, meta, timings, started, log)

        with _timed(timings, "decode"):
            rgb = decode_image(shot.image_bytes)
        h, w = rgb.shape[:2]

        with _raster(timings, "map"):
            rng = np.random.default_rng(self.render_cfg.get("seed"))
            pixels = hotspots_to_points(
                hotspots,
                w,
                h,
                density_per_mp=float(self.hotspot_cfg.get("density_per_mp", 800)),
                rng=rng,
            )

        blur_px = rk.blur_px if rk.blur_px is not None else rk.kernel_sigma_px // 4
        return self._rasterize(rgb, pixels, rk, blur_px, meta, timings, started, log)

    def render_data(
        self,
        url: str,
        device: str = "desktop",
        points: Optional[Iterable[Union[DataPoint, Mapping[str, Any]]]] = None,
        knobs: KnobsInput = None,
        *,
        max_scroll: Optional[float] = None,
        shade_viewed: bool = False,
    ) -> RenderResult:
        """
        Render a heatmap from recorded interaction points.

        Args:
            url: Public http(s) page URL.
            device: desktop, tablet or mobile.
            points: Normalized points (mappings or DataPoint); may be empty.
            knobs: Render knobs; missing values take defaults.
            max_scroll: Deepest scroll reached, as a fraction of the
                scrollable distance. Only used with `shade_viewed`.
            shade_viewed: Darken the part of the page visitors saw.

        Raises:
            InputInvalid: Bad url, device, points or knobs.
            DimensionExtractionFailed: Screenshot bytes could not be decoded.
            RasterFailure: A raster phase failed.
        """
        started = time.perf_counter()
        timings: Dict[str, float] = {}
        log = logger.bind(mode="data", url=url, device=device)

        with _timed(timings, "validate"):
            url = self.validator.validate_url(url)
            device = self.validator.validate_device(device)
            data_points = self.validator.validate_points(points)
            rk = self.validator.clamp_knobs(knobs)
        log.info(f"Render started with {len(data_points)} points")

        with _timed(timings, "screenshot"):
            shot = self.chain.acquire_or_placeholder(url, device)
        if shot.degraded:
            log.warning("Screenshot providers exhausted, output is the placeholder")

        meta = self._base_meta("data", url, device, shot, rk)
        meta.update({"engine": "data", "fallback": False, "cached": False, "hotspot_count": 0})

        if shot.degraded:
            meta["point_count"] = len(data_points)
            return self._finish_degraded(shot, meta, timings, started, log)

        with _timed(timings, "decode"):
            rgb = decode_image(shot.image_bytes)
        h, w = rgb.shape[:2]
        viewport = VIEWPORTS[device]
        fold_px = max(1, min(h, int(round(w * viewport.height / float(viewport.width)))))

        with _raster(timings, "map"):
            pixels = to_pixels(
                data_points,
                w,
                h,
                viewport_height=fold_px,
                kind_weights=self.render_cfg.get("kind_weights"),
            )

        if shade_viewed:
            with _raster(timings, "shade"):
                scroll = clamp01(max_scroll if max_scroll is not None else 1.0)
                viewed = fold_px + scroll * max(0, h - fold_px)
                rgb = shade_viewed_area(rgb, int(round(viewed)))
            meta["viewed_height"] = int(round(viewed))

        blur_px = rk.blur_px if rk.blur_px is not None else rk.kernel_sigma_px // 2
        return self._rasterize(rgb, pixels, rk, blur_px, meta, timings, started, log)

    def _hotspots(self, url: str, device: str, parity: bool, shot: ScreenshotResult, timings: Dict[str, float]):
        """Cache-checked detection followed by sanitize and de-overlap."""
        prompt_hash = getattr(self.detector, "prompt_hash", "")
        key = HotspotCache.key(url, device, parity, prompt_hash)

        with _timed(timings, "detect"):
            entry = self.cache.get(key) if self.cache is not None else None
            if entry is not None:
                det_meta = dict(entry.meta)
                ai_meta = dict(det_meta.get("ai", {}))
                det_meta["fallback"] = False
                return list(entry.hotspots), ai_meta, det_meta, True

            ctx = PageContext(
                url=url,
                device=device,
                viewport=VIEWPORTS[device],
                image_bytes=None if shot.degraded else shot.image_bytes,
                elements=list(shot.elements),
            )
            detection = self.detector.detect(ctx)

        with _timed(timings, "sanitize"):
            kept = self._clean(detection.hotspots, parity)

        if not kept and not detection.meta.get("fallback", False):
            logger.warning(f"No {detection.meta.get('engine')} hotspots survived sanitization for {url}")
            with _timed(timings, "detect"):
                detection = self.detector.run_secondary(ctx, "no hotspots survived sanitization")
            with _timed(timings, "sanitize"):
                kept = self._clean(detection.hotspots, parity)

        det_meta = dict(detection.meta)
        requested = int(det_meta.get("requested", len(detection.hotspots)))
        ai_meta = {
            "engine": det_meta.get("engine"),
            "model": det_meta.get("model"),
            "prompt_hash": prompt_hash,
            "requested": requested,
            "accepted": len(kept),
            "pruned": len(detection.hotspots) - len(kept),
            "parity": parity,
        }

        # Fallback results are not cached so the model is retried next time.
        if self.cache is not None and not det_meta.get("fallback", False):
            self.cache.set(key, kept, {"engine": det_meta.get("engine"), "ai": ai_meta})

        return kept, ai_meta, det_meta, False

    def _clean(self, hotspots: List[Hotspot], parity: bool) -> List[Hotspot]:
        result = sanitize(
            hotspots,
            parity=parity,
            parity_min_confidence=float(self.hotspot_cfg.get("parity_min_confidence", 0.25)),
        )
        return deoverlap(
            result.kept,
            max_count=int(self.hotspot_cfg.get("max_count", 8)),
            iou_threshold=float(self.hotspot_cfg.get("iou_threshold", 0.4)),
        )

    def _rasterize(
        self,
        rgb: np.ndarray,
        pixels: list,
        rk: RenderKnobs,
        blur_px: int,
        meta: Dict[str, Any],
        timings: Dict[str, float],
        started: float,
        log: Any,
    ) -> RenderResult:
        h, w = rgb.shape[:2]
        cap = self.render_cfg.get("cap")

        with _raster(timings, "accumulate"):
            acc = accumulate(
                w,
                h,
                pixels,
                rk.kernel_radius_px,
                intensity_per_point=float(self.render_cfg.get("intensity_per_point", 1.0)),
                cap=None if cap is None else float(cap),
            )
        log.debug(f"Accumulated {len(pixels)} points: max {acc.max_value:.3f}, {acc.non_zero_count} non-zero cells")

        with _raster(timings, "blur"):
            blurred = box_blur(acc.buffer, blur_px)

        with _raster(timings, "colorize"):
            color = colorize(blurred, rk.ramp, rk.clip_low_percent, rk.clip_high_percent)

        with _raster(timings, "composite"):
            comp = composite(
                rgb,
                color,
                rk.alpha,
                rk.blend_mode,
                max_pixels=int(self.render_cfg.get("max_pixels", 8_000_000)),
            )
        if comp.downscaled:
            log.debug(f"Downscaled {w}x{h} to {comp.width}x{comp.height}")

        with _raster(timings, "encode"):
            png = encode_png(comp.image)

        meta.update(
            {
                "point_count": len(pixels),
                "blur_px": int(blur_px),
                "max_value": acc.max_value,
                "non_zero_count": acc.non_zero_count,
                "output": {"width": comp.width, "height": comp.height, "downscaled": comp.downscaled},
            }
        )
        return self._finish(png, meta, timings, started, log)

    def _finish_degraded(
        self,
        shot: ScreenshotResult,
        meta: Dict[str, Any],
        timings: Dict[str, float],
        started: float,
        log: Any,
    ) -> RenderResult:
        meta.setdefault("point_count", 0)
        meta["output"] = {"width": 1, "height": 1, "downscaled": False}
        return self._finish(shot.image_bytes, meta, timings, started, log)

    @staticmethod
    def _finish(png: bytes, meta: Dict[str, Any], timings: Dict[str, float], started: float, log: Any) -> RenderResult:
        meta["timings_ms"] = dict(timings)
        meta["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
        meta["timestamp"] = datetime.now(timezone.utc).isoformat()
        log.info(f"Render finished in {meta['duration_ms']} ms ({len(png)} bytes)")
        return RenderResult(image_png=png, meta=meta)

    @staticmethod
    def _base_meta(mode: str, url: str, device: str, shot: ScreenshotResult, rk: RenderKnobs) -> Dict[str, Any]:
        return {
            "mode": mode,
            "url": url,
            "device": device,
            "viewport": VIEWPORTS[device].to_dict(),
            "degraded": shot.degraded,
            "screenshot": {
                "provider": shot.provider_id,
                "degraded": shot.degraded,
                "attempts": list(shot.attempts),
            },
            "knobs": rk.to_dict(),
        }
