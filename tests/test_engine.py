import numpy as np
import pytest

from heatlens.capture.chain import PLACEHOLDER_PNG, ProviderChain
from heatlens.capture.providers import Capture
from heatlens.common.types import Detection, Hotspot, PageElement
from heatlens.config import load_config
from heatlens.engine import HeatmapEngine
from heatlens.errors import InputInvalid, RasterFailure
from heatlens.indexing.cache import HotspotCache
from heatlens.indexing.detector import FallbackDetector
from heatlens.indexing.heuristic import HeuristicDetector
from heatlens.indexing.model_detector import ModelDetector

from conftest import decode

URL = "https://example.com/landing"


class CountingDetector:
    name = "model"
    prompt_hash = "v1"

    def __init__(self, hotspots=None):
        self.calls = 0
        self.hotspots = hotspots or [
            Hotspot(0.2, 0.1, 0.5, 0.1, 0.9, "headline"),
            Hotspot(0.21, 0.1, 0.5, 0.1, 0.8, "headline"),
            Hotspot(0.3, 0.3, 0.3, 0.1, 0.2, "cta"),
        ]

    def detect(self, ctx):
        self.calls += 1
        return Detection(hotspots=list(self.hotspots), meta={"engine": "model", "model": "m", "requested": 3})


@pytest.fixture
def config():
    cfg = load_config(env={})
    cfg["capture"]["min_bytes"] = 0
    return cfg


@pytest.fixture
def chain(make_provider, page_png):
    elements = [PageElement(tag="h1", x=20, y=40, width=200, height=30, text="Hello")]
    provider = make_provider("chromium", [Capture(image_bytes=page_png, elements=elements)])
    return ProviderChain([provider], min_bytes=0, sleep=lambda s: None)


@pytest.fixture
def dead_chain(make_provider):
    provider = make_provider("chromium", [ConnectionError("browser crashed")])
    return ProviderChain([provider], sleep=lambda s: None)


class TestRenderData:
    def test_renders_points_over_screenshot(self, config, chain, page_png):
        engine = HeatmapEngine(config, chain=chain, detector=HeuristicDetector())
        points = [{"x": 0.5, "y": 0.2}, {"x": 0.5, "y": 0.21}, {"x": 0.9, "y": 0.9, "type": "move"}]

        result = engine.render_data(URL, "mobile", points, {"alpha": 0.7, "blendMode": "normal"})

        out = decode(result.image_png)
        base = decode(page_png)
        assert out.shape == base.shape
        assert not np.array_equal(out, base)

        meta = result.meta
        assert meta["mode"] == "data"
        assert meta["engine"] == "data"
        assert meta["fallback"] is False
        assert meta["point_count"] == 3
        assert meta["viewport"] == {"width": 414, "height": 896}
        assert meta["output"] == {"width": 240, "height": 400, "downscaled": False}
        assert meta["screenshot"]["provider"] == "chromium"
        assert meta["blur_px"] == 10
        assert meta["knobs"]["blend_mode"] == "normal"
        for phase in ("validate", "screenshot", "decode", "map", "accumulate", "blur", "colorize", "composite", "encode"):
            assert phase in meta["timings_ms"]
        assert meta["duration_ms"] >= 0

    def test_empty_points_leave_screenshot_unchanged(self, config, chain, page_png):
        engine = HeatmapEngine(config, chain=chain, detector=HeuristicDetector())

        result = engine.render_data(URL, "desktop", [])

        np.testing.assert_array_equal(decode(result.image_png), decode(page_png))
        assert result.meta["non_zero_count"] == 0

    def test_shade_viewed_area(self, config, chain):
        engine = HeatmapEngine(config, chain=chain, detector=HeuristicDetector())

        result = engine.render_data(URL, "desktop", [], max_scroll=0.5, shade_viewed=True)

        fold = round(240 * 1080 / 1920)
        assert result.meta["viewed_height"] == round(fold + 0.5 * (400 - fold))
        out = decode(result.image_png)
        assert out[5, 5].sum() < 150
        assert out[-1, 5].sum() > 600

    def test_invalid_input_fails_before_any_work(self, config, make_provider):
        provider = make_provider("chromium", [b"x"])
        engine = HeatmapEngine(config, chain=ProviderChain([provider]), detector=HeuristicDetector())

        with pytest.raises(InputInvalid) as exc:
            engine.render_data("http://127.0.0.1/admin", "desktop", [])
        assert exc.value.field == "url"

        with pytest.raises(InputInvalid):
            engine.render_data(URL, "desktop", [{"x": 2.0, "y": 0.1}])

        with pytest.raises(InputInvalid):
            engine.render_data(URL, "desktop", [{"x": 0.1, "y": 0.1}] * 5001)

        assert provider.calls == 0

    def test_exhausted_providers_return_placeholder(self, config, dead_chain):
        engine = HeatmapEngine(config, chain=dead_chain, detector=HeuristicDetector())

        result = engine.render_data(URL, "tablet", [{"x": 0.5, "y": 0.5}])

        assert result.image_png == PLACEHOLDER_PNG
        assert result.meta["degraded"] is True
        assert result.meta["screenshot"]["degraded"] is True
        assert len(result.meta["screenshot"]["attempts"]) == 2
        assert "accumulate" not in result.meta["timings_ms"]

    def test_raster_failure_is_phase_tagged(self, config, chain, monkeypatch):
        def broken(*args, **kwargs):
            raise FloatingPointError("overflow")

        monkeypatch.setattr("heatlens.engine.colorize", broken)
        engine = HeatmapEngine(config, chain=chain, detector=HeuristicDetector())

        with pytest.raises(RasterFailure) as exc:
            engine.render_data(URL, "desktop", [{"x": 0.5, "y": 0.5}])

        assert exc.value.phase == "colorize"
        assert exc.value.to_dict() == {
            "error": "FloatingPointError: overflow",
            "phase": "colorize",
            "code": "RASTER_FAILURE",
        }

    def test_data_url(self, config, chain):
        engine = HeatmapEngine(config, chain=chain, detector=HeuristicDetector())
        assert engine.render_data(URL).data_url.startswith("data:image/png;base64,iVBOR")


class TestRenderAI:
    def test_hotspots_are_sanitized_and_rendered(self, config, chain, page_png):
        detector = CountingDetector()
        engine = HeatmapEngine(config, chain=chain, detector=detector)

        result = engine.render_ai(URL, "desktop", parity=True)

        meta = result.meta
        assert meta["mode"] == "ai"
        assert meta["engine"] == "model"
        assert meta["fallback"] is False
        assert meta["cached"] is False
        assert meta["hotspot_count"] == 1
        assert meta["ai"]["requested"] == 3
        assert meta["ai"]["accepted"] == 1
        assert meta["ai"]["pruned"] == 2
        assert meta["ai"]["parity"] is True
        assert meta["ai"]["prompt_hash"] == "v1"
        assert meta["blur_px"] == 5
        assert meta["point_count"] >= 20
        assert not np.array_equal(decode(result.image_png), decode(page_png))

    def test_second_call_is_served_from_cache(self, config, chain):
        detector = CountingDetector()
        cache = HotspotCache()
        engine = HeatmapEngine(config, chain=chain, detector=detector, cache=cache)

        first = engine.render_ai(URL, "desktop")
        second = engine.render_ai(URL, "desktop")

        assert detector.calls == 1
        assert second.meta["cached"] is True
        assert second.meta["hotspots"] == first.meta["hotspots"]
        assert second.meta["ai"]["accepted"] == first.meta["ai"]["accepted"]
        assert cache.hits == 1

        engine.render_ai(URL, "desktop", parity=True)
        assert detector.calls == 2

    def test_detector_failure_falls_back_to_heuristic(self, config, chain, make_openai):
        model = ModelDetector(client=make_openai(error=ConnectionError("simulated network error")))
        engine = HeatmapEngine(config, chain=chain, detector=FallbackDetector(model, HeuristicDetector()))

        result = engine.render_ai(URL, "mobile")

        assert result.meta["fallback"] is True
        assert result.meta["engine"] == "heuristic"
        assert "simulated network error" in result.meta["fallback_reason"]
        assert result.meta["hotspot_count"] >= 1
        assert result.image_png.startswith(b"\x89PNG")

    def test_fallback_results_are_not_cached(self, config, chain, make_openai):
        model = ModelDetector(client=make_openai(error=ConnectionError("down")))
        engine = HeatmapEngine(config, chain=chain, detector=model)

        engine.render_ai(URL, "desktop")
        engine.render_ai(URL, "desktop")

        assert len(engine.cache) == 0
        assert len(model._client.completions.calls) == 2

    def test_cache_disabled_by_config(self, chain):
        cfg = load_config(env={"HEATLENS_HOTSPOTS_CACHE": "false"})
        detector = CountingDetector()
        engine = HeatmapEngine(cfg, chain=chain, detector=detector)

        engine.render_ai(URL)
        engine.render_ai(URL)

        assert engine.cache is None
        assert detector.calls == 2

    def test_exhausted_providers_still_complete(self, config, dead_chain):
        engine = HeatmapEngine(config, chain=dead_chain, detector=CountingDetector())

        result = engine.render_ai(URL, "desktop")

        assert result.image_png == PLACEHOLDER_PNG
        assert result.meta["degraded"] is True
        assert result.meta["output"] == {"width": 1, "height": 1, "downscaled": False}

    def test_downscale_guard(self, config, chain):
        config["render"]["max_pixels"] = 240 * 400 // 4
        engine = HeatmapEngine(config, chain=chain, detector=CountingDetector())

        result = engine.render_ai(URL)

        assert result.meta["output"] == {"width": 120, "height": 200, "downscaled": True}
        assert decode(result.image_png).shape == (200, 120, 3)

    def test_unusable_model_hotspots_fall_back(self, config, chain, make_openai):
        reply = '{"hotspots": [{"x": 0.1, "y": 0.1, "width": 0, "height": 0.2, "confidence": 0.9}]}'
        model = ModelDetector(client=make_openai(content=reply))
        engine = HeatmapEngine(config, chain=chain, detector=model)

        result = engine.render_ai(URL, "desktop")

        assert result.meta["fallback"] is True
        assert result.meta["engine"] == "heuristic"
        assert result.meta["fallback_reason"] == "no hotspots survived sanitization"
        assert result.meta["hotspot_count"] >= 1
        assert result.meta["non_zero_count"] > 0
        assert len(engine.cache) == 0

    def test_parity_filtering_everything_falls_back(self, config, chain):
        weak = CountingDetector([Hotspot(0.2, 0.2, 0.3, 0.1, 0.1, "cta")])
        engine = HeatmapEngine(config, chain=chain, detector=weak)

        result = engine.render_ai(URL, "desktop", parity=True)

        assert weak.calls == 1
        assert result.meta["fallback"] is True
        assert result.meta["ai"]["engine"] == "heuristic"
        assert result.meta["hotspot_count"] >= 1
