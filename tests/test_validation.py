import pytest

from heatlens.common.types import DataPoint, RenderKnobs
from heatlens.errors import InputInvalid
from heatlens.security.validation import (
    RequestValidator,
    ValidationConfig,
    clamp_knobs,
    validate_device,
    validate_points,
    validate_url,
)


class TestValidateUrl:
    @pytest.mark.parametrize("url", ["https://example.com", "http://shop.example.org/p?id=1", "  https://a.io/x  "])
    def test_accepts_public_urls(self, url):
        assert validate_url(url) == url.strip()

    @pytest.mark.parametrize(
        "url",
        [
            "",
            "   ",
            "ftp://example.com",
            "javascript:alert(1)",
            "https://",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://10.0.0.8/admin",
            "http://192.168.1.1",
            "http://169.254.169.254/latest/meta-data",
            "http://[::1]/",
            "https://example.com/" + "a" * 2100,
        ],
    )
    def test_rejects(self, url):
        with pytest.raises(InputInvalid) as exc:
            validate_url(url)
        assert exc.value.field == "url"
        assert exc.value.to_dict()["phase"] == "validate"


class TestValidateDevice:
    def test_default_and_case(self):
        assert validate_device(None) == "desktop"
        assert validate_device(" Mobile ") == "mobile"

    def test_unknown(self):
        with pytest.raises(InputInvalid) as exc:
            validate_device("watch")
        assert exc.value.field == "device"


class TestValidatePoints:
    def test_accepts_mappings_and_datapoints(self):
        points = validate_points(
            [
                {"x": 0.1, "y": 0.2},
                {"x": "0.3", "y": 0.4, "scrollY": 0.5, "kind": "movement"},
                {"x": 0.5, "y": 0.6, "sy": 1, "type": "move"},
                DataPoint(0.7, 0.8),
            ]
        )

        assert points[0] == DataPoint(0.1, 0.2)
        assert points[1] == DataPoint(0.3, 0.4, scroll_y=0.5, kind="movement")
        assert points[2].kind == "movement" and points[2].scroll_y == 1.0
        assert points[3] == DataPoint(0.7, 0.8)

    def test_none_is_empty(self):
        assert validate_points(None) == []

    @pytest.mark.parametrize(
        "bad",
        [
            {"x": 0.1},
            {"x": float("nan"), "y": 0.1},
            {"x": -0.1, "y": 0.1},
            {"x": 0.1, "y": 0.1, "scrollY": 1.5},
            {"x": 0.1, "y": 0.1, "kind": "hover"},
            "0.1,0.1",
        ],
    )
    def test_rejects_malformed_point(self, bad):
        with pytest.raises(InputInvalid) as exc:
            validate_points([{"x": 0.5, "y": 0.5}, bad])
        assert exc.value.field == "points[1]"

    def test_bounded_length(self):
        validator = RequestValidator(ValidationConfig(max_points=3))
        with pytest.raises(InputInvalid) as exc:
            validator.validate_points([{"x": 0, "y": 0}] * 4)
        assert exc.value.field == "points"


class TestClampKnobs:
    def test_defaults(self):
        assert clamp_knobs(None) == RenderKnobs()
        assert clamp_knobs({}) == RenderKnobs()

    def test_clamps_ranges_and_aliases(self):
        knobs = clamp_knobs(
            {
                "alpha": 3,
                "blendMode": "source-over",
                "ramp": "SOFT",
                "clipLowPercent": 95,
                "clipHighPercent": 5,
                "kernelRadiusPx": 1000,
                "kernelSigmaPx": 0,
                "blurPx": -4,
            }
        )

        assert knobs.alpha == 1.0
        assert knobs.blend_mode == "normal"
        assert knobs.ramp == "soft"
        assert (knobs.clip_low_percent, knobs.clip_high_percent) == (5.0, 95.0)
        assert knobs.kernel_radius_px == 96
        assert knobs.kernel_sigma_px == 2
        assert knobs.blur_px == 0

    def test_non_finite_numbers_take_defaults(self):
        knobs = clamp_knobs({"alpha": float("nan"), "kernel_radius_px": float("inf"), "blend_mode": "lighter"})

        assert knobs.alpha == 0.6
        assert knobs.kernel_radius_px == 40
        assert knobs.blend_mode == "additive"

    def test_accepts_knob_objects(self):
        knobs = clamp_knobs(RenderKnobs(alpha=0.2, kernel_radius_px=4))
        assert knobs.alpha == 0.2
        assert knobs.kernel_radius_px == 8

    @pytest.mark.parametrize("bad", [{"blendMode": "multiply"}, {"ramp": "neon"}, ["alpha", 1]])
    def test_rejects_unknown_enums(self, bad):
        with pytest.raises(InputInvalid):
            clamp_knobs(bad)
