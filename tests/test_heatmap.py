import numpy as np
import pytest

from heatlens.common.types import DataPoint, PixelPoint
from heatlens.visualization.heatmap import RAMPS, accumulate, box_blur, colorize, ramp_position
from heatlens.visualization.points import to_pixels


class TestAccumulate:
    def test_empty_points_give_zero_buffer(self):
        result = accumulate(50, 40, [], radius_px=10)

        assert result.buffer.shape == (40, 50)
        assert not result.buffer.any()
        assert result.max_value == 0.0
        assert result.non_zero_count == 0

    def test_single_point_peak_and_support(self):
        result = accumulate(101, 101, [PixelPoint(50, 50)], radius_px=10, intensity_per_point=2.0)
        buf = result.buffer

        assert buf[50, 50] == pytest.approx(2.0)
        assert buf[50, 55] == pytest.approx(2.0 * (1 - 5 / 10))
        assert buf[50, 60] == 0.0
        assert buf[50, 61] == 0.0
        assert buf[57, 57] == pytest.approx(2.0 * max(0.0, 1 - np.hypot(7, 7) / 10))
        assert result.max_value == pytest.approx(2.0)

    def test_never_negative(self):
        rng = np.random.default_rng(3)
        points = [
            PixelPoint(int(x), int(y), float(w))
            for x, y, w in zip(rng.integers(0, 80, 200), rng.integers(0, 60, 200), rng.uniform(-1.0, 2.0, 200))
        ]
        result = accumulate(80, 60, points, radius_px=12)

        assert (result.buffer >= 0.0).all()

    def test_points_near_edges_are_clipped(self):
        result = accumulate(20, 20, [PixelPoint(0, 0), PixelPoint(19, 19)], radius_px=8)

        assert result.buffer[0, 0] == pytest.approx(1.0)
        assert result.buffer[19, 19] == pytest.approx(1.0)

    def test_cap_bounds_running_total(self):
        points = [PixelPoint(10, 10)] * 5
        result = accumulate(21, 21, points, radius_px=5, cap=2.5)

        assert result.max_value == pytest.approx(2.5)
        assert (result.buffer <= 2.5 + 1e-12).all()

    def test_order_independent(self):
        points = [PixelPoint(5, 5, 0.3), PixelPoint(12, 9, 1.0), PixelPoint(7, 14, 0.7)]
        a = accumulate(20, 20, points, radius_px=6).buffer
        b = accumulate(20, 20, list(reversed(points)), radius_px=6).buffer

        np.testing.assert_allclose(a, b, rtol=0, atol=1e-12)

    def test_rejects_bad_radius(self):
        with pytest.raises(ValueError):
            accumulate(10, 10, [PixelPoint(1, 1)], radius_px=0)

    def test_near_duplicates_merge_into_one_blob(self):
        width, height = 400, 300
        pts = to_pixels(
            [DataPoint(0.5, 0.2), DataPoint(0.5, 0.21), DataPoint(0.9, 0.9)],
            width,
            height,
        )
        result = accumulate(width, height, pts, radius_px=40)
        buf = result.buffer

        near = buf[pts[0].y, pts[0].x]
        far = buf[pts[2].y, pts[2].x]
        gap = abs(pts[1].y - pts[0].y)

        assert near == pytest.approx(1.0 + (1.0 - gap / 40.0))
        assert far == pytest.approx(1.0)
        assert near > 1.8 > far

        peak_y, peak_x = np.unravel_index(np.argmax(buf), buf.shape)
        assert abs(peak_x - 200) <= 1
        assert 59 <= peak_y <= 64


class TestBoxBlur:
    def test_zero_radius_is_identity_copy(self):
        buf = np.random.default_rng(0).random((12, 9))
        out = box_blur(buf, 0)

        np.testing.assert_array_equal(out, buf)
        assert out is not buf

    def test_does_not_raise_maximum(self):
        buf = np.random.default_rng(1).random((40, 30)) * 5.0
        for r in (1, 3, 8, 50):
            assert box_blur(buf, r).max() <= buf.max() + 1e-9

    def test_constant_field_keeps_borders(self):
        buf = np.full((15, 20), 3.0)
        np.testing.assert_allclose(box_blur(buf, 4), buf)

    def test_zero_regions_stay_exactly_zero(self):
        buf = np.zeros((30, 30))
        buf[5, 5] = 1.0
        out = box_blur(buf, 2)

        assert out[20:, 20:].max() == 0.0
        assert (out >= 0.0).all()

    def test_window_mean(self):
        buf = np.zeros((1, 7))
        buf[0, 3] = 7.0
        out = box_blur(buf, 1)

        np.testing.assert_allclose(out[0], [0, 0, 7 / 3, 7 / 3, 7 / 3, 0, 0])

    def test_deterministic(self):
        buf = np.random.default_rng(2).random((25, 25))
        np.testing.assert_array_equal(box_blur(buf, 3), box_blur(buf, 3))


class TestColorize:
    def test_zero_buffer_is_fully_transparent(self):
        out = colorize(np.zeros((10, 12)))

        assert out.shape == (10, 12, 4)
        assert out.dtype == np.uint8
        assert not out.any()

    def test_presence_mask_alpha(self):
        buf = np.zeros((4, 4))
        buf[1, 1] = 0.01
        buf[2, 2] = 5.0
        out = colorize(buf)

        assert out[1, 1, 3] == 255
        assert out[2, 2, 3] == 255
        assert out[0, 0, 3] == 0

    def test_classic_ramp_endpoints(self):
        buf = np.array([[1.0, 2.0, 3.0]])
        out = colorize(buf, "classic")

        assert tuple(out[0, 0, :3]) == RAMPS["classic"][0][1]
        assert tuple(out[0, 1, :3]) == RAMPS["classic"][2][1]
        assert tuple(out[0, 2, :3]) == RAMPS["classic"][4][1]

    def test_flat_buffer_maps_to_top_of_ramp(self):
        out = colorize(np.full((3, 3), 0.5), "soft")
        assert tuple(out[1, 1, :3]) == RAMPS["soft"][-1][1]

    def test_ramp_position_is_order_preserving(self):
        buf = np.random.default_rng(5).random((20, 20))
        buf[buf < 0.3] = 0.0
        t, mask = ramp_position(buf, 10.0, 90.0)

        values = buf[mask]
        order = np.argsort(values, kind="stable")
        assert np.all(np.diff(t[mask][order]) >= 0.0)
        assert t.min() >= 0.0 and t.max() <= 1.0

    def test_percentile_clip_saturates_outliers(self):
        buf = np.array([[1.0, 2.0, 3.0, 4.0, 100.0]])
        t, _ = ramp_position(buf, 0.0, 75.0)

        assert t[0, 3] == pytest.approx(1.0)
        assert t[0, 4] == pytest.approx(1.0)
        assert t[0, 0] == pytest.approx(0.0)

    def test_unknown_ramp(self):
        with pytest.raises(ValueError):
            colorize(np.ones((2, 2)), "neon")
