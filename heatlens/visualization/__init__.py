"""
Raster pipeline: point mapping, heat accumulation, blur, colorization and
compositing onto the page screenshot.
"""

from heatlens.visualization.compositor import (
    CompositeResult,
    composite,
    decode_image,
    encode_png,
    shade_viewed_area,
)
from heatlens.visualization.heatmap import RAMPS, accumulate, box_blur, colorize, ramp_position
from heatlens.visualization.points import hotspots_to_points, to_normalized, to_pixels

__all__ = [
    "CompositeResult",
    "composite",
    "decode_image",
    "encode_png",
    "shade_viewed_area",
    "RAMPS",
    "accumulate",
    "box_blur",
    "colorize",
    "ramp_position",
    "hotspots_to_points",
    "to_normalized",
    "to_pixels",
]
