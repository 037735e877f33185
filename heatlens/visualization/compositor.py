from __future__ import annotations

import io
import math
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps

from heatlens.errors import DimensionExtractionFailed


VIEWED_SHADE_RGB: Tuple[int, int, int] = (10, 25, 47)


@dataclass
class CompositeResult:
    image: np.ndarray
    width: int
    height: int
    downscaled: bool


def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode screenshot bytes into an RGB uint8 array.

    Raises:
        DimensionExtractionFailed: If the bytes are empty or not an image.
    """
    if not image_bytes:
        raise DimensionExtractionFailed("Image data is empty")
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = ImageOps.exif_transpose(img)
            img = img.convert("RGB")
            rgb = np.array(img)
    except Exception as e:
        raise DimensionExtractionFailed(f"Failed to decode image: {e}") from e

    if rgb.ndim != 3 or rgb.shape[0] < 1 or rgb.shape[1] < 1:
        raise DimensionExtractionFailed("Decoded image has no pixels")
    return rgb


def image_size(image_bytes: bytes) -> Tuple[int, int]:
    """(width, height) from the image header, after EXIF rotation."""
    if not image_bytes:
        raise DimensionExtractionFailed("Image data is empty")
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            w, h = img.size
            if img.getexif().get(0x0112) in (5, 6, 7, 8):
                w, h = h, w
    except Exception as e:
        raise DimensionExtractionFailed(f"Failed to read image size: {e}") from e
    if w < 1 or h < 1:
        raise DimensionExtractionFailed("Image has no pixels")
    return int(w), int(h)


def encode_png(image_rgb: np.ndarray) -> bytes:
    if image_rgb.ndim != 3 or image_rgb.shape[2] != 3:
        raise ValueError("image_rgb must be HxWx3")
    bgr = cv2.cvtColor(np.ascontiguousarray(image_rgb, dtype=np.uint8), cv2.COLOR_RGB2BGR)
    ok, buf = cv2.imencode(".png", bgr)
    if not ok:
        raise RuntimeError("Failed to encode PNG with OpenCV")
    return buf.tobytes()


def shade_viewed_area(
    image_rgb: np.ndarray,
    viewed_height: int,
    *,
    opacity: float = 0.85,
    color: Tuple[int, int, int] = VIEWED_SHADE_RGB,
) -> np.ndarray:
    """Darken the rows a visitor actually scrolled through."""
    out = image_rgb.astype(np.float32)
    rows = max(0, min(int(viewed_height), out.shape[0]))
    if rows == 0:
        return image_rgb.copy()
    a = float(opacity)
    out[:rows] = (1.0 - a) * out[:rows] + a * np.array(color, dtype=np.float32)
    return np.clip(np.rint(out), 0, 255).astype(np.uint8)


def composite(
    screenshot_rgb: np.ndarray,
    color_rgba: np.ndarray,
    alpha: float,
    blend_mode: str = "normal",
    *,
    max_pixels: int = 8_000_000,
) -> CompositeResult:
    """
    Draw the colorized heat layer over the screenshot.

    `normal` is standard alpha-over; `additive` adds the weighted color to
    the base and saturates at 255. Images above `max_pixels` are scaled down
    proportionally (both layers) before blending; nothing is cropped.

    Args:
        screenshot_rgb: Base image, uint8 (H, W, 3).
        color_rgba: Heat layer, uint8 (H, W, 4).
        alpha: Global opacity of the heat layer.
        blend_mode: "normal" or "additive".
        max_pixels: Pixel budget for the output.

    Returns:
        CompositeResult with the blended uint8 image and its dimensions.
    """
    if screenshot_rgb.ndim != 3 or screenshot_rgb.shape[2] != 3:
        raise ValueError("screenshot_rgb must be HxWx3")
    if color_rgba.ndim != 3 or color_rgba.shape[2] != 4:
        raise ValueError("color_rgba must be HxWx4")
    if screenshot_rgb.shape[:2] != color_rgba.shape[:2]:
        raise ValueError("color_rgba must match screenshot dimensions")
    if blend_mode not in ("normal", "additive"):
        raise ValueError(f"Unknown blend mode '{blend_mode}'")

    h, w = screenshot_rgb.shape[:2]
    base = screenshot_rgb
    layer = color_rgba
    downscaled = False

    if h * w > int(max_pixels):
        scale = math.sqrt(float(max_pixels) / float(h * w))
        nw = max(1, int(w * scale))
        nh = max(1, int(h * scale))
        base = cv2.resize(base, (nw, nh), interpolation=cv2.INTER_AREA)
        layer = cv2.resize(layer, (nw, nh), interpolation=cv2.INTER_AREA)
        h, w = nh, nw
        downscaled = True

    base_f = base.astype(np.float32)
    rgb = layer[:, :, :3].astype(np.float32)
    a = float(alpha) * (layer[:, :, 3:4].astype(np.float32) / 255.0)

    if blend_mode == "additive":
        out = np.minimum(base_f + rgb * a, 255.0)
    else:
        out = (1.0 - a) * base_f + a * rgb

    blended = np.clip(np.rint(out), 0, 255).astype(np.uint8)
    return CompositeResult(image=blended, width=int(w), height=int(h), downscaled=downscaled)
