"""
Ordered screenshot acquisition with per-provider retries.
"""

from __future__ import annotations

import base64
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from loguru import logger

from heatlens.capture.providers import ScreenshotProvider, build_providers
from heatlens.common.types import VIEWPORTS, ScreenshotResult
from heatlens.errors import InputInvalid, ProviderExhausted


IMAGE_SIGNATURES = {
    b"\x89PNG\r\n\x1a\n": "png",
    b"\xff\xd8\xff": "jpg",
    b"RIFF": "webp",
}

PLACEHOLDER_PROVIDER = "placeholder"

# 1x1 PNG returned when no provider produced a usable screenshot.
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVQIW2P4//8/AwAI/AL+XUuV1wAAAABJRU5ErkJggg=="
)


class ProviderChain:
    """
    Try each provider in order until one returns a usable screenshot.

    Every provider gets `attempts_per_provider` tries with a fixed
    `backoff_s` sleep in between. A response shorter than `min_bytes`, or
    one that is not a PNG, JPEG or WebP image, is treated like an error.
    All attempts are recorded on the result so the render metadata can
    report them.
    """

    def __init__(
        self,
        providers: Sequence[ScreenshotProvider],
        *,
        attempts_per_provider: int = 2,
        backoff_s: float = 1.0,
        min_bytes: int = 1024,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.providers = list(providers)
        self.attempts_per_provider = max(1, int(attempts_per_provider))
        self.backoff_s = max(0.0, float(backoff_s))
        self.min_bytes = max(0, int(min_bytes))
        self._sleep = sleep

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], *, sleep: Optional[Callable[[float], None]] = None) -> "ProviderChain":
        ccfg = cfg.get("capture", {})
        return cls(
            build_providers(cfg),
            attempts_per_provider=int(ccfg.get("attempts_per_provider", 2)),
            backoff_s=float(ccfg.get("backoff_s", 1.0)),
            min_bytes=int(ccfg.get("min_bytes", 1024)),
            sleep=sleep or time.sleep,
        )

    def acquire(self, url: str, device: str) -> ScreenshotResult:
        """
        Raises:
            InputInvalid: Unknown device.
            ProviderExhausted: Every provider failed every attempt.
        """
        viewport = VIEWPORTS.get(device)
        if viewport is None:
            raise InputInvalid(f"Unknown device {device!r}", field="device")

        attempts: List[Dict[str, Any]] = []
        for provider in self.providers:
            for attempt in range(1, self.attempts_per_provider + 1):
                t0 = time.perf_counter()
                try:
                    capture = provider.capture(url, viewport)
                    data = capture.image_bytes or b""
                    size = len(data)
                    if size < self.min_bytes:
                        raise ValueError(f"screenshot too small ({size} bytes)")
                    if not _looks_like_image(data):
                        raise ValueError(f"response is not an image (starts with {data[:16]!r})")
                except Exception as e:
                    elapsed_ms = int((time.perf_counter() - t0) * 1000)
                    attempts.append(
                        {"provider": provider.name, "attempt": attempt, "error": str(e)[:300], "ms": elapsed_ms}
                    )
                    logger.warning(f"Screenshot via {provider.name} failed (attempt {attempt}): {e}")
                    if attempt < self.attempts_per_provider:
                        self._sleep(self.backoff_s)
                    continue

                elapsed_ms = int((time.perf_counter() - t0) * 1000)
                attempts.append({"provider": provider.name, "attempt": attempt, "error": None, "ms": elapsed_ms})
                logger.info(f"Screenshot of {url} via {provider.name}: {size} bytes in {elapsed_ms} ms")
                return ScreenshotResult(
                    image_bytes=capture.image_bytes,
                    provider_id=provider.name,
                    degraded=False,
                    elements=list(capture.elements),
                    attempts=attempts,
                )

        raise ProviderExhausted(f"All screenshot providers failed for {url}", attempts=attempts)

    def acquire_or_placeholder(self, url: str, device: str) -> ScreenshotResult:
        """Like `acquire`, but returns the degraded 1x1 placeholder instead of raising."""
        try:
            return self.acquire(url, device)
        except ProviderExhausted as e:
            logger.error(f"{e.message}; returning placeholder")
            return ScreenshotResult(
                image_bytes=PLACEHOLDER_PNG,
                provider_id=PLACEHOLDER_PROVIDER,
                degraded=True,
                attempts=list(e.attempts),
            )


def _looks_like_image(data: bytes) -> bool:
    for magic, fmt in IMAGE_SIGNATURES.items():
        if data.startswith(magic):
            return fmt != "webp" or data[8:12] == b"WEBP"
    return False
