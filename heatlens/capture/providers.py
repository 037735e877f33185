"""
Screenshot providers.

Each provider turns (url, viewport) into PNG bytes within its own
timeout. The in-process Chromium provider also reports the visible
above-the-fold elements, which the heuristic detector scores.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests
from loguru import logger
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from heatlens.common.types import PageElement, Viewport


USER_AGENT = "HeatlensBot/1.0"

# Hide consent banners and modal overlays without removing them from layout.
HIDE_OVERLAYS_CSS = """
[class*="cookie"], [id*="cookie"],
[class*="banner"], [id*="banner"],
[class*="popup"], [id*="popup"],
[class*="modal"], [id*="modal"],
[class*="overlay"], [id*="overlay"],
[class*="notification"], [id*="notification"],
[role="dialog"], [role="alert"],
[class*="gdpr"], [class*="consent"] {
  display: none !important;
}
"""

ELEMENT_EXTRACTOR_JS = """
() => {
  const out = [];
  const selectors = [
    'h1', 'h2', 'h3', 'p', 'button', 'a[href]', 'img', 'video', 'svg',
    '[class*="logo"]', '[id*="logo"]', '[class*="hero"]', '[class*="banner"]',
    '[class*="cta"]', '[class*="button"]', '.price', '[class*="price"]',
    '[class*="product"]', '[class*="feature"]'
  ];
  const seen = new Set();
  selectors.forEach(selector => {
    document.querySelectorAll(selector).forEach(el => {
      if (seen.has(el)) return;
      seen.add(el);
      const rect = el.getBoundingClientRect();
      const style = window.getComputedStyle(el);
      if (rect.width < 10 || rect.height < 10 ||
          style.display === 'none' || style.visibility === 'hidden' ||
          parseFloat(style.opacity) < 0.1) return;
      out.push({
        tag: el.tagName.toLowerCase(),
        text: (el.textContent || '').trim().substring(0, 150),
        x: Math.round(rect.x),
        y: Math.round(rect.y + window.scrollY),
        width: Math.round(rect.width),
        height: Math.round(rect.height),
        className: typeof el.className === 'string' ? el.className : '',
        id: el.id || '',
        fontSize: parseFloat(style.fontSize) || 0,
        fontWeight: style.fontWeight || 'normal',
      });
    });
  });
  return out;
}
"""


@dataclass
class Capture:
    image_bytes: bytes
    elements: List[PageElement] = field(default_factory=list)


class ScreenshotProvider:
    """Base class: subclasses implement `capture`."""

    name = "provider"

    def __init__(self, *, timeout_s: float):
        self.timeout_s = float(timeout_s)

    def capture(self, url: str, viewport: Viewport) -> Capture:
        raise NotImplementedError


class PlaywrightProvider(ScreenshotProvider):
    """Headless Chromium running in-process."""

    name = "chromium"

    LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--disable-extensions",
        "--no-first-run",
        "--no-default-browser-check",
    ]

    def __init__(
        self,
        *,
        timeout_s: float = 30.0,
        full_page: bool = False,
        extract_elements: bool = True,
        idle_timeout_s: float = 5.0,
    ):
        super().__init__(timeout_s=timeout_s)
        self.idle_timeout_s = max(0.0, float(idle_timeout_s))
        self.full_page = bool(full_page)
        self.extract_elements = bool(extract_elements)

    def capture(self, url: str, viewport: Viewport) -> Capture:
        timeout_ms = self.timeout_s * 1000.0
        with sync_playwright() as pw:
            browser = pw.chromium.launch(headless=True, args=self.LAUNCH_ARGS)
            try:
                page = browser.new_page(
                    viewport={"width": viewport.width, "height": viewport.height},
                    device_scale_factor=1,
                )
                page.set_default_timeout(timeout_ms)
                page.goto(url, wait_until="load", timeout=timeout_ms)
                # Beacons and long-polling keep some pages from ever going idle.
                try:
                    page.wait_for_load_state("networkidle", timeout=self.idle_timeout_s * 1000.0)
                except PlaywrightTimeoutError:
                    logger.debug(f"{url} did not reach network idle within {self.idle_timeout_s}s")
                page.add_style_tag(content=HIDE_OVERLAYS_CSS)

                elements: List[PageElement] = []
                if self.extract_elements:
                    raw = page.evaluate(ELEMENT_EXTRACTOR_JS) or []
                    elements = [PageElement.from_payload(item) for item in raw if isinstance(item, dict)]

                image = page.screenshot(type="png", full_page=self.full_page, timeout=timeout_ms)
            finally:
                browser.close()

        return Capture(image_bytes=image, elements=elements)


class ThumIoProvider(ScreenshotProvider):
    """image.thum.io hosted screenshots (the target URL goes in the path unencoded)."""

    name = "thum.io"

    def capture(self, url: str, viewport: Viewport) -> Capture:
        api = f"https://image.thum.io/get/png/width/{viewport.width}/crop/{viewport.height}/{url}"
        return Capture(image_bytes=_fetch(api, {"cb": int(time.time() * 1000)}, self.timeout_s))


class ScreenshotMachineProvider(ScreenshotProvider):
    """api.screenshotmachine.com; the "free" key works for small volumes."""

    name = "screenshotmachine"

    def __init__(self, *, timeout_s: float = 15.0, key: str = "free"):
        super().__init__(timeout_s=timeout_s)
        self.key = key or "free"

    def capture(self, url: str, viewport: Viewport) -> Capture:
        params = {
            "key": self.key,
            "url": url,
            "dimension": f"{viewport.width}x{viewport.height}",
            "format": "png",
        }
        return Capture(image_bytes=_fetch("https://api.screenshotmachine.com/", params, self.timeout_s))


def _fetch(
    api: str,
    params: Dict[str, Any],
    timeout_s: float,
    *,
    chunk_size: int = 64 * 1024,
    clock: Callable[[], float] = time.monotonic,
) -> bytes:
    """
    GET `api` and return the body, within `timeout_s` overall.

    The requests `timeout` only bounds each connect and read, so the body is
    streamed and the total transfer time is checked between chunks.
    """
    deadline = clock() + timeout_s
    with requests.get(
        api,
        params=params,
        headers={"User-Agent": USER_AGENT},
        timeout=timeout_s,
        stream=True,
    ) as resp:
        _raise_for_status(resp)
        chunks: List[bytes] = []
        for chunk in resp.iter_content(chunk_size=chunk_size):
            chunks.append(chunk)
            if clock() > deadline:
                raise TimeoutError(f"Transfer took longer than {timeout_s}s")
    return b"".join(chunks)


def _raise_for_status(resp: requests.Response) -> None:
    if int(resp.status_code) != 200:
        raise RuntimeError(f"HTTP {resp.status_code}: {resp.text[:200]}")


def build_providers(cfg: Dict[str, Any]) -> List[ScreenshotProvider]:
    """Providers in priority order, from `cfg['capture']['providers']`."""
    pcfg = cfg.get("capture", {}).get("providers", {})
    providers: List[ScreenshotProvider] = []

    pw: Optional[Dict[str, Any]] = pcfg.get("playwright")
    if pw and pw.get("enabled", True):
        providers.append(
            PlaywrightProvider(
                timeout_s=float(pw.get("timeout_s", 30.0)),
                full_page=bool(pw.get("full_page", False)),
                extract_elements=bool(pw.get("extract_elements", True)),
                idle_timeout_s=float(pw.get("idle_timeout_s", 5.0)),
            )
        )

    thum = pcfg.get("thum_io")
    if thum and thum.get("enabled", True):
        providers.append(ThumIoProvider(timeout_s=float(thum.get("timeout_s", 15.0))))

    sm = pcfg.get("screenshotmachine")
    if sm and sm.get("enabled", True):
        providers.append(
            ScreenshotMachineProvider(timeout_s=float(sm.get("timeout_s", 15.0)), key=str(sm.get("key") or "free"))
        )

    return providers
