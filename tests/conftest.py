import io
from types import SimpleNamespace

import numpy as np
import pytest
from PIL import Image, ImageDraw

from heatlens.capture.providers import Capture, ScreenshotProvider


def render_page(width: int = 240, height: int = 400) -> bytes:
    """A small page-like PNG: header bar, headline block, button, content cards."""
    img = Image.new("RGB", (width, height), (250, 250, 250))
    draw = ImageDraw.Draw(img)
    draw.rectangle([0, 0, width - 1, 24], fill=(30, 40, 60))
    draw.rectangle([40, 40, width - 40, 70], fill=(20, 20, 20))
    draw.rectangle([80, 90, 160, 110], fill=(220, 60, 40))
    for i in range(3):
        top = 150 + i * 80
        draw.rectangle([20, top, width - 20, top + 60], outline=(120, 120, 120), width=2)
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def decode(png: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(png)) as img:
        return np.array(img.convert("RGB"))


class FakeProvider(ScreenshotProvider):
    """Replays a script of outcomes; the last one repeats."""

    def __init__(self, name, outcomes):
        super().__init__(timeout_s=1.0)
        self.name = name
        self.outcomes = list(outcomes)
        self.calls = 0

    def capture(self, url, viewport):
        self.calls += 1
        out = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(out, Exception):
            raise out
        if isinstance(out, bytes):
            return Capture(image_bytes=out)
        return out


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self, content=None, error=None):
        self.completions = FakeCompletions(content=content, error=error)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def page_png():
    return render_page()


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def make_openai():
    return FakeOpenAI


@pytest.fixture
def no_sleep():
    calls = []
    return calls, calls.append
