from __future__ import annotations

import base64
import hashlib
import io
import json
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from openai import OpenAI
from PIL import Image

from heatlens.common.types import Detection, Hotspot, PageContext, PageElement
from heatlens.errors import DetectionFailed


SYSTEM_PROMPT = "You are an expert in web design and eye-tracking patterns. Return only valid JSON."

INSTRUCTION = (
    "Analyze this landing page for eye-tracking hotspots.\n"
    "Return ONLY a JSON object in this exact format:\n"
    '{"hotspots":[{"x":0.42,"y":0.18,"width":0.32,"height":0.10,"confidence":0.78,'
    '"category":"cta","reason":"Primary call-to-action button"}]}\n'
    "Focus on: main headlines, primary CTAs, logos, hero images, product showcases, pricing.\n"
    "Ignore: navigation, footers, small text, secondary elements.\n"
    "category is one of headline, cta, logo, hero, product, price, other.\n"
    "All coordinates are normalized (0-1) relative to the screenshot, x/y being the top-left corner.\n"
    "Return 5-8 hotspots."
)


def prompt_signature(model: str) -> str:
    """Stable short hash of everything that shapes the model's answer."""
    seed = "|".join([model, SYSTEM_PROMPT, INSTRUCTION])
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


class ModelDetector:
    """
    Asks a vision-capable chat model for focal regions.

    Any transport error, non-JSON reply, or reply without at least one
    schema-conforming hotspot raises `DetectionFailed`.
    """

    name = "model"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout_s: float = 15.0,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        image_max_side: int = 768,
        max_elements: int = 60,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout_s = float(timeout_s)
        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)
        self.image_max_side = int(image_max_side)
        self.max_elements = int(max_elements)
        self._client = client
        self.prompt_hash = prompt_signature(model)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], *, client: Optional[Any] = None) -> "ModelDetector":
        return cls(
            api_key=cfg.get("api_key"),
            model=str(cfg.get("model") or "gpt-4o-mini"),
            timeout_s=float(cfg.get("timeout_s", 15.0)),
            temperature=float(cfg.get("temperature", 0.3)),
            max_tokens=int(cfg.get("max_tokens", 1000)),
            image_max_side=int(cfg.get("image_max_side", 768)),
            max_elements=int(cfg.get("max_elements", 60)),
            client=client,
        )

    def detect(self, ctx: PageContext) -> Detection:
        client = self._get_client()
        messages = self.build_messages(ctx)

        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise DetectionFailed(f"model call failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            content = None
        if not content:
            raise DetectionFailed("model returned no content")

        hotspots, requested = parse_hotspots(content)
        logger.debug(f"Model returned {requested} candidates, {len(hotspots)} match the schema")
        return Detection(
            hotspots=hotspots,
            meta={
                "engine": self.name,
                "model": self.model,
                "requested": requested,
                "schema_rejected": requested - len(hotspots),
            },
        )

    def build_messages(self, ctx: PageContext) -> List[Dict[str, Any]]:
        text = (
            f"{INSTRUCTION}\n\n"
            f"URL: {ctx.url}\n"
            f"Device: {ctx.device} ({ctx.viewport.width}x{ctx.viewport.height})"
        )
        summary = _element_summary(ctx.elements, fold_height=ctx.viewport.height, limit=self.max_elements)
        if summary:
            text += "\nElements (x, y, width, height, tag, text, className):\n" + summary

        content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
        data_url = self._compact_image(ctx.image_bytes)
        if data_url:
            content.append({"type": "image_url", "image_url": {"url": data_url, "detail": "low"}})

        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self.api_key:
            raise DetectionFailed("OpenAI API key not configured")
        self._client = OpenAI(api_key=self.api_key, timeout=self.timeout_s, max_retries=0)
        return self._client

    def _compact_image(self, image_bytes: Optional[bytes]) -> Optional[str]:
        if not image_bytes:
            return None
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img = img.convert("RGB")
                img.thumbnail((self.image_max_side, self.image_max_side))
                out = io.BytesIO()
                img.save(out, format="JPEG", quality=70)
        except Exception as e:
            logger.warning(f"Could not prepare screenshot for the model: {e}")
            return None
        return "data:image/jpeg;base64," + base64.b64encode(out.getvalue()).decode("ascii")


def parse_hotspots(text: str) -> Tuple[List[Hotspot], int]:
    """
    Parse a model reply into typed hotspots.

    Returns:
        (hotspots, requested): schema-conforming hotspots and the number of
        raw candidates in the reply.

    Raises:
        DetectionFailed: If the reply is not JSON, has no `hotspots` list,
            or no candidate conforms to the schema.
    """
    try:
        data = _extract_json(text)
    except ValueError as e:
        raise DetectionFailed(f"model reply is not JSON: {e}") from e

    raw = data.get("hotspots")
    if not isinstance(raw, list) or not raw:
        raise DetectionFailed("model reply has no hotspots list")

    hotspots: List[Hotspot] = []
    for item in raw:
        try:
            hotspots.append(Hotspot.from_payload(item))
        except ValueError as e:
            logger.debug(f"Rejected model candidate: {e}")

    if not hotspots:
        raise DetectionFailed("no model candidate matched the hotspot schema")
    return hotspots, len(raw)


def _extract_json(text: str) -> Dict[str, Any]:
    t = str(text or "").strip()
    if not t:
        raise ValueError("Empty response")
    try:
        out = json.loads(t)
    except json.JSONDecodeError:
        start = t.find("{")
        end = t.rfind("}")
        if start < 0 or end <= start:
            raise ValueError("No JSON object found") from None
        out = json.loads(t[start : end + 1])
    if not isinstance(out, dict):
        raise ValueError("Response JSON is not an object")
    return out


def _element_summary(elements: List[PageElement], *, fold_height: int, limit: int) -> str:
    rows: List[str] = []
    for el in elements:
        if el.y >= fold_height * 1.5:
            continue
        text = el.text.replace('"', "'").replace("\n", " ")[:50]
        cls = el.class_name.replace('"', "'")[:60]
        rows.append(f'{int(el.x)},{int(el.y)},{int(el.width)},{int(el.height)},{el.tag},"{text}","{cls}"')
        if len(rows) >= limit:
            break
    return "\n".join(rows)
