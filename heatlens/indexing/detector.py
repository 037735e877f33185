"""
Hotspot detector interface and the try-primary-then-secondary combinator.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from loguru import logger

from heatlens.common.types import Detection, PageContext
from heatlens.indexing.heuristic import HeuristicDetector
from heatlens.indexing.model_detector import ModelDetector


HEURISTIC_PROMPT_HASH = "heuristic-v1"


class Detector(Protocol):
    name: str

    def detect(self, ctx: PageContext) -> Detection:
        ...


class FallbackDetector:
    """
    Runs `primary`; on any failure runs `secondary` instead.

    The returned meta always carries `fallback` and, when the secondary
    ran, `fallback_reason` with the primary's error.
    """

    def __init__(self, primary: Detector, secondary: Detector):
        self.primary = primary
        self.secondary = secondary
        self.name = f"{primary.name}+{secondary.name}"
        self.prompt_hash = getattr(primary, "prompt_hash", HEURISTIC_PROMPT_HASH)

    def detect(self, ctx: PageContext) -> Detection:
        try:
            result = self.primary.detect(ctx)
        except Exception as e:
            logger.warning(f"{self.primary.name} detector failed for {ctx.url}, using {self.secondary.name}: {e}")
            return self.run_secondary(ctx, str(e))

        result.meta = {**result.meta, "fallback": False}
        return result

    def run_secondary(self, ctx: PageContext, reason: str) -> Detection:
        """Run only the secondary detector, tagging the result with `reason`."""
        result = self.secondary.detect(ctx)
        result.meta = {**result.meta, "fallback": True, "fallback_reason": reason[:300]}
        return result


def build_detector(cfg: Dict[str, Any], *, client: Optional[Any] = None) -> FallbackDetector:
    """Model detector backed by the heuristic one, configured from `cfg['detection']`."""
    model = ModelDetector.from_config(cfg.get("detection", {}), client=client)
    return FallbackDetector(model, HeuristicDetector())
