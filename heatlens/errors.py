"""
Error taxonomy for the heatmap engine.

Provider and detection failures are recovered inside the engine through
fallbacks; input, raster and decode failures propagate to the caller with
the phase that raised them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class HeatlensError(Exception):
    """Base class for engine errors."""

    code = "HEATLENS_ERROR"

    def __init__(self, message: str, phase: str = "unknown"):
        self.message = message
        self.phase = phase
        super().__init__(f"{phase}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "phase": self.phase, "code": self.code}


class InputInvalid(HeatlensError):
    """Raised before any work when url, device, points or knobs are unusable."""

    code = "INPUT_INVALID"

    def __init__(self, message: str, field: str = "unknown"):
        self.field = field
        super().__init__(message, phase="validate")

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["field"] = self.field
        return out


class ProviderExhausted(HeatlensError):
    """Every screenshot provider failed."""

    code = "PROVIDER_EXHAUSTED"

    def __init__(self, message: str, attempts: Optional[List[Dict[str, Any]]] = None):
        self.attempts = list(attempts or [])
        super().__init__(message, phase="screenshot")


class DetectionFailed(HeatlensError):
    """The model call failed or returned output that does not fit the schema."""

    code = "DETECTION_FAILED"

    def __init__(self, message: str):
        super().__init__(message, phase="detect")


class RasterFailure(HeatlensError):
    """An accumulate/blur/colorize/composite/encode step raised."""

    code = "RASTER_FAILURE"


class DimensionExtractionFailed(HeatlensError):
    """Screenshot bytes could not be decoded into an image."""

    code = "DIMENSION_EXTRACTION_FAILED"

    def __init__(self, message: str):
        super().__init__(message, phase="decode")
