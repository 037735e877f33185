"""
Input validation for heatlens requests.

Rejects malformed URLs, devices and point lists before any work starts,
and clamps render knobs into safe ranges.
"""

from heatlens.security.validation import (
    RequestValidator,
    ValidationConfig,
    clamp_knobs,
    validate_device,
    validate_points,
    validate_url,
)

__all__ = [
    "RequestValidator",
    "ValidationConfig",
    "clamp_knobs",
    "validate_device",
    "validate_points",
    "validate_url",
]
