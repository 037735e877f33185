from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


CONFIG_VERSION = "heatlens_v1"


DEFAULT_CONFIG: Dict[str, Any] = {
    "capture": {
        "attempts_per_provider": 2,
        "backoff_s": 1.0,
        "min_bytes": 1024,
        "providers": {
            "playwright": {
                "enabled": True,
                "timeout_s": 30.0,
                "idle_timeout_s": 5.0,
                "full_page": False,
                "extract_elements": True,
            },
            "thum_io": {"enabled": True, "timeout_s": 15.0},
            "screenshotmachine": {"enabled": True, "timeout_s": 15.0, "key": "free"},
        },
    },
    "detection": {
        "model": "gpt-4o-mini",
        "api_key": None,
        "timeout_s": 15.0,
        "temperature": 0.3,
        "max_tokens": 1000,
        "image_max_side": 768,
        "max_elements": 60,
    },
    "hotspots": {
        "max_count": 8,
        "iou_threshold": 0.4,
        "parity_min_confidence": 0.25,
        "density_per_mp": 800,
    },
    "cache": {"enabled": True, "ttl_s": 600.0, "capacity": 100},
    "render": {
        "max_pixels": 8_000_000,
        "max_points": 5000,
        "intensity_per_point": 1.0,
        "cap": None,
        "kind_weights": {"click": 1.0, "movement": 0.5},
        "seed": 7,
    },
}


def load_config(path: Optional[str] = None, *, env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Build the engine configuration.

    Defaults are deep-merged with an optional JSON file and then with
    environment overrides.

    Args:
        path: Optional path to a JSON config file. Missing files are ignored.
        env: Environment mapping; defaults to `os.environ`.

    Returns:
        A fresh nested configuration dict.
    """
    cfg = json.loads(json.dumps(DEFAULT_CONFIG))
    p = str(path or "").strip()
    if p:
        file_path = Path(p).expanduser().resolve()
        if file_path.exists():
            loaded = json.loads(file_path.read_text(encoding="utf-8"))
            if isinstance(loaded, dict):
                _deep_update(cfg, loaded)

    _apply_env(cfg, os.environ if env is None else env)
    return cfg


def _deep_update(dst: Dict[str, Any], src: Dict[str, Any]) -> None:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_update(dst[k], v)
        else:
            dst[k] = v


def _apply_env(cfg: Dict[str, Any], env: Mapping[str, str]) -> None:
    api_key = env.get("OPENAI_API_KEY")
    if api_key:
        cfg["detection"]["api_key"] = api_key

    model = env.get("HEATLENS_OPENAI_MODEL")
    if model:
        cfg["detection"]["model"] = model

    sm_key = env.get("SCREENSHOTMACHINE_KEY")
    if sm_key:
        cfg["capture"]["providers"]["screenshotmachine"]["key"] = sm_key

    if str(env.get("HEATLENS_HOTSPOTS_CACHE", "")).strip().lower() == "false":
        cfg["cache"]["enabled"] = False

    max_pixels = env.get("HEATLENS_MAX_PIXELS")
    if max_pixels:
        try:
            cfg["render"]["max_pixels"] = max(1, int(max_pixels))
        except ValueError:
            raise ValueError(f"HEATLENS_MAX_PIXELS must be an integer, got {max_pixels!r}") from None
