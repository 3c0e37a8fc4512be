"""Image-domain helpers: size presets and aspect ratio reduction."""

from math import gcd
from typing import Any, Optional

SIZE_PRESETS = (
    "square_hd",
    "square",
    "portrait_4_3",
    "portrait_16_9",
    "landscape_4_3",
    "landscape_16_9",
)

_PRESET_RATIOS = {
    "square_hd": "1:1",
    "square": "1:1",
    "portrait_4_3": "3:4",
    "portrait_16_9": "9:16",
    "landscape_4_3": "4:3",
    "landscape_16_9": "16:9",
}


def resolve_aspect_ratio(size: Any) -> Optional[str]:
    """Normalize a size preset or a width/height pair to a "w:h" ratio.

    Returns None when the input cannot be resolved; callers omit the field
    instead of inventing a default.
    """
    if not size:
        return None
    if isinstance(size, str):
        return _PRESET_RATIOS.get(size)
    if not isinstance(size, dict):
        return None

    try:
        width = round(float(size.get("width") or 0))
        height = round(float(size.get("height") or 0))
    except (TypeError, ValueError):
        return None
    if width <= 0 or height <= 0:
        return None

    factor = gcd(width, height)
    return f"{width // factor}:{height // factor}"
