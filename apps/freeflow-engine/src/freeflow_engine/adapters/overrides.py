"""Override adapters for models whose APIs diverge from the declarative mapping."""

from typing import Any, Dict, List, Optional

from freeflow_engine.adapters.imaging import resolve_aspect_ratio
from freeflow_engine.adapters.spec import ModelAdapter, UnifiedPayload


def walk_path(data: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings; None when a segment is missing."""
    current = data
    for segment in (s for s in path.split(".") if s):
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def first_image_url(response: Any) -> Optional[str]:
    """Return the first url from an `images: [{url}]` response."""
    images = response.get("images") if isinstance(response, dict) else None
    for image in images or []:
        url = image.get("url") if isinstance(image, dict) else None
        if isinstance(url, str) and url:
            return url
    return None


def reference_urls(payload: UnifiedPayload) -> List[str]:
    """Start and end frame URLs, in that order; the only references a payload carries."""
    return [url for url in (payload.start_frame_url, payload.end_frame_url) if url]


class FrameSequenceAdapter:
    """Start/end frame video models that name their frame fields differently."""

    def __init__(
        self,
        start_key: str,
        end_key: Optional[str] = None,
        output_path: str = "video.url",
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.start_key = start_key
        self.end_key = end_key
        self.output_path = output_path
        self.extra = dict(extra or {})

    def map_input(self, payload: UnifiedPayload) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "prompt": payload.prompt,
            self.start_key: payload.start_frame_url,
        }
        if self.end_key and payload.end_frame_url:
            request[self.end_key] = payload.end_frame_url
        request.update(self.extra)
        return request

    def get_result_url(self, response: Any) -> Optional[str]:
        value = walk_path(response, self.output_path)
        return value if isinstance(value, str) else None

    def as_adapter(self) -> ModelAdapter:
        return ModelAdapter(map_input=self.map_input, get_result_url=self.get_result_url)


class ImageEditAdapter:
    """Reference-image edit models taking an `image_urls` list."""

    def __init__(
        self,
        use_aspect_ratio: bool = False,
        default_size: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.use_aspect_ratio = use_aspect_ratio
        self.default_size = default_size
        self.extra = dict(extra or {})

    def map_input(self, payload: UnifiedPayload) -> Dict[str, Any]:
        request: Dict[str, Any] = {"prompt": payload.prompt}
        refs = reference_urls(payload)
        if refs:
            request["image_urls"] = refs

        size = payload.image_size or self.default_size
        if self.use_aspect_ratio:
            aspect_ratio = resolve_aspect_ratio(size)
            if aspect_ratio:
                request["aspect_ratio"] = aspect_ratio
        elif size:
            request["image_size"] = size

        request.update(self.extra)
        if payload.num_inference_steps is not None:
            request["num_inference_steps"] = payload.num_inference_steps
        if payload.seed is not None:
            request["seed"] = payload.seed
        return request

    def as_adapter(self) -> ModelAdapter:
        return ModelAdapter(map_input=self.map_input, get_result_url=first_image_url)


class TextToImageAdapter:
    """Prompt-only image models that accept an aspect ratio."""

    def __init__(self, output_format: str = "jpeg"):
        self.output_format = output_format

    def map_input(self, payload: UnifiedPayload) -> Dict[str, Any]:
        request: Dict[str, Any] = {"prompt": payload.prompt}
        aspect_ratio = resolve_aspect_ratio(payload.image_size)
        if aspect_ratio:
            request["aspect_ratio"] = aspect_ratio
        request["num_images"] = 1
        request["output_format"] = self.output_format
        if payload.seed is not None:
            request["seed"] = payload.seed
        return request

    def as_adapter(self) -> ModelAdapter:
        return ModelAdapter(map_input=self.map_input, get_result_url=first_image_url)


class TemporalEditAdapter:
    """Single-reference edit models with temporal reasoning controls."""

    def __init__(self, default_steps: int = 8, reasoning_steps: int = 8):
        self.default_steps = default_steps
        self.reasoning_steps = reasoning_steps

    def map_input(self, payload: UnifiedPayload) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "prompt": payload.prompt,
            "image_url": payload.start_frame_url,
            "enable_prompt_expansion": True,
            "enable_safety_checker": True,
            "enable_temporal_reasoning": (
                True if payload.temporal_reasoning is None else payload.temporal_reasoning
            ),
            "num_inference_steps": payload.num_inference_steps or self.default_steps,
            "num_temporal_reasoning_steps": self.reasoning_steps,
            "output_format": "jpeg",
        }
        if payload.seed is not None:
            request["seed"] = payload.seed
        return request

    def as_adapter(self) -> ModelAdapter:
        return ModelAdapter(map_input=self.map_input, get_result_url=first_image_url)
