"""Model catalog: declarative definitions and override-based extras."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from freeflow_engine.adapters.overrides import (
    FrameSequenceAdapter,
    ImageEditAdapter,
    TemporalEditAdapter,
    TextToImageAdapter,
)
from freeflow_engine.adapters.registry import ModelRegistry
from freeflow_engine.adapters.spec import (
    MediaKind,
    ModelCapabilities,
    ModelSpec,
    ParamDefinition,
    ParamKind,
    SupportFlag,
)

logger = logging.getLogger(__name__)

_SUPPORT_KEYS = {
    "startFrame": "start_frame",
    "endFrame": "end_frame",
    "audio": "audio",
    "resolution": "resolution",
    "aspectRatio": "aspect_ratio",
    "fps": "fps",
}

# Declarative video models, same shape as a JSON catalog file
DECLARATIVE_MODELS: List[Dict[str, Any]] = [
    {
        "id": "kling-v2.1-pro",
        "endpoint": "fal-ai/kling-video/v2.1/pro/image-to-video",
        "label": "Kling 2.1 Pro",
        "supports": {"startFrame": True, "endFrame": True, "audio": False,
                     "resolution": False, "aspectRatio": False, "fps": False},
        "params": {
            "prompt": {"type": "string", "required": True},
            "image_url": {"type": "string", "required": True, "uiKey": "start_frame_url"},
            "tail_image_url": {"type": "string", "uiKey": "end_frame_url"},
            "duration": {"type": "enum", "values": ["5", "10"], "default": "5"},
            "negative_prompt": {"type": "string"},
            "cfg_scale": {"type": "number", "default": 0.5},
        },
        "output": {"videoPath": "video.url"},
    },
    {
        "id": "minimax-hailuo-02",
        "endpoint": "fal-ai/minimax/hailuo-02/standard/image-to-video",
        "label": "MiniMax Hailuo 02",
        "supports": {"startFrame": True, "endFrame": False, "audio": False,
                     "resolution": True, "aspectRatio": False, "fps": False},
        "params": {
            "prompt": {"type": "string", "required": True},
            "image_url": {"type": "string", "required": True, "uiKey": "start_frame_url"},
            "duration": {"type": "enum", "values": ["6", "10"], "default": "6"},
            "resolution": {"type": "enum", "values": ["512P", "768P"], "default": "768P"},
            "prompt_optimizer": {"type": "boolean", "default": True},
        },
        "output": {"videoPath": "video.url"},
    },
    {
        "id": "veo3-fast",
        "endpoint": "fal-ai/veo3/fast/image-to-video",
        "label": "Veo 3 Fast",
        "supports": {"startFrame": True, "endFrame": False, "audio": True,
                     "resolution": True, "aspectRatio": "unstable", "fps": False},
        "params": {
            "prompt": {"type": "string", "required": True},
            "image_url": {"type": "string", "required": True, "uiKey": "start_frame_url"},
            "duration": {"type": "enum", "values": ["8s"], "default": "8s"},
            "resolution": {"type": "enum", "values": ["720p", "1080p"], "default": "720p"},
            "generate_audio": {"type": "boolean", "default": True},
        },
        "output": {"videoPath": "video.url"},
    },
    {
        "id": "seedance-v1-pro",
        "endpoint": "fal-ai/bytedance/seedance/v1/pro/image-to-video",
        "label": "Seedance 1.0 Pro",
        "supports": {"startFrame": True, "endFrame": "unstable", "audio": False,
                     "resolution": True, "aspectRatio": False, "fps": False},
        "params": {
            "prompt": {"type": "string", "required": True},
            "image_url": {"type": "string", "required": True, "uiKey": "start_frame_url"},
            "end_image_url": {"type": "string", "uiKey": "end_frame_url"},
            "duration": {"type": "enum", "values": ["5", "10"], "default": "5"},
            "resolution": {"type": "enum", "values": ["480p", "720p", "1080p"], "default": "1080p"},
        },
        "output": {"videoPath": "video.url"},
    },
]


def spec_from_dict(data: Dict[str, Any]) -> ModelSpec:
    """Build a ModelSpec from one declarative catalog entry."""
    supports = data.get("supports") or {}
    capabilities = ModelCapabilities(**{
        attr: SupportFlag.parse(supports.get(key, False))
        for key, attr in _SUPPORT_KEYS.items()
    })

    params: Dict[str, ParamDefinition] = {}
    for name, raw in (data.get("params") or {}).items():
        if not raw:
            continue
        params[name] = ParamDefinition(
            kind=ParamKind(raw.get("type", "string")),
            required=bool(raw.get("required", False)),
            values=tuple(raw.get("values") or ()),
            default=raw.get("default"),
            ui_key=raw.get("uiKey"),
        )

    output = data.get("output") or {}
    return ModelSpec(
        id=data["id"],
        endpoint=data["endpoint"],
        label=data.get("label") or data["id"],
        media_kind=MediaKind(data.get("mediaKind", "video")),
        supports=capabilities,
        params=params,
        output_path=output.get("videoPath", "video.url"),
    )


def _frame_params(supports_end: bool) -> Dict[str, ParamDefinition]:
    params = {
        "prompt": ParamDefinition(ParamKind.STRING, required=True),
        "start_frame_url": ParamDefinition(ParamKind.STRING, required=True, ui_key="start_frame_url"),
    }
    if supports_end:
        params["end_frame_url"] = ParamDefinition(ParamKind.STRING, ui_key="end_frame_url")
    return params


def _extra_video(model_id: str, endpoint: str, label: str, adapter: FrameSequenceAdapter) -> ModelSpec:
    supports_end = adapter.end_key is not None
    return ModelSpec(
        id=model_id,
        endpoint=endpoint,
        label=label,
        supports=ModelCapabilities(
            end_frame=SupportFlag.ENABLED if supports_end else SupportFlag.UNSUPPORTED,
        ),
        params=_frame_params(supports_end),
        adapter=adapter.as_adapter(),
    )


def _image(model_id: str, endpoint: str, label: str, adapter: Any, frames: int) -> ModelSpec:
    """`frames` is how many reference frames the model takes: 0, 1 (start) or 2 (start and end)."""
    return ModelSpec(
        id=model_id,
        endpoint=endpoint,
        label=label,
        media_kind=MediaKind.IMAGE,
        supports=ModelCapabilities(
            start_frame=SupportFlag.ENABLED if frames else SupportFlag.UNSUPPORTED,
            end_frame=SupportFlag.ENABLED if frames > 1 else SupportFlag.UNSUPPORTED,
            aspect_ratio=SupportFlag.ENABLED,
        ),
        params=_frame_params(frames > 1) if frames else {
            "prompt": ParamDefinition(ParamKind.STRING, required=True),
        },
        adapter=adapter.as_adapter(),
    )


def extra_models() -> List[ModelSpec]:
    """Models that need an override adapter."""
    return [
        _extra_video(
            "pixverse-v4.5-transition",
            "fal-ai/pixverse/v4.5/transition",
            "PixVerse 4.5 Transition",
            FrameSequenceAdapter("first_image_url", "last_image_url"),
        ),
        _extra_video(
            "wan-flf2v",
            "fal-ai/wan-flf2v",
            "Wan 2.1 First-Last Frame",
            FrameSequenceAdapter("start_image_url", "end_image_url"),
        ),
        _image(
            "flux-kontext-pro",
            "fal-ai/flux/kontext/pro",
            "Flux Kontext Pro",
            ImageEditAdapter(
                use_aspect_ratio=True,
                extra={"num_images": 1, "output_format": "png", "guidance_scale": 4.5},
            ),
            frames=2,
        ),
        _image(
            "nano-banana-edit",
            "fal-ai/nano-banana/edit",
            "Nano Banana Edit",
            ImageEditAdapter(),
            frames=2,
        ),
        _image(
            "nano-banana",
            "fal-ai/nano-banana",
            "Nano Banana Text",
            TextToImageAdapter(output_format="jpeg"),
            frames=0,
        ),
        _image(
            "qwen-image-edit-plus",
            "fal-ai/qwen-image-edit-plus",
            "Qwen Image Edit Plus",
            ImageEditAdapter(
                default_size="square_hd",
                extra={
                    "num_inference_steps": 50,
                    "guidance_scale": 4,
                    "num_images": 1,
                    "enable_safety_checker": True,
                    "output_format": "png",
                    "acceleration": "regular",
                },
            ),
            frames=2,
        ),
        _image(
            "chrono-edit",
            "fal-ai/chrono-edit",
            "Chrono Edit",
            TemporalEditAdapter(),
            frames=1,
        ),
    ]


def load_catalog(path: Optional[Path] = None) -> List[ModelSpec]:
    """Load declarative specs from a JSON file (or the defaults) plus the extras."""
    entries = DECLARATIVE_MODELS
    if path is not None:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        entries = data.get("models", []) if isinstance(data, dict) else data
        logger.info("Loaded %d model definitions from %s", len(entries), path)

    return [spec_from_dict(entry) for entry in entries] + extra_models()


def build_registry(path: Optional[Path] = None) -> ModelRegistry:
    return ModelRegistry(load_catalog(path))
