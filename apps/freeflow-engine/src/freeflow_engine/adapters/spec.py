"""Model specification types shared by the adapter registry."""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple, Union


class SupportFlag(str, Enum):
    """Tri-state capability indicator."""
    ENABLED = "enabled"
    UNSTABLE = "unstable"
    UNSUPPORTED = "unsupported"

    @property
    def enabled(self) -> bool:
        return self is SupportFlag.ENABLED

    @classmethod
    def parse(cls, value: Any) -> "SupportFlag":
        """Read a catalog value (true / false / "unstable" / "unspecified")."""
        if isinstance(value, SupportFlag):
            return value
        if value is True:
            return cls.ENABLED
        if value == "unstable":
            return cls.UNSTABLE
        if isinstance(value, str) and value in cls._value2member_map_:
            return cls(value)
        return cls.UNSUPPORTED


class ParamKind(str, Enum):
    """Value kind of a model parameter."""
    STRING = "string"
    ENUM = "enum"
    NUMBER = "number"
    BOOLEAN = "boolean"


class MediaKind(str, Enum):
    """Kind of artifact a model produces."""
    VIDEO = "video"
    IMAGE = "image"


ParamValue = Union[str, int, float, bool]


@dataclass(frozen=True)
class ParamDefinition:
    """One configurable field of a model."""
    kind: ParamKind
    required: bool = False
    values: Tuple[ParamValue, ...] = ()
    default: Optional[ParamValue] = None
    ui_key: Optional[str] = None

    def __post_init__(self):
        if self.kind is ParamKind.ENUM:
            if not self.values:
                raise ValueError("Enum parameter requires at least one allowed value")
            if self.default is not None and self.default not in self.values:
                raise ValueError(
                    f"Default {self.default!r} is not one of the allowed values {list(self.values)}"
                )


@dataclass(frozen=True)
class ModelCapabilities:
    """Capability flags of a model; immutable per spec instance."""
    start_frame: SupportFlag = SupportFlag.ENABLED
    end_frame: SupportFlag = SupportFlag.UNSUPPORTED
    audio: SupportFlag = SupportFlag.UNSUPPORTED
    resolution: SupportFlag = SupportFlag.UNSUPPORTED
    aspect_ratio: SupportFlag = SupportFlag.UNSUPPORTED
    fps: SupportFlag = SupportFlag.UNSUPPORTED

    def to_dict(self) -> dict:
        return {
            "startFrame": self.start_frame.value,
            "endFrame": self.end_frame.value,
            "audio": self.audio.value,
            "resolution": self.resolution.value,
            "aspectRatio": self.aspect_ratio.value,
            "fps": self.fps.value,
        }


@dataclass
class UnifiedPayload:
    """Provider-agnostic request shared by all models."""
    model_id: str
    prompt: str
    start_frame_url: str = ""
    end_frame_url: Optional[str] = None
    duration: Optional[Union[str, int]] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    fps: Optional[int] = None
    generate_audio: Optional[bool] = None
    negative_prompt: Optional[str] = None
    cfg_scale: Optional[float] = None
    prompt_optimizer: Optional[bool] = None
    # Image domain
    image_size: Optional[Union[str, Dict[str, int]]] = None
    seed: Optional[int] = None
    num_inference_steps: Optional[int] = None
    temporal_reasoning: Optional[bool] = None

    def get(self, key: str) -> Any:
        """Look up a field by its unified name, None when unknown or unset."""
        return getattr(self, key, None) if key in _PAYLOAD_FIELDS else None

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnifiedPayload":
        return cls(**{k: v for k, v in data.items() if k in _PAYLOAD_FIELDS})


_PAYLOAD_FIELDS = frozenset(f.name for f in fields(UnifiedPayload))

# Tuning fields a caller may set directly on submission
TUNING_FIELDS = _PAYLOAD_FIELDS - {"model_id", "prompt", "start_frame_url", "end_frame_url"}


class RequestMapper(Protocol):
    def __call__(self, payload: UnifiedPayload) -> Dict[str, Any]: ...


class ResponseExtractor(Protocol):
    def __call__(self, response: Any) -> Optional[str]: ...


@dataclass(frozen=True)
class ModelAdapter:
    """Override pair for a model whose API diverges from the declarative path."""
    map_input: RequestMapper
    get_result_url: ResponseExtractor


@dataclass(frozen=True)
class ModelSpec:
    """Static description of one provider endpoint."""
    id: str
    endpoint: str
    label: str = ""
    media_kind: MediaKind = MediaKind.VIDEO
    supports: ModelCapabilities = field(default_factory=ModelCapabilities)
    params: Dict[str, ParamDefinition] = field(default_factory=dict)
    output_path: str = "video.url"
    adapter: Optional[ModelAdapter] = None

    @property
    def display_label(self) -> str:
        return self.label or self.id

    def find_param(self, ui_key: str) -> Optional[Tuple[str, ParamDefinition]]:
        """Return the (name, definition) pair bound to a unified field."""
        for name, definition in self.params.items():
            if (definition.ui_key or name) == ui_key:
                return name, definition
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "endpoint": self.endpoint,
            "label": self.display_label,
            "mediaKind": self.media_kind.value,
            "supports": self.supports.to_dict(),
            "params": {
                name: {
                    "type": d.kind.value,
                    "required": d.required,
                    "values": list(d.values) or None,
                    "default": d.default,
                    "uiKey": d.ui_key,
                }
                for name, d in self.params.items()
            },
            "hasAdapter": self.adapter is not None,
        }
