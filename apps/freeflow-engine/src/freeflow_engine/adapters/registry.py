"""Model adapter registry: unified payload in, provider request out, and back."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from freeflow_engine.adapters.overrides import walk_path
from freeflow_engine.adapters.spec import (
    ModelSpec,
    ParamKind,
    ParamValue,
    UnifiedPayload,
)
from freeflow_engine.core.errors import ProviderError, ValidationError

logger = logging.getLogger(__name__)

# Provider field names that always carry an end reference
END_FRAME_KEYS = frozenset({"tail_image_url", "last_frame_url"})


def coerce_enum_value(
    value: Any,
    allowed: Sequence[ParamValue],
    fallback: Optional[ParamValue],
) -> Optional[ParamValue]:
    """Return value if it is allowed, otherwise the fallback (which may be None)."""
    if value is None:
        return fallback
    if any(option == value and type(option) is type(value) for option in allowed):
        return value
    return fallback


def build_request(spec: ModelSpec, payload: UnifiedPayload) -> Dict[str, Any]:
    """Map a unified payload to the provider request body for `spec`.

    Pure: the same (spec, payload) always yields an equal dict, built fresh.
    Raises ValidationError naming the field when a required value is missing.
    """
    if spec.adapter is not None:
        return spec.adapter.map_input(payload)

    request: Dict[str, Any] = {}
    end_keys = set(END_FRAME_KEYS)

    for name, definition in spec.params.items():
        ui_key = definition.ui_key or name
        if ui_key == "end_frame_url":
            end_keys.add(name)
        value = payload.get(ui_key)

        if definition.kind is ParamKind.ENUM:
            coerced = coerce_enum_value(value, definition.values, definition.default)
            if coerced is not None:
                request[name] = coerced
            elif definition.required:
                raise ValidationError(f"Missing required enum value for {name}", field=name)
            continue

        if value is not None:
            request[name] = value
        elif definition.default is not None:
            request[name] = definition.default
        elif definition.required:
            raise ValidationError(f"Missing required param: {ui_key} → {name}", field=name)

    if not spec.supports.end_frame.enabled or not payload.end_frame_url:
        for key in end_keys:
            request.pop(key, None)

    return request


def extract_result(spec: ModelSpec, response: Any) -> str:
    """Pull the artifact URL out of a provider response or raise ProviderError."""
    if spec.adapter is not None:
        url = spec.adapter.get_result_url(response)
    else:
        url = walk_path(response, spec.output_path)

    if not isinstance(url, str) or not url:
        raise ProviderError("Result URL not found in response")
    return url


class ModelRegistry:
    """Lookup table of model specs keyed by model id."""

    def __init__(self, specs: Iterable[ModelSpec] = ()):
        self._specs: Dict[str, ModelSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ModelSpec) -> None:
        if spec.id in self._specs:
            raise ValueError(f"Duplicate model id: {spec.id}")
        self._specs[spec.id] = spec
        logger.debug("Registered model %s (%s)", spec.id, spec.endpoint)

    def get(self, model_id: str) -> Optional[ModelSpec]:
        return self._specs.get(model_id)

    def require(self, model_id: str) -> ModelSpec:
        spec = self._specs.get(model_id)
        if spec is None:
            raise ValidationError(f"Unknown model id: {model_id}", field="model_id")
        return spec

    def list_models(self) -> List[ModelSpec]:
        return list(self._specs.values())

    @property
    def default_model_id(self) -> str:
        return next(iter(self._specs), "")

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def build_request(self, model_id: str, payload: UnifiedPayload) -> Dict[str, Any]:
        return build_request(self.require(model_id), payload)

    def extract_result(self, model_id: str, response: Any) -> str:
        return extract_result(self.require(model_id), response)
