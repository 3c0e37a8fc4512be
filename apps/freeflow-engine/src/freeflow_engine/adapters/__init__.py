"""Model adapter registry."""

from freeflow_engine.adapters.catalog import build_registry, load_catalog
from freeflow_engine.adapters.registry import ModelRegistry, build_request, extract_result
from freeflow_engine.adapters.spec import (
    MediaKind,
    ModelAdapter,
    ModelCapabilities,
    ModelSpec,
    ParamDefinition,
    ParamKind,
    SupportFlag,
    UnifiedPayload,
)

__all__ = [
    "build_registry",
    "load_catalog",
    "ModelRegistry",
    "build_request",
    "extract_result",
    "MediaKind",
    "ModelAdapter",
    "ModelCapabilities",
    "ModelSpec",
    "ParamDefinition",
    "ParamKind",
    "SupportFlag",
    "UnifiedPayload",
]
