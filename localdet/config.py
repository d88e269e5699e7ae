from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


GRAPH_OPTIMIZATION_LEVELS = ("disable", "basic", "extended", "all")


@dataclass(frozen=True)
class PipelineConfig:
    model_path: str
    schema_version: int = 1
    model_width: int = 640
    model_height: int = 640
    confidence_threshold: float = 0.25
    display_threshold: float = 0.25
    # None disables overlap suppression (decoder output is returned as-is).
    iou_threshold: Optional[float] = None
    max_detections: int = 300
    max_pending_requests: int = 32
    providers: Optional[Tuple[str, ...]] = None
    num_threads: Optional[int] = None
    graph_optimization: str = "all"
    metadata_path: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("pipeline config schema_version must be 1")
        if not self.model_path:
            raise ValueError("model_path must not be empty")
        if self.model_width < 32 or self.model_height < 32:
            raise ValueError("model_width and model_height must be >= 32")
        for key in ("confidence_threshold", "display_threshold"):
            value = getattr(self, key)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{key} must be within [0, 1]")
        if self.iou_threshold is not None and not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be within (0, 1]")
        if self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")
        if self.max_pending_requests < 1:
            raise ValueError("max_pending_requests must be >= 1")
        if self.num_threads is not None and self.num_threads < 1:
            raise ValueError("num_threads must be >= 1")
        if self.graph_optimization not in GRAPH_OPTIMIZATION_LEVELS:
            raise ValueError(f"graph_optimization must be one of {list(GRAPH_OPTIMIZATION_LEVELS)}")


def _require_str(payload: Dict[str, Any], key: str) -> str:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value


def _optional_number(payload: Dict[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_int(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string if provided")
    return value


def load_pipeline_config(path: Path) -> PipelineConfig:
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid pipeline config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Pipeline config must be a JSON object")

    allowed = {
        "schema_version",
        "model_path",
        "model_width",
        "model_height",
        "confidence_threshold",
        "display_threshold",
        "iou_threshold",
        "max_detections",
        "max_pending_requests",
        "providers",
        "num_threads",
        "graph_optimization",
        "metadata_path",
        "notes",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown pipeline config keys: {unknown}")

    providers = payload.get("providers")
    if providers is not None:
        if isinstance(providers, str):
            providers = [p.strip() for p in providers.split(",") if p.strip()]
        if not isinstance(providers, list) or not all(isinstance(p, str) and p for p in providers):
            raise ValueError("providers must be a list of provider names")
        providers = tuple(providers)

    kwargs: Dict[str, Any] = {"model_path": _require_str(payload, "model_path"), "providers": providers}
    for key in ("schema_version", "model_width", "model_height", "max_detections", "max_pending_requests"):
        value = _optional_int(payload, key)
        if value is not None:
            kwargs[key] = value
    for key in ("confidence_threshold", "display_threshold"):
        value = _optional_number(payload, key)
        if value is not None:
            kwargs[key] = value
    kwargs["iou_threshold"] = _optional_number(payload, "iou_threshold")
    kwargs["num_threads"] = _optional_int(payload, "num_threads")
    for key in ("metadata_path", "notes"):
        kwargs[key] = _optional_str(payload, key)
    graph_optimization = _optional_str(payload, "graph_optimization")
    if graph_optimization is not None:
        kwargs["graph_optimization"] = graph_optimization

    return PipelineConfig(**kwargs)
