from __future__ import annotations

import json
import math
import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Sequence, Tuple, Union

from .errors import ConfigurationError


DEFAULT_MODEL_INPUT_SHAPE: Tuple[int, int, int, int] = (1, 3, 640, 640)
DEFAULT_TOPK = 100
DEFAULT_IOU_THRESHOLD = 0.45
DEFAULT_SCORE_THRESHOLD = 0.25


def _check_threshold(name: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ConfigurationError(f"{name} must be a number")
    value = float(value)
    if math.isnan(value):
        raise ConfigurationError(f"{name} must not be NaN")
    if value < 0.0 or value > 1.0:
        raise ConfigurationError(f"{name} must be in [0, 1], got {value}")
    return value


def normalize_input_shape(shape: Sequence[object]) -> Tuple[int, int, int, int]:
    """
    Validate a model input shape of the form (1, 3, H, W).
    """

    try:
        dims = tuple(shape)
    except TypeError as exc:
        raise ConfigurationError(f"model_input_shape must be a sequence, got {shape!r}") from exc
    if len(dims) != 4:
        raise ConfigurationError(f"model_input_shape must have 4 dims (1, 3, H, W), got {dims}")
    if any(isinstance(d, bool) or not isinstance(d, numbers.Integral) for d in dims):
        raise ConfigurationError(f"model_input_shape must contain integers, got {dims}")
    batch, channels, height, width = dims
    if batch != 1:
        raise ConfigurationError("Batch > 1 is not supported; model_input_shape[0] must be 1")
    if channels != 3:
        raise ConfigurationError("model_input_shape[1] must be 3 (RGB)")
    if height <= 0 or width <= 0:
        raise ConfigurationError(f"model input height/width must be > 0, got {height}x{width}")
    return int(batch), int(channels), int(height), int(width)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Per-request detection settings. Immutable for the lifetime of a request.
    """

    model_input_shape: Tuple[int, int, int, int] = DEFAULT_MODEL_INPUT_SHAPE
    topk: int = DEFAULT_TOPK
    iou_threshold: float = DEFAULT_IOU_THRESHOLD
    score_threshold: float = DEFAULT_SCORE_THRESHOLD

    def __post_init__(self) -> None:
        object.__setattr__(self, "model_input_shape", normalize_input_shape(self.model_input_shape))
        if isinstance(self.topk, bool) or not isinstance(self.topk, numbers.Integral):
            raise ConfigurationError("topk must be an integer")
        if self.topk < 0:
            raise ConfigurationError("topk must be >= 0")
        object.__setattr__(self, "topk", int(self.topk))
        object.__setattr__(self, "iou_threshold", _check_threshold("iou_threshold", self.iou_threshold))
        object.__setattr__(self, "score_threshold", _check_threshold("score_threshold", self.score_threshold))

    @property
    def input_size(self) -> Tuple[int, int]:
        """(width, height) of the model input."""
        _, _, height, width = self.model_input_shape
        return width, height


def pipeline_config_from_dict(payload: Dict[str, Any]) -> PipelineConfig:
    allowed = {"model_input_shape", "topk", "iou_threshold", "score_threshold"}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ConfigurationError(f"Unknown pipeline config keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    if "model_input_shape" in payload:
        shape = payload["model_input_shape"]
        if not isinstance(shape, list):
            raise ConfigurationError("model_input_shape must be a list of 4 integers")
        kwargs["model_input_shape"] = tuple(shape)
    for key in ("topk", "iou_threshold", "score_threshold"):
        if key in payload:
            kwargs[key] = payload[key]
    return PipelineConfig(**kwargs)


def load_pipeline_config(path: Union[str, Path]) -> PipelineConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid pipeline config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("Pipeline config must be a JSON object")
    return pipeline_config_from_dict(payload)
