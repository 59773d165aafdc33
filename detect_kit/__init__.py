"""
Two-stage object detection pipeline: letterbox -> detector model -> NMS model
-> boxes in original image coordinates.

Works on NumPy arrays; OpenCV handles resizing/drawing and ONNX Runtime runs
the models. The NMS stage can be a model or the bundled CPU implementation.
"""

from .config import PipelineConfig, load_pipeline_config
from .errors import ConfigurationError, DetectKitError, InferenceError, InvalidImageError
from .letterbox import ImagePreprocessor, LetterboxConfig, letterbox
from .metadata import load_class_names
from .nms import CpuNmsRunner, NMSConfig, nms
from .postprocess import DetectionPostprocessor, PostprocessConfig
from .runner import AsyncSession, InferenceRunner
from .runtime import (
    DetectionPipeline,
    ModelIO,
    ModelSessions,
    detect_image,
    find_project_root,
    load_models,
    resolve_path,
)
from .sequencer import DetectionResult, LatestRequestGate
from .types import Detection, LetterboxTransform, RawDetection
from .visualize import draw_detections

__all__ = [
    "AsyncSession",
    "ConfigurationError",
    "CpuNmsRunner",
    "DetectKitError",
    "Detection",
    "DetectionPipeline",
    "DetectionPostprocessor",
    "DetectionResult",
    "ImagePreprocessor",
    "InferenceError",
    "InferenceRunner",
    "InvalidImageError",
    "LatestRequestGate",
    "LetterboxConfig",
    "LetterboxTransform",
    "ModelIO",
    "ModelSessions",
    "NMSConfig",
    "PipelineConfig",
    "PostprocessConfig",
    "RawDetection",
    "detect_image",
    "draw_detections",
    "find_project_root",
    "letterbox",
    "load_class_names",
    "load_models",
    "load_pipeline_config",
    "nms",
    "resolve_path",
]
