from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import (
    DEFAULT_IOU_THRESHOLD,
    DEFAULT_MODEL_INPUT_SHAPE,
    DEFAULT_SCORE_THRESHOLD,
    DEFAULT_TOPK,
    PipelineConfig,
)
from .errors import InferenceError
from .letterbox import ImagePreprocessor, LetterboxConfig
from .nms import CpuNmsRunner
from .postprocess import DetectionPostprocessor, PostprocessConfig
from .runner import AsyncSession
from .types import Detection


PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery, used to resolve relative model paths.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, else the project root.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


@dataclass(frozen=True)
class ModelIO:
    """
    Tensor names used to talk to the two sessions.

    detector_output=None takes the detector's first output.
    """

    detector_input: str = "images"
    detector_output: Optional[str] = None
    nms_boxes: str = "boxes"
    nms_scores: str = "scores"
    nms_config: str = "config"
    nms_output: str = "selected"


@dataclass
class ModelSessions:
    """
    The two long-lived sessions shared read-only by every request.
    """

    detector: AsyncSession
    nms: AsyncSession
    io: ModelIO = field(default_factory=ModelIO)

    def close(self) -> None:
        self.detector.close()
        self.nms.close()


def _pick_output(outputs: Dict[str, np.ndarray], name: Optional[str], stage: str) -> np.ndarray:
    if not outputs:
        raise InferenceError(f"{stage} session returned no outputs")
    if name is None:
        return next(iter(outputs.values()))
    if name not in outputs:
        raise InferenceError(f"{stage} output {name!r} not found. Available: {sorted(outputs)}")
    return outputs[name]


def select_indices(selected: np.ndarray, scores: np.ndarray, topk: int) -> np.ndarray:
    """
    Validate NMS output and turn it into unique candidate indices, ordered by
    descending score (ties by index) and truncated to `topk`.

    Accepts a flat index vector or ONNX NonMaxSuppression triplets
    (batch_index, class_index, box_index).
    """

    idx = np.asarray(selected)
    if idx.size == 0 or topk <= 0:
        return np.empty((0,), dtype=np.int64)
    if idx.ndim == 2 and idx.shape[1] == 3:
        idx = idx[:, 2]
    idx = idx.reshape(-1)

    if np.issubdtype(idx.dtype, np.floating):
        if not np.all(np.isfinite(idx)) or not np.all(idx == np.round(idx)):
            raise InferenceError("NMS returned non-integral indices")
    elif not np.issubdtype(idx.dtype, np.integer):
        raise InferenceError(f"NMS indices must be integers, got dtype {idx.dtype}")
    idx = idx.astype(np.int64)

    n = scores.shape[0]
    if np.any(idx < 0) or np.any(idx >= n):
        raise InferenceError(f"NMS returned indices outside [0, {n})")

    _, first = np.unique(idx, return_index=True)
    idx = idx[np.sort(first)]
    order = np.argsort(-scores[idx], kind="stable")
    return idx[order][:topk]


class DetectionPipeline:
    """
    preprocess (letterbox) -> detector -> decode -> NMS model -> rescale.

    One image per call; every per-request buffer (tensor, transform,
    candidates) lives only inside `detect`. The sessions are the only shared
    state and are never mutated here.
    """

    def __init__(
        self,
        models: ModelSessions,
        *,
        config: PipelineConfig = PipelineConfig(),
        letterbox_cfg: LetterboxConfig = LetterboxConfig(),
        post_cfg: PostprocessConfig = PostprocessConfig(),
    ):
        self.models = models
        self.config = config
        self.preprocessor = ImagePreprocessor(letterbox_cfg)
        self.post = DetectionPostprocessor(post_cfg)

    async def detect(self, image: np.ndarray, config: Optional[PipelineConfig] = None) -> List[Detection]:
        cfg = config if config is not None else self.config
        t0 = time.perf_counter()

        tensor, transform = self.preprocessor.preprocess(image, cfg.model_input_shape)
        image_h, image_w = image.shape[:2]
        t1 = time.perf_counter()

        outputs = await self.models.detector.run({self.models.io.detector_input: tensor})
        raw = _pick_output(outputs, self.models.io.detector_output, "detector")
        t2 = time.perf_counter()

        boxes, scores, class_ids = self.post.decode_arrays(raw, cfg.score_threshold)
        logger.debug("decoded %d candidates (score >= %.3f)", scores.shape[0], cfg.score_threshold)
        if scores.shape[0] == 0 or cfg.topk == 0:
            return []

        keep = await self._suppress(boxes, scores, cfg)
        t3 = time.perf_counter()
        if keep.size == 0:
            return []

        detections = self.post.rescale_arrays(
            boxes[keep], scores[keep], class_ids[keep], transform, image_w, image_h
        )
        logger.debug(
            "detect: %d boxes (pre=%.1fms det=%.1fms nms=%.1fms total=%.1fms)",
            len(detections),
            (t1 - t0) * 1000.0,
            (t2 - t1) * 1000.0,
            (t3 - t2) * 1000.0,
            (time.perf_counter() - t0) * 1000.0,
        )
        return detections

    async def _suppress(self, boxes: np.ndarray, scores: np.ndarray, cfg: PipelineConfig) -> np.ndarray:
        io = self.models.io
        feeds = {
            io.nms_boxes: np.ascontiguousarray(boxes, dtype=np.float32)[None, ...],
            io.nms_scores: np.ascontiguousarray(scores, dtype=np.float32)[None, ...],
            io.nms_config: np.array([cfg.topk, cfg.iou_threshold, cfg.score_threshold], dtype=np.float32),
        }
        outputs = await self.models.nms.run(feeds)
        selected = _pick_output(outputs, io.nms_output, "NMS")
        return select_indices(selected, scores, cfg.topk)


async def detect_image(
    image: np.ndarray,
    models: ModelSessions,
    topk: int = DEFAULT_TOPK,
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
    score_threshold: float = DEFAULT_SCORE_THRESHOLD,
    model_input_shape: Tuple[int, int, int, int] = DEFAULT_MODEL_INPUT_SHAPE,
) -> List[Detection]:
    """
    Run one image through both sessions and return detections in image pixels.
    """

    config = PipelineConfig(
        model_input_shape=tuple(model_input_shape),
        topk=topk,
        iou_threshold=iou_threshold,
        score_threshold=score_threshold,
    )
    return await DetectionPipeline(models, config=config).detect(image)


def load_models(
    model_path: PathLike,
    nms_model_path: Optional[PathLike] = None,
    *,
    root: Optional[PathLike] = "auto",
    io: Optional[ModelIO] = None,
    onnx_providers: Optional[Sequence[str]] = None,
    num_threads: Optional[int] = None,
    max_concurrency: int = 1,
    warmup_shape: Optional[Sequence[int]] = DEFAULT_MODEL_INPUT_SHAPE,
) -> ModelSessions:
    """
    Create the detector and NMS sessions.

    Typical usage:
        models = load_models("model/yolov8n.onnx", "model/nms-yolov8.onnx")

    Args:
        model_path: detector ONNX file; relative paths resolve against the project root by default
        nms_model_path: NMS ONNX file; None runs NMS on the CPU with the same contract
        num_threads: intra-op thread count for both ONNX sessions (1 for single-threaded devices)
        max_concurrency: in-flight calls allowed per session
        warmup_shape: run one zero tensor of this shape through the detector; None skips warm-up
    """

    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    ort_cfg = OnnxRuntimeBackendConfig(providers=onnx_providers, intra_op_num_threads=num_threads)
    detector = OnnxRuntimeBackend(resolve_path(model_path, root=root), ort_cfg)
    if io is None:
        io = ModelIO(detector_input=detector.input_name)

    if warmup_shape is not None:
        detector.warmup(warmup_shape)

    if nms_model_path is not None:
        nms_runner = OnnxRuntimeBackend(resolve_path(nms_model_path, root=root), ort_cfg)
    else:
        logger.info("No NMS model given; using CPU NMS")
        nms_runner = CpuNmsRunner(
            boxes_name=io.nms_boxes,
            scores_name=io.nms_scores,
            config_name=io.nms_config,
            output_name=io.nms_output,
        )

    return ModelSessions(
        detector=AsyncSession(detector, name="detector", max_concurrency=max_concurrency),
        nms=AsyncSession(nms_runner, name="nms", max_concurrency=max_concurrency),
        io=io,
    )
