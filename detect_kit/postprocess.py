import numbers
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import InferenceError
from .types import Detection, LetterboxTransform, RawDetection


LAYOUTS = ("auto", "channels_first", "rows")


@dataclass(frozen=True)
class PostprocessConfig:
    """
    How to read the raw detector tensor.

    - layout: "channels_first" for (4+C, A) exports (YOLOv8: 84 x 8400),
      "rows" for (A, 4+C); "auto" picks channels first only when the tensor
      clearly looks like one (see `resolve_layout`), else rows.
    - has_objectness: the first value after the box is an objectness score that
      multiplies the class scores (YOLOv5-style (A, 5+C)).
    - class_ids: optional allow-list of class ids; None keeps all.
    - num_classes: optional class count; when set, "auto" finds the axis of
      size 4 + [1] + num_classes and every layout is checked against it.
    """

    layout: str = "auto"
    has_objectness: bool = False
    class_ids: Optional[Sequence[int]] = None
    num_classes: Optional[int] = None

    def __post_init__(self) -> None:
        if self.layout not in LAYOUTS:
            raise ValueError(f"layout must be one of {LAYOUTS}, got {self.layout!r}")
        if self.num_classes is not None:
            if isinstance(self.num_classes, bool) or not isinstance(self.num_classes, numbers.Integral):
                raise ValueError("num_classes must be an integer")
            if self.num_classes < 1:
                raise ValueError("num_classes must be >= 1")

    @property
    def values_per_box(self) -> Optional[int]:
        if self.num_classes is None:
            return None
        return 4 + (1 if self.has_objectness else 0) + int(self.num_classes)


def resolve_layout(shape: Tuple[int, int], cfg: PostprocessConfig) -> str:
    """
    Pick "rows" or "channels_first" for a 2-D (unbatched) detector output.

    With `cfg.num_classes` the axis whose size matches 4 + [1] + C is the
    channel axis (rows win on a square tensor). Without it, channels first is
    chosen only for the YOLO anchor shape: a short first axis of 6..512
    channels and at least 4x as many anchors, e.g. (84, 8400). Anything else,
    including a single row or fewer rows than channels, is read as rows.
    """

    if cfg.layout != "auto":
        return cfg.layout

    h, w = shape
    expected = cfg.values_per_box
    if expected is not None:
        if w == expected:
            return "rows"
        if h == expected:
            return "channels_first"
        raise InferenceError(f"Detector output shape {shape} has no axis of size {expected} (4 box values + classes)")

    looks_like_anchors = 6 <= h <= 512 and w >= 4 * h
    return "channels_first" if looks_like_anchors else "rows"


class DetectionPostprocessor:
    """
    Pure decode / rescale helpers for raw detector output.

    Layouts accepted (single image, batch axis optional):
    - (1, 4 + C, A): channels first, e.g. 1 x 84 x 8400 for YOLOv8
    - (1, A, 4 + C): one row per anchor
    - either of the above with an extra objectness channel (5 + C)

    Argmax ties resolve to the lowest class index and every threshold test is
    inclusive (`score >= threshold`).
    """

    def __init__(self, cfg: PostprocessConfig = PostprocessConfig()):
        self.cfg = cfg

    def decode(self, raw_output: np.ndarray, score_threshold: float) -> List[RawDetection]:
        boxes_cxcywh, scores, class_ids = self._decode_rows(raw_output, score_threshold)
        return [
            RawDetection(
                cx=float(cx),
                cy=float(cy),
                w=float(w),
                h=float(h),
                score=float(score),
                class_id=int(cls_id),
            )
            for (cx, cy, w, h), score, cls_id in zip(boxes_cxcywh, scores, class_ids)
        ]

    def decode_arrays(
        self, raw_output: np.ndarray, score_threshold: float
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Same as `decode` but vectorized: (boxes_xyxy (N,4), scores (N,), class_ids (N,)).
        """

        boxes_cxcywh, scores, class_ids = self._decode_rows(raw_output, score_threshold)
        return cxcywh_to_xyxy(boxes_cxcywh), scores, class_ids

    def rescale(
        self,
        detections: Sequence[RawDetection],
        transform: LetterboxTransform,
        image_w: int,
        image_h: int,
    ) -> List[Detection]:
        if not detections:
            return []
        boxes = np.array([d.as_xyxy() for d in detections], dtype=np.float64)
        scores = np.array([d.score for d in detections], dtype=np.float64)
        class_ids = np.array([d.class_id for d in detections], dtype=np.int64)
        return self.rescale_arrays(boxes, scores, class_ids, transform, image_w, image_h)

    def rescale_arrays(
        self,
        boxes_xyxy: np.ndarray,
        scores: np.ndarray,
        class_ids: np.ndarray,
        transform: LetterboxTransform,
        image_w: int,
        image_h: int,
    ) -> List[Detection]:
        boxes = scale_boxes(boxes_xyxy, transform, image_w, image_h)
        return [
            Detection(
                x1=float(x1),
                y1=float(y1),
                x2=float(x2),
                y2=float(y2),
                score=float(score),
                class_id=int(cls_id),
            )
            for (x1, y1, x2, y2), score, cls_id in zip(boxes, scores, class_ids)
        ]

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _to_rows(self, raw_output: np.ndarray) -> np.ndarray:
        """
        Bring the raw tensor to (A, 4 + [1] + C) rows.
        """

        p = np.asarray(raw_output)
        if p.ndim == 3:
            if p.shape[0] != 1:
                raise InferenceError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
            p = p[0]
        if p.ndim != 2:
            raise InferenceError(f"Unsupported detector output shape: {np.shape(raw_output)}")
        if not np.issubdtype(p.dtype, np.number):
            raise InferenceError(f"Detector output must be numeric, got dtype {p.dtype}")

        min_cols = 6 if self.cfg.has_objectness else 5
        if p.size == 0:
            return np.zeros((0, min_cols), dtype=np.float32)

        layout = resolve_layout(p.shape, self.cfg)
        rows = p.T if layout == "channels_first" else p

        if rows.shape[1] < min_cols:
            raise InferenceError(
                f"Detector output has {rows.shape[1]} values per box, expected at least {min_cols} "
                f"(layout={layout}, shape={np.shape(raw_output)})"
            )
        expected = self.cfg.values_per_box
        if expected is not None and rows.shape[1] != expected:
            raise InferenceError(
                f"Detector output has {rows.shape[1]} values per box, expected {expected} "
                f"(layout={layout}, shape={np.shape(raw_output)})"
            )
        return rows

    def _decode_rows(
        self, raw_output: np.ndarray, score_threshold: float
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        rows = self._to_rows(raw_output)
        if rows.shape[0] == 0:
            return np.zeros((0, 4), dtype=np.float32), np.zeros((0,), dtype=np.float32), np.zeros((0,), dtype=np.int64)

        boxes = rows[:, 0:4].astype(np.float32)
        if self.cfg.has_objectness:
            objectness = rows[:, 4].astype(np.float32)
            class_scores = rows[:, 5:].astype(np.float32)
        else:
            objectness = None
            class_scores = rows[:, 4:].astype(np.float32)

        # np.argmax returns the first maximum, i.e. the lowest class index on ties.
        class_ids = np.argmax(class_scores, axis=1).astype(np.int64)
        scores = class_scores[np.arange(class_scores.shape[0]), class_ids]
        if objectness is not None:
            scores = objectness * scores

        # NaN compares False and is dropped here.
        keep = scores >= score_threshold
        if self.cfg.class_ids is not None:
            keep &= np.isin(class_ids, np.asarray(list(self.cfg.class_ids), dtype=np.int64))

        return boxes[keep], scores[keep], class_ids[keep]


def cxcywh_to_xyxy(boxes: np.ndarray) -> np.ndarray:
    boxes = np.asarray(boxes, dtype=np.float32).reshape(-1, 4)
    cx, cy, w_box, h_box = boxes.T
    x1 = cx - w_box / 2
    y1 = cy - h_box / 2
    x2 = cx + w_box / 2
    y2 = cy + h_box / 2
    return np.stack([x1, y1, x2, y2], axis=1)


def scale_boxes(boxes: np.ndarray, transform: LetterboxTransform, image_w: int, image_h: int) -> np.ndarray:
    """
    Map xyxy boxes from letterboxed model space to the original image and clamp
    to [0, W] x [0, H]. Corners are re-ordered so x1 <= x2 and y1 <= y2.
    """

    out = transform.invert_boxes(boxes)
    out = np.nan_to_num(out, nan=0.0)
    xs = np.sort(out[:, [0, 2]], axis=1)
    ys = np.sort(out[:, [1, 3]], axis=1)
    out[:, [0, 2]] = np.clip(xs, 0, image_w)
    out[:, [1, 3]] = np.clip(ys, 0, image_h)
    return out
