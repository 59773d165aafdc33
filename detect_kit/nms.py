from dataclasses import dataclass
from typing import Dict, Mapping

import numpy as np


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    max_detections: int = 300


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Simple NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, highest score first.
    """

    if boxes.size == 0 or cfg.max_detections <= 0:
        return np.empty((0,), dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)

    # Stable sort on the negated scores keeps equal scores in index order.
    order = np.argsort(-scores, kind="stable")
    keep = []

    while order.size > 0 and len(keep) < cfg.max_detections:
        i = order[0]
        keep.append(i)

        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[order[1:]] - inter
        iou = inter / np.maximum(union, 1e-6)

        inds = np.where(iou <= cfg.iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int64)


class CpuNmsRunner:
    """
    CPU stand-in for the NMS model, honoring the same runner contract.

    Feeds:
        boxes:  (1, N, 4) float32 xyxy
        scores: (1, N) float32
        config: (3,) float32 [topk, iou_threshold, score_threshold]
    Returns:
        {"selected": (K,) int64 indices into N}
    """

    def __init__(
        self,
        boxes_name: str = "boxes",
        scores_name: str = "scores",
        config_name: str = "config",
        output_name: str = "selected",
    ):
        self.boxes_name = boxes_name
        self.scores_name = scores_name
        self.config_name = config_name
        self.output_name = output_name

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        boxes = np.asarray(feeds[self.boxes_name], dtype=np.float32).reshape(-1, 4)
        scores = np.asarray(feeds[self.scores_name], dtype=np.float32).reshape(-1)
        if boxes.shape[0] != scores.shape[0]:
            raise ValueError(f"boxes/scores length mismatch: {boxes.shape[0]} vs {scores.shape[0]}")
        config = np.asarray(feeds[self.config_name], dtype=np.float32).reshape(-1)
        if config.shape[0] < 2:
            raise ValueError(f"config must hold [topk, iou_threshold(, score_threshold)], got {config.shape}")

        topk = int(config[0])
        iou_threshold = float(config[1])
        candidates = np.arange(scores.shape[0])
        if config.shape[0] >= 3:
            candidates = np.where(scores >= float(config[2]))[0]

        keep_local = nms(boxes[candidates], scores[candidates], NMSConfig(iou_threshold=iou_threshold, max_detections=topk))
        return {self.output_name: candidates[keep_local].astype(np.int64)}
