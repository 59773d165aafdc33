from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Mapping from model-input pixels back to original-image pixels.

    `pad_x`/`pad_y` are the left/top offsets of the resized image inside the
    (centered) letterbox canvas.
    """

    scale: float
    pad_x: float
    pad_y: float

    def to_original(self, x: float, y: float) -> Tuple[float, float]:
        return (x - self.pad_x) / self.scale, (y - self.pad_y) / self.scale

    def to_model(self, x: float, y: float) -> Tuple[float, float]:
        return x * self.scale + self.pad_x, y * self.scale + self.pad_y

    def invert_boxes(self, boxes: np.ndarray) -> np.ndarray:
        """Return a copy of (N, 4) xyxy model-space boxes in original-image space."""
        out = np.array(boxes, dtype=np.float64, copy=True).reshape(-1, 4)
        out[:, [0, 2]] = (out[:, [0, 2]] - self.pad_x) / self.scale
        out[:, [1, 3]] = (out[:, [1, 3]] - self.pad_y) / self.scale
        return out


@dataclass(frozen=True)
class RawDetection:
    """
    One decoded detector row in model-input pixel space (center form).
    """

    cx: float
    cy: float
    w: float
    h: float
    score: float
    class_id: int

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        half_w = self.w / 2
        half_h = self.h / 2
        return self.cx - half_w, self.cy - half_h, self.cx + half_w, self.cy + half_h


@dataclass(frozen=True)
class Detection:
    """
    Final detection in original-image pixel coordinates.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    score: float
    class_id: int

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x1, self.y1, self.x2, self.y2

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1
