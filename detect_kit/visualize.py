from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from .letterbox import validate_image
from .types import Detection


_PALETTE_HEX = (
    "FF3838", "FF9D97", "FF701F", "FFB21D", "CFD231", "48F90A", "92CC17", "3DDB86", "1A9334", "00D4BB",
    "2C99A8", "00C2FF", "344593", "6473FF", "0018EC", "8438FF", "520085", "CB38FF", "FF95C8", "FF37C7",
)


def color_for_class_id(class_id: int) -> Tuple[int, int, int]:
    """
    Deterministic BGR color for a class id (OpenCV expects BGR).
    """

    hex_color = _PALETTE_HEX[int(class_id) % len(_PALETTE_HEX)]
    r, g, b = (int(hex_color[i : i + 2], 16) for i in (0, 2, 4))
    return b, g, r


def format_label(det: Detection, class_names: Optional[Dict[int, str]] = None, show_score: bool = True) -> str:
    label = class_names.get(det.class_id, str(det.class_id)) if class_names else str(det.class_id)
    if show_score:
        label = f"{label} - {det.score * 100:.1f}%"
    return label


def _pixel_box(det: Detection, w: int, h: int) -> Tuple[int, int, int, int]:
    xs = np.clip(np.round([det.x1, det.x2]), 0, w - 1).astype(int)
    ys = np.clip(np.round([det.y1, det.y2]), 0, h - 1).astype(int)
    return int(xs[0]), int(ys[0]), int(xs[1]), int(ys[1])


def _caption(cv2, out: np.ndarray, text: str, anchor: Tuple[int, int], color, font_scale: float, thickness: int) -> None:
    h, w = out.shape[:2]
    x, y = anchor
    (text_w, text_h), baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, font_scale, thickness)
    pad = 2 * thickness
    band_h = text_h + baseline + pad

    # Above the box when there is room, otherwise just inside its top edge.
    top = y - band_h if y - band_h >= 0 else y
    bottom = min(top + band_h, h - 1)
    right = min(x + text_w + 2 * pad, w - 1)

    cv2.rectangle(out, (x, top), (right, bottom), color, thickness=-1)
    cv2.putText(
        out,
        text,
        (x + pad, min(top + pad // 2 + text_h, h - 1)),
        cv2.FONT_HERSHEY_SIMPLEX,
        font_scale,
        (255, 255, 255),
        thickness=thickness,
        lineType=cv2.LINE_AA,
    )


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    class_names: Optional[Dict[int, str]] = None,
    show_score: bool = True,
    fill_alpha: float = 0.2,
    box_thickness: Optional[int] = None,
    font_scale: Optional[float] = None,
) -> np.ndarray:
    """
    Overlay detections on a copy of a BGR image: a translucent fill in the
    class color, the box outline and a `"name - 87.5%"` caption.

    Line width and font size follow the image size unless given.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    out = validate_image(image_bgr).astype(np.uint8, copy=True)
    h, w = out.shape[:2]
    longest = max(w, h)
    if box_thickness is None:
        box_thickness = max(1, int(round(longest / 640)))
    if font_scale is None:
        font_scale = max(0.4, longest / 1600)
    text_thickness = max(1, box_thickness // 2)

    for det in detections:
        x1, y1, x2, y2 = _pixel_box(det, w, h)
        color = color_for_class_id(det.class_id)

        if fill_alpha > 0:
            region = out[y1 : y2 + 1, x1 : x2 + 1]
            tint = np.full_like(region, color)
            out[y1 : y2 + 1, x1 : x2 + 1] = cv2.addWeighted(tint, fill_alpha, region, 1.0 - fill_alpha, 0)
        cv2.rectangle(out, (x1, y1), (x2, y2), color, thickness=box_thickness)
        _caption(cv2, out, format_label(det, class_names, show_score), (x1, y1), color, font_scale, text_thickness)

    return out
