from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from .config import normalize_input_shape
from .errors import InvalidImageError
from .types import LetterboxTransform


def validate_image(image: object) -> np.ndarray:
    """
    Check that `image` is an (H, W, C>=3) array and return its first 3 channels.
    """

    if image is None or not isinstance(image, np.ndarray):
        raise InvalidImageError(f"image must be a NumPy array, got {type(image).__name__}")
    if image.ndim != 3:
        raise InvalidImageError(f"Expected image shape (H, W, 3), got {image.shape}")
    h, w, c = image.shape
    if h == 0 or w == 0:
        raise InvalidImageError(f"Image must be non-empty, got {w}x{h}")
    if c < 3:
        raise InvalidImageError(f"Image needs at least 3 channels, got {c}")
    if not (np.issubdtype(image.dtype, np.integer) or np.issubdtype(image.dtype, np.floating)):
        raise InvalidImageError(f"Unsupported image dtype: {image.dtype}")
    if c > 3:
        # Alpha (or extra) channels carry no color information for the detector.
        image = image[:, :, :3]
    if image.dtype != np.uint8 and image.dtype != np.float32:
        image = image.astype(np.float32)
    return image


def letterbox(
    image: np.ndarray,
    new_shape: Tuple[int, int] = (640, 640),
    color: Tuple[int, int, int] = (114, 114, 114),
) -> Tuple[np.ndarray, LetterboxTransform]:
    """
    Resize keeping aspect ratio and pad to `new_shape` (width, height), centered.

    Returns:
        padded: resized + padded image, shape (new_h, new_w, 3)
        transform: scale and left/top padding needed to map boxes back
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    image = validate_image(image)
    h, w = image.shape[:2]
    new_w, new_h = new_shape

    # Scale ratio (new / old)
    r = min(new_w / w, new_h / h)

    resized_w = min(new_w, max(1, int(round(w * r))))
    resized_h = min(new_h, max(1, int(round(h * r))))
    dw, dh = new_w - resized_w, new_h - resized_h

    if (w, h) != (resized_w, resized_h):
        image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    # Odd padding puts the extra pixel on the right/bottom.
    left, top = dw // 2, dh // 2
    right, bottom = dw - left, dh - top
    padded = cv2.copyMakeBorder(
        np.ascontiguousarray(image), top, bottom, left, right, cv2.BORDER_CONSTANT, value=color
    )

    return padded, LetterboxTransform(scale=r, pad_x=float(left), pad_y=float(top))


@dataclass(frozen=True)
class LetterboxConfig:
    color: Tuple[int, int, int] = (114, 114, 114)
    # Input images follow OpenCV's BGR order; the detector expects RGB.
    input_is_bgr: bool = True


class ImagePreprocessor:
    """
    Image (H, W, 3) -> float32 tensor (1, 3, Mh, Mw) in [0, 1], plus the
    LetterboxTransform needed to invert box coordinates for this image.
    """

    def __init__(self, cfg: LetterboxConfig = LetterboxConfig()):
        self.cfg = cfg

    def preprocess(
        self, image: np.ndarray, model_input_shape: Sequence[int]
    ) -> Tuple[np.ndarray, LetterboxTransform]:
        _, _, model_h, model_w = normalize_input_shape(model_input_shape)
        img, transform = letterbox(image, new_shape=(model_w, model_h), color=self.cfg.color)

        if self.cfg.input_is_bgr:
            img = img[:, :, ::-1]
        # normalize, HWC -> CHW, add batch
        blob = img.astype(np.float32) / 255.0
        blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])
        return blob, transform
