"""
Latest-wins request handling for interactive callers.

A new submission supersedes the one in flight: the older request is
cancelled, and if it still completes its result is dropped instead of
overwriting the newer one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from .config import PipelineConfig
from .runtime import DetectionPipeline
from .types import Detection


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    sequence: int
    detections: List[Detection]
    image_size: Tuple[int, int]  # (width, height)
    elapsed_ms: float


RenderCallback = Callable[[DetectionResult], None]


class LatestRequestGate:
    def __init__(self, pipeline: DetectionPipeline, render: Optional[RenderCallback] = None):
        self.pipeline = pipeline
        self.render = render
        self._sequence = 0
        self._inflight: Optional[asyncio.Task] = None

    @property
    def latest_sequence(self) -> int:
        return self._sequence

    def is_latest(self, sequence: int) -> bool:
        return sequence == self._sequence

    async def submit(self, image: np.ndarray, config: Optional[PipelineConfig] = None) -> Optional[DetectionResult]:
        """
        Detect on `image`, superseding any earlier submission.

        Returns None when a newer submission arrived before this one finished.
        Errors of the latest request propagate to the caller.
        """

        self._sequence += 1
        sequence = self._sequence
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

        start = time.perf_counter()
        task = asyncio.ensure_future(self.pipeline.detect(image, config))
        self._inflight = task
        try:
            detections = await task
        except asyncio.CancelledError:
            if task.cancelled() and not self.is_latest(sequence):
                logger.debug("request #%d cancelled by #%d", sequence, self._sequence)
                return None
            raise
        except Exception:
            if not self.is_latest(sequence):
                logger.warning("request #%d failed after being superseded; error dropped", sequence, exc_info=True)
                return None
            raise
        finally:
            if self._inflight is task:
                self._inflight = None

        if not self.is_latest(sequence):
            logger.warning("discarding stale result of request #%d (latest is #%d)", sequence, self._sequence)
            return None

        image_h, image_w = image.shape[:2]
        result = DetectionResult(
            sequence=sequence,
            detections=detections,
            image_size=(int(image_w), int(image_h)),
            elapsed_ms=(time.perf_counter() - start) * 1000.0,
        )
        if self.render is not None:
            self.render(result)
        return result

    def cancel(self) -> None:
        """
        Invalidate everything submitted so far (e.g. the image was closed).
        """

        self._sequence += 1
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
