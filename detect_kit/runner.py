"""
Inference runner contract and its awaitable, serialized session wrapper.

Any object with `run(feeds) -> {name: array}` can act as a runner: the ONNX
Runtime backend, the CPU NMS runner, or a test double. `AsyncSession` makes a
runner awaitable without blocking the event loop and limits how many calls may
be in flight against one backend at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Mapping, Optional, Protocol

import numpy as np

from .errors import InferenceError


logger = logging.getLogger(__name__)


class InferenceRunner(Protocol):
    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        ...


class AsyncSession:
    """
    Long-lived, shared wrapper around one `InferenceRunner`.

    Calls go through a private thread pool with `max_concurrency` workers (one
    by default), so a backend that only supports a single in-flight call is
    never entered twice, while separate sessions (detector, NMS) run
    independently of each other.

    Cancelling the awaiting coroutine drops a call that has not started yet;
    a call already running finishes in its worker and the result is discarded.
    """

    def __init__(self, runner: InferenceRunner, name: str = "session", max_concurrency: int = 1):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.runner = runner
        self.name = name
        self.max_concurrency = max_concurrency
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=max_concurrency, thread_name_prefix=f"detect-kit-{name}"
        )

    @property
    def closed(self) -> bool:
        return self._executor is None

    async def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        if self._executor is None:
            raise InferenceError(f"{self.name} session is closed")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.run_sync, dict(feeds))

    def run_sync(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        """
        Blocking call with the same error wrapping as `run`.
        """

        start = time.perf_counter()
        try:
            outputs = self.runner.run(feeds)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"{self.name} inference failed: {exc}") from exc

        if not isinstance(outputs, Mapping):
            raise InferenceError(f"{self.name} runner must return a mapping of outputs, got {type(outputs).__name__}")
        logger.debug("%s run took %.1fms", self.name, (time.perf_counter() - start) * 1000.0)
        return {str(k): np.asarray(v) for k, v in outputs.items()}

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "AsyncSession":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"AsyncSession(name={self.name!r}, runner={type(self.runner).__name__})"
