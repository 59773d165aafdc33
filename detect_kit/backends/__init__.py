"""
Inference runtimes implementing the runner contract (`run(feeds) -> outputs`).

The runtime library itself is imported when a backend is constructed, so the
pre/post-processing code stays usable without it.
"""

from __future__ import annotations

from .onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

__all__ = ["OnnxRuntimeBackend", "OnnxRuntimeBackendConfig"]
