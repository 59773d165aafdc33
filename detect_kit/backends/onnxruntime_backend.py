from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np


PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - intra_op_num_threads: thread count for the session; None lets ORT decide,
      1 forces single-threaded execution on constrained devices
    - output_names: restrict `run` to these outputs; None returns all of them
    """

    providers: Optional[Sequence[str]] = None
    intra_op_num_threads: Optional[int] = None
    output_names: Optional[Sequence[str]] = None


class OnnxRuntimeBackend:
    """
    ONNX Runtime session exposing `run(feeds) -> {output_name: array}`.

    Used for both the detector and the NMS model.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_num_threads is not None:
            if cfg.intra_op_num_threads < 1:
                raise ValueError("intra_op_num_threads must be >= 1")
            sess_opts.intra_op_num_threads = int(cfg.intra_op_num_threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        self.input_names = tuple(i.name for i in self.session.get_inputs())
        all_outputs = tuple(o.name for o in self.session.get_outputs())
        if cfg.output_names is not None:
            missing = [n for n in cfg.output_names if n not in all_outputs]
            if missing:
                raise ValueError(f"Output names {missing} not found. Available: {list(all_outputs)}")
            self.output_names = tuple(cfg.output_names)
        else:
            self.output_names = all_outputs

        logger.info(
            "Loaded %s (inputs=%s, outputs=%s, providers=%s)",
            self.model_path.name,
            list(self.input_names),
            list(self.output_names),
            list(self.providers_in_use),
        )

    @property
    def input_name(self) -> str:
        return self.input_names[0]

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def run(self, feeds: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
        outputs = self.session.run(list(self.output_names), dict(feeds))
        return dict(zip(self.output_names, outputs))

    def warmup(self, input_shape: Sequence[int]) -> None:
        """
        Run one zero-filled float32 tensor through the first input.
        """

        blob = np.zeros(tuple(int(d) for d in input_shape), dtype=np.float32)
        self.run({self.input_name: blob})
        logger.info("Warmed up %s with input shape %s", self.model_path.name, tuple(blob.shape))
