from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def parse_providers(raw: Optional[str]) -> Optional[list]:
    """
    Split a comma-separated provider list, dropping stray quotes/backticks left
    by shell line continuations.
    """

    if raw is None:
        return None
    parts = [str(p).strip().strip("'\"`") for p in str(raw).split(",")]
    return [p for p in parts if p] or None


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers in priority order
      (e.g. ["CUDAExecutionProvider", "CPUExecutionProvider"]); None = ORT default
    - require_providers: providers that must be active, checked at startup
    - input_name/output_name: override the auto-selected first input/output
    """

    providers: Optional[Sequence[str]] = None
    require_providers: Sequence[str] = ()
    input_name: Optional[str] = None
    output_name: Optional[str] = None


class OnnxRuntimeBackend:
    """
    ONNX Runtime session for a YOLO export.

    Expects an NCHW float32 blob shaped (1, 3, H, W) and returns the raw output
    tensor (e.g. (1, 84, 8400)) as a NumPy array.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(
            str(self.model_path), sess_options=ort.SessionOptions(), providers=providers
        )

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_name = cfg.output_name or self.session.get_outputs()[0].name
        logger.info("ONNX Runtime session providers: %s", list(self.providers_in_use))

        missing = [p for p in cfg.require_providers if p not in self.providers_in_use]
        if missing:
            raise RuntimeError(
                f"Required ONNX Runtime provider(s) not active: {missing}. "
                f"Available providers: {list(self.available_providers)}."
            )

    @property
    def providers_in_use(self) -> Sequence[str]:
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    @property
    def input_shape(self) -> tuple:
        return tuple(self.session.get_inputs()[0].shape)

    def infer(self, blob: np.ndarray) -> np.ndarray:
        outputs = self.session.run([self.output_name], {self.input_name: blob})
        return outputs[0]
