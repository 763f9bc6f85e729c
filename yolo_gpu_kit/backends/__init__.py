"""
Inference backends for yolo_gpu_kit.

A backend wraps one model runtime and maps a preprocessed (1, 3, H, W) float32
blob to the raw network output. Runtimes are imported lazily inside each
backend so the post-processing and NMS code does not require them.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class InferenceBackend(Protocol):
    def infer(self, blob: np.ndarray) -> Any:
        """Return the raw output as a NumPy array or a (device) torch tensor."""
        ...


__all__ = ["InferenceBackend"]
