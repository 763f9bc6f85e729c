from __future__ import annotations

from typing import Optional

import numpy as np

from .backends import InferenceBackend
from .postprocess import YoloOutputGraph
from .types import Candidates


class InferenceAdapter:
    """
    Backend + output graph: a (1, 3, H, W) blob in, four candidate tensors out.

    `input_shape` pins the blob shape the network was exported for; a blob of
    any other shape is rejected before it reaches the runtime.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        graph: YoloOutputGraph,
        *,
        input_shape: Optional[tuple] = None,
        backend_name: Optional[str] = None,
    ):
        self.backend = backend
        self.graph = graph
        self.input_shape = tuple(input_shape) if input_shape is not None else None
        self.backend_name = backend_name

    @property
    def device(self):
        return self.graph.device

    def __call__(self, blob: np.ndarray) -> Candidates:
        if self.input_shape is not None and tuple(blob.shape) != self.input_shape:
            raise ValueError(f"Expected input blob of shape {self.input_shape}, got {tuple(blob.shape)}")
        return self.graph(self.backend.infer(blob))
