from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
import torch

from ..device import DeviceLike, resolve_device


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    - device: "auto", "cpu" or "cuda"
    - half: cast input to float16 (only if the model expects it)
    - output_index: if the model returns multiple outputs, select this index
    """

    device: DeviceLike = "auto"
    half: bool = False
    output_index: int = 0


class TorchScriptBackend:
    """
    TorchScript model loaded with `torch.jit.load`.

    The output tensor is returned on the model device, so post-processing and
    NMS can consume it without a host round-trip.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.device = resolve_device(cfg.device)
        self.half = cfg.half
        self.output_index = cfg.output_index

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

    def infer(self, blob: np.ndarray) -> torch.Tensor:
        x = torch.as_tensor(blob, device=self.device)
        x = (x.half() if self.half else x.float()).contiguous()

        with torch.no_grad():
            y = self.model(x)

        if isinstance(y, (tuple, list)):
            y = y[self.output_index]
        return y.detach().float()
