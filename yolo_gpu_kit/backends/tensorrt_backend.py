from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import torch


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class TensorRTBackendConfig:
    """
    Configuration for TensorRT engine inference.

    TensorRT engines need CUDA; device buffers are torch CUDA tensors.
    """

    device: str = "cuda"
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    output_index: int = 0


def _torch_dtype_from_trt(trt_dtype: object) -> torch.dtype:
    # Compare by name so tensorrt types are not needed at import time.
    name = getattr(trt_dtype, "name", str(trt_dtype)).lower()
    if "half" in name or "float16" in name:
        return torch.float16
    if "int8" in name:
        return torch.int8
    if "int32" in name:
        return torch.int32
    if "bool" in name:
        return torch.bool
    return torch.float32


class TensorRTBackend:
    """
    TensorRT engine runner using the tensor-name API (`set_tensor_address` +
    `execute_async_v3`).

    Output tensors are allocated once per input shape and reused across frames;
    `infer` returns the selected output as a CUDA tensor without copying it to
    the host.
    """

    def __init__(self, engine_path: PathLike, cfg: TensorRTBackendConfig = TensorRTBackendConfig()):
        try:
            import tensorrt as trt  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ImportError(
                "tensorrt is required for the TensorRT backend. Install NVIDIA TensorRT Python bindings."
            ) from e

        self._trt = trt
        self.engine_path = Path(engine_path)
        if not self.engine_path.exists():
            raise FileNotFoundError(str(self.engine_path))

        self.device = torch.device(cfg.device)
        if self.device.type != "cuda":
            raise ValueError("TensorRTBackend requires a CUDA device (device='cuda').")
        if not torch.cuda.is_available():  # pragma: no cover
            raise RuntimeError("CUDA is not available in this torch install, but TensorRT requires CUDA.")

        runtime = trt.Runtime(trt.Logger(trt.Logger.WARNING))
        engine = runtime.deserialize_cuda_engine(self.engine_path.read_bytes())
        if engine is None:
            raise RuntimeError(f"Failed to deserialize TensorRT engine: {self.engine_path}")
        self.engine = engine
        self.context = engine.create_execution_context()
        if self.context is None:
            raise RuntimeError("Failed to create TensorRT execution context.")

        self.input_name, self.output_names = self._discover_io(cfg.input_name)
        if cfg.output_name is not None:
            if cfg.output_name not in self.output_names:
                raise ValueError(f"Output name {cfg.output_name!r} not found. Available: {self.output_names}")
            self.primary_output = cfg.output_name
        else:
            if cfg.output_index < 0 or cfg.output_index >= len(self.output_names):
                raise IndexError(f"output_index {cfg.output_index} out of range (num outputs={len(self.output_names)}).")
            self.primary_output = self.output_names[cfg.output_index]

        self._input_dtype = _torch_dtype_from_trt(engine.get_tensor_dtype(self.input_name))
        self._bound_shape: Optional[Tuple[int, ...]] = None
        self._outputs: Dict[str, torch.Tensor] = {}
        logger.info("TensorRT engine loaded: input=%s outputs=%s", self.input_name, self.output_names)

    def _discover_io(self, preferred_input: Optional[str]) -> Tuple[str, List[str]]:
        trt = self._trt
        names = [self.engine.get_tensor_name(i) for i in range(self.engine.num_io_tensors)]
        inputs = [n for n in names if self.engine.get_tensor_mode(n) == trt.TensorIOMode.INPUT]
        outputs = [n for n in names if self.engine.get_tensor_mode(n) == trt.TensorIOMode.OUTPUT]
        if not inputs:
            raise RuntimeError("TensorRT engine has no inputs.")
        if not outputs:
            raise RuntimeError("TensorRT engine has no outputs.")
        input_name = preferred_input or inputs[0]
        if input_name not in inputs:
            raise ValueError(f"Input name {input_name!r} not found. Available: {inputs}")
        return input_name, outputs

    def _bind_outputs(self, input_shape: Tuple[int, ...]) -> None:
        if self._bound_shape == input_shape:
            return
        self.context.set_input_shape(self.input_name, input_shape)
        self._outputs = {}
        for name in self.output_names:
            shape = tuple(int(s) for s in self.context.get_tensor_shape(name))
            dtype = _torch_dtype_from_trt(self.engine.get_tensor_dtype(name))
            t = torch.empty(size=shape, dtype=dtype, device=self.device)
            self.context.set_tensor_address(name, int(t.data_ptr()))
            self._outputs[name] = t
        self._bound_shape = input_shape

    def infer(self, blob: np.ndarray) -> torch.Tensor:
        if blob is None:
            raise TypeError("blob must be a NumPy array.")

        input_shape = tuple(int(x) for x in np.asarray(blob).shape)
        self._bind_outputs(input_shape)

        x = torch.as_tensor(blob, device=self.device).to(dtype=self._input_dtype).contiguous()
        self.context.set_tensor_address(self.input_name, int(x.data_ptr()))

        stream = torch.cuda.current_stream(device=self.device)
        if not self.context.execute_async_v3(int(stream.cuda_stream)):  # pragma: no cover
            raise RuntimeError("TensorRT execute_async_v3 failed.")
        return self._outputs[self.primary_output].float()
