from __future__ import annotations

import logging
from typing import Union

import torch


logger = logging.getLogger(__name__)

DeviceLike = Union[str, torch.device]


def resolve_device(device: DeviceLike = "auto") -> torch.device:
    """
    Resolve the compute device once, at startup.

    "auto" picks CUDA when torch sees a GPU and falls back to CPU otherwise.
    An explicit CUDA request without a usable GPU is a startup failure.
    """

    if isinstance(device, str) and device.strip().lower() == "auto":
        resolved = torch.device("cuda" if torch.cuda.is_available() else "cpu")
        logger.info("Compute device (auto): %s", resolved)
        return resolved

    resolved = torch.device(device)
    if resolved.type == "cuda" and not torch.cuda.is_available():
        raise RuntimeError(f"CUDA device requested ({resolved}) but CUDA is not available in this torch install.")
    logger.info("Compute device: %s", resolved)
    return resolved
