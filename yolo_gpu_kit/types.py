from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import torch

from .geometry import center_to_corner, centers_to_corners


@dataclass(frozen=True)
class Candidates:
    """
    Raw per-anchor predictions for one frame, kept on the compute device.

    All four tensors are indexed by candidate (0..N-1):
    - box_coords: (N, 4) float32 as cx, cy, w, h (model space)
    - class_ids: (N,) int32
    - box_corners: (N, 4) float32 as x1, y1, x2, y2 (model space)
    - scores: (N,) float32
    """

    box_coords: torch.Tensor
    class_ids: torch.Tensor
    box_corners: torch.Tensor
    scores: torch.Tensor

    def __post_init__(self) -> None:
        n = int(self.scores.shape[0]) if self.scores.ndim == 1 else -1
        if n < 0:
            raise ValueError(f"scores must be 1-D, got shape {tuple(self.scores.shape)}")
        if tuple(self.box_coords.shape) != (n, 4):
            raise ValueError(f"box_coords must be ({n}, 4), got {tuple(self.box_coords.shape)}")
        if tuple(self.box_corners.shape) != (n, 4):
            raise ValueError(f"box_corners must be ({n}, 4), got {tuple(self.box_corners.shape)}")
        if tuple(self.class_ids.shape) != (n,):
            raise ValueError(f"class_ids must be ({n},), got {tuple(self.class_ids.shape)}")

    @property
    def num_candidates(self) -> int:
        return int(self.scores.shape[0])

    @property
    def device(self) -> torch.device:
        return self.scores.device

    def to(self, device: torch.device) -> "Candidates":
        if self.device == torch.device(device):
            return self
        return Candidates(
            box_coords=self.box_coords.to(device),
            class_ids=self.class_ids.to(device),
            box_corners=self.box_corners.to(device),
            scores=self.scores.to(device),
        )

    @classmethod
    def from_centers(
        cls,
        centers: np.ndarray,
        class_ids: np.ndarray,
        scores: np.ndarray,
        *,
        device: torch.device = torch.device("cpu"),
    ) -> "Candidates":
        """Build candidates from host arrays, deriving corners with the batched transform."""
        coords = torch.as_tensor(np.asarray(centers, dtype=np.float32), device=device).reshape(-1, 4)
        return cls(
            box_coords=coords,
            class_ids=torch.as_tensor(np.asarray(class_ids, dtype=np.int32), device=device).reshape(-1),
            box_corners=centers_to_corners(coords),
            scores=torch.as_tensor(np.asarray(scores, dtype=np.float32), device=device).reshape(-1),
        )


@dataclass(frozen=True)
class SuppressedBox:
    """
    A box that survived NMS, still in model space.
    """

    cx: float
    cy: float
    w: float
    h: float
    class_id: int
    score: float

    @property
    def corners(self) -> Tuple[float, float, float, float]:
        return center_to_corner(self.cx, self.cy, self.w, self.h)


@dataclass(frozen=True)
class DisplayBox:
    """
    A suppressed box in the centered display space handed to the presentation layer.

    `center_x` / `center_y` are offsets from the display center (y grows downward).
    """

    center_x: float
    center_y: float
    width: float
    height: float
    label: str
    class_id: Optional[int] = None
    score: Optional[float] = None
