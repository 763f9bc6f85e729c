from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, TypeVar

import numpy as np
import torch


ArrayLike = TypeVar("ArrayLike", np.ndarray, torch.Tensor)

# Row-vector form: [cx, cy, w, h] @ CENTERS_TO_CORNERS = [x1, y1, x2, y2]
CENTERS_TO_CORNERS = np.array(
    [
        [1.0, 0.0, 1.0, 0.0],
        [0.0, 1.0, 0.0, 1.0],
        [-0.5, 0.0, 0.5, 0.0],
        [0.0, -0.5, 0.0, 0.5],
    ],
    dtype=np.float32,
)

CORNERS_TO_CENTERS = np.array(
    [
        [0.5, 0.0, -1.0, 0.0],
        [0.0, 0.5, 0.0, -1.0],
        [0.5, 0.0, 1.0, 0.0],
        [0.0, 0.5, 0.0, 1.0],
    ],
    dtype=np.float32,
)


def center_to_corner(cx: float, cy: float, w: float, h: float) -> Tuple[float, float, float, float]:
    return cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2


def _apply(boxes: ArrayLike, matrix: np.ndarray) -> ArrayLike:
    if isinstance(boxes, torch.Tensor):
        m = torch.as_tensor(matrix, dtype=boxes.dtype, device=boxes.device)
        return torch.matmul(boxes, m)
    arr = np.asarray(boxes, dtype=np.float32)
    return arr @ matrix


def centers_to_corners(boxes: ArrayLike) -> ArrayLike:
    """
    Batched cxcywh -> xyxy as a single (N, 4) x (4, 4) matmul.

    Torch inputs stay on their device, so the transform runs next to inference.
    """
    return _apply(boxes, CENTERS_TO_CORNERS)


def corners_to_centers(boxes: ArrayLike) -> ArrayLike:
    return _apply(boxes, CORNERS_TO_CENTERS)


@dataclass(frozen=True)
class DisplayMapping:
    """
    Maps model-space boxes (top-left origin, model input resolution) into the
    centered display space of the presentation surface.
    """

    image_width: int
    image_height: int
    display_width: float
    display_height: float

    def __post_init__(self) -> None:
        if self.image_width <= 0 or self.image_height <= 0:
            raise ValueError("image_width/image_height must be > 0")
        if self.display_width <= 0 or self.display_height <= 0:
            raise ValueError("display_width/display_height must be > 0")

    @property
    def scale(self) -> Tuple[float, float]:
        return self.display_width / self.image_width, self.display_height / self.image_height

    def map_box(self, cx: float, cy: float, w: float, h: float) -> Tuple[float, float, float, float]:
        sx, sy = self.scale
        return (
            cx * sx - self.display_width / 2,
            cy * sy - self.display_height / 2,
            w * sx,
            h * sy,
        )

    def map_boxes(self, coords: np.ndarray) -> np.ndarray:
        """Vectorised `map_box` over an (N, 4) cxcywh array."""
        sx, sy = self.scale
        out = np.asarray(coords, dtype=np.float32).reshape(-1, 4) * np.array([sx, sy, sx, sy], dtype=np.float32)
        out[:, 0] -= self.display_width / 2
        out[:, 1] -= self.display_height / 2
        return out

    def to_pixels(self, center_x: float, center_y: float, width: float, height: float) -> Tuple[float, float, float, float]:
        """Centered display box -> top-left-origin pixel xyxy on the display canvas."""
        px = center_x + self.display_width / 2
        py = center_y + self.display_height / 2
        return center_to_corner(px, py, width, height)
