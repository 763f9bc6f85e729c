from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np
import torch

from .device import DeviceLike
from .geometry import centers_to_corners, corners_to_centers
from .types import Candidates


RawOutput = Union[np.ndarray, torch.Tensor]


@dataclass(frozen=True)
class YoloGraphConfig:
    """
    How to read the raw network output.

    - anchors_has_objectness: True for (C+5, A) exports whose fifth row is
      objectness; score = objectness * best class score. False (default)
      treats every row past the four box rows as class scores.
    """

    anchors_has_objectness: bool = False


class YoloOutputGraph:
    """
    Turns one raw YOLO output into the four per-candidate tensors, on device.

    Supported layouts (per image, optional leading batch of 1):
    - (C + 4, A) or (C + 5, A): channels first, e.g. 84 x 8400 for YOLOv8/v9
    - (A, C + 4): rows of [cx, cy, w, h, class_scores...]
    - (N, 6): already decoded [x1, y1, x2, y2, score, class_id]

    The ops mirror a compiled graph: slice + transpose for the box rows,
    reduce-max / arg-max over class rows, and one matmul for the corners.
    """

    def __init__(self, cfg: YoloGraphConfig = YoloGraphConfig(), *, device: DeviceLike = "cpu"):
        self.cfg = cfg
        self.device = torch.device(device)

    def __call__(self, preds: RawOutput) -> Candidates:
        p = self._as_tensor(preds)
        if p.ndim == 3:
            if p.shape[0] != 1:
                raise ValueError(f"Batch > 1 is not supported (got shape {tuple(p.shape)}). Pass one image at a time.")
            p = p[0]
        if p.ndim != 2:
            raise ValueError(f"Unsupported YOLO output shape: {tuple(p.shape)}")

        # Already decoded (N, 6) => [x1, y1, x2, y2, score, class_id]
        if p.shape[1] == 6 and p.shape[0] != 6:
            corners = p[:, 0:4].contiguous()
            return Candidates(
                box_coords=corners_to_centers(corners).contiguous(),
                class_ids=p[:, 5].round().to(torch.int32),
                box_corners=corners,
                scores=p[:, 4].contiguous(),
            )

        box_coords, all_scores = self._split(p)
        scores, class_ids = self._reduce_scores(all_scores)
        return Candidates(
            box_coords=box_coords,
            class_ids=class_ids.to(torch.int32),
            box_corners=centers_to_corners(box_coords).contiguous(),
            scores=scores.contiguous(),
        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _as_tensor(self, preds: RawOutput) -> torch.Tensor:
        if isinstance(preds, torch.Tensor):
            t = preds.detach()
        else:
            t = torch.as_tensor(np.asarray(preds))
        return t.to(device=self.device, dtype=torch.float32)

    def _split(self, p: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Returns box coords (A, 4) as cxcywh and class-score rows (K, A).
        """

        h, w = p.shape
        if h < 5 and w < 5:
            raise ValueError(f"YOLO output too small to hold boxes and scores: {tuple(p.shape)}")

        # Heuristic: the channel dimension is the small one, anchors the large one.
        if h <= w:
            box_coords = p[0:4, :].transpose(0, 1).contiguous()
            rest = p[4:, :]
        else:
            box_coords = p[:, 0:4].contiguous()
            rest = p[:, 4:].transpose(0, 1)
        return box_coords, rest

    def _reduce_scores(self, rest: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        if self.cfg.anchors_has_objectness:
            if rest.shape[0] < 2:
                raise ValueError(f"Expected objectness + class scores, got {rest.shape[0]} score rows.")
            objectness = rest[0, :]
            class_conf, class_ids = torch.max(rest[1:, :], dim=0)
            return objectness * class_conf, class_ids

        # Default: treat remaining rows as class scores only.
        scores, class_ids = torch.max(rest, dim=0)
        return scores, class_ids
