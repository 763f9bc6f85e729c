from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np


@dataclass(frozen=True)
class LetterboxConfig:
    """
    How a video frame becomes the fixed model input image.

    - new_shape: (width, height) of the model input
    - stretch: resize straight to `new_shape` ignoring aspect (no padding)
    - color: padding color when not stretching
    - scaleup: allow upscaling small frames
    """

    new_shape: Tuple[int, int] = (640, 640)
    stretch: bool = True
    color: Tuple[int, int, int] = (114, 114, 114)
    scaleup: bool = True

    def __post_init__(self) -> None:
        w, h = self.new_shape
        if w < 32 or h < 32:
            raise ValueError(f"new_shape must be >= 32 on each side, got {self.new_shape}")


@dataclass(frozen=True)
class Letterboxed:
    image: np.ndarray
    ratio: Tuple[float, float]
    pad: Tuple[float, float]


def letterbox(image: np.ndarray, cfg: LetterboxConfig = LetterboxConfig()) -> Letterboxed:
    """
    Resize (and pad, unless stretching) `image` to `cfg.new_shape`.

    `ratio` is (w_ratio, h_ratio); `pad` is the left/top padding in pixels.
    """

    h, w = image.shape[:2]
    new_w, new_h = cfg.new_shape

    if cfg.stretch:
        out = image
        if (w, h) != (new_w, new_h):
            out = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)
        return Letterboxed(image=out, ratio=(new_w / w, new_h / h), pad=(0.0, 0.0))

    r = min(new_w / w, new_h / h)
    if not cfg.scaleup:
        r = min(r, 1.0)
    resized_w, resized_h = int(round(w * r)), int(round(h * r))
    dw = (new_w - resized_w) / 2
    dh = (new_h - resized_h) / 2

    if (w, h) != (resized_w, resized_h):
        image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    top, bottom = int(round(dh - 0.1)), int(round(dh + 0.1))
    left, right = int(round(dw - 0.1)), int(round(dw + 0.1))
    padded = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=cfg.color)
    return Letterboxed(image=padded, ratio=(r, r), pad=(dw, dh))
