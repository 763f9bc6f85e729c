from __future__ import annotations

from typing import Iterable, Optional, Tuple

import cv2
import numpy as np

from .geometry import DisplayMapping
from .types import DisplayBox


_PALETTE = (
    (255, 56, 56),
    (255, 157, 151),
    (255, 112, 31),
    (255, 178, 29),
    (207, 210, 49),
    (72, 249, 10),
    (146, 204, 23),
    (61, 219, 134),
    (26, 147, 52),
    (0, 212, 187),
    (44, 153, 168),
    (0, 194, 255),
    (52, 69, 147),
    (100, 115, 255),
    (0, 24, 236),
    (132, 56, 255),
    (82, 0, 133),
    (203, 56, 255),
    (255, 149, 200),
    (255, 55, 199),
)

# Yellow in BGR; boxes without a class id use it.
DEFAULT_COLOR = (0, 255, 255)


def color_for_class_id(class_id: Optional[int]) -> Tuple[int, int, int]:
    """
    Deterministic BGR color for a class id: a fixed palette, then a seeded RNG.
    """

    if class_id is None:
        return DEFAULT_COLOR
    if 0 <= class_id < len(_PALETTE):
        return _PALETTE[class_id]
    rng = np.random.default_rng(int(class_id))
    bgr = rng.integers(0, 256, size=3, dtype=np.uint8)
    return int(bgr[0]), int(bgr[1]), int(bgr[2])


def draw_labeled_box(
    image_bgr: np.ndarray,
    xyxy: Tuple[float, float, float, float],
    label: str,
    *,
    color: Tuple[int, int, int] = DEFAULT_COLOR,
    font_scale: float = 0.5,
    thickness: int = 1,
) -> None:
    """Draw one box with a filled label tab, in place, clipped to the image."""
    h, w = image_bgr.shape[:2]
    x1, y1, x2, y2 = xyxy
    x1i = int(np.clip(round(x1), 0, w - 1))
    y1i = int(np.clip(round(y1), 0, h - 1))
    x2i = int(np.clip(round(x2), 0, w - 1))
    y2i = int(np.clip(round(y2), 0, h - 1))
    cv2.rectangle(image_bgr, (x1i, y1i), (x2i, y2i), color, thickness=thickness)

    if not label:
        return
    (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, thickness)
    # Above the box when there is room, inside otherwise.
    y_text_top = y1i - th - baseline
    if y_text_top < 0:
        y_text_top = y1i
    x_text_right = min(x1i + tw, w - 1)
    y_text_bottom = min(y_text_top + th + baseline, h - 1)

    cv2.rectangle(image_bgr, (x1i, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
    cv2.putText(
        image_bgr,
        label,
        (x1i, min(y_text_top + th, h - 1)),
        cv2.FONT_HERSHEY_SIMPLEX,
        font_scale,
        (0, 0, 0),
        thickness=thickness,
        lineType=cv2.LINE_AA,
    )


def draw_display_boxes(
    canvas_bgr: np.ndarray,
    boxes: Iterable[DisplayBox],
    mapping: DisplayMapping,
    *,
    show_score: bool = False,
    font_scale: float = 0.5,
    thickness: int = 2,
) -> np.ndarray:
    """
    Draw centered display-space boxes on a canvas of the display size; returns a copy.
    """

    if canvas_bgr.ndim != 3 or canvas_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(canvas_bgr, 'shape', None)}")

    out = canvas_bgr.copy()
    for box in boxes:
        label = box.label
        if show_score and box.score is not None:
            label = f"{label} {box.score:.2f}"
        draw_labeled_box(
            out,
            mapping.to_pixels(box.center_x, box.center_y, box.width, box.height),
            label,
            color=color_for_class_id(box.class_id),
            font_scale=font_scale,
            thickness=thickness,
        )
    return out
