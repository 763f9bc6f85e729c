from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from yolo_gpu_kit.geometry import DisplayMapping
from yolo_gpu_kit.types import DisplayBox
from yolo_gpu_kit.visualize import color_for_class_id, draw_labeled_box

# FONT_HERSHEY_SIMPLEX glyphs are ~22px tall at scale 1.0.
_HERSHEY_BASE_PX = 22.0


@dataclass
class BoxWidget:
    """One reusable box + label slot of the overlay."""

    box: Optional[DisplayBox] = None
    font_size: float = 0.0
    visible: bool = False

    def assign(self, box: DisplayBox, font_size: float) -> None:
        self.box = box
        self.font_size = font_size
        self.visible = True

    def hide(self) -> None:
        self.visible = False


class BoxOverlay:
    """
    Presentation sink drawing display-space boxes on a canvas of `display_size`.

    Widgets are pooled: `clear()` hides every widget and `draw_box()` reuses
    the slot at `index`, growing the pool only when a frame has more boxes
    than any frame before it.
    """

    def __init__(self, display_width: int, display_height: int, *, thickness: int = 2, show_score: bool = False):
        if display_width <= 0 or display_height <= 0:
            raise ValueError("display size must be > 0")
        self.display_width = int(display_width)
        self.display_height = int(display_height)
        self.thickness = thickness
        self.show_score = show_score
        self.widgets: List[BoxWidget] = []

    @property
    def display_size(self) -> Tuple[float, float]:
        return float(self.display_width), float(self.display_height)

    @property
    def visible_count(self) -> int:
        return sum(1 for w in self.widgets if w.visible)

    def clear(self) -> None:
        for widget in self.widgets:
            widget.hide()

    def draw_box(self, box: DisplayBox, index: int, font_size: float) -> None:
        while len(self.widgets) <= index:
            self.widgets.append(BoxWidget())
        self.widgets[index].assign(box, font_size)

    def render(self, canvas_bgr: np.ndarray, mapping: DisplayMapping) -> np.ndarray:
        """Draw visible widgets onto a copy of `canvas_bgr` (already display-sized)."""
        out = canvas_bgr.copy()
        for widget in self.widgets:
            if not widget.visible or widget.box is None:
                continue
            box = widget.box
            label = box.label
            if self.show_score and box.score is not None:
                label = f"{label} {box.score:.2f}"
            draw_labeled_box(
                out,
                mapping.to_pixels(box.center_x, box.center_y, box.width, box.height),
                label,
                color=color_for_class_id(box.class_id),
                font_scale=max(0.3, widget.font_size / _HERSHEY_BASE_PX),
                thickness=self.thickness,
            )
        return out
