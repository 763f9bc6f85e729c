import unittest

import numpy as np

from Stream_Detection.overlay import BoxOverlay
from yolo_gpu_kit.geometry import DisplayMapping
from yolo_gpu_kit.types import DisplayBox


def _box(label: str = "person", cx: float = 0.0, cy: float = 0.0) -> DisplayBox:
    return DisplayBox(center_x=cx, center_y=cy, width=40.0, height=30.0, label=label, class_id=0, score=0.9)


class TestBoxOverlay(unittest.TestCase):
    def test_widgets_are_pooled(self) -> None:
        overlay = BoxOverlay(320, 240)
        for i in range(3):
            overlay.draw_box(_box(), i, 12.0)
        pool = list(overlay.widgets)
        self.assertEqual(overlay.visible_count, 3)

        overlay.clear()
        self.assertEqual(overlay.visible_count, 0)
        overlay.draw_box(_box("car"), 0, 12.0)
        self.assertEqual(len(overlay.widgets), 3)
        self.assertIs(overlay.widgets[0], pool[0])
        self.assertEqual(overlay.visible_count, 1)
        self.assertEqual(overlay.widgets[0].box.label, "car")

    def test_display_size(self) -> None:
        self.assertEqual(BoxOverlay(1280, 720).display_size, (1280.0, 720.0))
        with self.assertRaises(ValueError):
            BoxOverlay(0, 720)

    def test_render_draws_visible_boxes_only(self) -> None:
        overlay = BoxOverlay(320, 240)
        mapping = DisplayMapping(image_width=64, image_height=64, display_width=320, display_height=240)
        canvas = np.zeros((240, 320, 3), dtype=np.uint8)

        overlay.draw_box(_box(), 0, 12.0)
        drawn = overlay.render(canvas, mapping)
        self.assertEqual(drawn.shape, canvas.shape)
        self.assertGreater(int(drawn.sum()), 0)
        self.assertEqual(int(canvas.sum()), 0)

        overlay.clear()
        self.assertEqual(int(overlay.render(canvas, mapping).sum()), 0)


if __name__ == "__main__":
    unittest.main()
