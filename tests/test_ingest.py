import unittest
from typing import List, Optional

import numpy as np

from Stream_Detection.ingest import VideoFrameSource, open_capture


class FakeCapture:
    def __init__(self, n_frames: int):
        self.n_frames = n_frames
        self.pos = 0
        self.released = False

    def read(self):
        if self.pos >= self.n_frames:
            return False, None
        self.pos += 1
        return True, np.full((4, 4, 3), self.pos, dtype=np.uint8)

    def set(self, prop, value) -> bool:
        self.pos = int(value)
        return True

    def release(self) -> None:
        self.released = True


class FlakyCapture:
    """Live capture whose reads succeed or miss in a scripted order."""

    def __init__(self, script: List[bool]):
        self.script = list(script)
        self.reads = 0

    def read(self):
        self.reads += 1
        ok = self.script.pop(0) if self.script else True
        if not ok:
            return False, None
        return True, np.full((4, 4, 3), self.reads, dtype=np.uint8)

    def set(self, prop, value) -> bool:
        raise AssertionError("live captures must not be rewound")

    def release(self) -> None:
        pass


def _values(source: VideoFrameSource, n: int) -> List[Optional[int]]:
    out: List[Optional[int]] = []
    for _ in range(n):
        frame = source.read()
        out.append(None if frame is None else int(frame[0, 0, 0]))
    return out


class TestVideoFrameSource(unittest.TestCase):
    def test_loops_by_default(self) -> None:
        source = VideoFrameSource(FakeCapture(2))
        self.assertEqual(_values(source, 5), [1, 2, 1, 2, 1])
        self.assertEqual(source.loop_count, 2)
        self.assertEqual(source.frames_read, 5)

    def test_no_loop_reports_missing_frame(self) -> None:
        source = VideoFrameSource(FakeCapture(2), loop=False)
        self.assertEqual(_values(source, 2), [1, 2])
        self.assertFalse(source.exhausted)
        self.assertEqual(_values(source, 1), [None])
        self.assertTrue(source.exhausted)

    def test_looping_file_is_never_exhausted(self) -> None:
        source = VideoFrameSource(FakeCapture(1))
        _values(source, 4)
        self.assertFalse(source.exhausted)

    def test_live_source_miss_is_transient(self) -> None:
        source = VideoFrameSource(FlakyCapture([True, False, True]), is_file=False)
        self.assertFalse(source.loop)
        self.assertEqual(_values(source, 3), [1, None, 3])
        self.assertFalse(source.exhausted)
        self.assertEqual(source.loop_count, 0)

    def test_empty_source_never_raises(self) -> None:
        source = VideoFrameSource(FakeCapture(0))
        self.assertEqual(_values(source, 2), [None, None])

    def test_release(self) -> None:
        cap = FakeCapture(1)
        VideoFrameSource(cap).release()
        self.assertTrue(cap.released)


class TestOpenCapture(unittest.TestCase):
    def test_exactly_one_source(self) -> None:
        with self.assertRaises(ValueError):
            open_capture()
        with self.assertRaises(ValueError):
            open_capture(video="a.mp4", webcam=0)


if __name__ == "__main__":
    unittest.main()
