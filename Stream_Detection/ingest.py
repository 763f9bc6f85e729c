from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureInfo:
    fps: Optional[float]
    width: Optional[int]
    height: Optional[int]
    frame_count: Optional[int] = None


def open_capture(*, video: Optional[str] = None, webcam: Optional[int] = None) -> cv2.VideoCapture:
    if (video is None) == (webcam is None):
        raise ValueError("Exactly one of video/webcam must be provided.")

    cap = cv2.VideoCapture(video) if video is not None else cv2.VideoCapture(int(webcam))
    if not cap.isOpened():
        raise RuntimeError("Failed to open video source.")
    return cap


def get_capture_info(cap: cv2.VideoCapture) -> CaptureInfo:
    fps = cap.get(cv2.CAP_PROP_FPS)
    fps_val = float(fps) if fps and fps > 0 else None

    w = cap.get(cv2.CAP_PROP_FRAME_WIDTH)
    h = cap.get(cv2.CAP_PROP_FRAME_HEIGHT)
    n = cap.get(cv2.CAP_PROP_FRAME_COUNT)
    w_val = int(w) if w and w > 0 else None
    h_val = int(h) if h and h > 0 else None
    n_val = int(n) if n and n > 0 else None

    return CaptureInfo(fps=fps_val, width=w_val, height=h_val, frame_count=n_val)


class VideoFrameSource:
    """
    Frame source over an OpenCV capture.

    `read()` returns the next BGR frame, or None when none is available. Video
    files rewind to the start when they end unless `loop=False`; a file that
    ends without looping sets `exhausted`. Live captures (`is_file=False`)
    never become exhausted, a missed read there is transient.
    """

    def __init__(self, cap: cv2.VideoCapture, *, loop: bool = True, is_file: bool = True):
        self.cap = cap
        self.loop = loop and is_file
        self.is_file = is_file
        self.loop_count = 0
        self.frames_read = 0
        self._exhausted = False

    @classmethod
    def open(cls, *, video: Optional[str] = None, webcam: Optional[int] = None, loop: bool = True) -> "VideoFrameSource":
        # Webcams never loop.
        return cls(open_capture(video=video, webcam=webcam), loop=loop, is_file=video is not None)

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def read(self) -> Optional[np.ndarray]:
        if self._exhausted:
            return None
        ok, frame = self.cap.read()
        if ok and frame is not None:
            self.frames_read += 1
            return frame
        if not self.loop:
            if self.is_file:
                self._exhausted = True
                logger.debug("Video ended after %d frames", self.frames_read)
            return None

        self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
        self.loop_count += 1
        logger.debug("Video rewound (loop %d)", self.loop_count)
        ok, frame = self.cap.read()
        if not ok or frame is None:
            return None
        self.frames_read += 1
        return frame

    def release(self) -> None:
        self.cap.release()
