from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from .buffers import NMSOutputBuffers
from .geometry import DisplayMapping
from .types import DisplayBox, SuppressedBox


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadbackResult:
    """
    Host copy of one frame's NMS output.

    `coords` is (boxes_found, 4) cxcywh in model space; `raw_count` is the
    append counter before clamping to the buffer capacity.
    """

    boxes_found: int
    coords: np.ndarray
    labels: np.ndarray
    scores: np.ndarray
    raw_count: int

    @property
    def overflowed(self) -> bool:
        return self.raw_count > self.boxes_found

    @classmethod
    def empty(cls) -> "ReadbackResult":
        return cls(
            boxes_found=0,
            coords=np.zeros((0, 4), dtype=np.float32),
            labels=np.zeros((0,), dtype=np.int32),
            scores=np.zeros((0,), dtype=np.float32),
            raw_count=0,
        )


def readback(buffers: NMSOutputBuffers) -> ReadbackResult:
    """
    Read the counter first, clamp it to capacity, then copy exactly that many rows.
    """

    raw_count = buffers.read_count()
    boxes_found = max(0, min(raw_count, buffers.capacity))
    if raw_count > buffers.capacity:
        logger.debug("NMS output overflow: %d survivors, %d kept", raw_count, buffers.capacity)
    if boxes_found == 0:
        return ReadbackResult.empty()

    coords, labels, scores = buffers.get_data(boxes_found)
    return ReadbackResult(
        boxes_found=boxes_found,
        coords=coords,
        labels=labels,
        scores=scores,
        raw_count=raw_count,
    )


def to_suppressed_boxes(result: ReadbackResult) -> List[SuppressedBox]:
    return [
        SuppressedBox(cx=float(cx), cy=float(cy), w=float(w), h=float(h), class_id=int(label), score=float(score))
        for (cx, cy, w, h), label, score in zip(result.coords, result.labels, result.scores)
    ]


def label_for(labels: Sequence[str], class_id: int) -> str:
    if 0 <= class_id < len(labels):
        return labels[class_id]
    return str(class_id)


def map_to_display(result: ReadbackResult, mapping: DisplayMapping, labels: Sequence[str]) -> List[DisplayBox]:
    """Model-space survivors -> centered display-space boxes with label strings."""
    if result.boxes_found == 0:
        return []

    mapped = mapping.map_boxes(result.coords)
    return [
        DisplayBox(
            center_x=float(cx),
            center_y=float(cy),
            width=float(w),
            height=float(h),
            label=label_for(labels, int(label)),
            class_id=int(label),
            score=float(score),
        )
        for (cx, cy, w, h), label, score in zip(mapped, result.labels, result.scores)
    ]
