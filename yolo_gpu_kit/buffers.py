from __future__ import annotations

import threading
from typing import Sequence, Tuple

import numpy as np
import torch

from .device import DeviceLike


class NMSOutputBuffers:
    """
    Append-style output buffers for NMS survivors, allocated once and reused.

    Layout (all on `device`):
    - coords: (capacity, 4) float32, cx, cy, w, h per surviving box
    - labels: (capacity,) int32 class id per surviving box
    - scores: (capacity,) float32 confidence per surviving box
    - count_buffer: (4,) int32 raw buffer; index 0 receives the append count

    The three data buffers share one slot counter so row `k` of each belongs to
    the same box. Appends past `capacity` are dropped without touching memory
    but still advance the counter, so an overflow stays visible to readback.

    Callers must `reset()` before every dispatch; `begin_dispatch()` refuses to
    run on a dirty counter.
    """

    COUNT_WORDS = 4

    def __init__(self, capacity: int, device: DeviceLike = "cpu"):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self.device = torch.device(device)

        self.coords = torch.zeros((self.capacity, 4), dtype=torch.float32, device=self.device)
        self.labels = torch.zeros((self.capacity,), dtype=torch.int32, device=self.device)
        self.scores = torch.zeros((self.capacity,), dtype=torch.float32, device=self.device)
        self.count_buffer = torch.zeros((self.COUNT_WORDS,), dtype=torch.int32, device=self.device)

        self._counter = torch.zeros((1,), dtype=torch.int64, device=self.device)
        self._lock = threading.Lock()
        self._dirty = False

    @property
    def is_reset(self) -> bool:
        return not self._dirty

    def reset(self) -> None:
        with self._lock:
            self._counter.zero_()
            self.count_buffer.zero_()
            self._dirty = False

    def begin_dispatch(self) -> None:
        with self._lock:
            if self._dirty:
                raise RuntimeError("NMS output buffers must be reset before each dispatch (stale append counter).")
            self._dirty = True

    # ------------------------------------------------------------------ #
    # Appends
    # ------------------------------------------------------------------ #
    def append_block(self, coords: torch.Tensor, labels: torch.Tensor, scores: torch.Tensor) -> None:
        """
        Reserve `len(labels)` consecutive slots with one counter increment and
        write the rows that fall inside capacity. Runs entirely on `device`.
        """

        k = int(labels.shape[0])
        if k == 0:
            return
        with self._lock:
            slots = self._counter + torch.arange(k, dtype=torch.int64, device=self.device)
            inside = slots < self.capacity
            idx = slots[inside]
            self.coords[idx] = coords[inside].to(torch.float32)
            self.labels[idx] = labels[inside].to(torch.int32)
            self.scores[idx] = scores[inside].to(torch.float32)
            self._counter += k

    def reserve_slot(self) -> int:
        """Atomic fetch-and-increment on the append counter; may return a slot >= capacity."""
        with self._lock:
            slot = int(self._counter.item())
            self._counter += 1
        return slot

    def write_slot(self, slot: int, coord: Sequence[float], label: int, score: float) -> bool:
        if slot < 0 or slot >= self.capacity:
            return False
        self.coords[slot] = torch.as_tensor(coord, dtype=torch.float32, device=self.device)
        self.labels[slot] = int(label)
        self.scores[slot] = float(score)
        return True

    # ------------------------------------------------------------------ #
    # Readback helpers
    # ------------------------------------------------------------------ #
    def copy_count(self) -> None:
        """Device-side copy of the live append count into `count_buffer[0]`."""
        with self._lock:
            self.count_buffer[0] = self._counter[0].to(torch.int32)

    def read_count(self) -> int:
        """Host transfer of the 4-word counter buffer only."""
        words = self.count_buffer.to("cpu").numpy()
        return int(words[0])

    def get_data(self, count: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if count < 0 or count > self.capacity:
            raise ValueError(f"count must be within [0, {self.capacity}], got {count}")
        return (
            self.coords[:count].to("cpu").numpy().copy(),
            self.labels[:count].to("cpu").numpy().copy(),
            self.scores[:count].to("cpu").numpy().copy(),
        )
