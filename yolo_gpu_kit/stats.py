from __future__ import annotations

import statistics
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List

import numpy as np


@dataclass(frozen=True)
class TimingSummary:
    n: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float


def percentile(sorted_values: List[float], q: float) -> float:
    if not sorted_values:
        raise ValueError("No values provided.")
    if q < 0.0 or q > 100.0:
        raise ValueError("q must be in [0, 100].")
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    # Linear interpolation between closest ranks.
    pos = (q / 100.0) * (len(sorted_values) - 1)
    lo = int(np.floor(pos))
    hi = int(np.ceil(pos))
    if lo == hi:
        return float(sorted_values[lo])
    t = pos - lo
    return float(sorted_values[lo] * (1.0 - t) + sorted_values[hi] * t)


def summarize_ms(values_s: Iterable[float]) -> TimingSummary:
    ms = sorted(v * 1000.0 for v in values_s)
    if not ms:
        return TimingSummary(n=0, mean_ms=0.0, p50_ms=0.0, p90_ms=0.0, p95_ms=0.0)
    return TimingSummary(
        n=len(ms),
        mean_ms=float(statistics.fmean(ms)),
        p50_ms=percentile(ms, 50.0),
        p90_ms=percentile(ms, 90.0),
        p95_ms=percentile(ms, 95.0),
    )


def format_summary(label: str, s: TimingSummary) -> str:
    return (
        f"{label}: n={s.n} mean={s.mean_ms:.3f}ms p50={s.p50_ms:.3f}ms "
        f"p90={s.p90_ms:.3f}ms p95={s.p95_ms:.3f}ms"
    )


@dataclass
class FrameStats:
    """
    Counters and per-stage timings accumulated by the frame-tick driver.

    Only the most recent `timing_window` samples per stage are kept, so the
    percentiles describe recent frames and memory stays flat on endless runs.
    """

    ticks: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    boxes: int = 0
    overflow_frames: int = 0
    timing_window: int = 2048
    timings_s: Dict[str, Deque[float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.timing_window < 1:
            raise ValueError("timing_window must be >= 1")

    def record(self, stage: str, seconds: float) -> None:
        samples = self.timings_s.get(stage)
        if samples is None:
            samples = self.timings_s[stage] = deque(maxlen=self.timing_window)
        samples.append(seconds)

    def summary(self) -> Dict[str, object]:
        return {
            "ticks": self.ticks,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "boxes": self.boxes,
            "overflow_frames": self.overflow_frames,
            "timings_ms": {stage: summarize_ms(values).__dict__ for stage, values in self.timings_s.items()},
        }
