from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
import torch

from .buffers import NMSOutputBuffers
from .device import DeviceLike, resolve_device
from .readback import ReadbackResult, readback
from .types import Candidates


logger = logging.getLogger(__name__)

_IOU_EPS = 1e-6


@dataclass(frozen=True)
class NMSConfig:
    """
    Parameters of the device NMS pass.

    - score_threshold: minimum confidence to be eligible (and to suppress others)
    - iou_threshold: overlap at or above which the lower-ranked box is suppressed
    - max_boxes: output buffer capacity; survivors past it are dropped
    - num_candidates: fixed number of candidates the network emits per frame
    - workgroup_size: candidates per parallel group (tuning only)
    - groups_per_pass: workgroups covered by one kernel launch (tuning only)
    - class_agnostic: if False, only boxes of the same class suppress each other
    - class_ids: optional allow-list; other classes are never eligible
    """

    score_threshold: float = 0.5
    iou_threshold: float = 0.5
    max_boxes: int = 200
    num_candidates: int = 8400
    workgroup_size: int = 64
    groups_per_pass: int = 16
    class_agnostic: bool = True
    class_ids: Optional[Tuple[int, ...]] = None

    def __post_init__(self) -> None:
        if not (0.0 <= self.score_threshold <= 1.0):
            raise ValueError("score_threshold must be within [0, 1]")
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if self.max_boxes < 1:
            raise ValueError("max_boxes must be >= 1")
        if self.num_candidates < 1:
            raise ValueError("num_candidates must be >= 1")
        if self.workgroup_size < 1:
            raise ValueError("workgroup_size must be >= 1")
        if self.groups_per_pass < 1:
            raise ValueError("groups_per_pass must be >= 1")
        if self.class_ids is not None:
            object.__setattr__(self, "class_ids", tuple(int(c) for c in self.class_ids))

    @property
    def num_groups(self) -> int:
        return dispatch_groups(self.num_candidates, self.workgroup_size)


def dispatch_groups(num_candidates: int, workgroup_size: int) -> int:
    return (int(num_candidates) + int(workgroup_size) - 1) // int(workgroup_size)


# ---------------------------------------------------------------------- #
# Kernels
# ---------------------------------------------------------------------- #
def _pairwise_iou_torch(rows: torch.Tensor, cols: torch.Tensor) -> torch.Tensor:
    """IoU between (R, 4) and (M, 4) xyxy boxes -> (R, M)."""
    xx1 = torch.maximum(rows[:, None, 0], cols[None, :, 0])
    yy1 = torch.maximum(rows[:, None, 1], cols[None, :, 1])
    xx2 = torch.minimum(rows[:, None, 2], cols[None, :, 2])
    yy2 = torch.minimum(rows[:, None, 3], cols[None, :, 3])
    inter = (xx2 - xx1).clamp(min=0.0) * (yy2 - yy1).clamp(min=0.0)

    area_r = (rows[:, 2] - rows[:, 0]).clamp(min=0.0) * (rows[:, 3] - rows[:, 1]).clamp(min=0.0)
    area_c = (cols[:, 2] - cols[:, 0]).clamp(min=0.0) * (cols[:, 3] - cols[:, 1]).clamp(min=0.0)
    union = area_r[:, None] + area_c[None, :] - inter
    return inter / union.clamp(min=_IOU_EPS)


def _pairwise_iou_numpy(rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
    xx1 = np.maximum(rows[:, None, 0], cols[None, :, 0])
    yy1 = np.maximum(rows[:, None, 1], cols[None, :, 1])
    xx2 = np.minimum(rows[:, None, 2], cols[None, :, 2])
    yy2 = np.minimum(rows[:, None, 3], cols[None, :, 3])
    inter = np.clip(xx2 - xx1, 0.0, None) * np.clip(yy2 - yy1, 0.0, None)

    area_r = np.clip(rows[:, 2] - rows[:, 0], 0.0, None) * np.clip(rows[:, 3] - rows[:, 1], 0.0, None)
    area_c = np.clip(cols[:, 2] - cols[:, 0], 0.0, None) * np.clip(cols[:, 3] - cols[:, 1], 0.0, None)
    union = area_r[:, None] + area_c[None, :] - inter
    return inter / np.maximum(union, _IOU_EPS)


class TorchSuppressKernel:
    """
    Data-parallel suppression on the engine device.

    Every eligible candidate is compared against every eligible candidate that
    outranks it (higher score, or equal score and lower index); it survives if
    none of them overlaps it at or above the IoU threshold. Inputs are read-only,
    survivors are appended through one slot reservation per launch.
    """

    name = "torch"

    def __init__(self, cfg: NMSConfig):
        self.cfg = cfg

    def __call__(self, candidates: Candidates, out: NMSOutputBuffers) -> None:
        cfg = self.cfg
        device = out.device
        c = candidates.to(device)

        eligible = c.scores >= cfg.score_threshold
        if cfg.class_ids is not None:
            allowed = torch.as_tensor(cfg.class_ids, dtype=c.class_ids.dtype, device=device)
            eligible &= torch.isin(c.class_ids, allowed)

        # Only eligible candidates can suppress; gather them once per dispatch.
        sup_idx = torch.nonzero(eligible, as_tuple=False).reshape(-1)
        if sup_idx.numel() == 0:
            return
        sup_corners = c.box_corners[sup_idx]
        sup_scores = c.scores[sup_idx]
        sup_labels = c.class_ids[sup_idx]

        n = c.num_candidates
        rows_per_pass = cfg.workgroup_size * cfg.groups_per_pass
        for start in range(0, n, rows_per_pass):
            stop = min(n, start + rows_per_pass)
            active = eligible[start:stop]
            row_idx = torch.nonzero(active, as_tuple=False).reshape(-1) + start
            if row_idx.numel() == 0:
                continue

            iou = _pairwise_iou_torch(c.box_corners[row_idx], sup_corners)
            row_scores = c.scores[row_idx]
            outranks = (sup_scores[None, :] > row_scores[:, None]) | (
                (sup_scores[None, :] == row_scores[:, None]) & (sup_idx[None, :] < row_idx[:, None])
            )
            hits = outranks & (iou >= cfg.iou_threshold)
            if not cfg.class_agnostic:
                hits &= sup_labels[None, :] == c.class_ids[row_idx][:, None]

            survivors = row_idx[~hits.any(dim=1)]
            out.append_block(c.box_coords[survivors], c.class_ids[survivors], c.scores[survivors])


class HostSuppressKernel:
    """
    Host-side parallel-for with the same contract as `TorchSuppressKernel`.

    Workgroups run on a thread pool; each surviving candidate reserves its own
    output slot with an atomic fetch-add on the shared append counter.
    """

    name = "host"

    def __init__(self, cfg: NMSConfig, max_workers: Optional[int] = None):
        self.cfg = cfg
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="nms-group")

    def close(self) -> None:
        self._pool.shutdown(wait=True)

    def __call__(self, candidates: Candidates, out: NMSOutputBuffers) -> None:
        cfg = self.cfg
        coords = candidates.box_coords.detach().to("cpu").numpy()
        corners = candidates.box_corners.detach().to("cpu").numpy()
        scores = candidates.scores.detach().to("cpu").numpy()
        labels = candidates.class_ids.detach().to("cpu").numpy()

        eligible = scores >= cfg.score_threshold
        if cfg.class_ids is not None:
            eligible &= np.isin(labels, np.asarray(cfg.class_ids))
        sup_idx = np.nonzero(eligible)[0]
        if sup_idx.size == 0:
            return

        n = int(scores.shape[0])
        groups = dispatch_groups(n, cfg.workgroup_size)

        def run_group(g: int) -> None:
            start = g * cfg.workgroup_size
            stop = min(n, start + cfg.workgroup_size)
            row_idx = np.nonzero(eligible[start:stop])[0] + start
            if row_idx.size == 0:
                return

            iou = _pairwise_iou_numpy(corners[row_idx], corners[sup_idx])
            row_scores = scores[row_idx]
            sup_scores = scores[sup_idx]
            outranks = (sup_scores[None, :] > row_scores[:, None]) | (
                (sup_scores[None, :] == row_scores[:, None]) & (sup_idx[None, :] < row_idx[:, None])
            )
            hits = outranks & (iou >= cfg.iou_threshold)
            if not cfg.class_agnostic:
                hits &= labels[sup_idx][None, :] == labels[row_idx][:, None]

            for i in row_idx[~hits.any(axis=1)]:
                slot = out.reserve_slot()
                out.write_slot(slot, coords[i], int(labels[i]), float(scores[i]))

        # Consume results so worker exceptions surface here.
        list(self._pool.map(run_group, range(groups)))


# ---------------------------------------------------------------------- #
# Engine
# ---------------------------------------------------------------------- #
SUBSTRATES: Sequence[str] = ("torch", "host")


class GpuNMSEngine:
    """
    Owns the NMS output buffers and the suppression kernel for its lifetime.

    Per frame: `reset()` -> `dispatch(candidates)` -> `readback(engine.buffers)`,
    or `run(candidates)` for all three.
    """

    def __init__(
        self,
        cfg: NMSConfig = NMSConfig(),
        *,
        device: DeviceLike = "auto",
        substrate: str = "torch",
        host_workers: Optional[int] = None,
    ):
        self.cfg = cfg
        substrate = substrate.strip().lower()
        if substrate not in SUBSTRATES:
            raise ValueError(f"Unsupported NMS substrate: {substrate!r} (expected one of {list(SUBSTRATES)})")
        self.substrate = substrate

        if substrate == "host":
            self.device = torch.device("cpu")
            self.kernel = HostSuppressKernel(cfg, max_workers=host_workers)
        else:
            self.device = resolve_device(device)
            self.kernel = TorchSuppressKernel(cfg)

        self.buffers = NMSOutputBuffers(cfg.max_boxes, device=self.device)
        logger.info(
            "NMS engine ready: substrate=%s device=%s candidates=%d groups=%dx%d max_boxes=%d",
            self.substrate,
            self.device,
            cfg.num_candidates,
            cfg.num_groups,
            cfg.workgroup_size,
            cfg.max_boxes,
        )

    def reset(self) -> None:
        self.buffers.reset()

    def dispatch(self, candidates: Candidates) -> None:
        if candidates.num_candidates != self.cfg.num_candidates:
            raise ValueError(
                f"Expected {self.cfg.num_candidates} candidates, got {candidates.num_candidates}. "
                "Set num_candidates to the model's anchor count."
            )
        self.buffers.begin_dispatch()
        self.kernel(candidates, self.buffers)
        self.buffers.copy_count()

    def run(self, candidates: Candidates) -> ReadbackResult:
        self.reset()
        self.dispatch(candidates)
        return readback(self.buffers)

    def close(self) -> None:
        if isinstance(self.kernel, HostSuppressKernel):
            self.kernel.close()

    def __enter__(self) -> "GpuNMSEngine":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()