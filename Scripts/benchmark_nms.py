from __future__ import annotations

import argparse
import time
from typing import Dict, List

import numpy as np
import torch

from yolo_gpu_kit import Candidates, GpuNMSEngine, NMSConfig, readback
from yolo_gpu_kit.stats import format_summary, summarize_ms


def _synthetic_candidates(n: int, n_classes: int, *, seed: int, device: torch.device) -> Candidates:
    # cxcywh inside a 640x640 image, clustered so suppression has work to do.
    rng = np.random.default_rng(seed)
    cluster_xy = rng.uniform(40, 600, size=(max(1, n // 20), 2)).astype(np.float32)
    picks = rng.integers(0, len(cluster_xy), size=n)
    jitter = rng.normal(0.0, 6.0, size=(n, 2)).astype(np.float32)
    wh = rng.uniform(20, 90, size=(n, 2)).astype(np.float32)
    centers = np.concatenate([cluster_xy[picks] + jitter, wh], axis=1)
    scores = rng.uniform(0.0, 1.0, size=n).astype(np.float32)
    class_ids = rng.integers(0, n_classes, size=n).astype(np.int32)
    return Candidates.from_centers(
        torch.from_numpy(centers), torch.from_numpy(class_ids), torch.from_numpy(scores), device=device
    )


def _sync(device: torch.device) -> None:
    if device.type == "cuda":
        torch.cuda.synchronize(device)


def _bench(engine: GpuNMSEngine, candidates: Candidates, *, warmup: int, repeats: int) -> Dict[str, List[float]]:
    times: Dict[str, List[float]] = {"dispatch": [], "readback": [], "boxes": []}
    for i in range(warmup + repeats):
        engine.reset()
        _sync(engine.device)
        t0 = time.perf_counter()
        engine.dispatch(candidates)
        _sync(engine.device)
        t1 = time.perf_counter()
        result = readback(engine.buffers)
        t2 = time.perf_counter()
        if i < warmup:
            continue
        times["dispatch"].append(t1 - t0)
        times["readback"].append(t2 - t1)
        times["boxes"].append(float(result.boxes_found))
    return times


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Benchmark the NMS engine on synthetic candidates: torch substrate vs host thread pool."
    )
    parser.add_argument("--num-candidates", type=int, default=8400)
    parser.add_argument("--classes", type=int, default=80)
    parser.add_argument("--conf", type=float, default=0.5)
    parser.add_argument("--iou", type=float, default=0.5)
    parser.add_argument("--max-boxes", type=int, default=200)
    parser.add_argument("--workgroup-size", type=int, default=64)
    parser.add_argument("--per-class-nms", action="store_true")
    parser.add_argument("--device", default="auto", help="Device for the torch substrate: auto / cpu / cuda.")
    parser.add_argument("--substrates", default="torch,host", help="Comma-separated substrates to run.")
    parser.add_argument("--host-workers", type=int, default=None)
    parser.add_argument("--warmup", type=int, default=3)
    parser.add_argument("--repeats", type=int, default=20)
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    if args.num_candidates < 1:
        raise ValueError("--num-candidates must be >= 1")
    if args.classes < 1:
        raise ValueError("--classes must be >= 1")
    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")
    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")

    cfg = NMSConfig(
        score_threshold=float(args.conf),
        iou_threshold=float(args.iou),
        max_boxes=int(args.max_boxes),
        num_candidates=int(args.num_candidates),
        workgroup_size=int(args.workgroup_size),
        class_agnostic=not bool(args.per_class_nms),
    )

    for substrate in [s.strip() for s in str(args.substrates).split(",") if s.strip()]:
        with GpuNMSEngine(cfg, device=args.device, substrate=substrate, host_workers=args.host_workers) as engine:
            candidates = _synthetic_candidates(
                cfg.num_candidates, int(args.classes), seed=int(args.seed), device=engine.device
            )
            times = _bench(engine, candidates, warmup=int(args.warmup), repeats=int(args.repeats))

        label = f"{substrate}[{engine.device}]"
        print(format_summary(f"{label} dispatch", summarize_ms(times["dispatch"])))
        print(format_summary(f"{label} readback", summarize_ms(times["readback"])))
        print(f"{label} boxes_found={int(times['boxes'][-1])} groups={cfg.num_groups}x{cfg.workgroup_size}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
