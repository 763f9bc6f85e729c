from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
from tqdm import tqdm

from Stream_Detection.config import DetectorProfile, load_detector_profile
from Stream_Detection.ingest import VideoFrameSource, get_capture_info
from Stream_Detection.logs import setup_logging
from Stream_Detection.overlay import BoxOverlay
from Stream_Detection.reporting import file_metadata, today_date_str, write_run_config, write_run_summary
from Stream_Detection.run_config import apply_run_config, collect_cli_dests, load_run_config
from yolo_gpu_kit import LetterboxConfig, NMSConfig, load_pipeline
from yolo_gpu_kit.backends.onnxruntime_backend import parse_providers
from yolo_gpu_kit.nms import SUBSTRATES
from yolo_gpu_kit.runtime import FrameTickDriver, resolve_path
from yolo_gpu_kit.stats import format_summary, summarize_ms


logger = logging.getLogger(__name__)

DEFAULT_IMGSZ = 640
DEFAULT_DISPLAY = (1280, 720)
WINDOW_NAME = "Stream Detection"
MAX_CONSECUTIVE_FAILURES = 30
MAX_CONSECUTIVE_MISSES = 300
MISS_BACKOFF_S = 0.01

# Profile key -> CLI dest it fills when neither the command line nor the run config set it.
_PROFILE_TO_ARG = {
    "score_threshold": "conf",
    "iou_threshold": "iou",
    "max_boxes": "max_boxes",
    "num_candidates": "num_candidates",
    "workgroup_size": "workgroup_size",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Real-time YOLO detection with NMS on the inference device.")
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--video", type=str, default=None, help="Path to a video file (loops by default).")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index.")

    parser.add_argument("--config", type=str, default=None, help="JSON run config; command-line flags win.")
    parser.add_argument("--profile", type=str, default=None, help="Detector profile JSON (thresholds, sizes).")

    parser.add_argument("--model", type=str, default="models/yolov8n.onnx")
    parser.add_argument("--labels", type=str, default="models/classes.txt", help="classes.txt or metadata.yaml")
    parser.add_argument("--backend", type=str, default=None, choices=["onnxruntime", "torchscript", "tensorrt"])
    parser.add_argument("--device", type=str, default="auto", help="auto | cpu | cuda | cuda:N")
    parser.add_argument("--substrate", type=str, default="torch", choices=list(SUBSTRATES))
    parser.add_argument("--onnx-providers", type=str, default=None, help="Comma-separated ORT providers.")
    parser.add_argument(
        "--require-onnx-provider",
        action="append",
        default=None,
        help="Fail at startup unless this ORT provider is active (repeatable).",
    )
    parser.add_argument("--torch-half", action="store_true", help="Run TorchScript models in fp16.")

    parser.add_argument("--imgsz", type=int, default=None, help=f"Square model input size (default {DEFAULT_IMGSZ}).")
    parser.add_argument("--conf", type=float, default=None)
    parser.add_argument("--iou", type=float, default=None)
    parser.add_argument("--max-boxes", type=int, default=None)
    parser.add_argument("--num-candidates", type=int, default=None, help="Defaults to the anchor count of --imgsz.")
    parser.add_argument("--workgroup-size", type=int, default=None)
    parser.add_argument("--per-class-nms", action="store_true", help="Only suppress boxes of the same class.")

    parser.add_argument("--display-width", type=int, default=None)
    parser.add_argument("--display-height", type=int, default=None)
    parser.add_argument("--show", action="store_true", help="Show a window (ESC or q quits).")
    parser.add_argument("--show-score", action="store_true")
    parser.add_argument("--save-video", action="store_true", help="Write the annotated display stream.")
    parser.add_argument("--out-dir", type=str, default="outputs")
    parser.add_argument("--max-frames", type=int, default=None)
    parser.add_argument("--no-loop", action="store_true", help="Stop at the end of a video file.")

    parser.add_argument("--log-level", type=str, default="INFO")
    parser.add_argument("--log-file", type=str, default=None)
    parser.add_argument("--progress", action="store_true", help="Show a tqdm progress bar.")
    return parser


def anchor_count(width: int, height: int, strides: Sequence[int] = (8, 16, 32)) -> int:
    """Candidates a YOLOv8-style head emits for a (width, height) input."""
    return sum((width // s) * (height // s) for s in strides)


def apply_profile(args: argparse.Namespace, profile: DetectorProfile, *, explicit: set[str]) -> None:
    for key, dest in _PROFILE_TO_ARG.items():
        value = getattr(profile, key)
        if value is None or dest in explicit:
            continue
        setattr(args, dest, value)


def resolve_input_size(args: argparse.Namespace, profile: Optional[DetectorProfile]) -> Tuple[int, int]:
    if args.imgsz is not None:
        return int(args.imgsz), int(args.imgsz)
    if profile is not None:
        return profile.image_width, profile.image_height
    return DEFAULT_IMGSZ, DEFAULT_IMGSZ


def build_nms_config(args: argparse.Namespace, input_size: Tuple[int, int]) -> NMSConfig:
    defaults = NMSConfig()
    num_candidates = args.num_candidates
    if num_candidates is None:
        num_candidates = anchor_count(*input_size)
    return NMSConfig(
        score_threshold=defaults.score_threshold if args.conf is None else float(args.conf),
        iou_threshold=defaults.iou_threshold if args.iou is None else float(args.iou),
        max_boxes=defaults.max_boxes if args.max_boxes is None else int(args.max_boxes),
        num_candidates=int(num_candidates),
        workgroup_size=defaults.workgroup_size if args.workgroup_size is None else int(args.workgroup_size),
        class_agnostic=not args.per_class_nms,
    )


def resolve_display_size(args: argparse.Namespace, source_size: Tuple[Optional[int], Optional[int]]) -> Tuple[int, int]:
    w = args.display_width or source_size[0] or DEFAULT_DISPLAY[0]
    h = args.display_height or source_size[1] or DEFAULT_DISPLAY[1]
    if w <= 0 or h <= 0:
        raise ValueError("--display-width/--display-height must be > 0")
    return int(w), int(h)


def run_stream(
    args: argparse.Namespace,
    *,
    config_path: Optional[Path],
    config_payload: Optional[Dict[str, object]],
    explicit: Optional[set[str]] = None,
) -> int:
    if (args.video is None) == (args.webcam is None):
        raise ValueError("Exactly one source must be set: --video or --webcam (or via --config).")
    if args.max_frames is not None and args.max_frames <= 0:
        raise ValueError("--max-frames must be > 0")

    profile: Optional[DetectorProfile] = None
    if args.profile:
        profile = load_detector_profile(Path(args.profile))
        apply_profile(args, profile, explicit=explicit or set())

    input_size = resolve_input_size(args, profile)
    nms_cfg = build_nms_config(args, input_size)

    pipeline = load_pipeline(
        args.model,
        args.labels,
        backend=args.backend,
        nms_cfg=nms_cfg,
        letterbox_cfg=LetterboxConfig(new_shape=input_size),
        device=args.device,
        substrate=args.substrate,
        onnx_providers=parse_providers(args.onnx_providers),
        require_onnx_providers=tuple(args.require_onnx_provider or ()),
        torch_half=bool(args.torch_half),
    )

    try:
        source = VideoFrameSource.open(video=args.video, webcam=args.webcam, loop=not args.no_loop)
    except Exception:
        pipeline.close()
        raise

    writer: Optional[cv2.VideoWriter] = None
    video_path: Optional[Path] = None
    window_open = False
    pbar = None
    try:
        info = get_capture_info(source.cap)
        display_w, display_h = resolve_display_size(args, (info.width, info.height))
        overlay = BoxOverlay(display_w, display_h, show_score=bool(args.show_score))
        driver = FrameTickDriver(pipeline, source, overlay)
        mapping = pipeline.mapping_for(overlay.display_size)

        date = today_date_str()
        out_dir = Path(args.out_dir)
        run_config: Dict[str, object] = {
            "source": {"video": args.video, "webcam": args.webcam, "loop": source.loop},
            "capture": asdict(info),
            "model": file_metadata(resolve_path(args.model)),
            "labels": {"path": args.labels, "count": len(pipeline.labels)},
            "backend": pipeline.adapter.backend_name,
            "device": str(pipeline.engine.device),
            "substrate": pipeline.engine.substrate,
            "nms": asdict(nms_cfg),
            "input_size": list(input_size),
            "display_size": [display_w, display_h],
            "config": {"path": str(config_path), "data": config_payload} if config_path else {"path": None},
            "profile": {"path": args.profile, "data": asdict(profile)} if profile else {"path": None},
        }

        if args.save_video:
            report_dir = out_dir / "reports" / date
            report_dir.mkdir(parents=True, exist_ok=True)
            video_path = report_dir / "annotated.mp4"
            fourcc = cv2.VideoWriter_fourcc(*"mp4v")
            writer = cv2.VideoWriter(str(video_path), fourcc, info.fps or 30.0, (display_w, display_h))
            if not writer.isOpened():
                raise RuntimeError(f"Failed to open video writer: {video_path}")

        if args.show:
            cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
            window_open = True

        if args.progress:
            total = args.max_frames
            if total is None and args.no_loop and info.frame_count:
                total = info.frame_count
            pbar = tqdm(total=total, unit="frame", desc="detect")

        quit_requested = False
        consecutive_failures = 0
        consecutive_misses = 0
        wall_start = time.perf_counter()
        while args.max_frames is None or driver.stats.processed < args.max_frames:
            skipped_before = driver.stats.skipped
            result = driver.tick()
            if result is None:
                if driver.stats.skipped > skipped_before:
                    if source.exhausted:
                        logger.info("End of video; stopping.")
                        break
                    # Live sources miss reads while starting up or under load.
                    consecutive_misses += 1
                    if consecutive_misses >= MAX_CONSECUTIVE_MISSES:
                        logger.warning("No frame from source for %d ticks; stopping.", consecutive_misses)
                        break
                    time.sleep(MISS_BACKOFF_S)
                    continue
                consecutive_failures += 1
                if consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
                    raise RuntimeError(f"{consecutive_failures} consecutive frames failed; aborting.")
                continue
            consecutive_failures = 0
            consecutive_misses = 0

            if writer is not None or args.show:
                canvas = cv2.resize(result.image, (display_w, display_h), interpolation=cv2.INTER_LINEAR)
                vis = overlay.render(canvas, mapping)
                if writer is not None:
                    writer.write(vis)
                if args.show:
                    cv2.imshow(WINDOW_NAME, vis)
                    key = cv2.waitKey(1) & 0xFF
                    if key in (27, ord("q")):
                        quit_requested = True

            if pbar is not None:
                pbar.update(1)
                pbar.set_postfix(boxes=result.detections.boxes_found)
            if quit_requested:
                logger.info("Quit requested from window.")
                break
    finally:
        source.release()
        pipeline.close()
        if writer is not None:
            writer.release()
        if window_open:
            cv2.destroyAllWindows()
        if pbar is not None:
            pbar.close()

    wall_s = time.perf_counter() - wall_start
    summary = driver.stats.summary()
    summary["wall_seconds"] = wall_s
    summary["fps"] = (driver.stats.processed / wall_s) if wall_s > 0 else 0.0
    summary["loop_count"] = source.loop_count
    if video_path is not None:
        run_config["annotated_video"] = file_metadata(video_path)

    run_config_path = write_run_config(out_dir=out_dir, date=date, run_config=run_config)
    summary_path = write_run_summary(out_dir=out_dir, date=date, summary=summary)

    logger.info(
        "Processed %d frames (%d skipped, %d boxes, %d overflow frames) at %.1f fps",
        driver.stats.processed,
        driver.stats.skipped,
        driver.stats.boxes,
        driver.stats.overflow_frames,
        summary["fps"],
    )
    for stage, values in driver.stats.timings_s.items():
        logger.info(format_summary(stage, summarize_ms(values)))
    logger.info("Wrote run config: %s", run_config_path)
    logger.info("Wrote run summary: %s", summary_path)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)
    cli_dests = collect_cli_dests(parser, argv)

    config_path: Optional[Path] = None
    config_payload: Optional[Dict[str, object]] = None
    if args.config:
        config_path = Path(args.config)
        config_payload = load_run_config(config_path)
        apply_run_config(args=args, payload=config_payload, cli_dests=cli_dests, parser=parser)

    # Values set on the command line or in the run config outrank the detector profile.
    explicit = set(cli_dests)
    if config_payload:
        explicit.update(k for k, v in config_payload.items() if v is not None)
    setup_logging(args.log_level, args.log_file)
    return run_stream(args, config_path=config_path, config_payload=config_payload, explicit=explicit)
