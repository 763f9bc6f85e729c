"""
Video stream layer built on top of `yolo_gpu_kit`.

Detection itself stays inside `yolo_gpu_kit`; this package covers the parts
around it:
- capture ingestion (looping video files, webcams)
- the pooled box overlay the frame driver draws into
- detector profiles and JSON run configs
- logging setup and run reporting
- the CLI runner
"""

from __future__ import annotations

from .config import DetectorProfile, load_detector_profile
from .ingest import CaptureInfo, VideoFrameSource, get_capture_info, open_capture
from .logs import setup_logging
from .overlay import BoxOverlay, BoxWidget
from .reporting import today_date_str, write_run_config, write_run_summary

__all__ = [
    "DetectorProfile",
    "load_detector_profile",
    "CaptureInfo",
    "VideoFrameSource",
    "get_capture_info",
    "open_capture",
    "setup_logging",
    "BoxOverlay",
    "BoxWidget",
    "today_date_str",
    "write_run_config",
    "write_run_summary",
]
