"""
Real-time YOLO detection with suppression done next to the model output.

Raw detector tensors are reshaped into per-box candidates, filtered by a
parallel NMS kernel into append buffers, and read back once per frame
through a single shared counter. Torch carries the device buffers; OpenCV
handles frames and drawing.
"""

from .types import Candidates, DisplayBox, SuppressedBox
from .geometry import DisplayMapping, center_to_corner, centers_to_corners, corners_to_centers
from .buffers import NMSOutputBuffers
from .nms import GpuNMSEngine, NMSConfig
from .readback import ReadbackResult, map_to_display, readback
from .postprocess import YoloGraphConfig, YoloOutputGraph
from .adapter import InferenceAdapter
from .letterbox import LetterboxConfig, letterbox
from .metadata import load_labels
from .runtime import FramePipeline, FrameTickDriver, find_project_root, load_pipeline, resolve_path
from .visualize import draw_display_boxes

__all__ = [
    "Candidates",
    "DisplayBox",
    "SuppressedBox",
    "DisplayMapping",
    "center_to_corner",
    "centers_to_corners",
    "corners_to_centers",
    "NMSOutputBuffers",
    "GpuNMSEngine",
    "NMSConfig",
    "ReadbackResult",
    "map_to_display",
    "readback",
    "YoloGraphConfig",
    "YoloOutputGraph",
    "InferenceAdapter",
    "LetterboxConfig",
    "letterbox",
    "load_labels",
    "FramePipeline",
    "FrameTickDriver",
    "find_project_root",
    "load_pipeline",
    "resolve_path",
    "draw_display_boxes",
]
