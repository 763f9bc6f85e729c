from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .adapter import InferenceAdapter
from .backends import InferenceBackend
from .device import DeviceLike
from .geometry import DisplayMapping
from .letterbox import LetterboxConfig, letterbox
from .metadata import load_labels
from .nms import GpuNMSEngine, NMSConfig
from .postprocess import YoloGraphConfig, YoloOutputGraph
from .readback import ReadbackResult, map_to_display, readback
from .stats import FrameStats
from .types import DisplayBox


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """
    Walk up from `start` (default: cwd) to the first directory holding a marker.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Absolute paths are returned as-is; relative ones resolve against `root`,
    or against the project root when `root` is "auto"/None.
    """

    p = Path(path)
    if p.is_absolute():
        return p
    base = find_project_root() if root in ("auto", None) else Path(root).resolve()
    return (base / p).resolve()


@dataclass(frozen=True)
class PreprocessResult:
    blob: np.ndarray
    image: np.ndarray


@dataclass(frozen=True)
class FrameResult:
    frame_index: int
    image: np.ndarray
    detections: ReadbackResult
    boxes: List[DisplayBox]


class FrameSource(Protocol):
    def read(self) -> Optional[np.ndarray]:
        """Current BGR frame, or None when no new frame is available."""
        ...


class PresentationSink(Protocol):
    @property
    def display_size(self) -> Tuple[float, float]:
        ...

    def clear(self) -> None:
        ...

    def draw_box(self, box: DisplayBox, index: int, font_size: float) -> None:
        ...


class FramePipeline:
    """
    preprocess -> inference adapter -> device NMS -> readback -> display mapping.

    Expects BGR frames (OpenCV-style). The preprocessed model-size image is kept
    in the result because it is what the presentation layer displays.
    """

    def __init__(
        self,
        adapter: InferenceAdapter,
        engine: GpuNMSEngine,
        labels: Sequence[str],
        *,
        letterbox_cfg: LetterboxConfig = LetterboxConfig(),
    ):
        self.adapter = adapter
        self.engine = engine
        self.labels = tuple(labels)
        self.letterbox_cfg = letterbox_cfg

    @property
    def image_size(self) -> Tuple[int, int]:
        return self.letterbox_cfg.new_shape

    def preprocess(self, image_bgr: np.ndarray) -> PreprocessResult:
        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise TypeError("image_bgr must be a NumPy array (BGR).")
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

        img = letterbox(image_bgr, self.letterbox_cfg).image
        # BGR -> RGB, normalize, HWC -> CHW, add batch
        blob = img[:, :, ::-1].astype(np.float32) / 255.0
        blob = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])
        return PreprocessResult(blob=blob, image=img)

    def detect(self, blob: np.ndarray) -> ReadbackResult:
        candidates = self.adapter(blob)
        self.engine.reset()
        self.engine.dispatch(candidates)
        return readback(self.engine.buffers)

    def mapping_for(self, display_size: Tuple[float, float]) -> DisplayMapping:
        w, h = self.image_size
        return DisplayMapping(image_width=w, image_height=h, display_width=display_size[0], display_height=display_size[1])

    def __call__(self, image_bgr: np.ndarray, display_size: Optional[Tuple[float, float]] = None) -> List[DisplayBox]:
        result = self.detect(self.preprocess(image_bgr).blob)
        return map_to_display(result, self.mapping_for(display_size or self.image_size), self.labels)

    def close(self) -> None:
        self.engine.close()


class FrameTickDriver:
    """
    One call to `tick()` per display frame; frames never overlap because the
    NMS buffers are reused in place.
    """

    font_fraction = 0.05

    def __init__(self, pipeline: FramePipeline, source: FrameSource, sink: PresentationSink):
        self.pipeline = pipeline
        self.source = source
        self.sink = sink
        self.stats = FrameStats()

    def tick(self) -> Optional[FrameResult]:
        self.stats.ticks += 1
        self.sink.clear()

        frame = self.source.read()
        if frame is None:
            self.stats.skipped += 1
            return None

        t0 = time.perf_counter()
        try:
            prep = self.pipeline.preprocess(frame)
            t1 = time.perf_counter()
            candidates = self.pipeline.adapter(prep.blob)
            t2 = time.perf_counter()
            self.pipeline.engine.reset()
            self.pipeline.engine.dispatch(candidates)
            t3 = time.perf_counter()
            result = readback(self.pipeline.engine.buffers)
            t4 = time.perf_counter()
        except RuntimeError:
            # Runtime failures drop this frame only; the next tick starts from a reset.
            self.stats.failed += 1
            logger.warning("Frame %d failed; skipping.", self.stats.ticks, exc_info=True)
            return None

        display_w, display_h = self.sink.display_size
        boxes = map_to_display(result, self.pipeline.mapping_for((display_w, display_h)), self.pipeline.labels)
        font_size = display_h * self.font_fraction
        for n, box in enumerate(boxes):
            self.sink.draw_box(box, n, font_size)

        self.stats.processed += 1
        self.stats.boxes += result.boxes_found
        if result.overflowed:
            self.stats.overflow_frames += 1
        for stage, seconds in (("preprocess", t1 - t0), ("inference", t2 - t1), ("nms", t3 - t2), ("readback", t4 - t3)):
            self.stats.record(stage, seconds)

        return FrameResult(frame_index=self.stats.processed, image=prep.image, detections=result, boxes=boxes)


def infer_backend_name(model_path: Path) -> str:
    suffix = model_path.suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".engine", ".plan"}:
        return "tensorrt"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def _open_backend(
    name: str,
    model_path: Path,
    *,
    device: DeviceLike,
    onnx_providers: Optional[Sequence[str]],
    require_onnx_providers: Sequence[str],
    torch_half: bool,
    trt_output_index: int,
) -> InferenceBackend:
    if name == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        return OnnxRuntimeBackend(
            model_path,
            OnnxRuntimeBackendConfig(providers=onnx_providers, require_providers=tuple(require_onnx_providers)),
        )
    if name == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        return TorchScriptBackend(model_path, TorchScriptBackendConfig(device=device, half=torch_half))
    if name == "tensorrt":
        from .backends.tensorrt_backend import TensorRTBackend, TensorRTBackendConfig

        # Engines always run on CUDA; reuse the NMS device index when it is a GPU.
        trt_device = str(device) if str(device).startswith("cuda") else "cuda"
        return TensorRTBackend(model_path, TensorRTBackendConfig(device=trt_device, output_index=trt_output_index))
    raise ValueError(f"Unsupported backend: {name!r}")


def load_pipeline(
    model_path: PathLike,
    labels: Union[PathLike, Sequence[str]],
    *,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    nms_cfg: NMSConfig = NMSConfig(),
    letterbox_cfg: LetterboxConfig = LetterboxConfig(),
    graph_cfg: YoloGraphConfig = YoloGraphConfig(),
    device: DeviceLike = "auto",
    substrate: str = "torch",
    onnx_providers: Optional[Sequence[str]] = None,
    require_onnx_providers: Sequence[str] = (),
    torch_half: bool = False,
    trt_output_index: int = 0,
) -> FramePipeline:
    """
    Build every per-run resource up front: model session, label set, NMS
    buffers and kernel. Any failure here aborts startup.

        pipe = load_pipeline("models/yolov8n.onnx", "models/classes.txt")
    """

    resolved = resolve_path(model_path, root=root)
    chosen = (backend or infer_backend_name(resolved)).lower()

    engine = GpuNMSEngine(nms_cfg, device=device, substrate=substrate)
    graph = YoloOutputGraph(graph_cfg, device=engine.device)

    try:
        model = _open_backend(
            chosen,
            resolved,
            device=engine.device,
            onnx_providers=onnx_providers,
            require_onnx_providers=require_onnx_providers,
            torch_half=torch_half,
            trt_output_index=trt_output_index,
        )
        if isinstance(labels, (str, Path)):
            label_set = load_labels(resolve_path(labels, root=root))
        else:
            label_set = tuple(labels)
    except Exception:
        engine.close()
        raise

    w, h = letterbox_cfg.new_shape
    adapter = InferenceAdapter(model, graph, input_shape=(1, 3, h, w), backend_name=chosen)
    logger.info("Pipeline ready: backend=%s model=%s input=%dx%d labels=%d", chosen, resolved, w, h, len(label_set))
    return FramePipeline(adapter, engine, label_set, letterbox_cfg=letterbox_cfg)
