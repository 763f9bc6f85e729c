import tempfile
import unittest
from pathlib import Path

import numpy as np
import torch

from yolo_gpu_kit import LetterboxConfig, NMSConfig, load_pipeline
from yolo_gpu_kit.backends import InferenceBackend
from yolo_gpu_kit.backends.onnxruntime_backend import OnnxRuntimeBackend, parse_providers
from yolo_gpu_kit.backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig
from yolo_gpu_kit.device import resolve_device


class FixedHead(torch.nn.Module):
    """Returns the same raw output for any input."""

    def __init__(self, out: torch.Tensor):
        super().__init__()
        self.register_buffer("out", out)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.out.unsqueeze(0) + x.mean() * 0.0


def _raw_output() -> np.ndarray:
    p = np.zeros((6, 8), dtype=np.float32)
    p[0:4, :] = np.array([[48], [48], [4], [4]], dtype=np.float32)
    p[0:4, 0] = [32, 32, 16, 16]
    p[4, 0] = 0.9
    p[0:4, 3] = [10, 10, 8, 8]
    p[5, 3] = 0.7
    return p


class TestTorchScriptBackend(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.model_path = self.root / "head.torchscript"
        torch.jit.script(FixedHead(torch.from_numpy(_raw_output()))).save(str(self.model_path))
        (self.root / "classes.txt").write_text("person\ncar\n", encoding="utf-8")

    def test_infer_returns_device_tensor(self) -> None:
        backend = TorchScriptBackend(self.model_path, TorchScriptBackendConfig(device="cpu"))
        self.assertIsInstance(backend, InferenceBackend)
        out = backend.infer(np.zeros((1, 3, 64, 64), dtype=np.float32))
        self.assertIsInstance(out, torch.Tensor)
        self.assertEqual(tuple(out.shape), (1, 6, 8))

    def test_load_pipeline_end_to_end(self) -> None:
        pipeline = load_pipeline(
            "head.torchscript",
            "classes.txt",
            root=self.root,
            nms_cfg=NMSConfig(num_candidates=8),
            letterbox_cfg=LetterboxConfig(new_shape=(64, 64)),
            device="cpu",
        )
        self.addCleanup(pipeline.close)
        self.assertEqual(pipeline.adapter.backend_name, "torchscript")
        self.assertEqual(pipeline.labels, ("person", "car"))

        boxes = pipeline(np.zeros((120, 160, 3), dtype=np.uint8), (128, 128))
        by_label = {b.label: b for b in boxes}
        self.assertEqual(set(by_label), {"person", "car"})
        self.assertEqual(by_label["person"].width, 32.0)

    def test_load_pipeline_host_substrate(self) -> None:
        pipeline = load_pipeline(
            self.model_path,
            ["person", "car"],
            nms_cfg=NMSConfig(num_candidates=8),
            letterbox_cfg=LetterboxConfig(new_shape=(64, 64)),
            device="cpu",
            substrate="host",
        )
        self.addCleanup(pipeline.close)
        self.assertEqual(len(pipeline(np.zeros((64, 64, 3), dtype=np.uint8))), 2)

    def test_missing_model(self) -> None:
        with self.assertRaises(FileNotFoundError):
            TorchScriptBackend(self.root / "nope.torchscript")

    def test_missing_labels_abort_startup(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_pipeline(self.model_path, self.root / "missing.txt", nms_cfg=NMSConfig(num_candidates=8), device="cpu")

    def test_unsupported_backend(self) -> None:
        with self.assertRaises(ValueError):
            load_pipeline(self.model_path, ["a"], backend="openvino", device="cpu")


class TestOnnxRuntimeBackend(unittest.TestCase):
    def test_parse_providers(self) -> None:
        self.assertIsNone(parse_providers(None))
        self.assertIsNone(parse_providers(" , "))
        self.assertEqual(
            parse_providers("`CUDAExecutionProvider`, 'CPUExecutionProvider'"),
            ["CUDAExecutionProvider", "CPUExecutionProvider"],
        )

    def test_missing_model(self) -> None:
        with self.assertRaises(FileNotFoundError):
            OnnxRuntimeBackend(Path(tempfile.gettempdir()) / "no_such_model.onnx")


class TestResolveDevice(unittest.TestCase):
    def test_cpu(self) -> None:
        self.assertEqual(resolve_device("cpu"), torch.device("cpu"))

    def test_auto(self) -> None:
        expected = "cuda" if torch.cuda.is_available() else "cpu"
        self.assertEqual(resolve_device("auto").type, expected)

    @unittest.skipIf(torch.cuda.is_available(), "CUDA is available")
    def test_cuda_without_gpu_fails_at_startup(self) -> None:
        with self.assertRaises(RuntimeError):
            resolve_device("cuda")


if __name__ == "__main__":
    unittest.main()
