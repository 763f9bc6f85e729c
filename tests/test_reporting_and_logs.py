import json
import logging
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from Stream_Detection.logs import setup_logging
from Stream_Detection.reporting import file_metadata, today_date_str, write_run_config, write_run_summary
from yolo_gpu_kit.stats import FrameStats, percentile, summarize_ms


class TestReporting(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.out_dir = Path(tmpdir.name)

    def test_write_run_config_and_summary(self) -> None:
        cfg_path = write_run_config(out_dir=self.out_dir, date="2026-01-02", run_config={"substrate": "torch"})
        sum_path = write_run_summary(out_dir=self.out_dir, date="2026-01-02", summary={"processed": 3})
        self.assertEqual(cfg_path, self.out_dir / "reports" / "2026-01-02" / "run_config.json")
        self.assertEqual(json.loads(cfg_path.read_text(encoding="utf-8")), {"substrate": "torch"})
        self.assertEqual(json.loads(sum_path.read_text(encoding="utf-8")), {"processed": 3})

    def test_file_metadata(self) -> None:
        path = self.out_dir / "model.onnx"
        path.write_bytes(b"abc")
        meta = file_metadata(path)
        self.assertTrue(meta["exists"])
        self.assertEqual(meta["size_bytes"], 3)
        self.assertEqual(meta["sha256"], "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad")
        self.assertFalse(file_metadata(self.out_dir / "missing.onnx")["exists"])

    def test_today_date_str(self) -> None:
        self.assertEqual(today_date_str(datetime(2026, 3, 4, 5, 6)), "2026-03-04")


class TestSetupLogging(unittest.TestCase):
    def tearDown(self) -> None:
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

    def test_file_handler(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        log_path = Path(tmpdir.name) / "logs" / "run.log"
        setup_logging("debug", log_path)
        logging.getLogger("yolo_gpu_kit.test").debug("hello")
        for handler in logging.getLogger().handlers:
            handler.flush()
        text = log_path.read_text(encoding="utf-8")
        self.assertIn("yolo_gpu_kit.test - DEBUG - hello", text)

    def test_unknown_level(self) -> None:
        with self.assertRaises(ValueError):
            setup_logging("chatty")


class TestStats(unittest.TestCase):
    def test_percentile(self) -> None:
        self.assertEqual(percentile([1.0, 2.0, 3.0, 4.0], 50.0), 2.5)
        with self.assertRaises(ValueError):
            percentile([], 50.0)

    def test_summarize_ms(self) -> None:
        s = summarize_ms([0.001, 0.003])
        self.assertEqual(s.n, 2)
        self.assertAlmostEqual(s.mean_ms, 2.0)
        self.assertEqual(summarize_ms([]).n, 0)

    def test_frame_stats_summary(self) -> None:
        stats = FrameStats(ticks=3, processed=2, skipped=1)
        stats.record("nms", 0.002)
        summary = stats.summary()
        self.assertEqual(summary["processed"], 2)
        self.assertEqual(summary["timings_ms"]["nms"]["n"], 1)

    def test_frame_stats_keeps_recent_window(self) -> None:
        stats = FrameStats(timing_window=10)
        for i in range(1000):
            stats.record("nms", i / 1000.0)
        self.assertEqual(len(stats.timings_s["nms"]), 10)
        self.assertEqual(list(stats.timings_s["nms"]), [i / 1000.0 for i in range(990, 1000)])
        summary = stats.summary()
        self.assertEqual(summary["timings_ms"]["nms"]["n"], 10)
        self.assertAlmostEqual(summary["timings_ms"]["nms"]["p50_ms"], 994.5)

    def test_frame_stats_rejects_empty_window(self) -> None:
        with self.assertRaises(ValueError):
            FrameStats(timing_window=0)


if __name__ == "__main__":
    unittest.main()
