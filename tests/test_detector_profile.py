import json
import tempfile
import unittest
from pathlib import Path

from Stream_Detection.config import DetectorProfile, load_detector_profile


BASE = {
    "schema_version": 1,
    "score_threshold": 0.4,
    "iou_threshold": 0.45,
    "max_boxes": 100,
    "num_candidates": 8400,
    "image_width": 640,
    "image_height": 640,
}


class TestDetectorProfile(unittest.TestCase):
    def _write_profile(self, payload: dict) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "profile.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_load_ok(self) -> None:
        profile = load_detector_profile(self._write_profile({**BASE, "workgroup_size": 128, "notes": "yard cam"}))
        self.assertIsInstance(profile, DetectorProfile)
        self.assertEqual(profile.score_threshold, 0.4)
        self.assertEqual(profile.max_boxes, 100)
        self.assertEqual(profile.workgroup_size, 128)
        self.assertEqual(profile.notes, "yard cam")

    def test_optional_keys_default(self) -> None:
        profile = load_detector_profile(self._write_profile(BASE))
        self.assertIsNone(profile.workgroup_size)
        self.assertIsNone(profile.notes)

    def test_unknown_keys_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_detector_profile(self._write_profile({**BASE, "extra": 1}))

    def test_missing_key_rejected(self) -> None:
        payload = dict(BASE)
        del payload["max_boxes"]
        with self.assertRaises(ValueError):
            load_detector_profile(self._write_profile(payload))

    def test_wrong_types_rejected(self) -> None:
        for key, value in (("max_boxes", 10.5), ("score_threshold", "high"), ("image_width", True)):
            with self.subTest(key=key):
                with self.assertRaises(ValueError):
                    load_detector_profile(self._write_profile({**BASE, key: value}))

    def test_out_of_range_rejected(self) -> None:
        for key, value in (("score_threshold", 1.5), ("iou_threshold", -0.1), ("max_boxes", 0), ("image_height", 16)):
            with self.subTest(key=key):
                with self.assertRaises(ValueError):
                    load_detector_profile(self._write_profile({**BASE, key: value}))

    def test_schema_version(self) -> None:
        with self.assertRaises(ValueError):
            load_detector_profile(self._write_profile({**BASE, "schema_version": 2}))

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_detector_profile(Path(tempfile.gettempdir()) / "no_such_profile.json")

    def test_invalid_json(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "profile.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_detector_profile(path)


if __name__ == "__main__":
    unittest.main()
