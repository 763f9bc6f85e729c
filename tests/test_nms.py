import unittest

import numpy as np
import torch

from yolo_gpu_kit import Candidates, GpuNMSEngine, NMSConfig, readback
from yolo_gpu_kit.nms import dispatch_groups


def _candidates(centers, scores, class_ids=None) -> Candidates:
    centers = np.asarray(centers, dtype=np.float32).reshape(-1, 4)
    if class_ids is None:
        class_ids = np.zeros(len(centers), dtype=np.int32)
    return Candidates.from_centers(centers, np.asarray(class_ids), np.asarray(scores, dtype=np.float32))


def _clustered(n: int = 256, seed: int = 7) -> Candidates:
    rng = np.random.default_rng(seed)
    anchors = rng.uniform(50, 590, size=(12, 2))
    picks = rng.integers(0, len(anchors), size=n)
    xy = anchors[picks] + rng.normal(0.0, 5.0, size=(n, 2))
    wh = rng.uniform(30, 70, size=(n, 2))
    scores = rng.uniform(0.0, 1.0, size=n)
    class_ids = rng.integers(0, 3, size=n)
    return _candidates(np.concatenate([xy, wh], axis=1), scores, class_ids)


def _survivor_set(result) -> set:
    return {
        (tuple(np.round(c, 3).tolist()), int(l), round(float(s), 5))
        for c, l, s in zip(result.coords, result.labels, result.scores)
    }


class NMSEngineCases:
    """Shared cases; subclasses pick the substrate."""

    substrate = "torch"

    def _engine(self, n: int, **kwargs) -> GpuNMSEngine:
        cfg = NMSConfig(num_candidates=n, **kwargs)
        engine = GpuNMSEngine(cfg, device="cpu", substrate=self.substrate, host_workers=4)
        self.addCleanup(engine.close)
        return engine

    def test_identical_boxes_keep_higher_score(self) -> None:
        c = _candidates([[100, 100, 50, 50], [100, 100, 50, 50]], [0.9, 0.8])
        result = self._engine(2).run(c)
        self.assertEqual(result.boxes_found, 1)
        self.assertAlmostEqual(float(result.scores[0]), 0.9, places=5)
        self.assertTrue(np.allclose(result.coords[0], [100, 100, 50, 50]))

    def test_equal_scores_keep_lower_index(self) -> None:
        c = _candidates([[100, 100, 50, 50], [100, 100, 50, 50]], [0.7, 0.7], [4, 4])
        result = self._engine(2).run(c)
        self.assertEqual(result.boxes_found, 1)

    def test_iou_at_threshold_suppresses(self) -> None:
        # IoU of these two boxes is exactly 0.5.
        c = _candidates([[5, 5, 10, 10], [5, 2.5, 10, 5]], [0.9, 0.8])
        self.assertEqual(self._engine(2, iou_threshold=0.5).run(c).boxes_found, 1)
        self.assertEqual(self._engine(2, iou_threshold=0.51).run(c).boxes_found, 2)

    def test_below_threshold_is_pruned(self) -> None:
        c = _candidates([[100, 100, 50, 50], [300, 300, 20, 20]], [0.4, 0.6])
        result = self._engine(2, score_threshold=0.5).run(c)
        self.assertEqual(result.boxes_found, 1)
        self.assertAlmostEqual(float(result.scores[0]), 0.6, places=5)

    def test_all_below_threshold(self) -> None:
        c = _candidates([[100, 100, 50, 50]] * 4, [0.1, 0.2, 0.3, 0.4])
        result = self._engine(4).run(c)
        self.assertEqual(result.boxes_found, 0)
        self.assertEqual(result.coords.shape, (0, 4))
        self.assertFalse(result.overflowed)

    def test_score_at_threshold_is_eligible(self) -> None:
        c = _candidates([[100, 100, 50, 50]], [0.5])
        self.assertEqual(self._engine(1, score_threshold=0.5).run(c).boxes_found, 1)

    def test_cap_enforced(self) -> None:
        # 500 disjoint qualifying boxes on a 25 x 20 grid.
        xs, ys = np.meshgrid(np.arange(25) * 20 + 10, np.arange(20) * 20 + 10)
        centers = np.stack([xs.ravel(), ys.ravel(), np.full(500, 10), np.full(500, 10)], axis=1)
        c = _candidates(centers, np.full(500, 0.9))
        engine = self._engine(500, max_boxes=200)
        result = engine.run(c)
        self.assertEqual(result.raw_count, 500)
        self.assertEqual(result.boxes_found, 200)
        self.assertTrue(result.overflowed)
        self.assertEqual(result.coords.shape, (200, 4))
        self.assertEqual(tuple(engine.buffers.coords.shape), (200, 4))

    def test_score_threshold_monotonic(self) -> None:
        c = _clustered()
        counts = [self._engine(256, score_threshold=t).run(c).boxes_found for t in (0.1, 0.3, 0.5, 0.7, 0.9)]
        self.assertEqual(counts, sorted(counts, reverse=True))

    def test_iou_threshold_monotonic(self) -> None:
        c = _clustered()
        counts = [self._engine(256, iou_threshold=t).run(c).boxes_found for t in (0.1, 0.3, 0.5, 0.7, 0.9)]
        self.assertEqual(counts, sorted(counts))

    def test_deterministic_after_reset(self) -> None:
        c = _clustered()
        engine = self._engine(256)
        first = engine.run(c)
        second = engine.run(c)
        self.assertEqual(first.boxes_found, second.boxes_found)
        self.assertEqual(_survivor_set(first), _survivor_set(second))

    def test_dispatch_requires_reset(self) -> None:
        c = _clustered()
        engine = self._engine(256)
        engine.reset()
        engine.dispatch(c)
        with self.assertRaises(RuntimeError):
            engine.dispatch(c)

    def test_per_class_suppression(self) -> None:
        c = _candidates([[100, 100, 50, 50], [100, 100, 50, 50]], [0.9, 0.8], [0, 1])
        self.assertEqual(self._engine(2).run(c).boxes_found, 1)
        result = self._engine(2, class_agnostic=False).run(c)
        self.assertEqual(result.boxes_found, 2)
        self.assertEqual(sorted(result.labels.tolist()), [0, 1])

    def test_class_allow_list(self) -> None:
        c = _candidates([[100, 100, 50, 50], [300, 300, 50, 50]], [0.9, 0.8], [0, 2])
        result = self._engine(2, class_ids=[2]).run(c)
        self.assertEqual(result.boxes_found, 1)
        self.assertEqual(int(result.labels[0]), 2)

    def test_candidate_count_mismatch(self) -> None:
        c = _candidates([[100, 100, 50, 50]], [0.9])
        with self.assertRaises(ValueError):
            self._engine(2).run(c)


class TestTorchSubstrate(NMSEngineCases, unittest.TestCase):
    substrate = "torch"

    def test_small_passes_match_single_pass(self) -> None:
        c = _clustered()
        big = self._engine(256).run(c)
        small = self._engine(256, workgroup_size=8, groups_per_pass=1).run(c)
        self.assertEqual(_survivor_set(big), _survivor_set(small))


class TestHostSubstrate(NMSEngineCases, unittest.TestCase):
    substrate = "host"

    def test_matches_torch_substrate(self) -> None:
        c = _clustered(seed=11)
        host = self._engine(256, class_agnostic=False).run(c)
        torch_engine = GpuNMSEngine(NMSConfig(num_candidates=256, class_agnostic=False), device="cpu")
        self.addCleanup(torch_engine.close)
        self.assertEqual(_survivor_set(host), _survivor_set(torch_engine.run(c)))


class TestNMSConfig(unittest.TestCase):
    def test_dispatch_groups(self) -> None:
        self.assertEqual(dispatch_groups(8400, 64), 132)
        self.assertEqual(dispatch_groups(64, 64), 1)
        self.assertEqual(dispatch_groups(65, 64), 2)
        self.assertEqual(NMSConfig().num_groups, 132)

    def test_invalid_values(self) -> None:
        for kwargs in ({"score_threshold": 1.5}, {"iou_threshold": -0.1}, {"max_boxes": 0}, {"workgroup_size": 0}):
            with self.assertRaises(ValueError):
                NMSConfig(**kwargs)

    def test_class_ids_become_tuple(self) -> None:
        self.assertEqual(NMSConfig(class_ids=[1, 2]).class_ids, (1, 2))

    def test_unknown_substrate(self) -> None:
        with self.assertRaises(ValueError):
            GpuNMSEngine(NMSConfig(num_candidates=4), device="cpu", substrate="opencl")


class TestReadbackAfterEngine(unittest.TestCase):
    def test_readback_uses_engine_buffers(self) -> None:
        c = _candidates([[100, 100, 50, 50], [400, 400, 50, 50]], [0.9, 0.8], [1, 2])
        with GpuNMSEngine(NMSConfig(num_candidates=2), device="cpu") as engine:
            engine.reset()
            engine.dispatch(c)
            result = readback(engine.buffers)
        self.assertEqual(result.boxes_found, 2)
        self.assertEqual(sorted(result.labels.tolist()), [1, 2])


if __name__ == "__main__":
    unittest.main()
