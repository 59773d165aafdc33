import unittest

import numpy as np

from detect_kit.errors import InferenceError
from detect_kit.postprocess import DetectionPostprocessor, PostprocessConfig, cxcywh_to_xyxy
from detect_kit.types import RawDetection


class TestDecode(unittest.TestCase):
    def test_decode_rows_layout(self) -> None:
        # (1, N, 4 + C): [cx, cy, w, h, class_scores...], 2 boxes, 3 classes
        p = np.array(
            [
                [
                    [50, 60, 10, 20, 0.1, 0.9, 0.2],  # class 1 (0.9)
                    [55, 66, 12, 18, 0.7, 0.1, 0.2],  # class 0 (0.7)
                ]
            ],
            dtype=np.float32,
        )
        post = DetectionPostprocessor(PostprocessConfig(layout="rows"))
        dets = post.decode(p, score_threshold=0.25)
        self.assertEqual(len(dets), 2)
        self.assertEqual(dets[0], RawDetection(cx=50.0, cy=60.0, w=10.0, h=20.0, score=dets[0].score, class_id=1))
        self.assertAlmostEqual(dets[0].score, 0.9, places=6)
        self.assertEqual(dets[1].class_id, 0)
        self.assertAlmostEqual(dets[1].score, 0.7, places=6)

    def test_decode_channels_first_layout(self) -> None:
        # (C + 4, A) like YOLOv8, 3 classes, 32 anchors
        a = 32
        boxes = np.zeros((4, a), dtype=np.float32)
        boxes[:, :] = np.array([[50], [60], [10], [20]], dtype=np.float32)
        boxes[:, 1] = [55, 66, 12, 18]

        class_scores = np.zeros((3, a), dtype=np.float32)
        class_scores[:, 0] = [0.1, 0.9, 0.2]
        class_scores[:, 1] = [0.7, 0.1, 0.2]

        p = np.vstack([boxes, class_scores])[None, ...]  # (1, 7, 32)
        post = DetectionPostprocessor(PostprocessConfig(layout="auto"))
        boxes_xyxy, scores, class_ids = post.decode_arrays(p, score_threshold=0.25)
        self.assertEqual(boxes_xyxy.shape, (2, 4))
        self.assertTrue(np.allclose(scores, [0.9, 0.7]))
        self.assertTrue(np.array_equal(class_ids, np.array([1, 0], dtype=np.int64)))
        self.assertTrue(np.allclose(boxes_xyxy[0], [45, 50, 55, 70]))
        self.assertTrue(np.allclose(boxes_xyxy[1], [49, 57, 61, 75]))

    def test_decode_with_objectness(self) -> None:
        # (N, 5 + C): [cx, cy, w, h, obj, class_scores...]
        p = np.array(
            [
                [50, 60, 10, 20, 0.5, 0.1, 0.9, 0.2],
                [55, 66, 12, 18, 0.8, 0.7, 0.1, 0.2],
            ],
            dtype=np.float32,
        )
        post = DetectionPostprocessor(PostprocessConfig(layout="rows", has_objectness=True))
        _, scores, class_ids = post.decode_arrays(p, score_threshold=0.0)
        self.assertTrue(np.allclose(scores, np.array([0.5 * 0.9, 0.8 * 0.7], dtype=np.float32)))
        self.assertTrue(np.array_equal(class_ids, np.array([1, 0], dtype=np.int64)))

    def test_threshold_is_inclusive(self) -> None:
        p = np.array([[10, 10, 4, 4, 0.1, 0.25], [10, 10, 4, 4, 0.2499, 0.1]], dtype=np.float32)
        post = DetectionPostprocessor(PostprocessConfig(layout="rows"))
        self.assertEqual(post.decode(p, score_threshold=0.5), [])

        dets = post.decode(p, score_threshold=0.25)
        self.assertEqual([d.class_id for d in dets], [1])
        self.assertEqual(len(post.decode(p, score_threshold=np.float32(0.2499))), 2)

    def test_argmax_tie_picks_lowest_class(self) -> None:
        p = np.array([[10, 10, 4, 4, 0.3, 0.8, 0.8, 0.8]], dtype=np.float32)
        dets = DetectionPostprocessor(PostprocessConfig(layout="rows")).decode(p, score_threshold=0.25)
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].class_id, 1)

    def test_nan_scores_are_dropped(self) -> None:
        p = np.array([[10, 10, 4, 4, np.nan, np.nan], [10, 10, 4, 4, 0.9, 0.1]], dtype=np.float32)
        dets = DetectionPostprocessor(PostprocessConfig(layout="rows")).decode(p, score_threshold=0.25)
        self.assertEqual(len(dets), 1)
        self.assertAlmostEqual(dets[0].score, 0.9, places=6)

    def test_class_allow_list(self) -> None:
        p = np.array([[10, 10, 4, 4, 0.9, 0.1], [20, 20, 4, 4, 0.1, 0.9]], dtype=np.float32)
        post = DetectionPostprocessor(PostprocessConfig(layout="rows", class_ids=[1]))
        dets = post.decode(p, score_threshold=0.25)
        self.assertEqual([d.class_id for d in dets], [1])

    def test_empty_output(self) -> None:
        post = DetectionPostprocessor()
        self.assertEqual(post.decode(np.zeros((1, 84, 0), dtype=np.float32), 0.25), [])
        boxes, scores, class_ids = post.decode_arrays(np.zeros((1, 0, 84), dtype=np.float32), 0.25)
        self.assertEqual(boxes.shape, (0, 4))
        self.assertEqual(scores.shape, (0,))
        self.assertEqual(class_ids.shape, (0,))

    def test_malformed_outputs_raise_inference_error(self) -> None:
        post = DetectionPostprocessor()
        bad = [
            np.zeros((2, 84, 100), dtype=np.float32),  # batch of 2
            np.zeros((1, 1, 84, 100), dtype=np.float32),
            np.zeros((84,), dtype=np.float32),
            np.zeros((1, 100, 4), dtype=np.float32),  # no class scores
            np.array([["a", "b"]]),
        ]
        for p in bad:
            with self.subTest(shape=p.shape):
                with self.assertRaises(InferenceError):
                    post.decode(p, 0.25)

    def test_invalid_layout_name(self) -> None:
        with self.assertRaises(ValueError):
            PostprocessConfig(layout="diagonal")

    def test_cxcywh_to_xyxy(self) -> None:
        out = cxcywh_to_xyxy(np.array([[100, 240, 100, 100]], dtype=np.float32))
        self.assertTrue(np.allclose(out, [[50, 190, 150, 290]]))

class TestAutoLayout(unittest.TestCase):
    def _cat_rows(self, num_rows: int, num_classes: int = 80) -> np.ndarray:
        rows = np.zeros((num_rows, 4 + num_classes), dtype=np.float32)
        rows[0, :4] = [320, 320, 100, 100]
        rows[0, 4 + 15] = 0.9
        return rows

    def test_fewer_rows_than_channels_are_rows(self) -> None:
        dets = DetectionPostprocessor().decode(self._cat_rows(50)[None, ...], 0.25)
        self.assertEqual([(d.class_id, round(d.score, 3)) for d in dets], [(15, 0.9)])
        self.assertEqual((dets[0].cx, dets[0].cy, dets[0].w, dets[0].h), (320.0, 320.0, 100.0, 100.0))

    def test_single_row(self) -> None:
        p = np.array([[[320, 320, 100, 100, 0.9, 0.1]]], dtype=np.float32)
        dets = DetectionPostprocessor().decode(p, 0.25)
        self.assertEqual([d.class_id for d in dets], [0])
        self.assertEqual(len(DetectionPostprocessor().decode(self._cat_rows(1)[None, ...], 0.25)), 1)

    def test_yolov8_export_is_channels_first(self) -> None:
        p = self._cat_rows(8400).T[None, ...]  # (1, 84, 8400)
        _, scores, class_ids = DetectionPostprocessor().decode_arrays(p, 0.25)
        self.assertEqual(class_ids.tolist(), [15])
        self.assertTrue(np.allclose(scores, [0.9]))

    def test_num_classes_picks_the_axis(self) -> None:
        post = DetectionPostprocessor(PostprocessConfig(num_classes=80))
        for p in (self._cat_rows(50)[None, ...], self._cat_rows(50).T[None, ...], self._cat_rows(84)[None, ...]):
            with self.subTest(shape=p.shape):
                self.assertEqual([d.class_id for d in post.decode(p, 0.25)], [15])

    def test_num_classes_mismatch(self) -> None:
        with self.assertRaises(InferenceError):
            DetectionPostprocessor(PostprocessConfig(num_classes=3)).decode(self._cat_rows(50)[None, ...], 0.25)
        with self.assertRaises(InferenceError):
            DetectionPostprocessor(PostprocessConfig(layout="rows", num_classes=3)).decode(
                self._cat_rows(50)[None, ...], 0.25
            )

    def test_invalid_num_classes(self) -> None:
        for value in (0, -2, 2.5, True):
            with self.subTest(num_classes=value):
                with self.assertRaises(ValueError):
                    PostprocessConfig(num_classes=value)  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
