import tempfile
import unittest
from pathlib import Path

import cv2
import numpy as np

from localdet.errors import ImageLoadError
from localdet.preprocess import load_image, preprocess


class TestPreprocess(unittest.TestCase):
    def test_length_range_and_original_size(self) -> None:
        rng = np.random.default_rng(0)
        img = rng.integers(0, 256, size=(37, 53, 3), dtype=np.uint8)
        t = preprocess(img, model_width=32, model_height=24)
        self.assertEqual(t.data.shape, (3 * 24 * 32,))
        self.assertEqual(t.data.dtype, np.float32)
        self.assertGreaterEqual(float(t.data.min()), 0.0)
        self.assertLessEqual(float(t.data.max()), 1.0)
        self.assertEqual((t.original_width, t.original_height), (53, 37))
        self.assertEqual((t.model_width, t.model_height), (32, 24))
        self.assertEqual(t.as_blob().shape, (1, 3, 24, 32))

    def test_default_size_is_640(self) -> None:
        t = preprocess(np.zeros((10, 20, 3), dtype=np.uint8))
        self.assertEqual(t.data.shape, (3 * 640 * 640,))

    def test_channel_major_rgb_order_from_bgr(self) -> None:
        # 2x2 image, no resize: index = c * H * W + y * W + x
        img = np.zeros((2, 2, 3), dtype=np.uint8)
        img[0, 1] = (30, 20, 10)  # B, G, R
        img[1, 0] = (255, 0, 0)
        t = preprocess(img, model_width=2, model_height=2)
        hw = 4
        self.assertAlmostEqual(float(t.data[0 * hw + 0 * 2 + 1]), 10 / 255, places=6)
        self.assertAlmostEqual(float(t.data[1 * hw + 0 * 2 + 1]), 20 / 255, places=6)
        self.assertAlmostEqual(float(t.data[2 * hw + 0 * 2 + 1]), 30 / 255, places=6)
        self.assertAlmostEqual(float(t.data[2 * hw + 1 * 2 + 0]), 1.0, places=6)
        self.assertEqual(float(t.data[0 * hw + 1 * 2 + 0]), 0.0)

    def test_rgb_channel_order(self) -> None:
        img = np.zeros((4, 4, 3), dtype=np.uint8)
        img[:, :, 0] = 255  # red when read as RGB
        t = preprocess(img, model_width=4, model_height=4, channel_order="rgb")
        self.assertTrue(np.allclose(t.data[:16], 1.0))
        self.assertTrue(np.allclose(t.data[16:], 0.0))

    def test_stretch_resize_keeps_solid_color(self) -> None:
        img = np.zeros((10, 40, 3), dtype=np.uint8)
        img[:] = (0, 128, 255)
        t = preprocess(img, model_width=8, model_height=6)
        hw = 6 * 8
        self.assertTrue(np.allclose(t.data[:hw], 1.0))
        self.assertTrue(np.allclose(t.data[hw : 2 * hw], 128 / 255))
        self.assertTrue(np.allclose(t.data[2 * hw :], 0.0))

    def test_alpha_is_discarded(self) -> None:
        img = np.zeros((3, 3, 4), dtype=np.uint8)
        img[:, :, 2] = 200  # R in BGRA
        img[:, :, 3] = 0  # fully transparent
        t = preprocess(img, model_width=3, model_height=3)
        self.assertEqual(t.data.shape, (27,))
        self.assertTrue(np.allclose(t.data[:9], 200 / 255))
        self.assertTrue(np.allclose(t.data[9:], 0.0))

    def test_grayscale_expands_to_three_channels(self) -> None:
        img = np.full((5, 5), 51, dtype=np.uint8)
        t = preprocess(img, model_width=5, model_height=5)
        self.assertTrue(np.allclose(t.data, 51 / 255))

    def test_sixteen_bit_is_scaled(self) -> None:
        img = np.full((2, 2, 3), 65535, dtype=np.uint16)
        t = preprocess(img, model_width=2, model_height=2)
        self.assertTrue(np.allclose(t.data, 1.0))

    def test_encoded_bytes_and_path(self) -> None:
        img = np.zeros((12, 30, 3), dtype=np.uint8)
        ok, buf = cv2.imencode(".png", img)
        self.assertTrue(ok)
        t = preprocess(buf.tobytes(), model_width=16, model_height=16)
        self.assertEqual((t.original_width, t.original_height), (30, 12))

        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "image.png"
        path.write_bytes(buf.tobytes())
        self.assertEqual(load_image(path).shape[:2], (12, 30))
        t = preprocess(str(path), model_width=16, model_height=16)
        self.assertEqual((t.original_width, t.original_height), (30, 12))

    def test_corrupt_or_missing_images_raise(self) -> None:
        with self.assertRaises(ImageLoadError):
            preprocess(b"definitely not an image")
        with self.assertRaises(ImageLoadError):
            preprocess(b"")
        with self.assertRaises(ImageLoadError):
            preprocess("/nonexistent/image.png")
        with self.assertRaises(ImageLoadError):
            preprocess(np.zeros((0, 5, 3), dtype=np.uint8))
        with self.assertRaises(ImageLoadError):
            preprocess(np.zeros((4, 4, 2), dtype=np.uint8))
        with self.assertRaises(ImageLoadError):
            preprocess(12345)  # type: ignore[arg-type]

    def test_invalid_arguments(self) -> None:
        img = np.zeros((4, 4, 3), dtype=np.uint8)
        with self.assertRaises(ValueError):
            preprocess(img, model_width=0)
        with self.assertRaises(ValueError):
            preprocess(img, channel_order="hsv")


if __name__ == "__main__":
    unittest.main()
