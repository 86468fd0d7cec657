"""Tests for TIFF decoding and JPEG encoding."""

import io
import os
import shutil
import tempfile
import unittest

import numpy as np
from PIL import Image

from TexBrew.core import DecodeError, EncodeError, convert_to_jpeg, decode_tiff, encode_jpeg
from TexBrew.core.records import FailureReason

from conftest import save_corrupt_tiff, save_test_tiff


def _open_jpeg(data):
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


class TestConvertToJpeg(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _path(self, name):
        return os.path.join(self.tmpdir, name)

    def test_rgb_dimensions_preserved(self):
        path = self._path("wall_albedo.tif")
        save_test_tiff(path, width=40, height=30, mode="RGB")
        encoded = convert_to_jpeg(path)
        self.assertEqual((encoded.width, encoded.height), (40, 30))
        self.assertEqual(encoded.mode, "RGB")
        img = _open_jpeg(encoded.data)
        self.assertEqual(img.format, "JPEG")
        self.assertEqual(img.size, (40, 30))
        self.assertEqual(img.mode, "RGB")
        self.assertFalse(encoded.alpha_dropped)
        self.assertEqual(encoded.notes, ())

    def test_grayscale_stays_single_channel(self):
        path = self._path("wall_roughness.tif")
        save_test_tiff(path, mode="L")
        encoded = convert_to_jpeg(path)
        self.assertEqual(encoded.mode, "L")
        self.assertEqual(_open_jpeg(encoded.data).mode, "L")

    def test_alpha_is_dropped_not_failed(self):
        path = self._path("leaf_albedo.tif")
        save_test_tiff(path, mode="RGBA")
        with self.assertLogs("texture_pipeline.io", level="INFO") as cm:
            encoded = convert_to_jpeg(path)
        self.assertTrue(encoded.alpha_dropped)
        self.assertEqual(encoded.source_mode, "RGBA")
        self.assertEqual(_open_jpeg(encoded.data).mode, "RGB")
        self.assertIn("alpha channel dropped", encoded.notes)
        self.assertTrue(any("alpha" in msg for msg in cm.output))

    def test_sixteen_bit_is_downscaled(self):
        path = self._path("rock_height.tif")
        arr = np.zeros((16, 16), dtype=np.uint16)
        arr[:, 8:] = 65535
        Image.fromarray(arr).save(path, format="TIFF")
        encoded = convert_to_jpeg(path, quality=100)
        img = _open_jpeg(encoded.data)
        self.assertEqual(img.mode, "L")
        pixels = np.asarray(img)
        self.assertLess(int(pixels[:, :4].max()), 16)
        self.assertGreater(int(pixels[:, 12:].min()), 239)
        self.assertTrue(any("8-bit" in note for note in encoded.notes))

    def test_quality_changes_output(self):
        path = self._path("noise_albedo.tif")
        save_test_tiff(path, width=64, height=64, mode="RGB")
        low = convert_to_jpeg(path, quality=10)
        high = convert_to_jpeg(path, quality=95)
        self.assertLess(len(low.data), len(high.data))

    def test_multipage_uses_first_page(self):
        path = self._path("stack_albedo.tif")
        first = Image.new("RGB", (20, 10), (255, 0, 0))
        second = Image.new("RGB", (8, 8), (0, 0, 255))
        first.save(path, format="TIFF", save_all=True, append_images=[second])
        with self.assertLogs("texture_pipeline.io", level="INFO"):
            encoded = convert_to_jpeg(path)
        self.assertEqual((encoded.width, encoded.height), (20, 10))
        self.assertEqual(encoded.frames, 2)
        r, g, b = _open_jpeg(encoded.data).getpixel((10, 5))
        self.assertGreater(r, 200)
        self.assertLess(b, 60)

    def test_source_is_not_modified(self):
        path = self._path("wall_albedo.tif")
        save_test_tiff(path)
        with open(path, "rb") as f:
            before = f.read()
        convert_to_jpeg(path)
        with open(path, "rb") as f:
            self.assertEqual(f.read(), before)


class TestDecodeErrors(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_garbage_bytes(self):
        path = os.path.join(self.tmpdir, "broken.tif")
        save_corrupt_tiff(path)
        with self.assertRaises(DecodeError) as ctx:
            decode_tiff(path)
        self.assertEqual(ctx.exception.reason, FailureReason.DECODE_ERROR)

    def test_missing_file(self):
        with self.assertRaises(DecodeError):
            decode_tiff(os.path.join(self.tmpdir, "missing.tif"))

    def test_non_tiff_image_rejected(self):
        path = os.path.join(self.tmpdir, "actually_png.tif")
        Image.new("RGB", (4, 4)).save(path, format="PNG")
        with self.assertRaises(DecodeError) as ctx:
            decode_tiff(path)
        self.assertIn("PNG", str(ctx.exception))

    def test_pixel_limit(self):
        path = os.path.join(self.tmpdir, "big_albedo.tif")
        save_test_tiff(path, width=20, height=20)
        with self.assertRaises(DecodeError):
            decode_tiff(path, max_pixels=100)
        decode_tiff(path, max_pixels=400)


class TestEncodeJpeg(unittest.TestCase):
    def test_rejects_unencodable_mode(self):
        with self.assertRaises(EncodeError) as ctx:
            encode_jpeg(Image.new("RGBA", (4, 4)))
        self.assertEqual(ctx.exception.reason, FailureReason.ENCODE_ERROR)

    def test_encodes_in_memory(self):
        data = encode_jpeg(Image.new("RGB", (8, 8), (10, 20, 30)), quality=90)
        self.assertTrue(data.startswith(b"\xff\xd8"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
