"""Tests for glTF container helpers."""

import os
import shutil
import tempfile
import unittest

from VramPack.core.gltf import (
    GltfFormatError, check_glb_header, images_to_normalize, is_lfs_pointer,
    load_gltf, read_glb_json,
)
from helpers import glb_bytes, write_glb


class TestGlbHeader(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _write(self, name, data):
        path = os.path.join(self.tmpdir, name)
        with open(path, "wb") as f:
            f.write(data)
        return path

    def test_valid_glb(self):
        path = write_glb(os.path.join(self.tmpdir, "m.glb"), {"asset": {"version": "2.0"}})
        self.assertEqual(check_glb_header(path), 2)
        self.assertEqual(read_glb_json(path)["asset"]["version"], "2.0")

    def test_wrong_magic(self):
        path = self._write("bad.glb", b"PK\x03\x04" + b"\0" * 20)
        with self.assertRaises(GltfFormatError):
            check_glb_header(path)

    def test_truncated(self):
        path = self._write("short.glb", glb_bytes()[:8])
        with self.assertRaises(GltfFormatError):
            check_glb_header(path)

    def test_lfs_pointer_detected(self):
        pointer = (b"version https://git-lfs.github.com/spec/v1\n"
                   b"oid sha256:abc\nsize 123\n")
        self.assertTrue(is_lfs_pointer(self._write("p.glb", pointer)))
        self.assertFalse(is_lfs_pointer(self._write("m.glb", glb_bytes())))


class TestGltfJson(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_invalid_json(self):
        path = os.path.join(self.tmpdir, "m.gltf")
        with open(path, "w", encoding="utf-8") as f:
            f.write("not json")
        with self.assertRaises(GltfFormatError):
            load_gltf(path)

    def test_images_to_normalize(self):
        doc = {"images": [
            {"uri": "a.png"},
            {"uri": "b.WEBP"},
            {"bufferView": 3, "mimeType": "image/webp"},
            {"uri": "data:image/webp;base64,AAAA"},
            {"uri": "tex/c.avif"},
        ]}
        found = [i for i, _ in images_to_normalize(doc)]
        self.assertEqual(found, [1, 4])


if __name__ == "__main__":
    unittest.main(verbosity=2)
