"""Test helpers: synthetic assets and a fake gltf-transform."""

import json
import os
import struct

import numpy as np
from PIL import Image

from VramPack.config import PipelineConfig
from VramPack.core import ToolError


def make_config(root: str, **overrides) -> PipelineConfig:
    config = PipelineConfig(repo_root=root, concurrency=2)
    config.tools.gltf_transform = ["gltf-transform"]
    # Anchored patterns so random temp directory names never match.
    config.ui_include = [r"/ui/", r"/hud/"]
    config.uastc_include = [r"/characters?/", r"/hero/"]
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def save_test_png(path, width=16, height=16, channels=3, seed=0):
    """Write a random PNG and return its pixel array."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    rng = np.random.default_rng(seed)
    arr = rng.integers(0, 255, (height, width, channels), dtype=np.uint8)
    Image.fromarray(arr).save(path)
    return arr


def glb_bytes(doc=None, pad_to=0) -> bytes:
    """Build a minimal binary glTF container around ``doc``."""
    doc = doc or {"asset": {"version": "2.0"}}
    payload = json.dumps(doc).encode("utf-8")
    payload += b" " * ((4 - len(payload) % 4) % 4)
    body = struct.pack("<II", len(payload), 0x4E4F534A) + payload
    total = 12 + len(body)
    if pad_to > total:
        extra = pad_to - total
        extra += (4 - extra % 4) % 4
        body += struct.pack("<II", max(extra - 8, 0), 0x004E4942) + b"\0" * max(extra - 8, 0)
        total = 12 + len(body)
    return struct.pack("<III", 0x46546C67, 2, total) + body


def write_glb(path, doc=None, pad_to=0):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(glb_bytes(doc, pad_to))
    return path


class FakeGltfTransform:
    """Stand-in for ``run_tool`` that imitates gltf-transform subcommands.

    ``draco_size`` / ``meshopt_size`` control candidate output sizes. Any
    subcommand listed in ``fail`` raises ToolError. ``images`` maps image file
    names to formats; ``copy`` to ``.gltf`` writes them beside the document.
    """

    def __init__(self, draco_size=400, meshopt_size=600, fail=(), images=None):
        self.draco_size = draco_size
        self.meshopt_size = meshopt_size
        self.fail = set(fail)
        self.images = dict(images or {})
        self.calls = []
        self.last_gltf = None

    def subcommands(self):
        return [c[1] for c in self.calls]

    def __call__(self, cmd, tool_label, source_info, timeout=600):
        args = list(cmd[1:])
        sub, src, out = args[0], args[1], args[2]
        self.calls.append(list(cmd))
        if sub in self.fail:
            raise ToolError(f"{sub} failed", tool_label, cmd, 1)
        if sub == "copy" and out.endswith(".gltf"):
            self._unpack(out)
        elif sub == "copy":
            with open(src, "r", encoding="utf-8") as f:
                self.last_gltf = json.load(f)
            write_glb(out, self.last_gltf, pad_to=900)
        elif sub == "draco":
            self._write(out, self.draco_size)
        elif sub == "meshopt":
            self._write(out, self.meshopt_size)
        else:
            self._write(out, 800)

    def _unpack(self, out):
        work = os.path.dirname(out)
        doc = {"asset": {"version": "2.0"}, "images": [], "textures": []}
        for i, (name, fmt) in enumerate(self.images.items()):
            Image.new("RGB", (4, 4), (i * 40, 10, 10)).save(
                os.path.join(work, name), format=fmt)
            mime = "image/" + fmt.lower()
            doc["images"].append({"uri": name, "mimeType": mime})
            if fmt.upper() == "WEBP":
                doc["textures"].append(
                    {"extensions": {"EXT_texture_webp": {"source": i}}})
                doc.setdefault("extensionsUsed", ["EXT_texture_webp"])
            else:
                doc["textures"].append({"source": i})
        with open(out, "w", encoding="utf-8") as f:
            json.dump(doc, f)

    def _write(self, path, size):
        # Outputs carry the normalized document so tests can inspect it.
        with open(path, "wb") as f:
            f.write(glb_bytes(self.last_gltf, pad_to=size)[:size] if size else b"")


class FakeToktx:
    """Stand-in for ``run_tool`` that writes the output named in a toktx call."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def __call__(self, cmd, tool_label, source_info, timeout=600):
        self.calls.append(list(cmd))
        out = cmd[-2]
        with open(out, "wb") as f:
            f.write(b"\xabKTX 20\xbb\r\n\x1a\n")
        if self.fail:
            raise ToolError("toktx failed", "toktx", cmd, 1)

    def call_for(self, source_name):
        return next(c for c in self.calls if os.path.basename(c[-1]) == source_name)
