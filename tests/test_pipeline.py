"""End-to-end tests for the orchestrated pipeline."""

import dataclasses
import json
import os
import shutil
import tempfile
import unittest
from unittest import mock

from PIL import features

from VramPack.core import ModelArtifacts, part_path, sibling
from VramPack.core.gltf import read_glb_json
from VramPack.core.paths import HARDLINK_TMP_SUFFIX, packed_target
from VramPack.phases.images import ImageConverter
from VramPack.pipeline import AssetPipeline, StageFailedError
from helpers import FakeGltfTransform, FakeToktx, make_config, save_test_png, write_glb

AVIF_NATIVE = bool(features.check("avif"))


class TestPipeline(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.config = make_config(self.tmpdir, img_dirs=["public"], model_dirs=["public"])
        self.pub = os.path.join(self.tmpdir, "public")
        self.robot = write_glb(os.path.join(self.pub, "models", "robot.glb"), pad_to=2000)
        save_test_png(os.path.join(self.pub, "ui", "hud.png"))
        save_test_png(os.path.join(self.pub, "copy", "hud.png"))
        with open(os.path.join(self.pub, "models", "robot.tmp1.glb"), "wb") as f:
            f.write(b"leftover")

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _run(self, fake=None, environ=None, **kwargs):
        fake = fake or FakeGltfTransform(draco_size=400, meshopt_size=300)
        with mock.patch("VramPack.phases.images.find_toktx", return_value=None), \
                mock.patch("VramPack.phases.images.features.check", return_value=False):
            pipeline = AssetPipeline(self.config, environ=environ or {},
                                     model_runner=fake, **kwargs)
            return pipeline.run(), fake

    def test_stages_run_in_order(self):
        result, fake = self._run(hardlink=True)
        self.assertTrue(result.ok)
        self.assertFalse(result.bypassed)
        self.assertEqual(result.cleaned, 1)
        self.assertEqual(len(result.duplicates.groups), 1)
        self.assertEqual(result.duplicates.linked, 1)
        self.assertTrue(os.path.exists(os.path.join(self.pub, "ui", "hud.webp")))
        self.assertEqual(len(result.models.packed), 1)
        self.assertEqual(result.finalize.renamed, 1)
        self.assertEqual(os.path.getsize(self.robot), 300)
        self.assertEqual(
            sorted(os.listdir(os.path.join(self.pub, "models"))), ["robot.glb"])
        self.assertEqual(
            list(result.timings), ["cleanup", "duplicates", "images", "models", "finalize"])

    def test_bypass(self):
        result, fake = self._run(environ={"CI": "true"})
        self.assertTrue(result.bypassed)
        self.assertEqual(result.bypass_reason, "CI")
        self.assertEqual(fake.calls, [])
        self.assertTrue(os.path.exists(os.path.join(self.pub, "models", "robot.tmp1.glb")))

    def test_bypass_ignores_falsey_values(self):
        result, _ = self._run(environ={"CI": "0", "VERCEL": ""})
        self.assertFalse(result.bypassed)

    def test_model_failure_still_finalizes_others(self):
        write_glb(os.path.join(self.pub, "models", "ship.glb"))
        with open(os.path.join(self.pub, "models", "ship.glb"), "wb") as f:
            f.write(b"version https://git-lfs.github.com/spec/v1\n")
        result, _ = self._run()
        self.assertFalse(result.ok)
        self.assertEqual([m.name for m in result.models.failed], ["public/models/ship.glb"])
        self.assertEqual(result.finalize.renamed, 1)

    def test_stage_exception_stops_pipeline(self):
        with mock.patch("VramPack.pipeline.DuplicateScanner.run",
                        side_effect=PermissionError("denied")):
            with self.assertRaises(StageFailedError) as ctx:
                self._run()
        self.assertEqual(ctx.exception.stage, "duplicates")
        self.assertTrue(os.path.exists(self.robot))
        self.assertFalse(os.path.exists(os.path.join(self.pub, "models", "robot.packed.glb")))

    def test_gltf_source_survives_repeated_runs(self):
        ship = os.path.join(self.pub, "models", "ship.gltf")
        with open(ship, "w", encoding="utf-8") as f:
            json.dump({"asset": {"version": "2.0"}}, f)
        with open(ship, "rb") as f:
            original = f.read()

        first, _ = self._run()
        self.assertTrue(first.ok)
        self.assertTrue(os.path.exists(os.path.join(self.pub, "models", "ship.glb")))

        second, _ = self._run()
        self.assertTrue(second.ok)
        with open(ship, "rb") as f:
            self.assertEqual(f.read(), original)
        self.assertIn("public/models/ship.glb", [m.name for m in second.models.skipped])


def _snapshot(root):
    state = {}
    for dirpath, _, files in os.walk(root):
        for name in files:
            path = os.path.join(dirpath, name)
            st = os.stat(path)
            state[path] = (st.st_ino, st.st_size, st.st_mtime_ns)
    return state


class TestFullScenario(unittest.TestCase):
    """hero_x.png (UASTC), hud_icon.png (UI) and robot.glb with a WebP texture."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.config = make_config(self.tmpdir, img_dirs=["public"], model_dirs=["public"])
        self.config.uastc_include = [r"/hero_[^/]*$"]
        self.config.ui_include = [r"/hud_[^/]*$"]
        self.pub = os.path.join(self.tmpdir, "public")
        self.assets = os.path.join(self.pub, "assets")
        save_test_png(os.path.join(self.assets, "hero_x.png"), seed=1)
        save_test_png(os.path.join(self.assets, "hud_icon.png"), channels=4, seed=2)
        self.robot = write_glb(os.path.join(self.pub, "models", "robot.glb"), pad_to=4000)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _run(self, stage_hook=None):
        gltf = FakeGltfTransform(draco_size=700, meshopt_size=500,
                                 images={"texture.webp": "WEBP"})
        toktx = FakeToktx()
        real_encode = ImageConverter._encode_raster

        def encode(converter, src, tmp, kind):
            if kind == "avif" and not AVIF_NATIVE:
                with open(tmp, "wb") as f:
                    f.write(b"\0\0\0\x1cftypavif")
                return
            real_encode(converter, src, tmp, kind)

        patches = [
            mock.patch("VramPack.phases.images.find_toktx", return_value="/usr/bin/toktx"),
            mock.patch("VramPack.phases.images.run_tool", side_effect=toktx),
            mock.patch("VramPack.phases.images.features.check", return_value=True),
            mock.patch.object(ImageConverter, "_encode_raster", encode),
        ]
        if stage_hook is not None:
            patches.append(mock.patch.object(AssetPipeline, "_stage", stage_hook))
        for p in patches:
            p.start()
        try:
            result = AssetPipeline(self.config, environ={}, model_runner=gltf).run()
        finally:
            for p in reversed(patches):
                p.stop()
        return result, gltf, toktx

    def test_end_to_end(self):
        result, gltf, toktx = self._run()
        self.assertTrue(result.ok)

        hero = toktx.call_for("hero_x.png")
        self.assertEqual(hero[hero.index("--encode") + 1], "uastc")
        self.assertTrue(os.path.exists(os.path.join(self.assets, "hero_x.ktx2")))
        for ext in (".avif", ".webp", ".ktx2"):
            self.assertTrue(os.path.exists(os.path.join(self.assets, "hud_icon" + ext)), ext)

        # The promoted container is the smaller candidate and holds PNG only.
        self.assertEqual(os.path.getsize(self.robot), 500)
        doc = read_glb_json(self.robot)
        self.assertNotIn("webp", json.dumps(doc).lower())
        self.assertEqual(doc["images"], [{"uri": "texture.png", "mimeType": "image/png"}])

        leftovers = []
        for dirpath, dirs, files in os.walk(self.pub):
            leftovers += [d for d in dirs if d.endswith(".norm_work")]
            leftovers += [f for f in files if ".tmp" in f or ".part." in f
                          or f.endswith((".mopt.glb", ".norm.glb", ".packed.glb"))]
        self.assertEqual(leftovers, [])

    def test_stages_write_disjoint_files(self):
        # Image and model sharing one base name in one directory.
        save_test_png(os.path.join(self.assets, "hud_crate.png"), seed=3)
        write_glb(os.path.join(self.assets, "hud_crate.glb"), pad_to=3000)
        writes = {}
        real_stage = AssetPipeline._stage

        def stage(pipeline, result, name, fn):
            before = _snapshot(self.pub)
            value = real_stage(pipeline, result, name, fn)
            after = _snapshot(self.pub)
            writes[name] = {p for p, sig in after.items() if before.get(p) != sig}
            return value

        result, _, _ = self._run(stage_hook=stage)
        self.assertTrue(result.ok)
        self.assertEqual(writes["cleanup"] | writes["duplicates"], set())
        stages = ["images", "models", "finalize"]
        for i, a in enumerate(stages):
            for b in stages[i + 1:]:
                self.assertEqual(writes[a] & writes[b], set(), (a, b))
        base = os.path.join(self.assets, "hud_crate")
        self.assertTrue({base + ".avif", base + ".webp", base + ".ktx2"} <= writes["images"])
        self.assertTrue(all(p.endswith((".avif", ".webp", ".ktx2")) for p in writes["images"]))
        self.assertTrue(all(p.endswith(".packed.glb") for p in writes["models"]))
        self.assertIn(base + ".glb", writes["finalize"])
        self.assertFalse(any(p.endswith(".png") for p in writes["finalize"]))


class TestSuffixOwnership(unittest.TestCase):
    def test_names_derived_from_one_base_never_collide(self):
        base = os.path.join("/repo", "public", "crate")
        image, model = base + ".png", base + ".glb"
        art = ModelArtifacts.for_source(model)
        raster = [sibling(image, "." + kind) for kind in ("avif", "webp", "ktx2")]
        owned = {
            "images": set(raster) | {part_path(p) for p in raster},
            "duplicates": {image + HARDLINK_TMP_SUFFIX},
            "models": set(dataclasses.astuple(art)) - {model},
            "finalize": {packed_target(art.packed)},
        }
        stages = list(owned)
        for i, a in enumerate(stages):
            for b in stages[i + 1:]:
                self.assertEqual(owned[a] & owned[b], set(), (a, b))
        for stage in ("images", "duplicates", "models"):
            self.assertNotIn(image, owned[stage])
            self.assertNotIn(model, owned[stage])
        # Only the finalizer writes over a source, and only the model.
        self.assertEqual(owned["finalize"], {model})


if __name__ == "__main__":
    unittest.main(verbosity=2)
