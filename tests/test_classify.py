"""Tests for pattern-based texture classification."""

import unittest

from VramPack.config import PipelineConfig
from VramPack.core import (
    is_ui_asset, matches_any, should_generate_mipmaps, wants_uastc,
)


class TestMatchers(unittest.TestCase):
    def test_case_insensitive_search(self):
        self.assertTrue(matches_any("/repo/public/Characters/Bob.png", [r"characters?"]))
        self.assertFalse(matches_any("/repo/public/props/crate.png", [r"hero"]))

    def test_backslashes_normalized(self):
        self.assertTrue(matches_any(r"C:\repo\public\ui\btn.png", [r"/ui/"]))

    def test_empty_list_never_matches(self):
        self.assertFalse(matches_any("/anything", []))


class TestModeSelection(unittest.TestCase):
    def setUp(self):
        self.config = PipelineConfig()

    def test_uastc_for_included_paths(self):
        self.assertTrue(wants_uastc("/r/public/hero/face.png", self.config))
        self.assertTrue(wants_uastc("/r/assets/materials/metal/plate.png", self.config))
        self.assertTrue(wants_uastc("/r/assets/props-near/barrel.png", self.config))

    def test_etc1s_otherwise(self):
        self.assertFalse(wants_uastc("/r/public/terrain/grass.png", self.config))

    def test_ui_is_not_uastc_by_default(self):
        self.assertTrue(is_ui_asset("/r/public/hud/ammo.png", self.config))
        self.assertFalse(wants_uastc("/r/public/hud/ammo.png", self.config))
        self.config.images.ui_uses_uastc = True
        self.assertTrue(wants_uastc("/r/public/hud/ammo.png", self.config))


class TestMipmapPolicy(unittest.TestCase):
    def setUp(self):
        self.config = PipelineConfig()

    def test_default_on(self):
        self.assertTrue(should_generate_mipmaps("/r/public/terrain/grass.png", self.config))

    def test_default_off(self):
        self.config.textures.gen_mipmap_default = False
        self.assertFalse(should_generate_mipmaps("/r/public/terrain/grass.png", self.config))

    def test_no_pattern_disables(self):
        self.config.textures.no_mipmap_include = [r"/skybox/"]
        self.config.ui_include = [r"/hud/"]
        self.assertFalse(should_generate_mipmaps("/r/public/skybox/top.png", self.config))

    def test_ui_counts_as_no(self):
        self.config.textures.no_mipmap_include = []
        self.assertFalse(should_generate_mipmaps("/r/public/interface/logo.png", self.config))

    def test_yes_overrides_no_and_ui(self):
        self.config.textures.yes_mipmap_include = [r"/hud/radar"]
        self.assertTrue(should_generate_mipmaps("/r/public/hud/radar_bg.png", self.config))
        self.assertFalse(should_generate_mipmaps("/r/public/hud/ammo.png", self.config))


if __name__ == "__main__":
    unittest.main(verbosity=2)
