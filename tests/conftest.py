"""Shared test fixtures."""

import logging
import shutil
import tempfile

import pytest

from VramPack.config import PipelineConfig


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    """Keep bypass and override variables of the host CI out of test runs."""
    for name in ("CI", "VERCEL", "SKIP_ASSET_PIPELINE", "PACK_FORCE",
                 "VRAM_TOOLS_CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)
    logging.getLogger("vram_pack").setLevel(logging.DEBUG)
    yield


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config(tmp_dir):
    config = PipelineConfig(repo_root=tmp_dir)
    config.tools.gltf_transform = ["gltf-transform"]
    config.ui_include = [r"/ui/", r"/hud/"]
    config.uastc_include = [r"/characters?/", r"/hero/"]
    return config
