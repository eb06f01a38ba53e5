"""Remove leftovers from interrupted runs.

Only stage-owned scratch names are matched, so source assets and final
outputs are never touched.
"""

import logging
import os
import re

from ..config import PipelineConfig
from ..core import find_existing_roots, rel, remove_quietly, walk
from ..core.paths import is_work_dir_name

logger = logging.getLogger("vram_pack.cleanup")

FILE_TRASH = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\.tmp\d*\.(glb|gltf)$",
    r"\.norm\.(glb|gltf)$",
    r"\.packed\.packed\.(glb|gltf)$",
    r"\.mopt\.glb$",
    r"\.tmp\.__hl$",
    r"\.part\.(avif|webp|ktx2)$",
))


def is_trash(path: str) -> bool:
    name = os.path.basename(path)
    return any(rx.search(name) for rx in FILE_TRASH)


def _remove_work_dirs(directory: str, repo_root: str) -> int:
    """Delete every ``*.norm_work`` directory below ``directory`` without entering it."""
    removed = 0
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError:
        return 0
    for entry in entries:
        try:
            if not entry.is_dir(follow_symlinks=False):
                continue
        except OSError:
            continue
        if is_work_dir_name(entry.name):
            if remove_quietly(entry.path):
                logger.info("DEL %s", rel(repo_root, entry.path))
                removed += 1
            continue
        if entry.name == "node_modules" or entry.name.startswith("."):
            continue
        removed += _remove_work_dirs(entry.path, repo_root)
    return removed


def clean_artifacts(config: PipelineConfig) -> int:
    """Sweep model and image roots; return the number of removed items."""
    repo_root = os.path.abspath(config.repo_root)
    roots = find_existing_roots(
        config.resolve_dirs(list(config.model_dirs) + list(config.img_dirs))
    )
    removed = 0
    for root in roots:
        removed += _remove_work_dirs(root, repo_root)
        for path in walk(root, skip_dir=is_work_dir_name):
            if is_trash(path) and remove_quietly(path):
                logger.info("DEL %s", rel(repo_root, path))
                removed += 1
    logger.info("Cleanup done. Items removed: %d", removed)
    return removed
