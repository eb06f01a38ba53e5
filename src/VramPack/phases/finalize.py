"""Promote packed models over their sources and remove packing leftovers."""

import logging
import os

from ..config import PipelineConfig
from ..core import FinalizeResult, find_existing_roots, rel, remove_quietly, walk
from ..core.paths import NORM_SUFFIX, PACKED_SUFFIX, is_work_dir_name, packed_target

logger = logging.getLogger("vram_pack.finalize")


class ModelFinalizer:
    def __init__(self, config: PipelineConfig):
        self.config = config
        self.repo_root = os.path.abspath(config.repo_root)

    def _promote(self, packed: str) -> bool:
        target = packed_target(packed)
        try:
            os.replace(packed, target)
        except FileNotFoundError:
            logger.debug("Packed model vanished before rename: %s", packed)
            return False
        except OSError as e:
            logger.warning("Could not rename %s: %s", rel(self.repo_root, packed), e)
            return False
        logger.info("RENAME %s", rel(self.repo_root, target))
        return True

    def _remove_work_dirs(self, root: str) -> int:
        removed = 0
        try:
            with os.scandir(root) as it:
                entries = [e for e in it if is_work_dir_name(e.name)]
        except OSError as e:
            logger.debug("Cannot list %s: %s", root, e)
            return 0
        for entry in entries:
            try:
                if not entry.is_dir():
                    continue
            except OSError:
                continue
            if remove_quietly(entry.path):
                logger.info("CLEAN dir %s", rel(self.repo_root, entry.path))
                removed += 1
        return removed

    def run(self) -> FinalizeResult:
        result = FinalizeResult()
        roots = find_existing_roots(self.config.resolve_dirs(self.config.model_dirs))
        for root in roots:
            for path in walk(root, skip_dir=is_work_dir_name):
                name = os.path.basename(path)
                if name.endswith(PACKED_SUFFIX):
                    if self._promote(path):
                        result.renamed += 1
                elif name.endswith(NORM_SUFFIX):
                    if remove_quietly(path):
                        logger.info("CLEAN norm %s", rel(self.repo_root, path))
                        result.removed_norm += 1
            result.removed_work_dirs += self._remove_work_dirs(root)

        logger.info(
            "Finalize models: renamed %d, removed %d .norm.glb, removed %d .norm_work dirs.",
            result.renamed, result.removed_norm, result.removed_work_dirs,
        )
        return result


def finalize_models(config: PipelineConfig) -> FinalizeResult:
    return ModelFinalizer(config).run()
