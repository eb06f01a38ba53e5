"""Orchestrate the asset build stages end-to-end.

`AssetPipeline` runs cleanup, duplicate scan, image conversion, model packing
and finalization strictly in that order. Each stage reads the filesystem
state the previous one left behind, so stages never overlap.
"""

import logging
import os
import time
from typing import Callable, Optional

from .config import PipelineConfig
from .core import PipelineResult
from .phases.cleanup import clean_artifacts
from .phases.duplicates import DuplicateScanner
from .phases.finalize import ModelFinalizer
from .phases.images import ImageConverter
from .phases.models import ModelPacker

logger = logging.getLogger("vram_pack")


def _get_version() -> str:
    from . import __version__
    return __version__


class StageFailedError(RuntimeError):
    """A stage raised; later stages were not run."""

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause


class AssetPipeline:
    """Run every stage over the configured repository."""

    def __init__(self, config: PipelineConfig, hardlink: bool = False,
                 force: Optional[bool] = None, environ=None,
                 model_runner: Optional[Callable] = None):
        self.config = config
        self.hardlink = hardlink
        self.force = force
        self.environ = os.environ if environ is None else environ
        self._model_runner = model_runner

    def _stage(self, result: PipelineResult, name: str, fn):
        logger.info("--- %s ---", name)
        start = time.monotonic()
        try:
            value = fn()
        except Exception as e:
            logger.error("Stage '%s' failed: %s", name, e, exc_info=True)
            raise StageFailedError(name, e) from e
        finally:
            result.timings[name] = time.monotonic() - start
        logger.info("%s finished in %.1fs", name, result.timings[name])
        return value

    def run(self) -> PipelineResult:
        result = PipelineResult()
        reason = self.config.bypass_reason(self.environ)
        if reason:
            logger.info("%s is set: skipping asset pipeline.", reason)
            result.bypassed = True
            result.bypass_reason = reason
            return result

        start_time = time.time()
        logger.info("=" * 60)
        logger.info("VRAM ASSET PIPELINE v%s", _get_version())
        logger.info("=" * 60)
        logger.info("Root:        %s", os.path.abspath(self.config.repo_root))
        logger.info("Concurrency: %d", self.config.concurrency)

        result.cleaned = self._stage(
            result, "cleanup", lambda: clean_artifacts(self.config))
        result.duplicates = self._stage(
            result, "duplicates",
            lambda: DuplicateScanner(self.config).run(hardlink=self.hardlink))
        result.images = self._stage(
            result, "images", lambda: ImageConverter(self.config).run())
        result.models = self._stage(
            result, "models",
            lambda: ModelPacker(self.config, runner=self._model_runner).run(force=self.force))
        result.finalize = self._stage(
            result, "finalize", lambda: ModelFinalizer(self.config).run())

        elapsed = time.time() - start_time
        self._log_summary(result, elapsed)
        return result

    def _log_summary(self, result: PipelineResult, elapsed: float):
        logger.info("=" * 60)
        logger.info("PIPELINE COMPLETE in %.1fs", elapsed)
        for name, seconds in result.timings.items():
            logger.info("  %-12s %6.1fs", name, seconds)
        logger.info("  Cleaned: %d items", result.cleaned)
        if result.duplicates is not None:
            logger.info("  Duplicate groups: %d", len(result.duplicates.groups))
        if result.images is not None:
            logger.info("  Images: %d produced, %d failed",
                        result.images.produced, result.images.failed)
        if result.models is not None:
            logger.info("  Models: %d packed, %d skipped, %d failed",
                        len(result.models.packed), len(result.models.skipped),
                        len(result.models.failed))
        if result.finalize is not None:
            logger.info("  Finalized: %d renamed", result.finalize.renamed)
        logger.info("=" * 60)
