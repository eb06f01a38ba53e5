"""Convert PNG/JPEG sources to GPU-friendly siblings.

Every source gets a ``.ktx2`` (when toktx is available). UI sources also get
``.avif`` and ``.webp`` for plain HTML use. Each output is independent: it
is skipped when newer than its source, written under a ``.part`` name and
renamed into place only once complete.
"""

import logging
import os
from typing import List, Optional, Tuple

from PIL import Image, features

from .. import BIN_DIR
from ..config import PipelineConfig
from ..core import (
    ImageConvertResult, ToolError, ToolNotFoundError, find_existing_roots,
    find_toktx, is_ui_asset, is_up_to_date, part_path, rel, remove_quietly,
    run_bounded, run_tool, should_generate_mipmaps, sibling, walk, wants_uastc,
)
from ..core.paths import IMAGE_SOURCE_EXTS, is_work_dir_name

logger = logging.getLogger("vram_pack.images")

KIND_AVIF = "avif"
KIND_WEBP = "webp"
KIND_KTX2 = "ktx2"

PRODUCED = "produced"
SKIPPED = "skipped"


def build_toktx_args(toktx: str, src: str, out: str, config: PipelineConfig,
                     uastc: Optional[bool] = None,
                     mipmaps: Optional[bool] = None) -> List[str]:
    """Assemble the toktx command line for ``src``.

    UASTC takes ``--zcmp`` supercompression. ETC1S never does; its size is
    controlled by ``--qlevel``/``--clevel`` instead. ``uastc`` and ``mipmaps``
    default to the path-pattern policy.
    """
    ktx = config.ktx2
    if uastc is None:
        uastc = wants_uastc(src, config)
    if mipmaps is None:
        mipmaps = should_generate_mipmaps(src, config)
    args = [toktx, "--t2"]
    if ktx.force_orientation:
        args.append("--force-orientation")
    args += ["--assign_oetf", "srgb"]
    if mipmaps:
        args.append("--genmipmap")
    if uastc:
        args += ["--encode", "uastc", "--uastc_quality", str(ktx.uastc_rate)]
        args += ["--zcmp", str(ktx.zstd_level)]
    else:
        args += ["--encode", "etc1s", "--qlevel", str(ktx.etc1s_qlevel)]
        args += ["--clevel", str(ktx.etc1s_effort)]
    args += [out, src]
    return args


def _prepare_for_encode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    has_alpha = "A" in img.getbands() or "transparency" in img.info
    return img.convert("RGBA" if has_alpha else "RGB")


class ImageConverter:
    """Produce AVIF/WebP/KTX2 siblings for every source image."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.repo_root = os.path.abspath(config.repo_root)
        self.toktx: Optional[str] = None
        self.force = False
        self._avif_supported = True

    def collect(self) -> List[str]:
        roots = find_existing_roots(self.config.resolve_dirs(self.config.img_dirs))
        seen = set()
        sources = []
        for root in roots:
            for path in walk(root, skip_dir=is_work_dir_name):
                if os.path.splitext(path)[1].lower() not in IMAGE_SOURCE_EXTS:
                    continue
                real = os.path.realpath(path)
                if real in seen:
                    continue
                seen.add(real)
                sources.append(os.path.abspath(path))
        return sources

    def plan(self, sources: List[str]) -> List[Tuple[str, str]]:
        """Expand sources into (source, output kind) work units."""
        units = []
        for src in sources:
            if is_ui_asset(src, self.config):
                if self._avif_supported:
                    units.append((src, KIND_AVIF))
                units.append((src, KIND_WEBP))
            if self.toktx:
                units.append((src, KIND_KTX2))
        return units

    def convert(self, unit: Tuple[str, str]) -> str:
        src, kind = unit
        out = sibling(src, "." + kind)
        if not self.force and is_up_to_date(src, out):
            logger.debug("SKIP %s (up to date)", rel(self.repo_root, out))
            return SKIPPED
        tmp = part_path(out)
        try:
            if kind == KIND_KTX2:
                self._encode_ktx2(src, tmp)
            else:
                self._encode_raster(src, tmp, kind)
            os.replace(tmp, out)
        finally:
            if os.path.exists(tmp):
                remove_quietly(tmp)
        logger.info("%-5s %s", kind.upper(), rel(self.repo_root, out))
        return PRODUCED

    def _encode_raster(self, src: str, tmp: str, kind: str):
        images = self.config.images
        with Image.open(src) as img:
            img = _prepare_for_encode(img)
            if kind == KIND_AVIF:
                img.save(tmp, format="AVIF", quality=images.avif_quality)
            else:
                img.save(tmp, format="WEBP", quality=images.webp_quality,
                         method=images.webp_method)

    def _encode_ktx2(self, src: str, tmp: str):
        self._run_toktx(build_toktx_args(self.toktx, src, tmp, self.config), src, tmp)

    def _run_toktx(self, cmd: List[str], src: str, tmp: str):
        run_tool(cmd, "toktx", rel(self.repo_root, src),
                 timeout=self.config.tools.timeout_seconds)
        if not os.path.isfile(tmp) or os.path.getsize(tmp) == 0:
            raise ToolError(f"toktx produced no output for {rel(self.repo_root, src)}",
                            "toktx")

    def resolve_tools(self):
        self.toktx = find_toktx(self.config.tools.toktx)
        if not self.toktx:
            logger.warning("'toktx' not found on PATH or in %s. Skipping KTX2 generation.",
                           BIN_DIR)
        self._avif_supported = bool(features.check("avif"))
        if not self._avif_supported:
            logger.warning("Pillow was built without AVIF support. Skipping AVIF outputs.")

    def run(self) -> ImageConvertResult:
        self.resolve_tools()
        sources = self.collect()
        units = self.plan(sources)
        logger.info("Converting %d images (%d outputs).", len(sources), len(units))

        outcomes = run_bounded(
            units, self.convert, self.config.concurrency, desc="Images",
            label=lambda u: f"{u[1].upper()} {rel(self.repo_root, u[0])}",
        )
        result = ImageConvertResult(ktx2_available=bool(self.toktx))
        for outcome in outcomes:
            if not outcome.ok:
                result.failed += 1
            elif outcome.result == PRODUCED:
                result.produced += 1
            else:
                result.skipped += 1
        logger.info("Images: %d produced, %d up to date, %d failed.",
                    result.produced, result.skipped, result.failed)
        return result


class Ktx2RootBuilder(ImageConverter):
    """KTX2 for every image under the ``ktx2_build`` roots.

    The codec follows the root, not path patterns: roots listed in
    ``uastc_roots`` get UASTC, the others ETC1S. Mipmaps are always built.
    A missing toktx is an error here.
    """

    def __init__(self, config: PipelineConfig, root_name: Optional[str] = None):
        super().__init__(config)
        roots = config.ktx2_build.roots
        if root_name is not None and root_name not in roots:
            raise ValueError(f"unknown KTX2 root '{root_name}' "
                             f"(expected one of: {', '.join(sorted(roots))})")
        self.root_names = [root_name] if root_name else list(roots)
        self._root_of = {}

    def resolve_tools(self):
        self.toktx = find_toktx(self.config.tools.toktx)
        if not self.toktx:
            raise ToolNotFoundError(
                f"'toktx' not found on PATH or in {BIN_DIR}", "toktx")

    def collect(self) -> List[str]:
        sources = []
        for name in self.root_names:
            dirs = self.config.resolve_dirs([self.config.ktx2_build.roots[name]])
            for root in find_existing_roots(dirs):
                for path in walk(root, skip_dir=is_work_dir_name):
                    if os.path.splitext(path)[1].lower() not in IMAGE_SOURCE_EXTS:
                        continue
                    path = os.path.abspath(path)
                    if path not in self._root_of:
                        self._root_of[path] = name
                        sources.append(path)
        return sources

    def plan(self, sources: List[str]) -> List[Tuple[str, str]]:
        return [(src, KIND_KTX2) for src in sources]

    def _encode_ktx2(self, src: str, tmp: str):
        uastc = self._root_of[src] in self.config.ktx2_build.uastc_roots
        cmd = build_toktx_args(self.toktx, src, tmp, self.config,
                               uastc=uastc, mipmaps=True)
        self._run_toktx(cmd, src, tmp)


def convert_images(config: PipelineConfig) -> ImageConvertResult:
    return ImageConverter(config).run()


def build_ktx2_roots(config: PipelineConfig, root_name: Optional[str] = None,
                     force: bool = False) -> ImageConvertResult:
    builder = Ktx2RootBuilder(config, root_name)
    builder.force = force
    return builder.run()
