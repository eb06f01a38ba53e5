"""Pack glTF/GLB models for VRAM-constrained delivery.

Per model the packer:

1. rejects Git LFS pointers and files without a glTF header,
2. skips models whose ``.packed.glb`` is newer than the source,
3. optionally normalizes embedded WebP/AVIF textures to PNG so every texture
   can be transcoded to KTX2,
4. compresses textures (UASTC or ETC1S), prunes and dedups the document,
5. quantizes vertex attributes,
6. builds a Draco and a Meshopt candidate from the same intermediate and
   keeps the smaller one as ``<base>.packed.glb``.

Every gltf-transform invocation goes through one runner callable so tests can
substitute a fake that writes the expected outputs.
"""

import json
import logging
import os
import posixpath
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote

from PIL import Image

from ..config import PipelineConfig
from ..core import (
    GltfFormatError, ModelArtifacts, ModelPackResult, PackResult, ToolError,
    atomic_write_text, check_glb_header, ensure_dir, find_existing_roots,
    gltf_transform_command, is_lfs_pointer, is_up_to_date, rel,
    remove_quietly, run_bounded, run_tool, safe_getsize, sibling, walk,
    wants_uastc,
)
from ..core.gltf import load_gltf, save_gltf, images_to_normalize
from ..core.paths import (
    MODEL_EXTS, is_normalized_model, is_packed_model, is_transient_model,
    is_work_dir_name,
)
from ..core.records import (
    STATUS_FAILED, STATUS_PACKED, STATUS_SKIPPED, WINNER_DRACO, WINNER_MESHOPT,
)

logger = logging.getLogger("vram_pack.models")

SUMMARY_NAME = "pack-summary.json"
_IMAGE_EXTENSIONS = ("EXT_texture_webp", "EXT_texture_avif")


class ModelPackError(RuntimeError):
    """A model cannot be packed. Fatal for that model only."""


class LfsPointerError(ModelPackError):
    """The model file is a Git LFS pointer, not glTF content."""


def select_best(draco_size: int, meshopt_size: int) -> Optional[str]:
    """Pick the smaller non-empty candidate. Ties go to Draco.

    Returns None when neither candidate was produced.
    """
    if draco_size <= 0 and meshopt_size <= 0:
        return None
    if meshopt_size > 0 and (draco_size <= 0 or meshopt_size < draco_size):
        return WINNER_MESHOPT
    return WINNER_DRACO


def _fmt_kb(n: int) -> str:
    return f"{n / 1024:.2f} KB" if n > 0 else "-"


def _fmt_pct(before: int, after: int) -> str:
    if before <= 0 or after <= 0:
        return "-"
    return f"{(1 - after / before) * 100:.1f}%"


class ModelPacker:
    """Run the per-model packing chain over every model under ``model_dirs``."""

    def __init__(self, config: PipelineConfig,
                 runner: Optional[Callable] = None):
        self.config = config
        self.repo_root = os.path.abspath(config.repo_root)
        self._runner = runner or run_tool
        self._gltf_cmd: List[str] = []
        self.force = config.models.force

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def is_input(self, path: str) -> bool:
        if os.path.splitext(path)[1].lower() not in MODEL_EXTS:
            return False
        if is_normalized_model(path) or is_transient_model(path):
            return False
        if self.config.models.skip_packed and is_packed_model(path):
            return False
        return True

    def collect(self) -> List[str]:
        roots = find_existing_roots(self.config.resolve_dirs(self.config.model_dirs))
        seen = set()
        inputs = []
        for root in roots:
            for path in walk(root, skip_dir=is_work_dir_name):
                if not self.is_input(path):
                    continue
                real = os.path.realpath(path)
                if real in seen:
                    continue
                seen.add(real)
                inputs.append(os.path.abspath(path))
        return inputs

    # ------------------------------------------------------------------
    # Tool invocation
    # ------------------------------------------------------------------

    def _gltf(self, source: str, *args: str):
        cmd = list(self._gltf_cmd or gltf_transform_command(self.config.tools.gltf_transform))
        cmd += [str(a) for a in args]
        self._runner(cmd, f"gltf-transform {args[0]}", rel(self.repo_root, source),
                     timeout=self.config.tools.timeout_seconds)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def check_input(self, source: str):
        """Reject inputs that gltf-transform cannot read."""
        if is_lfs_pointer(source):
            raise LfsPointerError(
                f"{rel(self.repo_root, source)} is a Git LFS pointer; "
                f"run 'git lfs pull' to fetch the real model"
            )
        if source.lower().endswith(".glb"):
            try:
                check_glb_header(source)
            except GltfFormatError as e:
                raise ModelPackError(str(e)) from e

    def normalize(self, art: ModelArtifacts) -> str:
        """Rewrite WebP/AVIF textures as PNG and return ``<base>.norm.glb``.

        A ``<base>.gltf`` left next to the source by gltf-transform is removed
        afterwards, but only if it was not there before this call.
        """
        stray_preexisting = os.path.lexists(art.stray_gltf)
        if not ensure_dir(art.work_dir):
            raise ModelPackError(f"cannot create scratch directory {art.work_dir}")
        try:
            self._gltf(art.source, "copy", art.source, art.work_gltf)
            try:
                doc = load_gltf(art.work_gltf)
            except GltfFormatError as e:
                raise ModelPackError(str(e)) from e
            converted = self._convert_images(doc, art.work_dir)
            if converted:
                save_gltf(art.work_gltf, doc)
                logger.debug("Normalized %d textures in %s",
                             converted, rel(self.repo_root, art.source))
            self._gltf(art.source, "copy", art.work_gltf, art.normalized)
        finally:
            remove_quietly(art.work_dir)
            if not stray_preexisting and os.path.lexists(art.stray_gltf):
                remove_quietly(art.stray_gltf)
        if not os.path.isfile(art.normalized):
            raise ModelPackError(f"normalization produced no {art.normalized}")
        src_stat = os.stat(art.source)
        os.utime(art.normalized, (src_stat.st_atime, src_stat.st_mtime))
        return art.normalized

    def _convert_images(self, doc: dict, work_dir: str) -> int:
        converted = set()
        claimed = set()
        for index, image in images_to_normalize(doc):
            uri = image["uri"]
            src = os.path.join(work_dir, *unquote(uri).split("/"))
            new_uri = _free_png_uri(work_dir, posixpath.splitext(unquote(uri))[0], claimed)
            dst = os.path.join(work_dir, *new_uri.split("/"))
            try:
                with Image.open(src) as img:
                    img.save(dst, format="PNG", compress_level=9)
            except OSError as e:
                raise ModelPackError(f"cannot re-encode texture {uri}: {e}") from e
            remove_quietly(src)
            image["uri"] = quote(new_uri)
            image["mimeType"] = "image/png"
            converted.add(index)
        if converted:
            _drop_image_extensions(doc, converted)
        return len(converted)

    def compress_textures(self, source: str, normalized: str, out: str):
        ktx = self.config.ktx2
        if wants_uastc(source, self.config):
            self._gltf(source, "uastc", normalized, out,
                       "--level", ktx.uastc_quality, "--zstd", ktx.zstd_level)
        else:
            self._gltf(source, "etc1s", normalized, out, "--quality", ktx.etc1s_qlevel)

    def quantize(self, source: str, art: ModelArtifacts):
        q = self.config.quantize
        if not q.enabled:
            os.replace(art.tmp1, art.tmp2)
            return
        args = ["quantize", art.tmp1, art.tmp2, "--pattern", "*",
                "--quantize-position", q.position_bits,
                "--quantize-normal", q.normal_bits]
        if q.texcoord_bits is not None:
            args += ["--quantize-texcoord", q.texcoord_bits]
        self._gltf(source, *args)

    def _candidate(self, source: str, label: str, args: list, out: str) -> int:
        remove_quietly(out)
        try:
            self._gltf(source, *args)
        except ToolError as e:
            logger.warning("%s candidate failed for %s: %s",
                           label, rel(self.repo_root, source), e)
            remove_quietly(out)
            return 0
        return safe_getsize(out)

    def build_candidates(self, source: str, art: ModelArtifacts):
        """Build Draco (tmp1) and Meshopt (mopt) from the quantized tmp2."""
        d = self.config.draco
        draco_args = ["draco", art.tmp2, art.tmp1, "--method", "edgebreaker",
                      "--quantize-position", d.position_bits]
        if d.texcoord_bits is not None:
            draco_args += ["--quantize-texcoord", d.texcoord_bits]
        draco_size = self._candidate(source, "Draco", draco_args, art.tmp1)
        meshopt_size = self._candidate(
            source, "Meshopt", ["meshopt", art.tmp2, art.mopt], art.mopt)
        return draco_size, meshopt_size

    # ------------------------------------------------------------------
    # Per model
    # ------------------------------------------------------------------

    def pack(self, source: str) -> ModelPackResult:
        art = ModelArtifacts.for_source(source)
        name = rel(self.repo_root, source)
        result = ModelPackResult(name=name, in_size=safe_getsize(source))

        self.check_input(source)

        if not self.force and is_up_to_date(source, art.packed):
            logger.info("SKIP %s (up to date)", rel(self.repo_root, art.packed))
            result.status = STATUS_SKIPPED
            result.packed_size = safe_getsize(art.packed)
            return result

        produced_norm = False
        try:
            if self.config.models.normalize_webp_in_models:
                normalized = self.normalize(art)
                produced_norm = True
            else:
                normalized = source
            result.norm_size = safe_getsize(normalized)

            self.compress_textures(source, normalized, art.tmp1)
            self._gltf(source, "prune", art.tmp1, art.tmp2)
            self._gltf(source, "dedup", art.tmp2, art.tmp1)
            self.quantize(source, art)

            result.draco_size, result.meshopt_size = self.build_candidates(source, art)
            winner = select_best(result.draco_size, result.meshopt_size)
            logger.debug("best-of %s: draco=%s meshopt=%s", name,
                         _fmt_kb(result.draco_size), _fmt_kb(result.meshopt_size))
            if winner is None:
                raise ModelPackError(f"{name}: both Draco and Meshopt candidates failed")
            os.replace(art.tmp1 if winner == WINNER_DRACO else art.mopt, art.packed)
            result.winner = winner
            result.packed_size = safe_getsize(art.packed)
        finally:
            for path in art.intermediates():
                remove_quietly(path)
            if produced_norm:
                remove_quietly(art.normalized)

        logger.info("GLB %s (%s, %s -> %s)", rel(self.repo_root, art.packed), winner,
                    _fmt_kb(result.in_size), _fmt_kb(result.packed_size))
        return result

    def compress_draco(self, source: str, output: Optional[str] = None,
                       level: Optional[int] = None) -> ModelPackResult:
        """Quick Draco-only compress of one model: dedup, prune, resample, draco.

        No texture work and no best-of. ``level`` 0-10 maps onto Draco's
        encode/decode speed (10 - level). The output defaults to
        ``<base><compress.suffix>`` next to the source.
        """
        source = os.path.abspath(source)
        if not os.path.isfile(source):
            raise ModelPackError(f"no such model: {source}")
        self.check_input(source)
        if level is None:
            level = self.config.compress.level
        level = max(0, min(10, int(level)))
        output = os.path.abspath(output or sibling(source, self.config.compress.suffix))
        if os.path.normcase(output) == os.path.normcase(source):
            raise ModelPackError("output must not overwrite the input model")

        art = ModelArtifacts.for_source(source)
        name = rel(self.repo_root, source)
        result = ModelPackResult(name=name, in_size=safe_getsize(source))
        speed = 10 - level
        try:
            self._gltf(source, "dedup", source, art.tmp1)
            self._gltf(source, "prune", art.tmp1, art.tmp2)
            self._gltf(source, "resample", art.tmp2, art.tmp1)
            self._gltf(source, "draco", art.tmp1, art.tmp2, "--method", "edgebreaker",
                       "--encode-speed", speed, "--decode-speed", speed)
            if safe_getsize(art.tmp2) <= 0:
                raise ModelPackError(f"{name}: Draco produced no output")
            if not ensure_dir(os.path.dirname(output)):
                raise ModelPackError(f"cannot create {os.path.dirname(output)}")
            os.replace(art.tmp2, output)
        finally:
            for path in (art.tmp1, art.tmp2):
                remove_quietly(path)

        result.winner = WINNER_DRACO
        result.draco_size = result.packed_size = safe_getsize(output)
        logger.info("DRACO %s (level %d, %s -> %s)", rel(self.repo_root, output), level,
                    _fmt_kb(result.in_size), _fmt_kb(result.packed_size))
        return result

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, force: Optional[bool] = None) -> PackResult:
        if force is not None:
            self.force = force or self.config.models.force
        self._gltf_cmd = gltf_transform_command(self.config.tools.gltf_transform)
        inputs, shadowed = claim_stems(self.collect())
        logger.info("Packing %d models%s.", len(inputs), " (forced)" if self.force else "")

        outcomes = run_bounded(inputs, self.pack, self.config.concurrency,
                               desc="Models", label=lambda p: rel(self.repo_root, p))
        packed = PackResult()
        for path, owner in shadowed:
            reason = f"shares artifact names with {rel(self.repo_root, owner)}"
            logger.warning("SKIP %s (%s)", rel(self.repo_root, path), reason)
            packed.models.append(ModelPackResult(
                name=rel(self.repo_root, path), in_size=safe_getsize(path),
                status=STATUS_SKIPPED, error=reason,
            ))
        for outcome in outcomes:
            if outcome.ok:
                packed.models.append(outcome.result)
                continue
            packed.models.append(ModelPackResult(
                name=rel(self.repo_root, outcome.item),
                in_size=safe_getsize(outcome.item),
                status=STATUS_FAILED,
                error=str(outcome.error),
            ))

        if packed.models:
            self.log_summary(packed.models)
            packed.summary_path = self.write_summary(packed.models)
        if packed.failed:
            logger.error("%d of %d models failed to pack: %s", len(packed.failed),
                         len(packed.models), ", ".join(m.name for m in packed.failed))
        return packed

    def log_summary(self, rows: List[ModelPackResult]):
        width = max([48] + [len(r.name) + 2 for r in rows])
        header = (f"{'Model':<{width}}{'In':>12}{'Norm':>12}{'Draco':>12}"
                  f"{'Meshopt':>12}{'Packed':>12}{'Saved':>9}")
        logger.info("=== Build Size Summary ===")
        logger.info(header)
        for r in rows:
            logger.info(
                "%s%12s%12s%12s%12s%12s%9s",
                f"{r.name:<{width}}", _fmt_kb(r.in_size), _fmt_kb(r.norm_size),
                _fmt_kb(r.draco_size), _fmt_kb(r.meshopt_size),
                _fmt_kb(r.packed_size) if r.status != STATUS_FAILED else "FAILED",
                _fmt_pct(r.in_size, r.packed_size),
            )
        ok_rows = [r for r in rows if r.status != STATUS_FAILED and r.packed_size]
        total_in = sum(r.in_size for r in ok_rows)
        total_packed = sum(r.packed_size for r in ok_rows)
        logger.info("-" * len(header))
        logger.info("%s%12s%12s%12s%12s%12s%9s", f"{'TOTAL':<{width}}",
                    _fmt_kb(total_in), "-", "-", "-", _fmt_kb(total_packed),
                    _fmt_pct(total_in, total_packed))

    def write_summary(self, rows: List[ModelPackResult]) -> str:
        path = self.config.report_path(SUMMARY_NAME)
        ok_rows = [r for r in rows if r.status != STATUS_FAILED]
        payload = {
            "createdAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "models": [r.to_dict() for r in rows],
            "totals": {
                "in_size": sum(r.in_size for r in ok_rows),
                "packed_size": sum(r.packed_size for r in ok_rows),
                "packed": sum(1 for r in rows if r.status == STATUS_PACKED),
                "skipped": sum(1 for r in rows if r.status == STATUS_SKIPPED),
                "failed": sum(1 for r in rows if r.status == STATUS_FAILED),
            },
        }
        try:
            atomic_write_text(path, json.dumps(payload, indent=2) + "\n")
        except OSError as e:
            logger.warning("Could not write %s: %s", path, e)
            return ""
        return path


def claim_stems(inputs: List[str]) -> Tuple[List[str], List[Tuple[str, str]]]:
    """Give every ``<dir>/<base>`` stem to exactly one input.

    ``X.glb`` and ``X.gltf`` in one directory would share every derived
    name (``X.tmp1.glb``, ``X.packed.glb``, ``X.norm_work/``). The ``.gltf``
    keeps the stem: it is the editable source, and a same-stem ``.glb`` is
    usually its finalized output. Returns ``(kept, [(shadowed, owner)])``.
    """
    groups: Dict[str, List[str]] = {}
    for path in inputs:
        stem = os.path.normcase(os.path.splitext(path)[0])
        groups.setdefault(stem, []).append(path)

    owners = set()
    shadowed = []
    for members in groups.values():
        owner = min(members, key=lambda p: (not p.lower().endswith(".gltf"), p))
        owners.add(owner)
        shadowed += [(p, owner) for p in members if p != owner]
    kept = [p for p in inputs if p in owners]
    return kept, shadowed


def _free_png_uri(work_dir: str, stem: str, claimed: set) -> str:
    """``<stem>.png``, or ``<stem>_N.png`` if that name is already in use."""
    candidate = stem + ".png"
    n = 1
    while (candidate.lower() in claimed
           or os.path.lexists(os.path.join(work_dir, *candidate.split("/")))):
        candidate = f"{stem}_{n}.png"
        n += 1
    claimed.add(candidate.lower())
    return candidate


def _drop_image_extensions(doc: dict, converted: set):
    """Point textures back at PNG sources and drop unused WebP/AVIF extensions."""
    still_used = set()
    for texture in doc.get("textures") or []:
        exts = texture.get("extensions")
        if not isinstance(exts, dict):
            continue
        for ext_name in _IMAGE_EXTENSIONS:
            ext = exts.get(ext_name)
            if not isinstance(ext, dict):
                continue
            if ext.get("source") in converted:
                texture["source"] = ext["source"]
                del exts[ext_name]
            else:
                still_used.add(ext_name)
        if not exts:
            del texture["extensions"]
    for key in ("extensionsUsed", "extensionsRequired"):
        names = doc.get(key)
        if not isinstance(names, list):
            continue
        kept = [n for n in names if n not in _IMAGE_EXTENSIONS or n in still_used]
        if kept:
            doc[key] = kept
        else:
            del doc[key]


def pack_models(config: PipelineConfig, force: Optional[bool] = None) -> PackResult:
    return ModelPacker(config).run(force=force)


def compress_glb(config: PipelineConfig, source: str, output: Optional[str] = None,
                 level: Optional[int] = None) -> ModelPackResult:
    return ModelPacker(config).compress_draco(source, output, level)
