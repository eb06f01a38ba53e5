"""Derived-artifact naming.

Every stage writes next to its source using a suffix layered on the source's
base name. Each suffix belongs to exactly one stage:

- images:   ``.avif``, ``.webp``, ``.ktx2`` (and their ``.part.*`` temps)
- models:   ``.norm.glb``, ``.norm_work/``, ``.tmp1.glb``, ``.tmp2.glb``,
            ``.mopt.glb``, ``.packed.glb``
- duplicates: ``.tmp.__hl`` hardlink temps
"""

import os
import re
from dataclasses import dataclass

WORK_DIR_SUFFIX = ".norm_work"
NORM_SUFFIX = ".norm.glb"
PACKED_SUFFIX = ".packed.glb"
MOPT_SUFFIX = ".mopt.glb"
HARDLINK_TMP_SUFFIX = ".tmp.__hl"
PART_INFIX = ".part"

MODEL_EXTS = (".glb", ".gltf")
IMAGE_SOURCE_EXTS = (".png", ".jpg", ".jpeg")

_NORM_RX = re.compile(r"\.norm\.(glb|gltf)$", re.IGNORECASE)
_TRANSIENT_RX = re.compile(r"\.(tmp\d*|mopt)\.(glb|gltf)$", re.IGNORECASE)
_PACKED_RX = re.compile(r"\.packed(\.|$)", re.IGNORECASE)


def split_base(path: str):
    """Return ``(directory, base name without extension)``."""
    directory = os.path.dirname(path)
    base = os.path.splitext(os.path.basename(path))[0]
    return directory, base


def sibling(path: str, suffix: str) -> str:
    """Path next to ``path`` with its extension replaced by ``suffix``."""
    directory, base = split_base(path)
    return os.path.join(directory, base + suffix)


def part_path(final_path: str) -> str:
    """In-progress name for ``final_path``: ``x.webp`` -> ``x.part.webp``."""
    stem, ext = os.path.splitext(final_path)
    return f"{stem}{PART_INFIX}{ext}"


def is_work_dir_name(name: str) -> bool:
    return name.endswith(WORK_DIR_SUFFIX)


def is_normalized_model(path: str) -> bool:
    return bool(_NORM_RX.search(os.path.basename(path)))


def is_transient_model(path: str) -> bool:
    return bool(_TRANSIENT_RX.search(os.path.basename(path)))


def is_packed_model(path: str) -> bool:
    return bool(_PACKED_RX.search(os.path.basename(path)))


def packed_target(packed_path: str) -> str:
    """``robot.packed.glb`` -> ``robot.glb``."""
    return packed_path[: -len(PACKED_SUFFIX)] + ".glb"


@dataclass(frozen=True)
class ModelArtifacts:
    """All paths the packer may create for one source model."""

    source: str
    work_dir: str
    work_gltf: str
    stray_gltf: str
    normalized: str
    tmp1: str
    tmp2: str
    mopt: str
    packed: str

    @classmethod
    def for_source(cls, source: str) -> "ModelArtifacts":
        directory, base = split_base(source)
        work_dir = os.path.join(directory, base + WORK_DIR_SUFFIX)
        return cls(
            source=source,
            work_dir=work_dir,
            work_gltf=os.path.join(work_dir, base + ".gltf"),
            stray_gltf=os.path.join(directory, base + ".gltf"),
            normalized=os.path.join(directory, base + NORM_SUFFIX),
            tmp1=os.path.join(directory, base + ".tmp1.glb"),
            tmp2=os.path.join(directory, base + ".tmp2.glb"),
            mopt=os.path.join(directory, base + MOPT_SUFFIX),
            packed=os.path.join(directory, base + PACKED_SUFFIX),
        )

    def intermediates(self):
        return (self.tmp1, self.tmp2, self.mopt)
