"""Core utilities -- re-exports all public symbols for convenience."""

from .records import (
    ModelPackResult,
    PackResult,
    DuplicateScanResult,
    ImageConvertResult,
    FinalizeResult,
    PipelineResult,
)
from .fsutils import (
    walk,
    find_existing_roots,
    file_hash,
    rel,
    ensure_dir,
    safe_getsize,
    is_up_to_date,
    remove_quietly,
    atomic_write_text,
)
from .classify import (
    matches_any, is_ui_asset, wants_uastc, should_generate_mipmaps,
)
from .paths import ModelArtifacts, part_path, sibling
from .tools import (
    ToolError, ToolNotFoundError, ToolTimeoutError,
    run_tool, find_toktx, gltf_transform_command,
)
from .gltf import GltfFormatError, is_lfs_pointer, check_glb_header
from .parallel import TaskOutcome, run_bounded
from .logging import setup_logging

__all__ = [
    "ModelPackResult", "PackResult", "DuplicateScanResult",
    "ImageConvertResult", "FinalizeResult", "PipelineResult",
    "walk", "find_existing_roots", "file_hash", "rel", "ensure_dir",
    "safe_getsize", "is_up_to_date", "remove_quietly", "atomic_write_text",
    "matches_any", "is_ui_asset", "wants_uastc", "should_generate_mipmaps",
    "ModelArtifacts", "part_path", "sibling",
    "ToolError", "ToolNotFoundError", "ToolTimeoutError",
    "run_tool", "find_toktx", "gltf_transform_command",
    "GltfFormatError", "is_lfs_pointer", "check_glb_header",
    "TaskOutcome", "run_bounded",
    "setup_logging",
]
