"""Pipeline stages, in the order the orchestrator runs them."""

from .cleanup import clean_artifacts
from .duplicates import DuplicateScanner, scan_duplicates
from .images import ImageConverter, Ktx2RootBuilder, build_ktx2_roots, convert_images
from .models import (
    ModelPacker, ModelPackError, LfsPointerError, compress_glb, pack_models,
)
from .finalize import ModelFinalizer, finalize_models

__all__ = [
    "clean_artifacts",
    "DuplicateScanner", "scan_duplicates",
    "ImageConverter", "Ktx2RootBuilder", "build_ktx2_roots", "convert_images",
    "ModelPacker", "ModelPackError", "LfsPointerError", "compress_glb", "pack_models",
    "ModelFinalizer", "finalize_models",
]
