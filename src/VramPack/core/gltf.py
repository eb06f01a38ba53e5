"""Minimal glTF / GLB container helpers.

Only what the packer needs before handing a model to gltf-transform:
reject Git LFS pointers, sanity-check the GLB header, and round-trip the
JSON of an unpacked ``.gltf``.
"""

import json
import os
import struct

# GLB magic number (ASCII "glTF")
GLB_MAGIC = 0x46546C67
# ASCII "JSON"
CHUNK_TYPE_JSON = 0x4E4F534A

LFS_POINTER_PREFIX = b"version https://git-lfs.github.com/spec/"
_LFS_PROBE_BYTES = 200

# Image URIs rewritten to PNG during normalization.
NORMALIZED_IMAGE_EXTS = (".webp", ".avif")


class GltfFormatError(ValueError):
    """The file is not a well-formed glTF / GLB container."""


def is_lfs_pointer(path: str) -> bool:
    """True when ``path`` is a Git LFS pointer instead of real content."""
    with open(path, "rb") as f:
        head = f.read(_LFS_PROBE_BYTES)
    return head.startswith(LFS_POINTER_PREFIX)


def check_glb_header(path: str) -> int:
    """Validate the 12-byte GLB header and return the container version."""
    with open(path, "rb") as f:
        header = f.read(12)
    if len(header) < 12:
        raise GltfFormatError(f"{path}: file too short for a GLB header")
    magic, version, length = struct.unpack("<III", header)
    if magic != GLB_MAGIC:
        raise GltfFormatError(f"{path}: missing glTF magic (got 0x{magic:08X})")
    if length < 12:
        raise GltfFormatError(f"{path}: declared length {length} is invalid")
    return version


def read_glb_json(path: str) -> dict:
    """Return the JSON chunk of a GLB file."""
    check_glb_header(path)
    with open(path, "rb") as f:
        f.seek(12)
        chunk_header = f.read(8)
        if len(chunk_header) < 8:
            raise GltfFormatError(f"{path}: missing first chunk")
        chunk_length, chunk_type = struct.unpack("<II", chunk_header)
        if chunk_type != CHUNK_TYPE_JSON:
            raise GltfFormatError(f"{path}: first chunk is not JSON")
        data = f.read(chunk_length)
    if len(data) < chunk_length:
        raise GltfFormatError(f"{path}: truncated JSON chunk")
    try:
        return json.loads(data.decode("utf-8").rstrip("\x00 "))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise GltfFormatError(f"{path}: invalid JSON chunk ({e})") from e


def load_gltf(path: str) -> dict:
    """Parse a ``.gltf`` JSON document."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise GltfFormatError(f"{path}: not valid glTF JSON ({e})") from e
    if not isinstance(doc, dict):
        raise GltfFormatError(f"{path}: top-level glTF value must be an object")
    return doc


def save_gltf(path: str, doc: dict):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2)


def images_to_normalize(doc: dict):
    """Yield ``(index, image)`` for images whose external URI is WebP or AVIF."""
    images = doc.get("images")
    if not isinstance(images, list):
        return
    for index, image in enumerate(images):
        if not isinstance(image, dict):
            continue
        uri = image.get("uri")
        if not isinstance(uri, str) or uri.startswith("data:"):
            continue
        if os.path.splitext(uri)[1].lower() in NORMALIZED_IMAGE_EXTS:
            yield index, image
