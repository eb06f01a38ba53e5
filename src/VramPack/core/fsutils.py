"""Filesystem helpers shared by every stage: walking, hashing, freshness."""

import hashlib
import logging
import os
import shutil
import threading
import uuid
from typing import Callable, Iterable, Iterator, List, Optional

logger = logging.getLogger("vram_pack")

_SKIPPED_DIR_NAMES = {"node_modules"}
_HASH_CHUNK = 1024 * 1024


def _is_skipped_dir(name: str) -> bool:
    return name in _SKIPPED_DIR_NAMES or name.startswith(".")


def walk(root: str, skip_dir: Optional[Callable[[str], bool]] = None) -> Iterator[str]:
    """Yield every file below ``root`` depth-first, lazily.

    Directories named ``node_modules`` or starting with ``.`` are never
    entered. ``skip_dir`` may prune more directories by name. Symlink cycles
    are not detected.
    """
    try:
        with os.scandir(root) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as exc:
        logger.debug("Cannot list %s: %s", root, exc)
        return
    for entry in entries:
        try:
            is_dir = entry.is_dir()
        except OSError:
            continue
        if is_dir:
            if _is_skipped_dir(entry.name):
                continue
            if skip_dir is not None and skip_dir(entry.name):
                continue
            yield from walk(entry.path, skip_dir)
        else:
            yield entry.path


def find_existing_roots(paths: Iterable[str]) -> List[str]:
    """Keep the directories that exist right now, dropping repeats."""
    roots = []
    seen = set()
    for p in paths:
        if not os.path.isdir(p):
            logger.debug("Skipping missing root: %s", p)
            continue
        real = os.path.realpath(p)
        if real in seen:
            continue
        seen.add(real)
        roots.append(p)
    return roots


def file_hash(filepath: str) -> str:
    """Compute the SHA-256 hex digest of a file's content."""
    h = hashlib.sha256()
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def rel(root: str, path: str) -> str:
    """Return ``path`` relative to ``root`` with forward slashes."""
    return os.path.relpath(path, root).replace("\\", "/")


def ensure_dir(path: str) -> bool:
    """Create ``path`` if needed. Failures are logged, not raised."""
    try:
        os.makedirs(path, exist_ok=True)
        return True
    except OSError as exc:
        logger.warning("Could not create directory %s: %s", path, exc)
        return False


def safe_getsize(path: str) -> int:
    """Return the file size, or 0 when the file is missing."""
    try:
        return os.path.getsize(path)
    except OSError:
        return 0


def is_up_to_date(source: str, derived: str) -> bool:
    """True when ``derived`` exists and is not older than ``source``."""
    try:
        return os.stat(derived).st_mtime >= os.stat(source).st_mtime
    except OSError:
        return False


def remove_quietly(path: str) -> bool:
    """Delete a file or directory tree; return True if something was removed."""
    try:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.debug("Could not remove %s: %s", path, exc)
        return False


def atomic_write_text(path: str, text: str):
    """Write ``text`` to a temp file beside ``path`` and rename it into place."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}.{uuid.uuid4().hex[:8]}"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
