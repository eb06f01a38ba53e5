"""VramPack: asset build pipeline for VRAM-constrained web delivery."""

import os as _os
from pathlib import Path as _Path

__version__ = "1.0.0"


def _resolve_bin_dir() -> _Path:
    """Directory searched for bundled encoders (``KTX-Software*/toktx``).

    ``VRAMPACK_BIN_DIR`` overrides the project's own ``bin/``, which sits
    next to ``src/``. The directory need not exist.
    """
    env = _os.environ.get("VRAMPACK_BIN_DIR")
    if env:
        return _Path(env).expanduser()
    return _Path(__file__).resolve().parent.parent.parent / "bin"


BIN_DIR = _resolve_bin_dir()

__all__ = ["__version__", "BIN_DIR"]
