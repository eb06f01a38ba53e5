"""Path classification by configured regex patterns.

All pattern lists are regular expressions matched case-insensitively with
``re.search`` against the forward-slash form of the absolute path. A list
matches when any of its patterns matches.
"""

import re
from functools import lru_cache
from typing import Iterable, Tuple

from ..config import PipelineConfig


@lru_cache(maxsize=256)
def _compile(patterns: Tuple[str, ...]):
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


def _norm(path: str) -> str:
    return str(path).replace("\\", "/")


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """True if any pattern matches anywhere in ``path``."""
    target = _norm(path)
    return any(rx.search(target) for rx in _compile(tuple(patterns)))


def is_ui_asset(path: str, config: PipelineConfig) -> bool:
    return matches_any(path, config.ui_include)


def wants_uastc(path: str, config: PipelineConfig) -> bool:
    """UASTC for ``uastc_include`` matches, ETC1S otherwise."""
    if matches_any(path, config.uastc_include):
        return True
    return config.images.ui_uses_uastc and is_ui_asset(path, config)


def should_generate_mipmaps(path: str, config: PipelineConfig) -> bool:
    """Resolve mipmap generation with precedence yes > no > default.

    UI assets are treated as a "no" match, so only a yes-pattern can give
    them mipmaps.
    """
    tex = config.textures
    if matches_any(path, tex.yes_mipmap_include):
        return True
    if matches_any(path, tex.no_mipmap_include) or is_ui_asset(path, config):
        return False
    return bool(tex.gen_mipmap_default and config.ktx2.gen_mipmap)
