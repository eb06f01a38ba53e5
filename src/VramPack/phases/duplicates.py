"""Find byte-identical images and optionally hardlink them together.

Groups are keyed by content hash and keep first-seen order, so the first
member of every group is the canonical copy when hardlinking.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from ..config import PipelineConfig
from ..core import (
    DuplicateScanResult, atomic_write_text, file_hash, find_existing_roots,
    rel, walk,
)
from ..core.paths import HARDLINK_TMP_SUFFIX, is_work_dir_name

logger = logging.getLogger("vram_pack.duplicates")

IMAGE_EXTS = frozenset({
    ".png", ".jpg", ".jpeg", ".bmp", ".tga", ".gif", ".webp", ".avif", ".ktx2",
})
REPORT_NAME = "duplicates.json"


class DuplicateScanner:
    """Hash every image under ``img_dirs`` and report identical groups."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.repo_root = os.path.abspath(config.repo_root)

    def collect(self) -> List[str]:
        """Return image paths in walk order, each physical file once."""
        roots = find_existing_roots(self.config.resolve_dirs(self.config.img_dirs))
        seen = set()
        files = []
        for root in roots:
            for path in walk(root, skip_dir=is_work_dir_name):
                if os.path.splitext(path)[1].lower() not in IMAGE_EXTS:
                    continue
                real = os.path.realpath(path)
                if real in seen:
                    continue
                seen.add(real)
                files.append(os.path.abspath(path))
        return files

    def find_groups(self, files: List[str]) -> List[List[str]]:
        """Group absolute paths by content hash; only groups of 2+ are kept."""
        by_hash: Dict[str, List[str]] = {}
        for path in files:
            try:
                digest = file_hash(path)
            except OSError as e:
                logger.warning("Cannot hash %s: %s", rel(self.repo_root, path), e)
                continue
            by_hash.setdefault(digest, []).append(path)
        return [group for group in by_hash.values() if len(group) > 1]

    def write_report(self, groups: List[List[str]]) -> str:
        report_path = self.config.report_path(REPORT_NAME)
        payload = {
            "createdAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "duplicates": [[rel(self.repo_root, p) for p in group] for group in groups],
        }
        atomic_write_text(report_path, json.dumps(payload, indent=2) + "\n")
        return report_path

    def hardlink_groups(self, groups: List[List[str]]) -> Tuple[int, int]:
        """Replace every non-canonical member with a hardlink to the first.

        The member path is swapped in with one atomic rename, so it is never
        missing and a failure leaves the original file untouched.
        """
        linked = failed = 0
        for group in groups:
            canonical = group[0]
            for member in group[1:]:
                if _link_member(canonical, member):
                    logger.info("HLNK %s -> %s",
                                rel(self.repo_root, member), rel(self.repo_root, canonical))
                    linked += 1
                else:
                    failed += 1
        logger.info("Hardlink dedupe: %d files linked, %d failed.", linked, failed)
        return linked, failed

    def run(self, hardlink: bool = False) -> DuplicateScanResult:
        files = self.collect()
        groups = self.find_groups(files)
        report_path = self.write_report(groups)
        logger.info("Duplicate scan: %d files, %d duplicate groups found.",
                    len(files), len(groups))
        logger.info("Report -> %s", rel(self.repo_root, report_path))

        result = DuplicateScanResult(
            groups=[[rel(self.repo_root, p) for p in g] for g in groups],
            report_path=report_path,
        )
        if hardlink and groups:
            result.linked, result.failed = self.hardlink_groups(groups)
        return result


def _link_member(canonical: str, member: str) -> bool:
    try:
        if os.path.samefile(canonical, member):
            return True
    except OSError:
        pass
    tmp = member + HARDLINK_TMP_SUFFIX
    try:
        if os.path.lexists(tmp):
            os.remove(tmp)
        os.link(canonical, tmp)
        os.replace(tmp, member)
        return True
    except OSError as e:
        logger.warning("HLNK_FAIL %s: %s", member, e)
        try:
            os.remove(tmp)
        except OSError:
            pass
        return False


def scan_duplicates(config: PipelineConfig, hardlink: bool = False) -> DuplicateScanResult:
    return DuplicateScanner(config).run(hardlink=hardlink)
