"""Result records returned by each stage."""

from dataclasses import dataclass, field, asdict
from typing import List, Optional

STATUS_PACKED = "packed"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

WINNER_DRACO = "draco"
WINNER_MESHOPT = "meshopt"


@dataclass
class ModelPackResult:
    """Size metrics for one model. Sizes are in bytes, 0 when not produced."""

    name: str
    in_size: int = 0
    norm_size: int = 0
    draco_size: int = 0
    meshopt_size: int = 0
    packed_size: int = 0
    status: str = STATUS_PACKED
    winner: Optional[str] = None
    error: str = ""

    @property
    def saved(self) -> int:
        if self.status != STATUS_PACKED or not self.packed_size:
            return 0
        return self.in_size - self.packed_size

    def to_dict(self) -> dict:
        data = asdict(self)
        data["saved"] = self.saved
        return data


@dataclass
class PackResult:
    models: List[ModelPackResult] = field(default_factory=list)
    summary_path: str = ""

    @property
    def packed(self) -> List[ModelPackResult]:
        return [m for m in self.models if m.status == STATUS_PACKED]

    @property
    def skipped(self) -> List[ModelPackResult]:
        return [m for m in self.models if m.status == STATUS_SKIPPED]

    @property
    def failed(self) -> List[ModelPackResult]:
        return [m for m in self.models if m.status == STATUS_FAILED]


@dataclass
class DuplicateScanResult:
    groups: List[List[str]] = field(default_factory=list)
    report_path: str = ""
    linked: int = 0
    failed: int = 0


@dataclass
class ImageConvertResult:
    produced: int = 0
    skipped: int = 0
    failed: int = 0
    ktx2_available: bool = False


@dataclass
class FinalizeResult:
    renamed: int = 0
    removed_norm: int = 0
    removed_work_dirs: int = 0


@dataclass
class PipelineResult:
    """Aggregate of one orchestrated run."""

    bypassed: bool = False
    bypass_reason: str = ""
    cleaned: int = 0
    duplicates: Optional[DuplicateScanResult] = None
    images: Optional[ImageConvertResult] = None
    models: Optional[PackResult] = None
    finalize: Optional[FinalizeResult] = None
    timings: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.models is None or not self.models.failed
