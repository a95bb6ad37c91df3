import re
import time
from enum import Enum
from pathlib import Path, PurePath
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

# Optimized outputs are written next to their target as ".<name>.smo-tmp-XXXXXXXX<ext>",
# XXXXXXXX being the 8 random characters tempfile.mkstemp draws from [a-z0-9_].
TEMP_MARKER = ".smo-tmp-"
_TEMP_NAME_RE = re.compile(r"^\.(.+)" + re.escape(TEMP_MARKER) + r"[a-z0-9_]{8}(.*)$")


def is_temp_name(name: str) -> bool:
    """True only for names this tool's temp files are created with."""
    match = _TEMP_NAME_RE.match(name)
    return match is not None and match.group(2) == PurePath(match.group(1)).suffix


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    REPLACED = "REPLACED"              # optimized output swapped in
    KEPT_ORIGINAL = "KEPT_ORIGINAL"    # gain below threshold
    CACHED = "CACHED"                  # already processed, mtime unchanged
    FAILED = "FAILED"
    INTERRUPTED = "INTERRUPTED"        # Ctrl+C during processing


class MediaFile(BaseModel):
    path: Path
    kind: MediaKind
    size_bytes: int
    mtime: int

    @classmethod
    def from_path(cls, path: Path, kind: MediaKind) -> "MediaFile":
        st = path.stat()
        return cls(path=path, kind=kind, size_bytes=st.st_size, mtime=int(st.st_mtime))

    def refresh(self) -> "MediaFile":
        """Re-reads size and mtime; the file may have changed since discovery."""
        return MediaFile.from_path(self.path, self.kind)


def reduction_percent(original_size: int, optimized_size: int) -> float:
    if original_size <= 0:
        return 0.0
    return (original_size - optimized_size) * 100.0 / original_size


def should_replace(original_size: int, optimized_size: int, threshold: float) -> bool:
    """True iff the optimized output is strictly below ``original * threshold``.

    Equality keeps the original, and an empty original is never replaced.
    """
    if original_size <= 0:
        return False
    return optimized_size < original_size * threshold


class ProcessedRecord(BaseModel):
    """Persisted outcome of one file's terminal decision."""

    model_config = ConfigDict(extra="ignore")

    path: str
    modified_time: int
    original_size: int = Field(ge=0)
    optimized_size: int = Field(ge=0)
    reduction_percent: float = 0.0
    processed_at: int = Field(default_factory=lambda: int(time.time()))

    @classmethod
    def build(
        cls,
        path: Path,
        modified_time: int,
        original_size: int,
        optimized_size: int,
    ) -> "ProcessedRecord":
        return cls(
            path=str(path),
            modified_time=modified_time,
            original_size=original_size,
            optimized_size=optimized_size,
            reduction_percent=reduction_percent(original_size, optimized_size),
        )

    def bytes_saved(self, threshold: float) -> int:
        """Bytes freed on disk. A kept original saved nothing, whatever was attempted."""
        if not should_replace(self.original_size, self.optimized_size, threshold):
            return 0
        return self.original_size - self.optimized_size


class HistoricalStats(BaseModel):
    total_files: int = 0
    total_bytes_saved: int = 0
    average_reduction: float = 0.0


class OptimizedOutput(BaseModel):
    temp_path: Path
    size_bytes: int
    tool: str


class OptimizationJob(BaseModel):
    source_file: MediaFile
    status: JobStatus = JobStatus.PENDING
    optimized_size: Optional[int] = None
    reduction_percent: float = 0.0
    tool: Optional[str] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
    dry_run: bool = False
