import threading
from typing import Optional
from pydantic import BaseModel
from smo.domain.models import HistoricalStats, OptimizationJob


class RunSummary(BaseModel):
    """Immutable snapshot of the tracker at a point in time."""

    files_total: int = 0
    files_seen: int = 0
    files_optimized: int = 0
    files_replaced: int = 0
    files_skipped: int = 0
    files_cached: int = 0
    files_errored: int = 0
    files_interrupted: int = 0
    total_original_bytes: int = 0
    total_optimized_bytes: int = 0
    bytes_saved: int = 0
    reduction_percent: float = 0.0
    duration_seconds: float = 0.0
    interrupted: bool = False
    dry_run: bool = False
    historical: Optional[HistoricalStats] = None


class ProgressTracker:
    """Thread-safe run counters fed by the UIManager."""

    def __init__(self, dry_run: bool = False):
        self._lock = threading.RLock()
        self.dry_run = dry_run

        self.files_total = 0
        self.files_seen = 0
        self.files_optimized = 0      # a tool produced output
        self.files_replaced = 0
        self.files_skipped = 0        # gain below threshold
        self.files_cached = 0         # already processed
        self.files_errored = 0
        self.files_interrupted = 0

        # Bytes of replaced files only
        self.total_original_bytes = 0
        self.total_optimized_bytes = 0

        self.duration_seconds = 0.0
        self.interrupted = False
        self.historical: Optional[HistoricalStats] = None

    @property
    def files_done(self) -> int:
        with self._lock:
            return (
                self.files_replaced + self.files_skipped + self.files_cached
                + self.files_errored + self.files_interrupted
            )

    @property
    def bytes_saved(self) -> int:
        with self._lock:
            return max(0, self.total_original_bytes - self.total_optimized_bytes)

    @property
    def reduction_percent(self) -> float:
        with self._lock:
            if self.total_original_bytes == 0:
                return 0.0
            return (1.0 - self.total_optimized_bytes / self.total_original_bytes) * 100.0

    def set_total(self, total: int):
        with self._lock:
            self.files_total = total

    def file_started(self):
        with self._lock:
            self.files_seen += 1

    def file_replaced(self, original_size: int, optimized_size: int):
        with self._lock:
            self.files_optimized += 1
            self.files_replaced += 1
            self.total_original_bytes += original_size
            self.total_optimized_bytes += optimized_size

    def file_kept(self, job: OptimizationJob):
        with self._lock:
            if job.tool is not None:
                self.files_optimized += 1
            self.files_skipped += 1

    def file_cached(self):
        with self._lock:
            self.files_cached += 1

    def file_failed(self):
        with self._lock:
            self.files_errored += 1

    def file_interrupted(self):
        with self._lock:
            self.files_interrupted += 1

    def finish(self, duration_seconds: float, interrupted: bool, historical: Optional[HistoricalStats] = None):
        with self._lock:
            self.duration_seconds = duration_seconds
            self.interrupted = interrupted
            self.historical = historical

    def summary(self) -> RunSummary:
        with self._lock:
            return RunSummary(
                files_total=self.files_total,
                files_seen=self.files_seen,
                files_optimized=self.files_optimized,
                files_replaced=self.files_replaced,
                files_skipped=self.files_skipped,
                files_cached=self.files_cached,
                files_errored=self.files_errored,
                files_interrupted=self.files_interrupted,
                total_original_bytes=self.total_original_bytes,
                total_optimized_bytes=self.total_optimized_bytes,
                bytes_saved=self.bytes_saved,
                reduction_percent=self.reduction_percent,
                duration_seconds=self.duration_seconds,
                interrupted=self.interrupted,
                dry_run=self.dry_run,
                historical=self.historical,
            )
