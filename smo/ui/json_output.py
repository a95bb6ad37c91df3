"""Machine-readable progress: one JSON object per line on stdout.

Message types: ``start``, ``file_start``, ``file_complete``, ``progress``,
``complete`` and ``error``. Used by wrappers (GUIs, scripts) instead of
the rich progress display.
"""

import sys
import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional, TextIO
from smo.config.models import AppConfig
from smo.ui.state import RunSummary


class JsonEventWriter:
    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def emit(self, message_type: str, **fields: Any):
        payload: Dict[str, Any] = {"type": message_type, **fields}
        line = json.dumps(payload, default=str)
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()

    def start(self, root: Path, total_files: int, config: AppConfig):
        general = config.general
        self.emit(
            "start",
            input_dir=str(root),
            total_files=total_files,
            config={
                "quality": general.quality,
                "crf": general.crf,
                "audio_bitrate": general.audio_bitrate,
                "threshold": general.threshold,
                "workers": general.workers,
                "dry_run": general.dry_run,
            },
        )

    def file_start(self, path: Path, size: int, index: int, total: int):
        self.emit("file_start", path=str(path), size=size, index=index, total=total)

    def file_complete(
        self,
        path: Path,
        original_size: int,
        optimized_size: int,
        reduction_percent: float,
        skipped: bool,
        error: Optional[str] = None,
    ):
        self.emit(
            "file_complete",
            path=str(path),
            original_size=original_size,
            optimized_size=optimized_size,
            reduction_percent=round(reduction_percent, 2),
            skipped=skipped,
            error=error,
        )

    def progress(self, summary: RunSummary, current: int):
        total = summary.files_total
        self.emit(
            "progress",
            current=current,
            total=total,
            percentage=round(current * 100.0 / total, 2) if total else 100.0,
            files_optimized=summary.files_replaced,
            files_skipped=summary.files_skipped + summary.files_cached,
            errors=summary.files_errored,
            bytes_saved=summary.bytes_saved,
        )

    def complete(self, summary: RunSummary):
        historical = summary.historical
        self.emit(
            "complete",
            files_processed=summary.files_seen,
            files_optimized=summary.files_replaced,
            files_skipped=summary.files_skipped + summary.files_cached,
            errors=summary.files_errored,
            interrupted=summary.interrupted,
            total_bytes_saved=summary.bytes_saved,
            average_reduction=round(summary.reduction_percent, 2),
            duration_seconds=round(summary.duration_seconds, 3),
            historical_stats={
                "total_files_ever_processed": historical.total_files if historical else 0,
                "total_bytes_saved_historically": historical.total_bytes_saved if historical else 0,
                "average_historical_reduction": round(historical.average_reduction, 2) if historical else 0.0,
            },
        )

    def error(self, message: str, details: Optional[str] = None):
        self.emit("error", message=message, details=details)
