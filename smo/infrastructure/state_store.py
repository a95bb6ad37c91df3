"""Per-root cache of processed files.

One JSON document per media root, named after a fingerprint of the root's
absolute path::

    <state_dir>/processed_files_<fingerprint>.json
    {"processed_files": {"<abs path>": {...ProcessedRecord...}}}

A record is authoritative only while the file's mtime matches the stored
``modified_time``. Writes go to a temp file in the state directory and are
swapped in with ``os.replace`` so a crash never leaves a torn document.
"""

import os
import json
import hashlib
import logging
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional
from pydantic import ValidationError
from smo.domain.errors import StateIOError
from smo.domain.models import HistoricalStats, ProcessedRecord

logger = logging.getLogger(__name__)

STATE_FILE_PREFIX = "processed_files_"


def fingerprint(root: Path) -> str:
    """First 16 hex chars of SHA-256 over the absolute root path."""
    return hashlib.sha256(str(Path(root).absolute()).encode("utf-8")).hexdigest()[:16]


def state_file_path(root: Path, state_dir: Path) -> Path:
    return Path(state_dir) / f"{STATE_FILE_PREFIX}{fingerprint(root)}.json"


class StateStore:
    """Thread-safe map of absolute path -> ProcessedRecord for one root."""

    def __init__(self, path: Path, records: Optional[Dict[str, ProcessedRecord]] = None):
        self.path = Path(path)
        self._records: Dict[str, ProcessedRecord] = dict(records or {})
        self._lock = threading.RLock()
        self._dirty = False

    @classmethod
    def load(cls, root: Path, state_dir: Path) -> "StateStore":
        """Loads the store for ``root``.

        A missing file yields an empty store. An unreadable or corrupt file
        also yields an empty store (the directory is treated as unprocessed)
        and is overwritten on the next flush.
        """
        path = state_file_path(root, state_dir)
        if not path.exists():
            logger.info(f"STATE_NEW: {path}")
            return cls(path)

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"STATE_UNREADABLE: {path}: {e} (starting with empty state)")
            return cls(path)

        raw = data.get("processed_files") if isinstance(data, dict) else None
        if not isinstance(raw, dict):
            logger.warning(f"STATE_UNREADABLE: {path}: missing 'processed_files' (starting with empty state)")
            return cls(path)

        records: Dict[str, ProcessedRecord] = {}
        for key, value in raw.items():
            try:
                records[key] = ProcessedRecord.model_validate(value)
            except ValidationError as e:
                logger.warning(f"STATE_RECORD_DROPPED: {key}: {e.error_count()} validation error(s)")

        logger.info(f"STATE_LOADED: {path} records={len(records)}")
        return cls(path, records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def paths(self) -> List[str]:
        with self._lock:
            return list(self._records.keys())

    def get(self, path: Path) -> Optional[ProcessedRecord]:
        with self._lock:
            return self._records.get(str(path))

    def is_processed(self, path: Path, mtime: int) -> bool:
        with self._lock:
            record = self._records.get(str(path))
            return record is not None and record.modified_time == mtime

    def record(self, path: Path, record: ProcessedRecord):
        with self._lock:
            self._records[str(path)] = record
            self._dirty = True

    def cleanup(self, existing_paths: Iterable[Path]) -> int:
        """Drops records whose path is not among ``existing_paths``."""
        keep = {str(p) for p in existing_paths}
        with self._lock:
            stale = [key for key in self._records if key not in keep]
            for key in stale:
                del self._records[key]
            if stale:
                self._dirty = True
        if stale:
            logger.info(f"STATE_CLEANUP: removed {len(stale)} stale record(s)")
        return len(stale)

    def stats(self, threshold: float) -> HistoricalStats:
        """Totals over every record. Savings count only records whose sizes clear ``threshold``."""
        with self._lock:
            records = list(self._records.values())
        if not records:
            return HistoricalStats()
        return HistoricalStats(
            total_files=len(records),
            total_bytes_saved=sum(r.bytes_saved(threshold) for r in records),
            average_reduction=sum(r.reduction_percent for r in records) / len(records),
        )

    def flush(self, force: bool = False):
        """Atomically persists the store. Raises StateIOError on failure."""
        with self._lock:
            if not self._dirty and not force:
                return
            document = {
                "processed_files": {
                    key: record.model_dump(mode="json") for key, record in self._records.items()
                }
            }
            tmp_name = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=self.path.parent,
                    prefix=f".{self.path.name}.",
                    suffix=".tmp",
                    delete=False,
                ) as tmp:
                    tmp_name = tmp.name
                    json.dump(document, tmp, indent=2)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, self.path)
                tmp_name = None
                self._dirty = False
            except (OSError, TypeError, ValueError) as e:
                raise StateIOError(self.path, str(e)) from e
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass
