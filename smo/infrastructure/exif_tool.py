import exiftool
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional
from smo.domain.errors import MetadataPreservationError, ProcessingError, ProcessingInterrupted
from smo.domain.models import MediaKind
from smo.infrastructure.tool_runner import run_tool

# Tag families that must survive optimization when the original has them.
# Compared by tag name without the group prefix, since re-encoding may move
# a tag between groups (e.g. EXIF:Make -> QuickTime:Make).
KEY_TAGS: Dict[str, List[str]] = {
    "date": ["DateTimeOriginal", "CreateDate", "CreationDate"],
    "make": ["Make"],
    "model": ["Model"],
    "gps": ["GPSLatitude", "GPSCoordinates", "GPSPosition"],
}

_IGNORED_GROUPS = {"File", "System", "ExifTool", "SourceFile"}


def _bare_tags(data: Dict[str, Any]) -> Dict[str, Any]:
    tags = {}
    for key, value in data.items():
        group, _, name = key.rpartition(":")
        if group in _IGNORED_GROUPS or key in _IGNORED_GROUPS:
            continue
        if value in (None, "") or str(value).startswith("0000:00:00"):
            continue
        tags[name] = value
    return tags


def missing_key_tags(source: Dict[str, Any], target: Dict[str, Any]) -> List[str]:
    """Key tag families present on ``source`` but absent from ``target``."""
    src = _bare_tags(source)
    tgt = _bare_tags(target)
    missing = []
    for family, names in KEY_TAGS.items():
        if any(name in src for name in names) and not any(name in tgt for name in names):
            missing.append(family)
    return missing


class ExifToolAdapter:
    """Copies and verifies metadata between an original and its optimized output.

    Copying runs exiftool as a bounded subprocess. Verification reads tags
    through a shared pyexiftool process guarded by a lock.
    """

    def __init__(self, executable: Optional[Path] = None, timeout_s: float = 60.0):
        self.executable = str(executable) if executable else "exiftool"
        self.timeout_s = timeout_s
        self.et = exiftool.ExifTool(executable=self.executable)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def copy_command(self, source: Path, target: Path, kind: MediaKind) -> List[str]:
        cmd = [self.executable, "-m", "-tagsFromFile", str(source)]
        if kind == MediaKind.VIDEO:
            cmd.extend(["-extractEmbedded", "-all:all", "-FileModifyDate"])
        else:
            cmd.append("-all:all")
        cmd.extend(["-overwrite_original", str(target)])
        return cmd

    def copy_metadata(self, source: Path, target: Path, kind: MediaKind, shutdown_event=None):
        """Copies all tags from ``source`` onto ``target``."""
        try:
            run_tool(
                self.copy_command(source, target, kind),
                source,
                "exiftool",
                self.timeout_s,
                shutdown_event=shutdown_event,
            )
        except ProcessingInterrupted:
            raise
        except ProcessingError as e:
            raise MetadataPreservationError(source, f"metadata copy failed: {e.message}") from e
        self.logger.debug(f"EXIF_COPY_DONE: {source.name}")

    def extract_tags(self, file_path: Path) -> Dict[str, Any]:
        """Extract raw ExifTool tags as a dictionary for verification checks."""
        with self._lock:
            if not self.et.running:
                self.et.run()
            metadata_list = self.et.execute_json("-G", "-n", str(file_path))
        if not metadata_list:
            raise ValueError(f"Could not extract metadata for {file_path}")
        return metadata_list[0]

    def verify(self, source: Path, target: Path):
        """Raises MetadataPreservationError if key tags were lost."""
        try:
            missing = missing_key_tags(self.extract_tags(source), self.extract_tags(target))
        except Exception as e:
            raise MetadataPreservationError(source, f"metadata verification failed: {e}") from e
        if missing:
            raise MetadataPreservationError(source, f"metadata lost after optimization: {', '.join(missing)}")
        self.logger.debug(f"EXIF_VERIFY_OK: {source.name}")

    def close(self):
        with self._lock:
            if self.et.running:
                self.et.terminate()
