import os
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Set, Tuple
from smo.domain.errors import DiscoveryError
from smo.domain.models import MediaFile, MediaKind, is_temp_name


class FileScanner:
    """Recursively scans a directory for image and video files."""

    def __init__(self, image_extensions: List[str], video_extensions: List[str], follow_symlinks: bool = False):
        self._kinds: Dict[str, MediaKind] = {}
        for ext in image_extensions:
            self._kinds[self._normalize(ext)] = MediaKind.IMAGE
        for ext in video_extensions:
            self._kinds[self._normalize(ext)] = MediaKind.VIDEO
        self.follow_symlinks = follow_symlinks
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _normalize(ext: str) -> str:
        return (ext if ext.startswith(".") else f".{ext}").lower()

    def kind_for(self, path: Path):
        return self._kinds.get(path.suffix.lower())

    def scan(self, root_dir: Path) -> Iterator[MediaFile]:
        """Validates root_dir and returns a lazy iterator of MediaFile objects.

        Validation happens at call time so an unreadable root surfaces as
        DiscoveryError before any work is scheduled.
        """
        root_dir = Path(root_dir)
        if not root_dir.exists():
            raise DiscoveryError(root_dir, "directory does not exist")
        if not root_dir.is_dir():
            raise DiscoveryError(root_dir, "not a directory")
        if not os.access(root_dir, os.R_OK | os.X_OK):
            raise DiscoveryError(root_dir, "permission denied")
        return self._walk(root_dir.resolve())

    def _on_walk_error(self, error: OSError):
        self.logger.warning(f"SCAN_SKIP_DIR: {error.filename}: {error.strerror}")

    def _walk(self, root_dir: Path) -> Iterator[MediaFile]:
        visited: Set[Tuple[int, int]] = set()

        for root, dirs, files in os.walk(str(root_dir), followlinks=self.follow_symlinks, onerror=self._on_walk_error):
            root_path = Path(root)

            if self.follow_symlinks:
                # Symlink loops: never descend into the same directory twice
                try:
                    st = root_path.stat()
                except OSError:
                    dirs[:] = []
                    continue
                key = (st.st_dev, st.st_ino)
                if key in visited:
                    dirs[:] = []
                    continue
                visited.add(key)

            # Ensure deterministic traversal: sort directories and files
            dirs.sort()
            files.sort()

            for file_name in files:
                if is_temp_name(file_name):
                    continue

                file_path = root_path / file_name
                kind = self.kind_for(file_path)
                if kind is None:
                    continue

                # Replacing a symlink would clobber the link itself
                if file_path.is_symlink():
                    self.logger.debug(f"SCAN_SKIP_SYMLINK: {file_path}")
                    continue

                try:
                    if not file_path.is_file():
                        continue
                    yield MediaFile.from_path(file_path, kind)
                except OSError as e:
                    self.logger.warning(f"SCAN_SKIP_FILE: {file_path}: {e}")
                    continue
