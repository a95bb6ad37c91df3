import os
import logging
from pathlib import Path
from smo.domain.models import is_temp_name


class HousekeepingService:
    """Service for cleaning up optimizer leftovers."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes orphaned optimizer temp outputs in the directory.

        These only survive when a previous run was killed between writing a
        temp output and swapping it in; the originals are intact.
        """
        removed = 0
        for root, dirs, files in os.walk(directory):
            for file in files:
                if not is_temp_name(file):
                    continue
                path = Path(root) / file
                try:
                    path.unlink()
                    removed += 1
                    self.logger.info(f"TEMP_CLEANUP: {path}")
                except OSError as e:
                    self.logger.warning(f"TEMP_CLEANUP_FAIL: {path}: {e}")
        return removed
