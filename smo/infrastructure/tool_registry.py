import os
import sys
import shutil
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from smo.config.models import KNOWN_TOOLS

TOOLS_DIR_ENV = "OPTIMIZATION_TOOLS_DIR"

# Logical tool -> executables that provide it, in preference order.
TOOL_CANDIDATES: Dict[str, Tuple[str, ...]] = {
    "jpegoptim": ("jpegoptim",),
    "jpegtran": ("jpegtran",),
    "oxipng": ("oxipng",),
    "optipng": ("optipng",),
    "cwebp": ("cwebp",),
    "imagemagick": ("magick", "convert"),
    "ffmpeg": ("ffmpeg",),
    "exiftool": ("exiftool",),
}

_PLATFORM_DIRS = {"darwin": "macos", "win32": "windows"}


def _platform_dir() -> str:
    return _PLATFORM_DIRS.get(sys.platform, "linux" if sys.platform.startswith("linux") else sys.platform)


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class ToolRegistry:
    """Probes external tools once at startup; read-only afterwards.

    Lookup order per executable: bundled tools directory (flat
    ``<dir>/<exe>`` or ``<dir>/<platform>/<exe>/<exe>``), then PATH.
    Probing checks existence and the execute bit only, never versions.
    """

    def __init__(self, resolved: Dict[str, Optional[Path]], tools_dir: Optional[Path] = None):
        self._resolved = dict(resolved)
        self.tools_dir = tools_dir

    @classmethod
    def probe(cls, tools_dir: Optional[Path] = None, which=shutil.which) -> "ToolRegistry":
        logger = logging.getLogger(__name__)
        if tools_dir is None and os.environ.get(TOOLS_DIR_ENV):
            tools_dir = Path(os.environ[TOOLS_DIR_ENV]).expanduser()
        if tools_dir is not None and not tools_dir.is_dir():
            logger.warning(f"TOOLS_DIR_MISSING: {tools_dir}")
            tools_dir = None

        resolved: Dict[str, Optional[Path]] = {}
        for tool in KNOWN_TOOLS:
            path = None
            for exe in TOOL_CANDIDATES[tool]:
                path = cls._find_bundled(tools_dir, exe) if tools_dir else None
                if path is None:
                    found = which(exe)
                    path = Path(found) if found else None
                if path is not None:
                    break
            resolved[tool] = path
            if path:
                logger.info(f"TOOL_FOUND: {tool} -> {path}")
            else:
                logger.info(f"TOOL_MISSING: {tool}")
        return cls(resolved, tools_dir=tools_dir)

    @staticmethod
    def _find_bundled(tools_dir: Path, exe: str) -> Optional[Path]:
        suffix = ".exe" if sys.platform == "win32" else ""
        for candidate in (
            tools_dir / f"{exe}{suffix}",
            tools_dir / _platform_dir() / exe / f"{exe}{suffix}",
        ):
            if _is_executable(candidate):
                return candidate
        return None

    def is_available(self, tool: str) -> bool:
        return self._resolved.get(tool) is not None

    def resolve(self, tool: str) -> Optional[Path]:
        return self._resolved.get(tool)

    def available(self) -> List[str]:
        return [tool for tool in KNOWN_TOOLS if self.is_available(tool)]

    def missing(self, tools: List[str]) -> List[str]:
        return [tool for tool in tools if not self.is_available(tool)]

    def report(self) -> List[Tuple[str, Optional[Path]]]:
        """(tool, resolved path or None) for every known tool."""
        return [(tool, self._resolved.get(tool)) for tool in KNOWN_TOOLS]
