"""Command lines for the external image optimizers.

Each builder returns argv that reads ``source`` and leaves the optimized
image at ``target``. Tools that only work in place (jpegoptim) are flagged
``in_place``; the caller copies the original to ``target`` first.
"""

from pathlib import Path
from typing import Callable, Dict, List, NamedTuple
from smo.config.models import GeneralConfig

COPY_TOOL = "copy"


class ImageCommand(NamedTuple):
    build: Callable[[str, Path, Path, GeneralConfig], List[str]]
    in_place: bool = False


def _jpegoptim(exe: str, source: Path, target: Path, config: GeneralConfig) -> List[str]:
    return [exe, f"--max={config.quality}", "--all-progressive", "--quiet", str(target)]


def _jpegtran(exe: str, source: Path, target: Path, config: GeneralConfig) -> List[str]:
    return [exe, "-copy", "all", "-optimize", "-progressive", "-outfile", str(target), str(source)]


def _oxipng(exe: str, source: Path, target: Path, config: GeneralConfig) -> List[str]:
    return [exe, "-o", "2", "-q", "--out", str(target), str(source)]


def _optipng(exe: str, source: Path, target: Path, config: GeneralConfig) -> List[str]:
    return [exe, "-o2", "-quiet", "-clobber", "-out", str(target), str(source)]


def _cwebp(exe: str, source: Path, target: Path, config: GeneralConfig) -> List[str]:
    return [exe, "-quiet", "-q", str(config.quality), "-metadata", "all", str(source), "-o", str(target)]


def _imagemagick(exe: str, source: Path, target: Path, config: GeneralConfig) -> List[str]:
    if source.suffix.lower() == ".png":
        # PNG is lossless; quality maps to zlib effort
        return [exe, str(source), "-define", "png:compression-level=9", str(target)]
    return [exe, str(source), "-quality", str(config.quality), str(target)]


IMAGE_COMMANDS: Dict[str, ImageCommand] = {
    "jpegoptim": ImageCommand(_jpegoptim, in_place=True),
    "jpegtran": ImageCommand(_jpegtran),
    "oxipng": ImageCommand(_oxipng),
    "optipng": ImageCommand(_optipng),
    "cwebp": ImageCommand(_cwebp),
    "imagemagick": ImageCommand(_imagemagick),
}

# Priority order per extension: dedicated optimizers, then the general
# purpose converter, then a plain copy.
IMAGE_CHAINS: Dict[str, List[str]] = {
    ".jpg": ["jpegoptim", "jpegtran", "imagemagick", COPY_TOOL],
    ".jpeg": ["jpegoptim", "jpegtran", "imagemagick", COPY_TOOL],
    ".png": ["oxipng", "optipng", "imagemagick", COPY_TOOL],
    ".webp": ["cwebp", "imagemagick", COPY_TOOL],
}
DEFAULT_IMAGE_CHAIN = ["imagemagick", COPY_TOOL]
