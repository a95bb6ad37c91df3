"""Media processors: run the best available external tool for one file.

Outputs are always written to a hidden temp file next to the original so
the orchestrator can swap it in with a same-filesystem rename. A processor
never modifies the original.
"""

import os
import shutil
import logging
import tempfile
from pathlib import Path
from typing import Dict, List, Optional
from smo.config.models import GeneralConfig
from smo.domain.errors import MissingDependencyError, ProcessingError, ProcessingInterrupted
from smo.domain.models import MediaFile, MediaKind, OptimizedOutput, TEMP_MARKER
from smo.infrastructure.exif_tool import ExifToolAdapter
from smo.infrastructure.ffmpeg import FFmpegAdapter
from smo.infrastructure.image_tools import COPY_TOOL, DEFAULT_IMAGE_CHAIN, IMAGE_CHAINS, IMAGE_COMMANDS
from smo.infrastructure.tool_registry import ToolRegistry
from smo.infrastructure.tool_runner import run_tool


def temp_output_path(source: Path) -> Path:
    """Reserves a unique hidden name beside ``source`` with the same extension."""
    fd, name = tempfile.mkstemp(
        dir=source.parent,
        prefix=f".{source.name}{TEMP_MARKER}",
        suffix=source.suffix,
    )
    os.close(fd)
    # Tools create the file themselves; some refuse to overwrite
    os.unlink(name)
    return Path(name)


def discard(path: Optional[Path]):
    if path is None:
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logging.getLogger(__name__).warning(f"TEMP_CLEANUP_FAIL: {path}: {e}")


class BaseProcessor:
    kind: MediaKind

    def __init__(self, config: GeneralConfig, registry: ToolRegistry, exif: Optional[ExifToolAdapter] = None):
        self.config = config
        self.registry = registry
        self.exif = exif if (exif is not None and registry.is_available("exiftool")) else None
        self.logger = logging.getLogger(__name__)

    def optimize(self, file: MediaFile, shutdown_event=None) -> OptimizedOutput:
        raise NotImplementedError

    def _check_output(self, source: Path, temp: Path, tool: str) -> int:
        try:
            size = temp.stat().st_size
        except FileNotFoundError:
            raise ProcessingError(source, f"{tool} produced no output")
        if size == 0:
            raise ProcessingError(source, f"{tool} produced an empty output")
        return size

    def _preserve_metadata(self, file: MediaFile, temp: Path, shutdown_event=None):
        if not self.config.preserve_metadata:
            return
        if self.exif is None:
            self.logger.debug(f"EXIF_SKIP: {file.path.name} (exiftool not available)")
            return
        self.exif.copy_metadata(file.path, temp, file.kind, shutdown_event=shutdown_event)
        if self.config.verify_metadata:
            self.exif.verify(file.path, temp)


class ImageProcessor(BaseProcessor):
    """Tries each available image optimizer in priority order.

    A failing tool only costs its own attempt: its output is discarded and
    the next tool in the chain runs. The chain always ends with a plain
    copy, so images never fail for lack of tools.
    """

    kind = MediaKind.IMAGE

    def __init__(self, config: GeneralConfig, registry: ToolRegistry, exif: Optional[ExifToolAdapter] = None):
        super().__init__(config, registry, exif)
        self.chains: Dict[str, List[str]] = {
            ext: self._available(chain) for ext, chain in IMAGE_CHAINS.items()
        }
        self.default_chain = self._available(DEFAULT_IMAGE_CHAIN)

    def _available(self, chain: List[str]) -> List[str]:
        return [tool for tool in chain if tool == COPY_TOOL or self.registry.is_available(tool)]

    def chain_for(self, path: Path) -> List[str]:
        return self.chains.get(path.suffix.lower(), self.default_chain)

    def _run_step(self, tool: str, source: Path, temp: Path, shutdown_event=None):
        if tool == COPY_TOOL:
            shutil.copyfile(source, temp)
            return
        command = IMAGE_COMMANDS[tool]
        exe = str(self.registry.resolve(tool))
        if command.in_place:
            shutil.copyfile(source, temp)
        cmd = command.build(exe, source, temp, self.config)
        run_tool(cmd, source, tool, self.config.image_timeout_s, shutdown_event=shutdown_event)

    def optimize(self, file: MediaFile, shutdown_event=None) -> OptimizedOutput:
        source = file.path
        failures = []
        for tool in self.chain_for(source):
            temp = temp_output_path(source)
            try:
                self._run_step(tool, source, temp, shutdown_event=shutdown_event)
                size = self._check_output(source, temp, tool)
            except ProcessingInterrupted:
                discard(temp)
                raise
            except (ProcessingError, OSError) as e:
                discard(temp)
                self.logger.info(f"TOOL_FAIL: {source.name} {tool}: {e}")
                failures.append(f"{tool}: {e}")
                continue

            # Metadata problems fail the file; falling back would not help
            try:
                if tool != COPY_TOOL:
                    self._preserve_metadata(file, temp, shutdown_event=shutdown_event)
                    size = self._check_output(source, temp, tool)
            except BaseException:
                discard(temp)
                raise

            self.logger.debug(f"OPTIMIZED: {source.name} tool={tool} size={file.size_bytes}->{size}")
            return OptimizedOutput(temp_path=temp, size_bytes=size, tool=tool)

        raise ProcessingError(source, "all tools failed (" + "; ".join(failures) + ")")


class VideoProcessor(BaseProcessor):
    """Re-encodes videos with ffmpeg; there is no fallback transcoder."""

    kind = MediaKind.VIDEO

    def __init__(
        self,
        config: GeneralConfig,
        registry: ToolRegistry,
        exif: Optional[ExifToolAdapter] = None,
        ffmpeg: Optional[FFmpegAdapter] = None,
    ):
        super().__init__(config, registry, exif)
        if ffmpeg is None and registry.is_available("ffmpeg"):
            ffmpeg = FFmpegAdapter(config, executable=registry.resolve("ffmpeg"))
        self.ffmpeg = ffmpeg

    def optimize(self, file: MediaFile, shutdown_event=None) -> OptimizedOutput:
        if self.ffmpeg is None:
            raise MissingDependencyError("ffmpeg", f"{file.path.name}: ffmpeg is required to optimize videos")

        source = file.path
        temp = temp_output_path(source)
        try:
            self.ffmpeg.compress(source, temp, shutdown_event=shutdown_event)
            self._check_output(source, temp, "ffmpeg")
            self._preserve_metadata(file, temp, shutdown_event=shutdown_event)
            size = self._check_output(source, temp, "ffmpeg")
        except BaseException:
            discard(temp)
            raise

        self.logger.debug(f"OPTIMIZED: {source.name} tool=ffmpeg size={file.size_bytes}->{size}")
        return OptimizedOutput(temp_path=temp, size_bytes=size, tool="ffmpeg")


def build_processors(
    config: GeneralConfig,
    registry: ToolRegistry,
    exif: Optional[ExifToolAdapter] = None,
) -> Dict[MediaKind, BaseProcessor]:
    """Flat dispatch table used by the orchestrator."""
    return {
        MediaKind.IMAGE: ImageProcessor(config, registry, exif),
        MediaKind.VIDEO: VideoProcessor(config, registry, exif),
    }
