import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from smo.config.models import GeneralConfig
from smo.infrastructure.tool_runner import run_tool

# container extension -> (ffmpeg muxer, video codec args, audio codec)
_PROFILES: Dict[str, Tuple[str, str, str]] = {
    ".mp4": ("mp4", "libx264", "aac"),
    ".m4v": ("mp4", "libx264", "aac"),
    ".mov": ("mov", "libx264", "aac"),
    ".mkv": ("matroska", "libx264", "aac"),
    ".avi": ("avi", "libx264", "libmp3lame"),
    ".webm": ("webm", "libvpx-vp9", "libopus"),
}
_DEFAULT_PROFILE = _PROFILES[".mp4"]


def select_profile(path: Path) -> Tuple[str, str, str]:
    return _PROFILES.get(path.suffix.lower(), _DEFAULT_PROFILE)


def build_video_args(source: Path, target: Path, config: GeneralConfig, executable: str = "ffmpeg") -> List[str]:
    """Builds a re-encode command keeping the source container.

    x264 containers use the configured preset and CRF; WebM uses VP9 in
    constant-quality mode (``-b:v 0``) with the same CRF.
    """
    muxer, vcodec, acodec = select_profile(source)
    cmd = [
        executable,
        "-hide_banner",
        "-nostdin",
        "-loglevel", "error",
        "-i", str(source),
        "-c:v", vcodec,
    ]
    if vcodec == "libx264":
        cmd.extend(["-preset", config.video_preset, "-crf", str(config.crf)])
    else:
        cmd.extend(["-crf", str(config.crf), "-b:v", "0", "-row-mt", "1"])
    cmd.extend([
        "-c:a", acodec,
        "-b:a", config.audio_bitrate,
        "-map_metadata", "0",
    ])
    if muxer in ("mp4", "mov"):
        cmd.extend(["-movflags", "use_metadata_tags"])
    cmd.extend(["-f", muxer, "-y", str(target)])
    return cmd


class FFmpegAdapter:
    """Runs ffmpeg re-encodes bounded by the video timeout."""

    def __init__(self, config: GeneralConfig, executable: Optional[Path] = None):
        self.config = config
        self.executable = str(executable) if executable else "ffmpeg"
        self.logger = logging.getLogger(__name__)

    def compress(self, source: Path, target: Path, shutdown_event=None):
        cmd = build_video_args(source, target, self.config, executable=self.executable)
        self.logger.debug(f"FFMPEG_START: {source.name} profile={select_profile(source)[0]}")
        run_tool(cmd, source, "ffmpeg", self.config.video_timeout_s, shutdown_event=shutdown_event)
