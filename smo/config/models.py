import re
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_STATE_DIR = Path("~/.media-optimizer")
LOG_FILE_NAME = "media-optimizer.log"

# Logical tool names understood by the tool registry.
KNOWN_TOOLS = (
    "jpegoptim",
    "jpegtran",
    "oxipng",
    "optipng",
    "cwebp",
    "imagemagick",
    "ffmpeg",
    "exiftool",
)

_BITRATE_RE = re.compile(r"^\d+(\.\d+)?[kKmM]?$")


def _normalize_extensions(values: List[str]) -> List[str]:
    normalized = []
    for ext in values:
        ext = ext.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext not in normalized:
            normalized.append(ext)
    return normalized


class GeneralConfig(BaseModel):
    """Run parameters shared read-only by every worker."""

    model_config = ConfigDict(frozen=True)

    quality: int = Field(default=80, ge=1, le=100)
    crf: int = Field(default=26, ge=0, le=51)
    audio_bitrate: str = "128k"
    threshold: float = Field(default=0.9, gt=0.0, le=1.0)
    workers: int = Field(default=4, ge=1)
    prefetch_factor: int = Field(default=1, ge=1)
    dry_run: bool = False
    verbose: bool = False
    preserve_metadata: bool = True
    verify_metadata: bool = True
    follow_symlinks: bool = False
    video_preset: str = "veryslow"
    image_timeout_s: float = Field(default=120.0, gt=0)
    video_timeout_s: float = Field(default=900.0, gt=0)
    metadata_timeout_s: float = Field(default=60.0, gt=0)
    required_tools: List[str] = Field(default_factory=list)
    state_dir: Optional[Path] = None
    tools_dir: Optional[Path] = None
    log_path: Optional[Path] = None
    # Write results under output_dir (mirroring the tree) instead of replacing originals
    output_dir: Optional[Path] = None
    keep_processed: bool = False
    skip_video_compression: bool = False

    @field_validator("audio_bitrate")
    @classmethod
    def validate_audio_bitrate(cls, v: str) -> str:
        v = v.strip()
        if not _BITRATE_RE.match(v):
            raise ValueError(f"Invalid audio bitrate '{v}'. Expected a number with optional k/M suffix (e.g. 128k).")
        return v

    @field_validator("video_preset")
    @classmethod
    def validate_video_preset(cls, v: str) -> str:
        allowed = {
            "ultrafast", "superfast", "veryfast", "faster", "fast",
            "medium", "slow", "slower", "veryslow", "placebo",
        }
        v = v.strip().lower()
        if v not in allowed:
            raise ValueError(f"Invalid video preset '{v}'. Allowed: {', '.join(sorted(allowed))}")
        return v

    @field_validator("required_tools")
    @classmethod
    def validate_required_tools(cls, v: List[str]) -> List[str]:
        unknown = [name for name in v if name not in KNOWN_TOOLS]
        if unknown:
            raise ValueError(f"Unknown tool(s): {', '.join(unknown)}. Known: {', '.join(KNOWN_TOOLS)}")
        return v

    @field_validator("state_dir", "tools_dir", "log_path", "output_dir")
    @classmethod
    def expand_user(cls, v: Optional[Path]) -> Optional[Path]:
        if v is None:
            return v
        return Path(v).expanduser()

    @model_validator(mode="after")
    def validate_keep_processed(self):
        if self.keep_processed and self.output_dir is None:
            raise ValueError("keep_processed requires output_dir")
        return self

    @property
    def resolved_state_dir(self) -> Path:
        return self.state_dir or DEFAULT_STATE_DIR.expanduser()

    @property
    def resolved_log_path(self) -> Path:
        return self.log_path or (self.resolved_state_dir / LOG_FILE_NAME)


class ExtensionsConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    image: List[str] = Field(default_factory=lambda: [".jpg", ".jpeg", ".png", ".webp"])
    video: List[str] = Field(default_factory=lambda: [".mp4", ".mov", ".avi", ".mkv", ".webm"])

    @field_validator("image", "video")
    @classmethod
    def normalize(cls, v: List[str]) -> List[str]:
        return _normalize_extensions(v)

    @model_validator(mode="after")
    def validate_disjoint(self):
        overlap = set(self.image) & set(self.video)
        if overlap:
            raise ValueError(f"Extensions listed as both image and video: {', '.join(sorted(overlap))}")
        return self

    @property
    def all(self) -> List[str]:
        return self.image + self.video


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    extensions: ExtensionsConfig = Field(default_factory=ExtensionsConfig)
