import pytest
from pathlib import Path
from unittest.mock import patch
from smo.config.models import GeneralConfig
from smo.infrastructure.ffmpeg import FFmpegAdapter, build_video_args, select_profile


def _arg(cmd, flag):
    return cmd[cmd.index(flag) + 1]


def test_mp4_uses_x264_aac_with_config_values():
    config = GeneralConfig(crf=23, audio_bitrate="160k", video_preset="slow")
    cmd = build_video_args(Path("/m/in.mp4"), Path("/m/.in.mp4.smo-tmp-1.mp4"), config)

    assert cmd[0] == "ffmpeg"
    assert _arg(cmd, "-i") == "/m/in.mp4"
    assert _arg(cmd, "-c:v") == "libx264"
    assert _arg(cmd, "-preset") == "slow"
    assert _arg(cmd, "-crf") == "23"
    assert _arg(cmd, "-c:a") == "aac"
    assert _arg(cmd, "-b:a") == "160k"
    assert _arg(cmd, "-map_metadata") == "0"
    assert _arg(cmd, "-movflags") == "use_metadata_tags"
    assert _arg(cmd, "-f") == "mp4"
    assert cmd[-2:] == ["-y", "/m/.in.mp4.smo-tmp-1.mp4"]


def test_default_preset_is_veryslow():
    cmd = build_video_args(Path("/m/in.mov"), Path("/m/out.mov"), GeneralConfig())
    assert _arg(cmd, "-preset") == "veryslow"
    assert _arg(cmd, "-f") == "mov"


@pytest.mark.parametrize(
    "name,muxer,vcodec,acodec",
    [
        ("a.mkv", "matroska", "libx264", "aac"),
        ("a.avi", "avi", "libx264", "libmp3lame"),
        ("a.WEBM", "webm", "libvpx-vp9", "libopus"),
        ("a.unknown", "mp4", "libx264", "aac"),
    ],
)
def test_profiles_by_container(name, muxer, vcodec, acodec):
    assert select_profile(Path(name)) == (muxer, vcodec, acodec)


def test_webm_uses_constant_quality_vp9():
    cmd = build_video_args(Path("/m/in.webm"), Path("/m/out.webm"), GeneralConfig(crf=31))
    assert _arg(cmd, "-c:v") == "libvpx-vp9"
    assert _arg(cmd, "-crf") == "31"
    assert _arg(cmd, "-b:v") == "0"
    assert "-preset" not in cmd
    assert "-movflags" not in cmd


def test_adapter_runs_with_video_timeout():
    config = GeneralConfig(video_timeout_s=42)
    adapter = FFmpegAdapter(config, executable=Path("/opt/ffmpeg"))
    with patch("smo.infrastructure.ffmpeg.run_tool") as mock_run:
        adapter.compress(Path("/m/in.mp4"), Path("/m/out.mp4"), shutdown_event="evt")

    args, kwargs = mock_run.call_args
    assert args[0][0] == "/opt/ffmpeg"
    assert args[2] == "ffmpeg"
    assert args[3] == 42
    assert kwargs["shutdown_event"] == "evt"
