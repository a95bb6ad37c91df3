import json
import logging
from unittest.mock import MagicMock
from typer.testing import CliRunner

from smo import main as smo_main
from smo.domain.models import MediaKind, TEMP_MARKER
from smo.infrastructure.state_store import state_file_path

runner = CliRunner()


def _quiet(monkeypatch, registry):
    """Keeps the CLI away from real logging setup and real tool probing."""
    monkeypatch.setattr(smo_main, "setup_logging", MagicMock(return_value=logging.getLogger("smo.test")))
    monkeypatch.setattr(smo_main.ToolRegistry, "probe", classmethod(lambda cls, tools_dir=None: registry))


def test_invalid_threshold_exits_with_error(tmp_path, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    result = runner.invoke(smo_main.app, [str(tmp_path), "--threshold", "1.5"])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
    assert "threshold" in result.output


def test_missing_config_file_exits_with_error(tmp_path, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    result = runner.invoke(smo_main.app, [str(tmp_path), "--config", str(tmp_path / "nope.yaml")])

    assert result.exit_code == 1
    assert "Config file not found" in result.output


def test_media_dir_is_required(monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    result = runner.invoke(smo_main.app, [])

    assert result.exit_code == 1
    assert "MEDIA_DIR is required" in result.output


def test_missing_media_dir_exits(tmp_path, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    result = runner.invoke(smo_main.app, [str(tmp_path / "missing"), "--state-dir", str(tmp_path / "state")])

    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_missing_required_tool_exits(tmp_path, config_yaml_path, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory("jpegoptim"))
    result = runner.invoke(smo_main.app, [str(tmp_path), "--config", str(config_yaml_path)])

    assert result.exit_code == 1
    assert "ffmpeg" in result.output


def test_check_tools_prints_report(monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory("ffmpeg", "exiftool"))
    result = runner.invoke(smo_main.app, ["--check-tools"])

    assert result.exit_code == 0
    assert "ffmpeg" in result.output
    assert "available" in result.output
    assert "missing" in result.output


def test_optimize_run_end_to_end(tmp_path, media_dir, monkeypatch, registry_factory, fake_processor_factory):
    _quiet(monkeypatch, registry_factory())
    fake = fake_processor_factory()
    monkeypatch.setattr(smo_main, "build_processors", lambda general, registry, exif: {
        MediaKind.IMAGE: fake, MediaKind.VIDEO: fake,
    })
    stale = media_dir / f".a.jpg{TEMP_MARKER}oldrun12.jpg"
    stale.write_bytes(b"x")
    state_dir = tmp_path / "state"

    result = runner.invoke(smo_main.app, [str(media_dir), "--state-dir", str(state_dir), "--no-progress"])

    assert result.exit_code == 0, result.output
    assert "Finished" in result.output
    assert not stale.exists()
    assert (media_dir / "a.jpg").stat().st_size == 500
    assert len(fake.calls) == 4
    document = json.loads(state_file_path(media_dir.resolve(), state_dir).read_text())
    assert len(document["processed_files"]) == 4


def test_overrides_reach_orchestrator(tmp_path, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    created = {}

    class DummyOrchestrator:
        def __init__(self, config, event_bus, file_scanner, state_store, processors):
            created["config"] = config

        def run(self, root):
            created["root"] = root

    monkeypatch.setattr(smo_main, "Orchestrator", DummyOrchestrator)
    result = runner.invoke(smo_main.app, [
        str(tmp_path), "-q", "60", "-c", "30", "-a", "96k", "-t", "0.75", "-w", "2",
        "--dry-run", "--state-dir", str(tmp_path / "state"), "--no-progress",
    ])

    assert result.exit_code == 0, result.output
    general = created["config"].general
    assert (general.quality, general.crf, general.audio_bitrate) == (60, 30, "96k")
    assert general.threshold == 0.75
    assert general.workers == 2
    assert general.dry_run is True
    assert created["root"] == tmp_path.resolve()
    assert "dry run" in result.output


def test_json_mode_emits_json_lines(tmp_path, media_dir, monkeypatch, registry_factory, fake_processor_factory):
    _quiet(monkeypatch, registry_factory())
    fake = fake_processor_factory()
    monkeypatch.setattr(smo_main, "build_processors", lambda general, registry, exif: {
        MediaKind.IMAGE: fake, MediaKind.VIDEO: fake,
    })

    result = runner.invoke(smo_main.app, [str(media_dir), "--state-dir", str(tmp_path / "state"), "--json"])

    assert result.exit_code == 0, result.output
    messages = [json.loads(line) for line in result.output.splitlines() if line.startswith("{")]
    assert messages[0]["type"] == "start"
    assert messages[-1]["type"] == "complete"
    assert messages[-1]["files_optimized"] == 4


def test_ctrl_c_exits_130(tmp_path, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())

    class InterruptedOrchestrator:
        def __init__(self, **kwargs):
            pass

        def run(self, root):
            raise KeyboardInterrupt

    monkeypatch.setattr(smo_main, "Orchestrator", InterruptedOrchestrator)
    result = runner.invoke(smo_main.app, [str(tmp_path), "--state-dir", str(tmp_path / "state"), "--no-progress"])

    assert result.exit_code == 130
    assert "stopped by user" in result.output


def test_exiftool_closed_after_run(tmp_path, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory("exiftool"))
    exif = MagicMock()
    monkeypatch.setattr(smo_main, "ExifToolAdapter", MagicMock(return_value=exif))

    result = runner.invoke(smo_main.app, [str(tmp_path), "--state-dir", str(tmp_path / "state"), "--no-progress"])

    assert result.exit_code == 0, result.output
    exif.close.assert_called_once()


def test_output_options_reach_orchestrator(tmp_path, media_dir, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    created = {}

    class DummyOrchestrator:
        def __init__(self, config, event_bus, file_scanner, state_store, processors):
            created["config"] = config

        def run(self, root):
            pass

    monkeypatch.setattr(smo_main, "Orchestrator", DummyOrchestrator)
    out = tmp_path / "out"
    result = runner.invoke(smo_main.app, [
        str(media_dir), "-o", str(out), "--keep-processed", "--skip-video-compression",
        "--state-dir", str(tmp_path / "state"), "--no-progress",
    ])

    assert result.exit_code == 0, result.output
    general = created["config"].general
    assert general.output_dir == out
    assert general.keep_processed is True
    assert general.skip_video_compression is True
    assert out.is_dir()


def test_output_run_end_to_end(tmp_path, media_dir, monkeypatch, registry_factory, fake_processor_factory):
    _quiet(monkeypatch, registry_factory())
    fake = fake_processor_factory()
    monkeypatch.setattr(smo_main, "build_processors", lambda general, registry, exif: {
        MediaKind.IMAGE: fake, MediaKind.VIDEO: fake,
    })
    out = tmp_path / "out"
    out.mkdir()
    stale = out / f".a.jpg{TEMP_MARKER}oldrun12.jpg"
    stale.write_bytes(b"x")
    state_dir = tmp_path / "state"

    result = runner.invoke(smo_main.app, [
        str(media_dir), "--output", str(out), "--skip-video-compression",
        "--state-dir", str(state_dir), "--no-progress",
    ])

    assert result.exit_code == 0, result.output
    assert not stale.exists()
    assert (media_dir / "a.jpg").stat().st_size == 1000
    assert (out / "a.jpg").stat().st_size == 500
    assert (out / "sub" / "c.mp4").read_bytes() == b"v" * 4000
    assert len(fake.calls) == 3
    assert not state_file_path(media_dir.resolve(), state_dir).exists()


def test_output_inside_media_dir_is_rejected(tmp_path, media_dir, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    result = runner.invoke(smo_main.app, [
        str(media_dir), "--output", str(media_dir / "optimized"), "--state-dir", str(tmp_path / "state"),
    ])

    assert result.exit_code == 1
    assert "outside MEDIA_DIR" in result.output
    assert not (media_dir / "optimized").exists()


def test_output_path_must_be_a_directory(tmp_path, media_dir, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    target = tmp_path / "out.txt"
    target.write_text("file")
    result = runner.invoke(smo_main.app, [
        str(media_dir), "--output", str(target), "--state-dir", str(tmp_path / "state"),
    ])

    assert result.exit_code == 1
    assert "not a directory" in result.output


def test_keep_processed_requires_output(tmp_path, media_dir, monkeypatch, registry_factory):
    _quiet(monkeypatch, registry_factory())
    result = runner.invoke(smo_main.app, [str(media_dir), "--keep-processed", "--state-dir", str(tmp_path / "state")])

    assert result.exit_code == 1
    assert "keep_processed requires output_dir" in result.output
