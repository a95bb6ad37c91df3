import pytest
import shutil
import yaml
from pathlib import Path
from typing import Dict, Optional
from smo.config.models import AppConfig, GeneralConfig
from smo.domain.models import MediaFile, OptimizedOutput
from smo.infrastructure.event_bus import EventBus
from smo.infrastructure.tool_registry import ToolRegistry
from smo.pipeline.processors import temp_output_path

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path):
    """Returns a sample AppConfig object for testing (state kept under tmp_path)."""
    return AppConfig(
        general=GeneralConfig(
            workers=2,
            threshold=0.9,
            state_dir=tmp_path / "state",
            log_path=tmp_path / "state" / "smo.log",
        )
    )


@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "smo.yaml"

    content = {
        "general": {
            "quality": 70,
            "crf": 30,
            "audio_bitrate": "96k",
            "threshold": 0.8,
            "workers": 3,
            "required_tools": ["ffmpeg"],
        },
        "extensions": {
            "image": ["JPG", ".png"],
            "video": ["mp4"],
        },
    }

    with open(conf_file, "w") as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# Tool Fixtures
# ============================================================================

def make_registry(*available: str) -> ToolRegistry:
    """Registry where only the named logical tools resolve (to fake paths)."""
    return ToolRegistry({name: Path(f"/usr/bin/{name}") for name in available})


@pytest.fixture
def registry_factory():
    return make_registry


class FakeProcessor:
    """Processor double: writes ``sizes[name]`` bytes (or raises ``errors[name]``)."""

    def __init__(self, sizes: Optional[Dict[str, int]] = None, errors: Optional[Dict[str, Exception]] = None, tool: str = "fake"):
        self.sizes = sizes or {}
        self.errors = errors or {}
        self.tool = tool
        self.calls = []

    def optimize(self, file: MediaFile, shutdown_event=None) -> OptimizedOutput:
        self.calls.append(file.path)
        if file.path.name in self.errors:
            raise self.errors[file.path.name]
        size = self.sizes.get(file.path.name, max(1, file.size_bytes // 2))
        temp = temp_output_path(file.path)
        temp.write_bytes(b"o" * size)
        return OptimizedOutput(temp_path=temp, size_bytes=size, tool=self.tool)


@pytest.fixture
def fake_processor_factory():
    return FakeProcessor

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def media_dir(tmp_path):
    """Creates a small media tree with images, a video and noise files."""
    root = tmp_path / "media"
    root.mkdir()
    (root / "a.jpg").write_bytes(b"j" * 1000)
    (root / "b.png").write_bytes(b"p" * 2000)
    (root / "notes.txt").write_text("not media")
    sub = root / "sub"
    sub.mkdir()
    (sub / "c.mp4").write_bytes(b"v" * 4000)
    (sub / "d.JPEG").write_bytes(b"j" * 500)
    return root


@pytest.fixture
def require_tools():
    """Skips the test unless every named executable is on PATH."""
    def _require(*names: str):
        for name in names:
            if shutil.which(name) is None:
                pytest.skip(f"{name} not installed")
    return _require

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (integration tests with real tools)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
