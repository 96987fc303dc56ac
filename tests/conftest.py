import os
import threading
import pytest
import yaml
from pathlib import Path
from typing import Dict, Iterable, Optional
from vidx.config.models import AppConfig
from vidx.domain.errors import ProbeFailure, ThumbnailFailure
from vidx.infrastructure.event_bus import EventBus
from vidx.infrastructure.file_scanner import VideoScanner
from vidx.infrastructure.index_store import VideoIndexStore
from vidx.pipeline.library import VideoLibrary
from vidx.pipeline.orchestrator import IndexOrchestrator
from vidx.pipeline.thumbnails import ThumbnailGenerator

# ============================================================================
# Fake external tools
# ============================================================================

class FakeProbe:
    """Stands in for FFprobeAdapter; records every probed file name."""

    def __init__(self, durations: Optional[Dict[str, float]] = None, default: float = 10.0,
                 fail: Iterable[str] = (), **_kwargs):
        self.durations = durations or {}
        self.default = default
        self.fail = set(fail)
        self.calls = []
        self._lock = threading.Lock()

    def get_duration(self, file_path: Path) -> float:
        with self._lock:
            self.calls.append(file_path.name)
        if file_path.name in self.fail:
            raise ProbeFailure(f"corrupt media: {file_path.name}")
        return self.durations.get(file_path.name, self.default)


class FakeFrameExtractor:
    """Stands in for FFmpegAdapter; writes ``size`` bytes per frame."""

    def __init__(self, size: int = 64, fail: Iterable[str] = (), **_kwargs):
        self.size = size
        self.fail = set(fail)
        self.calls = []
        self._lock = threading.Lock()

    def extract_frame(self, input_path: Path, output_path: Path, timestamp: float) -> Path:
        with self._lock:
            self.calls.append((input_path.name, output_path.name, timestamp))
        if input_path.name in self.fail:
            raise ThumbnailFailure(f"no frame: {input_path.name}")
        output_path.write_bytes(b"\xff" * self.size)
        return output_path

# ============================================================================
# Library fixtures
# ============================================================================

@pytest.fixture
def library_root(tmp_path):
    """Creates a small library tree.

    Visible videos: a.mp4, b.mov, sub/c.mkv. Everything else must be ignored.
    """
    root = tmp_path / "library"
    root.mkdir()
    (root / "a.mp4").write_bytes(b"video a " * 32)
    (root / "b.mov").write_bytes(b"video b " * 32)
    (root / "notes.txt").write_text("not a video")
    sub = root / "sub"
    sub.mkdir()
    (sub / "c.mkv").write_bytes(b"video c " * 32)
    hidden = root / ".hidden"
    hidden.mkdir()
    (hidden / "secret.mp4").write_bytes(b"hidden")
    (root / ".dotfile.mp4").write_bytes(b"hidden")
    return root


@pytest.fixture
def app_config(library_root):
    """Returns an AppConfig rooted at the test library."""
    return AppConfig(
        library={"root_dir": library_root},
        indexing={"workers": 2},
    )


@pytest.fixture
def store(app_config):
    index_store = VideoIndexStore(app_config.library.db_path)
    yield index_store
    index_store.close()


@pytest.fixture
def fake_probe():
    return FakeProbe()


@pytest.fixture
def fake_ffmpeg():
    return FakeFrameExtractor()


@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


@pytest.fixture
def orchestrator(app_config, store, fake_probe, fake_ffmpeg, event_bus):
    return IndexOrchestrator(
        config=app_config,
        store=store,
        scanner=VideoScanner(app_config.library.extensions, cache_dir=app_config.library.cache_dir),
        ffprobe_adapter=fake_probe,
        thumbnailer=ThumbnailGenerator(fake_ffmpeg),
        event_bus=event_bus,
    )


@pytest.fixture
def library(app_config, store, orchestrator):
    return VideoLibrary(app_config, store, orchestrator)


@pytest.fixture
def config_yaml_path(tmp_path, library_root):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "vidx.yaml"
    content = {
        "library": {"root_dir": str(library_root), "extensions": ["mp4", ".MOV"]},
        "thumbnails": {"smart": True, "cache_max_age": 86400},
        "indexing": {"workers": 3},
        "server": {"port": 9000},
    }
    with open(conf_file, "w") as f:
        yaml.dump(content, f)
    return conf_file


def bump_mtime(path: Path, seconds: float = 10.0) -> None:
    """Move a file's mtime forward so the next pass sees it as stale."""
    st = path.stat()
    delta = int(seconds * 1_000_000_000)
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + delta))

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
