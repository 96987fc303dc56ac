"""
Integration tests against real ffmpeg/ffprobe binaries.

Short synthetic clips are generated with ffmpeg's lavfi test source, so no
test data has to be checked in. Skipped when the binaries are missing.

Run with: pytest -m slow
Skip with: pytest -m "not slow"
"""
import shutil
import subprocess
import pytest
from vidx.config.models import AppConfig
from vidx.infrastructure.ffmpeg import FFmpegAdapter
from vidx.infrastructure.ffprobe import FFprobeAdapter
from vidx.infrastructure.file_scanner import VideoScanner
from vidx.infrastructure.index_store import VideoIndexStore
from vidx.pipeline.orchestrator import IndexOrchestrator
from vidx.pipeline.thumbnails import ThumbnailGenerator

pytestmark = [
    pytest.mark.slow,
    pytest.mark.integration,
    pytest.mark.skipif(
        shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
        reason="ffmpeg/ffprobe not installed",
    ),
]


def _make_clip(path, seconds):
    subprocess.run(
        [
            "ffmpeg", "-y", "-v", "error",
            "-f", "lavfi", "-i", f"testsrc=duration={seconds}:size=320x240:rate=25",
            "-pix_fmt", "yuv420p", str(path),
        ],
        check=True,
        timeout=60,
    )


@pytest.fixture
def real_library(tmp_path):
    root = tmp_path / "real"
    (root / "nested").mkdir(parents=True)
    _make_clip(root / "four.mp4", 4)
    _make_clip(root / "nested" / "two.mkv", 2)
    (root / "broken.mp4").write_bytes(b"definitely not a video")
    return root


@pytest.mark.parametrize("smart", [False, True])
def test_real_pass(real_library, smart):
    config = AppConfig(library={"root_dir": real_library}, thumbnails={"smart": smart}, indexing={"workers": 2})
    store = VideoIndexStore(config.library.db_path)
    orch = IndexOrchestrator(
        config=config,
        store=store,
        scanner=VideoScanner(config.library.extensions, cache_dir=config.library.cache_dir),
        ffprobe_adapter=FFprobeAdapter(timeout=30),
        thumbnailer=ThumbnailGenerator(FFmpegAdapter(timeout=30), smart=smart),
    )
    try:
        result = orch.run_pass()

        assert result.discovered == 3
        assert result.indexed == 2
        assert result.failed == 1

        four = store.get_by_path("four.mp4")
        assert four.duration == pytest.approx(4.0, abs=0.2)
        thumb = config.library.cache_dir / four.thumb_rel_path
        assert thumb.read_bytes()[:2] == b"\xff\xd8"

        two = store.get_by_path("nested/two.mkv")
        assert two.folder == "nested"
        assert two.duration == pytest.approx(2.0, abs=0.2)

        assert store.get_by_path("broken.mp4").thumb_error is True
        assert sorted(p.name for p in config.library.thumbs_dir.iterdir() if ".tmp-" in p.name) == []
    finally:
        store.close()
