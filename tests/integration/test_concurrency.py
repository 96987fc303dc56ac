"""Threading behavior of the indexing pipeline."""
import threading
import time
import pytest
from vidx.config.models import AppConfig
from vidx.infrastructure.file_scanner import VideoScanner
from vidx.infrastructure.index_store import VideoIndexStore
from vidx.pipeline.orchestrator import IndexOrchestrator
from vidx.pipeline.thumbnails import ThumbnailGenerator
from conftest import FakeFrameExtractor, FakeProbe

pytestmark = pytest.mark.integration


class GatedProbe(FakeProbe):
    """Blocks every probe until ``gate`` is set; tracks peak concurrency."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gate = threading.Event()
        self.entered = threading.Event()
        self.active = 0
        self.peak = 0

    def get_duration(self, file_path):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        self.entered.set()
        try:
            assert self.gate.wait(timeout=10), "gate never opened"
            return super().get_duration(file_path)
        finally:
            with self._lock:
                self.active -= 1


class CountingScanner(VideoScanner):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.scans = 0

    def scan(self, root):
        self.scans += 1
        return super().scan(root)


def _build(app_config, store, probe):
    scanner = CountingScanner(app_config.library.extensions, cache_dir=app_config.library.cache_dir)
    orch = IndexOrchestrator(
        config=app_config,
        store=store,
        scanner=scanner,
        ffprobe_adapter=probe,
        thumbnailer=ThumbnailGenerator(FakeFrameExtractor()),
    )
    return orch, scanner


def test_concurrent_callers_share_one_pass(app_config, store):
    probe = GatedProbe()
    orch, scanner = _build(app_config, store, probe)
    results = []
    errors = []

    def caller():
        try:
            results.append(orch.ensure_index())
        except Exception as exc:  # pragma: no cover - reported below
            errors.append(exc)

    threads = [threading.Thread(target=caller) for _ in range(8)]
    for t in threads:
        t.start()
    assert probe.entered.wait(timeout=10)
    # Let the other callers pile up behind the in-flight pass
    time.sleep(0.1)
    probe.gate.set()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert len(results) == 8
    assert all(r is results[0] for r in results)
    assert scanner.scans == 1
    assert sorted(probe.calls) == ["a.mp4", "b.mov", "c.mkv"]
    assert store.write_count == 3


def test_worker_pool_is_bounded(tmp_path):
    root = tmp_path / "many"
    root.mkdir()
    for i in range(12):
        (root / f"v{i:02d}.mp4").write_bytes(b"x")
    config = AppConfig(library={"root_dir": root}, indexing={"workers": 3})
    store = VideoIndexStore(config.library.db_path)
    probe = GatedProbe()
    orch, _ = _build(config, store, probe)

    opener = threading.Timer(0.3, probe.gate.set)
    opener.start()
    try:
        result = orch.run_pass()
    finally:
        opener.cancel()
        store.close()

    assert result.indexed == 12
    assert 1 <= probe.peak <= 3


def test_rebuild_waits_for_in_flight_pass(app_config, store):
    probe = GatedProbe()
    orch, scanner = _build(app_config, store, probe)
    first = []
    second = []

    t1 = threading.Thread(target=lambda: first.append(orch.ensure_index()))
    t1.start()
    assert probe.entered.wait(timeout=10)

    t2 = threading.Thread(target=lambda: second.append(orch.rebuild()))
    t2.start()
    time.sleep(0.1)
    # The rebuild must not start scanning while the first pass is running
    assert scanner.scans == 1
    assert second == []

    probe.gate.set()
    t1.join(timeout=10)
    t2.join(timeout=10)

    assert first[0].indexed == 3
    assert second[0] is not first[0]
    assert second[0].queued == 0
    assert scanner.scans == 2
    assert orch.ensure_index() is second[0]


def test_queries_during_indexing_see_committed_rows(app_config, store, library):
    probe = GatedProbe()
    orch, _ = _build(app_config, store, probe)
    library.orchestrator = orch

    t = threading.Thread(target=orch.ensure_index)
    t.start()
    assert probe.entered.wait(timeout=10)

    # Readers are not blocked by the in-flight writer
    assert store.list_all() == []

    probe.gate.set()
    t.join(timeout=10)
    assert {r.name for r in library.list_videos("")} == {"a", "b"}
