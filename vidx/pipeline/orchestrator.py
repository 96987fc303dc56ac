"""Indexing orchestrator: reconciles the library tree against the index.

Key responsibilities:
- Discover video files under the library root
- Decide per file whether the cached record is stale
- Delete records for files that disappeared (reconciliation)
- Probe and thumbnail stale files on a bounded thread pool
- Persist success or failure per file; never fail the whole pass for one file
- Collapse concurrent "ensure indexed" callers onto one in-flight pass
"""

import concurrent.futures
import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional
from vidx.config.models import AppConfig
from vidx.domain.errors import ProbeFailure, ThumbnailFailure
from vidx.domain.events import DiscoveryFinished, FileIndexed, FileIndexFailed, IndexFinished, IndexStarted
from vidx.domain.models import DiscoveredVideo, IndexPassResult, VideoRecord
from vidx.infrastructure.event_bus import EventBus
from vidx.infrastructure.ffprobe import FFprobeAdapter
from vidx.infrastructure.file_scanner import VideoScanner
from vidx.infrastructure.index_store import VideoIndexStore
from vidx.pipeline.thumbnails import ThumbnailGenerator, thumb_rel_path


def needs_indexing(
    existing: Optional[VideoRecord],
    video: DiscoveredVideo,
    thumb_exists: bool,
    force: bool = False,
) -> bool:
    """Staleness check for one discovered file.

    A record that failed last time is only retried when the file's mtime
    moves past the stored watermark, never just because its thumbnail is
    missing, so broken media does not get re-probed every pass.
    """
    if force or existing is None:
        return True
    if video.mtime_ms > existing.updated_at:
        return True
    if not existing.thumb_error and (not thumb_exists or existing.duration is None):
        return True
    return False


class IndexOrchestrator:
    """Builds and refreshes the video index.

    Args:
        config: AppConfig with library root, thumbnail and indexing settings.
        store: Persistent index the records are written to.
        scanner: VideoScanner for discovering files under the root.
        ffprobe_adapter: Duration probe.
        thumbnailer: ThumbnailGenerator (fixed or smart mode).
        event_bus: Optional EventBus for progress events.
    """

    def __init__(
        self,
        config: AppConfig,
        store: VideoIndexStore,
        scanner: VideoScanner,
        ffprobe_adapter: FFprobeAdapter,
        thumbnailer: ThumbnailGenerator,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.store = store
        self.scanner = scanner
        self.ffprobe_adapter = ffprobe_adapter
        self.thumbnailer = thumbnailer
        self.event_bus = event_bus or EventBus()
        self.logger = logging.getLogger(__name__)

        self.root_dir: Path = config.library.root_dir
        self.cache_dir: Path = config.library.cache_dir
        self.max_workers = config.indexing.effective_workers

        # Single-flight state: the current (running or finished) pass
        self._pass_lock = threading.Lock()
        self._pass_future: Optional["concurrent.futures.Future[IndexPassResult]"] = None

    # ------------------------------------------------------------------
    # Single-flight entry points
    # ------------------------------------------------------------------

    def ensure_index(self) -> IndexPassResult:
        """Return the result of the memoized pass, starting it if needed.

        Concurrent callers block on the same future; only the first one
        runs the pass.
        """
        with self._pass_lock:
            future = self._pass_future
            owner = future is None
            if owner:
                future = concurrent.futures.Future()
                self._pass_future = future
        if owner:
            self._run_owned(future, force=False)
        return future.result()

    def rebuild(self, force: bool = False) -> IndexPassResult:
        """Run a fresh pass and memoize it in place of the previous one.

        Waits for any in-flight pass first. With ``force`` every discovered
        file is treated as stale.
        """
        while True:
            with self._pass_lock:
                previous = self._pass_future
                if previous is None or previous.done():
                    future: "concurrent.futures.Future[IndexPassResult]" = concurrent.futures.Future()
                    self._pass_future = future
                    break
            concurrent.futures.wait([previous])
        self._run_owned(future, force=force)
        return future.result()

    def _run_owned(self, future: "concurrent.futures.Future[IndexPassResult]", force: bool) -> None:
        try:
            result = self.run_pass(force=force)
        except BaseException as exc:
            with self._pass_lock:
                # Let the next caller retry instead of memoizing the failure
                if self._pass_future is future:
                    self._pass_future = None
            self.logger.error(f"INDEX_ABORTED: {exc}")
            future.set_exception(exc)
            if not isinstance(exc, Exception):
                raise
        else:
            future.set_result(result)

    # ------------------------------------------------------------------
    # One pass
    # ------------------------------------------------------------------

    def _thumb_abs_path(self, rel_thumb: str) -> Path:
        return self.cache_dir / rel_thumb

    def _plan(self, files: List[DiscoveredVideo], existing: Dict[str, VideoRecord], force: bool) -> List[DiscoveredVideo]:
        work = []
        for video in files:
            record = existing.get(video.rel_path)
            thumb_exists = self._thumb_abs_path(thumb_rel_path(video.rel_path)).exists()
            if needs_indexing(record, video, thumb_exists, force=force):
                work.append(video)
        return work

    def _reconcile(self, files: List[DiscoveredVideo], existing: Dict[str, VideoRecord]) -> int:
        seen = {video.rel_path for video in files}
        removed = 0
        for path in existing:
            if path not in seen:
                self.store.delete_by_path(path)
                removed += 1
                self.logger.info(f"RECONCILE_REMOVED: {path}")
        return removed

    def run_pass(self, force: bool = False) -> IndexPassResult:
        """Discover, reconcile and index. Per-file failures are persisted, not raised."""
        start = time.monotonic()
        self.logger.info(f"INDEX_START: root={self.root_dir} force={force} workers={self.max_workers}")
        self.event_bus.publish(IndexStarted(root=self.root_dir, forced=force))

        self.config.library.thumbs_dir.mkdir(parents=True, exist_ok=True)

        files = self.scanner.scan(self.root_dir)
        existing = {record.path: record for record in self.store.list_all()}
        work = self._plan(files, existing, force)
        removed = self._reconcile(files, existing)

        self.logger.info(
            f"DISCOVERY_END: found={len(files)}, to_index={len(work)}, removed={removed}"
        )
        self.event_bus.publish(DiscoveryFinished(files_found=len(files), files_to_index=len(work), removed=removed))

        indexed = 0
        failed = 0
        if work:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="vidx-index"
            ) as executor:
                futures = [executor.submit(self._index_file, video) for video in work]
                for future in concurrent.futures.as_completed(futures):
                    if future.result():
                        indexed += 1
                    else:
                        failed += 1

        result = IndexPassResult(
            discovered=len(files),
            queued=len(work),
            indexed=indexed,
            failed=failed,
            removed=removed,
            forced=force,
            elapsed_seconds=time.monotonic() - start,
        )
        self.logger.info(
            f"INDEX_END: indexed={indexed}, failed={failed}, removed={removed}, "
            f"elapsed={result.elapsed_seconds:.2f}s"
        )
        self.event_bus.publish(IndexFinished(result=result))
        return result

    def _index_file(self, video: DiscoveredVideo) -> bool:
        """Index one file. Returns False when a failure record was written."""
        rel_thumb = thumb_rel_path(video.rel_path)
        try:
            duration = self.ffprobe_adapter.get_duration(video.abs_path)
            self.thumbnailer.generate(video.abs_path, self._thumb_abs_path(rel_thumb), duration)
            self.store.upsert_success(VideoRecord(
                path=video.rel_path,
                folder=video.folder,
                name=video.name,
                duration=duration,
                created_at=video.created_ms,
                thumb_rel_path=rel_thumb,
                updated_at=video.mtime_ms,
            ))
        except (ProbeFailure, ThumbnailFailure) as exc:
            self._record_failure(video, str(exc))
            return False
        except Exception as exc:
            self.logger.exception(f"Unexpected error indexing {video.rel_path}")
            self._record_failure(video, f"{type(exc).__name__}: {exc}")
            return False

        self.logger.debug(f"INDEX_FILE: {video.rel_path} duration={duration:.2f}s")
        self.event_bus.publish(FileIndexed(rel_path=video.rel_path, duration=duration))
        return True

    def _record_failure(self, video: DiscoveredVideo, message: str) -> None:
        self.logger.error(f"INDEX_FILE_FAILED: {video.rel_path} - {message}")
        self.store.upsert_failure(video.rel_path, video.folder, video.name, video.mtime_ms)
        self.event_bus.publish(FileIndexFailed(rel_path=video.rel_path, error_message=message))
