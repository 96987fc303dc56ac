import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional
from vidx.domain.models import DiscoveredVideo

logger = logging.getLogger(__name__)


def _created_ms(st: os.stat_result) -> int:
    # st_birthtime is missing on most Linux filesystems; ctime is the fallback.
    birth = getattr(st, "st_birthtime", None)
    return int((birth or st.st_ctime) * 1000)


class VideoScanner:
    """Walks a library root and collects video files with their timestamps."""

    def __init__(self, extensions: Iterable[str], cache_dir: Optional[Path] = None):
        self.extensions = {(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions}
        self.cache_dir = Path(cache_dir) if cache_dir else None

    def scan(self, root_dir: Path) -> List[DiscoveredVideo]:
        """Full re-walk of ``root_dir``.

        Hidden entries and the cache directory are skipped; directory
        symlinks are not followed. Uses an explicit stack so deep trees do
        not hit the recursion limit. An unreadable root raises OSError.
        """
        root_dir = Path(root_dir)
        results: List[DiscoveredVideo] = []
        stack = [root_dir]

        while stack:
            current = stack.pop()
            try:
                with os.scandir(current) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as exc:
                if current == root_dir:
                    raise
                logger.warning(f"SCAN_SKIP_DIR: {current} ({exc})")
                continue

            subdirs = []
            for entry in entries:
                if entry.name.startswith("."):
                    continue
                entry_path = Path(entry.path)
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if self.cache_dir is None or entry_path != self.cache_dir:
                            subdirs.append(entry_path)
                        continue
                except OSError:
                    continue

                if entry_path.suffix.lower() not in self.extensions:
                    continue

                try:
                    st = entry_path.stat()
                except OSError as exc:
                    # Vanished or unreadable between listing and stat
                    logger.warning(f"SCAN_SKIP_FILE: {entry_path} ({exc})")
                    continue

                results.append(DiscoveredVideo(
                    abs_path=entry_path,
                    rel_path=entry_path.relative_to(root_dir).as_posix(),
                    mtime_ms=st.st_mtime_ns // 1_000_000,
                    created_ms=_created_ms(st),
                ))

            # Reversed so the stack pops directories in name order
            stack.extend(reversed(subdirs))

        return results
