"""In-process queries over the index, used by the HTTP layer and the CLI.

Every query first calls ``ensure_index`` so the first access after startup
builds the index, and later ones reuse the memoized pass.
"""

import math
import os
from pathlib import Path
from typing import Dict, List, Optional, Union
from vidx.config.models import AppConfig, CACHE_DIR_NAME
from vidx.domain.errors import NotFound
from vidx.domain.models import SortKey, SortOrder, VideoRecord
from vidx.infrastructure.index_store import VideoIndexStore
from vidx.infrastructure.path_safety import resolve_safe_path
from vidx.pipeline.orchestrator import IndexOrchestrator


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as m:ss or h:mm:ss; ``--:--`` when unknown."""
    if not seconds or not math.isfinite(seconds):
        return "--:--"
    total = math.floor(seconds + 0.5)
    hrs, rem = divmod(total, 3600)
    mins, secs = divmod(rem, 60)
    if hrs > 0:
        return f"{hrs}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


class VideoLibrary:
    def __init__(self, config: AppConfig, store: VideoIndexStore, orchestrator: IndexOrchestrator):
        self.config = config
        self.store = store
        self.orchestrator = orchestrator
        self.root_dir = config.library.root_dir

    def resolve(self, rel_path: str) -> Path:
        """Canonical absolute path for a caller-supplied relative path."""
        return resolve_safe_path(self.root_dir, rel_path)

    def list_folders(self, folder: str = "") -> List[Dict[str, str]]:
        """Visible subdirectories of ``folder`` as ``{"name", "path"}`` dicts."""
        abs_folder = self.resolve(folder)
        try:
            entries = list(os.scandir(abs_folder))
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise NotFound(f"Folder not found: {folder!r}") from exc
        folders = [
            {"name": entry.name, "path": f"{folder}/{entry.name}" if folder else entry.name}
            for entry in entries
            if entry.is_dir() and not entry.name.startswith(".") and entry.name != CACHE_DIR_NAME
        ]
        return sorted(folders, key=lambda item: (item["name"].casefold(), item["name"]))

    def folder_exists(self, folder: str = "") -> bool:
        return self.resolve(folder).is_dir()

    def list_videos(
        self,
        folder: str = "",
        sort: Union[SortKey, str] = SortKey.CREATED_AT,
        order: Union[SortOrder, str] = SortOrder.DESC,
    ) -> List[VideoRecord]:
        self.resolve(folder)
        self.orchestrator.ensure_index()
        return self.store.list_by_folder(folder, SortKey(sort), SortOrder(order))

    def get_video(self, rel_path: str) -> Optional[VideoRecord]:
        self.resolve(rel_path)
        self.orchestrator.ensure_index()
        return self.store.get_by_path(rel_path)

    def get_thumb_path(self, rel_path: str) -> Optional[Path]:
        """Absolute thumbnail path, or None when absent or the last attempt failed."""
        record = self.get_video(rel_path)
        if record is None or record.thumb_error or not record.thumb_rel_path:
            return None
        return self.config.library.cache_dir / record.thumb_rel_path

    def resolve_video_path(self, rel_path: str) -> Path:
        """Absolute path of an existing file under the root, else NotFound."""
        abs_path = self.resolve(rel_path)
        if not abs_path.is_file():
            raise NotFound(f"Video not found: {rel_path!r}")
        return abs_path
