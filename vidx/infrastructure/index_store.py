"""SQLite-backed persistent index of video records.

One table, ``videos``, keyed by the POSIX-style path relative to the library
root. Column names match the store written by earlier deployments so an
existing ``index.sqlite`` keeps working; a table created before the
``thumbError`` column existed is migrated additively on open.

Concurrency:
- All writes go through one connection guarded by ``_write_lock`` and commit
  per record, so a reader never sees a half-applied upsert.
- Each read opens its own connection and closes it before returning; no
  connection outlives a call. WAL mode lets reads run while a write is in
  progress.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Union
from vidx.domain.models import SortKey, SortOrder, VideoRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS videos (
  path TEXT PRIMARY KEY,
  folder TEXT NOT NULL,
  name TEXT NOT NULL,
  duration REAL,
  createdAt INTEGER,
  thumb TEXT,
  updatedAt INTEGER,
  thumbError INTEGER DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_videos_folder ON videos(folder);
"""

_SELECT_COLUMNS = (
    "path, folder, name, duration, createdAt, thumb, "
    "COALESCE(updatedAt, 0) AS updatedAt, COALESCE(thumbError, 0) AS thumbError"
)

_SORT_COLUMNS = {
    SortKey.DURATION: "duration",
    SortKey.NAME: "name",
    SortKey.CREATED_AT: "createdAt",
}

_UPSERT_SUCCESS = """
INSERT INTO videos (path, folder, name, duration, createdAt, thumb, updatedAt, thumbError)
VALUES (?, ?, ?, ?, ?, ?, ?, 0)
ON CONFLICT(path) DO UPDATE SET
  folder = excluded.folder,
  name = excluded.name,
  duration = excluded.duration,
  createdAt = excluded.createdAt,
  thumb = excluded.thumb,
  updatedAt = excluded.updatedAt,
  thumbError = 0
"""

_UPSERT_FAILURE = """
INSERT INTO videos (path, folder, name, duration, createdAt, thumb, updatedAt, thumbError)
VALUES (?, ?, ?, NULL, NULL, NULL, ?, 1)
ON CONFLICT(path) DO UPDATE SET
  folder = excluded.folder,
  name = excluded.name,
  duration = NULL,
  createdAt = NULL,
  thumb = NULL,
  updatedAt = excluded.updatedAt,
  thumbError = 1
"""


class VideoIndexStore:
    """Durable record store with single-writer discipline."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._write_count = 0
        self._closed = False

        self._writer = self._connect()
        try:
            self._writer.execute("PRAGMA journal_mode = WAL;")
        except sqlite3.OperationalError:
            pass
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000;")
        return conn

    def _init_schema(self) -> None:
        with self._write_lock:
            self._writer.executescript(_SCHEMA)
            columns = {row["name"] for row in self._writer.execute("PRAGMA table_info(videos)")}
            if "thumbError" not in columns:
                logger.info(f"INDEX_MIGRATE: adding thumbError column to {self.db_path}")
                self._writer.execute("ALTER TABLE videos ADD COLUMN thumbError INTEGER DEFAULT 0")
            self._writer.commit()

    def _read(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        if self._closed:
            raise sqlite3.ProgrammingError("index store is closed")
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()

    def _write(self, sql: str, params: tuple) -> int:
        with self._write_lock:
            with self._writer:  # commits, or rolls back on error
                cursor = self._writer.execute(sql, params)
            self._write_count += 1
            return cursor.rowcount

    @staticmethod
    def _to_record(row: sqlite3.Row) -> VideoRecord:
        return VideoRecord.model_validate(dict(row))

    @property
    def write_count(self) -> int:
        """Number of committed writes since this store was opened."""
        with self._write_lock:
            return self._write_count

    def upsert_success(self, record: VideoRecord) -> None:
        self._write(_UPSERT_SUCCESS, (
            record.path,
            record.folder,
            record.name,
            record.duration,
            record.created_at,
            record.thumb_rel_path,
            record.updated_at,
        ))

    def upsert_failure(self, path: str, folder: str, name: str, updated_at: int) -> None:
        self._write(_UPSERT_FAILURE, (path, folder, name, updated_at))

    def delete_by_path(self, path: str) -> bool:
        return self._write("DELETE FROM videos WHERE path = ?", (path,)) > 0

    def list_all(self) -> List[VideoRecord]:
        rows = self._read(f"SELECT {_SELECT_COLUMNS} FROM videos")
        return [self._to_record(row) for row in rows]

    def list_by_folder(
        self,
        folder: str,
        sort: SortKey = SortKey.CREATED_AT,
        order: SortOrder = SortOrder.DESC,
    ) -> List[VideoRecord]:
        """Records directly inside ``folder``.

        Ties on the sort column fall back to rowid, i.e. the order in which
        the rows were first inserted.
        """
        column = _SORT_COLUMNS[SortKey(sort)]
        direction = "ASC" if SortOrder(order) == SortOrder.ASC else "DESC"
        rows = self._read(
            f"SELECT {_SELECT_COLUMNS} FROM videos WHERE folder = ? ORDER BY {column} {direction}, rowid ASC",
            (folder,),
        )
        return [self._to_record(row) for row in rows]

    def get_by_path(self, path: str) -> Optional[VideoRecord]:
        rows = self._read(f"SELECT {_SELECT_COLUMNS} FROM videos WHERE path = ?", (path,))
        return self._to_record(rows[0]) if rows else None

    def close(self) -> None:
        self._closed = True
        with self._write_lock:
            self._writer.close()
