import os
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

CACHE_DIR_NAME = ".thumbs.db"
THUMBS_DIR_NAME = "thumbs"
DB_FILE_NAME = "index.sqlite"
LOG_FILE_NAME = "vidx.log"


def default_worker_count() -> int:
    """Clamp hardware concurrency into [2, 6]."""
    return max(2, min(os.cpu_count() or 1, 6))


class LibraryConfig(BaseModel):
    root_dir: Path
    extensions: List[str] = Field(default_factory=lambda: [".mp4", ".mov", ".mkv", ".webm", ".avi"])

    @field_validator("root_dir")
    @classmethod
    def validate_root_dir(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError(f"root_dir must be an absolute path: {v}")
        if not v.is_dir():
            raise ValueError(f"root_dir does not exist or is not a directory: {v}")
        return v.resolve()

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        normalized = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]
        if not normalized:
            raise ValueError("extensions must not be empty")
        return normalized

    @property
    def cache_dir(self) -> Path:
        return self.root_dir / CACHE_DIR_NAME

    @property
    def thumbs_dir(self) -> Path:
        return self.cache_dir / THUMBS_DIR_NAME

    @property
    def db_path(self) -> Path:
        return self.cache_dir / DB_FILE_NAME


class ThumbnailConfig(BaseModel):
    smart: bool = False
    width: int = Field(default=320, gt=0)
    height: int = Field(default=180, gt=0)
    cache_max_age: int = Field(default=3600, ge=0)
    ffmpeg_timeout: Optional[float] = Field(default=None, gt=0)


class IndexingConfig(BaseModel):
    workers: Optional[int] = Field(default=None, ge=1)
    ffprobe_timeout: Optional[float] = Field(default=None, gt=0)

    @property
    def effective_workers(self) -> int:
        return self.workers or default_worker_count()


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=0, le=65535)
    chunk_size: int = Field(default=64 * 1024, ge=1024)


class AppConfig(BaseModel):
    library: LibraryConfig
    thumbnails: ThumbnailConfig = Field(default_factory=ThumbnailConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    debug: bool = False
    log_path: Optional[Path] = None

    @property
    def effective_log_path(self) -> Path:
        return self.log_path or (self.library.cache_dir / LOG_FILE_NAME)
