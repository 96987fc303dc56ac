from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class SortKey(str, Enum):
    DURATION = "duration"
    NAME = "name"
    CREATED_AT = "createdAt"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class VideoRecord(BaseModel):
    """One indexed video, keyed by its POSIX-style path relative to the root.

    Aliases match the column names of the on-disk ``videos`` table.
    """

    model_config = ConfigDict(populate_by_name=True)

    path: str
    folder: str = ""
    name: str
    duration: Optional[float] = None
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    thumb_rel_path: Optional[str] = Field(default=None, alias="thumb")
    updated_at: int = Field(default=0, alias="updatedAt")
    thumb_error: bool = Field(default=False, alias="thumbError")


class DiscoveredVideo(BaseModel):
    """A video file observed by the scanner, with timestamps as of the scan."""

    abs_path: Path
    rel_path: str
    mtime_ms: int
    created_ms: Optional[int] = None

    @property
    def folder(self) -> str:
        parent, _, _ = self.rel_path.rpartition("/")
        return parent

    @property
    def name(self) -> str:
        return Path(self.rel_path).stem


class IndexPassResult(BaseModel):
    discovered: int = 0
    queued: int = 0
    indexed: int = 0
    failed: int = 0
    removed: int = 0
    forced: bool = False
    elapsed_seconds: float = 0.0
