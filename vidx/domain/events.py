"""Domain events for the indexing pipeline.

Events flow through the EventBus so the orchestrator stays independent of
whatever renders progress (CLI progress bar, logs, tests).

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from pydantic import BaseModel
from .models import IndexPassResult


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class IndexStarted(Event):
    """Emitted when an indexing pass begins."""

    root: Path
    forced: bool = False


class DiscoveryFinished(Event):
    """Emitted after discovery and staleness checks are complete."""

    files_found: int
    files_to_index: int = 0
    removed: int = 0


class FileIndexed(Event):
    """Emitted when a file was probed and its thumbnail installed."""

    rel_path: str
    duration: float


class FileIndexFailed(Event):
    """Emitted when a file was recorded with thumbError set."""

    rel_path: str
    error_message: str


class IndexFinished(Event):
    """Emitted once a pass has drained its work list."""

    result: IndexPassResult
